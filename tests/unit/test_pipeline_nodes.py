"""Tests for individual pipeline task nodes."""

from pathlib import Path

import pytest

from tests.mocks import (
    FakeToolRunner,
    create_test_fasta,
    create_test_manifest,
    create_test_reads,
    create_test_vcf,
)
from varflow.dataflow import Failure
from varflow.models import (
    GenomicWindow,
    LaneAlignment,
    LaneKey,
    MappedAlignment,
    MergedAlignment,
    UnmappedAlignment,
    VariantSet,
    WindowCalls,
)
from varflow.pipeline import (
    CallVariants,
    ComputeDepthThreshold,
    GenomeWindows,
    MergeBamAlignment,
    MergeSampleBams,
    MergeWindowCalls,
    PrepareGenome,
    reads_channel,
)
from varflow.samples import assign_lanes, load_lanes


@pytest.fixture
def runner():
    return FakeToolRunner()


@pytest.fixture
def config():
    return {"window": 100000, "tool_threads": 2, "depth_sd_multiplier": 5}


@pytest.fixture
def genome(tmp_path, runner, workspace, config):
    fasta = create_test_fasta(tmp_path / "genome.fa", {"chr2": 1000, "chr1": 150000})
    return PrepareGenome(runner, workspace, config).run(fasta, None)


def test_prepare_genome_stages_reference(genome, workspace):
    """The reference is staged and indexed in the genome directory."""
    assert genome.fasta.parent == workspace.output_dir / "00_genome"
    assert genome.fasta.exists()
    assert genome.fai.read_text().startswith("chr2\t1000")
    assert genome.bwa_prefix == genome.fasta.parent / "genome"


def test_genome_windows(genome, runner, workspace, config):
    """Windows follow .fai contig order with a shorter final window."""
    path = GenomeWindows(runner, workspace, config).run(genome, None)
    assert path.read_text().splitlines() == [
        "chr2:1-1000",
        "chr1:1-100000",
        "chr1:100001-150000",
    ]


def test_merge_bam_alignment_checks_keys(genome, runner, workspace, config):
    """Mismatched lane keys are rejected."""
    node = MergeBamAlignment(runner, workspace, config)
    unmapped = UnmappedAlignment(LaneKey("S1", 1), Path("S1.1.unmapped.bam"))
    with pytest.raises(ValueError, match="Lane keys differ"):
        node.run((unmapped, MappedAlignment(LaneKey("S1", 2), Path("x.sam")), genome), None)

    result = node.run((unmapped, MappedAlignment(LaneKey("S1", 1), Path("x.sam")), genome), None)
    assert result.key == LaneKey("S1", 1)
    assert result.bam.parent == workspace.output_dir / "05_lane_bam"


def test_merge_sample_bams_orders_lanes(runner, workspace, config):
    """Lane BAMs are merged in lane order whatever their arrival order."""
    lanes = [
        LaneAlignment(LaneKey("S1", 2), Path("S1.2.merged.bam")),
        LaneAlignment(LaneKey("S1", 1), Path("S1.1.merged.bam")),
    ]
    merged = MergeSampleBams(runner, workspace, config).run(("S1", lanes), None)
    assert merged.sample == "S1"
    assert merged.bam.name == "S1.bam"
    (call,) = runner.calls_for("merge_sample_bams")
    assert [p.name for p in call["inputs"]] == ["S1.1.merged.bam", "S1.2.merged.bam"]
    assert call["params"]["threads"] == 2


def test_call_variants_uses_whole_cohort(genome, runner, workspace, config):
    """Each window is called over every sample BAM, in sample order."""
    cohort = [
        MergedAlignment("S2", Path("S2.bam"), Path("S2.bam.bai")),
        MergedAlignment("S1", Path("S1.bam"), Path("S1.bam.bai")),
    ]
    window = GenomicWindow("chr1", 100001, 150000)
    calls = CallVariants(runner, workspace, config).run((window, cohort, genome), None)
    assert calls.window == window
    assert calls.vcf.name == "chr1_100001_150000.vcf"
    (call,) = runner.calls_for("call_window")
    assert [p.name for p in call["inputs"][1:]] == ["S1.bam", "S2.bam"]


def test_merge_window_calls_in_genome_order(genome, workspace, config, runner, tmp_path):
    """Window VCFs are concatenated by contig order, then start."""
    windows = [
        GenomicWindow("chr1", 100001, 150000),
        GenomicWindow("chr1", 1, 100000),
        GenomicWindow("chr2", 1, 1000),
    ]
    calls = [
        WindowCalls(w, create_test_vcf(tmp_path / f"{i}.vcf", [(w.contig, w.start, 10)]))
        for i, w in enumerate(windows)
    ]
    merged = MergeWindowCalls(runner, workspace, config).run((calls, genome), None)
    records = [
        line.split("\t")[:2]
        for line in merged.vcf.read_text().splitlines()
        if not line.startswith("#")
    ]
    assert records == [["chr2", "1"], ["chr1", "1"], ["chr1", "100001"]]
    assert merged.vcf.name == "test_base.merged.vcf"


def test_depth_threshold_node(workspace, runner, config, tmp_path):
    """The threshold is computed and written next to the filtered output."""
    vcf = create_test_vcf(tmp_path / "snps.vcf", [("chr1", 1, 10), ("chr1", 2, 20), ("chr1", 3, 30)])
    threshold = ComputeDepthThreshold(runner, workspace, config).run(VariantSet(vcf), None)
    assert threshold.value == pytest.approx(60.82)
    report = workspace.output_dir / "11_filtered" / "test_base.dp_threshold.txt"
    assert report.read_text().startswith("threshold\t60.82")


class TestReadsChannel:
    """Test the source channel of numbered read pairs."""

    @pytest.mark.parametrize("header", [True, False])
    def test_manifest_matches_eager_loading(self, scheduler, tmp_path, header):
        """Manifest rows read in the graph give the same lanes as the eager parse."""
        records = create_test_reads(tmp_path / "reads", {"S2": 2, "S1": 1})
        manifest = create_test_manifest(tmp_path / "reads.tsv", records, header=header)
        config = {"reads_file": str(manifest)}
        expected = load_lanes(reads_file=str(manifest))

        assert reads_channel(scheduler, config, expected).values() == expected
        assert [lane.key.lane for lane in expected] == [1, 2, 1]

    def test_discovered_lanes_are_used_as_given(self, scheduler, tmp_path):
        """Without a manifest the already numbered lanes are the source."""
        lanes = assign_lanes(create_test_reads(tmp_path, {"S1": 2}))
        assert reads_channel(scheduler, {"reads": "x"}, lanes).values() == lanes

    def test_missing_manifest_is_a_failure(self, scheduler, tmp_path):
        """An unreadable manifest becomes a failed element, not a crash."""
        config = {"reads_file": str(tmp_path / "missing.tsv")}
        ch = reads_channel(scheduler, config, [])
        scheduler.run()
        (item,) = ch.snapshot()
        assert isinstance(item, Failure)
