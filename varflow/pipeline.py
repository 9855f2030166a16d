# File: varflow/pipeline.py
# Location: varflow/varflow/pipeline.py

"""
Variant-calling pipeline.

This module declares the task nodes of the pipeline and wires them together
with channel operators:

- per-lane read preparation (FastqToSam, MarkIlluminaAdapters, SamToFastq)
- reference preparation and alignment (samtools faidx, sequence dictionary,
  bwa index, bwa mem, MergeBamAlignment)
- per-sample merging of lane alignments (samtools merge and index)
- window-partitioned calling over the whole cohort (freebayes)
- aggregation, SNP selection, sorting, depth filtering and PASS extraction

``run_pipeline`` is the entry point used by the CLI.
"""

import logging
import shutil
from operator import attrgetter
from pathlib import Path
from typing import Any, Dict, List, Sequence

from .dataflow import Channel, RunReport, Scheduler, TaskExecutor, TaskNode, Workspace
from .dataflow.error_handling import validate_file_exists, validate_output_directory
from .dataflow.task import Task
from .genome import make_windows, read_contig_lengths, window_sort_key, write_windows
from .models import (
    CleanedReads,
    DepthThreshold,
    GenomeReference,
    GenomicWindow,
    LaneAlignment,
    LaneReads,
    MappedAlignment,
    MarkedAlignment,
    MergedAlignment,
    UnmappedAlignment,
    VariantSet,
    WindowCalls,
)
from .samples import MANIFEST_COLUMNS, assign_lanes, is_manifest_header, lane_from_row, load_lanes
from .tools import ToolRunner
from .validators import validate_lane_files, validate_run_parameters
from .vcf import depth_threshold, extract_depths, merge_vcfs

logger = logging.getLogger("varflow")


class PipelineNode(TaskNode):
    """Task node bound to the run's tool runner, workspace and configuration.

    Subclasses set ``stage`` to the workspace stage their outputs go to.
    """

    stage: str = ""

    def __init__(self, runner: ToolRunner, workspace: Workspace, config: Dict[str, Any]):
        self.runner = runner
        self.workspace = workspace
        self.config = config

    @property
    def tool_threads(self) -> int:
        return int(self.config.get("tool_threads") or 1)

    def execute(self, task_kind: str, inputs: Sequence[Path], params: Dict[str, Any]) -> List[Path]:
        """Run an external tool with outputs written to this node's stage directory."""
        return self.runner.execute(task_kind, inputs, params, self.workspace.stage_dir(self.stage))


class PrepareGenome(PipelineNode):
    """Stage the reference and build its .fai, sequence dictionary and bwa index."""

    stage = "genome"

    @property
    def name(self) -> str:
        return "prepare_genome"

    def run(self, inputs: Path, task: Task) -> GenomeReference:
        fasta = Path(inputs)
        staged = self.workspace.stage_path(self.stage, fasta.name)
        if not staged.exists():
            try:
                staged.symlink_to(fasta.resolve())
            except OSError:
                shutil.copy2(fasta, staged)
        staged_fasta, fai, dictionary, prefix = self.execute("index_genome", [staged], {})
        return GenomeReference(staged_fasta, fai, dictionary, prefix)


class FastqToSam(PipelineNode):
    """Convert one lane's read pair into an unmapped BAM tagged with its read group."""

    stage = "unmapped_bam"

    @property
    def name(self) -> str:
        return "fastq_to_sam"

    def run(self, inputs: LaneReads, task: Task) -> UnmappedAlignment:
        key = inputs.key
        (bam,) = self.execute(
            "fastq_to_sam",
            [inputs.left, inputs.right],
            {"read_group": key.read_group, "sample": key.sample},
        )
        return UnmappedAlignment(key, bam)


class MarkAdapters(PipelineNode):
    stage = "marked_adapters"

    @property
    def name(self) -> str:
        return "mark_adapters"

    def run(self, inputs: UnmappedAlignment, task: Task) -> MarkedAlignment:
        bam, metrics = self.execute(
            "mark_adapters", [inputs.bam], {"read_group": inputs.key.read_group}
        )
        return MarkedAlignment(inputs.key, bam, metrics)


class SamToFastq(PipelineNode):
    stage = "cleaned_fastq"

    @property
    def name(self) -> str:
        return "sam_to_fastq"

    def run(self, inputs: MarkedAlignment, task: Task) -> CleanedReads:
        (fastq,) = self.execute(
            "sam_to_fastq", [inputs.bam], {"read_group": inputs.key.read_group}
        )
        return CleanedReads(inputs.key, fastq)


class BwaMem(PipelineNode):
    """Align one lane's cleaned reads against the indexed reference."""

    stage = "aligned"

    @property
    def name(self) -> str:
        return "bwa_mem"

    def run(self, inputs, task: Task) -> MappedAlignment:
        reads, genome = inputs
        (sam,) = self.execute(
            "bwa_mem",
            [reads.fastq, genome.bwa_prefix],
            {"read_group": reads.key.read_group, "threads": self.tool_threads},
        )
        return MappedAlignment(reads.key, sam)


class MergeBamAlignment(PipelineNode):
    """Merge aligned reads with the metadata kept in the lane's unmapped BAM."""

    stage = "lane_bam"

    @property
    def name(self) -> str:
        return "merge_bam_alignment"

    def run(self, inputs, task: Task) -> LaneAlignment:
        unmapped, mapped, genome = inputs
        if unmapped.key != mapped.key:
            raise ValueError(f"Lane keys differ: {unmapped.key} and {mapped.key}")
        (bam,) = self.execute(
            "merge_bam_alignment",
            [mapped.sam, unmapped.bam, genome.fasta],
            {"read_group": unmapped.key.read_group},
        )
        return LaneAlignment(unmapped.key, bam)


class MergeSampleBams(PipelineNode):
    """Merge all lane alignments of one sample into an indexed BAM."""

    stage = "sample_bam"

    @property
    def name(self) -> str:
        return "merge_sample_bams"

    def run(self, inputs, task: Task) -> MergedAlignment:
        sample, lanes = inputs
        lanes = sorted(lanes, key=attrgetter("key"))
        logger.debug(f"Merging {len(lanes)} lanes of sample {sample}")
        bam, bai = self.execute(
            "merge_sample_bams",
            [lane.bam for lane in lanes],
            {"sample": sample, "threads": self.tool_threads},
        )
        return MergedAlignment(sample, bam, bai)


class GenomeWindows(PipelineNode):
    """Write the reference's calling windows, one region per line."""

    stage = "windows"

    @property
    def name(self) -> str:
        return "genome_windows"

    def run(self, inputs: GenomeReference, task: Task) -> Path:
        window_size = int(self.config.get("window", 100000))
        windows = make_windows(read_contig_lengths(inputs.fai), window_size)
        logger.info(f"Partitioned the genome into {len(windows)} windows of {window_size} bp")
        return write_windows(windows, self.workspace.stage_path(self.stage, "windows.txt"))


class CallVariants(PipelineNode):
    """Call variants in one window across every sample of the cohort."""

    stage = "window_vcf"

    @property
    def name(self) -> str:
        return "call_variants"

    def run(self, inputs, task: Task) -> WindowCalls:
        window, cohort, genome = inputs
        bams = [alignment.bam for alignment in sorted(cohort, key=attrgetter("sample"))]
        (vcf,) = self.execute("call_window", [genome.fasta, *bams], {"region": window.region})
        return WindowCalls(window, vcf)


class MergeWindowCalls(PipelineNode):
    """Concatenate per-window calls in genome order."""

    stage = "merged_vcf"

    @property
    def name(self) -> str:
        return "merge_window_calls"

    def run(self, inputs, task: Task) -> VariantSet:
        calls, genome = inputs
        contig_order = [contig for contig, _ in read_contig_lengths(genome.fai)]
        ordered = sorted(calls, key=lambda c: window_sort_key(c.window, contig_order))
        output = self.workspace.stage_path(self.stage, f"{self.workspace.base_name}.merged.vcf")
        return VariantSet(merge_vcfs([c.vcf for c in ordered], output))


class SelectSnps(PipelineNode):
    stage = "snps"

    @property
    def name(self) -> str:
        return "select_snps"

    def run(self, inputs, task: Task) -> VariantSet:
        variants, genome = inputs
        (vcf,) = self.execute(
            "select_snps", [variants.vcf, genome.fasta], {"name": self.workspace.base_name}
        )
        return VariantSet(vcf)


class SortVcf(PipelineNode):
    stage = "snps"

    @property
    def name(self) -> str:
        return "sort_vcf"

    def run(self, inputs, task: Task) -> VariantSet:
        variants, genome = inputs
        (vcf,) = self.execute(
            "sort_vcf", [variants.vcf, genome.dictionary], {"name": self.workspace.base_name}
        )
        return VariantSet(vcf)


class ComputeDepthThreshold(PipelineNode):
    """Derive the DP threshold (mean + k standard deviations) of the sorted SNPs."""

    stage = "filtered"

    @property
    def name(self) -> str:
        return "depth_threshold"

    def run(self, inputs: VariantSet, task: Task) -> DepthThreshold:
        multiplier = float(self.config.get("depth_sd_multiplier", 5))
        threshold = depth_threshold(extract_depths(inputs.vcf), multiplier)
        report = self.workspace.stage_path(self.stage, f"{self.workspace.base_name}.dp_threshold.txt")
        report.write_text(
            f"threshold\t{threshold.value}\nmean\t{threshold.mean}\n"
            f"stddev\t{threshold.stddev}\nvariants\t{threshold.count}\n",
            encoding="utf-8",
        )
        logger.info(
            f"DP threshold {threshold.value} (mean {threshold.mean:.2f}, "
            f"sd {threshold.stddev:.2f}, {threshold.count} variants)"
        )
        return threshold


class FilterVariants(PipelineNode):
    stage = "filtered"

    @property
    def name(self) -> str:
        return "filter_variants"

    def run(self, inputs, task: Task) -> VariantSet:
        variants, threshold, genome = inputs
        (vcf,) = self.execute(
            "filter_variants",
            [variants.vcf, genome.fasta],
            {"name": self.workspace.base_name, "dp_threshold": threshold.value},
        )
        return VariantSet(vcf)


class SelectPassing(PipelineNode):
    stage = "filtered"

    @property
    def name(self) -> str:
        return "select_passing"

    def run(self, inputs, task: Task) -> VariantSet:
        variants, genome = inputs
        (vcf,) = self.execute(
            "select_passing", [variants.vcf, genome.fasta], {"name": self.workspace.base_name}
        )
        return VariantSet(vcf)


def _sample_of(key: Any) -> Any:
    return getattr(key, "sample", key)


def build_pipeline(
    scheduler: Scheduler,
    reads: Channel,
    genome_fasta: Path,
    runner: ToolRunner,
    workspace: Workspace,
    config: Dict[str, Any],
) -> Channel:
    """
    Wire the pipeline's task graph onto ``scheduler``.

    Nothing runs until the scheduler is run.

    Parameters
    ----------
    scheduler : Scheduler
        Scheduler the channels and task nodes are created on
    reads : Channel
        Channel of LaneReads, already numbered as lanes (see ``reads_channel``)
    genome_fasta : Path
        Reference FASTA
    runner : ToolRunner
        External tool collaborator
    workspace : Workspace
        Output layout
    config : dict
        Merged configuration

    Returns
    -------
    Channel
        Channel carrying the final PASS-only VariantSet
    """

    def node(cls):
        return cls(runner, workspace, config)

    genome = scheduler.channel([Path(genome_fasta)], name="genome_fasta").process(
        node(PrepareGenome)
    )

    # per-lane read preparation
    unmapped = reads.process(node(FastqToSam))
    cleaned = unmapped.process(node(MarkAdapters)).process(node(SamToFastq))
    mapped = cleaned.combine(genome).process(node(BwaMem))

    lane_bams = (
        unmapped.join(mapped, key=attrgetter("key"), name="lane_pairs")
        .combine(genome)
        .process(node(MergeBamAlignment))
    )
    sample_bams = lane_bams.group_by(
        lambda alignment: alignment.key.sample, failure_key=_sample_of, name="sample_lanes"
    ).process(node(MergeSampleBams))
    cohort = sample_bams.collect(name="cohort")

    # window fan-out: one calling task per window, each over the whole cohort
    windows = (
        genome.process(node(GenomeWindows))
        .split_lines(name="regions")
        .map(GenomicWindow.parse, name="windows")
    )
    calls = windows.combine(cohort).combine(genome).process(node(CallVariants))

    merged = calls.collect(name="window_calls").combine(genome).process(node(MergeWindowCalls))
    snps = merged.combine(genome).process(node(SelectSnps))
    sorted_snps = snps.combine(genome).process(node(SortVcf))
    threshold = sorted_snps.process(node(ComputeDepthThreshold))

    filtered = sorted_snps.combine(threshold).combine(genome).process(node(FilterVariants))
    return filtered.combine(genome).process(node(SelectPassing))


def reads_channel(
    scheduler: Scheduler, config: Dict[str, Any], lanes: Sequence[LaneReads]
) -> Channel:
    """
    Build the source channel of numbered read pairs.

    A manifest is ingested through ``split_csv``; its records are numbered as
    lanes once the whole table is read, so lane keys only depend on manifest
    order. Glob-discovered pairs are already numbered.
    """
    if not config.get("reads_file"):
        return scheduler.channel(lanes, name="reads")
    return (
        scheduler.channel([Path(config["reads_file"])], name="reads_file")
        .split_csv(columns=MANIFEST_COLUMNS, name="manifest_rows")
        .filter(lambda row: not is_manifest_header(row), name="manifest_records")
        .map(lane_from_row, name="read_records")
        .collect(name="read_table")
        .map(assign_lanes, name="lane_table")
        .flatten(name="reads")
    )


def run_pipeline(config: Dict[str, Any]) -> RunReport:
    """
    Validate inputs, build the task graph and run it.

    Parameters
    ----------
    config : dict
        Configuration merged with CLI arguments. Must contain ``genome`` and
        one of ``reads`` / ``reads_file``.

    Returns
    -------
    RunReport
        Outcome of every task; empty for a dry run

    Raises
    ------
    ConfigurationError
        If an input or parameter is invalid, or a tool is missing. Raised
        before any task is scheduled and before anything is written to the
        output directory.
    """
    validate_run_parameters(config)
    genome_fasta = validate_file_exists(config["genome"], "genome")
    lanes = load_lanes(config.get("reads"), config.get("reads_file"))
    validate_lane_files(lanes)
    output_dir = validate_output_directory(config.get("output_dir") or "output")
    base_name = config.get("base_name") or genome_fasta.name.split(".")[0]

    logger.info(
        f"{len(lanes)} read pairs from {len({lane.key.sample for lane in lanes})} samples, "
        f"reference {genome_fasta}"
    )

    executor = TaskExecutor.for_profile(config)
    with Scheduler(executor, fail_fast=bool(config.get("fail_fast"))) as scheduler:
        runner = ToolRunner.from_config(config)
        dry_run = bool(config.get("dry_run"))
        if not dry_run:
            runner.check_tools()

        workspace = Workspace(output_dir, base_name)
        reads = reads_channel(scheduler, config, lanes)
        final = build_pipeline(scheduler, reads, genome_fasta, runner, workspace, config)

        if dry_run:
            for level, names in enumerate(scheduler.plan(), start=1):
                logger.info(f"Level {level}: {', '.join(names)}")
            return RunReport()

        report = scheduler.run()

    results = [item for item in final.snapshot() if isinstance(item, VariantSet)]
    if report.succeeded and results:
        output = workspace.get_output_path(".pass")
        shutil.copyfile(results[0].vcf, output)
        logger.info(f"Final PASS variants written to {output}")
        workspace.cleanup(keep_intermediates=config.get("keep_intermediates", True))
    else:
        for failed in report.failed:
            logger.error(f"Failed task: {failed.label}: {failed.error}")
        logger.error(
            f"Pipeline finished with {len(report.failed)} failed and "
            f"{len(report.skipped)} skipped tasks; intermediates kept in {output_dir}"
        )
    return report
