"""Tests for sample ingestion and lane numbering."""

from pathlib import Path

import pytest

from tests.mocks import create_test_manifest, create_test_reads
from varflow.dataflow import ConfigurationError
from varflow.models import LaneKey
from varflow.samples import (
    assign_lanes,
    lane_from_row,
    load_lanes,
    read_manifest,
    read_pairs_from_glob,
)


class TestAssignLanes:
    """Test positional lane numbering."""

    def test_lanes_numbered_per_sample(self):
        """Lanes count from 1 within each sample, in input order."""
        records = [
            ("S1", "a_1.fq", "a_2.fq"),
            ("S2", "b_1.fq", "b_2.fq"),
            ("S1", "c_1.fq", "c_2.fq"),
        ]
        lanes = assign_lanes(records)
        assert [lane.key for lane in lanes] == [
            LaneKey("S1", 1),
            LaneKey("S2", 1),
            LaneKey("S1", 2),
        ]
        assert lanes[2].left == Path("c_1.fq")
        assert lanes[2].key.read_group == "S1.2"

    def test_deterministic(self):
        """The same input always yields the same keys."""
        records = [("S1", f"{i}_1.fq", f"{i}_2.fq") for i in range(4)]
        assert assign_lanes(records) == assign_lanes(list(records))

    def test_keys_are_unique(self):
        """No two records share a lane key."""
        records = [(f"S{i % 2}", f"{i}_1.fq", f"{i}_2.fq") for i in range(6)]
        keys = [lane.key for lane in assign_lanes(records)]
        assert len(keys) == len(set(keys))

    def test_duplicate_pair(self):
        """Listing the same read pair twice is a configuration error."""
        with pytest.raises(ConfigurationError, match="twice"):
            assign_lanes([("S1", "a_1.fq", "a_2.fq"), ("S2", "a_1.fq", "a_2.fq")])

    def test_empty_sample_name(self):
        """A blank sample name is a configuration error."""
        with pytest.raises(ConfigurationError):
            assign_lanes([("  ", "a_1.fq", "a_2.fq")])


class TestManifest:
    """Test manifest parsing."""

    def test_read_manifest_with_header(self, tmp_path):
        """The optional header row is skipped."""
        records = create_test_reads(tmp_path / "reads", {"S1": 2, "S2": 1})
        manifest = create_test_manifest(tmp_path / "reads.tsv", records)
        assert read_manifest(manifest) == records

    def test_read_manifest_without_header(self, tmp_path):
        """A manifest without a header row."""
        records = create_test_reads(tmp_path / "reads", {"S1": 1})
        manifest = create_test_manifest(tmp_path / "reads.tsv", records, header=False)
        assert read_manifest(manifest) == records

    def test_sample_names_stay_strings(self, tmp_path):
        """Numeric-looking sample names are not converted."""
        manifest = tmp_path / "reads.tsv"
        manifest.write_text("007\ta_1.fq\ta_2.fq\n")
        ((sample, _, _),) = read_manifest(manifest)
        assert sample == "007"

    def test_missing_field(self, tmp_path):
        """A row without a right mate is rejected."""
        manifest = tmp_path / "reads.tsv"
        manifest.write_text("S1\ta_1.fq\n")
        with pytest.raises(ConfigurationError):
            read_manifest(manifest)

    def test_empty_manifest(self, tmp_path):
        """A manifest with only a header lists no reads."""
        manifest = tmp_path / "reads.tsv"
        manifest.write_text("readname\tleft_fastq\tright_fastq\n")
        with pytest.raises(ConfigurationError, match="no reads"):
            read_manifest(manifest)

    def test_lane_from_row(self):
        """A split_csv row converts into a record."""
        row = {"readname": "S1", "left_fastq": "a_1.fq", "right_fastq": "a_2.fq"}
        assert lane_from_row(row) == ("S1", Path("a_1.fq"), Path("a_2.fq"))
        with pytest.raises(ConfigurationError):
            lane_from_row({"readname": "S1"})


class TestGlob:
    """Test glob pairing."""

    def test_pairs_by_brace_group(self, tmp_path):
        """Mates are paired by the brace alternatives and named by the wildcard."""
        for sample in ("S2", "S1"):
            for mate in (1, 2):
                (tmp_path / f"{sample}_{mate}.fq.gz").write_text("x")
        pairs = read_pairs_from_glob(str(tmp_path / "*_{1,2}.fq.gz"))
        assert pairs == [
            ("S1", tmp_path / "S1_1.fq.gz", tmp_path / "S1_2.fq.gz"),
            ("S2", tmp_path / "S2_1.fq.gz", tmp_path / "S2_2.fq.gz"),
        ]

    def test_missing_mate(self, tmp_path):
        """A file without its mate is reported."""
        (tmp_path / "S1_1.fq").write_text("x")
        with pytest.raises(ConfigurationError, match="without a mate"):
            read_pairs_from_glob(str(tmp_path / "*_{1,2}.fq"))

    def test_no_match(self, tmp_path):
        """A pattern matching nothing is reported."""
        with pytest.raises(ConfigurationError, match="No read files"):
            read_pairs_from_glob(str(tmp_path / "*_{1,2}.fq"))

    def test_requires_brace_group(self, tmp_path):
        """A pattern without a two-way brace group is rejected."""
        with pytest.raises(ConfigurationError, match="brace group"):
            read_pairs_from_glob(str(tmp_path / "*.fq"))


class TestLoadLanes:
    """Test input discovery."""

    def test_manifest_takes_lanes_in_order(self, tmp_path):
        """Lanes from a manifest follow manifest order."""
        records = create_test_reads(tmp_path / "reads", {"S1": 2})
        manifest = create_test_manifest(tmp_path / "reads.tsv", records)
        lanes = load_lanes(reads_file=str(manifest))
        assert [lane.key.read_group for lane in lanes] == ["S1.1", "S1.2"]

    def test_requires_a_source(self):
        """Neither a glob nor a manifest."""
        with pytest.raises(ConfigurationError):
            load_lanes()
