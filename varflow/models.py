# File: varflow/models.py
# Location: varflow/varflow/models.py

"""
Typed records flowing through the pipeline.

Every per-lane and per-sample artifact carries its key explicitly, exposed as
``key``; stages never recover identity from file names.
"""

import re
from dataclasses import dataclass
from pathlib import Path

_REGION_RE = re.compile(r"^(?P<contig>.+):(?P<start>\d+)-(?P<end>\d+)$")


@dataclass(frozen=True, order=True)
class LaneKey:
    """Identity of one input read-pair record."""

    sample: str
    lane: int

    @property
    def read_group(self) -> str:
        return f"{self.sample}.{self.lane}"

    def __str__(self) -> str:
        return self.read_group


@dataclass(frozen=True)
class LaneReads:
    """One paired-end input record."""

    key: LaneKey
    left: Path
    right: Path


@dataclass(frozen=True)
class GenomeReference:
    """Reference FASTA plus derived index artifacts. Read-only once created."""

    fasta: Path
    fai: Path
    dictionary: Path
    bwa_prefix: Path


@dataclass(frozen=True)
class UnmappedAlignment:
    key: LaneKey
    bam: Path


@dataclass(frozen=True)
class MarkedAlignment:
    key: LaneKey
    bam: Path
    metrics: Path


@dataclass(frozen=True)
class CleanedReads:
    """Interleaved FASTQ re-extracted from the adapter-marked BAM."""

    key: LaneKey
    fastq: Path


@dataclass(frozen=True)
class MappedAlignment:
    key: LaneKey
    sam: Path


@dataclass(frozen=True)
class LaneAlignment:
    """Aligned reads merged with the unmapped BAM's metadata, one per lane."""

    key: LaneKey
    bam: Path


@dataclass(frozen=True)
class MergedAlignment:
    """One coordinate-sorted, indexed BAM per sample."""

    sample: str
    bam: Path
    bai: Path

    @property
    def key(self) -> str:
        return self.sample


@dataclass(frozen=True)
class GenomicWindow:
    """A 1-based, inclusive genomic interval."""

    contig: str
    start: int
    end: int

    @property
    def region(self) -> str:
        return f"{self.contig}:{self.start}-{self.end}"

    @property
    def key(self) -> str:
        return self.region

    @property
    def length(self) -> int:
        return self.end - self.start + 1

    @classmethod
    def parse(cls, region: str) -> "GenomicWindow":
        """Parse ``contig:start-end``."""
        match = _REGION_RE.match(region.strip())
        if not match:
            raise ValueError(f"Not a genomic region: {region!r}")
        start, end = int(match["start"]), int(match["end"])
        if start < 1 or end < start:
            raise ValueError(f"Invalid interval in region {region!r}")
        return cls(match["contig"], start, end)

    def __str__(self) -> str:
        return self.region


@dataclass(frozen=True)
class WindowCalls:
    window: GenomicWindow
    vcf: Path

    @property
    def key(self) -> str:
        return self.window.region


@dataclass(frozen=True)
class VariantSet:
    vcf: Path


@dataclass(frozen=True)
class DepthThreshold:
    """DP filter threshold: mean + k standard deviations of per-variant depth."""

    value: float
    mean: float
    stddev: float
    count: int
