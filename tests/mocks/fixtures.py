"""Test fixtures and factory functions."""

from pathlib import Path
from typing import Dict, List, Optional, Tuple


def create_test_fasta(path: Path, contigs: Optional[Dict[str, int]] = None) -> Path:
    """Write a FASTA with the given contig lengths (default: chr1 of 150000 bp)."""
    contigs = contigs or {"chr1": 150000}
    with open(path, "w", encoding="utf-8") as fh:
        for name, length in contigs.items():
            fh.write(f">{name}\n")
            sequence = "ACGT" * (length // 4) + "ACGT"[: length % 4]
            for i in range(0, length, 60):
                fh.write(sequence[i : i + 60] + "\n")
    return path


def create_test_reads(
    directory: Path, samples: Dict[str, int]
) -> List[Tuple[str, Path, Path]]:
    """Write one small FASTQ pair per sample lane.

    Parameters
    ----------
    directory : Path
        Where to write the reads
    samples : dict
        Sample name -> number of lanes

    Returns
    -------
    list of (sample, left, right)
        Records in sample, then lane order
    """
    records = []
    directory.mkdir(parents=True, exist_ok=True)
    for sample, lanes in samples.items():
        for lane in range(1, lanes + 1):
            pair = []
            for mate in (1, 2):
                path = directory / f"{sample}_L{lane}_{mate}.fq"
                path.write_text(f"@{sample}.{lane}/{mate}\nACGT\n+\nIIII\n", encoding="utf-8")
                pair.append(path)
            records.append((sample, pair[0], pair[1]))
    return records


def create_test_manifest(
    path: Path, records: List[Tuple[str, Path, Path]], header: bool = True
) -> Path:
    """Write a tab-delimited read manifest."""
    with open(path, "w", encoding="utf-8") as fh:
        if header:
            fh.write("readname\tleft_fastq\tright_fastq\n")
        for sample, left, right in records:
            fh.write(f"{sample}\t{left}\t{right}\n")
    return path


def create_test_vcf(path: Path, records: List[Tuple[str, int, int]], header: bool = True) -> Path:
    """Write a VCF with one SNP per ``(contig, position, depth)``."""
    with open(path, "w", encoding="utf-8") as fh:
        if header:
            fh.write("##fileformat=VCFv4.2\n")
            fh.write("#CHROM\tPOS\tID\tREF\tALT\tQUAL\tFILTER\tINFO\n")
        for contig, position, depth in records:
            fh.write(f"{contig}\t{position}\t.\tA\tG\t50\t.\tDP={depth}\n")
    return path
