# File: varflow/genome.py
# Location: varflow/varflow/genome.py

"""
Genome partitioning module.

Splits each contig of the reference into consecutive windows of a fixed size.
The windows of a contig cover it completely and without overlap; the last
window is truncated at the contig end.
"""

import logging
import math
from pathlib import Path
from typing import Iterable, List, Tuple

import pandas as pd

from .models import GenomicWindow

logger = logging.getLogger("varflow")


def read_contig_lengths(fai_path: Path) -> List[Tuple[str, int]]:
    """
    Read contig names and lengths from a samtools ``.fai`` index.

    Parameters
    ----------
    fai_path : Path
        Path to the FASTA index

    Returns
    -------
    List[Tuple[str, int]]
        ``(contig, length)`` in index order
    """
    df = pd.read_csv(fai_path, sep="\t", header=None, dtype={0: str})
    return [(str(contig), int(length)) for contig, length in zip(df[0], df[1])]


def make_windows(contig_lengths: Iterable[Tuple[str, int]], window_size: int) -> List[GenomicWindow]:
    """
    Partition contigs into windows of ``window_size`` bases.

    A contig of length L yields ceil(L / window_size) windows
    ``[1, w], [w+1, 2w], ...``, the last ending at L.

    Parameters
    ----------
    contig_lengths : iterable of (contig, length)
        Contigs in genome order
    window_size : int
        Window size in bases

    Returns
    -------
    List[GenomicWindow]
        Windows in genome order

    Raises
    ------
    ValueError
        If the window size is not positive
    """
    if window_size < 1:
        raise ValueError(f"Window size must be a positive integer, got {window_size}")

    windows = []
    for contig, length in contig_lengths:
        count = math.ceil(length / window_size)
        for i in range(count):
            start = i * window_size + 1
            end = min((i + 1) * window_size, length)
            windows.append(GenomicWindow(contig, start, end))
    return windows


def write_windows(windows: Iterable[GenomicWindow], output_file: Path) -> Path:
    """Write one ``contig:start-end`` region per line."""
    count = 0
    with open(output_file, "w", encoding="utf-8") as fh:
        for window in windows:
            fh.write(f"{window.region}\n")
            count += 1
    logger.debug(f"Wrote {count} windows to {output_file}")
    return output_file


def window_sort_key(window: GenomicWindow, contig_order: List[str]) -> Tuple[int, int]:
    """Order windows by contig position in the genome, then by start."""
    return contig_order.index(window.contig), window.start
