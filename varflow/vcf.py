# File: varflow/vcf.py
# Location: varflow/varflow/vcf.py

"""
VCF aggregation module.

Merges per-window call sets into a single VCF and derives the depth (DP)
threshold used by the final filtering step.
"""

import logging
import re
from pathlib import Path
from typing import Iterable, List, Optional

import pandas as pd

from .models import DepthThreshold
from .utils import smart_open

logger = logging.getLogger("varflow")

_DP_RE = re.compile(r"(?:^|;)DP=([0-9.eE+-]+)(?:;|$)")


def _header_lines(vcf: Path) -> List[str]:
    header = []
    with smart_open(vcf, "r") as fh:
        for line in fh:
            if line.startswith("#"):
                header.append(line)
    return header


def merge_vcfs(vcf_files: Iterable[Path], output_file: Path) -> Path:
    """
    Concatenate VCF files, keeping the header of the first file only.

    The header is taken from the first input that has any and written before
    all data lines; header lines of other inputs are dropped. Data lines of
    all inputs follow, in input order.

    Parameters
    ----------
    vcf_files : iterable of Path
        Per-window VCFs in the order their records should appear
    output_file : Path
        Destination of the merged VCF

    Returns
    -------
    Path
        The merged VCF
    """
    vcf_files = list(vcf_files)
    header: List[str] = []
    for vcf in vcf_files:
        header = _header_lines(vcf)
        if header:
            break

    records = 0
    with open(output_file, "w", encoding="utf-8") as out:
        out.writelines(header)
        for vcf in vcf_files:
            with smart_open(vcf, "r") as fh:
                for line in fh:
                    if line.startswith("#") or not line.strip():
                        continue
                    out.write(line if line.endswith("\n") else line + "\n")
                    records += 1
    logger.info(f"Merged {records} variant records into {output_file}")
    return output_file


def extract_depths(vcf_file: Path) -> List[float]:
    """Return the INFO ``DP`` value of every record that has one, in file order."""
    depths = []
    with smart_open(vcf_file, "r") as fh:
        for line in fh:
            if line.startswith("#") or not line.strip():
                continue
            fields = line.rstrip("\n").split("\t")
            if len(fields) < 8:
                continue
            match = _DP_RE.search(fields[7])
            if match:
                depths.append(float(match.group(1)))
    return depths


def depth_threshold(
    depths: Iterable[float], sd_multiplier: float = 5.0, decimals: Optional[int] = 2
) -> DepthThreshold:
    """
    Compute the DP filter threshold ``mean + sd_multiplier * stddev``.

    The standard deviation is the population standard deviation (ddof=0).
    The value is rounded to ``decimals`` places; pass None to keep it exact.

    Parameters
    ----------
    depths : iterable of float
        Per-variant depths
    sd_multiplier : float
        Number of standard deviations above the mean (default 5)
    decimals : int or None
        Rounding of the threshold (default 2)

    Returns
    -------
    DepthThreshold
        Threshold with the statistics it was derived from

    Raises
    ------
    ValueError
        If there are no depths
    """
    series = pd.Series(list(depths), dtype="float64")
    if series.empty:
        raise ValueError("Cannot compute a depth threshold from an empty variant set")
    mean = float(series.mean())
    stddev = float(series.std(ddof=0))
    value = mean + sd_multiplier * stddev
    if decimals is not None:
        value = round(value, decimals)
    return DepthThreshold(value=value, mean=mean, stddev=stddev, count=int(series.size))
