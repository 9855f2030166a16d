# File: varflow/samples.py
# Location: varflow/varflow/samples.py

"""
Sample ingestion.

Read pairs enter the pipeline either from a glob pattern with a ``{1,2}``
style brace group (``data/*_{1,2}.fq.gz``) or from a tab-delimited manifest
with the columns ``readname``, ``left_fastq`` and ``right_fastq``. Records of
the same sample are numbered as lanes by their position in the input.
"""

import glob
import logging
import re
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

import pandas as pd

from .dataflow.error_handling import ConfigurationError
from .models import LaneKey, LaneReads

logger = logging.getLogger("varflow")

MANIFEST_COLUMNS = ["readname", "left_fastq", "right_fastq"]

_BRACE_RE = re.compile(r"\{([^{}]*)\}")


def assign_lanes(records: Iterable[Tuple[str, Path, Path]]) -> List[LaneReads]:
    """
    Number each record by its position among the records of its sample.

    Lane numbers start at 1 and follow input order, so the same input always
    yields the same lane keys.

    Parameters
    ----------
    records : iterable of (sample, left, right)
        Input records in manifest (or discovery) order

    Returns
    -------
    List[LaneReads]
        One entry per record, in input order

    Raises
    ------
    ConfigurationError
        If a sample name is empty or the same read pair is listed twice
    """
    lanes_seen: Dict[str, int] = {}
    pairs_seen = set()
    result = []
    for sample, left, right in records:
        sample = str(sample).strip()
        if not sample:
            raise ConfigurationError("Read record with an empty sample name", "reads_file")
        pair = (str(left), str(right))
        if pair in pairs_seen:
            raise ConfigurationError(f"Read pair listed twice: {pair[0]}, {pair[1]}", "reads_file")
        pairs_seen.add(pair)
        lane = lanes_seen.get(sample, 0) + 1
        lanes_seen[sample] = lane
        result.append(LaneReads(LaneKey(sample, lane), Path(left), Path(right)))
    return result


def is_manifest_header(row: Mapping[str, str]) -> bool:
    """Whether a manifest row is the optional ``readname ...`` header."""
    return str(row.get("readname", "")).strip().lower() == "readname"


def lane_from_row(row: Mapping[str, str]) -> Tuple[str, Path, Path]:
    """Convert one manifest row (as emitted by ``split_csv``) into a record."""
    try:
        sample, left, right = (str(row[column]).strip() for column in MANIFEST_COLUMNS)
    except KeyError as e:
        raise ConfigurationError(f"Manifest row is missing column {e}", "reads_file")
    return sample, Path(left), Path(right)


def read_pairs_from_glob(pattern: str) -> List[Tuple[str, Path, Path]]:
    """
    Discover paired read files matching a brace-group glob.

    The brace group names the two mates, e.g. ``reads/*_{1,2}.fastq.gz``
    or ``reads/*_R{1,2}_001.fq``. The sample name is the text the file-name
    wildcards matched before the brace group (``S1`` for ``S1_R1_001.fq``).

    Parameters
    ----------
    pattern : str
        Glob pattern with exactly one two-way brace group

    Returns
    -------
    List[Tuple[str, Path, Path]]
        ``(sample, left, right)`` sorted by sample name

    Raises
    ------
    ConfigurationError
        If the pattern has no two-way brace group, matches nothing, or a
        file has no mate
    """
    match = _BRACE_RE.search(pattern)
    alternatives = match.group(1).split(",") if match else []
    if len(alternatives) != 2:
        raise ConfigurationError(
            f"--reads pattern must contain a two-way brace group such as {{1,2}}: {pattern}",
            "reads",
        )

    prefix, suffix = pattern[: match.start()], pattern[match.end() :]
    name_prefix = Path(prefix).name if not prefix.endswith("/") else ""
    wildcards = name_prefix.count("*") + name_prefix.count("?")
    mates: List[Dict[str, Path]] = []
    for alternative in alternatives:
        found = {}
        name_regex = _glob_to_regex(name_prefix) + re.escape(alternative) + _glob_to_regex(suffix)
        for path in sorted(glob.glob(prefix + alternative + suffix)):
            m = re.fullmatch(name_regex, Path(path).name)
            if m is None:
                continue
            # the sample name is what the file-name wildcards matched before the mate tag
            sample = "_".join(m.groups()[:wildcards]) or name_prefix.rstrip("_.-")
            found[sample] = Path(path)
        mates.append(found)

    left, right = mates
    if not left and not right:
        raise ConfigurationError(f"No read files match pattern: {pattern}", "reads")
    unpaired = sorted(set(left) ^ set(right))
    if unpaired:
        raise ConfigurationError(f"Read files without a mate for samples: {unpaired}", "reads")

    pairs = [(sample, left[sample], right[sample]) for sample in sorted(left)]
    logger.info(f"Found {len(pairs)} read pairs matching {pattern}")
    return pairs


def _glob_to_regex(fragment: str) -> str:
    parts = []
    for char in fragment:
        if char == "*":
            parts.append("(.*)")
        elif char == "?":
            parts.append("(.)")
        else:
            parts.append(re.escape(char))
    return "".join(parts)


def read_manifest(manifest: Path) -> List[Tuple[str, Path, Path]]:
    """
    Read a tab-delimited read manifest.

    The manifest has the columns ``readname``, ``left_fastq`` and
    ``right_fastq``; a header row with these names is optional. Lines
    starting with ``#`` are ignored.

    Parameters
    ----------
    manifest : Path
        Path to the manifest

    Returns
    -------
    List[Tuple[str, Path, Path]]
        ``(sample, left, right)`` in manifest order

    Raises
    ------
    ConfigurationError
        If the manifest cannot be parsed, a row lacks a field, or it lists no reads
    """
    try:
        df = pd.read_csv(
            manifest,
            sep="\t",
            header=None,
            names=MANIFEST_COLUMNS,
            dtype=str,
            keep_default_na=False,
            comment="#",
        )
    except (OSError, pd.errors.ParserError, pd.errors.EmptyDataError) as e:
        raise ConfigurationError(f"Cannot read manifest {manifest}: {e}", "reads_file")

    rows = df.fillna("").to_dict(orient="records")
    rows = [row for row in rows if not is_manifest_header(row)]
    records = []
    for number, row in enumerate(rows, start=1):
        if not all(row[column].strip() for column in MANIFEST_COLUMNS):
            raise ConfigurationError(
                f"Manifest {manifest} row {number} does not have three fields", "reads_file"
            )
        records.append(lane_from_row(row))
    if not records:
        raise ConfigurationError(f"Manifest {manifest} lists no reads", "reads_file")
    logger.info(f"Read {len(records)} read pairs from {manifest}")
    return records


def load_lanes(reads: Optional[str] = None, reads_file: Optional[str] = None) -> List[LaneReads]:
    """Discover the run's input records and number them as lanes."""
    if reads_file:
        records = read_manifest(Path(reads_file))
    elif reads:
        records = read_pairs_from_glob(reads)
    else:
        raise ConfigurationError("Either --reads or --reads_file is required", "reads")
    return assign_lanes(records)
