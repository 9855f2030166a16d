# File: varflow/validators.py
# Location: varflow/varflow/validators.py

"""
Validation module for varflow.

This module provides functions to validate:
- Mandatory parameters (genome, reads or reads manifest)
- Run parameters (window size, executor profile, retries, timeout)
- Read files (existence, non-empty)

All checks run before any task is scheduled and raise ConfigurationError.
"""

import logging
from typing import Any, Dict, Iterable, Optional

from .dataflow.error_handling import ConfigurationError, validate_file_exists
from .models import LaneReads

logger = logging.getLogger("varflow")

EXECUTOR_PROFILES = ("local", "cluster")


def validate_mandatory_parameters(
    genome: Optional[str], reads: Optional[str], reads_file: Optional[str]
) -> None:
    """
    Validate that the mandatory inputs are provided.

    Parameters
    ----------
    genome : str or None
        Reference FASTA.
    reads : str or None
        Glob pattern for paired read files.
    reads_file : str or None
        Tab-delimited read manifest.

    Raises
    ------
    ConfigurationError
        If the genome is missing, or neither or both read sources are given.
    """
    if not genome:
        raise ConfigurationError("A reference genome must be specified via --genome", "genome")

    if not reads and not reads_file:
        raise ConfigurationError("No reads provided. Provide via --reads or --reads_file.", "reads")

    if reads and reads_file:
        raise ConfigurationError("--reads and --reads_file are mutually exclusive", "reads")


def _positive_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


def validate_run_parameters(cfg: Dict[str, Any]) -> None:
    """
    Validate the numeric and profile settings of a run.

    Parameters
    ----------
    cfg : dict
        Merged configuration.

    Raises
    ------
    ConfigurationError
        If a setting is out of range.
    """
    validate_mandatory_parameters(cfg.get("genome"), cfg.get("reads"), cfg.get("reads_file"))

    if not _positive_int(cfg.get("window")):
        raise ConfigurationError(
            f"Window size must be a positive integer, got {cfg.get('window')!r}", "window"
        )

    executor = cfg.get("executor", "local")
    if executor not in EXECUTOR_PROFILES:
        raise ConfigurationError(
            f"Unknown executor profile '{executor}'; choose from {', '.join(EXECUTOR_PROFILES)}",
            "executor",
        )

    max_retries = cfg.get("max_retries", 0) or 0
    if not isinstance(max_retries, int) or max_retries < 0:
        raise ConfigurationError(f"max_retries must be >= 0, got {max_retries!r}", "max-retries")

    timeout = cfg.get("task_timeout")
    if timeout is not None and (not isinstance(timeout, (int, float)) or timeout <= 0):
        raise ConfigurationError(f"Task timeout must be positive, got {timeout!r}", "task-timeout")

    tool_threads = cfg.get("tool_threads", 1)
    if tool_threads is not None and not _positive_int(tool_threads):
        raise ConfigurationError(
            f"tool_threads must be a positive integer, got {tool_threads!r}", "tool_threads"
        )


def validate_lane_files(lanes: Iterable[LaneReads]) -> None:
    """
    Validate that every read file exists and is non-empty.

    Raises
    ------
    ConfigurationError
        On the first missing or empty read file.
    """
    count = 0
    for lane in lanes:
        validate_file_exists(lane.left, "reads")
        validate_file_exists(lane.right, "reads")
        count += 1
    logger.debug(f"Validated read files of {count} lanes")
