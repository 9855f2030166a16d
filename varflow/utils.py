# File: varflow/utils.py
# Location: varflow/varflow/utils.py

"""
Utility functions module.

Provides helper functions for running commands, checking tool availability
and opening possibly gzip-compressed text files.
"""

import gzip
import logging
import shutil
import subprocess
from pathlib import Path
from typing import List, Optional, Union

logger = logging.getLogger("varflow")


def check_external_tools(tools: List[str]) -> List[str]:
    """
    Check which external tools are missing from PATH.

    Parameters
    ----------
    tools : List[str]
        Tool executables (names or paths) to check

    Returns
    -------
    List[str]
        The tools that could not be found; empty if all are available
    """
    missing = []
    for tool in tools:
        if not shutil.which(tool):
            logger.error(f"Required tool not found in PATH: {tool}")
            missing.append(tool)
        else:
            logger.debug(f"Found tool in PATH: {tool}")
    return missing


def smart_open(filename: Union[str, Path], mode: str = "r", encoding: str = "utf-8"):
    """
    Open a file with automatic gzip support based on file extension.

    Parameters
    ----------
    filename : str or Path
        Path to the file
    mode : str
        File opening mode ('r', 'w', 'rt', 'wt', etc.)
    encoding : str
        Text encoding (for text modes)

    Returns
    -------
    file object
        Opened file handle
    """
    filename = str(filename)
    if filename.endswith(".gz"):
        # Ensure text mode for gzip
        if "t" not in mode and "b" not in mode:
            mode = mode + "t"
        return gzip.open(filename, mode, encoding=encoding)
    else:
        if "b" not in mode:
            return open(filename, mode, encoding=encoding)
        else:
            return open(filename, mode)


def run_command(
    cmd: list, output_file: Optional[Union[str, Path]] = None, timeout: Optional[float] = None
) -> str:
    """
    Run a command and write stdout to output_file if provided, else return stdout.

    Parameters
    ----------
    cmd : list of str
        Command and its arguments.
    output_file : str or Path, optional
        Path to a file where stdout should be written. If None,
        returns stdout as a string.
    timeout : float, optional
        Seconds after which the command is killed.

    Returns
    -------
    str
        If output_file is None, returns the command stdout as a string.
        If output_file is provided, returns output_file after completion.

    Raises
    ------
    subprocess.CalledProcessError
        If the command returns a non-zero exit code.
    subprocess.TimeoutExpired
        If the command runs longer than ``timeout``.
    """
    cmd = [str(c) for c in cmd]
    logger.debug("Running command: %s", " ".join(cmd))
    if output_file:
        with open(output_file, "w", encoding="utf-8") as out_f:
            result = subprocess.run(
                cmd, stdout=out_f, stderr=subprocess.PIPE, text=True, timeout=timeout
            )
    else:
        result = subprocess.run(
            cmd, stdout=subprocess.PIPE, stderr=subprocess.PIPE, text=True, timeout=timeout
        )

    if result.returncode != 0:
        logger.error("Command failed: %s\nError: %s", " ".join(cmd), result.stderr)
        raise subprocess.CalledProcessError(result.returncode, cmd, stderr=result.stderr)
    else:
        logger.debug("Command completed successfully.")
        if output_file:
            return str(output_file)
        else:
            return result.stdout
