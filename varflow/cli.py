"""Command-line interface for varflow."""

import argparse
import datetime
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from .config import load_config
from .dataflow.error_handling import ConfigurationError
from .pipeline import run_pipeline
from .version import __version__

logger = logging.getLogger("varflow")

LOG_LEVEL_MAP = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARN": logging.WARNING,
    "ERROR": logging.ERROR,
}

# CLI option -> configuration key
_CONFIG_OVERRIDES = {
    "threads": "threads",
    "window": "window",
    "queueSize": "queue_size",
    "executor": "executor",
    "task_timeout": "task_timeout",
    "max_retries": "max_retries",
    "tool_threads": "tool_threads",
}

_TOOL_OPTIONS = ("gatk", "bwa", "samtools", "freebayes")


def create_parser() -> argparse.ArgumentParser:
    """Create and return the argument parser for the varflow CLI."""
    parser = argparse.ArgumentParser(
        prog="varflow",
        description="varflow: call and filter variants from paired-end reads.",
    )

    # General Options
    general_group = parser.add_argument_group("General Options")
    general_group.add_argument(
        "--version",
        action="version",
        version=f"varflow {__version__}",
        help="Show the current version and exit",
    )
    general_group.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARN", "ERROR"],
        default="INFO",
        help="Set the logging level",
    )
    general_group.add_argument(
        "--log-file", help="Path to a file to write logs to (in addition to stderr)."
    )
    general_group.add_argument(
        "-c",
        "--config",
        help="Path to configuration file",
        default=None,
    )

    # Core Input/Output
    io_group = parser.add_argument_group("Core Input/Output")
    io_group.add_argument("--genome", help="Reference genome FASTA (mandatory)")
    reads_group = io_group.add_mutually_exclusive_group()
    reads_group.add_argument(
        "--reads",
        help="Glob pattern for paired reads with a two-way brace group, e.g. 'data/*_{1,2}.fq.gz'",
    )
    reads_group.add_argument(
        "--reads_file",
        help="Tab-delimited manifest with columns readname, left_fastq, right_fastq",
    )
    io_group.add_argument(
        "--output-dir",
        help="Directory to store intermediate and final output files",
        default="output",
    )
    io_group.add_argument(
        "--base-name",
        help="Base name for final output files (default: genome file name without extension)",
    )
    io_group.add_argument(
        "--remove-intermediates",
        action="store_true",
        default=False,
        help="Delete the numbered stage directories after a successful run.",
    )

    # Performance & Processing
    performance_group = parser.add_argument_group("Performance & Processing")
    performance_group.add_argument(
        "--threads",
        type=int,
        help="Maximum number of concurrent tasks with the local executor (default: CPU count)",
    )
    performance_group.add_argument(
        "--window",
        type=int,
        help="Size of the genomic windows variants are called in (default: 100000)",
    )
    performance_group.add_argument(
        "--queueSize",
        type=int,
        help="Maximum number of in-flight tasks with the cluster executor (default: 20)",
    )
    performance_group.add_argument(
        "--executor",
        choices=["local", "cluster"],
        help="Executor profile (default: local)",
    )
    performance_group.add_argument(
        "--tool-threads",
        type=int,
        help="Threads given to bwa and samtools within one task (default: 1)",
    )
    performance_group.add_argument(
        "--task-timeout",
        type=float,
        help="Seconds after which an external tool is killed (default: no limit)",
    )
    performance_group.add_argument(
        "--max-retries",
        type=int,
        help="Retry a failed task this many times (default: 0)",
    )
    performance_group.add_argument(
        "--fail-fast",
        action="store_true",
        default=False,
        help="Start no new task after the first failure",
    )
    performance_group.add_argument(
        "--dry-run",
        action="store_true",
        default=False,
        help="Validate inputs and print the task plan without running anything",
    )

    # Tool paths
    tools_group = parser.add_argument_group("Tool Paths")
    for tool in _TOOL_OPTIONS:
        tools_group.add_argument(f"--{tool}", help=f"Path to the {tool} executable")

    return parser


def parse_args(args_list: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command line arguments.

    Parameters
    ----------
    args_list : list of str, optional
        Arguments to parse; defaults to ``sys.argv[1:]``

    Returns
    -------
    argparse.Namespace
        Parsed arguments
    """
    parser = create_parser()
    return parser.parse_args(args_list)


def build_config(args: argparse.Namespace) -> Dict[str, Any]:
    """Load the configuration and apply command-line overrides (CLI takes precedence)."""
    cfg: Dict[str, Any] = load_config(args.config)

    for option, key in _CONFIG_OVERRIDES.items():
        value = getattr(args, option, None)
        if value is not None:
            cfg[key] = value

    tools = dict(cfg.get("tools", {}))
    for tool in _TOOL_OPTIONS:
        path = getattr(args, tool, None)
        if path:
            tools[tool] = path
    cfg["tools"] = tools

    if args.fail_fast:
        cfg["fail_fast"] = True
    if args.remove_intermediates:
        cfg["keep_intermediates"] = False

    cfg["genome"] = args.genome
    cfg["reads"] = args.reads
    cfg["reads_file"] = args.reads_file
    cfg["output_dir"] = args.output_dir
    cfg["base_name"] = args.base_name
    cfg["dry_run"] = args.dry_run
    return cfg


def _configure_logging(args: argparse.Namespace) -> None:
    logging.getLogger("varflow").setLevel(LOG_LEVEL_MAP[args.log_level])

    # If a log file is specified, add a file handler
    if args.log_file:
        log_file_path = Path(args.log_file)
        log_file_path.parent.mkdir(parents=True, exist_ok=True)

        fh = logging.FileHandler(args.log_file)
        fh.setLevel(LOG_LEVEL_MAP[args.log_level])
        fh.setFormatter(
            logging.Formatter(
                "%(asctime)s [%(levelname)s] %(message)s", datefmt="%Y-%m-%d %H:%M:%S"
            )
        )
        logger.addHandler(fh)
        logger.debug(f"Logging to file enabled: {args.log_file}")


def main(argv: Optional[List[str]] = None) -> int:
    """Run main entry point for the varflow CLI.

    Steps:
        1. Parse arguments; print usage if mandatory inputs are missing.
        2. Configure logging and load config.
        3. Update configuration with CLI parameters.
        4. Run the pipeline.

    Returns
    -------
    int
        0 on success (and when only usage was printed), 1 on a configuration
        error or when any task failed
    """
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stderr,
    )

    parser = create_parser()
    args: argparse.Namespace = parser.parse_args(argv)

    # Missing mandatory inputs print usage without signalling an error
    if not args.genome or not (args.reads or args.reads_file):
        parser.print_usage()
        return 0

    _configure_logging(args)
    logger.debug(f"CLI arguments: {args}")

    start_time = datetime.datetime.now()
    logger.info(f"Run started at {start_time.isoformat()}")

    try:
        cfg = build_config(args)
    except (FileNotFoundError, ValueError) as e:
        logger.error(f"Configuration error: {e}")
        return 1
    logger.debug(f"Configuration loaded: {cfg}")

    try:
        report = run_pipeline(cfg)
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        return 1

    elapsed = datetime.datetime.now() - start_time
    if not report.succeeded:
        logger.error(f"Run failed after {elapsed}")
        return 1
    logger.info(f"Run finished in {elapsed}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
