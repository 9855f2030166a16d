"""
Error taxonomy and error handling utilities for the dataflow engine.

This module provides:
- Custom exception classes for configuration, join, task and resource errors
- A retry decorator usable as an opt-in task retry policy
- Path validation helpers used before any task is scheduled
"""

import logging
import time
from functools import wraps
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Union

logger = logging.getLogger(__name__)


class PipelineError(Exception):
    """Base exception for all pipeline errors."""

    def __init__(self, message: str, task: Optional[str] = None, details: Optional[Dict] = None):
        """Initialize pipeline error.

        Parameters
        ----------
        message : str
            Error message
        task : str, optional
            Task where the error occurred
        details : dict, optional
            Additional error details
        """
        super().__init__(message)
        self.task = task
        self.details = details or {}


class ConfigurationError(PipelineError):
    """Raised when a mandatory input is missing or invalid. Aborts the run before scheduling."""

    def __init__(self, message: str, parameter: Optional[str] = None):
        """Initialize configuration error."""
        super().__init__(message, None, {"parameter": parameter})
        self.parameter = parameter


class ToolNotFoundError(ConfigurationError):
    """Raised when a required external tool is not found."""

    def __init__(self, tool: str):
        """Initialize tool not found error."""
        super().__init__(f"Required tool '{tool}' not found in PATH", parameter=tool)
        self.details["tool"] = tool


class JoinMismatchError(PipelineError):
    """Raised when a join key never finds its counterpart before both sides complete."""

    def __init__(self, key: Any, side: str, reason: str = "unmatched"):
        """Initialize join mismatch error.

        Parameters
        ----------
        key : Any
            The key that could not be paired
        side : str
            Which side of the join held the key ("left" or "right")
        reason : str
            "unmatched" or "duplicate"
        """
        if reason == "duplicate":
            message = f"Join key {key!r} appeared more than once on the {side} side"
        else:
            message = f"Join key {key!r} present only on the {side} side"
        super().__init__(message, None, {"key": key, "side": side, "reason": reason})
        self.key = key
        self.side = side
        self.reason = reason

    def __reduce__(self):
        """Custom pickling so the error survives process boundaries."""
        return (self.__class__, (self.key, self.side, self.reason), self.__dict__)


class TaskExecutionError(PipelineError):
    """Raised when a task body fails.

    ``reason`` distinguishes how the task failed: ``"exit"`` for a non-zero
    exit status of an external tool, ``"timeout"`` when the configured task
    timeout expired, ``"error"`` for an exception raised by an in-process
    body, and ``"aborted"`` when fail-fast mode stopped scheduling.
    """

    def __init__(
        self,
        task: str,
        message: str,
        exit_code: Optional[int] = None,
        stderr_tail: str = "",
        reason: str = "exit",
    ):
        """Initialize task execution error."""
        super().__init__(
            f"Task '{task}' failed: {message}",
            task,
            {"exit_code": exit_code, "stderr_tail": stderr_tail, "reason": reason},
        )
        self.message = message
        self.exit_code = exit_code
        self.stderr_tail = stderr_tail
        self.reason = reason

    def __reduce__(self):
        """Custom pickling so the error survives process boundaries."""
        return (
            self.__class__,
            (self.task, self.message, self.exit_code, self.stderr_tail, self.reason),
            self.__dict__,
        )


class ResourceExhaustion(ConfigurationError):
    """Raised when the configured concurrency bound itself is invalid.

    Requesting more tasks than the bound is not an error: those tasks queue.
    """

    def __init__(self, bound: Any, parameter: str = "threads"):
        """Initialize resource exhaustion error."""
        super().__init__(
            f"Invalid concurrency bound {parameter}={bound!r}; must be a positive integer",
            parameter=parameter,
        )
        self.bound = bound


def retry_on_failure(
    max_attempts: int = 3,
    delay: float = 1.0,
    backoff: float = 2.0,
    exceptions: tuple = (Exception,),
    logger: Optional[logging.Logger] = None,
) -> Callable:
    """Decorator to retry function on failure with exponential backoff.

    Parameters
    ----------
    max_attempts : int
        Maximum number of attempts
    delay : float
        Initial delay between attempts in seconds
    backoff : float
        Backoff multiplier for delay
    exceptions : tuple
        Tuple of exceptions to catch
    logger : logging.Logger, optional
        Logger for retry messages

    Returns
    -------
    Callable
        Decorated function
    """

    def decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(*args, **kwargs):
            _logger = logger or logging.getLogger(func.__module__)
            current_delay = delay

            for attempt in range(max_attempts):
                try:
                    return func(*args, **kwargs)
                except exceptions as e:
                    if attempt == max_attempts - 1:
                        _logger.error(f"Failed after {max_attempts} attempts: {e}")
                        raise

                    _logger.warning(
                        f"Attempt {attempt + 1} failed: {e}. "
                        f"Retrying in {current_delay:.1f} seconds..."
                    )
                    time.sleep(current_delay)
                    current_delay *= backoff

        return wrapper

    return decorator


def validate_file_exists(file_path: Union[str, Path], parameter: str) -> Path:
    """Validate that an input file exists, is a regular file and is not empty.

    Parameters
    ----------
    file_path : str or Path
        Path to validate
    parameter : str
        Name of the option that supplied the path, for error reporting

    Returns
    -------
    Path
        Validated path object

    Raises
    ------
    ConfigurationError
        If the file is missing, not a file, or empty
    """
    path = Path(file_path)

    if not path.exists():
        raise ConfigurationError(f"Required file not found: {path}", parameter)

    if not path.is_file():
        raise ConfigurationError(f"Expected a file for --{parameter}: {path}", parameter)

    if path.stat().st_size == 0:
        raise ConfigurationError(f"File {path} is empty", parameter)

    return path


def validate_output_directory(output_dir: Union[str, Path], create: bool = True) -> Path:
    """Validate output directory.

    Parameters
    ----------
    output_dir : str or Path
        Output directory path
    create : bool
        Whether to create directory if it doesn't exist

    Returns
    -------
    Path
        Validated directory path

    Raises
    ------
    ConfigurationError
        If the path is not a directory, or cannot be created or written to
    """
    path = Path(output_dir)

    if path.exists():
        if not path.is_dir():
            raise ConfigurationError(f"Output path is not a directory: {path}", "output-dir")
    elif create:
        try:
            path.mkdir(parents=True, exist_ok=True)
        except PermissionError:
            raise ConfigurationError(f"Cannot create directory: {path}", "output-dir")
    else:
        raise ConfigurationError(f"Output directory does not exist: {path}", "output-dir")

    # Check if writable
    test_file = path / ".write_test"
    try:
        test_file.touch()
        test_file.unlink()
    except PermissionError:
        raise ConfigurationError(f"Cannot write to directory: {path}", "output-dir")

    return path


class Failure:
    """Failure token carried through a channel in place of a value.

    A failure is never dropped by an operator: every operator forwards it to
    its output so that it reaches all transitive dependents of the element
    that failed, and nothing else.

    Attributes
    ----------
    error : BaseException
        The root cause
    key : Any
        Lineage key of the failed element, used to pair it in keyed joins
    """

    __slots__ = ("error", "key")

    def __init__(self, error: BaseException, key: Any = None):
        self.error = error
        self.key = key

    def __eq__(self, other) -> bool:
        return (
            isinstance(other, Failure) and self.error is other.error and self.key == other.key
        )

    def __hash__(self) -> int:
        return hash((id(self.error), self.key))

    def __repr__(self) -> str:
        return f"Failure(key={self.key!r}, error={self.error!r})"
