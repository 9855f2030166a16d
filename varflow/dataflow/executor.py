"""
TaskExecutor - Runs task bodies with bounded concurrency.

The executor wraps a thread pool. At most ``max_workers`` task bodies run at
once; further tasks queue inside the pool rather than being rejected. Task
bodies mostly wait on external tools, so threads are sufficient.
"""

import logging
import multiprocessing
import subprocess
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Dict, Optional

from .error_handling import (
    ConfigurationError,
    PipelineError,
    ResourceExhaustion,
    TaskExecutionError,
    retry_on_failure,
)
from .task import Task

logger = logging.getLogger(__name__)

STDERR_TAIL_LINES = 20


def stderr_tail(stderr: Optional[str], lines: int = STDERR_TAIL_LINES) -> str:
    """Return the last ``lines`` lines of a tool's captured diagnostic output."""
    if not stderr:
        return ""
    if isinstance(stderr, bytes):
        stderr = stderr.decode("utf-8", errors="replace")
    return "\n".join(stderr.rstrip().splitlines()[-lines:])


class TaskExecutor:
    """Runs tasks on a bounded pool of worker threads.

    Attributes
    ----------
    max_workers : int
        Maximum number of concurrently running tasks
    max_retries : int
        Extra attempts for a failing task body (0 disables retry)
    retry_delay : float
        Initial delay between attempts in seconds
    """

    def __init__(self, max_workers: int, max_retries: int = 0, retry_delay: float = 1.0):
        """Initialize the executor.

        Parameters
        ----------
        max_workers : int
            Concurrency bound, must be a positive integer
        max_retries : int
            Extra attempts per task on failure (default: no retry)
        retry_delay : float
            Initial delay between attempts in seconds

        Raises
        ------
        ResourceExhaustion
            If the bound is not a positive integer
        """
        if isinstance(max_workers, bool) or not isinstance(max_workers, int) or max_workers < 1:
            raise ResourceExhaustion(max_workers)
        if max_retries < 0:
            raise ConfigurationError(f"max_retries must be >= 0, got {max_retries}", "max-retries")
        self.max_workers = max_workers
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self._pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="varflow-task")
        logger.debug(f"Task executor started with {max_workers} workers")

    @classmethod
    def for_profile(cls, config: Dict[str, Any]) -> "TaskExecutor":
        """Build an executor whose bound follows the selected executor profile.

        The ``local`` profile bounds same-host parallelism by ``threads``
        (default: CPU count); the ``cluster`` profile bounds the number of
        in-flight submitted tasks by ``queue_size``.
        """
        profile = config.get("executor", "local")
        if profile == "local":
            threads = config.get("threads")
            bound = multiprocessing.cpu_count() if threads is None else threads
            parameter = "threads"
        elif profile == "cluster":
            bound = config.get("queue_size", 20)
            parameter = "queueSize"
        else:
            raise ConfigurationError(f"Unknown executor profile '{profile}'", "executor")

        if isinstance(bound, bool) or not isinstance(bound, int) or bound < 1:
            raise ResourceExhaustion(bound, parameter)

        logger.info(f"Executor profile '{profile}': at most {bound} concurrent tasks")
        return cls(
            bound,
            max_retries=int(config.get("max_retries", 0) or 0),
            retry_delay=float(config.get("retry_delay", 1.0)),
        )

    def submit(self, task: Task) -> Future:
        """Queue a READY task; the future resolves to the task's output."""
        return self._pool.submit(self._run, task)

    def _run(self, task: Task) -> Any:
        task.mark_running()
        attempt = self._attempt
        if self.max_retries:
            attempt = retry_on_failure(
                max_attempts=self.max_retries + 1,
                delay=self.retry_delay,
                exceptions=(TaskExecutionError,),
                logger=logger,
            )(attempt)
        return attempt(task)

    def _attempt(self, task: Task) -> Any:
        try:
            return task.node.run(task.inputs, task)
        except subprocess.TimeoutExpired as e:
            raise TaskExecutionError(
                task.label,
                f"timed out after {e.timeout}s",
                stderr_tail=stderr_tail(e.stderr),
                reason="timeout",
            ) from e
        except subprocess.CalledProcessError as e:
            raise TaskExecutionError(
                task.label,
                f"command exited with status {e.returncode}",
                exit_code=e.returncode,
                stderr_tail=stderr_tail(e.stderr or e.output),
                reason="exit",
            ) from e
        except PipelineError:
            raise
        except Exception as e:
            raise TaskExecutionError(task.label, str(e), reason="error") from e

    def shutdown(self, wait: bool = True) -> None:
        """Stop accepting tasks and release the worker threads."""
        self._pool.shutdown(wait=wait)

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.shutdown()

    def __repr__(self) -> str:
        """Return string representation of the executor."""
        return f"TaskExecutor(max_workers={self.max_workers}, max_retries={self.max_retries})"
