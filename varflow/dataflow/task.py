"""
Task - Task nodes and the per-task state machine.

A TaskNode is the unit the pipeline is wired from (one per stage, e.g. read
preparation or window calling). Each element reaching a node through
``Channel.process`` becomes a Task that walks the state machine

    PENDING -> READY -> RUNNING -> COMPLETED | FAILED
    PENDING -> SKIPPED

where SKIPPED marks a dependent of a failed task that is never executed.
"""

import logging
import threading
import time
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Callable, Dict, Optional, Set

logger = logging.getLogger(__name__)


class TaskState(Enum):
    """Lifecycle states of a task."""

    PENDING = "pending"
    READY = "ready"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


_TRANSITIONS: Dict[TaskState, Set[TaskState]] = {
    TaskState.PENDING: {TaskState.READY, TaskState.SKIPPED},
    TaskState.READY: {TaskState.RUNNING, TaskState.FAILED},
    TaskState.RUNNING: {TaskState.COMPLETED, TaskState.FAILED},
    TaskState.COMPLETED: set(),
    TaskState.FAILED: set(),
    TaskState.SKIPPED: set(),
}


class TaskNode(ABC):
    """Abstract base class for a node of the task graph.

    Subclasses declare a unique ``name`` and implement ``run``, which receives
    one input element and returns the element to emit downstream. Bodies run
    on executor worker threads and must only write to paths they own.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique identifier for the node.

        Returns
        -------
        str
            The node name used for dependency tracking and logging
        """
        pass

    @property
    def description(self) -> str:
        """Human-readable description for logging."""
        return f"Task node: {self.name}"

    @abstractmethod
    def run(self, inputs: Any, task: "Task") -> Any:
        """Execute the task body.

        Parameters
        ----------
        inputs : Any
            The element that triggered this task
        task : Task
            The task record, for its label and index

        Returns
        -------
        Any
            The output element
        """
        pass

    def __repr__(self) -> str:
        """Return string representation of the node."""
        return f"{self.__class__.__name__}(name='{self.name}')"


class FunctionNode(TaskNode):
    """Task node wrapping a plain callable of one argument."""

    def __init__(self, name: str, fn: Callable[[Any], Any]):
        self._name = name
        self._fn = fn

    @property
    def name(self) -> str:
        return self._name

    def run(self, inputs: Any, task: "Task") -> Any:
        return self._fn(inputs)


class Task:
    """One execution of a TaskNode for one input element.

    Attributes
    ----------
    node : TaskNode
        The node this task executes
    index : int
        Position of the input element in the node's input stream (0-based)
    inputs : Any
        The input element
    key : Any
        Lineage key of the input element
    state : TaskState
        Current lifecycle state
    error : BaseException or None
        Failure cause for FAILED and SKIPPED tasks
    output : Any
        Output element of a COMPLETED task
    """

    def __init__(self, node: TaskNode, index: int, inputs: Any, key: Any = None):
        self.node = node
        self.index = index
        self.inputs = inputs
        self.key = key
        self.state = TaskState.PENDING
        self.error: Optional[BaseException] = None
        self.output: Any = None
        self.started_at: Optional[float] = None
        self.finished_at: Optional[float] = None
        self._lock = threading.Lock()

    @property
    def label(self) -> str:
        """Name of the task as shown in logs, e.g. ``fastq_to_sam (S1.2)``."""
        if self.key is not None:
            return f"{self.node.name} ({self.key})"
        return f"{self.node.name} #{self.index + 1}"

    @property
    def elapsed(self) -> float:
        """Seconds spent running, 0.0 if the task never ran."""
        if self.started_at is None or self.finished_at is None:
            return 0.0
        return self.finished_at - self.started_at

    def _transition(self, new_state: TaskState) -> None:
        with self._lock:
            if new_state not in _TRANSITIONS[self.state]:
                raise RuntimeError(
                    f"Invalid task transition for {self.label}: "
                    f"{self.state.value} -> {new_state.value}"
                )
            self.state = new_state
        logger.debug(f"Task {self.label}: {new_state.value}")

    def mark_ready(self) -> None:
        """All inputs are available; the task is handed to the executor."""
        self._transition(TaskState.READY)

    def mark_running(self) -> None:
        """A worker has picked the task up."""
        self._transition(TaskState.RUNNING)
        self.started_at = time.time()

    def mark_completed(self, output: Any) -> None:
        """Record the task's output."""
        self.finished_at = time.time()
        self.output = output
        self._transition(TaskState.COMPLETED)

    def mark_failed(self, error: BaseException) -> None:
        """Record the failure cause; no output is emitted."""
        self.finished_at = time.time()
        self.error = error
        self._transition(TaskState.FAILED)

    def mark_skipped(self, error: BaseException) -> None:
        """Never executed because an input carried a failure."""
        self.error = error
        self._transition(TaskState.SKIPPED)

    def __repr__(self) -> str:
        """Return string representation of the task."""
        return f"Task({self.label!r}, state={self.state.value})"
