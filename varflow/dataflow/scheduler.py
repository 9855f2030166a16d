"""
Scheduler - Turns operator composition into tasks and drives them to completion.

The scheduler owns a FIFO event queue processed by a single routing thread
(the caller of ``run``). Channel deliveries and operator callbacks execute as
events; task bodies execute on the executor's workers and post their
completion back as events. Keyed pairing and aggregation therefore see a
serial history even though tasks finish out of order.
"""

import logging
import queue
import time
from collections import defaultdict, deque
from concurrent.futures import Future
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from .channel import Channel, channel_of
from .error_handling import Failure, TaskExecutionError
from .executor import TaskExecutor
from .operators import lineage_key
from .task import Task, TaskNode, TaskState

logger = logging.getLogger(__name__)


class _Binding:
    """A task node attached to its input and output channels."""

    def __init__(self, node: TaskNode, source: Channel, output: Channel):
        self.node = node
        self.source = source
        self.output = output
        self.count = 0
        self.outstanding = 0
        self.input_closed = False


@dataclass
class RunReport:
    """Outcome of a scheduler run.

    Attributes
    ----------
    tasks : List[Task]
        Every task created, in creation order
    elapsed : float
        Wall-clock seconds spent in ``run``
    """

    tasks: List[Task] = field(default_factory=list)
    elapsed: float = 0.0

    @property
    def failed(self) -> List[Task]:
        """Tasks whose body failed."""
        return [t for t in self.tasks if t.state is TaskState.FAILED]

    @property
    def skipped(self) -> List[Task]:
        """Tasks never executed because an input failed."""
        return [t for t in self.tasks if t.state is TaskState.SKIPPED]

    @property
    def succeeded(self) -> bool:
        """True when no task failed or was skipped."""
        return not self.failed and not self.skipped

    def tasks_for(self, node_name: str) -> List[Task]:
        """Tasks created for the named node."""
        return [t for t in self.tasks if t.node.name == node_name]

    def counts(self) -> Dict[str, Dict[str, int]]:
        """Number of tasks per node and state."""
        result: Dict[str, Dict[str, int]] = defaultdict(lambda: defaultdict(int))
        for t in self.tasks:
            result[t.node.name][t.state.value] += 1
        return {name: dict(states) for name, states in result.items()}


class Scheduler:
    """Builds the task graph from channel operators and runs it.

    Attributes
    ----------
    executor : TaskExecutor
        Runs task bodies with bounded concurrency
    fail_fast : bool
        When True, no new task is submitted after the first failure.
        By default a failure only affects the failed task's dependents.
    """

    def __init__(self, executor: TaskExecutor, fail_fast: bool = False):
        """Initialize the scheduler.

        Parameters
        ----------
        executor : TaskExecutor
            Executor used for all task bodies
        fail_fast : bool
            Stop submitting new tasks after the first failure (default: False)
        """
        self.executor = executor
        self.fail_fast = fail_fast
        self._events: "queue.Queue" = queue.Queue()
        self._channels: List[Channel] = []
        self._bindings: Dict[str, _Binding] = {}
        self._tasks: List[Task] = []
        self._in_flight = 0
        self._aborted = False
        self._running = False

    # --- Graph construction ---

    def register_channel(self, channel: Channel) -> None:
        """Track a channel for the completion check at the end of a run."""
        self._channels.append(channel)

    def channel(self, items, name: Optional[str] = None) -> Channel:
        """Create a closed source channel holding ``items``."""
        return channel_of(self, items, name)

    def process(self, source: Channel, node: TaskNode) -> Channel:
        """Attach ``node`` to ``source``; returns the channel of task outputs.

        Raises
        ------
        ValueError
            If a node with the same name is already attached
        """
        if node.name in self._bindings:
            raise ValueError(f"Duplicate task node name detected: {node.name}")
        output = source.derive(node.name, producer=node.name)
        binding = _Binding(node, source, output)
        self._bindings[node.name] = binding
        source.subscribe(
            lambda item: self._on_input(binding, item),
            lambda: self._on_input_closed(binding),
        )
        return output

    # --- Event loop ---

    def post(self, fn: Callable[..., None], *args: Any) -> None:
        """Queue ``fn(*args)`` for the routing thread. Safe from any thread."""
        self._events.put((fn, args))

    def run(self) -> RunReport:
        """Process events until no event is queued and no task is in flight.

        Returns
        -------
        RunReport
            All tasks created so far with their final states
        """
        if self._running:
            raise RuntimeError("Scheduler.run() is not re-entrant")
        self._running = True
        start_time = time.time()
        try:
            while self._in_flight or not self._events.empty():
                fn, args = self._events.get()
                fn(*args)
        finally:
            self._running = False

        open_channels = [c.name for c in self._channels if not c.closed]
        if open_channels:
            logger.warning(f"Run finished with channels still open: {open_channels}")

        report = RunReport(tasks=list(self._tasks), elapsed=time.time() - start_time)
        self._log_execution_summary(report)
        return report

    # --- Task lifecycle ---

    def _on_input(self, binding: _Binding, item: Any) -> None:
        task = Task(binding.node, binding.count, item, lineage_key(item))
        binding.count += 1
        self._tasks.append(task)

        if isinstance(item, Failure):
            task.mark_skipped(item.error)
            logger.info(f"Skipping {task.label}: upstream failure ({item.error})")
            binding.output.emit(item)
            return

        if self._aborted:
            error = TaskExecutionError(
                task.label, "not started after an earlier failure", reason="aborted"
            )
            task.mark_skipped(error)
            binding.output.emit(Failure(error, task.key))
            return

        task.mark_ready()
        binding.outstanding += 1
        self._in_flight += 1
        future = self.executor.submit(task)
        future.add_done_callback(lambda f: self.post(self._on_task_done, binding, task, f))

    def _on_task_done(self, binding: _Binding, task: Task, future: Future) -> None:
        self._in_flight -= 1
        binding.outstanding -= 1
        try:
            output = future.result()
        except Exception as e:
            task.mark_failed(e)
            logger.error(f"Task {task.label} failed: {e}")
            tail = getattr(e, "stderr_tail", "")
            if tail:
                logger.error(f"Last lines of diagnostic output:\n{tail}")
            if self.fail_fast and not self._aborted:
                logger.warning("Fail-fast enabled: no further tasks will be started")
                self._aborted = True
            binding.output.emit(Failure(e, task.key))
        else:
            task.mark_completed(output)
            logger.debug(f"Task {task.label} completed in {task.elapsed:.1f}s")
            binding.output.emit(output)
        self._maybe_close(binding)

    def _on_input_closed(self, binding: _Binding) -> None:
        binding.input_closed = True
        self._maybe_close(binding)

    def _maybe_close(self, binding: _Binding) -> None:
        if binding.input_closed and binding.outstanding == 0:
            binding.output.close()

    # --- Planning ---

    def dependencies(self) -> Dict[str, set]:
        """Map each task node to the task nodes whose outputs it consumes."""
        result = {}
        for name, binding in self._bindings.items():
            deps = set()
            seen = set()
            pending = deque([binding.source])
            while pending:
                channel = pending.popleft()
                if id(channel) in seen:
                    continue
                seen.add(id(channel))
                if channel.producer is not None:
                    deps.add(channel.producer)
                else:
                    pending.extend(channel.upstream)
            result[name] = deps
        return result

    def plan(self) -> List[List[str]]:
        """Group task nodes into dependency levels without running anything.

        Nodes in the same level have no data dependency on each other.

        Returns
        -------
        List[List[str]]
            Node names grouped by level

        Raises
        ------
        ValueError
            If circular dependencies are detected
        """
        dependencies = self.dependencies()

        dependents = defaultdict(set)
        for name, deps in dependencies.items():
            for dep in deps:
                dependents[dep].add(name)

        in_degree = {name: len(deps) for name, deps in dependencies.items()}
        level = sorted(name for name, degree in in_degree.items() if degree == 0)

        execution_plan = []
        processed = set()
        while level:
            execution_plan.append(level)
            processed.update(level)
            next_level = set()
            for name in level:
                for dependent in dependents[name]:
                    in_degree[dependent] -= 1
                    if in_degree[dependent] == 0:
                        next_level.add(dependent)
            level = sorted(next_level)

        if len(processed) != len(dependencies):
            unprocessed = set(dependencies) - processed
            raise ValueError(f"Circular dependency detected involving nodes: {unprocessed}")

        return execution_plan

    def _log_execution_summary(self, report: RunReport) -> None:
        """Log a summary of task counts and execution times per node."""
        if not report.tasks:
            return

        times: Dict[str, float] = defaultdict(float)
        for t in report.tasks:
            times[t.node.name] += t.elapsed
        total_time = sum(times.values())
        counts = report.counts()

        logger.info("=" * 60)
        logger.info("Task Execution Summary")
        logger.info("=" * 60)
        for name, elapsed in sorted(times.items(), key=lambda x: x[1], reverse=True):
            percentage = (elapsed / total_time) * 100 if total_time > 0 else 0
            states = ", ".join(f"{n} {state}" for state, n in sorted(counts[name].items()))
            logger.info(f"{name:24s} {elapsed:7.1f}s ({percentage:4.1f}%)  {states}")
        logger.info("-" * 60)
        logger.info(
            f"{len(report.tasks)} tasks, {len(report.failed)} failed, "
            f"{len(report.skipped)} skipped, wall time {report.elapsed:.1f}s"
        )
        logger.info("=" * 60)

    def shutdown(self) -> None:
        """Release the executor's workers."""
        self.executor.shutdown()

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.shutdown()
