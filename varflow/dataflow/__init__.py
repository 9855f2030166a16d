"""
Dataflow engine for varflow.

This package provides the core abstractions the pipeline is wired from:
- Channel: ordered asynchronous stream with a completion signal
- Operators: map, filter, combine, join, collect, flatten, group_by, split_lines, split_csv
- TaskNode / Task: units of work and their state machine
- TaskExecutor: bounded-concurrency execution of task bodies
- Scheduler: event loop turning operator composition into tasks
- Workspace: numbered stage directories for task outputs
"""

from .channel import Channel
from .error_handling import (
    ConfigurationError,
    Failure,
    JoinMismatchError,
    PipelineError,
    ResourceExhaustion,
    TaskExecutionError,
    ToolNotFoundError,
)
from .executor import TaskExecutor
from .scheduler import RunReport, Scheduler
from .task import FunctionNode, Task, TaskNode, TaskState
from .workspace import Workspace

__all__ = [
    "Channel",
    "ConfigurationError",
    "Failure",
    "FunctionNode",
    "JoinMismatchError",
    "PipelineError",
    "ResourceExhaustion",
    "RunReport",
    "Scheduler",
    "Task",
    "TaskExecutionError",
    "TaskExecutor",
    "TaskNode",
    "TaskState",
    "ToolNotFoundError",
    "Workspace",
]
