"""Shared pytest fixtures for all test modules."""

import pytest

from varflow.dataflow import Scheduler, TaskExecutor, Workspace


@pytest.fixture
def executor():
    """Executor with a small worker pool."""
    executor = TaskExecutor(4)
    yield executor
    executor.shutdown()


@pytest.fixture
def scheduler(executor):
    """Scheduler on the shared executor, fault isolation mode."""
    return Scheduler(executor)


@pytest.fixture
def workspace(tmp_path) -> Workspace:
    """Workspace rooted in a temporary output directory."""
    workspace = Workspace(tmp_path / "output", "test_base")
    yield workspace
    workspace.cleanup()
