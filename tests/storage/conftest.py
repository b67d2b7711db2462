"""Shared fixtures for storage tests."""

import tempfile
from datetime import UTC, datetime
from pathlib import Path

import pytest

from taskstore.core.models import Task


@pytest.fixture
def temp_dir():
    """Temporary directory for test data."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def buy_milk():
    """The canonical first task."""
    return Task(
        id="t1",
        title="Buy milk",
        done=False,
        created_at=datetime(2024, 1, 1, 9, 0, tzinfo=UTC),
        due_date=datetime(2024, 1, 2, 9, 0, tzinfo=UTC),
    )


@pytest.fixture
def sample_tasks():
    """Tasks with distinct creation times, due dates and statuses.

    Timestamps use millisecond precision so every backend returns them
    unchanged.
    """
    return [
        Task(
            id="a",
            title="Write report",
            done=False,
            created_at=datetime(2024, 3, 1, 8, 0, 0, 125000, tzinfo=UTC),
            due_date=datetime(2024, 3, 5, 17, 0, tzinfo=UTC),
        ),
        Task(
            id="b",
            title="Book flights",
            done=True,
            created_at=datetime(2024, 3, 2, 8, 0, tzinfo=UTC),
            due_date=datetime(2024, 3, 3, 12, 0, tzinfo=UTC),
        ),
        Task(
            id="c",
            title="Renew passport",
            done=False,
            created_at=datetime(2024, 3, 3, 8, 0, tzinfo=UTC),
            due_date=None,
        ),
        Task(
            id="d",
            title="Pay rent",
            done=False,
            created_at=datetime(2024, 3, 4, 8, 0, tzinfo=UTC),
            due_date=datetime(2024, 3, 10, 9, 0, tzinfo=UTC),
        ),
    ]


@pytest.fixture
def populated(backend, sample_tasks):
    """The backend under test holding ``sample_tasks``."""
    for task in sample_tasks:
        backend.create(task)
    return backend
