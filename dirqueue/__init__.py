"""
dirqueue - A crash-tolerant job queue kept in a directory tree

A job is a directory and its state is the directory it lives in:
- Atomic renames move jobs between states
- Competing workers claim jobs without locks
- Per-job properties checkpoint progress
- Jobs of crashed workers are rescued by a liveness sweep
"""

__version__ = "1.0.0"

from .queue import Queue
from .workers import Worker
from .models import Job, JobState, Liveness
from .config import get_config
from .exceptions import (
    IndeterminateLivenessError,
    JobNotFoundError,
    PropertyNotFoundError,
    QueueError,
    QueueIOError,
    StateConflictError,
)

__all__ = [
    "Queue",
    "Worker",
    "Job",
    "JobState",
    "Liveness",
    "get_config",
    "QueueError",
    "QueueIOError",
    "StateConflictError",
    "PropertyNotFoundError",
    "JobNotFoundError",
    "IndeterminateLivenessError",
]
