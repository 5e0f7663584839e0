"""
Exception types raised by dirqueue
"""
from typing import Optional


class QueueError(Exception):
    """Base class for all dirqueue errors"""

    def __init__(self, message: str, path: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.path = path

    def __str__(self):
        if self.path:
            return f"{self.message}: {self.path}"
        return self.message


class QueueIOError(QueueError):
    """A filesystem operation on the queue failed"""


class StateConflictError(QueueError):
    """
    A state transition found its destination already taken.
    Job ids are allocated uniquely, so this points at a corrupted queue.
    """


class PropertyNotFoundError(QueueError, KeyError):
    """The requested property was never set on the job"""

    def __str__(self):
        return QueueError.__str__(self)


class JobNotFoundError(QueueError, KeyError):
    """No job with the given id exists in the searched states"""

    def __str__(self):
        return QueueError.__str__(self)


class IndeterminateLivenessError(QueueError):
    """A liveness probe could not decide whether a process is running"""

    def __init__(self, pid: int, cause: Exception):
        super().__init__(f"Could not probe process {pid}: {cause}")
        self.pid = pid
        self.cause = cause
