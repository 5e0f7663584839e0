"""
Job handle and state definitions for dirqueue
"""
import os
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, List, Optional

if TYPE_CHECKING:
    from .queue import Queue


class JobState(Enum):
    """Valid job states; each value is the queue subdirectory holding the job"""
    STAGING = "staging"
    SUBMITTABLE = "submittable"
    OWNED = "owned"
    COMPLETED = "completed"
    FAILED = "failed"


class Liveness(Enum):
    """Outcome of probing whether a job owner is still running"""
    ALIVE = "alive"
    DEAD = "dead"
    INDETERMINATE = "indeterminate"


@dataclass
class Job:
    """
    Handle to one job directory in the queue.

    The directory a job lives in is its state; this object only remembers
    where it last put the job and is never the source of truth.

    Attributes:
        id: Name of the job directory, unique within the queue
        location: Absolute path of the job directory
        queue: Queue the job belongs to
    """
    id: str
    location: str
    queue: Optional["Queue"] = field(default=None, repr=False, compare=False)

    def _parts(self) -> List[str]:
        """Path of the job below the queue root, e.g. ["owned", "123", "job1"]"""
        if self.queue is not None:
            return os.path.relpath(self.location, self.queue.root).split(os.sep)
        # Detached handle: guess from the trailing path components.
        head, name = os.path.split(self.location)
        head, parent = os.path.split(head)
        grandparent = os.path.basename(head)
        if grandparent == JobState.OWNED.value:
            return [grandparent, parent, name]
        return [parent, name]

    @property
    def state(self) -> JobState:
        """State implied by the directory the job currently lives in"""
        return JobState(self._parts()[0])

    @property
    def owner(self) -> Optional[str]:
        """Name of the owner slot holding the job, if it is owned"""
        parts = self._parts()
        if parts[0] != JobState.OWNED.value or len(parts) < 3:
            return None
        return parts[1]

    def submit(self):
        """Make the job visible to workers"""
        self.queue.submit(self)

    def finish(self):
        """Move the job to completed"""
        self.queue.finish(self)

    def fail(self):
        """Move the job to failed"""
        self.queue.fail(self)

    def get(self, key: str) -> bytes:
        """Read a property of the job"""
        return self.queue.properties.get(self, key)

    def set(self, key: str, data: bytes):
        """Atomically write a property of the job"""
        self.queue.properties.set(self, key, data)

    def keys(self):
        """List the property names set on the job"""
        return self.queue.properties.keys(self)

    def to_dict(self) -> dict:
        """Convert job to dictionary"""
        return {
            "id": self.id,
            "state": self.state.value,
            "owner": self.owner,
            "location": self.location,
        }
