"""
Recovery of jobs held by workers that died without finishing them
"""
import os
from typing import TYPE_CHECKING, List, Optional

from . import fsutil
from .exceptions import QueueIOError
from .log import get_logger
from .models import JobState, Liveness

if TYPE_CHECKING:
    from .queue import Queue

logger = get_logger(__name__)


MAX_PID = 2**31 - 1


def parse_owner(name: str) -> Optional[int]:
    """Process id encoded in an owner slot name, or None if it is not one"""
    if not name.isascii() or not name.isdigit():
        return None
    pid = int(name)
    return pid if 0 < pid <= MAX_PID else None


class RescueSweep:
    """
    One pass over the owner slots of a queue.

    Owners whose process is confirmed dead get their jobs moved back to
    submittable and their slot removed. Live owners and owners whose
    liveness cannot be determined are left alone. A failure on one owner or
    one job is logged and never stops the sweep.
    """

    def __init__(self, queue: "Queue"):
        self.queue = queue
        self.owned_dir = queue.path_for(JobState.OWNED)
        self.submittable_dir = queue.path_for(JobState.SUBMITTABLE)

    def run(self) -> List[str]:
        """
        Sweep every owner slot.

        Returns:
            Ids of the jobs moved back to submittable

        Raises:
            QueueIOError: If the owner slots could not be listed at all
        """
        try:
            names = fsutil.list_names(self.owned_dir)
        except OSError as e:
            logger.error("rescue_list_failed", path=self.owned_dir, error=str(e))
            raise QueueIOError(f"Could not list owner slots: {e}", self.owned_dir) from e

        rescued = []
        for name in sorted(names):
            pid = parse_owner(name)
            if pid is None:
                logger.warning("not_a_pid", entry=name)
                continue

            liveness = self.queue.probe(pid)
            if liveness is Liveness.ALIVE:
                continue
            if liveness is Liveness.INDETERMINATE:
                logger.warning("owner_liveness_unknown", pid=pid)
                continue

            logger.info("owner_gone", pid=pid)
            rescued.extend(self.rescue_owner(name))
            self.remove_slot(name)
        return rescued

    def rescue_owner(self, name: str) -> List[str]:
        """Move every job in a dead owner's slot back to submittable"""
        slot = os.path.join(self.owned_dir, name)
        try:
            job_ids = fsutil.list_names(slot)
        except OSError as e:
            logger.error("owner_slot_list_failed", owner=name, path=slot, error=str(e))
            return []

        rescued = []
        for job_id in sorted(job_ids):
            try:
                fsutil.move(os.path.join(slot, job_id), os.path.join(self.submittable_dir, job_id))
            except OSError as e:
                logger.error("job_rescue_failed", job_id=job_id, owner=name, error=str(e))
                continue
            logger.info("job_rescued", job_id=job_id, owner=name)
            rescued.append(job_id)
        return rescued

    def remove_slot(self, name: str):
        """Remove an emptied owner slot; leftovers are retried next sweep"""
        slot = os.path.join(self.owned_dir, name)
        try:
            os.rmdir(slot)
        except OSError as e:
            logger.warning("owner_slot_remove_failed", owner=name, path=slot, error=str(e))
