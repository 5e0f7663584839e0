"""
Filesystem-backed job queue
Job state is the directory a job lives in; every transition is an atomic rename
"""
import os
import random
from typing import Callable, Dict, List, Optional, Union

from . import fsutil
from .exceptions import JobNotFoundError, QueueIOError, StateConflictError
from .log import get_logger
from .models import Job, JobState, Liveness
from .properties import PropertyStore, validate_name
from .rescue import RescueSweep

logger = get_logger(__name__)


class Queue:
    """
    A job queue rooted at one directory.

    Layout under the root:
        staging/        jobs being prepared, private to their creator
        submittable/    jobs waiting for a worker
        owned/<owner>/  jobs held by the worker with that process id
        completed/      finished jobs
        failed/         failed jobs

    Any number of processes may use the same root concurrently; they
    coordinate only through rename races on these directories.
    """

    def __init__(
        self,
        root: str,
        owner_id: Optional[Union[int, str]] = None,
        probe: Optional[Callable[[int], Liveness]] = None,
    ):
        """
        Initialize a queue handle. Use Queue.open to also create the layout.

        Args:
            root: Base directory of the queue
            owner_id: Identity of this process as a job owner (defaults to its pid)
            probe: Liveness check for owner ids (defaults to signal 0 probing)
        """
        self.root = os.path.abspath(root)
        self.owner_id = str(owner_id if owner_id is not None else os.getpid())
        validate_name(self.owner_id, "owner id")
        self.probe = probe or fsutil.probe_liveness
        self.owner_slot = os.path.join(self.path_for(JobState.OWNED), self.owner_id)
        self.properties = PropertyStore(self.path_for(JobState.STAGING))

    @classmethod
    def open(
        cls,
        root: str,
        owner_id: Optional[Union[int, str]] = None,
        probe: Optional[Callable[[int], Liveness]] = None,
    ) -> "Queue":
        """
        Open a queue, creating any missing subdirectories and the owner slot.

        The root itself must already exist. Opening the same root any number
        of times is harmless.

        Raises:
            FileNotFoundError: If root does not exist
            PermissionError: If root is not usable
        """
        queue = cls(root, owner_id=owner_id, probe=probe)
        for state in JobState:
            fsutil.ensure_dir(queue.path_for(state))
        fsutil.ensure_dir(queue.owner_slot)
        return queue

    def path_for(self, state: JobState) -> str:
        """Directory holding jobs in the given state"""
        return os.path.join(self.root, state.value)

    def create_job(self, prefix: str = "job") -> Job:
        """
        Create a new job in staging.

        Set its properties, then call submit to hand it to workers.

        Args:
            prefix: Human-readable start of the job id

        Returns:
            Handle to the new job

        Raises:
            QueueIOError: If the job directory could not be created
        """
        validate_name(prefix, "job prefix")
        try:
            location = fsutil.make_unique_dir(self.path_for(JobState.STAGING), prefix)
        except OSError as e:
            raise QueueIOError(f"Could not create job: {e}", self.path_for(JobState.STAGING)) from e
        return Job(id=os.path.basename(location), location=location, queue=self)

    def submit(self, job: Job):
        """
        Move a staged job to submittable.

        Raises:
            StateConflictError: If a job with the same id is already submittable
            QueueIOError: If the rename failed otherwise
        """
        self._transition(job, os.path.join(self.path_for(JobState.SUBMITTABLE), job.id))

    def take(self) -> Optional[Job]:
        """
        Claim a submittable job for this process.

        A random candidate is picked so that workers listing the directory at
        the same time tend to go after different jobs. Losing the rename race
        to another worker just means trying again with a fresh listing.

        Returns:
            The claimed job, now in this process's owner slot, or None if no
            jobs are submittable

        Raises:
            QueueIOError: If listing or renaming failed for any reason other
                than another worker winning the job
        """
        submittable = self.path_for(JobState.SUBMITTABLE)
        while True:
            try:
                names = fsutil.list_names(submittable)
            except OSError as e:
                raise QueueIOError(f"Could not list submittable jobs: {e}", submittable) from e
            if not names:
                return None

            job_id = random.choice(names)
            src = os.path.join(submittable, job_id)
            dst = os.path.join(self.owner_slot, job_id)
            try:
                fsutil.move(src, dst)
            except FileNotFoundError as e:
                if os.path.lexists(src):
                    # The source is still there, so our own slot is missing.
                    raise QueueIOError(f"Owner slot missing: {e}", self.owner_slot) from e
                logger.debug("take_lost_race", job_id=job_id)
                continue
            except OSError as e:
                raise QueueIOError(f"Could not take job {job_id}: {e}", src) from e
            return Job(id=job_id, location=dst, queue=self)

    def finish(self, job: Job):
        """
        Move an owned job to completed.

        Raises:
            QueueIOError: If the rename failed, e.g. the job was already finished
        """
        self._terminate(job, JobState.COMPLETED)

    def fail(self, job: Job):
        """
        Move an owned job to failed.

        Raises:
            QueueIOError: If the rename failed, e.g. the job was already finished
        """
        self._terminate(job, JobState.FAILED)

    def get(self, job: Job, key: str) -> bytes:
        """Read a job property (see PropertyStore.get)"""
        return self.properties.get(job, key)

    def set(self, job: Job, key: str, data: Union[bytes, str]):
        """Atomically write a job property (see PropertyStore.set)"""
        self.properties.set(job, key, data)

    def rescue_dead_jobs(self) -> List[str]:
        """
        Return jobs held by dead workers to submittable.

        Returns:
            Ids of the rescued jobs
        """
        return RescueSweep(self).run()

    def owners(self) -> List[str]:
        """Names of the owner slots currently present"""
        owned = self.path_for(JobState.OWNED)
        try:
            return sorted(
                name for name in fsutil.list_names(owned)
                if os.path.isdir(os.path.join(owned, name))
            )
        except OSError as e:
            raise QueueIOError(f"Could not list owner slots: {e}", owned) from e

    def list_jobs(self, state: Optional[Union[JobState, str]] = None) -> List[Job]:
        """
        List jobs, optionally filtered by state.

        Args:
            state: Optional state filter (staging, submittable, owned, completed, failed)

        Returns:
            Job handles sorted by state then id
        """
        if state is None:
            states = list(JobState)
        else:
            states = [self._parse_state(state)]

        jobs = []
        for s in states:
            for directory in self._dirs_for(s):
                try:
                    names = fsutil.list_names(directory)
                except FileNotFoundError:
                    # Owner slot removed by a concurrent sweep.
                    continue
                except OSError as e:
                    raise QueueIOError(f"Could not list jobs: {e}", directory) from e
                for name in sorted(names):
                    location = os.path.join(directory, name)
                    if os.path.isdir(location):
                        jobs.append(Job(id=name, location=location, queue=self))
        return jobs

    def find_job(self, job_id: str, state: Optional[Union[JobState, str]] = None) -> Job:
        """
        Re-open a handle to an existing job by id.

        Owned jobs are looked up in this process's own slot first.

        Raises:
            JobNotFoundError: If no job with that id exists in the searched states
        """
        validate_name(job_id, "job id")
        states = list(JobState) if state is None else [self._parse_state(state)]
        for s in states:
            for directory in self._dirs_for(s):
                location = os.path.join(directory, job_id)
                if os.path.isdir(location):
                    return Job(id=job_id, location=location, queue=self)
        searched = ", ".join(s.value for s in states)
        raise JobNotFoundError(f"Job '{job_id}' not found in {searched}", self.root)

    def status(self) -> Dict[str, object]:
        """
        Get queue status summary.

        Returns:
            Dictionary with job counts per state and the number of owner slots
        """
        counts = {state.value: 0 for state in JobState}
        for job in self.list_jobs():
            counts[job.state.value] += 1
        return {
            "jobs": counts,
            "total_jobs": sum(counts.values()),
            "owners": len(self.owners()),
        }

    def _dirs_for(self, state: JobState) -> List[str]:
        if state is not JobState.OWNED:
            return [self.path_for(state)]
        owned = self.path_for(JobState.OWNED)
        others = [os.path.join(owned, name) for name in self.owners() if name != self.owner_id]
        return [self.owner_slot] + others

    @staticmethod
    def _parse_state(state: Union[JobState, str]) -> JobState:
        if isinstance(state, JobState):
            return state
        try:
            return JobState(state)
        except ValueError:
            valid_states = [s.value for s in JobState]
            raise ValueError(f"Invalid state: {state}. Must be one of {valid_states}") from None

    def _terminate(self, job: Job, state: JobState):
        try:
            self._transition(job, os.path.join(self.path_for(state), job.id))
        except StateConflictError as e:
            raise QueueIOError(f"Job {job.id} is already {state.value}", e.path) from e

    def _transition(self, job: Job, dst: str):
        """Rename a job directory to dst and update its handle on success"""
        try:
            fsutil.move(job.location, dst)
        except FileExistsError as e:
            raise StateConflictError(f"Destination for job {job.id} already exists", dst) from e
        except OSError as e:
            raise QueueIOError(f"Could not move job {job.id}: {e}", job.location) from e
        logger.debug("job_moved", job_id=job.id, src=job.location, dst=dst)
        job.location = dst
