"""
Worker process that takes jobs from the queue and runs their shell commands
"""
import os
import signal
import subprocess
import time
from datetime import datetime, timezone
from typing import Optional

from .config import Config, get_config
from .exceptions import PropertyNotFoundError, QueueError
from .log import bind_context, get_logger, setup_logging
from .models import Job, JobState
from .queue import Queue

logger = get_logger(__name__)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class Worker:
    """
    Worker process that polls the queue and executes jobs.

    Each worker owns the slot named after its own pid, so it must be
    constructed inside the process that runs it. Jobs left behind by a
    crashed worker are picked up again by the periodic rescue sweep.
    """

    def __init__(self, queue_root: str, worker_id: Optional[str] = None, config: Optional[Config] = None):
        """
        Initialize worker.

        Args:
            queue_root: Root directory of the queue
            worker_id: Optional label for log lines (defaults to worker-<pid>)
            config: Configuration (defaults to the global one)
        """
        self.config = config or get_config()
        self.queue = Queue.open(queue_root)
        self.worker_id = worker_id or f"worker-{os.getpid()}"
        self.running = False
        self.current_job = None
        self._last_rescue = None

    def install_signal_handlers(self):
        """Stop after the current job on SIGINT or SIGTERM"""
        signal.signal(signal.SIGINT, self._signal_handler)
        signal.signal(signal.SIGTERM, self._signal_handler)

    def _signal_handler(self, signum, frame):
        """Handle shutdown signals gracefully"""
        logger.info("worker_stopping", worker_id=self.worker_id, signal=signum)
        self.running = False

    def start(self):
        """
        Start the worker main loop.
        Polls for jobs, executes them and sweeps up after dead workers.
        """
        self.running = True
        bind_context(worker_id=self.worker_id)
        logger.info("worker_started", owner=self.queue.owner_id)

        try:
            while self.running:
                self._maybe_rescue()
                try:
                    job = self.run_once()
                except QueueError as e:
                    logger.error("job_error", error=str(e))
                    job = None
                if job is None:
                    self._sleep(self.config.worker_poll_interval)
        finally:
            logger.info("worker_stopped")

    def run_once(self) -> Optional[Job]:
        """
        Take and execute at most one job.

        Returns:
            The processed job, or None if no job was available
        """
        job = self.queue.take()
        if job is None:
            return None

        self.current_job = job
        try:
            self._execute_job(job)
        finally:
            self.current_job = None
        return job

    def _maybe_rescue(self):
        interval = self.config.rescue_interval
        if not interval:
            return
        if self._last_rescue is not None and time.monotonic() - self._last_rescue < interval:
            return
        self._last_rescue = time.monotonic()
        try:
            rescued = self.queue.rescue_dead_jobs()
        except QueueError as e:
            logger.error("rescue_failed", error=str(e))
            return
        if rescued:
            logger.info("rescue_finished", rescued=len(rescued))

    def _sleep(self, seconds: float):
        # Sleep in small chunks to allow graceful shutdown
        deadline = time.monotonic() + seconds
        while self.running and time.monotonic() < deadline:
            time.sleep(min(0.2, max(0.0, deadline - time.monotonic())))

    def _execute_job(self, job: Job):
        """
        Run a job's command and make sure the job leaves this worker's slot.

        A failed checkpoint write or transition would otherwise strand the job
        here: the rescue sweep never touches the slot of a live worker.

        Args:
            job: Job owned by this worker
        """
        try:
            self._run_job(job)
        except QueueError as e:
            logger.error("job_error", job_id=job.id, error=str(e))
            if job.state is not JobState.OWNED:
                return
            try:
                job.fail()
            except QueueError as fail_error:
                logger.error("job_fail_failed", job_id=job.id, error=str(fail_error))

    def _run_job(self, job: Job):
        """
        Run a job's command, record the outcome as properties and finish or fail it.

        The command property is passed to the shell as raw bytes.

        Args:
            job: Job owned by this worker
        """
        try:
            command = job.get(self.config.command_property)
        except PropertyNotFoundError:
            self._handle_job_failure(job, f"No '{self.config.command_property}' property")
            return

        attempts = self._attempts(job) + 1
        job.set("attempts", str(attempts))
        job.set("started_at", _now())
        logger.info("job_started", job_id=job.id, attempt=attempts)

        try:
            result = subprocess.run(
                command,
                shell=True,
                capture_output=True,
                timeout=self.config.job_timeout,
            )
        except subprocess.TimeoutExpired:
            self._handle_job_failure(job, f"Command timed out after {self.config.job_timeout}s")
            return
        except (OSError, ValueError) as e:
            self._handle_job_failure(job, f"Could not run command: {e}")
            return

        job.set("exit_code", str(result.returncode))
        job.set("stdout", result.stdout)
        job.set("stderr", result.stderr)
        job.set("finished_at", _now())

        if result.returncode == 0:
            job.finish()
            logger.info("job_completed", job_id=job.id)
        else:
            job.fail()
            logger.warning("job_failed", job_id=job.id, exit_code=result.returncode)

    def _handle_job_failure(self, job: Job, error_message: str):
        """
        Record why a job could not run and move it to failed.

        Args:
            job: Failed job
            error_message: Error description
        """
        job.set("error", error_message)
        job.set("finished_at", _now())
        job.fail()
        logger.warning("job_failed", job_id=job.id, error=error_message)

    @staticmethod
    def _attempts(job: Job) -> int:
        # Rescued jobs keep the attempts checkpoint of their previous owner.
        try:
            return int(job.get("attempts"))
        except (PropertyNotFoundError, ValueError):
            return 0

    def stop(self):
        """Stop the worker gracefully"""
        self.running = False


def start_worker(queue_root: str, worker_id: Optional[str] = None, config_path: Optional[str] = None):
    """
    Start a single worker in the calling process.

    Args:
        queue_root: Root directory of the queue
        worker_id: Optional worker label
        config_path: Optional config file; the global config is used otherwise
    """
    config = Config(config_path) if config_path else get_config()
    setup_logging(config.log_level, config.log_format)
    worker = Worker(queue_root, worker_id, config=config)
    worker.install_signal_handlers()
    worker.start()
