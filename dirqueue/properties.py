"""
Per-job key/value properties stored as files inside the job directory
"""
import os
from typing import List, Union

from . import fsutil
from .exceptions import PropertyNotFoundError, QueueIOError
from .log import get_logger
from .models import Job

logger = get_logger(__name__)


def validate_name(name: str, what: str = "name") -> str:
    """
    Check that a name can be used as a single directory entry.

    Raises:
        ValueError: If the name is empty, contains a separator or NUL, or is . or ..
    """
    if not isinstance(name, str) or not name:
        raise ValueError(f"Invalid {what}: must be a non-empty string")
    if name in (".", "..") or "/" in name or "\0" in name:
        raise ValueError(f"Invalid {what}: {name!r}")
    if os.sep != "/" and os.sep in name:
        raise ValueError(f"Invalid {what}: {name!r}")
    return name


class PropertyStore:
    """
    Reads and atomically writes job properties.

    A property is a file named after its key. Writes go to a temporary file
    in the queue's staging directory first and are renamed over the key, so
    readers always see either the old or the new value in full.
    """

    def __init__(self, staging_dir: str):
        """
        Args:
            staging_dir: Directory for temporary files, on the same
                filesystem as the jobs
        """
        self.staging_dir = staging_dir

    def get(self, job: Job, key: str) -> bytes:
        """
        Read a property of a job.

        Args:
            job: Job to read from
            key: Property name

        Returns:
            The stored bytes

        Raises:
            PropertyNotFoundError: If the property was never set
            QueueIOError: If reading failed for another reason
        """
        path = os.path.join(job.location, validate_name(key, "property key"))
        try:
            with open(path, "rb") as f:
                return f.read()
        except FileNotFoundError:
            raise PropertyNotFoundError(f"Property '{key}' not set on job {job.id}", path) from None
        except OSError as e:
            raise QueueIOError(f"Could not read property '{key}': {e}", path) from e

    def set(self, job: Job, key: str, data: Union[bytes, str]):
        """
        Atomically set a property, replacing any previous value.

        Args:
            job: Job to write to
            key: Property name
            data: Value; str is stored UTF-8 encoded

        Raises:
            QueueIOError: If the temporary write or the rename failed. The
                previous value, if any, is left intact.
        """
        validate_name(key, "property key")
        if isinstance(data, str):
            data = data.encode("utf-8")
        try:
            tmp = fsutil.write_unique_file(self.staging_dir, f"{key}.", data)
        except OSError as e:
            raise QueueIOError(f"Could not write property '{key}': {e}", self.staging_dir) from e

        target = os.path.join(job.location, key)
        try:
            os.replace(tmp, target)
        except OSError as e:
            logger.error("property_rename_failed", src=tmp, dst=target, error=str(e))
            try:
                os.unlink(tmp)
            except OSError:
                pass
            raise QueueIOError(f"Could not set property '{key}': {e}", target) from e

    def keys(self, job: Job) -> List[str]:
        """Names of the properties currently set on a job"""
        try:
            return sorted(
                name for name in fsutil.list_names(job.location)
                if os.path.isfile(os.path.join(job.location, name))
            )
        except OSError as e:
            raise QueueIOError(f"Could not list properties of job {job.id}: {e}", job.location) from e
