"""
Filesystem and process primitives the queue is built on.

Every state transition in dirqueue is a single rename(2) of a job directory.
POSIX guarantees that rename is atomic and that only one of several
concurrent renamers of the same source path succeeds; the others see the
source vanish. Nothing else in the package touches the filesystem directly
for state changes.
"""
import errno
import os
import tempfile
from typing import List

from .exceptions import IndeterminateLivenessError
from .log import get_logger
from .models import Liveness

logger = get_logger(__name__)

DIR_MODE = 0o755


def ensure_dir(path: str):
    """
    Create a directory, treating an existing one as success.

    Args:
        path: Directory to create; its parent must already exist

    Raises:
        FileNotFoundError: If the parent directory is missing
        PermissionError: If the parent is not writable
    """
    try:
        os.mkdir(path, DIR_MODE)
    except FileExistsError:
        if not os.path.isdir(path):
            raise NotADirectoryError(errno.ENOTDIR, os.strerror(errno.ENOTDIR), path)


def list_names(path: str) -> List[str]:
    """Names of the entries directly under a directory"""
    return os.listdir(path)


def move(src: str, dst: str):
    """
    Atomically rename src to dst without ever replacing dst.

    rename(2) silently replaces an existing file or empty directory, so the
    destination is checked first. The remaining window only matters when
    two jobs share an id, which unique allocation rules out.

    Raises:
        FileNotFoundError: If src no longer exists (another process won it)
        FileExistsError: If dst is already taken
        OSError: Any other rename failure
    """
    if os.path.lexists(dst):
        raise FileExistsError(errno.EEXIST, os.strerror(errno.EEXIST), dst)
    try:
        os.rename(src, dst)
    except OSError as e:
        if e.errno == errno.ENOTEMPTY:
            raise FileExistsError(errno.EEXIST, os.strerror(errno.EEXIST), dst) from e
        raise


def make_unique_dir(parent: str, prefix: str) -> str:
    """Create a uniquely named directory under parent and return its path"""
    return tempfile.mkdtemp(prefix=prefix, dir=parent)


def write_unique_file(parent: str, prefix: str, data: bytes) -> str:
    """
    Write data to a new, uniquely named file under parent.

    The contents are flushed to disk before returning so a later rename
    publishes a complete file. On failure the partial file is removed.

    Returns:
        Path of the written file
    """
    fd, path = tempfile.mkstemp(prefix=prefix, dir=parent)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
    except BaseException:
        try:
            os.unlink(path)
        except OSError:
            pass
        raise
    return path


def process_exists(pid: int) -> bool:
    """
    Check whether a process is running by sending it signal 0.

    Args:
        pid: Process id, must be positive

    Returns:
        True if the process exists, False if it is gone

    Raises:
        IndeterminateLivenessError: If the probe itself failed (e.g. EPERM)
    """
    if pid <= 0:
        raise ValueError(f"Not a process id: {pid}")
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except (OSError, OverflowError) as e:
        raise IndeterminateLivenessError(pid, e) from e
    return True


def probe_liveness(pid: int) -> Liveness:
    """Three-valued liveness probe used by the rescue sweep"""
    try:
        exists = process_exists(pid)
    except IndeterminateLivenessError as e:
        logger.warning("liveness_probe_failed", pid=pid, error=str(e.cause))
        return Liveness.INDETERMINATE
    return Liveness.ALIVE if exists else Liveness.DEAD
