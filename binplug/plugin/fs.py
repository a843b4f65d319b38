"""
Filesystem helpers for the install layout.

Key features:
- Atomic writes (temp file in the target directory + rename)
- Advisory per-release install locks
"""

import contextlib
import fcntl
import hashlib
import logging
import os
import tempfile
from collections.abc import Iterator
from pathlib import Path

from binplug.errors import FilesystemError

logger = logging.getLogger(__name__)


def atomic_write(path: Path, data: bytes, mode: int = 0o644) -> None:
    """
    Write bytes to path via a temp file and rename.

    Readers see either the old file or the complete new one.

    Args:
        path: Final file path
        data: File contents
        mode: Permission bits applied before the rename

    Raises:
        FilesystemError: On any filesystem failure
    """
    tmp_name = None
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.")
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.chmod(tmp_name, mode)
        os.replace(tmp_name, path)
        tmp_name = None
    except OSError as e:
        raise FilesystemError(f"Failed to write {path}: {e}") from e
    finally:
        if tmp_name is not None:
            with contextlib.suppress(FileNotFoundError):
                os.unlink(tmp_name)


@contextlib.contextmanager
def install_lock(plugin_dir: Path, version: str) -> Iterator[None]:
    """
    Hold an exclusive advisory lock for one (plugin, version) install.

    Concurrent CLI invocations installing the same release queue up here
    instead of racing on the target path.

    Args:
        plugin_dir: <installRoot>/<shortname>
        version: Release version

    Raises:
        FilesystemError: If the lock file cannot be created
    """
    lock_path = plugin_dir / f".{version}.lock"
    try:
        plugin_dir.mkdir(parents=True, exist_ok=True, mode=0o755)
        fd = os.open(lock_path, os.O_RDWR | os.O_CREAT, 0o644)
    except OSError as e:
        raise FilesystemError(f"Failed to create install lock {lock_path}: {e}") from e

    try:
        logger.debug("Acquiring install lock %s", lock_path)
        fcntl.flock(fd, fcntl.LOCK_EX)
        yield
    finally:
        fcntl.flock(fd, fcntl.LOCK_UN)
        os.close(fd)


def sha256_file(path: Path, chunk_size: int = 65536) -> bytes:
    """
    Hash a file's contents with SHA-256.

    Raises:
        FileNotFoundError: If the file does not exist
        FilesystemError: On other read failures
    """
    hasher = hashlib.sha256()
    try:
        with open(path, "rb") as f:
            while chunk := f.read(chunk_size):
                hasher.update(chunk)
    except FileNotFoundError:
        raise
    except OSError as e:
        raise FilesystemError(f"Failed to read {path}: {e}") from e
    return hasher.digest()
