"""
Filesystem operations for the update installer.

This module implements:
- Directory helpers (ensure_directory, safe_remove_directory)
- FileDeployer: replaces a version directory with a package's file tree
- RootLock: exclusive lock over a managed root for one update attempt

Deployment is staged: the tree is copied into a hidden sibling directory
and renamed into place only once the copy has completed. The rename is the
only step that makes new content visible under versions/<version>/, so an
interrupted copy never leaves a half-populated version directory behind.
A stale staging directory from an earlier failure is discarded before the
next copy starts.
"""

from __future__ import annotations

import fcntl
import os
import shutil
from pathlib import Path
from types import TracebackType

from update_installer.errors import (
    DeploymentError,
    SourceMissingError,
    UpdateLockedError,
)
from update_installer.logging import get_logger

logger = get_logger(__name__)


def ensure_directory(path: Path, *, parents: bool = True, mode: int = 0o755) -> Path:
    """
    Ensure a directory exists, creating it if necessary.

    Args:
        path: Path to the directory.
        parents: If True, create parent directories as needed.
        mode: Directory permissions (default 0o755).

    Returns:
        The directory path.

    Raises:
        DeploymentError: If directory cannot be created.
    """
    try:
        path.mkdir(parents=parents, mode=mode, exist_ok=True)
        return path
    except OSError as e:
        raise DeploymentError(
            f"Failed to create directory: {path}",
            details={"path": str(path), "error": str(e)},
        ) from e


def safe_remove_directory(path: Path, *, ignore_errors: bool = True) -> bool:
    """
    Safely remove a directory and its contents.

    Args:
        path: Path to the directory to remove.
        ignore_errors: If True, ignore errors during removal.

    Returns:
        True if directory was removed, False if it didn't exist.

    Raises:
        DeploymentError: If removal fails and ignore_errors is False.
    """
    if not path.exists():
        return False

    try:
        shutil.rmtree(path, ignore_errors=ignore_errors)
        logger.debug("Removed directory", extra={"path": str(path)})
        return True
    except OSError as e:
        if not ignore_errors:
            raise DeploymentError(
                f"Failed to remove directory: {path}",
                details={"path": str(path), "error": str(e)},
            ) from e
        return False


def staging_path_for(dest_dir: Path) -> Path:
    """Hidden sibling a version is staged into before it is renamed into place."""
    return dest_dir.parent / f".{dest_dir.name}.staging"


class FileDeployer:
    """
    Copies a package's file tree into a version directory.

    A re-deploy of the same version fully replaces the previous directory;
    files are never merged into an existing tree.
    """

    def deploy(self, source_dir: Path | str, dest_dir: Path | str) -> Path:
        """
        Deploy source_dir so that dest_dir mirrors it exactly.

        Args:
            source_dir: Package files/ directory.
            dest_dir: Version directory under versions/.

        Returns:
            The deployed version directory.

        Raises:
            SourceMissingError: If source_dir does not exist.
            DeploymentError: If copying, removing the previous directory or
                the final rename fails.
        """
        source_dir = Path(source_dir)
        dest_dir = Path(dest_dir)

        if not source_dir.is_dir():
            raise SourceMissingError(
                "Package files directory missing.",
                details={"source": str(source_dir)},
            )

        ensure_directory(dest_dir.parent)

        staging_dir = staging_path_for(dest_dir)
        if safe_remove_directory(staging_dir, ignore_errors=False):
            logger.info(
                "Discarded stale staging directory",
                extra={"staging": str(staging_dir)},
            )

        try:
            shutil.copytree(source_dir, staging_dir)
        except OSError as e:
            raise DeploymentError(
                f"Failed to copy package files: {e}",
                details={
                    "source": str(source_dir),
                    "staging": str(staging_dir),
                },
            ) from e

        safe_remove_directory(dest_dir, ignore_errors=False)

        try:
            staging_dir.rename(dest_dir)
        except OSError as e:
            raise DeploymentError(
                f"Failed to move staged files into place: {e}",
                details={"staging": str(staging_dir), "dest": str(dest_dir)},
            ) from e

        logger.info(
            "Deployed package files",
            extra={"source": str(source_dir), "dest": str(dest_dir)},
        )
        return dest_dir


class RootLock:
    """
    Exclusive advisory lock over a managed root.

    Uses flock(2) on ``<root>/.update.lock``. The lock is non-blocking:
    acquiring it while another attempt holds it raises UpdateLockedError.
    The kernel drops the lock if the holding process dies, so a crash never
    leaves the root locked.

    Example:
        >>> with RootLock(Path("/var/lib/app")):
        ...     pass  # mutate the root
    """

    LOCK_FILENAME = ".update.lock"

    def __init__(self, root: Path | str) -> None:
        """
        Initialize the lock.

        Args:
            root: Managed root directory; created on acquire if missing.
        """
        self._path = Path(root) / self.LOCK_FILENAME
        self._fd: int | None = None

    @property
    def path(self) -> Path:
        """Path of the lock file."""
        return self._path

    @property
    def locked(self) -> bool:
        """Whether this instance currently holds the lock."""
        return self._fd is not None

    def acquire(self) -> None:
        """
        Take the lock.

        Raises:
            UpdateLockedError: If another holder has the lock.
        """
        if self._fd is not None:
            return

        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(self._path, os.O_RDWR | os.O_CREAT, 0o644)

        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError as e:
            os.close(fd)
            raise UpdateLockedError(
                "Another update is already in progress.",
                details={"lock": str(self._path)},
            ) from e

        os.ftruncate(fd, 0)
        os.write(fd, f"{os.getpid()}\n".encode())
        self._fd = fd

        logger.debug("Acquired root lock", extra={"lock": str(self._path)})

    def release(self) -> None:
        """Release the lock if held."""
        if self._fd is None:
            return

        try:
            fcntl.flock(self._fd, fcntl.LOCK_UN)
        finally:
            os.close(self._fd)
            self._fd = None

        logger.debug("Released root lock", extra={"lock": str(self._path)})

    def __enter__(self) -> RootLock:
        self.acquire()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.release()
