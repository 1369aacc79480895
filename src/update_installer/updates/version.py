"""
Version pointers and version directories for the update installer.

Layout under the managed root:

    <root>/versions/<version>/...     deployed file tree per version
    <root>/current.txt                active version
    <root>/last_known_good.txt        last version whose deployment completed

Each pointer file holds a single version string with no trailing newline.
Pointer writes are atomic (temp file + fsync + rename) so a reader never
observes a half-written pointer. The two pointers are independent: writing
one never touches the other.
"""

from __future__ import annotations

import os
from pathlib import Path

from update_installer.errors import VersionStoreError
from update_installer.logging import get_logger

logger = get_logger(__name__)


class VersionStore:
    """
    Durable read/write access to the version pointers under a root.

    Attributes:
        root: Managed root directory.
        versions_dir: Directory holding one subdirectory per deployed version.
        current_file: Pointer to the active version.
        last_known_good_file: Pointer to the last fully deployed version.
    """

    VERSIONS_DIRNAME = "versions"
    CURRENT_FILENAME = "current.txt"
    LAST_KNOWN_GOOD_FILENAME = "last_known_good.txt"

    def __init__(self, root: Path | str) -> None:
        """
        Initialize the VersionStore.

        Args:
            root: Managed root directory. It is not created until the first
                pointer write.
        """
        self.root = Path(root)
        self.versions_dir = self.root / self.VERSIONS_DIRNAME
        self.current_file = self.root / self.CURRENT_FILENAME
        self.last_known_good_file = self.root / self.LAST_KNOWN_GOOD_FILENAME

    def get_current(self) -> str | None:
        """Active version, or None if no version was ever activated."""
        return self._read_pointer(self.current_file)

    def get_last_known_good(self) -> str | None:
        """Last fully deployed version, or None if there is none."""
        return self._read_pointer(self.last_known_good_file)

    def set_current(self, version: str) -> None:
        """Overwrite the active version pointer."""
        self._write_pointer(self.current_file, version)

    def set_last_known_good(self, version: str) -> None:
        """Overwrite the last known good pointer."""
        self._write_pointer(self.last_known_good_file, version)

    def version_dir(self, version: str) -> Path:
        """Directory a version is deployed into."""
        return self.versions_dir / version

    def has_version(self, version: str) -> bool:
        """Whether a deployed directory exists for a version."""
        return self.version_dir(version).is_dir()

    def list_installed_versions(self) -> list[str]:
        """
        List deployed versions.

        Hidden entries (staging directories) are skipped.

        Returns:
            Version names sorted alphabetically.
        """
        if not self.versions_dir.is_dir():
            return []

        return sorted(
            entry.name
            for entry in self.versions_dir.iterdir()
            if entry.is_dir() and not entry.name.startswith(".")
        )

    def _read_pointer(self, path: Path) -> str | None:
        """
        Read a pointer file.

        Surrounding whitespace is trimmed; a missing or blank file reads as None.
        """
        if not path.exists():
            return None

        value = path.read_text(encoding="utf-8").strip()
        return value or None

    def _write_pointer(self, path: Path, version: str) -> None:
        """
        Replace the full contents of a pointer file atomically.

        Raises:
            VersionStoreError: If the pointer cannot be written.
        """
        temp_path = path.with_name(f".{path.name}.tmp")

        try:
            path.parent.mkdir(parents=True, exist_ok=True)

            with open(temp_path, "w", encoding="utf-8") as f:
                f.write(version)
                f.flush()
                os.fsync(f.fileno())

            temp_path.replace(path)
        except OSError as e:
            raise VersionStoreError(
                f"Failed to write version pointer {path.name}: {e}",
                details={"path": str(path), "version": version},
            ) from e

        logger.debug(
            "Wrote version pointer",
            extra={"path": str(path), "version": version},
        )
