"""
Update package loading and validation.

An update package is a directory laid out as:

    <package>/manifest.json      {"Version": "<string>"}
    <package>/files/             tree deployed into versions/<version>/
    <package>/preinstall.txt     optional hook command line

PackageReader only reads; it never touches the managed root.
"""

from __future__ import annotations

import json
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from update_installer.errors import (
    ManifestInvalidError,
    ManifestMissingError,
    PackageNotFoundError,
)
from update_installer.logging import get_logger

logger = get_logger(__name__)

MANIFEST_FILENAME = "manifest.json"
FILES_DIRNAME = "files"
PREINSTALL_FILENAME = "preinstall.txt"

_FORBIDDEN_VERSION_CHARS = ("/", "\\", "\x00")


class Manifest(BaseModel):
    """
    Package metadata declaring the version being installed.

    The on-disk key is ``Version``; ``version`` is accepted as well.
    Unknown keys are ignored. Instances are immutable.

    Attributes:
        version: Version identifier, also used as the directory name under
            versions/.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    version: str = Field(
        ...,
        alias="Version",
        description="Version identifier of the package",
    )

    @field_validator("version")
    @classmethod
    def validate_version(cls, v: str) -> str:
        """Strip the version and make sure it can name a single directory."""
        v = v.strip()
        if not v:
            raise ValueError("version missing")
        if any(ch in v for ch in _FORBIDDEN_VERSION_CHARS):
            raise ValueError("version must not contain path separators")
        if v.startswith("."):
            raise ValueError("version must not start with '.'")
        return v


class PackageReader:
    """
    Validates an update package directory and loads its manifest.
    """

    def load(self, package_path: Path | str) -> Manifest:
        """
        Load and validate the manifest of a package.

        Args:
            package_path: Package directory.

        Returns:
            The validated Manifest.

        Raises:
            PackageNotFoundError: If package_path is not a directory.
            ManifestMissingError: If manifest.json is absent.
            ManifestInvalidError: If the manifest cannot be parsed or its
                version is empty, whitespace-only or not a valid directory name.
        """
        package_path = Path(package_path)

        if not package_path.is_dir():
            raise PackageNotFoundError(
                "Update package not found.",
                details={"package": str(package_path)},
            )

        manifest_path = package_path / MANIFEST_FILENAME
        if not manifest_path.is_file():
            raise ManifestMissingError(
                "Manifest file missing.",
                details={"manifest": str(manifest_path)},
            )

        try:
            data = json.loads(manifest_path.read_text(encoding="utf-8-sig"))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
            raise ManifestInvalidError(
                f"Invalid manifest: {e}",
                details={"manifest": str(manifest_path)},
            ) from e

        if not isinstance(data, dict):
            raise ManifestInvalidError(
                "Invalid manifest: expected a JSON object.",
                details={"manifest": str(manifest_path)},
            )

        if "Version" not in data and "version" not in data:
            raise ManifestInvalidError(
                "Invalid manifest: version missing.",
                details={"manifest": str(manifest_path)},
            )

        try:
            manifest = Manifest.model_validate(data)
        except ValidationError as e:
            messages = [err["msg"] for err in e.errors()]
            raise ManifestInvalidError(
                f"Invalid manifest: {messages[0] if messages else 'invalid version'}",
                details={"manifest": str(manifest_path), "errors": messages},
            ) from e

        logger.debug(
            "Loaded manifest",
            extra={"package": str(package_path), "version": manifest.version},
        )
        return manifest

    @staticmethod
    def files_dir(package_path: Path | str) -> Path:
        """Directory holding the file tree to deploy."""
        return Path(package_path) / FILES_DIRNAME

    @staticmethod
    def preinstall_path(package_path: Path | str) -> Path:
        """Location of the optional pre-install hook."""
        return Path(package_path) / PREINSTALL_FILENAME
