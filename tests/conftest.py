"""
Pytest configuration for the update installer tests.
"""

from __future__ import annotations

import json
import shlex
import sys
from collections.abc import Callable
from pathlib import Path

import pytest

# Configure pytest-asyncio mode
pytest_plugins = ["pytest_asyncio"]


def pytest_configure(config: pytest.Config) -> None:
    """Configure pytest markers."""
    config.addinivalue_line(
        "markers",
        "integration: marks tests as integration tests (deselect with '-m \"not integration\"')",
    )


def python_command(code: str) -> str:
    """Hook command line running a Python snippet with this interpreter."""
    return f"{shlex.quote(sys.executable)} -c {shlex.quote(code)}"


PackageFactory = Callable[..., Path]


@pytest.fixture
def root_dir(tmp_path: Path) -> Path:
    """Managed root (not created yet)."""
    return tmp_path / "root"


@pytest.fixture
def make_package(tmp_path: Path) -> PackageFactory:
    """
    Build update packages on disk.

    Usage: make_package(version="1.2.0", files={"a.txt": "A"}, hook=None)
    """
    counter = 0

    def _make(
        version: str | None = "1.2.0",
        files: dict[str, str] | None = None,
        hook: str | None = None,
        *,
        manifest: object | None = None,
        with_files_dir: bool = True,
    ) -> Path:
        nonlocal counter
        counter += 1
        package = tmp_path / f"package-{counter}"
        package.mkdir()

        if manifest is not None:
            (package / "manifest.json").write_text(
                manifest if isinstance(manifest, str) else json.dumps(manifest)
            )
        elif version is not None:
            (package / "manifest.json").write_text(json.dumps({"Version": version}))

        if with_files_dir:
            files_dir = package / "files"
            files_dir.mkdir()
            for rel_path, content in (files or {"a.txt": "A"}).items():
                target = files_dir / rel_path
                target.parent.mkdir(parents=True, exist_ok=True)
                target.write_text(content)

        if hook is not None:
            (package / "preinstall.txt").write_text(hook)

        return package

    return _make


def snapshot_tree(path: Path) -> dict[str, bytes]:
    """Relative path -> content for every file below path."""
    if not path.exists():
        return {}
    return {
        str(p.relative_to(path)): p.read_bytes()
        for p in sorted(path.rglob("*"))
        if p.is_file()
    }
