"""
Tests for rollback functionality.

Tests cover:
- perform_rollback with and without a last known good version
- can_rollback
"""

from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path

import pytest
from conftest import snapshot_tree

from update_installer.audit import AuditLog
from update_installer.updates.rollback import can_rollback, perform_rollback
from update_installer.updates.version import VersionStore


@pytest.fixture
def store(root_dir: Path) -> VersionStore:
    return VersionStore(root_dir)


@pytest.fixture
def audit(root_dir: Path) -> Iterator[AuditLog]:
    log = AuditLog(root_dir / "install_history.log", echo=False)
    yield log
    log.close()


# =============================================================================
# perform_rollback Tests
# =============================================================================


class TestPerformRollback:
    """Tests for perform_rollback function."""

    def test_resets_current_to_last_known_good(
        self, store: VersionStore, audit: AuditLog
    ) -> None:
        """Test current is pointed back at the last known good version."""
        store.version_dir("1.1.0").mkdir(parents=True)
        store.set_last_known_good("1.1.0")
        store.set_current("1.2.0")

        assert perform_rollback(store, audit) == "1.1.0"

        assert store.get_current() == "1.1.0"
        assert store.get_last_known_good() == "1.1.0"
        assert [e.message for e in audit.entries()] == [
            "Rolled back to version: 1.1.0",
            "----- Rollback Complete -----",
        ]

    def test_without_last_known_good_is_noop(
        self, store: VersionStore, audit: AuditLog
    ) -> None:
        """Test nothing changes when no last known good version exists."""
        store.set_current("1.0.0")

        assert perform_rollback(store, audit) is None

        assert store.get_current() == "1.0.0"
        assert store.get_last_known_good() is None
        assert [e.message for e in audit.entries()] == [
            "No last known good version found. Cannot rollback."
        ]

    def test_fresh_root_stays_empty(self, store: VersionStore, root_dir: Path) -> None:
        """Test a rollback on a fresh root creates no pointers."""
        assert perform_rollback(store) is None

        assert store.get_current() is None
        assert not store.current_file.exists()
        assert snapshot_tree(store.versions_dir) == {}

    def test_missing_version_directory_still_rolls_back(self, store: VersionStore) -> None:
        """Test a last known good without a directory is warned about, not refused."""
        store.set_last_known_good("0.9.0")
        store.set_current("1.0.0")

        assert perform_rollback(store) == "0.9.0"

        assert store.get_current() == "0.9.0"

    def test_version_directories_untouched(
        self, store: VersionStore, audit: AuditLog
    ) -> None:
        """Test rollback never modifies deployed versions."""
        for version in ("1.1.0", "1.2.0"):
            version_dir = store.version_dir(version)
            version_dir.mkdir(parents=True)
            (version_dir / "a.txt").write_text(version)
        store.set_last_known_good("1.1.0")
        store.set_current("1.2.0")
        before = snapshot_tree(store.versions_dir)

        perform_rollback(store, audit)

        assert snapshot_tree(store.versions_dir) == before


# =============================================================================
# can_rollback Tests
# =============================================================================


class TestCanRollback:
    """Tests for can_rollback function."""

    def test_false_without_last_known_good(self, store: VersionStore) -> None:
        """Test rollback is unavailable on a fresh root."""
        assert can_rollback(store) is False

    def test_true_with_last_known_good(self, store: VersionStore) -> None:
        """Test rollback is available once a version was confirmed good."""
        store.set_last_known_good("1.0.0")
        assert can_rollback(store) is True
