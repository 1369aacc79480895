"""
Rollback logic for the update installer.

Rolling back only moves the ``current`` pointer back to the last known good
version. Deployed version directories are never touched, and
``last_known_good`` itself is never changed by a rollback.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from update_installer.logging import get_logger

if TYPE_CHECKING:
    from update_installer.audit import AuditLog
    from update_installer.updates.version import VersionStore

logger = get_logger(__name__)


def perform_rollback(
    store: VersionStore,
    audit: AuditLog | None = None,
) -> str | None:
    """
    Point ``current`` at the last known good version.

    Args:
        store: Version pointers of the managed root.
        audit: Install history to narrate to.

    Returns:
        The version rolled back to, or None when no last known good version
        exists (``current`` is then left exactly as it was).

    Raises:
        VersionStoreError: If the current pointer cannot be written.
    """

    def record(message: str) -> None:
        if audit is not None:
            audit.record(message)
        else:
            logger.info(message)

    last_good = store.get_last_known_good()

    if last_good is None:
        record("No last known good version found. Cannot rollback.")
        return None

    if not store.has_version(last_good):
        logger.warning(
            "Last known good version has no deployed directory",
            extra={"version": last_good, "path": str(store.version_dir(last_good))},
        )

    store.set_current(last_good)
    record(f"Rolled back to version: {last_good}")
    record("----- Rollback Complete -----")
    return last_good


def can_rollback(store: VersionStore) -> bool:
    """Whether a last known good version is available to roll back to."""
    return store.get_last_known_good() is not None
