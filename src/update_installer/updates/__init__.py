"""
Install/rollback machinery for the update installer.

This package implements:
- Package validation and manifest loading
- Pre-install hook execution with a bounded wait
- Staged deployment of a package's file tree
- Version pointers (current, last known good)
- Rollback to the last known good version
- The state machine orchestrating a single update attempt
"""

from update_installer.updates.hooks import PreInstallRunner
from update_installer.updates.manifest import Manifest, PackageReader
from update_installer.updates.operations import (
    FileDeployer,
    RootLock,
    ensure_directory,
    safe_remove_directory,
)
from update_installer.updates.rollback import can_rollback, perform_rollback
from update_installer.updates.state_machine import (
    UpdateController,
    UpdateResult,
    UpdateState,
)
from update_installer.updates.version import VersionStore

__all__ = [
    # Packages
    "Manifest",
    "PackageReader",
    # Hooks
    "PreInstallRunner",
    # Operations
    "FileDeployer",
    "RootLock",
    "ensure_directory",
    "safe_remove_directory",
    # Version pointers
    "VersionStore",
    # Rollback
    "perform_rollback",
    "can_rollback",
    # State machine
    "UpdateController",
    "UpdateResult",
    "UpdateState",
]
