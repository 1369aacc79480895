"""
Install/rollback state machine for the update installer.

The UpdateController drives one update attempt at a time through:

- idle -> validating: load and validate the package manifest
- validating -> pre_installing: manifest valid
- pre_installing -> deploying: hook passed or absent
- pre_installing -> rolling_back: hook failed
- rolling_back -> rolled_back: current reset to last known good (or no-op)
- deploying -> activating: files copied into versions/<version>/
- activating -> done: current and last known good both set to the version
- any non-terminal state -> aborted: validation, deployment or storage fault

Validation and deployment faults are re-raised after being recorded;
a failed hook is an orderly outcome and returns a result instead. There are
no retries: each failure is a single rollback-or-abort decision.
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field

from update_installer.audit import HISTORY_FILENAME, AuditLog
from update_installer.errors import (
    InvalidArgumentError,
    UpdateError,
    UpdateLockedError,
)
from update_installer.logging import attempt_context, bind_attempt, get_logger
from update_installer.updates.hooks import PreInstallRunner
from update_installer.updates.manifest import PackageReader
from update_installer.updates.operations import FileDeployer, RootLock
from update_installer.updates.rollback import perform_rollback
from update_installer.updates.version import VersionStore

if TYPE_CHECKING:
    from update_installer.config import HookConfig, InstallerConfig

logger = get_logger(__name__)


class UpdateState(str, Enum):
    """
    States of a single update attempt.

    done, rolled_back and aborted are terminal; the next attempt starts
    again from idle.
    """

    IDLE = "idle"
    VALIDATING = "validating"
    PRE_INSTALLING = "pre_installing"
    DEPLOYING = "deploying"
    ACTIVATING = "activating"
    DONE = "done"
    ROLLING_BACK = "rolling_back"
    ROLLED_BACK = "rolled_back"
    ABORTED = "aborted"


TERMINAL_STATES = frozenset(
    {UpdateState.DONE, UpdateState.ROLLED_BACK, UpdateState.ABORTED}
)

# Valid state transitions
_VALID_TRANSITIONS: dict[UpdateState, set[UpdateState]] = {
    UpdateState.IDLE: {
        UpdateState.VALIDATING,
        UpdateState.ROLLING_BACK,
        UpdateState.ABORTED,
    },
    UpdateState.VALIDATING: {UpdateState.PRE_INSTALLING, UpdateState.ABORTED},
    UpdateState.PRE_INSTALLING: {
        UpdateState.DEPLOYING,
        UpdateState.ROLLING_BACK,
        UpdateState.ABORTED,
    },
    UpdateState.DEPLOYING: {UpdateState.ACTIVATING, UpdateState.ABORTED},
    UpdateState.ACTIVATING: {UpdateState.DONE, UpdateState.ABORTED},
    UpdateState.ROLLING_BACK: {UpdateState.ROLLED_BACK, UpdateState.ABORTED},
    UpdateState.DONE: {UpdateState.IDLE},
    UpdateState.ROLLED_BACK: {UpdateState.IDLE},
    UpdateState.ABORTED: {UpdateState.IDLE},
}


class UpdateResult(BaseModel):
    """
    Outcome of an attempt that ended in done or rolled_back.

    Aborted attempts raise instead of returning a result.
    """

    state: str = Field(..., description="Terminal state of the attempt")
    version: str | None = Field(
        default=None,
        description="Version named by the package manifest",
    )
    previous_version: str | None = Field(
        default=None,
        description="Value of the current pointer before the attempt",
    )
    rolled_back_to: str | None = Field(
        default=None,
        description="Version current was reset to, if a rollback happened",
    )
    message: str = Field(default="", description="Human-readable summary")


class UpdateController:
    """
    Orchestrates package validation, the pre-install hook, deployment and
    activation, falling back to the last known good version when the hook
    fails.

    The whole attempt runs under an exclusive lock on the managed root.

    Attributes:
        root: Managed root directory.
        state: Current state of the attempt.
        store: Version pointers under the root.
        audit: Install history under the root.
    """

    def __init__(
        self,
        root: Path | str,
        *,
        store: VersionStore | None = None,
        reader: PackageReader | None = None,
        hook_runner: PreInstallRunner | None = None,
        deployer: FileDeployer | None = None,
        audit: AuditLog | None = None,
        hook_config: HookConfig | None = None,
    ) -> None:
        """
        Initialize the UpdateController.

        Args:
            root: Managed root directory.
            store: Version store. Defaults to a VersionStore over root.
            reader: Package reader.
            hook_runner: Pre-install hook runner. Defaults to one built from
                hook_config that narrates to the audit log.
            deployer: File deployer.
            audit: Install history. Defaults to <root>/install_history.log.
            hook_config: Hook settings used when hook_runner is not given.
        """
        self._root = Path(root)
        self._store = store or VersionStore(self._root)
        self._audit = audit or AuditLog(self._root / HISTORY_FILENAME)
        self._reader = reader or PackageReader()
        self._hook_runner = hook_runner or PreInstallRunner(
            self._audit, hook_config
        )
        self._deployer = deployer or FileDeployer()
        self._state = UpdateState.IDLE
        self._last_error: str | None = None

    @classmethod
    def from_config(cls, config: InstallerConfig) -> UpdateController:
        """
        Create a controller from the installer configuration.

        Args:
            config: Loaded InstallerConfig.

        Returns:
            Controller managing config.root.
        """
        return cls(config.root_path, hook_config=config.hooks)

    @property
    def root(self) -> Path:
        """Managed root directory."""
        return self._root

    @property
    def state(self) -> UpdateState:
        """Get the current state."""
        return self._state

    @property
    def store(self) -> VersionStore:
        """Version pointers under the root."""
        return self._store

    @property
    def audit(self) -> AuditLog:
        """Install history under the root."""
        return self._audit

    @property
    def last_error(self) -> str | None:
        """Message of the fault that aborted the most recent attempt."""
        return self._last_error

    def _transition_to(self, new_state: UpdateState) -> None:
        """
        Transition to a new state.

        Raises:
            InvalidArgumentError: If the transition is not valid.
        """
        current = self._state

        if new_state not in _VALID_TRANSITIONS.get(current, set()):
            raise InvalidArgumentError(
                f"Invalid state transition from {current.value} to {new_state.value}",
                details={
                    "current_state": current.value,
                    "target_state": new_state.value,
                    "valid_transitions": sorted(
                        s.value for s in _VALID_TRANSITIONS.get(current, set())
                    ),
                },
            )

        self._state = new_state
        bind_attempt(state=new_state.value)

        logger.info(
            f"State transition: {current.value} -> {new_state.value}",
            extra={"old_state": current.value, "new_state": new_state.value},
        )

    def _begin(self) -> None:
        """Return to idle after a finished attempt."""
        if self._state in TERMINAL_STATES:
            self._transition_to(UpdateState.IDLE)
        elif self._state != UpdateState.IDLE:
            raise UpdateLockedError(
                f"An attempt is already running ({self._state.value})",
                details={"current_state": self._state.value},
            )
        self._last_error = None

    def _abort(self, error: Exception) -> None:
        """Record a fatal fault and move to aborted."""
        message = error.message if isinstance(error, UpdateError) else str(error)
        self._last_error = message
        self._audit.record(f"FATAL ERROR: {message}")

        logger.error(
            "Update attempt aborted",
            extra={
                "state": self._state.value,
                "error_code": getattr(error, "error_code", type(error).__name__),
            },
            exc_info=not isinstance(error, UpdateError),
        )

        if self._state not in TERMINAL_STATES:
            self._transition_to(UpdateState.ABORTED)

    async def update(self, package_path: Path | str) -> UpdateResult:
        """
        Install a package.

        Args:
            package_path: Package directory holding manifest.json, files/
                and optionally preinstall.txt.

        Returns:
            UpdateResult with state "done", or "rolled_back" when the
            pre-install hook failed.

        Raises:
            PackageValidationError: If the package or its manifest is invalid.
                Nothing under the root has been modified.
            DeploymentError: If the files could not be deployed. Pointers
                are unchanged.
            VersionStoreError: If a pointer could not be written.
            UpdateLockedError: If another attempt holds the root.
        """
        package_path = Path(package_path)
        self._begin()

        with attempt_context(root=self._root, state=self._state.value):
            try:
                with RootLock(self._root):
                    self._audit.record("----- Starting Update Process -----")
                    return await self._run_update(package_path)
            except Exception as e:
                self._abort(e)
                raise

    async def _run_update(self, package_path: Path) -> UpdateResult:
        self._transition_to(UpdateState.VALIDATING)
        manifest = self._reader.load(package_path)
        version = manifest.version
        bind_attempt(version=version)
        self._audit.record(f"Validated package for version: {version}")

        previous = self._store.get_current()

        self._transition_to(UpdateState.PRE_INSTALLING)
        if not await self._hook_runner.run(package_path):
            self._audit.record("Pre-install failed. Rolling back...")
            self._transition_to(UpdateState.ROLLING_BACK)
            target = perform_rollback(self._store, self._audit)
            self._transition_to(UpdateState.ROLLED_BACK)

            if target is None:
                message = "Pre-install failed; no last known good version to roll back to"
            else:
                message = f"Pre-install failed; rolled back to {target}"

            return UpdateResult(
                state=self._state.value,
                version=version,
                previous_version=previous,
                rolled_back_to=target,
                message=message,
            )

        self._transition_to(UpdateState.DEPLOYING)
        version_dir = self._deployer.deploy(
            self._reader.files_dir(package_path),
            self._store.version_dir(version),
        )
        self._audit.record(f"Copied files to {version_dir}")

        # lastKnownGood is written only after deploy() has returned
        self._transition_to(UpdateState.ACTIVATING)
        self._store.set_current(version)
        self._store.set_last_known_good(version)
        self._audit.record(f"Update successful. Active version: {version}")

        self._transition_to(UpdateState.DONE)
        self._audit.record("----- Update Complete -----")

        return UpdateResult(
            state=self._state.value,
            version=version,
            previous_version=previous,
            message=f"Updated to version {version}",
        )

    async def rollback(self) -> UpdateResult:
        """
        Point current back at the last known good version on request.

        Returns:
            UpdateResult with state "rolled_back"; rolled_back_to is None when
            there was no last known good version.

        Raises:
            UpdateLockedError: If another attempt holds the root.
            VersionStoreError: If the pointer could not be written.
        """
        self._begin()

        with attempt_context(root=self._root, state=self._state.value):
            try:
                with RootLock(self._root):
                    self._audit.record("----- Starting Manual Rollback -----")
                    previous = self._store.get_current()
                    self._transition_to(UpdateState.ROLLING_BACK)
                    target = perform_rollback(self._store, self._audit)
                    self._transition_to(UpdateState.ROLLED_BACK)
            except Exception as e:
                self._abort(e)
                raise

        return UpdateResult(
            state=self._state.value,
            version=target,
            previous_version=previous,
            rolled_back_to=target,
            message=(
                f"Rolled back to {target}"
                if target is not None
                else "No last known good version to roll back to"
            ),
        )

    def get_status(self) -> dict[str, Any]:
        """
        Get the state of the controller and the managed root.

        Returns:
            Dictionary with the attempt state, both pointers and the
            installed versions.
        """
        return {
            "state": self._state.value,
            "root": str(self._root),
            "current": self._store.get_current(),
            "last_known_good": self._store.get_last_known_good(),
            "installed_versions": self._store.list_installed_versions(),
            "last_error": self._last_error,
        }

    def close(self) -> None:
        """Release the install history file."""
        self._audit.close()
