"""
Pre-install hook execution for the update installer.

A package may ship ``preinstall.txt`` holding a single command line. The hook
gates deployment: a zero exit status lets the update proceed, anything else
(including failure to start the process, a rejected command or a timeout)
sends the attempt down the rollback branch.

The command comes from the package and runs with the installer's privileges
and environment. By default it is split with shlex and executed without a
shell; ``HookConfig.use_shell`` restores shell execution.
``HookConfig.allowed_commands`` restricts which executable may be started and
is only accepted in argv mode, where the rest of the line reaches that
executable as plain arguments.
"""

from __future__ import annotations

import asyncio
import contextlib
import os
import shlex
import signal
from pathlib import Path
from typing import TYPE_CHECKING

from update_installer.config import HookConfig
from update_installer.errors import InvalidArgumentError
from update_installer.logging import get_logger
from update_installer.updates.manifest import PackageReader

if TYPE_CHECKING:
    from update_installer.audit import AuditLog

logger = get_logger(__name__)


class PreInstallRunner:
    """
    Runs a package's optional pre-install hook and reports whether it passed.
    """

    def __init__(
        self,
        audit: AuditLog | None = None,
        config: HookConfig | None = None,
    ) -> None:
        """
        Initialize the runner.

        Args:
            audit: Install history receiving a note for every outcome.
            config: Hook execution settings. Defaults to HookConfig().
        """
        self._audit = audit
        self._config = config or HookConfig()

    @property
    def config(self) -> HookConfig:
        """Hook execution settings."""
        return self._config

    def _record(self, message: str) -> None:
        if self._audit is not None:
            self._audit.record(message)
        else:
            logger.info(message)

    async def run(self, package_path: Path | str) -> bool:
        """
        Run the package's pre-install hook.

        Args:
            package_path: Package directory.

        Returns:
            True if the hook is absent, empty or exited with status zero;
            False otherwise. Never raises for hook problems.
        """
        hook_path = PackageReader.preinstall_path(package_path)

        if not hook_path.is_file():
            self._record("No pre-install script found. Skipping.")
            return True

        try:
            command = hook_path.read_text(encoding="utf-8-sig").strip()

            if not command:
                self._record("Pre-install script is empty. Skipping.")
                return True

            self._record(f"Running pre-install: {command}")

            returncode, stdout, stderr = await self._execute(
                command, cwd=Path(package_path)
            )
        except TimeoutError:
            self._record(
                f"Pre-install timed out after {self._config.timeout_seconds}s"
            )
            return False
        except Exception as e:
            self._record(f"Pre-install exception: {e}")
            return False

        if stdout:
            logger.debug("Pre-install output", extra={"stdout": stdout})
        if stderr:
            logger.debug("Pre-install errors", extra={"stderr": stderr})

        self._record(f"Pre-install exit code: {returncode}")
        return returncode == 0

    def _check_allowed(self, command: str) -> list[str]:
        """
        Split a hook command and check it against the allow-list.

        Returns:
            The command as an argument vector.

        Raises:
            InvalidArgumentError: If the command is malformed or its
                executable is not allowed.
        """
        try:
            argv = shlex.split(command)
        except ValueError as e:
            raise InvalidArgumentError(
                f"Malformed pre-install command: {e}",
                details={"command": command},
            ) from e

        if not argv:
            raise InvalidArgumentError(
                "Pre-install command is empty", details={"command": command}
            )

        allowed = self._config.allowed_commands
        if allowed and argv[0] not in allowed and Path(argv[0]).name not in allowed:
            raise InvalidArgumentError(
                f"Pre-install command not allowed: {argv[0]}",
                details={"command": command, "allowed_commands": allowed},
            )

        return argv

    async def _execute(self, command: str, *, cwd: Path) -> tuple[int, str, str]:
        """
        Start the hook and wait for it with a bounded timeout.

        The hook runs in its own session; when the timeout expires the whole
        process group is killed, including children started by a shell.

        Returns:
            Tuple of (return_code, stdout, stderr).

        Raises:
            TimeoutError: If the hook outlives timeout_seconds.
            InvalidArgumentError: If the command is rejected.
            OSError: If the process cannot be started.
        """
        argv = self._check_allowed(command)

        if self._config.use_shell:
            process = await asyncio.create_subprocess_shell(
                command,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=cwd,
                start_new_session=True,
            )
        else:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=cwd,
                start_new_session=True,
            )

        try:
            stdout, stderr = await asyncio.wait_for(
                process.communicate(),
                timeout=self._config.timeout_seconds,
            )
        except TimeoutError:
            with contextlib.suppress(ProcessLookupError):
                os.killpg(process.pid, signal.SIGKILL)
            await process.wait()
            logger.warning(
                "Pre-install hook killed after timeout",
                extra={"command": command, "pid": process.pid},
            )
            raise

        return (
            process.returncode,
            stdout.decode("utf-8", errors="replace"),
            stderr.decode("utf-8", errors="replace"),
        )
