"""
Tests for the pre-install hook runner.

Tests cover:
- Absent and empty hooks
- Exit status handling
- Start failures and malformed commands
- Timeout with process kill
- Allow-list and shell execution settings
"""

from __future__ import annotations

import asyncio
import sys
from collections.abc import Iterator
from pathlib import Path

import pytest
from pydantic import ValidationError
from conftest import PackageFactory, python_command

from update_installer.audit import AuditLog
from update_installer.config import HookConfig
from update_installer.errors import InvalidArgumentError
from update_installer.updates.hooks import PreInstallRunner


@pytest.fixture
def audit(tmp_path: Path) -> Iterator[AuditLog]:
    log = AuditLog(tmp_path / "history.log", echo=False)
    yield log
    log.close()


def _messages(audit: AuditLog) -> list[str]:
    return [entry.message for entry in audit.entries()]


# =============================================================================
# Outcome Tests
# =============================================================================


class TestHookOutcomes:
    """Tests for hook pass/fail decisions."""

    @pytest.mark.asyncio
    async def test_absent_hook_passes(
        self, make_package: PackageFactory, audit: AuditLog
    ) -> None:
        """Test a package without preinstall.txt passes."""
        package = make_package()

        assert await PreInstallRunner(audit).run(package) is True
        assert _messages(audit) == ["No pre-install script found. Skipping."]

    @pytest.mark.asyncio
    async def test_empty_hook_passes(
        self, make_package: PackageFactory, audit: AuditLog
    ) -> None:
        """Test a whitespace-only hook file is treated as no hook."""
        package = make_package(hook="  \n\n")

        assert await PreInstallRunner(audit).run(package) is True
        assert _messages(audit) == ["Pre-install script is empty. Skipping."]

    @pytest.mark.asyncio
    async def test_exit_zero_passes(
        self, make_package: PackageFactory, audit: AuditLog
    ) -> None:
        """Test exit status 0 passes and is narrated."""
        command = python_command("import sys; sys.exit(0)")
        package = make_package(hook=command + "\n")

        assert await PreInstallRunner(audit).run(package) is True
        assert _messages(audit) == [
            f"Running pre-install: {command}",
            "Pre-install exit code: 0",
        ]

    @pytest.mark.asyncio
    async def test_nonzero_exit_fails(
        self, make_package: PackageFactory, audit: AuditLog
    ) -> None:
        """Test a non-zero exit status fails."""
        package = make_package(hook=python_command("import sys; sys.exit(1)"))

        assert await PreInstallRunner(audit).run(package) is False
        assert _messages(audit)[-1] == "Pre-install exit code: 1"

    @pytest.mark.asyncio
    async def test_runs_in_package_directory(
        self, make_package: PackageFactory, audit: AuditLog
    ) -> None:
        """Test the hook's working directory is the package directory."""
        code = "import os, sys; sys.exit(0 if os.path.isfile('manifest.json') else 3)"
        package = make_package(hook=python_command(code))

        assert await PreInstallRunner(audit).run(package) is True

    @pytest.mark.asyncio
    async def test_output_does_not_affect_outcome(
        self, make_package: PackageFactory, audit: AuditLog
    ) -> None:
        """Test stdout and stderr are captured without changing the result."""
        code = "import sys; print('hello'); print('warn', file=sys.stderr)"
        package = make_package(hook=python_command(code))

        assert await PreInstallRunner(audit).run(package) is True

    @pytest.mark.asyncio
    async def test_without_audit_log(self, make_package: PackageFactory) -> None:
        """Test the runner works without an install history."""
        package = make_package(hook=python_command("pass"))

        assert await PreInstallRunner().run(package) is True


# =============================================================================
# Failure Tests
# =============================================================================


class TestHookFailures:
    """Tests for hooks that cannot run to completion."""

    @pytest.mark.asyncio
    async def test_missing_executable_fails(
        self, make_package: PackageFactory, audit: AuditLog
    ) -> None:
        """Test a hook naming a missing program fails without raising."""
        package = make_package(hook="definitely-not-a-real-program-xyz --flag")

        assert await PreInstallRunner(audit).run(package) is False
        assert _messages(audit)[-1].startswith("Pre-install exception:")

    @pytest.mark.asyncio
    async def test_malformed_command_fails(
        self, make_package: PackageFactory, audit: AuditLog
    ) -> None:
        """Test an unbalanced quote fails without starting anything."""
        package = make_package(hook="echo 'unterminated")

        assert await PreInstallRunner(audit).run(package) is False
        assert "Malformed pre-install command" in _messages(audit)[-1]

    @pytest.mark.asyncio
    async def test_timeout_kills_hook(
        self, make_package: PackageFactory, audit: AuditLog
    ) -> None:
        """Test a hook outliving the timeout is killed and fails."""
        package = make_package(hook=python_command("import time; time.sleep(30)"))
        runner = PreInstallRunner(audit, HookConfig(timeout_seconds=0.5))

        assert await runner.run(package) is False
        assert _messages(audit)[-1] == "Pre-install timed out after 0.5s"

    @pytest.mark.asyncio
    async def test_timeout_kills_shell_children(
        self, make_package: PackageFactory, audit: AuditLog, tmp_path: Path
    ) -> None:
        """Test programs started by a shell hook die with it on timeout."""
        marker = tmp_path / "late-write"
        child = python_command(
            f"import time; time.sleep(1.5); open({str(marker)!r}, 'w').close()"
        )
        package = make_package(hook=f"{child}; exit 0")
        runner = PreInstallRunner(
            audit, HookConfig(use_shell=True, timeout_seconds=0.5)
        )

        assert await runner.run(package) is False

        await asyncio.sleep(2)
        assert not marker.exists()


# =============================================================================
# Configuration Tests
# =============================================================================


class TestHookConfiguration:
    """Tests for allow-list and shell settings."""

    def test_default_config(self) -> None:
        """Test the runner falls back to default hook settings."""
        runner = PreInstallRunner()

        assert runner.config.timeout_seconds == 300.0
        assert runner.config.use_shell is False
        assert runner.config.allowed_commands == []

    def test_allow_list_accepts_basename(self) -> None:
        """Test an executable is allowed by full path or basename."""
        runner = PreInstallRunner(
            config=HookConfig(allowed_commands=[Path(sys.executable).name])
        )

        argv = runner._check_allowed(f"{sys.executable} -c pass")

        assert argv == [sys.executable, "-c", "pass"]

    def test_allow_list_rejects_other_commands(self) -> None:
        """Test an executable outside the allow-list is rejected."""
        runner = PreInstallRunner(config=HookConfig(allowed_commands=["true"]))

        with pytest.raises(InvalidArgumentError) as exc_info:
            runner._check_allowed("rm -rf /tmp/x")

        assert exc_info.value.details["allowed_commands"] == ["true"]

    @pytest.mark.asyncio
    async def test_rejected_command_fails_hook(
        self, make_package: PackageFactory, audit: AuditLog
    ) -> None:
        """Test a rejected hook sends the attempt down the failure path."""
        package = make_package(hook=python_command("pass"))
        runner = PreInstallRunner(audit, HookConfig(allowed_commands=["true"]))

        assert await runner.run(package) is False
        assert "not allowed" in _messages(audit)[-1]

    @pytest.mark.asyncio
    async def test_shell_mode_interprets_operators(
        self, make_package: PackageFactory, audit: AuditLog
    ) -> None:
        """Test shell mode runs the line through the shell."""
        failing = python_command("import sys; sys.exit(4)")
        package = make_package(hook=f"{failing} || exit 0")

        shell_runner = PreInstallRunner(audit, HookConfig(use_shell=True))
        assert await shell_runner.run(package) is True

    @pytest.mark.asyncio
    async def test_exec_mode_passes_operators_as_arguments(
        self, make_package: PackageFactory, audit: AuditLog
    ) -> None:
        """Test argv mode hands shell operators to the program verbatim."""
        code = "import sys; sys.exit(0 if sys.argv[1:] == ['||', 'x'] else 5)"
        package = make_package(hook=f"{python_command(code)} '||' x")

        assert await PreInstallRunner(audit).run(package) is True

    def test_allow_list_requires_argv_mode(self) -> None:
        """Test an allow-list cannot be paired with shell execution."""
        with pytest.raises(ValidationError):
            PreInstallRunner(config=HookConfig(use_shell=True, allowed_commands=["true"]))

    @pytest.mark.asyncio
    async def test_allow_listed_command_cannot_chain(
        self, make_package: PackageFactory, audit: AuditLog, tmp_path: Path
    ) -> None:
        """Test operators after an allowed executable are passed as arguments."""
        marker = tmp_path / "chained"
        package = make_package(hook=f"true && touch {marker}")
        runner = PreInstallRunner(audit, HookConfig(allowed_commands=["true"]))

        assert await runner.run(package) is True
        assert not marker.exists()
