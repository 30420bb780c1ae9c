"""Exception types raised by the installer."""

from __future__ import annotations


class StackError(Exception):
    """Base class for installer failures."""

    exit_code = 1


class ValidationError(StackError):
    """Invalid input or inconsistent manifest. Never retried."""

    exit_code = 2


class PrivilegeError(StackError):
    """The installer was started without root privileges."""


class RunAborted(StackError):
    """The run was aborted, by the user or by unattended retry exhaustion."""


class CommandError(StackError):
    """An external command exited non-zero."""

    def __init__(self, cmd: list[str], returncode: int, stderr: str = "") -> None:
        self.cmd = list(cmd)
        self.returncode = returncode
        self.stderr = stderr
        detail = f": {stderr.strip()}" if stderr and stderr.strip() else ""
        super().__init__(f"Command failed with exit code {returncode}: {' '.join(self.cmd)}{detail}")
