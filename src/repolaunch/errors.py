"""Typed failures raised by the launch workflow."""

from dataclasses import dataclass
from typing import Optional, Sequence


class LaunchError(Exception):
    """Base class for every failure that aborts a launch."""

    def __init__(self, message: str, *, remediation: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.remediation = remediation

    def __str__(self) -> str:
        return self.message


class CommandSpawnError(LaunchError):
    """The executable could not be started (not found, not permitted)."""

    def __init__(self, cmd: str, reason: str):
        super().__init__(f"Failed to start '{cmd}': {reason}")
        self.cmd = cmd
        self.reason = reason


class CommandExitError(LaunchError):
    def __init__(self, cmd: str, code: int, last_error_lines: Sequence[str] = ()):
        self.cmd = cmd
        self.code = code
        self.last_error_lines = list(last_error_lines)
        msg = f"'{cmd}' exited with code {code}"
        if self.last_error_lines:
            msg += ". Main errors: " + " | ".join(self.last_error_lines)
        super().__init__(msg)


class LaunchCancelled(LaunchError):
    def __init__(self, message: str = "Launch cancelled by stop request"):
        super().__init__(message)


class ToolMissingError(LaunchError):
    def __init__(self, tool: str, download_url: Optional[str] = None, detail: str = ""):
        msg = f"Required tool '{tool}' is not installed"
        if detail:
            msg += f": {detail}"
        remediation = f"Install {tool} from {download_url} and retry" if download_url else None
        if remediation:
            msg += f". {remediation}"
        super().__init__(msg, remediation=remediation)
        self.tool = tool
        self.download_url = download_url


class GitSyncError(LaunchError):
    pass


class EnvFileError(LaunchError):
    def __init__(self, path: str, reason: str):
        super().__init__(f"Failed to create .env file at {path}: {reason}")
        self.path = path


class InstallError(LaunchError):
    def __init__(self, message: str, *, code: Optional[int] = None, last_error_lines: Sequence[str] = ()):
        super().__init__(message)
        self.code = code
        self.last_error_lines = list(last_error_lines)


class BuildError(InstallError):
    pass


class DatabaseError(LaunchError):
    pass


class ProcessSpawnError(LaunchError):
    def __init__(self, role: str, reason: str):
        super().__init__(f"Failed to start {role}: {reason}")
        self.role = role


@dataclass(frozen=True)
class ProcessExitError:
    """Recorded when a supervised process exits after the launch reached running."""

    role: str
    code: Optional[int]
    signal: Optional[str]

    def describe(self) -> str:
        return f"{self.role} exited (code={self.code}, signal={self.signal})"


def last_error_lines_of(exc: BaseException) -> list[str]:
    return list(getattr(exc, "last_error_lines", None) or [])
