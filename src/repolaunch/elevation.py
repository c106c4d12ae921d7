"""Run a command with administrative privileges and report its exit code."""

import base64
import os
from typing import Callable, Sequence

from .errors import CommandExitError, CommandSpawnError
from .platform import is_windows
from .runner import CommandRunner

ElevateFn = Callable[[CommandRunner, str, Sequence[str]], int]


def _ps_quote(value: str) -> str:
    return "'" + str(value).replace("'", "''") + "'"


def powershell_elevation_script(cmd: str, args: Sequence[str]) -> str:
    arg_list = ",".join(_ps_quote(a) for a in args)
    return (
        f"$p = Start-Process -Verb RunAs -Wait -PassThru -FilePath {_ps_quote(cmd)} "
        f"-ArgumentList @({arg_list}); exit $p.ExitCode"
    )


def encode_powershell(script: str) -> str:
    return base64.b64encode(script.encode("utf-16-le")).decode("ascii")


def run_elevated(runner: CommandRunner, cmd: str, args: Sequence[str] = ()) -> int:
    """Run ``cmd`` elevated; returns its exit code (127 when it cannot be started).

    Windows goes through an elevation prompt via ``Start-Process -Verb RunAs``.
    Elsewhere the command runs directly as root, or through non-interactive ``sudo``.
    """
    if is_windows():
        exe, argv = "powershell", [
            "-NoProfile",
            "-ExecutionPolicy",
            "Bypass",
            "-Command",
            powershell_elevation_script(cmd, args),
        ]
    elif hasattr(os, "geteuid") and os.geteuid() == 0:
        exe, argv = cmd, list(args)
    else:
        exe, argv = "sudo", ["-n", cmd, *args]

    try:
        runner.run(exe, argv, tag="elevated", shell=False)
        return 0
    except CommandExitError as e:
        return e.code
    except CommandSpawnError:
        return 127
