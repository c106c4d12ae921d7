from __future__ import annotations

import os
import signal
import subprocess
import sys
from pathlib import Path
from typing import Mapping, Optional

import click

APP_NAME = "repolaunch"
WINDOWS_WORKSPACE = r"C:\repolaunch-workspace"

# Executables that are batch wrappers on Windows and need a shell there.
_SHELL_WRAPPED = {"npm", "npx", "yarn", "pnpm", "corepack", "gradle", "nest", "vite"}


def is_windows() -> bool:
    return sys.platform == "win32"


def is_macos() -> bool:
    return sys.platform == "darwin"


def extra_search_path(platform: Optional[str] = None, environ: Optional[Mapping[str, str]] = None) -> list[str]:
    """Directories prepended to PATH so freshly installed tools are found without a new login."""
    plat = platform or sys.platform
    env = environ if environ is not None else os.environ
    if plat == "darwin":
        return ["/opt/homebrew/bin", "/usr/local/bin"]
    if plat == "win32":
        program_files = env.get("ProgramFiles") or r"C:\Program Files"
        dirs = [
            os.path.join(program_files, "MySQL", "MySQL Server 8.0", "bin"),
            os.path.join(program_files, "nodejs"),
            os.path.join(program_files, "Git", "cmd"),
        ]
        appdata = env.get("APPDATA")
        if appdata:
            dirs.append(os.path.join(appdata, "npm"))
        return dirs
    return ["/usr/local/bin", "/usr/bin"]


def env_with_default_path(
    base: Optional[Mapping[str, str]] = None,
    overrides: Optional[Mapping[str, str]] = None,
    *,
    platform: Optional[str] = None,
) -> dict[str, str]:
    env = dict(os.environ if base is None else base)
    if overrides:
        env.update({str(k): str(v) for k, v in overrides.items() if v is not None})

    path_key = "Path" if "Path" in env and "PATH" not in env else "PATH"
    current = env.get(path_key, "")
    parts = [p for p in current.split(os.pathsep) if p]
    extra = list(extra_search_path(platform, env))
    if overrides and overrides.get("JAVA_HOME"):
        extra.insert(0, os.path.join(str(overrides["JAVA_HOME"]), "bin"))
    prefix = [d for d in extra if d not in parts]
    env[path_key] = os.pathsep.join(prefix + parts)
    return env


def needs_shell(cmd: str) -> bool:
    if not is_windows():
        return False
    name = Path(cmd).name.lower()
    if name.endswith((".cmd", ".bat")):
        return True
    return name in _SHELL_WRAPPED


def npm_cmd() -> str:
    return "npm.cmd" if is_windows() else "npm"


def default_workspace_dir() -> Path:
    if is_windows():
        return Path(WINDOWS_WORKSPACE)
    return Path(click.get_app_dir(APP_NAME)) / "workspace"


def popen_group_kwargs() -> dict:
    """Popen kwargs that put the child in its own process group."""
    if is_windows():
        return {"creationflags": getattr(subprocess, "CREATE_NEW_PROCESS_GROUP", 0)}
    return {"start_new_session": True}


def signal_name(returncode: Optional[int]) -> Optional[str]:
    if returncode is None or returncode >= 0:
        return None
    try:
        return signal.Signals(-returncode).name
    except ValueError:
        return f"SIG{-returncode}"


def kill_process_tree(proc: subprocess.Popen, *, graceful: bool = True, timeout: float = 5.0) -> str:
    """Terminate ``proc`` and its children. Returns the method used."""
    if proc.poll() is not None:
        return "already-exited"
    if is_windows():
        subprocess.run(
            ["taskkill", "/PID", str(proc.pid), "/T", "/F"],
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            check=False,
        )
        return "taskkill"

    try:
        pgid = os.getpgid(proc.pid)
    except ProcessLookupError:
        return "already-exited"
    if pgid == os.getpgid(0):
        # Child shares our group; signal it alone.
        proc.send_signal(signal.SIGINT if graceful else signal.SIGKILL)
        try:
            proc.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            proc.kill()
            proc.wait(timeout=timeout)
        return "SIGINT" if graceful else "SIGKILL"

    if graceful:
        os.killpg(pgid, signal.SIGINT)
        try:
            proc.wait(timeout=timeout)
            return "SIGINT"
        except subprocess.TimeoutExpired:
            pass
    try:
        os.killpg(pgid, signal.SIGKILL)
    except ProcessLookupError:
        return "SIGINT"
    proc.wait(timeout=timeout)
    return "SIGKILL"
