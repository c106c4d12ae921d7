"""Long-running server/frontend processes: spawn, relay output, stop."""

import logging
import shlex
import subprocess
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Mapping, Optional, Sequence

from .errors import LaunchCancelled, ProcessExitError, ProcessSpawnError
from .helpers import _call_on_log
from .installer import (
    GRADLE_DIAGNOSTIC_FLAGS,
    PackageManager,
    detect_package_manager,
    gradle_wrapper,
    has_gradle_build,
    pm_command,
    read_package_json,
)
from .platform import (
    env_with_default_path,
    is_windows,
    kill_process_tree,
    popen_group_kwargs,
    signal_name,
)
from .runner import CommandRunner, _command_line

logger = logging.getLogger("repolaunch.supervisor")

ExitCallback = Callable[[ProcessExitError], None]

DEV_SCRIPTS = ("dev", "start:dev", "start")


@dataclass
class ManagedProcess:
    role: str
    argv: list[str]
    cwd: Path
    process: subprocess.Popen
    started_at: float = field(default_factory=time.time)
    stopping: bool = False

    @property
    def pid(self) -> int:
        return self.process.pid

    @property
    def is_running(self) -> bool:
        return self.process.poll() is None


@dataclass(frozen=True)
class KillOutcome:
    role: str
    pid: Optional[int]
    method: str
    ok: bool
    detail: str = ""


def _local_bin(target_dir: Path, name: str) -> Optional[Path]:
    path = Path(target_dir) / "node_modules" / ".bin" / (f"{name}.cmd" if is_windows() else name)
    return path if path.exists() else None


def _framework_cli(target_dir: Path, cli: Sequence[str]) -> list[str]:
    name, *rest = list(cli)
    local = _local_bin(target_dir, name)
    if local is not None:
        return [str(local), *rest]
    return ["npx", name, *rest]


def _run_script(pm: PackageManager, script: str) -> list[str]:
    if pm == PackageManager.YARN:
        return ["yarn", script]
    return [pm_command(pm), "run", script]


def resolve_start_command(
    runner: CommandRunner,
    target_dir: Path,
    requested: Optional[str] = None,
    *,
    fallback_cli: Sequence[str] = ("vite",),
) -> list[str]:
    """Work out how to launch the process living in ``target_dir``.

    Gradle projects run ``bootRun`` through the wrapper or the global tool.
    ``nest start`` prefers the locally installed CLI. With a ``package.json``
    the requested command wins, then the first of ``dev``, ``start:dev``,
    ``start`` scripts. Last resort is ``fallback_cli`` from
    ``node_modules/.bin`` or through ``npx``.
    """
    target_dir = Path(target_dir)
    parts = shlex.split(requested, posix=not is_windows()) if requested else []

    if has_gradle_build(target_dir):
        wrapper = gradle_wrapper(target_dir)
        if parts and parts[0] not in ("./gradlew", "gradlew", "gradlew.bat", "gradle"):
            return parts
        tasks = parts[1:] or ["bootRun", *GRADLE_DIAGNOSTIC_FLAGS]
        if wrapper is not None:
            return [str(wrapper), *tasks]
        if runner.probe("gradle", ["--version"]):
            return ["gradle", *tasks]
        raise ProcessSpawnError("server", "no gradle wrapper and no global gradle to run the server")

    if parts[:2] == ["nest", "start"]:
        extra = [a for a in parts[2:] if a != "--watch"]
        return _framework_cli(target_dir, ["nest", "start", "--watch", *extra])

    pkg = read_package_json(target_dir)
    if pkg is not None:
        if parts:
            return parts
        scripts = pkg.get("scripts") or {}
        pm = detect_package_manager(target_dir)
        for script in DEV_SCRIPTS:
            if script in scripts:
                return _run_script(pm, script)

    if parts:
        return parts
    return _framework_cli(target_dir, fallback_cli)


class ProcessSupervisor:
    """Owns the long-running processes of one launch."""

    def __init__(self, on_log: Optional[Callable[..., None]] = None, *, grace_s: float = 5.0):
        self.on_log = on_log
        self.grace_s = grace_s
        self._lock = threading.Lock()
        self._procs: dict[str, ManagedProcess] = {}
        self._closed = False

    def log(self, line: str) -> None:
        logger.info(line)
        _call_on_log(self.on_log, line)

    def get(self, role: str) -> Optional[ManagedProcess]:
        with self._lock:
            return self._procs.get(role)

    def spawn(
        self,
        role: str,
        argv: Sequence[str],
        cwd: Path,
        env: Optional[Mapping[str, str]] = None,
        on_exit: Optional[ExitCallback] = None,
    ) -> ManagedProcess:
        argv = [str(a) for a in argv]
        use_shell = is_windows()
        self.log(f"[{role}] starting: {' '.join(argv)} @ {Path(cwd).name}")
        try:
            proc = subprocess.Popen(
                _command_line(argv) if use_shell else argv,
                cwd=str(cwd),
                env=env_with_default_path(None, env),
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                shell=use_shell,
                **popen_group_kwargs(),
            )
        except OSError as e:
            raise ProcessSpawnError(role, str(e)) from e

        managed = ManagedProcess(role=role, argv=argv, cwd=Path(cwd), process=proc)
        with self._lock:
            closed = self._closed
            if not closed:
                self._procs[role] = managed
        if closed:
            managed.stopping = True
            kill_process_tree(proc, graceful=False)
            raise LaunchCancelled()

        readers = [
            threading.Thread(target=self._relay, args=(proc.stdout, f"[{role}]"), daemon=True),
            threading.Thread(target=self._relay, args=(proc.stderr, f"[{role}:err]"), daemon=True),
        ]
        for t in readers:
            t.start()
        threading.Thread(
            target=self._watch,
            args=(managed, readers, on_exit),
            daemon=True,
            name=f"repolaunch-{role}-watch",
        ).start()
        return managed

    def _relay(self, stream, prefix: str) -> None:
        for raw in iter(stream.readline, b""):
            for line in raw.decode("utf-8", errors="replace").splitlines():
                line = line.rstrip()
                if line.strip():
                    self.log(f"{prefix} {line}")
        stream.close()

    def _watch(self, managed: ManagedProcess, readers: list[threading.Thread], on_exit: Optional[ExitCallback]) -> None:
        code = managed.process.wait()
        for t in readers:
            t.join(timeout=2.0)
        with self._lock:
            if self._procs.get(managed.role) is managed:
                del self._procs[managed.role]
        if managed.stopping:
            return
        event = ProcessExitError(role=managed.role, code=code, signal=signal_name(code))
        self.log(f"[{managed.role}] exited (code={event.code}, signal={event.signal})")
        if on_exit is not None:
            try:
                on_exit(event)
            except Exception:
                logger.exception("Exit callback for %s failed", managed.role)

    def stop(self, role: str) -> KillOutcome:
        with self._lock:
            managed = self._procs.pop(role, None)
        if managed is None:
            return KillOutcome(role=role, pid=None, method="none", ok=True, detail="not running")
        managed.stopping = True
        try:
            method = kill_process_tree(managed.process, graceful=True, timeout=self.grace_s)
        except (OSError, subprocess.SubprocessError) as e:
            logger.warning("Stopping %s (pid=%s) failed: %s", role, managed.pid, e)
            return KillOutcome(role=role, pid=managed.pid, method="error", ok=False, detail=str(e))
        ok = managed.process.poll() is not None or is_windows()
        return KillOutcome(role=role, pid=managed.pid, method=method, ok=ok)

    def stop_all(self) -> list[KillOutcome]:
        with self._lock:
            roles = list(self._procs.keys())
        return [self.stop(role) for role in roles]

    def close(self) -> list[KillOutcome]:
        """Stop everything and refuse later spawns."""
        with self._lock:
            self._closed = True
        return self.stop_all()
