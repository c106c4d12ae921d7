"""External command execution with line-tagged output streaming."""

import logging
import shlex
import subprocess
import threading
from collections import deque
from pathlib import Path
from typing import Callable, Iterable, Mapping, Optional, Sequence

from .errors import CommandExitError, CommandSpawnError, LaunchCancelled
from .helpers import _beat_every_s, _call_on_log, _heartbeat
from .platform import env_with_default_path, is_windows, kill_process_tree, needs_shell, popen_group_kwargs

logger = logging.getLogger("repolaunch.runner")

ERROR_KEYWORDS = ("error", "failed", "exception")
MAX_ERROR_LINES = 3


def _is_error_line(line: str) -> bool:
    low = line.lower()
    return any(k in low for k in ERROR_KEYWORDS)


def _command_line(argv: Sequence[str]) -> str:
    if is_windows():
        return subprocess.list2cmdline(list(argv))
    return shlex.join(list(argv))


def _decode(raw: bytes) -> str:
    return raw.decode("utf-8", errors="replace")


class CommandRunner:
    """Runs external commands for one launch.

    Every streamed line goes to ``on_log`` and to the ``repolaunch.runner``
    logger. ``env_overrides`` holds run-wide variables (for example a
    discovered ``JAVA_HOME``) applied to every child.
    """

    def __init__(
        self,
        on_log: Optional[Callable[..., None]] = None,
        *,
        env_overrides: Optional[Mapping[str, str]] = None,
    ):
        self.on_log = on_log
        self.env_overrides: dict[str, str] = dict(env_overrides or {})
        self._lock = threading.Lock()
        self._active: set[subprocess.Popen] = set()
        self._cancelled = threading.Event()

    def log(self, line: str, level: str = "INFO") -> None:
        logger.log(getattr(logging, level, logging.INFO), line)
        _call_on_log(self.on_log, line)

    def build_env(self, env: Optional[Mapping[str, str]] = None) -> dict[str, str]:
        overrides = dict(self.env_overrides)
        if env:
            overrides.update({str(k): str(v) for k, v in env.items() if v is not None})
        return env_with_default_path(None, overrides)

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def cancel(self) -> None:
        """Kill whatever command is in flight and refuse to start new ones."""
        self._cancelled.set()
        with self._lock:
            active = list(self._active)
        for proc in active:
            try:
                method = kill_process_tree(proc, graceful=False)
                logger.info("Cancelled pid=%s via %s", proc.pid, method)
            except OSError as e:
                logger.warning("Could not cancel pid=%s: %s", proc.pid, e)

    def _raise_if_cancelled(self) -> None:
        if self._cancelled.is_set():
            raise LaunchCancelled()

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def _spawn(
        self,
        argv: list[str],
        cwd: Path,
        env: Optional[Mapping[str, str]],
        shell: Optional[bool],
        stdout,
        stderr,
    ) -> subprocess.Popen:
        cmd = argv[0]
        if not cwd.is_dir():
            raise CommandSpawnError(cmd, f"working directory does not exist: {cwd}")
        use_shell = needs_shell(cmd) if shell is None else shell
        try:
            proc = subprocess.Popen(
                _command_line(argv) if use_shell else argv,
                cwd=str(cwd),
                env=self.build_env(env),
                stdin=subprocess.DEVNULL,
                stdout=stdout,
                stderr=stderr,
                shell=use_shell,
                **popen_group_kwargs(),
            )
        except FileNotFoundError as e:
            raise CommandSpawnError(cmd, "command not found") from e
        except PermissionError as e:
            raise CommandSpawnError(cmd, "permission denied") from e
        except OSError as e:
            raise CommandSpawnError(cmd, str(e)) from e
        with self._lock:
            self._active.add(proc)
        if self._cancelled.is_set():
            kill_process_tree(proc, graceful=False)
            self._release(proc)
            raise LaunchCancelled()
        return proc

    def _release(self, proc: subprocess.Popen) -> None:
        with self._lock:
            self._active.discard(proc)

    def run(
        self,
        cmd: str,
        args: Iterable[str] = (),
        cwd: Optional[Path] = None,
        env: Optional[Mapping[str, str]] = None,
        *,
        streaming: bool = True,
        tag: str = "exec",
        shell: Optional[bool] = None,
        heartbeat: Optional[str] = None,
    ) -> None:
        """Run ``cmd args`` to completion.

        Raises :class:`CommandSpawnError` if it cannot be started and
        :class:`CommandExitError` on a non-zero exit.
        """
        self._raise_if_cancelled()
        argv = [str(cmd), *[str(a) for a in args]]
        cwd_path = Path(cwd) if cwd else Path.cwd()
        display = " ".join(argv)

        if not streaming:
            proc = self._spawn(argv, cwd_path, env, shell, subprocess.DEVNULL, subprocess.DEVNULL)
            try:
                code = proc.wait()
            finally:
                self._release(proc)
            self._raise_if_cancelled()
            if code != 0:
                raise CommandExitError(display, code)
            return

        self.log(f"[exec] {display} @ {cwd_path.name}")
        proc = self._spawn(argv, cwd_path, env, shell, subprocess.PIPE, subprocess.PIPE)

        errors: deque[str] = deque(maxlen=MAX_ERROR_LINES)
        seen = {"lines": 0}
        seen_lock = threading.Lock()

        def pump(stream, prefix: str) -> None:
            for raw in iter(stream.readline, b""):
                for line in _decode(raw).splitlines():
                    line = line.strip()
                    if not line:
                        continue
                    with seen_lock:
                        seen["lines"] += 1
                        if _is_error_line(line):
                            errors.append(line)
                    self.log(f"{prefix} {line}")
            stream.close()

        readers = [
            threading.Thread(target=pump, args=(proc.stdout, f"[{tag}]"), daemon=True),
            threading.Thread(target=pump, args=(proc.stderr, f"[{tag}:err]"), daemon=True),
        ]
        for t in readers:
            t.start()

        stop_beat = threading.Event()
        beat = None
        if heartbeat:
            beat = threading.Thread(
                target=_heartbeat,
                kwargs={
                    "stop": stop_beat,
                    "on_log": self.log,
                    "message": heartbeat,
                    "interval_s": float(_beat_every_s()),
                },
                daemon=True,
            )
            beat.start()

        try:
            code = proc.wait()
            for t in readers:
                t.join()
        finally:
            stop_beat.set()
            self._release(proc)

        self._raise_if_cancelled()
        if code != 0:
            self.log(f"[exec] ❌ {display} exited with code {code}", "ERROR")
            if not seen["lines"]:
                self.log("[exec] (no output; the command printed nothing before failing)", "ERROR")
            raise CommandExitError(display, code, list(errors))

    def probe(self, cmd: str, args: Iterable[str] = (), cwd: Optional[Path] = None) -> bool:
        """True when the command starts and exits 0."""
        try:
            self.run(cmd, args, cwd, streaming=False)
            return True
        except (CommandSpawnError, CommandExitError):
            return False

    def capture(
        self,
        cmd: str,
        args: Iterable[str] = (),
        cwd: Optional[Path] = None,
        env: Optional[Mapping[str, str]] = None,
    ) -> Optional[str]:
        """Return stdout of a successful run, or ``None``."""
        self._raise_if_cancelled()
        argv = [str(cmd), *[str(a) for a in args]]
        try:
            proc = self._spawn(argv, Path(cwd) if cwd else Path.cwd(), env, None, subprocess.PIPE, subprocess.DEVNULL)
        except CommandSpawnError:
            return None
        try:
            out, _ = proc.communicate()
        finally:
            self._release(proc)
        if proc.returncode != 0:
            return None
        return _decode(out or b"")
