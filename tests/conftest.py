from __future__ import annotations

import os
import sys
import tempfile
from pathlib import Path

import pytest
from dotenv import load_dotenv

_PROJECT_ROOT = Path(__file__).resolve().parents[1]
_SRC = (_PROJECT_ROOT / "src").resolve()
if str(_SRC) not in sys.path:
    sys.path.insert(0, str(_SRC))

# Load .env from project root so REPOLAUNCH_* settings are active
load_dotenv(_PROJECT_ROOT / ".env", override=False)

# Keep launcher logs out of the user's log directory
os.environ.setdefault("REPOLAUNCH_LOG_DIR", str(Path(tempfile.gettempdir()) / "repolaunch-test-logs"))


from repolaunch.errors import CommandExitError, CommandSpawnError


class FakeRunner:
    """Stands in for CommandRunner; records calls and answers from ``script``.

    ``script`` maps a command (or ``"cmd arg0"``) to an int exit code, an
    exception instance, or a callable returning either.
    """

    def __init__(self, script=None, *, probes=None, captures=None, on_log=None):
        self.on_log = on_log
        self.script = dict(script or {})
        self.probes = dict(probes or {})
        self.captures = dict(captures or {})
        self.calls = []
        self.lines = []
        self.env_overrides = {}
        self.cancelled = False

    def log(self, line, level="INFO"):
        self.lines.append(line)
        if self.on_log is not None:
            self.on_log(line)

    def cancel(self):
        self.cancelled = True

    def _lookup(self, table, cmd, args, default):
        args = list(args)
        for key in (f"{cmd} {args[0]}" if args else None, cmd):
            if key is not None and key in table:
                return table[key]
        return default

    def run(self, cmd, args=(), cwd=None, env=None, *, streaming=True, tag="exec", shell=None, heartbeat=None):
        args = [str(a) for a in args]
        self.calls.append({"cmd": cmd, "args": args, "cwd": cwd, "env": env, "tag": tag, "shell": shell})
        outcome = self._lookup(self.script, cmd, args, 0)
        if callable(outcome):
            outcome = outcome(cmd, args)
        if isinstance(outcome, BaseException):
            raise outcome
        if outcome == 127:
            raise CommandSpawnError(cmd, "command not found")
        if outcome:
            raise CommandExitError(" ".join([cmd, *args]), outcome, [f"{cmd} error"])

    def probe(self, cmd, args=(), cwd=None):
        outcome = self._lookup(self.probes, cmd, args, True)
        if callable(outcome):
            outcome = outcome(cmd, list(args))
        return bool(outcome)

    def capture(self, cmd, args=(), cwd=None, env=None):
        return self._lookup(self.captures, cmd, args, None)

    def commands(self):
        return [" ".join([c["cmd"], *c["args"]]) for c in self.calls]


@pytest.fixture
def fake_runner():
    return FakeRunner
