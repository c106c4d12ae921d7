"""Shared launch status record and its subscriber broadcast."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Callable, Optional

logger = logging.getLogger("repolaunch.status")


class Step(str, Enum):
    IDLE = "idle"
    CHECKING_TOOLS = "checking-tools"
    PREPARING = "preparing"
    CLONING = "cloning"
    INSTALLING = "installing"
    BUILDING = "building"
    STARTING = "starting"
    RUNNING = "running"
    ERROR = "error"


STEP_ORDER = [
    Step.IDLE,
    Step.CHECKING_TOOLS,
    Step.PREPARING,
    Step.CLONING,
    Step.INSTALLING,
    Step.BUILDING,
    Step.STARTING,
    Step.RUNNING,
]


class SubStep(str, Enum):
    IDLE = "idle"
    PREPARING = "preparing"
    CLONING = "cloning"
    INSTALLING = "installing"
    BUILDING = "building"
    STARTING = "starting"
    RUNNING = "running"
    ERROR = "error"


@dataclass
class SubStatus:
    step: SubStep = SubStep.IDLE
    message: Optional[str] = None


@dataclass
class LaunchStatus:
    step: Step = Step.IDLE
    message: Optional[str] = None
    logs: list[str] = field(default_factory=list)
    server_pid: Optional[int] = None
    frontend_pid: Optional[int] = None
    server: SubStatus = field(default_factory=SubStatus)
    client: SubStatus = field(default_factory=SubStatus)

    def copy(self) -> "LaunchStatus":
        """Independent copy of the record; log strings are shared."""
        return replace(
            self,
            logs=list(self.logs),
            server=replace(self.server),
            client=replace(self.client),
        )

    def to_dict(self) -> dict:
        return {
            "step": self.step.value,
            "message": self.message,
            "logs": list(self.logs),
            "server_pid": self.server_pid,
            "frontend_pid": self.frontend_pid,
            "server": {"step": self.server.step.value, "message": self.server.message},
            "client": {"step": self.client.step.value, "message": self.client.message},
        }


StatusCallback = Callable[[LaunchStatus], None]


def can_advance(current: Step, new: Step) -> bool:
    """True when moving from ``current`` to ``new`` keeps the step ordering."""
    if new == Step.ERROR:
        return True
    if current == Step.ERROR:
        return False
    return STEP_ORDER.index(new) >= STEP_ORDER.index(current)


class StatusBoard:
    """Thread-safe holder of the single :class:`LaunchStatus`.

    Every mutation is applied and broadcast while holding the same lock, so
    subscribers observe snapshots in mutation order. Each snapshot is an
    independent copy.

    A run epoch guards against late writers: :meth:`begin_run` and
    :meth:`reset` bump the epoch, and writes tagged with an older epoch are
    dropped.
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._status = LaunchStatus()
        self._subscribers: list[StatusCallback] = []
        self._epoch = 0

    @property
    def epoch(self) -> int:
        with self._lock:
            return self._epoch

    def snapshot(self) -> LaunchStatus:
        with self._lock:
            return self._status.copy()

    def subscribe(self, callback: StatusCallback) -> Callable[[], None]:
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def _emit(self) -> None:
        if not self._subscribers:
            return
        snap = self._status.copy()
        for cb in list(self._subscribers):
            try:
                cb(snap)
            except Exception:
                logger.exception("Status subscriber raised; continuing")

    def _stale(self, epoch: Optional[int]) -> bool:
        return epoch is not None and epoch != self._epoch

    def begin_run(self) -> int:
        """Start a fresh record for a new run and return its epoch."""
        with self._lock:
            self._epoch += 1
            was_idle = self._status.step == Step.IDLE and not self._status.logs
            self._status = LaunchStatus()
            if not was_idle:
                self._emit()
            return self._epoch

    def reset(self) -> int:
        """Return to idle with empty logs; invalidates writers of the previous run."""
        with self._lock:
            self._epoch += 1
            self._status = LaunchStatus()
            self._emit()
            return self._epoch

    def set_step(self, step: Step, message: Optional[str] = None, *, epoch: Optional[int] = None) -> bool:
        with self._lock:
            if self._stale(epoch):
                return False
            if not can_advance(self._status.step, step):
                logger.debug("Ignoring step regression %s -> %s", self._status.step.value, step.value)
                return False
            self._status.step = step
            self._status.message = message
            self._emit()
            return True

    def fail(self, message: str, *, epoch: Optional[int] = None) -> bool:
        return self.set_step(Step.ERROR, message, epoch=epoch)

    def set_sub(
        self,
        role: str,
        step: SubStep,
        message: Optional[str] = None,
        *,
        epoch: Optional[int] = None,
        only_from: Optional[SubStep] = None,
    ) -> bool:
        """Set a role's sub-status; with ``only_from`` the write applies only from that sub-step."""
        with self._lock:
            if self._stale(epoch):
                return False
            target = self._status.server if role == "server" else self._status.client
            if only_from is not None and target.step != only_from:
                return False
            target.step = step
            target.message = message
            self._emit()
            return True

    def set_sub_message(self, role: str, message: str, *, epoch: Optional[int] = None) -> bool:
        with self._lock:
            if self._stale(epoch):
                return False
            target = self._status.server if role == "server" else self._status.client
            target.message = message
            self._emit()
            return True

    def set_pids(
        self,
        *,
        server_pid: Optional[int] = None,
        frontend_pid: Optional[int] = None,
        epoch: Optional[int] = None,
    ) -> bool:
        with self._lock:
            if self._stale(epoch):
                return False
            self._status.server_pid = server_pid
            self._status.frontend_pid = frontend_pid
            self._emit()
            return True

    def append_log(self, line: str, *, epoch: Optional[int] = None) -> bool:
        with self._lock:
            if self._stale(epoch):
                return False
            self._status.logs.append(line)
            self._emit()
            return True
