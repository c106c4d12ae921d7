"""Shared logging helpers for the launcher.

Every line shown to a status subscriber is also written to the
``repolaunch`` logger, whose file handler lives in ``REPOLAUNCH_LOG_DIR``.
"""

import inspect
import logging
import os
import tempfile
import time
from pathlib import Path
from typing import Callable, Optional

LogSink = Callable[[str], None]

logger = logging.getLogger("repolaunch")
logger.setLevel(logging.DEBUG)

LOG_DIR = Path(os.environ.get("REPOLAUNCH_LOG_DIR", tempfile.gettempdir() + "/repolaunch-logs"))
LOG_DIR.mkdir(parents=True, exist_ok=True)
_log_path = str(LOG_DIR / "launcher.log")
if not any(
    isinstance(h, logging.FileHandler) and getattr(h, "baseFilename", None) == _log_path
    for h in logger.handlers
):
    file_handler = logging.FileHandler(_log_path, encoding="utf-8")
    file_handler.setFormatter(logging.Formatter(
        '%(asctime)s [%(levelname)s] %(name)s: %(message)s'
    ))
    logger.addHandler(file_handler)


# ---------------------------------------------------------------------------
# UI log filtering
# ---------------------------------------------------------------------------

def _ui_log_level() -> int:
    raw = str(os.environ.get("REPOLAUNCH_UI_LOG_LEVEL", "INFO") or "INFO").strip().upper()
    if raw == "DEBUG":
        return logging.DEBUG
    if raw == "WARNING" or raw == "WARN":
        return logging.WARNING
    if raw == "ERROR":
        return logging.ERROR
    return logging.INFO


def _should_emit_to_ui(level: str) -> bool:
    try:
        lvl = int(getattr(logging, str(level).upper()))
    except (AttributeError, TypeError, ValueError):
        lvl = logging.INFO
    return lvl >= _ui_log_level()


def _call_on_log(on_log: Optional[Callable[..., None]], msg: str, level: str = "INFO") -> None:
    """Forward a line to a sink that takes either ``(msg)`` or ``(msg, level)``."""
    if not on_log:
        return
    try:
        sig = inspect.signature(on_log)
        params = list(sig.parameters.values())
        accepts = any(p.kind == inspect.Parameter.VAR_POSITIONAL for p in params) or len(params) >= 2
    except (TypeError, ValueError):
        accepts = False
    if accepts:
        on_log(msg, level)
    else:
        on_log(msg)


# ---------------------------------------------------------------------------
# Heartbeat for long operations
# ---------------------------------------------------------------------------

def _heartbeat(
    *,
    stop,  # threading.Event
    on_log: Optional[Callable[..., None]],
    message: str,
    interval_s: float = 5.0,
) -> None:
    if not on_log:
        return
    started = time.monotonic()
    while not stop.wait(interval_s):
        elapsed = int(time.monotonic() - started)
        if _should_emit_to_ui("INFO"):
            _call_on_log(on_log, f"⏳ {message} (elapsed={elapsed}s)", "INFO")


def _beat_every_s(*, default: int = 15) -> int:
    try:
        return max(1, int(os.environ.get("REPOLAUNCH_HEARTBEAT_S", str(default))))
    except ValueError:
        return default
