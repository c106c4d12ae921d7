"""Port and HTTP readiness checks."""

from __future__ import annotations

import socket
import time
from typing import Callable, Optional

import httpx


def check_port(port: int) -> bool:
    """Check if a specific port is available."""
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
            s.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            s.bind(('0.0.0.0', port))
            return True
    except OSError:
        return False


def is_listening(host: str, port: int, timeout: float = 1.0) -> bool:
    try:
        with socket.create_connection((host, int(port)), timeout=timeout):
            return True
    except OSError:
        return False


def wait_for_port(
    host: str,
    port: int,
    *,
    attempts: int = 15,
    delay: float = 2.0,
    sleep: Callable[[float], None] = time.sleep,
) -> bool:
    """Bounded retry until something accepts connections on ``host:port``."""
    for i in range(attempts):
        if is_listening(host, port):
            return True
        if i + 1 < attempts:
            sleep(delay)
    return False


def wait_for_http(
    url: str,
    *,
    attempts: int = 30,
    delay: float = 1.0,
    stop: Optional[Callable[[], bool]] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> bool:
    """Bounded retry until ``url`` answers with a non-error status."""
    for i in range(attempts):
        if stop is not None and stop():
            return False
        try:
            response = httpx.get(url, timeout=2.0, follow_redirects=True)
            if response.status_code < 400:
                return True
        except httpx.HTTPError:
            pass
        if i + 1 < attempts:
            sleep(delay)
    return False
