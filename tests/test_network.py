"""Tests for repolaunch network module."""

import socket

import httpx
import pytest

import repolaunch.network as network_module
from repolaunch.network import check_port, is_listening, wait_for_http, wait_for_port


def _free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


def test_check_port_and_listening():
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as server:
        server.bind(("127.0.0.1", 0))
        server.listen(1)
        port = server.getsockname()[1]

        assert is_listening("127.0.0.1", port) is True
        assert wait_for_port("127.0.0.1", port, attempts=1) is True

    free = _free_port()
    assert check_port(free) is True
    assert is_listening("127.0.0.1", free, timeout=0.2) is False


def test_wait_for_port_gives_up_after_attempts():
    sleeps = []
    port = _free_port()

    assert wait_for_port("127.0.0.1", port, attempts=3, delay=0.5, sleep=sleeps.append) is False
    assert sleeps == [0.5, 0.5]


def test_wait_for_http_retries_until_ready(monkeypatch: pytest.MonkeyPatch):
    answers = [httpx.ConnectError("refused"), httpx.Response(503), httpx.Response(200)]
    calls = []

    def fake_get(url, **kwargs):
        calls.append(url)
        answer = answers.pop(0)
        if isinstance(answer, Exception):
            raise answer
        return answer

    monkeypatch.setattr(network_module.httpx, "get", fake_get)

    assert wait_for_http("http://localhost:3000", attempts=5, sleep=lambda _s: None) is True
    assert len(calls) == 3


def test_wait_for_http_honours_stop(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setattr(network_module.httpx, "get", lambda url, **kw: httpx.Response(500))
    checks = iter([False, True])

    assert wait_for_http("http://x", attempts=10, stop=lambda: next(checks), sleep=lambda _s: None) is False
