"""Tests for platform helpers and privileged execution."""

import base64
import os
import signal

import pytest

import repolaunch.elevation as elevation_module
import repolaunch.platform as platform_module
from repolaunch.elevation import encode_powershell, powershell_elevation_script, run_elevated
from repolaunch.errors import CommandSpawnError
from repolaunch.platform import env_with_default_path, extra_search_path, needs_shell, signal_name


def test_extra_search_path_per_platform():
    assert extra_search_path("darwin") == ["/opt/homebrew/bin", "/usr/local/bin"]
    assert extra_search_path("linux") == ["/usr/local/bin", "/usr/bin"]
    win = extra_search_path("win32", {"ProgramFiles": r"C:\PF", "APPDATA": r"C:\Users\me\AppData\Roaming"})
    assert any("MySQL" in d for d in win)
    assert any(d.endswith("npm") for d in win)


def test_env_with_default_path_prepends_missing_dirs():
    env = env_with_default_path({"PATH": os.pathsep.join(["/bin", "/usr/bin"])}, platform="linux")
    assert env["PATH"].split(os.pathsep) == ["/usr/local/bin", "/bin", "/usr/bin"]


def test_env_with_default_path_puts_java_home_first():
    env = env_with_default_path({"PATH": "/bin"}, {"JAVA_HOME": "/opt/jdk"}, platform="linux")
    assert env["JAVA_HOME"] == "/opt/jdk"
    assert env["PATH"].split(os.pathsep)[0] == os.path.join("/opt/jdk", "bin")


def test_needs_shell_only_on_windows(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setattr(platform_module, "is_windows", lambda: False)
    assert needs_shell("npm") is False
    monkeypatch.setattr(platform_module, "is_windows", lambda: True)
    assert needs_shell("npm") is True
    assert needs_shell(r"C:\proj\gradlew.bat") is True
    assert needs_shell("git") is False


def test_signal_name():
    assert signal_name(0) is None
    assert signal_name(1) is None
    assert signal_name(None) is None
    assert signal_name(-signal.SIGTERM) == "SIGTERM"


def test_powershell_script_quotes_arguments():
    script = powershell_elevation_script("winget", ["install", "it's"])
    assert "-FilePath 'winget'" in script
    assert "'it''s'" in script
    assert script.endswith("exit $p.ExitCode")


def test_encode_powershell_is_utf16_base64():
    encoded = encode_powershell("Get-Service")
    assert base64.b64decode(encoded).decode("utf-16-le") == "Get-Service"


def test_run_elevated_uses_sudo_when_not_root(fake_runner, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setattr(elevation_module, "is_windows", lambda: False)
    monkeypatch.setattr(elevation_module.os, "geteuid", lambda: 1000, raising=False)
    runner = fake_runner()

    assert run_elevated(runner, "choco", ["install", "git"]) == 0
    assert runner.commands() == ["sudo -n choco install git"]


def test_run_elevated_reports_exit_code(fake_runner, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setattr(elevation_module, "is_windows", lambda: True)
    runner = fake_runner({"powershell": 5})

    assert run_elevated(runner, "winget", ["install"]) == 5
    assert runner.calls[0]["args"][-2] == "-Command"


def test_run_elevated_not_startable(fake_runner, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setattr(elevation_module, "is_windows", lambda: False)
    monkeypatch.setattr(elevation_module.os, "geteuid", lambda: 0, raising=False)
    runner = fake_runner({"winget": CommandSpawnError("winget", "command not found")})

    assert run_elevated(runner, "winget", []) == 127
