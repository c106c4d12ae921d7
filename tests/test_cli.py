from pathlib import Path

import pytest
import yaml
from click.testing import CliRunner

import repolaunch.cli as cli_module
from repolaunch import __version__
from repolaunch.cli import cli
from repolaunch.errors import ToolMissingError
from repolaunch.guidance import classify_launch_failure
from repolaunch.orchestrator import StartResult, StopResult
from repolaunch.status import LaunchStatus, Step
from repolaunch.supervisor import KillOutcome


class FakeOrchestrator:
    result = StartResult(ok=True, frontend_pid=22)

    def __init__(self):
        self.subscribers = []
        self.stopped = False

    def subscribe(self, callback):
        self.subscribers.append(callback)
        return lambda: self.subscribers.remove(callback)

    def snapshot(self):
        return LaunchStatus()

    def start(self, config, *, parallel=False, workspace_dir=None):
        status = LaunchStatus(step=Step.CLONING, logs=["[git] cloning frontend"])
        for cb in list(self.subscribers):
            cb(status)
        return self.result

    def stop(self):
        self.stopped = True
        return StopResult(ok=True, kills=[KillOutcome(role="frontend", pid=22, method="SIGINT", ok=True)])

    def print_status(self):
        cli_module.console.print("status table")


def _write_config(path: Path) -> Path:
    path.write_text(
        yaml.safe_dump({"frontend": {"url": "https://example.com/fe.git", "dev_url": "http://localhost:3000"}}),
        encoding="utf-8",
    )
    return path


def test_version():
    result = CliRunner().invoke(cli, ["--version"])
    assert result.exit_code == 0
    assert __version__ in result.output


def test_init_writes_config(tmp_path: Path):
    target = tmp_path / "launch.yaml"
    runner = CliRunner()

    result = runner.invoke(cli, ["init", str(target), "--server-url", "https://example.com/api.git"])
    assert result.exit_code == 0, result.output
    data = yaml.safe_load(target.read_text())
    assert data["frontend"]["start_command"] == "yarn dev"
    assert data["server"]["url"] == "https://example.com/api.git"

    again = runner.invoke(cli, ["init", str(target)])
    assert again.exit_code == 1
    assert "already exists" in again.output


def test_validate(tmp_path: Path):
    config = _write_config(tmp_path / "launch.yaml")
    result = CliRunner().invoke(cli, ["validate", str(config)])
    assert result.exit_code == 0, result.output
    assert "profile: frontend" in result.output


def test_validate_rejects_server_profile_without_server(tmp_path: Path):
    config = tmp_path / "launch.yaml"
    config.write_text(yaml.safe_dump({"frontend": {"url": "f"}, "profile": "jvm"}), encoding="utf-8")
    result = CliRunner().invoke(cli, ["validate", str(config)])
    assert result.exit_code == 1
    assert "Error:" in result.output


def test_env_masks_secrets(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("TEST_PW", "hunter2")
    monkeypatch.setenv("REPOLAUNCH_ENV_FILE", str(tmp_path / "missing.env"))
    result = CliRunner().invoke(cli, ["env"])
    assert result.exit_code == 0, result.output
    assert "hunter2" not in result.output
    assert "****" in result.output


def test_open_rejects_non_web_url():
    result = CliRunner().invoke(cli, ["open", "file:///etc/passwd"])
    assert result.exit_code == 1
    assert "Refusing" in result.output


def test_check_tools_reports_missing(monkeypatch: pytest.MonkeyPatch):
    class MissingGit:
        def __init__(self, runner):
            pass

        def ensure_tools(self, **kwargs):
            raise ToolMissingError("git", "https://git-scm.com/downloads")

    monkeypatch.setattr(cli_module, "ToolProber", MissingGit)
    result = CliRunner().invoke(cli, ["check-tools", "--profile", "frontend"])
    assert result.exit_code == 1
    assert "git" in result.output


def test_start_failure_prints_guidance(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    class Failing(FakeOrchestrator):
        result = StartResult(
            ok=False,
            error="git clone failed for https://example.com/fe.git (code=128)",
            guidance=classify_launch_failure("git clone failed"),
        )

    monkeypatch.setattr(cli_module, "Orchestrator", Failing)
    config = _write_config(tmp_path / "launch.yaml")

    result = CliRunner().invoke(cli, ["start", str(config)])

    assert result.exit_code == 1
    assert "[git] cloning frontend" in result.output
    assert "git clone failed" in result.output
    assert "Git download" in result.output


def test_start_runs_until_interrupted(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    created = []

    def make():
        orchestrator = FakeOrchestrator()
        created.append(orchestrator)
        return orchestrator

    def interrupt(_seconds):
        raise KeyboardInterrupt()

    monkeypatch.setattr(cli_module, "Orchestrator", make)
    monkeypatch.setattr(cli_module.time, "sleep", interrupt)
    config = _write_config(tmp_path / "launch.yaml")

    result = CliRunner().invoke(cli, ["start", str(config), "--quiet"])

    assert result.exit_code == 0, result.output
    assert "status table" in result.output
    assert "Shutting down" in result.output
    assert "[git] cloning frontend" not in result.output
    assert created[0].stopped
