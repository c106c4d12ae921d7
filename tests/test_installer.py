import json
import os
import sys
from pathlib import Path

import pytest

import repolaunch.installer as installer_module
from repolaunch.errors import BuildError, InstallError
from repolaunch.installer import (
    GRADLE_DIAGNOSTIC_FLAGS,
    GRADLE_NETWORK_TIMEOUT_FLAG,
    DependencyInstaller,
    PackageManager,
    clean_dependency_cache,
    detect_package_manager,
    resolve_install_command,
)


@pytest.fixture(autouse=True)
def _posix(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setattr(installer_module, "is_windows", lambda: False)
    monkeypatch.setattr(installer_module, "npm_cmd", lambda: "npm")


def _write_pkg(path: Path, **data) -> None:
    path.mkdir(parents=True, exist_ok=True)
    (path / "package.json").write_text(json.dumps(data), encoding="utf-8")


@pytest.mark.parametrize(
    "lockfile, expected",
    [
        ("yarn.lock", ["corepack", "yarn", "install"]),
        ("pnpm-lock.yaml", ["pnpm", "install"]),
        ("package-lock.json", ["npm", "ci"]),
        (None, ["npm", "install"]),
    ],
)
def test_install_command_by_lockfile(tmp_path: Path, fake_runner, lockfile, expected):
    _write_pkg(tmp_path, name="app")
    if lockfile:
        (tmp_path / lockfile).write_text("", encoding="utf-8")
    assert resolve_install_command(fake_runner(), tmp_path) == expected


def test_yarn_lock_wins_over_package_lock(tmp_path: Path, fake_runner):
    (tmp_path / "yarn.lock").write_text("", encoding="utf-8")
    (tmp_path / "package-lock.json").write_text("{}", encoding="utf-8")
    assert resolve_install_command(fake_runner(), tmp_path) == ["corepack", "yarn", "install"]


def test_gradle_project_uses_wrapper(tmp_path: Path, fake_runner):
    (tmp_path / "build.gradle").write_text("", encoding="utf-8")
    (tmp_path / "gradlew").write_text("#!/bin/sh\n", encoding="utf-8")

    argv = resolve_install_command(fake_runner(), tmp_path)

    assert argv == [str(tmp_path / "gradlew"), "build", *GRADLE_DIAGNOSTIC_FLAGS]


def test_gradle_project_falls_back_to_global(tmp_path: Path, fake_runner):
    (tmp_path / "build.gradle.kts").write_text("", encoding="utf-8")
    assert resolve_install_command(fake_runner(), tmp_path)[:2] == ["gradle", "build"]


def test_gradle_project_without_any_gradle(tmp_path: Path, fake_runner):
    (tmp_path / "build.gradle").write_text("", encoding="utf-8")
    with pytest.raises(InstallError):
        resolve_install_command(fake_runner(probes={"gradle": False}), tmp_path)


def test_explicit_yarn_goes_through_corepack(tmp_path: Path, fake_runner):
    assert resolve_install_command(fake_runner(), tmp_path, "yarn install --frozen-lockfile") == [
        "corepack",
        "yarn",
        "install",
    ]


def test_explicit_command_kept(tmp_path: Path, fake_runner):
    assert resolve_install_command(fake_runner(), tmp_path, "npm install --legacy-peer-deps") == [
        "npm",
        "install",
        "--legacy-peer-deps",
    ]


def test_detect_package_manager(tmp_path: Path):
    assert detect_package_manager(tmp_path) == PackageManager.NPM
    (tmp_path / "bun.lockb").write_text("", encoding="utf-8")
    assert detect_package_manager(tmp_path) == PackageManager.BUN
    (tmp_path / "yarn.lock").write_text("", encoding="utf-8")
    assert detect_package_manager(tmp_path) == PackageManager.YARN


def test_clean_dependency_cache(tmp_path: Path):
    assert clean_dependency_cache(tmp_path) is False
    (tmp_path / "node_modules" / "left-pad").mkdir(parents=True)
    assert clean_dependency_cache(tmp_path) is True
    assert not (tmp_path / "node_modules").exists()


def test_install_runs_with_deps_tag(tmp_path: Path, fake_runner):
    runner = fake_runner()
    (tmp_path / "yarn.lock").write_text("", encoding="utf-8")

    argv = DependencyInstaller(runner).install(tmp_path)

    assert argv == ["corepack", "yarn", "install"]
    assert runner.calls[0]["tag"] == "deps"
    assert runner.calls[0]["cwd"] == tmp_path


def test_install_failure_keeps_error_lines(tmp_path: Path, fake_runner):
    runner = fake_runner({"npm": 1})

    with pytest.raises(InstallError) as exc:
        DependencyInstaller(runner).install(tmp_path)

    assert exc.value.code == 1
    assert exc.value.last_error_lines == ["npm error"]
    assert tmp_path.name in str(exc.value)


def test_build_prefers_global_gradle(tmp_path: Path, fake_runner):
    runner = fake_runner()
    (tmp_path / "gradlew").write_text("", encoding="utf-8")

    argv = DependencyInstaller(runner).build_jvm(tmp_path)

    assert argv == ["gradle", "build", *GRADLE_DIAGNOSTIC_FLAGS]
    assert runner.calls[0]["tag"] == "build"


def test_build_wrapper_adds_network_timeout(tmp_path: Path, fake_runner):
    runner = fake_runner(probes={"gradle": False})
    (tmp_path / "gradlew").write_text("", encoding="utf-8")

    argv = DependencyInstaller(runner).build_jvm(tmp_path)

    assert argv[0] == str(tmp_path / "gradlew")
    assert argv[-1] == GRADLE_NETWORK_TIMEOUT_FLAG


def test_build_failure_is_build_error(tmp_path: Path, fake_runner):
    runner = fake_runner({"gradle": 1})

    with pytest.raises(BuildError) as exc:
        DependencyInstaller(runner).build_jvm(tmp_path)

    assert str(exc.value).startswith("Server build failed:")
    assert exc.value.last_error_lines == ["gradle error"]


def test_build_without_gradle_or_wrapper(tmp_path: Path, fake_runner):
    with pytest.raises(InstallError):
        DependencyInstaller(fake_runner(probes={"gradle": False})).build_jvm(tmp_path)


def test_server_extras_adds_missing_nest_dependencies(tmp_path: Path, fake_runner):
    _write_pkg(tmp_path, dependencies={"@nestjs/core": "^10", "typeorm": "^0.3"}, devDependencies={})
    (tmp_path / "yarn.lock").write_text("", encoding="utf-8")
    runner = fake_runner()

    DependencyInstaller(runner).ensure_server_extras(tmp_path)

    assert runner.commands() == [
        "yarn add @nestjs/typeorm mysql2",
        "yarn add -D @nestjs/cli",
    ]


def test_server_extras_failure_is_not_fatal(tmp_path: Path, fake_runner):
    _write_pkg(tmp_path, dependencies={})
    runner = fake_runner({"npm": 1})

    DependencyInstaller(runner).ensure_server_extras(tmp_path)

    assert any("could not add" in line for line in runner.lines)


@pytest.mark.skipif(sys.platform == "win32", reason="POSIX file modes")
def test_server_extras_makes_gradlew_executable(tmp_path: Path, fake_runner):
    (tmp_path / "build.gradle").write_text("", encoding="utf-8")
    wrapper = tmp_path / "gradlew"
    wrapper.write_text("#!/bin/sh\n", encoding="utf-8")
    wrapper.chmod(0o644)

    DependencyInstaller(fake_runner()).ensure_server_extras(tmp_path)

    assert os.access(wrapper, os.X_OK)
