"""Dependency installation for Node and Gradle targets."""

import json
import shlex
import shutil
import stat
from enum import Enum
from pathlib import Path
from typing import Optional

from .errors import BuildError, CommandExitError, CommandSpawnError, InstallError
from .platform import is_windows, npm_cmd
from .runner import CommandRunner

GRADLE_DIAGNOSTIC_FLAGS = ["--info", "--stacktrace"]
GRADLE_NETWORK_TIMEOUT_FLAG = "-Dorg.gradle.internal.network.timeout=300000"

NODE_SERVER_RUNTIME_DEPS = ("@nestjs/typeorm", "typeorm", "mysql2")
NODE_SERVER_DEV_DEPS = ("@nestjs/cli",)


class PackageManager(str, Enum):
    NPM = "npm"
    YARN = "yarn"
    PNPM = "pnpm"
    BUN = "bun"


def has_gradle_build(target_dir: Path) -> bool:
    target_dir = Path(target_dir)
    return (target_dir / "build.gradle").exists() or (target_dir / "build.gradle.kts").exists()


def gradle_wrapper(target_dir: Path) -> Optional[Path]:
    name = "gradlew.bat" if is_windows() else "gradlew"
    path = Path(target_dir) / name
    return path if path.exists() else None


def detect_package_manager(target_dir: Path) -> PackageManager:
    target_dir = Path(target_dir)
    if (target_dir / "yarn.lock").exists():
        return PackageManager.YARN
    if (target_dir / "pnpm-lock.yaml").exists():
        return PackageManager.PNPM
    if (target_dir / "bun.lockb").exists():
        return PackageManager.BUN
    return PackageManager.NPM


def pm_command(pm: PackageManager) -> str:
    return npm_cmd() if pm == PackageManager.NPM else pm.value


def read_package_json(target_dir: Path) -> Optional[dict]:
    path = Path(target_dir) / "package.json"
    if not path.is_file():
        return None
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except ValueError:
        return None
    return data if isinstance(data, dict) else None


def gradle_command(runner: CommandRunner, target_dir: Path) -> list[str]:
    """Wrapper script when the project ships one, else the global ``gradle``."""
    wrapper = gradle_wrapper(target_dir)
    if wrapper is not None:
        return [str(wrapper)]
    if runner.probe("gradle", ["--version"]):
        return ["gradle"]
    raise InstallError(
        f"No gradle wrapper in {Path(target_dir).name} and no global gradle on PATH. "
        "Install Gradle (https://gradle.org/install/) or add the wrapper to the repository"
    )


def _with_gradle_flags(args: list[str]) -> list[str]:
    if any(a in ("build", "bootRun") for a in args):
        return args + [f for f in GRADLE_DIAGNOSTIC_FLAGS if f not in args]
    return args


def resolve_install_command(runner: CommandRunner, target_dir: Path, explicit: Optional[str] = None) -> list[str]:
    """Pick the install invocation for ``target_dir``.

    Gradle descriptor first; otherwise the first lockfile found selects
    yarn (through corepack), pnpm or ``npm ci``; plain ``npm install`` is the
    fallback.
    """
    target_dir = Path(target_dir)
    if explicit:
        parts = shlex.split(explicit, posix=not is_windows())
        if parts and parts[0] == "yarn":
            return ["corepack", "yarn", "install"]
        if parts and parts[0] in ("./gradlew", "gradlew", "gradlew.bat", "gradle"):
            return gradle_command(runner, target_dir) + _with_gradle_flags(parts[1:])
        return parts

    if has_gradle_build(target_dir):
        return gradle_command(runner, target_dir) + ["build", *GRADLE_DIAGNOSTIC_FLAGS]
    if (target_dir / "yarn.lock").exists():
        return ["corepack", "yarn", "install"]
    if (target_dir / "pnpm-lock.yaml").exists():
        return ["pnpm", "install"]
    if (target_dir / "package-lock.json").exists():
        return [npm_cmd(), "ci"]
    return [npm_cmd(), "install"]


def clean_dependency_cache(target_dir: Path) -> bool:
    """Remove ``node_modules``; returns True when something was deleted."""
    cache = Path(target_dir) / "node_modules"
    if not cache.exists():
        return False
    shutil.rmtree(cache, ignore_errors=True)
    return True


def _add_command(pm: PackageManager, packages: list[str], dev: bool) -> list[str]:
    if pm == PackageManager.NPM:
        return [npm_cmd(), "install", "-D" if dev else "--save", *packages]
    if pm == PackageManager.BUN:
        return ["bun", "add", *(["-d"] if dev else []), *packages]
    return [pm.value, "add", *(["-D"] if dev else []), *packages]


class DependencyInstaller:
    def __init__(self, runner: CommandRunner):
        self.runner = runner

    def install(self, target_dir: Path, explicit: Optional[str] = None, *, tag: str = "deps") -> list[str]:
        argv = resolve_install_command(self.runner, target_dir, explicit)
        try:
            self.runner.run(
                argv[0],
                argv[1:],
                target_dir,
                tag=tag,
                heartbeat=f"{' '.join(argv)} still running in {Path(target_dir).name}",
            )
        except CommandExitError as e:
            raise InstallError(
                f"Dependency install failed in {Path(target_dir).name}: {e}",
                code=e.code,
                last_error_lines=e.last_error_lines,
            ) from e
        except CommandSpawnError as e:
            raise InstallError(f"Dependency install could not start in {Path(target_dir).name}: {e}") from e
        return argv

    def build_jvm(self, target_dir: Path) -> list[str]:
        """Gradle build with diagnostics; global gradle preferred over the wrapper."""
        if self.runner.probe("gradle", ["--version"]):
            argv = ["gradle", "build", *GRADLE_DIAGNOSTIC_FLAGS]
        else:
            wrapper = gradle_wrapper(target_dir)
            if wrapper is None:
                raise InstallError("Neither a global gradle nor a gradle wrapper is available for the build")
            argv = [str(wrapper), "build", *GRADLE_DIAGNOSTIC_FLAGS, GRADLE_NETWORK_TIMEOUT_FLAG]
        try:
            self.runner.run(argv[0], argv[1:], target_dir, tag="build", heartbeat="gradle build still running")
        except (CommandExitError, CommandSpawnError) as e:
            raise BuildError(
                f"Server build failed: {e}",
                code=getattr(e, "code", None),
                last_error_lines=getattr(e, "last_error_lines", ()),
            ) from e
        return argv

    def ensure_server_extras(self, server_dir: Path) -> None:
        """Per-stack fix-ups after install; never fatal."""
        server_dir = Path(server_dir)
        if has_gradle_build(server_dir):
            wrapper = server_dir / "gradlew"
            if not is_windows() and wrapper.exists():
                try:
                    mode = wrapper.stat().st_mode
                    wrapper.chmod(mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
                    self.runner.log("[deps] made gradlew executable")
                except OSError as e:
                    self.runner.log(f"[deps] ⚠️ could not chmod gradlew: {e}")
            return

        pkg = read_package_json(server_dir)
        if pkg is None:
            return
        deps = dict(pkg.get("dependencies") or {})
        dev_deps = dict(pkg.get("devDependencies") or {})
        missing = [d for d in NODE_SERVER_RUNTIME_DEPS if d not in deps]
        missing_dev = [d for d in NODE_SERVER_DEV_DEPS if d not in dev_deps and d not in deps]
        pm = detect_package_manager(server_dir)
        for packages, dev in ((missing, False), (missing_dev, True)):
            if not packages:
                continue
            argv = _add_command(pm, packages, dev)
            try:
                self.runner.run(argv[0], argv[1:], server_dir, tag="deps")
            except (CommandExitError, CommandSpawnError) as e:
                self.runner.log(f"[deps] ⚠️ could not add {', '.join(packages)}: {e}")
