"""Host tool checks run once per launch, before any repository access."""

import glob
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .elevation import ElevateFn, run_elevated
from .errors import CommandExitError, CommandSpawnError, ToolMissingError
from .platform import is_macos, is_windows, npm_cmd
from .runner import CommandRunner

logger = logging.getLogger("repolaunch.tools")

LINUX_JVM_GLOBS = (
    "/usr/lib/jvm/*/bin/java",
    "/usr/java/*/bin/java",
    "/opt/java/*/bin/java",
    "/opt/homebrew/opt/openjdk*/bin/java",
)


@dataclass(frozen=True)
class ToolSpec:
    name: str
    command: str
    probe_args: tuple[str, ...] = ("--version",)
    winget_id: Optional[str] = None
    choco_id: Optional[str] = None
    download_url: Optional[str] = None


GIT = ToolSpec("git", "git", winget_id="Git.Git", choco_id="git", download_url="https://git-scm.com/downloads")
NODE = ToolSpec(
    "npm",
    "npm",
    winget_id="OpenJS.NodeJS.LTS",
    choco_id="nodejs-lts",
    download_url="https://nodejs.org/",
)
YARN = ToolSpec("yarn", "yarn", download_url="https://yarnpkg.com/getting-started/install")
JAVA = ToolSpec(
    "java",
    "java",
    winget_id="EclipseAdoptium.Temurin.17.JDK",
    choco_id="temurin17",
    download_url="https://adoptium.net/",
)
GRADLE = ToolSpec("gradle", "gradle", download_url="https://gradle.org/install/")


def java_home_from_binary(java_bin: str) -> Path:
    """``.../jdk/bin/java[.exe]`` -> ``.../jdk``."""
    return Path(java_bin.strip()).resolve().parent.parent


class ToolProber:
    def __init__(self, runner: CommandRunner, *, elevate: ElevateFn = run_elevated):
        self.runner = runner
        self.elevate = elevate

    def log(self, line: str) -> None:
        self.runner.log(line)

    def ensure_tools(self, *, needs_java: bool = False, needs_yarn: bool = True) -> None:
        """Verify (and on Windows, install) the tools a launch needs.

        Order: git, npm, yarn, java, gradle. Each required check raises
        :class:`ToolMissingError`; gradle is only reported.
        """
        self.require(GIT)
        self.require(NODE, command=npm_cmd())
        if needs_yarn:
            self.ensure_yarn()
        if needs_java:
            self.ensure_java()
            self.check_gradle()

    def has(self, spec: ToolSpec, command: Optional[str] = None) -> bool:
        return self.runner.probe(command or spec.command, spec.probe_args)

    def require(self, spec: ToolSpec, *, command: Optional[str] = None) -> None:
        if self.has(spec, command):
            self.log(f"[tools] ✅ {spec.name} found")
            return
        self.log(f"[tools] ❌ {spec.name} not found")
        if is_windows() and self.auto_install(spec) and self.has(spec, command):
            self.log(f"[tools] ✅ {spec.name} installed")
            return
        raise ToolMissingError(spec.name, spec.download_url)

    def auto_install(self, spec: ToolSpec) -> bool:
        """Silent install through winget then choco, both elevated. Windows only."""
        if spec.winget_id:
            self.log(f"[tools] Installing {spec.name} with winget ({spec.winget_id})")
            code = self.elevate(
                self.runner,
                "winget",
                [
                    "install",
                    "-e",
                    "--id",
                    spec.winget_id,
                    "--silent",
                    "--accept-package-agreements",
                    "--accept-source-agreements",
                ],
            )
            if code == 0:
                return True
            self.log(f"[tools] winget install of {spec.name} failed (code={code})")
        if spec.choco_id:
            self.log(f"[tools] Installing {spec.name} with choco ({spec.choco_id})")
            code = self.elevate(self.runner, "choco", ["install", spec.choco_id, "-y"])
            if code == 0:
                return True
            self.log(f"[tools] choco install of {spec.name} failed (code={code})")
        return False

    def ensure_yarn(self) -> None:
        if self.has(YARN):
            self.log("[tools] ✅ yarn found")
            return
        self.log("[tools] yarn not found; installing globally with npm")
        try:
            self.runner.run(npm_cmd(), ["install", "-g", "yarn"], tag="tools")
        except (CommandSpawnError, CommandExitError) as e:
            raise ToolMissingError("yarn", YARN.download_url, detail=str(e)) from e
        if not self.has(YARN):
            raise ToolMissingError("yarn", YARN.download_url, detail="still unavailable after npm install -g yarn")
        self.log("[tools] ✅ yarn installed")

    def ensure_java(self) -> None:
        if self.has(JAVA) or self.runner.probe("javac", ["--version"]):
            self.log("[tools] ✅ java found")
            return

        home = self.discover_java_home()
        if home is not None:
            self.use_java_home(home)
            if self.has(JAVA):
                self.log(f"[tools] ✅ java found at {home}")
                return

        self.log("[tools] ❌ java not found")
        if is_windows() and self.auto_install(JAVA):
            home = self.discover_java_home()
            if home is not None:
                self.use_java_home(home)
            if self.has(JAVA):
                self.log("[tools] ✅ java installed")
                return
        raise ToolMissingError("java", JAVA.download_url)

    def use_java_home(self, home: Path) -> None:
        self.runner.env_overrides["JAVA_HOME"] = str(home)
        self.log(f"[tools] Using JAVA_HOME={home}")

    def discover_java_home(self) -> Optional[Path]:
        if is_windows():
            roots = [os.environ.get("ProgramFiles") or r"C:\Program Files"]
            for root in roots:
                out = self.runner.capture("where", ["/R", root, "java.exe"])
                if out:
                    first = next((ln for ln in out.splitlines() if ln.strip()), None)
                    if first:
                        return java_home_from_binary(first)
            return None
        if is_macos():
            out = self.runner.capture("/usr/libexec/java_home")
            if out and out.strip():
                return Path(out.strip())
        for pattern in LINUX_JVM_GLOBS:
            matches = sorted(glob.glob(pattern), reverse=True)
            if matches:
                return java_home_from_binary(matches[0])
        return None

    def check_gradle(self) -> bool:
        if self.has(GRADLE):
            self.log("[tools] ✅ gradle found")
            return True
        self.log("[tools] ⚠️ gradle not found on PATH; the project's gradle wrapper will be used if present")
        return False
