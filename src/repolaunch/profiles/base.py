"""Base interface for launch profiles.

A profile captures what differs between the supported stacks: whether a
server is managed at all, which host tools it needs, whether it has a
separate build step, and which environment it writes for the server.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Callable, Mapping, Optional

from ..database import DbConnection
from ..installer import DependencyInstaller


class TargetProfile(ABC):
    """Abstract base for stack profiles."""

    manages_server: bool = False
    needs_java: bool = False
    needs_yarn: bool = True
    has_build_step: bool = False
    server_fallback_cli: tuple[str, ...] = ("nest", "start", "--watch")
    frontend_fallback_cli: tuple[str, ...] = ("vite",)

    @property
    @abstractmethod
    def name(self) -> str:
        """Return the profile identifier (frontend, node, jvm)."""

    def prepare_server(self, installer: DependencyInstaller, server_dir: Path) -> None:
        """Post-install fix-ups for the server tree."""
        installer.ensure_server_extras(server_dir)

    def build_server(self, installer: DependencyInstaller, server_dir: Path) -> None:
        """Separate build step; only stacks with ``has_build_step`` override this."""

    def server_env_patch(self, conn: DbConnection) -> dict[str, str]:
        return conn.env_patch()

    def check_server_env(
        self,
        env: Mapping[str, str],
        on_log: Optional[Callable[[str], None]] = None,
    ) -> list[str]:
        """Return keys the server is expected to need but which are missing."""
        return []
