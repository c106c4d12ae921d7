"""Node server (NestJS + TypeORM on MySQL) with a frontend."""

from __future__ import annotations

from .base import TargetProfile


class NodeStackProfile(TargetProfile):
    manages_server = True
    server_fallback_cli = ("nest", "start", "--watch")

    @property
    def name(self) -> str:
        return "node"
