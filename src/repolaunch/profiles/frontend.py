"""Frontend-only launches: one repository, no server, no database."""

from __future__ import annotations

from .base import TargetProfile


class FrontendProfile(TargetProfile):
    manages_server = False

    @property
    def name(self) -> str:
        return "frontend"
