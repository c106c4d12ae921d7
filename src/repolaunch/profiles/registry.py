"""Profile registry – resolve the right TargetProfile for a launch config."""

from __future__ import annotations

from ..config import RepoConfig
from .base import TargetProfile
from .frontend import FrontendProfile
from .jvm import JvmStackProfile
from .node import NodeStackProfile

_PROFILES: dict[str, TargetProfile] = {
    "frontend": FrontendProfile(),
    "node": NodeStackProfile(),
    "jvm": JvmStackProfile(),
}


def get_profile(name: str) -> TargetProfile:
    """Return the profile instance registered under ``name``."""
    profile = _PROFILES.get(name)
    if profile is None:
        raise ValueError(f"No profile registered for: {name}")
    return profile


def get_profile_for_config(config: RepoConfig) -> TargetProfile:
    profile = get_profile(config.resolved_profile())
    if profile.manages_server and config.server is None:
        raise ValueError(f"Profile '{profile.name}' needs a 'server' section in the launch config")
    return profile
