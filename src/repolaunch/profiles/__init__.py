"""Launch profiles for the supported stacks (frontend-only, Node, JVM)."""

from .base import TargetProfile
from .frontend import FrontendProfile
from .jvm import JvmStackProfile
from .node import NodeStackProfile
from .registry import get_profile, get_profile_for_config

__all__ = [
    "TargetProfile",
    "FrontendProfile",
    "JvmStackProfile",
    "NodeStackProfile",
    "get_profile",
    "get_profile_for_config",
]
