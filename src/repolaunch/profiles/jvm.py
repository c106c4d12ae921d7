"""Gradle/Spring server on MySQL with a frontend."""

from __future__ import annotations

from pathlib import Path
from typing import Callable, Mapping, Optional

from ..database import DbConnection
from ..installer import DependencyInstaller
from .base import TargetProfile

# Development defaults the Spring server reads from its .env.
SPRING_DEV_DEFAULTS: dict[str, str] = {
    "JPA_SHOW_SQL": "true",
    "JPA_FORMAT_SQL": "true",
    "JPA_HIBERNATE_DDL_AUTO": "update",
    "REDIS_HOST": "localhost",
    "REDIS_PORT": "6379",
    "HEADER": "Authorization",
    "PREFIX": "Bearer ",
    "JWT_SECRET": "local-development-secret-change-me-0123456789abcdef",
    "ACCESS_EXP": "3600",
    "REFRESH_EXP": "86400",
    "STUDENT_ACCESS_EXP": "7200",
    "BUCKET_NAME": "local-bucket",
    "IMAGE_FOLDER": "images/",
    "AWS_REGION": "ap-northeast-2",
    "AWS_ACCESS_KEY": "local-access-key",
    "AWS_SECRET_KEY": "local-secret-key",
}

EXPECTED_SPRING_KEYS = ("JPA_SHOW_SQL", "DB_HOST", "DB_NAME")


class JvmStackProfile(TargetProfile):
    manages_server = True
    needs_java = True
    has_build_step = True

    @property
    def name(self) -> str:
        return "jvm"

    def build_server(self, installer: DependencyInstaller, server_dir: Path) -> None:
        installer.build_jvm(server_dir)

    def server_env_patch(self, conn: DbConnection) -> dict[str, str]:
        patch = dict(SPRING_DEV_DEFAULTS)
        patch.update(conn.env_patch())
        return patch

    def check_server_env(
        self,
        env: Mapping[str, str],
        on_log: Optional[Callable[[str], None]] = None,
    ) -> list[str]:
        missing = [k for k in EXPECTED_SPRING_KEYS if not env.get(k)]
        if missing and on_log:
            on_log(f"[env] ⚠️ server .env is missing: {', '.join(missing)}")
        return missing
