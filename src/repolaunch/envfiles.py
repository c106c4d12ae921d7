"""Reading, writing and merging of dotenv files."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Mapping, Optional

from .config import LaunchSettings
from .errors import EnvFileError

logger = logging.getLogger("repolaunch.envfiles")

_KEY_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_.\-]*$")
_NEEDS_QUOTES_RE = re.compile(r"[\s#'\"`]")

SERVER_ENV_SOURCES = (".env", ".env.development", ".env.local")
LAUNCHER_ENV_JSON = "launcher.env.json"


def parse_dotenv(text: str) -> dict[str, str]:
    out: dict[str, str] = {}
    for raw in text.splitlines():
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        idx = line.find("=")
        if idx <= 0:
            continue
        key = line[:idx].strip()
        value = line[idx + 1:].strip()
        if len(value) >= 2 and value[0] == value[-1] and value[0] in "\"'":
            if value[0] == '"':
                try:
                    decoded = json.loads(value)
                except ValueError:
                    decoded = value[1:-1]
                value = decoded if isinstance(decoded, str) else value[1:-1]
            else:
                value = value[1:-1]
        out[key] = value
    return out


def _format_value(value: str) -> str:
    if _NEEDS_QUOTES_RE.search(value):
        return json.dumps(value)
    return value


def stringify_dotenv(values: Mapping[str, object]) -> str:
    lines: list[str] = []
    for key, value in values.items():
        if value is None:
            continue
        if not _KEY_RE.match(str(key)):
            raise ValueError(f"Invalid env key: {key!r}")
        lines.append(f"{key}={_format_value(str(value))}")
    return "\n".join(lines) + "\n"


def read_dotenv(path: Path) -> dict[str, str]:
    path = Path(path)
    if not path.is_file():
        return {}
    return parse_dotenv(path.read_text(encoding="utf-8"))


def merge_write_dotenv(path: Path, patch: Mapping[str, object]) -> dict[str, str]:
    """Merge ``patch`` into the dotenv file at ``path``; existing keys not in the patch are kept."""
    path = Path(path)
    merged = read_dotenv(path)
    merged.update({str(k): str(v) for k, v in patch.items() if v is not None})
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(stringify_dotenv(merged), encoding="utf-8")
    except OSError as e:
        raise EnvFileError(str(path), str(e)) from e
    return merged


def load_server_env(workspace: Path, server_dir: Path) -> dict[str, str]:
    """Layered server environment.

    Priority, highest first: ``<workspace>/launcher.env.json``,
    ``.env.local``, ``.env.development``, ``.env`` in the server tree.
    """
    env: dict[str, str] = {}
    for name in SERVER_ENV_SOURCES:
        env.update(read_dotenv(Path(server_dir) / name))

    json_path = Path(workspace) / LAUNCHER_ENV_JSON
    if json_path.is_file():
        try:
            data = json.loads(json_path.read_text(encoding="utf-8"))
        except ValueError as e:
            logger.warning("Ignoring malformed %s: %s", json_path, e)
            data = {}
        if isinstance(data, dict):
            env.update({str(k): str(v) for k, v in data.items() if v is not None})
    return env


# ---------------------------------------------------------------------------
# Frontend env layout
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class EnvEntry:
    key: str
    source: str


# relative path -> entries; each entry reads ``source`` from LaunchSettings.
DEFAULT_FRONTEND_LAYOUT: dict[str, tuple[EnvEntry, ...]] = {
    "packages/admin/.env": (
        EnvEntry("VITE_SERVER_URL", "VITE_SERVER_URL"),
        EnvEntry("VITE_ADMIN_URL", "ADMIN_VITE_ADMIN_URL"),
        EnvEntry("VITE_ADMIN_AUTH_URL", "ADMIN_VITE_ADMIN_AUTH_URL"),
        EnvEntry("VITE_ADMIN_COOKIE_DOMAIN", "ADMIN_VITE_ADMIN_COOKIE_DOMAIN"),
        EnvEntry("BRANCH", "BRANCH"),
        EnvEntry("TEST_ID", "TEST_ID"),
        EnvEntry("TEST_PW", "TEST_PW"),
    ),
    "packages/student/.env": (
        EnvEntry("VITE_SERVER_URL", "VITE_SERVER_URL"),
        EnvEntry("VITE_STUDENT_URL", "STUDENT_VITE_STUDENT_URL"),
        EnvEntry("VITE_STUDENT_AUTH_URL", "STUDENT_VITE_STUDENT_AUTH_URL"),
        EnvEntry("VITE_STUDENT_COOKIE_DOMAIN", "STUDENT_VITE_STUDENT_COOKIE_DOMAIN"),
        EnvEntry("BRANCH", "BRANCH"),
    ),
    "packages/ui/.env": (
        EnvEntry("VITE_SERVER_URL", "VITE_SERVER_URL"),
        EnvEntry("VITE_ADMIN_URL", "UI_VITE_ADMIN_URL"),
        EnvEntry("VITE_ADMIN_AUTH_URL", "UI_VITE_ADMIN_AUTH_URL"),
        EnvEntry("VITE_ADMIN_COOKIE_DOMAIN", "UI_VITE_ADMIN_COOKIE_DOMAIN"),
        EnvEntry("VITE_STUDENT_URL", "UI_VITE_STUDENT_URL"),
        EnvEntry("VITE_STUDENT_AUTH_URL", "UI_VITE_STUDENT_AUTH_URL"),
        EnvEntry("VITE_STUDENT_COOKIE_DOMAIN", "UI_VITE_STUDENT_COOKIE_DOMAIN"),
    ),
    "packages/util-config/.env": (
        EnvEntry("VITE_SERVER_URL", "VITE_SERVER_URL"),
        EnvEntry("VITE_COOKIE_DOMAIN", "UTIL_VITE_COOKIE_DOMAIN"),
        EnvEntry("VITE_ADMIN_COOKIE_DOMAIN", "UTIL_VITE_ADMIN_COOKIE_DOMAIN"),
        EnvEntry("VITE_STUDENT_COOKIE_DOMAIN", "UTIL_VITE_STUDENT_COOKIE_DOMAIN"),
    ),
}


def layout_from_config(env_files: Mapping[str, Mapping[str, str]]) -> dict[str, tuple[EnvEntry, ...]]:
    """``{"path/.env": {"DEST_KEY": "SOURCE_KEY"}}`` -> layout."""
    return {
        rel: tuple(EnvEntry(str(k), str(v or k)) for k, v in entries.items())
        for rel, entries in env_files.items()
    }


def frontend_layout_for(
    frontend_dir: Path,
    explicit: Optional[Mapping[str, Mapping[str, str]]] = None,
) -> dict[str, tuple[EnvEntry, ...]]:
    if explicit:
        return layout_from_config(explicit)
    if (Path(frontend_dir) / "packages").is_dir():
        return dict(DEFAULT_FRONTEND_LAYOUT)
    return {}


def write_env_files(
    target_dir: Path,
    layout: Mapping[str, tuple[EnvEntry, ...]],
    settings: LaunchSettings,
    on_log: Optional[Callable[[str], None]] = None,
) -> list[Path]:
    """Write every file in ``layout`` under ``target_dir``, overwriting existing content."""
    written: list[Path] = []
    for rel, entries in layout.items():
        values = {e.key: settings.get(e.source, "") or "" for e in entries}
        path = Path(target_dir) / rel
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(stringify_dotenv(values), encoding="utf-8")
        except OSError as e:
            raise EnvFileError(rel, str(e)) from e
        written.append(path)
        if on_log:
            on_log(f"[env] wrote {rel} ({len(values)} keys)")
    return written
