"""Configuration models for repolaunch."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional

import yaml
from dotenv import dotenv_values

JS_TOOL_HINTS = ("npm", "yarn", "pnpm", "npx", "nest", "node")

PROFILE_NAMES = ("frontend", "node", "jvm")

# Keys read from the process environment / root .env, with their fallbacks.
DEFAULT_SETTINGS: dict[str, str] = {
    "VITE_SERVER_URL": "http://localhost:8080",
    "ADMIN_VITE_ADMIN_URL": "http://admin.localhost:3002",
    "ADMIN_VITE_ADMIN_AUTH_URL": "http://admin.localhost:3002/auth",
    "ADMIN_VITE_ADMIN_COOKIE_DOMAIN": "localhost",
    "STUDENT_VITE_STUDENT_URL": "http://student.localhost:3001",
    "STUDENT_VITE_STUDENT_AUTH_URL": "http://student.localhost:3001/auth",
    "STUDENT_VITE_STUDENT_COOKIE_DOMAIN": "localhost",
    "UI_VITE_ADMIN_URL": "http://admin.localhost:3002",
    "UI_VITE_ADMIN_AUTH_URL": "http://admin.localhost:3002/auth",
    "UI_VITE_ADMIN_COOKIE_DOMAIN": "localhost",
    "UI_VITE_STUDENT_URL": "http://student.localhost:3001",
    "UI_VITE_STUDENT_AUTH_URL": "http://student.localhost:3001/auth",
    "UI_VITE_STUDENT_COOKIE_DOMAIN": "localhost",
    "UTIL_VITE_COOKIE_DOMAIN": "localhost",
    "UTIL_VITE_ADMIN_COOKIE_DOMAIN": "localhost",
    "UTIL_VITE_STUDENT_COOKIE_DOMAIN": "localhost",
    "BRANCH": "main",
    "TEST_ID": "",
    "TEST_PW": "",
    "REPOLAUNCH_DB_NAME": "app",
    "REPOLAUNCH_WORKSPACE": "",
}


def _pick(data: Mapping, *keys: str, default=None):
    for k in keys:
        if k in data and data[k] is not None:
            return data[k]
    return default


def _clean(value) -> Optional[str]:
    if value is None:
        return None
    v = str(value).strip()
    return v or None


@dataclass
class TargetConfig:
    """One repository to clone, install and start."""
    url: str
    branch: Optional[str] = None
    start_command: Optional[str] = None
    install_command: Optional[str] = None
    cwd_name: str = "frontend"
    db_password: Optional[str] = None
    dev_url: Optional[str] = None
    env_files: Optional[dict[str, dict[str, str]]] = None

    @classmethod
    def from_dict(cls, data: Mapping, *, default_cwd: str) -> "TargetConfig":
        url = _clean(_pick(data, "url", "repo_url", "repoUrl"))
        if not url:
            raise ValueError(f"Repository url is required for '{default_cwd}'")
        env_files = _pick(data, "env_files", "envFiles")
        return cls(
            url=url,
            branch=_clean(_pick(data, "branch")),
            start_command=_clean(_pick(data, "start_command", "startCommand")),
            install_command=_clean(_pick(data, "install_command", "installCommand")),
            cwd_name=_clean(_pick(data, "cwd_name", "cwdName")) or default_cwd,
            db_password=_pick(data, "db_password", "dbPassword") or None,
            dev_url=_clean(_pick(data, "dev_url", "devUrl")),
            env_files={str(k): dict(v or {}) for k, v in env_files.items()} if env_files else None,
        )

    def to_dict(self) -> dict:
        out = {"url": self.url, "cwd_name": self.cwd_name}
        for key in ("branch", "start_command", "install_command", "dev_url", "env_files"):
            value = getattr(self, key)
            if value:
                out[key] = value
        return out

    def mentions_js_tool(self) -> bool:
        text = " ".join(c for c in (self.start_command, self.install_command) if c).lower()
        return any(tool in text.split() or text.startswith(tool) for tool in JS_TOOL_HINTS)


@dataclass
class RepoConfig:
    """What to launch: a frontend and, optionally, a server."""
    frontend: TargetConfig
    server: Optional[TargetConfig] = None
    workspace_dir: Optional[str] = None
    profile: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Mapping) -> "RepoConfig":
        if not isinstance(data, Mapping):
            raise ValueError("Launch config must be a mapping")
        frontend_raw = _pick(data, "frontend")
        if not frontend_raw:
            raise ValueError("Launch config requires a 'frontend' section")
        server_raw = _pick(data, "server")
        profile = _clean(_pick(data, "profile", "stack"))
        if profile and profile not in PROFILE_NAMES:
            raise ValueError(f"Unknown profile '{profile}'. Expected one of: {', '.join(PROFILE_NAMES)}")
        return cls(
            frontend=TargetConfig.from_dict(frontend_raw, default_cwd="frontend"),
            server=TargetConfig.from_dict(server_raw, default_cwd="server") if server_raw else None,
            workspace_dir=_clean(_pick(data, "workspace_dir", "workspaceDir")),
            profile=profile,
        )

    @classmethod
    def from_yaml(cls, path: Path) -> "RepoConfig":
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        return cls.from_dict(data)

    def to_dict(self) -> dict:
        out: dict = {"frontend": self.frontend.to_dict()}
        if self.server:
            out["server"] = self.server.to_dict()
        if self.workspace_dir:
            out["workspace_dir"] = self.workspace_dir
        if self.profile:
            out["profile"] = self.profile
        return out

    def to_yaml(self, path: Path) -> None:
        with open(path, "w", encoding="utf-8") as f:
            yaml.safe_dump(self.to_dict(), f, default_flow_style=False, sort_keys=False)

    def resolved_profile(self) -> str:
        if self.profile:
            return self.profile
        if self.server is None:
            return "frontend"
        if self.server.mentions_js_tool():
            return "node"
        return "jvm"


def load_config(path: str | Path) -> RepoConfig:
    """Load launch configuration from a YAML file."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")
    return RepoConfig.from_yaml(path)


@dataclass
class LaunchSettings:
    """Resolved configuration context.

    Lookup order: explicit overrides, process environment, root ``.env``,
    then :data:`DEFAULT_SETTINGS`.
    """
    overrides: dict[str, str] = field(default_factory=dict)
    environ: dict[str, str] = field(default_factory=dict)
    dotenv: dict[str, str] = field(default_factory=dict)
    dotenv_path: Optional[Path] = None

    @classmethod
    def from_env(
        cls,
        env: Optional[Mapping[str, str]] = None,
        *,
        dotenv_path: Optional[Path] = None,
        overrides: Optional[Mapping[str, str]] = None,
    ) -> "LaunchSettings":
        src = dict(os.environ if env is None else env)
        path = dotenv_path
        if path is None:
            explicit = _clean(src.get("REPOLAUNCH_ENV_FILE"))
            path = Path(explicit) if explicit else Path.cwd() / ".env"
        loaded: dict[str, str] = {}
        if path.is_file():
            loaded = {k: v for k, v in dotenv_values(path).items() if v is not None}
        return cls(
            overrides={str(k): str(v) for k, v in (overrides or {}).items() if v is not None},
            environ=src,
            dotenv=loaded,
            dotenv_path=path if loaded else None,
        )

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        for layer in (self.overrides, self.environ, self.dotenv):
            if key in layer:
                return layer[key]
        if key in DEFAULT_SETTINGS:
            return DEFAULT_SETTINGS[key]
        return default

    def source_of(self, key: str) -> str:
        if key in self.overrides:
            return "override"
        if key in self.environ:
            return "env"
        if key in self.dotenv:
            return "dotenv"
        if key in DEFAULT_SETTINGS:
            return "default"
        return "unset"

    def child_env(self) -> dict[str, str]:
        """Variables to add to every child process: root .env keys not already set."""
        out = {k: v for k, v in self.dotenv.items() if k not in self.environ}
        out.update(self.overrides)
        return out

    def workspace_override(self) -> Optional[str]:
        return _clean(self.get("REPOLAUNCH_WORKSPACE"))

    def default_db_name(self) -> str:
        return self.get("REPOLAUNCH_DB_NAME") or "app"
