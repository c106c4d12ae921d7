"""Local MySQL engine provisioning and schema creation."""

import re
from dataclasses import dataclass
from typing import Callable, Mapping, Optional

from .elevation import ElevateFn, encode_powershell, run_elevated
from .errors import CommandExitError, CommandSpawnError, DatabaseError
from .network import wait_for_port
from .platform import is_windows
from .runner import CommandRunner

WINGET_MYSQL_IDS = ("Oracle.MySQL", "Oracle.MySQLServer")
START_MYSQL_SERVICE_PS = (
    "Get-Service -Name 'MySQL*' | Where-Object {$_.Status -ne 'Running'} | Start-Service -PassThru"
)

_UNSAFE_DB_CHARS = re.compile(r"[`'\"$\\\s]")


def sanitize_db_name(name: str) -> str:
    return _UNSAFE_DB_CHARS.sub("", str(name or ""))


def _first(env: Mapping[str, str], *keys: str) -> Optional[str]:
    for k in keys:
        v = env.get(k)
        if v is not None and str(v).strip() != "":
            return str(v)
    return None


@dataclass(frozen=True)
class DbConnection:
    host: str = "127.0.0.1"
    port: int = 3306
    user: str = "root"
    password: str = ""
    database: str = "app"
    charset: str = "utf8mb4"

    @classmethod
    def resolve(
        cls,
        env: Mapping[str, str],
        *,
        password_override: Optional[str] = None,
        default_database: str = "app",
    ) -> "DbConnection":
        port_raw = _first(env, "DB_PORT", "MYSQL_PORT") or "3306"
        try:
            port = int(port_raw)
        except ValueError:
            port = 3306
        if password_override:
            password = str(password_override)
        else:
            password = _first(env, "DB_PASSWORD", "DB_ROOT_PASSWORD", "MYSQL_ROOT_PASSWORD") or ""
        return cls(
            host=_first(env, "DB_HOST", "MYSQL_HOST") or "127.0.0.1",
            port=port,
            user=_first(env, "DB_USERNAME", "MYSQL_USER") or "root",
            password=password,
            database=_first(env, "DB_DATABASE", "MYSQL_DATABASE") or default_database,
        )

    def create_statement(self) -> str:
        name = sanitize_db_name(self.database)
        return f"CREATE DATABASE IF NOT EXISTS `{name}` DEFAULT CHARACTER SET {self.charset};"

    def env_patch(self) -> dict[str, str]:
        return {
            "DB_HOST": self.host,
            "DB_PORT": str(self.port),
            "DB_NAME": sanitize_db_name(self.database),
            "DB_USERNAME": self.user,
            "DB_PASSWORD": self.password,
        }


class DatabaseProvisioner:
    def __init__(
        self,
        runner: CommandRunner,
        *,
        elevate: ElevateFn = run_elevated,
        port_waiter: Callable[..., bool] = wait_for_port,
    ):
        self.runner = runner
        self.elevate = elevate
        self.port_waiter = port_waiter

    def log(self, line: str) -> None:
        self.runner.log(line)

    def ensure_engine_installed(self, conn: Optional[DbConnection] = None) -> bool:
        """Windows only: install and start MySQL when absent. Never raises."""
        if not is_windows():
            return True
        if self.runner.probe("where", ["mysql"]):
            self.log("[db] ✅ mysql client found")
            installed = True
        else:
            installed = self._install_engine()
        self._start_service()
        if conn is not None:
            if self.port_waiter(conn.host, conn.port):
                self.log(f"[db] MySQL is accepting connections on {conn.host}:{conn.port}")
            else:
                self.log(f"[db] ⚠️ MySQL did not answer on {conn.host}:{conn.port}; continuing")
        return installed

    def _install_engine(self) -> bool:
        for package_id in WINGET_MYSQL_IDS:
            self.log(f"[db] Installing MySQL with winget ({package_id})")
            code = self.elevate(
                self.runner,
                "winget",
                ["install", "-e", "--id", package_id, "--silent", "--accept-package-agreements"],
            )
            if code == 0:
                return True
            self.log(f"[db] winget {package_id} failed (code={code})")
        self.log("[db] Installing MySQL with choco")
        code = self.elevate(self.runner, "choco", ["install", "mysql", "-y", "--params", "/Password:"])
        if code == 0:
            return True
        self.log(f"[db] ⚠️ automatic MySQL install failed (code={code}); install it manually")
        return False

    def _start_service(self) -> None:
        encoded = encode_powershell(START_MYSQL_SERVICE_PS)
        code = self.elevate(
            self.runner,
            "powershell",
            ["-NoProfile", "-ExecutionPolicy", "Bypass", "-EncodedCommand", encoded],
        )
        if code != 0:
            self.log(f"[db] ⚠️ could not start the MySQL service (code={code})")

    def ensure_database(self, conn: DbConnection) -> bool:
        """Create the schema if missing.

        A missing ``mysql`` client raises :class:`DatabaseError`; any other
        failure is logged and reported as False.
        """
        args = [
            "--protocol=TCP",
            "-h",
            conn.host,
            "-P",
            str(conn.port),
            "-u",
            conn.user,
            "-e",
            conn.create_statement(),
        ]
        env = {"MYSQL_PWD": conn.password} if conn.password else None
        try:
            self.runner.run("mysql", args, env=env, tag="db", shell=False)
        except CommandSpawnError as e:
            raise DatabaseError(
                "`mysql` command not found. Install MySQL and add its bin directory to PATH",
                remediation="Install MySQL Server and make sure the `mysql` client is on PATH",
            ) from e
        except CommandExitError as e:
            self.log(f"[db] ⚠️ could not create database `{sanitize_db_name(conn.database)}` (code={e.code}); continuing")
            return False
        self.log(f"[db] ✅ database `{sanitize_db_name(conn.database)}` is ready")
        return True

