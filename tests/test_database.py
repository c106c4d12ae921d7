import pytest

import repolaunch.database as db_module
from repolaunch.config import TargetConfig
from repolaunch.database import DatabaseProvisioner, DbConnection, sanitize_db_name
from repolaunch.errors import CommandSpawnError, DatabaseError


def test_sanitize_db_name():
    assert sanitize_db_name("my`db'; DROP \"x\" $HOME\\") == "mydb;DROPxHOME"


def test_resolve_defaults():
    conn = DbConnection.resolve({})
    assert (conn.host, conn.port, conn.user, conn.password, conn.database) == ("127.0.0.1", 3306, "root", "", "app")


def test_resolve_reads_env_and_override():
    env = {
        "DB_HOST": "db.local",
        "DB_PORT": "3307",
        "DB_USERNAME": "svc",
        "DB_PASSWORD": "from-env",
        "DB_DATABASE": "shop",
    }
    conn = DbConnection.resolve(env, password_override="from-config")
    assert conn.host == "db.local"
    assert conn.port == 3307
    assert conn.user == "svc"
    assert conn.password == "from-config"
    assert conn.database == "shop"


def test_resolve_blank_override_keeps_env_password():
    server = TargetConfig.from_dict({"url": "https://example.com/api.git", "db_password": ""}, default_cwd="server")
    assert server.db_password is None

    conn = DbConnection.resolve({"DB_PASSWORD": "secret"}, password_override=server.db_password)
    assert conn.password == "secret"
    assert conn.env_patch()["DB_PASSWORD"] == "secret"

    assert DbConnection.resolve({"DB_PASSWORD": "secret"}, password_override="").password == "secret"


def test_resolve_fallback_keys_and_bad_port():
    conn = DbConnection.resolve(
        {"MYSQL_HOST": "h", "DB_PORT": "abc", "MYSQL_ROOT_PASSWORD": "pw"},
        default_database="school",
    )
    assert conn.host == "h"
    assert conn.port == 3306
    assert conn.password == "pw"
    assert conn.database == "school"


def test_create_statement_and_env_patch():
    conn = DbConnection(database="a`pp", password="pw")
    assert conn.create_statement() == "CREATE DATABASE IF NOT EXISTS `app` DEFAULT CHARACTER SET utf8mb4;"
    assert conn.env_patch() == {
        "DB_HOST": "127.0.0.1",
        "DB_PORT": "3306",
        "DB_NAME": "app",
        "DB_USERNAME": "root",
        "DB_PASSWORD": "pw",
    }


def test_ensure_database_passes_password_via_env(fake_runner):
    runner = fake_runner()
    conn = DbConnection(host="127.0.0.1", port=3306, user="root", password="s3cret", database="app")

    assert DatabaseProvisioner(runner).ensure_database(conn) is True

    call = runner.calls[0]
    assert call["cmd"] == "mysql"
    assert call["args"][:7] == ["--protocol=TCP", "-h", "127.0.0.1", "-P", "3306", "-u", "root"]
    assert call["args"][-1] == conn.create_statement()
    assert call["env"] == {"MYSQL_PWD": "s3cret"}
    assert call["shell"] is False
    assert all("s3cret" not in a for a in call["args"])


def test_ensure_database_missing_client_is_fatal(fake_runner):
    runner = fake_runner({"mysql": CommandSpawnError("mysql", "command not found")})

    with pytest.raises(DatabaseError) as exc:
        DatabaseProvisioner(runner).ensure_database(DbConnection())

    assert "`mysql` command not found" in str(exc.value)


def test_ensure_database_failure_is_not_fatal(fake_runner):
    runner = fake_runner({"mysql": 1})

    assert DatabaseProvisioner(runner).ensure_database(DbConnection()) is False
    assert any("could not create database" in line for line in runner.lines)


def test_engine_install_skipped_off_windows(fake_runner, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setattr(db_module, "is_windows", lambda: False)
    runner = fake_runner()

    assert DatabaseProvisioner(runner).ensure_engine_installed(DbConnection()) is True
    assert runner.calls == []


def test_engine_install_on_windows_tries_winget_ids_then_choco(fake_runner, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setattr(db_module, "is_windows", lambda: True)
    elevated = []

    def elevate(runner, cmd, args):
        elevated.append((cmd, list(args)))
        return 0 if cmd in ("choco", "powershell") else 1

    waited = []
    runner = fake_runner(probes={"where": False})
    provisioner = DatabaseProvisioner(
        runner,
        elevate=elevate,
        port_waiter=lambda host, port: waited.append((host, port)) or True,
    )

    assert provisioner.ensure_engine_installed(DbConnection()) is True

    assert [c for c, _ in elevated] == ["winget", "winget", "choco", "powershell"]
    assert "Oracle.MySQL" in elevated[0][1]
    assert "Oracle.MySQLServer" in elevated[1][1]
    assert elevated[2][1] == ["install", "mysql", "-y", "--params", "/Password:"]
    assert "-EncodedCommand" in elevated[3][1]
    assert waited == [("127.0.0.1", 3306)]


def test_engine_install_failure_is_not_fatal(fake_runner, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setattr(db_module, "is_windows", lambda: True)
    runner = fake_runner(probes={"where": False})
    provisioner = DatabaseProvisioner(runner, elevate=lambda r, c, a: 1, port_waiter=lambda host, port: False)

    assert provisioner.ensure_engine_installed(DbConnection()) is False
    assert any("did not answer" in line for line in runner.lines)
