import pytest

from repolaunch.errors import GitSyncError, ToolMissingError
from repolaunch.guidance import (
    GENERIC_FAILURE,
    LAUNCH_FAILURE_RULES,
    SERVER_OUTPUT_RULES,
    classify,
    classify_launch_failure,
    validate_workspace_path,
)


@pytest.mark.parametrize(
    "line, key",
    [
        ("Error creating bean: Failed to start bean 'redisContainer'; Unable to connect to Redis", "redis"),
        ("com.mysql.cj.jdbc.exceptions.CommunicationsException: Communications link failure", "mysql"),
        ("Access denied for user 'root'@'localhost' (using password: YES)", "mysql"),
        ("Web server failed to start. Port 8080 was already in use.", "port"),
        ("Failed to bind properties under 'spring.datasource'", "env"),
        ("Could not resolve placeholder 'JWT_SECRET' in value", "env"),
        ("Unsupported class file major version 65", "jdk"),
        ("FAILURE: Build failed with an exception.", "build"),
        ("Application run failed", "spring"),
    ],
)
def test_server_output_rules(line, key):
    remediation = classify(f"[server:err] {line}", SERVER_OUTPUT_RULES)
    assert remediation is not None
    assert remediation.key == key


def test_server_output_without_match():
    assert classify("[server] Started Application in 4.2 seconds", SERVER_OUTPUT_RULES) is None


def test_first_matching_rule_wins():
    line = "Failed to start bean 'redis'; Communications link failure"
    assert classify(line, SERVER_OUTPUT_RULES).key == "redis"


@pytest.mark.parametrize(
    "message, key",
    [
        (str(ToolMissingError("git", "https://git-scm.com/downloads")), "git"),
        (str(GitSyncError("git clone failed for https://x/y.git (code=128)")), "git"),
        (str(ToolMissingError("npm", "https://nodejs.org/")), "node"),
        (str(ToolMissingError("yarn")), "node"),
        (str(ToolMissingError("java", "https://adoptium.net/")), "java"),
        ("`mysql` command not found. Install MySQL and add its bin directory to PATH", "mysql"),
        ("Server build failed: 'gradle build' exited with code 1", "build"),
        ("Dependency install failed in frontend: 'npm ci' exited with code 1", "network"),
        ("Cannot create workspace /opt/ws: [Errno 13] Permission denied", "permission"),
        ("listen EADDRINUSE: address already in use :::3000", "port"),
    ],
)
def test_launch_failure_rules(message, key):
    assert classify_launch_failure(message).key == key


def test_launch_failure_uses_extra_lines():
    remediation = classify_launch_failure("'yarn install' exited with code 1", ["npm ERR! code ENOTFOUND"])
    assert remediation.key == "network"


def test_unknown_failure_is_generic():
    assert classify_launch_failure("something odd happened") is GENERIC_FAILURE


def test_every_rule_has_steps():
    for rule in (*SERVER_OUTPUT_RULES, *LAUNCH_FAILURE_RULES):
        assert rule.remediation.title
        assert rule.remediation.steps


def test_remediation_rendering():
    remediation = classify_launch_failure(str(ToolMissingError("java", "https://adoptium.net/")))
    lines = remediation.lines()
    assert lines[0] == f"💡 {remediation.title}"
    assert any("https://adoptium.net/" in line for line in lines)
    data = remediation.to_dict()
    assert data["key"] == "java"
    assert data["links"] == [{"label": "Temurin JDK", "url": "https://adoptium.net/"}]


@pytest.mark.parametrize(
    "path, ok",
    [
        ("/home/dev/workspace", True),
        (r"C:\repolaunch-workspace", True),
        ("/tmp/work|space", False),
        ("/tmp/what?", False),
        (r"C:\ws\a:b", False),
        ("/" + "a" * 230, False),
    ],
)
def test_validate_workspace_path(path, ok):
    assert (validate_workspace_path(path) is None) is ok
