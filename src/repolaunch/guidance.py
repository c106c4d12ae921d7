"""Remediation recipes for recognisable failures.

Two ordered tables: one for server runtime output, one for errors that
abort a launch. The first matching rule wins.
"""

from dataclasses import dataclass
from typing import Callable, Iterable, Optional, Sequence

Matcher = Callable[[str], bool]


@dataclass(frozen=True)
class Remediation:
    key: str
    title: str
    steps: tuple[str, ...] = ()
    links: tuple[tuple[str, str], ...] = ()

    def to_dict(self) -> dict:
        return {
            "key": self.key,
            "title": self.title,
            "steps": list(self.steps),
            "links": [{"label": label, "url": url} for label, url in self.links],
        }

    def lines(self) -> list[str]:
        out = [f"💡 {self.title}"]
        out.extend(f"   {i}. {step}" for i, step in enumerate(self.steps, start=1))
        out.extend(f"   → {label}: {url}" for label, url in self.links)
        return out


@dataclass(frozen=True)
class GuidanceRule:
    matcher: Matcher
    remediation: Remediation


def all_of(*needles: str) -> Matcher:
    def match(text: str) -> bool:
        return all(n in text for n in needles)
    return match


def any_of(*needles: str) -> Matcher:
    def match(text: str) -> bool:
        return any(n in text for n in needles)
    return match


def both(a: Matcher, b: Matcher) -> Matcher:
    return lambda text: a(text) and b(text)


BUILD_FAILED = Remediation(
    "build",
    "The server build failed",
    (
        "Read the first error in the build output above",
        "Run the build manually in the server directory to reproduce",
    ),
)


SERVER_OUTPUT_RULES: tuple[GuidanceRule, ...] = (
    GuidanceRule(
        both(all_of("failed to start bean"), any_of("redis")),
        Remediation(
            "redis",
            "Redis is not reachable",
            (
                "Start a local Redis server (default port 6379)",
                "Check REDIS_HOST / REDIS_PORT in the server .env",
            ),
            (("Redis download", "https://redis.io/download"),),
        ),
    ),
    GuidanceRule(
        any_of("communications link failure", "access denied for user", "connection refused: connect"),
        Remediation(
            "mysql",
            "The server cannot connect to MySQL",
            (
                "Make sure the MySQL service is running",
                "Check DB_HOST, DB_PORT, DB_USERNAME and DB_PASSWORD in the server .env",
                "Confirm the database exists and the user can access it",
            ),
            (("MySQL download", "https://dev.mysql.com/downloads/mysql/"),),
        ),
    ),
    GuidanceRule(
        both(any_of("port"), any_of("already in use", "eaddrinuse")),
        Remediation(
            "port",
            "A port the server needs is already in use",
            (
                "Stop the other process using the port",
                "Or change the server port in its configuration",
            ),
        ),
    ),
    GuidanceRule(
        any_of("failed to bind properties", "could not resolve placeholder"),
        Remediation(
            "env",
            "A required configuration property is missing",
            (
                "Compare the server .env with the keys the application expects",
                "Add the missing property and restart",
            ),
        ),
    ),
    GuidanceRule(
        any_of(
            "unsupported class file major version",
            "java.lang.unsupportedclassversionerror",
            "kotlin compilation failed",
            "incompatible kotlin version",
        ),
        Remediation(
            "jdk",
            "The installed Java/Kotlin version does not match the project",
            (
                "Install the JDK version the project targets (usually 17)",
                "Point JAVA_HOME at that JDK",
            ),
            (("Temurin JDK", "https://adoptium.net/"),),
        ),
    ),
    GuidanceRule(any_of("build failed", "compilation failed", "ktlint"), BUILD_FAILED),
    GuidanceRule(
        any_of("application run failed", "error starting applicationcontext"),
        Remediation(
            "spring",
            "The Spring application failed to start",
            (
                "Scroll up to the first 'Caused by' line",
                "Check database, Redis and environment settings",
            ),
        ),
    ),
)


LAUNCH_FAILURE_RULES: tuple[GuidanceRule, ...] = (
    GuidanceRule(
        any_of("tool 'git'", "git clone", "git pull"),
        Remediation(
            "git",
            "Git is missing or the repository could not be fetched",
            (
                "Install Git and reopen the launcher",
                "Check the repository URL and your network connection",
            ),
            (("Git download", "https://git-scm.com/downloads"),),
        ),
    ),
    GuidanceRule(
        any_of("tool 'npm'", "tool 'yarn'", "node.js"),
        Remediation(
            "node",
            "Node.js or its package manager is missing",
            ("Install the Node.js LTS release, then retry",),
            (("Node.js download", "https://nodejs.org/"),),
        ),
    ),
    GuidanceRule(
        any_of("tool 'java'", "java_home"),
        Remediation(
            "java",
            "A Java runtime is required",
            ("Install JDK 17 and make sure `java --version` works",),
            (("Temurin JDK", "https://adoptium.net/"),),
        ),
    ),
    GuidanceRule(
        any_of("`mysql`"),
        Remediation(
            "mysql",
            "MySQL is required for the server",
            (
                "Install MySQL Server",
                "Add its bin directory to PATH so `mysql` can be run",
            ),
            (("MySQL download", "https://dev.mysql.com/downloads/mysql/"),),
        ),
    ),
    GuidanceRule(
        any_of("server build failed"),
        BUILD_FAILED,
    ),
    GuidanceRule(
        any_of("install", "enotfound", "etimedout", "network"),
        Remediation(
            "network",
            "Dependencies could not be installed",
            (
                "Check your internet connection and proxy settings",
                "Retry; registries occasionally fail",
            ),
        ),
    ),
    GuidanceRule(
        any_of("permission", "eacces", "access is denied", "eperm"),
        Remediation(
            "permission",
            "The launcher lacks permission for the workspace",
            (
                "Choose a workspace folder you own",
                "Or run the launcher with administrator rights",
            ),
        ),
    ),
    GuidanceRule(
        any_of("eaddrinuse", "already in use"),
        Remediation(
            "port",
            "A required port is already in use",
            ("Close the program using the port and retry",),
        ),
    ),
)

GENERIC_FAILURE = Remediation(
    "generic",
    "The launch failed",
    (
        "Read the log above for the first error",
        "Fix it and start again",
    ),
)


def classify(text: str, rules: Sequence[GuidanceRule]) -> Optional[Remediation]:
    low = (text or "").lower()
    for rule in rules:
        if rule.matcher(low):
            return rule.remediation
    return None


def classify_launch_failure(message: str, extra_lines: Iterable[str] = ()) -> Remediation:
    text = "\n".join([message, *extra_lines])
    return classify(text, LAUNCH_FAILURE_RULES) or GENERIC_FAILURE


def validate_workspace_path(path: str) -> Optional[str]:
    """Return a problem description for an unusable workspace path, else ``None``."""
    body = path[2:] if len(path) >= 2 and path[1] == ":" else path
    if any(ch in body for ch in '<>:"|?*'):
        return "Workspace path contains characters that are not allowed: < > : \" | ? *"
    if len(path) > 220:
        return "Workspace path is too long (max 220 characters)"
    return None
