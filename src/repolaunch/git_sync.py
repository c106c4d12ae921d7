"""Clone-or-pull of a target repository."""

from pathlib import Path
from typing import Optional

from .errors import CommandExitError, CommandSpawnError, GitSyncError
from .runner import CommandRunner


def sync_repo(runner: CommandRunner, target_dir: Path, url: str, branch: Optional[str] = None) -> str:
    """Bring ``target_dir`` up to date with ``url``.

    Pulls when ``target_dir/.git`` exists, otherwise clones into the
    directory itself. Returns ``"pull"`` or ``"clone"``.
    """
    target_dir = Path(target_dir)
    target_dir.mkdir(parents=True, exist_ok=True)

    if (target_dir / ".git").exists():
        action, args = "pull", ["pull"]
    else:
        action = "clone"
        args = ["clone"]
        if branch:
            args += ["-b", branch]
        args += [url, "."]

    try:
        runner.run("git", args, target_dir, tag="git")
    except CommandExitError as e:
        raise GitSyncError(f"git {action} failed for {url} (code={e.code})") from e
    except CommandSpawnError as e:
        raise GitSyncError(f"git {action} could not start: {e.reason}") from e
    return action
