"""repolaunch – local launcher that clones, installs and runs a frontend/server pair"""

__version__ = "0.1.0"

from .config import LaunchSettings, RepoConfig, TargetConfig, load_config
from .database import DatabaseProvisioner, DbConnection
from .envfiles import (
    load_server_env,
    merge_write_dotenv,
    parse_dotenv,
    stringify_dotenv,
    write_env_files,
)
from .errors import (
    BuildError,
    CommandExitError,
    CommandSpawnError,
    DatabaseError,
    EnvFileError,
    GitSyncError,
    InstallError,
    LaunchCancelled,
    LaunchError,
    ProcessExitError,
    ProcessSpawnError,
    ToolMissingError,
)
from .git_sync import sync_repo
from .guidance import Remediation, classify
from .installer import DependencyInstaller, detect_package_manager, resolve_install_command
from .orchestrator import Orchestrator, StartResult, StopResult
from .profiles import FrontendProfile, JvmStackProfile, NodeStackProfile, TargetProfile, get_profile
from .runner import CommandRunner
from .status import LaunchStatus, StatusBoard, Step, SubStatus, SubStep
from .supervisor import KillOutcome, ManagedProcess, ProcessSupervisor, resolve_start_command
from .tools import ToolProber

__all__ = [
    "__version__",
    # Config
    "LaunchSettings",
    "RepoConfig",
    "TargetConfig",
    "load_config",
    # Status
    "LaunchStatus",
    "StatusBoard",
    "Step",
    "SubStatus",
    "SubStep",
    # Components
    "CommandRunner",
    "ToolProber",
    "sync_repo",
    "parse_dotenv",
    "stringify_dotenv",
    "write_env_files",
    "merge_write_dotenv",
    "load_server_env",
    "DependencyInstaller",
    "detect_package_manager",
    "resolve_install_command",
    "DatabaseProvisioner",
    "DbConnection",
    "ProcessSupervisor",
    "ManagedProcess",
    "KillOutcome",
    "resolve_start_command",
    "Remediation",
    "classify",
    # Profiles
    "TargetProfile",
    "FrontendProfile",
    "NodeStackProfile",
    "JvmStackProfile",
    "get_profile",
    # Orchestration
    "Orchestrator",
    "StartResult",
    "StopResult",
    # Errors
    "LaunchError",
    "CommandExitError",
    "CommandSpawnError",
    "LaunchCancelled",
    "ToolMissingError",
    "GitSyncError",
    "EnvFileError",
    "InstallError",
    "BuildError",
    "DatabaseError",
    "ProcessSpawnError",
    "ProcessExitError",
]
