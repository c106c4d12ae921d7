"""Workflow controller: drives one launch from tool checks to running processes."""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional

from rich.console import Console
from rich.table import Table

from .config import LaunchSettings, RepoConfig, TargetConfig
from .database import DatabaseProvisioner, DbConnection
from .elevation import ElevateFn, run_elevated
from .envfiles import frontend_layout_for, load_server_env, merge_write_dotenv, write_env_files
from .error_report import build_error_context, render_error_report_md, write_error_report
from .errors import LaunchCancelled, LaunchError, ProcessExitError, last_error_lines_of
from .git_sync import sync_repo
from .guidance import SERVER_OUTPUT_RULES, Remediation, classify, classify_launch_failure, validate_workspace_path
from .helpers import LOG_DIR
from .installer import DependencyInstaller, clean_dependency_cache
from .network import wait_for_http, wait_for_port
from .platform import default_workspace_dir
from .profiles import TargetProfile, get_profile_for_config
from .runner import CommandRunner
from .status import LaunchStatus, StatusBoard, StatusCallback, Step, SubStep
from .supervisor import KillOutcome, ProcessSupervisor, resolve_start_command
from .tools import ToolProber

logger = logging.getLogger("repolaunch.orchestrator")
console = Console()

SERVER_ROLE = "server"
FRONTEND_ROLE = "frontend"


def _sub_role(role: str) -> str:
    return "server" if role == SERVER_ROLE else "client"


@dataclass
class StartResult:
    ok: bool
    error: Optional[str] = None
    guidance: Optional[Remediation] = None
    server_pid: Optional[int] = None
    frontend_pid: Optional[int] = None
    report_path: Optional[Path] = None

    def to_dict(self) -> dict:
        return {
            "ok": self.ok,
            "error": self.error,
            "guidance": self.guidance.to_dict() if self.guidance else None,
            "server_pid": self.server_pid,
            "frontend_pid": self.frontend_pid,
            "report_path": str(self.report_path) if self.report_path else None,
        }


@dataclass
class StopResult:
    ok: bool
    kills: list[KillOutcome] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "ok": self.ok,
            "kills": [
                {"role": k.role, "pid": k.pid, "method": k.method, "ok": k.ok, "detail": k.detail}
                for k in self.kills
            ],
        }


@dataclass
class _Target:
    role: str
    config: TargetConfig
    path: Path


class Orchestrator:
    """Runs the launch workflow and owns the shared status.

    The step sequence is fixed: checking-tools, preparing, cloning,
    installing, building (JVM only), starting, running. Any fatal failure
    moves the status to ``error`` and returns a :class:`StartResult` with a
    remediation recipe.
    """

    def __init__(
        self,
        settings: Optional[LaunchSettings] = None,
        *,
        board: Optional[StatusBoard] = None,
        runner_factory: Callable[[Callable[..., None]], CommandRunner] = CommandRunner,
        supervisor_factory: Callable[[Callable[..., None]], ProcessSupervisor] = ProcessSupervisor,
        elevate: ElevateFn = run_elevated,
        db_port_waiter: Callable[..., bool] = wait_for_port,
        http_probe: Optional[Callable[..., bool]] = wait_for_http,
        report_dir: Optional[Path] = LOG_DIR,
    ):
        self.settings = settings
        self.board = board or StatusBoard()
        self.runner_factory = runner_factory
        self.supervisor_factory = supervisor_factory
        self.elevate = elevate
        self.db_port_waiter = db_port_waiter
        self.http_probe = http_probe
        self.report_dir = report_dir

        self._start_lock = threading.Lock()
        self._state_lock = threading.Lock()
        self._runner: Optional[CommandRunner] = None
        self._supervisor: Optional[ProcessSupervisor] = None

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def subscribe(self, callback: StatusCallback) -> Callable[[], None]:
        return self.board.subscribe(callback)

    def snapshot(self) -> LaunchStatus:
        return self.board.snapshot()

    def _make_log(self, epoch: int) -> Callable[..., None]:
        seen_guidance: set[str] = set()
        lock = threading.Lock()

        def log(line: str, level: str = "INFO") -> None:
            if not self.board.append_log(line, epoch=epoch):
                return
            if line.startswith(("[server]", "[server:err]")):
                remediation = classify(line, SERVER_OUTPUT_RULES)
                if remediation is None:
                    return
                with lock:
                    if remediation.key in seen_guidance:
                        return
                    seen_guidance.add(remediation.key)
                for hint in remediation.lines():
                    self.board.append_log(hint, epoch=epoch)
                self.board.set_sub_message("server", remediation.title, epoch=epoch)

        return log

    # ------------------------------------------------------------------
    # Start
    # ------------------------------------------------------------------

    def start(
        self,
        config: RepoConfig,
        *,
        parallel: bool = False,
        workspace_dir: Optional[str] = None,
    ) -> StartResult:
        if not self._start_lock.acquire(blocking=False):
            return StartResult(ok=False, error="A launch is already in progress")
        try:
            self._close(*self._detach())
            epoch = self.board.begin_run()
            log = self._make_log(epoch)
            runner = self.runner_factory(log)
            supervisor = self.supervisor_factory(log)
            with self._state_lock:
                if self.board.epoch != epoch:
                    return StartResult(ok=False, error=str(LaunchCancelled()))
                self._runner = runner
                self._supervisor = supervisor
            return self._run(epoch, log, runner, supervisor, config, parallel, workspace_dir)
        finally:
            self._start_lock.release()

    def _say(self, log: Callable[..., None], line: str) -> None:
        logger.info(line)
        log(line)

    def _run(
        self,
        epoch: int,
        log: Callable[..., None],
        runner: CommandRunner,
        supervisor: ProcessSupervisor,
        config: RepoConfig,
        parallel: bool,
        workspace_dir: Optional[str],
    ) -> StartResult:
        workspace: Optional[Path] = None
        profile_name: Optional[str] = None
        try:
            profile = get_profile_for_config(config)
            profile_name = profile.name
            settings = self.settings or LaunchSettings.from_env()
            runner.env_overrides.update(settings.child_env())

            self.board.set_step(Step.CHECKING_TOOLS, "Checking required tools", epoch=epoch)
            self._say(log, f"▶ Launch profile: {profile.name}")
            if settings.dotenv_path:
                self._say(log, f"[env] loaded {settings.dotenv_path}")
            ToolProber(runner, elevate=self.elevate).ensure_tools(
                needs_java=profile.needs_java,
                needs_yarn=profile.needs_yarn,
            )

            self.board.set_step(Step.PREPARING, "Preparing workspace", epoch=epoch)
            workspace = self._prepare_workspace(config, settings, workspace_dir, log)
            targets = self._targets(config, profile, workspace)
            for t in targets:
                self.board.set_sub(_sub_role(t.role), SubStep.PREPARING, epoch=epoch)

            self.board.set_step(Step.CLONING, "Syncing repositories", epoch=epoch)

            def sync(t: _Target) -> None:
                self.board.set_sub(_sub_role(t.role), SubStep.CLONING, epoch=epoch)
                action = sync_repo(runner, t.path, t.config.url, t.config.branch)
                self._say(log, f"[git] {t.role}: {action} complete")

            self._for_targets(targets, parallel, sync)

            frontend = next(t for t in targets if t.role == FRONTEND_ROLE)
            layout = frontend_layout_for(frontend.path, config.frontend.env_files)
            write_env_files(frontend.path, layout, settings, on_log=log)

            self.board.set_step(Step.INSTALLING, "Installing dependencies", epoch=epoch)
            installer = DependencyInstaller(runner)
            for t in targets:
                if clean_dependency_cache(t.path):
                    self._say(log, f"[deps] removed {t.path.name}/node_modules")

            def install(t: _Target) -> None:
                self.board.set_sub(_sub_role(t.role), SubStep.INSTALLING, epoch=epoch)
                installer.install(t.path, t.config.install_command)

            self._for_targets(targets, parallel, install)

            server = next((t for t in targets if t.role == SERVER_ROLE), None)
            server_env: dict[str, str] = {}
            if server is not None:
                server_env = self._provision_server(runner, installer, profile, config, settings, workspace, server, log)

            if profile.has_build_step and server is not None:
                self.board.set_step(Step.BUILDING, "Building server", epoch=epoch)
                self.board.set_sub("server", SubStep.BUILDING, epoch=epoch)
                try:
                    profile.build_server(installer, server.path)
                except LaunchError as e:
                    self.board.set_sub("server", SubStep.ERROR, str(e), epoch=epoch)
                    raise

            self.board.set_step(Step.STARTING, "Starting processes", epoch=epoch)
            on_exit = self._exit_handler(epoch)
            server_pid: Optional[int] = None
            if server is not None:
                self.board.set_sub("server", SubStep.STARTING, epoch=epoch)
                argv = resolve_start_command(
                    runner, server.path, server.config.start_command, fallback_cli=profile.server_fallback_cli
                )
                proc = supervisor.spawn(
                    SERVER_ROLE, argv, server.path, env={**runner.env_overrides, **server_env}, on_exit=on_exit
                )
                server_pid = proc.pid
                self.board.set_sub("server", SubStep.RUNNING, epoch=epoch, only_from=SubStep.STARTING)

            self.board.set_sub("client", SubStep.STARTING, epoch=epoch)
            argv = resolve_start_command(
                runner, frontend.path, config.frontend.start_command, fallback_cli=profile.frontend_fallback_cli
            )
            proc = supervisor.spawn(FRONTEND_ROLE, argv, frontend.path, env=dict(runner.env_overrides), on_exit=on_exit)
            frontend_pid = proc.pid
            self.board.set_sub("client", SubStep.RUNNING, epoch=epoch, only_from=SubStep.STARTING)

            self.board.set_pids(server_pid=server_pid, frontend_pid=frontend_pid, epoch=epoch)
            self.board.set_step(Step.RUNNING, "Running", epoch=epoch)
            self._say(log, "✅ All processes started")
            if config.frontend.dev_url:
                self._probe_dev_url(config.frontend.dev_url, epoch, log)
            return StartResult(ok=True, server_pid=server_pid, frontend_pid=frontend_pid)

        except LaunchCancelled as e:
            logger.info("Launch cancelled")
            return StartResult(ok=False, error=str(e))
        except LaunchError as e:
            return self._fail(epoch, log, e, workspace, profile_name)
        except ValueError as e:
            return self._fail(epoch, log, LaunchError(str(e)), workspace, profile_name)
        except Exception as e:
            logger.exception("Unexpected launch failure")
            return self._fail(epoch, log, LaunchError(f"Unexpected error: {e}"), workspace, profile_name)

    def _prepare_workspace(
        self,
        config: RepoConfig,
        settings: LaunchSettings,
        workspace_dir: Optional[str],
        log: Callable[..., None],
    ) -> Path:
        raw = workspace_dir or config.workspace_dir or settings.workspace_override() or str(default_workspace_dir())
        problem = validate_workspace_path(raw)
        if problem:
            raise LaunchError(problem)
        workspace = Path(raw).expanduser()
        server_name = config.server.cwd_name if config.server else "server"
        try:
            workspace.mkdir(parents=True, exist_ok=True)
            (workspace / server_name).mkdir(parents=True, exist_ok=True)
            (workspace / config.frontend.cwd_name).mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise LaunchError(f"Cannot create workspace {workspace}: {e}") from e
        self._say(log, f"[workspace] {workspace}")
        return workspace

    @staticmethod
    def _targets(config: RepoConfig, profile: TargetProfile, workspace: Path) -> list[_Target]:
        targets: list[_Target] = []
        if profile.manages_server and config.server is not None:
            targets.append(_Target(SERVER_ROLE, config.server, workspace / config.server.cwd_name))
        targets.append(_Target(FRONTEND_ROLE, config.frontend, workspace / config.frontend.cwd_name))
        return targets

    @staticmethod
    def _for_targets(targets: list[_Target], parallel: bool, fn: Callable[[_Target], None]) -> None:
        """Apply ``fn`` to each target; in parallel mode every failure is collected and reported."""
        if not parallel or len(targets) < 2:
            for t in targets:
                fn(t)
            return

        errors: dict[str, LaunchError] = {}
        with ThreadPoolExecutor(max_workers=len(targets)) as executor:
            futures = {executor.submit(fn, t): t.role for t in targets}
            for future in as_completed(futures):
                try:
                    future.result()
                except LaunchError as e:
                    errors[futures[future]] = e

        if not errors:
            return
        ordered = [(t.role, errors[t.role]) for t in targets if t.role in errors]
        if len(ordered) == 1:
            raise ordered[0][1]
        if any(isinstance(e, LaunchCancelled) for _, e in ordered):
            raise LaunchCancelled()
        combined = LaunchError("; ".join(f"{role}: {e}" for role, e in ordered))
        combined.last_error_lines = [line for _, e in ordered for line in last_error_lines_of(e)]
        raise combined

    def _provision_server(
        self,
        runner: CommandRunner,
        installer: DependencyInstaller,
        profile: TargetProfile,
        config: RepoConfig,
        settings: LaunchSettings,
        workspace: Path,
        server: _Target,
        log: Callable[..., None],
    ) -> dict[str, str]:
        profile.prepare_server(installer, server.path)

        server_env = load_server_env(workspace, server.path)
        conn = DbConnection.resolve(
            server_env,
            password_override=config.server.db_password if config.server else None,
            default_database=settings.default_db_name(),
        )
        db = DatabaseProvisioner(runner, elevate=self.elevate, port_waiter=self.db_port_waiter)
        db.ensure_engine_installed(conn)
        db.ensure_database(conn)

        merge_write_dotenv(server.path / ".env", profile.server_env_patch(conn))
        self._say(log, f"[env] updated {server.path.name}/.env")
        server_env = load_server_env(workspace, server.path)
        profile.check_server_env(server_env, log)
        return server_env

    def _exit_handler(self, epoch: int) -> Callable[[ProcessExitError], None]:
        def handle(event: ProcessExitError) -> None:
            sub = SubStep.IDLE if event.code == 0 else SubStep.ERROR
            self.board.set_sub(_sub_role(event.role), sub, event.describe(), epoch=epoch)

        return handle

    def _probe_dev_url(self, url: str, epoch: int, log: Callable[..., None]) -> None:
        if self.http_probe is None:
            return
        probe = self.http_probe

        def run() -> None:
            ready = probe(url, stop=lambda: self.board.epoch != epoch)
            if self.board.epoch != epoch:
                return
            if ready:
                log(f"[frontend] ready at {url}")
            else:
                log(f"[frontend] ⚠️ dev server not reachable yet at {url}")

        threading.Thread(target=run, daemon=True, name="repolaunch-dev-url-probe").start()

    def _fail(
        self,
        epoch: int,
        log: Callable[..., None],
        error: LaunchError,
        workspace: Optional[Path],
        profile_name: Optional[str],
    ) -> StartResult:
        message = str(error)
        if self.board.epoch != epoch:
            # Superseded by stop().
            return StartResult(ok=False, error=message)
        lines = last_error_lines_of(error)
        if not lines and error.__cause__ is not None:
            lines = last_error_lines_of(error.__cause__)
        guidance = classify_launch_failure(message, lines)
        failed_step = self.board.snapshot().step

        logger.error("Launch failed: %s", message)
        log(f"❌ {message}")
        for hint in guidance.lines():
            log(hint)
        self.board.fail(message, epoch=epoch)

        report_path = None
        if self.report_dir is not None:
            context = build_error_context(
                workspace=workspace,
                logs=self.board.snapshot().logs,
                last_error_lines=lines,
            )
            markdown = render_error_report_md(
                context,
                meta={
                    "message": message,
                    "step": failed_step.value,
                    "profile": profile_name,
                    "guidance": guidance,
                },
            )
            try:
                report_path = write_error_report(self.report_dir, markdown)
                log(f"[report] {report_path}")
            except OSError as e:
                logger.warning("Could not write error report: %s", e)
        return StartResult(ok=False, error=message, guidance=guidance, report_path=report_path)

    # ------------------------------------------------------------------
    # Stop
    # ------------------------------------------------------------------

    def _detach(self, *, reset: bool = False) -> tuple[Optional[CommandRunner], Optional[ProcessSupervisor]]:
        with self._state_lock:
            runner, supervisor = self._runner, self._supervisor
            self._runner = None
            self._supervisor = None
            if reset:
                self.board.reset()
        return runner, supervisor

    @staticmethod
    def _close(runner: Optional[CommandRunner], supervisor: Optional[ProcessSupervisor]) -> list[KillOutcome]:
        if runner is not None:
            runner.cancel()
        kills = supervisor.close() if supervisor is not None else []
        for k in kills:
            logger.info("Stopped %s pid=%s via %s (ok=%s)", k.role, k.pid, k.method, k.ok)
        return kills

    def stop(self) -> StopResult:
        """Cancel an in-flight launch, stop supervised processes and reset to idle."""
        kills = self._close(*self._detach(reset=True))
        return StopResult(ok=all(k.ok for k in kills), kills=kills)

    # ------------------------------------------------------------------
    # Display
    # ------------------------------------------------------------------

    def print_status(self) -> None:
        status = self.board.snapshot()
        table = Table(title=f"Launch: {status.step.value}")
        table.add_column("Process", style="cyan")
        table.add_column("Step")
        table.add_column("PID")
        table.add_column("Message")
        for name, sub, pid in (
            ("server", status.server, status.server_pid),
            ("frontend", status.client, status.frontend_pid),
        ):
            style = {"running": "green", "error": "red"}.get(sub.step.value, "yellow")
            table.add_row(name, f"[{style}]{sub.step.value}[/{style}]", str(pid or "-"), sub.message or "")
        console.print(table)
