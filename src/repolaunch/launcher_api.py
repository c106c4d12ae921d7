from __future__ import annotations

import asyncio
import json
import logging
import os
from typing import Any, Callable, Dict, Optional
from urllib.parse import urlparse

import click
from fastapi import Depends, FastAPI, Header, HTTPException
from pydantic import BaseModel
from starlette.responses import StreamingResponse

from .config import RepoConfig
from .orchestrator import Orchestrator, StartResult, StopResult
from .status import LaunchStatus

logger = logging.getLogger(__name__)

DirectoryChooser = Callable[[], Optional[str]]


class TargetRequest(BaseModel):
    url: str
    branch: Optional[str] = None
    start_command: Optional[str] = None
    install_command: Optional[str] = None
    cwd_name: Optional[str] = None
    db_password: Optional[str] = None
    dev_url: Optional[str] = None
    env_files: Optional[Dict[str, Dict[str, str]]] = None


class StartRequest(BaseModel):
    frontend: TargetRequest
    server: Optional[TargetRequest] = None
    workspace_dir: Optional[str] = None
    profile: Optional[str] = None
    parallel: bool = False

    def to_config(self) -> RepoConfig:
        data = self.model_dump(exclude={"parallel"}, exclude_none=True)
        return RepoConfig.from_dict(data)


class OpenLinkRequest(BaseModel):
    url: str


class LauncherApiSettings:
    def __init__(self):
        self.host = os.environ.get("REPOLAUNCH_API_HOST", "127.0.0.1")
        self.port = int(os.environ.get("REPOLAUNCH_API_PORT", "8765"))
        self.require_token = os.environ.get("REPOLAUNCH_API_REQUIRE_TOKEN", "").lower() in {"1", "true", "yes"}
        self.token = os.environ.get("REPOLAUNCH_API_TOKEN") or ""


def prompt_for_directory() -> Optional[str]:
    value = click.prompt(
        "Workspace directory",
        default="",
        show_default=False,
        type=click.Path(file_okay=False, dir_okay=True),
    )
    return str(value).strip() or None


class LauncherService:
    """The operations a UI invokes: pick a folder, start, stop, open links, watch status."""

    def __init__(
        self,
        orchestrator: Optional[Orchestrator] = None,
        *,
        chooser: DirectoryChooser = prompt_for_directory,
        opener: Callable[[str], int] = click.launch,
    ):
        self.orchestrator = orchestrator or Orchestrator()
        self.chooser = chooser
        self.opener = opener

    def choose_directory(self) -> Optional[str]:
        """Returns the chosen path, or ``None`` when the user cancels."""
        try:
            return self.chooser()
        except click.Abort:
            return None

    def start(self, config: RepoConfig, *, parallel: bool = False, workspace_dir: Optional[str] = None) -> StartResult:
        return self.orchestrator.start(config, parallel=parallel, workspace_dir=workspace_dir)

    def stop(self) -> StopResult:
        return self.orchestrator.stop()

    def open_external_link(self, url: str) -> bool:
        parsed = urlparse(url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValueError(f"Refusing to open non-web URL: {url}")
        return self.opener(url) == 0

    def on_status_update(self, callback: Callable[[LaunchStatus], None]) -> Callable[[], None]:
        return self.orchestrator.subscribe(callback)

    def status(self) -> Dict[str, Any]:
        return self.orchestrator.snapshot().to_dict()


def _ndjson(item: Dict[str, Any]) -> bytes:
    return (json.dumps(item, ensure_ascii=False) + "\n").encode("utf-8")


_STREAM_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def create_launcher_api(*, service: LauncherService, settings: LauncherApiSettings) -> FastAPI:
    app = FastAPI(title="repolaunch")

    def require_token(x_launcher_token: Optional[str] = Header(default=None)) -> None:
        if not settings.require_token:
            return
        if not settings.token:
            raise HTTPException(status_code=500, detail="launcher token not configured")
        if not x_launcher_token or x_launcher_token != settings.token:
            raise HTTPException(status_code=401, detail="invalid launcher token")

    def to_config(req: StartRequest) -> RepoConfig:
        try:
            return req.to_config()
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))

    @app.get("/health")
    async def health() -> Dict[str, Any]:
        return {"status": "ok"}

    @app.get("/status", dependencies=[Depends(require_token)])
    async def status() -> Dict[str, Any]:
        return service.status()

    @app.post("/start", dependencies=[Depends(require_token)])
    async def start(req: StartRequest) -> Dict[str, Any]:
        config = to_config(req)
        result = await asyncio.to_thread(service.start, config, parallel=req.parallel)
        return result.to_dict()

    @app.post("/start/stream", dependencies=[Depends(require_token)])
    async def start_stream(req: StartRequest) -> StreamingResponse:
        config = to_config(req)
        q: asyncio.Queue[Dict[str, Any]] = asyncio.Queue()
        loop = asyncio.get_running_loop()

        def on_status(snapshot: LaunchStatus) -> None:
            loop.call_soon_threadsafe(q.put_nowait, {"type": "status", "status": snapshot})

        async def run_job() -> None:
            unsubscribe = service.on_status_update(on_status)
            try:
                result = await asyncio.to_thread(service.start, config, parallel=req.parallel)
                await q.put({"type": "result", "result": result.to_dict()})
            except Exception as e:
                logger.exception("Launch job failed")
                await q.put({"type": "result", "result": {"ok": False, "error": f"{type(e).__name__}: {e}"}})
            finally:
                unsubscribe()
                await q.put({"type": "eof"})

        task = asyncio.create_task(run_job())

        async def stream():
            try:
                while True:
                    item = await q.get()
                    if item.get("type") == "eof":
                        break
                    if item.get("type") == "status":
                        item = {"type": "status", "status": item["status"].to_dict()}
                    yield _ndjson(item)
            finally:
                if not task.done():
                    task.cancel()

        return StreamingResponse(stream(), media_type="application/x-ndjson", headers=_STREAM_HEADERS)

    @app.get("/status/stream", dependencies=[Depends(require_token)])
    async def status_stream() -> StreamingResponse:
        q: asyncio.Queue[LaunchStatus] = asyncio.Queue()
        loop = asyncio.get_running_loop()

        def on_status(snapshot: LaunchStatus) -> None:
            loop.call_soon_threadsafe(q.put_nowait, snapshot)

        unsubscribe = service.on_status_update(on_status)

        async def stream():
            try:
                yield _ndjson(service.status())
                while True:
                    yield _ndjson((await q.get()).to_dict())
            finally:
                unsubscribe()

        return StreamingResponse(stream(), media_type="application/x-ndjson", headers=_STREAM_HEADERS)

    @app.post("/stop", dependencies=[Depends(require_token)])
    async def stop() -> Dict[str, Any]:
        result = await asyncio.to_thread(service.stop)
        return result.to_dict()

    @app.post("/open", dependencies=[Depends(require_token)])
    async def open_link(req: OpenLinkRequest) -> Dict[str, Any]:
        try:
            opened = service.open_external_link(req.url)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        return {"opened": opened}

    return app
