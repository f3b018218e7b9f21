"""
Handbook API (thin cache-and-trigger wrapper around the snapshot file).

    GET  /api/handbook/meta      -> {version, generatedAt, count}
    GET  /api/handbook[?code=X]  -> full snapshot, or {version, generatedAt, item}
    POST /api/handbook/refresh   -> re-run the scraper, then meta

The snapshot is re-parsed only when the file's mtime changes. Concurrent
refresh requests share one scraper run.
"""

from __future__ import annotations

import asyncio
import logging
import subprocess
import sys
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from unitracker.config import ApiSettings
from unitracker.storage import SnapshotCache, find_item, snapshot_meta


log = logging.getLogger(__name__)

TOKEN_HEADER = "X-Handbook-Token"


class RefreshError(Exception):
    pass


def default_refresh_command(settings: ApiSettings) -> List[str]:
    return [sys.executable, "-m", "unitracker.scrape", "--output", str(settings.data_path)]


class Refresher:
    """
    Runs the scraper as a subprocess; callers arriving during a run wait for
    that run instead of starting another one.
    """

    def __init__(self, command: List[str]) -> None:
        self.command = command
        self._task: Optional[asyncio.Future[None]] = None

    async def _spawn(self) -> None:
        log.info("Refreshing snapshot: %s", " ".join(self.command))
        proc = await asyncio.to_thread(subprocess.run, self.command, check=False)
        if proc.returncode != 0:
            raise RefreshError(f"Scraper exited with code {proc.returncode}")

    def _clear(self, task: asyncio.Future[None]) -> None:
        self._task = None
        # retrieve the error even when every waiter has gone away
        if not task.cancelled() and task.exception() is not None:
            log.error("Refresh failed: %s", task.exception())

    async def run(self) -> None:
        if self._task is None:
            self._task = asyncio.ensure_future(self._spawn())
            self._task.add_done_callback(self._clear)
        # shield: a disconnecting client must not kill the scraper run
        await asyncio.shield(self._task)


def _error(status: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status, content={"error": message})


def create_app(settings: Optional[ApiSettings] = None) -> FastAPI:
    """
    Build the API application. Settings default to the environment.
    """
    settings = settings or ApiSettings.from_env()
    cache = SnapshotCache(settings.data_path)
    refresher = Refresher(settings.refresh_command or default_refresh_command(settings))

    app = FastAPI(title="UniTracker Handbook API")
    app.state.settings = settings
    app.state.cache = cache
    app.state.refresher = refresher

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", TOKEN_HEADER],
    )

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        if exc.status_code in (404, 405):
            return _error(404, "Not found")
        return _error(exc.status_code, str(exc.detail))

    @app.get("/api/handbook/meta")
    def meta() -> Any:
        try:
            payload = cache.get()
        except (OSError, ValueError):
            log.exception("API error")
            return _error(500, "Server error")
        return snapshot_meta(payload)

    @app.get("/api/handbook")
    def handbook(code: str = "") -> Any:
        try:
            payload = cache.get()
        except (OSError, ValueError):
            log.exception("API error")
            return _error(500, "Server error")

        if code.strip():
            out: Dict[str, Any] = {
                "version": payload.get("version"),
                "generatedAt": payload.get("generatedAt") or None,
                "item": find_item(payload, code),
            }
            return out
        return payload

    @app.post("/api/handbook/refresh")
    async def refresh(request: Request) -> Any:
        if settings.refresh_token:
            token = request.headers.get(TOKEN_HEADER)
            if not token or token != settings.refresh_token:
                return _error(401, "Unauthorized")

        try:
            await refresher.run()
            cache.invalidate()
            payload = cache.get()
        except (RefreshError, OSError, ValueError):
            log.exception("API error")
            return _error(500, "Server error")
        return snapshot_meta(payload)

    return app


def serve(settings: Optional[ApiSettings] = None, host: Optional[str] = None, port: Optional[int] = None) -> None:
    import uvicorn

    settings = settings or ApiSettings.from_env()
    log.info("Data file: %s", settings.data_path)
    uvicorn.run(create_app(settings), host=host or settings.host, port=port or settings.port)
