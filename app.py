# -----------------------------
# app.py
# -----------------------------
from __future__ import annotations
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional
import asyncio

import uvicorn
from fastapi import FastAPI, HTTPException, Request, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, JSONResponse
from fastapi.staticfiles import StaticFiles

from connections import ConnectionHub
from events import SERVER_SHUTDOWN, SHUTDOWN_MESSAGE
from lobby import Lobby
from logging_config import configure_logging, get_logger
from ratelimit import SlidingWindowLimiter
from settings import Settings, get_settings
from utils import short_id

logger = get_logger(__name__)

BASE_DIR = Path(__file__).resolve().parent
MAX_FRAME_BYTES = 64 * 1024
CLEANUP_INTERVAL = 60.0
SHUTDOWN_GRACE = 0.5
HTTP_RATELIMIT_MESSAGE = "Too many requests, please wait a moment."

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "SAMEORIGIN",
    "Referrer-Policy": "no-referrer",
    "X-DNS-Prefetch-Control": "off",
    "Cross-Origin-Opener-Policy": "same-origin",
    "Cross-Origin-Resource-Policy": "same-origin",
    "Strict-Transport-Security": "max-age=15552000; includeSubDomains",
    "Permissions-Policy": "geolocation=(), microphone=(), camera=()",
}


def _static_dir(settings: Settings) -> Path:
    path = Path(settings.static_dir)
    return path if path.is_absolute() else BASE_DIR / path


async def _cleanup_forever(app: FastAPI) -> None:
    while True:
        await asyncio.sleep(CLEANUP_INTERVAL)
        app.state.http_limiter.cleanup()
        app.state.lobby.relay.limiter.cleanup()


def announce_shutdown(app: FastAPI) -> int:
    """Queue server_shutdown for every connected participant, once per app. Returns how many were told."""
    if app.state.shutdown_announced:
        return 0
    app.state.shutdown_announced = True
    hub: ConnectionHub = app.state.hub
    hub.broadcast(SERVER_SHUTDOWN, {"message": SHUTDOWN_MESSAGE})
    return len(hub)


class ChatServer(uvicorn.Server):
    """
    uvicorn closes every websocket (1012) before lifespan shutdown runs,
    so the shutdown notice goes out from the exit signal instead, and the
    real exit is delayed by `grace` seconds to let the writers flush.
    """

    def __init__(self, config: uvicorn.Config, app: FastAPI, grace: float = SHUTDOWN_GRACE):
        super().__init__(config)
        self.chat_app = app
        self.grace = grace
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    async def startup(self, sockets=None) -> None:
        self._loop = asyncio.get_running_loop()
        await super().startup(sockets=sockets)

    def handle_exit(self, sig, frame) -> None:
        if self._loop is None:
            super().handle_exit(sig, frame)
            return
        self._loop.call_soon_threadsafe(self._begin_exit, sig, frame)

    def _begin_exit(self, sig, frame) -> None:
        # a second signal while the notice is flushing exits right away
        if self.should_exit or self.chat_app.state.shutdown_announced:
            super().handle_exit(sig, frame)
            return
        told = announce_shutdown(self.chat_app)
        logger.info("Exit requested, notifying participants", online=told, grace=self.grace)
        self._loop.call_later(self.grace, super().handle_exit, sig, frame)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings: Settings = app.state.settings
    hub: ConnectionHub = app.state.hub
    lobby: Lobby = app.state.lobby
    tasks = [
        asyncio.create_task(lobby.stats.run(hub.broadcast, settings.stats_interval, settings.stats_min_gap)),
        asyncio.create_task(_cleanup_forever(app)),
    ]
    logger.info("Chat server ready", origin=settings.allowed_origin, static=str(_static_dir(settings)))
    try:
        yield
    finally:
        logger.info("Shutting down", online=len(hub))
        if announce_shutdown(app):
            await asyncio.sleep(0.1)  # let writers flush what they can
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()
    hub = ConnectionHub(outbox_size=settings.outbox_size)
    lobby = Lobby.from_settings(settings, emit=hub.emit, is_connected=hub.is_connected)

    app = FastAPI(title="anon-chat", lifespan=lifespan)
    app.state.settings = settings
    app.state.hub = hub
    app.state.lobby = lobby
    app.state.http_limiter = SlidingWindowLimiter(settings.http_requests_per_minute, window=60.0)
    app.state.shutdown_announced = False

    @app.middleware("http")
    async def http_rate_limit(request: Request, call_next):
        limiter: SlidingWindowLimiter = request.app.state.http_limiter
        client = request.client.host if request.client else "unknown"
        if not limiter.allow(client):
            logger.info("HTTP rate limit hit", client=client, path=request.url.path)
            response = JSONResponse({"error": HTTP_RATELIMIT_MESSAGE}, status_code=429)
        else:
            response = await call_next(request)
        response.headers["RateLimit-Limit"] = str(limiter.max_hits)
        response.headers["RateLimit-Remaining"] = str(limiter.remaining(client))
        return response

    @app.middleware("http")
    async def security_headers(request: Request, call_next):
        response = await call_next(request)
        for name, value in SECURITY_HEADERS.items():
            response.headers.setdefault(name, value)
        return response

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.allow_any_origin else [settings.allowed_origin],
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    @app.get("/")
    def root():
        index = _static_dir(settings) / "index.html"
        if not index.is_file():
            raise HTTPException(status_code=404, detail="Not Found")
        with open(index, "r", encoding="utf-8") as f:
            return HTMLResponse(f.read())

    @app.get("/api/stats")
    def stats():
        return lobby.snapshot().model_dump()

    @app.get("/health")
    def health():
        return {"status": "ok", **lobby.snapshot().model_dump()}

    # -------------- WebSocket: chat --------------
    @app.websocket("/ws")
    async def ws_chat(ws: WebSocket):
        origin = ws.headers.get("origin")
        if not settings.allow_any_origin and origin != settings.allowed_origin:
            logger.info("Rejected websocket origin", origin=origin)
            await ws.close(code=1008)
            return

        await ws.accept()
        pid = lobby.connect()
        outbox = hub.attach(pid)
        writer = asyncio.create_task(hub.pump(pid, ws, outbox))
        logger.info("Connected", participant=short_id(pid), online=len(hub))
        reason = "closed"
        try:
            while True:
                message = await ws.receive()
                if message["type"] == "websocket.disconnect":
                    reason = f"code {message.get('code')}"
                    break
                raw = message.get("text")
                if raw is None:
                    raw = message.get("bytes")
                if raw is None or len(raw) > MAX_FRAME_BYTES:
                    continue
                lobby.handle_frame(pid, raw)
        except Exception as e:  # transport failure counts as a disconnect
            reason = "error"
            logger.warning("Websocket error", participant=short_id(pid), error=type(e).__name__, detail=str(e))
        finally:
            hub.detach(pid)
            lobby.disconnect(pid)
            writer.cancel()
            logger.info("Disconnected", participant=short_id(pid), reason=reason, online=len(hub))

    static_dir = _static_dir(settings)
    if static_dir.is_dir():
        app.mount("/static", StaticFiles(directory=str(static_dir)), name="static")

    return app


def main() -> None:
    settings = get_settings()
    configure_logging(settings.log_level, settings.log_json)
    chat_app = create_app(settings)
    config = uvicorn.Config(
        chat_app,
        host=settings.host,
        port=settings.port,
        ws_ping_interval=settings.ping_interval,
        ws_ping_timeout=settings.ping_timeout,
    )
    ChatServer(config, chat_app).run()


app = create_app()

if __name__ == "__main__":
    main()
