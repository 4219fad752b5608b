"""FastAPI application entry point."""

import asyncio
import json
import logging
import sys
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse

from checkcore.api.routes import api_router
from checkcore.core.config import settings
from checkcore.core.errors import CheckCoreError
from checkcore.db.base import Base
from checkcore.db.session import engine
from checkcore.models import *  # noqa: F401,F403  register tables
from checkcore.services.event_notifier import ALL_CHANNEL, ConnectionRegistry, WebSocketEventNotifier

# Configure logging - use JSON format in production, human-readable in dev
root_logger = logging.getLogger()
root_logger.setLevel(getattr(logging, settings.log_level))
root_logger.handlers.clear()

if settings.debug:
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s"))
else:
    class JSONFormatter(logging.Formatter):
        def format(self, record):
            return json.dumps({
                "ts": self.formatTime(record, self.datefmt),
                "level": record.levelname,
                "logger": record.name,
                "msg": record.getMessage(),
                "module": record.module,
                "line": record.lineno,
            })

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter())

root_logger.addHandler(handler)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    logger.info("Starting check core")

    # Create tables if they don't exist (for SQLite dev)
    if settings.database_url.startswith("sqlite"):
        Base.metadata.create_all(bind=engine)
        logger.info("Database tables created (SQLite mode)")

    registry = ConnectionRegistry(settings.ws_max_connections_per_channel)
    notifier = WebSocketEventNotifier(registry, asyncio.get_running_loop())
    app.state.registry = registry
    app.state.notifier = notifier

    yield

    notifier.bind_loop(None)
    logger.info(f"Shutting down check core: {registry.get_stats()}")


app = FastAPI(
    title="Check Core",
    description="Guest check transaction core: totals, tax snapshots, kitchen rounds",
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
)


@app.exception_handler(CheckCoreError)
async def check_core_error_handler(request: Request, exc: CheckCoreError):
    if exc.status_code >= 500:
        logger.error(f"{exc.kind} on {request.method} {request.url.path}: {exc.message}")
    else:
        logger.info(f"{exc.kind} on {request.method} {request.url.path}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


app.include_router(api_router, prefix=settings.api_v1_prefix)


@app.get("/health")
def health_check():
    return {"status": "ok"}


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    """Kitchen display subscriptions.

    Clients send {"type": "subscribe", "channel": "kds", "rvcId": ...};
    without an rvcId they receive every revenue center's updates.
    """
    registry: ConnectionRegistry = websocket.app.state.registry
    await websocket.accept()
    try:
        while True:
            raw = await websocket.receive_text()
            try:
                message = json.loads(raw)
            except json.JSONDecodeError:
                logger.debug("Ignoring malformed WebSocket message")
                continue
            if not isinstance(message, dict):
                continue
            if message.get("type") == "ping":
                await websocket.send_text(json.dumps({"type": "pong"}))
            elif message.get("type") == "subscribe" and message.get("channel") == "kds":
                channel = str(message.get("rvcId") or ALL_CHANNEL)
                if registry.subscribe(websocket, channel):
                    await websocket.send_text(json.dumps({"type": "subscribed", "channel": channel}))
                else:
                    await websocket.close(code=1013)
                    return
    except WebSocketDisconnect:
        pass
    finally:
        registry.disconnect(websocket)
