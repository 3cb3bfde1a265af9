"""FastAPI application entry point."""

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from sqlalchemy import text
from starlette.middleware.base import BaseHTTPMiddleware

from frontdesk.api.routes import api_router
from frontdesk.core.config import settings
from frontdesk.core.metrics import MetricsMiddleware, metrics
from frontdesk.core.rate_limit import limiter
from frontdesk.db.base import Base
from frontdesk.db.session import SessionLocal, engine
from frontdesk.services.allocation_engine import AllocationEngine
from frontdesk.services.change_notifier import ChangeEvent, notifier
from frontdesk.services.errors import AllocationError

APP_VERSION = "1.0.0"

# Configure logging - use JSON format in production, human-readable in dev
root_logger = logging.getLogger()
root_logger.setLevel(getattr(logging, settings.log_level))
root_logger.handlers.clear()

if settings.debug:
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s"))
else:
    import json as _json
    import sys

    class JSONFormatter(logging.Formatter):
        def format(self, record):
            return _json.dumps({
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
request_logger = logging.getLogger("requests")


class _Subscriber:
    """One WebSocket connection waiting for change events."""

    def __init__(self, websocket: WebSocket, loop: asyncio.AbstractEventLoop):
        self.websocket = websocket
        self.loop = loop
        self.queue: "asyncio.Queue[Dict[str, Any]]" = asyncio.Queue()
        self.connected_at = datetime.now(timezone.utc)


class ConnectionManager:
    """Fans committed change events out to the WebSocket clients of each restaurant.

    Events are published from whichever thread committed the write; each
    connection's queue is fed on its own event loop.
    """

    MAX_CONNECTIONS_PER_CHANNEL = settings.ws_max_connections_per_restaurant

    def __init__(self):
        self.active_connections: Dict[str, List[_Subscriber]] = {}

    @staticmethod
    def channel_for(restaurant_id: int) -> str:
        return f"restaurant:{restaurant_id}"

    async def connect(self, websocket: WebSocket, channel: str) -> Optional[_Subscriber]:
        """Accept a connection; returns None when the channel is full."""
        if len(self.active_connections.get(channel, [])) >= self.MAX_CONNECTIONS_PER_CHANNEL:
            logger.warning(f"WebSocket connection rejected: channel '{channel}' at capacity")
            await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
            return None

        await websocket.accept()
        subscriber = _Subscriber(websocket, asyncio.get_running_loop())
        self.active_connections.setdefault(channel, []).append(subscriber)
        metrics.ws_active_connections += 1
        logger.debug(f"WebSocket connected to channel '{channel}'")
        return subscriber

    def disconnect(self, subscriber: _Subscriber, channel: str):
        connections = self.active_connections.get(channel, [])
        if subscriber in connections:
            connections.remove(subscriber)
            metrics.ws_active_connections -= 1
        if not connections:
            self.active_connections.pop(channel, None)
        logger.debug(f"WebSocket disconnected from channel '{channel}'")

    def dispatch(self, change: ChangeEvent) -> None:
        """Notifier callback; safe to call from any thread."""
        if change.restaurant_id is None:
            return
        payload = {"type": "change", **change.to_dict()}
        for subscriber in list(self.active_connections.get(self.channel_for(change.restaurant_id), [])):
            if subscriber.loop.is_closed():
                continue
            subscriber.loop.call_soon_threadsafe(subscriber.queue.put_nowait, payload)

    def get_connection_count(self, channel: Optional[str] = None) -> int:
        if channel:
            return len(self.active_connections.get(channel, []))
        return sum(len(conns) for conns in self.active_connections.values())


# Global connection manager instance
ws_manager = ConnectionManager()
notifier.subscribe(ws_manager.dispatch)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Middleware for logging all HTTP requests and responses."""

    async def dispatch(self, request: Request, call_next):
        # Skip logging for health checks
        if request.url.path in ["/health", "/health/ready", "/", "/docs", "/openapi.json"]:
            return await call_next(request)

        start_time = time.time()
        client_ip = request.client.host if request.client else "unknown"
        request_logger.info(f"Request: {request.method} {request.url.path} - Client: {client_ip}")

        try:
            response = await call_next(request)
            process_time = time.time() - start_time
            log_level = logging.WARNING if response.status_code >= 400 else logging.INFO
            request_logger.log(
                log_level,
                f"Response: {request.method} {request.url.path} - "
                f"Status: {response.status_code} - Time: {process_time:.3f}s - Client: {client_ip}"
            )
            return response
        except Exception as e:
            process_time = time.time() - start_time
            request_logger.error(
                f"Error: {request.method} {request.url.path} - "
                f"Exception: {str(e)} - Time: {process_time:.3f}s - Client: {client_ip}"
            )
            raise


def run_waitlist_expiry() -> int:
    """Expire stale waiting-list entries using a fresh session."""
    db = SessionLocal()
    try:
        return AllocationEngine(db).expire_stale_entries()
    finally:
        db.close()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    logger.info("Starting Frontdesk allocation service")

    # Create tables if they don't exist (for SQLite dev)
    # In production with PostgreSQL, use Alembic migrations
    if settings.database_url.startswith("sqlite"):
        Base.metadata.create_all(bind=engine)
        logger.info("Database tables created (SQLite mode)")

    async def _periodic_waitlist_expiry():
        """Expire waiting entries whose slot has passed."""
        while True:
            try:
                await asyncio.sleep(settings.waitlist_expiry_interval_seconds)
                expired = await asyncio.to_thread(run_waitlist_expiry)
                if expired:
                    logger.info(f"Periodic waitlist expiry: {expired} entries expired")
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.warning(f"Periodic waitlist expiry error: {e}")

    expiry_task = None
    if settings.waitlist_expiry_enabled:
        expiry_task = asyncio.create_task(_periodic_waitlist_expiry())
        logger.info(
            "Background waitlist expiry started (runs every %s seconds)",
            settings.waitlist_expiry_interval_seconds,
        )

    yield

    if expiry_task is not None:
        expiry_task.cancel()
        try:
            await expiry_task
        except asyncio.CancelledError:
            pass

    logger.info("Shutting down Frontdesk allocation service")


app = FastAPI(
    title="Frontdesk",
    description="Table, booking and waiting-list allocation service",
    version=APP_VERSION,
    lifespan=lifespan,
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
)

# Rate limiting setup
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.exception_handler(AllocationError)
async def allocation_error_handler(request: Request, exc: AllocationError):
    """Map allocation errors to their HTTP status with a machine-readable code."""
    if exc.status_code >= 500:
        logger.error(f"{exc.code} on {request.method} {request.url.path}: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "error": exc.code},
    )


# Metrics middleware (Prometheus-compatible)
app.add_middleware(MetricsMiddleware)

# Request logging middleware
app.add_middleware(RequestLoggingMiddleware)

# CORS middleware - added last so it runs first (Starlette LIFO order)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "Accept", "Origin", "X-Requested-With"],
    max_age=600,
)

# Include API routes
app.include_router(api_router, prefix=settings.api_v1_prefix)


@app.get("/health")
def health_check():
    """Basic liveness check endpoint."""
    return {"status": "healthy", "version": APP_VERSION}


@app.get("/health/ready")
def readiness_check():
    """Readiness check with database and WebSocket manager checks."""
    checks = {
        "database": "unknown",
        "websocket_manager": "unknown",
    }

    db = None
    try:
        db = SessionLocal()
        db.execute(text("SELECT 1"))
        checks["database"] = "healthy"
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        checks["database"] = "unhealthy"
    finally:
        if db:
            db.close()

    checks["websocket_manager"] = f"healthy ({ws_manager.get_connection_count()} connections)"

    all_healthy = all(c.startswith("healthy") for c in checks.values())
    return {
        "status": "ready" if all_healthy else "degraded",
        "version": APP_VERSION,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "checks": checks,
    }


@app.get("/")
def root():
    """Root endpoint."""
    return {
        "message": "Frontdesk allocation API",
        "docs": "/docs",
        "health": "/health",
    }


if settings.metrics_path:
    @app.get(settings.metrics_path, include_in_schema=False)
    def prometheus_metrics():
        """Prometheus-compatible metrics endpoint."""
        return PlainTextResponse(metrics.get_prometheus_metrics(), media_type="text/plain")


async def _send_changes(subscriber: _Subscriber):
    while True:
        payload = await subscriber.queue.get()
        await subscriber.websocket.send_json(payload)


async def _stop_sender(sender: "asyncio.Task") -> None:
    """Cancel the sender task and collect its outcome."""
    sender.cancel()
    results = await asyncio.gather(sender, return_exceptions=True)
    for result in results:
        if isinstance(result, Exception):
            logger.debug(f"WebSocket sender stopped after send failure: {result}")


@app.websocket("/ws/restaurants/{restaurant_id}")
async def websocket_restaurant_changes(websocket: WebSocket, restaurant_id: int):
    """Change feed for one restaurant.

    Every committed change to its tables, bookings or waiting list is pushed
    as a {"type": "change", ...} message; clients resync on receipt.  A text
    "ping" is answered with "pong".
    """
    channel = ws_manager.channel_for(restaurant_id)
    subscriber = await ws_manager.connect(websocket, channel)
    if subscriber is None:
        return

    sender = asyncio.create_task(_send_changes(subscriber))
    try:
        while True:
            data = await websocket.receive_text()
            if data == "ping":
                await websocket.send_text("pong")
    except WebSocketDisconnect:
        pass
    except Exception as e:
        logger.error(f"WebSocket error in {channel}: {e}", exc_info=True)
    finally:
        await _stop_sender(sender)
        ws_manager.disconnect(subscriber, channel)
