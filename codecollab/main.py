from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager, suppress
from pydantic import ValidationError
import asyncio
import json
import logging
import uuid

from codecollab.config import settings
from codecollab.protocol.messages import parse_request, resp_error
from codecollab.protocol.types import (
    ERR_BAD_JSON, ERR_BAD_PAYLOAD, ERR_INTERNAL, ERR_RATE_LIMITED, ERR_UNKNOWN_TYPE,
)
from codecollab.realtime.connection_manager import connection_manager
from codecollab.realtime.coordinator import coordinator
from codecollab.routes import compile as compile_routes

# Configure logging
logging.basicConfig(level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))
logger = logging.getLogger(__name__)


async def heartbeat_loop():
    """Periodically close connections that stopped talking"""
    while True:
        await asyncio.sleep(settings.WS_HEARTBEAT_INTERVAL)
        try:
            stale = await connection_manager.check_heartbeats()
            if stale:
                logger.info(f"Closed {len(stale)} stale connection(s)")
        except Exception as e:
            logger.error(f"Heartbeat check failed: {e}")

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager"""
    # Startup
    logger.info("Starting up session coordinator...")
    heartbeat_task = asyncio.create_task(heartbeat_loop())

    yield

    # Shutdown
    logger.info("Shutting down session coordinator...")
    heartbeat_task.cancel()
    with suppress(asyncio.CancelledError):
        await heartbeat_task

# Create FastAPI app
app = FastAPI(
    title="CodeCollab Session API",
    description="Shared coding rooms: rosters, per-user code buffers, chat and voice signaling",
    version="1.0.0",
    lifespan=lifespan
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(compile_routes.router, tags=["Execution"])


async def process_frame(conn_id: str, raw: str):
    """Parse one inbound frame and hand it to the coordinator"""
    try:
        obj = json.loads(raw)
    except json.JSONDecodeError:
        connection_manager.send(conn_id, resp_error("", ERR_BAD_JSON, "invalid JSON"))
        return
    if not isinstance(obj, dict):
        connection_manager.send(conn_id, resp_error("", ERR_BAD_JSON, "frame must be an object"))
        return

    t = obj.get("type"); req_id = str(obj.get("req_id", "")); payload = obj.get("payload", {}) or {}

    if not await connection_manager.rate_limit_check(conn_id):
        connection_manager.send(conn_id, resp_error(req_id, ERR_RATE_LIMITED, "Rate limit exceeded. Please slow down."))
        return

    try:
        request = parse_request(t, payload)
    except KeyError:
        connection_manager.send(conn_id, resp_error(req_id, ERR_UNKNOWN_TYPE, str(t)))
        return
    except ValidationError as e:
        connection_manager.send(conn_id, resp_error(req_id, ERR_BAD_PAYLOAD, str(e.errors()[0]["msg"])))
        return

    try:
        deliveries = coordinator.handle(conn_id, t, request, req_id)
    except Exception as e:
        logger.exception(f"Error handling {t} for {conn_id}: {e}")
        connection_manager.send(conn_id, resp_error(req_id, ERR_INTERNAL, "server error"))
        return
    connection_manager.dispatch(deliveries)


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    """WebSocket endpoint for room traffic"""
    await websocket.accept()
    conn_id = uuid.uuid4().hex

    metadata = {
        'ip_address': websocket.client.host if websocket.client else None,
        'user_agent': websocket.headers.get('user-agent'),
    }
    await connection_manager.connect(websocket, conn_id, metadata)
    connection_manager.dispatch(coordinator.connect(conn_id))

    try:
        # Main message loop
        while True:
            try:
                data = await websocket.receive_text()
            except WebSocketDisconnect:
                logger.info(f"WebSocket disconnected for connection {conn_id}")
                break

            await connection_manager.update_activity(conn_id)
            await process_frame(conn_id, data)

    except Exception as e:
        logger.error(f"WebSocket connection error for {conn_id}: {e}")
    finally:
        # Clean up connection
        connection_manager.dispatch(coordinator.disconnect(conn_id))
        await connection_manager.disconnect(conn_id, "Connection closed")

@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "message": "CodeCollab Session API",
        "version": "1.0.0",
        "status": "running"
    }

@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "active_connections": len(connection_manager.get_online_connections()),
        "rooms": len(coordinator.rooms)
    }

@app.get("/stats")
async def stats():
    """Usage counters"""
    return coordinator.stats()

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "codecollab.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.debug,
        log_level=settings.LOG_LEVEL.lower()
    )
