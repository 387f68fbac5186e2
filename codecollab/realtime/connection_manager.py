import asyncio
import json
import logging
from typing import Dict, Iterable, List, Optional, Any
from datetime import datetime, timedelta
from collections import defaultdict
from fastapi import WebSocket
from starlette.websockets import WebSocketState
from codecollab.config import settings
from codecollab.realtime.coordinator import Delivery

logger = logging.getLogger(__name__)

def _is_open(websocket: WebSocket) -> bool:
    return (websocket.client_state == WebSocketState.CONNECTED
            and websocket.application_state == WebSocketState.CONNECTED)

class ConnectionManager:
    """Manages WebSocket connections and their outbound queues"""

    def __init__(self, outbox_size: Optional[int] = None):
        # Active connections: {conn_id: websocket}
        self.active_connections: Dict[str, WebSocket] = {}

        # Connection metadata: {conn_id: metadata}
        self.connection_metadata: Dict[str, Dict[str, Any]] = {}

        # Outbound frames per connection, drained by one sender task each
        self.outbox_size = outbox_size or settings.OUTBOX_MAX_SIZE
        self.outboxes: Dict[str, asyncio.Queue] = {}
        self.sender_tasks: Dict[str, asyncio.Task] = {}

        # Heartbeat tracking
        self.heartbeats: Dict[str, datetime] = {}

        # Rate limiting per connection
        self.rate_limits: Dict[str, Dict[str, Any]] = defaultdict(lambda: {
            'messages': 0,
            'last_reset': datetime.utcnow(),
            'blocked_until': None
        })

    async def connect(self, websocket: WebSocket, conn_id: str, metadata: Dict[str, Any] = None):
        """Track an accepted WebSocket and start its sender task"""
        metadata = metadata or {}
        self.active_connections[conn_id] = websocket
        self.connection_metadata[conn_id] = {
            'connected_at': datetime.utcnow(),
            'last_activity': datetime.utcnow(),
            'ip_address': metadata.get('ip_address'),
            'user_agent': metadata.get('user_agent'),
            **metadata
        }
        self.heartbeats[conn_id] = datetime.utcnow()

        queue: asyncio.Queue = asyncio.Queue(maxsize=self.outbox_size)
        self.outboxes[conn_id] = queue
        self.sender_tasks[conn_id] = asyncio.create_task(self._sender(conn_id, websocket, queue))

        logger.info(f"Connection {conn_id} established")

    async def disconnect(self, conn_id: str, reason: str = "Disconnected"):
        """Stop delivering to a connection and close its socket if still open"""
        websocket = self.active_connections.pop(conn_id, None)
        if websocket is None:
            return

        self.connection_metadata.pop(conn_id, None)
        self.heartbeats.pop(conn_id, None)
        self.rate_limits.pop(conn_id, None)
        self.outboxes.pop(conn_id, None)

        task = self.sender_tasks.pop(conn_id, None)
        if task and task is not asyncio.current_task():
            task.cancel()

        if _is_open(websocket):
            try:
                await websocket.close(code=1000, reason=reason)
            except RuntimeError:
                logger.debug(f"Socket for {conn_id} was already closed")

        logger.info(f"Connection {conn_id} disconnected: {reason}")

    def send(self, conn_id: str, frame: Dict[str, Any]) -> bool:
        """Queue one frame for a connection without waiting on the socket"""
        queue = self.outboxes.get(conn_id)
        if queue is None:
            return False
        try:
            queue.put_nowait(frame)
        except asyncio.QueueFull:
            logger.warning(f"Outbox full for {conn_id}, dropping {frame.get('type')}")
            return False
        return True

    def dispatch(self, deliveries: Iterable[Delivery]) -> int:
        """Fan each delivery out to its targets. Returns number of frames queued."""
        queued = 0
        for delivery in deliveries:
            for conn_id in delivery.targets:
                if self.send(conn_id, delivery.frame):
                    queued += 1
        return queued

    async def _sender(self, conn_id: str, websocket: WebSocket, queue: asyncio.Queue):
        try:
            while True:
                frame = await queue.get()
                await websocket.send_text(json.dumps(frame))
        except asyncio.CancelledError:
            raise
        except Exception as e:
            # the receive loop notices the dead socket and runs cleanup
            logger.error(f"Error sending to {conn_id}: {e}")
            self.outboxes.pop(conn_id, None)

    def is_connected(self, conn_id: str) -> bool:
        return conn_id in self.active_connections

    def get_online_connections(self) -> List[str]:
        return list(self.active_connections)

    async def update_activity(self, conn_id: str):
        """Update last activity timestamp for a connection"""
        if conn_id in self.connection_metadata:
            self.connection_metadata[conn_id]['last_activity'] = datetime.utcnow()
            self.heartbeats[conn_id] = datetime.utcnow()

    async def check_heartbeats(self) -> List[str]:
        """Close connections that have been silent too long. Returns their ids."""
        now = datetime.utcnow()
        timeout = timedelta(seconds=settings.WS_CONNECTION_TIMEOUT)

        stale_connections = [
            conn_id for conn_id, last_heartbeat in self.heartbeats.items()
            if now - last_heartbeat > timeout
        ]

        for conn_id in stale_connections:
            websocket = self.active_connections.get(conn_id)
            if websocket is None or not _is_open(websocket):
                continue
            logger.info(f"Closing stale connection {conn_id}")
            self.heartbeats.pop(conn_id, None)
            try:
                await websocket.close(code=1000, reason="Connection timeout")
            except RuntimeError:
                logger.debug(f"Socket for {conn_id} was already closed")

        return stale_connections

    async def rate_limit_check(self, conn_id: str) -> bool:
        """Check if connection is rate limited"""
        now = datetime.utcnow()
        rate_limit = self.rate_limits[conn_id]

        # Reset counter if minute has passed
        if now - rate_limit['last_reset'] > timedelta(minutes=1):
            rate_limit['messages'] = 0
            rate_limit['last_reset'] = now
            rate_limit['blocked_until'] = None

        # Check if currently blocked
        if rate_limit['blocked_until'] and now < rate_limit['blocked_until']:
            return False

        # Check rate limit
        if rate_limit['messages'] >= settings.RATE_LIMIT_PER_MINUTE:
            rate_limit['blocked_until'] = now + timedelta(minutes=1)
            return False

        # Increment counter
        rate_limit['messages'] += 1
        return True

# Global connection manager instance
connection_manager = ConnectionManager()
