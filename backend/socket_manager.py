from fastapi import WebSocket, WebSocketDisconnect
from typing import Dict, List, Optional
import json
import time
import asyncio
import logging

import config
from errors import InvalidMessage, RateLimited
from gateway import ConnectionGateway

logger = logging.getLogger(__name__)


class Connection:
    """One WebSocket plus its outbound queue.

    ``send`` only enqueues; a writer task owned by the connection delivers
    messages in order, so game handlers never wait on the network.
    """

    def __init__(self, client_id: str, websocket: WebSocket):
        self.client_id = client_id
        self.websocket = websocket
        self.outbox: asyncio.Queue = asyncio.Queue()
        self.msg_timestamps: List[float] = []
        self.closed = False

    def send(self, message: dict):
        if self.closed:
            return
        self.outbox.put_nowait(message)

    async def pump(self):
        try:
            while True:
                message = await self.outbox.get()
                await self.websocket.send_json(message)
        except asyncio.CancelledError:
            pass
        except Exception:
            self.closed = True
            logger.info("Stopped sending to %s (socket closed)", self.client_id)

    def is_rate_limited(self) -> bool:
        now = time.time()
        self.msg_timestamps[:] = [t for t in self.msg_timestamps if now - t < 1.0]
        if len(self.msg_timestamps) >= config.WS_RATE_LIMIT_PER_SEC:
            return True
        self.msg_timestamps.append(now)
        return False


class SocketManager:
    def __init__(self):
        self.gateway: Optional[ConnectionGateway] = None
        self.connections: Dict[str, Connection] = {}
        self.allowed_origins: List[str] = []

    def get_gateway(self) -> ConnectionGateway:
        if self.gateway is None:
            self.gateway = ConnectionGateway()
        return self.gateway

    def reset(self, **kwargs) -> ConnectionGateway:
        """Replace the session with a fresh one (used at startup and by tests)."""
        if self.gateway:
            self.gateway.controller.cancel_timers()
        self.gateway = ConnectionGateway(**kwargs)
        return self.gateway

    async def connect(self, websocket: WebSocket, client_id: str):
        # Validate WebSocket origin
        origin = websocket.headers.get("origin", "")
        if self.allowed_origins and origin and origin not in self.allowed_origins:
            logger.warning("Rejected WebSocket from unauthorized origin: %s", origin)
            await websocket.close(code=1008)
            return

        await websocket.accept()
        if client_id in self.connections:
            await websocket.send_json({"type": "ACTION_REJECTED", "reason": "DUPLICATE_CONNECTION",
                                       "message": "Connection id already in use"})
            await websocket.close(code=1008)
            return

        gateway = self.get_gateway()
        connection = Connection(client_id, websocket)
        self.connections[client_id] = connection
        gateway.register(client_id, connection)
        writer = asyncio.create_task(connection.pump())
        logger.info("User connected: %s", client_id)
        connection.send({"type": "CONNECTED", "client_id": client_id,
                         "phase": gateway.session.phase.value})

        try:
            while True:
                data = await websocket.receive_text()

                # Enforce message size limit
                if len(data) > config.MAX_WS_MESSAGE_SIZE:
                    gateway.reject(client_id, InvalidMessage("Message too large"))
                    continue

                if connection.is_rate_limited():
                    gateway.reject(client_id, RateLimited())
                    continue

                try:
                    message = json.loads(data)
                except json.JSONDecodeError:
                    logger.warning("Malformed JSON from client %s: %s", client_id, data[:100])
                    gateway.reject(client_id, InvalidMessage())
                    continue
                if not isinstance(message, dict):
                    gateway.reject(client_id, InvalidMessage())
                    continue

                gateway.handle_message(client_id, message)
        except WebSocketDisconnect:
            logger.info("Client %s disconnected", client_id)
        except Exception:
            logger.exception("WebSocket error for client %s", client_id)
        finally:
            if self.connections.get(client_id) is connection:
                del self.connections[client_id]
            gateway.disconnect(client_id)
            writer.cancel()


socket_manager = SocketManager()
