from fastapi import WebSocket, WebSocketDisconnect
from typing import List, Optional
import json
import time
import logging

import config
from host import Requester
from router import RequestRouter

logger = logging.getLogger(__name__)


class SocketManager:
    """Runs one receive loop per client connection.

    Messages from a connection are handled strictly one after another, so a
    client's edits are always applied before the snapshot it asks for next.
    Connections share nothing but the router, which keeps no per-player state.
    """

    def __init__(self, router: RequestRouter):
        self.router = router
        self.allowed_origins: List[str] = []
        self.active_connections = 0

    async def connect(self, websocket: WebSocket, post_id: Optional[str], user_id: Optional[str],
                      username: Optional[str] = None, community: str = config.DEFAULT_COMMUNITY):
        # Validate WebSocket origin
        origin = websocket.headers.get("origin", "")
        if self.allowed_origins and origin not in self.allowed_origins:
            logger.warning("Rejected WebSocket from unauthorized origin: %s", origin)
            await websocket.close(code=1008)
            return

        await websocket.accept()
        requester = Requester(post_id=post_id or None, user_id=user_id or None,
                              username=username or None, community=community)
        self.active_connections += 1
        logger.info("Client %s connected to post %s", requester.user_id, requester.post_id)

        timestamps: List[float] = []
        try:
            while True:
                data = await websocket.receive_text()

                # Enforce message size limit
                if len(data) > config.MAX_WS_MESSAGE_SIZE:
                    await websocket.send_json({"type": "ERROR", "payload": {"message": "Message too large", "retryable": False}})
                    continue

                # Per-client rate limiting
                now = time.time()
                timestamps[:] = [t for t in timestamps if now - t < 1.0]
                if len(timestamps) >= config.WS_RATE_LIMIT_PER_SEC:
                    await websocket.send_json({"type": "ERROR", "payload": {"message": "Too many messages", "retryable": True}})
                    continue
                timestamps.append(now)

                try:
                    message = json.loads(data)
                except json.JSONDecodeError:
                    logger.warning("Malformed JSON from client %s: %s", requester.user_id, data[:100])
                    await websocket.send_json({"type": "ERROR", "payload": {"message": "Invalid message format", "retryable": False}})
                    continue
                if not isinstance(message, dict):
                    await websocket.send_json({"type": "ERROR", "payload": {"message": "Invalid message format", "retryable": False}})
                    continue

                response = await self.router.handle(message, requester)
                if response is not None:
                    await websocket.send_json(response)
        except WebSocketDisconnect:
            logger.info("Client %s disconnected from post %s", requester.user_id, requester.post_id)
        except Exception:
            logger.exception("WebSocket error for client %s on post %s", requester.user_id, requester.post_id)
        finally:
            self.active_connections -= 1
