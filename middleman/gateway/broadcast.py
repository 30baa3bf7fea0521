"""WebSocket push channel for passive observers (e.g. the browser S88 view).

Every accepted feedback change is pushed as one JSON object::

    {"event": {"objectId": 100, "port": 1,
               "state": {"hex": "022C", "binary": "0000001000101100"}},
     "info": {"left": 2, "middle": 0, "right": 0}}
"""
from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Callable, Dict, List, Optional, Set

import websockets
from websockets.exceptions import ConnectionClosed

from ..config import FeedbackBusConfig
from ..core.feedback import FeedbackModuleState

logger = logging.getLogger("middleman.gateway.broadcast")

Payload = Dict[str, Any]
PayloadProvider = Callable[[], List[Payload]]


def build_payload(state: FeedbackModuleState, bus: FeedbackBusConfig) -> Payload:
    return {
        "event": {
            "objectId": state.module_object_id,
            "port": state.hardware_device_id,
            "state": {
                "hex": state.hex_state,
                "binary": state.binary_state,
            },
        },
        "info": {
            "left": bus.left,
            "middle": bus.middle,
            "right": bus.right,
        },
    }


def _request_path(ws: Any) -> Optional[str]:
    request = getattr(ws, "request", None)
    if request is not None:
        return getattr(request, "path", None)
    return getattr(ws, "path", None)


class BroadcastSink:
    """Fans feedback payloads out to every connected WebSocket observer.

    Payloads are queued and sent by a single publisher task so observers
    see changes in the order they were accepted.
    """

    def __init__(self, host: str = "0.0.0.0", port: int = 15472, path: str = "/s88/"):
        self.host = host
        self.port = port
        self.path = path
        self.clients: Set[Any] = set()
        self._server = None
        self._queue: asyncio.Queue[Payload] = asyncio.Queue()
        self._publisher: Optional[asyncio.Task] = None
        self._snapshot_provider: Optional[PayloadProvider] = None
        self.published = 0

    def set_snapshot_provider(self, provider: PayloadProvider) -> None:
        self._snapshot_provider = provider

    async def start(self) -> None:
        self._server = await websockets.serve(self._handler, self.host, self.port)
        self._publisher = asyncio.create_task(self._publish_loop())
        logger.info("Broadcast listening on ws://%s:%d%s", self.host, self.port, self.path)

    async def stop(self) -> None:
        if self._publisher:
            self._publisher.cancel()
            try:
                await self._publisher
            except asyncio.CancelledError:
                pass
            self._publisher = None
        if self._server is not None:
            self._server.close()
            await self._server.wait_closed()
            self._server = None
        self.clients.clear()
        logger.info("Broadcast stopped")

    def publish_nowait(self, payload: Payload) -> None:
        self._queue.put_nowait(payload)

    async def publish(self, payload: Payload) -> int:
        """Send one payload to all observers; returns the number reached."""
        if not self.clients:
            return 0
        message = json.dumps(payload)
        dead = []
        sent = 0
        for ws in list(self.clients):
            try:
                await ws.send(message)
                sent += 1
            except ConnectionClosed:
                dead.append(ws)
        for ws in dead:
            self.clients.discard(ws)
        self.published += 1
        return sent

    async def _publish_loop(self) -> None:
        while True:
            payload = await self._queue.get()
            try:
                await self.publish(payload)
            except Exception as e:
                logger.warning("Broadcast failed: %s", e)

    async def _handler(self, ws: Any) -> None:
        path = _request_path(ws)
        if self.path and path and path.rstrip("/") != self.path.rstrip("/"):
            logger.debug("Rejecting observer on unknown path %s", path)
            await ws.close(code=1008, reason="unknown path")
            return

        self.clients.add(ws)
        logger.info("Observer connected: %s", getattr(ws, "remote_address", None))
        try:
            if self._snapshot_provider:
                for payload in self._snapshot_provider():
                    await ws.send(json.dumps(payload))
            async for raw in ws:
                logger.debug("Observer message ignored: %s", raw)
        except ConnectionClosed:
            pass
        finally:
            self.clients.discard(ws)
            logger.info("Observer disconnected: %s", getattr(ws, "remote_address", None))

    @property
    def bound_port(self) -> Optional[int]:
        if self._server is None or not self._server.sockets:
            return None
        return list(self._server.sockets)[0].getsockname()[1]

    @property
    def client_count(self) -> int:
        return len(self.clients)
