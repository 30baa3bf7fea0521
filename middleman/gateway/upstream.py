"""Upstream listener - accepts connections from layout controllers (e.g. Rocrail).

Every accepted socket becomes a :class:`ClientSession` with its own read
loop, a single writer draining a FIFO send queue, and a periodic task that
re-sends the full feedback snapshot while the session is alive.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Dict, List, Optional

from ..protocol.framing import LINE_TERMINATOR

logger = logging.getLogger("middleman.gateway.upstream")

# Frames queued for one controller before it is considered stalled.
MAX_PENDING_FRAMES = 1024

# Callback type for handling received frames
FrameHandler = Callable[[str, "ClientSession"], Awaitable[None]]
SnapshotProvider = Callable[[], List[str]]
SessionCallback = Callable[["ClientSession", Optional[BaseException]], None]


class ClientSession:
    """Represents a connected controller."""

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        session_id: int,
        max_pending: int = MAX_PENDING_FRAMES,
    ):
        self.reader = reader
        self.writer = writer
        self.session_id = session_id
        self.connected = True
        self.refresh_task: Optional[asyncio.Task] = None
        self._addr = writer.get_extra_info("peername")
        self._queue: asyncio.Queue[Optional[str]] = asyncio.Queue(maxsize=max_pending)
        self._writer_task: Optional[asyncio.Task] = None

    @property
    def address(self) -> str:
        if self._addr:
            return f"{self._addr[0]}:{self._addr[1]}"
        return "unknown"

    def start(self) -> None:
        if self._writer_task is None:
            self._writer_task = asyncio.create_task(self._writer_loop())

    def send(self, message: str) -> bool:
        """Queue a message for delivery; False once the session is gone."""
        if not self.connected or not message:
            return False
        if not message.endswith(LINE_TERMINATOR):
            message += LINE_TERMINATOR
        try:
            self._queue.put_nowait(message)
        except asyncio.QueueFull:
            logger.warning(
                "Client %s stopped reading (%d frames pending), dropping session",
                self.address,
                self.pending,
            )
            self.abort()
            return False
        return True

    def abort(self) -> None:
        """Drop the connection without flushing; the read loop then ends."""
        self.connected = False
        transport = self.writer.transport
        if transport is not None and not transport.is_closing():
            transport.abort()

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    async def _writer_loop(self) -> None:
        while True:
            message = await self._queue.get()
            try:
                if message is None:
                    return
                self.writer.write(message.encode("ascii", errors="replace"))
                await self.writer.drain()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning("Failed to send to client %s: %s", self.address, e)
                self.connected = False
                return
            finally:
                self._queue.task_done()

    async def cancel_refresh(self) -> None:
        task, self.refresh_task = self.refresh_task, None
        if task and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def close(self, flush_timeout: float = 0.0) -> None:
        """Stop the session; optionally give queued frames time to drain."""
        await self.cancel_refresh()

        if self._writer_task and not self._writer_task.done():
            if flush_timeout > 0 and self.connected and not self._queue.full():
                self._queue.put_nowait(None)
                try:
                    await asyncio.wait_for(asyncio.shield(self._writer_task), timeout=flush_timeout)
                except asyncio.TimeoutError:
                    logger.debug("Dropping %d unsent frame(s) for %s", self.pending, self.address)
            self._writer_task.cancel()
            try:
                await self._writer_task
            except asyncio.CancelledError:
                pass

        self.connected = False
        try:
            self.writer.close()
            await self.writer.wait_closed()
        except Exception:
            pass


class ClientListener:
    """TCP server accepting any number of controller connections."""

    def __init__(
        self,
        host: str = "0.0.0.0",
        port: int = 15471,
        refresh_interval: float = 2.5,
        max_pending: int = MAX_PENDING_FRAMES,
    ):
        self.host = host
        self.port = port
        self.refresh_interval = refresh_interval
        self.max_pending = max_pending

        self._server: Optional[asyncio.Server] = None
        self._sessions: Dict[int, ClientSession] = {}
        self._frame_handler: Optional[FrameHandler] = None
        self._snapshot_provider: Optional[SnapshotProvider] = None
        self._on_connected: Optional[SessionCallback] = None
        self._on_disconnected: Optional[SessionCallback] = None
        self._running = False
        self._session_counter = 0

    def set_frame_handler(self, handler: FrameHandler) -> None:
        """Set the callback for handling incoming frames."""
        self._frame_handler = handler

    def set_snapshot_provider(self, provider: SnapshotProvider) -> None:
        """Set the source of frames pushed on connect and on every refresh."""
        self._snapshot_provider = provider

    def set_session_callbacks(
        self,
        on_connected: Optional[SessionCallback] = None,
        on_disconnected: Optional[SessionCallback] = None,
    ) -> None:
        self._on_connected = on_connected
        self._on_disconnected = on_disconnected

    async def start(self) -> None:
        self._running = True
        self._server = await asyncio.start_server(
            self._handle_client,
            self.host,
            self.port,
        )
        addrs = ", ".join(str(s.getsockname()) for s in self._server.sockets)
        logger.info("Controller listener started on %s", addrs)

    async def stop(self, flush_timeout: float = 1.0) -> None:
        self._running = False

        server, self._server = self._server, None
        if server:
            server.close()

        # sessions must be closed before wait_closed(), which waits for them
        sessions = list(self._sessions.values())
        self._sessions.clear()
        if sessions:
            await asyncio.gather(
                *(session.close(flush_timeout) for session in sessions),
                return_exceptions=True,
            )

        if server:
            await server.wait_closed()

        logger.info("Controller listener stopped")

    @property
    def bound_port(self) -> Optional[int]:
        """Actual listening port (useful when configured with port 0)."""
        if not self._server or not self._server.sockets:
            return None
        return self._server.sockets[0].getsockname()[1]

    # --- Sessions ---

    async def _handle_client(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
    ) -> None:
        self._session_counter += 1
        session = ClientSession(reader, writer, self._session_counter, self.max_pending)
        self._sessions[session.session_id] = session
        session.start()

        logger.info("Client connected: %s (session %d)", session.address, session.session_id)
        if self._on_connected:
            self._on_connected(session, None)

        self._send_snapshot(session)
        session.refresh_task = asyncio.create_task(self._refresh_loop(session))

        failure: Optional[BaseException] = None
        try:
            await self._read_loop(session)
        except asyncio.CancelledError:
            pass
        except Exception as e:
            failure = e
            logger.exception("Error handling client %s: %s", session.address, e)
        finally:
            await session.cancel_refresh()
            self._sessions.pop(session.session_id, None)
            await session.close()
            logger.info("Client disconnected: %s", session.address)
            if self._on_disconnected:
                self._on_disconnected(session, failure)

    async def _read_loop(self, session: ClientSession) -> None:
        while self._running and session.connected:
            try:
                data = await session.reader.readline()
            except (ConnectionError, OSError, ValueError) as e:
                logger.warning("Error reading from %s: %s", session.address, e)
                break
            if not data:
                break

            line = data.decode("ascii", errors="replace").strip()
            if not line:
                continue

            logger.debug("Controller [in] %s: %s", session.address, line)
            if self._frame_handler:
                await self._frame_handler(line, session)

    async def _refresh_loop(self, session: ClientSession) -> None:
        while session.connected:
            await asyncio.sleep(self.refresh_interval)
            if not session.connected:
                break
            self._send_snapshot(session)

    def _send_snapshot(self, session: ClientSession) -> None:
        if not self._snapshot_provider:
            return
        for frame in self._snapshot_provider():
            session.send(frame)

    # --- Fan-out ---

    def broadcast(self, message: str) -> int:
        """Queue ``message`` on every connected session; returns the count."""
        delivered = 0
        for session in list(self._sessions.values()):
            if session.send(message):
                delivered += 1
        return delivered

    @property
    def sessions(self) -> List[ClientSession]:
        return list(self._sessions.values())

    @property
    def client_count(self) -> int:
        return len(self._sessions)

    @property
    def is_running(self) -> bool:
        return self._running
