"""Station connector - the single outbound connection to the ECoS.

A supervisor task owns the connection: it probes the station until it is
reachable, connects, sends the handshake queries and then reads replies. Any
I/O failure drops back into probing; there is no terminal state while the
gateway runs.
"""
from __future__ import annotations

import asyncio
import logging
import math
import sys
from abc import ABC, abstractmethod
from enum import Enum
from typing import Awaitable, Callable, List, Optional, Sequence

from ..errors import TransportFailure
from ..protocol.framing import LINE_TERMINATOR, ReplyAssembler

logger = logging.getLogger("middleman.gateway.station")

Probe = Callable[[], Awaitable[bool]]


class ConnectionState(Enum):
    DISCONNECTED = "disconnected"
    PROBING = "probing"
    CONNECTED = "connected"
    FAILED = "failed"


class ConnectionObserver(ABC):
    """Receives connection lifecycle events and reassembled station messages."""

    def on_connected(self) -> None:
        pass

    def on_failed(self, error: BaseException) -> None:
        pass

    @abstractmethod
    async def on_message(self, message: str) -> None:
        pass


# --- Reachability probes ---

async def tcp_probe(host: str, port: int, timeout: float = 1.0) -> bool:
    """Reachable if a TCP connect succeeds within ``timeout``."""
    try:
        _, writer = await asyncio.wait_for(asyncio.open_connection(host, port), timeout=timeout)
    except (OSError, asyncio.TimeoutError):
        return False
    writer.close()
    try:
        await writer.wait_closed()
    except Exception:
        pass
    return True


async def ping_probe(host: str, port: int, timeout: float = 1.0) -> bool:
    """ICMP echo through the system ``ping`` command."""
    if sys.platform.startswith("win"):
        args = ["ping", "-n", "1", "-w", str(int(timeout * 1000)), host]
    else:
        args = ["ping", "-c", "1", "-W", str(max(1, math.ceil(timeout))), host]
    try:
        proc = await asyncio.create_subprocess_exec(
            *args,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.DEVNULL,
        )
    except (FileNotFoundError, PermissionError) as e:
        logger.warning("ping unavailable (%s), using TCP probe instead", e)
        return await tcp_probe(host, port, timeout)
    try:
        return await asyncio.wait_for(proc.wait(), timeout=timeout + 2.0) == 0
    except asyncio.TimeoutError:
        proc.kill()
        await proc.wait()
        return False


def make_probe(kind: str, host: str, port: int, timeout: float = 1.0) -> Probe:
    if kind == "ping":
        return lambda: ping_probe(host, port, timeout)
    if kind == "tcp":
        return lambda: tcp_probe(host, port, timeout)

    async def _always() -> bool:
        return True

    return _always


class StationConnector:
    """Supervised connection to the command station.

    ``send`` is a no-op while not connected, so callers never wait for a
    reconnect.
    """

    def __init__(
        self,
        host: str,
        port: int = 15471,
        probe: Optional[Probe] = None,
        probe_interval: float = 5.0,
        handshake: Sequence[str] = (),
        observer: Optional[ConnectionObserver] = None,
        connect_timeout: float = 5.0,
    ):
        self.host = host
        self.port = port
        self.probe = probe or make_probe("tcp", host, port)
        self.probe_interval = probe_interval
        self.handshake: List[str] = list(handshake)
        self.observer = observer
        self.connect_timeout = connect_timeout

        self._state = ConnectionState.DISCONNECTED
        self._reader: Optional[asyncio.StreamReader] = None
        self._writer: Optional[asyncio.StreamWriter] = None
        self._lock = asyncio.Lock()  # one writer at a time
        self._task: Optional[asyncio.Task] = None
        self._stop = False
        self._send_error: Optional[BaseException] = None
        self._connected_event = asyncio.Event()
        self.probe_attempts = 0
        self.connect_count = 0

    # --- Lifecycle ---

    def start(self) -> None:
        """Start supervising in the background and return immediately."""
        if self._task and not self._task.done():
            return
        self._stop = False
        self._task = asyncio.create_task(self._supervise())

    async def stop(self) -> None:
        self._stop = True
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        await self._close_transport()
        self._set_state(ConnectionState.DISCONNECTED)
        logger.info("Station connector stopped")

    async def wait_connected(self, timeout: Optional[float] = None) -> bool:
        try:
            await asyncio.wait_for(self._connected_event.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            return False
        return True

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    @property
    def address(self) -> str:
        return f"{self.host}:{self.port}"

    # --- I/O ---

    async def send(self, frame: str) -> bool:
        if not frame:
            return False
        if not self.is_connected or not self._writer:
            logger.debug("Station not connected, dropping: %s", frame.strip())
            return False
        if not frame.endswith(LINE_TERMINATOR):
            frame += LINE_TERMINATOR
        async with self._lock:
            writer = self._writer
            if writer is None:
                return False
            try:
                writer.write(frame.encode("ascii", errors="replace"))
                await writer.drain()
            except Exception as e:
                logger.error("Send to station failed: %s", e)
                self._send_error = TransportFailure(f"Write to {self.address} failed: {e}")
                writer.close()
                return False
        logger.debug("Station [out]: %s", frame.strip())
        return True

    # --- Supervision ---

    def _set_state(self, state: ConnectionState) -> None:
        if state is not self._state:
            logger.debug("Station connection %s -> %s", self._state.value, state.value)
        self._state = state
        if state is ConnectionState.CONNECTED:
            self._connected_event.set()
        else:
            self._connected_event.clear()

    async def _supervise(self) -> None:
        while not self._stop:
            self._set_state(ConnectionState.PROBING)
            await self._wait_until_reachable()
            if self._stop:
                break

            try:
                await self._open()
            except (OSError, asyncio.TimeoutError) as e:
                self._fail(TransportFailure(f"Connection failed to {self.address} with {e}"))
                await asyncio.sleep(self.probe_interval)
                continue

            self._set_state(ConnectionState.CONNECTED)
            self.connect_count += 1
            logger.info("Connection established to %s", self.address)
            self._notify_connected()
            for frame in self.handshake:
                await self.send(frame)

            error = await self._read_loop()
            if self._stop:
                break
            self._fail(error or self._send_error or TransportFailure("Connection closed unexpectedly"))

        self._set_state(ConnectionState.DISCONNECTED)

    async def _wait_until_reachable(self) -> None:
        while not self._stop:
            self.probe_attempts += 1
            try:
                reachable = await self.probe()
            except Exception as e:
                logger.warning("Probe of %s failed: %s", self.host, e)
                reachable = False
            if reachable:
                logger.info("Ping ok, try to connect to %s...", self.address)
                return
            logger.info("Try to ping again in %g seconds to %s...", self.probe_interval, self.address)
            await asyncio.sleep(self.probe_interval)

    async def _open(self) -> None:
        self._send_error = None
        self._reader, self._writer = await asyncio.wait_for(
            asyncio.open_connection(self.host, self.port),
            timeout=self.connect_timeout,
        )

    async def _read_loop(self) -> Optional[BaseException]:
        """Read until the connection drops; returns the error, if any."""
        assembler = ReplyAssembler()
        while not self._stop and self._reader:
            try:
                data = await self._reader.readline()
            except (ConnectionError, OSError, ValueError) as e:
                return TransportFailure(f"Read from {self.address} failed: {e}")
            if not data:
                return None

            message = assembler.feed(data.decode("ascii", errors="replace"))
            if message is None:
                continue
            logger.debug("Station [in]: %s", message)
            if self.observer:
                try:
                    await self.observer.on_message(message)
                except Exception:
                    logger.exception("Station message handler failed")
        return None

    def _fail(self, error: BaseException) -> None:
        self._set_state(ConnectionState.FAILED)
        logger.critical("Station connection to %s failed: %s", self.address, error)
        if self._writer:
            try:
                self._writer.close()
            except Exception:
                pass
        self._reader = None
        self._writer = None
        if self.observer:
            try:
                self.observer.on_failed(error)
            except Exception:
                logger.exception("Station failure handler failed")

    def _notify_connected(self) -> None:
        if self.observer:
            try:
                self.observer.on_connected()
            except Exception:
                logger.exception("Station connect handler failed")

    async def _close_transport(self) -> None:
        writer, self._writer = self._writer, None
        self._reader = None
        if writer:
            try:
                writer.close()
                await writer.wait_closed()
            except Exception:
                pass
