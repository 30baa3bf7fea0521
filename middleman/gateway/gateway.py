"""Gateway orchestrator - wires listener, station connector, feedback bus and sink.

Every controller frame is classified here: frames addressed to the virtual
feedback bus (object 26) or one of its modules (100 and up) are answered
locally, everything else passes the object filter on its way to the station.
Station messages and feedback changes are fanned out to all controllers.
"""
from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Callable, Dict, List, Optional

from ..config import FEEDBACK_BUS_ID, GatewayConfig
from ..core.feedback import FeedbackModuleState, FeedbackPool, parse_device_line
from ..core.filter import ObjectFilter
from ..errors import DeviceFailure, FilterRejected, MalformedFrame
from ..protocol import replies
from ..protocol.command import Command, CommandKind, parse
from ..transports.base import FeedbackSource
from ..transports.simulated import SimulatedSource
from .broadcast import BroadcastSink, Payload, build_payload
from .station import ConnectionObserver, StationConnector, make_probe
from .upstream import ClientListener, ClientSession

logger = logging.getLogger("middleman.gateway")

EventCallback = Callable[[Dict[str, Any]], None]

SIMULATION_TOGGLE_INTERVAL = 2.0


class Gateway(ConnectionObserver):
    """Protocol gateway between layout controllers and the command station.

    Components are built from ``config`` unless passed in explicitly, which
    is how tests swap in fakes. ``station`` and ``source`` may be ``None``
    when the respective side is disabled.

    Example:
        gateway = Gateway(load_config("middleman.json"))
        await gateway.start()
    """

    def __init__(
        self,
        config: Optional[GatewayConfig] = None,
        listener: Optional[ClientListener] = None,
        station: Optional[StationConnector] = None,
        source: Optional[FeedbackSource] = None,
        sink: Optional[BroadcastSink] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config or GatewayConfig()
        self.pool = FeedbackPool(self.config.debounce, clock=clock)
        self.filter = ObjectFilter.from_config(self.config.filter)

        server = self.config.server
        self.listener = listener or ClientListener(server.host, server.port, server.refresh_interval)
        self.station = station if station is not None else self._build_station()
        self.source = source if source is not None else self._build_source()
        self.sink = sink if sink is not None else self._build_sink()

        if self.station is not None:
            self.station.observer = self

        self.listener.set_frame_handler(self.handle_controller_frame)
        self.listener.set_snapshot_provider(self.snapshot_frames)
        self.listener.set_session_callbacks(self._on_session_connected, self._on_session_disconnected)
        if self.sink is not None:
            self.sink.set_snapshot_provider(self.snapshot_payloads)

        self._observers: List[EventCallback] = []
        self._device_task: Optional[asyncio.Task] = None
        self._version_logged = False
        self._running = False
        self._stats: Dict[str, int] = {
            "frames_from_controllers": 0,
            "frames_forwarded": 0,
            "frames_unsent": 0,
            "frames_intercepted": 0,
            "frames_filtered": 0,
            "frames_malformed": 0,
            "station_messages": 0,
            "feedback_changes": 0,
            "device_lines": 0,
        }

    # --- Construction ---

    def _build_station(self) -> Optional[StationConnector]:
        if not self.config.station_enabled:
            return None
        cfg = self.config.station
        return StationConnector(
            host=cfg.host,
            port=cfg.port,
            probe=make_probe(cfg.probe, cfg.host, cfg.port, cfg.probe_timeout),
            probe_interval=cfg.probe_interval,
            handshake=cfg.handshake,
        )

    def _build_source(self) -> Optional[FeedbackSource]:
        bus = self.config.feedback
        if self.config.runtime.is_s88_simulation:
            return SimulatedSource(toggle_interval=SIMULATION_TOGGLE_INTERVAL)
        if bus.device_path:
            # pyserial-asyncio is only needed with real hardware
            from ..transports.hsi88 import Hsi88Source

            return Hsi88Source(
                port=bus.device_path,
                baudrate=bus.baudrate,
                left=bus.left,
                middle=bus.middle,
                right=bus.right,
                poll_interval=self.config.debounce.poll_interval,
            )
        return None

    def _build_sink(self) -> Optional[BroadcastSink]:
        ws = self.config.broadcast
        if not ws.enabled:
            return None
        return BroadcastSink(ws.host, ws.port, ws.path)

    # --- Lifecycle ---

    async def start(self) -> None:
        logger.info("Starting gateway...")
        logger.info("  Listener: %s:%d", self.listener.host, self.listener.port)
        logger.info("  Station: %s", self.station.address if self.station else "disabled")
        logger.info("  Feedback modules: %d", self.config.feedback.number_max)

        self._running = True
        await self.listener.start()
        if self.sink is not None:
            await self.sink.start()
        if self.station is not None:
            self.station.start()
        if self.source is not None:
            self._device_task = asyncio.create_task(self._device_loop())
        logger.info("Gateway started")

    async def stop(self) -> None:
        logger.info("Stopping gateway...")
        self._running = False

        if self._device_task:
            self._device_task.cancel()
            try:
                await self._device_task
            except asyncio.CancelledError:
                pass
            self._device_task = None
        if self.source is not None:
            await self.source.close()
        if self.station is not None:
            await self.station.stop()
        if self.sink is not None:
            await self.sink.stop()
        await self.listener.stop(flush_timeout=1.0)
        logger.info("Gateway stopped")

    async def run_forever(self) -> None:
        await self.start()
        try:
            while self._running:
                await asyncio.sleep(1)
        except asyncio.CancelledError:
            pass
        finally:
            await self.stop()

    @property
    def is_running(self) -> bool:
        return self._running

    # --- Observers ---

    def add_observer(self, callback: EventCallback) -> None:
        """Register ``callback(event_dict)`` for operational events."""
        self._observers.append(callback)

    def _notify(self, event: str, detail: Any = None) -> None:
        payload = {"event": event, "detail": detail}
        for callback in list(self._observers):
            try:
                callback(payload)
            except Exception:
                logger.exception("Observer failed on %s", event)

    def _on_session_connected(self, session: ClientSession, error: Optional[BaseException]) -> None:
        self._notify("session_connected", session.address)

    def _on_session_disconnected(self, session: ClientSession, error: Optional[BaseException]) -> None:
        self._notify("session_disconnected", {"address": session.address, "error": str(error) if error else None})

    # ConnectionObserver

    def on_connected(self) -> None:
        self._notify("station_connected", self.station.address if self.station else None)

    def on_failed(self, error: BaseException) -> None:
        self._notify("station_failed", str(error))

    async def on_message(self, message: str) -> None:
        self._stats["station_messages"] += 1
        delivered = self.listener.broadcast(message)
        logger.debug("Station message fanned out to %d session(s)", delivered)

    # --- Controller frames ---

    def is_intercepted(self, object_id: int) -> bool:
        return object_id == FEEDBACK_BUS_ID or self.pool.is_module_id(object_id)

    async def handle_controller_frame(self, line: str, session: Optional[ClientSession] = None) -> Optional[str]:
        """Route one controller frame; returns the synthetic reply, if any."""
        self._stats["frames_from_controllers"] += 1
        source = session.address if session else "local"

        try:
            command = parse(line, keep_quotes=True)
        except MalformedFrame as e:
            self._stats["frames_malformed"] += 1
            logger.warning("Dropping malformed frame from %s: %s (%s)", source, line, e)
            return None

        if self.is_intercepted(command.object_id):
            self._stats["frames_intercepted"] += 1
            reply = self.synthetic_reply(command)
            logger.debug("Intercepted %s from %s", command, source)
            if session is not None:
                session.send(reply)
            return reply

        if self.filter.is_filtered(command):
            self._stats["frames_filtered"] += 1
            logger.debug("Dropping %s from %s: %s", line, source, FilterRejected(command.object_id))
            return None

        if self.station is None:
            self._stats["frames_unsent"] += 1
            logger.debug("No station configured, dropping: %s", line)
            return None

        if await self.station.send(line):
            self._stats["frames_forwarded"] += 1
        else:
            self._stats["frames_unsent"] += 1
        return None

    def synthetic_reply(self, command: Command) -> str:
        """Answer a command addressed to the feedback bus or one of its modules."""
        object_id = command.object_id

        if command.kind is CommandKind.REQUEST:
            return replies.request_reply(object_id)

        if command.kind is CommandKind.QUERY_OBJECTS and command.has_argument("ports"):
            return replies.ports_reply(FEEDBACK_BUS_ID, self.config.feedback.module_ids())

        if command.kind is CommandKind.GET:
            module = self.pool.get(object_id)
            hex_state = module.hex_state if module else "0000"
            if command.has_argument("state"):
                return replies.state_event(object_id, hex_state)
            return replies.metadata_reply(command, hex_state)

        return replies.ack_reply(command)

    def snapshot_frames(self) -> List[str]:
        """Current state of every configured module as ``<EVENT>`` blocks."""
        return [
            replies.state_event(state.module_object_id, state.hex_state)
            for state in self.pool.modules(self.config.feedback.module_ids())
        ]

    def snapshot_payloads(self) -> List[Payload]:
        return [
            build_payload(state, self.config.feedback)
            for state in self.pool.modules(self.config.feedback.module_ids())
        ]

    # --- Feedback device ---

    def handle_device_line(self, line: str) -> List[FeedbackModuleState]:
        """Apply one device line; returns the modules whose state changed."""
        self._stats["device_lines"] += 1
        decoded = parse_device_line(line)

        if decoded.is_version:
            if not self._version_logged:
                logger.info("Feedback interface: %s", decoded.raw)
                self._version_logged = True
            return []
        if decoded.kind not in ("i", "m"):
            logger.debug("Ignoring device line: %s", decoded.raw)
            return []

        changed: List[FeedbackModuleState] = []
        for device_id, raw_state in decoded.states.items():
            state = self.pool.for_hardware_id(device_id)
            if state is None:
                logger.warning("Device reported unknown module %d", device_id)
                continue
            if not state.update(raw_state):
                continue
            changed.append(state)
            self._stats["feedback_changes"] += 1
            self.listener.broadcast(replies.state_event(state.module_object_id, state.hex_state))
            if self.sink is not None:
                self.sink.publish_nowait(build_payload(state, self.config.feedback))
        return changed

    def inject_device_line(self, line: str) -> List[FeedbackModuleState]:
        """Feed a line as if the hardware had sent it."""
        return self.handle_device_line(line)

    async def _device_loop(self) -> None:
        source = self.source
        try:
            await source.open()
            self._notify("device_opened", None)
            while self._running:
                line = await source.readline()
                self.handle_device_line(line)
        except DeviceFailure as e:
            logger.critical("Feedback device failed, no further feedback events: %s", e)
            self._notify("device_failed", str(e))

    # --- Stats ---

    def get_stats(self) -> dict:
        stats: Dict[str, Any] = {
            "running": self._running,
            "controller_clients": self.listener.client_count,
            "station_state": self.station.state.value if self.station else "disabled",
            **self._stats,
        }
        if self.sink is not None:
            stats["observers"] = self.sink.client_count
        return stats
