import asyncio
import logging
from typing import Optional

from ..errors import DeviceFailure
from .base import FeedbackSource

logger = logging.getLogger("middleman.transports.simulated")

SIMULATED_VERSION = "V Simulated HSI-88"


class SimulatedSource(FeedbackSource):
    """In-process stand-in for the feedback interface.

    Lines come from :meth:`inject`; with ``toggle_interval`` set, pin 16 of
    module 1 is switched on and off periodically.
    """

    def __init__(self, toggle_interval: Optional[float] = None):
        self.toggle_interval = toggle_interval
        self.connected = False
        self.sent = []
        self.rx_queue: asyncio.Queue = asyncio.Queue()
        self._toggle_task: Optional[asyncio.Task] = None

    async def open(self):
        self.connected = True
        await self.rx_queue.put(SIMULATED_VERSION)
        if self.toggle_interval:
            self._toggle_task = asyncio.create_task(self._toggle_loop())
        logger.info("Simulated feedback interface opened")

    async def close(self):
        self.connected = False
        if self._toggle_task:
            self._toggle_task.cancel()
            try:
                await self._toggle_task
            except asyncio.CancelledError:
                pass
            self._toggle_task = None

    async def send(self, command: str):
        if not self.connected:
            raise DeviceFailure("Simulated interface not open")
        self.sent.append(command)

    async def readline(self) -> str:
        if not self.connected:
            raise DeviceFailure("Simulated interface not open")
        return await self.rx_queue.get()

    def inject(self, line: str) -> None:
        self.rx_queue.put_nowait(line)

    async def _toggle_loop(self):
        on = False
        try:
            while self.connected:
                await asyncio.sleep(self.toggle_interval)
                on = not on
                self.inject("i01010001" if on else "i01010000")
        except asyncio.CancelledError:
            return
