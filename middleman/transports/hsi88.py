"""HSI-88-USB feedback interface over a serial device.

The interface speaks a terminal protocol of ``\\r``-terminated ASCII lines:

    t1      terminal mode on
    v       query version banner
    sLLMMRR number of modules per bus segment (left, middle, right)
    m       poll current states, answered with ``m<NN>...``

In terminal mode it also pushes ``i<NN>...`` lines on every change.
"""
import asyncio
import logging
from typing import Optional

import serial_asyncio

from ..errors import DeviceFailure
from .base import FeedbackSource

logger = logging.getLogger("middleman.transports.hsi88")

LINE_END = b"\r"


class Hsi88Source(FeedbackSource):
    def __init__(
        self,
        port: str,
        baudrate: int = 9600,
        left: int = 0,
        middle: int = 0,
        right: int = 0,
        poll_interval: float = 0.05,
    ):
        self.port = port
        self.baudrate = baudrate
        self.left = left
        self.middle = middle
        self.right = right
        self.poll_interval = poll_interval

        self.reader: Optional[asyncio.StreamReader] = None
        self.writer: Optional[asyncio.StreamWriter] = None
        self.connected = False
        self._poll_task: Optional[asyncio.Task] = None

    async def open(self):
        if self.connected:
            return
        logger.debug("Opening feedback interface port=%s baud=%s", self.port, self.baudrate)
        try:
            self.reader, self.writer = await serial_asyncio.open_serial_connection(
                url=self.port,
                baudrate=self.baudrate,
            )
        except Exception as e:
            raise DeviceFailure(f"Failed to open {self.port}: {e}") from e
        self.connected = True

        await self.send("t1")
        await self.send("v")
        await self.send(f"s{self.left:02d}{self.middle:02d}{self.right:02d}")
        self._poll_task = asyncio.create_task(self._poll_loop())
        logger.info("Feedback interface opened on %s", self.port)

    async def close(self):
        self.connected = False
        if self._poll_task:
            self._poll_task.cancel()
            try:
                await self._poll_task
            except asyncio.CancelledError:
                pass
            self._poll_task = None
        if self.writer:
            try:
                self.writer.transport.close()
            except Exception:
                pass
            self.writer = None

    async def send(self, command: str):
        if not self.connected or not self.writer:
            raise DeviceFailure("Feedback interface not open")
        if not command.endswith("\r"):
            command += "\r"
        try:
            self.writer.write(command.encode("ascii"))
            await self.writer.drain()
        except Exception as e:
            self.connected = False
            raise DeviceFailure(f"Write to {self.port} failed: {e}") from e

    async def readline(self) -> str:
        if not self.reader:
            raise DeviceFailure("Feedback interface not open")
        while True:
            try:
                data = await self.reader.readuntil(LINE_END)
            except asyncio.IncompleteReadError as e:
                self.connected = False
                raise DeviceFailure(f"{self.port} closed") from e
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.connected = False
                raise DeviceFailure(f"Read from {self.port} failed: {e}") from e
            line = data.decode("ascii", errors="replace").strip()
            if line:
                return line

    async def _poll_loop(self):
        try:
            while self.connected:
                await asyncio.sleep(self.poll_interval)
                await self.send("m")
        except asyncio.CancelledError:
            return
        except DeviceFailure as e:
            logger.error("Polling stopped: %s", e)
