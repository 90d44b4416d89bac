"""Serial link to the palpation rig with line framing and frame dispatch."""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Optional, Tuple

import serial_asyncio

from ..config import Settings
from ..logging_config import DEVICE_TRAFFIC_LOGGER
from ..messages import (
    DeviceReady,
    DeviceReset,
    ForceData,
    InvalidForce,
    UnrecognizedFrame,
    decode_device_frame,
)
from ..palpation import PalpationSession

logger = logging.getLogger(__name__)
traffic_logger = logging.getLogger(DEVICE_TRAFFIC_LOGGER)

Broadcaster = Callable[[str], Awaitable[None]]
ConnectionFactory = Callable[[], Awaitable[Tuple[asyncio.StreamReader, asyncio.StreamWriter]]]


class DeviceLink:
    """Reads newline-delimited records from the device and routes them.

    Every non-empty line is broadcast to clients verbatim before it is
    decoded; structured frames then drive the palpation session. The port
    is reopened after ``reconnect_seconds`` whenever it fails or closes.
    """

    def __init__(
        self,
        *,
        session: PalpationSession,
        broadcast: Broadcaster,
        port_path: str,
        baud_rate: int = 115200,
        reconnect_seconds: float = 2.0,
        connection_factory: Optional[ConnectionFactory] = None,
    ) -> None:
        self.session = session
        self.port_path = port_path
        self.baud_rate = baud_rate
        self.reconnect_seconds = reconnect_seconds
        self._broadcast = broadcast
        self._connection_factory = connection_factory or self._open_serial

        self._task: Optional[asyncio.Task[None]] = None
        self._stop_event = asyncio.Event()
        self._writer: Optional[asyncio.StreamWriter] = None

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        session: PalpationSession,
        broadcast: Broadcaster,
        connection_factory: Optional[ConnectionFactory] = None,
    ) -> "DeviceLink":
        return cls(
            session=session,
            broadcast=broadcast,
            port_path=settings.serial_port_path,
            baud_rate=settings.serial_baud_rate,
            reconnect_seconds=settings.serial_reconnect_seconds,
            connection_factory=connection_factory,
        )

    @property
    def connected(self) -> bool:
        return self._writer is not None and not self._writer.is_closing()

    async def start(self) -> None:
        if self._task:
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._run_loop(), name="serial-link")

    async def stop(self) -> None:
        if not self._task:
            return
        self._stop_event.set()
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.warning("Error stopping serial link: %s", e)
        self._task = None
        await self._close_writer()

    async def send_to_device(self, text: str) -> bool:
        """Write a raw command to the device. Failures are logged, never raised."""
        writer = self._writer
        if writer is None or writer.is_closing():
            logger.error("Error on write: serial port %s not open", self.port_path)
            return False
        traffic_logger.debug("TX %s", text)
        try:
            writer.write(text.encode("utf-8"))
            await writer.drain()
            return True
        except Exception as e:
            logger.error("Error on write: %s", e)
            return False

    async def handle_line(self, text: str) -> None:
        traffic_logger.debug("RX %s", text)
        await self._broadcast(text)

        frame = decode_device_frame(text)
        try:
            if isinstance(frame, DeviceReady):
                logger.info("Device is ready.")
            elif isinstance(frame, DeviceReset):
                await self.session.on_reset_signal()
            elif isinstance(frame, ForceData):
                await self.session.on_force_reading(frame.value)
            elif isinstance(frame, InvalidForce):
                logger.warning("Invalid force data: %r is not a number", frame.raw)
            elif isinstance(frame, UnrecognizedFrame):
                logger.warning("Ignoring device frame (%s): %s", frame.reason, frame.text)
        except Exception as e:
            logger.exception("Error handling device frame %s: %s", text, e)

    async def _open_serial(self) -> Tuple[asyncio.StreamReader, asyncio.StreamWriter]:
        return await serial_asyncio.open_serial_connection(url=self.port_path, baudrate=self.baud_rate)

    async def _run_loop(self) -> None:
        logger.info("Serial link active (%s @ %d baud)", self.port_path, self.baud_rate)
        while not self._stop_event.is_set():
            try:
                reader, writer = await self._connection_factory()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error("SerialPort Error: %s", e)
                await self._wait_before_reconnect()
                continue

            self._writer = writer
            logger.info("Serial port %s open", self.port_path)
            try:
                await self._read_lines(reader)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error("SerialPort Error: %s", e)
            finally:
                await self._close_writer()

            if not self._stop_event.is_set():
                logger.warning("Serial port %s closed; reopening in %.1fs", self.port_path, self.reconnect_seconds)
                await self._wait_before_reconnect()

    async def _read_lines(self, reader: asyncio.StreamReader) -> None:
        while not self._stop_event.is_set():
            line = await reader.readline()
            if not line:
                return
            text = line.decode("utf-8", errors="replace").strip()
            if text:
                await self.handle_line(text)

    async def _wait_before_reconnect(self) -> None:
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=self.reconnect_seconds)
        except asyncio.TimeoutError:
            pass

    async def _close_writer(self) -> None:
        writer, self._writer = self._writer, None
        if writer is None:
            return
        try:
            writer.close()
            await writer.wait_closed()
        except Exception as e:
            logger.warning("Error closing serial port: %s", e)


__all__ = ["DeviceLink", "Broadcaster", "ConnectionFactory"]
