"""Serial monitor service.

This module handles:
- Opening one serial connection per device (a second open is refused)
- Republishing every received line on the device's serial topic
- Writing to an open connection
- Releasing the port on close or on read errors

Ports are opened with ``serial.serial_for_url`` so both device paths and
pyserial URL handlers (``loop://``, ``socket://``, ``rfc2217://``) work.
Blocking pyserial calls run in worker threads.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import serial

from rc_configurator.events.models import SerialLine, serial_topic

if TYPE_CHECKING:
    from rc_configurator.events.bus import EventBus

logger = logging.getLogger(__name__)

DEFAULT_BAUDRATE = 420000

# Read timeout; bounds how long close() waits for the reader to notice
DEFAULT_READ_TIMEOUT = 0.1


class NotOpenError(Exception):
    """Raised when writing to a device without an open connection."""

    def __init__(self, device_id: str, code: str = "serial_not_open") -> None:
        super().__init__(f"No serial connection open for {device_id}")
        self.device_id = device_id
        self.code = code


class AlreadyOpenError(Exception):
    """Raised when opening a device that already has a connection."""

    def __init__(self, device_id: str, code: str = "serial_already_open") -> None:
        super().__init__(f"Serial connection for {device_id} is already open")
        self.device_id = device_id
        self.code = code


class SerialOpenError(Exception):
    """Raised when the serial port cannot be opened."""

    def __init__(self, message: str, code: str = "serial_open_failed") -> None:
        super().__init__(message)
        self.code = code


class SerialWriteError(Exception):
    """Raised when writing to an open port fails."""

    def __init__(self, message: str, code: str = "serial_write_failed") -> None:
        super().__init__(message)
        self.code = code


@dataclass(frozen=True)
class SerialParams:
    """Connection parameters.

    Attributes:
        port: Device path or pyserial URL.
        baudrate: Line speed.
        timeout: Read timeout in seconds.
    """

    port: str
    baudrate: int = DEFAULT_BAUDRATE
    timeout: float = DEFAULT_READ_TIMEOUT


class _Connection:
    def __init__(self, device_id: str, params: SerialParams, handle: Any) -> None:
        self.device_id = device_id
        self.params = params
        self.handle = handle
        self.stopping = False
        self.reader: asyncio.Task[None] | None = None


def _read_chunk(handle: Any) -> bytes:
    return handle.read(handle.in_waiting or 1)


class SerialMonitor:
    """Owns serial connections and publishes their output.

    Args:
        bus: Event bus receiving SerialLine events.
        serial_factory: Callable opening a port (``serial.serial_for_url``
            signature).
    """

    def __init__(
        self,
        bus: EventBus,
        serial_factory: Callable[..., Any] = serial.serial_for_url,
    ) -> None:
        self.bus = bus
        self._serial_factory = serial_factory
        self._connections: dict[str, _Connection] = {}
        self._opening: set[str] = set()

    def is_open(self, device_id: str) -> bool:
        """Whether ``device_id`` has an open connection."""
        return device_id in self._connections

    def open_devices(self) -> list[str]:
        """Return ids of devices with open connections."""
        return sorted(self._connections)

    async def open(self, device_id: str, params: SerialParams) -> None:
        """Open a connection and start publishing its lines.

        Raises:
            AlreadyOpenError: If the device is already open (or opening).
            SerialOpenError: If the port cannot be opened.
        """
        if device_id in self._connections or device_id in self._opening:
            raise AlreadyOpenError(device_id)
        self._opening.add(device_id)
        try:
            handle = await asyncio.to_thread(
                self._serial_factory,
                params.port,
                baudrate=params.baudrate,
                timeout=params.timeout,
            )
        except (serial.SerialException, OSError, ValueError) as e:
            raise SerialOpenError(f"Failed to open {params.port}: {e}") from e
        finally:
            self._opening.discard(device_id)

        connection = _Connection(device_id, params, handle)
        self._connections[device_id] = connection
        connection.reader = asyncio.create_task(
            self._read_loop(connection), name=f"serial-{device_id}"
        )
        logger.info(
            "Opened %s for %s at %d baud", params.port, device_id, params.baudrate
        )

    @asynccontextmanager
    async def connect(
        self, device_id: str, params: SerialParams
    ) -> AsyncIterator[None]:
        """Open a connection for the duration of a ``async with`` block."""
        await self.open(device_id, params)
        try:
            yield
        finally:
            await self.close(device_id)

    async def write(self, device_id: str, data: bytes) -> int:
        """Write bytes to an open connection.

        Returns:
            Number of bytes written.

        Raises:
            NotOpenError: If the device has no open connection.
            SerialWriteError: If the port rejects the write.
        """
        connection = self._connections.get(device_id)
        if connection is None:
            raise NotOpenError(device_id)
        try:
            written = await asyncio.to_thread(connection.handle.write, data)
        except (serial.SerialException, OSError) as e:
            logger.warning("Write to %s failed: %s", device_id, e)
            raise SerialWriteError(f"Failed to write to {device_id}: {e}") from e
        return len(data) if written is None else written

    async def close(self, device_id: str) -> bool:
        """Close the device's connection. Closing a closed device is a no-op.

        Returns:
            True if a connection was closed.
        """
        connection = self._connections.pop(device_id, None)
        if connection is None:
            return False
        connection.stopping = True
        if connection.reader is not None:
            await connection.reader
        await asyncio.to_thread(connection.handle.close)
        logger.info("Closed serial connection for %s", device_id)
        return True

    async def close_all(self) -> None:
        """Close every open connection."""
        for device_id in list(self._connections):
            await self.close(device_id)

    async def _read_loop(self, connection: _Connection) -> None:
        topic = serial_topic(connection.device_id)
        pending = bytearray()
        try:
            while not connection.stopping:
                chunk = await asyncio.to_thread(_read_chunk, connection.handle)
                if not chunk:
                    continue
                pending.extend(chunk)
                while b"\n" in pending:
                    raw, _, rest = bytes(pending).partition(b"\n")
                    pending = bytearray(rest)
                    self.bus.publish(
                        topic,
                        SerialLine(
                            device_id=connection.device_id,
                            text=raw.decode("utf-8", errors="replace").rstrip("\r"),
                        ),
                    )
        except (serial.SerialException, OSError) as e:
            logger.error("Serial read failed for %s: %s", connection.device_id, e)
            if self._connections.get(connection.device_id) is connection:
                del self._connections[connection.device_id]
                await asyncio.to_thread(connection.handle.close)


__all__ = [
    "DEFAULT_BAUDRATE",
    "AlreadyOpenError",
    "NotOpenError",
    "SerialMonitor",
    "SerialOpenError",
    "SerialParams",
    "SerialWriteError",
]
