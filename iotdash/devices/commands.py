"""Device command dispatch.

Commands are fire-and-forget: the engine issues them and moves on without
waiting for the device to acknowledge.  The default transport is the LED /
relay controller firmware's UDP text protocol.

Wire format
-----------
Each command is one ASCII datagram sent to ``<device address>:4210``::

    ON
    OFF
    COLOR:<r>,<g>,<b>,<brightness>     # r/g/b 0-255, brightness 0-100

Usage
-----
>>> dispatcher = UDPCommandDispatcher(registry)
>>> await dispatcher.send_power("led-01", True)
>>> await dispatcher.send_color("led-01", 255, 0, 0, 80)
"""

from __future__ import annotations

import abc
import asyncio
from typing import TYPE_CHECKING

from loguru import logger

if TYPE_CHECKING:
    from iotdash.devices.registry import DeviceRegistry


DEFAULT_UDP_PORT = 4210


# ---------------------------------------------------------------------------
# Encoding
# ---------------------------------------------------------------------------

def _clamp(value: int, lo: int, hi: int) -> int:
    return max(lo, min(hi, int(value)))


def encode_power(on: bool) -> bytes:
    return b"ON" if on else b"OFF"


def encode_color(r: int, g: int, b: int, brightness: int) -> bytes:
    """Encode a ``COLOR:`` command, clamping every channel into range."""
    return (
        f"COLOR:{_clamp(r, 0, 255)},{_clamp(g, 0, 255)},"
        f"{_clamp(b, 0, 255)},{_clamp(brightness, 0, 100)}"
    ).encode("ascii")


# ---------------------------------------------------------------------------
# Dispatcher interface
# ---------------------------------------------------------------------------

class CommandDispatcher(abc.ABC):
    """Sends control commands to a device over its registered transport."""

    @abc.abstractmethod
    async def send_power(self, device_id: str, on: bool) -> bool:
        """Switch a device on or off. Returns True if the command was sent."""

    @abc.abstractmethod
    async def send_color(
        self, device_id: str, r: int, g: int, b: int, brightness: int
    ) -> bool:
        """Set an LED colour and brightness. Returns True if the command was sent."""


class UDPCommandDispatcher(CommandDispatcher):
    """Dispatches commands as UDP datagrams to the device's registry address.

    Parameters
    ----------
    registry:
        Used to resolve ``device_id`` to a network address.
    port:
        Destination UDP port (the firmware listens on 4210).
    grace_seconds:
        How long each socket stays open after the send so the datagram is
        flushed before the transport is closed.  No reply is awaited.
    """

    def __init__(
        self,
        registry: DeviceRegistry,
        port: int = DEFAULT_UDP_PORT,
        grace_seconds: float = 0.5,
    ):
        self._registry = registry
        self.port = port
        self.grace_seconds = grace_seconds

    async def send_power(self, device_id: str, on: bool) -> bool:
        return await self._send(device_id, encode_power(on))

    async def send_color(
        self, device_id: str, r: int, g: int, b: int, brightness: int
    ) -> bool:
        return await self._send(device_id, encode_color(r, g, b, brightness))

    async def _send(self, device_id: str, payload: bytes) -> bool:
        snapshot = self._registry.current_snapshot(device_id)
        if snapshot is None or not snapshot.address:
            logger.warning(f"[Commands] no address for device '{device_id}'")
            return False

        loop = asyncio.get_running_loop()
        try:
            transport, _ = await loop.create_datagram_endpoint(
                asyncio.DatagramProtocol,
                remote_addr=(snapshot.address, self.port),
            )
        except OSError as exc:
            logger.error(
                f"[Commands] cannot reach {device_id} at "
                f"{snapshot.address}:{self.port}: {exc}"
            )
            return False

        try:
            transport.sendto(payload)
        except OSError as exc:
            logger.error(f"[Commands] send to {device_id} failed: {exc}")
            transport.close()
            return False

        loop.call_later(self.grace_seconds, transport.close)
        logger.debug(
            f"[Commands] sent {payload.decode('ascii')!r} to {device_id} "
            f"({snapshot.address}:{self.port})"
        )
        return True
