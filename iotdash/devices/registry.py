"""Live device snapshots and change notifications.

Tracks every known device and its last observed readings: power state,
temperature/humidity, gas sensor channels and LED colour.  The automation
engine only *reads* from the registry; whatever polls the devices (UDP,
HTTP, BLE, a home-automation hub) writes into it.

Architecture
------------
- ``DeviceSnapshot`` is the cached state of one device.
- ``SensorReading``, ``GasReading`` and ``LedState`` are optional parts of a
  snapshot, present only for devices that report them.
- ``DeviceRegistry`` holds the snapshots and notifies observers every time
  one changes.

Usage
-----
>>> registry = DeviceRegistry()
>>> registry.upsert(DeviceSnapshot(device_id="sensor-01", name="Living Room"))
>>> registry.update_sensor("sensor-01", SensorReading(temperature=23.5, humidity=40))
>>> registry.current_snapshot("sensor-01").sensor.temperature
23.5
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field, replace
from enum import IntEnum
from typing import Any, Callable

from loguru import logger


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------

class GasStatus(IntEnum):
    """Severity derived by the gas sensor firmware."""
    NORMAL = 0
    WARNING = 1
    DANGER = 2


@dataclass(frozen=True)
class SensorReading:
    """Temperature (°C) and relative humidity (%) from a climate sensor."""
    temperature: float
    humidity: float
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> dict[str, Any]:
        return {
            "temperature": self.temperature,
            "humidity": self.humidity,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> SensorReading:
        return cls(
            temperature=float(d["temperature"]),
            humidity=float(d["humidity"]),
            timestamp=d.get("timestamp", 0.0),
        )


@dataclass(frozen=True)
class GasReading:
    """Raw MQ-2 / MQ-7 channel values plus the firmware's severity status."""
    mq2: int
    status: int               # GasStatus value
    mq7: int = 0
    timestamp: float = field(default_factory=time.time)

    @property
    def status_text(self) -> str:
        if self.status == GasStatus.DANGER:
            return "Danger"
        if self.status == GasStatus.WARNING:
            return "Warning"
        return "Normal"

    def to_dict(self) -> dict[str, Any]:
        return {
            "mq2": self.mq2,
            "mq7": self.mq7,
            "status": self.status,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> GasReading:
        return cls(
            mq2=int(d["mq2"]),
            mq7=int(d.get("mq7", 0)),
            status=int(d["status"]),
            timestamp=d.get("timestamp", 0.0),
        )


@dataclass(frozen=True)
class LedState:
    """Last known state of an RGB LED controller."""
    is_on: bool
    r: int                    # 0-255
    g: int                    # 0-255
    b: int                    # 0-255
    brightness: int           # 0-100

    def to_dict(self) -> dict[str, Any]:
        return {
            "is_on": self.is_on,
            "r": self.r,
            "g": self.g,
            "b": self.b,
            "brightness": self.brightness,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> LedState:
        return cls(
            is_on=bool(d.get("is_on", False)),
            r=int(d["r"]),
            g=int(d["g"]),
            b=int(d["b"]),
            brightness=int(d.get("brightness", 100)),
        )


@dataclass(frozen=True)
class DeviceSnapshot:
    """Latest cached state for one device.

    Snapshots are immutable; the registry replaces them on every update so
    that observers can keep a reference without seeing it change.
    """
    device_id: str
    name: str = ""
    address: str = ""         # Network address the command dispatcher targets
    online: bool = False
    is_on: bool = False
    sensor: SensorReading | None = None
    gas: GasReading | None = None
    led: LedState | None = None
    last_update: float = 0.0  # Unix timestamp

    @property
    def display_name(self) -> str:
        return self.name or self.device_id

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "device_id": self.device_id,
            "name": self.name,
            "address": self.address,
            "online": self.online,
            "is_on": self.is_on,
            "last_update": self.last_update,
        }
        if self.sensor is not None:
            d["sensor"] = self.sensor.to_dict()
        if self.gas is not None:
            d["gas"] = self.gas.to_dict()
        if self.led is not None:
            d["led"] = self.led.to_dict()
        return d

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> DeviceSnapshot:
        return cls(
            device_id=d["device_id"],
            name=d.get("name", ""),
            address=d.get("address", ""),
            online=d.get("online", False),
            is_on=d.get("is_on", False),
            sensor=SensorReading.from_dict(d["sensor"]) if d.get("sensor") else None,
            gas=GasReading.from_dict(d["gas"]) if d.get("gas") else None,
            led=LedState.from_dict(d["led"]) if d.get("led") else None,
            last_update=d.get("last_update", 0.0),
        )


# Callback type for snapshot changes
SnapshotCallback = Callable[[DeviceSnapshot], Any]


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

class DeviceRegistry:
    """In-memory registry of device snapshots.

    Integration
    -----------
    - Call ``upsert()`` when a device is added or discovered.
    - Call ``update_sensor()`` / ``update_gas()`` / ``update_led()`` after
      each successful poll.
    - Call ``on_snapshot()`` to subscribe to changes.  Callbacks are invoked
      synchronously with the new snapshot; an exception in one callback is
      logged and does not affect the others.
    """

    def __init__(self) -> None:
        self._devices: dict[str, DeviceSnapshot] = {}  # device_id → snapshot
        self._callbacks: list[SnapshotCallback] = []

    # -- event system --------------------------------------------------------

    def on_snapshot(self, callback: SnapshotCallback) -> None:
        """Register a callback invoked with every updated snapshot."""
        self._callbacks.append(callback)

    def remove_callback(self, callback: SnapshotCallback) -> None:
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    def _fire(self, snapshot: DeviceSnapshot) -> None:
        for cb in list(self._callbacks):
            try:
                cb(snapshot)
            except Exception as exc:
                logger.error(f"[DeviceRegistry] snapshot callback error: {exc}")

    # -- queries -------------------------------------------------------------

    def current_snapshot(self, device_id: str) -> DeviceSnapshot | None:
        """Return the latest snapshot for *device_id*, or None if unknown."""
        return self._devices.get(device_id)

    def all_snapshots(self) -> list[DeviceSnapshot]:
        return list(self._devices.values())

    def __contains__(self, device_id: object) -> bool:
        return device_id in self._devices

    def __len__(self) -> int:
        return len(self._devices)

    # -- mutation ------------------------------------------------------------

    def upsert(self, snapshot: DeviceSnapshot) -> DeviceSnapshot:
        """Insert or replace a device snapshot and notify observers."""
        is_new = snapshot.device_id not in self._devices
        self._devices[snapshot.device_id] = snapshot
        if is_new:
            logger.info(
                f"[DeviceRegistry] registered device {snapshot.device_id} "
                f"({snapshot.display_name})"
            )
        self._fire(snapshot)
        return snapshot

    def remove(self, device_id: str) -> bool:
        """Forget a device. Returns True if it existed."""
        if self._devices.pop(device_id, None) is None:
            return False
        logger.info(f"[DeviceRegistry] removed device {device_id}")
        return True

    def _update(self, device_id: str, **changes: Any) -> DeviceSnapshot | None:
        current = self._devices.get(device_id)
        if current is None:
            logger.warning(f"[DeviceRegistry] update for unknown device {device_id}")
            return None
        updated = replace(current, last_update=time.time(), **changes)
        self._devices[device_id] = updated
        logger.debug(f"[DeviceRegistry] snapshot updated for {device_id}: {changes}")
        self._fire(updated)
        return updated

    def update_sensor(self, device_id: str, reading: SensorReading) -> DeviceSnapshot | None:
        """Record a temperature/humidity reading (marks the device online)."""
        return self._update(device_id, sensor=reading, online=True)

    def update_gas(self, device_id: str, reading: GasReading) -> DeviceSnapshot | None:
        """Record a gas reading (marks the device online)."""
        return self._update(device_id, gas=reading, online=True)

    def update_led(self, device_id: str, led: LedState) -> DeviceSnapshot | None:
        """Record the LED state; the device power flag follows ``led.is_on``."""
        return self._update(device_id, led=led, is_on=led.is_on, online=True)

    def set_power(self, device_id: str, is_on: bool) -> DeviceSnapshot | None:
        return self._update(device_id, is_on=is_on)

    def set_online(self, device_id: str, online: bool) -> DeviceSnapshot | None:
        current = self._devices.get(device_id)
        if current is None or current.online == online:
            return current
        logger.info(
            f"[DeviceRegistry] device {device_id} is {'online' if online else 'offline'}"
        )
        return self._update(device_id, online=online)

    # -- summary -------------------------------------------------------------

    def summary(self) -> str:
        """Return a human-readable summary of all devices.

        Example output::

            Devices (1 online / 2 total):
              - Living Room [ONLINE] — 23.5°C, 40.0%
              - Kitchen Gas [OFFLINE] — gas: Normal
        """
        if not self._devices:
            return "No devices registered."

        online = sum(1 for d in self._devices.values() if d.online)
        lines = [f"Devices ({online} online / {len(self._devices)} total):"]
        for d in self._devices.values():
            status = "ONLINE" if d.online else "OFFLINE"
            parts = []
            if d.sensor is not None:
                parts.append(f"{d.sensor.temperature:.1f}°C, {d.sensor.humidity:.1f}%")
            if d.gas is not None:
                parts.append(f"gas: {d.gas.status_text}")
            if d.led is not None:
                parts.append(
                    f"led: rgb({d.led.r},{d.led.g},{d.led.b}) {d.led.brightness}%"
                )
            if not parts:
                parts.append("on" if d.is_on else "off")
            lines.append(f"  - {d.display_name} [{status}] — {', '.join(parts)}")
        return "\n".join(lines)
