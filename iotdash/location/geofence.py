"""Circular geofences and entry/exit detection.

Each location-triggered automation owns one geofence, registered under the
automation's id.  Position updates are compared against every registered
region; a change from outside to inside (or back) emits a
``GeofenceEvent`` to all subscribers.

Regions start in the "outside" state, so the first position reported
inside a region counts as an entry, while a first position outside emits
nothing.  Re-registering the same circle (for example after the owning
automation is edited) keeps the current state.

Usage
-----
>>> tracker = GeofenceTracker()
>>> tracker.on_crossing(handle_event)
>>> tracker.register_geofence("auto-1", GeofenceRegion(38.72, -9.14, 150, "Home"))
>>> tracker.update_position(38.7201, -9.1401)
[GeofenceEvent(automation_id='auto-1', did_enter=True)]
"""

from __future__ import annotations

import abc
import math
from dataclasses import dataclass
from typing import Any, Callable

from loguru import logger

EARTH_RADIUS_M = 6_371_000.0


@dataclass(frozen=True)
class GeofenceRegion:
    """A named circle: centre in decimal degrees, radius in metres."""
    latitude: float
    longitude: float
    radius: float
    name: str = ""

    def distance_to(self, latitude: float, longitude: float) -> float:
        """Great-circle distance in metres from the centre (haversine)."""
        phi1 = math.radians(self.latitude)
        phi2 = math.radians(latitude)
        d_phi = math.radians(latitude - self.latitude)
        d_lambda = math.radians(longitude - self.longitude)
        a = (
            math.sin(d_phi / 2) ** 2
            + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
        )
        return 2 * EARTH_RADIUS_M * math.asin(min(1.0, math.sqrt(a)))

    def contains(self, latitude: float, longitude: float) -> bool:
        return self.distance_to(latitude, longitude) <= self.radius

    def same_area(self, other: GeofenceRegion) -> bool:
        """True if *other* covers the same circle (the name is ignored)."""
        return (
            self.latitude == other.latitude
            and self.longitude == other.longitude
            and self.radius == other.radius
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "latitude": self.latitude,
            "longitude": self.longitude,
            "radius": self.radius,
            "name": self.name,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> GeofenceRegion:
        return cls(
            latitude=float(d["latitude"]),
            longitude=float(d["longitude"]),
            radius=float(d["radius"]),
            name=d.get("name", ""),
        )


@dataclass(frozen=True)
class GeofenceEvent:
    """The user crossed the boundary of the geofence owned by an automation."""
    automation_id: str
    did_enter: bool


CrossingCallback = Callable[[GeofenceEvent], Any]


class LocationTracker(abc.ABC):
    """Monitors geofences and reports crossings to subscribers."""

    @abc.abstractmethod
    def register_geofence(self, automation_id: str, region: GeofenceRegion) -> None:
        """Start monitoring *region* on behalf of *automation_id*."""

    @abc.abstractmethod
    def unregister_geofence(self, automation_id: str) -> None:
        """Stop monitoring the region owned by *automation_id* (no-op if none)."""

    @abc.abstractmethod
    def on_crossing(self, callback: CrossingCallback) -> None:
        """Subscribe to ``GeofenceEvent`` notifications."""


class GeofenceTracker(LocationTracker):
    """Software geofencing driven by explicit position updates."""

    def __init__(self) -> None:
        self._regions: dict[str, GeofenceRegion] = {}  # automation_id → region
        self._inside: dict[str, bool] = {}
        self._callbacks: list[CrossingCallback] = []
        self.current_position: tuple[float, float] | None = None

    # -- registration --------------------------------------------------------

    def register_geofence(self, automation_id: str, region: GeofenceRegion) -> None:
        previous = self._regions.get(automation_id)
        self._regions[automation_id] = region
        # Same circle keeps its inside/outside state; a moved or resized one starts outside.
        if previous is None or not previous.same_area(region):
            self._inside.pop(automation_id, None)
        logger.info(
            f"[Geofence] monitoring '{region.name or automation_id}' "
            f"(radius {region.radius:.0f}m)"
        )

    def unregister_geofence(self, automation_id: str) -> None:
        if self._regions.pop(automation_id, None) is not None:
            self._inside.pop(automation_id, None)
            logger.info(f"[Geofence] removed {automation_id}")

    def regions(self) -> dict[str, GeofenceRegion]:
        return dict(self._regions)

    def is_inside(self, automation_id: str) -> bool:
        return self._inside.get(automation_id, False)

    # -- events --------------------------------------------------------------

    def on_crossing(self, callback: CrossingCallback) -> None:
        self._callbacks.append(callback)

    def _emit(self, event: GeofenceEvent) -> None:
        for cb in list(self._callbacks):
            try:
                cb(event)
            except Exception as exc:
                logger.error(f"[Geofence] crossing callback error: {exc}")

    def update_position(self, latitude: float, longitude: float) -> list[GeofenceEvent]:
        """Check all regions against a new position and emit crossings.

        Returns the events emitted for this update.
        """
        self.current_position = (latitude, longitude)
        events: list[GeofenceEvent] = []
        for automation_id, region in list(self._regions.items()):
            was_inside = self._inside.get(automation_id, False)
            now_inside = region.contains(latitude, longitude)
            if was_inside == now_inside:
                continue
            self._inside[automation_id] = now_inside
            logger.info(
                f"[Geofence] {region.name or automation_id}: "
                f"{'ENTERED' if now_inside else 'EXITED'}"
            )
            events.append(GeofenceEvent(automation_id, now_inside))

        for event in events:
            self._emit(event)
        return events

    def report_crossing(self, automation_id: str, did_enter: bool) -> GeofenceEvent | None:
        """Inject a crossing detected by an external region monitor."""
        if automation_id not in self._regions:
            logger.debug(f"[Geofence] crossing for unmonitored region {automation_id}")
            return None
        self._inside[automation_id] = did_enter
        event = GeofenceEvent(automation_id, did_enter)
        self._emit(event)
        return event
