"""Trigger evaluation: decides whether an automation should fire now.

``TriggerEvaluator.should_fire`` is pure: it reads the automation and the
evaluation context and never touches devices, storage or the network.

Rules per trigger kind
----------------------
- time:          exact hour:minute match, weekday filter, 60 s re-fire guard
- temperature /
  humidity:      bound device's reading compared with the threshold
- gas:           bound device's gas status == WARNING (1)
- location:      geofence event for this automation in the configured direction
- device_state:  never fires
- sunrise/sunset: never fires

Sensor, gas and device-state automations share a cooldown: if one fired
less than ``cooldown_seconds`` ago it is skipped regardless of readings.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from loguru import logger

from iotdash.automation.models import (
    EQUALITY_EPSILON,
    Automation,
    ComparisonOp,
    GasAlarmTrigger,
    GeofenceDirection,
    GeofenceTrigger,
    SensorThresholdTrigger,
    SolarTrigger,
    TimeTrigger,
    Weekday,
)
from iotdash.devices.registry import DeviceSnapshot, GasStatus
from iotdash.location.geofence import GeofenceEvent

DEFAULT_COOLDOWN_SECONDS = 60

# Guard against firing twice inside the same matching minute.
TIME_REFIRE_GUARD_SECONDS = 60


def compare(value: float, threshold: float, op: ComparisonOp) -> bool:
    """Apply a comparison operator. Equality tolerates sensor noise."""
    if op == ComparisonOp.GT:
        return value > threshold
    if op == ComparisonOp.LT:
        return value < threshold
    if op == ComparisonOp.EQ:
        return abs(value - threshold) < EQUALITY_EPSILON
    if op == ComparisonOp.NE:
        return abs(value - threshold) >= EQUALITY_EPSILON
    raise ValueError(f"Unknown comparison operator {op!r}")


@dataclass(frozen=True)
class EvaluationContext:
    """What the evaluator may look at.

    ``device`` is the snapshot that just changed (sensor path);
    ``geofence`` is the crossing being handled (location path).
    """
    now: datetime
    device: DeviceSnapshot | None = None
    geofence: GeofenceEvent | None = None

    @property
    def timestamp(self) -> float:
        return self.now.timestamp()


class TriggerEvaluator:
    """Decides whether an automation should fire in a given context."""

    def __init__(self, cooldown_seconds: float = DEFAULT_COOLDOWN_SECONDS):
        self.cooldown_seconds = cooldown_seconds

    def should_fire(self, automation: Automation, context: EvaluationContext) -> bool:
        if not automation.enabled:
            return False

        trigger = automation.trigger
        if isinstance(trigger, TimeTrigger):
            return self._check_time(automation, trigger, context)
        if isinstance(trigger, GeofenceTrigger):
            return self._check_geofence(automation, trigger, context)
        if isinstance(trigger, SolarTrigger):
            return False

        # Sensor-event path: shared cooldown first.
        if self.in_cooldown(automation, context.timestamp):
            logger.debug(
                f"[Automation] '{automation.name}' skipped (cooldown: "
                f"{context.timestamp - automation.last_triggered_at:.0f}s "
                f"< {self.cooldown_seconds}s)"
            )
            return False

        if isinstance(trigger, SensorThresholdTrigger):
            return self._check_threshold(trigger, context.device)
        if isinstance(trigger, GasAlarmTrigger):
            return self._check_gas(trigger, context.device)
        # DeviceStateTrigger has no evaluation rule.
        return False

    # -- cooldown ------------------------------------------------------------

    def in_cooldown(self, automation: Automation, now: float) -> bool:
        """True if the automation fired less than ``cooldown_seconds`` ago."""
        if automation.last_triggered_at is None:
            return False
        return (now - automation.last_triggered_at) < self.cooldown_seconds

    # -- per-kind checks -----------------------------------------------------

    def _check_time(
        self, automation: Automation, trigger: TimeTrigger, context: EvaluationContext
    ) -> bool:
        now = context.now
        if trigger.weekdays and Weekday.of(now) not in trigger.weekdays:
            return False
        if now.hour != trigger.hour or now.minute != trigger.minute:
            return False
        last = automation.last_triggered_at
        if last is not None and (context.timestamp - last) < TIME_REFIRE_GUARD_SECONDS:
            return False
        return True

    def _check_threshold(
        self, trigger: SensorThresholdTrigger, device: DeviceSnapshot | None
    ) -> bool:
        if device is None or device.device_id != trigger.device_id:
            return False
        if device.sensor is None:
            return False
        value = getattr(device.sensor, trigger.metric)
        return compare(value, trigger.threshold, trigger.operator)

    def _check_gas(self, trigger: GasAlarmTrigger, device: DeviceSnapshot | None) -> bool:
        if device is None or device.device_id != trigger.device_id:
            return False
        if device.gas is None:
            return False
        # Only WARNING fires; DANGER (2) does not.
        return device.gas.status == GasStatus.WARNING

    def _check_geofence(
        self, automation: Automation, trigger: GeofenceTrigger, context: EvaluationContext
    ) -> bool:
        event = context.geofence
        if event is None or event.automation_id != automation.automation_id:
            return False
        if trigger.direction == GeofenceDirection.ENTER:
            return event.did_enter
        return not event.did_enter
