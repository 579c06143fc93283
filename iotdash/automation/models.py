"""Automation data model: triggers, actions, run-state and execution records.

Triggers and actions are tagged unions: one frozen dataclass per kind, so an
automation can never carry fields that contradict its declared kind.  The
persisted form of each variant is a dict with a ``"kind"`` discriminator.

Examples
--------
"At 08:30 on weekdays, turn on the hallway LED":
    Automation(
        name="Morning light",
        trigger=TimeTrigger(8, 30, weekdays=frozenset({1, 2, 3, 4, 5})),
        actions=[PowerAction("led-01", on=True)],
    )

"If the living room goes above 28°C, notify me":
    Automation(
        name="Too hot",
        trigger=SensorThresholdTrigger("temperature", "sensor-01", ">", 28.0),
        actions=[NotifyAction("Living room is above 28°C")],
    )
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, IntEnum
from typing import TYPE_CHECKING, Any, ClassVar, Union

from iotdash.location.geofence import GeofenceRegion

if TYPE_CHECKING:
    from iotdash.devices.registry import DeviceRegistry


def _new_id() -> str:
    return uuid.uuid4().hex


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------

class ComparisonOp(str, Enum):
    """Operators for sensor-threshold triggers."""
    GT = ">"
    LT = "<"
    EQ = "="    # |value - threshold| < EQUALITY_EPSILON
    NE = "!="   # |value - threshold| >= EQUALITY_EPSILON


EQUALITY_EPSILON = 0.1

_OP_ALIASES: dict[str, ComparisonOp] = {
    "≠": ComparisonOp.NE,
    "==": ComparisonOp.EQ,
    "gt": ComparisonOp.GT,
    "lt": ComparisonOp.LT,
    "eq": ComparisonOp.EQ,
    "ne": ComparisonOp.NE,
}


def parse_operator(value: str | ComparisonOp) -> ComparisonOp:
    """Parse an operator, accepting the legacy ``≠`` and word spellings."""
    if isinstance(value, ComparisonOp):
        return value
    if value in _OP_ALIASES:
        return _OP_ALIASES[value]
    try:
        return ComparisonOp(value)
    except ValueError:
        raise ValueError(f"Unknown comparison operator {value!r}") from None


class TriggerKind(str, Enum):
    TIME = "time"
    TEMPERATURE = "temperature"
    HUMIDITY = "humidity"
    GAS = "gas"
    LOCATION = "location"
    DEVICE_STATE = "device_state"
    SUNRISE = "sunrise"
    SUNSET = "sunset"


class ActionKind(str, Enum):
    TURN_ON = "turn_on"
    TURN_OFF = "turn_off"
    SET_COLOR = "set_color"
    SET_BRIGHTNESS = "set_brightness"
    NOTIFY = "notify"
    SEND_EMAIL = "send_email"


class Weekday(IntEnum):
    """Day numbering used in persisted schedules (Sunday first)."""
    SUNDAY = 0
    MONDAY = 1
    TUESDAY = 2
    WEDNESDAY = 3
    THURSDAY = 4
    FRIDAY = 5
    SATURDAY = 6

    @classmethod
    def of(cls, moment: datetime) -> Weekday:
        return cls(moment.isoweekday() % 7)

    @property
    def short_name(self) -> str:
        return self.name[:3].title()


class GeofenceDirection(str, Enum):
    ENTER = "enter"
    EXIT = "exit"


# ---------------------------------------------------------------------------
# Triggers
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class TimeTrigger:
    """Fires at an exact wall-clock minute, optionally only on some weekdays."""
    hour: int
    minute: int
    weekdays: frozenset[int] = frozenset()  # Weekday values; empty = every day

    kind: ClassVar[TriggerKind] = TriggerKind.TIME

    def __post_init__(self) -> None:
        object.__setattr__(self, "weekdays", frozenset(int(d) for d in self.weekdays))

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "hour": self.hour,
            "minute": self.minute,
            "weekdays": sorted(self.weekdays),
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> TimeTrigger:
        return cls(
            hour=int(d["hour"]),
            minute=int(d["minute"]),
            weekdays=frozenset(d.get("weekdays") or ()),
        )


@dataclass(frozen=True)
class SensorThresholdTrigger:
    """Compares a temperature or humidity reading against a threshold."""
    metric: str              # "temperature" or "humidity"
    device_id: str
    operator: ComparisonOp
    threshold: float

    METRICS: ClassVar[frozenset[str]] = frozenset(
        {TriggerKind.TEMPERATURE.value, TriggerKind.HUMIDITY.value}
    )

    def __post_init__(self) -> None:
        metric = getattr(self.metric, "value", self.metric)
        if metric not in self.METRICS:
            raise ValueError(f"Unsupported sensor metric {self.metric!r}")
        object.__setattr__(self, "metric", metric)
        object.__setattr__(self, "operator", parse_operator(self.operator))
        object.__setattr__(self, "threshold", float(self.threshold))

    @property
    def kind(self) -> TriggerKind:
        return TriggerKind(self.metric)

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "device_id": self.device_id,
            "operator": self.operator.value,
            "threshold": self.threshold,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> SensorThresholdTrigger:
        return cls(
            metric=d["kind"],
            device_id=d["device_id"],
            operator=d["operator"],
            threshold=d["threshold"],
        )


@dataclass(frozen=True)
class GasAlarmTrigger:
    """Fires when a gas sensor reports the warning status."""
    device_id: str

    kind: ClassVar[TriggerKind] = TriggerKind.GAS

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind.value, "device_id": self.device_id}

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> GasAlarmTrigger:
        return cls(device_id=d["device_id"])


@dataclass(frozen=True)
class GeofenceTrigger:
    """Fires when the user enters or leaves a region."""
    region: GeofenceRegion
    direction: GeofenceDirection = GeofenceDirection.ENTER

    kind: ClassVar[TriggerKind] = TriggerKind.LOCATION

    def __post_init__(self) -> None:
        object.__setattr__(self, "direction", GeofenceDirection(self.direction))

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "region": self.region.to_dict(),
            "direction": self.direction.value,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> GeofenceTrigger:
        return cls(
            region=GeofenceRegion.from_dict(d["region"]),
            direction=d.get("direction", GeofenceDirection.ENTER),
        )


@dataclass(frozen=True)
class DeviceStateTrigger:
    """Declared for device state changes; currently never fires."""
    device_id: str

    kind: ClassVar[TriggerKind] = TriggerKind.DEVICE_STATE

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind.value, "device_id": self.device_id}

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> DeviceStateTrigger:
        return cls(device_id=d["device_id"])


@dataclass(frozen=True)
class SolarTrigger:
    """Sunrise / sunset. Persisted and described, but not evaluated."""
    event: str               # "sunrise" or "sunset"

    def __post_init__(self) -> None:
        event = getattr(self.event, "value", self.event)
        if event not in (TriggerKind.SUNRISE.value, TriggerKind.SUNSET.value):
            raise ValueError(f"Unsupported solar event {self.event!r}")
        object.__setattr__(self, "event", event)

    @property
    def kind(self) -> TriggerKind:
        return TriggerKind(self.event)

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind.value}

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> SolarTrigger:
        return cls(event=d["kind"])


Trigger = Union[
    TimeTrigger,
    SensorThresholdTrigger,
    GasAlarmTrigger,
    GeofenceTrigger,
    DeviceStateTrigger,
    SolarTrigger,
]

_TRIGGER_DECODERS: dict[str, Any] = {
    TriggerKind.TIME: TimeTrigger.from_dict,
    TriggerKind.TEMPERATURE: SensorThresholdTrigger.from_dict,
    TriggerKind.HUMIDITY: SensorThresholdTrigger.from_dict,
    TriggerKind.GAS: GasAlarmTrigger.from_dict,
    TriggerKind.LOCATION: GeofenceTrigger.from_dict,
    TriggerKind.DEVICE_STATE: DeviceStateTrigger.from_dict,
    TriggerKind.SUNRISE: SolarTrigger.from_dict,
    TriggerKind.SUNSET: SolarTrigger.from_dict,
}


def trigger_from_dict(d: dict[str, Any]) -> Trigger:
    """Decode a trigger from its persisted form. Unknown kinds raise ValueError."""
    decoder = _TRIGGER_DECODERS.get(d.get("kind"))
    if decoder is None:
        raise ValueError(f"Unknown trigger kind {d.get('kind')!r}")
    return decoder(d)


# ---------------------------------------------------------------------------
# Actions
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class PowerAction:
    """Switch a device on (``TurnOn``) or off (``TurnOff``)."""
    device_id: str
    on: bool
    action_id: str = field(default_factory=_new_id)

    @property
    def kind(self) -> ActionKind:
        return ActionKind.TURN_ON if self.on else ActionKind.TURN_OFF

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "action_id": self.action_id,
            "device_id": self.device_id,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> PowerAction:
        return cls(
            device_id=d["device_id"],
            on=d["kind"] == ActionKind.TURN_ON.value,
            action_id=d.get("action_id") or _new_id(),
        )


@dataclass(frozen=True)
class SetColorAction:
    """Set an LED colour. ``color`` is a hex string, validated when run."""
    device_id: str
    color: str
    action_id: str = field(default_factory=_new_id)

    kind: ClassVar[ActionKind] = ActionKind.SET_COLOR

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "action_id": self.action_id,
            "device_id": self.device_id,
            "color": self.color,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> SetColorAction:
        return cls(
            device_id=d["device_id"],
            color=d.get("color", ""),
            action_id=d.get("action_id") or _new_id(),
        )


@dataclass(frozen=True)
class SetBrightnessAction:
    """Set an LED brightness percentage. Parsed as an integer when run."""
    device_id: str
    brightness: str | int
    action_id: str = field(default_factory=_new_id)

    kind: ClassVar[ActionKind] = ActionKind.SET_BRIGHTNESS

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "action_id": self.action_id,
            "device_id": self.device_id,
            "brightness": self.brightness,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> SetBrightnessAction:
        return cls(
            device_id=d["device_id"],
            brightness=d.get("brightness", ""),
            action_id=d.get("action_id") or _new_id(),
        )


@dataclass(frozen=True)
class NotifyAction:
    """Send a notification titled with the automation's name."""
    message: str | None = None
    action_id: str = field(default_factory=_new_id)

    kind: ClassVar[ActionKind] = ActionKind.NOTIFY

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"kind": self.kind.value, "action_id": self.action_id}
        if self.message is not None:
            d["message"] = self.message
        return d

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> NotifyAction:
        return cls(message=d.get("message"), action_id=d.get("action_id") or _new_id())


@dataclass(frozen=True)
class SendEmailAction:
    """Email action. Accepted and recorded as scheduled; nothing is sent."""
    recipient: str = ""
    message: str = ""
    action_id: str = field(default_factory=_new_id)

    kind: ClassVar[ActionKind] = ActionKind.SEND_EMAIL

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "action_id": self.action_id,
            "recipient": self.recipient,
            "message": self.message,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> SendEmailAction:
        return cls(
            recipient=d.get("recipient", ""),
            message=d.get("message", ""),
            action_id=d.get("action_id") or _new_id(),
        )


AutomationAction = Union[
    PowerAction,
    SetColorAction,
    SetBrightnessAction,
    NotifyAction,
    SendEmailAction,
]

_ACTION_DECODERS: dict[str, Any] = {
    ActionKind.TURN_ON: PowerAction.from_dict,
    ActionKind.TURN_OFF: PowerAction.from_dict,
    ActionKind.SET_COLOR: SetColorAction.from_dict,
    ActionKind.SET_BRIGHTNESS: SetBrightnessAction.from_dict,
    ActionKind.NOTIFY: NotifyAction.from_dict,
    ActionKind.SEND_EMAIL: SendEmailAction.from_dict,
}

_ACTION_LABELS: dict[ActionKind, str] = {
    ActionKind.TURN_ON: "Turn on",
    ActionKind.TURN_OFF: "Turn off",
    ActionKind.SET_COLOR: "LED color",
    ActionKind.SET_BRIGHTNESS: "Set brightness",
    ActionKind.NOTIFY: "Notify",
    ActionKind.SEND_EMAIL: "Send email",
}


def action_from_dict(d: dict[str, Any]) -> AutomationAction:
    """Decode an action from its persisted form. Unknown kinds raise ValueError."""
    decoder = _ACTION_DECODERS.get(d.get("kind"))
    if decoder is None:
        raise ValueError(f"Unknown action kind {d.get('kind')!r}")
    return decoder(d)


# ---------------------------------------------------------------------------
# Automation
# ---------------------------------------------------------------------------

@dataclass
class Automation:
    """A named rule: one trigger, an ordered list of actions, and run-state.

    ``icon`` and ``color`` are presentation hints carried through unchanged.
    """
    name: str
    trigger: Trigger
    actions: list[AutomationAction] = field(default_factory=list)
    automation_id: str = field(default_factory=_new_id)
    enabled: bool = True
    icon: str = "bolt.fill"
    color: str = "blue"
    last_triggered_at: float | None = None  # Unix timestamp; None = never fired
    execution_count: int = 0

    @property
    def trigger_kind(self) -> TriggerKind:
        return self.trigger.kind

    def device_ids(self) -> set[str]:
        """Device ids referenced by the trigger and the actions."""
        ids = {a.device_id for a in self.actions if hasattr(a, "device_id")}
        trigger_device = getattr(self.trigger, "device_id", None)
        if trigger_device:
            ids.add(trigger_device)
        return ids

    def to_dict(self) -> dict[str, Any]:
        return {
            "automation_id": self.automation_id,
            "name": self.name,
            "enabled": self.enabled,
            "icon": self.icon,
            "color": self.color,
            "trigger": self.trigger.to_dict(),
            "actions": [a.to_dict() for a in self.actions],
            "last_triggered_at": self.last_triggered_at,
            "execution_count": self.execution_count,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> Automation:
        return cls(
            automation_id=d["automation_id"],
            name=d.get("name", ""),
            enabled=d.get("enabled", True),
            icon=d.get("icon", "bolt.fill"),
            color=d.get("color", "blue"),
            trigger=trigger_from_dict(d["trigger"]),
            actions=[action_from_dict(a) for a in d.get("actions", [])],
            last_triggered_at=d.get("last_triggered_at"),
            execution_count=int(d.get("execution_count", 0)),
        )

    # -- descriptions --------------------------------------------------------

    def describe_trigger(self) -> str:
        """Short human-readable description of the trigger."""
        t = self.trigger
        if isinstance(t, TimeTrigger):
            text = f"{t.hour:02d}:{t.minute:02d}"
            if t.weekdays:
                days = ", ".join(
                    Weekday(d).short_name if 0 <= d <= 6 else f"day {d}"
                    for d in sorted(t.weekdays)
                )
                text += f" ({days})"
            return text
        if isinstance(t, SensorThresholdTrigger):
            if t.metric == TriggerKind.TEMPERATURE.value:
                return f"Temperature {t.operator.value} {t.threshold:.1f}°C"
            return f"Humidity {t.operator.value} {t.threshold:.0f}%"
        if isinstance(t, GasAlarmTrigger):
            return "Gas detected"
        if isinstance(t, GeofenceTrigger):
            verb = "Arrive at" if t.direction == GeofenceDirection.ENTER else "Leave"
            return f"{verb} {t.region.name or 'location'}"
        if isinstance(t, SolarTrigger):
            return "At sunrise" if t.event == TriggerKind.SUNRISE.value else "At sunset"
        return "Device state"

    def describe_actions(self) -> str:
        if not self.actions:
            return "No actions"
        return ", ".join(_ACTION_LABELS[a.kind] for a in self.actions)


# ---------------------------------------------------------------------------
# Execution record
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ExecutionRecord:
    """Outcome of one automation firing.

    ``success`` is the AND of every action's result; ``message`` joins the
    per-action outcome strings with ``"; "``.
    """
    automation_id: str
    timestamp: float
    success: bool
    message: str = ""
    record_id: str = field(default_factory=_new_id)

    def to_dict(self) -> dict[str, Any]:
        return {
            "record_id": self.record_id,
            "automation_id": self.automation_id,
            "timestamp": self.timestamp,
            "success": self.success,
            "message": self.message,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> ExecutionRecord:
        return cls(
            record_id=d["record_id"],
            automation_id=d["automation_id"],
            timestamp=float(d["timestamp"]),
            success=bool(d["success"]),
            message=d.get("message") or "",
        )


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

def validate_automation(
    automation: Automation,
    registry: DeviceRegistry | None = None,
) -> list[str]:
    """Check an automation for obviously broken configuration.

    Device references are checked only when a registry is given.  Returns a
    list of error strings; an empty list means valid.
    """
    errors: list[str] = []

    if not automation.automation_id:
        errors.append("Automation must have a non-empty automation_id")
    if not automation.name.strip():
        errors.append("Automation must have a name")

    t = automation.trigger
    if isinstance(t, TimeTrigger):
        if not 0 <= t.hour <= 23:
            errors.append(f"Trigger hour must be 0-23, got {t.hour}")
        if not 0 <= t.minute <= 59:
            errors.append(f"Trigger minute must be 0-59, got {t.minute}")
        bad_days = sorted(d for d in t.weekdays if not 0 <= d <= 6)
        if bad_days:
            errors.append(f"Unknown weekdays {bad_days} (expected 0=Sunday … 6=Saturday)")
    elif isinstance(t, GeofenceTrigger):
        if t.region.radius <= 0:
            errors.append(f"Geofence radius must be positive, got {t.region.radius}")
        if not -90 <= t.region.latitude <= 90 or not -180 <= t.region.longitude <= 180:
            errors.append("Geofence centre is not a valid coordinate")

    if registry is not None:
        trigger_device = getattr(t, "device_id", None)
        if trigger_device and registry.current_snapshot(trigger_device) is None:
            errors.append(f"Trigger: Device '{trigger_device}' not found in registry")
        for i, action in enumerate(automation.actions):
            device_id = getattr(action, "device_id", None)
            if device_id is not None and registry.current_snapshot(device_id) is None:
                errors.append(f"Action[{i}]: Device '{device_id}' not found in registry")

    return errors
