"""Action execution: runs an automation's actions and records the outcome.

Actions run strictly in declared order and a failing action never stops
the ones after it.  Every action produces a short outcome string; the
execution record joins them with ``"; "`` and is successful only if every
action succeeded.

Failures are local to one action:

- resolution errors — the target device is not in the registry
- validation errors — a malformed colour or brightness value
- collaborator errors — the dispatcher or notifier raised

Commands are fire-and-forget; a dispatcher returning without error counts
as success even if the device never answers.
"""

from __future__ import annotations

import re
import time
from dataclasses import dataclass

from loguru import logger

from iotdash.automation.history import ExecutionHistory
from iotdash.automation.models import (
    Automation,
    AutomationAction,
    ExecutionRecord,
    NotifyAction,
    PowerAction,
    SendEmailAction,
    SetBrightnessAction,
    SetColorAction,
)
from iotdash.automation.store import AutomationStore
from iotdash.devices.commands import CommandDispatcher
from iotdash.devices.registry import DeviceRegistry, DeviceSnapshot
from iotdash.notify import Notifier

DEFAULT_NOTIFICATION_TEXT = "Automation triggered"

_HEX_COLOR = re.compile(r"^#?([0-9A-Fa-f]{6})$")


def parse_hex_color(value: str) -> tuple[int, int, int]:
    """Parse ``#RRGGBB`` (or ``RRGGBB``) into an RGB tuple.

    Raises ``ValueError`` on anything else.
    """
    match = _HEX_COLOR.match(value.strip()) if isinstance(value, str) else None
    if match is None:
        raise ValueError(f"Invalid color {value!r}")
    rgb = int(match.group(1), 16)
    return (rgb >> 16) & 0xFF, (rgb >> 8) & 0xFF, rgb & 0xFF


def parse_brightness(value: str | int) -> int:
    """Parse an integer percentage 0-100. Raises ``ValueError`` otherwise."""
    if isinstance(value, bool):
        raise ValueError(f"Invalid brightness {value!r}")
    brightness = int(value.strip()) if isinstance(value, str) else int(value)
    if isinstance(value, float) and value != brightness:
        raise ValueError(f"Invalid brightness {value!r}")
    if not 0 <= brightness <= 100:
        raise ValueError(f"Brightness {brightness} out of range 0-100")
    return brightness


@dataclass(frozen=True)
class ActionResult:
    success: bool
    message: str


class ActionExecutor:
    """Applies actions through the command dispatcher and notifier.

    After running the actions it stamps the automation's run-state in the
    store and appends the record to the history log.  Both writes may raise
    ``StorageError``; the history append is attempted even when the run-state
    write fails.
    """

    def __init__(
        self,
        registry: DeviceRegistry,
        dispatcher: CommandDispatcher,
        notifier: Notifier,
        store: AutomationStore,
        history: ExecutionHistory,
    ):
        self._registry = registry
        self._dispatcher = dispatcher
        self._notifier = notifier
        self._store = store
        self._history = history

    async def execute(self, automation: Automation, now: float | None = None) -> ExecutionRecord:
        """Run every action of *automation* and persist the outcome."""
        logger.info(f"[Automation] running '{automation.name}' ({automation.automation_id})")

        results: list[ActionResult] = []
        for action in automation.actions:
            result = await self.run_action(action, automation.name)
            if not result.success:
                logger.warning(
                    f"[Automation] '{automation.name}' action {action.kind.value} "
                    f"failed: {result.message}"
                )
            results.append(result)

        now = time.time() if now is None else now
        record = ExecutionRecord(
            automation_id=automation.automation_id,
            timestamp=now,
            success=all(r.success for r in results),
            message="; ".join(r.message for r in results),
        )

        # History is appended even if the run-state write fails.
        try:
            await self._store.record_execution(automation.automation_id, now)
        finally:
            await self._history.append(record)
        logger.info(
            f"[Automation] '{automation.name}' finished "
            f"({'ok' if record.success else 'with failures'}): {record.message}"
        )
        return record

    # -- single actions ------------------------------------------------------

    async def run_action(self, action: AutomationAction, automation_name: str) -> ActionResult:
        """Run one action. Never raises for resolution/validation/collaborator errors."""
        try:
            if isinstance(action, PowerAction):
                return await self._power(action)
            if isinstance(action, SetColorAction):
                return await self._color(action)
            if isinstance(action, SetBrightnessAction):
                return await self._brightness(action)
            if isinstance(action, NotifyAction):
                body = action.message or DEFAULT_NOTIFICATION_TEXT
                await self._notifier.notify(automation_name, body)
                return ActionResult(True, "Notification sent")
            if isinstance(action, SendEmailAction):
                # Email delivery is not implemented; the action always reports success.
                return ActionResult(True, "Email scheduled")
        except Exception as exc:
            logger.error(f"[Automation] action {action.kind.value} raised: {exc!r}")
            return ActionResult(False, f"Command failed: {exc}")
        return ActionResult(False, f"Unsupported action {type(action).__name__}")

    def _resolve(self, device_id: str) -> DeviceSnapshot | None:
        return self._registry.current_snapshot(device_id)

    async def _power(self, action: PowerAction) -> ActionResult:
        device = self._resolve(action.device_id)
        if device is None:
            return ActionResult(False, f"Device not found: {action.device_id}")
        await self._dispatcher.send_power(device.device_id, action.on)
        verb = "Turned on" if action.on else "Turned off"
        return ActionResult(True, f"{verb}: {device.display_name}")

    async def _color(self, action: SetColorAction) -> ActionResult:
        device = self._resolve(action.device_id)
        if device is None:
            return ActionResult(False, f"Device not found: {action.device_id}")
        try:
            r, g, b = parse_hex_color(action.color)
        except ValueError:
            return ActionResult(False, f"Invalid color: {action.color}")
        await self._dispatcher.send_color(device.device_id, r, g, b, 100)
        return ActionResult(True, f"Color changed: {device.display_name}")

    async def _brightness(self, action: SetBrightnessAction) -> ActionResult:
        device = self._resolve(action.device_id)
        if device is None:
            return ActionResult(False, f"Device not found: {action.device_id}")
        try:
            brightness = parse_brightness(action.brightness)
        except (ValueError, TypeError):
            return ActionResult(False, f"Invalid brightness: {action.brightness}")
        if device.led is not None:
            r, g, b = device.led.r, device.led.g, device.led.b
        else:
            r, g, b = 255, 255, 255
        await self._dispatcher.send_color(device.device_id, r, g, b, brightness)
        return ActionResult(True, f"Brightness: {brightness}%")
