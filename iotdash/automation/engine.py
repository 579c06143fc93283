"""Automation engine facade.

Wires the store, evaluator, executor, history log and scheduler around the
external collaborators (device registry, location tracker, command
dispatcher, notifier, blob store) and exposes the operations a UI layer
needs.

Usage
-----
>>> engine = AutomationEngine(
...     config, registry, tracker,
...     UDPCommandDispatcher(registry), LoggingNotifier(),
...     FileBlobStore(config.data_path),
... )
>>> await engine.start()
>>> await engine.add_automation(automation)
>>> ...
>>> await engine.stop()
"""

from __future__ import annotations

import time
from datetime import datetime
from typing import Callable

from loguru import logger

from iotdash.automation.evaluator import TriggerEvaluator
from iotdash.automation.executor import ActionExecutor
from iotdash.automation.history import ExecutionHistory
from iotdash.automation.models import Automation, ExecutionRecord, validate_automation
from iotdash.automation.scheduler import ExecutionScheduler
from iotdash.automation.store import AutomationStore
from iotdash.config.schema import Config
from iotdash.devices.commands import CommandDispatcher
from iotdash.devices.registry import DeviceRegistry
from iotdash.location.geofence import LocationTracker
from iotdash.notify import Notifier
from iotdash.storage import BlobStore


class AutomationEngine:
    """Owns the automation working set and runs it against live devices."""

    def __init__(
        self,
        config: Config,
        registry: DeviceRegistry,
        tracker: LocationTracker | None,
        dispatcher: CommandDispatcher,
        notifier: Notifier,
        blob_store: BlobStore,
        *,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.config = config
        self.registry = registry
        self.tracker = tracker
        self.store = AutomationStore(
            blob_store, key=config.storage.automations_key, tracker=tracker
        )
        self.history = ExecutionHistory(
            blob_store,
            key=config.storage.history_key,
            limit=config.automation.history_limit,
        )
        self.evaluator = TriggerEvaluator(cooldown_seconds=config.automation.cooldown_seconds)
        self.executor = ActionExecutor(registry, dispatcher, notifier, self.store, self.history)
        self.scheduler = ExecutionScheduler(
            self.store,
            self.evaluator,
            self.executor,
            tick_interval=config.automation.tick_interval_seconds,
            clock=clock,
        )
        self._loaded = False
        self._attached = False

    # -- lifecycle -----------------------------------------------------------

    def load(self) -> None:
        """Load automations and history from the blob store."""
        self.store.load()
        self.history.load()
        self._loaded = True

    async def start(self) -> None:
        """Load state, register geofences, subscribe to events, start ticking."""
        if not self._loaded:
            self.load()
        geofences = self.store.register_geofences()
        if not self._attached:
            self.scheduler.attach(self.registry, self.tracker)
            self._attached = True
        self.scheduler.start()
        logger.info(
            f"[Automation] engine started: {len(self.store)} automations, "
            f"{geofences} geofences, {len(self.history)} history records"
        )

    async def stop(self) -> None:
        await self.scheduler.stop()
        logger.info("[Automation] engine stopped")

    # -- CRUD ----------------------------------------------------------------

    async def add_automation(self, automation: Automation) -> Automation:
        return await self.store.add(automation)

    async def update_automation(self, automation: Automation) -> Automation | None:
        return await self.store.update(automation)

    async def delete_automation(self, automation_id: str) -> bool:
        return await self.store.delete(automation_id)

    async def toggle_automation(self, automation_id: str) -> bool | None:
        return await self.store.toggle_enabled(automation_id)

    def get_automation(self, automation_id: str) -> Automation | None:
        return self.store.get(automation_id)

    def list_automations(self) -> list[Automation]:
        return self.store.list_automations()

    def validate(self, automation: Automation) -> list[str]:
        """Configuration errors for *automation*, including unknown devices."""
        return validate_automation(automation, self.registry)

    # -- manual execution ----------------------------------------------------

    async def run_now(self, automation_id: str) -> ExecutionRecord | None:
        """Execute an automation immediately, bypassing its trigger.

        Returns None if the automation does not exist.
        """
        automation = self.store.get(automation_id)
        if automation is None:
            return None
        logger.info(f"[Automation] manual run: '{automation.name}'")
        return await self.executor.execute(automation)

    # -- summaries -----------------------------------------------------------

    def describe_automations(self) -> str:
        """Human-readable summary of all automations.

        Example output::

            Automations (1 enabled / 2 total):
              - [ON] "Morning light": 08:30 (Mon, Wed) → Turn on (fired 3x, last 2h ago)
              - [OFF] "Too hot": Temperature > 28.0°C → Notify
        """
        automations = self.store.list_automations()
        if not automations:
            return "No automations configured."

        enabled = sum(1 for a in automations if a.enabled)
        lines = [f"Automations ({enabled} enabled / {len(automations)} total):"]
        for a in automations:
            status = ""
            if a.last_triggered_at is not None:
                ago = int(time.time() - a.last_triggered_at)
                if ago < 60:
                    when = f"{ago}s ago"
                elif ago < 3600:
                    when = f"{ago // 60}min ago"
                else:
                    when = f"{ago // 3600}h ago"
                status = f" (fired {a.execution_count}x, last {when})"
            lines.append(
                f"  - [{'ON' if a.enabled else 'OFF'}] \"{a.name}\": "
                f"{a.describe_trigger()} → {a.describe_actions()}{status}"
            )
        return "\n".join(lines)
