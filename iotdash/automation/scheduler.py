"""Execution scheduling: when automations are evaluated and launched.

Three stimulus sources feed the same evaluate → execute pipeline:

- **tick**: every ``tick_interval`` seconds (and once at start) all enabled
  time-triggered automations are checked against the wall clock
- **device update**: each changed device snapshot re-checks the enabled
  sensor, gas and device-state automations against that one snapshot
- **geofence crossing**: each entry/exit event re-checks the location
  automation that owns the geofence

Evaluation only reads cached data and runs synchronously inside the
callback.  Each automation that fires is executed in its own supervised
task, so network commands never hold up the next tick or event.  An
automation whose previous execution is still running is not launched
again.

The scheduler subscribes itself to the registry and tracker through
``attach()``; nothing is broadcast implicitly.
"""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Callable

from loguru import logger

from iotdash.automation.evaluator import EvaluationContext, TriggerEvaluator
from iotdash.automation.executor import ActionExecutor
from iotdash.automation.models import (
    Automation,
    DeviceStateTrigger,
    GasAlarmTrigger,
    GeofenceTrigger,
    SensorThresholdTrigger,
    TimeTrigger,
)
from iotdash.automation.store import AutomationStore
from iotdash.devices.registry import DeviceRegistry, DeviceSnapshot
from iotdash.location.geofence import GeofenceEvent, LocationTracker
from iotdash.resilience import PeriodicTask, supervised_task

_SENSOR_TRIGGERS = (SensorThresholdTrigger, GasAlarmTrigger, DeviceStateTrigger)


class ExecutionScheduler:
    """Drives trigger evaluation from ticks, device updates and geofence events."""

    def __init__(
        self,
        store: AutomationStore,
        evaluator: TriggerEvaluator,
        executor: ActionExecutor,
        tick_interval: float = 60.0,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self._store = store
        self._evaluator = evaluator
        self._executor = executor
        self._clock = clock
        self._ticker = PeriodicTask("automation-tick", self.check_time_triggers, tick_interval)
        self._tasks: set[asyncio.Task] = set()
        self._in_flight: set[str] = set()

    # -- lifecycle -----------------------------------------------------------

    def start(self) -> None:
        """Check time triggers now, then on every tick."""
        self.check_time_triggers()
        self._ticker.start()
        logger.info("[Automation/Scheduler] started")

    async def stop(self) -> None:
        """Stop ticking and wait for running executions to finish."""
        self._ticker.stop()
        await self.wait_idle()
        logger.info("[Automation/Scheduler] stopped")

    @property
    def running(self) -> bool:
        return self._ticker.running

    def attach(self, registry: DeviceRegistry, tracker: LocationTracker | None = None) -> None:
        """Subscribe to device snapshot changes and geofence crossings."""
        registry.on_snapshot(self.handle_device_update)
        if tracker is not None:
            tracker.on_crossing(self.handle_geofence_event)

    async def wait_idle(self) -> None:
        """Wait until every launched execution has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def is_running(self, automation_id: str) -> bool:
        return automation_id in self._in_flight

    # -- stimulus handlers ---------------------------------------------------

    def check_time_triggers(self, now: datetime | None = None) -> list[Automation]:
        """Evaluate every time-triggered automation against the clock."""
        context = EvaluationContext(now=now or self._clock())
        candidates = [
            a for a in self._store.list_automations()
            if a.enabled and isinstance(a.trigger, TimeTrigger)
        ]
        fired = self._evaluate(candidates, context)
        for automation in fired:
            logger.info(f"[Automation] time trigger fired: '{automation.name}'")
        return fired

    def handle_device_update(
        self, snapshot: DeviceSnapshot, now: datetime | None = None
    ) -> list[Automation]:
        """Evaluate sensor, gas and device-state automations for one device."""
        context = EvaluationContext(now=now or self._clock(), device=snapshot)
        candidates = [
            a for a in self._store.list_automations()
            if a.enabled and isinstance(a.trigger, _SENSOR_TRIGGERS)
        ]
        fired = self._evaluate(candidates, context)
        for automation in fired:
            logger.info(
                f"[Automation] {automation.trigger_kind.value} trigger fired: "
                f"'{automation.name}' (device {snapshot.device_id})"
            )
        return fired

    def handle_geofence_event(
        self, event: GeofenceEvent, now: datetime | None = None
    ) -> list[Automation]:
        """Evaluate the location automation that owns the crossed geofence."""
        context = EvaluationContext(now=now or self._clock(), geofence=event)
        automation = self._store.get(event.automation_id)
        if automation is None or not isinstance(automation.trigger, GeofenceTrigger):
            logger.debug(
                f"[Automation/Scheduler] no location automation for geofence "
                f"{event.automation_id}"
            )
            return []
        fired = self._evaluate([automation], context)
        for a in fired:
            logger.info(
                f"[Automation] location trigger fired: '{a.name}' "
                f"({'enter' if event.did_enter else 'exit'})"
            )
        return fired

    # -- pipeline ------------------------------------------------------------

    def _evaluate(
        self, candidates: list[Automation], context: EvaluationContext
    ) -> list[Automation]:
        fired: list[Automation] = []
        for automation in candidates:
            if automation.automation_id in self._in_flight:
                logger.debug(
                    f"[Automation/Scheduler] '{automation.name}' still running, skipped"
                )
                continue
            if self._evaluator.should_fire(automation, context):
                fired.append(automation)
                self._launch(automation, context.timestamp)
        return fired

    def _launch(self, automation: Automation, now: float) -> None:
        self._in_flight.add(automation.automation_id)
        task = supervised_task(
            self._run(automation, now),
            name=f"automation-{automation.automation_id}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run(self, automation: Automation, now: float) -> None:
        try:
            await self._executor.execute(automation, now=now)
        finally:
            self._in_flight.discard(automation.automation_id)
