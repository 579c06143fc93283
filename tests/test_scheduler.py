"""Tests for iotdash.automation.scheduler — ticks, device updates, geofence events."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from iotdash.automation.evaluator import TriggerEvaluator
from iotdash.automation.models import (
    Automation,
    GasAlarmTrigger,
    GeofenceTrigger,
    NotifyAction,
    SensorThresholdTrigger,
    TimeTrigger,
)
from iotdash.automation.scheduler import ExecutionScheduler
from iotdash.automation.store import AutomationStore
from iotdash.devices.registry import (
    DeviceRegistry,
    DeviceSnapshot,
    GasReading,
    SensorReading,
)
from iotdash.location.geofence import GeofenceEvent, GeofenceRegion, GeofenceTracker
from iotdash.storage import MemoryBlobStore

MONDAY_0830 = datetime(2024, 6, 3, 8, 30, 0)
HOME = GeofenceRegion(38.72, -9.14, 150.0, "Home")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

async def _make_store(tracker=None, *automations: Automation) -> AutomationStore:
    store = AutomationStore(MemoryBlobStore(), tracker=tracker)
    for a in automations:
        await store.add(a)
    return store


def _make_executor() -> MagicMock:
    executor = MagicMock()
    executor.execute = AsyncMock()
    return executor


def _scheduler(store, executor, now: datetime = MONDAY_0830, **kw) -> ExecutionScheduler:
    return ExecutionScheduler(
        store, TriggerEvaluator(), executor, clock=lambda: now, **kw
    )


def _morning(automation_id: str = "morning", **kw) -> Automation:
    return Automation(
        name="Morning",
        trigger=TimeTrigger(8, 30),
        actions=[NotifyAction()],
        automation_id=automation_id,
        **kw,
    )


def _too_hot() -> Automation:
    return Automation(
        name="Too hot",
        trigger=SensorThresholdTrigger("temperature", "sensor-01", ">", 25.0),
        actions=[NotifyAction()],
        automation_id="hot",
    )


def _hot_snapshot(temperature: float = 27.0) -> DeviceSnapshot:
    return DeviceSnapshot(
        device_id="sensor-01",
        online=True,
        sensor=SensorReading(temperature=temperature, humidity=40.0),
    )


# ===========================================================================
# Time ticks
# ===========================================================================

class TestTimeTriggers:
    @pytest.mark.asyncio
    async def test_fires_matching_time_automations(self):
        store = await _make_store(None, _morning("a"), _morning("b"), _too_hot())
        executor = _make_executor()
        scheduler = _scheduler(store, executor)

        fired = scheduler.check_time_triggers()
        await scheduler.wait_idle()

        assert [a.automation_id for a in fired] == ["a", "b"]
        assert executor.execute.await_count == 2
        executor.execute.assert_any_await(store.get("a"), now=MONDAY_0830.timestamp())

    @pytest.mark.asyncio
    async def test_disabled_skipped(self):
        store = await _make_store(None, _morning(enabled=False))
        scheduler = _scheduler(store, _make_executor())
        assert scheduler.check_time_triggers() == []

    @pytest.mark.asyncio
    async def test_explicit_now(self):
        store = await _make_store(None, _morning())
        scheduler = _scheduler(store, _make_executor())
        assert scheduler.check_time_triggers(MONDAY_0830 + timedelta(hours=1)) == []

    @pytest.mark.asyncio
    async def test_in_flight_not_relaunched(self):
        store = await _make_store(None, _morning())
        release = asyncio.Event()
        executor = MagicMock()

        async def slow_execute(automation, now=None):
            await release.wait()

        executor.execute = AsyncMock(side_effect=slow_execute)
        scheduler = _scheduler(store, executor)

        assert len(scheduler.check_time_triggers()) == 1
        await asyncio.sleep(0)
        assert scheduler.is_running("morning")
        assert scheduler.check_time_triggers() == []

        release.set()
        await scheduler.wait_idle()
        assert not scheduler.is_running("morning")
        assert executor.execute.await_count == 1

    @pytest.mark.asyncio
    async def test_executor_failure_clears_in_flight(self):
        store = await _make_store(None, _morning())
        executor = _make_executor()
        executor.execute.side_effect = RuntimeError("boom")
        scheduler = _scheduler(store, executor)

        scheduler.check_time_triggers()
        await scheduler.wait_idle()
        assert not scheduler.is_running("morning")


# ===========================================================================
# Device updates
# ===========================================================================

class TestDeviceUpdates:
    @pytest.mark.asyncio
    async def test_threshold_fires(self):
        store = await _make_store(None, _too_hot(), _morning())
        executor = _make_executor()
        scheduler = _scheduler(store, executor)

        fired = scheduler.handle_device_update(_hot_snapshot())
        await scheduler.wait_idle()
        assert [a.automation_id for a in fired] == ["hot"]
        executor.execute.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_below_threshold(self):
        store = await _make_store(None, _too_hot())
        scheduler = _scheduler(store, _make_executor())
        assert scheduler.handle_device_update(_hot_snapshot(20.0)) == []

    @pytest.mark.asyncio
    async def test_time_automation_ignores_device_updates(self):
        store = await _make_store(None, _morning())
        scheduler = _scheduler(store, _make_executor())
        assert scheduler.handle_device_update(_hot_snapshot()) == []

    @pytest.mark.asyncio
    async def test_attached_registry_drives_evaluation(self):
        gas = Automation(
            name="Gas leak", trigger=GasAlarmTrigger("gas-01"), automation_id="gas"
        )
        store = await _make_store(None, gas)
        executor = _make_executor()
        scheduler = _scheduler(store, executor)
        registry = DeviceRegistry()
        scheduler.attach(registry)

        registry.upsert(DeviceSnapshot(device_id="gas-01", name="Kitchen"))
        registry.update_gas("gas-01", GasReading(mq2=900, status=1))
        await scheduler.wait_idle()

        executor.execute.assert_awaited_once()
        assert executor.execute.await_args.args[0].automation_id == "gas"

    @pytest.mark.asyncio
    async def test_cooldown_with_real_executor_state(self):
        store = await _make_store(None, _too_hot())
        executor = MagicMock()

        async def execute(automation, now=None):
            await store.record_execution(automation.automation_id, now)

        executor.execute = AsyncMock(side_effect=execute)
        scheduler = _scheduler(store, executor)

        scheduler.handle_device_update(_hot_snapshot(), MONDAY_0830)
        await scheduler.wait_idle()
        assert scheduler.handle_device_update(
            _hot_snapshot(), MONDAY_0830 + timedelta(seconds=30)
        ) == []
        assert len(scheduler.handle_device_update(
            _hot_snapshot(), MONDAY_0830 + timedelta(seconds=61)
        )) == 1
        await scheduler.wait_idle()
        assert store.get("hot").execution_count == 2


# ===========================================================================
# Geofence events
# ===========================================================================

class TestGeofenceEvents:
    @pytest.mark.asyncio
    async def test_crossing_fires_owner(self):
        tracker = GeofenceTracker()
        arrive = Automation(
            name="Welcome", trigger=GeofenceTrigger(HOME), automation_id="arrive"
        )
        store = await _make_store(tracker, arrive)
        executor = _make_executor()
        scheduler = _scheduler(store, executor)
        scheduler.attach(DeviceRegistry(), tracker)

        events = tracker.update_position(38.7201, -9.1401)
        await scheduler.wait_idle()

        assert events == [GeofenceEvent("arrive", True)]
        executor.execute.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_wrong_direction(self):
        arrive = Automation(
            name="Welcome", trigger=GeofenceTrigger(HOME), automation_id="arrive"
        )
        store = await _make_store(None, arrive)
        scheduler = _scheduler(store, _make_executor())
        assert scheduler.handle_geofence_event(GeofenceEvent("arrive", False)) == []

    @pytest.mark.asyncio
    async def test_unknown_owner(self):
        store = await _make_store(None, _morning())
        scheduler = _scheduler(store, _make_executor())
        assert scheduler.handle_geofence_event(GeofenceEvent("morning", True)) == []
        assert scheduler.handle_geofence_event(GeofenceEvent("missing", True)) == []


# ===========================================================================
# Lifecycle
# ===========================================================================

class TestLifecycle:
    @pytest.mark.asyncio
    async def test_start_checks_immediately(self):
        store = await _make_store(None, _morning())
        executor = _make_executor()
        scheduler = _scheduler(store, executor, tick_interval=3600)

        scheduler.start()
        assert scheduler.running
        await scheduler.stop()

        assert not scheduler.running
        executor.execute.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_tick_repeats(self):
        store = await _make_store(None)
        scheduler = _scheduler(store, _make_executor(), tick_interval=0.01)
        scheduler.check_time_triggers = MagicMock(return_value=[])
        scheduler._ticker._callback = scheduler.check_time_triggers

        scheduler.start()
        await asyncio.sleep(0.05)
        await scheduler.stop()
        assert scheduler.check_time_triggers.call_count >= 2
