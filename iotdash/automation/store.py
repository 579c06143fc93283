"""Durable automation collection.

The store keeps the full collection in memory and re-serializes all of it
to one blob on every mutation.  Mutations are serialized by an
``asyncio.Lock``; there is exactly one writer.

Each mutation stages a new collection, writes it, and only then makes it
live: if the write raises ``StorageError`` the in-memory collection is
left exactly as it was on disk.

Location-triggered automations own a geofence in the location tracker:
``add`` registers it, ``update`` re-registers it and ``delete`` releases it.
"""

from __future__ import annotations

import asyncio
import json
import time
from dataclasses import replace

from loguru import logger

from iotdash.automation.models import Automation, GeofenceTrigger
from iotdash.location.geofence import LocationTracker
from iotdash.storage import BlobStore


class AutomationStore:
    """Read-modify-write owner of the persisted automations."""

    def __init__(
        self,
        blob_store: BlobStore,
        key: str = "automations",
        tracker: LocationTracker | None = None,
    ):
        self._blobs = blob_store
        self.key = key
        self.tracker = tracker
        self._automations: dict[str, Automation] = {}  # automation_id → automation, insertion-ordered
        self._lock = asyncio.Lock()

    # -- persistence ---------------------------------------------------------

    def load(self) -> None:
        """Load automations. Missing or unreadable data → empty collection."""
        self._automations = {}
        raw = self._blobs.load_blob(self.key)
        if not raw or not raw.strip():
            logger.debug(f"[Automation] no stored automations under '{self.key}'")
            return
        try:
            data = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            logger.error(f"[Automation] failed to decode '{self.key}': {exc}")
            return

        entries = data.get("automations") if isinstance(data, dict) else data
        if not isinstance(entries, list):
            logger.error(
                f"[Automation] unexpected layout in '{self.key}' "
                f"({type(entries).__name__}), starting empty"
            )
            return
        for d in entries:
            try:
                automation = Automation.from_dict(d)
            except (AttributeError, KeyError, TypeError, ValueError) as exc:
                logger.warning(f"[Automation] skipping malformed automation: {exc!r}")
                continue
            self._automations[automation.automation_id] = automation
        logger.info(f"[Automation] loaded {len(self._automations)} automations")

    def _save_sync(self, automations: dict[str, Automation]) -> None:
        data = {
            "version": 1,
            "updated_at": time.time(),
            "automations": [a.to_dict() for a in automations.values()],
        }
        self._blobs.save_blob(
            self.key, json.dumps(data, indent=2, ensure_ascii=False).encode("utf-8")
        )

    def _commit(self, staged: dict[str, Automation]) -> None:
        """Write *staged*, then make it the live collection. Call under the lock."""
        self._save_sync(staged)
        self._automations = staged

    # -- geofences -----------------------------------------------------------

    def _sync_geofence(self, automation: Automation) -> None:
        if self.tracker is None:
            return
        if isinstance(automation.trigger, GeofenceTrigger):
            self.tracker.register_geofence(automation.automation_id, automation.trigger.region)
        else:
            self.tracker.unregister_geofence(automation.automation_id)

    def register_geofences(self) -> int:
        """Register the geofence of every location automation. Returns the count."""
        count = 0
        for automation in self._automations.values():
            if isinstance(automation.trigger, GeofenceTrigger):
                self._sync_geofence(automation)
                count += 1
        return count

    # -- CRUD ----------------------------------------------------------------

    async def add(self, automation: Automation) -> Automation:
        """Add a new automation.

        Raises ``ValueError`` if one with the same id already exists.
        """
        async with self._lock:
            if automation.automation_id in self._automations:
                raise ValueError(f"Automation '{automation.automation_id}' already exists")
            self._commit({**self._automations, automation.automation_id: automation})
        if isinstance(automation.trigger, GeofenceTrigger):
            self._sync_geofence(automation)
        logger.info(f"[Automation] added '{automation.name}' ({automation.automation_id})")
        return automation

    async def update(self, automation: Automation) -> Automation | None:
        """Replace the automation with the same id. Returns None if unknown."""
        async with self._lock:
            if automation.automation_id not in self._automations:
                return None
            self._commit({**self._automations, automation.automation_id: automation})
        self._sync_geofence(automation)
        logger.info(f"[Automation] updated '{automation.name}' ({automation.automation_id})")
        return automation

    async def delete(self, automation_id: str) -> bool:
        """Remove an automation and release its geofence. Returns True if it existed."""
        async with self._lock:
            automation = self._automations.get(automation_id)
            if automation is None:
                return False
            self._commit(
                {k: v for k, v in self._automations.items() if k != automation_id}
            )
        if self.tracker is not None:
            self.tracker.unregister_geofence(automation_id)
        logger.info(f"[Automation] removed '{automation.name}' ({automation_id})")
        return True

    async def toggle_enabled(self, automation_id: str) -> bool | None:
        """Flip the enabled flag. Returns the new value, or None if unknown."""
        async with self._lock:
            current = self._automations.get(automation_id)
            if current is None:
                return None
            toggled = replace(current, enabled=not current.enabled)
            self._commit({**self._automations, automation_id: toggled})
        logger.info(
            f"[Automation] {'ENABLED' if toggled.enabled else 'DISABLED'}: "
            f"'{toggled.name}'"
        )
        return toggled.enabled

    async def record_execution(self, automation_id: str, now: float) -> Automation | None:
        """Stamp run-state after a firing: ``last_triggered_at`` and the counter.

        Returns None if the automation was deleted meanwhile.
        """
        async with self._lock:
            current = self._automations.get(automation_id)
            if current is None:
                logger.debug(f"[Automation] run-state for deleted automation {automation_id}")
                return None
            stamped = replace(
                current,
                last_triggered_at=now,
                execution_count=current.execution_count + 1,
            )
            self._commit({**self._automations, automation_id: stamped})
        return stamped

    # -- queries -------------------------------------------------------------

    def get(self, automation_id: str) -> Automation | None:
        return self._automations.get(automation_id)

    def list_automations(self) -> list[Automation]:
        """All automations in insertion order."""
        return list(self._automations.values())

    def __len__(self) -> int:
        return len(self._automations)

    def __contains__(self, automation_id: object) -> bool:
        return automation_id in self._automations
