"""
MongoDB medication list: lookups for reconciliation and the post-commit medication sync.
"""

import logging
import uuid
from typing import Any, Dict, Optional

from visitflow.application.ports.repositories.related_repos import MedicationLookup
from visitflow.application.ports.services.post_commit_services import MedicationSync
from visitflow.application.services.medication_reconciliation import (
    canonical_medication_name,
    default_reminder_times,
)
from visitflow.core.utils.datetime_utils import now_millis
from visitflow.domain.entities.visit_summary import MedicationChanges, MedicationEntry

from ..models.visit_m import MedicationMongo, NudgeMongo, ReminderMongo

logger = logging.getLogger("visitflow")


class MongoMedicationRepository(MedicationLookup, MedicationSync):
    """Reads and writes the ``medications`` collection for one store."""

    def _collection(self):
        return MedicationMongo.get_motor_collection()

    async def find_latest_by_canonical_name(
        self, owner_id: str, canonical_name: str
    ) -> Optional[Dict[str, Any]]:
        cursor = (
            self._collection()
            .find({"owner_id": owner_id, "canonical_name": canonical_name})
            .sort("updated_at", -1)
            .limit(1)
        )
        docs = await cursor.to_list(length=1)
        return docs[0] if docs else None

    async def sync_medications_from_summary(
        self, owner_id: str, visit_id: str, medications: MedicationChanges
    ) -> None:
        now = now_millis()
        for entry in medications.started:
            await self._upsert(owner_id, visit_id, entry, "started", now)
        for entry in medications.stopped:
            await self._upsert(owner_id, visit_id, entry, "stopped", now)
        for entry in medications.changed:
            await self._upsert(owner_id, visit_id, entry, "changed", now)
        logger.info(
            f"[MedicationSync] owner={owner_id} visit={visit_id} "
            f"started={len(medications.started)} stopped={len(medications.stopped)} "
            f"changed={len(medications.changed)}"
        )

    async def _upsert(
        self, owner_id: str, visit_id: str, entry: MedicationEntry, change: str, now: int
    ) -> None:
        canonical = canonical_medication_name(entry.name)
        if not canonical:
            return

        existing = await self.find_latest_by_canonical_name(owner_id, canonical)
        if existing is None:
            medication = MedicationMongo(
                owner_id=owner_id,
                name=entry.name,
                canonical_name=canonical,
                dose=entry.dose,
                frequency=entry.frequency,
                notes=entry.note,
                active=change != "stopped",
                source_visit_id=visit_id,
                started_at=None if change == "stopped" else now,
                stopped_at=now if change == "stopped" else None,
                created_at=now,
                updated_at=now,
            )
            await medication.insert()
            if change != "stopped":
                await self._ensure_reminder(owner_id, str(medication.id), entry)
            return

        updates: Dict[str, Any] = {"updated_at": now, "source_visit_id": visit_id}
        if entry.dose:
            updates["dose"] = entry.dose
        if entry.frequency:
            updates["frequency"] = entry.frequency
        if entry.note:
            updates["notes"] = entry.note

        if change == "stopped":
            updates.update({"active": False, "stopped_at": now})
            if not existing.get("started_at"):
                updates["started_at"] = now
        else:
            updates.update({"active": True, "stopped_at": None})
            if change == "changed":
                updates["changed_at"] = now
            if not existing.get("started_at") or existing.get("active") is False:
                updates["started_at"] = now

        await self._collection().update_one({"_id": existing["_id"]}, {"$set": updates})

        medication_id = str(existing["_id"])
        if change == "stopped":
            if existing.get("active") is not False:
                await self._clear_for_stopped(owner_id, medication_id, canonical, entry.name)
        else:
            await self._ensure_reminder(owner_id, medication_id, entry)

    async def _ensure_reminder(self, owner_id: str, medication_id: str, entry: MedicationEntry) -> None:
        reminders = ReminderMongo.get_motor_collection()
        if await reminders.find_one({"owner_id": owner_id, "medication_id": medication_id}):
            return

        times = default_reminder_times(entry.frequency)
        if not times:
            logger.info(f"[MedicationSync] No automatic reminder for as-needed {entry.name}")
            return

        for time_of_day in times:
            await ReminderMongo(
                reminder_id=f"rem_{uuid.uuid4().hex}",
                owner_id=owner_id,
                medication_id=medication_id,
                medication_name=entry.name,
                time_of_day=time_of_day,
            ).insert()
        logger.info(f"[MedicationSync] Created reminders for {entry.name} at {', '.join(times)}")

    async def _clear_for_stopped(
        self, owner_id: str, medication_id: str, canonical: str, name: str
    ) -> None:
        reminders = await ReminderMongo.get_motor_collection().delete_many(
            {"owner_id": owner_id, "medication_id": medication_id}
        )
        nudges = await NudgeMongo.get_motor_collection().delete_many(
            {"owner_id": owner_id, "subject_key": f"medication:{canonical}", "status": "pending"}
        )
        logger.info(
            f"[MedicationSync] Stopped {name}: removed {reminders.deleted_count} reminder(s) "
            f"and {nudges.deleted_count} pending nudge(s)"
        )
