"""
MongoDB medication reminders with a send lease.
"""

import logging
from typing import Any, Dict, Optional

from pymongo import ReturnDocument

from visitflow.application.ports.repositories.related_repos import ReminderLockRepository

from ..models.visit_m import ReminderMongo

logger = logging.getLogger("visitflow")


class MongoReminderRepository(ReminderLockRepository):
    def _collection(self):
        return ReminderMongo.get_motor_collection()

    async def get(self, reminder_id: str) -> Optional[Dict[str, Any]]:
        doc = await self._collection().find_one({"reminder_id": reminder_id})
        if not doc:
            return None
        doc.pop("_id", None)
        return doc

    async def acquire_send_lock(self, reminder_id: str, now: int, lock_until: int) -> bool:
        try:
            doc = await self._collection().find_one_and_update(
                {
                    "reminder_id": reminder_id,
                    "$or": [
                        {"last_sent_lock_until": {"$exists": False}},
                        {"last_sent_lock_until": None},
                        {"last_sent_lock_until": {"$lte": now}},
                    ],
                },
                {
                    "$set": {
                        "last_sent_lock_until": lock_until,
                        "last_sent_lock_at": now,
                        "updated_at": now,
                    }
                },
                return_document=ReturnDocument.AFTER,
            )
        except Exception as e:
            # Errors count as not acquired.
            logger.error(f"[Reminders] Lock acquisition failed for reminder={reminder_id}: {e}")
            return False
        return doc is not None

    async def release_send_lock(self, reminder_id: str, now: int) -> None:
        await self._collection().update_one(
            {"reminder_id": reminder_id},
            {
                "$set": {"last_sent_at": now, "updated_at": now},
                "$unset": {"last_sent_lock_until": "", "last_sent_lock_at": ""},
            },
        )
