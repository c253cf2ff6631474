"""
Medication reminder sending under a short lease.

Two workers racing on the same reminder must not both send it. The lease
expires on its own, so a worker that dies mid-send only delays the next
delivery by one lock window.
"""

import logging
from typing import Callable

from visitflow.application.ports.repositories.related_repos import ReminderLockRepository
from visitflow.application.ports.services.post_commit_services import PushNotifier
from visitflow.core.utils.datetime_utils import now_millis

logger = logging.getLogger("visitflow")


class ReminderDispatcher:
    def __init__(
        self,
        reminders: ReminderLockRepository,
        push_notifier: PushNotifier,
        lock_window_ms: int = 5 * 60 * 1000,
        clock: Callable[[], int] = now_millis,
    ) -> None:
        self._reminders = reminders
        self._push = push_notifier
        self._lock_window_ms = lock_window_ms
        self._clock = clock

    async def dispatch(self, reminder_id: str) -> bool:
        """Send one reminder. Returns True only if this call delivered it."""
        now = self._clock()
        acquired = await self._reminders.acquire_send_lock(
            reminder_id, now, now + self._lock_window_ms
        )
        if not acquired:
            logger.info("[Reminders] Lock held or reminder missing, skipping reminder=%s", reminder_id)
            return False

        reminder = await self._reminders.get(reminder_id)
        if reminder is None:
            return False

        try:
            await self._push.send_medication_reminder(reminder.get("owner_id", ""), reminder)
        except Exception as exc:
            # Lease left in place; it expires after the lock window.
            logger.error(
                "[Reminders] Send failed for reminder=%s: %s", reminder_id, exc, exc_info=True
            )
            return False

        await self._reminders.release_send_lock(reminder_id, self._clock())
        logger.info("[Reminders] Sent reminder=%s", reminder_id)
        return True
