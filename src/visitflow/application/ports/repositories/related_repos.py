"""
Repository interfaces for records that hang off a visit's owner:
action items, stored medications, user profiles and medication reminders.
"""

from typing import Any, Dict, List, Optional

from .visit_repo import WriteBatch


class ActionSyncRepository:
    """Action items derived from a visit's next steps."""

    async def replace_for_visit(
        self, batch: WriteBatch, visit_id: str, payloads: List[Dict[str, Any]]
    ) -> None:
        """Queue removal of the visit's previous actions and insertion of ``payloads`` on ``batch``."""
        raise NotImplementedError

    async def list_for_visit(self, visit_id: str) -> List[Dict[str, Any]]:
        raise NotImplementedError


class MedicationLookup:
    """Read access to a patient's stored medication list."""

    async def find_latest_by_canonical_name(
        self, owner_id: str, canonical_name: str
    ) -> Optional[Dict[str, Any]]:
        """Most recently updated medication record with this canonical name, if any."""
        raise NotImplementedError


class UserProfileRepository:
    async def get_profile(self, owner_id: str) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    async def get_auto_share_enabled(self, owner_id: str) -> Optional[bool]:
        """The owner's caregiver auto-share preference; None when unset or not a bool."""
        profile = await self.get_profile(owner_id)
        value = (profile or {}).get("auto_share_with_caregivers")
        return value if isinstance(value, bool) else None


class ReminderLockRepository:
    """Medication reminders guarded by a short lease while a send is in flight."""

    async def get(self, reminder_id: str) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    async def acquire_send_lock(self, reminder_id: str, now: int, lock_until: int) -> bool:
        """
        Take the send lease for a reminder.

        Succeeds only if the reminder exists and no unexpired lease is held.
        Must never raise; errors count as not acquired.
        """
        raise NotImplementedError

    async def release_send_lock(self, reminder_id: str, now: int) -> None:
        """Clear the lease after a successful send and record the send time."""
        raise NotImplementedError
