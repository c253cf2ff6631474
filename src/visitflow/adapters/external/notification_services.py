"""
HTTP delivery for caregiver email, push notifications and incident reports.
"""

import logging
from typing import Any, Dict, List

import aiohttp

from visitflow.adapters.db.mongo.repositories.user_repository import MongoUserProfileRepository
from visitflow.application.ports.services.post_commit_services import (
    CaregiverNotifier,
    IncidentReporter,
    PushNotifier,
)
from visitflow.core.config import get_settings
from visitflow.core.exceptions import NotificationError

logger = logging.getLogger("visitflow")


class EmailCaregiverNotifier(CaregiverNotifier):
    """Sends the visit-ready email to every accepted caregiver through an HTTP email API."""

    def __init__(self, profiles: MongoUserProfileRepository) -> None:
        self._settings = get_settings().email
        self._profiles = profiles

    def _visit_link(self, visit_id: str) -> str:
        base = self._settings.app_base_url.rstrip("/")
        return f"{base}/visits/{visit_id}" if base else ""

    async def send_visit_summary_to_all_caregivers(self, owner_id: str, visit_id: str) -> Dict[str, int]:
        caregivers = await self._profiles.list_accepted_caregivers(owner_id)
        if not caregivers:
            return {"sent": 0, "failed": 0}
        if not self._settings.api_key:
            raise NotificationError("Caregiver email", "EMAIL_API_KEY is not configured")

        profile = await self._profiles.get_profile(owner_id) or {}
        owner_name = profile.get("display_name") or "Your family member"
        link = self._visit_link(visit_id)

        sent = 0
        failed = 0
        timeout = aiohttp.ClientTimeout(total=self._settings.timeout_seconds)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            for caregiver in caregivers:
                body = (
                    f"Hi {caregiver.get('name') or 'there'},\n\n"
                    f"{owner_name} has a new visit summary ready."
                )
                if link:
                    body += f"\n\nView it here: {link}"
                payload = {
                    "from": self._settings.from_address,
                    "to": [caregiver["email"]],
                    "subject": f"New visit summary for {owner_name}",
                    "text": body,
                }
                try:
                    async with session.post(
                        self._settings.api_url,
                        json=payload,
                        headers={"Authorization": f"Bearer {self._settings.api_key}"},
                    ) as response:
                        if response.status >= 400:
                            failed += 1
                            logger.warning(
                                f"[CaregiverEmail] {caregiver['email']} rejected: {response.status}"
                            )
                            continue
                    sent += 1
                except aiohttp.ClientError as e:
                    failed += 1
                    logger.warning(f"[CaregiverEmail] {caregiver['email']} failed: {e}")

        logger.info(f"[CaregiverEmail] owner={owner_id} visit={visit_id} sent={sent} failed={failed}")
        return {"sent": sent, "failed": failed}


class HttpPushNotifier(PushNotifier):
    """Push delivery through an Expo-style HTTP push gateway."""

    def __init__(self, profiles: MongoUserProfileRepository) -> None:
        self._settings = get_settings().push
        self._profiles = profiles

    async def _send(self, owner_id: str, title: str, body: str, data: Dict[str, Any]) -> int:
        profile = await self._profiles.get_profile(owner_id) or {}
        tokens: List[str] = [t for t in profile.get("push_tokens") or [] if isinstance(t, str) and t]
        if not tokens:
            logger.info(f"[Push] No devices registered for owner={owner_id}")
            return 0

        messages = [{"to": token, "title": title, "body": body, "data": data} for token in tokens]
        headers = {"Content-Type": "application/json"}
        if self._settings.access_token:
            headers["Authorization"] = f"Bearer {self._settings.access_token}"

        timeout = aiohttp.ClientTimeout(total=self._settings.timeout_seconds)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.post(self._settings.api_url, json=messages, headers=headers) as response:
                if response.status >= 400:
                    error_text = await response.text()
                    raise NotificationError("Push", f"gateway returned {response.status}: {error_text}")
        return len(tokens)

    async def notify_visit_ready(self, owner_id: str, visit_id: str) -> None:
        devices = await self._send(
            owner_id,
            "Your visit summary is ready",
            "Tap to review what was discussed and your next steps.",
            {"type": "visit_ready", "visit_id": visit_id},
        )
        logger.info(f"[Push] visit_ready visit={visit_id} devices={devices}")

    async def send_medication_reminder(self, owner_id: str, reminder: Dict[str, Any]) -> None:
        name = reminder.get("medication_name") or "your medication"
        await self._send(
            owner_id,
            "Medication reminder",
            f"Time to take {name}.",
            {"type": "medication_reminder", "reminder_id": reminder.get("reminder_id")},
        )


class WebhookIncidentReporter(IncidentReporter):
    """Posts escalation summaries to an incident webhook, when one is configured."""

    def __init__(self) -> None:
        self._settings = get_settings().escalation

    async def dispatch(self, payload: Dict[str, Any]) -> bool:
        if not self._settings.webhook_url:
            logger.info("[Escalations] No incident webhook configured; report not sent")
            return False

        headers = {"Content-Type": "application/json"}
        if self._settings.token:
            headers["Authorization"] = f"Bearer {self._settings.token}"
        timeout = aiohttp.ClientTimeout(total=self._settings.timeout_ms / 1000)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.post(self._settings.webhook_url, json=payload, headers=headers) as response:
                if response.status >= 400:
                    error_text = await response.text()
                    raise NotificationError(
                        "Incident webhook", f"returned {response.status}: {error_text}"
                    )
        logger.info(f"[Escalations] Reported {payload.get('open_escalations', 0)} open escalation(s)")
        return True
