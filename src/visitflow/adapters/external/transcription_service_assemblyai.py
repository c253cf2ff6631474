"""
AssemblyAI asynchronous transcription with speaker labels.

Jobs are submitted with a webhook callback; the provider posts back to
``/webhooks/transcription`` when the transcript is ready.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional

import aiohttp

from visitflow.application.ports.services.transcription_service import (
    TranscriptionService,
    TranscriptStatus,
)
from visitflow.core.config import get_settings
from visitflow.core.exceptions import ConfigurationError, TranscriptionError

logger = logging.getLogger("visitflow")

WEBHOOK_PATH = "/webhooks/transcription"
WEBHOOK_SECRET_HEADER = "X-Webhook-Secret"


def format_utterances(utterances: Optional[List[Dict[str, Any]]]) -> str:
    """Render diarized utterances as ``Speaker A: ...`` lines."""
    lines = []
    for utterance in utterances or []:
        text = (utterance.get("text") or "").strip()
        if not text:
            continue
        speaker = utterance.get("speaker") or "?"
        lines.append(f"Speaker {speaker}: {text}")
    return "\n".join(lines)


class AssemblyAITranscriptionService(TranscriptionService):
    """AssemblyAI REST implementation of TranscriptionService."""

    def __init__(self) -> None:
        self._settings = get_settings()
        if not self._settings.transcription.api_key:
            raise ConfigurationError(
                "Transcription API key is required. Please set ASSEMBLYAI_API_KEY."
            )
        self._base_url = self._settings.transcription.base_url.rstrip("/")
        self._headers = {
            "authorization": self._settings.transcription.api_key,
            "content-type": "application/json",
        }
        self._timeout = aiohttp.ClientTimeout(total=self._settings.transcription.request_timeout_seconds)

    def _webhook_fields(self) -> Dict[str, Any]:
        base = self._settings.webhook.public_base_url.rstrip("/")
        if not base:
            return {}
        fields: Dict[str, Any] = {"webhook_url": f"{base}{WEBHOOK_PATH}"}
        if self._settings.webhook.secret:
            fields["webhook_auth_header_name"] = WEBHOOK_SECRET_HEADER
            fields["webhook_auth_header_value"] = self._settings.webhook.secret
        return fields

    async def submit(self, audio_ref: str) -> str:
        payload: Dict[str, Any] = {
            "audio_url": audio_ref,
            "speaker_labels": self._settings.transcription.speaker_labels,
            **self._webhook_fields(),
        }

        max_retries = 3
        base_delay = 1.0
        for attempt in range(max_retries):
            try:
                async with aiohttp.ClientSession(timeout=self._timeout) as session:
                    async with session.post(
                        f"{self._base_url}/transcript", json=payload, headers=self._headers
                    ) as response:
                        if response.status >= 500 and attempt < max_retries - 1:
                            logger.warning(
                                f"Transcript submit returned {response.status} "
                                f"(attempt {attempt + 1}/{max_retries})"
                            )
                            await asyncio.sleep(base_delay * (2 ** attempt))
                            continue
                        if response.status not in (200, 201):
                            error_text = await response.text()
                            raise TranscriptionError(
                                f"submit failed: {response.status} {error_text}",
                                {"status": response.status},
                            )
                        data = await response.json()
            except asyncio.TimeoutError:
                logger.error(f"Timeout submitting transcript (attempt {attempt + 1}/{max_retries})")
                if attempt < max_retries - 1:
                    await asyncio.sleep(base_delay * (2 ** attempt))
                    continue
                raise TranscriptionError(f"submit timed out after {max_retries} attempts")

            transcription_id = data.get("id")
            if not transcription_id:
                raise TranscriptionError("provider did not return a transcript id")
            logger.info(f"Submitted transcript {transcription_id} (attempt {attempt + 1})")
            return transcription_id

        raise TranscriptionError(f"submit failed after {max_retries} attempts")

    async def fetch_status(self, transcription_id: str) -> TranscriptStatus:
        async with aiohttp.ClientSession(timeout=self._timeout) as session:
            async with session.get(
                f"{self._base_url}/transcript/{transcription_id}", headers=self._headers
            ) as response:
                if response.status != 200:
                    error_text = await response.text()
                    raise TranscriptionError(
                        f"status check failed: {response.status} {error_text}",
                        {"transcription_id": transcription_id, "status": response.status},
                    )
                data = await response.json()

        status = data.get("status") or "unknown"
        text = data.get("text") or ""
        formatted = format_utterances(data.get("utterances")) or text
        return TranscriptStatus(status=status, text=text, formatted=formatted, error=data.get("error"))

    async def delete_transcript(self, transcription_id: str) -> None:
        async with aiohttp.ClientSession(timeout=self._timeout) as session:
            async with session.delete(
                f"{self._base_url}/transcript/{transcription_id}", headers=self._headers
            ) as response:
                # Already gone counts as deleted.
                if response.status not in (200, 204, 404):
                    error_text = await response.text()
                    raise TranscriptionError(
                        f"delete failed: {response.status} {error_text}",
                        {"transcription_id": transcription_id},
                    )
        logger.info(f"Deleted provider transcript {transcription_id}")
