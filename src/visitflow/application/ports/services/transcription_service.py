"""
Transcription service interface for the speech-to-text provider.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional


@dataclass
class TranscriptStatus:
    """Provider-side state of a submitted transcript."""

    status: str
    text: str = ""
    formatted: str = ""
    error: Optional[str] = None


class TranscriptCleanup(ABC):
    """Removes provider-held copies of a transcript once it is no longer needed."""

    @abstractmethod
    async def delete_transcript(self, transcription_id: str) -> None:
        pass


class TranscriptionService(TranscriptCleanup):
    """Abstract service for asynchronous audio transcription."""

    @abstractmethod
    async def submit(self, audio_ref: str) -> str:
        """
        Submit audio for transcription.

        Args:
            audio_ref: URL the provider can download the recording from

        Returns:
            Provider transcription id; completion is reported via webhook
        """
        pass

    @abstractmethod
    async def fetch_status(self, transcription_id: str) -> TranscriptStatus:
        """
        Fetch the current provider status.

        ``status`` is "completed", "error", or a provider in-progress value.
        On completion ``text`` holds the raw transcript and ``formatted`` a
        speaker-labelled rendering.
        """
        pass
