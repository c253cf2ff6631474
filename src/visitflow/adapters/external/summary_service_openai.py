"""
OpenAI-based visit summary extraction.
"""

import json
import logging
from typing import Any, Dict, Optional

from openai import AsyncAzureOpenAI, AsyncOpenAI

from visitflow.application.ports.services.summary_service import SummaryExtractor
from visitflow.core.config import get_settings
from visitflow.core.exceptions import ConfigurationError, SummarizationError
from visitflow.domain.entities.visit_summary import VisitSummary

logger = logging.getLogger("visitflow")

SYSTEM_PROMPT = """You summarize a recorded medical visit for the patient.
Respond with a single JSON object with exactly these keys:
- "summary": 3-6 plain-language sentences about what happened in the visit
- "diagnoses": list of conditions diagnosed or discussed
- "medications": {"started": [...], "stopped": [...], "changed": [...]}, each item
  {"name", "dose", "frequency", "note"}; only medications whose state changed
- "medication_review": {"continued": [same item shape], "adherence_concerns": [...],
  "follow_up_needed": true|false, "notes": [...]}
- "next_steps": list of concrete actions for the patient (tests, referrals, follow-ups)
- "education": {"diagnoses": [{"name", "summary"}], "medications": [{"name", "purpose"}]}
Use empty lists when nothing applies. Do not invent details not present in the transcript."""


def extract_json_object(content: Optional[str]) -> Optional[Dict[str, Any]]:
    """Parse the model reply, tolerating code fences or text around the object."""
    if not content:
        return None
    try:
        data = json.loads(content)
        return data if isinstance(data, dict) else None
    except json.JSONDecodeError:
        pass

    start = content.find("{")
    end = content.rfind("}")
    if start == -1 or end <= start:
        return None
    try:
        data = json.loads(content[start : end + 1])
    except json.JSONDecodeError:
        return None
    return data if isinstance(data, dict) else None


class OpenAISummaryService(SummaryExtractor):
    """Summary extraction via Azure OpenAI when configured, otherwise OpenAI."""

    def __init__(self) -> None:
        self._settings = get_settings()
        azure = self._settings.azure_openai
        if azure.is_configured:
            self._client = AsyncAzureOpenAI(
                api_key=azure.api_key,
                api_version=azure.api_version,
                azure_endpoint=azure.endpoint.rstrip("/"),
                timeout=self._settings.openai.request_timeout_seconds,
            )
            self._model = azure.deployment_name
        elif self._settings.openai.api_key:
            self._client = AsyncOpenAI(
                api_key=self._settings.openai.api_key,
                base_url=self._settings.openai.base_url or None,
                timeout=self._settings.openai.request_timeout_seconds,
            )
            self._model = self._settings.openai.model
        else:
            raise ConfigurationError(
                "No language model configured. Set AZURE_OPENAI_ENDPOINT/AZURE_OPENAI_API_KEY "
                "or OPENAI_API_KEY."
            )
        logger.info(f"[SummaryService] Initialized (model={self._model}, azure={azure.is_configured})")

    async def summarize(self, transcript_text: str) -> VisitSummary:
        try:
            response = await self._client.chat.completions.create(
                model=self._model,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": f"Transcript:\n{transcript_text}"},
                ],
                temperature=self._settings.openai.temperature,
                max_tokens=self._settings.openai.max_tokens,
                response_format={"type": "json_object"},
            )
        except Exception as e:
            raise SummarizationError(str(e)) from e

        content = response.choices[0].message.content if response.choices else None
        data = extract_json_object(content)
        if data is None:
            logger.warning("[SummaryService] Model reply was not JSON; keeping it as a summary-only result")
            return VisitSummary(summary=(content or "").strip())
        return VisitSummary.parse(data)
