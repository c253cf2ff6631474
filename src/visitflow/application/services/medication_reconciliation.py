"""
Promotion of "continued" medications into explicit medication changes.

The summarizer only emits started/stopped/changed lists as state changes.
Medications it marks as continued are checked against the stored list:
unknown ones are really new, inactive ones are reactivations, and active
ones with a different dose or frequency are changes.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import List, Optional

from visitflow.application.ports.repositories.related_repos import MedicationLookup
from visitflow.domain.entities.visit_summary import MedicationChanges, MedicationEntry

logger = logging.getLogger("visitflow")

_NON_ALNUM = re.compile(r"[^a-z0-9]")


def canonical_medication_name(name: Optional[str]) -> str:
    """Trim, lowercase and strip everything but letters and digits."""
    if not isinstance(name, str):
        return ""
    return _NON_ALNUM.sub("", name.strip().lower())


def _same_value(stored: object, incoming: Optional[str]) -> bool:
    # Literal comparison after trimming; "500mg" and "500 mg" differ.
    stored_text = stored.strip() if isinstance(stored, str) else ""
    incoming_text = incoming.strip() if isinstance(incoming, str) else ""
    return stored_text == incoming_text


@dataclass
class PromotionResult:
    medications: MedicationChanges
    promoted_started: List[str] = field(default_factory=list)
    promoted_changed: List[str] = field(default_factory=list)
    review_only: List[str] = field(default_factory=list)


async def promote_continued_medications(
    owner_id: str,
    medications: MedicationChanges,
    continued: List[MedicationEntry],
    lookup: MedicationLookup,
) -> PromotionResult:
    """Return a copy of ``medications`` with qualifying continued entries promoted."""
    result = PromotionResult(
        medications=MedicationChanges(
            started=list(medications.started),
            stopped=list(medications.stopped),
            changed=list(medications.changed),
        )
    )

    already_listed = {
        canonical_medication_name(entry.name)
        for entry in medications.started + medications.stopped + medications.changed
    }

    for entry in continued:
        canonical = canonical_medication_name(entry.name)
        if not canonical or canonical in already_listed:
            continue

        stored = await lookup.find_latest_by_canonical_name(owner_id, canonical)
        if stored is None:
            result.medications.started.append(entry)
            result.promoted_started.append(entry.name)
        elif stored.get("active") is False:
            result.medications.changed.append(entry)
            result.promoted_changed.append(entry.name)
        elif not (
            _same_value(stored.get("dose"), entry.dose)
            and _same_value(stored.get("frequency"), entry.frequency)
        ):
            result.medications.changed.append(entry)
            result.promoted_changed.append(entry.name)
        else:
            result.review_only.append(entry.name)
            continue

        already_listed.add(canonical)

    if result.promoted_started or result.promoted_changed:
        logger.info(
            "[MedicationReconciliation] owner=%s promoted started=%s changed=%s review_only=%s",
            owner_id,
            result.promoted_started,
            result.promoted_changed,
            result.review_only,
        )
    return result


_AS_NEEDED = ("prn", "as needed", "when needed")

# Checked in order; first match wins.
_MEALTIME_PATTERNS = (
    (("with meals", "with food", "at meals", "at mealtimes"), ["08:00", "12:00", "18:00"]),
    (("breakfast", "morning meal"), ["08:00"]),
    (("lunch", "midday", "noon"), ["12:00"]),
    (("dinner", "supper", "evening meal", "with evening"), ["18:00"]),
)
_MULTI_DOSE_PATTERNS = (
    (("twice", "bid", "2x", "two times", "every 12"), ["08:00", "20:00"]),
    (("three times", "tid", "3x", "every 8"), ["08:00", "14:00", "20:00"]),
    (("four times", "qid", "4x", "every 6"), ["08:00", "12:00", "16:00", "20:00"]),
)
_BEDTIME_PATTERNS = ((("bedtime", "at night", "before bed", "nightly"), ["21:00"]),)


def _match(freq: str, patterns) -> Optional[List[str]]:
    for tokens, times in patterns:
        if any(token in freq for token in tokens):
            return list(times)
    return None


def default_reminder_times(frequency: Optional[str]) -> Optional[List[str]]:
    """Reminder times (HH:MM) for a new medication; None for as-needed dosing."""
    if not frequency or not frequency.strip():
        return ["08:00"]

    freq = frequency.lower().strip()
    if any(token in freq for token in _AS_NEEDED):
        return None

    times = _match(freq, _MEALTIME_PATTERNS) or _match(freq, _MULTI_DOSE_PATTERNS)
    if times:
        return times

    if "daily" in freq or "once a day" in freq or freq == "qday":
        if any(token in freq for token in ("evening", "pm", "night", "bedtime")):
            return ["20:00"]
        return ["08:00"]

    return _match(freq, _BEDTIME_PATTERNS) or ["08:00"]
