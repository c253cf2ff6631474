"""Structured output of the summarization step.

Parsing is tolerant: anything that does not look like the expected shape is
dropped so a malformed model response never blocks the visit commit.
"""

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Mapping, Optional


def _clean(value: Any) -> Optional[str]:
    if isinstance(value, str):
        text = value.strip()
        return text or None
    return None


def _string_list(value: Any) -> List[str]:
    if not isinstance(value, (list, tuple)):
        return []
    return [item.strip() for item in value if isinstance(item, str) and item.strip()]


@dataclass
class MedicationEntry:
    """One medication mentioned in a visit."""

    name: str
    dose: Optional[str] = None
    frequency: Optional[str] = None
    note: Optional[str] = None
    display: Optional[str] = None

    @classmethod
    def parse(cls, raw: Any) -> Optional["MedicationEntry"]:
        if isinstance(raw, str):
            name = _clean(raw)
            return cls(name=name, display=name) if name else None
        if not isinstance(raw, Mapping):
            return None
        name = _clean(raw.get("name"))
        if not name:
            return None
        return cls(
            name=name,
            dose=_clean(raw.get("dose")),
            frequency=_clean(raw.get("frequency")),
            note=_clean(raw.get("note")),
            display=_clean(raw.get("display")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {key: value for key, value in asdict(self).items() if value is not None}


def _entries(value: Any) -> List[MedicationEntry]:
    if not isinstance(value, (list, tuple)):
        return []
    parsed = (MedicationEntry.parse(item) for item in value)
    return [entry for entry in parsed if entry is not None]


@dataclass
class MedicationChanges:
    started: List[MedicationEntry] = field(default_factory=list)
    stopped: List[MedicationEntry] = field(default_factory=list)
    changed: List[MedicationEntry] = field(default_factory=list)

    @classmethod
    def parse(cls, raw: Any) -> "MedicationChanges":
        if not isinstance(raw, Mapping):
            return cls()
        return cls(
            started=_entries(raw.get("started")),
            stopped=_entries(raw.get("stopped")),
            changed=_entries(raw.get("changed")),
        )

    def is_empty(self) -> bool:
        return not (self.started or self.stopped or self.changed)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "started": [entry.to_dict() for entry in self.started],
            "stopped": [entry.to_dict() for entry in self.stopped],
            "changed": [entry.to_dict() for entry in self.changed],
        }


@dataclass
class MedicationReview:
    continued: List[MedicationEntry] = field(default_factory=list)
    adherence_concerns: List[str] = field(default_factory=list)
    follow_up_needed: bool = False
    notes: List[str] = field(default_factory=list)

    @classmethod
    def parse(cls, raw: Any) -> "MedicationReview":
        if not isinstance(raw, Mapping):
            return cls()
        return cls(
            continued=_entries(raw.get("continued")),
            adherence_concerns=_string_list(raw.get("adherence_concerns")),
            follow_up_needed=raw.get("follow_up_needed") is True,
            notes=_string_list(raw.get("notes")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "continued": [entry.to_dict() for entry in self.continued],
            "adherence_concerns": list(self.adherence_concerns),
            "follow_up_needed": self.follow_up_needed,
            "notes": list(self.notes),
        }


@dataclass
class VisitSummary:
    summary: str = ""
    diagnoses: List[str] = field(default_factory=list)
    medications: MedicationChanges = field(default_factory=MedicationChanges)
    medication_review: MedicationReview = field(default_factory=MedicationReview)
    next_steps: List[str] = field(default_factory=list)
    education: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def parse(cls, raw: Any) -> "VisitSummary":
        if not isinstance(raw, Mapping):
            return cls(summary=_clean(raw) or "")
        education = raw.get("education")
        return cls(
            summary=_clean(raw.get("summary")) or "",
            diagnoses=_string_list(raw.get("diagnoses")),
            medications=MedicationChanges.parse(raw.get("medications")),
            medication_review=MedicationReview.parse(raw.get("medication_review")),
            next_steps=_string_list(raw.get("next_steps")),
            education=dict(education) if isinstance(education, Mapping) else {},
        )
