"""
In-memory stand-ins for every port the visit pipeline talks to.
"""

import copy
import itertools
from typing import Any, Dict, List, Optional

from visitflow.application.collaborators import VisitCollaborators
from visitflow.application.ports.repositories.related_repos import (
    ActionSyncRepository,
    MedicationLookup,
    ReminderLockRepository,
    UserProfileRepository,
)
from visitflow.application.ports.repositories.visit_repo import (
    ExpectedStatus,
    VisitRepository,
    WriteBatch,
    expected_values,
)
from visitflow.application.ports.services.post_commit_services import (
    CaregiverNotifier,
    IncidentReporter,
    MedicationSync,
    NudgeAnalyzer,
    PushNotifier,
)
from visitflow.application.ports.services.summary_service import SummaryExtractor
from visitflow.application.ports.services.transcription_service import (
    TranscriptionService,
    TranscriptStatus,
)
from visitflow.domain.entities.visit import VisitRecord
from visitflow.domain.entities.visit_summary import MedicationChanges, VisitSummary
from visitflow.domain.errors import ConcurrentVisitUpdateError
from visitflow.domain.field_ops import FIELD_DELETE, ArrayUnion, Increment

START_MILLIS = 1_700_000_000_000


class ManualClock:
    def __init__(self, now: int = START_MILLIS) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> int:
        self.now += ms
        return self.now


def apply_patch(doc: Dict[str, Any], patch: Dict[str, Any]) -> None:
    for key, value in patch.items():
        if value is FIELD_DELETE:
            doc.pop(key, None)
        elif isinstance(value, Increment):
            doc[key] = (doc.get(key) or 0) + value.amount
        elif isinstance(value, ArrayUnion):
            current = list(doc.get(key) or [])
            current.extend(v for v in value.values if v not in current)
            doc[key] = current
        else:
            doc[key] = copy.deepcopy(value)


class _Failing:
    """Raise ``error`` on the next ``fail_count`` calls to ``_maybe_fail``."""

    error_message = "boom"

    def __init__(self) -> None:
        self.fail_count = 0
        self.fail_always = False
        self.calls = 0

    def _maybe_fail(self) -> None:
        self.calls += 1
        if self.fail_always:
            raise RuntimeError(self.error_message)
        if self.fail_count > 0:
            self.fail_count -= 1
            raise RuntimeError(self.error_message)


class FakeVisitRepository(VisitRepository):
    def __init__(self) -> None:
        self.docs: Dict[str, Dict[str, Any]] = {}
        self.collections: Dict[str, List[Dict[str, Any]]] = {}
        self.commits = 0
        self.fail_commit = False

    def seed(self, visit_id: str = "visit-1", **fields: Any) -> Dict[str, Any]:
        doc = {
            "visit_id": visit_id,
            "owner_id": "owner-1",
            "processing_status": "recording",
            "status": "recording",
            "retry_count": 0,
            "created_at": START_MILLIS,
            "updated_at": START_MILLIS,
        }
        doc.update(fields)
        self.docs[visit_id] = doc
        return doc

    def _matches(self, visit_id: str, expected: Optional[List[str]]) -> bool:
        doc = self.docs.get(visit_id)
        if doc is None:
            return False
        return not expected or doc.get("processing_status") in expected

    async def create(self, visit: VisitRecord) -> VisitRecord:
        self.seed(
            visit.visit_id,
            owner_id=visit.owner_id,
            processing_status=visit.processing_status.value,
            status=visit.status,
            audio_ref=visit.audio_ref,
            created_at=visit.created_at,
            updated_at=visit.updated_at,
        )
        return visit

    async def get(self, visit_id: str) -> Optional[VisitRecord]:
        doc = self.docs.get(visit_id)
        return VisitRecord.from_document(copy.deepcopy(doc)) if doc else None

    async def update_fields(
        self, visit_id: str, patch: Dict[str, Any], expected_status: ExpectedStatus = None
    ) -> bool:
        if not self._matches(visit_id, expected_values(expected_status)):
            return False
        apply_patch(self.docs[visit_id], patch)
        return True

    async def find_by_transcription_id(self, transcription_id, status):
        for doc in self.docs.values():
            if doc.get("transcription_id") == transcription_id and doc.get("processing_status") == status.value:
                return VisitRecord.from_document(copy.deepcopy(doc))
        return None

    async def find_stale(self, status, updated_before, limit):
        docs = [
            doc
            for doc in self.docs.values()
            if doc.get("processing_status") == status.value and (doc.get("updated_at") or 0) < updated_before
        ]
        docs.sort(key=lambda d: (d.get("last_swept_at") or 0, d.get("updated_at") or 0))
        return [VisitRecord.from_document(copy.deepcopy(d)) for d in docs[:limit]]

    async def find_post_commit_retryable(self, limit):
        docs = [
            doc
            for doc in self.docs.values()
            if doc.get("processing_status") == "completed"
            and doc.get("post_commit_status") == "partial_failure"
            and doc.get("post_commit_retry_eligible") is not False
        ]
        return [VisitRecord.from_document(copy.deepcopy(d)) for d in docs[:limit]]

    async def find_post_commit_escalated(self, limit, include_acknowledged=True):
        docs = [
            doc
            for doc in self.docs.values()
            if doc.get("post_commit_status") == "partial_failure"
            and doc.get("post_commit_escalated_at") is not None
            and doc.get("post_commit_escalation_resolved_at") is None
            and (include_acknowledged or doc.get("post_commit_escalation_acknowledged_at") is None)
        ]
        return [VisitRecord.from_document(copy.deepcopy(d)) for d in docs[:limit]]

    async def commit(self, batch: WriteBatch) -> None:
        if self.fail_commit:
            raise RuntimeError("transaction aborted")
        for kind, op in batch.operations:
            if kind == "update_visit" and not self._matches(op["visit_id"], op["expected"]):
                raise ConcurrentVisitUpdateError(op["visit_id"], str(op["expected"]))

        docs = copy.deepcopy(self.docs)
        collections = copy.deepcopy(self.collections)
        for kind, op in batch.operations:
            if kind == "update_visit":
                apply_patch(docs[op["visit_id"]], op["patch"])
            elif kind == "delete_many":
                rows = collections.get(op["collection"], [])
                collections[op["collection"]] = [
                    row for row in rows if any(row.get(k) != v for k, v in op["match"].items())
                ]
            elif kind == "insert_many":
                collections.setdefault(op["collection"], []).extend(copy.deepcopy(op["documents"]))
        self.docs = docs
        self.collections = collections
        self.commits += 1


class FakeTranscription(TranscriptionService, _Failing):
    def __init__(self) -> None:
        _Failing.__init__(self)
        self._ids = itertools.count(1)
        self.submitted: List[str] = []
        self.statuses: Dict[str, TranscriptStatus] = {}
        self.deleted: List[str] = []
        self.status_error = False
        self.delete_failures = 0

    async def submit(self, audio_ref: str) -> str:
        self._maybe_fail()
        self.submitted.append(audio_ref)
        return f"tx-{next(self._ids)}"

    async def fetch_status(self, transcription_id: str) -> TranscriptStatus:
        if self.status_error:
            raise RuntimeError("provider unavailable")
        return self.statuses.get(transcription_id, TranscriptStatus(status="processing"))

    async def delete_transcript(self, transcription_id: str) -> None:
        if self.delete_failures > 0:
            self.delete_failures -= 1
            raise RuntimeError("delete failed")
        self.deleted.append(transcription_id)


class FakeSummarizer(SummaryExtractor, _Failing):
    def __init__(self, summary: Optional[VisitSummary] = None) -> None:
        _Failing.__init__(self)
        self.summary = summary or VisitSummary.parse(
            {
                "summary": "Blood pressure reviewed.",
                "diagnoses": ["Hypertension"],
                "medications": {"started": [{"name": "Lisinopril", "dose": "10mg", "frequency": "daily"}]},
                "next_steps": ["Recheck blood pressure in 2 weeks", "Basic metabolic panel"],
            }
        )
        self.transcripts: List[str] = []

    async def summarize(self, transcript_text: str) -> VisitSummary:
        self._maybe_fail()
        self.transcripts.append(transcript_text)
        return self.summary


class FakeActionSync(ActionSyncRepository):
    def __init__(self, visits: FakeVisitRepository) -> None:
        self._visits = visits

    async def replace_for_visit(self, batch, visit_id, payloads):
        batch.delete_many("actions", {"visit_id": visit_id})
        batch.insert_many("actions", payloads)

    async def list_for_visit(self, visit_id):
        return [row for row in self._visits.collections.get("actions", []) if row["visit_id"] == visit_id]


class FakeMedicationStore(MedicationLookup, MedicationSync, _Failing):
    def __init__(self) -> None:
        _Failing.__init__(self)
        self.records: Dict[str, Dict[str, Any]] = {}
        self.synced: List[MedicationChanges] = []

    async def find_latest_by_canonical_name(self, owner_id, canonical_name):
        return self.records.get(canonical_name)

    async def sync_medications_from_summary(self, owner_id, visit_id, medications):
        self._maybe_fail()
        self.synced.append(medications)


class FakeNudgeAnalyzer(NudgeAnalyzer, _Failing):
    def __init__(self) -> None:
        _Failing.__init__(self)
        self.analyzed: List[str] = []

    async def analyze_visit_with_delta(self, owner_id, visit_id, summary):
        self._maybe_fail()
        self.analyzed.append(visit_id)
        return {"nudges_created": 1, "reasoning": "new medication"}


class FakeCaregiverNotifier(CaregiverNotifier, _Failing):
    def __init__(self, result: Optional[Dict[str, int]] = None) -> None:
        _Failing.__init__(self)
        self.result = result or {"sent": 1, "failed": 0}
        self.sent_for: List[str] = []

    async def send_visit_summary_to_all_caregivers(self, owner_id, visit_id):
        self._maybe_fail()
        self.sent_for.append(visit_id)
        return dict(self.result)


class FakePushNotifier(PushNotifier, _Failing):
    def __init__(self) -> None:
        _Failing.__init__(self)
        self.visit_ready: List[str] = []
        self.reminders: List[Dict[str, Any]] = []

    async def notify_visit_ready(self, owner_id, visit_id):
        self._maybe_fail()
        self.visit_ready.append(visit_id)

    async def send_medication_reminder(self, owner_id, reminder):
        self._maybe_fail()
        self.reminders.append(reminder)


class FakeUserProfiles(UserProfileRepository):
    def __init__(self, profiles: Optional[Dict[str, Dict[str, Any]]] = None) -> None:
        self.profiles = profiles or {}
        self.raise_error = False

    async def get_profile(self, owner_id):
        if self.raise_error:
            raise RuntimeError("profile store down")
        return self.profiles.get(owner_id)


class FakeReminderRepository(ReminderLockRepository):
    def __init__(self) -> None:
        self.reminders: Dict[str, Dict[str, Any]] = {}

    async def get(self, reminder_id):
        reminder = self.reminders.get(reminder_id)
        return dict(reminder) if reminder else None

    async def acquire_send_lock(self, reminder_id, now, lock_until):
        reminder = self.reminders.get(reminder_id)
        if reminder is None:
            return False
        held = reminder.get("last_sent_lock_until")
        if held is not None and held > now:
            return False
        reminder.update({"last_sent_lock_until": lock_until, "last_sent_lock_at": now, "updated_at": now})
        return True

    async def release_send_lock(self, reminder_id, now):
        reminder = self.reminders[reminder_id]
        reminder.pop("last_sent_lock_until", None)
        reminder.pop("last_sent_lock_at", None)
        reminder["last_sent_at"] = now


class FakeIncidentReporter(IncidentReporter):
    def __init__(self) -> None:
        self.payloads: List[Dict[str, Any]] = []

    async def dispatch(self, payload):
        self.payloads.append(payload)
        return True


def make_collaborators(visits: FakeVisitRepository, **overrides: Any) -> VisitCollaborators:
    transcription = overrides.pop("transcription", None) or FakeTranscription()
    medications = overrides.pop("medications", None) or FakeMedicationStore()
    collaborators = VisitCollaborators(
        transcription=transcription,
        summarizer=FakeSummarizer(),
        action_sync=FakeActionSync(visits),
        medication_sync=medications,
        medication_lookup=medications,
        nudge_analyzer=FakeNudgeAnalyzer(),
        caregiver_notifier=FakeCaregiverNotifier(),
        push_notifier=FakePushNotifier(),
        user_profiles=FakeUserProfiles(),
        transcript_cleanup=transcription,
    )
    return collaborators.with_overrides(**overrides)
