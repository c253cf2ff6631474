"""
Per-visit bookkeeping for side effects that run after the core visit commit.

Each operation (medication sync, caregiver email, ...) is tracked on its own:
attempt counter, next retry time, and whether it has ever succeeded. A retry
pass only touches operations that are currently failing.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Set

from ..enums.processing import PostCommitStatus
from ..field_ops import FIELD_DELETE, ArrayUnion

ESCALATION_REVIEW_FIELDS = (
    "post_commit_escalation_acknowledged_at",
    "post_commit_escalation_acknowledged_by",
    "post_commit_escalation_resolved_at",
    "post_commit_escalation_resolved_by",
    "post_commit_escalation_note",
)


@dataclass(frozen=True)
class BackoffPolicy:
    """Exponential per-operation backoff with a hard attempt ceiling."""

    base_delay_ms: int = 5 * 60 * 1000
    max_delay_ms: int = 6 * 60 * 60 * 1000
    max_attempts: int = 5
    alert_threshold: int = 3

    def delay_ms(self, attempts: int) -> int:
        exponent = max(0, attempts - 1)
        return min(self.max_delay_ms, self.base_delay_ms * (2 ** exponent))

    def can_retry(self, attempts: int) -> bool:
        return attempts < self.max_attempts


def _op_name(op: Any) -> str:
    return getattr(op, "value", op)


@dataclass
class PostCommitLedger:
    status: PostCommitStatus = PostCommitStatus.NOT_STARTED
    completed_operations: Set[str] = field(default_factory=set)
    failed_operations: Set[str] = field(default_factory=set)
    operation_attempts: Dict[str, int] = field(default_factory=dict)
    operation_next_retry_at: Dict[str, int] = field(default_factory=dict)
    retry_eligible: bool = False
    last_attempt_at: Optional[int] = None
    completed_at: Optional[int] = None
    escalated_at: Optional[int] = None
    # Successes recorded since load; persisted as a union, never as a full overwrite.
    _newly_completed: Set[str] = field(default_factory=set, repr=False, compare=False)
    _escalated_this_pass: bool = field(default=False, repr=False, compare=False)

    @classmethod
    def from_document(cls, doc: Mapping[str, Any]) -> "PostCommitLedger":
        """Build a ledger from persisted ``post_commit_*`` fields.

        Unknown or malformed values are dropped rather than trusted.
        """
        raw_status = doc.get("post_commit_status")
        try:
            status = PostCommitStatus(raw_status) if raw_status else PostCommitStatus.NOT_STARTED
        except ValueError:
            status = PostCommitStatus.NOT_STARTED

        def _names(value: Any) -> Set[str]:
            if not isinstance(value, (list, tuple, set)):
                return set()
            return {item for item in value if isinstance(item, str) and item}

        def _int_map(value: Any) -> Dict[str, int]:
            if not isinstance(value, Mapping):
                return {}
            return {
                key: int(val)
                for key, val in value.items()
                if isinstance(val, (int, float)) and not isinstance(val, bool)
            }

        completed = _names(doc.get("post_commit_completed_operations"))
        failed = _names(doc.get("post_commit_failed_operations")) - completed

        return cls(
            status=status,
            completed_operations=completed,
            failed_operations=failed,
            operation_attempts=_int_map(doc.get("post_commit_operation_attempts")),
            operation_next_retry_at=_int_map(doc.get("post_commit_operation_next_retry_at")),
            retry_eligible=doc.get("post_commit_retry_eligible") is True,
            last_attempt_at=doc.get("post_commit_last_attempt_at"),
            completed_at=doc.get("post_commit_completed_at"),
            escalated_at=doc.get("post_commit_escalated_at"),
        )

    def record_attempt(self, op: Any) -> int:
        name = _op_name(op)
        # Older records may list a failure without a counter; that was one attempt.
        prior = self.operation_attempts.get(name, 1 if name in self.failed_operations else 0)
        self.operation_attempts[name] = prior + 1
        return self.operation_attempts[name]

    def record_success(self, op: Any) -> None:
        name = _op_name(op)
        self.completed_operations.add(name)
        self._newly_completed.add(name)
        self.failed_operations.discard(name)
        self.operation_attempts.pop(name, None)
        self.operation_next_retry_at.pop(name, None)

    def record_failure(self, op: Any, now: int, backoff: BackoffPolicy) -> bool:
        """Mark ``op`` as failing and schedule its next retry.

        Returns True when the attempt count has reached the alert threshold.
        """
        name = _op_name(op)
        self.failed_operations.add(name)

        attempts = self.operation_attempts.get(name, 0)
        if attempts <= 0:
            attempts = 1
            self.operation_attempts[name] = attempts

        if backoff.can_retry(attempts):
            self.operation_next_retry_at[name] = now + backoff.delay_ms(attempts)
            self.retry_eligible = True
        else:
            self.operation_next_retry_at.pop(name, None)

        if attempts >= backoff.alert_threshold:
            self.escalated_at = now
            self._escalated_this_pass = True
            return True
        return False

    def operations_due(self, now: int, max_attempts: int) -> List[str]:
        """Failing operations whose backoff has elapsed, in a stable order."""
        due = []
        for name in sorted(self.failed_operations - self.completed_operations):
            if self.operation_attempts.get(name, 1) >= max_attempts:
                continue
            next_retry = self.operation_next_retry_at.get(name)
            if next_retry is not None and next_retry > now:
                continue
            due.append(name)
        return due

    def finalize(self, now: int, max_attempts: Optional[int] = None) -> PostCommitStatus:
        self.last_attempt_at = now
        if not self.failed_operations:
            self.status = PostCommitStatus.COMPLETED
            self.operation_attempts.clear()
            self.operation_next_retry_at.clear()
            self.retry_eligible = False
            self.completed_at = now
            return self.status

        self.status = PostCommitStatus.PARTIAL_FAILURE
        self.completed_at = None
        if max_attempts is None:
            self.retry_eligible = True
        else:
            self.retry_eligible = any(
                self.operation_attempts.get(name, 1) < max_attempts
                for name in self.failed_operations
            )
        return self.status

    def to_patch(self) -> Dict[str, Any]:
        """Persisted form of the ledger after ``finalize``."""
        patch: Dict[str, Any] = {
            "post_commit_status": self.status.value,
            "post_commit_last_attempt_at": self.last_attempt_at,
        }
        if self._newly_completed:
            patch["post_commit_completed_operations"] = ArrayUnion(sorted(self._newly_completed))

        if self.status == PostCommitStatus.COMPLETED:
            patch["post_commit_failed_operations"] = FIELD_DELETE
            patch["post_commit_operation_attempts"] = FIELD_DELETE
            patch["post_commit_operation_next_retry_at"] = FIELD_DELETE
            patch["post_commit_retry_eligible"] = FIELD_DELETE
            patch["post_commit_completed_at"] = self.completed_at
            return patch

        patch["post_commit_failed_operations"] = sorted(self.failed_operations)
        patch["post_commit_retry_eligible"] = self.retry_eligible
        patch["post_commit_completed_at"] = FIELD_DELETE
        patch["post_commit_operation_attempts"] = (
            dict(self.operation_attempts) if self.operation_attempts else FIELD_DELETE
        )
        patch["post_commit_operation_next_retry_at"] = (
            dict(self.operation_next_retry_at) if self.operation_next_retry_at else FIELD_DELETE
        )
        if self._escalated_this_pass:
            # A fresh escalation reopens any earlier acknowledgement.
            patch["post_commit_escalated_at"] = self.escalated_at
            for key in ESCALATION_REVIEW_FIELDS:
                patch[key] = FIELD_DELETE
        return patch

    def mark_persisted(self) -> None:
        self._newly_completed.clear()
        self._escalated_this_pass = False

