"""
Visit repository interface for managing visit data.
"""

from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from visitflow.domain.entities.visit import VisitRecord
from visitflow.domain.enums.processing import ProcessingStatus

ExpectedStatus = Union[ProcessingStatus, Sequence[ProcessingStatus], None]


def expected_values(expected: ExpectedStatus) -> Optional[List[str]]:
    """Normalize an expected-status argument to a list of raw values."""
    if expected is None:
        return None
    if isinstance(expected, ProcessingStatus):
        return [expected.value]
    return [getattr(item, "value", item) for item in expected]


class WriteBatch:
    """Writes that must land together or not at all.

    Collected by the caller (and by collaborators such as the action
    repository), then handed to ``VisitRepository.commit``.
    """

    def __init__(self) -> None:
        self.operations: List[Tuple[str, Dict[str, Any]]] = []

    def update_visit(
        self,
        visit_id: str,
        patch: Dict[str, Any],
        expected_status: ExpectedStatus = None,
    ) -> None:
        self.operations.append(
            (
                "update_visit",
                {"visit_id": visit_id, "patch": patch, "expected": expected_values(expected_status)},
            )
        )

    def delete_many(self, collection: str, match: Dict[str, Any]) -> None:
        self.operations.append(("delete_many", {"collection": collection, "match": match}))

    def insert_many(self, collection: str, documents: List[Dict[str, Any]]) -> None:
        if documents:
            self.operations.append(("insert_many", {"collection": collection, "documents": documents}))


class VisitRepository:
    """Repository interface for managing visits."""

    async def create(self, visit: VisitRecord) -> VisitRecord:
        """Persist a new visit."""
        raise NotImplementedError

    async def get(self, visit_id: str) -> Optional[VisitRecord]:
        """Find a visit by ID."""
        raise NotImplementedError

    async def update_fields(
        self,
        visit_id: str,
        patch: Dict[str, Any],
        expected_status: ExpectedStatus = None,
    ) -> bool:
        """
        Apply ``patch`` only if the visit is still in one of ``expected_status``.

        Patch values may be ``FIELD_DELETE``, ``Increment`` or ``ArrayUnion``
        markers. Returns False when the visit is missing or its
        processing status moved on (another handler won the race).
        """
        raise NotImplementedError

    async def find_by_transcription_id(
        self, transcription_id: str, status: ProcessingStatus
    ) -> Optional[VisitRecord]:
        """Find the visit waiting on a provider transcript."""
        raise NotImplementedError

    async def find_stale(
        self, status: ProcessingStatus, updated_before: int, limit: int
    ) -> List[VisitRecord]:
        """Visits in ``status`` not touched since ``updated_before`` (epoch ms).

        Never-swept visits come first, then by ``last_swept_at`` and ``updated_at`` ascending.
        """
        raise NotImplementedError

    async def find_post_commit_retryable(self, limit: int) -> List[VisitRecord]:
        """Visits with a partial post-commit failure still eligible for retry."""
        raise NotImplementedError

    async def find_post_commit_escalated(
        self, limit: int, include_acknowledged: bool = True
    ) -> List[VisitRecord]:
        """Partially failed visits that crossed the alert threshold and are not resolved."""
        raise NotImplementedError

    def new_batch(self) -> WriteBatch:
        return WriteBatch()

    async def commit(self, batch: WriteBatch) -> None:
        """
        Apply every write in ``batch`` atomically.

        Raises ConcurrentVisitUpdateError (and applies nothing) when a
        conditional visit update does not match.
        """
        raise NotImplementedError
