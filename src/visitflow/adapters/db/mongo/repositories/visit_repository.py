"""
MongoDB implementation of VisitRepository.
"""

import logging
from typing import Any, Dict, List, Optional

from pymongo.errors import PyMongoError

from visitflow.application.ports.repositories.visit_repo import (
    ExpectedStatus,
    VisitRepository,
    WriteBatch,
    expected_values,
)
from visitflow.core.exceptions import DatabaseError
from visitflow.domain.entities.visit import VisitRecord
from visitflow.domain.enums.processing import PostCommitStatus, ProcessingStatus
from visitflow.domain.errors import ConcurrentVisitUpdateError

from ..models.visit_m import VisitMongo
from ..update_ops import to_mongo_update, visit_filter

logger = logging.getLogger("visitflow")


def _record_to_document(visit: VisitRecord) -> Dict[str, Any]:
    return {
        "visit_id": visit.visit_id,
        "owner_id": visit.owner_id,
        "processing_status": visit.processing_status.value,
        "status": visit.status,
        "audio_ref": visit.audio_ref,
        "retry_count": visit.retry_count,
        "created_at": visit.created_at,
        "updated_at": visit.updated_at,
    }


class MongoVisitRepository(VisitRepository):
    """MongoDB implementation of VisitRepository.

    Reads go through the raw collection and ``VisitRecord.from_document`` so
    that older documents (datetime timestamps, missing ledger fields) load
    without model validation errors.
    """

    def _collection(self):
        return VisitMongo.get_motor_collection()

    async def create(self, visit: VisitRecord) -> VisitRecord:
        visit_mongo = VisitMongo(**_record_to_document(visit))
        await visit_mongo.insert()
        logger.info(f"Visit {visit.visit_id} created for owner {visit.owner_id}")
        return visit

    async def get(self, visit_id: str) -> Optional[VisitRecord]:
        doc = await self._collection().find_one({"visit_id": visit_id})
        if not doc:
            return None
        return VisitRecord.from_document(doc)

    async def update_fields(
        self,
        visit_id: str,
        patch: Dict[str, Any],
        expected_status: ExpectedStatus = None,
    ) -> bool:
        update = to_mongo_update(patch)
        if not update:
            return await self.get(visit_id) is not None

        result = await self._collection().update_one(
            visit_filter(visit_id, expected_values(expected_status)), update
        )
        if result.matched_count == 0:
            logger.info(
                f"Conditional update skipped for visit {visit_id} "
                f"(expected={expected_values(expected_status)})"
            )
            return False
        return True

    async def find_by_transcription_id(
        self, transcription_id: str, status: ProcessingStatus
    ) -> Optional[VisitRecord]:
        doc = await self._collection().find_one(
            {"transcription_id": transcription_id, "processing_status": status.value}
        )
        return VisitRecord.from_document(doc) if doc else None

    async def find_stale(
        self, status: ProcessingStatus, updated_before: int, limit: int
    ) -> List[VisitRecord]:
        cursor = (
            self._collection()
            .find({"processing_status": status.value, "updated_at": {"$lt": updated_before}})
            # Never-swept visits first, then the least recently swept.
            .sort([("last_swept_at", 1), ("updated_at", 1)])
            .limit(limit)
        )
        return [VisitRecord.from_document(doc) async for doc in cursor]

    async def find_post_commit_retryable(self, limit: int) -> List[VisitRecord]:
        cursor = (
            self._collection()
            .find(
                {
                    "processing_status": ProcessingStatus.COMPLETED.value,
                    "post_commit_status": PostCommitStatus.PARTIAL_FAILURE.value,
                    # Records written before the flag existed count as eligible.
                    "post_commit_retry_eligible": {"$ne": False},
                }
            )
            .sort("post_commit_last_attempt_at", 1)
            .limit(limit)
        )
        return [VisitRecord.from_document(doc) async for doc in cursor]

    async def find_post_commit_escalated(
        self, limit: int, include_acknowledged: bool = True
    ) -> List[VisitRecord]:
        query: Dict[str, Any] = {
            "post_commit_status": PostCommitStatus.PARTIAL_FAILURE.value,
            "post_commit_escalated_at": {"$ne": None},
            "post_commit_escalation_resolved_at": {"$exists": False},
        }
        if not include_acknowledged:
            query["post_commit_escalation_acknowledged_at"] = {"$exists": False}
        cursor = self._collection().find(query).sort("post_commit_escalated_at", -1).limit(limit)
        return [VisitRecord.from_document(doc) async for doc in cursor]

    async def commit(self, batch: WriteBatch) -> None:
        """Apply the batch in one multi-document transaction (requires a replica set)."""
        visits = self._collection()
        db = visits.database
        try:
            async with await db.client.start_session() as session:
                async with session.start_transaction():
                    for kind, op in batch.operations:
                        if kind == "update_visit":
                            result = await visits.update_one(
                                visit_filter(op["visit_id"], op["expected"]),
                                to_mongo_update(op["patch"]),
                                session=session,
                            )
                            if result.matched_count == 0:
                                raise ConcurrentVisitUpdateError(
                                    op["visit_id"], ",".join(op["expected"] or []) or "any"
                                )
                        elif kind == "delete_many":
                            await db[op["collection"]].delete_many(op["match"], session=session)
                        elif kind == "insert_many":
                            await db[op["collection"]].insert_many(
                                [dict(doc) for doc in op["documents"]], session=session
                            )
                        else:
                            raise ValueError(f"Unknown batch operation: {kind}")
        except PyMongoError as e:
            raise DatabaseError(f"Visit commit failed: {e}", {"operations": len(batch.operations)}) from e
