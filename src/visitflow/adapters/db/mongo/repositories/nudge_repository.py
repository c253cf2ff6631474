"""
Follow-up nudges created from a committed visit.

Only what changed since the owner's existing nudges is scheduled: a
medication or condition that already has a pending nudge is skipped.
"""

import logging
from typing import Any, Dict, List, Tuple

from visitflow.application.ports.services.post_commit_services import NudgeAnalyzer
from visitflow.application.services.medication_reconciliation import canonical_medication_name
from visitflow.core.utils.datetime_utils import MILLIS_PER_MINUTE, now_millis
from visitflow.domain.entities.visit_summary import VisitSummary

from ..models.visit_m import NudgeMongo

logger = logging.getLogger("visitflow")

MILLIS_PER_DAY = 24 * 60 * MILLIS_PER_MINUTE
MEDICATION_CHECK_IN_DAYS = 3
CONDITION_FOLLOW_UP_DAYS = 7


class MongoNudgeAnalyzer(NudgeAnalyzer):
    async def analyze_visit_with_delta(
        self, owner_id: str, visit_id: str, summary: VisitSummary
    ) -> Dict[str, Any]:
        now = now_millis()
        candidates: List[Tuple[str, str, str, int]] = []

        for entry in summary.medications.started + summary.medications.changed:
            canonical = canonical_medication_name(entry.name)
            if canonical:
                candidates.append(
                    (
                        f"medication:{canonical}",
                        "medication_check_in",
                        f"How is {entry.name} working for you so far?",
                        now + MEDICATION_CHECK_IN_DAYS * MILLIS_PER_DAY,
                    )
                )
        for diagnosis in summary.diagnoses:
            canonical = canonical_medication_name(diagnosis)
            if canonical:
                candidates.append(
                    (
                        f"condition:{canonical}",
                        "condition_follow_up",
                        f"Any changes with your {diagnosis} since your visit?",
                        now + CONDITION_FOLLOW_UP_DAYS * MILLIS_PER_DAY,
                    )
                )

        if not candidates:
            return {"nudges_created": 0, "reasoning": "No new medications or diagnoses"}

        existing = await NudgeMongo.get_motor_collection().distinct(
            "subject_key",
            {
                "owner_id": owner_id,
                "status": "pending",
                "subject_key": {"$in": [key for key, _, _, _ in candidates]},
            },
        )
        covered = set(existing)

        created = 0
        for subject_key, kind, message, scheduled_for in candidates:
            if subject_key in covered:
                continue
            await NudgeMongo(
                owner_id=owner_id,
                visit_id=visit_id,
                subject_key=subject_key,
                kind=kind,
                message=message,
                scheduled_for=scheduled_for,
                created_at=now,
            ).insert()
            covered.add(subject_key)
            created += 1

        skipped = len(candidates) - created
        reasoning = f"{created} new follow-up(s); {skipped} already covered by pending nudges"
        logger.info(f"[Nudges] owner={owner_id} visit={visit_id} {reasoning}")
        return {"nudges_created": created, "reasoning": reasoning}
