"""
MongoDB action items derived from visit next steps.
"""

from typing import Any, Dict, List

from visitflow.application.ports.repositories.related_repos import ActionSyncRepository
from visitflow.application.ports.repositories.visit_repo import WriteBatch

from ..models.visit_m import ActionMongo


class MongoActionRepository(ActionSyncRepository):
    async def replace_for_visit(
        self, batch: WriteBatch, visit_id: str, payloads: List[Dict[str, Any]]
    ) -> None:
        collection = ActionMongo.Settings.name
        batch.delete_many(collection, {"visit_id": visit_id})
        batch.insert_many(collection, payloads)

    async def list_for_visit(self, visit_id: str) -> List[Dict[str, Any]]:
        actions = await ActionMongo.find(ActionMongo.visit_id == visit_id).sort("created_at").to_list()
        return [
            {
                "id": str(action.id),
                "owner_id": action.owner_id,
                "visit_id": action.visit_id,
                "description": action.description,
                "source": action.source,
                "completed": action.completed,
                "created_at": action.created_at,
            }
            for action in actions
        ]
