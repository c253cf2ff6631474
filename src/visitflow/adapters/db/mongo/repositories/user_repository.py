"""
MongoDB user profile reads and caregiver share lookups.
"""

from typing import Any, Dict, List, Optional

from visitflow.application.ports.repositories.related_repos import UserProfileRepository

from ..models.visit_m import CaregiverShareMongo, UserMongo


class MongoUserProfileRepository(UserProfileRepository):
    async def get_profile(self, owner_id: str) -> Optional[Dict[str, Any]]:
        doc = await UserMongo.get_motor_collection().find_one({"user_id": owner_id})
        if not doc:
            return None
        doc.pop("_id", None)
        return doc

    async def list_accepted_caregivers(self, owner_id: str) -> List[Dict[str, Any]]:
        shares = await CaregiverShareMongo.find(
            CaregiverShareMongo.owner_id == owner_id,
            CaregiverShareMongo.status == "accepted",
        ).to_list()
        return [
            {"email": share.caregiver_email, "name": share.caregiver_name}
            for share in shares
            if share.caregiver_email
        ]
