"""
Translate domain patches (plain values plus field markers) to MongoDB update documents.
"""

from typing import Any, Dict, List, Optional

from visitflow.domain.field_ops import FIELD_DELETE, ArrayUnion, Increment


def to_mongo_update(patch: Dict[str, Any]) -> Dict[str, Dict[str, Any]]:
    update: Dict[str, Dict[str, Any]] = {}
    for key, value in patch.items():
        if value is FIELD_DELETE:
            update.setdefault("$unset", {})[key] = ""
        elif isinstance(value, Increment):
            update.setdefault("$inc", {})[key] = value.amount
        elif isinstance(value, ArrayUnion):
            update.setdefault("$addToSet", {})[key] = {"$each": list(value.values)}
        else:
            update.setdefault("$set", {})[key] = value
    return update


def visit_filter(visit_id: str, expected: Optional[List[str]] = None) -> Dict[str, Any]:
    match: Dict[str, Any] = {"visit_id": visit_id}
    if expected:
        match["processing_status"] = {"$in": list(expected)}
    return match
