from typing import Any, Optional

from bson import ObjectId
from bson.errors import InvalidId


def to_object_id(value: Any) -> Optional[ObjectId]:
    """Coerce a str id to ObjectId; None when it is not a valid id."""
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        return None


def normalize_id(doc: Optional[dict]) -> Optional[dict]:
    # string ids for the API layer
    if doc is None:
        return None
    doc["_id"] = str(doc.get("_id"))
    if "conversation_id" in doc:
        doc["conversation_id"] = str(doc["conversation_id"])
    return doc
