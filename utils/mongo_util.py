from datetime import datetime
from typing import Any, Dict, List, Optional

from bson.objectid import ObjectId
from pymongo.errors import PyMongoError

from errors import PersistenceError, ValidationError
from logger import get_logger

logger = get_logger(__name__)


def to_object_id(value: Any, field: str = "id") -> ObjectId:
    if isinstance(value, ObjectId):
        return value
    if not isinstance(value, str) or not ObjectId.is_valid(value):
        raise ValidationError(
            f"Invalid {field}: '{value}'",
            details=[{"field": field, "message": "must be a 24-character hex id"}],
        )
    return ObjectId(value)


def serialize_document(value: Any) -> Any:
    """Converts ObjectId and datetime values to JSON-friendly strings."""
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {key: serialize_document(item) for key, item in value.items()}
    if isinstance(value, list):
        return [serialize_document(item) for item in value]
    return value


def localized_name(doc: Optional[Dict[str, Any]]) -> Dict[str, str]:
    """Reads {"en", "bn"} from a taxonomy document's name."""
    if not doc:
        return {"en": "", "bn": ""}
    name = doc.get("name")
    if isinstance(name, dict):
        return {"en": name.get("en") or "", "bn": name.get("bn") or ""}
    # Older documents carry flat englishName/banglaName fields
    return {
        "en": doc.get("englishName") or (name if isinstance(name, str) else "") or "",
        "bn": doc.get("banglaName") or "",
    }


async def get_doc_by_id(collection, doc_id: Any, field: str = "id") -> Optional[Dict]:
    object_id = to_object_id(doc_id, field)
    try:
        return await collection.find_one({"_id": object_id})
    except PyMongoError as e:
        logger.error(f"Error getting doc from mongo: {e}")
        raise PersistenceError(f"Database read failed: {e}") from e


async def get_docs_mongo(
    collection,
    query: Dict[str, Any],
    sort: Optional[List[tuple]] = None,
    limit: int = 0,
) -> List[Dict]:
    try:
        cursor = collection.find(query)
        if sort:
            cursor = cursor.sort(sort)
        if limit:
            cursor = cursor.limit(limit)
        return await cursor.to_list()
    except PyMongoError as e:
        logger.error(f"Error getting docs from mongo: {e}")
        raise PersistenceError(f"Database read failed: {e}") from e


async def get_chapters_mongo(collection, subject_id: Any) -> List[Dict]:
    return await get_docs_mongo(
        collection,
        {"subjectId": to_object_id(subject_id, "subject_id")},
        sort=[("chapterNo", 1), ("_id", 1)],
    )


async def get_topics_mongo(collection, subject_id: Any, chapter_id: Any) -> List[Dict]:
    return await get_docs_mongo(
        collection,
        {
            "subjectId": to_object_id(subject_id, "subject_id"),
            "chapterId": to_object_id(chapter_id, "chapter_id"),
        },
        sort=[("order", 1), ("_id", 1)],
    )
