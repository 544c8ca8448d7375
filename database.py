"""
MongoDB access helpers.

Each Pydantic schema in schemas.py maps to one collection whose name is the
lowercase class name (User -> "user", ActivityAssignment -> "activityassignment").
"""
import logging
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Tuple, Union

from bson.objectid import ObjectId
from fastapi import HTTPException
from pydantic import BaseModel
from pymongo import ASCENDING, MongoClient
from pymongo.database import Database

from context import utcnow
from settings import Settings

logger = logging.getLogger(__name__)

USERS = "user"
ACTIVITIES = "activity"
ASSIGNMENTS = "activityassignment"
HOME_PROGRAMS = "homeprogram"
PROGRESS = "progress"
PATIENT_DETAILS = "patientdetail"

# never leave the API
SECRET_FIELDS = (
    "password_hash",
    "password_reset_token",
    "password_reset_expires",
    "email_verification_token",
    "email_verification_expires",
)


def connect(settings: Settings) -> Database:
    client = MongoClient(settings.database_url)
    logger.info("Using MongoDB database %r", settings.database_name)
    return client[settings.database_name]


def ensure_indexes(db: Database) -> None:
    users = db[USERS]
    users.create_index([("email", ASCENDING)], unique=True)
    users.create_index([("role", ASCENDING)])
    users.create_index([("is_active", ASCENDING)])
    users.create_index([("assigned_therapist", ASCENDING)])
    users.create_index([("parent_id", ASCENDING)])
    db[ASSIGNMENTS].create_index([("child_id", ASCENDING), ("is_active", ASCENDING)])
    db[PROGRESS].create_index([("user_id", ASCENDING), ("program_id", ASCENDING)])
    db[HOME_PROGRAMS].create_index([("child_id", ASCENDING)])
    db[PATIENT_DETAILS].create_index([("user_id", ASCENDING)], unique=True)


def create_document(db: Database, collection_name: str, data: Union[BaseModel, Dict[str, Any]],
                    now: Optional[datetime] = None) -> str:
    """Insert a document, stamping created_at/updated_at. Returns the new id as a string."""
    if isinstance(data, BaseModel):
        doc = data.model_dump()
    else:
        doc = dict(data)
    stamp = now or utcnow()
    doc.setdefault("created_at", stamp)
    doc["updated_at"] = stamp
    result = db[collection_name].insert_one(doc)
    return str(result.inserted_id)


def get_documents(db: Database, collection_name: str, filter_dict: Optional[Dict[str, Any]] = None,
                  limit: Optional[int] = None, sort: Optional[List[Tuple[str, int]]] = None) -> List[Dict[str, Any]]:
    cursor = db[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def to_obj_id(id_str: str) -> ObjectId:
    try:
        return ObjectId(id_str)
    except Exception:
        raise HTTPException(status_code=400, detail="Invalid id format")


def _clean(value: Any) -> Any:
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, dict):
        return {k: _clean(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_clean(v) for v in value]
    return value


def serialize(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Make a stored document JSON friendly: `_id` becomes `id`, secrets are dropped."""
    if doc is None:
        return None
    out = {k: _clean(v) for k, v in doc.items() if k not in SECRET_FIELDS}
    if "_id" in out:
        out["id"] = out.pop("_id")
    return out


def age_on(born: Optional[datetime], today: date) -> Optional[int]:
    if born is None:
        return None
    age = today.year - born.year
    if (today.month, today.day) < (born.month, born.day):
        age -= 1
    return age


def serialize_user(doc: Optional[Dict[str, Any]], today: Optional[date] = None) -> Optional[Dict[str, Any]]:
    out = serialize(doc)
    if out is not None:
        out["age"] = age_on(doc.get("date_of_birth"), today or utcnow().date())
    return out
