"""
Activity catalogue (/api/activities).
"""
import logging
from typing import Any, Dict, Optional

from bson.objectid import ObjectId
from fastapi import APIRouter, Depends, HTTPException

from context import AppContext, as_naive_utc, get_context
from database import ACTIVITIES, create_document, get_documents, serialize, to_obj_id
from policy import ADMIN, THERAPIST
from schemas import Activity, ActivityCreate
from security import authorize, protect

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/activities", tags=["activities"])


@router.get("")
def list_activities(category: Optional[str] = None, current_user: Dict[str, Any] = Depends(protect),
                    ctx: AppContext = Depends(get_context)):
    filt: Dict[str, Any] = {"is_active": True}
    if category:
        filt["category"] = category
    items = get_documents(ctx.db, ACTIVITIES, filt, sort=[("created_at", -1)])
    return {"success": True, "count": len(items), "data": [serialize(a) for a in items]}


@router.post("", status_code=201)
def create_activity(payload: ActivityCreate, current_user: Dict[str, Any] = Depends(authorize(ADMIN, THERAPIST)),
                    ctx: AppContext = Depends(get_context)):
    data = payload.model_dump()
    if data["due_date"] is not None:
        data["due_date"] = as_naive_utc(data["due_date"])
    activity = Activity(**data, created_by=str(current_user["_id"]))
    activity_id = create_document(ctx.db, ACTIVITIES, activity, ctx.now())
    logger.info("Activity %s created by %s", activity_id, current_user["_id"])
    doc = ctx.db[ACTIVITIES].find_one({"_id": ObjectId(activity_id)})
    return {"success": True, "data": serialize(doc)}


@router.get("/{activity_id}")
def get_activity(activity_id: str, current_user: Dict[str, Any] = Depends(protect),
                 ctx: AppContext = Depends(get_context)):
    doc = ctx.db[ACTIVITIES].find_one({"_id": to_obj_id(activity_id)})
    if not doc:
        raise HTTPException(status_code=404, detail="Activity not found")
    return {"success": True, "data": serialize(doc)}
