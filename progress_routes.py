"""
Progress tracking (/api/progress).

Entries belong to a user and a home program. Owners and their care team read
and write them; therapists and superusers review them.
"""
import logging
import math
from typing import Any, Dict, List, Optional

from bson.objectid import ObjectId
from fastapi import APIRouter, Depends, HTTPException, Query
from pymongo import ReturnDocument

from context import AppContext, get_context
from database import HOME_PROGRAMS, PROGRESS, create_document, serialize, to_obj_id
from policy import ADMIN, READ, REVIEW, SUPERUSER, THERAPIST, WRITE
from schemas import (PROGRESS_STATUS_ORDER, MilestoneType, Progress, ProgressCreate, ProgressReview,
                     ProgressStatus, ProgressUpdate)
from security import authorize_owner_or_role, load_user, protect, require_access

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/progress", tags=["progress"])


def summarize(entries: List[Dict[str, Any]]) -> Dict[str, Any]:
    if not entries:
        return {"total_entries": 0, "average_progress": 0, "average_score": None,
                "total_time_spent": 0, "latest_progress": None, "milestones": []}
    scores = [e["score"] for e in entries if e.get("score") is not None]
    latest = max(entries, key=lambda e: e.get("created_at") or 0)
    milestones = sorted({e["milestone"] for e in entries if e.get("milestone")})
    return {
        "total_entries": len(entries),
        "average_progress": round(sum(e.get("progress_percentage", 0) for e in entries) / len(entries), 2),
        "average_score": round(sum(scores) / len(scores), 2) if scores else None,
        "total_time_spent": sum(e.get("time_spent") or 0 for e in entries),
        "latest_progress": latest.get("progress_percentage"),
        "milestones": milestones,
    }


def _load_entry(ctx: AppContext, progress_id: str) -> Dict[str, Any]:
    entry = ctx.db[PROGRESS].find_one({"_id": to_obj_id(progress_id)})
    if not entry:
        raise HTTPException(status_code=404, detail="Progress entry not found")
    return entry


def _check_entry_access(ctx: AppContext, current_user: Dict[str, Any], entry: Dict[str, Any], action: str) -> None:
    owner = load_user(ctx, entry["user_id"])
    require_access(current_user, owner, action, (ADMIN,), owner_id=entry["user_id"])


def _status_rank(status: str) -> int:
    return PROGRESS_STATUS_ORDER.index(status)


@router.post("", status_code=201)
def create_progress(payload: ProgressCreate, current_user: Dict[str, Any] = Depends(protect),
                    ctx: AppContext = Depends(get_context)):
    owner_id = payload.user_id or str(current_user["_id"])
    owner = load_user(ctx, owner_id)
    if not owner:
        raise HTTPException(status_code=404, detail="User not found")
    require_access(current_user, owner, WRITE, (ADMIN,))

    program = ctx.db[HOME_PROGRAMS].find_one({"_id": to_obj_id(payload.program_id)})
    if not program:
        raise HTTPException(status_code=404, detail="Program not found")
    if program.get("child_id") != owner_id:
        raise HTTPException(status_code=400, detail="Program does not belong to this user")
    if payload.activity_id and not ObjectId.is_valid(payload.activity_id):
        raise HTTPException(status_code=400, detail="activity_id must be a valid id")

    fields = payload.model_dump(exclude={"user_id"}, exclude_none=True)
    entry = Progress(user_id=owner_id, **fields)
    progress_id = create_document(ctx.db, PROGRESS, entry, ctx.now())
    logger.info("Progress %s recorded for user %s", progress_id, owner_id)
    doc = ctx.db[PROGRESS].find_one({"_id": ObjectId(progress_id)})
    return {"success": True, "data": serialize(doc)}


@router.get("/entry/{progress_id}")
def get_progress_entry(progress_id: str, current_user: Dict[str, Any] = Depends(protect),
                       ctx: AppContext = Depends(get_context)):
    entry = _load_entry(ctx, progress_id)
    _check_entry_access(ctx, current_user, entry, READ)
    return {"success": True, "data": serialize(entry)}


@router.get("/{user_id}")
def user_progress(user_id: str,
                  page: int = Query(1, ge=1),
                  limit: int = Query(10, ge=1, le=100),
                  program_id: Optional[str] = None,
                  status: Optional[ProgressStatus] = None,
                  milestone: Optional[MilestoneType] = None,
                  target: Optional[Dict[str, Any]] = Depends(authorize_owner_or_role(ADMIN)),
                  ctx: AppContext = Depends(get_context)):
    if target is None:
        raise HTTPException(status_code=404, detail="User not found")
    filt: Dict[str, Any] = {"user_id": user_id}
    if program_id:
        if not ObjectId.is_valid(program_id):
            raise HTTPException(status_code=400, detail="program_id must be a valid id")
        filt["program_id"] = program_id
    if status:
        filt["status"] = status
    if milestone:
        filt["milestone"] = milestone

    collection = ctx.db[PROGRESS]
    total = collection.count_documents(filt)
    items = list(collection.find(filt).sort("created_at", -1).skip((page - 1) * limit).limit(limit))
    return {
        "success": True,
        "data": {
            "progress": [serialize(p) for p in items],
            "pagination": {"page": page, "limit": limit, "total": total,
                           "pages": math.ceil(total / limit) if total else 0},
            "summary": summarize(list(collection.find(filt))),
        },
    }


@router.get("/{user_id}/{program_id}")
def program_progress(user_id: str, program_id: str,
                     target: Optional[Dict[str, Any]] = Depends(authorize_owner_or_role(ADMIN)),
                     ctx: AppContext = Depends(get_context)):
    program = ctx.db[HOME_PROGRAMS].find_one({"_id": to_obj_id(program_id)})
    if not program or program.get("child_id") != user_id:
        raise HTTPException(status_code=404, detail="Program not found")
    entries = list(ctx.db[PROGRESS].find({"user_id": user_id, "program_id": program_id}).sort("created_at", 1))
    return {
        "success": True,
        "data": {
            "program": serialize(program),
            "progress": [serialize(p) for p in entries],
            "summary": summarize(entries),
        },
    }


@router.put("/{progress_id}")
def update_progress(progress_id: str, payload: ProgressUpdate, current_user: Dict[str, Any] = Depends(protect),
                    ctx: AppContext = Depends(get_context)):
    entry = _load_entry(ctx, progress_id)
    _check_entry_access(ctx, current_user, entry, WRITE)

    # null means "leave unchanged"; required and enum fields are never cleared
    changes = payload.model_dump(exclude_unset=True, exclude_none=True)
    if not changes:
        raise HTTPException(status_code=400, detail="No progress fields provided")
    if changes.get("status") and _status_rank(changes["status"]) < _status_rank(entry.get("status", "draft")):
        raise HTTPException(status_code=400, detail="Progress status cannot move backwards")
    if changes.get("milestone") and changes["milestone"] != "custom":
        changes["custom_milestone"] = None
    elif "custom_milestone" in changes and entry.get("milestone") != "custom" and changes.get("milestone") != "custom":
        raise HTTPException(status_code=400,
                            detail='customMilestone should only be provided when milestone is "custom"')
    changes["updated_at"] = ctx.now()

    updated = ctx.db[PROGRESS].find_one_and_update(
        {"_id": entry["_id"]}, {"$set": changes}, return_document=ReturnDocument.AFTER
    )
    return {"success": True, "data": serialize(updated)}


@router.delete("/{progress_id}")
def delete_progress(progress_id: str, current_user: Dict[str, Any] = Depends(protect),
                    ctx: AppContext = Depends(get_context)):
    entry = _load_entry(ctx, progress_id)
    _check_entry_access(ctx, current_user, entry, WRITE)
    ctx.db[PROGRESS].delete_one({"_id": entry["_id"]})
    logger.info("Progress %s deleted by %s", progress_id, current_user["_id"])
    return {"success": True, "message": "Progress entry deleted successfully"}


@router.post("/{progress_id}/review")
def review_progress(progress_id: str, payload: ProgressReview, current_user: Dict[str, Any] = Depends(protect),
                    ctx: AppContext = Depends(get_context)):
    if current_user.get("role") not in (THERAPIST, SUPERUSER):
        raise HTTPException(status_code=403, detail="Only therapists and superusers can review progress")
    entry = _load_entry(ctx, progress_id)
    _check_entry_access(ctx, current_user, entry, REVIEW)

    if _status_rank(payload.status) < _status_rank(entry.get("status", "draft")):
        raise HTTPException(status_code=400, detail="Progress status cannot move backwards")

    now = ctx.now()
    updated = ctx.db[PROGRESS].find_one_and_update(
        {"_id": entry["_id"]},
        {"$set": {
            "status": payload.status,
            "review_notes": payload.review_notes,
            "reviewed_by": str(current_user["_id"]),
            "reviewed_at": now,
            "updated_at": now,
        }},
        return_document=ReturnDocument.AFTER,
    )
    logger.info("Progress %s marked %s by %s", progress_id, payload.status, current_user["_id"])
    return {"success": True, "data": serialize(updated)}
