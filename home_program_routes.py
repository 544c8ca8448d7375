"""
Home programs (/api/home-programs): activity plans a child works through at home.
"""
import logging
from typing import Any, Dict, List, Optional

from bson.objectid import ObjectId
from fastapi import APIRouter, Depends, HTTPException
from pymongo import ReturnDocument

from context import AppContext, as_naive_utc, get_context
from database import ACTIVITIES, HOME_PROGRAMS, USERS, create_document, get_documents, serialize, to_obj_id
from policy import ADMIN, CHILD, THERAPIST, WRITE
from schemas import (CompleteItemRequest, CompletionRecord, HomeProgram, HomeProgramCreate, HomeProgramItem,
                     HomeProgramItemCreate, HomeProgramUpdate)
from security import authorize, authorize_owner_or_role, load_user, protect, require_access

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/home-programs", tags=["home-programs"])

staff_only = authorize(THERAPIST, ADMIN)


def _build_items(ctx: AppContext, items: List[HomeProgramItemCreate]) -> List[Dict[str, Any]]:
    ids = {i.activity_id for i in items}
    found = {
        str(a["_id"])
        for a in ctx.db[ACTIVITIES].find({"_id": {"$in": [to_obj_id(i) for i in ids]}, "is_active": True})
    }
    missing = ids - found
    if missing:
        raise HTTPException(status_code=404, detail=f"Activity not found: {', '.join(sorted(missing))}")
    built = []
    for item in items:
        built.append(HomeProgramItem(
            item_id=str(ObjectId()),
            activity_id=item.activity_id,
            target_frequency_per_week=item.target_frequency_per_week,
            due_date=as_naive_utc(item.due_date) if item.due_date else None,
            notes=item.notes,
        ).model_dump())
    return built


def _load_program(ctx: AppContext, program_id: str) -> Dict[str, Any]:
    program = ctx.db[HOME_PROGRAMS].find_one({"_id": to_obj_id(program_id)})
    if not program:
        raise HTTPException(status_code=404, detail="Home program not found")
    return program


def _child(ctx: AppContext, child_id: str) -> Dict[str, Any]:
    child = load_user(ctx, child_id)
    if not child or child.get("role") != CHILD:
        raise HTTPException(status_code=404, detail="Child not found")
    return child


@router.get("/{user_id}")
def child_programs(user_id: str, status: Optional[str] = None,
                   target: Optional[Dict[str, Any]] = Depends(authorize_owner_or_role(ADMIN)),
                   ctx: AppContext = Depends(get_context)):
    if target is None or target.get("role") != CHILD:
        raise HTTPException(status_code=404, detail="Child not found")
    filt: Dict[str, Any] = {"child_id": user_id}
    if status:
        filt["status"] = status
    programs = get_documents(ctx.db, HOME_PROGRAMS, filt, sort=[("created_at", -1)])
    return {"success": True, "count": len(programs), "data": [serialize(p) for p in programs]}


@router.post("", status_code=201)
def create_program(payload: HomeProgramCreate, current_user: Dict[str, Any] = Depends(staff_only),
                   ctx: AppContext = Depends(get_context)):
    child = _child(ctx, payload.child_id)
    require_access(current_user, child, WRITE, (ADMIN,))

    program = HomeProgram(
        child_id=str(child["_id"]),
        assigned_by=str(current_user["_id"]),
        title=payload.title.strip(),
        description=payload.description,
        start_date=as_naive_utc(payload.start_date) if payload.start_date else ctx.now(),
        end_date=as_naive_utc(payload.end_date) if payload.end_date else None,
    )
    doc = program.model_dump()
    doc["items"] = _build_items(ctx, payload.items)
    program_id = create_document(ctx.db, HOME_PROGRAMS, doc, ctx.now())
    logger.info("Home program %s created for child %s", program_id, child["_id"])
    return {"success": True, "data": serialize(ctx.db[HOME_PROGRAMS].find_one({"_id": ObjectId(program_id)}))}


@router.put("/{program_id}")
def update_program(program_id: str, payload: HomeProgramUpdate, current_user: Dict[str, Any] = Depends(staff_only),
                   ctx: AppContext = Depends(get_context)):
    program = _load_program(ctx, program_id)
    require_access(current_user, load_user(ctx, program["child_id"]), WRITE, (ADMIN,), owner_id=program["child_id"])

    changes = payload.model_dump(exclude_unset=True, exclude_none=True, exclude={"add_items"})
    if "end_date" in changes:
        changes["end_date"] = as_naive_utc(changes["end_date"])
    update: Dict[str, Any] = {"$set": {**changes, "updated_at": ctx.now()}}
    if payload.add_items:
        update["$push"] = {"items": {"$each": _build_items(ctx, payload.add_items)}}

    updated = ctx.db[HOME_PROGRAMS].find_one_and_update(
        {"_id": program["_id"]}, update, return_document=ReturnDocument.AFTER
    )
    return {"success": True, "data": serialize(updated)}


@router.post("/{program_id}/complete")
def complete_item(program_id: str, payload: CompleteItemRequest, current_user: Dict[str, Any] = Depends(protect),
                  ctx: AppContext = Depends(get_context)):
    program = _load_program(ctx, program_id)
    require_access(current_user, load_user(ctx, program["child_id"]), WRITE, (ADMIN,), owner_id=program["child_id"])
    if program.get("status") != "active":
        raise HTTPException(status_code=400, detail="Home program is not active")

    if not any(item.get("item_id") == payload.item_id for item in program.get("items", [])):
        raise HTTPException(status_code=404, detail="Program item not found")

    now = ctx.now()
    record = CompletionRecord(
        item_id=payload.item_id,
        completed_at=now,
        completed_by=str(current_user["_id"]),
        duration_minutes=payload.duration_minutes,
        notes=payload.notes,
    )
    updated = ctx.db[HOME_PROGRAMS].find_one_and_update(
        {"_id": program["_id"], "status": "active"},
        {"$push": {"completions": record.model_dump()}, "$set": {"updated_at": now}},
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        raise HTTPException(status_code=400, detail="Home program is not active")
    if current_user.get("role") == CHILD:
        ctx.db[USERS].update_one({"_id": current_user["_id"]}, {"$inc": {"stats.total_activities_completed": 1}})
    logger.info("Item %s of home program %s completed by %s", payload.item_id, program_id, current_user["_id"])
    return {"success": True, "message": "Completion recorded", "data": serialize(updated)}
