"""
Admin endpoints (/api/admin): child/therapist management and maintenance.

Hospital accounts pass the admin guard but only see users whose hospital_id
is theirs.
"""
import logging
from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException
from pymongo import ReturnDocument
from pymongo.collection import Collection

from assignments import mark_overdue_assignments
from context import AppContext, get_context
from database import USERS, get_documents, serialize_user, to_obj_id
from policy import ADMIN, CHILD, HOSPITAL, MANAGE, SUPERUSER, THERAPIST
from schemas import AssignTherapistRequest, RoleType, UserStatusUpdate
from security import authorize, require_access

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin", tags=["admin"])

admin_only = authorize(ADMIN, HOSPITAL)


def _hospital_scope(current_user: Dict[str, Any]) -> Dict[str, Any]:
    if current_user.get("role") == HOSPITAL:
        return {"hospital_id": str(current_user["_id"])}
    return {}


@router.get("/children/unassigned")
def unassigned_children(current_user: Dict[str, Any] = Depends(admin_only),
                        ctx: AppContext = Depends(get_context)):
    filt = {"role": CHILD, "is_active": True, "assigned_therapist": None, **_hospital_scope(current_user)}
    children = get_documents(ctx.db, USERS, filt, sort=[("created_at", -1)])
    total = ctx.db[USERS].count_documents(filt)
    return {
        "success": True,
        "total": total,
        "count": len(children),
        "data": [serialize_user(c) for c in children],
    }


def _move_child(users: Collection, child: Dict[str, Any], therapist: Dict[str, Any],
                now: datetime) -> Dict[str, Any]:
    """Point `child` at `therapist`, then sync both therapists' patient lists.

    The child write only matches the therapist it was read with; a
    reassignment that landed in between gets a 409.
    """
    cid, tid = str(child["_id"]), str(therapist["_id"])
    previous = child.get("assigned_therapist")
    updated = users.find_one_and_update(
        {"_id": child["_id"], "assigned_therapist": previous},
        {"$set": {"assigned_therapist": tid, "updated_at": now}},
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        raise HTTPException(status_code=409, detail="Child was reassigned concurrently, please retry")
    if previous and previous != tid:
        users.update_one({"_id": to_obj_id(previous)}, {"$pull": {"assigned_patients": cid}})
    users.update_one({"_id": therapist["_id"]}, {"$addToSet": {"assigned_patients": cid}})
    return updated


@router.put("/children/{child_id}/assign-therapist")
def assign_therapist(child_id: str, payload: AssignTherapistRequest,
                     current_user: Dict[str, Any] = Depends(admin_only),
                     ctx: AppContext = Depends(get_context)):
    users = ctx.db[USERS]
    child = users.find_one({"_id": to_obj_id(child_id)})
    if not child or child.get("role") != CHILD:
        raise HTTPException(status_code=404, detail="Child not found")
    therapist = users.find_one({"_id": to_obj_id(payload.therapist_id)})
    if not therapist or therapist.get("role") != THERAPIST:
        raise HTTPException(status_code=404, detail="Therapist not found")

    require_access(current_user, child, MANAGE, (ADMIN,))
    require_access(current_user, therapist, MANAGE, (ADMIN,))

    cid, tid = str(child["_id"]), str(therapist["_id"])
    updated = _move_child(users, child, therapist, ctx.now())
    logger.info("Assigned therapist %s to child %s", tid, cid)

    return {
        "success": True,
        "message": "Therapist assigned successfully",
        "data": {
            "id": cid,
            "name": updated.get("name"),
            "email": updated.get("email"),
            "role": updated.get("role"),
            "assigned_therapist": {"id": tid, "name": therapist.get("name"), "email": therapist.get("email")},
        },
    }


@router.get("/users")
def list_users(role: Optional[RoleType] = None, current_user: Dict[str, Any] = Depends(admin_only),
               ctx: AppContext = Depends(get_context)):
    filt: Dict[str, Any] = dict(_hospital_scope(current_user))
    if role:
        filt["role"] = role
    users = get_documents(ctx.db, USERS, filt, sort=[("created_at", -1)])
    return {"success": True, "count": len(users), "data": [serialize_user(u) for u in users]}


@router.put("/users/{user_id}/status")
def set_user_status(user_id: str, payload: UserStatusUpdate, current_user: Dict[str, Any] = Depends(admin_only),
                    ctx: AppContext = Depends(get_context)):
    target = ctx.db[USERS].find_one({"_id": to_obj_id(user_id)})
    if not target:
        raise HTTPException(status_code=404, detail="User not found")
    if target["_id"] == current_user["_id"]:
        raise HTTPException(status_code=400, detail="You cannot change your own account status")
    if target.get("role") == SUPERUSER and current_user.get("role") != SUPERUSER:
        raise HTTPException(status_code=403, detail="Only superuser can change a superuser account")
    require_access(current_user, target, MANAGE, (ADMIN,))

    updated = ctx.db[USERS].find_one_and_update(
        {"_id": target["_id"]},
        {"$set": {"is_active": payload.is_active, "updated_at": ctx.now()}},
        return_document=ReturnDocument.AFTER,
    )
    logger.info("User %s is_active=%s (by %s)", user_id, payload.is_active, current_user["_id"])
    return {"success": True, "data": serialize_user(updated)}


@router.post("/maintenance/mark-overdue")
def run_overdue_sweep(current_user: Dict[str, Any] = Depends(authorize(ADMIN)),
                      ctx: AppContext = Depends(get_context)):
    modified = mark_overdue_assignments(ctx.db, ctx.now())
    return {"success": True, "modified": modified}
