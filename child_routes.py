"""
Child endpoints (/api/child): own activities, start/submit, progress report.
"""
import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException, Response
from pymongo import ReturnDocument

from assignments import effective_status, is_overdue
from context import AppContext, get_context
from database import ASSIGNMENTS, USERS, to_obj_id
from policy import CHILD
from reports import activity_names, build_child_report, render_report_pdf
from schemas import SubmitActivityRequest
from security import protect

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/child", tags=["child"])


def _require_child(current_user: Dict[str, Any], action: str) -> str:
    if current_user.get("role") != CHILD:
        raise HTTPException(status_code=403, detail=f"Only children can {action}")
    return str(current_user["_id"])


def _own_assignment(ctx: AppContext, assignment_id: str, child_id: str) -> Dict[str, Any]:
    assignment = ctx.db[ASSIGNMENTS].find_one(
        {"_id": to_obj_id(assignment_id), "child_id": child_id, "is_active": True}
    )
    if not assignment:
        raise HTTPException(status_code=404, detail="Activity assignment not found")
    return assignment


@router.get("/activities")
def my_activities(current_user: Dict[str, Any] = Depends(protect), ctx: AppContext = Depends(get_context)):
    child_id = _require_child(current_user, "access this endpoint")
    now = ctx.now()
    assignments = list(ctx.db[ASSIGNMENTS].find({"child_id": child_id, "is_active": True}).sort("created_at", -1))
    activities = activity_names(ctx.db, [a["activity_id"] for a in assignments])

    data = []
    for a in assignments:
        activity = activities.get(a["activity_id"]) or {}
        data.append({
            "assignment_id": str(a["_id"]),
            "activity_id": a["activity_id"],
            "name": activity.get("name"),
            "description": activity.get("description"),
            "steps": activity.get("steps", []),
            "assistance": activity.get("assistance"),
            "media_urls": activity.get("media_urls", []),
            "due_date": a.get("due_date"),
            "completion_status": effective_status(a, now),
            "score": a.get("score"),
            "completion_video_url": a.get("completion_video_url"),
            "started_date": a.get("started_date"),
            "completed_date": a.get("completed_date"),
            "is_overdue": is_overdue(a, now),
        })
    return {"success": True, "total": len(data), "data": data}


@router.put("/activities/{assignment_id}/start")
def start_activity(assignment_id: str, current_user: Dict[str, Any] = Depends(protect),
                   ctx: AppContext = Depends(get_context)):
    child_id = _require_child(current_user, "start activities")
    assignment = _own_assignment(ctx, assignment_id, child_id)
    if assignment.get("completion_status") != "pending":
        raise HTTPException(status_code=400, detail="Activity is already in progress or completed")

    now = ctx.now()
    updated = ctx.db[ASSIGNMENTS].find_one_and_update(
        {"_id": assignment["_id"], "completion_status": "pending"},
        {"$set": {"completion_status": "in-progress", "started_date": now, "updated_at": now}},
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        raise HTTPException(status_code=400, detail="Activity is already in progress or completed")
    return {
        "success": True,
        "message": "Activity started",
        "data": {
            "assignment_id": str(updated["_id"]),
            "completion_status": updated["completion_status"],
            "started_date": updated["started_date"],
        },
    }


@router.put("/activities/{assignment_id}/submit")
def submit_activity(assignment_id: str, payload: SubmitActivityRequest,
                    current_user: Dict[str, Any] = Depends(protect), ctx: AppContext = Depends(get_context)):
    child_id = _require_child(current_user, "submit activities")
    assignment = _own_assignment(ctx, assignment_id, child_id)
    if assignment.get("completion_status") == "completed":
        raise HTTPException(status_code=400, detail="Activity already completed")

    now = ctx.now()
    updated = ctx.db[ASSIGNMENTS].find_one_and_update(
        {"_id": assignment["_id"], "completion_status": {"$ne": "completed"}},
        {"$set": {
            "completion_status": "completed",
            "completion_video_url": payload.completion_video_url,
            "score": payload.score,
            "completed_date": now,
            "started_date": assignment.get("started_date") or now,
            "updated_at": now,
        }},
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        raise HTTPException(status_code=400, detail="Activity already completed")
    ctx.db[USERS].update_one({"_id": current_user["_id"]}, {"$inc": {"stats.total_activities_completed": 1}})
    logger.info("Child %s completed assignment %s", child_id, assignment_id)

    return {
        "success": True,
        "message": "Activity submitted successfully",
        "data": {
            "assignment_id": str(updated["_id"]),
            "completion_status": updated["completion_status"],
            "completion_video_url": updated["completion_video_url"],
            "score": updated.get("score"),
            "completed_date": updated["completed_date"],
        },
    }


@router.get("/report")
def my_report(current_user: Dict[str, Any] = Depends(protect), ctx: AppContext = Depends(get_context)):
    _require_child(current_user, "access this endpoint")
    return {"success": True, "data": build_child_report(ctx.db, current_user, ctx.now())}


@router.get("/report.pdf")
def my_report_pdf(current_user: Dict[str, Any] = Depends(protect), ctx: AppContext = Depends(get_context)):
    _require_child(current_user, "access this endpoint")
    now = ctx.now()
    pdf = render_report_pdf(build_child_report(ctx.db, current_user, now), now)
    headers = {"Content-Disposition": "inline; filename=activity_report.pdf"}
    return Response(content=pdf, media_type="application/pdf", headers=headers)
