"""
Therapist endpoints (/api/therapist).

Hospital and superuser accounts pass the therapist guard; per-patient access
is still decided by the policy (assigned patients, same hospital).
"""
import logging
from typing import Any, Dict, Optional

from bson.objectid import ObjectId
from fastapi import APIRouter, Depends, HTTPException

from context import AppContext, as_naive_utc, get_context
from database import (ACTIVITIES, ASSIGNMENTS, USERS, create_document, get_documents, serialize, serialize_user,
                      to_obj_id)
from policy import ADMIN, CHILD, HOSPITAL, READ, SUPERUSER, THERAPIST, WRITE
from reports import build_child_report
from schemas import ActivityAssignment, AssignmentCreate
from security import authorize, authorize_owner_or_role

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/therapist", tags=["therapist"])

staff_only = authorize(THERAPIST, ADMIN)


def _require_child(patient: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    if not patient or patient.get("role") != CHILD:
        raise HTTPException(status_code=404, detail="Patient not found")
    return patient


@router.get("/patients")
def list_patients(current_user: Dict[str, Any] = Depends(authorize(THERAPIST)),
                  ctx: AppContext = Depends(get_context)):
    role = current_user.get("role")
    filt: Dict[str, Any] = {"role": CHILD}
    if role == THERAPIST:
        ids = [ObjectId(p) for p in current_user.get("assigned_patients") or [] if ObjectId.is_valid(p)]
        filt["_id"] = {"$in": ids}
    elif role == HOSPITAL:
        filt["hospital_id"] = str(current_user["_id"])
    elif role != SUPERUSER:
        filt["_id"] = {"$in": []}
    patients = get_documents(ctx.db, USERS, filt, sort=[("name", 1)])
    return {"success": True, "count": len(patients), "data": [serialize_user(p) for p in patients]}


@router.post("/patients/{patient_id}/assignments", status_code=201)
def assign_activity(patient_id: str, payload: AssignmentCreate,
                    current_user: Dict[str, Any] = Depends(staff_only),
                    patient: Optional[Dict[str, Any]] = Depends(authorize_owner_or_role(ADMIN, action=WRITE)),
                    ctx: AppContext = Depends(get_context)):
    patient = _require_child(patient)
    activity = ctx.db[ACTIVITIES].find_one({"_id": to_obj_id(payload.activity_id), "is_active": True})
    if not activity:
        raise HTTPException(status_code=404, detail="Activity not found")

    due = as_naive_utc(payload.due_date) if payload.due_date else activity.get("due_date")
    assignment = ActivityAssignment(
        activity_id=str(activity["_id"]),
        child_id=str(patient["_id"]),
        assigned_by=str(current_user["_id"]),
        due_date=due,
        notes=payload.notes,
    )
    assignment_id = create_document(ctx.db, ASSIGNMENTS, assignment, ctx.now())
    logger.info("Activity %s assigned to child %s (assignment %s)", activity["_id"], patient["_id"], assignment_id)
    doc = ctx.db[ASSIGNMENTS].find_one({"_id": ObjectId(assignment_id)})
    return {"success": True, "message": "Activity assigned", "data": serialize(doc)}


@router.get("/patients/{patient_id}/report")
def patient_report(patient_id: str,
                   current_user: Dict[str, Any] = Depends(staff_only),
                   patient: Optional[Dict[str, Any]] = Depends(authorize_owner_or_role(ADMIN, action=READ)),
                   ctx: AppContext = Depends(get_context)):
    patient = _require_child(patient)
    return {"success": True, "data": build_child_report(ctx.db, patient, ctx.now())}
