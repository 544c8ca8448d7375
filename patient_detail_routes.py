"""
Patient medical records (/api/patient-details).

Owners may read their own record; only staff write it.
"""
import logging
from typing import Any, Dict, Optional, Tuple

from fastapi import APIRouter, Depends, HTTPException
from pydantic import EmailStr
from pymongo import ReturnDocument

from context import AppContext, get_context
from database import PATIENT_DETAILS, USERS, serialize
from policy import ADMIN, READ, THERAPIST, WRITE
from schemas import PatientDetail, PatientDetailUpsert, PatientDocument, PatientDocumentCreate
from security import authorize, authorize_owner_or_role, load_user, require_access

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/patient-details", tags=["patient-details"])

staff_only = authorize(THERAPIST, ADMIN)

ALLOWED_DOCUMENT_TYPES = ("application/pdf", "image/png", "image/jpeg")
MAX_DOCUMENT_BYTES = 10 * 1024 * 1024


def _record_for(ctx: AppContext, user: Dict[str, Any]) -> Dict[str, Any]:
    user_id = str(user["_id"])
    record = ctx.db[PATIENT_DETAILS].find_one({"user_id": user_id})
    if record is None:
        return {"user_id": user_id, **PatientDetail(user_id=user_id).model_dump(exclude={"user_id"})}
    return serialize(record)


def _upsert(ctx: AppContext, user_id: str, updated_by: str, changes: Dict[str, Any],
            skip: Tuple[str, ...] = ()) -> Dict[str, Any]:
    """Update that creates the record on first write. $set and $setOnInsert never share a path."""
    now = ctx.now()
    blank = PatientDetail(user_id=user_id).model_dump(exclude={"user_id", "updated_by"})
    on_insert = {k: v for k, v in blank.items() if k not in changes and k not in skip}
    on_insert["created_at"] = now
    return {"$set": {**changes, "updated_by": updated_by, "updated_at": now}, "$setOnInsert": on_insert}


@router.get("")
def find_by_email(email: EmailStr, current_user: Dict[str, Any] = Depends(staff_only),
                  ctx: AppContext = Depends(get_context)):
    user = ctx.db[USERS].find_one({"email": email.strip().lower()}, {"password_hash": 0})
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    require_access(current_user, user, READ, (ADMIN,))
    return {"success": True, "data": _record_for(ctx, user)}


@router.get("/{user_id}")
def get_patient_details(user_id: str, target: Optional[Dict[str, Any]] = Depends(authorize_owner_or_role(ADMIN)),
                        ctx: AppContext = Depends(get_context)):
    if target is None:
        raise HTTPException(status_code=404, detail="User not found")
    return {"success": True, "data": _record_for(ctx, target)}


@router.post("/upsert")
def upsert_patient_details(payload: PatientDetailUpsert, current_user: Dict[str, Any] = Depends(staff_only),
                           ctx: AppContext = Depends(get_context)):
    user = load_user(ctx, payload.user_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    require_access(current_user, user, WRITE, (ADMIN,))

    user_id = str(user["_id"])
    changes = payload.model_dump(exclude={"user_id"}, exclude_unset=True)
    if "medical_notes" in changes and changes["medical_notes"] is not None:
        changes["medical_notes"] = changes["medical_notes"].strip()

    update = _upsert(ctx, user_id, str(current_user["_id"]), changes)
    record = ctx.db[PATIENT_DETAILS].find_one_and_update(
        {"user_id": user_id}, update, upsert=True, return_document=ReturnDocument.AFTER
    )
    logger.info("Patient details for %s saved by %s", user_id, current_user["_id"])
    return {"success": True, "data": serialize(record)}


@router.post("/{user_id}/documents", status_code=201)
def add_document(user_id: str, payload: PatientDocumentCreate,
                 current_user: Dict[str, Any] = Depends(staff_only),
                 target: Optional[Dict[str, Any]] = Depends(authorize_owner_or_role(ADMIN, action=WRITE)),
                 ctx: AppContext = Depends(get_context)):
    if target is None:
        raise HTTPException(status_code=404, detail="User not found")
    mime_type = payload.mime_type.strip().lower()
    if mime_type not in ALLOWED_DOCUMENT_TYPES:
        raise HTTPException(status_code=400, detail="Only PDF, PNG and JPEG documents are allowed")
    if payload.size_bytes is not None and payload.size_bytes > MAX_DOCUMENT_BYTES:
        raise HTTPException(status_code=400, detail="Document exceeds the 10 MB limit")

    document = PatientDocument(
        name=payload.name.strip(),
        url=payload.url.strip(),
        mime_type=mime_type,
        size_bytes=payload.size_bytes,
        uploaded_at=ctx.now(),
        uploaded_by=str(current_user["_id"]),
    )
    update = _upsert(ctx, user_id, str(current_user["_id"]), {}, skip=("documents",))
    update["$push"] = {"documents": document.model_dump()}

    record = ctx.db[PATIENT_DETAILS].find_one_and_update(
        {"user_id": user_id}, update, upsert=True, return_document=ReturnDocument.AFTER
    )
    logger.info("Document %r attached to patient %s", document.name, user_id)
    return {"success": True, "data": serialize(record)}
