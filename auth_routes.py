"""
Registration, login, session and password-reset endpoints (/api/auth).
"""
import logging
import time
from datetime import datetime, time as dtime, timedelta
from typing import Any, Dict, Optional

from bson.objectid import ObjectId
from fastapi import APIRouter, Depends, HTTPException, Response
from pymongo import ReturnDocument

from context import AppContext, get_context
from database import USERS, create_document, serialize_user
from policy import HOSPITAL, RESTRICTED_ROLES, SUPERUSER
from schemas import (ForgotPasswordRequest, LoginRequest, ProfileUpdate, ResetPasswordRequest, SignupRequest,
                     User, VerifyEmailRequest)
from security import (clear_auth_cookie, create_access_token, generate_token_pair, hash_password, hash_token,
                      optional_user, protect, set_auth_cookie, verify_password)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])
dev_router = APIRouter(prefix="/api/auth", tags=["auth (development)"])

GENERIC_RESET_MESSAGE = ("If an account exists with this email, a reset link has been sent "
                         "to your email address.")
RESET_PENDING_MESSAGE = ("Password reset request already sent. Please check your email or wait a few "
                         "minutes before requesting again.")
INVALID_RESET_MESSAGE = "Invalid or expired reset token. Please request a new password reset."
EMAIL_VERIFICATION_HOURS = 24


def normalize_email(email: str) -> str:
    return str(email).strip().lower()


def _session_response(response: Response, ctx: AppContext, user: Dict[str, Any], message: str) -> Dict[str, Any]:
    token = create_access_token(user, ctx.settings, ctx.now())
    set_auth_cookie(response, token, ctx.settings)
    return {"success": True, "message": message, "token": token, "user": serialize_user(user)}


# ---------- Register / login ----------

@router.post("/register", status_code=201)
def register(payload: SignupRequest, response: Response,
             requester: Optional[Dict[str, Any]] = Depends(optional_user),
             ctx: AppContext = Depends(get_context)):
    role = payload.role
    if role in RESTRICTED_ROLES:
        if requester is None:
            raise HTTPException(status_code=403, detail="Authentication required for this role")
        if requester.get("role") != SUPERUSER:
            raise HTTPException(status_code=403, detail=f"Only superuser can create {role} accounts")

    email = normalize_email(payload.email)
    if ctx.db[USERS].find_one({"email": email}, {"_id": 1}):
        raise HTTPException(status_code=400, detail="Email already in use")

    hospital_id = None
    if requester is not None and requester.get("role") == HOSPITAL:
        hospital_id = str(requester["_id"])

    user = User(
        name=payload.name.strip(),
        email=email,
        password_hash=hash_password(payload.password, ctx.settings.bcrypt_rounds),
        role=role,
        hospital_id=hospital_id,
    )
    user_id = create_document(ctx.db, USERS, user, ctx.now())
    doc = ctx.db[USERS].find_one({"_id": ObjectId(user_id)})
    logger.info("Registered %s account %s", role, user_id)
    return _session_response(response, ctx, doc, "Registration successful")


@router.post("/login")
def login(payload: LoginRequest, response: Response, ctx: AppContext = Depends(get_context)):
    rounds = ctx.settings.bcrypt_rounds
    user = ctx.db[USERS].find_one({"email": normalize_email(payload.email)})
    password_ok = verify_password(payload.password, user.get("password_hash") if user else None, rounds)
    if not user or not password_ok or not user.get("is_active", True):
        logger.warning("Failed login attempt")
        raise HTTPException(status_code=401, detail="Invalid credentials")

    now = ctx.now()
    ctx.db[USERS].update_one({"_id": user["_id"]}, {"$set": {"last_login": now}})
    user["last_login"] = now
    return _session_response(response, ctx, user, "Login successful")


@router.post("/logout")
def logout(response: Response, current_user: Dict[str, Any] = Depends(protect),
           ctx: AppContext = Depends(get_context)):
    ctx.db[USERS].update_one({"_id": current_user["_id"]}, {"$set": {"last_logout": ctx.now()}})
    clear_auth_cookie(response, ctx.settings)
    return {"success": True, "message": "Logged out successfully"}


# ---------- Profile ----------

@router.get("/profile")
def get_profile(current_user: Dict[str, Any] = Depends(protect)):
    return {"success": True, "data": serialize_user(current_user)}


@router.put("/profile")
def update_profile(payload: ProfileUpdate, current_user: Dict[str, Any] = Depends(protect),
                   ctx: AppContext = Depends(get_context)):
    changes = payload.model_dump(exclude_unset=True, exclude_none=True)
    if not changes:
        raise HTTPException(status_code=400, detail="No profile fields provided")
    now = ctx.now()
    if "date_of_birth" in changes:
        if changes["date_of_birth"] > now.date():
            raise HTTPException(status_code=400, detail="Date of birth cannot be in the future")
        changes["date_of_birth"] = datetime.combine(changes["date_of_birth"], dtime.min)
    changes["updated_at"] = now
    updated = ctx.db[USERS].find_one_and_update(
        {"_id": current_user["_id"]},
        {"$set": changes},
        return_document=ReturnDocument.AFTER,
    )
    return {"success": True, "message": "Profile updated", "data": serialize_user(updated, now.date())}


# ---------- Password reset ----------

def _issue_reset_token(ctx: AppContext, user: Dict[str, Any]) -> str:
    """Store a fresh reset token unless an unexpired one is pending. Returns the raw token."""
    raw, hashed = generate_token_pair()
    now = ctx.now()
    claimed = ctx.db[USERS].find_one_and_update(
        {
            "_id": user["_id"],
            "$or": [{"password_reset_expires": None}, {"password_reset_expires": {"$lte": now}}],
        },
        {"$set": {
            "password_reset_token": hashed,
            "password_reset_expires": now + timedelta(minutes=ctx.settings.password_reset_minutes),
            "updated_at": now,
        }},
    )
    if claimed is None:
        raise HTTPException(status_code=429, detail=RESET_PENDING_MESSAGE)
    return raw


def _clear_reset_token(ctx: AppContext, user_id: ObjectId, raw: str) -> None:
    ctx.db[USERS].update_one(
        {"_id": user_id, "password_reset_token": hash_token(raw)},
        {"$unset": {"password_reset_token": "", "password_reset_expires": ""}},
    )


@router.post("/forgot-password")
def forgot_password(payload: ForgotPasswordRequest, ctx: AppContext = Depends(get_context)):
    settings = ctx.settings
    generic = {"success": True, "message": GENERIC_RESET_MESSAGE}

    user = ctx.db[USERS].find_one({"email": normalize_email(payload.email)})
    if not user:
        time.sleep(settings.unknown_account_delay_ms / 1000)
        return generic
    if not user.get("is_active", True):
        return generic

    raw = _issue_reset_token(ctx, user)
    logger.info("Password reset requested for user %s", user["_id"])
    if settings.is_development:
        logger.debug("Reset token for %s: %s", user["_id"], raw)

    result = ctx.mailer.send_password_reset_email(user, raw)
    if result.get("success"):
        return generic

    if ctx.mailer.is_configured:
        _clear_reset_token(ctx, user["_id"], raw)
        if settings.is_production:
            return generic
        raise HTTPException(status_code=500, detail="Failed to send reset email. Please try again later.")

    if settings.is_development:
        links = ctx.mailer.reset_links(raw)
        return {**generic, "reset_token": raw, "deep_link": links["deep_link"],
                "note": "Email service not configured. Use this token for testing."}
    return generic


@dev_router.post("/forgot-password-debug")
def forgot_password_debug(payload: ForgotPasswordRequest, ctx: AppContext = Depends(get_context)):
    user = ctx.db[USERS].find_one({"email": normalize_email(payload.email)})
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    if not user.get("is_active", True):
        raise HTTPException(status_code=400, detail="Account inactive")
    raw = _issue_reset_token(ctx, user)
    return {"success": True, "reset_token": raw, "message": "Debug token generated"}


@router.post("/reset-password")
def reset_password(payload: ResetPasswordRequest, ctx: AppContext = Depends(get_context)):
    hashed = hash_token(payload.token)
    now = ctx.now()
    pending = {"password_reset_token": hashed, "password_reset_expires": {"$gt": now}}

    user = ctx.db[USERS].find_one(pending, {"_id": 1, "is_active": 1})
    if not user:
        raise HTTPException(status_code=400, detail=INVALID_RESET_MESSAGE)
    if not user.get("is_active", True):
        raise HTTPException(status_code=403, detail="Account is deactivated. Please contact support.")

    updated = ctx.db[USERS].find_one_and_update(
        {"_id": user["_id"], **pending},
        {
            "$set": {"password_hash": hash_password(payload.password, ctx.settings.bcrypt_rounds),
                     "updated_at": now},
            "$unset": {"password_reset_token": "", "password_reset_expires": ""},
        },
    )
    if updated is None:
        raise HTTPException(status_code=400, detail=INVALID_RESET_MESSAGE)

    logger.info("Password reset completed for user %s", user["_id"])
    return {"success": True,
            "message": "Password has been reset successfully. You can now login with your new password."}


# ---------- Email verification ----------

@router.post("/verify-email/request")
def request_email_verification(current_user: Dict[str, Any] = Depends(protect),
                               ctx: AppContext = Depends(get_context)):
    if current_user.get("is_email_verified"):
        raise HTTPException(status_code=400, detail="Email already verified")
    raw, hashed = generate_token_pair()
    now = ctx.now()
    ctx.db[USERS].update_one(
        {"_id": current_user["_id"]},
        {"$set": {"email_verification_token": hashed,
                  "email_verification_expires": now + timedelta(hours=EMAIL_VERIFICATION_HOURS)}},
    )
    result = ctx.mailer.send_verification_email(current_user, raw)
    body = {"success": True, "message": "Verification email sent"}
    if not result.get("success") and ctx.settings.is_development:
        body["verification_token"] = raw
    return body


@router.post("/verify-email")
def verify_email(payload: VerifyEmailRequest, ctx: AppContext = Depends(get_context)):
    now = ctx.now()
    updated = ctx.db[USERS].find_one_and_update(
        {"email_verification_token": hash_token(payload.token), "email_verification_expires": {"$gt": now}},
        {"$set": {"is_email_verified": True, "updated_at": now},
         "$unset": {"email_verification_token": "", "email_verification_expires": ""}},
    )
    if updated is None:
        raise HTTPException(status_code=400, detail="Invalid or expired verification token")
    return {"success": True, "message": "Email verified"}
