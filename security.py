"""
Passwords, session tokens and the route guards built on top of policy.py.
"""
import hashlib
import logging
import secrets
from datetime import datetime, timedelta
from functools import lru_cache
from typing import Any, Dict, Optional, Tuple

import jwt
from bson.objectid import ObjectId
from fastapi import Depends, HTTPException, Request, Response
from passlib.context import CryptContext

import policy
from context import AppContext, get_context
from database import USERS
from settings import Settings

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"
COOKIE_NAME = "authToken"


# ---------- Passwords ----------

@lru_cache(maxsize=4)
def _pwd_context(rounds: int) -> CryptContext:
    return CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=rounds)


@lru_cache(maxsize=4)
def _dummy_hash(rounds: int) -> str:
    return _pwd_context(rounds).hash(secrets.token_hex(16))


def hash_password(password: str, rounds: int = 12) -> str:
    return _pwd_context(rounds).hash(password)


def verify_password(plain: str, hashed: Optional[str], rounds: int = 12) -> bool:
    if not hashed:
        # keep the cost of a miss close to the cost of a real check
        _pwd_context(rounds).verify(plain, _dummy_hash(rounds))
        return False
    return _pwd_context(rounds).verify(plain, hashed)


# ---------- One-time tokens (password reset, email verification) ----------

def hash_token(raw: str) -> str:
    return hashlib.sha256(raw.encode()).hexdigest()


def generate_token_pair() -> Tuple[str, str]:
    """Returns (raw token for the user, sha256 hash to store)."""
    raw = secrets.token_hex(20)
    return raw, hash_token(raw)


# ---------- Session tokens ----------

def create_access_token(user: Dict[str, Any], settings: Settings, now: datetime) -> str:
    payload = {
        "id": str(user["_id"]),
        "role": user.get("role"),
        "exp": now + timedelta(days=settings.jwt_expires_days),
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=ALGORITHM)


def decode_access_token(token: str, settings: Settings) -> Dict[str, Any]:
    return jwt.decode(token, settings.jwt_secret, algorithms=[ALGORITHM])


def set_auth_cookie(response: Response, token: str, settings: Settings) -> None:
    response.set_cookie(
        COOKIE_NAME,
        token,
        max_age=settings.jwt_expires_days * 24 * 60 * 60,
        path="/",
        secure=settings.is_production,
        httponly=True,
        samesite="strict",
    )


def clear_auth_cookie(response: Response, settings: Settings) -> None:
    response.delete_cookie(COOKIE_NAME, path="/", secure=settings.is_production,
                           httponly=True, samesite="strict")


def token_from_request(request: Request) -> Optional[str]:
    token = request.cookies.get(COOKIE_NAME)
    if token:
        return token
    header = request.headers.get("Authorization", "")
    if header.startswith("Bearer "):
        return header.split(" ", 1)[1].strip() or None
    return None


# ---------- Guards ----------

def load_user(ctx: AppContext, user_id: Any) -> Optional[Dict[str, Any]]:
    if user_id is None or not ObjectId.is_valid(str(user_id)):
        return None
    return ctx.db[USERS].find_one({"_id": ObjectId(str(user_id))}, {"password_hash": 0})


def _resolve_user(token: str, ctx: AppContext) -> Dict[str, Any]:
    try:
        payload = decode_access_token(token, ctx.settings)
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.PyJWTError:
        raise HTTPException(status_code=401, detail="Invalid token")

    user = load_user(ctx, payload.get("id"))
    if not user:
        raise HTTPException(status_code=401, detail="Token is valid but user does not exist anymore.")
    if not user.get("is_active", True):
        raise HTTPException(status_code=401, detail="User account is deactivated.")
    return user


def protect(request: Request, ctx: AppContext = Depends(get_context)) -> Dict[str, Any]:
    token = token_from_request(request)
    if not token:
        raise HTTPException(status_code=401, detail="Access denied. No token provided.")
    try:
        return _resolve_user(token, ctx)
    except HTTPException as exc:
        logger.warning("Rejected session on %s: %s", request.url.path, exc.detail)
        raise


def optional_user(request: Request, ctx: AppContext = Depends(get_context)) -> Optional[Dict[str, Any]]:
    """The caller if a valid session is present, otherwise None."""
    token = token_from_request(request)
    if not token:
        return None
    try:
        return _resolve_user(token, ctx)
    except HTTPException:
        return None


def authorize(*roles: str):
    def dependency(current_user: Dict[str, Any] = Depends(protect)) -> Dict[str, Any]:
        if not policy.role_permits(current_user.get("role"), roles):
            raise HTTPException(status_code=403, detail=f"Access denied. Requires role: {' or '.join(roles)}")
        return current_user
    return dependency


def require_access(current_user: Dict[str, Any], target: Optional[Dict[str, Any]], action: str = policy.READ,
                   allowed_roles: Tuple[str, ...] = (), owner_id: Optional[str] = None,
                   detail: str = "Access denied. You can only access your own resources.") -> None:
    decision = policy.evaluate(
        policy.Caller.from_user(current_user),
        policy.Resource.for_user(target, owner_id),
        action,
        allowed_roles,
    )
    if not decision:
        raise HTTPException(status_code=403, detail=detail)


def authorize_owner_or_role(*allowed_roles: str, action: str = policy.READ):
    """
    Guard for routes keyed by a user id in the path (`user_id` or `patient_id`).

    Loads the target user before evaluating the policy so that hospital
    scoping sees the target's hospital_id. Returns the target document, which
    is None when the id is well formed but unknown.
    """
    def dependency(request: Request, current_user: Dict[str, Any] = Depends(protect),
                   ctx: AppContext = Depends(get_context)) -> Optional[Dict[str, Any]]:
        raw = request.path_params.get("user_id") or request.path_params.get("patient_id")
        if not raw or not ObjectId.is_valid(raw):
            raise HTTPException(status_code=400, detail="Invalid user ID")
        target = load_user(ctx, raw)
        require_access(current_user, target, action, tuple(allowed_roles), owner_id=raw)
        return target
    return dependency
