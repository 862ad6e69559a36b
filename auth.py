import hashlib
import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pymongo.database import Database

import database
from config import settings
from errors import AuthenticationError, AuthorizationError, ServiceResult, StoreError, fail, ok, store_call
from repository import Repository, utcnow
from users import UserService, public_user
from validation import validate_email, validate_password, validate_user_registration

logger = logging.getLogger(__name__)

# ----------------------------
# Auth and Security Utilities
# ----------------------------
security = HTTPBearer(auto_error=False)


def hash_password(password: str, salt: Optional[str] = None) -> str:
    return hashlib.sha256(((salt or settings.password_salt) + password).encode()).hexdigest()


def _expired(session: Dict[str, Any]) -> bool:
    expires_at = session.get("expires_at")
    return expires_at is None or expires_at < datetime.now(timezone.utc)


class IdentityService:
    """Email/password accounts with opaque bearer tokens stored in ``sessions``."""

    def __init__(self, db: Database, token_ttl_hours: Optional[int] = None):
        self.user_service = UserService(db)
        self.users = self.user_service.users
        self.sessions = Repository(db, database.SESSIONS)
        self.token_ttl = timedelta(hours=token_ttl_hours or settings.token_ttl_hours)

    def _issue_token(self, user: Dict[str, Any], kind: str = "session", ttl: Optional[timedelta] = None) -> str:
        token = secrets.token_urlsafe(32)
        self.sessions.create({
            "token": token,
            "kind": kind,
            "user_id": user["id"],
            "email": user.get("email"),
            "role": user.get("role", "user"),
            "expires_at": utcnow() + (ttl or self.token_ttl),
        })
        return token

    def _session(self, token: str, kind: str = "session") -> Optional[Dict[str, Any]]:
        matches = self.sessions.query_multiple([("token", "==", token), ("kind", "==", kind)])
        return matches[0] if matches else None

    @store_call("Registration failed")
    def register(self, data: Dict[str, Any]) -> ServiceResult:
        validation = validate_user_registration(data)
        if not validation.is_valid:
            return fail("Registration validation failed", errors=validation.errors)
        cleaned = validation.cleaned
        if self.user_service.find_by_email(cleaned["email"]):
            return fail("Email already registered", code="conflict")

        # The first account bootstraps the system as its administrator
        is_first = self.users.count() == 0
        user = {k: v for k, v in cleaned.items() if v is not None and k != "password"}
        requested = cleaned.get("role", "user")
        user["role"] = "admin" if is_first else ("user" if requested == "admin" else requested)
        user["is_active"] = True
        user["hashed_password"] = hash_password(data["password"])
        user_id = self.users.create(user)
        created = self.users.get_by_id(user_id)
        logger.info(f"Registered {created['email']} as {created['role']}")
        return ok({"token": self._issue_token(created), "user": public_user(created)}, "Registered")

    @store_call("Login failed")
    def login(self, email: str, password: str) -> ServiceResult:
        email_check = validate_email(email)
        if not email_check.is_valid:
            return fail(email_check.message)
        if not password:
            return fail("Password is required")
        user = self.user_service.find_by_email(email_check.formatted)
        if not user or user.get("hashed_password") != hash_password(password):
            logger.warning(f"SECURITY EVENT - failed_login: {email}")
            return fail("Invalid credentials", code="unauthenticated")
        if not user.get("is_active", True):
            return fail("User is inactive", code="forbidden")
        return ok({"token": self._issue_token(user), "user": public_user(user)})

    @store_call("Logout failed")
    def logout(self, token: str) -> ServiceResult:
        session = self._session(token)
        if session:
            self.sessions.delete(session["id"])
        return ok(message="Logged out")

    @store_call("Session lookup failed")
    def current_user(self, token: str) -> ServiceResult:
        session = self._session(token)
        if not session:
            return fail("Invalid token", code="unauthenticated")
        if _expired(session):
            self.sessions.delete(session["id"])
            return fail("Token expired", code="unauthenticated")
        user = self.users.get_by_id(session["user_id"])
        if not user:
            return fail("User not found", code="unauthenticated")
        if not user.get("is_active", True):
            return fail("User is inactive", code="forbidden")
        return ok(user)

    @store_call("Password reset failed")
    def request_password_reset(self, email: str) -> ServiceResult:
        user = self.user_service.find_by_email(email or "")
        if not user:
            # Same answer whether or not the account exists
            return ok(message="If the account exists a reset token has been issued")
        token = self._issue_token(user, kind="reset", ttl=timedelta(minutes=15))
        return ok({"reset_token": token}, "If the account exists a reset token has been issued")

    @store_call("Password reset failed")
    def reset_password(self, token: str, new_password: str) -> ServiceResult:
        session = self._session(token, kind="reset")
        if not session or _expired(session):
            return fail("Invalid or expired token")
        strength = validate_password(new_password)
        if not strength.is_valid:
            return fail(strength.message)
        self.users.update(session["user_id"], {"hashed_password": hash_password(new_password)})
        self.sessions.delete(session["id"])
        return ok(message="Password updated")


# ----------------------------
# FastAPI dependencies
# ----------------------------
def get_identity(db: Database = Depends(database.get_db)) -> IdentityService:
    return IdentityService(db)


def get_token(credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)) -> str:
    if not credentials or credentials.scheme.lower() != "bearer":
        raise AuthenticationError("Not authenticated")
    return credentials.credentials


def get_current_user(token: str = Depends(get_token),
                     identity: IdentityService = Depends(get_identity)) -> Dict[str, Any]:
    result = identity.current_user(token)
    if not result.success:
        if result.code == "forbidden":
            raise AuthorizationError(result.message)
        if result.code == "store_error":
            raise StoreError(result.message)
        raise AuthenticationError(result.message)
    return result.data


def require_role(required: List[str]):
    def _checker(user=Depends(get_current_user)):
        role = user.get("role", "user")
        if role not in required:
            logger.warning(f"SECURITY EVENT - forbidden: {user.get('email')} ({role}) needs {required}")
            raise AuthorizationError("Insufficient permissions")
        return user
    return _checker
