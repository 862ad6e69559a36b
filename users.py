import logging
from typing import Any, Dict, List, Optional

from pymongo.database import Database

import database
from analytics import compute_user_stats
from errors import ServiceResult, fail, ok, store_call
from repository import Repository
from schemas import adapt_user
from validation import validate_user_registration, validate_user_update

logger = logging.getLogger(__name__)

PRIVATE_FIELDS = ("hashed_password", "reset_token")


def public_user(user: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    if not user:
        return {}
    return {k: v for k, v in user.items() if k not in PRIVATE_FIELDS}


class UserService:
    def __init__(self, db: Database):
        self.users = Repository(db, database.USERS, adapter=adapt_user)

    def find_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        matches = self.users.query_by_field("email", email.lower())
        return matches[0] if matches else None

    @store_call("Failed to create user")
    def create_user(self, data: Dict[str, Any]) -> ServiceResult:
        validation = validate_user_registration(data, require_password=False)
        if not validation.is_valid:
            return fail("User data validation failed", errors=validation.errors)
        cleaned = validation.cleaned
        if self.find_by_email(cleaned["email"]):
            return fail("Email already registered", code="conflict")

        user = {k: v for k, v in cleaned.items() if v is not None and k != "password"}
        user.setdefault("is_active", True)
        new_id = self.users.create(user)
        logger.info(f"Created user {cleaned['email']} ({new_id})")
        return ok(public_user(self.users.get_by_id(new_id)), "User created")

    @store_call("Failed to update user")
    def update_user(self, user_id: str, updates: Dict[str, Any]) -> ServiceResult:
        updates = {k: v for k, v in updates.items() if v is not None}
        validation = validate_user_update(updates)
        if not validation.is_valid:
            return fail("User update validation failed", errors=validation.errors)
        if self.users.get_by_id(user_id) is None:
            return fail("User not found", code="not_found")

        cleaned = validation.cleaned
        if cleaned.get("email"):
            other = self.find_by_email(cleaned["email"])
            if other and other["id"] != user_id:
                return fail("Email already registered", code="conflict")
        self.users.update(user_id, cleaned)
        return ok(public_user(self.users.get_by_id(user_id)), "User updated")

    @store_call("Failed to delete user")
    def delete_user(self, user_id: str) -> ServiceResult:
        if self.users.delete(user_id) == 0:
            return fail("User not found", code="not_found")
        return ok(message="User deleted")

    @store_call("Failed to toggle user status")
    def toggle_status(self, user_id: str) -> ServiceResult:
        user = self.users.get_by_id(user_id)
        if user is None:
            return fail("User not found", code="not_found")
        self.users.update(user_id, {"is_active": not user.get("is_active", True)})
        return ok(public_user(self.users.get_by_id(user_id)))

    @store_call("Failed to fetch user")
    def get_user(self, user_id: str) -> ServiceResult:
        user = self.users.get_by_id(user_id)
        if user is None:
            return fail("User not found", code="not_found")
        return ok(public_user(user))

    @store_call("Failed to fetch users")
    def list_users(self, role: Optional[str] = None, is_active: Optional[bool] = None,
                   department: Optional[str] = None, search: Optional[str] = None) -> ServiceResult:
        filters = []
        if role:
            filters.append(("role", "==", role))
        if is_active is not None:
            filters.append(("is_active", "==", is_active))
        if department:
            filters.append(("department", "==", department))
        users: List[Dict[str, Any]] = self.users.query_with_order("created_at", "desc", filters=filters)

        if search:
            term = search.lower()
            users = [
                u for u in users
                if any(term in (u.get(f) or "").lower() for f in ("display_name", "email", "department"))
            ]
        return ok([public_user(u) for u in users])

    @store_call("Failed to get user stats")
    def user_stats(self) -> ServiceResult:
        return ok(compute_user_stats(self.users.get_all()))
