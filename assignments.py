from typing import Optional

from pymongo.database import Database

import database
from errors import ServiceResult, ok, store_call
from repository import Repository
from schemas import adapt_assignment


class AssignmentService:
    """Read side of the assignment audit trail. Records are written by AssetService."""

    def __init__(self, db: Database):
        self.assignments = Repository(db, database.ASSIGNMENTS, adapter=adapt_assignment)

    @store_call("Failed to fetch assignments")
    def list_assignments(self, asset_id: Optional[str] = None, user_id: Optional[str] = None,
                         open_only: bool = False) -> ServiceResult:
        filters = []
        if asset_id:
            filters.append(("asset_id", "==", asset_id))
        if user_id:
            filters.append(("user_id", "==", user_id))
        if open_only:
            filters.append(("returned_at", "==", None))
        return ok(self.assignments.query_with_order("assigned_at", "desc", filters=filters))

    @store_call("Failed to fetch asset history")
    def asset_history(self, asset_code: str) -> ServiceResult:
        return self.list_assignments(asset_id=asset_code)

    @store_call("Failed to fetch user history")
    def user_history(self, user_id: str) -> ServiceResult:
        return self.list_assignments(user_id=user_id)

    @store_call("Failed to count assignments")
    def open_count(self) -> ServiceResult:
        return ok({"count": self.assignments.count_by_field("returned_at", None)})
