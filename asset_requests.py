"""
Asset requests: staff ask for equipment, an approver signs off and the
request is fulfilled.

A request that names an asset (``asset_ref``) is assigned to the requester
in the same step that approves it. Every status move is a compare-and-swap
on the current status, so two approvers cannot both act on one request.
"""

import logging
from typing import Any, Dict, Optional

from pymongo.database import Database

import database
from assets import AssetService
from errors import ServiceResult, fail, ok, store_call
from repository import Repository, utcnow
from schemas import OPEN_REQUEST_STATUSES, adapt_request
from validation import generate_request_code, validate_request_form, validate_request_update

logger = logging.getLogger(__name__)

EDITABLE_STATUSES = ("draft", "pending")
ASSIGNED_CONDITION = "good"


def _requester_fields(user: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "requester_id": user["id"],
        "requester_name": user.get("display_name") or "",
        "requester_email": user.get("email") or "",
    }


class RequestService:
    def __init__(self, db: Database):
        self.requests = Repository(db, database.REQUESTS, adapter=adapt_request)
        self.asset_service = AssetService(db)

    def _next_code(self) -> str:
        codes = self.requests.collection.find({}, {"request_id": 1, "requestId": 1})
        return generate_request_code(utcnow().year, (doc.get("request_id") or doc.get("requestId") for doc in codes))

    def _moved(self, request_id: str) -> ServiceResult:
        current = self.requests.get_by_id(request_id)
        if current is None:
            return fail("Request not found", code="not_found")
        return fail(f"Request is already {current.get('status')}", code="conflict")

    # ---------- CRUD ----------

    @store_call("Failed to create request")
    def create_request(self, data: Dict[str, Any], requester: Dict[str, Any]) -> ServiceResult:
        validation = validate_request_form(data)
        if not validation.is_valid:
            return fail("Request validation failed", errors=validation.errors)

        if data.get("asset_ref") and self.asset_service.assets.get_by_id(data["asset_ref"]) is None:
            return fail("Asset not found", code="not_found")

        now = utcnow()
        request = {k: v for k, v in data.items() if v is not None}
        request.update(_requester_fields(requester))
        request["location_name"] = data.get("location_name") or requester.get("hub") or ""
        request.setdefault("department", requester.get("department"))
        request["items"] = [{**item, "item_status": "pending"} for item in data.get("items") or []]
        request["request_id"] = self._next_code()
        request["status"] = "pending"
        request["priority"] = data.get("priority") or "medium"
        request["approval"] = {
            "status": "pending",
            "requested_at": now,
            "approvers": [{"role": "admin", "required": True, "approved": False}],
            "current_approver_index": 0,
        }
        new_id = self.requests.create(request)
        logger.info(f"Created request {request['request_id']} for {request['requester_email']}")
        return ok({"id": new_id, "request_id": request["request_id"]}, "Request submitted")

    @store_call("Failed to fetch request")
    def get_request(self, request_id: str) -> ServiceResult:
        request = self.requests.get_by_id(request_id)
        if request is None:
            return fail("Request not found", code="not_found")
        return ok(request)

    @store_call("Failed to fetch requests")
    def list_requests(self) -> ServiceResult:
        return ok(self.requests.query_with_order("created_at", "desc"))

    @store_call("Failed to fetch requests")
    def my_requests(self, user_id: str) -> ServiceResult:
        return ok(self.requests.query_with_order("created_at", "desc", filters=[("requester_id", "==", user_id)]))

    @store_call("Failed to fetch requests")
    def requests_by_location(self, location_id: str) -> ServiceResult:
        return ok(self.requests.query_with_order("created_at", "desc", filters=[("location_id", "==", location_id)]))

    @store_call("Failed to fetch pending requests")
    def pending_requests(self) -> ServiceResult:
        return ok(self.requests.query_with_order(
            "created_at", "asc", filters=[("status", "in", list(OPEN_REQUEST_STATUSES))],
        ))

    @store_call("Failed to count pending requests")
    def pending_count(self) -> ServiceResult:
        return ok({"count": len(self.requests.query_multiple([("status", "in", list(OPEN_REQUEST_STATUSES))]))})

    @store_call("Failed to update request")
    def update_request(self, request_id: str, updates: Dict[str, Any]) -> ServiceResult:
        updates = {
            k: v for k, v in updates.items()
            if v is not None and k not in ("request_id", "requester_id", "status", "approval", "fulfillment")
        }
        validation = validate_request_update(updates)
        if not validation.is_valid:
            return fail("Request validation failed", errors=validation.errors)
        if "items" in updates:
            updates["items"] = [{**item, "item_status": "pending"} for item in updates["items"]]

        updated = self.requests.find_one_and_update(
            request_id, {"status": {"$in": list(EDITABLE_STATUSES)}}, updates,
        )
        if updated is None:
            current = self.requests.get_by_id(request_id)
            if current is None:
                return fail("Request not found", code="not_found")
            return fail(f"Request is {current.get('status')} and can no longer be edited", code="conflict")
        return ok(updated, "Request updated")

    @store_call("Failed to delete request")
    def delete_request(self, request_id: str) -> ServiceResult:
        if self.requests.delete(request_id) == 0:
            return fail("Request not found", code="not_found")
        return ok(message="Request deleted")

    # ---------- Workflow ----------

    @store_call("Failed to approve request")
    def approve_request(self, request_id: str, approver: Dict[str, Any],
                        comments: Optional[str] = None) -> ServiceResult:
        current = self.requests.get_by_id(request_id)
        if current is None:
            return fail("Request not found", code="not_found")

        now = utcnow()
        approval = dict(current.get("approval") or {})
        approvers = [dict(a) for a in approval.get("approvers") or [{"role": "admin", "required": True}]]
        step = approval.get("current_approver_index", 0)
        if step < len(approvers):
            approvers[step].update({"approved": True, "approved_at": now, "comments": comments})
        approval.update({
            "status": "approved",
            "approvers": approvers,
            "approved_at": now,
            "approved_by": approver["id"],
        })

        updated = self.requests.find_one_and_update(
            request_id,
            {"status": {"$in": list(OPEN_REQUEST_STATUSES)}},
            {"status": "approved", "approval": approval},
        )
        if updated is None:
            return self._moved(request_id)

        if updated.get("asset_ref"):
            assigned = self.asset_service.assign_asset(
                updated["asset_ref"],
                updated["requester_id"],
                ASSIGNED_CONDITION,
                expected_return_date=updated.get("expected_return_date"),
                request_id=updated["request_id"],
            )
            if not assigned.success:
                logger.warning(f"Approval of {updated['request_id']} rolled back: {assigned.message}")
                self.requests.find_one_and_update(
                    request_id,
                    {"status": "approved"},
                    {"status": current["status"], "approval": current.get("approval")},
                )
                return assigned
            updated = self.requests.find_one_and_update(
                request_id, {"status": "approved"}, {"assignment_id": assigned.data["assignment_id"]},
            ) or updated

        logger.info(f"Approved request {updated['request_id']} by {approver.get('email')}")
        return ok(updated, "Request approved")

    @store_call("Failed to reject request")
    def reject_request(self, request_id: str, approver: Dict[str, Any], reason: str) -> ServiceResult:
        if not reason or not reason.strip():
            return fail("A reason is required to reject a request")
        current = self.requests.get_by_id(request_id)
        if current is None:
            return fail("Request not found", code="not_found")

        approval = dict(current.get("approval") or {})
        approval.update({
            "status": "rejected",
            "rejected_at": utcnow(),
            "rejected_by": approver["id"],
            "rejection_reason": reason.strip(),
        })
        updated = self.requests.find_one_and_update(
            request_id,
            {"status": {"$in": list(OPEN_REQUEST_STATUSES)}},
            {"status": "rejected", "approval": approval},
        )
        if updated is None:
            return self._moved(request_id)
        logger.info(f"Rejected request {updated['request_id']} by {approver.get('email')}")
        return ok(updated, "Request rejected")

    @store_call("Failed to fulfil request")
    def fulfill_request(self, request_id: str, user: Dict[str, Any], data: Dict[str, Any]) -> ServiceResult:
        fulfillment = {k: v for k, v in data.items() if v is not None}
        fulfillment.update({"fulfilled_at": utcnow(), "fulfilled_by": user["id"]})
        updated = self.requests.find_one_and_update(
            request_id, {"status": "approved"}, {"status": "fulfilled", "fulfillment": fulfillment},
        )
        if updated is None:
            current = self.requests.get_by_id(request_id)
            if current is None:
                return fail("Request not found", code="not_found")
            return fail(f"Only approved requests can be fulfilled. Status: {current.get('status')}", code="conflict")
        logger.info(f"Fulfilled request {updated['request_id']}")
        return ok(updated, "Request fulfilled")
