import logging
from datetime import date
from typing import Any, Dict, Optional

from pymongo.database import Database
from pymongo.errors import PyMongoError

import database
from errors import ServiceResult, fail, ok, store_call
from locations import LocationService
from repository import Repository, utcnow
from schemas import ASSET_CONDITIONS, HUBS, adapt_asset, adapt_assignment
from validation import calculate_depreciation, generate_asset_code, validate_create_asset, validate_update_asset

logger = logging.getLogger(__name__)

ASSIGN_THROUGH_ASSIGNMENT = "Assets become assigned only through the assign operation"


def _check_condition(condition: str) -> Optional[ServiceResult]:
    if condition not in ASSET_CONDITIONS:
        return fail(f"Invalid condition. Must be one of: {', '.join(ASSET_CONDITIONS)}")
    return None


class AssetService:
    def __init__(self, db: Database):
        self.assets = Repository(db, database.ASSETS, adapter=adapt_asset)
        self.assignments = Repository(db, database.ASSIGNMENTS, adapter=adapt_assignment)
        self.maintenance = Repository(db, database.MAINTENANCE)
        self.location_service = LocationService(db)

    # ---------- Helpers ----------

    def _next_code(self) -> str:
        codes = self.assets.collection.find({}, {"asset_id": 1, "assetId": 1})
        return generate_asset_code(doc.get("asset_id") or doc.get("assetId") for doc in codes)

    def _move_location_counter(self, old_id: Optional[str], new_id: Optional[str]):
        if old_id == new_id:
            return
        if old_id:
            self.location_service.adjust_asset_count(old_id, -1)
        if new_id:
            self.location_service.adjust_asset_count(new_id, 1)

    def _not_available(self, asset_id: str, expected: str) -> ServiceResult:
        current = self.assets.get_by_id(asset_id)
        if current is None:
            return fail("Asset not found", code="not_found")
        if expected == "available":
            return fail(f"Asset is currently {current.get('status')}", code="conflict")
        return fail(f"Asset is not currently {expected}. Status: {current.get('status')}", code="conflict")

    # ---------- CRUD ----------

    @store_call("Failed to create asset")
    def create_asset(self, data: Dict[str, Any]) -> ServiceResult:
        validation = validate_create_asset(data)
        if not validation.is_valid:
            return fail("Asset validation failed", errors=validation.errors)

        if data.get("status") == "assigned":
            return fail(ASSIGN_THROUGH_ASSIGNMENT, code="conflict")

        asset = {k: v for k, v in data.items() if v is not None}
        asset["asset_id"] = self._next_code()
        asset["status"] = data.get("status") or "available"
        asset.setdefault("image_urls", [])
        new_id = self.assets.create(asset)
        self._move_location_counter(None, asset.get("location_id"))
        logger.info(f"Created asset {asset['asset_id']} ({new_id})")
        return ok({"id": new_id, "asset_id": asset["asset_id"]}, "Asset created")

    @store_call("Failed to update asset")
    def update_asset(self, asset_id: str, updates: Dict[str, Any]) -> ServiceResult:
        updates = {k: v for k, v in updates.items() if v is not None and k not in ("asset_id", "created_at")}
        validation = validate_update_asset(updates)
        if not validation.is_valid:
            return fail("Asset update validation failed", errors=validation.errors)

        current = self.assets.get_by_id(asset_id)
        if current is None:
            return fail("Asset not found", code="not_found")

        status = updates.get("status")
        if status is not None and status != current.get("status"):
            if status == "assigned":
                return fail(ASSIGN_THROUGH_ASSIGNMENT, code="conflict")
            if current.get("status") == "assigned":
                return fail("Asset is currently assigned; return it before changing its status", code="conflict")
            # The status only moves if no assign, return or maintenance call got there first
            if self.assets.find_one_and_update(asset_id, {"status": current.get("status")}, updates) is None:
                return fail("Asset status changed during the update", code="conflict")
        else:
            self.assets.update(asset_id, updates)
        if "location_id" in updates:
            self._move_location_counter(current.get("location_id"), updates["location_id"])
        return ok(self.assets.get_by_id(asset_id), "Asset updated")

    @store_call("Failed to delete asset")
    def delete_asset(self, asset_id: str) -> ServiceResult:
        current = self.assets.get_by_id(asset_id)
        if current is None:
            return fail("Asset not found", code="not_found")
        self.assets.delete(asset_id)
        self._move_location_counter(current.get("location_id"), None)
        logger.info(f"Deleted asset {current.get('asset_id')} ({asset_id})")
        return ok(message="Asset deleted")

    @store_call("Failed to fetch asset")
    def get_asset(self, asset_id: str) -> ServiceResult:
        asset = self.assets.get_by_id(asset_id)
        if asset is None:
            return fail("Asset not found", code="not_found")
        return ok(asset)

    @store_call("Failed to fetch assets")
    def list_assets(self) -> ServiceResult:
        return ok(self.assets.query_with_order("created_at", "desc"))

    @store_call("Failed to fetch assets")
    def page_assets(self, page_size: int, cursor: Optional[str] = None) -> ServiceResult:
        page = self.assets.paginate(page_size, cursor)
        return ok({
            "items": page.items,
            "cursor": page.cursor["id"] if page.cursor else None,
            "has_more": page.has_more,
        })

    @store_call("Failed to fetch assets")
    def assets_by_location(self, location: str) -> ServiceResult:
        if location not in HUBS:
            return fail(f"Invalid location. Must be one of: {', '.join(HUBS)}")
        return ok(self.assets.query_by_field("location", location))

    @store_call("Failed to fetch assets")
    def assets_by_status(self, status: str) -> ServiceResult:
        return ok(self.assets.query_by_field("status", status))

    @store_call("Failed to search assets")
    def search_assets(self, criteria: Dict[str, Any]) -> ServiceResult:
        name = (criteria.get("name") or "").lower()
        min_value = criteria.get("min_value")
        max_value = criteria.get("max_value")
        exact = {k: criteria.get(k) for k in ("category", "location", "status", "manufacturer") if criteria.get(k)}

        matches = []
        for asset in self.assets.get_all():
            if name and name not in (asset.get("name") or "").lower():
                continue
            if any(asset.get(k) != v for k, v in exact.items()):
                continue
            value = asset.get("value") or 0
            if min_value is not None and value < min_value:
                continue
            if max_value is not None and value > max_value:
                continue
            matches.append(asset)
        return ok(matches)

    @store_call("Failed to attach image")
    def attach_image(self, asset_id: str, url: str) -> ServiceResult:
        if not self.assets.push(asset_id, "image_urls", url):
            return fail("Asset not found", code="not_found")
        return ok({"url": url}, "Image attached")

    # ---------- Assignment ----------

    @store_call("Failed to assign asset")
    def assign_asset(self, asset_id: str, user_id: str, condition: str,
                     expected_return_date: Optional[date] = None, request_id: Optional[str] = None) -> ServiceResult:
        invalid = _check_condition(condition)
        if invalid:
            return invalid
        if not user_id or not user_id.strip():
            return fail("User ID is required for assignment")

        now = utcnow()
        # Only one caller can move the asset out of "available"
        asset = self.assets.find_one_and_update(
            asset_id,
            {"status": "available"},
            {"status": "assigned", "assigned_to": user_id, "assigned_date": now},
        )
        if asset is None:
            return self._not_available(asset_id, "available")

        record = {
            "asset_id": asset["asset_id"],
            "asset_ref": asset["id"],
            "user_id": user_id,
            "assigned_at": now,
            "condition": condition,
            "notes": f"Asset assigned to user {user_id}",
            "returned_at": None,
        }
        if expected_return_date:
            record["expected_return_date"] = expected_return_date
        if request_id:
            record["request_id"] = request_id
        try:
            assignment_id = self.assignments.create(record)
        except PyMongoError:
            logger.error(f"Assignment record for {asset['asset_id']} failed; reverting asset status")
            self.assets.find_one_and_update(
                asset_id,
                {"status": "assigned", "assigned_to": user_id},
                {"status": "available"},
                unset=("assigned_to", "assigned_date"),
            )
            raise

        logger.info(f"Assigned {asset['asset_id']} to {user_id}")
        return ok({"asset": asset, "assignment_id": assignment_id}, "Asset assigned")

    @store_call("Failed to return asset")
    def return_asset(self, asset_id: str, condition: str, notes: Optional[str] = None) -> ServiceResult:
        invalid = _check_condition(condition)
        if invalid:
            return invalid

        before = self.assets.get_by_id(asset_id)
        if before is None:
            return fail("Asset not found", code="not_found")
        asset = self.assets.find_one_and_update(
            asset_id,
            {"status": "assigned"},
            {"status": "available"},
            unset=("assigned_to", "assigned_date"),
        )
        if asset is None:
            return self._not_available(asset_id, "assigned")

        now = utcnow()
        open_records = self.assignments.query_with_order(
            "assigned_at", "desc", limit=1,
            filters=[("asset_id", "==", before["asset_id"]),
                     ("user_id", "==", before.get("assigned_to")),
                     ("returned_at", "==", None)],
        )
        if open_records:
            self.assignments.update(open_records[0]["id"], {
                "returned_at": now,
                "return_condition": condition,
                "return_notes": notes or "Asset returned",
            })
        else:
            self.assignments.create({
                "asset_id": before["asset_id"],
                "asset_ref": before["id"],
                "user_id": before.get("assigned_to"),
                "assigned_at": before.get("assigned_date") or now,
                "returned_at": now,
                "condition": "unknown",
                "return_condition": condition,
                "return_notes": notes or "Asset returned (no open assignment found)",
            })
        logger.info(f"Returned {before['asset_id']} from {before.get('assigned_to')}")
        return ok(asset, "Asset returned")

    # ---------- Maintenance ----------

    @store_call("Failed to schedule maintenance")
    def mark_maintenance(self, asset_id: str, reason: str) -> ServiceResult:
        asset = self.assets.find_one_and_update(
            asset_id, {"status": {"$ne": "assigned"}}, {"status": "maintenance"},
        )
        if asset is None:
            current = self.assets.get_by_id(asset_id)
            if current is None:
                return fail("Asset not found", code="not_found")
            return fail("Asset is currently assigned; return it before maintenance", code="conflict")
        record_id = self.maintenance.create({
            "asset_id": asset["asset_id"],
            "type": "repair",
            "description": reason,
            "status": "scheduled",
        })
        return ok({"record_id": record_id}, "Asset sent to maintenance")

    @store_call("Failed to complete maintenance")
    def complete_maintenance(self, asset_id: str, cost: float, performed_by: str,
                             notes: Optional[str] = None) -> ServiceResult:
        asset = self.assets.find_one_and_update(asset_id, {"status": "maintenance"}, {"status": "available"})
        if asset is None:
            return self._not_available(asset_id, "maintenance")

        pending = self.maintenance.query_with_order(
            "created_at", "desc", limit=1,
            filters=[("asset_id", "==", asset["asset_id"]), ("status", "==", "scheduled")],
        )
        if pending:
            self.maintenance.update(pending[0]["id"], {
                "status": "completed",
                "cost": cost,
                "performed_by": performed_by,
                "performed_date": utcnow(),
                "notes": notes,
            })
        return ok(asset, "Maintenance completed")

    @store_call("Failed to calculate depreciation")
    def asset_depreciation(self, asset_id: str, today: Optional[date] = None) -> ServiceResult:
        asset = self.assets.get_by_id(asset_id)
        if asset is None:
            return fail("Asset not found", code="not_found")
        if not asset.get("purchase_date") or not asset.get("value"):
            return fail("Asset has no purchase date or value")
        book_value = calculate_depreciation(asset["purchase_date"], asset["value"], today)
        return ok({"asset_id": asset["asset_id"], "value": asset["value"], "book_value": round(book_value, 2)})

    @store_call("Failed to fetch maintenance records")
    def maintenance_records(self, asset_code: Optional[str] = None) -> ServiceResult:
        if asset_code:
            return ok(self.maintenance.query_by_field("asset_id", asset_code))
        return ok(self.maintenance.query_with_order("created_at", "desc"))
