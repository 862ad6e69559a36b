import logging
from typing import Any, Dict

from pymongo.database import Database

import database
from analytics import compute_location_stats
from errors import ServiceResult, fail, ok, store_call
from repository import Repository
from schemas import adapt_location
from validation import generate_location_code, validate_bulk_locations, validate_location_form

logger = logging.getLogger(__name__)

CONTACT_FIELDS = {"contact_name": "name", "contact_email": "email", "contact_phone": "phone"}


def _to_document(form: Dict[str, Any]) -> Dict[str, Any]:
    doc = {k: v for k, v in form.items() if k not in CONTACT_FIELDS and v is not None}
    contact = {CONTACT_FIELDS[k]: form[k] for k in CONTACT_FIELDS if form.get(k)}
    if contact:
        doc["primary_contact"] = contact
    return doc


class LocationService:
    def __init__(self, db: Database):
        self.locations = Repository(db, database.LOCATIONS, adapter=adapt_location)

    def _existing_codes(self):
        return [loc.get("code") for loc in self.locations.get_all()]

    @store_call("Failed to create location")
    def create_location(self, form: Dict[str, Any]) -> ServiceResult:
        validation = validate_location_form(form)
        if not validation.is_valid:
            return fail("Location validation failed", errors=validation.errors)
        doc = _to_document(form)
        doc["code"] = generate_location_code(form["name"], form["type"], self._existing_codes())
        new_id = self.locations.create(doc)
        logger.info(f"Created location {doc['name']} ({doc['code']})")
        return ok({"id": new_id, "code": doc["code"]}, "Location created successfully")

    @store_call("Failed to update location")
    def update_location(self, location_id: str, updates: Dict[str, Any]) -> ServiceResult:
        current = self.locations.get_by_id(location_id)
        if current is None:
            return fail("Location not found", code="not_found")

        contact = current.get("primary_contact") or {}
        merged = {
            "name": current.get("name"),
            "address": current.get("address"),
            "type": current.get("type"),
            "status": current.get("status"),
            "total_assets": current.get("total_assets", 0),
            "capacity": current.get("capacity"),
            "contact_name": contact.get("name"),
            "contact_email": contact.get("email"),
            "contact_phone": contact.get("phone"),
        }
        merged.update({k: v for k, v in updates.items() if v is not None})
        validation = validate_location_form(merged)
        if not validation.is_valid:
            return fail("Location validation failed", errors=validation.errors)

        changes = _to_document({k: v for k, v in updates.items() if v is not None})
        if "primary_contact" in changes:
            changes["primary_contact"] = {**contact, **changes["primary_contact"]}
        # total_assets only moves through asset writes
        changes.pop("total_assets", None)
        self.locations.update(location_id, changes)
        return ok(self.locations.get_by_id(location_id), "Location updated successfully")

    @store_call("Failed to delete location")
    def delete_location(self, location_id: str) -> ServiceResult:
        if self.locations.delete(location_id) == 0:
            return fail("Location not found", code="not_found")
        return ok(message="Location deleted successfully")

    @store_call("Failed to fetch location")
    def get_location(self, location_id: str) -> ServiceResult:
        location = self.locations.get_by_id(location_id)
        if location is None:
            return fail("Location not found", code="not_found")
        return ok(location)

    @store_call("Failed to fetch locations")
    def list_locations(self) -> ServiceResult:
        return ok(self.locations.query_with_order("name", "asc"))

    def adjust_asset_count(self, location_id: str, delta: int) -> bool:
        """Move ``total_assets`` by ``delta``; the counter never drops below zero."""
        return self.locations.increment(location_id, "total_assets", delta, floor=0)

    @store_call("Failed to get location stats")
    def location_stats(self) -> ServiceResult:
        return ok(compute_location_stats(self.locations.get_all()))

    @store_call("Failed to import locations")
    def import_csv(self, text: str) -> ServiceResult:
        errors, rows = validate_bulk_locations(text.splitlines())
        if errors:
            return fail("Bulk import validation failed", errors=errors)

        codes = self._existing_codes()
        docs = []
        for row in rows:
            doc = _to_document(row)
            doc["code"] = generate_location_code(row["name"], row["type"], codes)
            codes.append(doc["code"])
            docs.append(doc)
        ids = self.locations.create_batch(docs)
        logger.info(f"Imported {len(ids)} locations")
        return ok({"ids": ids, "count": len(ids)}, f"Imported {len(ids)} locations")
