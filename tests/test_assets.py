"""
Tests for the asset lifecycle: creation, assignment, return and maintenance.
"""
from datetime import date

import pytest
from bson import ObjectId
from pymongo.errors import WriteConcernError

from repository import Repository
from schemas import Asset, Assignment, MaintenanceRecord

MISSING = str(ObjectId())


def _data(**overrides):
    data = {
        "name": "Dell Latitude 5420",
        "category": "Laptop",
        "type": "laptop",
        "location": "Tshwane",
        "value": 15000,
        "purchase_date": date(2023, 3, 1),
        "condition": "good",
    }
    data.update(overrides)
    return data


@pytest.fixture
def asset_id(asset_service):
    return asset_service.create_asset(_data()).data["id"]


def test_create_asset(asset_service):
    result = asset_service.create_asset(_data())
    assert result.success
    assert result.data["asset_id"] == "ASSET-001"

    asset = asset_service.get_asset(result.data["id"]).data
    assert asset["status"] == "available"
    assert asset["image_urls"] == []
    Asset(**asset)


def test_create_asset_rejects_invalid(asset_service, db):
    result = asset_service.create_asset(_data(value=0, location="Durban"))
    assert not result.success
    assert result.code == "invalid"
    assert len(result.errors) == 2
    assert db["assets"].count_documents({}) == 0


def test_codes_continue_after_legacy_documents(asset_service, db):
    db["assets"].insert_one({"assetId": "ASSET-014", "name": "Old camera"})
    db["assets"].insert_one({"asset_id": "ASSET-009", "name": "Old laptop"})
    assert asset_service.create_asset(_data()).data["asset_id"] == "ASSET-015"
    assert asset_service.create_asset(_data()).data["asset_id"] == "ASSET-016"


def test_location_counter_follows_asset(asset_service, db):
    locations = Repository(db, "locations")
    first = locations.create({"name": "Tshwane Hub", "total_assets": 0})
    second = locations.create({"name": "Polokwane Hub", "total_assets": 0})

    created = asset_service.create_asset(_data(location_id=first)).data
    assert locations.get_by_id(first)["total_assets"] == 1

    asset_service.update_asset(created["id"], {"location_id": second})
    assert locations.get_by_id(first)["total_assets"] == 0
    assert locations.get_by_id(second)["total_assets"] == 1

    asset_service.delete_asset(created["id"])
    assert locations.get_by_id(second)["total_assets"] == 0


def test_update_asset(asset_service, asset_id):
    result = asset_service.update_asset(asset_id, {"name": "Dell Latitude 7420", "asset_id": "HACK"})
    assert result.success
    assert result.data["name"] == "Dell Latitude 7420"
    assert result.data["asset_id"] == "ASSET-001"

    assert asset_service.update_asset(asset_id, {"status": "lost"}).code == "invalid"
    assert asset_service.update_asset(MISSING, {"name": "Nope"}).code == "not_found"


def test_delete_asset(asset_service, asset_id):
    assert asset_service.delete_asset(asset_id).success
    assert asset_service.get_asset(asset_id).code == "not_found"
    assert asset_service.delete_asset(asset_id).code == "not_found"


def test_assign_asset(asset_service, db, asset_id):
    result = asset_service.assign_asset(asset_id, "user-1", "good")
    assert result.success

    asset = asset_service.get_asset(asset_id).data
    assert asset["status"] == "assigned"
    assert asset["assigned_to"] == "user-1"
    assert asset["assigned_date"] is not None

    records = Repository(db, "assignments").get_all()
    assert len(records) == 1
    record = records[0]
    assert record["asset_id"] == "ASSET-001"
    assert record["asset_ref"] == asset_id
    assert record["returned_at"] is None
    Assignment(**record)


def test_assign_unavailable_asset_writes_nothing(asset_service, db, asset_id):
    asset_service.assign_asset(asset_id, "user-1", "good")

    second = asset_service.assign_asset(asset_id, "user-2", "good")
    assert not second.success
    assert second.code == "conflict"
    assert second.message == "Asset is currently assigned"
    assert db["assignments"].count_documents({}) == 1
    assert asset_service.get_asset(asset_id).data["assigned_to"] == "user-1"


def test_assign_validation(asset_service, asset_id):
    assert asset_service.assign_asset(MISSING, "user-1", "good").code == "not_found"
    assert asset_service.assign_asset(asset_id, "  ", "good").code == "invalid"
    assert asset_service.assign_asset(asset_id, "user-1", "broken").code == "invalid"
    assert asset_service.get_asset(asset_id).data["status"] == "available"


def test_failed_assignment_record_reverts_asset(asset_service, db, asset_id, monkeypatch):
    def broken_insert(data):
        raise WriteConcernError("write failed")

    monkeypatch.setattr(asset_service.assignments, "create", broken_insert)
    result = asset_service.assign_asset(asset_id, "user-1", "good")

    assert not result.success
    assert result.code == "store_error"
    asset = asset_service.get_asset(asset_id).data
    assert asset["status"] == "available"
    assert "assigned_to" not in asset
    assert db["assignments"].count_documents({}) == 0


def test_return_asset_closes_open_record(asset_service, db, asset_id):
    asset_service.assign_asset(asset_id, "user-1", "good")
    result = asset_service.return_asset(asset_id, "fair", "Scratched lid")
    assert result.success

    asset = asset_service.get_asset(asset_id).data
    assert asset["status"] == "available"
    assert "assigned_to" not in asset

    records = Repository(db, "assignments").get_all()
    assert len(records) == 1
    assert records[0]["returned_at"] is not None
    assert records[0]["return_condition"] == "fair"
    assert records[0]["return_notes"] == "Scratched lid"


def test_return_without_open_record_writes_one(asset_service, db, asset_id):
    asset_service.assign_asset(asset_id, "user-1", "good")
    db["assignments"].delete_many({})

    assert asset_service.return_asset(asset_id, "good").success
    records = Repository(db, "assignments").get_all()
    assert len(records) == 1
    assert records[0]["condition"] == "unknown"
    assert records[0]["user_id"] == "user-1"
    assert records[0]["returned_at"] is not None


def test_return_requires_assigned(asset_service, asset_id):
    result = asset_service.return_asset(asset_id, "good")
    assert result.code == "conflict"
    assert result.message == "Asset is not currently assigned. Status: available"
    assert asset_service.return_asset(MISSING, "good").code == "not_found"


def test_maintenance_cycle(asset_service, db, asset_id):
    assert asset_service.mark_maintenance(asset_id, "Cracked screen").success
    assert asset_service.get_asset(asset_id).data["status"] == "maintenance"
    assert asset_service.assign_asset(asset_id, "user-1", "good").message == "Asset is currently maintenance"

    result = asset_service.complete_maintenance(asset_id, 850.0, "Tech Co", "Screen replaced")
    assert result.success
    assert result.data["status"] == "available"

    records = asset_service.maintenance_records("ASSET-001").data
    assert len(records) == 1
    assert records[0]["status"] == "completed"
    assert records[0]["cost"] == 850.0
    assert records[0]["performed_date"] is not None
    MaintenanceRecord(**records[0])


def test_complete_requires_maintenance(asset_service, asset_id):
    result = asset_service.complete_maintenance(asset_id, 0, "Tech Co")
    assert result.code == "conflict"
    assert "Status: available" in result.message


def test_depreciation(asset_service, asset_id):
    result = asset_service.asset_depreciation(asset_id, today=date(2024, 3, 1))
    assert result.success
    assert result.data["value"] == 15000
    assert result.data["book_value"] == pytest.approx(10005.0)


def test_listing_and_search(asset_service):
    asset_service.create_asset(_data(name="MacBook Pro", manufacturer="Apple", value=30000))
    asset_service.create_asset(_data(name="Canon EOS", category="Camera", location="Polokwane", value=12000))
    asset_service.create_asset(_data(name="Dell Monitor", category="Monitor", value=4000))

    assert len(asset_service.list_assets().data) == 3
    assert len(asset_service.assets_by_location("Polokwane").data) == 1
    assert asset_service.assets_by_location("Durban").code == "invalid"
    assert len(asset_service.assets_by_status("available").data) == 3

    names = [a["name"] for a in asset_service.search_assets({"name": "dell"}).data]
    assert names == ["Dell Monitor"]
    ranged = asset_service.search_assets({"min_value": 5000, "max_value": 20000}).data
    assert [a["name"] for a in ranged] == ["Canon EOS"]
    assert len(asset_service.search_assets({"manufacturer": "Apple", "category": "Laptop"}).data) == 1


def test_page_assets(asset_service):
    for i in range(5):
        asset_service.create_asset(_data(name=f"Laptop {i}"))
    first = asset_service.page_assets(2).data
    second = asset_service.page_assets(2, first["cursor"]).data
    third = asset_service.page_assets(2, second["cursor"]).data

    ids = [a["id"] for page in (first, second, third) for a in page["items"]]
    assert len(set(ids)) == 5
    assert third["has_more"] is False


def test_attach_image(asset_service, asset_id):
    assert asset_service.attach_image(asset_id, "/uploads/assets/ASSET-001/images/a.png").success
    assert asset_service.get_asset(asset_id).data["image_urls"] == ["/uploads/assets/ASSET-001/images/a.png"]
    assert asset_service.attach_image(MISSING, "/x.png").code == "not_found"


def test_status_assigned_only_through_assignment(asset_service, db, asset_id):
    asset_service.mark_maintenance(asset_id, "Fan noise")

    result = asset_service.update_asset(asset_id, {"status": "assigned"})
    assert result.code == "conflict"
    asset = asset_service.get_asset(asset_id).data
    assert asset["status"] == "maintenance"
    assert "assigned_to" not in asset
    assert db["assignments"].count_documents({}) == 0

    assert asset_service.create_asset(_data(status="assigned")).code == "conflict"
    assert db["assets"].count_documents({}) == 1


def test_assigned_asset_keeps_status_until_returned(asset_service, asset_id):
    asset_service.assign_asset(asset_id, "user-1", "good")

    assert asset_service.update_asset(asset_id, {"status": "available"}).code == "conflict"
    assert asset_service.mark_maintenance(asset_id, "Dropped").code == "conflict"
    assert asset_service.update_asset(asset_id, {"status": "assigned", "name": "Renamed"}).success

    asset = asset_service.get_asset(asset_id).data
    assert asset["status"] == "assigned"
    assert asset["assigned_to"] == "user-1"
    assert asset["name"] == "Renamed"


def test_update_moves_status_between_unassigned_states(asset_service, asset_id):
    assert asset_service.update_asset(asset_id, {"status": "retired"}).data["status"] == "retired"
    assert asset_service.assign_asset(asset_id, "user-1", "good").code == "conflict"
