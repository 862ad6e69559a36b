"""
Tests for user management and the assignment history reads.
"""
from datetime import date

from bson import ObjectId

from schemas import User
from users import public_user


def _user(email="thandi@mlab.co.za", **overrides):
    data = {
        "email": email,
        "display_name": "Thandi Mokoena",
        "phone": "082 123 4567",
        "hub": "Tshwane",
        "department": "IT",
    }
    data.update(overrides)
    return data


def test_create_user_normalizes_fields(user_service):
    result = user_service.create_user(_user(email="Thandi@MLAB.co.za"))
    assert result.success
    user = result.data
    assert user["email"] == "thandi@mlab.co.za"
    assert user["phone"] == "+27821234567"
    assert user["role"] == "user"
    assert user["is_active"] is True
    User(**user)


def test_duplicate_email_conflicts(user_service):
    user_service.create_user(_user())
    result = user_service.create_user(_user(email="THANDI@mlab.co.za"))
    assert result.code == "conflict"


def test_create_user_collects_errors(user_service):
    result = user_service.create_user(_user(email="x@gmail.com", hub="Durban"))
    assert result.code == "invalid"
    assert len(result.errors) == 2


def test_update_user(user_service):
    first = user_service.create_user(_user()).data
    user_service.create_user(_user(email="sipho@mlab.co.za"))

    result = user_service.update_user(first["id"], {"role": "manager", "phone": "072 555 0101"})
    assert result.data["role"] == "manager"
    assert result.data["phone"] == "+27725550101"

    assert user_service.update_user(first["id"], {"email": "sipho@mlab.co.za"}).code == "conflict"
    assert user_service.update_user(first["id"], {"role": "owner"}).code == "invalid"
    assert user_service.update_user(str(ObjectId()), {"role": "user"}).code == "not_found"


def test_toggle_and_delete(user_service):
    user = user_service.create_user(_user()).data
    assert user_service.toggle_status(user["id"]).data["is_active"] is False
    assert user_service.toggle_status(user["id"]).data["is_active"] is True
    assert user_service.delete_user(user["id"]).success
    assert user_service.get_user(user["id"]).code == "not_found"
    assert user_service.toggle_status(user["id"]).code == "not_found"


def test_list_filters(user_service):
    a = user_service.create_user(_user(role="manager")).data
    user_service.create_user(_user(email="sipho@mlab.co.za", display_name="Sipho Ndlovu", department="Media"))
    user_service.toggle_status(a["id"])

    assert len(user_service.list_users().data) == 2
    assert [u["email"] for u in user_service.list_users(role="manager").data] == ["thandi@mlab.co.za"]
    assert len(user_service.list_users(is_active=True).data) == 1
    assert len(user_service.list_users(department="Media").data) == 1
    assert [u["display_name"] for u in user_service.list_users(search="ndlovu").data] == ["Sipho Ndlovu"]


def test_user_stats(user_service):
    user_service.create_user(_user(role="admin"))
    b = user_service.create_user(_user(email="sipho@mlab.co.za")).data
    user_service.toggle_status(b["id"])

    stats = user_service.user_stats().data
    assert stats.total_users == 2
    assert stats.inactive_users == 1
    assert stats.by_role == {"admin": 1, "user": 1}


def test_public_user_hides_secrets():
    user = {"id": "1", "email": "a@mlab.co.za", "hashed_password": "x", "reset_token": "y"}
    assert public_user(user) == {"id": "1", "email": "a@mlab.co.za"}
    assert public_user(None) == {}


def test_assignment_history(asset_service, assignment_service):
    ids = [
        asset_service.create_asset({
            "name": f"Laptop {i}", "category": "Laptop", "location": "Tshwane",
            "value": 1000, "purchase_date": date(2023, 1, 1),
        }).data["id"]
        for i in range(2)
    ]
    asset_service.assign_asset(ids[0], "user-1", "good")
    asset_service.return_asset(ids[0], "good")
    asset_service.assign_asset(ids[0], "user-2", "good")
    asset_service.assign_asset(ids[1], "user-1", "excellent")

    history = assignment_service.asset_history("ASSET-001").data
    assert sorted(r["user_id"] for r in history) == ["user-1", "user-2"]
    assert history[0]["assigned_at"] >= history[1]["assigned_at"]
    assert len(assignment_service.user_history("user-1").data) == 2
    assert len(assignment_service.list_assignments(open_only=True).data) == 2
    assert assignment_service.open_count().data == {"count": 2}
