"""
Tests for the dashboard aggregations and the service that feeds them.
"""
from datetime import datetime, timedelta, timezone

from pymongo.errors import ServerSelectionTimeoutError

from analytics import (
    compute_asset_usage,
    compute_assets_by_location,
    compute_condition_stats,
    compute_dashboard_stats,
    compute_hub_stats,
    compute_location_stats,
    compute_maintenance_report,
    compute_maintenance_summary,
    compute_user_activity,
    compute_user_stats,
    compute_value_summary,
    maintenance_priority,
)
from repository import Repository

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


def _asset(status="available", **extra):
    asset = {"status": status, "category": "Laptop", "type": "laptop", "location": "Tshwane",
             "created_at": NOW - timedelta(days=90)}
    asset.update(extra)
    return asset


def _counts(named):
    return {item.name: item.count for item in named}


def test_status_totals():
    assets = [_asset("available")] * 3 + [_asset("assigned")] * 2 + [_asset("maintenance")]
    stats = compute_dashboard_stats(assets, now=NOW)

    assert stats.total_assets == 6
    assert stats.available_assets == 3
    assert stats.assigned_assets == 2
    assert stats.maintenance_assets == 1
    assert _counts(stats.by_status) == {"available": 3, "assigned": 2, "maintenance": 1}


def test_empty_snapshot():
    stats = compute_dashboard_stats([], now=NOW)
    assert stats.total_assets == 0
    assert stats.by_category == []
    assert stats.recent_assets == []


def test_groupings_keep_first_seen_order():
    assets = [_asset(category="Camera"), _asset(category="Laptop"), _asset(category="Camera")]
    stats = compute_dashboard_stats(assets, now=NOW)
    assert [(c.name, c.count) for c in stats.by_category] == [("Camera", 2), ("Laptop", 1)]


def test_missing_keys_are_not_grouped():
    assets = [_asset(), {"status": "retired"}]
    stats = compute_dashboard_stats(assets, now=NOW)
    assert stats.total_assets == 2
    assert _counts(stats.by_category) == {"Laptop": 1}
    assert _counts(stats.by_location) == {"Tshwane": 1}
    assert _counts(stats.by_status) == {"available": 1, "retired": 1}


def test_recent_assets_window_and_order():
    """At most five, newest first, all within the last 30 days"""
    assets = [_asset(name=f"a{i}", created_at=NOW - timedelta(days=i)) for i in (3, 0, 9, 1, 20, 5, 29)]
    assets.append(_asset(name="old", created_at=NOW - timedelta(days=40)))
    assets.append(_asset(name="future", created_at=NOW + timedelta(days=1)))
    assets.append(_asset(name="undated", created_at=None))

    recent = compute_dashboard_stats(assets, now=NOW).recent_assets

    assert [r.name for r in recent] == ["a0", "a1", "a3", "a5", "a9"]
    assert all(NOW - timedelta(days=30) < r.created_at <= NOW for r in recent)


def test_recent_accepts_naive_timestamps():
    naive = (NOW - timedelta(days=2)).replace(tzinfo=None)
    recent = compute_dashboard_stats([_asset(created_at=naive)], now=NOW).recent_assets
    assert len(recent) == 1
    assert recent[0].created_at.tzinfo is not None


def test_assets_by_location_sentinels():
    assets = [
        {"location_id": "loc1", "status": "available", "type": "laptop"},
        {"location_id": "loc1", "status": "assigned"},
        {"status": "available", "type": "camera"},
    ]
    data = compute_assets_by_location(assets)
    by_id = {entry.location_id: entry for entry in data}

    assert [entry.location_id for entry in data] == ["loc1", "unassigned"]
    assert by_id["loc1"].total == 2
    assert by_id["loc1"].by_type == {"laptop": 1, "unknown": 1}
    assert by_id["unassigned"].by_status == {"available": 1}


def test_assets_by_location_filter():
    assets = [{"location_id": "a"}, {"location_id": "b"}, {}]
    data = compute_assets_by_location(assets, ["b"])
    assert [entry.location_id for entry in data] == ["b"]


def test_condition_stats():
    assets = [
        {"type": "laptop", "condition": "good"},
        {"type": "laptop", "condition": "poor"},
        {"type": "laptop", "condition": "good"},
        {"type": "camera"},
    ]
    stats = compute_condition_stats(assets)
    assert [(c.condition, c.count) for c in stats.overall] == [("good", 2), ("poor", 1), ("unknown", 1)]
    laptop = stats.by_type[0]
    assert laptop.type == "laptop"
    assert [(c.condition, c.count) for c in laptop.conditions] == [("good", 2), ("poor", 1)]
    assert stats.by_type[1].conditions[0].condition == "unknown"


def test_value_summary():
    summary = compute_value_summary([
        {"value": 1000, "location": "Tshwane", "category": "Laptop"},
        {"value": 500, "location": "Polokwane", "category": "Laptop"},
        {"location": "Tshwane"},
    ])
    assert summary.total_value == 1500
    assert summary.location_values == {"Tshwane": 1000, "Polokwane": 500}
    assert summary.category_values == {"Laptop": 1500}


def test_hub_stats():
    stats = compute_hub_stats([
        {"location": "Tshwane", "status": "assigned", "value": 1000},
        {"location": "Tshwane", "status": "available", "value": 3000},
        {"location": "Durban", "status": "available", "value": 99},
    ])
    tshwane = stats["Tshwane"]
    assert set(stats) == {"Tshwane", "Polokwane", "Galeshewe"}
    assert (tshwane.total, tshwane.assigned, tshwane.available) == (2, 1, 1)
    assert tshwane.average_value == 2000
    assert tshwane.formatted_total_value == "R\u00a04\u00a0000,00"
    assert stats["Galeshewe"].formatted_average_value == "R\u00a00,00"


def test_hub_stats_count_users_per_hub():
    stats = compute_hub_stats([], [{"hub": "Tshwane"}, {"hub": "Tshwane"}, {"hub": "Polokwane"}, {"hub": None}])
    assert (stats["Tshwane"].users, stats["Polokwane"].users, stats["Galeshewe"].users) == (2, 1, 0)
    assert stats["Tshwane"].total == 0


def test_user_stats():
    stats = compute_user_stats([
        {"role": "admin", "department": "IT", "is_active": True},
        {"role": "user", "is_active": False},
        {"role": "user", "department": "IT"},
    ])
    assert (stats.total_users, stats.active_users, stats.inactive_users) == (3, 2, 1)
    assert stats.by_role == {"admin": 1, "user": 2}
    assert stats.by_department == {"IT": 2, "Unknown": 1}


def test_location_stats():
    stats = compute_location_stats([
        {"type": "hub", "status": "active", "total_assets": 10},
        {"type": "hub", "status": "maintenance", "total_assets": 4},
        {"type": "site", "status": "active"},
    ])
    assert stats.total_locations == 3
    assert stats.total_assets == 14
    assert stats.active_hubs == 1
    assert stats.maintenance_locations == 1
    assert stats.locations_by_type == {"hub": 2, "site": 1}


def test_service_dashboard_reads_store(db, analytics_service):
    repo = Repository(db, "assets")
    repo.create({"status": "available", "category": "Laptop", "name": "fresh"})
    repo.create({"status": "assigned", "category": "Camera"})

    result = analytics_service.dashboard()
    assert result.success
    assert result.data.total_assets == 2
    assert len(result.data.recent_assets) == 2


def test_service_by_location_filters_in_store(db, analytics_service):
    repo = Repository(db, "assets")
    repo.create({"location_id": "l1", "status": "available"})
    repo.create({"location_id": "l2", "status": "available"})
    result = analytics_service.assets_by_location(["l2"])
    assert [entry.location_id for entry in result.data] == ["l2"]


def test_read_failure_is_not_reported_as_zero(monkeypatch, analytics_service):
    def down(self):
        raise ServerSelectionTimeoutError("no servers")

    monkeypatch.setattr(Repository, "get_all", down)
    for call in (analytics_service.dashboard, analytics_service.condition_stats,
                 analytics_service.value_summary, analytics_service.hub_stats,
                 analytics_service.maintenance_summary):
        result = call()
        assert not result.success
        assert result.code == "store_error"
        assert result.data is None


def test_maintenance_summary():
    summary = compute_maintenance_summary([
        {"status": "completed", "cost": 1200},
        {"status": "completed", "cost": 300.5},
        {"status": "scheduled"},
        {"status": "in_progress", "cost": None},
    ])
    assert summary.total_maintenance == 4
    assert summary.completed_maintenance == 2
    assert summary.pending_maintenance == 1
    assert summary.total_maintenance_cost == 1500.5


def test_asset_usage():
    assets = [
        {"id": "a1", "asset_id": "ASSET-001", "name": "Dell", "category": "Laptop", "status": "assigned"},
        {"id": "a2", "asset_id": "ASSET-002", "status": "available"},
    ]
    assignments = [
        {"asset_id": "ASSET-001", "user_id": "u1", "assigned_at": NOW - timedelta(days=30),
         "returned_at": NOW - timedelta(days=20, hours=12)},
        {"asset_id": "ASSET-001", "user_id": "u2", "assigned_at": NOW - timedelta(days=5), "returned_at": None},
    ]
    first, second = compute_asset_usage(assets, assignments)

    assert first.total_assignments == 2
    assert first.total_days == 10
    assert first.current_user == "u2"
    assert first.last_assigned == NOW - timedelta(days=5)

    assert second.total_assignments == 0
    assert second.current_user is None
    assert second.last_assigned is None
    assert (second.name, second.category) == ("Unknown", "Uncategorized")


def test_user_activity():
    users = [
        {"id": "u1", "display_name": "Sipho Ndlovu", "department": "IT"},
        {"id": "u2"},
    ]
    assets = [
        {"asset_id": "ASSET-001", "category": "Laptop"},
        {"asset_id": "ASSET-002", "category": "Camera"},
        {"asset_id": "ASSET-003", "category": "Camera"},
    ]
    assignments = [
        {"asset_id": "ASSET-001", "user_id": "u1", "assigned_at": NOW - timedelta(days=40),
         "returned_at": NOW - timedelta(days=35)},
        {"asset_id": "ASSET-002", "user_id": "u1", "assigned_at": NOW - timedelta(days=10),
         "expected_return_date": NOW - timedelta(days=1), "returned_at": None},
        {"asset_id": "ASSET-003", "user_id": "u1", "assigned_at": NOW - timedelta(days=3),
         "expected_return_date": NOW + timedelta(days=7), "returned_at": None},
    ]
    sipho, empty = compute_user_activity(users, assignments, assets, now=NOW)

    assert (sipho.total_assignments, sipho.active_assignments, sipho.overdue_returns) == (3, 2, 1)
    assert sipho.most_used_category == "Camera"
    assert sipho.last_assignment == NOW - timedelta(days=3)

    assert (empty.display_name, empty.department, empty.most_used_category) == ("Unknown", "N/A", "N/A")
    assert empty.last_assignment is None


def test_most_used_category_tie_goes_to_first_seen():
    assets = [{"asset_id": "A", "category": "Laptop"}, {"asset_id": "B", "category": "Camera"}]
    assignments = [{"asset_id": "A", "user_id": "u1"}, {"asset_id": "B", "user_id": "u1"}]
    [row] = compute_user_activity([{"id": "u1"}], assignments, assets, now=NOW)
    assert row.most_used_category == "Laptop"


def test_maintenance_priority():
    assert maintenance_priority(None, NOW) == "low"
    assert maintenance_priority(NOW - timedelta(days=2), NOW) == "critical"
    assert maintenance_priority(NOW, NOW) == "critical"
    assert maintenance_priority(NOW + timedelta(days=7), NOW) == "high"
    assert maintenance_priority(NOW + timedelta(days=8), NOW) == "medium"
    assert maintenance_priority(NOW + timedelta(days=30), NOW) == "medium"
    assert maintenance_priority(NOW + timedelta(days=31), NOW) == "low"


def test_maintenance_report():
    assets = [{"id": "a1", "asset_id": "ASSET-001", "name": "Dell", "status": "available",
               "next_maintenance_date": NOW + timedelta(days=3)}]
    records = [
        {"asset_id": "ASSET-001", "status": "completed", "cost": 500, "performed_date": NOW - timedelta(days=60)},
        {"asset_id": "ASSET-001", "status": "completed", "cost": 250, "performed_date": NOW - timedelta(days=10)},
        {"asset_id": "ASSET-001", "status": "scheduled"},
        {"asset_id": "ASSET-009", "status": "completed", "cost": 999},
    ]
    [row] = compute_maintenance_report(assets, records, now=NOW)
    assert row.maintenance_count == 3
    assert row.total_cost == 750
    assert row.last_maintenance == NOW - timedelta(days=10)
    assert row.next_maintenance == NOW + timedelta(days=3)
    assert row.priority == "high"


def test_report_service_reads_store(db, report_service):
    Repository(db, "assets").create({"asset_id": "ASSET-001", "name": "Dell", "status": "assigned"})
    Repository(db, "assignments").create({"asset_id": "ASSET-001", "user_id": "u1", "returned_at": None})
    db["users"].insert_one({"displayName": "Legacy User", "department": "IT"})

    usage = report_service.asset_usage().data
    assert usage[0].current_user == "u1"

    [row] = report_service.user_activity().data
    assert row.display_name == "Legacy User"
    assert row.total_assignments == 0

    assert report_service.maintenance_report().data[0].maintenance_count == 0
