"""
Dashboard aggregations and reports over snapshots of the collections.

All functions are pure: the same input list always yields the same output.
Groupings keep the order in which keys were first seen; consumers must not
assume they are sorted.
"""

import math
from collections import OrderedDict
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence

from schemas import (
    HUBS,
    AssetUsage,
    ConditionCount,
    ConditionStats,
    DashboardStats,
    HubStats,
    LocationAssetData,
    LocationStats,
    MaintenanceReportRow,
    MaintenanceSummary,
    NamedCount,
    RecentAsset,
    TypeConditions,
    UserActivity,
    UserStats,
    ValueSummary,
)
from validation import format_zar

RECENT_WINDOW_DAYS = 30
RECENT_LIMIT = 5
UNASSIGNED = "unassigned"
UNKNOWN = "unknown"


def _aware(value: Any) -> Optional[datetime]:
    if not isinstance(value, datetime):
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _bump(counter: Dict[str, int], key: str, amount: int = 1):
    counter[key] = counter.get(key, 0) + amount


def _named(counter: Dict[str, int]) -> List[NamedCount]:
    return [NamedCount(name=name, count=count) for name, count in counter.items()]


def compute_dashboard_stats(assets: Iterable[Dict[str, Any]], now: Optional[datetime] = None) -> DashboardStats:
    now = _aware(now) or datetime.now(timezone.utc)
    cutoff = now - timedelta(days=RECENT_WINDOW_DAYS)

    stats = DashboardStats()
    groups = {key: OrderedDict() for key in ("category", "status", "type", "location")}
    recent: List[RecentAsset] = []

    for asset in assets:
        stats.total_assets += 1
        status = asset.get("status")
        if status == "available":
            stats.available_assets += 1
        elif status == "assigned":
            stats.assigned_assets += 1
        elif status == "maintenance":
            stats.maintenance_assets += 1

        for key, counter in groups.items():
            value = asset.get(key)
            if value:
                _bump(counter, value)

        created = _aware(asset.get("created_at"))
        if created is not None and cutoff < created <= now:
            recent.append(RecentAsset(
                id=asset.get("id"),
                asset_id=asset.get("asset_id"),
                name=asset.get("name"),
                type=asset.get("type"),
                created_at=created,
            ))

    stats.by_category = _named(groups["category"])
    stats.by_status = _named(groups["status"])
    stats.by_type = _named(groups["type"])
    stats.by_location = _named(groups["location"])
    recent.sort(key=lambda item: item.created_at, reverse=True)
    stats.recent_assets = recent[:RECENT_LIMIT]
    return stats


def compute_assets_by_location(assets: Iterable[Dict[str, Any]],
                               location_ids: Optional[Sequence[str]] = None) -> List[LocationAssetData]:
    wanted = set(location_ids) if location_ids else None
    by_location: Dict[str, LocationAssetData] = OrderedDict()

    for asset in assets:
        location_id = asset.get("location_id")
        if wanted is not None and location_id not in wanted:
            continue
        key = location_id or UNASSIGNED
        entry = by_location.get(key)
        if entry is None:
            entry = by_location[key] = LocationAssetData(location_id=key, by_status={}, by_type={})
        entry.total += 1
        _bump(entry.by_status, asset.get("status") or UNKNOWN)
        _bump(entry.by_type, asset.get("type") or UNKNOWN)

    return list(by_location.values())


def compute_condition_stats(assets: Iterable[Dict[str, Any]]) -> ConditionStats:
    overall: Dict[str, int] = OrderedDict()
    by_type: Dict[str, Dict[str, int]] = OrderedDict()

    for asset in assets:
        condition = asset.get("condition") or UNKNOWN
        _bump(overall, condition)
        _bump(by_type.setdefault(asset.get("type") or UNKNOWN, OrderedDict()), condition)

    return ConditionStats(
        overall=[ConditionCount(condition=c, count=n) for c, n in overall.items()],
        by_type=[
            TypeConditions(
                type=asset_type,
                conditions=[ConditionCount(condition=c, count=n) for c, n in conditions.items()],
            )
            for asset_type, conditions in by_type.items()
        ],
    )


def compute_value_summary(assets: Iterable[Dict[str, Any]]) -> ValueSummary:
    summary = ValueSummary(location_values={}, category_values={})
    for asset in assets:
        value = asset.get("value") or 0
        summary.total_value += value
        if asset.get("location"):
            summary.location_values[asset["location"]] = summary.location_values.get(asset["location"], 0) + value
        if asset.get("category"):
            summary.category_values[asset["category"]] = summary.category_values.get(asset["category"], 0) + value
    return summary


def compute_hub_stats(assets: Iterable[Dict[str, Any]],
                      users: Iterable[Dict[str, Any]] = ()) -> Dict[str, HubStats]:
    stats = {hub: HubStats() for hub in HUBS}
    for user in users:
        if user.get("hub") in stats:
            stats[user["hub"]].users += 1
    for asset in assets:
        hub = stats.get(asset.get("location"))
        if hub is None:
            continue
        hub.total += 1
        status = asset.get("status")
        if status in ("assigned", "available", "maintenance"):
            setattr(hub, status, getattr(hub, status) + 1)
        hub.total_value += asset.get("value") or 0

    for hub in stats.values():
        hub.average_value = hub.total_value / hub.total if hub.total else 0
        hub.formatted_total_value = format_zar(hub.total_value)
        hub.formatted_average_value = format_zar(hub.average_value)
    return stats


def compute_user_stats(users: Iterable[Dict[str, Any]]) -> UserStats:
    stats = UserStats(by_role={}, by_department={})
    for user in users:
        stats.total_users += 1
        if user.get("is_active", True):
            stats.active_users += 1
        else:
            stats.inactive_users += 1
        _bump(stats.by_role, user.get("role") or UNKNOWN)
        _bump(stats.by_department, user.get("department") or "Unknown")
    return stats


def compute_location_stats(locations: Iterable[Dict[str, Any]]) -> LocationStats:
    stats = LocationStats(locations_by_type={}, locations_by_status={})
    for location in locations:
        stats.total_locations += 1
        stats.total_assets += location.get("total_assets") or 0
        if location.get("status") == "active" and location.get("type") == "hub":
            stats.active_hubs += 1
        if location.get("status") == "maintenance":
            stats.maintenance_locations += 1
        _bump(stats.locations_by_type, location.get("type") or UNKNOWN)
        _bump(stats.locations_by_status, location.get("status") or UNKNOWN)
    return stats


def compute_maintenance_summary(records: Iterable[Dict[str, Any]]) -> MaintenanceSummary:
    summary = MaintenanceSummary()
    for record in records:
        summary.total_maintenance += 1
        if record.get("status") == "completed":
            summary.completed_maintenance += 1
        elif record.get("status") == "scheduled":
            summary.pending_maintenance += 1
        summary.total_maintenance_cost += record.get("cost") or 0
    return summary


# ---------- Reports ----------

def _by_asset_code(records: Iterable[Dict[str, Any]]) -> Dict[str, List[Dict[str, Any]]]:
    grouped: Dict[str, List[Dict[str, Any]]] = OrderedDict()
    for record in records:
        grouped.setdefault(record.get("asset_id"), []).append(record)
    return grouped


def _latest(values: Iterable[Any]) -> Optional[datetime]:
    dates = [d for d in (_aware(v) for v in values) if d is not None]
    return max(dates) if dates else None


def _days_held(record: Dict[str, Any]) -> int:
    start = _aware(record.get("assigned_at"))
    end = _aware(record.get("returned_at"))
    if start is None or end is None:
        return 0
    return max(0, math.ceil((end - start).total_seconds() / 86400))


def compute_asset_usage(assets: Iterable[Dict[str, Any]],
                        assignments: Iterable[Dict[str, Any]]) -> List[AssetUsage]:
    """One row per asset: how often and for how long it has been assigned."""
    by_asset = _by_asset_code(assignments)
    report = []
    for asset in assets:
        records = by_asset.get(asset.get("asset_id"), [])
        current = next((r for r in records if r.get("returned_at") is None), None)
        report.append(AssetUsage(
            id=asset.get("id"),
            asset_id=asset.get("asset_id"),
            name=asset.get("name") or "Unknown",
            category=asset.get("category") or "Uncategorized",
            status=asset.get("status") or "available",
            total_assignments=len(records),
            total_days=sum(_days_held(r) for r in records),
            current_user=current.get("user_id") if current else None,
            last_assigned=_latest(r.get("assigned_at") for r in records),
        ))
    return report


def compute_user_activity(users: Iterable[Dict[str, Any]], assignments: Iterable[Dict[str, Any]],
                          assets: Iterable[Dict[str, Any]] = (), now: Optional[datetime] = None) -> List[UserActivity]:
    """One row per user: assignment totals, overdue returns and favourite category.

    A return is overdue when the record is still open past its
    ``expected_return_date``. Ties for the most used category go to the one
    seen first.
    """
    now = _aware(now) or datetime.now(timezone.utc)
    categories = {asset.get("asset_id"): asset.get("category") for asset in assets}
    by_user: Dict[str, List[Dict[str, Any]]] = OrderedDict()
    for record in assignments:
        by_user.setdefault(record.get("user_id"), []).append(record)

    report = []
    for user in users:
        records = by_user.get(user.get("id"), [])
        open_records = [r for r in records if r.get("returned_at") is None]
        overdue = [
            r for r in open_records
            if _aware(r.get("expected_return_date")) is not None and _aware(r["expected_return_date"]) < now
        ]
        category_counts: Dict[str, int] = OrderedDict()
        for record in records:
            _bump(category_counts, categories.get(record.get("asset_id")) or "Uncategorized")
        most_used = "N/A"
        best = 0
        for category, count in category_counts.items():
            if count > best:
                most_used, best = category, count

        report.append(UserActivity(
            user_id=user.get("id"),
            display_name=user.get("display_name") or "Unknown",
            department=user.get("department") or "N/A",
            total_assignments=len(records),
            active_assignments=len(open_records),
            overdue_returns=len(overdue),
            last_assignment=_latest(r.get("assigned_at") for r in records),
            most_used_category=most_used,
        ))
    return report


def maintenance_priority(next_date: Any, now: datetime) -> str:
    """critical when due or past due, high within a week, medium within 30 days."""
    due = _aware(next_date)
    if due is None:
        return "low"
    days_until = math.ceil((due - now).total_seconds() / 86400)
    if days_until <= 0:
        return "critical"
    if days_until <= 7:
        return "high"
    if days_until <= 30:
        return "medium"
    return "low"


def compute_maintenance_report(assets: Iterable[Dict[str, Any]], records: Iterable[Dict[str, Any]],
                               now: Optional[datetime] = None) -> List[MaintenanceReportRow]:
    now = _aware(now) or datetime.now(timezone.utc)
    by_asset = _by_asset_code(records)
    report = []
    for asset in assets:
        history = by_asset.get(asset.get("asset_id"), [])
        next_date = _aware(asset.get("next_maintenance_date"))
        report.append(MaintenanceReportRow(
            id=asset.get("id"),
            asset_id=asset.get("asset_id"),
            name=asset.get("name") or "Unknown",
            category=asset.get("category") or "Uncategorized",
            status=asset.get("status") or "available",
            maintenance_count=len(history),
            total_cost=sum(r.get("cost") or 0 for r in history),
            last_maintenance=_latest(r.get("performed_date") for r in history),
            next_maintenance=next_date,
            priority=maintenance_priority(next_date, now),
        ))
    return report
