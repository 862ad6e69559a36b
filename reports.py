from datetime import datetime
from typing import List, Optional

from pymongo.database import Database

import database
from analytics import (
    compute_asset_usage,
    compute_assets_by_location,
    compute_condition_stats,
    compute_dashboard_stats,
    compute_hub_stats,
    compute_maintenance_report,
    compute_maintenance_summary,
    compute_user_activity,
    compute_value_summary,
)
from errors import ServiceResult, ok, store_call
from repository import Repository
from schemas import adapt_asset, adapt_assignment, adapt_user


class AnalyticsService:
    """Dashboard reports computed from a full read of the assets collection.

    A failed read is reported as a failure, never as an all-zero result.
    """

    def __init__(self, db: Database):
        self.assets = Repository(db, database.ASSETS, adapter=adapt_asset)
        self.users = Repository(db, database.USERS, adapter=adapt_user)
        self.maintenance = Repository(db, database.MAINTENANCE)

    @store_call("Failed to fetch dashboard stats")
    def dashboard(self, now: Optional[datetime] = None) -> ServiceResult:
        return ok(compute_dashboard_stats(self.assets.get_all(), now=now))

    @store_call("Failed to fetch assets by location")
    def assets_by_location(self, location_ids: Optional[List[str]] = None) -> ServiceResult:
        if location_ids:
            assets = self.assets.query_multiple([("location_id", "in", list(location_ids))])
        else:
            assets = self.assets.get_all()
        return ok(compute_assets_by_location(assets, location_ids))

    @store_call("Failed to fetch condition stats")
    def condition_stats(self) -> ServiceResult:
        return ok(compute_condition_stats(self.assets.get_all()))

    @store_call("Failed to fetch value summary")
    def value_summary(self) -> ServiceResult:
        return ok(compute_value_summary(self.assets.get_all()))

    @store_call("Failed to fetch hub stats")
    def hub_stats(self) -> ServiceResult:
        return ok(compute_hub_stats(self.assets.get_all(), self.users.get_all()))

    @store_call("Failed to fetch maintenance summary")
    def maintenance_summary(self) -> ServiceResult:
        return ok(compute_maintenance_summary(self.maintenance.get_all()))


class ReportService:
    """Per-asset and per-user reports joining assets with their history."""

    def __init__(self, db: Database):
        self.assets = Repository(db, database.ASSETS, adapter=adapt_asset)
        self.assignments = Repository(db, database.ASSIGNMENTS, adapter=adapt_assignment)
        self.users = Repository(db, database.USERS, adapter=adapt_user)
        self.maintenance = Repository(db, database.MAINTENANCE)

    @store_call("Failed to build asset usage report")
    def asset_usage(self) -> ServiceResult:
        return ok(compute_asset_usage(self.assets.get_all(), self.assignments.get_all()))

    @store_call("Failed to build user activity report")
    def user_activity(self, now: Optional[datetime] = None) -> ServiceResult:
        return ok(compute_user_activity(
            self.users.get_all(), self.assignments.get_all(), self.assets.get_all(), now=now,
        ))

    @store_call("Failed to build maintenance report")
    def maintenance_report(self, now: Optional[datetime] = None) -> ServiceResult:
        return ok(compute_maintenance_report(self.assets.get_all(), self.maintenance.get_all(), now=now))
