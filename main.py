import logging
import os
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, File, Query, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from pymongo.database import Database
from pymongo.errors import PyMongoError

import database
from asset_requests import RequestService
from assets import AssetService
from assignments import AssignmentService
from auth import IdentityService, get_current_user, get_identity, get_token, require_role
from config import settings
from errors import AuthorizationError, ServiceResult, raise_for_result, register_error_handlers
from locations import LocationService
from logging_config import setup_logging, setup_request_logging
from reports import AnalyticsService, ReportService
from schemas import (
    AssetCreateRequest,
    AssetSearchRequest,
    AssetUpdateRequest,
    AssignRequest,
    BulkImportRequest,
    LocationRequest,
    LocationUpdateRequest,
    LoginRequest,
    MaintenanceCompleteRequest,
    MaintenanceRequest,
    PasswordResetPerform,
    PasswordResetRequest,
    RegisterRequest,
    RequestApproval,
    RequestCreateRequest,
    RequestFulfillment,
    RequestRejection,
    RequestUpdateRequest,
    ReturnRequest,
    UserCreateRequest,
    UserUpdateRequest,
)
from storage import BlobStore
from users import UserService, public_user

logger = logging.getLogger(__name__)

ADMIN = ["admin"]
ASSET_WRITERS = ["admin", "manager"]
ASSIGNERS = ["admin", "manager", "facilitator"]


# ----------------------------
# Service dependencies
# ----------------------------
def get_asset_service(db: Database = Depends(database.get_db)) -> AssetService:
    return AssetService(db)


def get_assignment_service(db: Database = Depends(database.get_db)) -> AssignmentService:
    return AssignmentService(db)


def get_user_service(db: Database = Depends(database.get_db)) -> UserService:
    return UserService(db)


def get_location_service(db: Database = Depends(database.get_db)) -> LocationService:
    return LocationService(db)


def get_analytics_service(db: Database = Depends(database.get_db)) -> AnalyticsService:
    return AnalyticsService(db)


def get_report_service(db: Database = Depends(database.get_db)) -> ReportService:
    return ReportService(db)


def get_request_service(db: Database = Depends(database.get_db)) -> RequestService:
    return RequestService(db)


def get_blob_store() -> BlobStore:
    return BlobStore()


def respond(result: ServiceResult) -> Dict[str, Any]:
    data = raise_for_result(result)
    return {"success": True, "data": data, "message": result.message}


def check_request_access(user: Dict[str, Any], request: Dict[str, Any]):
    if user.get("role") not in ASSIGNERS and request.get("requester_id") != user.get("id"):
        logger.warning(f"SECURITY EVENT - forbidden: {user.get('email')} cannot access request {request.get('request_id')}")
        raise AuthorizationError("Insufficient permissions")


# ----------------------------
# FastAPI App
# ----------------------------
@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    database.connect()
    yield
    database.close()


app = FastAPI(title="Asset Management API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
register_error_handlers(app)
setup_request_logging(app)

# Static files for uploads
os.makedirs(settings.upload_dir, exist_ok=True)
app.mount("/uploads", StaticFiles(directory=settings.upload_dir), name="uploads")


# ----------------------------
# Health/Test Endpoints
# ----------------------------
@app.get("/")
def root():
    return {"message": "Asset Management Backend Running", "environment": settings.app_env}


@app.get("/test")
def test_database(db: Database = Depends(database.get_db)):
    try:
        collections = db.list_collection_names()
        return {
            "backend": "ok",
            "database": "ok",
            "collections": collections,
        }
    except PyMongoError as e:
        logger.error(f"Database check failed: {e}")
        return {"backend": "ok", "database": f"error: {str(e)}"}


# ----------------------------
# Auth Endpoints
# ----------------------------
@app.post("/auth/register")
def register(payload: RegisterRequest, identity: IdentityService = Depends(get_identity)):
    return respond(identity.register(payload.model_dump()))


@app.post("/auth/login")
def login(payload: LoginRequest, identity: IdentityService = Depends(get_identity)):
    return respond(identity.login(payload.email, payload.password))


@app.post("/auth/logout")
def logout(token: str = Depends(get_token), identity: IdentityService = Depends(get_identity)):
    return respond(identity.logout(token))


@app.post("/auth/request-password-reset")
def request_password_reset(payload: PasswordResetRequest, identity: IdentityService = Depends(get_identity)):
    return respond(identity.request_password_reset(payload.email))


@app.post("/auth/reset-password")
def reset_password(payload: PasswordResetPerform, identity: IdentityService = Depends(get_identity)):
    return respond(identity.reset_password(payload.token, payload.new_password))


@app.get("/auth/me")
def me(user=Depends(get_current_user)):
    return {"success": True, "data": public_user(user)}


# ----------------------------
# Assets
# ----------------------------
@app.post("/assets")
def create_asset(payload: AssetCreateRequest, user=Depends(require_role(ASSET_WRITERS)),
                 service: AssetService = Depends(get_asset_service)):
    data = payload.model_dump()
    data["created_by"] = user.get("email")
    return respond(service.create_asset(data))


@app.get("/assets")
def list_assets(status: Optional[str] = None, location: Optional[str] = None,
                user=Depends(get_current_user), service: AssetService = Depends(get_asset_service)):
    if location:
        return respond(service.assets_by_location(location))
    if status:
        return respond(service.assets_by_status(status))
    return respond(service.list_assets())


@app.post("/assets/search")
def search_assets(payload: AssetSearchRequest, user=Depends(get_current_user),
                  service: AssetService = Depends(get_asset_service)):
    return respond(service.search_assets(payload.model_dump()))


@app.get("/assets/page")
def page_assets(page_size: int = Query(20, ge=1, le=100), cursor: Optional[str] = None,
                user=Depends(get_current_user), service: AssetService = Depends(get_asset_service)):
    return respond(service.page_assets(page_size, cursor))


@app.get("/assets/{asset_id}")
def get_asset(asset_id: str, user=Depends(get_current_user), service: AssetService = Depends(get_asset_service)):
    return respond(service.get_asset(asset_id))


@app.put("/assets/{asset_id}")
def update_asset(asset_id: str, payload: AssetUpdateRequest, user=Depends(require_role(ASSET_WRITERS)),
                 service: AssetService = Depends(get_asset_service)):
    return respond(service.update_asset(asset_id, payload.model_dump(exclude_unset=True)))


@app.delete("/assets/{asset_id}")
def delete_asset(asset_id: str, user=Depends(require_role(ASSET_WRITERS)),
                 service: AssetService = Depends(get_asset_service)):
    return respond(service.delete_asset(asset_id))


@app.post("/assets/{asset_id}/assign")
def assign_asset(asset_id: str, payload: AssignRequest, user=Depends(require_role(ASSIGNERS)),
                 service: AssetService = Depends(get_asset_service)):
    return respond(service.assign_asset(asset_id, payload.user_id, payload.condition, payload.expected_return_date))


@app.post("/assets/{asset_id}/return")
def return_asset(asset_id: str, payload: ReturnRequest, user=Depends(require_role(ASSIGNERS)),
                 service: AssetService = Depends(get_asset_service)):
    return respond(service.return_asset(asset_id, payload.condition, payload.notes))


@app.post("/assets/{asset_id}/maintenance")
def mark_maintenance(asset_id: str, payload: MaintenanceRequest, user=Depends(require_role(ASSET_WRITERS)),
                     service: AssetService = Depends(get_asset_service)):
    return respond(service.mark_maintenance(asset_id, payload.reason))


@app.post("/assets/{asset_id}/maintenance/complete")
def complete_maintenance(asset_id: str, payload: MaintenanceCompleteRequest,
                         user=Depends(require_role(ASSET_WRITERS)),
                         service: AssetService = Depends(get_asset_service)):
    return respond(service.complete_maintenance(asset_id, payload.cost, payload.performed_by, payload.notes))


@app.get("/assets/{asset_id}/depreciation")
def asset_depreciation(asset_id: str, user=Depends(get_current_user),
                       service: AssetService = Depends(get_asset_service)):
    return respond(service.asset_depreciation(asset_id))


@app.post("/assets/{asset_id}/images")
def upload_asset_image(
    asset_id: str,
    file: UploadFile = File(...),
    user=Depends(require_role(ASSET_WRITERS)),
    service: AssetService = Depends(get_asset_service),
    blobs: BlobStore = Depends(get_blob_store),
):
    asset = raise_for_result(service.get_asset(asset_id))
    url = blobs.upload(asset["asset_id"], file.filename, file.file.read())
    return respond(service.attach_image(asset_id, url))


# ----------------------------
# Maintenance
# ----------------------------
@app.get("/maintenance")
def list_maintenance(asset_id: Optional[str] = None, user=Depends(get_current_user),
                     service: AssetService = Depends(get_asset_service)):
    return respond(service.maintenance_records(asset_id))


# ----------------------------
# Assignments
# ----------------------------
@app.get("/assignments")
def list_assignments(asset_id: Optional[str] = None, user_id: Optional[str] = None, open_only: bool = False,
                     user=Depends(get_current_user),
                     service: AssignmentService = Depends(get_assignment_service)):
    return respond(service.list_assignments(asset_id, user_id, open_only))


@app.get("/assignments/open-count")
def open_assignment_count(user=Depends(get_current_user),
                          service: AssignmentService = Depends(get_assignment_service)):
    return respond(service.open_count())


@app.get("/assignments/asset/{asset_code}")
def asset_history(asset_code: str, user=Depends(get_current_user),
                  service: AssignmentService = Depends(get_assignment_service)):
    return respond(service.asset_history(asset_code))


@app.get("/assignments/user/{user_id}")
def user_history(user_id: str, user=Depends(get_current_user),
                 service: AssignmentService = Depends(get_assignment_service)):
    return respond(service.user_history(user_id))


# ----------------------------
# Requests
# ----------------------------
@app.post("/requests")
def create_request(payload: RequestCreateRequest, user=Depends(get_current_user),
                   service: RequestService = Depends(get_request_service)):
    return respond(service.create_request(payload.model_dump(), user))


@app.get("/requests")
def list_requests(user=Depends(require_role(ASSIGNERS)), service: RequestService = Depends(get_request_service)):
    return respond(service.list_requests())


@app.get("/requests/pending")
def pending_requests(user=Depends(require_role(ASSIGNERS)), service: RequestService = Depends(get_request_service)):
    return respond(service.pending_requests())


@app.get("/requests/pending-count")
def pending_request_count(user=Depends(require_role(ASSIGNERS)),
                          service: RequestService = Depends(get_request_service)):
    return respond(service.pending_count())


@app.get("/requests/mine")
def my_requests(user=Depends(get_current_user), service: RequestService = Depends(get_request_service)):
    return respond(service.my_requests(user["id"]))


@app.get("/requests/location/{location_id}")
def location_requests(location_id: str, user=Depends(require_role(ASSIGNERS)),
                      service: RequestService = Depends(get_request_service)):
    return respond(service.requests_by_location(location_id))


@app.get("/requests/{request_id}")
def get_request(request_id: str, user=Depends(get_current_user),
                service: RequestService = Depends(get_request_service)):
    request = raise_for_result(service.get_request(request_id))
    check_request_access(user, request)
    return {"success": True, "data": request}


@app.put("/requests/{request_id}")
def update_request(request_id: str, payload: RequestUpdateRequest, user=Depends(get_current_user),
                   service: RequestService = Depends(get_request_service)):
    check_request_access(user, raise_for_result(service.get_request(request_id)))
    return respond(service.update_request(request_id, payload.model_dump(exclude_unset=True)))


@app.delete("/requests/{request_id}")
def delete_request(request_id: str, user=Depends(get_current_user),
                   service: RequestService = Depends(get_request_service)):
    check_request_access(user, raise_for_result(service.get_request(request_id)))
    return respond(service.delete_request(request_id))


@app.post("/requests/{request_id}/approve")
def approve_request(request_id: str, payload: RequestApproval, user=Depends(require_role(ASSIGNERS)),
                    service: RequestService = Depends(get_request_service)):
    return respond(service.approve_request(request_id, user, payload.comments))


@app.post("/requests/{request_id}/reject")
def reject_request(request_id: str, payload: RequestRejection, user=Depends(require_role(ASSIGNERS)),
                   service: RequestService = Depends(get_request_service)):
    return respond(service.reject_request(request_id, user, payload.reason))


@app.post("/requests/{request_id}/fulfill")
def fulfill_request(request_id: str, payload: RequestFulfillment, user=Depends(require_role(ASSIGNERS)),
                    service: RequestService = Depends(get_request_service)):
    return respond(service.fulfill_request(request_id, user, payload.model_dump()))


# ----------------------------
# Users
# ----------------------------
@app.post("/users")
def create_user(payload: UserCreateRequest, user=Depends(require_role(ADMIN)),
                service: UserService = Depends(get_user_service)):
    return respond(service.create_user(payload.model_dump()))


@app.get("/users")
def list_users(role: Optional[str] = None, is_active: Optional[bool] = None,
               department: Optional[str] = None, search: Optional[str] = None,
               user=Depends(require_role(ADMIN)), service: UserService = Depends(get_user_service)):
    return respond(service.list_users(role, is_active, department, search))


@app.get("/users/stats")
def user_stats(user=Depends(require_role(ADMIN)), service: UserService = Depends(get_user_service)):
    return respond(service.user_stats())


@app.get("/users/{user_id}")
def get_user(user_id: str, user=Depends(require_role(ADMIN)), service: UserService = Depends(get_user_service)):
    return respond(service.get_user(user_id))


@app.put("/users/{user_id}")
def update_user(user_id: str, payload: UserUpdateRequest, user=Depends(require_role(ADMIN)),
                service: UserService = Depends(get_user_service)):
    return respond(service.update_user(user_id, payload.model_dump(exclude_unset=True)))


@app.delete("/users/{user_id}")
def delete_user(user_id: str, user=Depends(require_role(ADMIN)), service: UserService = Depends(get_user_service)):
    return respond(service.delete_user(user_id))


@app.post("/users/{user_id}/toggle")
def toggle_user(user_id: str, user=Depends(require_role(ADMIN)), service: UserService = Depends(get_user_service)):
    return respond(service.toggle_status(user_id))


# ----------------------------
# Locations
# ----------------------------
@app.post("/locations")
def create_location(payload: LocationRequest, user=Depends(require_role(ASSET_WRITERS)),
                    service: LocationService = Depends(get_location_service)):
    return respond(service.create_location(payload.model_dump()))


@app.get("/locations")
def list_locations(user=Depends(get_current_user), service: LocationService = Depends(get_location_service)):
    return respond(service.list_locations())


@app.get("/locations/stats")
def location_stats(user=Depends(get_current_user), service: LocationService = Depends(get_location_service)):
    return respond(service.location_stats())


@app.post("/locations/import")
def import_locations(payload: BulkImportRequest, user=Depends(require_role(ASSET_WRITERS)),
                     service: LocationService = Depends(get_location_service)):
    return respond(service.import_csv(payload.csv))


@app.get("/locations/{location_id}")
def get_location(location_id: str, user=Depends(get_current_user),
                 service: LocationService = Depends(get_location_service)):
    return respond(service.get_location(location_id))


@app.put("/locations/{location_id}")
def update_location(location_id: str, payload: LocationUpdateRequest, user=Depends(require_role(ASSET_WRITERS)),
                    service: LocationService = Depends(get_location_service)):
    return respond(service.update_location(location_id, payload.model_dump(exclude_unset=True)))


@app.delete("/locations/{location_id}")
def delete_location(location_id: str, user=Depends(require_role(ASSET_WRITERS)),
                    service: LocationService = Depends(get_location_service)):
    return respond(service.delete_location(location_id))


# ----------------------------
# Analytics
# ----------------------------
@app.get("/analytics/dashboard")
def dashboard(user=Depends(get_current_user), service: AnalyticsService = Depends(get_analytics_service)):
    return respond(service.dashboard())


@app.get("/analytics/by-location")
def assets_by_location(location_ids: Optional[List[str]] = Query(None), user=Depends(get_current_user),
                       service: AnalyticsService = Depends(get_analytics_service)):
    return respond(service.assets_by_location(location_ids))


@app.get("/analytics/conditions")
def condition_stats(user=Depends(get_current_user), service: AnalyticsService = Depends(get_analytics_service)):
    return respond(service.condition_stats())


@app.get("/analytics/values")
def value_summary(user=Depends(get_current_user), service: AnalyticsService = Depends(get_analytics_service)):
    return respond(service.value_summary())


@app.get("/analytics/hubs")
def hub_stats(user=Depends(get_current_user), service: AnalyticsService = Depends(get_analytics_service)):
    return respond(service.hub_stats())


@app.get("/analytics/maintenance")
def maintenance_summary(user=Depends(get_current_user), service: AnalyticsService = Depends(get_analytics_service)):
    return respond(service.maintenance_summary())


# ----------------------------
# Reports
# ----------------------------
@app.get("/reports/asset-usage")
def asset_usage_report(user=Depends(require_role(ASSET_WRITERS)),
                       service: ReportService = Depends(get_report_service)):
    return respond(service.asset_usage())


@app.get("/reports/user-activity")
def user_activity_report(user=Depends(require_role(ASSET_WRITERS)),
                         service: ReportService = Depends(get_report_service)):
    return respond(service.user_activity())


@app.get("/reports/maintenance")
def maintenance_report(user=Depends(require_role(ASSET_WRITERS)),
                       service: ReportService = Depends(get_report_service)):
    return respond(service.maintenance_report())


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=settings.port)
