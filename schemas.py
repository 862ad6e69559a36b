"""
Database Schemas for the Hub Asset Management System

Each Pydantic model below describes the canonical shape of a document in a
MongoDB collection:

- Asset -> "assets"
- User -> "users"
- Location -> "locations"
- Assignment -> "assignments"
- MaintenanceRecord -> "maintenance_records"
- AssetRequest -> "requests"

Older clients wrote camelCase documents with Firestore-style timestamps. The
``adapt_*`` functions at the bottom convert those into the canonical shape on
read; nothing is ever written back in the legacy form.
"""

from datetime import date, datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field

SCHEMA_VERSION = 1

HUBS = ("Tshwane", "Polokwane", "Galeshewe")

ASSET_CATEGORIES = (
    "Laptop",
    "Workstation",
    "Tablet",
    "Camera",
    "Server",
    "Network Equipment",
    "Printer",
    "Projector",
    "Monitor",
    "Phone",
    "Other",
)
ASSET_STATUSES = ("available", "assigned", "maintenance", "retired")
ASSET_CONDITIONS = ("excellent", "good", "fair", "poor")

USER_ROLES = ("admin", "manager", "facilitator", "user")
DEPARTMENTS = (
    "IT",
    "Finance",
    "Operations",
    "Management",
    "Media",
    "Training",
    "Research",
    "Administration",
    "Other",
)
EMAIL_DOMAINS = ("mlab.co.za", "mlab.org.za")

LOCATION_TYPES = ("hq", "hub", "branch", "site")
LOCATION_STATUSES = ("active", "maintenance", "offline")

REQUEST_STATUSES = ("draft", "pending", "under_review", "approved", "rejected", "fulfilled", "cancelled", "expired")
OPEN_REQUEST_STATUSES = ("pending", "under_review")
REQUEST_PRIORITIES = ("low", "medium", "high", "urgent")
REQUEST_ITEM_CATEGORIES = ("hardware", "software", "furniture", "equipment", "other")
REQUEST_URGENCIES = ("normal", "urgent")

HubName = Literal["Tshwane", "Polokwane", "Galeshewe"]
AssetStatus = Literal["available", "assigned", "maintenance", "retired"]
Condition = Literal["excellent", "good", "fair", "poor"]


# ----------------------------
# Stored documents
# ----------------------------
class Asset(BaseModel):
    id: Optional[str] = None
    asset_id: str = Field(..., description="Sequential asset code, e.g. ASSET-001")
    name: str
    category: str
    type: Optional[str] = None
    status: AssetStatus = "available"
    location: HubName
    location_id: Optional[str] = Field(None, description="Reference into the locations collection")
    serial_number: Optional[str] = None
    manufacturer: Optional[str] = None
    description: Optional[str] = None
    purchase_date: Optional[datetime] = None
    value: float = Field(..., gt=0, description="Value in ZAR")
    assigned_to: Optional[str] = None
    assigned_date: Optional[datetime] = None
    condition: Optional[str] = None
    next_maintenance_date: Optional[datetime] = None
    image_urls: List[str] = []
    schema_version: int = SCHEMA_VERSION
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class User(BaseModel):
    id: Optional[str] = None
    email: EmailStr
    display_name: str
    role: Literal["admin", "manager", "facilitator", "user"] = "user"
    department: Optional[str] = None
    phone: Optional[str] = Field(None, description="Normalized +27 phone number")
    hub: Optional[HubName] = None
    is_active: bool = True
    schema_version: int = SCHEMA_VERSION
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class Contact(BaseModel):
    name: str
    email: str
    phone: Optional[str] = None


class Location(BaseModel):
    id: Optional[str] = None
    name: str
    code: Optional[str] = None
    type: Literal["hq", "hub", "branch", "site"] = "hub"
    status: Literal["active", "maintenance", "offline"] = "active"
    address: str = ""
    region: Optional[str] = None
    description: Optional[str] = None
    capacity: Optional[int] = Field(None, ge=0)
    total_assets: int = Field(0, ge=0)
    primary_contact: Optional[Contact] = None
    schema_version: int = SCHEMA_VERSION
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class Assignment(BaseModel):
    id: Optional[str] = None
    asset_id: str = Field(..., description="Asset code")
    asset_ref: Optional[str] = Field(None, description="Asset document id")
    user_id: str
    assigned_at: datetime
    condition: str
    notes: Optional[str] = None
    expected_return_date: Optional[datetime] = None
    request_id: Optional[str] = Field(None, description="REQ-YYYY-NNN code of the request approved into this assignment")
    returned_at: Optional[datetime] = None
    return_condition: Optional[str] = None
    return_notes: Optional[str] = None


class MaintenanceRecord(BaseModel):
    id: Optional[str] = None
    asset_id: str
    type: Literal["scheduled", "repair", "inspection"] = "repair"
    description: Optional[str] = None
    status: Literal["scheduled", "completed"] = "scheduled"
    cost: Optional[float] = Field(None, ge=0)
    performed_by: Optional[str] = None
    performed_date: Optional[datetime] = None
    notes: Optional[str] = None


class RequestItem(BaseModel):
    asset_type: str
    category: Literal["hardware", "software", "furniture", "equipment", "other"] = "hardware"
    quantity: int = Field(1, ge=1)
    specifications: Dict[str, Any] = {}
    purpose: str = ""
    urgency: Literal["normal", "urgent"] = "normal"
    item_status: str = "pending"


class Approver(BaseModel):
    role: str = "admin"
    required: bool = True
    approved: bool = False
    approved_at: Optional[datetime] = None
    comments: Optional[str] = None


class Approval(BaseModel):
    status: str = "pending"
    requested_at: Optional[datetime] = None
    approvers: List[Approver] = []
    current_approver_index: int = 0
    approved_at: Optional[datetime] = None
    approved_by: Optional[str] = None
    rejected_at: Optional[datetime] = None
    rejected_by: Optional[str] = None
    rejection_reason: Optional[str] = None


class Fulfillment(BaseModel):
    fulfilled_at: Optional[datetime] = None
    fulfilled_by: Optional[str] = None
    fulfillment_location_id: Optional[str] = None
    fulfillment_location_name: Optional[str] = None
    items_fulfilled: int = 0
    items_pending: int = 0
    notes: Optional[str] = None


class AssetRequest(BaseModel):
    id: Optional[str] = None
    request_id: str = Field(..., description="Yearly sequential code, e.g. REQ-2024-001")
    requester_id: str
    requester_name: str = ""
    requester_email: str = ""
    location_id: str = ""
    location_name: str = ""
    department: Optional[str] = None
    items: List[RequestItem] = []
    asset_ref: Optional[str] = Field(None, description="Asset document id assigned to the requester on approval")
    assignment_id: Optional[str] = None
    status: Literal["draft", "pending", "under_review", "approved", "rejected", "fulfilled", "cancelled", "expired"] = "pending"
    priority: Literal["low", "medium", "high", "urgent"] = "medium"
    needed_by: Optional[datetime] = None
    expected_return_date: Optional[datetime] = None
    notes: Optional[str] = None
    approval: Optional[Approval] = None
    fulfillment: Optional[Fulfillment] = None
    schema_version: int = SCHEMA_VERSION
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


# ----------------------------
# Request payloads
# ----------------------------
class AssetCreateRequest(BaseModel):
    name: str
    category: str
    location: str
    value: float
    purchase_date: date
    type: Optional[str] = None
    status: Optional[str] = None
    location_id: Optional[str] = None
    serial_number: Optional[str] = None
    manufacturer: Optional[str] = None
    description: Optional[str] = None
    condition: Optional[str] = None
    next_maintenance_date: Optional[date] = None


class AssetUpdateRequest(BaseModel):
    name: Optional[str] = None
    category: Optional[str] = None
    type: Optional[str] = None
    status: Optional[str] = None
    location: Optional[str] = None
    location_id: Optional[str] = None
    serial_number: Optional[str] = None
    manufacturer: Optional[str] = None
    description: Optional[str] = None
    value: Optional[float] = None
    condition: Optional[str] = None
    next_maintenance_date: Optional[date] = None


class AssetSearchRequest(BaseModel):
    name: Optional[str] = None
    category: Optional[str] = None
    location: Optional[str] = None
    status: Optional[str] = None
    min_value: Optional[float] = None
    max_value: Optional[float] = None
    manufacturer: Optional[str] = None


class AssignRequest(BaseModel):
    user_id: str
    condition: str = "good"
    expected_return_date: Optional[date] = None


class ReturnRequest(BaseModel):
    condition: str = "good"
    notes: Optional[str] = None


class MaintenanceRequest(BaseModel):
    reason: str


class MaintenanceCompleteRequest(BaseModel):
    cost: float = Field(..., ge=0)
    performed_by: str
    notes: Optional[str] = None


class RegisterRequest(BaseModel):
    email: str
    password: str
    display_name: str
    phone: str
    hub: str
    department: Optional[str] = None
    role: Optional[str] = None


class LoginRequest(BaseModel):
    email: str
    password: str


class PasswordResetRequest(BaseModel):
    email: str


class PasswordResetPerform(BaseModel):
    token: str
    new_password: str


class UserCreateRequest(BaseModel):
    email: str
    display_name: str
    phone: str
    hub: str
    department: Optional[str] = None
    role: Optional[str] = None


class UserUpdateRequest(BaseModel):
    email: Optional[str] = None
    display_name: Optional[str] = None
    phone: Optional[str] = None
    hub: Optional[str] = None
    department: Optional[str] = None
    role: Optional[str] = None


class LocationRequest(BaseModel):
    name: str
    address: str
    type: str = "hub"
    status: str = "active"
    total_assets: int = 0
    contact_name: str
    contact_email: str
    contact_phone: str = ""
    description: str = ""
    region: str = ""
    capacity: Optional[int] = None


class LocationUpdateRequest(BaseModel):
    name: Optional[str] = None
    address: Optional[str] = None
    type: Optional[str] = None
    status: Optional[str] = None
    contact_name: Optional[str] = None
    contact_email: Optional[str] = None
    contact_phone: Optional[str] = None
    description: Optional[str] = None
    region: Optional[str] = None
    capacity: Optional[int] = None


class BulkImportRequest(BaseModel):
    csv: str = Field(..., description="One location per line: name,address,type,status,total_assets,region[,contact_name,contact_email,contact_phone,description]")


class RequestItemPayload(BaseModel):
    asset_type: str = ""
    category: str = "hardware"
    quantity: int = 1
    specifications: Dict[str, Any] = {}
    purpose: str = ""
    urgency: str = "normal"


class RequestCreateRequest(BaseModel):
    location_id: str = ""
    location_name: str = ""
    department: Optional[str] = None
    items: List[RequestItemPayload] = []
    asset_ref: Optional[str] = None
    priority: str = "medium"
    needed_by: Optional[date] = None
    expected_return_date: Optional[date] = None
    notes: Optional[str] = None


class RequestUpdateRequest(BaseModel):
    location_id: Optional[str] = None
    location_name: Optional[str] = None
    department: Optional[str] = None
    items: Optional[List[RequestItemPayload]] = None
    priority: Optional[str] = None
    needed_by: Optional[date] = None
    expected_return_date: Optional[date] = None
    notes: Optional[str] = None


class RequestApproval(BaseModel):
    comments: Optional[str] = None


class RequestRejection(BaseModel):
    reason: str


class RequestFulfillment(BaseModel):
    fulfillment_location_id: Optional[str] = None
    fulfillment_location_name: Optional[str] = None
    items_fulfilled: int = Field(..., ge=0)
    items_pending: int = Field(0, ge=0)
    notes: Optional[str] = None


# ----------------------------
# Derived statistics (never stored)
# ----------------------------
class NamedCount(BaseModel):
    name: str
    count: int


class RecentAsset(BaseModel):
    id: Optional[str] = None
    asset_id: Optional[str] = None
    name: Optional[str] = None
    type: Optional[str] = None
    created_at: datetime


class DashboardStats(BaseModel):
    total_assets: int = 0
    available_assets: int = 0
    assigned_assets: int = 0
    maintenance_assets: int = 0
    by_category: List[NamedCount] = []
    by_status: List[NamedCount] = []
    by_type: List[NamedCount] = []
    by_location: List[NamedCount] = []
    recent_assets: List[RecentAsset] = []


class LocationAssetData(BaseModel):
    location_id: str
    total: int = 0
    by_status: Dict[str, int] = {}
    by_type: Dict[str, int] = {}


class ConditionCount(BaseModel):
    condition: str
    count: int


class TypeConditions(BaseModel):
    type: str
    conditions: List[ConditionCount]


class ConditionStats(BaseModel):
    overall: List[ConditionCount] = []
    by_type: List[TypeConditions] = []


class ValueSummary(BaseModel):
    total_value: float = 0
    location_values: Dict[str, float] = {}
    category_values: Dict[str, float] = {}


class HubStats(BaseModel):
    total: int = 0
    assigned: int = 0
    available: int = 0
    maintenance: int = 0
    total_value: float = 0
    average_value: float = 0
    formatted_total_value: str = ""
    formatted_average_value: str = ""
    users: int = 0


class UserStats(BaseModel):
    total_users: int = 0
    active_users: int = 0
    inactive_users: int = 0
    by_role: Dict[str, int] = {}
    by_department: Dict[str, int] = {}


class LocationStats(BaseModel):
    total_locations: int = 0
    total_assets: int = 0
    active_hubs: int = 0
    maintenance_locations: int = 0
    locations_by_type: Dict[str, int] = {}
    locations_by_status: Dict[str, int] = {}


class MaintenanceSummary(BaseModel):
    total_maintenance: int = 0
    completed_maintenance: int = 0
    pending_maintenance: int = 0
    total_maintenance_cost: float = 0


class AssetUsage(BaseModel):
    id: Optional[str] = None
    asset_id: Optional[str] = None
    name: str = "Unknown"
    category: str = "Uncategorized"
    status: str = "available"
    total_assignments: int = 0
    total_days: int = 0
    current_user: Optional[str] = None
    last_assigned: Optional[datetime] = None


class UserActivity(BaseModel):
    user_id: str
    display_name: str = "Unknown"
    department: str = "N/A"
    total_assignments: int = 0
    active_assignments: int = 0
    overdue_returns: int = 0
    last_assignment: Optional[datetime] = None
    most_used_category: str = "N/A"


class MaintenanceReportRow(BaseModel):
    id: Optional[str] = None
    asset_id: Optional[str] = None
    name: str = "Unknown"
    category: str = "Uncategorized"
    status: str = "available"
    maintenance_count: int = 0
    total_cost: float = 0
    last_maintenance: Optional[datetime] = None
    next_maintenance: Optional[datetime] = None
    priority: Literal["low", "medium", "high", "critical"] = "low"


# ----------------------------
# Legacy document adapters
# ----------------------------
ASSET_KEYS = {
    "assetId": "asset_id",
    "serialNumber": "serial_number",
    "purchaseDate": "purchase_date",
    "assignedTo": "assigned_to",
    "assignedDate": "assigned_date",
    "currentLocationId": "location_id",
    "nextMaintenanceDate": "next_maintenance_date",
    "imageUrls": "image_urls",
    "createdAt": "created_at",
    "updatedAt": "updated_at",
}

USER_KEYS = {
    "displayName": "display_name",
    "primaryLocationId": "location_id",
    "isActive": "is_active",
    "createdAt": "created_at",
    "updatedAt": "updated_at",
}

LOCATION_KEYS = {
    "totalAssets": "total_assets",
    "primaryContact": "primary_contact",
    "lastAudit": "last_audit",
    "createdAt": "created_at",
    "updatedAt": "updated_at",
}

ASSIGNMENT_KEYS = {
    "assetId": "asset_id",
    "userId": "user_id",
    "assignedAt": "assigned_at",
    "assignedDate": "assigned_at",
    "expectedReturnDate": "expected_return_date",
    "actualReturnDate": "returned_at",
    "requestId": "request_id",
    "returnedAt": "returned_at",
    "returnCondition": "return_condition",
    "returnNotes": "return_notes",
    "createdAt": "created_at",
    "updatedAt": "updated_at",
}

REQUEST_KEYS = {
    "requestId": "request_id",
    "requesterId": "requester_id",
    "requesterName": "requester_name",
    "requesterEmail": "requester_email",
    "locationId": "location_id",
    "locationName": "location_name",
    "neededBy": "needed_by",
    "expectedReturnDate": "expected_return_date",
    "createdAt": "created_at",
    "updatedAt": "updated_at",
}


def _rename(doc: Dict[str, Any], mapping: Dict[str, str]) -> Dict[str, Any]:
    if doc.get("schema_version") == SCHEMA_VERSION:
        return doc
    out: Dict[str, Any] = {}
    for key, value in doc.items():
        new_key = mapping.get(key, key)
        # A canonical key always wins over its legacy spelling
        if new_key in out and key != new_key:
            continue
        out[new_key] = value
    out["schema_version"] = SCHEMA_VERSION
    return out


def adapt_asset(doc: Dict[str, Any]) -> Dict[str, Any]:
    return _rename(doc, ASSET_KEYS)


def adapt_user(doc: Dict[str, Any]) -> Dict[str, Any]:
    legacy = doc.get("schema_version") != SCHEMA_VERSION
    out = _rename(doc, USER_KEYS)
    if legacy and "is_active" not in out and out.get("status") in ("active", "inactive"):
        out["is_active"] = out.pop("status") == "active"
    return out


def adapt_location(doc: Dict[str, Any]) -> Dict[str, Any]:
    out = _rename(doc, LOCATION_KEYS)
    capacity = out.get("capacity")
    # The facilitator app stored capacity as {currentAssets, maxAssets, ...}
    if isinstance(capacity, dict):
        out["capacity"] = capacity.get("maxAssets")
        out.setdefault("total_assets", capacity.get("currentAssets", 0))
    return out


def adapt_assignment(doc: Dict[str, Any]) -> Dict[str, Any]:
    return _rename(doc, ASSIGNMENT_KEYS)


def adapt_request(doc: Dict[str, Any]) -> Dict[str, Any]:
    return _rename(doc, REQUEST_KEYS)
