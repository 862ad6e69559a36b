"""
Pytest configuration and fixtures.

Every test gets a fresh in-memory MongoDB from mongomock; the HTTP client
reaches it through an override of the ``get_db`` dependency.
"""
import mongomock
import pytest
from fastapi.testclient import TestClient

import database
from asset_requests import RequestService
from assets import AssetService
from assignments import AssignmentService
from auth import IdentityService
from locations import LocationService
from main import app, get_blob_store
from reports import AnalyticsService, ReportService
from storage import BlobStore
from users import UserService

PASSWORD = "Secret123!"


@pytest.fixture
def db():
    """Fresh in-memory database"""
    client = mongomock.MongoClient()
    yield client["asset_management_test"]
    client.close()


@pytest.fixture
def asset_service(db):
    return AssetService(db)


@pytest.fixture
def assignment_service(db):
    return AssignmentService(db)


@pytest.fixture
def user_service(db):
    return UserService(db)


@pytest.fixture
def location_service(db):
    return LocationService(db)


@pytest.fixture
def analytics_service(db):
    return AnalyticsService(db)


@pytest.fixture
def report_service(db):
    return ReportService(db)


@pytest.fixture
def request_service(db):
    return RequestService(db)


@pytest.fixture
def identity(db):
    return IdentityService(db)


@pytest.fixture
def blob_store(tmp_path):
    return BlobStore(root=str(tmp_path))


@pytest.fixture
def client(db, blob_store):
    """Test client wired to the in-memory database"""
    app.dependency_overrides[database.get_db] = lambda: db
    app.dependency_overrides[get_blob_store] = lambda: blob_store
    yield TestClient(app)
    app.dependency_overrides.clear()


def asset_payload(**overrides):
    payload = {
        "name": "Dell Latitude 5420",
        "category": "Laptop",
        "type": "laptop",
        "location": "Tshwane",
        "value": 15000,
        "purchase_date": "2023-03-01",
        "serial_number": "SN-001",
        "manufacturer": "Dell",
        "condition": "good",
    }
    payload.update(overrides)
    return payload


def user_payload(email="admin@mlab.co.za", **overrides):
    payload = {
        "email": email,
        "password": PASSWORD,
        "display_name": "Thandi Mokoena",
        "phone": "082 123 4567",
        "hub": "Tshwane",
        "department": "IT",
    }
    payload.update(overrides)
    return payload


def register(client, email="admin@mlab.co.za", **overrides):
    """Register through the API and return the auth headers"""
    response = client.post("/auth/register", json=user_payload(email, **overrides))
    assert response.status_code == 200, response.text
    token = response.json()["data"]["token"]
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def admin_headers(client):
    return register(client)


@pytest.fixture
def user_headers(client, admin_headers):
    return register(client, email="learner@mlab.co.za", display_name="Sipho Ndlovu")
