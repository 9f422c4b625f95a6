import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["LEAD_PROCESSING_MODE"] = "disabled"
os.environ["ADMIN_API_KEY"] = "test-admin-key"
os.environ["SECRET_KEY"] = "test-secret-key-for-jwt-signing-in-the-suite"
os.environ["SEED_SERVICE_TYPES"] = "false"
os.environ["DEBUG"] = "false"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.database import Base, get_db
from app.main import app
from app.models import (
    Buyer, BuyerType, BuyerServiceConfig, BuyerServiceZipCode, Lead, LeadStatus, ServiceType,
    ZipCodeMetadata,
)
from app.services.auction import auction_metrics
from app.services.buyer_registry import get_buyer_registry

engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

ADMIN_HEADERS = {"Authorization": "Bearer test-admin-key"}


@pytest.fixture(autouse=True)
def reset_state():
    Base.metadata.create_all(bind=engine)
    get_buyer_registry().clear()
    auction_metrics.reset()
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db():
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client(db):
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    # No context manager: skips the lifespan (table creation against DATABASE_URL)
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def admin_headers():
    return dict(ADMIN_HEADERS)


@pytest.fixture
def service_type(db):
    st = ServiceType(name="roofing", display_name="Roofing Services", form_schema={"fields": []}, active=True)
    db.add(st)
    db.commit()
    db.refresh(st)
    return st


@pytest.fixture
def make_buyer(db, service_type):
    """Buyer + service config + zone for ``service_type`` in one call."""

    def _make(name, zip_code="12345", type=BuyerType.NETWORK, api_url=None, min_bid=0, max_bid=999.99,
              zone_min_bid=None, zone_max_bid=None, priority=100, max_leads_per_day=None,
              ping_template=None, post_template=None, auth_config=None, active=True,
              requires_trustedform=False, requires_jornaya=False, compliance_config=None,
              webhook_secret=None, field_mappings=None):
        buyer = Buyer(
            name=name,
            type=type,
            api_url=api_url if api_url is not None else f"https://{name.lower().replace(' ', '-')}.example/api",
            auth_config=auth_config or {"type": "none"},
            active=active,
            compliance_config=compliance_config,
            webhook_secret=webhook_secret,
        )
        db.add(buyer)
        db.flush()
        db.add(BuyerServiceConfig(
            buyer_id=buyer.id,
            service_type_id=service_type.id,
            ping_template=ping_template or {},
            post_template=post_template or {},
            field_mappings=field_mappings or {},
            min_bid=min_bid,
            max_bid=max_bid,
            requires_trustedform=requires_trustedform,
            requires_jornaya=requires_jornaya,
        ))
        if zip_code:
            db.add(BuyerServiceZipCode(
                buyer_id=buyer.id,
                service_type_id=service_type.id,
                zip_code=zip_code,
                priority=priority,
                max_leads_per_day=max_leads_per_day,
                min_bid=zone_min_bid,
                max_bid=zone_max_bid,
            ))
        db.commit()
        db.refresh(buyer)
        return buyer

    return _make


@pytest.fixture
def make_lead(db, service_type):
    def _make(zip_code="12345", **fields):
        lead = Lead(
            service_type_id=service_type.id,
            form_data=fields.pop("form_data", {
                "firstName": "Jane", "lastName": "Doe", "email": "jane@example.com",
                "phone": "5551234567", "roofType": "Metal",
            }),
            zip_code=zip_code,
            owns_home=fields.pop("owns_home", True),
            timeframe=fields.pop("timeframe", "within_1_month"),
            status=fields.pop("status", LeadStatus.PENDING),
            **fields,
        )
        db.add(lead)
        db.commit()
        db.refresh(lead)
        return lead

    return _make


@pytest.fixture
def zip_metadata(db):
    rows = [
        ZipCodeMetadata(zip_code="10001", city="New York", state="NY"),
        ZipCodeMetadata(zip_code="10002", city="New York", state="NY"),
        ZipCodeMetadata(zip_code="60601", city="Chicago", state="IL"),
        ZipCodeMetadata(zip_code="60602", city="Chicago", state="IL"),
        ZipCodeMetadata(zip_code="90210", city="Beverly Hills", state="CA"),
    ]
    db.add_all(rows)
    db.commit()
    return rows
