import pytest

from app.models import Buyer, BuyerServiceConfig, BuyerServiceZipCode, BuyerType, ServiceType, ZipCodeMetadata


def _error(response):
    body = response.json()
    assert body["success"] is False
    return body["error"]


@pytest.fixture
def gutters(db):
    st = ServiceType(name="gutters", display_name="Gutter Services", active=True)
    db.add(st)
    db.commit()
    return st


def _signup(service_type, **overrides):
    payload = {
        "contactName": "Pat Builder",
        "contactEmail": "pat@buildright-roofing.com",
        "contactPhone": "555-123-4567",
        "companyName": "BuildRight Roofing",
        "businessEmail": "office@buildright-roofing.com",
        "businessPhone": "555-765-4321",
        "additionalContacts": [{"name": "Sam", "email": "sam@buildright-roofing.com", "role": "Dispatcher"}],
        "selectedServices": [service_type.id],
        "serviceLocationMappings": [{
            "serviceId": service_type.id,
            "locations": [
                {"type": "city", "id": "New York-NY", "name": "New York", "state": "NY"},
                {"type": "zipcode", "id": "60601", "zipCode": "60601"},
            ],
        }],
    }
    payload.update(overrides)
    return payload


def test_signup_creates_inactive_contractor_with_coverage(client, db, service_type, zip_metadata):
    response = client.post("/api/contractors/signup", json=_signup(service_type))

    assert response.status_code == 201
    data = response.json()["data"]
    assert data["status"] == "pending_review"
    assert data["servicesConfigured"] == 1
    assert data["zipCodesCreated"] == 3

    buyer = db.query(Buyer).filter(Buyer.id == data["buyerId"]).one()
    assert buyer.type == BuyerType.CONTRACTOR
    assert buyer.active is False
    assert (buyer.ping_timeout, buyer.post_timeout) == (30, 60)
    assert buyer.additional_contacts[0]["email"] == "sam@buildright-roofing.com"

    config = db.query(BuyerServiceConfig).filter(BuyerServiceConfig.buyer_id == buyer.id).one()
    assert (float(config.min_bid), float(config.max_bid)) == (10, 100)
    zones = db.query(BuyerServiceZipCode).filter(BuyerServiceZipCode.buyer_id == buyer.id).all()
    assert sorted(z.zip_code for z in zones) == ["10001", "10002", "60601"]
    assert {z.priority for z in zones} == {100}


def test_signup_expands_states_and_counties_without_duplicates(client, db, service_type, gutters):
    db.add_all([
        ZipCodeMetadata(zip_code="73301", city="Austin", state="TX", county="Travis"),
        ZipCodeMetadata(zip_code="78701", city="Austin", state="TX", county="Travis"),
        ZipCodeMetadata(zip_code="77001", city="Houston", state="TX", county="Harris"),
    ])
    db.commit()

    response = client.post("/api/contractors/signup", json=_signup(
        service_type,
        selectedServices=[service_type.id, gutters.id],
        serviceLocationMappings=[
            {"serviceId": service_type.id, "locations": [{"type": "state", "id": "TX"},
                                                          {"type": "zipcode", "id": "78701"}]},
            {"serviceId": gutters.id, "locations": [{"type": "county", "id": "travis", "state": "TX"}]},
        ],
    ))

    assert response.status_code == 201
    data = response.json()["data"]
    assert data["servicesConfigured"] == 2
    assert data["zipCodesCreated"] == 5


@pytest.mark.parametrize("overrides", [
    {"contactName": "P"},
    {"contactEmail": "not-an-email"},
    {"businessPhone": "555"},
    {"selectedServices": []},
    {"serviceLocationMappings": []},
    {"additionalContacts": [{"name": "Sam", "email": "nope"}]},
])
def test_signup_field_validation(client, service_type, overrides):
    response = client.post("/api/contractors/signup", json=_signup(service_type, **overrides))
    assert response.status_code == 400
    assert _error(response)["code"] == "VALIDATION_ERROR"


def test_signup_mappings_must_match_selected_services(client, service_type, gutters):
    unmapped = client.post("/api/contractors/signup", json=_signup(
        service_type, selectedServices=[service_type.id, gutters.id]))
    assert unmapped.status_code == 400

    extra = client.post("/api/contractors/signup", json=_signup(
        service_type,
        serviceLocationMappings=[
            {"serviceId": service_type.id, "locations": [{"type": "zipcode", "id": "10001"}]},
            {"serviceId": gutters.id, "locations": [{"type": "zipcode", "id": "10001"}]},
        ],
    ))
    assert extra.status_code == 400

    bad_type = client.post("/api/contractors/signup", json=_signup(
        service_type,
        serviceLocationMappings=[{"serviceId": service_type.id, "locations": [{"type": "region", "id": "NE"}]}],
    ))
    assert bad_type.status_code == 400


def test_signup_unknown_service(client, service_type):
    response = client.post("/api/contractors/signup", json=_signup(
        service_type,
        selectedServices=[9999],
        serviceLocationMappings=[{"serviceId": 9999, "locations": [{"type": "zipcode", "id": "10001"}]}],
    ))
    assert response.status_code == 400
    error = _error(response)
    assert error["code"] == "INVALID_SERVICE"
    assert error["data"]["invalidIds"] == [9999]


@pytest.mark.parametrize("overrides,code", [
    ({"companyName": "buildright roofing", "contactEmail": "new@other-co.com", "businessEmail": "b@other-co.com"},
     "COMPANY_EXISTS"),
    ({"companyName": "Other Co", "contactEmail": "PAT@buildright-roofing.com", "businessEmail": "b@other-co.com"},
     "EMAIL_EXISTS"),
    ({"companyName": "Other Co", "contactEmail": "new@other-co.com", "businessEmail": "office@buildright-roofing.com"},
     "EMAIL_EXISTS"),
])
def test_signup_conflicts(client, service_type, zip_metadata, overrides, code):
    assert client.post("/api/contractors/signup", json=_signup(service_type)).status_code == 201

    response = client.post("/api/contractors/signup", json=_signup(service_type, **overrides))

    assert response.status_code == 409
    assert _error(response)["code"] == code


def test_admin_signup_queue(client, db, admin_headers, service_type, zip_metadata, make_buyer):
    make_buyer("Approved Roofer", type=BuyerType.CONTRACTOR)
    make_buyer("Some Network")
    client.post("/api/contractors/signup", json=_signup(service_type))

    assert client.get("/api/admin/contractors").status_code == 401

    body = client.get("/api/admin/contractors", headers=admin_headers).json()
    assert [c["companyName"] for c in body["data"]] == ["BuildRight Roofing"]
    assert body["data"][0]["status"] == "pending"
    assert body["data"][0]["services"] == ["Roofing Services"]
    assert body["data"][0]["zipCodeCount"] == 3
    assert body["counts"] == {"pending": 1, "approved": 1, "total": 2}

    approved = client.get("/api/admin/contractors?status=approved", headers=admin_headers).json()["data"]
    assert [c["companyName"] for c in approved] == ["Approved Roofer"]
    everyone = client.get("/api/admin/contractors?status=all", headers=admin_headers).json()["data"]
    assert len(everyone) == 2
