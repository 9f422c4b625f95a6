import json
import time

import pytest

from app.models import (
    ChangeSource, ComplianceAuditLog, Lead, LeadDisposition, LeadStatus, LeadStatusHistory, ServiceType,
)
from app.services.lead_accounting import LeadAccountingService
from app.services.webhook_signatures import SIGNATURE_HEADER, generate_webhook_signature


def _error(response):
    body = response.json()
    assert body["success"] is False
    return body["error"]


def test_health(client):
    assert client.get("/health").json()["status"] == "healthy"


# ── Lead submission ──

def _lead_payload(service_type, **overrides):
    payload = {
        "serviceTypeId": service_type.id,
        "zipCode": "12345",
        "ownsHome": True,
        "timeframe": "within_1_month",
        "formData": {"firstName": "Jane", "email": "jane@example.com", "roofType": "Metal"},
        "complianceData": {
            "trustedFormCertUrl": "https://cert.trustedform.com/abc",
            "jornayaLeadId": "J-123",
            "tcpaConsent": True,
        },
    }
    payload.update(overrides)
    return payload


def test_submit_lead(client, db, service_type):
    response = client.post("/api/leads", json=_lead_payload(service_type),
                           headers={"X-Forwarded-For": "198.51.100.7, 10.0.0.1", "User-Agent": "quiz/1.0"})

    assert response.status_code == 201
    data = response.json()["data"]
    assert data["status"] == "PENDING"
    assert data["leadQualityScore"] == 85

    lead = db.query(Lead).filter(Lead.id == data["leadId"]).one()
    assert lead.status == LeadStatus.PENDING
    assert lead.jornaya_lead_id == "J-123"
    assert lead.compliance_data["ipAddress"] == "198.51.100.7"
    audit = db.query(ComplianceAuditLog).filter(ComplianceAuditLog.lead_id == lead.id).one()
    assert audit.user_agent == "quiz/1.0"


@pytest.mark.parametrize("overrides,field", [
    ({"zipCode": "1234"}, "zipCode"),
    ({"timeframe": "next_decade"}, "timeframe"),
])
def test_submit_lead_validation(client, service_type, overrides, field):
    response = client.post("/api/leads", json=_lead_payload(service_type, **overrides))
    assert response.status_code == 400
    error = _error(response)
    assert error["code"] == "VALIDATION_ERROR"
    assert error["field"] == field


def test_submit_lead_missing_fields(client, service_type):
    response = client.post("/api/leads", json={"serviceTypeId": service_type.id})
    assert response.status_code == 400
    assert _error(response)["code"] == "VALIDATION_ERROR"


def test_submit_lead_unknown_or_inactive_service(client, db, service_type):
    response = client.post("/api/leads", json=_lead_payload(service_type, serviceTypeId=9999))
    assert response.status_code == 404
    assert _error(response)["code"] == "SERVICE_TYPE_NOT_FOUND"

    service_type.active = False
    db.commit()
    response = client.post("/api/leads", json=_lead_payload(service_type))
    assert response.status_code == 400
    assert _error(response)["code"] == "SERVICE_TYPE_INACTIVE"


def test_lead_listing_is_not_public(client, make_lead):
    make_lead()
    assert client.get("/api/leads").status_code == 401


# ── Service types ──

def test_public_service_types(client, db, service_type):
    db.add(ServiceType(name="gutters", display_name="Gutter Cleaning", active=False))
    db.commit()

    names = [s["name"] for s in client.get("/api/service-types").json()["data"]]
    assert names == ["roofing"]
    names = [s["name"] for s in client.get("/api/service-types?includeInactive=true").json()["data"]]
    assert names == ["gutters", "roofing"]

    detail = client.get(f"/api/service-types/{service_type.id}").json()["data"]
    assert detail["displayName"] == "Roofing Services"
    missing = client.get("/api/service-types/9999")
    assert missing.status_code == 404
    assert _error(missing)["code"] == "SERVICE_TYPE_NOT_FOUND"


# ── Locations ──

def test_location_search(client, zip_metadata):
    assert client.get("/api/locations/search?q=1").json()["data"] == []

    zips = client.get("/api/locations/search?q=100").json()["data"]
    assert [r["zipCode"] for r in zips] == ["10001", "10002"]
    assert zips[0]["displayName"] == "10001 - New York, NY"

    cities = client.get("/api/locations/search?q=chi").json()["data"]
    assert cities == [{
        "type": "city", "id": "Chicago-IL", "name": "Chicago",
        "displayName": "Chicago, IL", "city": "Chicago", "state": "IL",
    }]

    states = client.get("/api/locations/search?q=ny&type=state").json()["data"]
    assert [r["id"] for r in states] == ["NY"]


def test_location_search_treats_wildcards_literally(client, zip_metadata):
    assert client.get("/api/locations/search", params={"q": "N%"}).json()["data"] == []
    assert client.get("/api/locations/search", params={"q": "__"}).json()["data"] == []
    assert client.get("/api/locations/search", params={"q": "_e", "type": "city"}).json()["data"] == []

    cities = client.get("/api/locations/search", params={"q": "ne", "type": "city"}).json()["data"]
    assert [r["id"] for r in cities] == ["New York-NY"]


# ── Inbound webhooks ──

def _signed(body: dict, secret: str):
    payload = json.dumps(body)
    return payload, {SIGNATURE_HEADER: generate_webhook_signature(payload, secret),
                     "Content-Type": "application/json"}


def _hook(lead_id, action="status_update", status="contacted", **extra):
    return {"leadId": lead_id, "action": action, "status": status, "timestamp": int(time.time()), **extra}


def _send(client, buyer, body, secret="hook-secret"):
    payload, headers = _signed(body, secret)
    return client.post(f"/api/webhooks/{buyer.id}", content=payload, headers=headers)


def test_webhook_accepts_signed_update(client, db, make_buyer, make_lead):
    buyer = make_buyer("Hooked", webhook_secret="hook-secret")
    lead = make_lead()

    response = _send(client, buyer, _hook(lead.id))

    assert response.status_code == 200
    assert response.json()["data"] == {"received": True, "leadId": lead.id, "action": "status_update"}
    audit = db.query(ComplianceAuditLog).filter(ComplianceAuditLog.lead_id == lead.id).one()
    assert audit.event_type == "BUYER_STATUS_UPDATE"
    assert audit.event_data["status"] == "contacted"
    db.refresh(lead)
    assert lead.status == LeadStatus.PENDING


def test_webhook_signature_failures(client, make_buyer, make_lead):
    buyer = make_buyer("Hooked", webhook_secret="hook-secret")
    lead = make_lead()
    body = _hook(lead.id)

    payload, _ = _signed(body, "hook-secret")
    response = client.post(f"/api/webhooks/{buyer.id}", content=payload)
    assert response.status_code == 401
    assert _error(response)["code"] == "MISSING_SIGNATURE"

    response = _send(client, buyer, body, secret="other-secret")
    assert response.status_code == 401
    assert _error(response)["code"] == "INVALID_SIGNATURE"

    response = _send(client, buyer, dict(body, timestamp=int(time.time()) - 3600))
    assert response.status_code == 401
    assert _error(response)["code"] == "INVALID_SIGNATURE"


def test_webhook_non_utf8_body_is_rejected_cleanly(client, make_buyer):
    buyer = make_buyer("Hooked", webhook_secret="hook-secret")
    raw = b'{"leadId": 1, "status": "\xff\xfe", "timestamp": ' + str(int(time.time())).encode() + b"}"
    headers = {SIGNATURE_HEADER: generate_webhook_signature(raw, "hook-secret"),
               "Content-Type": "application/json"}

    response = client.post(f"/api/webhooks/{buyer.id}", content=raw, headers=headers)

    assert response.status_code == 401
    assert _error(response)["code"] == "INVALID_SIGNATURE"


def test_webhook_non_utf8_body_without_replay_window(client, make_buyer, monkeypatch):
    from app.core.config import settings

    monkeypatch.setattr(settings, "WEBHOOK_MAX_AGE_SECONDS", None)
    buyer = make_buyer("Hooked", webhook_secret="hook-secret")
    raw = b'{"leadId": 1, "status": "\xff"}'
    headers = {SIGNATURE_HEADER: generate_webhook_signature(raw, "hook-secret")}

    response = client.post(f"/api/webhooks/{buyer.id}", content=raw, headers=headers)

    assert response.status_code == 400
    assert _error(response)["code"] == "INVALID_ENCODING"


def test_webhook_buyer_checks(client, make_buyer, make_lead):
    lead = make_lead()
    payload, headers = _signed(_hook(lead.id), "hook-secret")

    response = client.post("/api/webhooks/9999", content=payload, headers=headers)
    assert response.status_code == 404
    assert _error(response)["code"] == "BUYER_NOT_FOUND"

    inactive = make_buyer("Inactive", webhook_secret="hook-secret", active=False)
    response = client.post(f"/api/webhooks/{inactive.id}", content=payload, headers=headers)
    assert response.status_code == 403
    assert _error(response)["code"] == "BUYER_INACTIVE"

    no_secret = make_buyer("No Secret")
    response = client.post(f"/api/webhooks/{no_secret.id}", content=payload, headers=headers)
    assert response.status_code == 403
    assert _error(response)["code"] == "WEBHOOK_NOT_CONFIGURED"


def test_webhook_payload_checks(client, make_buyer, make_lead):
    buyer = make_buyer("Hooked", webhook_secret="hook-secret")
    lead = make_lead()

    response = _send(client, buyer, {"status": "contacted", "timestamp": int(time.time())})
    assert response.status_code == 400
    error = _error(response)
    assert error["code"] == "MISSING_REQUIRED_FIELDS"
    assert error["data"]["receivedFields"] == ["status", "timestamp"]

    response = _send(client, buyer, _hook(9999))
    assert response.status_code == 404
    assert _error(response)["code"] == "LEAD_NOT_FOUND"

    response = _send(client, buyer, _hook(lead.id, action="refund_request"))
    assert response.status_code == 400
    assert _error(response)["code"] == "UNKNOWN_ACTION"


@pytest.mark.parametrize("status,bid,code", [
    ("maybe", None, "INVALID_PING_STATUS"),
    ("accepted", None, "INVALID_BID"),
    ("accepted", 0, "INVALID_BID"),
    ("accepted", "40", "INVALID_BID"),
])
def test_webhook_ping_response_validation(client, make_buyer, make_lead, status, bid, code):
    buyer = make_buyer("Hooked", webhook_secret="hook-secret")
    lead = make_lead()

    response = _send(client, buyer, _hook(lead.id, action="ping_response", status=status, bidAmount=bid))

    assert response.status_code == 400
    assert _error(response)["code"] == code


def test_webhook_ping_response_is_audited(client, db, make_buyer, make_lead):
    buyer = make_buyer("Hooked", webhook_secret="hook-secret")
    lead = make_lead()

    response = _send(client, buyer, _hook(lead.id, action="ping_response", status="accepted", bidAmount=42.5))

    assert response.status_code == 200
    audit = db.query(ComplianceAuditLog).filter(ComplianceAuditLog.lead_id == lead.id).one()
    assert audit.event_type == "BUYER_PING_RESPONSE"
    assert audit.event_data["bidAmount"] == 42.5
    db.refresh(lead)
    assert lead.status == LeadStatus.PENDING


@pytest.mark.parametrize("reported,status,disposition", [
    ("delivered", LeadStatus.SOLD, LeadDisposition.DELIVERED),
    ("duplicate", LeadStatus.DUPLICATE, LeadDisposition.NEW),
    ("failed", LeadStatus.REJECTED, LeadDisposition.NEW),
    ("invalid", LeadStatus.REJECTED, LeadDisposition.NEW),
])
def test_webhook_post_response_moves_lead(client, db, make_buyer, make_lead, reported, status, disposition):
    buyer = make_buyer("Hooked", webhook_secret="hook-secret")
    lead = make_lead(status=LeadStatus.PROCESSING)

    response = _send(client, buyer, _hook(lead.id, action="post_response", status=reported))

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["leadStatus"] == status.value
    assert data["forceUpdated"] is False
    db.refresh(lead)
    assert lead.status == status
    assert lead.disposition == disposition
    history = db.query(LeadStatusHistory).filter(LeadStatusHistory.lead_id == lead.id).one()
    assert history.change_source == ChangeSource.WEBHOOK
    assert (history.old_status, history.new_status) == (LeadStatus.PROCESSING, status)
    audit = db.query(ComplianceAuditLog).filter(ComplianceAuditLog.lead_id == lead.id).one()
    assert audit.event_type == "BUYER_POST_RESPONSE"


def test_webhook_post_response_rejects_unknown_status(client, make_buyer, make_lead):
    buyer = make_buyer("Hooked", webhook_secret="hook-secret")
    lead = make_lead()

    response = _send(client, buyer, _hook(lead.id, action="post_response", status="lost"))

    assert response.status_code == 400
    assert _error(response)["code"] == "INVALID_POST_STATUS"


def test_failed_post_response_racing_a_sale_forces_delivery_failed(db, make_lead):
    # The handler read the lead while PROCESSING; the auction has since sold it
    lead = make_lead(status=LeadStatus.SOLD)
    stale_copy = Lead(id=lead.id, status=LeadStatus.PROCESSING, disposition=LeadDisposition.NEW)

    outcome = LeadAccountingService(db).apply_post_response(stale_copy, "failed", reason="Buyer declined")
    db.commit()

    assert outcome == {"leadStatus": "DELIVERY_FAILED", "forceUpdated": True, "applied": True}
    assert db.query(Lead).filter(Lead.id == lead.id).one().status == LeadStatus.DELIVERY_FAILED
    history = db.query(LeadStatusHistory).filter(LeadStatusHistory.lead_id == lead.id).one()
    assert (history.old_status, history.new_status) == (LeadStatus.SOLD, LeadStatus.DELIVERY_FAILED)


def test_delivered_post_response_losing_a_race_is_not_applied(db, make_lead):
    lead = make_lead(status=LeadStatus.SCRUBBED)
    stale_copy = Lead(id=lead.id, status=LeadStatus.PROCESSING, disposition=LeadDisposition.NEW)

    outcome = LeadAccountingService(db).apply_post_response(stale_copy, "delivered")

    assert outcome == {"leadStatus": "SCRUBBED", "forceUpdated": False, "applied": False}
    assert db.query(Lead).filter(Lead.id == lead.id).one().status == LeadStatus.SCRUBBED
