import pytest

from app.core.errors import ConflictError, ValidationError
from app.core.security import create_access_token, get_password_hash
from app.models import (
    AdminUser, ChangeSource, ComplianceAuditLog, Lead, LeadDisposition, LeadStatus, LeadStatusHistory,
)
from app.services.lead_accounting import (
    LeadAccountingService, can_transition_disposition, can_transition_status,
)


def _error(response):
    body = response.json()
    assert body["success"] is False
    return body["error"]


# ── Transition rules ──

@pytest.mark.parametrize("current,new,allowed", [
    (LeadStatus.PENDING, LeadStatus.PROCESSING, True),
    (LeadStatus.PENDING, LeadStatus.SOLD, False),
    (LeadStatus.PROCESSING, LeadStatus.EXPIRED, True),
    (LeadStatus.SOLD, LeadStatus.SCRUBBED, True),
    (LeadStatus.SOLD, LeadStatus.REJECTED, False),
    (LeadStatus.DELIVERY_FAILED, LeadStatus.PROCESSING, True),
    (LeadStatus.SCRUBBED, LeadStatus.PENDING, False),
    (LeadStatus.DUPLICATE, LeadStatus.PROCESSING, False),
])
def test_status_transitions(current, new, allowed):
    assert can_transition_status(current, new) is allowed


@pytest.mark.parametrize("current,new,allowed", [
    (LeadDisposition.NEW, LeadDisposition.DELIVERED, True),
    (LeadDisposition.NEW, LeadDisposition.RETURNED, False),
    (LeadDisposition.DELIVERED, LeadDisposition.RETURNED, True),
    (LeadDisposition.RETURNED, LeadDisposition.WRITTEN_OFF, True),
    (LeadDisposition.DISPUTED, LeadDisposition.DELIVERED, True),
    (LeadDisposition.CREDITED, LeadDisposition.DISPUTED, False),
])
def test_disposition_transitions(current, new, allowed):
    assert can_transition_disposition(current, new) is allowed


# ── Service ──

def test_change_status_records_history_and_audit(db, make_lead):
    lead = make_lead(status=LeadStatus.SOLD, disposition=LeadDisposition.DELIVERED)

    LeadAccountingService(db).change_status(lead.id, LeadStatus.SCRUBBED, "Consumer asked to be removed",
                                            new_disposition=LeadDisposition.RETURNED, ip_address="198.51.100.4")

    db.refresh(lead)
    assert lead.status == LeadStatus.SCRUBBED
    assert lead.disposition == LeadDisposition.RETURNED
    entry = db.query(LeadStatusHistory).filter(LeadStatusHistory.lead_id == lead.id).one()
    assert entry.change_source == ChangeSource.ADMIN
    assert (entry.old_status, entry.new_status) == (LeadStatus.SOLD, LeadStatus.SCRUBBED)
    assert (entry.old_disposition, entry.new_disposition) == (LeadDisposition.DELIVERED, LeadDisposition.RETURNED)
    assert entry.ip_address == "198.51.100.4"
    audit = db.query(ComplianceAuditLog).filter(ComplianceAuditLog.lead_id == lead.id).one()
    assert audit.event_type == "ADMIN_STATUS_CHANGE"


def test_change_status_validation(db, make_lead):
    lead = make_lead(status=LeadStatus.SOLD)
    service = LeadAccountingService(db)

    with pytest.raises(ValidationError) as exc:
        service.change_status(lead.id, LeadStatus.PENDING, "Retry")
    assert exc.value.code == "INVALID_STATUS_TRANSITION"
    assert exc.value.data["allowed"] == ["SCRUBBED"]

    with pytest.raises(ValidationError) as exc:
        service.change_status(lead.id, LeadStatus.SCRUBBED, "   ")
    assert exc.value.code == "REASON_REQUIRED"

    with pytest.raises(ValidationError) as exc:
        service.change_status(lead.id, LeadStatus.SOLD, "Same again")
    assert exc.value.code == "NO_CHANGE"

    with pytest.raises(ValidationError) as exc:
        service.change_status(lead.id, LeadStatus.SOLD, "Skip ahead", new_disposition=LeadDisposition.CREDITED)
    assert exc.value.code == "INVALID_DISPOSITION_TRANSITION"
    assert db.query(LeadStatusHistory).count() == 0


def test_system_changes_do_not_need_a_reason(db, make_lead):
    lead = make_lead(status=LeadStatus.PROCESSING)
    LeadAccountingService(db).change_status(lead.id, LeadStatus.EXPIRED, None, source=ChangeSource.SYSTEM)
    db.refresh(lead)
    assert lead.status == LeadStatus.EXPIRED
    assert db.query(ComplianceAuditLog).count() == 0


def test_concurrent_change_is_refused(db, make_lead, monkeypatch):
    lead = make_lead(status=LeadStatus.SOLD)
    service = LeadAccountingService(db)
    monkeypatch.setattr(service, "_conditional_update", lambda *args: False)

    with pytest.raises(ConflictError) as exc:
        service.change_status(lead.id, LeadStatus.SCRUBBED, "Scrub")
    assert exc.value.code == "CONCURRENT_MODIFICATION"
    assert db.query(LeadStatusHistory).count() == 0


def test_issue_credit(db, make_lead):
    lead = make_lead(status=LeadStatus.SOLD, disposition=LeadDisposition.RETURNED)

    LeadAccountingService(db).issue_credit(lead.id, 35.5, "Wrong phone number")

    db.refresh(lead)
    assert lead.disposition == LeadDisposition.CREDITED
    assert float(lead.credit_amount) == 35.5
    assert lead.credit_issued_at is not None
    entry = db.query(LeadStatusHistory).filter(LeadStatusHistory.lead_id == lead.id).one()
    assert float(entry.credit_amount) == 35.5
    assert entry.new_disposition == LeadDisposition.CREDITED
    assert entry.old_status == entry.new_status == LeadStatus.SOLD


@pytest.mark.parametrize("disposition,amount,code", [
    (LeadDisposition.DELIVERED, 20, "CREDIT_NOT_ALLOWED"),
    (LeadDisposition.CREDITED, 20, "CREDIT_NOT_ALLOWED"),
    (LeadDisposition.RETURNED, 0, "INVALID_CREDIT_AMOUNT"),
    (LeadDisposition.DISPUTED, -5, "INVALID_CREDIT_AMOUNT"),
])
def test_issue_credit_validation(db, make_lead, disposition, amount, code):
    lead = make_lead(status=LeadStatus.SOLD, disposition=disposition)
    with pytest.raises(ValidationError) as exc:
        LeadAccountingService(db).issue_credit(lead.id, amount, "Refund")
    assert exc.value.code == code


# ── Admin routes ──

def test_admin_status_change_and_history(client, db, admin_headers, make_lead):
    lead = make_lead(status=LeadStatus.SOLD, disposition=LeadDisposition.DELIVERED)
    url = f"/api/admin/leads/{lead.id}"

    assert client.put(url, json={"status": "SCRUBBED", "reason": "x"}).status_code == 401

    response = client.put(url, headers=admin_headers,
                          json={"status": "SOLD", "disposition": "RETURNED", "reason": "Bad number"})
    assert response.status_code == 200
    assert response.json()["data"]["disposition"] == "RETURNED"

    response = client.put(url, headers=admin_headers, json={"status": "PENDING", "reason": "Retry"})
    assert response.status_code == 400
    assert _error(response)["code"] == "INVALID_STATUS_TRANSITION"

    missing_reason = client.put(url, headers=admin_headers, json={"status": "SCRUBBED"})
    assert missing_reason.status_code == 400

    credit = client.post(f"{url}/credit", headers=admin_headers, json={"creditAmount": 25, "reason": "Returned"})
    assert credit.status_code == 200
    assert credit.json()["data"]["creditAmount"] == 25
    assert credit.json()["data"]["disposition"] == "CREDITED"

    again = client.post(f"{url}/credit", headers=admin_headers, json={"creditAmount": 25, "reason": "Twice"})
    assert again.status_code == 400
    assert _error(again)["code"] == "CREDIT_NOT_ALLOWED"

    history = client.get(f"{url}/history", headers=admin_headers).json()["data"]
    assert [h["newDisposition"] for h in history] == ["CREDITED", "RETURNED"]
    assert history[0]["creditAmount"] == 25
    assert history[0]["changedBy"] == "System"
    assert history[1]["reason"] == "Bad number"

    assert client.get("/api/admin/leads/9999/history", headers=admin_headers).status_code == 404


def test_history_names_the_admin_who_changed_it(client, db, make_lead):
    admin = AdminUser(email="ops@leadmarket.io", full_name="Ops Person",
                      hashed_password=get_password_hash("hunter22"), role="admin")
    db.add(admin)
    db.commit()
    headers = {"Authorization": f"Bearer {create_access_token(admin)}"}
    lead = make_lead(status=LeadStatus.REJECTED)

    client.put(f"/api/admin/leads/{lead.id}", headers=headers, json={"status": "SCRUBBED", "reason": "Fraud"})

    history = client.get(f"/api/admin/leads/{lead.id}/history", headers=headers).json()["data"]
    assert history[0]["changedBy"] == "Ops Person"
    entry = db.query(LeadStatusHistory).filter(LeadStatusHistory.lead_id == lead.id).one()
    assert entry.admin_user_id == admin.id
