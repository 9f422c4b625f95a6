import asyncio

import httpx
import pytest
from fastapi import BackgroundTasks

from app.core.config import settings
from app.core.errors import NotFoundError, ValidationError
from app.models import (
    ChangeSource, ComplianceAuditLog, Lead, LeadDisposition, LeadStatus, LeadStatusHistory, ServiceType,
)
from app.services.auction import AuctionConfig, AuctionEngine
from app.services.buyer_registry import BuyerConfigurationRegistry
from app.services.lead_intake import LeadIntakeService, calculate_lead_quality_score
from app.services.lead_processor import (
    LeadProcessor, dispatch_lead_processing, process_lead, process_lead_async,
)


def _handler(ping_body, post_body=None, post_status=200):
    def handler(request):
        if request.url.path.endswith("/ping"):
            return httpx.Response(200, json=ping_body)
        return httpx.Response(post_status, json=post_body or {})
    return handler


def _processor(db, handler):
    engine = AuctionEngine(db, registry=BuyerConfigurationRegistry(), config=AuctionConfig(minimum_bid=10),
                           transport=httpx.MockTransport(handler))
    return LeadProcessor(db, engine=engine)


def _events(db, lead_id):
    rows = db.query(ComplianceAuditLog).filter(ComplianceAuditLog.lead_id == lead_id).order_by(ComplianceAuditLog.id)
    return [row.event_type for row in rows]


def _history(db, lead_id):
    rows = db.query(LeadStatusHistory).filter(LeadStatusHistory.lead_id == lead_id).order_by(LeadStatusHistory.id)
    return [(row.old_status, row.new_status, row.change_source) for row in rows]


# ── Intake ──

def test_quality_score():
    assert calculate_lead_quality_score() == 50
    assert calculate_lead_quality_score("https://cert.trustedform.com/x") == 60
    assert calculate_lead_quality_score("https://cert.trustedform.com/x", "J-1", True) == 85


def test_create_lead_stores_compliance_and_audit(db, service_type):
    lead = LeadIntakeService(db).create_lead(
        service_type_id=service_type.id,
        form_data={"roofType": "Metal"},
        zip_code="12345",
        owns_home=True,
        timeframe="immediately",
        compliance_data={"trustedFormCertUrl": "https://cert.trustedform.com/x", "tcpaConsent": True},
        ip_address="203.0.113.9",
        user_agent="pytest",
    )

    assert lead.status == LeadStatus.PENDING
    assert lead.trusted_form_cert_url == "https://cert.trustedform.com/x"
    assert lead.lead_quality_score == 65
    assert lead.compliance_data["ipAddress"] == "203.0.113.9"
    audit = db.query(ComplianceAuditLog).filter(ComplianceAuditLog.lead_id == lead.id).one()
    assert audit.event_type == "FORM_SUBMITTED"
    assert audit.ip_address == "203.0.113.9"
    assert audit.event_data["trustedFormPresent"] is True


@pytest.mark.parametrize("zip_code,timeframe,field", [
    ("1234", "immediately", "zipCode"),
    ("12345", "someday", "timeframe"),
])
def test_create_lead_rejects_bad_input(db, service_type, zip_code, timeframe, field):
    with pytest.raises(ValidationError) as exc:
        LeadIntakeService(db).create_lead(service_type.id, {}, zip_code, True, timeframe)
    assert exc.value.field == field


def test_create_lead_checks_service_type(db, service_type):
    with pytest.raises(NotFoundError):
        LeadIntakeService(db).create_lead(9999, {}, "12345", True, "immediately")

    inactive = ServiceType(name="gutters", display_name="Gutters", active=False)
    db.add(inactive)
    db.commit()
    with pytest.raises(ValidationError) as exc:
        LeadIntakeService(db).create_lead(inactive.id, {}, "12345", True, "immediately")
    assert exc.value.code == "SERVICE_TYPE_INACTIVE"


# ── Processing ──

def test_sold_lead(db, make_buyer, make_lead):
    buyer = make_buyer("Alpha")
    lead = make_lead()
    processor = _processor(db, _handler({"status": "accepted", "bid": 45}, {"status": "delivered"}))

    result = asyncio.run(processor.process(lead.id))

    assert result.status == "completed"
    lead = db.query(Lead).filter(Lead.id == lead.id).one()
    assert lead.status == LeadStatus.SOLD
    assert lead.winning_buyer_id == buyer.id
    assert float(lead.winning_bid) == 45
    assert lead.processed_at is not None
    assert _events(db, lead.id) == ["AUCTION_STARTED", "LEAD_SOLD"]
    assert lead.disposition == LeadDisposition.DELIVERED
    assert _history(db, lead.id) == [
        (LeadStatus.PENDING, LeadStatus.PROCESSING, ChangeSource.SYSTEM),
        (LeadStatus.PROCESSING, LeadStatus.SOLD, ChangeSource.SYSTEM),
    ]


def test_rejected_lead_when_nobody_bids(db, make_buyer, make_lead):
    make_buyer("Alpha")
    lead = make_lead()

    asyncio.run(_processor(db, _handler({"status": "no_bid"})).process(lead.id))

    lead = db.query(Lead).filter(Lead.id == lead.id).one()
    assert lead.status == LeadStatus.REJECTED
    assert lead.winning_buyer_id is None
    assert _events(db, lead.id) == ["AUCTION_STARTED", "LEAD_REJECTED"]
    assert _history(db, lead.id)[-1] == (LeadStatus.PROCESSING, LeadStatus.REJECTED, ChangeSource.SYSTEM)


def test_delivery_failed_when_winner_rejects_post(db, make_buyer, make_lead):
    make_buyer("Alpha")
    lead = make_lead()

    asyncio.run(_processor(db, _handler({"status": "accepted", "bid": 45}, post_status=500)).process(lead.id))

    lead = db.query(Lead).filter(Lead.id == lead.id).one()
    assert lead.status == LeadStatus.DELIVERY_FAILED
    assert _events(db, lead.id) == ["AUCTION_STARTED", "DELIVERY_FAILED"]


def test_only_pending_leads_are_processed(db, make_buyer, make_lead):
    make_buyer("Alpha")
    lead = make_lead(status=LeadStatus.SOLD)
    requests = []

    def handler(request):
        requests.append(request)
        return httpx.Response(200, json={})

    assert asyncio.run(_processor(db, handler).process(lead.id)) is None
    assert requests == []
    assert _events(db, lead.id) == []
    assert _history(db, lead.id) == []


def test_process_lead_async_uses_own_session(db, make_lead, monkeypatch):
    lead = make_lead(zip_code="54321")
    monkeypatch.setattr("app.services.lead_processor.SessionLocal", lambda: db)
    monkeypatch.setattr(db, "close", lambda: None)

    result = asyncio.run(process_lead_async(lead.id))

    assert result["status"] == "no_bids"
    assert db.query(Lead).filter(Lead.id == lead.id).one().status == LeadStatus.REJECTED


# ── Dispatch ──

def test_dispatch_background(monkeypatch):
    monkeypatch.setattr(settings, "LEAD_PROCESSING_MODE", "background")
    tasks = BackgroundTasks()
    dispatch_lead_processing(7, tasks)
    assert len(tasks.tasks) == 1
    # Sync entry point: Starlette runs it in the threadpool, off the event loop
    assert tasks.tasks[0].func is process_lead
    assert tasks.tasks[0].args == (7,)


def test_dispatch_disabled(monkeypatch):
    monkeypatch.setattr(settings, "LEAD_PROCESSING_MODE", "disabled")
    tasks = BackgroundTasks()
    dispatch_lead_processing(7, tasks)
    assert tasks.tasks == []


def test_dispatch_celery(monkeypatch):
    from app.tasks import async_tasks

    queued = []
    monkeypatch.setattr(settings, "LEAD_PROCESSING_MODE", "celery")
    monkeypatch.setattr(async_tasks.process_lead_task, "delay", queued.append)
    dispatch_lead_processing(7)
    assert queued == [7]


def test_process_lead_runs_outside_an_event_loop(db, make_lead, monkeypatch):
    lead = make_lead(zip_code="54321")
    monkeypatch.setattr("app.services.lead_processor.SessionLocal", lambda: db)
    monkeypatch.setattr(db, "close", lambda: None)

    result = process_lead(lead.id)

    assert result["status"] == "no_bids"
    assert db.query(Lead).filter(Lead.id == lead.id).one().status == LeadStatus.REJECTED
