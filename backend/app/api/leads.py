"""Lead submission (public) and lead review (admin)."""
import logging
from typing import Optional
from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.core.errors import NotFoundError, paginate, success_response
from app.core.security import require_admin
from app.models.lead import Lead, LeadStatus
from app.schemas.lead import LeadCreate, LeadCreditCreate, LeadDetail, LeadInDB, LeadStatusChange, LeadSubmitted
from app.services.lead_accounting import LeadAccountingService
from app.services.lead_intake import LeadIntakeService
from app.services.lead_processor import dispatch_lead_processing

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/leads", tags=["leads"])
admin_router = APIRouter(prefix="/api/admin/leads", tags=["admin"], dependencies=[Depends(require_admin)])


def _client_ip(request: Request):
    forwarded = request.headers.get("x-forwarded-for")
    return forwarded.split(",")[0].strip() if forwarded else (request.client.host if request.client else None)


@router.post("", status_code=201)
def submit_lead(
    data: LeadCreate,
    request: Request,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
):
    """Store the consumer's quiz submission and queue it for auction."""
    ip_address = _client_ip(request)

    lead = LeadIntakeService(db).create_lead(
        service_type_id=data.service_type_id,
        form_data=data.form_data,
        zip_code=data.zip_code,
        owns_home=data.owns_home,
        timeframe=data.timeframe,
        compliance_data=data.compliance_data.to_json() if data.compliance_data else None,
        ip_address=ip_address,
        user_agent=request.headers.get("user-agent"),
    )
    dispatch_lead_processing(lead.id, background_tasks)

    return success_response(LeadSubmitted(
        lead_id=lead.id, status=lead.status, lead_quality_score=lead.lead_quality_score,
    ).to_json())


@router.get("")
@admin_router.get("")
def list_leads(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    status: Optional[LeadStatus] = None,
    serviceTypeId: Optional[int] = None,
    zipCode: Optional[str] = None,
    db: Session = Depends(get_db),
    _admin=Depends(require_admin),
):
    query = db.query(Lead)
    if status:
        query = query.filter(Lead.status == status)
    if serviceTypeId:
        query = query.filter(Lead.service_type_id == serviceTypeId)
    if zipCode:
        query = query.filter(Lead.zip_code == zipCode)

    total = query.count()
    leads = query.order_by(Lead.created_at.desc(), Lead.id.desc()).offset((page - 1) * limit).limit(limit).all()

    items = []
    for lead in leads:
        item = LeadInDB.model_validate(lead).to_json()
        item["serviceType"] = lead.service_type.display_name if lead.service_type else None
        item["winningBuyer"] = lead.winning_buyer.name if lead.winning_buyer else None
        items.append(item)
    return success_response(items, pagination=paginate(page, limit, total))


@router.get("/{lead_id}")
@admin_router.get("/{lead_id}")
def get_lead(lead_id: int, db: Session = Depends(get_db), _admin=Depends(require_admin)):
    """Lead with its PING/POST transactions and compliance audit trail."""
    lead = db.query(Lead).filter(Lead.id == lead_id).first()
    if not lead:
        raise NotFoundError("Lead not found", code="LEAD_NOT_FOUND")
    return success_response(LeadDetail.model_validate(lead).to_json())


@admin_router.put("/{lead_id}")
def change_lead_status(lead_id: int, data: LeadStatusChange, request: Request,
                       db: Session = Depends(get_db), admin=Depends(require_admin)):
    """Manual status (and optional disposition) change; the reason lands in the history."""
    lead = LeadAccountingService(db).change_status(
        lead_id, data.status, data.reason,
        new_disposition=data.disposition,
        admin_user_id=admin.id if admin else None,
        ip_address=_client_ip(request),
    )
    return success_response(LeadInDB.model_validate(lead).to_json())


@admin_router.get("/{lead_id}/history")
def lead_status_history(lead_id: int, db: Session = Depends(get_db)):
    return success_response(LeadAccountingService(db).history(lead_id))


@admin_router.post("/{lead_id}/credit")
def issue_lead_credit(lead_id: int, data: LeadCreditCreate, request: Request,
                      db: Session = Depends(get_db), admin=Depends(require_admin)):
    lead = LeadAccountingService(db).issue_credit(
        lead_id, data.credit_amount, data.reason,
        admin_user_id=admin.id if admin else None,
        ip_address=_client_ip(request),
    )
    return success_response(LeadInDB.model_validate(lead).to_json())
