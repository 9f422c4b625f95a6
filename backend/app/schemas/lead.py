from pydantic import Field
from typing import Optional, List, Any
from datetime import datetime

from app.models.lead import (
    ChangeSource, LeadDisposition, LeadStatus, LostReason, TransactionAction, TransactionStatus,
)
from app.schemas.common import CamelModel


class ComplianceData(CamelModel):
    trusted_form_cert_url: Optional[str] = None
    trusted_form_cert_id: Optional[str] = None
    jornaya_lead_id: Optional[str] = None
    tcpa_consent: bool = False
    tcpa_timestamp: Optional[str] = None
    tcpa_consent_text: Optional[str] = None


class LeadCreate(CamelModel):
    service_type_id: int
    form_data: dict = Field(default_factory=dict)
    zip_code: str
    owns_home: bool
    timeframe: str
    compliance_data: Optional[ComplianceData] = None


class LeadSubmitted(CamelModel):
    lead_id: int
    status: LeadStatus
    lead_quality_score: int


class TransactionInDB(CamelModel):
    id: int
    buyer_id: int
    action_type: TransactionAction
    status: TransactionStatus
    bid_amount: Optional[float] = None
    response_time: Optional[int] = None
    error_message: Optional[str] = None
    is_winner: Optional[bool] = None
    lost_reason: Optional[LostReason] = None
    cascade_position: Optional[int] = None
    compliance_included: Optional[bool] = None
    trusted_form_present: Optional[bool] = None
    jornaya_present: Optional[bool] = None
    payload: Optional[Any] = None
    response: Optional[Any] = None
    created_at: Optional[datetime] = None


class AuditLogInDB(CamelModel):
    id: int
    event_type: str
    event_data: Optional[dict] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    created_at: Optional[datetime] = None


class LeadInDB(CamelModel):
    id: int
    service_type_id: int
    form_data: dict
    zip_code: str
    owns_home: bool
    timeframe: str
    status: LeadStatus
    disposition: Optional[LeadDisposition] = None
    winning_buyer_id: Optional[int] = None
    winning_bid: Optional[float] = None
    trusted_form_cert_url: Optional[str] = None
    trusted_form_cert_id: Optional[str] = None
    jornaya_lead_id: Optional[str] = None
    compliance_data: Optional[dict] = None
    lead_quality_score: Optional[int] = None
    credit_amount: Optional[float] = None
    credit_issued_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class LeadDetail(LeadInDB):
    transactions: List[TransactionInDB] = Field(default_factory=list)
    audit_logs: List[AuditLogInDB] = Field(default_factory=list)


# ── Status changes and credits (admin) ───────────────────────────────

class LeadStatusChange(CamelModel):
    status: LeadStatus
    reason: str = Field(..., min_length=1, max_length=1000)
    disposition: Optional[LeadDisposition] = None


class LeadCreditCreate(CamelModel):
    credit_amount: float = Field(..., gt=0)
    reason: str = Field(..., min_length=1, max_length=1000)


class LeadStatusHistoryInDB(CamelModel):
    id: int
    lead_id: int
    old_status: Optional[LeadStatus] = None
    new_status: LeadStatus
    old_disposition: Optional[LeadDisposition] = None
    new_disposition: Optional[LeadDisposition] = None
    reason: Optional[str] = None
    credit_amount: Optional[float] = None
    change_source: ChangeSource
    changed_by: str = "System"
    ip_address: Optional[str] = None
    created_at: Optional[datetime] = None
