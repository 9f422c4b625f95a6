"""Models for consumer leads and everything recorded while selling them."""
from sqlalchemy import (
    Column, Integer, String, Numeric, DateTime, ForeignKey, Enum, Boolean, JSON, Text,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from app.core.database import Base
import enum


class LeadStatus(str, enum.Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    SOLD = "SOLD"
    REJECTED = "REJECTED"
    DELIVERY_FAILED = "DELIVERY_FAILED"
    EXPIRED = "EXPIRED"
    SCRUBBED = "SCRUBBED"
    DUPLICATE = "DUPLICATE"


class LeadDisposition(str, enum.Enum):
    """What happened to a lead after the sale (returns, disputes, credits)."""
    NEW = "NEW"
    DELIVERED = "DELIVERED"
    RETURNED = "RETURNED"
    DISPUTED = "DISPUTED"
    CREDITED = "CREDITED"
    WRITTEN_OFF = "WRITTEN_OFF"


class ChangeSource(str, enum.Enum):
    ADMIN = "ADMIN"
    SYSTEM = "SYSTEM"
    WEBHOOK = "WEBHOOK"


class Timeframe(str, enum.Enum):
    IMMEDIATELY = "immediately"
    WITHIN_1_MONTH = "within_1_month"
    ONE_TO_THREE_MONTHS = "1_3_months"
    THREE_TO_SIX_MONTHS = "3_6_months"
    SIX_TO_TWELVE_MONTHS = "6_12_months"
    PLANNING_PHASE = "planning_phase"


class TransactionAction(str, enum.Enum):
    PING = "PING"
    POST = "POST"


class TransactionStatus(str, enum.Enum):
    PENDING = "PENDING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    TIMEOUT = "TIMEOUT"


class LostReason(str, enum.Enum):
    OUTBID = "OUTBID"
    TIMEOUT = "TIMEOUT"
    NO_BID = "NO_BID"
    BELOW_MINIMUM = "BELOW_MINIMUM"
    POST_REJECTED = "POST_REJECTED"


class Lead(Base):
    """A consumer quiz submission offered to buyers."""
    __tablename__ = "leads"

    id = Column(Integer, primary_key=True, index=True)
    service_type_id = Column(Integer, ForeignKey("service_types.id"), nullable=False, index=True)

    form_data = Column(JSON, nullable=False)
    zip_code = Column(String(10), nullable=False, index=True)
    owns_home = Column(Boolean, nullable=False)
    timeframe = Column(String, nullable=False)

    status = Column(Enum(LeadStatus), default=LeadStatus.PENDING, nullable=False, index=True)
    disposition = Column(Enum(LeadDisposition), default=LeadDisposition.NEW, nullable=False)
    winning_buyer_id = Column(Integer, ForeignKey("buyers.id"), nullable=True)
    winning_bid = Column(Numeric(10, 2), nullable=True)

    # Compliance tokens captured on the form
    trusted_form_cert_url = Column(String, nullable=True)
    trusted_form_cert_id = Column(String, nullable=True)
    jornaya_lead_id = Column(String, nullable=True)
    compliance_data = Column(JSON, nullable=True)
    lead_quality_score = Column(Integer, nullable=True)

    # Credits issued after a return or dispute
    credit_amount = Column(Numeric(10, 2), nullable=True)
    credit_issued_at = Column(DateTime(timezone=True), nullable=True)
    credit_issued_by_id = Column(Integer, ForeignKey("admin_users.id"), nullable=True)

    processed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    service_type = relationship("ServiceType", back_populates="leads")
    winning_buyer = relationship("Buyer")
    transactions = relationship("Transaction", back_populates="lead", order_by="Transaction.id")
    audit_logs = relationship("ComplianceAuditLog", back_populates="lead", order_by="ComplianceAuditLog.id")
    status_history = relationship("LeadStatusHistory", back_populates="lead", order_by="LeadStatusHistory.id")


class Transaction(Base):
    """One PING or POST attempt against one buyer for one lead."""
    __tablename__ = "transactions"

    id = Column(Integer, primary_key=True, index=True)
    lead_id = Column(Integer, ForeignKey("leads.id"), nullable=False, index=True)
    buyer_id = Column(Integer, ForeignKey("buyers.id"), nullable=False, index=True)

    action_type = Column(Enum(TransactionAction), nullable=False)
    payload = Column(JSON, nullable=True)
    response = Column(JSON, nullable=True)
    status = Column(Enum(TransactionStatus), default=TransactionStatus.PENDING, nullable=False)
    bid_amount = Column(Numeric(10, 2), nullable=True)
    response_time = Column(Integer, nullable=True)  # ms
    error_message = Column(Text, nullable=True)

    # Compliance tracking
    compliance_included = Column(Boolean, default=False)
    trusted_form_present = Column(Boolean, default=False)
    jornaya_present = Column(Boolean, default=False)

    # Auction outcome
    is_winner = Column(Boolean, default=False)
    lost_reason = Column(Enum(LostReason), nullable=True)
    winning_bid_amount = Column(Numeric(10, 2), nullable=True)
    cascade_position = Column(Integer, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)

    lead = relationship("Lead", back_populates="transactions")
    buyer = relationship("Buyer", back_populates="transactions")


class ComplianceAuditLog(Base):
    """Append-only compliance trail for a lead."""
    __tablename__ = "compliance_audit_log"

    id = Column(Integer, primary_key=True, index=True)
    lead_id = Column(Integer, ForeignKey("leads.id"), nullable=False, index=True)
    event_type = Column(String, nullable=False)
    # Types: FORM_SUBMITTED, AUCTION_STARTED, LEAD_SOLD, LEAD_REJECTED,
    #        DELIVERY_FAILED, BUYER_PING_RESPONSE, BUYER_POST_RESPONSE,
    #        BUYER_STATUS_UPDATE, ADMIN_STATUS_CHANGE
    event_data = Column(JSON, nullable=True)
    ip_address = Column(String, nullable=True)
    user_agent = Column(String, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    lead = relationship("Lead", back_populates="audit_logs")


class LeadStatusHistory(Base):
    """Every status or disposition change of a lead, with who made it and why."""
    __tablename__ = "lead_status_history"

    id = Column(Integer, primary_key=True, index=True)
    lead_id = Column(Integer, ForeignKey("leads.id"), nullable=False, index=True)
    admin_user_id = Column(Integer, ForeignKey("admin_users.id"), nullable=True)

    old_status = Column(Enum(LeadStatus), nullable=True)
    new_status = Column(Enum(LeadStatus), nullable=False)
    old_disposition = Column(Enum(LeadDisposition), nullable=True)
    new_disposition = Column(Enum(LeadDisposition), nullable=True)
    reason = Column(Text, nullable=True)
    credit_amount = Column(Numeric(10, 2), nullable=True)
    change_source = Column(Enum(ChangeSource), default=ChangeSource.SYSTEM, nullable=False)
    ip_address = Column(String, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)

    lead = relationship("Lead", back_populates="status_history")
    admin_user = relationship("AdminUser")
