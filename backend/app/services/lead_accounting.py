"""Lead status and disposition changes after the auction.

Three writers move a lead once it exists: the auction itself (SYSTEM), a
buyer reporting the outcome of a POST (WEBHOOK), and an operator fixing a
lead or crediting a buyer (ADMIN). Each change is a conditional update on
the values that were read, so two writers racing on the same lead cannot
silently overwrite each other, and each one leaves a LeadStatusHistory row.
"""
import logging
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy.orm import Session

from app.core.errors import ConflictError, NotFoundError, ValidationError
from app.models.lead import (
    ChangeSource, ComplianceAuditLog, Lead, LeadDisposition, LeadStatus, LeadStatusHistory,
)
from app.schemas.lead import LeadStatusHistoryInDB

logger = logging.getLogger(__name__)


STATUS_TRANSITIONS = {
    LeadStatus.PENDING: [LeadStatus.PROCESSING, LeadStatus.REJECTED, LeadStatus.SCRUBBED, LeadStatus.DUPLICATE],
    LeadStatus.PROCESSING: [
        LeadStatus.SOLD, LeadStatus.REJECTED, LeadStatus.EXPIRED, LeadStatus.DELIVERY_FAILED, LeadStatus.SCRUBBED,
    ],
    LeadStatus.SOLD: [LeadStatus.SCRUBBED],
    LeadStatus.REJECTED: [LeadStatus.PROCESSING, LeadStatus.SCRUBBED],
    LeadStatus.EXPIRED: [LeadStatus.PROCESSING, LeadStatus.SCRUBBED],
    LeadStatus.DELIVERY_FAILED: [LeadStatus.PROCESSING, LeadStatus.REJECTED, LeadStatus.SCRUBBED],
    LeadStatus.SCRUBBED: [],
    LeadStatus.DUPLICATE: [],
}

DISPOSITION_TRANSITIONS = {
    LeadDisposition.NEW: [LeadDisposition.DELIVERED, LeadDisposition.DISPUTED],
    LeadDisposition.DELIVERED: [LeadDisposition.RETURNED, LeadDisposition.DISPUTED],
    LeadDisposition.RETURNED: [LeadDisposition.CREDITED, LeadDisposition.DISPUTED, LeadDisposition.WRITTEN_OFF],
    LeadDisposition.DISPUTED: [
        LeadDisposition.RETURNED, LeadDisposition.CREDITED, LeadDisposition.DELIVERED, LeadDisposition.WRITTEN_OFF,
    ],
    LeadDisposition.CREDITED: [],
    LeadDisposition.WRITTEN_OFF: [],
}

CREDITABLE_DISPOSITIONS = (LeadDisposition.RETURNED, LeadDisposition.DISPUTED)

# Buyer POST outcome -> (lead status, disposition)
POST_RESPONSE_OUTCOMES = {
    "delivered": (LeadStatus.SOLD, LeadDisposition.DELIVERED),
    "duplicate": (LeadStatus.DUPLICATE, None),
    "failed": (LeadStatus.REJECTED, None),
    "invalid": (LeadStatus.REJECTED, None),
}


def can_transition_status(current: LeadStatus, new: LeadStatus) -> bool:
    return new in STATUS_TRANSITIONS.get(current, [])


def can_transition_disposition(current: LeadDisposition, new: LeadDisposition) -> bool:
    return new in DISPOSITION_TRANSITIONS.get(current, [])


class LeadAccountingService:
    def __init__(self, db: Session):
        self.db = db

    def _get_lead(self, lead_id: int) -> Lead:
        lead = self.db.query(Lead).filter(Lead.id == lead_id).first()
        if not lead:
            raise NotFoundError("Lead not found", code="LEAD_NOT_FOUND")
        return lead

    def _conditional_update(self, lead: Lead, expected_status: LeadStatus,
                            expected_disposition: Optional[LeadDisposition], values: dict) -> bool:
        query = self.db.query(Lead).filter(Lead.id == lead.id, Lead.status == expected_status)
        if expected_disposition is not None:
            query = query.filter(Lead.disposition == expected_disposition)
        return query.update(values, synchronize_session=False) == 1

    def record(self, lead: Lead, old_status: Optional[LeadStatus], new_status: LeadStatus,
               source: ChangeSource, reason: Optional[str] = None,
               old_disposition: Optional[LeadDisposition] = None,
               new_disposition: Optional[LeadDisposition] = None,
               credit_amount: Optional[float] = None,
               admin_user_id: Optional[int] = None,
               ip_address: Optional[str] = None) -> LeadStatusHistory:
        """Add a history row; the caller commits."""
        entry = LeadStatusHistory(
            lead_id=lead.id,
            admin_user_id=admin_user_id,
            old_status=old_status,
            new_status=new_status,
            old_disposition=old_disposition,
            new_disposition=new_disposition,
            reason=reason,
            credit_amount=credit_amount,
            change_source=source,
            ip_address=ip_address,
        )
        self.db.add(entry)
        return entry

    def change_status(self, lead_id: int, new_status: LeadStatus, reason: Optional[str],
                      new_disposition: Optional[LeadDisposition] = None,
                      admin_user_id: Optional[int] = None,
                      source: ChangeSource = ChangeSource.ADMIN,
                      ip_address: Optional[str] = None) -> Lead:
        """Validated status (and optional disposition) change."""
        lead = self._get_lead(lead_id)
        old_status, old_disposition = lead.status, lead.disposition

        if source == ChangeSource.ADMIN and not (reason and reason.strip()):
            raise ValidationError("A reason is required for manual status changes",
                                  code="REASON_REQUIRED", field="reason")

        status_changes = new_status != old_status
        disposition_changes = new_disposition is not None and new_disposition != old_disposition
        if not status_changes and not disposition_changes:
            raise ValidationError("Lead already has this status", code="NO_CHANGE", field="status")

        if status_changes and not can_transition_status(old_status, new_status):
            raise ValidationError(
                f"Cannot change lead status from {old_status.value} to {new_status.value}",
                code="INVALID_STATUS_TRANSITION", field="status",
                data={"from": old_status.value, "to": new_status.value,
                      "allowed": [s.value for s in STATUS_TRANSITIONS.get(old_status, [])]},
            )
        if disposition_changes and not can_transition_disposition(old_disposition, new_disposition):
            raise ValidationError(
                f"Cannot change lead disposition from {old_disposition.value} to {new_disposition.value}",
                code="INVALID_DISPOSITION_TRANSITION", field="disposition",
                data={"from": old_disposition.value, "to": new_disposition.value,
                      "allowed": [d.value for d in DISPOSITION_TRANSITIONS.get(old_disposition, [])]},
            )

        values = {Lead.status: new_status}
        if disposition_changes:
            values[Lead.disposition] = new_disposition
        if not self._conditional_update(lead, old_status, old_disposition, values):
            self.db.rollback()
            raise ConflictError("Lead was modified by another request; reload and retry",
                                code="CONCURRENT_MODIFICATION")

        self.record(
            lead, old_status, new_status, source, reason=reason,
            old_disposition=old_disposition,
            new_disposition=new_disposition if disposition_changes else None,
            admin_user_id=admin_user_id, ip_address=ip_address,
        )
        if source == ChangeSource.ADMIN:
            self.db.add(ComplianceAuditLog(
                lead_id=lead.id,
                event_type="ADMIN_STATUS_CHANGE",
                event_data={"oldStatus": old_status.value, "newStatus": new_status.value,
                            "reason": reason, "adminUserId": admin_user_id},
                ip_address=ip_address,
            ))
        self.db.commit()
        self.db.refresh(lead)
        logger.info(f"Lead {lead_id} status {old_status.value} -> {new_status.value} ({source.value})")
        return lead

    def issue_credit(self, lead_id: int, amount: float, reason: Optional[str],
                     admin_user_id: Optional[int] = None,
                     ip_address: Optional[str] = None) -> Lead:
        """Credit the buyer for a returned or disputed lead."""
        if amount is None or amount <= 0:
            raise ValidationError("Credit amount must be greater than zero",
                                  code="INVALID_CREDIT_AMOUNT", field="creditAmount")
        if not (reason and reason.strip()):
            raise ValidationError("A reason is required to issue a credit", code="REASON_REQUIRED", field="reason")

        lead = self._get_lead(lead_id)
        old_disposition = lead.disposition
        if old_disposition not in CREDITABLE_DISPOSITIONS:
            raise ValidationError(
                f"Only returned or disputed leads can be credited (disposition is {old_disposition.value})",
                code="CREDIT_NOT_ALLOWED", field="disposition",
            )

        updated = self._conditional_update(lead, lead.status, old_disposition, {
            Lead.disposition: LeadDisposition.CREDITED,
            Lead.credit_amount: amount,
            Lead.credit_issued_at: datetime.now(timezone.utc),
            Lead.credit_issued_by_id: admin_user_id,
        })
        if not updated:
            self.db.rollback()
            raise ConflictError("Lead was modified by another request; reload and retry",
                                code="CONCURRENT_MODIFICATION")

        self.record(
            lead, lead.status, lead.status, ChangeSource.ADMIN, reason=reason,
            old_disposition=old_disposition, new_disposition=LeadDisposition.CREDITED,
            credit_amount=amount, admin_user_id=admin_user_id, ip_address=ip_address,
        )
        self.db.commit()
        self.db.refresh(lead)
        logger.info(f"Credit of {amount:.2f} issued for lead {lead_id}")
        return lead

    def history(self, lead_id: int) -> List[dict]:
        """Status history, newest first."""
        self._get_lead(lead_id)
        rows = (
            self.db.query(LeadStatusHistory)
            .filter(LeadStatusHistory.lead_id == lead_id)
            .order_by(LeadStatusHistory.created_at.desc(), LeadStatusHistory.id.desc())
            .all()
        )
        items = []
        for row in rows:
            item = LeadStatusHistoryInDB.model_validate(row)
            if row.admin_user:
                item.changed_by = row.admin_user.full_name or row.admin_user.email
            items.append(item.to_json())
        return items

    def apply_post_response(self, lead: Lead, post_status: str, reason: Optional[str] = None) -> dict:
        """Apply a buyer's asynchronous POST outcome; the caller commits.

        A failed or invalid report that loses a race against the auction
        marking the lead SOLD still wins: the lead becomes DELIVERY_FAILED.
        """
        new_status, new_disposition = POST_RESPONSE_OUTCOMES[post_status]
        old_status, old_disposition = lead.status, lead.disposition
        values = {Lead.status: new_status}
        if new_disposition is not None:
            values[Lead.disposition] = new_disposition

        force_updated = False
        if not self._conditional_update(lead, old_status, None, values):
            current = self.db.query(Lead.status).filter(Lead.id == lead.id).scalar()
            if post_status in ("failed", "invalid") and current == LeadStatus.SOLD:
                self._conditional_update(lead, LeadStatus.SOLD, None, {Lead.status: LeadStatus.DELIVERY_FAILED})
                old_status, new_status, new_disposition = LeadStatus.SOLD, LeadStatus.DELIVERY_FAILED, None
                force_updated = True
                logger.warning(f"Lead {lead.id} was SOLD concurrently; forced to DELIVERY_FAILED")
            else:
                logger.warning(f"Lead {lead.id} changed concurrently to {current.value}; "
                               f"post_response '{post_status}' not applied")
                return {"leadStatus": current.value, "forceUpdated": False, "applied": False}

        self.record(
            lead, old_status, new_status, ChangeSource.WEBHOOK,
            reason=reason or f"Buyer reported POST {post_status}",
            old_disposition=old_disposition if new_disposition else None,
            new_disposition=new_disposition,
        )
        return {"leadStatus": new_status.value, "forceUpdated": force_updated, "applied": True}
