"""Inbound buyer webhooks, HMAC-signed by the buyer.

Actions:
    ping_response  asynchronous answer to a PING (audit only)
    post_response  outcome of a POST; moves the lead status
    status_update  anything else the buyer reports about a lead (audit only)
"""
import json
import logging
from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.database import get_db
from app.core.errors import (
    AuthenticationError, AuthorizationError, NotFoundError, ValidationError, success_response,
)
from app.models.buyer import Buyer
from app.models.lead import ComplianceAuditLog, Lead
from app.services.lead_accounting import POST_RESPONSE_OUTCOMES, LeadAccountingService
from app.services.webhook_signatures import SIGNATURE_HEADER, verify_webhook_signature

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])

PING_STATUSES = ("accepted", "rejected", "error")
POST_STATUSES = tuple(POST_RESPONSE_OUTCOMES)
ACTIONS = ("ping_response", "post_response", "status_update")
REQUIRED_FIELDS = ("leadId", "action", "status")


def _client_ip(request: Request):
    return request.client.host if request.client else None


def _parse_body(raw: bytes) -> dict:
    try:
        data = json.loads(raw.decode("utf-8") or "{}")
    except UnicodeDecodeError:
        raise ValidationError("Webhook body must be UTF-8 encoded JSON", code="INVALID_ENCODING")
    except ValueError:
        raise ValidationError("Webhook body must be JSON", code="INVALID_JSON")
    if not isinstance(data, dict):
        raise ValidationError("Webhook body must be a JSON object", code="INVALID_JSON")

    missing = [f for f in REQUIRED_FIELDS if not data.get(f)]
    if missing:
        raise ValidationError(
            f"Missing required webhook fields: {', '.join(missing)}",
            code="MISSING_REQUIRED_FIELDS",
            data={"receivedFields": sorted(data)},
        )
    return data


def _ping_response(data: dict) -> dict:
    status = str(data["status"]).lower()
    if status not in PING_STATUSES:
        raise ValidationError(f"Invalid PING status '{data['status']}'", code="INVALID_PING_STATUS",
                              field="status", data={"allowed": list(PING_STATUSES)})
    bid = data.get("bidAmount")
    if status == "accepted":
        if isinstance(bid, bool) or not isinstance(bid, (int, float)) or bid <= 0:
            raise ValidationError("Accepted PING responses need a positive numeric bidAmount",
                                  code="INVALID_BID", field="bidAmount")
    return {"status": status, "bidAmount": bid}


@router.post("/{buyer_id}")
async def buyer_webhook(buyer_id: int, request: Request, db: Session = Depends(get_db)):
    signature = request.headers.get(SIGNATURE_HEADER)
    if not signature:
        raise AuthenticationError("Missing webhook signature", code="MISSING_SIGNATURE")

    buyer = db.query(Buyer).filter(Buyer.id == buyer_id).first()
    if not buyer:
        raise NotFoundError("Unknown buyer", code="BUYER_NOT_FOUND")
    if not buyer.active:
        raise AuthorizationError("Buyer is not active", code="BUYER_INACTIVE")
    if not buyer.webhook_secret:
        raise AuthorizationError("Webhooks are not enabled for this buyer", code="WEBHOOK_NOT_CONFIGURED")

    # Verify the exact bytes the buyer signed
    raw = await request.body()
    if not verify_webhook_signature(raw, signature, buyer.webhook_secret,
                                    max_age=settings.WEBHOOK_MAX_AGE_SECONDS):
        logger.warning(f"Invalid webhook signature from buyer {buyer_id} ({_client_ip(request) or 'unknown'})")
        raise AuthenticationError("Invalid webhook signature", code="INVALID_SIGNATURE")

    data = _parse_body(raw)
    action = data["action"]
    if action not in ACTIONS:
        raise ValidationError(f"Unknown webhook action '{action}'", code="UNKNOWN_ACTION",
                              field="action", data={"allowed": list(ACTIONS)})

    lead = db.query(Lead).filter(Lead.id == data["leadId"]).first()
    if not lead:
        raise NotFoundError("Lead not found", code="LEAD_NOT_FOUND", field="leadId")

    event_data = {
        "buyerId": buyer_id,
        "action": action,
        "status": data["status"],
        "reason": data.get("reason"),
        "buyerLeadId": data.get("buyerLeadId"),
    }
    result = {"received": True, "leadId": lead.id, "action": action}

    if action == "ping_response":
        event_type = "BUYER_PING_RESPONSE"
        event_data.update(_ping_response(data))
    elif action == "post_response":
        event_type = "BUYER_POST_RESPONSE"
        status = str(data["status"]).lower()
        if status not in POST_STATUSES:
            raise ValidationError(f"Invalid POST status '{data['status']}'", code="INVALID_POST_STATUS",
                                  field="status", data={"allowed": list(POST_STATUSES)})
        outcome = LeadAccountingService(db).apply_post_response(lead, status, reason=data.get("reason"))
        event_data.update(outcome)
        result.update(outcome)
    else:
        event_type = "BUYER_STATUS_UPDATE"

    db.add(ComplianceAuditLog(
        lead_id=lead.id,
        event_type=event_type,
        event_data=event_data,
        ip_address=_client_ip(request),
        user_agent=request.headers.get("user-agent"),
    ))
    db.commit()

    logger.info(f"Buyer {buyer.name} sent {action} '{data['status']}' for lead {lead.id}")
    return success_response(result)
