"""Admin API: buyers."""
import logging
from typing import Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from sqlalchemy import func

from app.core.database import LIKE_ESCAPE, escape_like, get_db
from app.core.encryption import encrypt_credentials
from app.core.errors import ConflictError, NotFoundError, paginate, success_response
from app.core.security import require_admin
from app.models.buyer import Buyer, BuyerType, BuyerServiceConfig, BuyerServiceZipCode
from app.models.lead import Lead, Transaction
from app.schemas.buyer import BuyerCreate, BuyerInDB, BuyerUpdate
from app.schemas.lead import TransactionInDB
from app.services.buyer_registry import get_buyer_registry
from app.services.eligibility import BuyerEligibilityService
from app.services.webhook_signatures import generate_webhook_secret

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/admin", tags=["admin"], dependencies=[Depends(require_admin)])


def buyer_to_dict(buyer: Buyer) -> dict:
    """Public view of a buyer; credentials and the webhook secret never leave the server."""
    data = BuyerInDB(
        id=buyer.id,
        name=buyer.name,
        type=buyer.type,
        api_url=buyer.api_url,
        auth_type=(buyer.auth_config or {}).get("type") or "none",
        ping_timeout=buyer.ping_timeout,
        post_timeout=buyer.post_timeout,
        active=buyer.active,
        contact_name=buyer.contact_name,
        contact_email=buyer.contact_email,
        contact_phone=buyer.contact_phone,
        business_email=buyer.business_email,
        business_phone=buyer.business_phone,
        compliance_config=buyer.compliance_config,
        response_mapping=buyer.response_mapping,
        has_webhook_secret=bool(buyer.webhook_secret),
        service_config_count=len(buyer.service_configs),
        zip_code_count=len(buyer.zip_codes),
        created_at=buyer.created_at,
        updated_at=buyer.updated_at,
    )
    return data.to_json()


def _stored_auth_config(auth_config) -> dict:
    stored = auth_config.model_dump()
    stored["credentials"] = encrypt_credentials(stored["credentials"])
    return stored


def _stored_response_mapping(mapping) -> Optional[dict]:
    if mapping is None:
        return None
    return mapping.model_dump(by_alias=True, exclude_none=True)


def _get_buyer(db: Session, buyer_id: int) -> Buyer:
    buyer = db.query(Buyer).filter(Buyer.id == buyer_id).first()
    if not buyer:
        raise NotFoundError("Buyer not found", code="BUYER_NOT_FOUND")
    return buyer


@router.get("/buyers")
def list_buyers(
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=100),
    type: Optional[BuyerType] = None,
    active: Optional[bool] = None,
    search: Optional[str] = None,
    db: Session = Depends(get_db),
):
    """List buyers with optional type/active/name filters."""
    query = db.query(Buyer)
    if type:
        query = query.filter(Buyer.type == type)
    if active is not None:
        query = query.filter(Buyer.active == active)
    if search:
        query = query.filter(Buyer.name.ilike(f"%{escape_like(search)}%", escape=LIKE_ESCAPE))

    total = query.count()
    buyers = (
        query.order_by(Buyer.created_at.desc(), Buyer.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return success_response([buyer_to_dict(b) for b in buyers], pagination=paginate(page, limit, total))


@router.post("/buyers", status_code=201)
def create_buyer(data: BuyerCreate, db: Session = Depends(get_db)):
    if db.query(Buyer).filter(func.lower(Buyer.name) == data.name.lower()).first():
        raise ConflictError("Buyer with this name already exists", code="BUYER_EXISTS",
                            field="name", data={"name": data.name})

    buyer = Buyer(
        **data.model_dump(exclude={"api_url", "auth_config", "response_mapping"}),
        api_url=str(data.api_url) if data.api_url else None,
        auth_config=_stored_auth_config(data.auth_config),
        response_mapping=_stored_response_mapping(data.response_mapping),
        webhook_secret=generate_webhook_secret(),
    )
    db.add(buyer)
    db.commit()
    db.refresh(buyer)

    logger.info(f"Buyer created: {buyer.name} ({buyer.type.value})")
    result = buyer_to_dict(buyer)
    # Shown once; afterwards only rotation reveals a secret
    result["webhookSecret"] = buyer.webhook_secret
    return success_response(result)


@router.get("/buyers/{buyer_id}")
def get_buyer(buyer_id: int, db: Session = Depends(get_db)):
    buyer = _get_buyer(db, buyer_id)
    result = buyer_to_dict(buyer)
    result["coverage"] = BuyerEligibilityService(db).get_buyer_service_coverage(buyer_id)
    result["leadsWon"] = db.query(func.count(Lead.id)).filter(Lead.winning_buyer_id == buyer_id).scalar() or 0
    return success_response(result)


@router.put("/buyers/{buyer_id}")
def update_buyer(buyer_id: int, data: BuyerUpdate, db: Session = Depends(get_db)):
    buyer = _get_buyer(db, buyer_id)
    updates = data.model_dump(exclude_unset=True)

    if "name" in updates and updates["name"].lower() != buyer.name.lower():
        clash = db.query(Buyer).filter(
            func.lower(Buyer.name) == updates["name"].lower(), Buyer.id != buyer_id
        ).first()
        if clash:
            raise ConflictError("Buyer with this name already exists", code="BUYER_EXISTS", field="name")

    if "api_url" in updates:
        updates["api_url"] = str(data.api_url) if data.api_url else None
    if "auth_config" in updates and data.auth_config is not None:
        updates["auth_config"] = _stored_auth_config(data.auth_config)
    if "response_mapping" in updates:
        updates["response_mapping"] = _stored_response_mapping(data.response_mapping)

    for field, value in updates.items():
        setattr(buyer, field, value)
    db.commit()
    db.refresh(buyer)
    get_buyer_registry().remove(buyer_id)

    logger.info(f"Buyer {buyer_id} updated: {sorted(updates)}")
    return success_response(buyer_to_dict(buyer))


@router.delete("/buyers/{buyer_id}")
def delete_buyer(buyer_id: int, db: Session = Depends(get_db)):
    """Delete a buyer, or deactivate it when configs, zones or history reference it."""
    buyer = _get_buyer(db, buyer_id)
    referenced = (
        db.query(BuyerServiceConfig.id).filter(BuyerServiceConfig.buyer_id == buyer_id).first()
        or db.query(BuyerServiceZipCode.id).filter(BuyerServiceZipCode.buyer_id == buyer_id).first()
        or db.query(Transaction.id).filter(Transaction.buyer_id == buyer_id).first()
        or db.query(Lead.id).filter(Lead.winning_buyer_id == buyer_id).first()
    )
    get_buyer_registry().remove(buyer_id)

    if referenced:
        buyer.active = False
        db.commit()
        logger.info(f"Buyer {buyer_id} deactivated (still referenced)")
        return success_response({"id": buyer_id, "deleted": False, "deactivated": True})

    db.delete(buyer)
    db.commit()
    logger.info(f"Buyer {buyer_id} deleted")
    return success_response({"id": buyer_id, "deleted": True, "deactivated": False})


@router.post("/buyers/{buyer_id}/webhook-secret")
def rotate_webhook_secret(buyer_id: int, db: Session = Depends(get_db)):
    buyer = _get_buyer(db, buyer_id)
    buyer.webhook_secret = generate_webhook_secret()
    db.commit()
    logger.info(f"Webhook secret rotated for buyer {buyer_id}")
    return success_response({"id": buyer_id, "webhookSecret": buyer.webhook_secret})


@router.get("/buyers/{buyer_id}/activity")
def buyer_activity(
    buyer_id: int,
    limit: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_db),
):
    """Recent PING/POST transactions for a buyer."""
    _get_buyer(db, buyer_id)
    rows = (
        db.query(Transaction)
        .filter(Transaction.buyer_id == buyer_id)
        .order_by(Transaction.created_at.desc(), Transaction.id.desc())
        .limit(limit)
        .all()
    )
    return success_response([
        {**TransactionInDB.model_validate(t).to_json(), "leadId": t.lead_id} for t in rows
    ])
