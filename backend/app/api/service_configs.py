"""Admin API: buyer service configurations (per buyer + service type)."""
import logging
from typing import Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session, joinedload

from app.core.database import get_db
from app.core.errors import (
    ConflictError, NotFoundError, ValidationError, paginate, success_response,
)
from app.core.security import require_admin
from app.models.buyer import Buyer, BuyerServiceConfig, BuyerServiceZipCode
from app.models.service_type import ServiceType
from app.schemas.buyer import ServiceConfigCreate, ServiceConfigInDB, ServiceConfigUpdate
from app.services.buyer_registry import get_buyer_registry

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/admin/buyers/service-configs", tags=["admin"],
                   dependencies=[Depends(require_admin)])


def config_to_dict(config: BuyerServiceConfig) -> dict:
    result = ServiceConfigInDB.model_validate(config).to_json()
    result["buyer"] = {"id": config.buyer.id, "name": config.buyer.name, "type": config.buyer.type.value} \
        if config.buyer else None
    result["serviceType"] = {"id": config.service_type.id, "name": config.service_type.name,
                             "displayName": config.service_type.display_name} \
        if config.service_type else None
    return result


def _get_config(db: Session, config_id: int) -> BuyerServiceConfig:
    config = db.query(BuyerServiceConfig).filter(BuyerServiceConfig.id == config_id).first()
    if not config:
        raise NotFoundError("Service configuration not found", code="CONFIG_NOT_FOUND")
    return config


def _check_bids(min_bid, max_bid):
    if float(min_bid) >= float(max_bid):
        raise ValidationError("Minimum bid must be less than maximum bid", field="minBid",
                              data={"minBid": float(min_bid), "maxBid": float(max_bid)})


@router.get("")
def list_service_configs(
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=100),
    buyerId: Optional[int] = None,
    serviceTypeId: Optional[int] = None,
    active: Optional[bool] = None,
    db: Session = Depends(get_db),
):
    query = db.query(BuyerServiceConfig).options(
        joinedload(BuyerServiceConfig.buyer), joinedload(BuyerServiceConfig.service_type)
    )
    if buyerId:
        query = query.filter(BuyerServiceConfig.buyer_id == buyerId)
    if serviceTypeId:
        query = query.filter(BuyerServiceConfig.service_type_id == serviceTypeId)
    if active is not None:
        query = query.filter(BuyerServiceConfig.active == active)

    total = query.count()
    configs = query.order_by(BuyerServiceConfig.id).offset((page - 1) * limit).limit(limit).all()
    return success_response([config_to_dict(c) for c in configs], pagination=paginate(page, limit, total))


@router.post("", status_code=201)
def create_service_config(data: ServiceConfigCreate, db: Session = Depends(get_db)):
    if not db.query(Buyer).filter(Buyer.id == data.buyer_id).first():
        raise NotFoundError("Buyer not found", code="BUYER_NOT_FOUND", field="buyerId")
    if not db.query(ServiceType).filter(ServiceType.id == data.service_type_id).first():
        raise NotFoundError("Service type not found", code="SERVICE_TYPE_NOT_FOUND", field="serviceTypeId")
    _check_bids(data.min_bid, data.max_bid)

    existing = db.query(BuyerServiceConfig).filter(
        BuyerServiceConfig.buyer_id == data.buyer_id,
        BuyerServiceConfig.service_type_id == data.service_type_id,
    ).first()
    if existing:
        raise ConflictError("Buyer already has a configuration for this service type",
                            code="CONFIG_EXISTS", data={"configId": existing.id})

    config = BuyerServiceConfig(**data.model_dump())
    db.add(config)
    db.commit()
    db.refresh(config)
    get_buyer_registry().remove(data.buyer_id)

    logger.info(f"Service config {config.id} created for buyer {data.buyer_id} / service {data.service_type_id}")
    return success_response(config_to_dict(config))


@router.get("/{config_id}")
def get_service_config(config_id: int, db: Session = Depends(get_db)):
    config = _get_config(db, config_id)
    result = config_to_dict(config)
    result["zipCodeCount"] = db.query(BuyerServiceZipCode).filter(
        BuyerServiceZipCode.buyer_id == config.buyer_id,
        BuyerServiceZipCode.service_type_id == config.service_type_id,
    ).count()
    return success_response(result)


@router.put("/{config_id}")
def update_service_config(config_id: int, data: ServiceConfigUpdate, db: Session = Depends(get_db)):
    config = _get_config(db, config_id)
    updates = data.model_dump(exclude_unset=True)
    _check_bids(updates.get("min_bid", config.min_bid), updates.get("max_bid", config.max_bid))

    for field, value in updates.items():
        setattr(config, field, value)
    db.commit()
    db.refresh(config)
    get_buyer_registry().remove(config.buyer_id)

    logger.info(f"Service config {config_id} updated: {sorted(updates)}")
    return success_response(config_to_dict(config))


@router.delete("/{config_id}")
def delete_service_config(config_id: int, db: Session = Depends(get_db)):
    """Refuses while the buyer still has zip coverage for the service."""
    config = _get_config(db, config_id)
    zip_count = db.query(BuyerServiceZipCode).filter(
        BuyerServiceZipCode.buyer_id == config.buyer_id,
        BuyerServiceZipCode.service_type_id == config.service_type_id,
    ).count()
    if zip_count:
        raise ConflictError(
            f"Cannot delete configuration with {zip_count} associated zip code(s). Remove them first.",
            code="CONFIG_HAS_ZIP_CODES",
            data={"zipCodeCount": zip_count},
        )

    buyer_id = config.buyer_id
    db.delete(config)
    db.commit()
    get_buyer_registry().remove(buyer_id)

    logger.info(f"Service config {config_id} deleted")
    return success_response({"id": config_id, "deleted": True})
