"""Admin API: service zones (buyer zip coverage per service type)."""
import logging
import re
from typing import Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session, joinedload

from app.core.database import get_db
from app.core.errors import (
    ConflictError, NotFoundError, ValidationError, paginate, success_response,
)
from app.core.security import require_admin
from app.models.buyer import Buyer, BuyerServiceZipCode
from app.models.location import ZipCodeMetadata
from app.models.service_type import ServiceType
from app.schemas.buyer import (
    ZIP_PATTERN, ServiceZoneCreate, ServiceZoneDelete, ServiceZoneInDB, ServiceZoneUpdate,
)
from app.services.buyer_registry import get_buyer_registry
from app.services.eligibility import BuyerEligibilityService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/admin/service-zones", tags=["admin"], dependencies=[Depends(require_admin)])

_ZIP_RE = re.compile(ZIP_PATTERN)


def zone_to_dict(zone: BuyerServiceZipCode, metadata: Optional[ZipCodeMetadata] = None) -> dict:
    result = ServiceZoneInDB.model_validate(zone).to_json()
    result["buyer"] = {"id": zone.buyer.id, "name": zone.buyer.name, "active": zone.buyer.active} \
        if zone.buyer else None
    result["serviceType"] = {"id": zone.service_type.id, "name": zone.service_type.name,
                             "displayName": zone.service_type.display_name} \
        if zone.service_type else None
    if metadata:
        result["location"] = {"city": metadata.city, "state": metadata.state, "county": metadata.county}
    return result


def _get_zone(db: Session, zone_id: int) -> BuyerServiceZipCode:
    zone = db.query(BuyerServiceZipCode).filter(BuyerServiceZipCode.id == zone_id).first()
    if not zone:
        raise NotFoundError("Service zone not found", code="ZONE_NOT_FOUND")
    return zone


def _check_bids(min_bid, max_bid):
    if min_bid is not None and max_bid is not None and float(min_bid) >= float(max_bid):
        raise ValidationError("Minimum bid must be less than maximum bid", field="minBid")


@router.get("")
def list_service_zones(
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=1000),
    buyerId: Optional[int] = None,
    serviceTypeId: Optional[int] = None,
    zipCode: Optional[str] = Query(None, pattern=ZIP_PATTERN),
    state: Optional[str] = Query(None, min_length=2, max_length=2),
    active: Optional[bool] = None,
    db: Session = Depends(get_db),
):
    query = db.query(BuyerServiceZipCode).options(
        joinedload(BuyerServiceZipCode.buyer), joinedload(BuyerServiceZipCode.service_type)
    )
    if buyerId:
        query = query.filter(BuyerServiceZipCode.buyer_id == buyerId)
    if serviceTypeId:
        query = query.filter(BuyerServiceZipCode.service_type_id == serviceTypeId)
    if zipCode:
        query = query.filter(BuyerServiceZipCode.zip_code == zipCode)
    if state:
        query = query.join(ZipCodeMetadata, ZipCodeMetadata.zip_code == BuyerServiceZipCode.zip_code).filter(
            ZipCodeMetadata.state == state.upper()
        )
    if active is not None:
        query = query.filter(BuyerServiceZipCode.active == active)

    total = query.count()
    zones = (
        query.order_by(BuyerServiceZipCode.priority.desc(), BuyerServiceZipCode.zip_code, BuyerServiceZipCode.id)
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )

    metadata = {}
    if zones:
        rows = db.query(ZipCodeMetadata).filter(
            ZipCodeMetadata.zip_code.in_({z.zip_code for z in zones})
        ).all()
        metadata = {m.zip_code: m for m in rows}

    return success_response(
        [zone_to_dict(z, metadata.get(z.zip_code)) for z in zones],
        pagination=paginate(page, limit, total),
    )


@router.post("", status_code=201)
def create_service_zones(data: ServiceZoneCreate, db: Session = Depends(get_db)):
    """Create one zone (``zipCode``) or many (``zipCodes``); existing zip codes are skipped in bulk mode."""
    if not db.query(Buyer).filter(Buyer.id == data.buyer_id).first():
        raise NotFoundError("Buyer not found", code="BUYER_NOT_FOUND", field="buyerId")
    if not db.query(ServiceType).filter(ServiceType.id == data.service_type_id).first():
        raise NotFoundError("Service type not found", code="SERVICE_TYPE_NOT_FOUND", field="serviceTypeId")

    bulk = data.zip_codes is not None
    zip_codes = data.zip_codes if bulk else [data.zip_code]
    invalid = [z for z in zip_codes if not _ZIP_RE.match(z or "")]
    if invalid:
        raise ValidationError("Invalid ZIP code format", field="zipCodes", data={"invalid": invalid[:20]})

    # Keep first occurrence order, drop repeats in the request itself
    zip_codes = list(dict.fromkeys(zip_codes))
    existing = {
        row.zip_code for row in db.query(BuyerServiceZipCode.zip_code).filter(
            BuyerServiceZipCode.buyer_id == data.buyer_id,
            BuyerServiceZipCode.service_type_id == data.service_type_id,
            BuyerServiceZipCode.zip_code.in_(zip_codes),
        ).all()
    }

    if not bulk and existing:
        raise ConflictError("Buyer already covers this zip code for the service type",
                            code="ZONE_EXISTS", field="zipCode")

    fields = data.model_dump(include={"active", "priority", "max_leads_per_day", "min_bid", "max_bid"})
    created = []
    for zip_code in zip_codes:
        if zip_code in existing:
            continue
        zone = BuyerServiceZipCode(
            buyer_id=data.buyer_id,
            service_type_id=data.service_type_id,
            zip_code=zip_code,
            **fields,
        )
        db.add(zone)
        created.append(zone)
    db.commit()
    for zone in created:
        db.refresh(zone)

    get_buyer_registry().remove(data.buyer_id)
    logger.info(f"Created {len(created)} service zone(s) for buyer {data.buyer_id} / "
                f"service {data.service_type_id} ({len(existing)} skipped)")

    if not bulk:
        return success_response(zone_to_dict(created[0]))
    return success_response({
        "created": len(created),
        "skipped": sorted(existing),
        "serviceZones": [zone_to_dict(z) for z in created],
    })


@router.delete("")
def delete_service_zones(data: ServiceZoneDelete, db: Session = Depends(get_db)):
    """Delete by explicit ``ids`` or by buyer / service type / zip filters."""
    query = db.query(BuyerServiceZipCode)
    if data.ids:
        query = query.filter(BuyerServiceZipCode.id.in_(data.ids))
    elif data.buyer_id or data.service_type_id or data.zip_codes:
        if data.buyer_id:
            query = query.filter(BuyerServiceZipCode.buyer_id == data.buyer_id)
        if data.service_type_id:
            query = query.filter(BuyerServiceZipCode.service_type_id == data.service_type_id)
        if data.zip_codes:
            query = query.filter(BuyerServiceZipCode.zip_code.in_(data.zip_codes))
    else:
        raise ValidationError("Provide ids or at least one filter (buyerId, serviceTypeId, zipCodes)")

    buyer_ids = {row.buyer_id for row in query.with_entities(BuyerServiceZipCode.buyer_id).distinct()}
    deleted = query.delete(synchronize_session=False)
    db.commit()

    registry = get_buyer_registry()
    for buyer_id in buyer_ids:
        registry.remove(buyer_id)
    logger.info(f"Deleted {deleted} service zone(s)")
    return success_response({"deletedCount": deleted})


@router.get("/availability")
def service_availability(
    zipCode: str = Query(..., pattern=ZIP_PATTERN),
    serviceTypeId: Optional[int] = None,
    db: Session = Depends(get_db),
):
    """Which buyers cover a zip code, with their caps and bid overrides."""
    return success_response(BuyerEligibilityService(db).get_service_availability(zipCode, serviceTypeId))


@router.get("/{zone_id}")
def get_service_zone(zone_id: int, db: Session = Depends(get_db)):
    zone = _get_zone(db, zone_id)
    metadata = db.query(ZipCodeMetadata).filter(ZipCodeMetadata.zip_code == zone.zip_code).first()
    return success_response(zone_to_dict(zone, metadata))


@router.put("/{zone_id}")
def update_service_zone(zone_id: int, data: ServiceZoneUpdate, db: Session = Depends(get_db)):
    zone = _get_zone(db, zone_id)
    updates = data.model_dump(exclude_unset=True)
    _check_bids(updates.get("min_bid", zone.min_bid), updates.get("max_bid", zone.max_bid))

    for field, value in updates.items():
        setattr(zone, field, value)
    db.commit()
    db.refresh(zone)
    get_buyer_registry().remove(zone.buyer_id)

    logger.info(f"Service zone {zone_id} updated: {sorted(updates)}")
    return success_response(zone_to_dict(zone))


@router.delete("/{zone_id}")
def delete_service_zone(zone_id: int, db: Session = Depends(get_db)):
    zone = _get_zone(db, zone_id)
    buyer_id = zone.buyer_id
    db.delete(zone)
    db.commit()
    get_buyer_registry().remove(buyer_id)
    logger.info(f"Service zone {zone_id} deleted")
    return success_response({"id": zone_id, "deleted": True})
