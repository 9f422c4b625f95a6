"""Contractor self-signup (public) and the signup review queue (admin)."""
import logging
from typing import List, Literal

from fastapi import APIRouter, Depends
from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.core.errors import ConflictError, ValidationError, success_response
from app.core.security import require_admin
from app.models.buyer import Buyer, BuyerServiceConfig, BuyerServiceZipCode, BuyerType
from app.models.location import ZipCodeMetadata
from app.models.service_type import ServiceType
from app.schemas.contractor import ContractorSignup, ContractorSignupResult, SignupLocation

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/contractors", tags=["contractors"])
admin_router = APIRouter(prefix="/api/admin/contractors", tags=["admin"], dependencies=[Depends(require_admin)])

# New contractors start with these until an operator reviews them
SIGNUP_PING_TIMEOUT = 30
SIGNUP_POST_TIMEOUT = 60
SIGNUP_MIN_BID = 10
SIGNUP_MAX_BID = 100
SIGNUP_ZONE_PRIORITY = 100


def expand_location(db: Session, location: SignupLocation) -> List[str]:
    """Zip codes covered by a city, state, county or single zip."""
    if location.type == "zipcode":
        return [location.zip_code or location.id]

    query = db.query(ZipCodeMetadata.zip_code).filter(ZipCodeMetadata.active == True)
    if location.type == "state":
        query = query.filter(ZipCodeMetadata.state == (location.state or location.id).upper())
    elif location.type == "city":
        city, _, state = location.id.rpartition("-")
        city = location.name or city
        state = location.state or state
        if not city or not state:
            raise ValidationError(f"City location '{location.id}' needs a city and state",
                                  code="INVALID_LOCATION", field="serviceLocationMappings")
        query = query.filter(func.lower(ZipCodeMetadata.city) == city.lower(),
                             ZipCodeMetadata.state == state.upper())
    else:
        county = location.name or location.id
        query = query.filter(func.lower(ZipCodeMetadata.county) == county.lower())
        if location.state:
            query = query.filter(ZipCodeMetadata.state == location.state.upper())
    return [row.zip_code for row in query.order_by(ZipCodeMetadata.zip_code)]


def _check_unique(db: Session, data: ContractorSignup):
    clash = db.query(Buyer).filter(or_(
        func.lower(Buyer.contact_email) == data.contact_email.lower(),
        func.lower(Buyer.business_email) == data.business_email.lower(),
        func.lower(Buyer.name) == data.company_name.lower(),
    )).first()
    if not clash:
        return
    if clash.name.lower() == data.company_name.lower():
        raise ConflictError("A company with this name is already registered", code="COMPANY_EXISTS",
                            field="companyName")
    raise ConflictError("A contractor with this email is already registered", code="EMAIL_EXISTS",
                        field="contactEmail")


@router.post("/signup", status_code=201)
def contractor_signup(data: ContractorSignup, db: Session = Depends(get_db)):
    """Register a contractor as an inactive buyer with its services and coverage."""
    service_ids = set(data.selected_services)
    found = {row.id for row in db.query(ServiceType.id).filter(ServiceType.id.in_(service_ids))}
    if service_ids - found:
        raise ValidationError("Unknown service types", code="INVALID_SERVICE",
                              field="selectedServices", data={"invalidIds": sorted(service_ids - found)})
    _check_unique(db, data)

    buyer = Buyer(
        name=data.company_name,
        type=BuyerType.CONTRACTOR,
        active=False,
        ping_timeout=SIGNUP_PING_TIMEOUT,
        post_timeout=SIGNUP_POST_TIMEOUT,
        contact_name=data.contact_name,
        contact_email=data.contact_email,
        contact_phone=data.contact_phone,
        business_email=data.business_email,
        business_phone=data.business_phone,
        additional_contacts=[c.to_json() for c in data.additional_contacts],
    )
    db.add(buyer)
    db.flush()

    zip_count = 0
    for mapping in data.service_location_mappings:
        db.add(BuyerServiceConfig(
            buyer_id=buyer.id,
            service_type_id=mapping.service_id,
            min_bid=SIGNUP_MIN_BID,
            max_bid=SIGNUP_MAX_BID,
            active=True,
        ))
        zips = []
        for location in mapping.locations:
            zips.extend(expand_location(db, location))
        for zip_code in dict.fromkeys(zips):
            db.add(BuyerServiceZipCode(
                buyer_id=buyer.id,
                service_type_id=mapping.service_id,
                zip_code=zip_code,
                priority=SIGNUP_ZONE_PRIORITY,
                min_bid=SIGNUP_MIN_BID,
                max_bid=SIGNUP_MAX_BID,
                active=True,
            ))
            zip_count += 1

    db.commit()
    logger.info(f"Contractor signup: {buyer.name} ({len(data.service_location_mappings)} services, {zip_count} zips)")
    return success_response(ContractorSignupResult(
        buyer_id=buyer.id,
        services_configured=len(data.service_location_mappings),
        zip_codes_created=zip_count,
    ).to_json())


@admin_router.get("")
def list_contractor_signups(
    status: Literal["pending", "approved", "all"] = "pending",
    db: Session = Depends(get_db),
):
    """Contractor buyers; inactive ones are waiting for review."""
    base = db.query(Buyer).filter(Buyer.type == BuyerType.CONTRACTOR)
    query = base
    if status == "pending":
        query = query.filter(Buyer.active == False)
    elif status == "approved":
        query = query.filter(Buyer.active == True)

    items = []
    for buyer in query.order_by(Buyer.created_at.desc(), Buyer.id.desc()):
        items.append({
            "id": buyer.id,
            "companyName": buyer.name,
            "contactName": buyer.contact_name,
            "contactEmail": buyer.contact_email,
            "contactPhone": buyer.contact_phone,
            "businessEmail": buyer.business_email,
            "businessPhone": buyer.business_phone,
            "additionalContacts": buyer.additional_contacts or [],
            "status": "approved" if buyer.active else "pending",
            "services": [c.service_type.display_name for c in buyer.service_configs if c.service_type],
            "zipCodeCount": len(buyer.zip_codes),
            "createdAt": buyer.created_at.isoformat() if buyer.created_at else None,
        })

    counts = {
        "pending": base.filter(Buyer.active == False).count(),
        "approved": base.filter(Buyer.active == True).count(),
    }
    counts["total"] = counts["pending"] + counts["approved"]
    return success_response(items, counts=counts)
