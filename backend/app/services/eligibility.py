"""Which buyers may bid on a lead: zip coverage, activity, caps, and bid floors."""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field
from sqlalchemy import func
from sqlalchemy.orm import Session, joinedload

from app.models.buyer import Buyer, BuyerServiceConfig, BuyerServiceZipCode, BuyerType
from app.models.lead import Lead, Transaction, TransactionAction, TransactionStatus
from app.models.location import ZipCodeMetadata

logger = logging.getLogger(__name__)


class EligibleBuyer(BaseModel):
    buyer_id: int
    buyer_name: str
    buyer_type: BuyerType
    zone_id: int
    eligibility_score: float
    priority: int
    max_leads_per_day: Optional[int] = None
    current_daily_count: int = 0
    min_bid: float = 0.0
    max_bid: float = 999.99


class ExcludedBuyer(BaseModel):
    buyer_id: int
    buyer_name: str
    reason: str
    details: Dict[str, Any] = Field(default_factory=dict)


class EligibilityResult(BaseModel):
    eligible: List[EligibleBuyer] = Field(default_factory=list)
    excluded: List[ExcludedBuyer] = Field(default_factory=list)
    total_found: int = 0

    @property
    def eligible_count(self) -> int:
        return len(self.eligible)

    @property
    def excluded_count(self) -> int:
        return len(self.excluded)


def effective_bid_bounds(zone: BuyerServiceZipCode, config: Optional[BuyerServiceConfig]) -> tuple:
    """Zone overrides win over the service config bounds."""
    min_bid = zone.min_bid if zone.min_bid is not None else (config.min_bid if config else 0)
    max_bid = zone.max_bid if zone.max_bid is not None else (config.max_bid if config else 999.99)
    return float(min_bid or 0), float(max_bid if max_bid is not None else 999.99)


def _start_of_day() -> datetime:
    return datetime.utcnow().replace(hour=0, minute=0, second=0, microsecond=0)


def _days_since(created_at: Optional[datetime]) -> Optional[float]:
    if not created_at:
        return None
    if created_at.tzinfo is None:
        created_at = created_at.replace(tzinfo=timezone.utc)
    return (datetime.now(timezone.utc) - created_at).total_seconds() / 86400


class BuyerEligibilityService:
    """Filters and ranks the buyers covering a (service type, zip code) pair."""

    def __init__(self, db: Session):
        self.db = db

    def get_daily_lead_count(self, buyer_id: int, service_type_id: int) -> int:
        """Successful POSTs delivered to the buyer today for this service."""
        return (
            self.db.query(func.count(Transaction.id))
            .join(Lead, Lead.id == Transaction.lead_id)
            .filter(
                Transaction.buyer_id == buyer_id,
                Transaction.action_type == TransactionAction.POST,
                Transaction.status == TransactionStatus.SUCCESS,
                Transaction.created_at >= _start_of_day(),
                Lead.service_type_id == service_type_id,
            )
            .scalar()
            or 0
        )

    def _zones(self, service_type_id: int, zip_code: str) -> List[BuyerServiceZipCode]:
        return (
            self.db.query(BuyerServiceZipCode)
            .options(joinedload(BuyerServiceZipCode.buyer), joinedload(BuyerServiceZipCode.service_type))
            .filter(
                BuyerServiceZipCode.service_type_id == service_type_id,
                BuyerServiceZipCode.zip_code == zip_code,
                BuyerServiceZipCode.active == True,
            )
            .order_by(BuyerServiceZipCode.priority.desc())
            .all()
        )

    def _service_config(self, buyer_id: int, service_type_id: int) -> Optional[BuyerServiceConfig]:
        return (
            self.db.query(BuyerServiceConfig)
            .filter(
                BuyerServiceConfig.buyer_id == buyer_id,
                BuyerServiceConfig.service_type_id == service_type_id,
            )
            .first()
        )

    def calculate_score(self, zone: BuyerServiceZipCode, config: Optional[BuyerServiceConfig],
                        max_bid: float, daily_count: int) -> float:
        score = float(zone.priority or 0)

        # Up to 50 points for high bid capacity
        score += min(max_bid * 0.1, 50)

        # Up to 20 points for remaining daily capacity
        if zone.max_leads_per_day:
            remaining = max(zone.max_leads_per_day - daily_count, 0)
            score += min(remaining * 2, 20)
        else:
            score += 20

        if config and config.active:
            score += 10

        # Newer zones get a slight preference (up to 3 points)
        days = _days_since(zone.created_at)
        if days is not None and days < 30:
            score += (30 - days) * 0.1

        return round(score, 2)

    def _check(self, zone: BuyerServiceZipCode, exclude: set, require_min_bid: bool,
               min_bid_threshold: float):
        buyer = zone.buyer
        name = buyer.name if buyer else "Unknown"

        def excluded(reason: str, **details):
            return None, ExcludedBuyer(buyer_id=zone.buyer_id, buyer_name=name, reason=reason, details=details)

        if zone.buyer_id in exclude:
            return excluded("BUYER_EXCLUDED")
        if not buyer or not buyer.active:
            return excluded("BUYER_INACTIVE")
        if not zone.service_type or not zone.service_type.active:
            return excluded("SERVICE_TYPE_INACTIVE")

        config = self._service_config(zone.buyer_id, zone.service_type_id)
        if not config:
            return excluded("NO_SERVICE_CONFIG")
        if not config.active:
            return excluded("CONFIG_INACTIVE")

        daily_count = self.get_daily_lead_count(zone.buyer_id, zone.service_type_id)
        if zone.max_leads_per_day and daily_count >= zone.max_leads_per_day:
            return excluded("DAILY_LIMIT_EXCEEDED", maxLeadsPerDay=zone.max_leads_per_day,
                            currentDailyCount=daily_count)

        min_bid, max_bid = effective_bid_bounds(zone, config)
        if require_min_bid and min_bid_threshold and max_bid < min_bid_threshold:
            return excluded("BID_TOO_LOW", maxBid=max_bid, required=min_bid_threshold)

        return EligibleBuyer(
            buyer_id=zone.buyer_id,
            buyer_name=name,
            buyer_type=buyer.type or BuyerType.CONTRACTOR,
            zone_id=zone.id,
            eligibility_score=self.calculate_score(zone, config, max_bid, daily_count),
            priority=zone.priority,
            max_leads_per_day=zone.max_leads_per_day,
            current_daily_count=daily_count,
            min_bid=min_bid,
            max_bid=max_bid,
        ), None

    def get_eligible_buyers(self, service_type_id: int, zip_code: str,
                            exclude_buyer_ids: Optional[List[int]] = None,
                            max_participants: Optional[int] = None,
                            require_min_bid: bool = False,
                            min_bid_threshold: float = 0) -> EligibilityResult:
        zones = self._zones(service_type_id, zip_code)
        result = EligibilityResult(total_found=len(zones))
        exclude = set(exclude_buyer_ids or [])

        seen = set()
        for zone in zones:
            # Zones come best-priority first; a buyer competes once
            if zone.buyer_id in seen:
                continue
            seen.add(zone.buyer_id)

            eligible, excluded = self._check(zone, exclude, require_min_bid, min_bid_threshold)
            if eligible:
                result.eligible.append(eligible)
            else:
                result.excluded.append(excluded)

        result.eligible.sort(key=lambda b: b.eligibility_score, reverse=True)

        if max_participants and len(result.eligible) > max_participants:
            for buyer in result.eligible[max_participants:]:
                result.excluded.append(ExcludedBuyer(
                    buyer_id=buyer.buyer_id,
                    buyer_name=buyer.buyer_name,
                    reason="MAX_PARTICIPANTS_EXCEEDED",
                    details={"maxParticipants": max_participants},
                ))
            result.eligible = result.eligible[:max_participants]

        logger.info(
            f"Eligibility for service {service_type_id} zip {zip_code}: "
            f"{result.eligible_count} eligible, {result.excluded_count} excluded"
        )
        return result

    def is_buyer_eligible(self, buyer_id: int, service_type_id: int, zip_code: str) -> bool:
        zone = (
            self.db.query(BuyerServiceZipCode)
            .filter(
                BuyerServiceZipCode.buyer_id == buyer_id,
                BuyerServiceZipCode.service_type_id == service_type_id,
                BuyerServiceZipCode.zip_code == zip_code,
                BuyerServiceZipCode.active == True,
            )
            .first()
        )
        if not zone:
            return False
        eligible, _ = self._check(zone, set(), False, 0)
        return eligible is not None

    def get_buyer_service_coverage(self, buyer_id: int, service_type_id: Optional[int] = None) -> dict:
        query = self.db.query(BuyerServiceZipCode).filter(BuyerServiceZipCode.buyer_id == buyer_id)
        if service_type_id:
            query = query.filter(BuyerServiceZipCode.service_type_id == service_type_id)
        zones = query.all()
        active = sorted((z for z in zones if z.active), key=lambda z: z.priority, reverse=True)

        top = active[:20]
        metadata = {}
        if top:
            rows = self.db.query(ZipCodeMetadata).filter(
                ZipCodeMetadata.zip_code.in_([z.zip_code for z in top])
            ).all()
            metadata = {m.zip_code: m for m in rows}

        top_zip_codes = []
        for zone in top:
            meta = metadata.get(zone.zip_code)
            top_zip_codes.append({
                "zipCode": zone.zip_code,
                "priority": zone.priority,
                "city": meta.city if meta else None,
                "state": meta.state if meta else None,
            })

        return {
            "totalZipCodes": len(zones),
            "activeZipCodes": len(active),
            "states": sorted({z["state"] for z in top_zip_codes if z["state"]}),
            "topZipCodes": top_zip_codes,
        }

    def get_service_availability(self, zip_code: str, service_type_id: Optional[int] = None) -> dict:
        query = (
            self.db.query(BuyerServiceZipCode)
            .options(joinedload(BuyerServiceZipCode.buyer), joinedload(BuyerServiceZipCode.service_type))
            .filter(BuyerServiceZipCode.zip_code == zip_code)
        )
        if service_type_id:
            query = query.filter(BuyerServiceZipCode.service_type_id == service_type_id)
        zones = query.all()

        buyers = []
        for zone in zones:
            active = bool(
                zone.active and zone.buyer and zone.buyer.active
                and zone.service_type and zone.service_type.active
            )
            buyers.append({
                "buyerId": zone.buyer_id,
                "buyerName": zone.buyer.name if zone.buyer else "Unknown",
                "priority": zone.priority,
                "active": active,
                "constraints": {
                    "maxLeadsPerDay": zone.max_leads_per_day,
                    "currentDailyCount": self.get_daily_lead_count(zone.buyer_id, zone.service_type_id),
                    "minBid": float(zone.min_bid) if zone.min_bid is not None else None,
                    "maxBid": float(zone.max_bid) if zone.max_bid is not None else None,
                },
            })

        return {
            "totalBuyers": len(zones),
            "activeBuyers": sum(1 for b in buyers if b["active"]),
            "averagePriority": (sum(z.priority for z in zones) / len(zones)) if zones else 0,
            "buyers": sorted(buyers, key=lambda b: b["priority"], reverse=True),
        }


def get_eligibility_service(db: Session) -> BuyerEligibilityService:
    return BuyerEligibilityService(db)
