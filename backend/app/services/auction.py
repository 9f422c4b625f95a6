"""Real-time lead auction.

Flow for one lead:
    1. ask BuyerEligibilityService for ranked buyers covering the zip
    2. PING every eligible NETWORK buyer concurrently (per-buyer timeout)
    3. clamp each bid to the buyer's [min_bid, max_bid] and pick the best
    4. POST the full lead to the winner only
    5. record every PING/POST as a Transaction row

Contractors are not pinged. They receive the lead directly at their fixed
price when no network buyer produced a usable bid.
"""
import asyncio
import base64
import json
import logging
import random
import threading
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from app.core.config import settings
from app.models.buyer import BuyerType
from app.models.lead import Lead, LostReason, Transaction, TransactionAction, TransactionStatus
from app.services.buyer_registry import (
    BuyerConfig, BuyerConfigurationRegistry, DatabaseBuyerLoader, ServiceConfig, get_buyer_registry,
)
from app.services.eligibility import BuyerEligibilityService, EligibleBuyer
from app.services.payload_builder import (
    PayloadBuildError, build_ping_payload, build_post_payload, lead_context,
)
from app.services.response_parser import BuyerResponseParser, parse_rejection_reason
from app.services.webhook_signatures import SIGNATURE_HEADER, generate_webhook_signature

logger = logging.getLogger(__name__)

LEAD_SOURCE = "contractor-platform"


# ── Config and results ───────────────────────────────────────────────

class AuctionConfig(BaseModel):
    max_participants: int = 10
    timeout_ms: int = 5000
    require_minimum_bid: bool = True
    minimum_bid: float = 10.0
    tiebreak: str = "responseTime"  # responseTime, priority, random
    cascade_on_reject: bool = False

    @classmethod
    def from_settings(cls) -> "AuctionConfig":
        return cls(
            max_participants=settings.AUCTION_MAX_PARTICIPANTS,
            timeout_ms=settings.AUCTION_TIMEOUT_MS,
            require_minimum_bid=settings.AUCTION_REQUIRE_MINIMUM_BID,
            minimum_bid=settings.AUCTION_MINIMUM_BID,
            tiebreak=settings.AUCTION_TIEBREAK,
            cascade_on_reject=settings.AUCTION_CASCADE_ON_REJECT,
        )


class BidResult(BaseModel):
    buyer_id: int
    buyer_name: str
    bid_amount: float = 0.0
    interested: bool = False
    success: bool = False
    status: TransactionStatus = TransactionStatus.FAILED
    response_time_ms: int = 0
    error: Optional[str] = None
    ping_token: Optional[str] = None
    buyer_lead_id: Optional[str] = None
    eligibility_score: float = 0.0
    payload: Optional[dict] = None
    response: Optional[Any] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    lost_reason: Optional[LostReason] = None
    is_winner: bool = False


class PostResult(BaseModel):
    buyer_id: int
    success: bool
    status_code: Optional[int] = None
    response_time_ms: int = 0
    error: Optional[str] = None
    rejection_reason: Optional[str] = None
    buyer_lead_id: Optional[str] = None
    cascade_position: int = 1
    delivery_method: str = "WEBHOOK"


class AuctionResult(BaseModel):
    lead_id: int
    status: str  # completed, no_bids, failed
    winning_buyer_id: Optional[int] = None
    winning_bid_amount: Optional[float] = None
    all_bids: List[BidResult] = Field(default_factory=list)
    excluded: List[dict] = Field(default_factory=list)
    participant_count: int = 0
    auction_duration_ms: int = 0
    post_result: Optional[PostResult] = None
    post_attempts: List[PostResult] = Field(default_factory=list)
    error: Optional[str] = None


# ── Bid helpers ──────────────────────────────────────────────────────

def validate_bid(amount: Any, min_bid: float, max_bid: float) -> tuple:
    """Clamp a raw bid into [min_bid, max_bid].

    Non-numeric, NaN, and non-positive bids become 0. Returns (bid, metadata)
    where metadata records the original amount when clamping happened.
    """
    try:
        value = float(amount)
    except (TypeError, ValueError):
        return 0.0, {}
    if value != value or value <= 0:
        return 0.0, {}

    if value < min_bid:
        return float(min_bid), {"originalBid": value, "clamped": "min"}
    if value > max_bid:
        return float(max_bid), {"originalBid": value, "clamped": "max"}
    return value, {}


def bid_range(amount: float) -> str:
    if amount <= 25:
        return "0-25"
    if amount <= 50:
        return "26-50"
    if amount <= 100:
        return "51-100"
    if amount <= 200:
        return "101-200"
    return "200+"


def build_headers(buyer: BuyerConfig, request_type: str, service_type_name: Optional[str]) -> Dict[str, str]:
    headers = {
        "Content-Type": "application/json",
        "X-Request-Type": request_type,
        "X-Service-Type": service_type_name or "",
        "X-Lead-Source": LEAD_SOURCE,
        "X-Timestamp": datetime.now(timezone.utc).isoformat(),
    }

    creds = buyer.auth.credentials
    if buyer.auth.type == "apiKey" and creds.get("apiKey"):
        headers[creds.get("headerName") or "X-API-Key"] = creds["apiKey"]
    elif buyer.auth.type == "bearer" and creds.get("token"):
        headers["Authorization"] = f"Bearer {creds['token']}"
    elif buyer.auth.type == "basic" and creds.get("username"):
        raw = f"{creds['username']}:{creds.get('password', '')}".encode("utf-8")
        headers["Authorization"] = f"Basic {base64.b64encode(raw).decode('ascii')}"

    headers.update(buyer.auth.headers)
    return headers


def meets_compliance_requirements(context: dict, buyer: BuyerConfig, service: ServiceConfig) -> Optional[str]:
    """Return the unmet requirement, or None when the lead qualifies."""
    compliance = context.get("complianceData") or {}
    if service.requires_trustedform and not (
        compliance.get("trustedFormCertUrl") or compliance.get("trustedFormCertId")
    ):
        return "TRUSTEDFORM_REQUIRED"
    if service.requires_jornaya and not compliance.get("jornayaLeadId"):
        return "JORNAYA_REQUIRED"
    if buyer.compliance.get("requireTcpaConsent") and not compliance.get("tcpaConsent"):
        return "TCPA_CONSENT_REQUIRED"
    return None


def _response_body(resp: httpx.Response) -> Any:
    try:
        return resp.json()
    except ValueError:
        return {"raw": resp.text[:500]}


# ── Metrics ──────────────────────────────────────────────────────────

class AuctionMetrics:
    """Process-wide running totals for /api/admin/auction/metrics."""

    def __init__(self):
        self._lock = threading.Lock()
        self.reset()

    def reset(self):
        self.total_auctions = 0
        self.completed = 0
        self.no_bids = 0
        self.failed = 0
        self.total_revenue = 0.0
        self.total_duration_ms = 0
        self.total_bids = 0
        self.total_participants = 0
        self.bid_distribution: Dict[str, int] = {}

    def record(self, result: AuctionResult):
        with self._lock:
            self.total_auctions += 1
            self.total_duration_ms += result.auction_duration_ms
            self.total_participants += result.participant_count
            if result.status == "completed":
                self.completed += 1
                self.total_revenue += result.winning_bid_amount or 0
            elif result.status == "no_bids":
                self.no_bids += 1
            else:
                self.failed += 1
            for bid in result.all_bids:
                if bid.success and bid.bid_amount > 0:
                    self.total_bids += 1
                    key = bid_range(bid.bid_amount)
                    self.bid_distribution[key] = self.bid_distribution.get(key, 0) + 1

    def snapshot(self) -> dict:
        with self._lock:
            n = self.total_auctions
            return {
                "totalAuctions": n,
                "completed": self.completed,
                "noBids": self.no_bids,
                "failed": self.failed,
                "successRate": round(self.completed / n, 4) if n else 0,
                "averageAuctionTimeMs": round(self.total_duration_ms / n, 2) if n else 0,
                "averageParticipants": round(self.total_participants / n, 2) if n else 0,
                "totalRevenue": round(self.total_revenue, 2),
                "totalBids": self.total_bids,
                "bidDistribution": dict(self.bid_distribution),
            }


auction_metrics = AuctionMetrics()


# ── Engine ───────────────────────────────────────────────────────────

class AuctionEngine:
    """Runs the PING/POST auction for a single lead."""

    def __init__(self, db: Session,
                 registry: Optional[BuyerConfigurationRegistry] = None,
                 eligibility: Optional[BuyerEligibilityService] = None,
                 config: Optional[AuctionConfig] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.db = db
        self.registry = registry or get_buyer_registry()
        self.eligibility = eligibility or BuyerEligibilityService(db)
        self.config = config or AuctionConfig.from_settings()
        self.transport = transport

    def _load_buyer_config(self, buyer_id: int) -> Optional[BuyerConfig]:
        """Fresh config from the database; the registry keeps it as the latest snapshot."""
        config = DatabaseBuyerLoader(self.db).load_buyer(buyer_id)
        if config is None:
            self.registry.remove(buyer_id)
        else:
            self.registry.register(config)
        return config

    async def run_auction(self, lead: Lead) -> AuctionResult:
        started = time.monotonic()
        try:
            result = await self._run(lead, started)
        except Exception as e:
            logger.error(f"Auction for lead {lead.id} failed: {e}", exc_info=True)
            self.db.rollback()
            result = AuctionResult(
                lead_id=lead.id,
                status="failed",
                error=str(e),
                auction_duration_ms=int((time.monotonic() - started) * 1000),
            )
        auction_metrics.record(result)
        return result

    async def _run(self, lead: Lead, started: float) -> AuctionResult:
        eligibility = self.eligibility.get_eligible_buyers(
            lead.service_type_id,
            lead.zip_code,
            max_participants=self.config.max_participants,
            require_min_bid=self.config.require_minimum_bid,
            min_bid_threshold=self.config.minimum_bid,
        )
        excluded = [e.model_dump() for e in eligibility.excluded]

        if not eligibility.eligible:
            logger.info(f"No eligible buyers for lead {lead.id} ({lead.zip_code})")
            return AuctionResult(lead_id=lead.id, status="no_bids", excluded=excluded,
                                 auction_duration_ms=int((time.monotonic() - started) * 1000))

        service_type_name = lead.service_type.name if lead.service_type else None
        context = lead_context(lead, service_type_name)

        # Resolve configs and compliance before any network call
        networks, contractors = [], []
        for candidate in eligibility.eligible:
            try:
                buyer = self._load_buyer_config(candidate.buyer_id)
            except Exception as e:
                # One misconfigured buyer must not sink the auction
                logger.warning(f"Skipping buyer {candidate.buyer_name}: invalid configuration ({e})")
                self.registry.remove(candidate.buyer_id)
                excluded.append({"buyer_id": candidate.buyer_id, "buyer_name": candidate.buyer_name,
                                 "reason": "INVALID_CONFIG", "details": {"error": str(e)}})
                continue
            service = buyer.service_configs.get(lead.service_type_id) if buyer else None
            if not buyer or not service:
                excluded.append({"buyer_id": candidate.buyer_id, "buyer_name": candidate.buyer_name,
                                 "reason": "NO_SERVICE_CONFIG", "details": {}})
                continue
            unmet = meets_compliance_requirements(context, buyer, service)
            if unmet:
                excluded.append({"buyer_id": candidate.buyer_id, "buyer_name": candidate.buyer_name,
                                 "reason": unmet, "details": {}})
                continue
            target = networks if buyer.type == BuyerType.NETWORK else contractors
            target.append((candidate, buyer, service))

        result = AuctionResult(lead_id=lead.id, status="no_bids", excluded=excluded,
                               participant_count=len(networks) + len(contractors))

        async with httpx.AsyncClient(transport=self.transport) as client:
            if networks:
                await self._network_auction(client, lead, context, service_type_name, networks, result)
            if result.post_result is None and contractors:
                await self._contractor_delivery(client, lead, context, service_type_name, contractors, result)

        self.db.commit()
        result.auction_duration_ms = int((time.monotonic() - started) * 1000)
        logger.info(
            f"Auction for lead {lead.id}: {result.status}, winner={result.winning_buyer_id}, "
            f"bid={result.winning_bid_amount}, {len(result.all_bids)} bids in {result.auction_duration_ms}ms"
        )
        return result

    # ── Network PING/POST ──

    async def _network_auction(self, client: httpx.AsyncClient, lead: Lead, context: dict,
                               service_type_name: Optional[str], participants: list,
                               result: AuctionResult):
        bids = await asyncio.gather(*[
            self._send_ping(client, context, service_type_name, candidate, buyer, service)
            for candidate, buyer, service in participants
        ])
        result.all_bids.extend(bids)

        ranking = self.rank_bids(bids)
        ranked_ids = {b.buyer_id for b in ranking}
        for bid in bids:
            if bid.buyer_id in ranked_ids:
                continue
            if bid.status == TransactionStatus.TIMEOUT:
                bid.lost_reason = LostReason.TIMEOUT
            elif bid.success and bid.interested and bid.bid_amount > 0:
                bid.lost_reason = LostReason.BELOW_MINIMUM
            else:
                bid.lost_reason = LostReason.NO_BID

        if not ranking:
            self._log_pings(lead, bids, context)
            return

        by_buyer = {candidate.buyer_id: (buyer, service) for candidate, buyer, service in participants}
        attempts = ranking if self.config.cascade_on_reject else ranking[:1]
        winner = None
        for position, bid in enumerate(attempts, start=1):
            buyer, service = by_buyer[bid.buyer_id]
            post = await self._send_post(client, lead, context, service_type_name, bid, buyer, service, position)
            result.post_attempts.append(post)
            result.post_result = post
            if post.success:
                winner = bid
                break

        # Winner is whoever accepted; with no acceptance the top bid still "won" the auction
        top = winner or ranking[0]
        top.is_winner = True
        for bid in ranking:
            if bid is top:
                continue
            bid.lost_reason = LostReason.OUTBID
        if winner is None:
            top.lost_reason = LostReason.POST_REJECTED

        result.winning_buyer_id = top.buyer_id
        result.winning_bid_amount = top.bid_amount
        result.status = "completed" if winner else "failed"

        self._log_pings(lead, bids, context, winning_amount=top.bid_amount)

    def rank_bids(self, bids: List[BidResult]) -> List[BidResult]:
        """Valid bids, best first, ties broken by the configured strategy."""
        valid = [
            b for b in bids
            if b.success and b.interested and b.bid_amount > 0
            and (not self.config.require_minimum_bid or b.bid_amount >= self.config.minimum_bid)
        ]
        if self.config.tiebreak == "priority":
            key = lambda b: (-b.bid_amount, -b.eligibility_score)
        elif self.config.tiebreak == "random":
            jitter = {b.buyer_id: random.random() for b in valid}
            key = lambda b: (-b.bid_amount, jitter[b.buyer_id])
        else:
            key = lambda b: (-b.bid_amount, b.response_time_ms)
        return sorted(valid, key=key)

    async def _send_ping(self, client: httpx.AsyncClient, context: dict, service_type_name: Optional[str],
                         candidate: EligibleBuyer, buyer: BuyerConfig, service: ServiceConfig) -> BidResult:
        bid = BidResult(buyer_id=buyer.buyer_id, buyer_name=buyer.name,
                        eligibility_score=candidate.eligibility_score)
        try:
            return await self._ping(client, context, service_type_name, candidate, buyer, service, bid)
        except Exception as e:
            logger.error(f"PING to {buyer.name} raised: {e}", exc_info=True)
            bid.success = False
            bid.interested = False
            bid.bid_amount = 0.0
            bid.status = TransactionStatus.FAILED
            bid.error = f"PING failed: {e}"
            return bid

    async def _ping(self, client: httpx.AsyncClient, context: dict, service_type_name: Optional[str],
                    candidate: EligibleBuyer, buyer: BuyerConfig, service: ServiceConfig,
                    bid: BidResult) -> BidResult:
        if not service.ping_url:
            bid.error = "No PING URL configured"
            return bid

        try:
            payload = build_ping_payload(context, service.field_mappings)
        except PayloadBuildError as e:
            bid.error = str(e)
            return bid
        bid.payload = payload

        timeout_s = min(service.ping_timeout_ms, self.config.timeout_ms) / 1000
        started = time.monotonic()
        try:
            resp = await asyncio.wait_for(
                client.post(service.ping_url, content=json.dumps(payload),
                            headers=build_headers(buyer, "PING", service_type_name), timeout=timeout_s),
                timeout=timeout_s,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException):
            bid.response_time_ms = int((time.monotonic() - started) * 1000)
            bid.status = TransactionStatus.TIMEOUT
            bid.error = f"PING timed out after {int(timeout_s * 1000)}ms"
            logger.warning(f"PING to {buyer.name} timed out")
            return bid
        except httpx.HTTPError as e:
            bid.response_time_ms = int((time.monotonic() - started) * 1000)
            bid.error = f"PING failed: {e}"
            logger.warning(f"PING to {buyer.name} failed: {e}")
            return bid

        bid.response_time_ms = int((time.monotonic() - started) * 1000)
        body = _response_body(resp)
        bid.response = body
        parsed = BuyerResponseParser(buyer.response_mapping).parse_ping(resp.status_code, body)
        bid.ping_token = parsed.ping_token
        bid.buyer_lead_id = parsed.buyer_lead_id

        if parsed.status == "error":
            bid.error = parsed.reason or f"HTTP {resp.status_code}"
            logger.warning(f"PING to {buyer.name} returned error ({resp.status_code})")
            return bid

        bid.success = True
        bid.status = TransactionStatus.SUCCESS
        bid.interested = parsed.interested
        if parsed.interested:
            amount, metadata = validate_bid(parsed.bid_amount, candidate.min_bid, candidate.max_bid)
            bid.bid_amount = amount
            bid.metadata = metadata
            if metadata:
                logger.info(f"Clamped bid from {buyer.name}: {metadata['originalBid']} -> {amount}")
        else:
            bid.error = parsed.reason
        logger.info(f"PING to {buyer.name}: {parsed.status}, bid={bid.bid_amount} ({bid.response_time_ms}ms)")
        return bid

    async def _send_post(self, client: httpx.AsyncClient, lead: Lead, context: dict,
                         service_type_name: Optional[str], bid: BidResult, buyer: BuyerConfig,
                         service: ServiceConfig, position: int) -> PostResult:
        post = PostResult(buyer_id=buyer.buyer_id, success=False, cascade_position=position)
        payload = None
        response_body = None
        try:
            if not service.post_url:
                raise ValueError("No POST URL configured")
            payload = build_post_payload(context, service.field_mappings,
                                         ping_token=bid.ping_token, buyer_lead_id=bid.buyer_lead_id)
            body = json.dumps(payload)
            headers = build_headers(buyer, "POST", service_type_name)
            if buyer.webhook_secret:
                headers[SIGNATURE_HEADER] = generate_webhook_signature(body, buyer.webhook_secret)

            timeout_s = service.post_timeout_ms / 1000
            started = time.monotonic()
            try:
                resp = await asyncio.wait_for(
                    client.post(service.post_url, content=body, headers=headers, timeout=timeout_s),
                    timeout=timeout_s,
                )
            finally:
                post.response_time_ms = int((time.monotonic() - started) * 1000)

            response_body = _response_body(resp)
            post.status_code = resp.status_code
            parsed = BuyerResponseParser(buyer.response_mapping).parse_post(resp.status_code, response_body)
            post.buyer_lead_id = parsed.buyer_lead_id
            post.success = parsed.accepted
            if not post.success:
                post.rejection_reason = (
                    "DUPLICATE_LEAD" if parsed.status == "duplicate"
                    else parse_rejection_reason(resp.status_code, response_body)
                )
                post.error = parsed.reason or post.rejection_reason
        except (asyncio.TimeoutError, httpx.TimeoutException):
            post.error = "POST timed out"
            post.rejection_reason = "TIMEOUT"
        except (httpx.HTTPError, PayloadBuildError, ValueError) as e:
            post.error = f"POST failed: {e}"
            post.rejection_reason = "POST_REJECTED"
        except Exception as e:
            logger.error(f"POST to {buyer.name} raised: {e}", exc_info=True)
            post.success = False
            post.error = f"POST failed: {e}"
            post.rejection_reason = "POST_REJECTED"

        if post.success:
            logger.info(f"POST to {buyer.name} accepted for lead {lead.id}")
        else:
            logger.warning(f"POST to {buyer.name} rejected for lead {lead.id}: {post.error}")

        self.db.add(self._transaction(
            lead, buyer.buyer_id, TransactionAction.POST, context,
            payload=payload,
            response=response_body,
            status=TransactionStatus.SUCCESS if post.success else (
                TransactionStatus.TIMEOUT if post.rejection_reason == "TIMEOUT" else TransactionStatus.FAILED
            ),
            bid_amount=bid.bid_amount,
            response_time=post.response_time_ms,
            error_message=post.error,
            is_winner=post.success,
            lost_reason=None if post.success else LostReason.POST_REJECTED,
            winning_bid_amount=bid.bid_amount if post.success else None,
            cascade_position=position,
        ))
        return post

    # ── Contractors ──

    async def _contractor_delivery(self, client: httpx.AsyncClient, lead: Lead, context: dict,
                                   service_type_name: Optional[str], contractors: list,
                                   result: AuctionResult):
        """Exclusive delivery to the best-ranked contractor at its fixed price."""
        candidate, buyer, service = max(contractors, key=lambda c: (c[0].eligibility_score, c[0].min_bid))
        price = candidate.min_bid
        bid = BidResult(buyer_id=buyer.buyer_id, buyer_name=buyer.name, bid_amount=price,
                        interested=True, success=True, status=TransactionStatus.SUCCESS,
                        eligibility_score=candidate.eligibility_score,
                        metadata={"deliveryMethod": "WEBHOOK" if service.post_url else "DASHBOARD"})

        if service.post_url:
            post = await self._send_post(client, lead, context, service_type_name, bid, buyer, service, 1)
        else:
            post = PostResult(buyer_id=buyer.buyer_id, success=True, delivery_method="DASHBOARD")
            try:
                payload = build_post_payload(context, service.field_mappings)
            except (PayloadBuildError, ValueError) as e:
                # Dashboard delivery reads the lead itself; only the logged payload is lost
                logger.warning(f"Could not build dashboard payload for {buyer.name}: {e}")
                payload = None
            self.db.add(self._transaction(
                lead, buyer.buyer_id, TransactionAction.POST, context,
                payload=payload,
                status=TransactionStatus.SUCCESS,
                bid_amount=price,
                response_time=0,
                is_winner=True,
                winning_bid_amount=price,
                cascade_position=1,
            ))
            logger.info(f"Lead {lead.id} assigned to contractor {buyer.name} (dashboard delivery)")

        bid.is_winner = True
        result.all_bids.append(bid)
        result.post_attempts.append(post)
        result.post_result = post
        result.winning_buyer_id = buyer.buyer_id
        result.winning_bid_amount = price
        result.status = "completed" if post.success else "failed"

    # ── Transactions ──

    def _transaction(self, lead: Lead, buyer_id: int, action: TransactionAction, context: dict,
                     **fields) -> Transaction:
        compliance = context.get("complianceData") or {}
        trusted_form = bool(compliance.get("trustedFormCertUrl") or compliance.get("trustedFormCertId"))
        jornaya = bool(compliance.get("jornayaLeadId"))
        return Transaction(
            lead_id=lead.id,
            buyer_id=buyer_id,
            action_type=action,
            compliance_included=trusted_form or jornaya or bool(compliance.get("tcpaConsent")),
            trusted_form_present=trusted_form,
            jornaya_present=jornaya,
            **fields,
        )

    def _log_pings(self, lead: Lead, bids: List[BidResult], context: dict,
                   winning_amount: Optional[float] = None):
        for bid in bids:
            response = bid.response
            if bid.metadata:
                response = {"body": bid.response, "metadata": bid.metadata}
            self.db.add(self._transaction(
                lead, bid.buyer_id, TransactionAction.PING, context,
                payload=bid.payload,
                response=response,
                status=bid.status,
                bid_amount=bid.bid_amount if bid.bid_amount > 0 else None,
                response_time=bid.response_time_ms,
                error_message=bid.error,
                is_winner=bid.is_winner,
                lost_reason=bid.lost_reason,
                winning_bid_amount=winning_amount,
            ))


def get_auction_engine(db: Session, **kwargs) -> AuctionEngine:
    return AuctionEngine(db, **kwargs)
