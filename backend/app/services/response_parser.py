"""Normalize buyer PING/POST responses.

Buyers answer in many shapes ("status": "accepted", "bid_price": "42.50",
HTTP 409 for duplicates, ...). The defaults below cover the common
vocabulary; a buyer's ``response_mapping`` JSON can override any part.
"""
import logging
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from app.schemas.common import CamelModel

logger = logging.getLogger(__name__)


# ── Default mappings ─────────────────────────────────────────────────

DEFAULT_PING_MAPPINGS = {
    "accepted": [
        "accepted", "accept", "accepted_bid", "interested", "interest", "bid",
        "bid_submitted", "bidding", "yes", "true", "ok", "okay", "qualified",
        "eligible", "approved", "ready", "success", "successful", "1",
    ],
    "rejected": [
        "rejected", "reject", "declined", "decline", "pass", "passed", "skip",
        "skipped", "no_bid", "nobid", "not_interested", "not interested", "no",
        "false", "deny", "denied", "unqualified", "ineligible", "not_qualified",
        "disqualified", "full", "at_capacity", "over_capacity", "capped", "0",
    ],
    "error": [
        "error", "err", "failure", "failed", "timeout", "timed_out", "timedout",
        "invalid", "invalid_request", "bad_request", "malformed", "unavailable",
        "service_unavailable", "service_error", "server_error", "exception",
        "internal_error",
    ],
}

DEFAULT_POST_MAPPINGS = {
    "delivered": [
        "delivered", "deliver", "delivery_success", "sold", "sale", "purchased",
        "success", "successful", "accepted", "accept", "complete", "completed",
        "done", "finished", "confirmed", "confirmation", "received", "active",
        "activated", "1", "true",
    ],
    "failed": [
        "failed", "failure", "fail", "rejected", "reject", "declined", "decline",
        "denied", "deny", "error", "err", "cancelled", "canceled", "cancel",
        "refused", "not_accepted", "not accepted", "0", "false",
    ],
    "duplicate": [
        "duplicate", "duplicated", "dup", "dupe", "exists", "existing",
        "already_exists", "already exists", "already_sold", "already sold",
        "previously_sold", "prior_sale", "repeat", "repeated", "seen", "known",
    ],
    "invalid": [
        "invalid", "invalid_data", "invalid_lead", "bad_data", "bad data",
        "malformed", "corrupt", "corrupted", "validation_error",
        "validation_failed", "failed_validation", "incomplete", "missing_data",
        "missing data", "missing_required", "unprocessable",
        "unprocessable_entity", "bad_request",
    ],
}

DEFAULT_BID_AMOUNT_FIELDS = [
    "bidAmount", "bidPrice", "bid", "bid_amount", "bid_price", "price", "cost",
    "lead_price", "lead_cost", "offer", "offerAmount", "offer_amount", "amount",
    "value", "leadValue", "lead_value", "quote", "quotedPrice", "quoted_price",
    "payout", "payment", "rate", "data.bid", "data.bidAmount", "result.bid",
    "result.price", "response.bid",
]

DEFAULT_HTTP_STATUS_MAPPING = {
    200: "success", 201: "success", 202: "success", 204: "success",
    400: "reject", 403: "reject", 404: "reject", 409: "reject", 410: "reject", 422: "reject",
    401: "error", 405: "error", 500: "error", 501: "error",
    429: "retry", 502: "retry", 503: "retry", 504: "retry",
}

DEFAULT_REASON_FIELDS = [
    "reason", "message", "error", "errorMessage", "error_message", "details",
    "description", "rejection_reason", "rejectionReason", "failure_reason",
    "failureReason", "info", "statusMessage", "status_message",
]

DEFAULT_BUYER_LEAD_ID_FIELDS = [
    "buyerLeadId", "buyer_lead_id", "leadId", "lead_id", "id", "referenceId",
    "reference_id", "transactionId", "transaction_id", "confirmationId",
    "confirmation_id", "externalId", "external_id",
]

PING_TOKEN_FIELDS = ["pingToken", "ping_token", "token"]

DEFAULT_INTEREST_INDICATORS = {
    "acceptanceFields": ["interested", "accept", "approved", "qualified"],
    "rejectionFields": ["rejected", "declined", "denied", "disqualified"],
}

_TRUTHY = (True, "true", "1", 1)


# ── Mapping schema ───────────────────────────────────────────────────

class InterestIndicators(CamelModel):
    acceptance_fields: List[str] = Field(default_factory=list)
    rejection_fields: List[str] = Field(default_factory=list)


class SuccessIndicator(CamelModel):
    field: str = Field(..., min_length=1)
    success_values: List[str] = Field(..., min_length=1)


class ResponseMapping(CamelModel):
    """Shape of a buyer's ``response_mapping`` overrides."""
    status_field: Optional[str] = None
    ping_mappings: Optional[Dict[Literal["accepted", "rejected", "error"], List[str]]] = None
    post_mappings: Optional[Dict[Literal["delivered", "failed", "duplicate", "invalid"], List[str]]] = None
    bid_amount_fields: Optional[List[str]] = None
    http_status_mapping: Optional[Dict[int, Literal["success", "reject", "error", "retry"]]] = None
    interest_indicators: Optional[InterestIndicators] = None
    success_indicator: Optional[SuccessIndicator] = None


def validate_response_mapping(raw: Optional[dict]) -> Optional[dict]:
    """Check a stored mapping and return it with camelCase keys; raises ValueError."""
    if raw is None:
        return None
    if not isinstance(raw, dict):
        raise ValueError("response_mapping must be an object")
    return ResponseMapping.model_validate(raw).model_dump(by_alias=True, exclude_none=True)


def merge_with_defaults(custom: Optional[dict]) -> dict:
    """Overlay a buyer's response mapping on the defaults; empty lists keep defaults."""
    custom = custom or {}
    ping = custom.get("pingMappings") or {}
    post = custom.get("postMappings") or {}
    http_map = dict(DEFAULT_HTTP_STATUS_MAPPING)
    for code, meaning in (custom.get("httpStatusMapping") or {}).items():
        http_map[int(code)] = meaning

    return {
        "statusField": custom.get("statusField") or "status",
        "pingMappings": {k: ping.get(k) or v for k, v in DEFAULT_PING_MAPPINGS.items()},
        "postMappings": {k: post.get(k) or v for k, v in DEFAULT_POST_MAPPINGS.items()},
        "bidAmountFields": custom.get("bidAmountFields") or DEFAULT_BID_AMOUNT_FIELDS,
        "httpStatusMapping": http_map,
        "interestIndicators": custom.get("interestIndicators") or DEFAULT_INTEREST_INDICATORS,
        "successIndicator": custom.get("successIndicator"),
    }


# ── Parsed results ───────────────────────────────────────────────────

class ParsedPingResponse(BaseModel):
    status: str  # accepted, rejected, error
    bid_amount: float = 0.0
    http_status: int
    raw_status: Optional[str] = None
    reason: Optional[str] = None
    ping_token: Optional[str] = None
    buyer_lead_id: Optional[str] = None
    bid_field: Optional[str] = None

    @property
    def interested(self) -> bool:
        return self.status == "accepted"


class ParsedPostResponse(BaseModel):
    status: str  # delivered, failed, duplicate, invalid
    http_status: int
    raw_status: Optional[str] = None
    reason: Optional[str] = None
    buyer_lead_id: Optional[str] = None

    @property
    def accepted(self) -> bool:
        return self.status == "delivered"


# ── Field helpers ────────────────────────────────────────────────────

def extract_field(body: Any, path: str) -> Any:
    """Read a dot-path (``result.status``) out of nested dicts."""
    if not isinstance(body, dict):
        return None
    current = body
    for part in path.split("."):
        if not isinstance(current, dict):
            return None
        current = current.get(part)
        if current is None:
            return None
    return current


def _first_string(body: Any, fields: List[str]) -> Optional[str]:
    for path in fields:
        value = extract_field(body, path)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def _matches(value: str, words: List[str]) -> bool:
    normalized = value.lower().strip()
    return any(normalized == w.lower().strip() for w in words)


class BuyerResponseParser:
    """Turns raw buyer responses into ParsedPingResponse / ParsedPostResponse."""

    def __init__(self, response_mapping: Optional[dict] = None):
        self.config = merge_with_defaults(response_mapping)

    def interpret_http_status(self, status_code: int) -> str:
        mapped = self.config["httpStatusMapping"].get(status_code)
        if mapped:
            return mapped
        if 200 <= status_code < 300:
            return "success"
        if status_code == 429 or status_code in (502, 503, 504):
            return "retry"
        if status_code >= 500:
            return "error"
        return "reject"

    def extract_bid_amount(self, body: Any) -> tuple:
        """Return (amount, field) for the first positive numeric bid field."""
        for path in self.config["bidAmountFields"]:
            value = extract_field(body, path)
            if value is None or isinstance(value, bool):
                continue
            try:
                amount = float(value)
            except (TypeError, ValueError):
                continue
            if amount == amount and amount > 0:  # NaN check
                return amount, path
        return 0.0, None

    def _success_indicator_ok(self, body: Any) -> bool:
        indicator = self.config.get("successIndicator")
        if not indicator:
            return True
        value = extract_field(body, indicator.get("field", ""))
        if value is None:
            return False
        return _matches(str(value), indicator.get("successValues", []))

    def parse_ping(self, http_status: int, body: Any) -> ParsedPingResponse:
        meaning = self.interpret_http_status(http_status)
        common = {
            "http_status": http_status,
            "reason": _first_string(body, DEFAULT_REASON_FIELDS),
            "ping_token": _first_string(body, PING_TOKEN_FIELDS),
            "buyer_lead_id": self._buyer_lead_id(body),
        }

        if meaning in ("error", "retry"):
            return ParsedPingResponse(status="error", **common)
        if meaning == "reject" or not self._success_indicator_ok(body):
            return ParsedPingResponse(status="rejected", **common)

        raw_status = extract_field(body, self.config["statusField"])
        if raw_status is None:
            return self._parse_without_status(body, common)

        raw = str(raw_status).lower() if isinstance(raw_status, bool) else str(raw_status)
        mappings = self.config["pingMappings"]
        if _matches(raw, mappings["accepted"]):
            status = "accepted"
        elif _matches(raw, mappings["rejected"]):
            status = "rejected"
        elif _matches(raw, mappings["error"]):
            status = "error"
        else:
            logger.warning(f"Unknown PING status '{raw}', treating as rejected")
            status = "rejected"

        amount, field = self.extract_bid_amount(body) if status == "accepted" else (0.0, None)
        return ParsedPingResponse(status=status, bid_amount=amount, bid_field=field,
                                  raw_status=raw, **common)

    def _parse_without_status(self, body: Any, common: dict) -> ParsedPingResponse:
        amount, field = self.extract_bid_amount(body)
        if amount > 0:
            return ParsedPingResponse(status="accepted", bid_amount=amount, bid_field=field, **common)

        indicators = self.config["interestIndicators"]
        for path in indicators.get("acceptanceFields", []):
            if extract_field(body, path) in _TRUTHY:
                return ParsedPingResponse(status="accepted", **common)
        for path in indicators.get("rejectionFields", []):
            if extract_field(body, path) in _TRUTHY:
                return ParsedPingResponse(status="rejected", **common)
        return ParsedPingResponse(status="rejected", **common)

    def parse_post(self, http_status: int, body: Any) -> ParsedPostResponse:
        meaning = self.interpret_http_status(http_status)
        reason = _first_string(body, DEFAULT_REASON_FIELDS)
        buyer_lead_id = self._buyer_lead_id(body)

        if meaning in ("error", "retry", "reject"):
            status = "duplicate" if http_status == 409 else "failed"
            return ParsedPostResponse(status=status, http_status=http_status,
                                      reason=reason or f"HTTP {http_status}",
                                      buyer_lead_id=buyer_lead_id)
        if not self._success_indicator_ok(body):
            return ParsedPostResponse(status="failed", http_status=http_status, reason=reason)

        raw_status = extract_field(body, self.config["statusField"])
        if raw_status is None and isinstance(extract_field(body, "result"), str):
            raw_status = extract_field(body, "result")
        if raw_status is None:
            # No explicit status: explicit false flags fail, otherwise HTTP success wins
            flags = body if isinstance(body, dict) else {}
            if flags.get("accepted") is False or flags.get("success") is False:
                status = "failed"
            else:
                status = "delivered"
            return ParsedPostResponse(status=status, http_status=http_status, reason=reason,
                                      buyer_lead_id=buyer_lead_id)

        raw = str(raw_status).lower() if isinstance(raw_status, bool) else str(raw_status)
        mappings = self.config["postMappings"]
        status = "failed"
        for candidate in ("delivered", "failed", "duplicate", "invalid"):
            if _matches(raw, mappings[candidate]):
                status = candidate
                break
        else:
            logger.warning(f"Unknown POST status '{raw}', treating as failed")

        return ParsedPostResponse(status=status, http_status=http_status, raw_status=raw,
                                  reason=reason, buyer_lead_id=buyer_lead_id)

    @staticmethod
    def _buyer_lead_id(body: Any) -> Optional[str]:
        for path in DEFAULT_BUYER_LEAD_ID_FIELDS:
            value = extract_field(body, path)
            if value is not None and not isinstance(value, (dict, list)):
                return str(value)
        return None


def parse_rejection_reason(http_status: Optional[int], body: Any) -> str:
    """Map a failed POST to a short rejection code."""
    if http_status == 409:
        return "DUPLICATE_LEAD"
    if http_status == 429:
        return "CAP_REACHED"
    if http_status in (401, 403) or (http_status or 0) >= 500:
        return "POST_REJECTED"

    text = ""
    if isinstance(body, dict):
        text = " ".join(str(body.get(k, "")) for k in ("reason", "message", "error", "status"))
    elif body is not None:
        text = str(body)
    text = text.lower()

    if "duplicate" in text:
        return "DUPLICATE_LEAD"
    if "cap" in text or "limit" in text:
        return "CAP_REACHED"
    if "hours" in text or "closed" in text:
        return "OUTSIDE_HOURS"
    if "compliance" in text:
        return "COMPLIANCE_FAILED"
    if "timeout" in text:
        return "TIMEOUT"
    return "POST_REJECTED"
