"""Value transforms applied to lead fields when building buyer payloads.

Transforms are referenced by id (``phone.e164``, ``boolean.yesNo``) from a
buyer's field mappings.
"""
import logging
import re
from datetime import datetime, date, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger(__name__)


# ── Boolean ──────────────────────────────────────────────────────────

def to_boolean(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if value is None:
        return False
    return str(value).lower().strip() in ("true", "yes", "y", "1", "on", "checked")


# ── String ───────────────────────────────────────────────────────────

def _titlecase(value: Any) -> str:
    return " ".join(w[:1].upper() + w[1:] for w in str(value).lower().split(" "))


def truncate(value: Any, max_length: int) -> str:
    s = str(value)
    if len(s) <= max_length:
        return s
    return s[:max_length - 3] + "..."


# ── Phone ────────────────────────────────────────────────────────────

def phone_digits(value: Any) -> str:
    return re.sub(r"\D", "", str(value))


def _national(value: Any) -> Optional[str]:
    """10-digit US number, or None when the input isn't one."""
    digits = phone_digits(value)
    if len(digits) == 10:
        return digits
    if len(digits) == 11 and digits.startswith("1"):
        return digits[1:]
    return None


def phone_e164(value: Any) -> str:
    digits = phone_digits(value)
    if len(digits) == 10:
        return f"+1{digits}"
    return f"+{digits}"


def _phone_format(value: Any, pattern: str) -> str:
    national = _national(value)
    if not national:
        return phone_digits(value)
    return pattern.format(national[:3], national[3:6], national[6:])


# ── Date ─────────────────────────────────────────────────────────────

def _parse_date(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        # Epoch milliseconds
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    if isinstance(value, str):
        text = value.strip().replace("Z", "+00:00")
        for fmt in (None, "%m/%d/%Y", "%m/%d/%y"):
            try:
                return datetime.fromisoformat(text) if fmt is None else datetime.strptime(text, fmt)
            except ValueError:
                continue
    return None


def _date_format(value: Any, fmt: Callable[[datetime], Any], empty: Any = "") -> Any:
    parsed = _parse_date(value)
    return fmt(parsed) if parsed else empty


# ── Number ───────────────────────────────────────────────────────────

def _to_decimal(value: Any) -> Optional[Decimal]:
    try:
        return Decimal(str(value).replace("$", "").replace(",", "").strip())
    except (InvalidOperation, ValueError):
        return None


def to_currency(value: Any) -> str:
    num = _to_decimal(value)
    if num is None or num.is_nan():
        return "$0.00"
    return f"${num:,.2f}"


def to_integer(value: Any) -> Optional[int]:
    num = _to_decimal(value)
    return int(num) if num is not None and num.is_finite() else None


# ── State ────────────────────────────────────────────────────────────

STATE_ABBREVIATIONS = {
    "alabama": "AL", "alaska": "AK", "arizona": "AZ", "arkansas": "AR", "california": "CA",
    "colorado": "CO", "connecticut": "CT", "delaware": "DE", "florida": "FL", "georgia": "GA",
    "hawaii": "HI", "idaho": "ID", "illinois": "IL", "indiana": "IN", "iowa": "IA",
    "kansas": "KS", "kentucky": "KY", "louisiana": "LA", "maine": "ME", "maryland": "MD",
    "massachusetts": "MA", "michigan": "MI", "minnesota": "MN", "mississippi": "MS", "missouri": "MO",
    "montana": "MT", "nebraska": "NE", "nevada": "NV", "new hampshire": "NH", "new jersey": "NJ",
    "new mexico": "NM", "new york": "NY", "north carolina": "NC", "north dakota": "ND", "ohio": "OH",
    "oklahoma": "OK", "oregon": "OR", "pennsylvania": "PA", "rhode island": "RI", "south carolina": "SC",
    "south dakota": "SD", "tennessee": "TN", "texas": "TX", "utah": "UT", "vermont": "VT",
    "virginia": "VA", "washington": "WA", "west virginia": "WV", "wisconsin": "WI", "wyoming": "WY",
    "district of columbia": "DC", "puerto rico": "PR", "guam": "GU", "virgin islands": "VI",
}


def state_abbreviation(value: Any) -> str:
    s = str(value).strip()
    if len(s) == 2:
        return s.upper()
    return STATE_ABBREVIATIONS.get(s.lower(), s)


TRANSFORMS: Dict[str, Callable[[Any], Any]] = {
    "boolean.yesNo": lambda v: "Yes" if to_boolean(v) else "No",
    "boolean.yesNoLower": lambda v: "yes" if to_boolean(v) else "no",
    "boolean.YN": lambda v: "Y" if to_boolean(v) else "N",
    "boolean.oneZero": lambda v: 1 if to_boolean(v) else 0,
    "boolean.truefalse": lambda v: "true" if to_boolean(v) else "false",
    "string.uppercase": lambda v: str(v).upper(),
    "string.lowercase": lambda v: str(v).lower(),
    "string.titlecase": _titlecase,
    "string.trim": lambda v: str(v).strip(),
    "string.truncate50": lambda v: truncate(v, 50),
    "string.truncate100": lambda v: truncate(v, 100),
    "string.truncate255": lambda v: truncate(v, 255),
    "phone.digitsOnly": phone_digits,
    "phone.e164": phone_e164,
    "phone.dashed": lambda v: _phone_format(v, "{}-{}-{}"),
    "phone.dotted": lambda v: _phone_format(v, "{}.{}.{}"),
    "phone.parentheses": lambda v: _phone_format(v, "({}) {}-{}"),
    "date.isoDate": lambda v: _date_format(v, lambda d: d.strftime("%Y-%m-%d")),
    "date.usDate": lambda v: _date_format(v, lambda d: d.strftime("%m/%d/%Y")),
    "date.usDateShort": lambda v: _date_format(v, lambda d: f"{d.month}/{d.day}/{d.strftime('%y')}"),
    "date.timestamp": lambda v: _date_format(v, lambda d: int(d.timestamp()), 0),
    "date.iso8601": lambda v: _date_format(v, lambda d: d.isoformat()),
    "number.integer": to_integer,
    "number.twoDecimals": lambda v: f"{_to_decimal(v) or 0:.2f}",
    "number.currency": to_currency,
    "address.stateAbbrev": state_abbreviation,
}


def apply_transform(transform_id: str, value: Any) -> Any:
    """Run a transform by id; None passes through, unknown ids return the value unchanged."""
    if value is None:
        return None
    fn = TRANSFORMS.get(transform_id)
    if fn is None:
        logger.warning(f"Unknown transform '{transform_id}', returning original value")
        return value
    return fn(value)
