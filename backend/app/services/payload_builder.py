"""Build PING and POST bodies for a buyer from a lead and its field mappings."""
import logging
from typing import Any, Dict, List, Optional

from app.services.transforms import apply_transform

logger = logging.getLogger(__name__)

# Consumer contact details are only sent to the auction winner
PII_FIELDS = {
    "firstName", "lastName", "first_name", "last_name", "fullName", "name",
    "email", "phone", "phoneNumber", "phone_number", "address", "streetAddress",
    "street_address",
}

COMPLIANCE_FIELDS = {
    "trustedFormCertUrl": ["xxTrustedFormCertUrl", "trusted_form_cert_url"],
    "trustedFormCertId": ["xxTrustedFormToken", "trusted_form_token"],
    "jornayaLeadId": ["universal_leadid", "jornaya_leadid", "leadid"],
    "tcpaConsent": ["tcpa_consent"],
    "tcpaTimestamp": ["consent_timestamp"],
    "ipAddress": ["ip_address"],
    "userAgent": ["user_agent"],
}


class PayloadBuildError(Exception):
    """Raised when a required mapped field has no value and no default."""

    def __init__(self, errors: List[dict]):
        self.errors = errors
        fields = ", ".join(e["sourceField"] for e in errors)
        super().__init__(f"Missing required fields: {fields}")


def get_nested(data: Any, path: str) -> Any:
    current = data
    for part in path.split("."):
        if not isinstance(current, dict):
            return None
        current = current.get(part)
        if current is None:
            return None
    return current


def set_nested(data: dict, path: str, value: Any):
    parts = path.split(".")
    current = data
    for part in parts[:-1]:
        nxt = current.get(part)
        if not isinstance(nxt, dict):
            nxt = {}
            current[part] = nxt
        current = nxt
    current[parts[-1]] = value


def lead_context(lead, service_type_name: Optional[str] = None) -> Dict[str, Any]:
    """Flatten a Lead row into the dict field mappings read from."""
    compliance = dict(lead.compliance_data or {})
    if lead.trusted_form_cert_url:
        compliance.setdefault("trustedFormCertUrl", lead.trusted_form_cert_url)
    if lead.trusted_form_cert_id:
        compliance.setdefault("trustedFormCertId", lead.trusted_form_cert_id)
    if lead.jornaya_lead_id:
        compliance.setdefault("jornayaLeadId", lead.jornaya_lead_id)

    return {
        "leadId": lead.id,
        "serviceTypeId": lead.service_type_id,
        "serviceType": service_type_name,
        "zipCode": lead.zip_code,
        "ownsHome": lead.owns_home,
        "timeframe": lead.timeframe,
        "formData": dict(lead.form_data or {}),
        "complianceData": compliance,
        "leadQualityScore": lead.lead_quality_score,
        "createdAt": lead.created_at.isoformat() if lead.created_at else None,
    }


def _resolve(context: dict, source: str) -> Any:
    value = get_nested(context, source)
    if value is None and "." not in source:
        value = get_nested(context.get("formData") or {}, source)
    return value


def apply_field_mappings(config: Optional[dict], context: dict, payload_type: str) -> dict:
    """Apply ``{"mappings": [...], "staticFields": {...}}`` for "ping" or "post"."""
    config = config or {}
    mappings = sorted(config.get("mappings") or [], key=lambda m: m.get("order", 0))
    include_key = "includeInPing" if payload_type == "ping" else "includeInPost"

    payload: dict = {}
    errors = []
    for mapping in mappings:
        if not mapping.get(include_key, True):
            continue
        source = mapping.get("sourceField")
        target = mapping.get("targetField") or source
        if not source:
            continue

        value = _resolve(context, source)
        if value is None:
            if mapping.get("defaultValue") is not None:
                value = mapping["defaultValue"]
            elif mapping.get("required"):
                errors.append({"sourceField": source, "message": "required field missing"})
                continue
            else:
                continue

        # valueMap runs before the transform ("within_1_month" -> "1-3 Months")
        value_map = mapping.get("valueMap")
        if value_map and isinstance(value, str) and value in value_map:
            value = value_map[value]

        if mapping.get("transform"):
            value = apply_transform(mapping["transform"], value)

        set_nested(payload, target, value)

    if errors:
        raise PayloadBuildError(errors)

    static_key = "pingStaticFields" if payload_type == "ping" else "postStaticFields"
    for key, value in (config.get(static_key) or config.get("staticFields") or {}).items():
        set_nested(payload, key, value)
    return payload


def _default_payload(context: dict, payload_type: str) -> dict:
    form_data = context.get("formData") or {}
    if payload_type == "ping":
        form_data = {k: v for k, v in form_data.items() if k not in PII_FIELDS}
    return {
        "leadId": context.get("leadId"),
        "serviceType": context.get("serviceType"),
        "zipCode": context.get("zipCode"),
        "ownsHome": context.get("ownsHome"),
        "timeframe": context.get("timeframe"),
        "formData": form_data,
    }


def _add_compliance_fields(payload: dict, context: dict):
    compliance = context.get("complianceData") or {}
    for source, targets in COMPLIANCE_FIELDS.items():
        value = compliance.get(source)
        if value is None:
            continue
        for target in targets:
            payload.setdefault(target, value)


def build_ping_payload(context: dict, field_mappings: Optional[dict] = None) -> dict:
    if field_mappings and field_mappings.get("mappings"):
        payload = apply_field_mappings(field_mappings, context, "ping")
        for key in PII_FIELDS:
            payload.pop(key, None)
    else:
        payload = _default_payload(context, "ping")
    _add_compliance_fields(payload, context)
    return payload


def build_post_payload(context: dict, field_mappings: Optional[dict] = None,
                       ping_token: Optional[str] = None,
                       buyer_lead_id: Optional[str] = None) -> dict:
    if field_mappings and field_mappings.get("mappings"):
        payload = apply_field_mappings(field_mappings, context, "post")
    else:
        payload = _default_payload(context, "post")
    _add_compliance_fields(payload, context)
    if ping_token:
        payload["pingToken"] = ping_token
    if buyer_lead_id:
        payload["buyerLeadId"] = buyer_lead_id
    return payload
