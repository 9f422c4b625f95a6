"""Consumer lead intake: validation against the service type, scoring, audit."""
import logging
import re
from typing import Optional

from sqlalchemy.orm import Session

from app.core.errors import NotFoundError, ValidationError
from app.models.lead import ComplianceAuditLog, Lead, LeadStatus, Timeframe
from app.models.service_type import ServiceType

logger = logging.getLogger(__name__)

ZIP_CODE_RE = re.compile(r"^\d{5}(-\d{4})?$")

BASE_QUALITY_SCORE = 50
TRUSTEDFORM_BONUS = 10
JORNAYA_BONUS = 20
TCPA_BONUS = 5


def calculate_lead_quality_score(trusted_form_cert_url: Optional[str] = None,
                                 jornaya_lead_id: Optional[str] = None,
                                 tcpa_consent: bool = False) -> int:
    score = BASE_QUALITY_SCORE
    if trusted_form_cert_url:
        score += TRUSTEDFORM_BONUS
    if jornaya_lead_id:
        score += JORNAYA_BONUS
    if tcpa_consent:
        score += TCPA_BONUS
    return min(score, 100)


class LeadIntakeService:
    def __init__(self, db: Session):
        self.db = db

    def create_lead(self, service_type_id: int, form_data: dict, zip_code: str, owns_home: bool,
                    timeframe: str, compliance_data: Optional[dict] = None,
                    ip_address: Optional[str] = None, user_agent: Optional[str] = None) -> Lead:
        """Persist a PENDING lead plus its FORM_SUBMITTED audit entry in one commit."""
        if not ZIP_CODE_RE.match(zip_code or ""):
            raise ValidationError("Invalid ZIP code format", field="zipCode")
        if timeframe not in {t.value for t in Timeframe}:
            raise ValidationError(f"Invalid timeframe '{timeframe}'", field="timeframe")

        service_type = self.db.query(ServiceType).filter(ServiceType.id == service_type_id).first()
        if not service_type:
            raise NotFoundError("Service type not found", code="SERVICE_TYPE_NOT_FOUND")
        if not service_type.active:
            raise ValidationError("Service type is not currently accepting leads",
                                  code="SERVICE_TYPE_INACTIVE", field="serviceTypeId")

        compliance = dict(compliance_data or {})
        if ip_address:
            compliance.setdefault("ipAddress", ip_address)
        if user_agent:
            compliance.setdefault("userAgent", user_agent)

        lead = Lead(
            service_type_id=service_type_id,
            form_data=form_data or {},
            zip_code=zip_code,
            owns_home=owns_home,
            timeframe=timeframe,
            status=LeadStatus.PENDING,
            trusted_form_cert_url=compliance.get("trustedFormCertUrl"),
            trusted_form_cert_id=compliance.get("trustedFormCertId"),
            jornaya_lead_id=compliance.get("jornayaLeadId"),
            compliance_data=compliance,
            lead_quality_score=calculate_lead_quality_score(
                compliance.get("trustedFormCertUrl"),
                compliance.get("jornayaLeadId"),
                bool(compliance.get("tcpaConsent")),
            ),
        )
        self.db.add(lead)
        self.db.flush()

        self.db.add(ComplianceAuditLog(
            lead_id=lead.id,
            event_type="FORM_SUBMITTED",
            event_data={
                "serviceTypeId": service_type_id,
                "zipCode": zip_code,
                "trustedFormPresent": bool(lead.trusted_form_cert_url or lead.trusted_form_cert_id),
                "jornayaPresent": bool(lead.jornaya_lead_id),
                "tcpaConsent": bool(compliance.get("tcpaConsent")),
                "leadQualityScore": lead.lead_quality_score,
            },
            ip_address=ip_address,
            user_agent=user_agent,
        ))
        self.db.commit()
        self.db.refresh(lead)

        logger.info(f"Lead {lead.id} created for {service_type.name} in {zip_code} "
                    f"(quality {lead.lead_quality_score})")
        return lead
