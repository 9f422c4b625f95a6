from app.models.admin_user import AdminUser
from app.models.service_type import ServiceType
from app.models.buyer import Buyer, BuyerType, BuyerServiceConfig, BuyerServiceZipCode
from app.models.lead import (
    Lead, LeadStatus, LeadDisposition, ChangeSource, LeadStatusHistory, Timeframe,
    Transaction, TransactionAction, TransactionStatus, LostReason,
    ComplianceAuditLog,
)
from app.models.location import ZipCodeMetadata

__all__ = [
    "AdminUser",
    "ServiceType",
    "Buyer",
    "BuyerType",
    "BuyerServiceConfig",
    "BuyerServiceZipCode",
    "Lead",
    "LeadStatus",
    "LeadDisposition",
    "ChangeSource",
    "LeadStatusHistory",
    "Timeframe",
    "Transaction",
    "TransactionAction",
    "TransactionStatus",
    "LostReason",
    "ComplianceAuditLog",
    "ZipCodeMetadata",
]
