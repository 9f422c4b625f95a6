from pydantic import Field, HttpUrl, model_validator
from typing import Dict, Optional, List, Literal
from datetime import datetime

from app.models.buyer import BuyerType
from app.schemas.common import CamelModel
from app.services.response_parser import ResponseMapping

ZIP_PATTERN = r"^\d{5}(-\d{4})?$"


# ── Buyers ───────────────────────────────────────────────────────────

class AuthConfig(CamelModel):
    type: Literal["apiKey", "bearer", "basic", "none"] = "none"
    credentials: Dict[str, str] = Field(default_factory=dict)
    headers: Dict[str, str] = Field(default_factory=dict)


class BuyerBase(CamelModel):
    name: str = Field(..., min_length=1, max_length=200)
    type: BuyerType = BuyerType.CONTRACTOR
    api_url: Optional[HttpUrl] = None
    ping_timeout: int = Field(default=30, ge=1, le=300)
    post_timeout: int = Field(default=60, ge=1, le=300)
    active: bool = True
    contact_name: Optional[str] = None
    contact_email: Optional[str] = None
    contact_phone: Optional[str] = None
    business_email: Optional[str] = None
    business_phone: Optional[str] = None
    compliance_config: Optional[dict] = None
    response_mapping: Optional[ResponseMapping] = None


class BuyerCreate(BuyerBase):
    auth_config: AuthConfig = Field(default_factory=AuthConfig)


class BuyerUpdate(CamelModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    type: Optional[BuyerType] = None
    api_url: Optional[HttpUrl] = None
    auth_config: Optional[AuthConfig] = None
    ping_timeout: Optional[int] = Field(None, ge=1, le=300)
    post_timeout: Optional[int] = Field(None, ge=1, le=300)
    active: Optional[bool] = None
    contact_name: Optional[str] = None
    contact_email: Optional[str] = None
    contact_phone: Optional[str] = None
    business_email: Optional[str] = None
    business_phone: Optional[str] = None
    compliance_config: Optional[dict] = None
    response_mapping: Optional[ResponseMapping] = None


class BuyerInDB(CamelModel):
    id: int
    name: str
    type: BuyerType
    api_url: Optional[str] = None
    auth_type: str = "none"
    ping_timeout: Optional[int] = None
    post_timeout: Optional[int] = None
    active: bool
    contact_name: Optional[str] = None
    contact_email: Optional[str] = None
    contact_phone: Optional[str] = None
    business_email: Optional[str] = None
    business_phone: Optional[str] = None
    compliance_config: Optional[dict] = None
    response_mapping: Optional[dict] = None
    has_webhook_secret: bool = False
    service_config_count: int = 0
    zip_code_count: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


# ── Service configs ──────────────────────────────────────────────────

def _check_bid_range(min_bid, max_bid):
    if min_bid is not None and max_bid is not None and min_bid >= max_bid:
        raise ValueError("minBid must be less than maxBid")


class ServiceConfigCreate(CamelModel):
    buyer_id: int
    service_type_id: int
    ping_template: dict = Field(default_factory=dict)
    post_template: dict = Field(default_factory=dict)
    field_mappings: dict = Field(default_factory=dict)
    requires_trustedform: bool = False
    requires_jornaya: bool = False
    min_bid: float = Field(default=0, ge=0)
    max_bid: float = Field(default=999.99, ge=0)
    active: bool = True


class ServiceConfigUpdate(CamelModel):
    ping_template: Optional[dict] = None
    post_template: Optional[dict] = None
    field_mappings: Optional[dict] = None
    requires_trustedform: Optional[bool] = None
    requires_jornaya: Optional[bool] = None
    min_bid: Optional[float] = Field(None, ge=0)
    max_bid: Optional[float] = Field(None, ge=0)
    active: Optional[bool] = None


class ServiceConfigInDB(CamelModel):
    id: int
    buyer_id: int
    service_type_id: int
    ping_template: Optional[dict] = None
    post_template: Optional[dict] = None
    field_mappings: Optional[dict] = None
    requires_trustedform: bool
    requires_jornaya: bool
    min_bid: float
    max_bid: float
    active: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


# ── Service zones ────────────────────────────────────────────────────

class ServiceZoneCreate(CamelModel):
    buyer_id: int
    service_type_id: int
    zip_code: Optional[str] = Field(None, pattern=ZIP_PATTERN)
    zip_codes: Optional[List[str]] = Field(None, min_length=1, max_length=1000)
    active: bool = True
    priority: int = Field(default=100, ge=1, le=1000)
    max_leads_per_day: Optional[int] = Field(None, ge=0)
    min_bid: Optional[float] = Field(None, ge=0)
    max_bid: Optional[float] = Field(None, ge=0)

    @model_validator(mode="after")
    def check_zip_codes(self):
        if not self.zip_code and not self.zip_codes:
            raise ValueError("zipCode or zipCodes is required")
        _check_bid_range(self.min_bid, self.max_bid)
        return self


class ServiceZoneUpdate(CamelModel):
    active: Optional[bool] = None
    priority: Optional[int] = Field(None, ge=1, le=1000)
    max_leads_per_day: Optional[int] = Field(None, ge=0)
    min_bid: Optional[float] = Field(None, ge=0)
    max_bid: Optional[float] = Field(None, ge=0)


class ServiceZoneDelete(CamelModel):
    ids: Optional[List[int]] = None
    buyer_id: Optional[int] = None
    service_type_id: Optional[int] = None
    zip_codes: Optional[List[str]] = None


class ServiceZoneInDB(CamelModel):
    id: int
    buyer_id: int
    service_type_id: int
    zip_code: str
    active: bool
    priority: int
    max_leads_per_day: Optional[int] = None
    min_bid: Optional[float] = None
    max_bid: Optional[float] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
