"""Buyer integration settings built from the database.

The auction engine loads a fresh BuyerConfig for every participant at the
start of each auction and keeps it in the registry as the latest snapshot,
so PING/POST calls never query buyer rows. Admin edits therefore take
effect on the next auction in every process (web or worker).
"""
import logging
from typing import Dict, List, Optional

from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.encryption import decrypt_credentials
from app.models.buyer import Buyer, BuyerServiceConfig, BuyerType
from app.services.response_parser import validate_response_mapping

logger = logging.getLogger(__name__)


class BuyerAuthConfig(BaseModel):
    type: str = "none"  # apiKey, bearer, basic, none
    credentials: Dict[str, str] = Field(default_factory=dict)
    headers: Dict[str, str] = Field(default_factory=dict)


class ServiceConfig(BaseModel):
    service_type_id: int
    ping_url: Optional[str] = None
    post_url: Optional[str] = None
    ping_timeout_ms: int = 3000
    post_timeout_ms: int = 8000
    field_mappings: dict = Field(default_factory=dict)
    min_bid: float = 0.0
    max_bid: float = 999.99
    requires_trustedform: bool = False
    requires_jornaya: bool = False
    priority: int = 100
    active: bool = True


class BuyerConfig(BaseModel):
    buyer_id: int
    name: str
    type: BuyerType = BuyerType.CONTRACTOR
    api_url: Optional[str] = None
    auth: BuyerAuthConfig = Field(default_factory=BuyerAuthConfig)
    compliance: dict = Field(default_factory=dict)
    response_mapping: Optional[dict] = None
    webhook_secret: Optional[str] = None
    active: bool = True
    service_configs: Dict[int, ServiceConfig] = Field(default_factory=dict)


class BuyerConfigurationRegistry:
    """Holds BuyerConfig objects keyed by buyer id."""

    def __init__(self):
        self._configs: Dict[int, BuyerConfig] = {}

    def register(self, config: BuyerConfig):
        self._configs[config.buyer_id] = config
        logger.debug(f"Registered buyer {config.name} ({len(config.service_configs)} services)")

    def get(self, buyer_id: int) -> Optional[BuyerConfig]:
        return self._configs.get(buyer_id)

    def get_service_config(self, buyer_id: int, service_type_id: int) -> Optional[ServiceConfig]:
        config = self._configs.get(buyer_id)
        if not config:
            return None
        return config.service_configs.get(service_type_id)

    def get_buyers_for_service(self, service_type_id: int) -> List[BuyerConfig]:
        """Active buyers with an active config for the service, highest priority first."""
        matches = [
            c for c in self._configs.values()
            if c.active and service_type_id in c.service_configs
            and c.service_configs[service_type_id].active
        ]
        return sorted(matches, key=lambda c: c.service_configs[service_type_id].priority, reverse=True)

    def get_all_active(self) -> List[BuyerConfig]:
        return [c for c in self._configs.values() if c.active]

    def update(self, buyer_id: int, **updates) -> Optional[BuyerConfig]:
        config = self._configs.get(buyer_id)
        if not config:
            return None
        updated = config.model_copy(update=updates)
        self._configs[buyer_id] = updated
        return updated

    def remove(self, buyer_id: int):
        self._configs.pop(buyer_id, None)

    def supports_service(self, buyer_id: int, service_type_id: int) -> bool:
        service = self.get_service_config(buyer_id, service_type_id)
        return bool(service and service.active)

    def clear(self):
        self._configs.clear()


def _join(base: Optional[str], suffix: str) -> Optional[str]:
    if not base:
        return None
    return base.rstrip("/") + suffix


class DatabaseBuyerLoader:
    """Builds BuyerConfig objects from buyer and service config rows."""

    def __init__(self, db: Session):
        self.db = db

    def build_config(self, buyer: Buyer) -> BuyerConfig:
        """Raises ValueError (pydantic ValidationError included) for malformed stored settings."""
        auth_raw = buyer.auth_config or {}
        if not isinstance(auth_raw, dict):
            raise ValueError("auth_config must be an object")
        config = BuyerConfig(
            buyer_id=buyer.id,
            name=buyer.name,
            type=buyer.type,
            api_url=buyer.api_url,
            auth=BuyerAuthConfig(
                type=auth_raw.get("type") or "none",
                credentials=decrypt_credentials(auth_raw.get("credentials")),
                headers=auth_raw.get("headers") or {},
            ),
            compliance=buyer.compliance_config or {},
            response_mapping=validate_response_mapping(buyer.response_mapping),
            webhook_secret=buyer.webhook_secret,
            active=bool(buyer.active),
        )
        for row in buyer.service_configs:
            config.service_configs[row.service_type_id] = self._service_config(buyer, row)
        return config

    def _service_config(self, buyer: Buyer, row: BuyerServiceConfig) -> ServiceConfig:
        ping_template = row.ping_template or {}
        post_template = row.post_template or {}

        # Template timeouts are ms; buyer timeouts are seconds
        ping_timeout = ping_template.get("timeout") or (
            buyer.ping_timeout * 1000 if buyer.ping_timeout else settings.DEFAULT_PING_TIMEOUT_MS
        )
        post_timeout = post_template.get("timeout") or (
            buyer.post_timeout * 1000 if buyer.post_timeout else settings.DEFAULT_POST_TIMEOUT_MS
        )

        return ServiceConfig(
            service_type_id=row.service_type_id,
            ping_url=ping_template.get("url") or _join(buyer.api_url, "/ping"),
            post_url=post_template.get("url") or _join(buyer.api_url, "/post"),
            ping_timeout_ms=int(ping_timeout),
            post_timeout_ms=int(post_timeout),
            field_mappings=row.field_mappings or {},
            min_bid=float(row.min_bid or 0),
            max_bid=float(row.max_bid if row.max_bid is not None else 999.99),
            requires_trustedform=bool(row.requires_trustedform),
            requires_jornaya=bool(row.requires_jornaya),
            priority=int(ping_template.get("priority", 100)),
            active=bool(row.active),
        )

    def load_buyer(self, buyer_id: int) -> Optional[BuyerConfig]:
        buyer = self.db.query(Buyer).filter(Buyer.id == buyer_id).first()
        if not buyer:
            return None
        return self.build_config(buyer)


_registry = BuyerConfigurationRegistry()


def get_buyer_registry() -> BuyerConfigurationRegistry:
    return _registry
