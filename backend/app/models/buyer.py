from sqlalchemy import (
    Column, Integer, String, Numeric, DateTime, ForeignKey, Enum, Boolean, JSON, UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from app.core.database import Base
import enum


class BuyerType(str, enum.Enum):
    CONTRACTOR = "CONTRACTOR"
    NETWORK = "NETWORK"


class Buyer(Base):
    """A lead buyer: either a lead network reached over PING/POST or a contractor."""
    __tablename__ = "buyers"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, unique=True, index=True, nullable=False)
    type = Column(Enum(BuyerType), default=BuyerType.CONTRACTOR, nullable=False)

    # Integration
    api_url = Column(String, nullable=True)
    auth_config = Column(JSON, nullable=True)  # {"type": "apiKey", "credentials": {...}, "headers": {...}}
    ping_timeout = Column(Integer, default=30)  # seconds
    post_timeout = Column(Integer, default=60)  # seconds
    webhook_secret = Column(String, nullable=True)
    compliance_config = Column(JSON, nullable=True)  # {"requireTcpaConsent": true}
    response_mapping = Column(JSON, nullable=True)  # overrides for response parsing

    active = Column(Boolean, default=True, nullable=False)

    # Contacts
    contact_name = Column(String, nullable=True)
    contact_email = Column(String, nullable=True)
    contact_phone = Column(String, nullable=True)
    business_email = Column(String, nullable=True)
    business_phone = Column(String, nullable=True)
    additional_contacts = Column(JSON, nullable=True)  # [{"name", "email", "phone", "role"}]

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    # Relationships
    service_configs = relationship("BuyerServiceConfig", back_populates="buyer")
    zip_codes = relationship("BuyerServiceZipCode", back_populates="buyer")
    transactions = relationship("Transaction", back_populates="buyer")


class BuyerServiceConfig(Base):
    """How a buyer wants leads of one service type: templates, bid bounds, compliance."""
    __tablename__ = "buyer_service_configs"
    __table_args__ = (
        UniqueConstraint("buyer_id", "service_type_id", name="uq_buyer_service_config"),
    )

    id = Column(Integer, primary_key=True, index=True)
    buyer_id = Column(Integer, ForeignKey("buyers.id"), nullable=False, index=True)
    service_type_id = Column(Integer, ForeignKey("service_types.id"), nullable=False, index=True)

    # Outbound templates ({"url": ..., "timeout": ms}) and field mappings
    ping_template = Column(JSON, default=dict)
    post_template = Column(JSON, default=dict)
    field_mappings = Column(JSON, default=dict)

    # Compliance requirements
    requires_trustedform = Column(Boolean, default=False)
    requires_jornaya = Column(Boolean, default=False)

    # Bid bounds
    min_bid = Column(Numeric(10, 2), default=0, nullable=False)
    max_bid = Column(Numeric(10, 2), default=999.99, nullable=False)

    active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    buyer = relationship("Buyer", back_populates="service_configs")
    service_type = relationship("ServiceType", back_populates="buyer_configs")


class BuyerServiceZipCode(Base):
    """Zip coverage ("service zone") of a buyer for one service type."""
    __tablename__ = "buyer_service_zip_codes"
    __table_args__ = (
        UniqueConstraint("buyer_id", "service_type_id", "zip_code", name="uq_buyer_service_zip"),
    )

    id = Column(Integer, primary_key=True, index=True)
    buyer_id = Column(Integer, ForeignKey("buyers.id"), nullable=False, index=True)
    service_type_id = Column(Integer, ForeignKey("service_types.id"), nullable=False, index=True)
    zip_code = Column(String(10), nullable=False, index=True)

    active = Column(Boolean, default=True, nullable=False)
    priority = Column(Integer, default=100, nullable=False)  # 1-1000
    max_leads_per_day = Column(Integer, nullable=True)

    # Optional overrides of the service config bid bounds
    min_bid = Column(Numeric(10, 2), nullable=True)
    max_bid = Column(Numeric(10, 2), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    buyer = relationship("Buyer", back_populates="zip_codes")
    service_type = relationship("ServiceType")
