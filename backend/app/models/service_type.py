from sqlalchemy import Column, Integer, String, Boolean, DateTime, JSON
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from app.core.database import Base


class ServiceType(Base):
    """A home-service category leads are collected for (windows, roofing, ...)."""
    __tablename__ = "service_types"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, unique=True, index=True, nullable=False)
    display_name = Column(String, nullable=False)
    form_schema = Column(JSON, nullable=True)  # dynamic quiz definition
    active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    buyer_configs = relationship("BuyerServiceConfig", back_populates="service_type")
    leads = relationship("Lead", back_populates="service_type")
