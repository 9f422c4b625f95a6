from sqlalchemy import Column, Integer, String, Boolean, Float, DateTime
from sqlalchemy.sql import func
from app.core.database import Base


class ZipCodeMetadata(Base):
    """Reference data for US zip codes, used by location search and zone filters."""
    __tablename__ = "zip_code_metadata"

    id = Column(Integer, primary_key=True, index=True)
    zip_code = Column(String(10), unique=True, index=True, nullable=False)
    city = Column(String, nullable=False, index=True)
    state = Column(String(2), nullable=False, index=True)
    county = Column(String, nullable=True)
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)
    timezone = Column(String, nullable=True)
    active = Column(Boolean, default=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
