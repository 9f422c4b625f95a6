from pydantic import Field
from typing import Optional
from datetime import datetime

from app.schemas.common import CamelModel


class ServiceTypeBase(CamelModel):
    name: str = Field(..., min_length=1, max_length=100, pattern=r"^[a-z0-9_-]+$")
    display_name: str = Field(..., min_length=1, max_length=200)
    form_schema: Optional[dict] = None
    active: bool = True


class ServiceTypeCreate(ServiceTypeBase):
    pass


class ServiceTypeUpdate(CamelModel):
    display_name: Optional[str] = Field(None, min_length=1, max_length=200)
    form_schema: Optional[dict] = None
    active: Optional[bool] = None


class ServiceTypeInDB(ServiceTypeBase):
    id: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
