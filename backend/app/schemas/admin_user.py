from pydantic import EmailStr
from typing import Optional
from datetime import datetime

from app.schemas.common import CamelModel


class AdminLogin(CamelModel):
    email: EmailStr
    password: str


class AdminUserInDB(CamelModel):
    id: int
    email: str
    full_name: Optional[str] = None
    role: str
    is_active: bool
    last_login_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class Token(CamelModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    admin: AdminUserInDB
