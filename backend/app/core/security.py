"""Admin authentication: bcrypt password hashing and JWT bearer tokens."""
import hmac
import logging
from datetime import datetime, timezone, timedelta
from typing import Optional

import bcrypt
import jwt
from fastapi import Depends, Request
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.database import get_db
from app.core.errors import AuthenticationError
from app.models.admin_user import AdminUser

logger = logging.getLogger(__name__)


# ── Password hashing ────────────────────────────────────────────────

def get_password_hash(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, hashed: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        return False


# ── JWT tokens ───────────────────────────────────────────────────────

def create_access_token(admin: AdminUser, expires_minutes: Optional[int] = None) -> str:
    expires = timedelta(minutes=expires_minutes or settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    payload = {
        "sub": str(admin.id),
        "email": admin.email,
        "role": admin.role,
        "iat": datetime.now(timezone.utc),
        "exp": datetime.now(timezone.utc) + expires,
    }
    return jwt.encode(payload, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_access_token(token: str) -> dict:
    try:
        return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise AuthenticationError("Token expired. Please log in again.")
    except jwt.InvalidTokenError:
        raise AuthenticationError("Invalid token.")


def authenticate_admin(db: Session, email: str, password: str) -> Optional[AdminUser]:
    admin = db.query(AdminUser).filter(AdminUser.email == email.lower()).first()
    if not admin or not admin.is_active:
        return None
    if not verify_password(password, admin.hashed_password):
        return None
    return admin


# ── Request dependencies ─────────────────────────────────────────────

def _bearer_token(request: Request) -> str:
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        raise AuthenticationError("Missing authorization token.")
    return auth_header.split(" ", 1)[1].strip()


def get_current_admin(request: Request, db: Session = Depends(get_db)) -> AdminUser:
    """Resolve the admin behind a JWT bearer token."""
    payload = decode_access_token(_bearer_token(request))
    try:
        admin_id = int(payload.get("sub"))
    except (TypeError, ValueError):
        raise AuthenticationError("Invalid token.")

    admin = db.query(AdminUser).filter(AdminUser.id == admin_id).first()
    if not admin or not admin.is_active:
        raise AuthenticationError("Admin not found or inactive.")
    return admin


def require_admin(request: Request, db: Session = Depends(get_db)) -> Optional[AdminUser]:
    """Allow either an admin JWT or the static ADMIN_API_KEY.

    Returns the AdminUser for JWT callers and None for API-key callers.
    """
    token = _bearer_token(request)
    if settings.ADMIN_API_KEY and hmac.compare_digest(
        token.encode("utf-8"), settings.ADMIN_API_KEY.encode("utf-8")
    ):
        return None
    return get_current_admin(request, db)
