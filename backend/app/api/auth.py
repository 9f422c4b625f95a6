"""Admin login and session lookup."""
import logging
from datetime import datetime, timezone
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.database import get_db
from app.core.errors import AuthenticationError, success_response
from app.core.security import authenticate_admin, create_access_token, get_current_admin
from app.models.admin_user import AdminUser
from app.schemas.admin_user import AdminLogin, AdminUserInDB, Token

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/auth/admin", tags=["auth"])


@router.post("/login")
def login(data: AdminLogin, db: Session = Depends(get_db)):
    """Exchange email + password for a bearer token."""
    admin = authenticate_admin(db, data.email, data.password)
    if not admin:
        logger.warning(f"Failed admin login for {data.email}")
        raise AuthenticationError("Invalid email or password.", code="INVALID_CREDENTIALS")

    admin.last_login_at = datetime.now(timezone.utc)
    db.commit()
    db.refresh(admin)

    token = Token(
        access_token=create_access_token(admin),
        expires_in=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        admin=AdminUserInDB.model_validate(admin),
    )
    logger.info(f"Admin {admin.email} logged in")
    return success_response(token.to_json())


@router.get("/me")
def me(admin: AdminUser = Depends(get_current_admin)):
    return success_response(AdminUserInDB.model_validate(admin).to_json())
