"""
FastAPI dependencies for the Kurator API

Caller identity comes from an upstream gateway: it authenticates the user
and forwards the user id in X-User-Id. When API_KEY is set, the gateway
must also present it in X-API-Key.
"""

import os
import logging
from functools import lru_cache
from typing import Optional, Tuple

from fastapi import Depends, Header, HTTPException, Query, Request, Security
from fastapi.security import APIKeyHeader
from sqlalchemy.orm import Session

from config_manager import ConfigManager, get_config
from database.connection import get_db
from database.models import User, UserRole
from security_logger import SecurityLogger, get_security_logger
from services.contact_service import ContactService
from services.dashboard_service import DashboardService
from services.encryption import EncryptionService
from services.interaction_service import InteractionService
from services.password_hasher import PasswordHasher
from services.totp import TotpService
from services.watchlist_service import WatchlistService

logger = logging.getLogger(__name__)

# API Key security scheme
api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


# ============================================
# CONFIGURATION & SHARED SERVICES
# ============================================

def get_app_config() -> ConfigManager:
    """Dependency to get the config instance."""
    return get_config(os.getenv("CONFIG_PATH") or None)


def get_audit_security_logger() -> SecurityLogger:
    return get_security_logger(log_dir=os.getenv("LOG_DIR", "logs"))


@lru_cache(maxsize=4)
def _encryption_service(key_string: str) -> EncryptionService:
    return EncryptionService(key_string)


def get_encryption_service(config: ConfigManager = Depends(get_app_config)) -> EncryptionService:
    """Raises ConfigurationError (503) when no encryption key is configured."""
    return _encryption_service(config.security.encryption_key)


def get_password_hasher(config: ConfigManager = Depends(get_app_config)) -> PasswordHasher:
    return PasswordHasher(rounds=config.security.bcrypt_rounds)


def get_totp_service(config: ConfigManager = Depends(get_app_config)) -> TotpService:
    security = config.security
    return TotpService(
        issuer=security.totp_issuer,
        digits=security.totp_digits,
        period=security.totp_period,
        valid_window=security.totp_valid_window
    )


def get_page_params(
    page: int = Query(1, ge=1, description="1-based page number"),
    page_size: Optional[int] = Query(None, ge=1, description="Items per page"),
    config: ConfigManager = Depends(get_app_config),
) -> Tuple[int, int]:
    """Page and page size, defaulted and capped by the paging configuration."""
    size = page_size or config.paging.default_page_size
    return page, min(size, config.paging.max_page_size)


# ============================================
# CALLER IDENTITY
# ============================================

async def verify_api_key(
    request: Request,
    api_key: Optional[str] = Security(api_key_header),
    security_log: SecurityLogger = Depends(get_audit_security_logger),
) -> str:
    """Verify the gateway API key.

    If API_KEY environment variable is not set, the check is disabled.
    """
    expected = os.getenv("API_KEY", "")
    if not expected:
        return "dev-mode"

    if not api_key:
        security_log.log_authentication_required(request.url.path, "missing_api_key")
        raise HTTPException(
            status_code=401, detail="Missing API key. Provide X-API-Key header."
        )

    if api_key != expected:
        security_log.log_access_denied(None, request.url.path, "invalid_api_key")
        raise HTTPException(status_code=403, detail="Invalid API key")

    return api_key


def get_current_user(
    request: Request,
    x_user_id: Optional[str] = Header(default=None, alias="X-User-Id"),
    _api_key: str = Depends(verify_api_key),
    db: Session = Depends(get_db),
    security_log: SecurityLogger = Depends(get_audit_security_logger),
) -> User:
    """Resolve X-User-Id to an active user, else 401."""
    if not x_user_id or not x_user_id.strip().isdigit():
        security_log.log_authentication_required(request.url.path, "missing_user_id")
        raise HTTPException(status_code=401, detail="Authentication required")

    user = db.get(User, int(x_user_id))
    if user is None or not user.is_active:
        security_log.log_authentication_required(request.url.path, "unknown_or_inactive_user")
        raise HTTPException(status_code=401, detail="Authentication required")

    request.state.user_id = user.id
    return user


def require_roles(*roles: UserRole):
    """Dependency factory: the current user must hold one of the roles (else 403)."""

    def checker(
        request: Request,
        user: User = Depends(get_current_user),
        security_log: SecurityLogger = Depends(get_audit_security_logger),
    ) -> User:
        if user.role not in roles:
            security_log.log_access_denied(user.id, request.url.path, f"role_{user.role.value}")
            raise HTTPException(status_code=403, detail="Insufficient permissions")
        return user

    return checker


require_admin = require_roles(UserRole.ADMIN)
require_curator = require_roles(UserRole.ADMIN, UserRole.CURATOR)
require_analyst = require_roles(UserRole.ADMIN, UserRole.THREAT_ANALYST)


# ============================================
# SERVICES
# ============================================

def get_contact_service(
    db: Session = Depends(get_db),
    encryption: EncryptionService = Depends(get_encryption_service),
) -> ContactService:
    return ContactService(db, encryption)


def get_interaction_service(
    db: Session = Depends(get_db),
    encryption: EncryptionService = Depends(get_encryption_service),
) -> InteractionService:
    return InteractionService(db, encryption)


def get_watchlist_service(db: Session = Depends(get_db)) -> WatchlistService:
    return WatchlistService(db)


def get_dashboard_service(
    db: Session = Depends(get_db),
    encryption: EncryptionService = Depends(get_encryption_service),
    config: ConfigManager = Depends(get_app_config),
) -> DashboardService:
    return DashboardService(db, encryption, config.dashboard)
