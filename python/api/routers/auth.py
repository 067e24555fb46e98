"""
Authentication endpoints: password login, registration and TOTP MFA.

Login is two-step for users with MFA: the password check answers with
require_mfa_verification and the caller completes it via /verify-mfa.
"""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from api.dependencies import (
    get_audit_security_logger,
    get_password_hasher,
    get_totp_service,
    require_admin,
    verify_api_key,
)
from api.models import (
    ErrorResponse,
    LoginRequest,
    LoginResponse,
    RegisterRequest,
    SetupMfaRequest,
    SetupMfaResponse,
    UserInfo,
    VerifyMfaRequest,
)
from database.connection import get_db
from database.models import AuditActionType, User
from database.repositories import AuditRepository, UserRepository
from security_logger import SecurityLogger
from services.exceptions import AuthenticationError
from services.password_hasher import PasswordHasher
from services.totp import TotpService

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/auth",
    tags=["auth"],
    dependencies=[Depends(verify_api_key)],
    responses={401: {"model": ErrorResponse, "description": "Authentication failed"}},
)

INVALID_CREDENTIALS = "Invalid login or password"


def _authenticate(
    users: UserRepository,
    hasher: PasswordHasher,
    security_log: SecurityLogger,
    login: str,
    password: str,
    source: str,
) -> User:
    """Password check shared by login and MFA setup."""
    user = users.get_by_login(login)
    if user is None:
        security_log.log_login_failed(login, "unknown_user", source=source)
        raise AuthenticationError(INVALID_CREDENTIALS)
    if not user.is_active:
        security_log.log_login_failed(login, "inactive_user", source=source)
        raise AuthenticationError(INVALID_CREDENTIALS)
    if not hasher.verify_password(password, user.password_hash):
        security_log.log_login_failed(login, "invalid_password", source=source)
        raise AuthenticationError(INVALID_CREDENTIALS)
    return user


@router.post("/login", response_model=LoginResponse, summary="Password login")
def login(
    request: LoginRequest,
    db: Session = Depends(get_db),
    hasher: PasswordHasher = Depends(get_password_hasher),
    security_log: SecurityLogger = Depends(get_audit_security_logger),
):
    """Check the password and report the next step."""
    users = UserRepository(db)
    user = _authenticate(users, hasher, security_log, request.login, request.password, "auth.login")

    if user.is_first_login:
        return LoginResponse(require_mfa_setup=True, user_id=user.id)
    if user.mfa_enabled:
        return LoginResponse(require_mfa_verification=True, user_id=user.id)

    users.record_login(user)
    db.commit()
    logger.info(f"User {user.id} logged in")
    return LoginResponse(user_id=user.id, user=UserInfo.model_validate(user))


@router.post("/register", response_model=UserInfo, status_code=201, summary="Register a user")
def register(
    request: RegisterRequest,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
    hasher: PasswordHasher = Depends(get_password_hasher),
):
    """Create a user. The new user sets up MFA at first login."""
    user = UserRepository(db).create(
        login=request.login,
        password_hash=hasher.hash_password(request.password),
        role=request.role,
    )
    AuditRepository(db).log(
        user_id=admin.id,
        action=AuditActionType.CREATE,
        entity_type="User",
        entity_id=user.id,
        new_values={'Login': user.login, 'Role': user.role.value},
    )
    db.commit()
    logger.info(f"User {user.id} registered by admin {admin.id}")
    return UserInfo.model_validate(user)


@router.post("/setup-mfa", response_model=SetupMfaResponse, summary="Start MFA setup")
def setup_mfa(
    request: SetupMfaRequest,
    db: Session = Depends(get_db),
    hasher: PasswordHasher = Depends(get_password_hasher),
    totp: TotpService = Depends(get_totp_service),
    security_log: SecurityLogger = Depends(get_audit_security_logger),
):
    """Issue a new TOTP secret. MFA is enabled by the first successful verification."""
    users = UserRepository(db)
    user = _authenticate(users, hasher, security_log, request.login, request.password, "auth.setup_mfa")

    secret = totp.generate_secret()
    user.mfa_secret = secret
    if request.public_key:
        user.public_key = request.public_key
    user.mfa_enabled = False
    user.is_first_login = False
    db.commit()

    logger.info(f"MFA secret issued for user {user.id}")
    return SetupMfaResponse(
        mfa_secret=secret,
        qr_code_uri=totp.generate_qr_code_uri(secret, user.login),
    )


@router.post("/verify-mfa", response_model=UserInfo, summary="Verify an MFA code")
def verify_mfa(
    request: VerifyMfaRequest,
    db: Session = Depends(get_db),
    totp: TotpService = Depends(get_totp_service),
    security_log: SecurityLogger = Depends(get_audit_security_logger),
):
    """Complete login with a TOTP code."""
    users = UserRepository(db)
    user = users.get_by_login(request.login)
    if user is None or not user.is_active or not user.mfa_secret:
        security_log.log_mfa_failed(request.login, "mfa_not_configured")
        raise AuthenticationError("Invalid MFA code")

    if not totp.verify_code(user.mfa_secret, request.mfa_code):
        security_log.log_mfa_failed(request.login)
        raise AuthenticationError("Invalid MFA code")

    if not user.mfa_enabled:
        user.mfa_enabled = True
        security_log.log_mfa_enabled(user.login, user.id)

    users.record_login(user)
    db.commit()
    return UserInfo.model_validate(user)
