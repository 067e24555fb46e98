"""
Kurator service layer.

Services encapsulate access control, soft delete and audit logging. They
flush but never commit; the API routers own the transaction.
"""

from services.exceptions import (
    ServiceError,
    AccessDeniedError,
    BusinessRuleError,
    AuthenticationError,
    EncryptionError,
)
from services.encryption import EncryptionService
from services.password_hasher import PasswordHasher
from services.totp import TotpService
from services.contact_service import ContactService
from services.interaction_service import InteractionService
from services.watchlist_service import WatchlistService
from services.dashboard_service import DashboardService

__all__ = [
    'ServiceError',
    'AccessDeniedError',
    'BusinessRuleError',
    'AuthenticationError',
    'EncryptionError',
    'EncryptionService',
    'PasswordHasher',
    'TotpService',
    'ContactService',
    'InteractionService',
    'WatchlistService',
    'DashboardService',
]
