"""
Service-layer exceptions

Repository errors (EntityNotFoundError, DuplicateEntityError) are raised
through services unchanged; the API middleware maps both families to
HTTP responses.
"""


class ServiceError(Exception):
    """Base exception for service errors."""
    pass


class AccessDeniedError(ServiceError):
    """Raised when the caller has no access to a block, contact or surface."""
    pass


class BusinessRuleError(ServiceError):
    """Raised when an operation violates a business rule."""
    pass


class AuthenticationError(ServiceError):
    """Raised when credentials or an MFA code are rejected."""
    pass


class EncryptionError(Exception):
    """Raised when ciphertext cannot be decrypted."""
    pass
