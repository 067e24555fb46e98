"""
BCrypt password hashing.
"""

import logging

import bcrypt

logger = logging.getLogger(__name__)

# BCrypt only uses the first 72 bytes of a password
MAX_PASSWORD_BYTES = 72


def _password_bytes(password: str) -> bytes:
    return password.encode('utf-8')[:MAX_PASSWORD_BYTES]


class PasswordHasher:
    """Salted BCrypt hashes with a configurable work factor."""

    def __init__(self, rounds: int = 12):
        self.rounds = rounds

    def hash_password(self, password: str) -> str:
        """
        Hash a password with a fresh salt.

        Raises:
            ValueError: If the password is empty
        """
        if not password:
            raise ValueError("Password must not be empty")
        hashed = bcrypt.hashpw(_password_bytes(password), bcrypt.gensalt(rounds=self.rounds))
        return hashed.decode('ascii')

    def verify_password(self, password: str, password_hash: str) -> bool:
        """Check a password against a hash. Malformed hashes never match."""
        if not password or not password_hash:
            return False
        try:
            return bcrypt.checkpw(_password_bytes(password), password_hash.encode('utf-8'))
        except ValueError:
            logger.warning("Stored password hash is malformed")
            return False
