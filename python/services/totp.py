"""
TOTP (RFC 6238) multi-factor authentication.
"""

import logging
import re
from urllib.parse import quote

import pyotp

logger = logging.getLogger(__name__)


class TotpService:
    """Generates secrets and provisioning URIs, and verifies codes."""

    def __init__(
        self,
        issuer: str = "KURATOR",
        digits: int = 6,
        period: int = 30,
        valid_window: int = 1
    ):
        self.issuer = issuer
        self.digits = digits
        self.period = period
        self.valid_window = valid_window
        self._code_pattern = re.compile(rf"[0-9]{{{digits}}}")

    def generate_secret(self) -> str:
        """20 random bytes, base32 encoded (32 characters)."""
        return pyotp.random_base32(length=32)

    def generate_qr_code_uri(self, secret: str, login: str) -> str:
        """otpauth:// URI for authenticator apps."""
        issuer = quote(self.issuer, safe='')
        account = quote(login, safe='')
        return (
            f"otpauth://totp/{issuer}:{account}"
            f"?secret={secret}&issuer={issuer}&digits={self.digits}&period={self.period}"
        )

    def verify_code(self, secret: str, code: str) -> bool:
        """
        Verify a code against the secret, accepting the configured window
        of steps on either side. Never raises.
        """
        if not secret or not code:
            return False

        code = code.replace(" ", "").strip()
        if not self._code_pattern.fullmatch(code):
            return False

        try:
            totp = pyotp.TOTP(secret, digits=self.digits, interval=self.period)
            return totp.verify(code, valid_window=self.valid_window)
        except (ValueError, TypeError) as e:
            logger.warning(f"TOTP verification failed on malformed secret: {type(e).__name__}")
            return False
