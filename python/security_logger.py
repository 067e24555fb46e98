"""
Security event log for Kurator.

Failed logins, failed or first-time MFA, missing caller identity and access
denials are written as one JSON object per line to a dedicated ``security``
logger (and ``security.log``). Events carry the X-Request-ID of the request
that produced them, bound by the request logging middleware.

Only logins, user ids, paths and short reason codes reach this module.
Passwords, MFA codes and contact data never do.
"""

import json
import logging
from contextvars import ContextVar, Token
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from log_utils import sanitize_for_logging


class SecurityEventType(str, Enum):
    LOGIN_FAILED = "LOGIN_FAILED"
    MFA_FAILED = "MFA_FAILED"
    MFA_ENABLED = "MFA_ENABLED"
    ACCESS_DENIED = "ACCESS_DENIED"
    AUTHENTICATION_REQUIRED = "AUTHENTICATION_REQUIRED"


_request_context: ContextVar[Tuple[str, str]] = ContextVar("security_request_context", default=("", ""))


def bind_request_context(request_id: str, source_ip: str = "") -> Token:
    """Attach a request id and client address to events logged in this context."""
    return _request_context.set((request_id, source_ip))


def reset_request_context(token: Token) -> None:
    _request_context.reset(token)


@dataclass
class SecurityEvent:
    event_type: str
    severity: str
    login: str = ""
    reason: str = ""
    resource: str = ""
    source: str = ""
    request_id: str = ""
    user_id: str = ""
    source_ip: str = ""
    context: Dict[str, Any] = field(default_factory=dict)
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    @property
    def additional_context(self) -> Dict[str, Any]:
        return self.context

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False)


def _clip(text: Any, max_length: int) -> str:
    """Single-line, control-free text, marked when cut short."""
    if text is None or text == "":
        return ""
    clean = sanitize_for_logging(str(text), max_length=max_length + 1)
    if len(clean) > max_length:
        return clean[:max_length] + "...(truncated)"
    return clean


def _clean_context(context: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    if not context:
        return {}

    def clean(value):
        if value is None or isinstance(value, (bool, int, float)):
            return value
        if isinstance(value, dict):
            return _clean_context(value)
        if isinstance(value, (list, tuple)):
            return [clean(item) for item in value]
        return _clip(value, 200)

    return {(_clip(key, 100) or "unknown"): clean(value) for key, value in context.items()}


class SecurityLogger:
    """Writes SecurityEvents to the ``security`` logger."""

    def __init__(
        self,
        log_dir: str = "logs",
        log_level: int = logging.INFO,
        enable_console: bool = False,
        enable_file: bool = True
    ):
        self.log_dir = Path(log_dir)
        self.logger = logging.getLogger('security')
        self.logger.setLevel(log_level)
        self.logger.handlers.clear()
        # security.log only; keep events out of the application log
        self.logger.propagate = False

        formatter = logging.Formatter('%(asctime)s - SECURITY - %(levelname)s - %(message)s')
        handlers = []
        if enable_file:
            self.log_dir.mkdir(parents=True, exist_ok=True)
            handlers.append(logging.FileHandler(self.log_dir / "security.log", encoding='utf-8'))
        if enable_console:
            handlers.append(logging.StreamHandler())
        for handler in handlers:
            handler.setFormatter(formatter)
            self.logger.addHandler(handler)

    def log_security_event(
        self,
        event_type: str,
        severity: str = "WARNING",
        login: str = "",
        reason: str = "",
        resource: str = "",
        source: str = "",
        user_id: Any = None,
        additional_context: Optional[Dict[str, Any]] = None
    ) -> SecurityEvent:
        """
        Sanitize and write one event.

        Args:
            event_type: a SecurityEventType value
            severity: logging level name
            login: login the event concerns, if any
            reason: short reason code such as ``invalid_password``
            resource: request path
            source: code location that raised the event
            user_id: caller id, if known
            additional_context: extra key/values, sanitized recursively

        Returns:
            The event as written
        """
        request_id, source_ip = _request_context.get()
        event = SecurityEvent(
            event_type=str(getattr(event_type, 'value', event_type)),
            severity=severity.upper(),
            login=_clip(login, 100),
            reason=_clip(reason, 200),
            resource=_clip(resource, 200),
            source=source,
            request_id=request_id,
            user_id="" if user_id is None else str(user_id),
            source_ip=source_ip,
            context=_clean_context(additional_context),
        )
        self.logger.log(getattr(logging, event.severity, logging.WARNING), event.to_json())
        return event

    def log_login_failed(self, login: str, reason: str, source: str = "auth.login") -> SecurityEvent:
        return self.log_security_event(SecurityEventType.LOGIN_FAILED, login=login, reason=reason, source=source)

    def log_mfa_failed(self, login: str, reason: str = "invalid_code") -> SecurityEvent:
        return self.log_security_event(
            SecurityEventType.MFA_FAILED, login=login, reason=reason, source="auth.verify_mfa"
        )

    def log_mfa_enabled(self, login: str, user_id: int) -> SecurityEvent:
        return self.log_security_event(
            SecurityEventType.MFA_ENABLED, severity="INFO", login=login, source="auth.verify_mfa", user_id=user_id
        )

    def log_access_denied(self, user_id: Any, resource: str, reason: str = "") -> SecurityEvent:
        """Wrong role, block outside the caller's assignments, or a bad API key."""
        return self.log_security_event(
            SecurityEventType.ACCESS_DENIED, user_id=user_id, resource=resource, reason=reason,
            source="access_control"
        )

    def log_authentication_required(self, resource: str, reason: str) -> SecurityEvent:
        return self.log_security_event(
            SecurityEventType.AUTHENTICATION_REQUIRED, resource=resource, reason=reason, source="access_control"
        )


_security_logger: Optional[SecurityLogger] = None


def get_security_logger(
    log_dir: str = "logs",
    enable_console: bool = False,
    enable_file: bool = True
) -> SecurityLogger:
    """Process-wide SecurityLogger; arguments only apply on first call."""
    global _security_logger
    if _security_logger is None:
        _security_logger = SecurityLogger(
            log_dir=log_dir,
            enable_console=enable_console,
            enable_file=enable_file
        )
    return _security_logger


def reset_security_logger() -> None:
    global _security_logger
    _security_logger = None
