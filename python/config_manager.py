"""
Kurator configuration.
Loads config.yaml into typed sections (database, security, paging,
dashboard, seed, logging) and applies secret overrides from the environment.
"""

import os
import yaml
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Any, Optional

logger = logging.getLogger(__name__)


@dataclass
class DatabaseConfig:
    """Database configuration (DATABASE_URL and DB_* env variables win)"""
    url: Optional[str] = None
    echo: bool = False


@dataclass
class SecurityConfig:
    """Encryption, password hashing and MFA settings"""
    encryption_key: str = ""
    bcrypt_rounds: int = 12
    totp_issuer: str = "KURATOR"
    totp_digits: int = 6
    totp_period: int = 30
    totp_valid_window: int = 1


@dataclass
class PagingConfig:
    """Pagination defaults"""
    default_page_size: int = 50
    max_page_size: int = 200


@dataclass
class DashboardConfig:
    """Dashboard list sizes and periods"""
    recent_interactions: int = 5
    attention_contacts: int = 10
    top_curators: int = 5
    status_dynamics_months: int = 3
    recent_audit_logs: int = 20


@dataclass
class SeedConfig:
    """Startup seeding"""
    admin_login: str = "admin"
    admin_password: str = "Admin123!"
    seed_references: bool = True


@dataclass
class LoggingConfig:
    """Logging configuration"""
    level: str = "INFO"
    file: Optional[str] = None
    console: bool = True
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class ConfigurationError(Exception):
    """Raised when configuration is invalid"""
    pass


VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class ConfigManager:
    """Manages system configuration"""

    _instance: Optional['ConfigManager'] = None

    def __init__(self, config_path: Optional[str] = None):
        """Initialize configuration manager

        Args:
            config_path: Path to config.yaml file
        """
        self.config_path = Path(config_path) if config_path else self._find_config()
        self._raw_config: Dict[str, Any] = {}
        self.database: DatabaseConfig = DatabaseConfig()
        self.security: SecurityConfig = SecurityConfig()
        self.paging: PagingConfig = PagingConfig()
        self.dashboard: DashboardConfig = DashboardConfig()
        self.seed: SeedConfig = SeedConfig()
        self.logging: LoggingConfig = LoggingConfig()

        if self.config_path and self.config_path.exists():
            self.load()
        else:
            logger.warning(f"Config file not found at {self.config_path}, using defaults")
            self._apply_env_overrides()
            self._validate()

    def _find_config(self) -> Path:
        """Find config.yaml in common locations"""
        search_paths = [
            Path(__file__).parent / "config.yaml",
            Path.cwd() / "config.yaml",
            Path.cwd() / "python" / "config.yaml",
        ]

        for path in search_paths:
            if path.exists():
                return path

        return search_paths[0]

    def load(self) -> None:
        """Load configuration from YAML file"""
        try:
            with open(self.config_path, 'r', encoding='utf-8') as f:
                self._raw_config = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in config file: {e}")
        except FileNotFoundError:
            raise ConfigurationError(f"Config file not found: {self.config_path}")

        if not isinstance(self._raw_config, dict):
            raise ConfigurationError("Config file must contain a mapping at the top level")

        self._parse_database()
        self._parse_security()
        self._parse_paging()
        self._parse_dashboard()
        self._parse_seed()
        self._parse_logging()
        self._apply_env_overrides()
        self._validate()

    def _section(self, name: str) -> Dict[str, Any]:
        cfg = self._raw_config.get(name) or {}
        if not isinstance(cfg, dict):
            raise ConfigurationError(f"Config section '{name}' must be a mapping")
        return cfg

    def _parse_database(self) -> None:
        """Parse database configuration"""
        cfg = self._section('database')
        self.database = DatabaseConfig(
            url=cfg.get('url', self.database.url),
            echo=cfg.get('echo', self.database.echo)
        )

    def _parse_security(self) -> None:
        """Parse security configuration"""
        cfg = self._section('security')
        self.security = SecurityConfig(
            encryption_key=cfg.get('encryption_key', self.security.encryption_key) or "",
            bcrypt_rounds=cfg.get('bcrypt_rounds', 12),
            totp_issuer=cfg.get('totp_issuer', 'KURATOR'),
            totp_digits=cfg.get('totp_digits', 6),
            totp_period=cfg.get('totp_period', 30),
            totp_valid_window=cfg.get('totp_valid_window', 1)
        )

    def _parse_paging(self) -> None:
        """Parse paging configuration"""
        cfg = self._section('paging')
        self.paging = PagingConfig(
            default_page_size=cfg.get('default_page_size', 50),
            max_page_size=cfg.get('max_page_size', 200)
        )

    def _parse_dashboard(self) -> None:
        """Parse dashboard configuration"""
        cfg = self._section('dashboard')
        self.dashboard = DashboardConfig(
            recent_interactions=cfg.get('recent_interactions', 5),
            attention_contacts=cfg.get('attention_contacts', 10),
            top_curators=cfg.get('top_curators', 5),
            status_dynamics_months=cfg.get('status_dynamics_months', 3),
            recent_audit_logs=cfg.get('recent_audit_logs', 20)
        )

    def _parse_seed(self) -> None:
        """Parse seed configuration"""
        cfg = self._section('seed')
        self.seed = SeedConfig(
            admin_login=cfg.get('admin_login', 'admin'),
            admin_password=cfg.get('admin_password', self.seed.admin_password),
            seed_references=cfg.get('seed_references', True)
        )

    def _parse_logging(self) -> None:
        """Parse logging configuration"""
        cfg = self._section('logging')
        self.logging = LoggingConfig(
            level=str(cfg.get('level', 'INFO')).upper(),
            file=cfg.get('file'),
            console=cfg.get('console', True),
            format=cfg.get('format', self.logging.format)
        )

    def _apply_env_overrides(self) -> None:
        """Secrets from the environment take precedence over the file"""
        encryption_key = os.getenv("KURATOR_ENCRYPTION_KEY")
        if encryption_key:
            self.security.encryption_key = encryption_key
        admin_password = os.getenv("KURATOR_ADMIN_PASSWORD")
        if admin_password:
            self.seed.admin_password = admin_password

    @classmethod
    def get_instance(cls, config_path: Optional[str] = None) -> 'ConfigManager':
        """Get singleton instance of ConfigManager"""
        if cls._instance is None:
            cls._instance = ConfigManager(config_path)
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        """Reset singleton instance (useful for testing)"""
        cls._instance = None

    def to_dict(self) -> Dict[str, Any]:
        """Export configuration as dictionary. Secrets are masked."""
        return {
            'database': {
                'url': '***' if self.database.url else None,
                'echo': self.database.echo
            },
            'security': {
                'encryption_key': '***' if self.security.encryption_key else '',
                'bcrypt_rounds': self.security.bcrypt_rounds,
                'totp_issuer': self.security.totp_issuer,
                'totp_digits': self.security.totp_digits,
                'totp_period': self.security.totp_period,
                'totp_valid_window': self.security.totp_valid_window
            },
            'paging': {
                'default_page_size': self.paging.default_page_size,
                'max_page_size': self.paging.max_page_size
            },
            'dashboard': {
                'recent_interactions': self.dashboard.recent_interactions,
                'attention_contacts': self.dashboard.attention_contacts,
                'top_curators': self.dashboard.top_curators,
                'status_dynamics_months': self.dashboard.status_dynamics_months,
                'recent_audit_logs': self.dashboard.recent_audit_logs
            },
            'seed': {
                'admin_login': self.seed.admin_login,
                'seed_references': self.seed.seed_references
            },
            'logging': {
                'level': self.logging.level,
                'file': self.logging.file,
                'console': self.logging.console
            }
        }

    def _validate(self) -> None:
        """Validate configuration values"""
        errors = []

        if not 4 <= _as_int(self.security.bcrypt_rounds, errors, 'security.bcrypt_rounds') <= 31:
            errors.append("security.bcrypt_rounds must be between 4 and 31")
        if _as_int(self.security.totp_digits, errors, 'security.totp_digits') not in (6, 8):
            errors.append("security.totp_digits must be 6 or 8")
        if _as_int(self.security.totp_period, errors, 'security.totp_period') <= 0:
            errors.append("security.totp_period must be positive")
        if _as_int(self.security.totp_valid_window, errors, 'security.totp_valid_window') < 0:
            errors.append("security.totp_valid_window must not be negative")

        default_size = _as_int(self.paging.default_page_size, errors, 'paging.default_page_size')
        max_size = _as_int(self.paging.max_page_size, errors, 'paging.max_page_size')
        if default_size <= 0 or max_size <= 0:
            errors.append("paging sizes must be positive")
        elif default_size > max_size:
            errors.append("paging.default_page_size must not exceed paging.max_page_size")

        for name in ('recent_interactions', 'attention_contacts', 'top_curators',
                     'status_dynamics_months', 'recent_audit_logs'):
            if _as_int(getattr(self.dashboard, name), errors, f'dashboard.{name}') <= 0:
                errors.append(f"dashboard.{name} must be positive")

        if not self.seed.admin_login:
            errors.append("seed.admin_login must not be empty")

        if self.logging.level not in VALID_LOG_LEVELS:
            errors.append(f"logging.level must be one of {', '.join(VALID_LOG_LEVELS)}")

        if errors:
            raise ConfigurationError("; ".join(errors))

        if not self.security.encryption_key:
            logger.warning("No encryption key configured; set KURATOR_ENCRYPTION_KEY")


def _as_int(value: Any, errors: list, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        errors.append(f"{name} must be an integer")
        return 0
    return value


def get_config(config_path: Optional[str] = None) -> ConfigManager:
    """Convenience function to get configuration instance"""
    return ConfigManager.get_instance(config_path)
