"""
Database Package for the Kurator Contact Management System

This package provides:
- SQLAlchemy ORM models for all entities
- FastAPI Dependency Injection for database sessions
- Unit of Work pattern for transaction management
- Repository pattern for data access
- Idempotent seeding of the admin account and reference catalogue
"""

from database.models import (
    Base,
    User,
    Block,
    BlockCurator,
    ReferenceValue,
    Contact,
    Interaction,
    InfluenceStatusHistory,
    Watchlist,
    WatchlistHistory,
    AuditLog,
    FAQ,
    UserRole,
    BlockStatus,
    CuratorType,
    AuditActionType,
    RiskLevel,
    MonitoringFrequency,
)
from database.connection import (
    DatabaseSessionProvider,
    DatabaseSettings,
    # FastAPI dependencies
    get_db,
    get_db_provider,
    # Initialization
    init_db,
    close_db,
)
from database.seed import seed_database

__all__ = [
    # Base
    'Base',
    # Entity models
    'User',
    'Block',
    'BlockCurator',
    'ReferenceValue',
    'Contact',
    'Interaction',
    'InfluenceStatusHistory',
    'Watchlist',
    'WatchlistHistory',
    'AuditLog',
    'FAQ',
    # Enums
    'UserRole',
    'BlockStatus',
    'CuratorType',
    'AuditActionType',
    'RiskLevel',
    'MonitoringFrequency',
    # Database provider
    'DatabaseSessionProvider',
    'DatabaseSettings',
    # FastAPI dependencies
    'get_db',
    'get_db_provider',
    # Initialization
    'init_db',
    'close_db',
    'seed_database',
]
