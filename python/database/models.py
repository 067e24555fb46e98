"""
SQLAlchemy ORM Models for the Kurator Contact Management System

This module defines the complete database schema:
- Integer surrogate keys and conventional foreign keys
- Soft delete via is_active flags (rows are never physically removed,
  users excepted)
- Append-only audit trail
- Lookup tables for statuses/types/channels (reference_values)
- Timestamps for all mutable records (created_at, updated_at)

Tables:
1. users - Application users (login, role, MFA state)
2. blocks - Organizational units grouping contacts
3. block_curators - Assignment of curators to blocks (primary/backup)
4. reference_values - Lookup values grouped by category
5. contacts - Curated contacts with encrypted PII
6. interactions - Timestamped touch records for contacts
7. influence_status_history - Status transitions of contacts
8. watchlist - Risk entities under monitoring
9. watchlist_history - Risk level transitions of watchlist entries
10. audit_logs - System-wide audit trail
11. faqs - Help articles shown to all users
"""

from datetime import datetime, timezone
from enum import Enum as PyEnum
from typing import List, Optional

from sqlalchemy import (
    String, Integer, Boolean, DateTime, Text,
    ForeignKey, Index, UniqueConstraint, Enum
)
from sqlalchemy.orm import relationship, declarative_base, Mapped, mapped_column
from sqlalchemy.sql import func

# Base class for all models
Base = declarative_base()


def utcnow() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes read back from backends without tz support."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# ============================================
# ENUMS
# ============================================

class UserRole(str, PyEnum):
    """Role of an application user"""
    ADMIN = "Admin"
    CURATOR = "Curator"
    THREAT_ANALYST = "ThreatAnalyst"


class BlockStatus(str, PyEnum):
    """Lifecycle status of a block"""
    ACTIVE = "Active"
    ARCHIVED = "Archived"


class CuratorType(str, PyEnum):
    """Kind of curator assignment to a block"""
    PRIMARY = "Primary"
    BACKUP = "Backup"


class AuditActionType(str, PyEnum):
    """Type of audit action"""
    CREATE = "Create"
    UPDATE = "Update"
    DELETE = "Delete"
    STATUS_CHANGE = "StatusChange"


class RiskLevel(str, PyEnum):
    """Risk level of a watchlist entry, lowest first"""
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    CRITICAL = "Critical"


class MonitoringFrequency(str, PyEnum):
    """How often a watchlist entry is re-checked"""
    WEEKLY = "Weekly"
    MONTHLY = "Monthly"
    QUARTERLY = "Quarterly"
    AD_HOC = "AdHoc"


# Numeric rank used when sorting by risk
RISK_LEVEL_RANK = {
    RiskLevel.LOW: 0,
    RiskLevel.MEDIUM: 1,
    RiskLevel.HIGH: 2,
    RiskLevel.CRITICAL: 3,
}


def _enum_column(enum_cls, name: str) -> Enum:
    """Enum column storing the enum values ("Admin") rather than member names."""
    return Enum(
        enum_cls,
        name=name,
        values_callable=lambda members: [m.value for m in members],
        validate_strings=True,
    )


# Shared by watchlist and watchlist_history so the type is created once
RISK_LEVEL_TYPE = _enum_column(RiskLevel, "risk_level")


# ============================================
# MIXIN CLASSES
# ============================================

class TimestampMixin:
    """Mixin for created_at and updated_at timestamps"""
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        onupdate=utcnow,
        nullable=False
    )


class SoftDeleteMixin:
    """Mixin for soft delete support"""
    is_active: Mapped[bool] = mapped_column(
        Boolean,
        default=True,
        nullable=False,
        index=True
    )


# ============================================
# USERS AND BLOCKS
# ============================================

class User(Base):
    """
    Application user.

    New users must set up MFA on first login (is_first_login). The TOTP
    secret is stored in mfa_secret; mfa_enabled flips to True after the
    first successful verification.
    """
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    login: Mapped[str] = mapped_column(String(100), nullable=False, unique=True, index=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[UserRole] = mapped_column(
        _enum_column(UserRole, "user_role"),
        nullable=False,
        index=True
    )
    is_first_login: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    public_key: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    mfa_secret: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    mfa_enabled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        nullable=False
    )
    last_login_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Relationships
    block_assignments: Mapped[List["BlockCurator"]] = relationship(
        "BlockCurator",
        back_populates="user",
        foreign_keys="BlockCurator.user_id",
        cascade="all, delete-orphan",
        lazy="selectin"
    )

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    def __repr__(self) -> str:
        return f"<User(id={self.id}, login='{self.login}', role={self.role})>"


class Block(Base, TimestampMixin):
    """
    Organizational unit grouping contacts.

    Blocks are archived rather than deleted; contacts of archived blocks
    drop out of every list and dashboard.
    """
    __tablename__ = "blocks"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    code: Mapped[str] = mapped_column(String(20), nullable=False, unique=True, index=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[BlockStatus] = mapped_column(
        _enum_column(BlockStatus, "block_status"),
        default=BlockStatus.ACTIVE,
        nullable=False,
        index=True
    )

    curators: Mapped[List["BlockCurator"]] = relationship(
        "BlockCurator",
        back_populates="block",
        cascade="all, delete-orphan",
        lazy="selectin"
    )
    contacts: Mapped[List["Contact"]] = relationship(
        "Contact",
        back_populates="block"
    )

    def __repr__(self) -> str:
        return f"<Block(id={self.id}, code='{self.code}', status={self.status})>"


class BlockCurator(Base):
    """Junction table assigning users to blocks as primary or backup curators."""
    __tablename__ = "block_curators"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    block_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("blocks.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    user_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    curator_type: Mapped[CuratorType] = mapped_column(
        _enum_column(CuratorType, "curator_type"),
        nullable=False
    )
    assigned_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        nullable=False
    )
    assigned_by: Mapped[Optional[int]] = mapped_column(
        Integer,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True
    )

    block: Mapped["Block"] = relationship("Block", back_populates="curators")
    user: Mapped["User"] = relationship(
        "User",
        back_populates="block_assignments",
        foreign_keys=[user_id]
    )

    __table_args__ = (
        UniqueConstraint('block_id', 'user_id', 'curator_type', name='uq_block_user_type'),
    )

    def __repr__(self) -> str:
        return f"<BlockCurator(block_id={self.block_id}, user_id={self.user_id}, type={self.curator_type})>"


# ============================================
# REFERENCE DATA
# ============================================

class ReferenceValue(Base, TimestampMixin, SoftDeleteMixin):
    """
    Lookup value (influence statuses, interaction types, risk spheres...).

    Values are grouped by category and identified by a short code unique
    within that category.
    """
    __tablename__ = "reference_values"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    category: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    code: Mapped[str] = mapped_column(String(50), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    sort_order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    __table_args__ = (
        UniqueConstraint('category', 'code', name='uq_reference_category_code'),
        Index('ix_reference_category_order', 'category', 'sort_order'),
    )

    def __repr__(self) -> str:
        return f"<ReferenceValue(category='{self.category}', code='{self.code}')>"


# ============================================
# CONTACT MODELS
# ============================================

class Contact(Base, TimestampMixin, SoftDeleteMixin):
    """
    Curated contact.

    full_name_encrypted and notes_encrypted hold EncryptionService output;
    plaintext PII is never persisted. contact_id is the human-facing
    identifier in the form BLOCKCODE-NNN.
    """
    __tablename__ = "contacts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    contact_id: Mapped[str] = mapped_column(String(50), nullable=False, unique=True, index=True)
    block_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("blocks.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )
    full_name_encrypted: Mapped[str] = mapped_column(Text, nullable=False)
    organization_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("reference_values.id"), nullable=True
    )
    position: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    influence_status_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("reference_values.id"), nullable=True, index=True
    )
    influence_type_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("reference_values.id"), nullable=True
    )
    usefulness_description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    communication_channel_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("reference_values.id"), nullable=True
    )
    contact_source_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("reference_values.id"), nullable=True
    )
    last_interaction_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    next_touch_date: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True, index=True
    )
    notes_encrypted: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    responsible_curator_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id"), nullable=False, index=True
    )
    updated_by: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("users.id"), nullable=True)

    # Relationships
    block: Mapped["Block"] = relationship("Block", back_populates="contacts")
    responsible_curator: Mapped["User"] = relationship("User", foreign_keys=[responsible_curator_id])
    interactions: Mapped[List["Interaction"]] = relationship(
        "Interaction",
        back_populates="contact",
        order_by="Interaction.interaction_date.desc()"
    )
    status_history: Mapped[List["InfluenceStatusHistory"]] = relationship(
        "InfluenceStatusHistory",
        back_populates="contact",
        cascade="all, delete-orphan",
        order_by="InfluenceStatusHistory.changed_at.desc()"
    )

    __table_args__ = (
        Index('ix_contact_block_active', 'block_id', 'is_active'),
    )

    def __repr__(self) -> str:
        return f"<Contact(id={self.id}, contact_id='{self.contact_id}')>"


class Interaction(Base, TimestampMixin, SoftDeleteMixin):
    """
    Timestamped touch record for a contact.

    status_change_json carries an optional {"oldStatus", "newStatus"}
    payload; when present the contact's influence status is updated.
    """
    __tablename__ = "interactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    contact_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("contacts.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    interaction_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
        index=True
    )
    interaction_type_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("reference_values.id"), nullable=True
    )
    curator_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    result_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("reference_values.id"), nullable=True
    )
    comment_encrypted: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status_change_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    attachments_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    next_touch_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    updated_by: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("users.id"), nullable=True)

    contact: Mapped["Contact"] = relationship("Contact", back_populates="interactions")
    curator: Mapped["User"] = relationship("User", foreign_keys=[curator_id])

    def __repr__(self) -> str:
        return f"<Interaction(id={self.id}, contact_id={self.contact_id}, date={self.interaction_date})>"


class InfluenceStatusHistory(Base):
    """Immutable record of a contact's influence status transition."""
    __tablename__ = "influence_status_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    contact_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("contacts.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    previous_status: Mapped[str] = mapped_column(String(50), nullable=False)
    new_status: Mapped[str] = mapped_column(String(50), nullable=False)
    changed_by_user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False)
    changed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
        index=True
    )

    contact: Mapped["Contact"] = relationship("Contact", back_populates="status_history")
    changed_by: Mapped["User"] = relationship("User")

    def __repr__(self) -> str:
        return f"<InfluenceStatusHistory(contact_id={self.contact_id}, {self.previous_status}->{self.new_status})>"


# ============================================
# WATCHLIST MODELS
# ============================================

class Watchlist(Base, TimestampMixin, SoftDeleteMixin):
    """
    Risk entity under monitoring.

    Unlike contacts, full_name is stored in plaintext.
    """
    __tablename__ = "watchlist"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    full_name: Mapped[str] = mapped_column(String(500), nullable=False, index=True)
    role_status: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    risk_sphere_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("reference_values.id"), nullable=True
    )
    threat_source: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    conflict_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    risk_level: Mapped[RiskLevel] = mapped_column(
        RISK_LEVEL_TYPE,
        default=RiskLevel.LOW,
        nullable=False,
        index=True
    )
    monitoring_frequency: Mapped[MonitoringFrequency] = mapped_column(
        _enum_column(MonitoringFrequency, "monitoring_frequency"),
        default=MonitoringFrequency.MONTHLY,
        nullable=False
    )
    last_check_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    next_check_date: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True, index=True
    )
    dynamics_description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    watch_owner_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("users.id"), nullable=True)
    attachments_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    updated_by: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("users.id"), nullable=True)

    watch_owner: Mapped[Optional["User"]] = relationship("User", foreign_keys=[watch_owner_id])
    history: Mapped[List["WatchlistHistory"]] = relationship(
        "WatchlistHistory",
        back_populates="watchlist",
        cascade="all, delete-orphan",
        order_by="WatchlistHistory.changed_at.desc()"
    )

    def __repr__(self) -> str:
        return f"<Watchlist(id={self.id}, name='{self.full_name}', risk={self.risk_level})>"


class WatchlistHistory(Base):
    """Immutable record of a watchlist entry's risk level change."""
    __tablename__ = "watchlist_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    watchlist_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("watchlist.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    old_risk_level: Mapped[Optional[RiskLevel]] = mapped_column(
        RISK_LEVEL_TYPE, nullable=True
    )
    new_risk_level: Mapped[Optional[RiskLevel]] = mapped_column(
        RISK_LEVEL_TYPE, nullable=True
    )
    changed_by: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False)
    changed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False
    )
    comment: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    watchlist: Mapped["Watchlist"] = relationship("Watchlist", back_populates="history")

    def __repr__(self) -> str:
        return f"<WatchlistHistory(watchlist_id={self.watchlist_id}, {self.old_risk_level}->{self.new_risk_level})>"


# ============================================
# AUDIT AND SYSTEM MODELS
# ============================================

class AuditLog(Base):
    """
    System-wide audit trail.

    Immutable - no updates or deletes allowed.
    """
    __tablename__ = "audit_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )
    action: Mapped[AuditActionType] = mapped_column(
        _enum_column(AuditActionType, "audit_action_type"),
        nullable=False,
        index=True
    )
    entity_type: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    entity_id: Mapped[str] = mapped_column(String(100), nullable=False)
    old_values_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    new_values_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        nullable=False,
        index=True
    )

    user: Mapped["User"] = relationship("User")

    __table_args__ = (
        Index('ix_audit_entity', 'entity_type', 'entity_id'),
        Index('ix_audit_user_timestamp', 'user_id', 'timestamp'),
    )

    def __repr__(self) -> str:
        return f"<AuditLog(id={self.id}, action={self.action}, entity='{self.entity_type}:{self.entity_id}')>"


class FAQ(Base, TimestampMixin, SoftDeleteMixin):
    """Help article visible to every authenticated user."""
    __tablename__ = "faqs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    sort_order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    updated_by: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("users.id"), nullable=True)

    def __repr__(self) -> str:
        return f"<FAQ(id={self.id}, title='{self.title}')>"
