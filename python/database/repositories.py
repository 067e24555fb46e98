"""
Repository Pattern for Kurator Database Operations

Provides clean data access layer with proper typing and error handling.
Implements the Repository pattern for separation of concerns.

Repositories cover the simple admin CRUD surfaces (users, blocks,
reference values, audit log, FAQ). Contact, interaction, watchlist and
dashboard logic lives in the services package.
"""

import json
import logging
from typing import List, Optional, Dict, Any, Tuple
from datetime import datetime, timedelta

from sqlalchemy import select, func, and_, or_, cast, String
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from database.models import (
    User,
    Block,
    BlockCurator,
    ReferenceValue,
    Contact,
    Interaction,
    AuditLog,
    FAQ,
    Watchlist,
    UserRole,
    BlockStatus,
    CuratorType,
    AuditActionType,
    utcnow,
)

logger = logging.getLogger(__name__)


class RepositoryError(Exception):
    """Base exception for repository errors."""
    pass


class EntityNotFoundError(RepositoryError):
    """Raised when an entity is not found."""
    pass


class DuplicateEntityError(RepositoryError):
    """Raised when attempting to create a duplicate entity."""
    pass


def page_offset(page: int, page_size: int) -> int:
    """Offset for a 1-based page number."""
    return (max(page, 1) - 1) * page_size


def to_json(values: Optional[Dict[str, Any]]) -> Optional[str]:
    """Serialize audit values; datetimes and enums become strings."""
    if values is None:
        return None
    return json.dumps(values, default=str)


def assigned_block_ids_query(user_id: int):
    """Subquery of block ids the user curates (primary or backup)."""
    return select(BlockCurator.block_id).where(BlockCurator.user_id == user_id)


# ============================================
# USER REPOSITORY
# ============================================

class UserRepository:
    """Repository for application user operations."""

    def __init__(self, session: Session):
        self.session = session

    def get_by_id(self, user_id: int) -> Optional[User]:
        """Get user by ID."""
        return self.session.get(User, user_id)

    def get_by_login(self, login: str) -> Optional[User]:
        """Get user by login (exact match)."""
        query = select(User).where(User.login == login)
        return self.session.execute(query).scalar_one_or_none()

    def list_all(self) -> List[User]:
        """List all users ordered by login."""
        query = select(User).order_by(User.login)
        return list(self.session.execute(query).scalars().all())

    def list_curators(self) -> List[User]:
        """List active users with the Curator role."""
        query = select(User).where(
            and_(User.role == UserRole.CURATOR, User.is_active == True)
        ).order_by(User.login)
        return list(self.session.execute(query).scalars().all())

    def create(self, login: str, password_hash: str, role: UserRole) -> User:
        """
        Create a new user.

        Args:
            login: Unique login name
            password_hash: BCrypt hash of the password
            role: Role of the new user

        Returns:
            Created User (is_first_login=True, MFA not set up)

        Raises:
            DuplicateEntityError: If the login is already taken
        """
        if self.get_by_login(login) is not None:
            raise DuplicateEntityError("User with this login already exists")

        user = User(
            login=login,
            password_hash=password_hash,
            role=role,
            is_first_login=True,
            mfa_enabled=False,
            is_active=True
        )
        self.session.add(user)
        try:
            self.session.flush()
        except IntegrityError as e:
            self.session.rollback()
            raise DuplicateEntityError(f"User already exists: {e.orig}")

        logger.debug(f"Created user: {user.id} ({user.login})")
        return user

    def get_or_raise(self, user_id: int) -> User:
        user = self.get_by_id(user_id)
        if user is None:
            raise EntityNotFoundError(f"User not found: {user_id}")
        return user

    def update(
        self,
        user_id: int,
        role: Optional[UserRole] = None,
        password_hash: Optional[str] = None
    ) -> User:
        """Update role and, optionally, password hash."""
        user = self.get_or_raise(user_id)
        if role is not None:
            user.role = role
        if password_hash:
            user.password_hash = password_hash
        self.session.flush()
        return user

    def set_password_hash(self, user_id: int, password_hash: str) -> User:
        user = self.get_or_raise(user_id)
        user.password_hash = password_hash
        self.session.flush()
        return user

    def toggle_active(self, user_id: int) -> User:
        user = self.get_or_raise(user_id)
        user.is_active = not user.is_active
        self.session.flush()
        return user

    def has_block_assignments(self, user_id: int) -> bool:
        query = select(func.count()).select_from(BlockCurator).where(
            BlockCurator.user_id == user_id
        )
        return self.session.execute(query).scalar_one() > 0

    def has_activity(self, user_id: int) -> bool:
        """True when audit entries, contacts, interactions or watchlist entries point at the user."""
        for model, column in (
            (AuditLog, AuditLog.user_id),
            (Contact, Contact.responsible_curator_id),
            (Interaction, Interaction.curator_id),
            (Watchlist, Watchlist.watch_owner_id),
        ):
            count = self.session.execute(
                select(func.count()).select_from(model).where(column == user_id)
            ).scalar_one()
            if count:
                return True
        return False

    def delete(self, user_id: int) -> User:
        """
        Hard-delete a user.

        Audit rows reference users, so callers must write the audit entry
        under their own user id, never the deleted one.
        """
        user = self.get_or_raise(user_id)
        self.session.delete(user)
        self.session.flush()
        return user

    def record_login(self, user: User) -> None:
        user.last_login_at = utcnow()
        self.session.flush()

    def get_statistics(self) -> Dict[str, Any]:
        """
        Get user statistics.

        Returns:
            Dictionary with total_users, active_in_last_month and by_role
        """
        total = self.session.execute(
            select(func.count()).select_from(User)
        ).scalar_one()

        month_ago = utcnow() - timedelta(days=30)
        active_recent = self.session.execute(
            select(func.count()).select_from(User).where(User.last_login_at >= month_ago)
        ).scalar_one()

        role_rows = self.session.execute(
            select(User.role, func.count()).group_by(User.role)
        )
        by_role = {row[0].value: row[1] for row in role_rows}

        return {
            'total_users': total,
            'active_in_last_month': active_recent,
            'by_role': by_role
        }


# ============================================
# BLOCK REPOSITORY
# ============================================

class BlockRepository:
    """Repository for blocks and curator assignments."""

    def __init__(self, session: Session):
        self.session = session

    def get_by_id(self, block_id: int) -> Optional[Block]:
        return self.session.get(Block, block_id)

    def get_or_raise(self, block_id: int) -> Block:
        block = self.get_by_id(block_id)
        if block is None:
            raise EntityNotFoundError(f"Block not found: {block_id}")
        return block

    def get_by_code(self, code: str) -> Optional[Block]:
        query = select(Block).where(Block.code == code)
        return self.session.execute(query).scalar_one_or_none()

    def list_all(self) -> List[Block]:
        """List all blocks (active and archived) ordered by name."""
        query = select(Block).order_by(Block.name)
        return list(self.session.execute(query).scalars().all())

    def list_for_user(self, user_id: int, is_admin: bool) -> List[Block]:
        """
        List active blocks visible to a user.

        Admins see every active block; other users see blocks they are
        assigned to as primary or backup curator.
        """
        query = select(Block).where(Block.status == BlockStatus.ACTIVE)
        if not is_admin:
            query = query.where(Block.id.in_(assigned_block_ids_query(user_id)))
        query = query.order_by(Block.name)
        return list(self.session.execute(query).scalars().all())

    def get_user_block_ids(self, user_id: int) -> List[int]:
        """IDs of blocks the user is assigned to (any curator type)."""
        query = assigned_block_ids_query(user_id).distinct()
        return list(self.session.execute(query).scalars().all())

    def has_access(self, user_id: int, block_id: int, is_admin: bool) -> bool:
        if is_admin:
            return True
        query = select(func.count()).select_from(BlockCurator).where(
            and_(BlockCurator.user_id == user_id, BlockCurator.block_id == block_id)
        )
        return self.session.execute(query).scalar_one() > 0

    def create(self, name: str, code: str, description: Optional[str] = None) -> Block:
        """
        Create a new block.

        Raises:
            DuplicateEntityError: If the block code already exists
        """
        if self.get_by_code(code) is not None:
            raise DuplicateEntityError("Block code already exists")

        block = Block(name=name, code=code, description=description, status=BlockStatus.ACTIVE)
        self.session.add(block)
        try:
            self.session.flush()
        except IntegrityError as e:
            self.session.rollback()
            raise DuplicateEntityError(f"Block already exists: {e.orig}")

        logger.debug(f"Created block: {block.id} ({block.code})")
        return block

    def update(
        self,
        block_id: int,
        name: Optional[str] = None,
        description: Optional[str] = None,
        status: Optional[BlockStatus] = None
    ) -> Block:
        block = self.get_or_raise(block_id)
        if name is not None:
            block.name = name
        if description is not None:
            block.description = description
        if status is not None:
            block.status = status
        self.session.flush()
        return block

    def archive(self, block_id: int) -> Block:
        return self.update(block_id, status=BlockStatus.ARCHIVED)

    def assign_curator(
        self,
        block_id: int,
        user_id: int,
        curator_type: CuratorType,
        assigned_by: Optional[int] = None
    ) -> BlockCurator:
        """
        Assign a user to a block.

        Raises:
            EntityNotFoundError: If the block or the user does not exist
            DuplicateEntityError: If the same assignment already exists
        """
        self.get_or_raise(block_id)
        if self.session.get(User, user_id) is None:
            raise EntityNotFoundError(f"User not found: {user_id}")

        existing = self.session.execute(
            select(BlockCurator).where(
                and_(
                    BlockCurator.block_id == block_id,
                    BlockCurator.user_id == user_id,
                    BlockCurator.curator_type == curator_type
                )
            )
        ).scalar_one_or_none()
        if existing is not None:
            raise DuplicateEntityError("Curator already assigned with this type")

        assignment = BlockCurator(
            block_id=block_id,
            user_id=user_id,
            curator_type=curator_type,
            assigned_by=assigned_by
        )
        self.session.add(assignment)
        try:
            self.session.flush()
        except IntegrityError as e:
            self.session.rollback()
            raise DuplicateEntityError(f"Curator assignment already exists: {e.orig}")
        return assignment

    def remove_curator(
        self,
        block_id: int,
        user_id: int,
        curator_type: Optional[CuratorType] = None
    ) -> int:
        """
        Remove curator assignments of a user from a block.

        Without curator_type, both primary and backup assignments go.

        Returns:
            Number of assignments removed

        Raises:
            EntityNotFoundError: If no matching assignment exists
        """
        conditions = [BlockCurator.block_id == block_id, BlockCurator.user_id == user_id]
        if curator_type is not None:
            conditions.append(BlockCurator.curator_type == curator_type)

        assignments = list(
            self.session.execute(select(BlockCurator).where(and_(*conditions))).scalars().all()
        )
        if not assignments:
            raise EntityNotFoundError(
                f"Curator assignment not found: block={block_id}, user={user_id}"
            )

        for assignment in assignments:
            self.session.delete(assignment)
        self.session.flush()
        # Keep the identity-mapped collection in sync with the deleted rows
        self.session.expire(self.get_or_raise(block_id), ['curators'])
        return len(assignments)


# ============================================
# REFERENCE VALUE REPOSITORY
# ============================================

class ReferenceValueRepository:
    """Repository for lookup values grouped by category."""

    def __init__(self, session: Session):
        self.session = session

    def get_by_id(self, reference_id: int) -> Optional[ReferenceValue]:
        return self.session.get(ReferenceValue, reference_id)

    def get_or_raise(self, reference_id: int) -> ReferenceValue:
        reference = self.get_by_id(reference_id)
        if reference is None:
            raise EntityNotFoundError(f"Reference value not found: {reference_id}")
        return reference

    def get_by_category_code(self, category: str, code: str) -> Optional[ReferenceValue]:
        query = select(ReferenceValue).where(
            and_(ReferenceValue.category == category, ReferenceValue.code == code)
        )
        return self.session.execute(query).scalar_one_or_none()

    def list_values(self, category: Optional[str] = None) -> List[ReferenceValue]:
        """List values (active and inactive), ordered by category, sort_order, name."""
        query = select(ReferenceValue)
        if category:
            query = query.where(ReferenceValue.category == category)
        query = query.order_by(
            ReferenceValue.category,
            ReferenceValue.sort_order,
            ReferenceValue.name
        )
        return list(self.session.execute(query).scalars().all())

    def list_categories(self) -> List[str]:
        query = select(ReferenceValue.category).distinct().order_by(ReferenceValue.category)
        return list(self.session.execute(query).scalars().all())

    def grouped_by_category(self) -> Dict[str, List[ReferenceValue]]:
        """Active values grouped by category."""
        query = select(ReferenceValue).where(ReferenceValue.is_active == True).order_by(
            ReferenceValue.category,
            ReferenceValue.sort_order,
            ReferenceValue.name
        )
        grouped: Dict[str, List[ReferenceValue]] = {}
        for value in self.session.execute(query).scalars():
            grouped.setdefault(value.category, []).append(value)
        return grouped

    def create(
        self,
        category: str,
        code: str,
        name: str,
        description: Optional[str] = None,
        sort_order: int = 0
    ) -> ReferenceValue:
        """
        Create a reference value.

        Raises:
            DuplicateEntityError: If (category, code) already exists
        """
        if self.get_by_category_code(category, code) is not None:
            raise DuplicateEntityError(
                f"Reference value {category}/{code} already exists"
            )

        reference = ReferenceValue(
            category=category,
            code=code,
            name=name,
            description=description,
            sort_order=sort_order,
            is_active=True
        )
        self.session.add(reference)
        try:
            self.session.flush()
        except IntegrityError as e:
            self.session.rollback()
            raise DuplicateEntityError(f"Reference value already exists: {e.orig}")
        return reference

    def update(
        self,
        reference_id: int,
        name: Optional[str] = None,
        description: Optional[str] = None,
        sort_order: Optional[int] = None,
        is_active: Optional[bool] = None
    ) -> ReferenceValue:
        reference = self.get_or_raise(reference_id)
        if name is not None:
            reference.name = name
        if description is not None:
            reference.description = description
        if sort_order is not None:
            reference.sort_order = sort_order
        if is_active is not None:
            reference.is_active = is_active
        self.session.flush()
        return reference

    def deactivate(self, reference_id: int) -> ReferenceValue:
        return self.update(reference_id, is_active=False)

    def toggle(self, reference_id: int) -> ReferenceValue:
        reference = self.get_or_raise(reference_id)
        reference.is_active = not reference.is_active
        self.session.flush()
        return reference

    def require(self, **reference_ids: Optional[int]) -> None:
        """
        Check that every given reference id exists. None values are skipped.

        Raises:
            EntityNotFoundError: For the first id that matches no reference value
        """
        for field_name, reference_id in reference_ids.items():
            if reference_id is not None and self.get_by_id(reference_id) is None:
                raise EntityNotFoundError(
                    f"Reference value not found for {field_name}: {reference_id}"
                )


# ============================================
# AUDIT REPOSITORY
# ============================================

class AuditRepository:
    """Repository for audit log operations. Entries are append-only."""

    def __init__(self, session: Session):
        self.session = session

    def log(
        self,
        user_id: int,
        action: AuditActionType,
        entity_type: str,
        entity_id: Any,
        old_values: Optional[Dict[str, Any]] = None,
        new_values: Optional[Dict[str, Any]] = None
    ) -> AuditLog:
        """
        Create an audit log entry.

        Args:
            user_id: ID of the acting user
            action: Type of action
            entity_type: Type of entity affected ("Contact", "User", ...)
            entity_id: ID of the entity (stored as string)
            old_values: Values before change
            new_values: Values after change

        Returns:
            Created AuditLog
        """
        log = AuditLog(
            user_id=user_id,
            action=action,
            entity_type=entity_type,
            entity_id=str(entity_id),
            old_values_json=to_json(old_values),
            new_values_json=to_json(new_values),
            timestamp=utcnow()
        )

        self.session.add(log)
        self.session.flush()
        return log

    def _block_condition(self, block_id: int):
        """Contact and Interaction entries belonging to contacts of a block."""
        contact_ids = select(cast(Contact.id, String)).where(Contact.block_id == block_id)
        interaction_ids = select(cast(Interaction.id, String)).join(
            Contact, Interaction.contact_id == Contact.id
        ).where(Contact.block_id == block_id)
        return or_(
            and_(AuditLog.entity_type == "Contact", AuditLog.entity_id.in_(contact_ids)),
            and_(AuditLog.entity_type == "Interaction", AuditLog.entity_id.in_(interaction_ids))
        )

    def search(
        self,
        user_id: Optional[int] = None,
        block_id: Optional[int] = None,
        action: Optional[AuditActionType] = None,
        entity_type: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        page: int = 1,
        page_size: int = 50
    ) -> Tuple[List[AuditLog], int]:
        """
        Search audit logs with filters.

        Args:
            user_id: Filter by acting user
            block_id: Filter to Contact/Interaction entries of a block
            action: Filter by action type
            entity_type: Filter by entity type
            start_date: Start of date range
            end_date: End of date range
            page: 1-based page number
            page_size: Page size

        Returns:
            Tuple of (logs list, total count)
        """
        conditions = []

        if user_id:
            conditions.append(AuditLog.user_id == user_id)
        if block_id:
            conditions.append(self._block_condition(block_id))
        if action:
            conditions.append(AuditLog.action == action)
        if entity_type:
            conditions.append(AuditLog.entity_type == entity_type)
        if start_date:
            conditions.append(AuditLog.timestamp >= start_date)
        if end_date:
            conditions.append(AuditLog.timestamp <= end_date)

        # Count query
        count_query = select(func.count()).select_from(AuditLog)
        if conditions:
            count_query = count_query.where(and_(*conditions))
        total = self.session.execute(count_query).scalar_one()

        # Data query
        query = select(AuditLog)
        if conditions:
            query = query.where(and_(*conditions))
        query = query.order_by(AuditLog.timestamp.desc(), AuditLog.id.desc()).offset(
            page_offset(page, page_size)
        ).limit(page_size)

        logs = list(self.session.execute(query).scalars().all())
        return logs, total

    def get_statistics(
        self,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None
    ) -> Dict[str, Any]:
        """
        Get audit statistics for a date range.

        Returns:
            Dictionary with total_actions, by_action_type, by_user (top 10)
            and by_entity_type
        """
        conditions = []
        if start_date:
            conditions.append(AuditLog.timestamp >= start_date)
        if end_date:
            conditions.append(AuditLog.timestamp <= end_date)

        def filtered(query):
            return query.where(and_(*conditions)) if conditions else query

        total = self.session.execute(
            filtered(select(func.count()).select_from(AuditLog))
        ).scalar_one()

        action_rows = self.session.execute(
            filtered(select(AuditLog.action, func.count()).group_by(AuditLog.action))
        )
        by_action = {row[0].value: row[1] for row in action_rows}

        user_count = func.count(AuditLog.id).label("count")
        user_rows = self.session.execute(
            filtered(
                select(AuditLog.user_id, User.login, user_count)
                .join(User, AuditLog.user_id == User.id)
                .group_by(AuditLog.user_id, User.login)
            ).order_by(user_count.desc()).limit(10)
        )
        by_user = [
            {'user_id': row[0], 'login': row[1], 'count': row[2]}
            for row in user_rows
        ]

        entity_rows = self.session.execute(
            filtered(select(AuditLog.entity_type, func.count()).group_by(AuditLog.entity_type))
        )
        by_entity = {row[0]: row[1] for row in entity_rows}

        return {
            'total_actions': total,
            'by_action_type': by_action,
            'by_user': by_user,
            'by_entity_type': by_entity
        }

    def get_by_entity(self, entity_type: str, entity_id: str) -> List[AuditLog]:
        query = select(AuditLog).where(
            and_(AuditLog.entity_type == entity_type, AuditLog.entity_id == str(entity_id))
        ).order_by(AuditLog.timestamp.desc(), AuditLog.id.desc())
        return list(self.session.execute(query).scalars().all())

    def get_by_user(self, user_id: int, page: int = 1, page_size: int = 50) -> Tuple[List[AuditLog], int]:
        return self.search(user_id=user_id, page=page, page_size=page_size)

    def get_recent(self, count: int = 20) -> List[AuditLog]:
        query = select(AuditLog).order_by(
            AuditLog.timestamp.desc(), AuditLog.id.desc()
        ).limit(count)
        return list(self.session.execute(query).scalars().all())


# ============================================
# FAQ REPOSITORY
# ============================================

class FaqRepository:
    """Repository for help articles."""

    def __init__(self, session: Session):
        self.session = session

    def list_active(self) -> List[FAQ]:
        query = select(FAQ).where(FAQ.is_active == True).order_by(
            FAQ.sort_order, FAQ.updated_at.desc()
        )
        return list(self.session.execute(query).scalars().all())

    def get_active(self, faq_id: int) -> FAQ:
        """
        Get an active FAQ entry.

        Raises:
            EntityNotFoundError: If missing or soft-deleted
        """
        faq = self.session.get(FAQ, faq_id)
        if faq is None or not faq.is_active:
            raise EntityNotFoundError(f"FAQ not found: {faq_id}")
        return faq

    def create(self, title: str, content: str, sort_order: int, updated_by: int) -> FAQ:
        faq = FAQ(
            title=title,
            content=content,
            sort_order=sort_order,
            is_active=True,
            updated_by=updated_by
        )
        self.session.add(faq)
        self.session.flush()
        return faq

    def update(
        self,
        faq_id: int,
        updated_by: int,
        title: Optional[str] = None,
        content: Optional[str] = None,
        sort_order: Optional[int] = None,
        is_active: Optional[bool] = None
    ) -> FAQ:
        faq = self.session.get(FAQ, faq_id)
        if faq is None:
            raise EntityNotFoundError(f"FAQ not found: {faq_id}")
        if title is not None:
            faq.title = title
        if content is not None:
            faq.content = content
        if sort_order is not None:
            faq.sort_order = sort_order
        if is_active is not None:
            faq.is_active = is_active
        faq.updated_by = updated_by
        self.session.flush()
        return faq

    def soft_delete(self, faq_id: int, updated_by: int) -> FAQ:
        faq = self.get_active(faq_id)
        faq.is_active = False
        faq.updated_by = updated_by
        self.session.flush()
        return faq
