"""
Contact Service

Access-controlled CRUD for curated contacts:
- Non-admins only see contacts in blocks they curate
- Contacts of archived blocks and soft-deleted contacts are hidden
- Full name and notes are encrypted at rest
- Every write is recorded in the audit log; influence status changes are
  also recorded in the status history
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import select, func, and_, or_
from sqlalchemy.orm import Session, joinedload, selectinload

from database.models import (
    Block,
    BlockStatus,
    Contact,
    Interaction,
    InfluenceStatusHistory,
    AuditActionType,
    as_utc,
    utcnow,
)
from database.repositories import (
    AuditRepository,
    BlockRepository,
    EntityNotFoundError,
    ReferenceValueRepository,
    assigned_block_ids_query,
    page_offset,
)
from services.encryption import EncryptionService
from services.exceptions import AccessDeniedError

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = (
    'full_name',
    'organization_id',
    'position',
    'influence_status_id',
    'influence_type_id',
    'usefulness_description',
    'communication_channel_id',
    'contact_source_id',
    'next_touch_date',
    'notes',
)

REFERENCE_FIELDS = (
    'organization_id',
    'influence_status_id',
    'influence_type_id',
    'communication_channel_id',
    'contact_source_id',
)


def escape_like(text: str) -> str:
    """Make LIKE treat % and _ in user input as plain characters."""
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class ContactService:
    """Business operations on contacts."""

    def __init__(self, session: Session, encryption: EncryptionService):
        self.session = session
        self.encryption = encryption
        self.blocks = BlockRepository(session)
        self.references = ReferenceValueRepository(session)
        self.audit = AuditRepository(session)

    # ============================================
    # QUERIES
    # ============================================

    def _visible_contacts(self, user_id: int, is_admin: bool):
        """Active contacts in active blocks the user may see."""
        query = select(Contact).join(Block, Contact.block_id == Block.id).where(
            and_(Contact.is_active == True, Block.status == BlockStatus.ACTIVE)
        )
        if not is_admin:
            query = query.where(Contact.block_id.in_(assigned_block_ids_query(user_id)))
        return query

    def get_contacts(
        self,
        user_id: int,
        is_admin: bool,
        block_id: Optional[int] = None,
        search: Optional[str] = None,
        influence_status_id: Optional[int] = None,
        influence_type_id: Optional[int] = None,
        organization_id: Optional[int] = None,
        page: int = 1,
        page_size: int = 50
    ) -> Tuple[List[Contact], int]:
        """
        List contacts visible to the user.

        Search is a substring match on contact_id or position; names are
        encrypted and cannot be searched.

        Returns:
            Tuple of (contacts on the page, total count)
        """
        query = self._visible_contacts(user_id, is_admin)

        if block_id:
            query = query.where(Contact.block_id == block_id)
        if influence_status_id:
            query = query.where(Contact.influence_status_id == influence_status_id)
        if influence_type_id:
            query = query.where(Contact.influence_type_id == influence_type_id)
        if organization_id:
            query = query.where(Contact.organization_id == organization_id)
        if search:
            pattern = f"%{escape_like(search)}%"
            query = query.where(
                or_(
                    Contact.contact_id.like(pattern, escape="\\"),
                    Contact.position.like(pattern, escape="\\")
                )
            )

        total = self.session.execute(
            select(func.count()).select_from(query.subquery())
        ).scalar_one()

        query = query.options(
            joinedload(Contact.block),
            joinedload(Contact.responsible_curator)
        ).order_by(Contact.updated_at.desc(), Contact.id.desc()).offset(
            page_offset(page, page_size)
        ).limit(page_size)

        contacts = list(self.session.execute(query).unique().scalars().all())
        return contacts, total

    def get_contact_by_id(self, contact_id: int, user_id: int, is_admin: bool) -> Optional[Contact]:
        """
        Get a contact with interactions and status history (newest first).

        Returns:
            Contact, or None when missing, soft-deleted or in an archived block

        Raises:
            AccessDeniedError: If the user has no access to the contact's block
        """
        query = select(Contact).join(Block, Contact.block_id == Block.id).where(
            and_(
                Contact.id == contact_id,
                Contact.is_active == True,
                Block.status == BlockStatus.ACTIVE
            )
        ).options(
            joinedload(Contact.block),
            joinedload(Contact.responsible_curator),
            selectinload(Contact.interactions).joinedload(Interaction.curator),
            selectinload(Contact.status_history).joinedload(InfluenceStatusHistory.changed_by)
        )
        contact = self.session.execute(query).unique().scalar_one_or_none()
        if contact is None:
            return None

        if not self.has_access_to_block(contact.block_id, user_id, is_admin):
            raise AccessDeniedError("User does not have access to this contact")

        return contact

    def get_overdue_contacts(self, user_id: int, is_admin: bool) -> List[Contact]:
        """Visible contacts whose next touch date has passed, most overdue first."""
        query = self._visible_contacts(user_id, is_admin).where(
            and_(Contact.next_touch_date.isnot(None), Contact.next_touch_date < utcnow())
        ).options(
            joinedload(Contact.block),
            joinedload(Contact.responsible_curator)
        ).order_by(Contact.next_touch_date.asc())
        return list(self.session.execute(query).unique().scalars().all())

    # ============================================
    # ACCESS CONTROL
    # ============================================

    def has_access_to_block(self, block_id: int, user_id: int, is_admin: bool) -> bool:
        return self.blocks.has_access(user_id, block_id, is_admin)

    def has_access_to_contact(self, contact_id: int, user_id: int, is_admin: bool) -> bool:
        if is_admin:
            return True
        contact = self.session.get(Contact, contact_id)
        if contact is None:
            return False
        return self.has_access_to_block(contact.block_id, user_id, is_admin)

    def _get_for_write(self, contact_id: int, user_id: int, is_admin: bool) -> Contact:
        contact = self.session.get(Contact, contact_id)
        if contact is None or not contact.is_active:
            raise EntityNotFoundError(f"Contact not found: {contact_id}")
        if not self.has_access_to_block(contact.block_id, user_id, is_admin):
            raise AccessDeniedError("User does not have access to this contact")
        return contact

    # ============================================
    # WRITES
    # ============================================

    def generate_contact_id(self, block_id: int) -> str:
        """
        Next display id for a block: {BLOCKCODE}-{n:03d}.

        n is one more than the highest numeric suffix among the block's
        contacts, soft-deleted ones included.

        Raises:
            EntityNotFoundError: If the block does not exist
        """
        block = self.blocks.get_or_raise(block_id)

        existing = self.session.execute(
            select(Contact.contact_id).where(Contact.block_id == block_id)
        ).scalars().all()

        highest = 0
        for display_id in existing:
            suffix = display_id.rsplit('-', 1)[-1]
            if suffix.isdigit():
                highest = max(highest, int(suffix))

        return f"{block.code}-{highest + 1:03d}"

    def create_contact(
        self,
        block_id: int,
        full_name: str,
        user_id: int,
        is_admin: bool,
        organization_id: Optional[int] = None,
        position: Optional[str] = None,
        influence_status_id: Optional[int] = None,
        influence_type_id: Optional[int] = None,
        usefulness_description: Optional[str] = None,
        communication_channel_id: Optional[int] = None,
        contact_source_id: Optional[int] = None,
        next_touch_date=None,
        notes: Optional[str] = None
    ) -> Contact:
        """
        Create a contact in a block. The caller becomes its responsible curator.

        Raises:
            AccessDeniedError: If the user has no access to the block
            EntityNotFoundError: If the block does not exist or a reference id is unknown
            ValueError: If full_name is empty
        """
        if not self.has_access_to_block(block_id, user_id, is_admin):
            raise AccessDeniedError("User does not have access to this block")
        if not full_name or not full_name.strip():
            raise ValueError("Full name is required")
        self.references.require(
            organization_id=organization_id,
            influence_status_id=influence_status_id,
            influence_type_id=influence_type_id,
            communication_channel_id=communication_channel_id,
            contact_source_id=contact_source_id,
        )

        contact = Contact(
            contact_id=self.generate_contact_id(block_id),
            block_id=block_id,
            full_name_encrypted=self.encryption.encrypt(full_name),
            organization_id=organization_id,
            position=position,
            influence_status_id=influence_status_id,
            influence_type_id=influence_type_id,
            usefulness_description=usefulness_description,
            communication_channel_id=communication_channel_id,
            contact_source_id=contact_source_id,
            next_touch_date=next_touch_date,
            notes_encrypted=self.encryption.encrypt(notes) if notes else None,
            responsible_curator_id=user_id,
            is_active=True,
            updated_by=user_id
        )
        self.session.add(contact)
        self.session.flush()

        self.audit.log(
            user_id=user_id,
            action=AuditActionType.CREATE,
            entity_type="Contact",
            entity_id=contact.id,
            new_values={'ContactId': contact.contact_id, 'InfluenceStatusId': influence_status_id}
        )

        logger.info(f"Contact created: {contact.contact_id} by user {user_id}")
        return contact

    def update_contact(self, contact_id: int, user_id: int, is_admin: bool, **fields: Any) -> Contact:
        """
        Partially update a contact. Only the given fields change.

        An influence status change adds a status history row and a
        StatusChange audit entry; any other update is audited as Update.

        Raises:
            EntityNotFoundError: If the contact does not exist or a reference id is unknown
            AccessDeniedError: If the user has no access to the contact
            ValueError: On unknown fields or an empty full name
        """
        unknown = set(fields) - set(UPDATABLE_FIELDS)
        if unknown:
            raise ValueError(f"Unknown contact fields: {', '.join(sorted(unknown))}")

        contact = self._get_for_write(contact_id, user_id, is_admin)
        self.references.require(**{
            name: value for name, value in fields.items() if name in REFERENCE_FIELDS
        })
        old_status_id = contact.influence_status_id
        status_changed = False

        for name, value in fields.items():
            if name == 'full_name':
                if not value or not str(value).strip():
                    raise ValueError("Full name is required")
                contact.full_name_encrypted = self.encryption.encrypt(value)
            elif name == 'notes':
                contact.notes_encrypted = self.encryption.encrypt(value) if value else None
            elif name == 'influence_status_id':
                if value != old_status_id:
                    status_changed = True
                    contact.influence_status_id = value
            else:
                setattr(contact, name, value)

        contact.updated_by = user_id
        contact.updated_at = utcnow()

        if status_changed:
            self.session.add(InfluenceStatusHistory(
                contact=contact,
                previous_status=str(old_status_id) if old_status_id is not None else "null",
                new_status=str(contact.influence_status_id) if contact.influence_status_id is not None else "null",
                changed_by_user_id=user_id,
                changed_at=utcnow()
            ))
            self.audit.log(
                user_id=user_id,
                action=AuditActionType.STATUS_CHANGE,
                entity_type="Contact",
                entity_id=contact.id,
                old_values={'InfluenceStatusId': old_status_id},
                new_values={'InfluenceStatusId': contact.influence_status_id}
            )
        else:
            self.audit.log(
                user_id=user_id,
                action=AuditActionType.UPDATE,
                entity_type="Contact",
                entity_id=contact.id,
                new_values={'ContactId': contact.contact_id, 'Fields': sorted(fields)}
            )

        self.session.flush()
        logger.info(f"Contact updated: {contact.contact_id} by user {user_id}")
        return contact

    def delete_contact(self, contact_id: int, user_id: int) -> Contact:
        """
        Soft-delete a contact.

        Raises:
            EntityNotFoundError: If the contact does not exist or is already deleted
        """
        contact = self.session.get(Contact, contact_id)
        if contact is None or not contact.is_active:
            raise EntityNotFoundError(f"Contact not found: {contact_id}")

        contact.is_active = False
        contact.updated_by = user_id
        contact.updated_at = utcnow()

        self.audit.log(
            user_id=user_id,
            action=AuditActionType.DELETE,
            entity_type="Contact",
            entity_id=contact.id,
            old_values={'ContactId': contact.contact_id}
        )
        self.session.flush()

        logger.info(f"Contact deactivated: {contact.contact_id} by user {user_id}")
        return contact

    # ============================================
    # DECRYPTION HELPERS
    # ============================================

    def decrypt_name(self, contact: Contact) -> str:
        return self.encryption.decrypt(contact.full_name_encrypted)

    def decrypt_notes(self, contact: Contact) -> Optional[str]:
        if not contact.notes_encrypted:
            return None
        return self.encryption.decrypt(contact.notes_encrypted)

    def summarize(self, contact: Contact) -> Dict[str, Any]:
        """Derived fields shown with a contact: overdue flag and days since contact."""
        now = utcnow()
        next_touch = as_utc(contact.next_touch_date)
        last = as_utc(contact.last_interaction_date)
        return {
            'is_overdue': next_touch is not None and next_touch < now,
            'last_interaction_days_ago': (now - last).days if last is not None else None,
        }
