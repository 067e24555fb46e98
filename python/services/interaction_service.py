"""
Interaction Service

Touch records on contacts. Creating an interaction moves the contact's
last interaction date forward and may carry an influence status change
payload ({"oldStatus": .., "newStatus": ..}) that is applied to the
contact.
"""

import json
import logging
from typing import Any, List, Optional, Tuple

from sqlalchemy import select, func, and_
from sqlalchemy.orm import Session, joinedload

from database.models import (
    Block,
    BlockStatus,
    Contact,
    Interaction,
    InfluenceStatusHistory,
    AuditActionType,
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
from log_utils import sanitize_for_logging
from services.encryption import EncryptionService
from services.exceptions import AccessDeniedError

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = (
    'interaction_date',
    'interaction_type_id',
    'result_id',
    'comment',
    'status_change_json',
    'attachments_json',
    'next_touch_date',
)


def parse_new_status(status_change_json: Optional[str]) -> Optional[int]:
    """
    Extract the new influence status id from a status change payload.

    newStatus may be an integer or a numeric string.

    Raises:
        ValueError: If the payload is not a JSON object or newStatus is not numeric
    """
    if not status_change_json:
        return None

    payload = json.loads(status_change_json)
    if not isinstance(payload, dict):
        raise ValueError("Status change payload must be a JSON object")

    new_status = payload.get('newStatus')
    if new_status is None or new_status == "":
        return None
    if isinstance(new_status, bool):
        raise ValueError("newStatus must be numeric")
    if isinstance(new_status, int):
        return new_status
    if isinstance(new_status, str) and new_status.strip().lstrip('-').isdigit():
        return int(new_status.strip())
    raise ValueError("newStatus must be numeric")


class InteractionService:
    """Business operations on interactions."""

    def __init__(self, session: Session, encryption: EncryptionService):
        self.session = session
        self.encryption = encryption
        self.blocks = BlockRepository(session)
        self.references = ReferenceValueRepository(session)
        self.audit = AuditRepository(session)

    def _visible_interactions(self, user_id: int, is_admin: bool):
        """Active interactions of contacts in active blocks the user may see."""
        query = select(Interaction).join(
            Contact, Interaction.contact_id == Contact.id
        ).join(
            Block, Contact.block_id == Block.id
        ).where(
            and_(Interaction.is_active == True, Block.status == BlockStatus.ACTIVE)
        )
        if not is_admin:
            query = query.where(Contact.block_id.in_(assigned_block_ids_query(user_id)))
        return query

    def _with_relations(self, query):
        return query.options(
            joinedload(Interaction.contact).joinedload(Contact.block),
            joinedload(Interaction.curator)
        )

    def get_interactions(
        self,
        user_id: int,
        is_admin: bool,
        contact_id: Optional[int] = None,
        block_id: Optional[int] = None,
        from_date=None,
        to_date=None,
        interaction_type_id: Optional[int] = None,
        result_id: Optional[int] = None,
        page: int = 1,
        page_size: int = 50
    ) -> Tuple[List[Interaction], int]:
        """
        List interactions visible to the user, newest first.

        Returns:
            Tuple of (interactions on the page, total count)
        """
        query = self._visible_interactions(user_id, is_admin)

        if contact_id:
            query = query.where(Interaction.contact_id == contact_id)
        if block_id:
            query = query.where(Contact.block_id == block_id)
        if from_date:
            query = query.where(Interaction.interaction_date >= from_date)
        if to_date:
            query = query.where(Interaction.interaction_date <= to_date)
        if interaction_type_id:
            query = query.where(Interaction.interaction_type_id == interaction_type_id)
        if result_id:
            query = query.where(Interaction.result_id == result_id)

        total = self.session.execute(
            select(func.count()).select_from(query.subquery())
        ).scalar_one()

        query = self._with_relations(query).order_by(
            Interaction.interaction_date.desc(), Interaction.id.desc()
        ).offset(page_offset(page, page_size)).limit(page_size)

        interactions = list(self.session.execute(query).unique().scalars().all())
        return interactions, total

    def get_interaction_by_id(self, interaction_id: int, user_id: int, is_admin: bool) -> Optional[Interaction]:
        """
        Get an interaction.

        Returns:
            Interaction, or None when missing

        Raises:
            AccessDeniedError: If the user has no access to the contact's block
        """
        query = self._with_relations(
            select(Interaction).where(Interaction.id == interaction_id)
        )
        interaction = self.session.execute(query).unique().scalar_one_or_none()
        if interaction is None:
            return None

        if not self.blocks.has_access(user_id, interaction.contact.block_id, is_admin):
            raise AccessDeniedError("User does not have access to this interaction")
        return interaction

    def get_recent_interactions(self, user_id: int, is_admin: bool, count: int = 5) -> List[Interaction]:
        query = self._with_relations(self._visible_interactions(user_id, is_admin)).order_by(
            Interaction.interaction_date.desc(), Interaction.id.desc()
        ).limit(count)
        return list(self.session.execute(query).unique().scalars().all())

    def create_interaction(
        self,
        contact_id: int,
        user_id: int,
        is_admin: bool,
        interaction_date=None,
        interaction_type_id: Optional[int] = None,
        result_id: Optional[int] = None,
        comment: Optional[str] = None,
        status_change_json: Optional[str] = None,
        attachments_json: Optional[str] = None,
        next_touch_date=None
    ) -> Interaction:
        """
        Record an interaction with a contact. The caller is its curator.

        Raises:
            EntityNotFoundError: If the contact does not exist or a reference id is unknown
            AccessDeniedError: If the user has no access to the contact's block
        """
        contact = self.session.get(Contact, contact_id)
        if contact is None or not contact.is_active:
            raise EntityNotFoundError(f"Contact not found: {contact_id}")
        if not self.blocks.has_access(user_id, contact.block_id, is_admin):
            raise AccessDeniedError("User does not have access to this contact's block")
        self.references.require(interaction_type_id=interaction_type_id, result_id=result_id)

        interaction = Interaction(
            contact=contact,
            interaction_date=interaction_date or utcnow(),
            interaction_type_id=interaction_type_id,
            curator_id=user_id,
            result_id=result_id,
            comment_encrypted=self.encryption.encrypt(comment) if comment else None,
            status_change_json=status_change_json,
            attachments_json=attachments_json,
            next_touch_date=next_touch_date,
            is_active=True,
            updated_by=user_id
        )
        self.session.add(interaction)

        contact.last_interaction_date = interaction.interaction_date
        if next_touch_date is not None:
            contact.next_touch_date = next_touch_date
        contact.updated_at = utcnow()
        contact.updated_by = user_id
        self.session.flush()

        if status_change_json:
            self.record_status_change(contact_id, user_id, status_change_json)

        self.audit.log(
            user_id=user_id,
            action=AuditActionType.CREATE,
            entity_type="Interaction",
            entity_id=interaction.id,
            new_values={'ContactId': contact.contact_id, 'InteractionTypeId': interaction_type_id}
        )

        logger.info(f"Interaction created for contact {contact.contact_id} by user {user_id}")
        return interaction

    def update_interaction(self, interaction_id: int, user_id: int, is_admin: bool, **fields: Any) -> Interaction:
        """
        Partially update an interaction. Only the given fields change.

        A new next_touch_date is also applied to the contact.

        Raises:
            EntityNotFoundError: If the interaction does not exist or a reference id is unknown
            AccessDeniedError: If the user has no access to the contact's block
            ValueError: On unknown fields
        """
        unknown = set(fields) - set(UPDATABLE_FIELDS)
        if unknown:
            raise ValueError(f"Unknown interaction fields: {', '.join(sorted(unknown))}")

        interaction = self.session.get(Interaction, interaction_id)
        if interaction is None or not interaction.is_active:
            raise EntityNotFoundError(f"Interaction not found: {interaction_id}")
        contact = interaction.contact
        if not self.blocks.has_access(user_id, contact.block_id, is_admin):
            raise AccessDeniedError("User does not have access to this interaction")
        self.references.require(**{
            name: value for name, value in fields.items() if name in ('interaction_type_id', 'result_id')
        })

        for name, value in fields.items():
            if name == 'comment':
                interaction.comment_encrypted = self.encryption.encrypt(value) if value else None
            elif name == 'interaction_date':
                if value is not None:
                    interaction.interaction_date = value
            else:
                setattr(interaction, name, value)

        interaction.updated_at = utcnow()
        interaction.updated_by = user_id

        if fields.get('next_touch_date') is not None:
            contact.next_touch_date = fields['next_touch_date']
            contact.updated_at = utcnow()
            contact.updated_by = user_id

        self.audit.log(
            user_id=user_id,
            action=AuditActionType.UPDATE,
            entity_type="Interaction",
            entity_id=interaction.id,
            new_values={'ContactId': contact.contact_id, 'Fields': sorted(fields)}
        )
        self.session.flush()

        logger.info(f"Interaction {interaction_id} updated by user {user_id}")
        return interaction

    def deactivate_interaction(self, interaction_id: int, user_id: int) -> Interaction:
        """
        Soft-delete an interaction.

        Raises:
            EntityNotFoundError: If the interaction does not exist or is already inactive
        """
        interaction = self.session.get(Interaction, interaction_id)
        if interaction is None or not interaction.is_active:
            raise EntityNotFoundError(f"Interaction not found: {interaction_id}")

        interaction.is_active = False
        interaction.updated_at = utcnow()
        interaction.updated_by = user_id

        self.audit.log(
            user_id=user_id,
            action=AuditActionType.DELETE,
            entity_type="Interaction",
            entity_id=interaction.id,
            old_values={'ContactId': interaction.contact.contact_id}
        )
        self.session.flush()

        logger.info(f"Interaction {interaction_id} deactivated by user {user_id}")
        return interaction

    def record_status_change(self, contact_id: int, user_id: int, status_change_json: str) -> bool:
        """
        Apply a status change payload to a contact.

        Invalid payloads and unknown status ids are logged and skipped.

        Returns:
            True if the contact's influence status was changed

        Raises:
            EntityNotFoundError: If the contact does not exist
        """
        contact = self.session.get(Contact, contact_id)
        if contact is None:
            raise EntityNotFoundError(f"Contact not found: {contact_id}")

        try:
            new_status_id = parse_new_status(status_change_json)
        except ValueError as e:
            # json.JSONDecodeError is a ValueError
            logger.warning(
                f"Invalid status change payload for contact {contact_id}: "
                f"{sanitize_for_logging(str(e), max_length=200)}"
            )
            return False

        if new_status_id is None:
            return False
        if self.references.get_by_id(new_status_id) is None:
            logger.warning(f"Unknown influence status {new_status_id} for contact {contact_id}; status left unchanged")
            return False

        old_status = str(contact.influence_status_id) if contact.influence_status_id is not None else "null"
        contact.influence_status_id = new_status_id

        self.session.add(InfluenceStatusHistory(
            contact=contact,
            previous_status=old_status,
            new_status=str(new_status_id),
            changed_by_user_id=user_id,
            changed_at=utcnow()
        ))
        self.audit.log(
            user_id=user_id,
            action=AuditActionType.STATUS_CHANGE,
            entity_type="Contact",
            entity_id=contact.id,
            old_values={'InfluenceStatusId': old_status},
            new_values={'InfluenceStatusId': str(new_status_id)}
        )
        self.session.flush()
        return True
