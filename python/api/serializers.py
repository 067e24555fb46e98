"""
ORM row -> response schema conversion shared by the routers.

Encrypted fields are decrypted here, never in the schemas.
"""

from typing import List

from api.models import (
    AuditLogResponse,
    BlockCuratorResponse,
    BlockRef,
    BlockResponse,
    ContactDetail,
    ContactListItem,
    InteractionResponse,
    StatusHistoryResponse,
    UserResponse,
    WatchlistResponse,
)
from database.models import (
    AuditLog,
    Block,
    Contact,
    CuratorType,
    Interaction,
    User,
    Watchlist,
    as_utc,
)
from services.contact_service import ContactService
from services.encryption import EncryptionService


def user_to_response(user: User) -> UserResponse:
    primary: List[BlockRef] = []
    backup: List[BlockRef] = []
    for assignment in user.block_assignments:
        ref = BlockRef(id=assignment.block.id, name=assignment.block.name)
        if assignment.curator_type == CuratorType.PRIMARY:
            primary.append(ref)
        else:
            backup.append(ref)

    return UserResponse(
        id=user.id,
        login=user.login,
        role=user.role,
        is_active=user.is_active,
        is_first_login=user.is_first_login,
        mfa_enabled=user.mfa_enabled,
        created_at=user.created_at,
        last_login_at=user.last_login_at,
        primary_blocks=primary,
        backup_blocks=backup,
    )


def block_to_response(block: Block) -> BlockResponse:
    return BlockResponse(
        id=block.id,
        name=block.name,
        code=block.code,
        description=block.description,
        status=block.status,
        created_at=block.created_at,
        updated_at=block.updated_at,
        curators=[
            BlockCuratorResponse(
                user_id=assignment.user_id,
                login=assignment.user.login,
                curator_type=assignment.curator_type,
                assigned_at=assignment.assigned_at,
            )
            for assignment in block.curators
        ],
    )


def interaction_to_response(interaction: Interaction, encryption: EncryptionService) -> InteractionResponse:
    return InteractionResponse(
        id=interaction.id,
        contact_id=interaction.contact_id,
        contact_display_id=interaction.contact.contact_id if interaction.contact else None,
        interaction_date=interaction.interaction_date,
        interaction_type_id=interaction.interaction_type_id,
        curator_id=interaction.curator_id,
        curator_login=interaction.curator.login if interaction.curator else None,
        result_id=interaction.result_id,
        comment=encryption.decrypt(interaction.comment_encrypted) or None,
        status_change_json=interaction.status_change_json,
        attachments_json=interaction.attachments_json,
        next_touch_date=interaction.next_touch_date,
        is_active=interaction.is_active,
        created_at=interaction.created_at,
        updated_at=interaction.updated_at,
    )


def _contact_fields(contact: Contact, service: ContactService) -> dict:
    return dict(
        id=contact.id,
        contact_id=contact.contact_id,
        block_id=contact.block_id,
        block_name=contact.block.name if contact.block else None,
        block_code=contact.block.code if contact.block else None,
        full_name=service.decrypt_name(contact),
        organization_id=contact.organization_id,
        position=contact.position,
        influence_status_id=contact.influence_status_id,
        influence_type_id=contact.influence_type_id,
        last_interaction_date=contact.last_interaction_date,
        next_touch_date=contact.next_touch_date,
        responsible_curator_id=contact.responsible_curator_id,
        responsible_curator_login=(
            contact.responsible_curator.login if contact.responsible_curator else None
        ),
        updated_at=contact.updated_at,
        **service.summarize(contact),
    )


def contact_to_list_item(contact: Contact, service: ContactService) -> ContactListItem:
    return ContactListItem(**_contact_fields(contact, service))


def contact_to_detail(contact: Contact, service: ContactService) -> ContactDetail:
    interactions = sorted(
        (i for i in contact.interactions if i.is_active),
        key=lambda i: (as_utc(i.interaction_date), i.id),
        reverse=True,
    )
    history = sorted(contact.status_history, key=lambda h: (as_utc(h.changed_at), h.id), reverse=True)

    return ContactDetail(
        **_contact_fields(contact, service),
        usefulness_description=contact.usefulness_description,
        communication_channel_id=contact.communication_channel_id,
        contact_source_id=contact.contact_source_id,
        notes=service.decrypt_notes(contact),
        created_at=contact.created_at,
        interactions=[interaction_to_response(i, service.encryption) for i in interactions],
        status_history=[
            StatusHistoryResponse(
                id=h.id,
                previous_status=h.previous_status,
                new_status=h.new_status,
                changed_by_user_id=h.changed_by_user_id,
                changed_by_login=h.changed_by.login if h.changed_by else None,
                changed_at=h.changed_at,
            )
            for h in history
        ],
    )


def watchlist_to_response(item: Watchlist) -> WatchlistResponse:
    return WatchlistResponse(
        id=item.id,
        full_name=item.full_name,
        role_status=item.role_status,
        risk_sphere_id=item.risk_sphere_id,
        threat_source=item.threat_source,
        conflict_date=item.conflict_date,
        risk_level=item.risk_level,
        monitoring_frequency=item.monitoring_frequency,
        last_check_date=item.last_check_date,
        next_check_date=item.next_check_date,
        dynamics_description=item.dynamics_description,
        watch_owner_id=item.watch_owner_id,
        watch_owner_login=item.watch_owner.login if item.watch_owner else None,
        attachments_json=item.attachments_json,
        is_active=item.is_active,
        created_at=item.created_at,
        updated_at=item.updated_at,
    )


def audit_to_response(log: AuditLog) -> AuditLogResponse:
    return AuditLogResponse(
        id=log.id,
        user_id=log.user_id,
        user_login=log.user.login if log.user else None,
        action=log.action,
        entity_type=log.entity_type,
        entity_id=log.entity_id,
        old_values_json=log.old_values_json,
        new_values_json=log.new_values_json,
        timestamp=log.timestamp,
    )
