"""
Block management endpoints and curator assignment.
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from api.dependencies import get_current_user, require_admin
from api.models import AssignCuratorRequest, BlockCreateRequest, BlockResponse, BlockUpdateRequest, MessageResponse
from api.serializers import block_to_response
from database.connection import get_db
from database.models import AuditActionType, CuratorType, User
from database.repositories import AuditRepository, BlockRepository

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/blocks", tags=["blocks"])


@router.get("", response_model=List[BlockResponse], dependencies=[Depends(require_admin)])
def list_blocks(db: Session = Depends(get_db)):
    """All blocks, archived ones included, with their curators."""
    return [block_to_response(block) for block in BlockRepository(db).list_all()]


@router.get("/my-blocks", response_model=List[BlockResponse])
def my_blocks(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """Active blocks the caller curates (every active block for an admin)."""
    return [
        block_to_response(block)
        for block in BlockRepository(db).list_for_user(user.id, user.is_admin)
    ]


@router.get("/{block_id}", response_model=BlockResponse, dependencies=[Depends(require_admin)])
def get_block(block_id: int, db: Session = Depends(get_db)):
    return block_to_response(BlockRepository(db).get_or_raise(block_id))


@router.post("", response_model=BlockResponse, status_code=201)
def create_block(
    request: BlockCreateRequest,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    block = BlockRepository(db).create(request.name, request.code, request.description)
    AuditRepository(db).log(
        user_id=admin.id,
        action=AuditActionType.CREATE,
        entity_type="Block",
        entity_id=block.id,
        new_values={'Code': block.code, 'Name': block.name},
    )
    db.commit()
    logger.info(f"Block {block.code} created by admin {admin.id}")
    return block_to_response(block)


@router.put("/{block_id}", response_model=BlockResponse)
def update_block(
    block_id: int,
    request: BlockUpdateRequest,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    blocks = BlockRepository(db)
    old = blocks.get_or_raise(block_id)
    old_values = {'Name': old.name, 'Status': old.status.value}

    block = blocks.update(block_id, name=request.name, description=request.description, status=request.status)
    AuditRepository(db).log(
        user_id=admin.id,
        action=AuditActionType.UPDATE,
        entity_type="Block",
        entity_id=block.id,
        old_values=old_values,
        new_values={'Name': block.name, 'Status': block.status.value},
    )
    db.commit()
    return block_to_response(block)


@router.post("/{block_id}/curators", response_model=BlockResponse)
def assign_curator(
    block_id: int,
    request: AssignCuratorRequest,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    blocks = BlockRepository(db)
    blocks.assign_curator(block_id, request.user_id, request.curator_type, assigned_by=admin.id)
    AuditRepository(db).log(
        user_id=admin.id,
        action=AuditActionType.UPDATE,
        entity_type="Block",
        entity_id=block_id,
        new_values={'AssignedUserId': request.user_id, 'CuratorType': request.curator_type.value},
    )
    db.commit()
    block = blocks.get_or_raise(block_id)
    db.refresh(block)
    return block_to_response(block)


@router.delete("/{block_id}/curators/{user_id}", response_model=MessageResponse)
def remove_curator(
    block_id: int,
    user_id: int,
    curator_type: Optional[CuratorType] = Query(None, description="Remove only this assignment type"),
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    removed = BlockRepository(db).remove_curator(block_id, user_id, curator_type)
    AuditRepository(db).log(
        user_id=admin.id,
        action=AuditActionType.UPDATE,
        entity_type="Block",
        entity_id=block_id,
        old_values={
            'RemovedUserId': user_id,
            'CuratorType': curator_type.value if curator_type else None,
        },
    )
    db.commit()
    return MessageResponse(message=f"Removed {removed} assignment(s)")


@router.delete("/{block_id}", response_model=MessageResponse)
def archive_block(
    block_id: int,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """Blocks are archived, never deleted."""
    block = BlockRepository(db).archive(block_id)
    AuditRepository(db).log(
        user_id=admin.id,
        action=AuditActionType.DELETE,
        entity_type="Block",
        entity_id=block.id,
        new_values={'Status': block.status.value},
    )
    db.commit()
    return MessageResponse(message="Block archived")
