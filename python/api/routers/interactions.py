"""
Interaction endpoints.
"""

import logging
from datetime import datetime
from typing import List, Optional, Tuple

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from api.dependencies import (
    get_current_user,
    get_encryption_service,
    get_interaction_service,
    get_page_params,
    require_admin,
    require_curator,
)
from api.models import (
    InteractionCreateRequest,
    InteractionResponse,
    InteractionUpdateRequest,
    Page,
)
from api.serializers import interaction_to_response
from database.connection import get_db
from database.models import User
from database.repositories import EntityNotFoundError
from services.encryption import EncryptionService
from services.interaction_service import InteractionService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/interactions", tags=["interactions"])


@router.get("", response_model=Page[InteractionResponse])
def list_interactions(
    contact_id: Optional[int] = None,
    block_id: Optional[int] = None,
    from_date: Optional[datetime] = None,
    to_date: Optional[datetime] = None,
    interaction_type_id: Optional[int] = None,
    result_id: Optional[int] = None,
    paging: Tuple[int, int] = Depends(get_page_params),
    user: User = Depends(get_current_user),
    service: InteractionService = Depends(get_interaction_service),
    encryption: EncryptionService = Depends(get_encryption_service),
):
    page, page_size = paging
    interactions, total = service.get_interactions(
        user.id,
        user.is_admin,
        contact_id=contact_id,
        block_id=block_id,
        from_date=from_date,
        to_date=to_date,
        interaction_type_id=interaction_type_id,
        result_id=result_id,
        page=page,
        page_size=page_size,
    )
    return Page.build(
        [interaction_to_response(i, encryption) for i in interactions], page, page_size, total
    )


@router.get("/recent", response_model=List[InteractionResponse])
def recent_interactions(
    count: int = Query(5, ge=1, le=100),
    user: User = Depends(require_curator),
    service: InteractionService = Depends(get_interaction_service),
    encryption: EncryptionService = Depends(get_encryption_service),
):
    return [
        interaction_to_response(i, encryption)
        for i in service.get_recent_interactions(user.id, user.is_admin, count)
    ]


@router.get("/{interaction_id}", response_model=InteractionResponse)
def get_interaction(
    interaction_id: int,
    user: User = Depends(get_current_user),
    service: InteractionService = Depends(get_interaction_service),
    encryption: EncryptionService = Depends(get_encryption_service),
):
    interaction = service.get_interaction_by_id(interaction_id, user.id, user.is_admin)
    if interaction is None:
        raise EntityNotFoundError(f"Interaction not found: {interaction_id}")
    return interaction_to_response(interaction, encryption)


@router.post("", response_model=InteractionResponse, status_code=201)
def create_interaction(
    request: InteractionCreateRequest,
    user: User = Depends(require_curator),
    service: InteractionService = Depends(get_interaction_service),
    encryption: EncryptionService = Depends(get_encryption_service),
    db: Session = Depends(get_db),
):
    interaction = service.create_interaction(
        user_id=user.id,
        is_admin=user.is_admin,
        **request.model_dump(),
    )
    db.commit()
    return interaction_to_response(interaction, encryption)


@router.put("/{interaction_id}", response_model=InteractionResponse)
def update_interaction(
    interaction_id: int,
    request: InteractionUpdateRequest,
    user: User = Depends(require_curator),
    service: InteractionService = Depends(get_interaction_service),
    encryption: EncryptionService = Depends(get_encryption_service),
    db: Session = Depends(get_db),
):
    """Partial update: fields absent from the body keep their values."""
    interaction = service.update_interaction(
        interaction_id, user.id, user.is_admin, **request.model_dump(exclude_unset=True)
    )
    db.commit()
    return interaction_to_response(interaction, encryption)


@router.put("/{interaction_id}/deactivate", response_model=InteractionResponse)
def deactivate_interaction(
    interaction_id: int,
    user: User = Depends(require_admin),
    service: InteractionService = Depends(get_interaction_service),
    encryption: EncryptionService = Depends(get_encryption_service),
    db: Session = Depends(get_db),
):
    interaction = service.deactivate_interaction(interaction_id, user.id)
    db.commit()
    return interaction_to_response(interaction, encryption)
