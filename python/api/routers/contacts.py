"""
Contact endpoints. Visibility follows block curatorship (see ContactService).
"""

import logging
from typing import List, Optional, Tuple

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from api.dependencies import (
    get_contact_service,
    get_current_user,
    get_page_params,
    require_admin,
    require_curator,
)
from api.models import (
    ContactCreatedResponse,
    ContactCreateRequest,
    ContactDetail,
    ContactListItem,
    ContactUpdateRequest,
    MessageResponse,
    Page,
)
from api.serializers import contact_to_detail, contact_to_list_item
from database.connection import get_db
from database.models import User
from database.repositories import EntityNotFoundError
from services.contact_service import ContactService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/contacts", tags=["contacts"])


@router.get("", response_model=Page[ContactListItem])
def list_contacts(
    block_id: Optional[int] = None,
    search: Optional[str] = Query(None, max_length=100),
    influence_status_id: Optional[int] = None,
    influence_type_id: Optional[int] = None,
    organization_id: Optional[int] = None,
    paging: Tuple[int, int] = Depends(get_page_params),
    user: User = Depends(get_current_user),
    service: ContactService = Depends(get_contact_service),
):
    page, page_size = paging
    contacts, total = service.get_contacts(
        user.id,
        user.is_admin,
        block_id=block_id,
        search=search,
        influence_status_id=influence_status_id,
        influence_type_id=influence_type_id,
        organization_id=organization_id,
        page=page,
        page_size=page_size,
    )
    return Page.build(
        [contact_to_list_item(contact, service) for contact in contacts], page, page_size, total
    )


@router.get("/overdue", response_model=List[ContactListItem])
def overdue_contacts(
    user: User = Depends(require_curator),
    service: ContactService = Depends(get_contact_service),
):
    return [
        contact_to_list_item(contact, service)
        for contact in service.get_overdue_contacts(user.id, user.is_admin)
    ]


@router.get("/{contact_id}", response_model=ContactDetail)
def get_contact(
    contact_id: int,
    user: User = Depends(get_current_user),
    service: ContactService = Depends(get_contact_service),
):
    contact = service.get_contact_by_id(contact_id, user.id, user.is_admin)
    if contact is None:
        raise EntityNotFoundError(f"Contact not found: {contact_id}")
    return contact_to_detail(contact, service)


@router.post("", response_model=ContactCreatedResponse, status_code=201)
def create_contact(
    request: ContactCreateRequest,
    user: User = Depends(require_curator),
    service: ContactService = Depends(get_contact_service),
    db: Session = Depends(get_db),
):
    contact = service.create_contact(
        user_id=user.id,
        is_admin=user.is_admin,
        **request.model_dump(),
    )
    db.commit()
    return ContactCreatedResponse(id=contact.id, contact_id=contact.contact_id)


@router.put("/{contact_id}", response_model=ContactDetail)
def update_contact(
    contact_id: int,
    request: ContactUpdateRequest,
    user: User = Depends(require_curator),
    service: ContactService = Depends(get_contact_service),
    db: Session = Depends(get_db),
):
    """Partial update: fields absent from the body keep their values."""
    service.update_contact(contact_id, user.id, user.is_admin, **request.model_dump(exclude_unset=True))
    db.commit()
    return get_contact(contact_id, user, service)


@router.delete("/{contact_id}", response_model=MessageResponse)
def delete_contact(
    contact_id: int,
    user: User = Depends(require_admin),
    service: ContactService = Depends(get_contact_service),
    db: Session = Depends(get_db),
):
    service.delete_contact(contact_id, user.id)
    db.commit()
    return MessageResponse(message="Contact deleted")
