"""
Reference catalogue endpoints (lookup values by category).
"""

import logging
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from api.dependencies import get_current_user, require_admin
from api.models import MessageResponse, ReferenceCreateRequest, ReferenceResponse, ReferenceUpdateRequest
from database.connection import get_db
from database.models import AuditActionType, User
from database.repositories import AuditRepository, ReferenceValueRepository

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/references", tags=["references"])


@router.get("", response_model=List[ReferenceResponse], dependencies=[Depends(get_current_user)])
def list_references(
    category: Optional[str] = Query(None, max_length=50),
    db: Session = Depends(get_db),
):
    return ReferenceValueRepository(db).list_values(category)


@router.get("/categories", response_model=List[str], dependencies=[Depends(get_current_user)])
def list_categories(db: Session = Depends(get_db)):
    return ReferenceValueRepository(db).list_categories()


@router.get(
    "/by-category",
    response_model=Dict[str, List[ReferenceResponse]],
    dependencies=[Depends(get_current_user)],
)
def references_by_category(db: Session = Depends(get_db)):
    """Active values grouped by category."""
    return ReferenceValueRepository(db).grouped_by_category()


@router.post("", response_model=ReferenceResponse, status_code=201)
def create_reference(
    request: ReferenceCreateRequest,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    reference = ReferenceValueRepository(db).create(
        category=request.category,
        code=request.code,
        name=request.name,
        description=request.description,
        sort_order=request.sort_order,
    )
    AuditRepository(db).log(
        user_id=admin.id,
        action=AuditActionType.CREATE,
        entity_type="ReferenceValue",
        entity_id=reference.id,
        new_values={'Category': reference.category, 'Code': reference.code},
    )
    db.commit()
    return reference


@router.put("/{reference_id}", response_model=ReferenceResponse)
def update_reference(
    reference_id: int,
    request: ReferenceUpdateRequest,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    reference = ReferenceValueRepository(db).update(
        reference_id,
        name=request.name,
        description=request.description,
        sort_order=request.sort_order,
        is_active=request.is_active,
    )
    AuditRepository(db).log(
        user_id=admin.id,
        action=AuditActionType.UPDATE,
        entity_type="ReferenceValue",
        entity_id=reference.id,
        new_values={'Name': reference.name, 'IsActive': reference.is_active},
    )
    db.commit()
    return reference


@router.delete("/{reference_id}", response_model=MessageResponse)
def deactivate_reference(
    reference_id: int,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    reference = ReferenceValueRepository(db).deactivate(reference_id)
    AuditRepository(db).log(
        user_id=admin.id,
        action=AuditActionType.DELETE,
        entity_type="ReferenceValue",
        entity_id=reference.id,
        new_values={'IsActive': False},
    )
    db.commit()
    return MessageResponse(message="Reference value deactivated")


@router.post("/{reference_id}/toggle", response_model=ReferenceResponse)
def toggle_reference(
    reference_id: int,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    reference = ReferenceValueRepository(db).toggle(reference_id)
    AuditRepository(db).log(
        user_id=admin.id,
        action=AuditActionType.UPDATE,
        entity_type="ReferenceValue",
        entity_id=reference.id,
        new_values={'IsActive': reference.is_active},
    )
    db.commit()
    return reference
