"""
FAQ endpoints. Anyone authenticated reads; admins write.
"""

from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from api.dependencies import get_current_user, require_admin
from api.models import FaqCreateRequest, FaqResponse, FaqUpdateRequest, MessageResponse
from database.connection import get_db
from database.models import User
from database.repositories import FaqRepository

router = APIRouter(prefix="/api/faq", tags=["faq"])


@router.get("", response_model=List[FaqResponse], dependencies=[Depends(get_current_user)])
def list_faq(db: Session = Depends(get_db)):
    return FaqRepository(db).list_active()


@router.get("/{faq_id}", response_model=FaqResponse, dependencies=[Depends(get_current_user)])
def get_faq(faq_id: int, db: Session = Depends(get_db)):
    return FaqRepository(db).get_active(faq_id)


@router.post("", response_model=FaqResponse, status_code=201)
def create_faq(
    request: FaqCreateRequest,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    faq = FaqRepository(db).create(request.title, request.content, request.sort_order, admin.id)
    db.commit()
    return faq


@router.put("/{faq_id}", response_model=FaqResponse)
def update_faq(
    faq_id: int,
    request: FaqUpdateRequest,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    faq = FaqRepository(db).update(faq_id, admin.id, **request.model_dump(exclude_unset=True))
    db.commit()
    return faq


@router.delete("/{faq_id}", response_model=MessageResponse)
def delete_faq(
    faq_id: int,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    FaqRepository(db).soft_delete(faq_id, admin.id)
    db.commit()
    return MessageResponse(message="FAQ entry deleted")
