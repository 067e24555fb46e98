"""
Audit log endpoints (Admin). The log is read-only over the API.
"""

from datetime import datetime
from typing import List, Optional, Tuple

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from api.dependencies import get_page_params, require_admin
from api.models import AuditLogResponse, AuditStatisticsResponse, Page
from api.serializers import audit_to_response
from database.connection import get_db
from database.models import AuditActionType
from database.repositories import AuditRepository

router = APIRouter(
    prefix="/api/audit-log",
    tags=["audit-log"],
    dependencies=[Depends(require_admin)],
)


@router.get("", response_model=Page[AuditLogResponse])
def search_audit_log(
    user_id: Optional[int] = None,
    action_type: Optional[AuditActionType] = None,
    entity_type: Optional[str] = Query(None, max_length=100),
    from_date: Optional[datetime] = None,
    to_date: Optional[datetime] = None,
    block_id: Optional[int] = Query(None, description="Contact and Interaction entries of this block"),
    paging: Tuple[int, int] = Depends(get_page_params),
    db: Session = Depends(get_db),
):
    page, page_size = paging
    logs, total = AuditRepository(db).search(
        user_id=user_id,
        block_id=block_id,
        action=action_type,
        entity_type=entity_type,
        start_date=from_date,
        end_date=to_date,
        page=page,
        page_size=page_size,
    )
    return Page.build([audit_to_response(log) for log in logs], page, page_size, total)


@router.get("/statistics", response_model=AuditStatisticsResponse)
def audit_statistics(
    from_date: Optional[datetime] = None,
    to_date: Optional[datetime] = None,
    db: Session = Depends(get_db),
):
    return AuditRepository(db).get_statistics(from_date, to_date)


@router.get("/entity/{entity_type}/{entity_id}", response_model=List[AuditLogResponse])
def entity_history(entity_type: str, entity_id: str, db: Session = Depends(get_db)):
    return [audit_to_response(log) for log in AuditRepository(db).get_by_entity(entity_type, entity_id)]


@router.get("/user/{user_id}", response_model=Page[AuditLogResponse])
def user_activity(
    user_id: int,
    paging: Tuple[int, int] = Depends(get_page_params),
    db: Session = Depends(get_db),
):
    page, page_size = paging
    logs, total = AuditRepository(db).get_by_user(user_id, page, page_size)
    return Page.build([audit_to_response(log) for log in logs], page, page_size, total)


@router.get("/recent", response_model=List[AuditLogResponse])
def recent_audit_log(count: int = Query(20, ge=1, le=200), db: Session = Depends(get_db)):
    return [audit_to_response(log) for log in AuditRepository(db).get_recent(count)]
