"""
Watchlist endpoints (Admin and ThreatAnalyst).
"""

import logging
from typing import List, Optional, Tuple

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from api.dependencies import get_page_params, get_watchlist_service, require_admin, require_analyst
from api.models import (
    MessageResponse,
    Page,
    RecordCheckRequest,
    WatchlistCreateRequest,
    WatchlistHistoryResponse,
    WatchlistResponse,
    WatchlistStatisticsResponse,
    WatchlistUpdateRequest,
)
from api.serializers import watchlist_to_response
from database.connection import get_db
from database.models import MonitoringFrequency, RiskLevel, User
from database.repositories import EntityNotFoundError
from services.watchlist_service import WatchlistService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/watchlist", tags=["watchlist"])


@router.get("", response_model=Page[WatchlistResponse], dependencies=[Depends(require_analyst)])
def list_watchlist(
    risk_level: Optional[RiskLevel] = None,
    risk_sphere_id: Optional[int] = None,
    monitoring_frequency: Optional[MonitoringFrequency] = None,
    watch_owner_id: Optional[int] = None,
    requires_check: Optional[bool] = None,
    paging: Tuple[int, int] = Depends(get_page_params),
    service: WatchlistService = Depends(get_watchlist_service),
):
    page, page_size = paging
    items, total = service.get_watchlist(
        risk_level=risk_level,
        risk_sphere_id=risk_sphere_id,
        monitoring_frequency=monitoring_frequency,
        watch_owner_id=watch_owner_id,
        requires_check=requires_check,
        page=page,
        page_size=page_size,
    )
    return Page.build([watchlist_to_response(item) for item in items], page, page_size, total)


@router.get(
    "/requiring-check",
    response_model=List[WatchlistResponse],
    dependencies=[Depends(require_analyst)],
)
def requiring_check(service: WatchlistService = Depends(get_watchlist_service)):
    return [watchlist_to_response(item) for item in service.get_items_requiring_check()]


@router.get(
    "/statistics",
    response_model=WatchlistStatisticsResponse,
    dependencies=[Depends(require_analyst)],
)
def watchlist_statistics(service: WatchlistService = Depends(get_watchlist_service)):
    return service.get_statistics()


@router.get("/{item_id}", response_model=WatchlistResponse, dependencies=[Depends(require_analyst)])
def get_watchlist_item(item_id: int, service: WatchlistService = Depends(get_watchlist_service)):
    item = service.get_by_id(item_id)
    if item is None:
        raise EntityNotFoundError(f"Watchlist item not found: {item_id}")
    return watchlist_to_response(item)


@router.get(
    "/{item_id}/history",
    response_model=List[WatchlistHistoryResponse],
    dependencies=[Depends(require_analyst)],
)
def watchlist_history(item_id: int, service: WatchlistService = Depends(get_watchlist_service)):
    return service.get_history(item_id)


@router.post("", response_model=WatchlistResponse, status_code=201)
def create_watchlist_item(
    request: WatchlistCreateRequest,
    user: User = Depends(require_analyst),
    service: WatchlistService = Depends(get_watchlist_service),
    db: Session = Depends(get_db),
):
    item = service.create(user.id, request.model_dump(exclude_none=True))
    db.commit()
    return watchlist_to_response(item)


@router.put("/{item_id}", response_model=WatchlistResponse)
def update_watchlist_item(
    item_id: int,
    request: WatchlistUpdateRequest,
    user: User = Depends(require_analyst),
    service: WatchlistService = Depends(get_watchlist_service),
    db: Session = Depends(get_db),
):
    """Partial update: fields absent from the body keep their values."""
    item = service.update(item_id, user.id, request.model_dump(exclude_unset=True))
    db.commit()
    return watchlist_to_response(item)


@router.post("/{item_id}/check", response_model=WatchlistResponse)
def record_check(
    item_id: int,
    request: RecordCheckRequest,
    user: User = Depends(require_analyst),
    service: WatchlistService = Depends(get_watchlist_service),
    db: Session = Depends(get_db),
):
    item = service.record_check(
        item_id,
        user.id,
        next_check_date=request.next_check_date,
        dynamics_update=request.dynamics_update,
        new_risk_level=request.new_risk_level,
        comment=request.comment,
    )
    db.commit()
    return watchlist_to_response(item)


@router.delete("/{item_id}", response_model=MessageResponse)
def delete_watchlist_item(
    item_id: int,
    user: User = Depends(require_admin),
    service: WatchlistService = Depends(get_watchlist_service),
    db: Session = Depends(get_db),
):
    service.delete(item_id, user.id)
    db.commit()
    return MessageResponse(message="Watchlist item deleted")
