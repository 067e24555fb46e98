"""
Dashboard endpoints.
"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends

from api.dependencies import get_current_user, get_dashboard_service, require_admin, require_curator
from api.models import AdminDashboardResponse, CuratorDashboardResponse, InteractionStatisticsResponse
from database.models import User
from services.dashboard_service import DashboardService

router = APIRouter(prefix="/api/dashboard", tags=["dashboard"])


@router.get("/curator", response_model=CuratorDashboardResponse)
def curator_dashboard(
    user: User = Depends(require_curator),
    service: DashboardService = Depends(get_dashboard_service),
):
    return service.get_curator_dashboard(user.id, user.is_admin)


@router.get("/admin", response_model=AdminDashboardResponse, dependencies=[Depends(require_admin)])
def admin_dashboard(service: DashboardService = Depends(get_dashboard_service)):
    return service.get_admin_dashboard()


@router.get("/statistics", response_model=InteractionStatisticsResponse)
def interaction_statistics(
    from_date: Optional[datetime] = None,
    to_date: Optional[datetime] = None,
    block_id: Optional[int] = None,
    user: User = Depends(get_current_user),
    service: DashboardService = Depends(get_dashboard_service),
):
    """Interaction statistics for a period, the last month by default."""
    return service.get_statistics(user.id, user.is_admin, from_date, to_date, block_id)
