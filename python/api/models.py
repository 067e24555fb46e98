"""
Pydantic request/response schemas for the Kurator API

Response models read ORM rows through from_attributes where the shape
matches; decrypted fields and derived values are filled in by the routers.
"""

import math
from datetime import datetime
from typing import Dict, Generic, List, Optional, TypeVar

from pydantic import BaseModel, Field, field_validator

from database.models import (
    UserRole,
    BlockStatus,
    CuratorType,
    RiskLevel,
    MonitoringFrequency,
    AuditActionType,
)

T = TypeVar("T")


# ============================================
# COMMON
# ============================================

class Page(BaseModel, Generic[T]):
    """Pagination envelope."""
    data: List[T] = Field(default_factory=list)
    page: int = Field(..., ge=1)
    page_size: int = Field(..., ge=1)
    total: int = Field(..., ge=0)
    total_pages: int = Field(..., ge=0)

    @classmethod
    def build(cls, data: List[T], page: int, page_size: int, total: int) -> "Page[T]":
        return cls(
            data=data,
            page=page,
            page_size=page_size,
            total=total,
            total_pages=math.ceil(total / page_size) if page_size else 0,
        )


class MessageResponse(BaseModel):
    message: str


class ErrorDetail(BaseModel):
    """Detailed error information."""
    code: str = Field(..., description="Error code for programmatic handling")
    message: str = Field(..., description="Human-readable error message")
    field: Optional[str] = Field(default=None, description="Field that caused error")
    suggestion: Optional[str] = Field(default=None, description="How to fix the error")
    timestamp: str = Field(..., description="Error timestamp (ISO 8601)")


class ErrorResponse(BaseModel):
    """Standardized error response format."""
    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response schema for health check endpoint."""
    status: str = Field(default="healthy", description="Service status")
    database: str = Field(..., description="Database connectivity: connected or unavailable")
    version: str = Field(..., description="API version")


# ============================================
# AUTH
# ============================================

class LoginRequest(BaseModel):
    login: str = Field(..., min_length=1, max_length=100)
    password: str = Field(..., min_length=1)


class UserInfo(BaseModel):
    """Identity returned after a successful login."""
    id: int
    login: str
    role: UserRole
    mfa_enabled: bool
    last_login_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class LoginResponse(BaseModel):
    """Either an MFA step to complete or the logged-in user."""
    require_mfa_setup: bool = False
    require_mfa_verification: bool = False
    user_id: Optional[int] = None
    user: Optional[UserInfo] = None


class RegisterRequest(BaseModel):
    login: str = Field(..., min_length=3, max_length=100)
    password: str = Field(..., min_length=8, max_length=128)
    role: UserRole = UserRole.CURATOR

    @field_validator('login')
    @classmethod
    def validate_login(cls, v: str) -> str:
        v = v.strip()
        if not v or any(ch.isspace() for ch in v):
            raise ValueError("Login must not contain whitespace")
        return v


class SetupMfaRequest(BaseModel):
    login: str = Field(..., min_length=1, max_length=100)
    password: str = Field(..., min_length=1)
    public_key: Optional[str] = None


class SetupMfaResponse(BaseModel):
    mfa_secret: str
    qr_code_uri: str


class VerifyMfaRequest(BaseModel):
    login: str = Field(..., min_length=1, max_length=100)
    mfa_code: str = Field(..., min_length=1, max_length=20)


# ============================================
# USERS
# ============================================

class BlockRef(BaseModel):
    id: int
    name: str


class UserResponse(BaseModel):
    id: int
    login: str
    role: UserRole
    is_active: bool
    is_first_login: bool
    mfa_enabled: bool
    created_at: Optional[datetime] = None
    last_login_at: Optional[datetime] = None
    primary_blocks: List[BlockRef] = Field(default_factory=list)
    backup_blocks: List[BlockRef] = Field(default_factory=list)


class CuratorResponse(BaseModel):
    id: int
    login: str
    role: UserRole

    model_config = {"from_attributes": True}


class UserCreateRequest(RegisterRequest):
    pass


class UserUpdateRequest(BaseModel):
    role: UserRole
    password: Optional[str] = Field(default=None, min_length=8, max_length=128)


class ChangePasswordRequest(BaseModel):
    new_password: str = Field(..., min_length=8, max_length=128)


class UserStatisticsResponse(BaseModel):
    total_users: int
    active_in_last_month: int
    by_role: Dict[str, int] = Field(default_factory=dict)


# ============================================
# BLOCKS
# ============================================

class BlockCuratorResponse(BaseModel):
    user_id: int
    login: str
    curator_type: CuratorType
    assigned_at: Optional[datetime] = None


class BlockResponse(BaseModel):
    id: int
    name: str
    code: str
    description: Optional[str] = None
    status: BlockStatus
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    curators: List[BlockCuratorResponse] = Field(default_factory=list)


class BlockCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    code: str = Field(..., min_length=1, max_length=20)
    description: Optional[str] = None

    @field_validator('code')
    @classmethod
    def normalize_code(cls, v: str) -> str:
        v = v.strip().upper()
        if not v.isalnum():
            raise ValueError("Block code must be alphanumeric")
        return v


class BlockUpdateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    status: BlockStatus = BlockStatus.ACTIVE


class AssignCuratorRequest(BaseModel):
    user_id: int
    curator_type: CuratorType = CuratorType.PRIMARY


# ============================================
# REFERENCES
# ============================================

class ReferenceResponse(BaseModel):
    id: int
    category: str
    code: str
    name: str
    description: Optional[str] = None
    sort_order: int
    is_active: bool

    model_config = {"from_attributes": True}


class ReferenceCreateRequest(BaseModel):
    category: str = Field(..., min_length=1, max_length=50)
    code: str = Field(..., min_length=1, max_length=50)
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    sort_order: int = 0


class ReferenceUpdateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    sort_order: int = 0
    is_active: bool = True


# ============================================
# CONTACTS & INTERACTIONS
# ============================================

class InteractionResponse(BaseModel):
    id: int
    contact_id: int
    contact_display_id: Optional[str] = None
    interaction_date: datetime
    interaction_type_id: Optional[int] = None
    curator_id: int
    curator_login: Optional[str] = None
    result_id: Optional[int] = None
    comment: Optional[str] = None
    status_change_json: Optional[str] = None
    attachments_json: Optional[str] = None
    next_touch_date: Optional[datetime] = None
    is_active: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class StatusHistoryResponse(BaseModel):
    id: int
    previous_status: str
    new_status: str
    changed_by_user_id: int
    changed_by_login: Optional[str] = None
    changed_at: datetime


class ContactListItem(BaseModel):
    id: int
    contact_id: str
    block_id: int
    block_name: Optional[str] = None
    block_code: Optional[str] = None
    full_name: str
    organization_id: Optional[int] = None
    position: Optional[str] = None
    influence_status_id: Optional[int] = None
    influence_type_id: Optional[int] = None
    last_interaction_date: Optional[datetime] = None
    next_touch_date: Optional[datetime] = None
    responsible_curator_id: int
    responsible_curator_login: Optional[str] = None
    updated_at: Optional[datetime] = None
    is_overdue: bool = False
    last_interaction_days_ago: Optional[int] = None


class ContactDetail(ContactListItem):
    usefulness_description: Optional[str] = None
    communication_channel_id: Optional[int] = None
    contact_source_id: Optional[int] = None
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    interactions: List[InteractionResponse] = Field(default_factory=list)
    status_history: List[StatusHistoryResponse] = Field(default_factory=list)


class ContactCreateRequest(BaseModel):
    block_id: int
    full_name: str = Field(..., min_length=1, max_length=500)
    organization_id: Optional[int] = None
    position: Optional[str] = Field(default=None, max_length=500)
    influence_status_id: Optional[int] = None
    influence_type_id: Optional[int] = None
    usefulness_description: Optional[str] = None
    communication_channel_id: Optional[int] = None
    contact_source_id: Optional[int] = None
    next_touch_date: Optional[datetime] = None
    notes: Optional[str] = None


class ContactUpdateRequest(BaseModel):
    """Partial update: only fields present in the body are changed."""
    full_name: Optional[str] = Field(default=None, min_length=1, max_length=500)
    organization_id: Optional[int] = None
    position: Optional[str] = Field(default=None, max_length=500)
    influence_status_id: Optional[int] = None
    influence_type_id: Optional[int] = None
    usefulness_description: Optional[str] = None
    communication_channel_id: Optional[int] = None
    contact_source_id: Optional[int] = None
    next_touch_date: Optional[datetime] = None
    notes: Optional[str] = None


class ContactCreatedResponse(BaseModel):
    id: int
    contact_id: str


class InteractionCreateRequest(BaseModel):
    contact_id: int
    interaction_date: Optional[datetime] = None
    interaction_type_id: Optional[int] = None
    result_id: Optional[int] = None
    comment: Optional[str] = None
    status_change_json: Optional[str] = None
    attachments_json: Optional[str] = None
    next_touch_date: Optional[datetime] = None


class InteractionUpdateRequest(BaseModel):
    """Partial update: only fields present in the body are changed."""
    interaction_date: Optional[datetime] = None
    interaction_type_id: Optional[int] = None
    result_id: Optional[int] = None
    comment: Optional[str] = None
    status_change_json: Optional[str] = None
    attachments_json: Optional[str] = None
    next_touch_date: Optional[datetime] = None


# ============================================
# WATCHLIST
# ============================================

class WatchlistResponse(BaseModel):
    id: int
    full_name: str
    role_status: Optional[str] = None
    risk_sphere_id: Optional[int] = None
    threat_source: Optional[str] = None
    conflict_date: Optional[datetime] = None
    risk_level: RiskLevel
    monitoring_frequency: MonitoringFrequency
    last_check_date: Optional[datetime] = None
    next_check_date: Optional[datetime] = None
    dynamics_description: Optional[str] = None
    watch_owner_id: Optional[int] = None
    watch_owner_login: Optional[str] = None
    attachments_json: Optional[str] = None
    is_active: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class WatchlistCreateRequest(BaseModel):
    full_name: str = Field(..., min_length=1, max_length=500)
    role_status: Optional[str] = Field(default=None, max_length=500)
    risk_sphere_id: Optional[int] = None
    threat_source: Optional[str] = None
    conflict_date: Optional[datetime] = None
    risk_level: RiskLevel = RiskLevel.LOW
    monitoring_frequency: MonitoringFrequency = MonitoringFrequency.MONTHLY
    next_check_date: Optional[datetime] = None
    dynamics_description: Optional[str] = None
    watch_owner_id: Optional[int] = None
    attachments_json: Optional[str] = None


class WatchlistUpdateRequest(BaseModel):
    """Partial update: only fields present in the body are changed."""
    full_name: Optional[str] = Field(default=None, min_length=1, max_length=500)
    role_status: Optional[str] = Field(default=None, max_length=500)
    risk_sphere_id: Optional[int] = None
    threat_source: Optional[str] = None
    conflict_date: Optional[datetime] = None
    risk_level: Optional[RiskLevel] = None
    monitoring_frequency: Optional[MonitoringFrequency] = None
    next_check_date: Optional[datetime] = None
    dynamics_description: Optional[str] = None
    watch_owner_id: Optional[int] = None
    attachments_json: Optional[str] = None


class RecordCheckRequest(BaseModel):
    next_check_date: Optional[datetime] = None
    dynamics_update: Optional[str] = None
    new_risk_level: Optional[RiskLevel] = None
    comment: Optional[str] = None


class WatchlistHistoryResponse(BaseModel):
    id: int
    watchlist_id: int
    old_risk_level: Optional[RiskLevel] = None
    new_risk_level: Optional[RiskLevel] = None
    changed_by: int
    changed_at: datetime
    comment: Optional[str] = None

    model_config = {"from_attributes": True}


class WatchlistStatisticsResponse(BaseModel):
    total: int
    requires_check: int
    by_risk_level: Dict[str, int] = Field(default_factory=dict)
    by_risk_sphere: Dict[int, int] = Field(default_factory=dict)
    by_monitoring_frequency: Dict[str, int] = Field(default_factory=dict)


# ============================================
# DASHBOARD
# ============================================

class RecentInteractionSummary(BaseModel):
    id: int
    contact_name: str
    contact_id: str
    interaction_date: datetime
    interaction_type_id: Optional[int] = None
    result_id: Optional[int] = None


class AttentionContact(BaseModel):
    id: int
    contact_id: str
    full_name: str
    next_touch_date: Optional[datetime] = None
    days_overdue: int
    influence_status: str


class CuratorDashboardResponse(BaseModel):
    total_contacts: int
    interactions_last_month: int
    average_interaction_interval: float
    overdue_contacts: int
    recent_interactions: List[RecentInteractionSummary] = Field(default_factory=list)
    contacts_requiring_attention: List[AttentionContact] = Field(default_factory=list)
    contacts_by_influence_status: Dict[str, int] = Field(default_factory=dict)
    interactions_by_type: Dict[str, int] = Field(default_factory=dict)


class AuditLogSummary(BaseModel):
    id: int
    user_login: Optional[str] = None
    action_type: str
    entity_type: str
    timestamp: datetime


class AdminDashboardResponse(BaseModel):
    total_contacts: int
    total_interactions: int
    total_blocks: int
    total_users: int
    new_contacts_last_month: int
    interactions_last_month: int
    contacts_by_block: Dict[str, int] = Field(default_factory=dict)
    contacts_by_influence_status: Dict[str, int] = Field(default_factory=dict)
    contacts_by_influence_type: Dict[str, int] = Field(default_factory=dict)
    interactions_by_block: Dict[str, int] = Field(default_factory=dict)
    top_curators_by_activity: Dict[str, int] = Field(default_factory=dict)
    status_change_dynamics: Dict[str, int] = Field(default_factory=dict)
    recent_audit_logs: List[AuditLogSummary] = Field(default_factory=list)


class InteractionStatisticsResponse(BaseModel):
    from_date: datetime
    to_date: datetime
    total_interactions: int
    unique_contacts: int
    by_type: Dict[str, int] = Field(default_factory=dict)
    by_result: Dict[str, int] = Field(default_factory=dict)


# ============================================
# AUDIT LOG
# ============================================

class AuditLogResponse(BaseModel):
    id: int
    user_id: int
    user_login: Optional[str] = None
    action: AuditActionType
    entity_type: str
    entity_id: str
    old_values_json: Optional[str] = None
    new_values_json: Optional[str] = None
    timestamp: datetime


class UserActivity(BaseModel):
    user_id: int
    login: Optional[str] = None
    count: int


class AuditStatisticsResponse(BaseModel):
    total_actions: int
    by_action_type: Dict[str, int] = Field(default_factory=dict)
    by_user: List[UserActivity] = Field(default_factory=list)
    by_entity_type: Dict[str, int] = Field(default_factory=dict)


# ============================================
# FAQ
# ============================================

class FaqResponse(BaseModel):
    id: int
    title: str
    content: str
    sort_order: int
    is_active: bool
    updated_at: Optional[datetime] = None
    updated_by: Optional[int] = None

    model_config = {"from_attributes": True}


class FaqCreateRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=500)
    content: str = Field(..., min_length=1)
    sort_order: int = 0


class FaqUpdateRequest(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=500)
    content: Optional[str] = Field(default=None, min_length=1)
    sort_order: Optional[int] = None
    is_active: Optional[bool] = None
