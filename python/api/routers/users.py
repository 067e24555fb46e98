"""
User administration endpoints.
"""

import logging
from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from api.dependencies import get_current_user, get_password_hasher, require_admin
from api.models import (
    ChangePasswordRequest,
    CuratorResponse,
    MessageResponse,
    UserCreateRequest,
    UserResponse,
    UserStatisticsResponse,
    UserUpdateRequest,
)
from api.serializers import user_to_response
from database.connection import get_db
from database.models import AuditActionType, User
from database.repositories import AuditRepository, UserRepository
from services.exceptions import BusinessRuleError
from services.password_hasher import PasswordHasher

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/users", tags=["users"])


@router.get("", response_model=List[UserResponse], dependencies=[Depends(require_admin)])
def list_users(db: Session = Depends(get_db)):
    return [user_to_response(user) for user in UserRepository(db).list_all()]


@router.get("/me", response_model=UserResponse)
def get_me(user: User = Depends(get_current_user)):
    """The calling user, any role."""
    return user_to_response(user)


@router.get("/curators", response_model=List[CuratorResponse], dependencies=[Depends(require_admin)])
def list_curators(db: Session = Depends(get_db)):
    return UserRepository(db).list_curators()


@router.get("/statistics", response_model=UserStatisticsResponse, dependencies=[Depends(require_admin)])
def user_statistics(db: Session = Depends(get_db)):
    return UserRepository(db).get_statistics()


@router.get("/{user_id}", response_model=UserResponse, dependencies=[Depends(require_admin)])
def get_user(user_id: int, db: Session = Depends(get_db)):
    return user_to_response(UserRepository(db).get_or_raise(user_id))


@router.post("", response_model=UserResponse, status_code=201)
def create_user(
    request: UserCreateRequest,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
    hasher: PasswordHasher = Depends(get_password_hasher),
):
    user = UserRepository(db).create(
        login=request.login,
        password_hash=hasher.hash_password(request.password),
        role=request.role,
    )
    AuditRepository(db).log(
        user_id=admin.id,
        action=AuditActionType.CREATE,
        entity_type="User",
        entity_id=user.id,
        new_values={'Login': user.login, 'Role': user.role.value},
    )
    db.commit()
    logger.info(f"User {user.id} created by admin {admin.id}")
    return user_to_response(user)


@router.put("/{user_id}", response_model=UserResponse)
def update_user(
    user_id: int,
    request: UserUpdateRequest,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
    hasher: PasswordHasher = Depends(get_password_hasher),
):
    """Change the role and, when given, the password."""
    users = UserRepository(db)
    old_role = users.get_or_raise(user_id).role
    user = users.update(
        user_id,
        role=request.role,
        password_hash=hasher.hash_password(request.password) if request.password else None,
    )
    AuditRepository(db).log(
        user_id=admin.id,
        action=AuditActionType.UPDATE,
        entity_type="User",
        entity_id=user.id,
        old_values={'Role': old_role.value},
        new_values={'Role': user.role.value, 'PasswordChanged': bool(request.password)},
    )
    db.commit()
    return user_to_response(user)


@router.delete("/{user_id}", response_model=MessageResponse)
def delete_user(
    user_id: int,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """
    Hard-delete a user.

    Refused for the caller's own account, for users assigned to blocks and
    for users whose work is referenced by contacts, interactions or the
    audit log.
    """
    users = UserRepository(db)
    user = users.get_or_raise(user_id)

    if user.id == admin.id:
        raise BusinessRuleError("Cannot delete your own account")
    if users.has_block_assignments(user.id):
        raise BusinessRuleError("User is assigned to blocks; remove the assignments first")
    if users.has_activity(user.id):
        raise BusinessRuleError("User has recorded activity; deactivate the account instead")

    login = user.login
    users.delete(user.id)
    AuditRepository(db).log(
        user_id=admin.id,
        action=AuditActionType.DELETE,
        entity_type="User",
        entity_id=user_id,
        old_values={'Login': login},
    )
    db.commit()
    logger.info(f"User {user_id} deleted by admin {admin.id}")
    return MessageResponse(message="User deleted")


@router.post("/{user_id}/change-password", response_model=MessageResponse)
def change_password(
    user_id: int,
    request: ChangePasswordRequest,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
    hasher: PasswordHasher = Depends(get_password_hasher),
):
    UserRepository(db).set_password_hash(user_id, hasher.hash_password(request.new_password))
    AuditRepository(db).log(
        user_id=admin.id,
        action=AuditActionType.UPDATE,
        entity_type="User",
        entity_id=user_id,
        new_values={'PasswordChanged': True},
    )
    db.commit()
    return MessageResponse(message="Password changed")


@router.post("/{user_id}/toggle-active", response_model=UserResponse)
def toggle_active(
    user_id: int,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    users = UserRepository(db)
    user = users.get_or_raise(user_id)
    if user.id == admin.id and user.is_active:
        raise BusinessRuleError("Cannot deactivate your own account")

    user = users.toggle_active(user_id)
    AuditRepository(db).log(
        user_id=admin.id,
        action=AuditActionType.UPDATE,
        entity_type="User",
        entity_id=user.id,
        old_values={'IsActive': not user.is_active},
        new_values={'IsActive': user.is_active},
    )
    db.commit()
    return user_to_response(user)
