"""User administration routes.

Endpoints:
    POST   /api/users                                 Create user          (user:create)
    GET    /api/users                                 List users           (user:read)
    GET    /api/users/{user_id}                       Get user             (user:read)
    PATCH  /api/users/{user_id}                       Update user          (user:update)
    DELETE /api/users/{user_id}                       Delete user          (user:delete)
    PATCH  /api/users/{user_id}/deactivate            Deactivate           (user:update)
    PATCH  /api/users/{user_id}/activate              Reactivate           (user:update)
    GET    /api/users/{user_id}/permissions           Granted permissions  (user:read)
    POST   /api/users/{user_id}/permissions/assign    Grant                (permission:manage)
    POST   /api/users/{user_id}/permissions/revoke    Revoke               (permission:manage)
"""

from typing import Literal

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from equiploan.auth.deps import require_permission
from equiploan.database import get_db
from equiploan.models.user import User, UserRole
from equiploan.schemas.common import PaginatedResponse, page_count
from equiploan.schemas.user import (
    PermissionNames,
    UserCreate,
    UserOut,
    UserPermissionsOut,
    UserUpdate,
)
from equiploan.services import users as user_service
from equiploan.services.users import UserFilters

router = APIRouter()


@router.post("", response_model=UserOut, status_code=status.HTTP_201_CREATED)
async def create_user(
    body: UserCreate,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(require_permission("user:create")),
):
    return await user_service.create_user(db, body.model_dump(), actor=user)


@router.get("", response_model=PaginatedResponse[UserOut])
async def list_users(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    search: str | None = None,
    role: UserRole | None = None,
    is_active: bool | None = None,
    sort_by: str = "created_at",
    sort_order: Literal["asc", "desc"] = "desc",
    db: AsyncSession = Depends(get_db),
    _user: User = Depends(require_permission("user:read")),
):
    filters = UserFilters(
        search=search, role=role, is_active=is_active, sort_by=sort_by, sort_order=sort_order
    )
    users, total = await user_service.list_users(db, filters, page, limit)
    return PaginatedResponse(
        items=[UserOut.model_validate(u) for u in users],
        total=total,
        page=page,
        limit=limit,
        total_pages=page_count(total, limit),
    )


@router.get("/{user_id}", response_model=UserOut)
async def get_user(
    user_id: str,
    db: AsyncSession = Depends(get_db),
    _user: User = Depends(require_permission("user:read")),
):
    return await user_service.get_user(db, user_id)


@router.patch("/{user_id}", response_model=UserOut)
async def update_user(
    user_id: str,
    body: UserUpdate,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(require_permission("user:update")),
):
    return await user_service.update_user(
        db, user_id, body.model_dump(exclude_unset=True), actor=user
    )


@router.delete("/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_user(
    user_id: str,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(require_permission("user:delete")),
):
    await user_service.delete_user(db, user_id, actor=user)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.patch("/{user_id}/deactivate", response_model=UserOut)
async def deactivate_user(
    user_id: str,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(require_permission("user:update")),
):
    return await user_service.set_active(db, user_id, False, actor=user)


@router.patch("/{user_id}/activate", response_model=UserOut)
async def activate_user(
    user_id: str,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(require_permission("user:update")),
):
    return await user_service.set_active(db, user_id, True, actor=user)


# ── Permissions ──────────────────────────────────────────────

@router.get("/{user_id}/permissions", response_model=UserPermissionsOut)
async def get_user_permissions(
    user_id: str,
    db: AsyncSession = Depends(get_db),
    _user: User = Depends(require_permission("user:read")),
):
    permissions = await user_service.user_permissions(db, user_id)
    return UserPermissionsOut(user_id=user_id, permissions=permissions)


@router.post("/{user_id}/permissions/assign", response_model=UserPermissionsOut)
async def assign_permissions(
    user_id: str,
    body: PermissionNames,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(require_permission("permission:manage")),
):
    permissions = await user_service.assign_permissions(db, user_id, body.permissions, actor=user)
    return UserPermissionsOut(user_id=user_id, permissions=permissions)


@router.post("/{user_id}/permissions/revoke", response_model=UserPermissionsOut)
async def revoke_permissions(
    user_id: str,
    body: PermissionNames,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(require_permission("permission:manage")),
):
    permissions = await user_service.revoke_permissions(db, user_id, body.permissions, actor=user)
    return UserPermissionsOut(user_id=user_id, permissions=permissions)
