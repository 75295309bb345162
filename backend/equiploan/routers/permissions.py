"""Permission catalog route."""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from equiploan.auth.deps import require_permission
from equiploan.database import get_db
from equiploan.models.user import User
from equiploan.schemas.user import PermissionOut
from equiploan.services import users as user_service

router = APIRouter()


@router.get("", response_model=list[PermissionOut])
async def list_permissions(
    db: AsyncSession = Depends(get_db),
    _user: User = Depends(require_permission("permission:manage")),
):
    return await user_service.list_permission_catalog(db)
