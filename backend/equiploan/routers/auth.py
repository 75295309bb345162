"""Auth routes: register, login, refresh, logout, password change, profile.

Route overview:
  POST /register          self-registration (role: client)
  POST /login             email + password login
  POST /refresh           exchange a refresh token for a new token pair
  POST /logout            forget the current refresh token
  POST /change-password   verify current password, set a new one
  GET  /me                the current user profile + granted permissions
"""

from fastapi import APIRouter, Depends, Request, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from equiploan.auth.deps import get_current_user, load_granted_permissions
from equiploan.database import get_db
from equiploan.middleware.audit import client_ip
from equiploan.models.user import User
from equiploan.schemas.auth import (
    ChangePasswordRequest,
    LoginRequest,
    ProfileOut,
    RefreshRequest,
    RegisterRequest,
    TokenResponse,
)
from equiploan.schemas.user import UserOut
from equiploan.services import auth as auth_service
from equiploan.services.auth import ClientInfo, TokenPair

router = APIRouter()


# ── Helpers ──────────────────────────────────────────────────

def _client(request: Request) -> ClientInfo:
    return ClientInfo(
        ip_address=client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )


def _build_token_response(user: User, tokens: TokenPair) -> TokenResponse:
    return TokenResponse(
        access_token=tokens.access_token,
        refresh_token=tokens.refresh_token,
        user=UserOut.model_validate(user),
    )


# ── Routes ───────────────────────────────────────────────────

@router.post("/register", response_model=TokenResponse, status_code=status.HTTP_201_CREATED)
async def register(body: RegisterRequest, request: Request, db: AsyncSession = Depends(get_db)):
    user, tokens = await auth_service.register(
        db,
        email=body.email,
        password=body.password,
        first_name=body.first_name,
        last_name=body.last_name,
        phone=body.phone,
        client=_client(request),
    )
    return _build_token_response(user, tokens)


@router.post("/login", response_model=TokenResponse)
async def login(body: LoginRequest, request: Request, db: AsyncSession = Depends(get_db)):
    user, tokens = await auth_service.login(
        db, email=body.email, password=body.password, client=_client(request)
    )
    return _build_token_response(user, tokens)


@router.post("/refresh", response_model=TokenResponse)
async def refresh(body: RefreshRequest, db: AsyncSession = Depends(get_db)):
    """Rotate: the presented refresh token stops working once this returns."""
    user, tokens = await auth_service.refresh(db, body.refresh_token)
    return _build_token_response(user, tokens)


@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT)
async def logout(
    request: Request,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await auth_service.logout(db, user, client=_client(request))
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/change-password", status_code=status.HTTP_204_NO_CONTENT)
async def change_password(
    body: ChangePasswordRequest,
    request: Request,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await auth_service.change_password(
        db,
        user,
        current_password=body.current_password,
        new_password=body.new_password,
        client=_client(request),
    )
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/me", response_model=ProfileOut)
async def me(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    permissions = sorted(await load_granted_permissions(db, user.id))
    return ProfileOut(**UserOut.model_validate(user).model_dump(), permissions=permissions)
