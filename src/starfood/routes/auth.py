from fastapi import APIRouter, Depends

from starfood import schemas
from starfood.db import crud, models
from starfood.routes.base import get_current_user, success
from starfood.utils import formatters
from starfood.utils.security import (
    AuthUser,
    create_access_token,
    create_refresh_token,
    decode_refresh_token,
)

router = APIRouter(prefix="/api/auth", tags=["auth"])


def _token_identity(user: models.User) -> AuthUser:
    return AuthUser(id=user.id, email=user.email, role=user.role)


def _session_body(user: models.User) -> dict:
    identity = _token_identity(user)
    return {
        "user": formatters.user(user),
        "accessToken": create_access_token(identity),
        "refreshToken": create_refresh_token(identity),
    }


@router.post("/register")
async def register(req: schemas.RegisterRequest):
    user = await crud.register_user(
        first_name=req.first_name,
        last_name=req.last_name,
        email=req.email,
        password=req.password,
        phone_number=req.phone_number,
    )
    return success("User registered successfully", _session_body(user), 201)


@router.post("/login")
async def login(req: schemas.LoginRequest):
    user = await crud.authenticate(req.email, req.password)
    return success("Login successful", _session_body(user))


@router.post("/refresh")
async def refresh(req: schemas.RefreshRequest):
    identity = decode_refresh_token(req.refresh_token)
    user = await crud.get_profile(identity.id)
    return success(
        "Token refreshed successfully",
        {"accessToken": create_access_token(_token_identity(user))},
    )


@router.get("/me")
async def me(user: AuthUser = Depends(get_current_user)):
    profile = await crud.get_profile(user.id)
    return success("Profile retrieved successfully", formatters.user(profile))


@router.patch("/me")
async def update_me(
    req: schemas.ProfileUpdateRequest, user: AuthUser = Depends(get_current_user)
):
    data = models.ProfileUpdate(**req.model_dump(exclude_unset=True))
    profile = await crud.update_profile(user.id, data)
    return success("Profile updated successfully", formatters.user(profile))


@router.post("/change-password")
async def change_password(
    req: schemas.ChangePasswordRequest, user: AuthUser = Depends(get_current_user)
):
    await crud.change_password(user.id, req.current_password, req.new_password)
    return success("Password changed successfully")
