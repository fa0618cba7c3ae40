"""
Auth API routes — register, login, logout and the current user's profile.

Route prefix: /auth
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from api.dependencies import get_auth_service, get_client_info, get_settings
from auth.dependencies import get_current_user, get_current_user_id
from auth.service import AuthFailure, AuthService, ClientInfo
from config.settings import Settings

logger = logging.getLogger(__name__)

router = APIRouter(tags=["auth"])


# ── Request schemas ────────────────────────────────────────────────────


class RegisterRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    email: str = Field("", max_length=255)
    password: str = Field("", max_length=128)
    full_name: Optional[str] = Field(None, alias="fullName", max_length=128)
    university: Optional[str] = Field(None, max_length=255)


class LoginRequest(BaseModel):
    email: str = ""
    password: str = ""


class ProfileUpdateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    full_name: Optional[str] = Field(None, max_length=128)
    university: Optional[str] = Field(None, max_length=255)
    student_id: Optional[str] = Field(None, max_length=64)
    phone: Optional[str] = Field(None, max_length=32)
    avatar_url: Optional[str] = None


def _set_session_cookie(response: JSONResponse, token: str, settings: Settings) -> None:
    response.set_cookie(
        key=settings.auth_cookie_name,
        value=token,
        max_age=settings.jwt_expiry_seconds,
        httponly=True,
        secure=settings.is_production,
        samesite="lax",
    )


# ── Endpoints ──────────────────────────────────────────────────────────


@router.post("/register", status_code=status.HTTP_201_CREATED)
async def register(
    req: RegisterRequest,
    service: AuthService = Depends(get_auth_service),
    client: ClientInfo = Depends(get_client_info),
) -> Dict[str, Any]:
    """Register a new user."""
    result = await service.register(
        req.email, req.password,
        full_name=req.full_name, university=req.university, client=client,
    )
    if not result.ok:
        content: Dict[str, Any] = {"error": result.error}
        if result.details:
            content["details"] = result.details
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content=content)

    return {
        "message": "User registered successfully",
        "user": jsonable_encoder(result.user),
        "token": result.token,
    }


@router.post("/login")
async def login(
    req: LoginRequest,
    service: AuthService = Depends(get_auth_service),
    client: ClientInfo = Depends(get_client_info),
    settings: Settings = Depends(get_settings),
) -> JSONResponse:
    """Login with email + password; sets the session cookie."""
    result = await service.login(req.email, req.password, client=client)
    if not result.ok:
        code = (
            status.HTTP_400_BAD_REQUEST
            if result.reason is AuthFailure.MISSING_FIELDS
            else status.HTTP_401_UNAUTHORIZED
        )
        return JSONResponse(status_code=code, content={"error": result.error})

    response = JSONResponse(
        status_code=status.HTTP_200_OK,
        content={
            "message": "Login successful",
            "user": jsonable_encoder(result.user),
            "token": result.token,
        },
    )
    _set_session_cookie(response, result.token, settings)
    return response


@router.post("/logout")
async def logout(settings: Settings = Depends(get_settings)) -> JSONResponse:
    """Clear the session cookie. Issued tokens stay valid until they expire."""
    response = JSONResponse(status_code=status.HTTP_200_OK, content={"message": "Logout successful"})
    response.delete_cookie(
        key=settings.auth_cookie_name,
        httponly=True,
        secure=settings.is_production,
        samesite="lax",
    )
    return response


@router.get("/me")
async def me(user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
    return {"user": jsonable_encoder(user)}


@router.patch("/me")
async def update_me(
    req: ProfileUpdateRequest,
    user_id: str = Depends(get_current_user_id),
    service: AuthService = Depends(get_auth_service),
) -> Dict[str, Any]:
    """Update allow-listed profile fields of the current user."""
    try:
        user = await service.update_profile(user_id, req.model_dump(exclude_unset=True))
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    if user is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return {"message": "Profile updated", "user": jsonable_encoder(user)}
