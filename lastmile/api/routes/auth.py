"""
Account endpoints
=================

POST /api/v1/auth/signup         -- create a customer or rider account
GET  /api/v1/auth/promote-admin  -- promote an existing user (shared secret)
"""

from typing import Optional

from fastapi import APIRouter, Depends, Request

from lastmile.api.dependencies import Services, get_services
from lastmile.api.middleware import limiter
from lastmile.api.schemas import (
    ErrorResponse,
    ProfileResponse,
    PromotionResponse,
    SignupRequestBody,
    SignupResponse,
)
from lastmile.config import settings
from lastmile.services.accounts import SignupRequest

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post(
    "/signup",
    status_code=201,
    response_model=SignupResponse,
    summary="Create an account",
    responses={409: {"model": ErrorResponse, "description": "Email already registered"}},
)
@limiter.limit(settings.rate_limit)
async def signup(
    request: Request,
    body: SignupRequestBody,
    services: Services = Depends(get_services),
):
    profile = await services.accounts.signup(SignupRequest(**body.model_dump()))
    return SignupResponse(
        message="Account created", profile=ProfileResponse.model_validate(profile)
    )


@router.get(
    "/promote-admin",
    response_model=PromotionResponse,
    summary="Promote a user to admin",
    responses={
        400: {"model": ErrorResponse},
        403: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
    },
)
@limiter.limit(settings.rate_limit)
async def promote_admin(
    request: Request,
    email: Optional[str] = None,
    secret: Optional[str] = None,
    services: Services = Depends(get_services),
):
    profile = await services.accounts.promote_admin(email, secret)
    return PromotionResponse(
        message=f"Successfully promoted {profile.email} to admin",
        user=ProfileResponse.model_validate(profile),
    )
