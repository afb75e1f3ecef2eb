"""
Account handlers: signup and privileged admin promotion.

Signup writes the login identity, the profile and (for customers) the
wallet in one transaction, so a profile failure leaves no orphaned
identity behind.  Roles never change afterwards except through
``promote_admin``, which is gated by a shared secret.
"""

from __future__ import annotations

import hmac
import logging
from dataclasses import dataclass
from typing import Optional

import bcrypt
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from lastmile.config import settings
from lastmile.domain.enums import AccountStatus, UserRole
from lastmile.domain.errors import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from lastmile.infrastructure.models import ProfileModel
from lastmile.infrastructure.repositories import ProfileRepository

logger = logging.getLogger(__name__)

SIGNUP_ROLES = (UserRole.CUSTOMER, UserRole.RIDER)


@dataclass
class SignupRequest:
    email: str
    password: str
    full_name: str
    phone: str
    role: UserRole | str


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode(), bcrypt.gensalt()).decode()


def verify_password(password: str, password_hash: str) -> bool:
    return bcrypt.checkpw(password.encode(), password_hash.encode())


class AccountService:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        promotion_secret: Optional[str] = None,
    ):
        self.session_factory = session_factory
        self.promotion_secret = (
            settings.admin_promotion_secret if promotion_secret is None else promotion_secret
        )

    async def signup(self, request: SignupRequest) -> ProfileModel:
        missing = [
            name
            for name in ("email", "password", "full_name", "phone", "role")
            if not str(getattr(request, name) or "").strip()
        ]
        if missing:
            raise ValidationError("Missing required fields: " + ", ".join(missing))
        try:
            role = UserRole(request.role)
        except ValueError:
            raise ValidationError(f"Unknown role {request.role!r}") from None
        if role not in SIGNUP_ROLES:
            raise ValidationError("Admin accounts cannot be self-registered")
        email = request.email.strip().lower()

        async with self.session_factory() as db:
            profiles = ProfileRepository(db)
            if await profiles.get_identity_by_email(email) is not None:
                raise ConflictError(f"An account already exists for {email}")
            try:
                identity = await profiles.create_identity(
                    email, hash_password(request.password)
                )
                profile = await profiles.create(
                    ProfileModel(
                        id=identity.id,
                        email=email,
                        full_name=request.full_name.strip(),
                        phone=request.phone.strip(),
                        role=role,
                        status=(
                            AccountStatus.PENDING
                            if role == UserRole.RIDER
                            else AccountStatus.ACTIVE
                        ),
                    )
                )
                if role == UserRole.CUSTOMER:
                    await profiles.create_wallet(profile.id)
                await db.commit()
            except IntegrityError:
                await db.rollback()
                raise ConflictError(f"An account already exists for {email}") from None

        logger.info("Account %s created (%s)", profile.id, role.value)
        return profile

    async def authenticate(self, email: str, password: str) -> ProfileModel:
        async with self.session_factory() as db:
            profiles = ProfileRepository(db)
            identity = await profiles.get_identity_by_email(email.strip().lower())
            if identity is None or not verify_password(password, identity.password_hash):
                raise AuthorizationError("Invalid email or password")
            profile = await profiles.get_by_id(identity.id)
            if profile is None:
                raise NotFoundError("Profile missing for this account")
            return profile

    async def promote_admin(self, email: Optional[str], secret: Optional[str]) -> ProfileModel:
        if not email:
            raise ValidationError("Email parameter is required")
        if not hmac.compare_digest((secret or "").encode(), self.promotion_secret.encode()):
            raise AuthorizationError("Invalid secret")
        email = email.strip().lower()
        async with self.session_factory() as db:
            profiles = ProfileRepository(db)
            if not await profiles.promote_to_admin(email):
                raise NotFoundError(
                    "User not found; register an account first, then promote it"
                )
            await db.commit()
            profile = await profiles.get_by_email(email)

        logger.warning("Account %s promoted to admin", profile.id)
        return profile
