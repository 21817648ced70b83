import logging
import uuid
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Request
from fastapi_users import BaseUserManager, FastAPIUsers, UUIDIDMixin
from fastapi_users.authentication import AuthenticationBackend, BearerTransport, JWTStrategy
from fastapi_users.exceptions import InvalidPasswordException
from fastapi_users.db import SQLAlchemyUserDatabase
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import settings
from core.errors import Forbidden, Unauthorized
from db.database import get_async_session
from db.users import Role, User

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 6


class UserManager(UUIDIDMixin, BaseUserManager[User, uuid.UUID]):
    reset_password_token_secret = settings.secret_key
    verification_token_secret = settings.secret_key

    async def validate_password(self, password: str, user) -> None:
        if len(password) < MIN_PASSWORD_LENGTH:
            raise InvalidPasswordException(reason=f"Password must be at least {MIN_PASSWORD_LENGTH} characters")

    async def on_after_register(self, user: User, request: Optional[Request] = None):
        logger.info("User %s registered with role %s", user.id, Role(user.role).value)

    async def on_after_login(self, user: User, request: Optional[Request] = None, response=None):
        logger.info("User %s logged in", user.id)


async def get_user_db(session: AsyncSession = Depends(get_async_session)):
    yield SQLAlchemyUserDatabase(session, User)


async def get_user_manager(user_db: SQLAlchemyUserDatabase = Depends(get_user_db)):
    yield UserManager(user_db)


bearer_transport = BearerTransport(tokenUrl="auth/jwt/login")


def get_jwt_strategy() -> JWTStrategy:
    return JWTStrategy(secret=settings.secret_key, lifetime_seconds=settings.access_token_lifetime_seconds)


auth_backend = AuthenticationBackend(
    name="jwt",
    transport=bearer_transport,
    get_strategy=get_jwt_strategy,
)

fastapi_users = FastAPIUsers[User, uuid.UUID](get_user_manager, [auth_backend])

# Resolves to None instead of raising so a missing login renders as Unauthorized.
current_optional_user = fastapi_users.current_user(active=True, optional=True)


@dataclass(frozen=True)
class Actor:
    """Identity + role of whoever is calling into the inventory services."""
    id: uuid.UUID
    role: Role
    display_name: str

    @property
    def is_admin(self) -> bool:
        if self.role is Role.ADMIN:
            return True
        if self.role is Role.EMPLOYEE:
            return False
        raise ValueError(f"Unhandled role {self.role!r}")

    @classmethod
    def from_user(cls, user: User) -> "Actor":
        return cls(id=user.id, role=Role(user.role), display_name=user.display_name)


async def current_user(user: Optional[User] = Depends(current_optional_user)) -> User:
    if user is None:
        raise Unauthorized()
    return user


async def current_actor(user: User = Depends(current_user)) -> Actor:
    return Actor.from_user(user)


async def current_admin(actor: Actor = Depends(current_actor)) -> Actor:
    if not actor.is_admin:
        raise Forbidden("Admin privileges required")
    return actor


async def self_registration_enabled() -> None:
    if not settings.allow_self_registration:
        raise Forbidden("Self-registration is disabled; ask an admin for an account")
