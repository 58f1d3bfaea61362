import logging
import os
import uuid
from typing import Optional

from fastapi import Depends, Request
from fastapi_users import FastAPIUsers
from fastapi_users.authentication import AuthenticationBackend, BearerTransport, JWTStrategy
from fastapi_users.manager import BaseUserManager, UUIDIDMixin
from fastapi_users_db_sqlalchemy import SQLAlchemyUserDatabase
from sqlalchemy.ext.asyncio import AsyncSession

from postop_monitor.db import get_session
from postop_monitor.models.clinician import Clinician

logger = logging.getLogger(__name__)

AUTH_SECRET = os.getenv("AUTH_SECRET", "change-this-secret")

bearer_transport = BearerTransport(tokenUrl="auth/jwt/login")


def get_jwt_strategy() -> JWTStrategy:
    return JWTStrategy(secret=AUTH_SECRET, lifetime_seconds=60 * 60)


auth_backend = AuthenticationBackend(
    name="jwt",
    transport=bearer_transport,
    get_strategy=get_jwt_strategy,
)


async def get_clinician_db(session: AsyncSession = Depends(get_session)):
    yield SQLAlchemyUserDatabase(session, Clinician)


class ClinicianManager(UUIDIDMixin, BaseUserManager[Clinician, uuid.UUID]):
    reset_password_token_secret = AUTH_SECRET
    verification_token_secret = AUTH_SECRET

    async def on_after_register(
        self, user: Clinician, request: Optional[Request] = None
    ) -> None:
        logger.info("Clinician %s registered", user.id)


async def get_clinician_manager(clinician_db=Depends(get_clinician_db)):
    yield ClinicianManager(clinician_db)


fastapi_users = FastAPIUsers[Clinician, uuid.UUID](
    get_clinician_manager,
    [auth_backend],
)


current_clinician = fastapi_users.current_user(active=True)


__all__ = [
    "AUTH_SECRET",
    "auth_backend",
    "bearer_transport",
    "fastapi_users",
    "current_clinician",
    "get_clinician_db",
    "get_clinician_manager",
    "ClinicianManager",
]
