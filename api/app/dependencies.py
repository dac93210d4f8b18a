# api/app/dependencies.py
from __future__ import annotations

import hmac
import logging
import uuid
from collections.abc import AsyncGenerator

from fastapi import Depends, Header, HTTPException, Request, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from api.app.config import get_settings
from db.session import get_db
from jobs.dispatcher import Dispatcher
from models.user import User
from services.artifact_store import LocalArtifactStore
from services.call_serializer import CallSerializer

logger = logging.getLogger(__name__)

LOOPBACK_HOSTS = {"127.0.0.1", "::1", "localhost"}


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    async for session in get_db():
        yield session


def _secret_ok(given: str | None) -> bool:
    secret = get_settings().internal_api_secret
    return bool(secret and given and hmac.compare_digest(secret, given))


async def get_current_user(
    x_api_token: str | None = Header(None, alias="X-Api-Token"),
    x_internal_secret: str | None = Header(None, alias="X-Internal-Secret"),
    x_owner_id: uuid.UUID | None = Header(None, alias="X-Owner-Id"),
    db: AsyncSession = Depends(get_session),
) -> User:
    """
    Authenticate a user by API token, or a server-to-server call acting
    on behalf of X-Owner-Id with the internal secret.
    """
    user = None
    if x_api_token:
        user = (
            await db.execute(select(User).where(User.api_token == x_api_token))
        ).scalar_one_or_none()
    elif x_owner_id is not None and _secret_ok(x_internal_secret):
        user = await db.get(User, x_owner_id)

    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing credentials",
        )
    return user


async def require_internal(
    request: Request,
    x_internal_secret: str | None = Header(None, alias="X-Internal-Secret"),
) -> None:
    """Internal endpoints: the shared secret, or a call from this host."""
    if _secret_ok(x_internal_secret):
        return
    host = request.client.host if request.client else ""
    if host in LOOPBACK_HOSTS:
        return
    logger.warning("Rejected internal call from %s to %s", host, request.url.path)
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Internal endpoint")


def get_dispatcher(request: Request) -> Dispatcher:
    return request.app.state.dispatcher


def get_serializer(request: Request) -> CallSerializer:
    return request.app.state.serializer


def get_artifacts(request: Request) -> LocalArtifactStore:
    return request.app.state.artifacts
