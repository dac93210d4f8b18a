# tests/conftest.py
from __future__ import annotations

import io
import os
import uuid

import pytest
import pytest_asyncio
from PIL import Image
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

from models import Base, User  # noqa: E402


@pytest_asyncio.fixture
async def engine(tmp_path):
    eng = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'jobs.db'}")
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def _make_user(session_factory, name: str = "Test User") -> User:
    async with session_factory() as db:
        user = User(
            name=name,
            email=f"{uuid.uuid4().hex[:8]}@example.com",
            api_token=uuid.uuid4().hex,
        )
        db.add(user)
        await db.commit()
    return user


@pytest_asyncio.fixture
async def user(session_factory) -> User:
    return await _make_user(session_factory)


@pytest_asyncio.fixture
async def other_user(session_factory) -> User:
    return await _make_user(session_factory, "Someone Else")


@pytest.fixture
def png_bytes() -> bytes:
    out = io.BytesIO()
    Image.new("RGB", (200, 100), (40, 90, 160)).save(out, format="PNG")
    return out.getvalue()


@pytest.fixture
def one_click_input() -> dict:
    return {
        "imageUrl": "data:image/png;base64,AAAA",
        "referenceImageUrl": "data:image/png;base64,BBBB",
        "enableBackgroundReplace": True,
        "enableOutpaint": True,
        "enableUpscale": True,
        "enableWatermark": True,
    }
