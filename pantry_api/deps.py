"""Shared FastAPI dependencies: database engine, sessions and the HTTP client."""

from __future__ import annotations

import os
from collections.abc import AsyncIterator
from functools import lru_cache

import httpx
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

DATABASE_URL = os.getenv("PANTRY_DATABASE_URL", "postgresql+asyncpg://pantry:pantry@db:5432/pantry")
HTTP_TIMEOUT = float(os.getenv("HTTP_TIMEOUT", "10"))


@lru_cache
def get_engine() -> AsyncEngine:
    if DATABASE_URL.startswith("sqlite"):
        # sqlite serializes writers; wait on the file lock instead of failing fast
        return create_async_engine(DATABASE_URL, connect_args={"timeout": 30}, poolclass=NullPool)
    return create_async_engine(DATABASE_URL, pool_pre_ping=True)


@lru_cache
def get_sessionmaker() -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(get_engine(), expire_on_commit=False)


async def get_session() -> AsyncIterator[AsyncSession]:
    async with get_sessionmaker()() as session:
        yield session


async def get_http_client() -> AsyncIterator[httpx.AsyncClient]:
    async with httpx.AsyncClient(timeout=HTTP_TIMEOUT) as client:
        yield client
