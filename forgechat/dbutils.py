from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from forgechat.config import Config, get_config
from forgechat.log import logger
from forgechat.orm import Base

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def _build_engine(config: Config) -> AsyncEngine:
    return create_async_engine(config.get_db_url(async_mode=True))


@asynccontextmanager
async def init_engine(config: Config) -> AsyncIterator[AsyncEngine]:
    global _engine, _session_factory

    _engine = _build_engine(config)
    _session_factory = async_sessionmaker(_engine, expire_on_commit=False)
    async with _engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database engine initialized")
    try:
        yield _engine
    finally:
        await _engine.dispose()
        _engine = None
        _session_factory = None
        logger.info("Database engine disposed")


def get_session_factory(config: Config = Depends(get_config)) -> async_sessionmaker[AsyncSession]:
    global _engine, _session_factory

    if _session_factory is None:
        # Used outside the app lifespan, e.g. from scripts
        _engine = _build_engine(config)
        _session_factory = async_sessionmaker(_engine, expire_on_commit=False)
    return _session_factory

