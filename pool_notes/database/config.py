"""
Database configuration for the encrypted note cache.

Environment:
  NOTE_CACHE_DATABASE_URL  SQLAlchemy async URL (default: sqlite+aiosqlite under DATA_DIR)
  NOTE_CACHE_KEY           hex master key (>= 32 bytes) for payload encryption
"""
from __future__ import annotations

import os
from typing import Optional

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from pool_notes import config
from pool_notes.crypto_core.field_encryption import FieldEncryption
from pool_notes.database.models import Base

DATABASE_URL = os.getenv(
    "NOTE_CACHE_DATABASE_URL",
    f"sqlite+aiosqlite:///{os.path.join(config.DATA_DIR, 'note_cache.db')}",
)
NOTE_CACHE_KEY = os.getenv("NOTE_CACHE_KEY", "")


def create_engine(url: Optional[str] = None, echo: bool = False) -> AsyncEngine:
    url = url or DATABASE_URL
    if url.startswith("sqlite") and ":///" in url:
        db_path = url.split(":///", 1)[1]
        if db_path and db_path != ":memory:":
            os.makedirs(os.path.dirname(os.path.abspath(db_path)), exist_ok=True)
    return create_async_engine(url, echo=echo)


def make_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False)


async def init_database(engine: AsyncEngine) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def test_connection_async(engine: AsyncEngine) -> None:
    async with engine.connect() as conn:
        await conn.execute(text("SELECT 1"))


def get_encryptor(master_key_hex: Optional[str] = None) -> FieldEncryption:
    """
    Raises:
        RuntimeError: NOTE_CACHE_KEY is not configured
    """
    key_hex = master_key_hex or NOTE_CACHE_KEY
    if not key_hex:
        raise RuntimeError("NOTE_CACHE_KEY is not set; generate one with: openssl rand -hex 32")
    return FieldEncryption.from_hex(key_hex)
