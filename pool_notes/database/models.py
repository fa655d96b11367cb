from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, LargeBinary, String
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class EncryptedNoteCache(Base):
    """
    One row per (identity, pool). Both are stored only as SHA-256 hashes; the
    chains, last used index and cursor live inside the encrypted payload.
    """

    __tablename__ = "note_cache"

    id = Column(String(129), primary_key=True)  # "<identity_hash>_<pool_hash>"
    identity_hash = Column(String(64), nullable=False, index=True)
    pool_hash = Column(String(64), nullable=False, index=True)
    payload = Column(LargeBinary, nullable=False)  # nonce || XSalsa20-Poly1305 ciphertext
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)
