from __future__ import annotations

from enum import Enum
from typing import Any, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ActivityKind(str, Enum):
    DEPOSIT = "DEPOSIT"
    WITHDRAWAL = "WITHDRAWAL"
    RAGEQUIT = "RAGEQUIT"  # terminal spend: consumes a nullifier, never creates a successor
    OTHER = "OTHER"

    @property
    def is_spend(self) -> bool:
        return self in (ActivityKind.WITHDRAWAL, ActivityKind.RAGEQUIT)


def _big_int(v: Any) -> Optional[int]:
    """Indexer BigInts arrive as decimal or 0x-hex strings; '' and null mean absent."""
    if v is None:
        return None
    if isinstance(v, int):
        return v
    s = str(v).strip()
    if not s:
        return None
    return int(s, 16) if s.lower().startswith("0x") else int(s, 10)


class ActivityRecord(BaseModel):
    """One row of the public pool activity feed."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    id: str = ""
    kind: ActivityKind = Field(..., alias="type")
    pool_id: str = Field("", alias="poolId")
    amount: int = 0
    label: Optional[str] = None
    precommitment: Optional[int] = Field(None, alias="precommitmentHash")
    spent_nullifier: Optional[int] = Field(None, alias="spentNullifier")
    new_commitment: Optional[int] = Field(None, alias="newCommitment")
    block_number: int = Field(0, alias="blockNumber")
    timestamp: int = 0
    transaction_hash: str = Field("", alias="transactionHash")

    @field_validator("kind", mode="before")
    @classmethod
    def _kind(cls, v: Any) -> ActivityKind:
        if isinstance(v, ActivityKind):
            return v
        try:
            return ActivityKind(str(v).upper())
        except ValueError:
            return ActivityKind.OTHER

    @field_validator("precommitment", "spent_nullifier", "new_commitment", mode="before")
    @classmethod
    def _optional_big_int(cls, v: Any) -> Optional[int]:
        return _big_int(v)

    @field_validator("amount", "block_number", "timestamp", mode="before")
    @classmethod
    def _big_int_default_zero(cls, v: Any) -> int:
        parsed = _big_int(v)
        return 0 if parsed is None else parsed

    @field_validator("label", mode="before")
    @classmethod
    def _label(cls, v: Any) -> Optional[str]:
        if v is None:
            return None
        s = str(v).strip()
        return s or None

    @property
    def has_successor(self) -> bool:
        return self.kind == ActivityKind.WITHDRAWAL and bool(self.new_commitment)


class PageInfo(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    has_next_page: bool = Field(False, alias="hasNextPage")
    has_previous_page: bool = Field(False, alias="hasPreviousPage")
    start_cursor: Optional[str] = Field(None, alias="startCursor")
    end_cursor: Optional[str] = Field(None, alias="endCursor")


class ActivityPage(BaseModel):
    """A page of the feed plus where to continue from."""

    model_config = ConfigDict(frozen=True)

    records: Tuple[ActivityRecord, ...] = ()
    next_cursor: Optional[str] = None
    has_more: bool = False

    @classmethod
    def from_graphql(cls, payload: dict) -> "ActivityPage":
        items: List[dict] = payload.get("items") or []
        info = PageInfo.model_validate(payload.get("pageInfo") or {})
        return cls(
            records=tuple(ActivityRecord.model_validate(i) for i in items),
            next_cursor=info.end_cursor or None,
            has_more=info.has_next_page,
        )
