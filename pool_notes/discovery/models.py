from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Iterable, List, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from pool_notes.discovery.errors import ChainIntegrityError

NoteStatus = Literal["unspent", "spent"]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(microsecond=0)


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")


class RunState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


class Note(_Frozen):
    """One commitment the user owns: the deposit itself or a change note."""

    pool: str
    deposit_index: int = Field(..., ge=0)
    change_index: int = Field(..., ge=0)
    amount: int = Field(..., ge=0, description="Value in the pool's smallest unit.")
    transaction_hash: str = ""
    block_number: int = 0
    timestamp: int = 0
    status: NoteStatus = "unspent"
    label: Optional[str] = None
    spent_by: Optional[str] = Field(None, description="Transaction hash (or feed record id) of the spend that consumed this note.")

    @property
    def is_deposit(self) -> bool:
        return self.change_index == 0

    def mark_spent(self, spent_by: Optional[str]) -> "Note":
        return self.model_copy(update={"status": "spent", "spent_by": spent_by or None})


class NoteChain(_Frozen):
    """
    The notes descending from one deposit, ordered by change index.

    Instances are immutable; ``append`` and ``with_tail`` return new chains.
    """

    notes: Tuple[Note, ...] = Field(..., min_length=1)

    @property
    def deposit(self) -> Note:
        return self.notes[0]

    @property
    def tail(self) -> Note:
        return self.notes[-1]

    @property
    def deposit_index(self) -> int:
        return self.notes[0].deposit_index

    @property
    def pool(self) -> str:
        return self.notes[0].pool

    @property
    def label(self) -> Optional[str]:
        return self.notes[0].label

    @property
    def is_live(self) -> bool:
        """Tail can still be spent: unspent with a positive balance."""
        return self.tail.status == "unspent" and self.tail.amount > 0

    @property
    def remaining(self) -> int:
        return self.tail.amount if self.is_live else 0

    def append(self, note: Note) -> "NoteChain":
        return NoteChain(notes=self.notes + (note,))

    def with_tail(self, note: Note) -> "NoteChain":
        return NoteChain(notes=self.notes[:-1] + (note,))

    def withdrawn_total(self) -> int:
        """Sum of every spend along the chain, including a terminal spend of the tail."""
        total = sum(prev.amount - cur.amount for prev, cur in zip(self.notes, self.notes[1:]))
        if self.tail.status == "spent":
            total += self.tail.amount
        return total

    def check_integrity(self) -> None:
        """
        Raises:
            ChainIntegrityError: on index gaps, mixed deposits/labels/pools,
                spent-status violations or increasing amounts
        """
        first = self.notes[0]
        last_pos = len(self.notes) - 1
        for pos, note in enumerate(self.notes):
            where = f"chain {first.deposit_index} note {pos}"
            if note.change_index != pos:
                raise ChainIntegrityError(f"{where}: change_index {note.change_index} breaks sequence 0..{last_pos}")
            if note.deposit_index != first.deposit_index or note.pool != first.pool:
                raise ChainIntegrityError(f"{where}: belongs to another deposit")
            if note.label != first.label:
                raise ChainIntegrityError(f"{where}: label differs from deposit label")
            if pos < last_pos and note.status != "spent":
                raise ChainIntegrityError(f"{where}: has a successor but is not spent")
            if pos > 0 and note.amount > self.notes[pos - 1].amount:
                raise ChainIntegrityError(f"{where}: amount increased along the chain")

        tail = self.tail
        if tail.status == "unspent" and tail.amount == 0:
            raise ChainIntegrityError(f"chain {first.deposit_index}: zero-value tail marked unspent")


def last_used_index_of(chains: Iterable[NoteChain]) -> int:
    return max((c.deposit_index for c in chains), default=-1)


class CachedNotes(_Frozen):
    """Snapshot persisted between runs for one (identity, pool)."""

    chains: Tuple[NoteChain, ...] = ()
    last_used_index: int = -1
    cursor: Optional[str] = None
    sync_time: Optional[datetime] = None

    @property
    def next_deposit_index(self) -> int:
        return self.last_used_index + 1


class DiscoveryProgress(_Frozen):
    pages_processed: int = 0
    page_record_count: int = 0
    records_seen: int = 0
    deposits_checked: int = 0
    deposits_matched: int = 0
    notes_appended: int = 0
    cursor: Optional[str] = None
    complete: bool = False


class DiscoveryResult(_Frozen):
    chains: Tuple[NoteChain, ...] = ()
    last_used_index: int = -1
    new_notes_found: int = Field(0, description="Deposits matched during this run.")
    cursor: Optional[str] = None
    state: RunState = RunState.COMPLETED
    sync_time: datetime = Field(default_factory=_utcnow)

    def chain(self, deposit_index: int) -> Optional[NoteChain]:
        for c in self.chains:
            if c.deposit_index == deposit_index:
                return c
        return None

    def unspent_notes(self) -> List[Note]:
        return [c.tail for c in self.chains if c.is_live]

    def balance(self) -> int:
        return sum(c.remaining for c in self.chains)
