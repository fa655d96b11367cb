from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from pool_notes.discovery.models import DiscoveryProgress, Note, NoteChain, RunState


class _ApiModel(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True, extra="ignore")


class Ok(_ApiModel):
    status: str = Field("ok", description="Fixed OK status for successful responses.")


class IdentityReq(_ApiModel):
    public_key: str = Field(..., min_length=1, description="Public identity; scopes the note cache.")
    account_key: str = Field(..., min_length=1, description="Account master key (0x-hex or decimal). Never stored.")
    pool: str = Field(..., min_length=1, description="Pool identifier (contract address).")


class DiscoverReq(IdentityReq):
    pass


class NoteInfo(_ApiModel):
    """One note of a chain, as exposed over the API."""

    deposit_index: int = Field(..., description="Deposit index within this pool.")
    change_index: int = Field(..., description="0 for the deposit, then 1.. for change notes.")
    amount: str = Field(..., description="Value in the pool's smallest unit (decimal string).")
    status: str = Field(..., description="unspent or spent.")
    label: Optional[str] = Field(None, description="Label shared by every note of the chain.")
    transaction_hash: str = Field(..., description="Transaction that created the note.")
    block_number: int = Field(..., description="Block of the creating transaction.")
    timestamp: int = Field(..., description="Unix time of the creating transaction.")
    spent_by: Optional[str] = Field(None, description="Transaction that spent the note, when known.")

    @classmethod
    def from_note(cls, note: Note) -> "NoteInfo":
        return cls(
            deposit_index=note.deposit_index,
            change_index=note.change_index,
            amount=str(note.amount),
            status=note.status,
            label=note.label,
            transaction_hash=note.transaction_hash,
            block_number=note.block_number,
            timestamp=note.timestamp,
            spent_by=note.spent_by,
        )


class ChainInfo(_ApiModel):
    deposit_index: int = Field(..., description="Index of the originating deposit.")
    live: bool = Field(..., description="Tail is unspent with a positive value.")
    remaining: str = Field(..., description="Spendable value left on the chain.")
    withdrawn: str = Field(..., description="Total value spent along the chain.")
    notes: List[NoteInfo] = Field(..., description="Deposit note followed by change notes.")

    @classmethod
    def from_chain(cls, chain: NoteChain) -> "ChainInfo":
        return cls(
            deposit_index=chain.deposit_index,
            live=chain.is_live,
            remaining=str(chain.remaining),
            withdrawn=str(chain.withdrawn_total()),
            notes=[NoteInfo.from_note(n) for n in chain.notes],
        )


class RunStatusRes(Ok):
    pool: str = Field(..., description="Normalized pool identifier.")
    state: RunState = Field(..., description="idle, running, completed, cancelled or failed.")
    progress: Optional[DiscoveryProgress] = Field(None, description="Latest progress snapshot.")
    new_notes_found: Optional[int] = Field(None, description="Deposits matched by the run, once finished.")
    last_used_index: Optional[int] = Field(None, description="Highest deposit index in use, once finished.")
    error: Optional[str] = Field(None, description="Failure message for failed runs.")
    retryable: Optional[bool] = Field(None, description="Whether re-running may succeed.")


class CancelRes(Ok):
    cancelled: bool = Field(..., description="False when no run was active.")


class ListNotesRes(Ok):
    """Cached view; does not query the indexer."""

    pool: str = Field(..., description="Normalized pool identifier.")
    chains: List[ChainInfo] = Field(..., description="All known chains, by deposit index.")
    unspent_notes: List[NoteInfo] = Field(..., description="Tail note of every live chain.")
    total_balance: str = Field(..., description="Sum of remaining values across chains.")
    last_used_index: int = Field(..., description="-1 when no deposit is known.")
    cursor: Optional[str] = Field(None, description="Resume cursor of the last completed page.")
    sync_time: Optional[str] = Field(None, description="ISO-8601 time of the last cache write.")


class DepositCommitmentReq(IdentityReq):
    pass


class DepositCommitmentRes(Ok):
    pool: str = Field(..., description="Normalized pool identifier.")
    deposit_index: int = Field(..., description="Next unused deposit index.")
    change_index: int = Field(0, description="Always 0 for a deposit.")
    precommitment: str = Field(..., description="Precommitment hash to publish with the deposit (0x-hex).")
