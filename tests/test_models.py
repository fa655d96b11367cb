import pytest

from feed_helpers import POOL
from pool_notes.discovery.errors import ChainIntegrityError
from pool_notes.discovery.models import DiscoveryResult, Note, NoteChain, last_used_index_of
from pool_notes.indexer.schemas import ActivityRecord


def _note(change_index, amount, status="spent", **kw):
    kw.setdefault("spent_by", "0xtx" if status == "spent" else None)
    kw.setdefault("label", "0x1")
    return Note(pool=POOL, deposit_index=0, change_index=change_index, amount=amount, status=status, **kw)


def test_valid_chain_passes():
    NoteChain(notes=(_note(0, 10), _note(1, 4, "unspent"))).check_integrity()


@pytest.mark.parametrize("notes", [
    (_note(0, 10), _note(2, 4, "unspent")),                           # index gap
    (_note(0, 10, "unspent"), _note(1, 4, "unspent")),                # unspent with successor
    (_note(0, 10), _note(1, 11, "unspent")),                          # amount grew
    (_note(0, 10), _note(1, 0, "unspent")),                           # unspent zero tail
    (_note(0, 10), _note(1, 4, "unspent", label="0x2")),              # label drift
])
def test_integrity_violations(notes):
    with pytest.raises(ChainIntegrityError):
        NoteChain(notes=notes).check_integrity()


def test_chain_is_immutable():
    chain = NoteChain(notes=(_note(0, 10, "unspent"),))
    with pytest.raises(Exception):
        chain.notes = ()
    extended = chain.with_tail(chain.tail.mark_spent("0xa")).append(_note(1, 3, "unspent"))
    assert len(chain.notes) == 1 and len(extended.notes) == 2


def test_result_helpers():
    live = NoteChain(notes=(_note(0, 10), _note(1, 4, "unspent")))
    done = NoteChain(notes=(_note(0, 7).model_copy(update={"deposit_index": 3}),))
    result = DiscoveryResult(chains=(live, done), last_used_index=3)
    assert result.balance() == 4
    assert result.unspent_notes() == [live.tail]
    assert result.chain(3) is done
    assert last_used_index_of(result.chains) == 3
    assert last_used_index_of([]) == -1


def test_activity_record_aliases():
    record = ActivityRecord.model_validate({
        "type": "ragequit", "amount": "0x10", "spentNullifier": "5", "label": "  ", "newCommitment": "",
    })
    assert record.kind.is_spend
    assert record.amount == 16
    assert record.label is None
    assert not record.has_successor
