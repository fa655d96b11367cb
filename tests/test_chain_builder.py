import pytest

from feed_helpers import ACCOUNT_KEY, DERIVER, POOL, deposit, noise, ragequit, withdrawal
from pool_notes.discovery.chain_builder import extend_chain, new_chain_from_deposit
from pool_notes.discovery.errors import DerivationInvariantError


def _chain(amount=1_000_000):
    return new_chain_from_deposit(deposit(0, amount), pool=POOL, deposit_index=0)


def _extend(chain, records):
    return extend_chain(chain, records, account_key=ACCOUNT_KEY, deriver=DERIVER)


def test_no_spend_leaves_chain_unchanged():
    chain = _chain()
    ext = _extend(chain, noise(3))
    assert not ext.changed
    assert ext.chain == chain
    assert ext.chain.is_live


def test_partial_withdrawal_appends_change_note():
    chain = _chain()
    wd = withdrawal(0, 0, 400_000)
    ext = _extend(chain, noise(2) + [wd])

    assert ext.appended == 1
    deposit_note, change = ext.chain.notes
    assert (deposit_note.status, deposit_note.amount, deposit_note.spent_by) == ("spent", 1_000_000, wd.transaction_hash)
    assert (change.change_index, change.amount, change.status) == (1, 600_000, "unspent")
    assert change.label == deposit_note.label
    assert ext.chain.remaining == 600_000


def test_follows_several_spends_in_one_batch():
    ext = _extend(_chain(), [withdrawal(0, 0, 400_000), withdrawal(0, 1, 600_000)])

    assert ext.appended == 2
    tail = ext.chain.tail
    assert (tail.change_index, tail.amount, tail.status) == (2, 0, "spent")
    assert not ext.chain.is_live
    ext.chain.check_integrity()


def test_batch_order_does_not_matter():
    records = [withdrawal(0, 1, 100_000), withdrawal(0, 0, 400_000)]
    ext = _extend(_chain(), records)
    assert [n.amount for n in ext.chain.notes] == [1_000_000, 600_000, 500_000]


def test_terminal_spend_marks_tail_without_successor():
    rq = ragequit(0, 0, 1_000_000)
    ext = _extend(_chain(), [rq])

    assert ext.terminated and ext.appended == 0
    assert len(ext.chain.notes) == 1
    assert ext.chain.tail.status == "spent"
    assert ext.chain.tail.spent_by == rq.transaction_hash
    assert ext.chain.withdrawn_total() == 1_000_000
    ext.chain.check_integrity()


def test_withdrawal_without_new_commitment_is_terminal():
    ext = _extend(_chain(), [withdrawal(0, 0, 250_000, successor=False)])
    assert ext.terminated
    assert not ext.chain.is_live


def test_overdraw_is_an_invariant_violation():
    with pytest.raises(DerivationInvariantError):
        _extend(_chain(500), [withdrawal(0, 0, 501)])


def test_input_chain_is_not_mutated():
    chain = _chain()
    _extend(chain, [withdrawal(0, 0, 1)])
    assert len(chain.notes) == 1
    assert chain.tail.status == "unspent"


def test_spend_by_another_account_is_ignored():
    ext = _extend(_chain(), [withdrawal(0, 0, 400_000, key=0xDEAD)])
    assert not ext.changed


def test_balance_invariant_holds_along_chain():
    ext = _extend(
        _chain(),
        [withdrawal(0, 0, 100_000), withdrawal(0, 1, 250_000), withdrawal(0, 2, 50_000)],
    )
    chain = ext.chain
    assert chain.deposit.amount == chain.withdrawn_total() + chain.remaining
    assert [n.change_index for n in chain.notes] == [0, 1, 2, 3]
