"""Tests for the SQLAlchemy-backed ledger."""

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from zknote.core.merkle_tree import MerkleTree
from zknote.exceptions import LedgerRevert
from zknote.ledger.local import LocalLedger
from zknote.utils.encoding import to_hex
from zknote.utils.hash import FIELD_SIZE


DENOMINATION = 10**18
RECIPIENT = int("ab" * 20, 16)
RELAYER = int("cd" * 20, 16)


@pytest.fixture
def submit(forge_proof):
    """Submit a withdrawal with a proof the ledger's verifier accepts."""

    def _submit(ledger, root, nullifier_hash, fee=0, refund=0, value=0, proof=None):
        signals = [root, nullifier_hash, RECIPIENT, RELAYER, fee, refund]
        return ledger.submit_withdrawal(
            forge_proof(signals) if proof is None else proof,
            to_hex(root),
            to_hex(nullifier_hash),
            to_hex(RECIPIENT, 20),
            to_hex(RELAYER, 20),
            to_hex(fee),
            to_hex(refund),
            value=value,
        )

    return _submit


def revert_message(exc_info) -> str:
    return exc_info.value.reason.message


class TestDeposits:
    """Tests for deposit submission."""

    def test_initial_state(self, ledger):
        assert ledger.get_events() == []
        assert ledger.is_known_root(to_hex(ledger.tree.root))
        assert not ledger.is_known_root(to_hex(0))

    def test_deposit_appends_event(self, ledger):
        receipt = ledger.submit_deposit(to_hex(42), DENOMINATION)

        events = ledger.get_events()
        assert receipt.block_number == 1
        assert receipt.status == "confirmed"
        assert receipt.transaction_hash.startswith("0x")
        assert len(events) == 1
        assert events[0].commitment == to_hex(42)
        assert events[0].leaf_index == 0
        assert events[0].block_number == 1

    def test_block_numbers_increase(self, ledger):
        blocks = [ledger.submit_deposit(to_hex(c), DENOMINATION).block_number for c in (1, 2, 3)]
        assert blocks == [1, 2, 3]

    def test_event_range(self, ledger):
        for c in (1, 2, 3):
            ledger.submit_deposit(to_hex(c), DENOMINATION)

        assert [e.leaf_index for e in ledger.get_events(from_block=2)] == [1, 2]
        assert [e.leaf_index for e in ledger.get_events(0, 1)] == [0]

    def test_new_root_is_known(self, ledger):
        ledger.submit_deposit(to_hex(42), DENOMINATION)
        expected = MerkleTree.build(ledger.tree.height, [42], hasher=ledger.tree.hasher).root
        assert ledger.is_known_root(to_hex(expected))

    def test_duplicate_commitment(self, ledger):
        ledger.submit_deposit(to_hex(42), DENOMINATION)
        with pytest.raises(LedgerRevert) as exc_info:
            ledger.submit_deposit(to_hex(42), DENOMINATION)
        assert revert_message(exc_info) == "The commitment has been submitted"
        assert len(ledger.get_events()) == 1

    def test_wrong_value(self, ledger):
        with pytest.raises(LedgerRevert) as exc_info:
            ledger.submit_deposit(to_hex(42), DENOMINATION - 1)
        assert "mixDenomination" in revert_message(exc_info)

    def test_commitment_outside_field(self, ledger):
        with pytest.raises(LedgerRevert) as exc_info:
            ledger.submit_deposit(to_hex(FIELD_SIZE), DENOMINATION)
        assert revert_message(exc_info) == "_left should be inside the field"

    def test_token_pool_takes_no_value(self, forge_proof, hasher):
        ledger = LocalLedger(
            verifier=lambda proof, signals: proof == forge_proof(signals),
            tree_height=4,
            native=False,
            hasher=hasher,
        )
        ledger.submit_deposit(to_hex(1), 0)
        with pytest.raises(LedgerRevert) as exc_info:
            ledger.submit_deposit(to_hex(2), DENOMINATION)
        assert revert_message(exc_info) == "ETH value is supposed to be 0 for ERC20 instance"

    def test_full_tree(self, hasher):
        ledger = LocalLedger(verifier=lambda p, s: True, tree_height=1, hasher=hasher)
        ledger.submit_deposit(to_hex(1), DENOMINATION)
        ledger.submit_deposit(to_hex(2), DENOMINATION)

        with pytest.raises(LedgerRevert) as exc_info:
            ledger.submit_deposit(to_hex(3), DENOMINATION)
        assert revert_message(exc_info) == "Merkle tree is full. No more leaves can be added"

    def test_invalid_history_size(self):
        with pytest.raises(ValueError):
            LocalLedger(verifier=lambda p, s: True, root_history_size=0)


class TestRootHistory:
    """Tests for the bounded ring of recent roots."""

    def test_old_roots_expire(self, hasher):
        ledger = LocalLedger(verifier=lambda p, s: True, tree_height=4, root_history_size=3, hasher=hasher)
        initial = to_hex(ledger.tree.root)

        ledger.submit_deposit(to_hex(1), DENOMINATION)
        first = to_hex(ledger.tree.root)
        ledger.submit_deposit(to_hex(2), DENOMINATION)
        assert ledger.is_known_root(initial)

        ledger.submit_deposit(to_hex(3), DENOMINATION)
        assert not ledger.is_known_root(initial)
        assert ledger.is_known_root(first)
        assert ledger.is_known_root(to_hex(ledger.tree.root))

    def test_root_lookup_accepts_unpadded_hex(self, ledger):
        assert ledger.is_known_root(hex(ledger.tree.root))


class TestWithdrawals:
    """Tests for withdrawal submission and revert ordering."""

    @pytest.fixture
    def funded(self, ledger):
        ledger.submit_deposit(to_hex(42), DENOMINATION)
        return ledger

    def test_withdraw(self, funded, submit):
        receipt = submit(funded, funded.tree.root, 777)

        assert receipt.block_number == 2
        assert funded.is_spent(to_hex(777))
        assert funded.is_spent(hex(777))

    def test_double_spend(self, funded, submit):
        submit(funded, funded.tree.root, 777)
        with pytest.raises(LedgerRevert) as exc_info:
            submit(funded, funded.tree.root, 777)
        assert revert_message(exc_info) == "The note has been already spent"
        assert exc_info.value.reason.is_race

    def test_unknown_root(self, funded, submit):
        with pytest.raises(LedgerRevert) as exc_info:
            submit(funded, 12345, 777)
        assert revert_message(exc_info) == "Cannot find your merkle root"
        assert exc_info.value.reason.is_race
        assert not funded.is_spent(to_hex(777))

    def test_invalid_proof(self, funded, submit):
        with pytest.raises(LedgerRevert) as exc_info:
            submit(funded, funded.tree.root, 777, proof=b"\x00" * 256)
        assert revert_message(exc_info) == "Invalid withdraw proof"
        assert not exc_info.value.reason.is_race

    def test_fee_exceeds_value(self, funded, submit):
        with pytest.raises(LedgerRevert) as exc_info:
            submit(funded, funded.tree.root, 777, fee=DENOMINATION + 1)
        assert revert_message(exc_info) == "Fee exceeds transfer value"

    def test_fee_checked_before_spent(self, funded, submit):
        submit(funded, funded.tree.root, 777)
        with pytest.raises(LedgerRevert) as exc_info:
            submit(funded, funded.tree.root, 777, fee=DENOMINATION + 1)
        assert revert_message(exc_info) == "Fee exceeds transfer value"

    def test_native_pool_rejects_value(self, funded, submit):
        with pytest.raises(LedgerRevert) as exc_info:
            submit(funded, funded.tree.root, 777, value=1)
        assert revert_message(exc_info) == "Message value is supposed to be zero for ETH instance"

    def test_native_pool_rejects_refund(self, funded, submit):
        with pytest.raises(LedgerRevert) as exc_info:
            submit(funded, funded.tree.root, 777, refund=5)
        assert revert_message(exc_info) == "Refund value is supposed to be zero for ETH instance"

    def test_token_pool_refund_must_match_value(self, forge_proof, submit, hasher):
        ledger = LocalLedger(
            verifier=lambda proof, signals: proof == forge_proof(signals),
            tree_height=4,
            native=False,
            hasher=hasher,
        )
        ledger.submit_deposit(to_hex(42), 0)

        with pytest.raises(LedgerRevert) as exc_info:
            submit(ledger, ledger.tree.root, 777, refund=5, value=4)
        assert revert_message(exc_info) == "Incorrect refund amount received by the contract"

        submit(ledger, ledger.tree.root, 777, refund=5, value=5)
        assert ledger.is_spent(to_hex(777))

    def test_withdrawal_leaves_tree_unchanged(self, funded, submit):
        root = funded.tree.root
        submit(funded, root, 777)
        assert funded.tree.root == root
        assert len(funded.get_events()) == 1


class TestPersistence:
    """The ledger replays its tree from the database."""

    def test_reopen_file_database(self, tmp_path, hasher):
        url = f"sqlite:///{tmp_path / 'ledger.db'}"
        first = LocalLedger(verifier=lambda p, s: True, database_url=url, tree_height=4, hasher=hasher)
        for c in (1, 2, 3):
            first.submit_deposit(to_hex(c), DENOMINATION)
        first.engine.dispose()

        reopened = LocalLedger(verifier=lambda p, s: True, database_url=url, tree_height=4, hasher=hasher)

        assert len(reopened.tree) == 3
        assert reopened.tree.root == first.tree.root
        assert reopened.is_known_root(to_hex(first.tree.root))
        assert reopened.submit_deposit(to_hex(4), DENOMINATION).block_number == 4

    def test_failed_commit_leaves_no_phantom_leaf(self, ledger, hasher, monkeypatch):
        original = Session.commit
        calls = []

        def flaky_commit(session):
            calls.append(session)
            if len(calls) == 1:
                raise OperationalError("COMMIT", {}, Exception("disk I/O error"))
            return original(session)

        monkeypatch.setattr(Session, "commit", flaky_commit)
        with pytest.raises(OperationalError):
            ledger.submit_deposit(to_hex(1), DENOMINATION)

        assert len(ledger.tree) == 0
        assert ledger.get_events() == []

        ledger.submit_deposit(to_hex(2), DENOMINATION)

        events = ledger.get_events()
        assert [e.leaf_index for e in events] == [0]
        assert len(ledger.tree) == 1
        expected = MerkleTree.build(ledger.tree.height, [2], hasher=hasher).root
        assert ledger.tree.root == expected
        assert ledger.is_known_root(to_hex(expected))
