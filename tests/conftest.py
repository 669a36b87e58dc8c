"""Pytest configuration and fixtures."""

import pytest
import sys
from pathlib import Path

# Add src to path for imports
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

from zknote.config import Settings
from zknote.core.hasher import CommitmentHasher
from zknote.core.note import Secret
from zknote.core.prover import Prover
from zknote.core.withdrawal import ClientContext, NoteClient
from zknote.crypto.mimc import MiMCSponge
from zknote.exceptions import ProofCancelledError, ProverError
from zknote.ledger.local import LocalLedger
from zknote.utils.hash import keccak256


TEST_TREE_HEIGHT = 8
RECIPIENT = "0x" + "ab" * 20
RELAYER = "0x" + "cd" * 20


def fake_proof(public_signals) -> bytes:
    """Deterministic 256-byte stand-in for a Groth16 proof over ``public_signals``."""
    message = ",".join(str(v) for v in public_signals)
    return b"".join(keccak256(f"{i}:{message}") for i in range(8))


def fake_verifier(proof: bytes, public_signals) -> bool:
    """Accepts exactly the proofs :class:`CircuitCheckingProver` produces."""
    return proof == fake_proof(public_signals)


class CircuitCheckingProver(Prover):
    """
    Stand-in prover that enforces the withdrawal circuit's constraints.

    It recomputes the nullifier hash and folds the commitment up the path,
    failing like a real prover would on an unsatisfiable witness.
    """

    def __init__(self, hasher):
        self.hasher = hasher
        self.commitment_hasher = CommitmentHasher(hasher)
        self.calls = 0

    def prove(self, public_inputs, private_inputs, cancel_event=None):
        self.calls += 1
        if cancel_event is not None and cancel_event.is_set():
            raise ProofCancelledError("Proof generation cancelled")

        if self.commitment_hasher.nullifier_hash_of(private_inputs.nullifier) != public_inputs.nullifier_hash:
            raise ProverError("Constraint doesn't match: nullifierHash")

        current = self.commitment_hasher.commitment_of(Secret(private_inputs.nullifier, private_inputs.secret))
        for sibling, bit in zip(private_inputs.path_elements, private_inputs.path_index):
            if bit:
                current = self.hasher.hash_pair(sibling, current)
            else:
                current = self.hasher.hash_pair(current, sibling)
        if current != public_inputs.root:
            raise ProverError("Constraint doesn't match: root")

        return fake_proof(public_inputs.as_list())


@pytest.fixture(scope="session")
def hasher():
    """Shared MiMC sponge (round constants are derived once)."""
    return MiMCSponge()


@pytest.fixture(scope="session")
def commitment_hasher(hasher):
    return CommitmentHasher(hasher)


@pytest.fixture
def settings():
    """Settings for a small native-asset pool."""
    return Settings(
        merkle_tree_height=TEST_TREE_HEIGHT,
        network_id=1,
        native_currency="eth",
        denomination=10**18,
        database_url="sqlite://",
        root_history_size=30,
    )


@pytest.fixture
def ledger(settings, hasher):
    """In-memory ledger using the fake verifier."""
    return LocalLedger(
        verifier=fake_verifier,
        database_url=settings.database_url,
        tree_height=settings.merkle_tree_height,
        denomination=settings.denomination,
        root_history_size=settings.root_history_size,
        hasher=hasher,
    )


@pytest.fixture
def prover(hasher):
    return CircuitCheckingProver(hasher)


@pytest.fixture
def context(ledger, prover, settings, hasher):
    return ClientContext(ledger=ledger, prover=prover, settings=settings, hasher=hasher)


@pytest.fixture
def client(context):
    return NoteClient(context)


@pytest.fixture
def forge_proof():
    """Builds the proof the fake verifier accepts for given public signals."""
    return fake_proof
