"""Withdrawal witness assembly and proof generation.

The assembler turns a reconstructed tree and a deposit into the exact input
layout of the withdrawal circuit, hands it to an external prover and
converts the result into the verifier's call arguments.

Circuit inputs:
    public:  root, nullifierHash, recipient, relayer, fee, refund
    private: nullifier, secret, pathElements[H], pathIndices[H]

Call argument order (wire contract with the on-chain verifier):
    proof, root, nullifierHash, recipient(20), relayer(20), fee, refund
"""

import json
import logging
import subprocess
import tempfile
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple, Union

from zknote.core.hasher import Deposit
from zknote.core.merkle_tree import MerkleTree
from zknote.core.reconstructor import locate
from zknote.exceptions import (
    AlreadySpentError,
    FormatError,
    ProofCancelledError,
    ProverError,
    StaleRootError,
)
from zknote.ledger.base import DepositEvent, Ledger
from zknote.utils.encoding import bytes_to_hex, to_hex
from zknote.utils.hash import FIELD_SIZE

logger = logging.getLogger(__name__)

ADDRESS_BYTES = 20
GROTH16_PROOF_BYTES = 8 * 32

Address = Union[str, int]


@dataclass(frozen=True)
class PublicInputs:
    """Values revealed to the verifier."""

    root: int
    nullifier_hash: int
    recipient: int
    relayer: int
    fee: int
    refund: int

    def as_list(self) -> List[int]:
        """Public signals in verifier order."""
        return [self.root, self.nullifier_hash, self.recipient, self.relayer, self.fee, self.refund]


@dataclass(frozen=True)
class PrivateInputs:
    """Values only the prover sees."""

    nullifier: int
    secret: int
    path_elements: Tuple[int, ...]
    path_index: Tuple[int, ...]

    def __repr__(self) -> str:
        return f"PrivateInputs(<redacted>, depth={len(self.path_elements)})"


@dataclass(frozen=True)
class Witness:
    """Complete circuit input for one withdrawal."""

    public: PublicInputs
    private: PrivateInputs
    leaf_index: int

    def to_circuit_input(self) -> Dict[str, Union[str, List[str]]]:
        """Circuit input mapping with decimal-string values."""
        return circuit_input(self.public, self.private)


@dataclass(frozen=True)
class CallArgs:
    """Verifier call arguments, fixed-width hex in contract order."""

    proof: str
    args: Tuple[str, str, str, str, str, str]

    @property
    def root(self) -> str:
        return self.args[0]

    @property
    def nullifier_hash(self) -> str:
        return self.args[1]

    @property
    def recipient(self) -> str:
        return self.args[2]

    @property
    def relayer(self) -> str:
        return self.args[3]

    @property
    def fee(self) -> str:
        return self.args[4]

    @property
    def refund(self) -> str:
        return self.args[5]

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {"proof": self.proof, "args": list(self.args)}


def circuit_input(public: PublicInputs, private: PrivateInputs) -> Dict[str, Union[str, List[str]]]:
    return {
        "root": str(public.root),
        "nullifierHash": str(public.nullifier_hash),
        "recipient": str(public.recipient),
        "relayer": str(public.relayer),
        "fee": str(public.fee),
        "refund": str(public.refund),
        "nullifier": str(private.nullifier),
        "secret": str(private.secret),
        "pathElements": [str(e) for e in private.path_elements],
        "pathIndices": [str(i) for i in private.path_index],
    }


def parse_address(value: Address, field: str) -> int:
    """
    Read a 20-byte address given as 0x-hex or int.

    Raises:
        FormatError: If the value is not a 20-byte address
    """
    if isinstance(value, bool):
        raise FormatError(f"{field} must be a {ADDRESS_BYTES}-byte address", field=field)
    if isinstance(value, int):
        address = value
    elif isinstance(value, str):
        digits = value[2:] if value.startswith(("0x", "0X")) else value
        if len(digits) != ADDRESS_BYTES * 2:
            raise FormatError(f"{field} must be a {ADDRESS_BYTES}-byte address", field=field)
        try:
            address = int(digits, 16)
        except ValueError:
            raise FormatError(f"{field} is not valid hex", field=field)
    else:
        raise FormatError(f"{field} must be a hex string or integer", field=field)

    if not 0 <= address < 2 ** (8 * ADDRESS_BYTES):
        raise FormatError(f"{field} does not fit in {ADDRESS_BYTES} bytes", field=field)
    return address


def parse_amount(value: int, field: str) -> int:
    """Check that a fee or refund is a non-negative field value."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise FormatError(f"{field} must be an integer", field=field)
    if not 0 <= value < FIELD_SIZE:
        raise FormatError(f"{field} must be non-negative and inside the field", field=field)
    return value


def pack_groth16_proof(proof: dict) -> bytes:
    """
    Pack a snarkjs Groth16 proof into 256 bytes of verifier calldata.

    Order is ``a0, a1, b[0][1], b[0][0], b[1][1], b[1][0], c0, c1``; the
    G2 coordinates are swapped because the verifier expects ``(imag, real)``.

    Raises:
        ProverError: If the proof JSON is missing components
    """
    try:
        a, b, c = proof["pi_a"], proof["pi_b"], proof["pi_c"]
        values = [a[0], a[1], b[0][1], b[0][0], b[1][1], b[1][0], c[0], c[1]]
        return b"".join(int(v).to_bytes(32, "big") for v in values)
    except (KeyError, IndexError, TypeError, ValueError, OverflowError) as e:
        raise ProverError(f"Malformed Groth16 proof: {e}")


class Prover(ABC):
    """External zero-knowledge prover bound to one circuit and proving key."""

    @abstractmethod
    def prove(
        self,
        public_inputs: PublicInputs,
        private_inputs: PrivateInputs,
        cancel_event: Optional[threading.Event] = None,
    ) -> bytes:
        """
        Generate a proof.

        Raises:
            ProverError: If the witness does not satisfy the circuit or the
                prover fails internally
            ProofCancelledError: If ``cancel_event`` is set while proving
        """


class SnarkjsProver(Prover):
    """
    Groth16 prover backed by the ``snarkjs`` command line tool.

    Runs ``snarkjs groth16 fullprove`` in a temporary directory and packs
    the resulting ``proof.json`` for the verifier.
    """

    def __init__(
        self,
        circuit_wasm: Union[str, Path],
        proving_key: Union[str, Path],
        snarkjs_bin: str = "snarkjs",
        timeout: Optional[float] = None,
        poll_interval: float = 0.1,
    ):
        self.circuit_wasm = Path(circuit_wasm)
        self.proving_key = Path(proving_key)
        self.snarkjs_bin = snarkjs_bin
        self.timeout = timeout
        self.poll_interval = poll_interval

    def _command(self, workdir: Path) -> List[str]:
        return [
            self.snarkjs_bin,
            "groth16",
            "fullprove",
            str(workdir / "input.json"),
            str(self.circuit_wasm),
            str(self.proving_key),
            str(workdir / "proof.json"),
            str(workdir / "public.json"),
        ]

    def _wait(self, process: subprocess.Popen, cancel_event: Optional[threading.Event]) -> str:
        """Wait for the prover, killing it on cancellation or timeout. Returns stderr."""
        deadline = time.monotonic() + self.timeout if self.timeout else None
        while True:
            try:
                _, stderr = process.communicate(timeout=self.poll_interval)
                return stderr or ""
            except subprocess.TimeoutExpired:
                if cancel_event is not None and cancel_event.is_set():
                    process.kill()
                    process.communicate()
                    raise ProofCancelledError("Proof generation cancelled")
                if deadline is not None and time.monotonic() > deadline:
                    process.kill()
                    process.communicate()
                    raise ProverError(f"Prover timed out after {self.timeout}s")

    def prove(
        self,
        public_inputs: PublicInputs,
        private_inputs: PrivateInputs,
        cancel_event: Optional[threading.Event] = None,
    ) -> bytes:
        with tempfile.TemporaryDirectory(prefix="zknote-") as tmp:
            workdir = Path(tmp)
            (workdir / "input.json").write_text(json.dumps(circuit_input(public_inputs, private_inputs)))

            try:
                process = subprocess.Popen(
                    self._command(workdir),
                    stdout=subprocess.PIPE,
                    stderr=subprocess.PIPE,
                    text=True,
                )
            except OSError as e:
                raise ProverError(f"Cannot start prover '{self.snarkjs_bin}': {e}")

            stderr = self._wait(process, cancel_event)
            if process.returncode != 0:
                raise ProverError(f"SNARK prover failed: {stderr.strip() or 'unknown prover error'}")

            try:
                proof = json.loads((workdir / "proof.json").read_text())
            except (OSError, ValueError) as e:
                raise ProverError(f"Prover produced no readable proof: {e}")

        return pack_groth16_proof(proof)

    def __repr__(self) -> str:
        return f"SnarkjsProver(circuit={self.circuit_wasm}, key={self.proving_key})"


def unpack_groth16_proof(proof: bytes) -> dict:
    """Inverse of :func:`pack_groth16_proof`, in snarkjs JSON layout."""
    if len(proof) != GROTH16_PROOF_BYTES:
        raise ValueError(f"Groth16 calldata must be {GROTH16_PROOF_BYTES} bytes")
    a0, a1, b01, b00, b11, b10, c0, c1 = (
        str(int.from_bytes(proof[i:i + 32], "big")) for i in range(0, GROTH16_PROOF_BYTES, 32)
    )
    return {
        "pi_a": [a0, a1, "1"],
        "pi_b": [[b00, b01], [b10, b11], ["1", "0"]],
        "pi_c": [c0, c1, "1"],
        "protocol": "groth16",
        "curve": "bn128",
    }


class SnarkjsVerifier:
    """
    Groth16 verifier backed by ``snarkjs groth16 verify``.

    Callable as ``verifier(proof, public_signals) -> bool``, the shape
    :class:`zknote.ledger.LocalLedger` expects.
    """

    def __init__(self, verification_key: Union[str, Path], snarkjs_bin: str = "snarkjs"):
        self.verification_key = Path(verification_key)
        self.snarkjs_bin = snarkjs_bin

    def __call__(self, proof: bytes, public_signals: Sequence[int]) -> bool:
        try:
            proof_json = unpack_groth16_proof(proof)
        except ValueError:
            return False

        with tempfile.TemporaryDirectory(prefix="zknote-") as tmp:
            workdir = Path(tmp)
            (workdir / "proof.json").write_text(json.dumps(proof_json))
            (workdir / "public.json").write_text(json.dumps([str(v) for v in public_signals]))
            result = subprocess.run(
                [
                    self.snarkjs_bin,
                    "groth16",
                    "verify",
                    str(self.verification_key),
                    str(workdir / "public.json"),
                    str(workdir / "proof.json"),
                ],
                capture_output=True,
                text=True,
                check=False,
            )
        if result.returncode != 0:
            logger.warning("Proof rejected by verifier: %s", result.stdout.strip() or result.stderr.strip())
        return result.returncode == 0


class ProofAssembler:
    """
    Builds witnesses against the ledger and drives the prover.

    Validation (root freshness, spend status, leaf lookup) always happens
    before any proving work.
    """

    def __init__(self, ledger: Ledger, prover: Prover):
        self.ledger = ledger
        self.prover = prover

    def build_witness(
        self,
        tree: MerkleTree,
        events: Sequence[DepositEvent],
        deposit: Deposit,
        recipient: Address,
        relayer: Address = 0,
        fee: int = 0,
        refund: int = 0,
    ) -> Witness:
        """
        Assemble the circuit input for withdrawing ``deposit``.

        Args:
            tree: Tree reconstructed from ``events``
            events: The deposit log the tree was built from
            deposit: Deposit being withdrawn
            recipient: Address receiving the funds
            relayer: Relayer address (0 when withdrawing directly)
            fee: Relayer fee in base units
            refund: Value forwarded to the recipient for token pools

        Returns:
            Witness: Public and private inputs

        Raises:
            FormatError: If an address or amount is malformed
            StaleRootError: If the ledger does not recognise the root
            AlreadySpentError: If the nullifier hash is already spent
            CommitmentNotFoundError: If the deposit is not in the log
        """
        recipient_int = parse_address(recipient, "recipient")
        relayer_int = parse_address(relayer, "relayer")
        fee = parse_amount(fee, "fee")
        refund = parse_amount(refund, "refund")

        root = tree.root
        if not self.ledger.is_known_root(to_hex(root)):
            raise StaleRootError("Merkle tree is corrupted: root is not known to the ledger")
        if self.ledger.is_spent(deposit.nullifier_hash_hex):
            raise AlreadySpentError("The note is already spent")

        leaf_index = locate(events, deposit.commitment)
        path = tree.path(leaf_index)

        return Witness(
            public=PublicInputs(
                root=root,
                nullifier_hash=deposit.nullifier_hash,
                recipient=recipient_int,
                relayer=relayer_int,
                fee=fee,
                refund=refund,
            ),
            private=PrivateInputs(
                nullifier=deposit.secret.nullifier,
                secret=deposit.secret.secret,
                path_elements=path.path_elements,
                path_index=path.path_index,
            ),
            leaf_index=leaf_index,
        )

    def prove(self, witness: Witness, cancel_event: Optional[threading.Event] = None) -> bytes:
        """
        Generate the withdrawal proof. Failures are never retried here.

        Raises:
            ProverError: If the prover fails or returns nothing
            ProofCancelledError: If cancelled by the caller
        """
        started = time.monotonic()
        try:
            proof = self.prover.prove(witness.public, witness.private, cancel_event=cancel_event)
        except ProverError:
            raise
        except Exception as e:
            raise ProverError(f"Prover failed: {e}") from e

        if not isinstance(proof, (bytes, bytearray)) or not proof:
            raise ProverError("Prover returned an empty proof")

        logger.info("Proof generated in %.2fs", time.monotonic() - started)
        return bytes(proof)

    @staticmethod
    def to_call_args(proof: bytes, public_inputs: PublicInputs) -> CallArgs:
        """Encode proof and public inputs in the verifier's parameter order."""
        return CallArgs(
            proof=bytes_to_hex(proof),
            args=(
                to_hex(public_inputs.root),
                to_hex(public_inputs.nullifier_hash),
                to_hex(public_inputs.recipient, ADDRESS_BYTES),
                to_hex(public_inputs.relayer, ADDRESS_BYTES),
                to_hex(public_inputs.fee),
                to_hex(public_inputs.refund),
            ),
        )
