"""Deposit and withdrawal orchestration.

The client is the only component with side effects against the ledger. A
withdrawal attempt moves through::

    PARSED -> VALIDATED -> PROVING -> PROVEN -> SUBMITTED -> CONFIRMED
                 |             |                   |
                 +-------------+-------------------+----> REJECTED

with ``CANCELLED`` reachable before submission when the caller sets the
cancel event. Expected failures end in ``REJECTED`` and are returned as
part of the outcome; a corrupted ledger log or a tree misconfiguration is
fatal and raises.

Tree state is never kept between calls. Each withdrawal re-reads the whole
deposit log and rebuilds the tree, so independent attempts can run in
separate threads against one :class:`ClientContext`.
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import List, Optional

from zknote.config import Settings, get_settings
from zknote.core.hasher import CommitmentHasher
from zknote.core.note import Note, decode
from zknote.core.prover import (
    Address,
    CallArgs,
    ProofAssembler,
    Prover,
    SnarkjsProver,
    SnarkjsVerifier,
)
from zknote.core.reconstructor import fetch_events, reconstruct
from zknote.crypto.mimc import FieldHasher, MiMCSponge
from zknote.exceptions import (
    FormatError,
    InvalidRefundError,
    LedgerRevert,
    ProofCancelledError,
    ProverError,
    RevertReason,
    ValidationError,
    ZKNoteException,
)
from zknote.ledger.base import Ledger, TxReceipt
from zknote.ledger.local import LocalLedger
from zknote.utils.encoding import hex_to_bytes

logger = logging.getLogger(__name__)


class WithdrawalState(str, Enum):
    """Withdrawal attempt state."""
    PARSED = "parsed"
    VALIDATED = "validated"
    PROVING = "proving"
    PROVEN = "proven"
    SUBMITTED = "submitted"
    CONFIRMED = "confirmed"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


TERMINAL_STATES = frozenset(
    {WithdrawalState.CONFIRMED, WithdrawalState.REJECTED, WithdrawalState.CANCELLED}
)


@dataclass
class WithdrawalOutcome:
    """Result of one withdrawal attempt."""

    history: List[WithdrawalState] = field(default_factory=list)
    currency: Optional[str] = None
    amount: Optional[str] = None
    call_args: Optional[CallArgs] = None
    receipt: Optional[TxReceipt] = None
    error: Optional[ZKNoteException] = None
    timestamp: datetime = field(default_factory=datetime.now)

    @property
    def state(self) -> Optional[WithdrawalState]:
        return self.history[-1] if self.history else None

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    @property
    def confirmed(self) -> bool:
        return self.state == WithdrawalState.CONFIRMED

    @property
    def reason(self) -> Optional[str]:
        return str(self.error) if self.error is not None else None

    @property
    def revert_reason(self) -> Optional[RevertReason]:
        """Ledger revert, if the attempt failed at submission."""
        if isinstance(self.error, LedgerRevert):
            return self.error.reason
        return None

    def advance(self, state: WithdrawalState) -> "WithdrawalOutcome":
        if self.is_terminal:
            raise RuntimeError(f"Withdrawal already finished in state {self.state.value}")
        self.history.append(state)
        return self

    def finish(self, state: WithdrawalState, error: Optional[ZKNoteException] = None) -> "WithdrawalOutcome":
        self.error = error
        return self.advance(state)

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        revert = self.revert_reason
        return {
            "state": self.state.value if self.state else None,
            "history": [s.value for s in self.history],
            "currency": self.currency,
            "amount": self.amount,
            "reason": self.reason,
            "error_type": type(self.error).__name__ if self.error else None,
            "race_lost": revert.is_race if revert else None,
            "call_args": self.call_args.to_dict() if self.call_args else None,
            "receipt": self.receipt.to_dict() if self.receipt else None,
            "timestamp": self.timestamp.isoformat(),
        }


class ClientContext:
    """
    Everything a client needs, built once per process and reused.

    Args:
        ledger: Pool ledger
        prover: Withdrawal circuit prover
        settings: Pool parameters (default: environment)
        hasher: Field hash shared by commitments and the tree
    """

    def __init__(
        self,
        ledger: Ledger,
        prover: Prover,
        settings: Optional[Settings] = None,
        hasher: Optional[FieldHasher] = None,
    ):
        self.ledger = ledger
        self.prover = prover
        self.settings = settings or get_settings()
        self.hasher = hasher or MiMCSponge()
        self.commitment_hasher = CommitmentHasher(self.hasher)
        self.assembler = ProofAssembler(ledger, prover)

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "ClientContext":
        """Wire a local ledger and the snarkjs prover from settings."""
        settings = settings or get_settings()
        hasher = MiMCSponge()
        ledger = LocalLedger(
            verifier=SnarkjsVerifier(settings.verification_key, snarkjs_bin=settings.snarkjs_bin),
            database_url=settings.database_url,
            tree_height=settings.merkle_tree_height,
            denomination=settings.denomination,
            native=settings.native_pool,
            root_history_size=settings.root_history_size,
            hasher=hasher,
        )
        prover = SnarkjsProver(
            settings.circuit_wasm,
            settings.proving_key,
            snarkjs_bin=settings.snarkjs_bin,
            timeout=settings.prover_timeout,
        )
        return cls(ledger=ledger, prover=prover, settings=settings, hasher=hasher)


class NoteClient:
    """
    Client for one pool: creates notes on deposit and spends them on withdrawal.
    """

    def __init__(self, context: ClientContext):
        self.context = context

    @property
    def settings(self) -> Settings:
        return self.context.settings

    def _is_native(self, currency: str) -> bool:
        return currency.lower() == self.settings.native_currency.lower()

    def _to_base_units(self, amount: str) -> int:
        try:
            value = Decimal(amount) * (10 ** self.settings.decimals)
        except InvalidOperation:
            raise FormatError(f"Invalid amount: {amount}", field="amount")
        if value != value.to_integral_value() or value <= 0:
            raise FormatError(f"Amount {amount} is not a positive whole number of base units", field="amount")
        return int(value)

    def deposit(self, currency: str, amount: str) -> str:
        """
        Create a note and publish its commitment.

        Steps:
        1. Generate a fresh (nullifier, secret) pair
        2. Compute commitment = H(nullifier || secret)
        3. Submit the commitment with the pool's payment
        4. Return the note string

        Args:
            currency: Pool currency, e.g. ``"eth"``
            amount: Pool denomination as written in the note, e.g. ``"1"``

        Returns:
            str: The note. It is the only way to withdraw the deposit.

        Raises:
            FormatError: If currency or amount cannot be written into a note
            LedgerRevert: If the ledger rejects the deposit
        """
        note = Note.generate(currency=currency, amount=str(amount), network_id=self.settings.network_id)
        deposit = self.context.commitment_hasher.create_deposit(note.secret)
        value = self._to_base_units(note.amount) if self._is_native(currency) else 0

        logger.info("Submitting deposit transaction (%s %s)", note.amount, note.currency)
        receipt = self.context.ledger.submit_deposit(deposit.commitment_hex, value)
        logger.info("Deposit confirmed in block %d", receipt.block_number)

        return str(note)

    def _check_request(self, note: Note, refund: int) -> None:
        if note.network_id != self.settings.network_id:
            raise FormatError(
                f"Note is for network {note.network_id}, client is on {self.settings.network_id}",
                field="network_id",
            )
        if self._is_native(note.currency) and refund != 0:
            raise InvalidRefundError(
                f"The {note.currency.upper()} purchase is supposed to be 0 for {note.currency.upper()} withdrawals"
            )

    def withdraw(
        self,
        note_string: str,
        recipient: Address,
        refund: int = 0,
        relayer: Address = 0,
        fee: int = 0,
        cancel_event: Optional[threading.Event] = None,
    ) -> WithdrawalOutcome:
        """
        Spend a note.

        Steps:
        1. Decode the note (PARSED)
        2. Rebuild the tree from the full deposit log, check root freshness
           and spend status, locate the leaf (VALIDATED)
        3. Generate the proof (PROVING -> PROVEN)
        4. Submit to the ledger with ``value = refund`` (SUBMITTED)
        5. Record the ledger's verdict (CONFIRMED or REJECTED)

        Args:
            note_string: Note from :meth:`deposit`
            recipient: 20-byte address receiving the funds
            refund: Native value forwarded to the recipient (token pools only)
            relayer: Relayer address, 0 when submitting directly
            fee: Relayer fee in base units
            cancel_event: Set to abort before submission

        Returns:
            WithdrawalOutcome: Terminal outcome with the reason on failure

        Raises:
            CorruptedLogError: If the deposit log has gaps or duplicates
            CapacityExceededError: If the log exceeds the configured height
        """
        outcome = WithdrawalOutcome()

        try:
            note = decode(note_string)
        except FormatError as e:
            logger.warning("Withdrawal rejected: %s", e)
            return outcome.finish(WithdrawalState.REJECTED, e)

        outcome.currency = note.currency
        outcome.amount = note.amount
        outcome.advance(WithdrawalState.PARSED)

        try:
            self._check_request(note, refund)
        except FormatError as e:
            logger.warning("Withdrawal rejected: %s", e)
            return outcome.finish(WithdrawalState.REJECTED, e)

        deposit = self.context.commitment_hasher.create_deposit(note.secret)

        logger.info("Getting current state from the ledger")
        events = fetch_events(self.context.ledger)
        tree = reconstruct(events, self.settings.merkle_tree_height, hasher=self.context.hasher)

        try:
            witness = self.context.assembler.build_witness(
                tree, events, deposit, recipient, relayer=relayer, fee=fee, refund=refund
            )
        except (ValidationError, FormatError) as e:
            logger.warning("Withdrawal rejected before proving: %s", e)
            return outcome.finish(WithdrawalState.REJECTED, e)
        outcome.advance(WithdrawalState.VALIDATED)

        if cancel_event is not None and cancel_event.is_set():
            return outcome.finish(WithdrawalState.CANCELLED, ProofCancelledError("Cancelled before proving"))

        outcome.advance(WithdrawalState.PROVING)
        try:
            proof = self.context.assembler.prove(witness, cancel_event=cancel_event)
        except ProofCancelledError as e:
            logger.info("Withdrawal cancelled during proving")
            return outcome.finish(WithdrawalState.CANCELLED, e)
        except ProverError as e:
            logger.warning("Proof generation failed: %s", e)
            return outcome.finish(WithdrawalState.REJECTED, e)
        outcome.advance(WithdrawalState.PROVEN)

        outcome.call_args = self.context.assembler.to_call_args(proof, witness.public)

        if cancel_event is not None and cancel_event.is_set():
            return outcome.finish(WithdrawalState.CANCELLED, ProofCancelledError("Cancelled before submission"))

        outcome.advance(WithdrawalState.SUBMITTED)
        logger.info("Submitting withdraw transaction")
        try:
            outcome.receipt = self.context.ledger.submit_withdrawal(
                hex_to_bytes(outcome.call_args.proof),
                *outcome.call_args.args,
                value=refund,
            )
        except LedgerRevert as e:
            logger.warning("Ledger reverted withdrawal: %s (race=%s)", e.reason, e.reason.is_race)
            return outcome.finish(WithdrawalState.REJECTED, e)

        logger.info("Withdrawal confirmed in block %d", outcome.receipt.block_number)
        return outcome.advance(WithdrawalState.CONFIRMED)
