"""Ledger interface consumed by the client pipeline."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional


@dataclass(frozen=True)
class DepositEvent:
    """One ``Deposit`` log entry."""

    commitment: str  # 32-byte 0x-hex
    leaf_index: int
    block_number: int = 0
    timestamp: Optional[datetime] = field(default=None, compare=False)


@dataclass(frozen=True)
class TxReceipt:
    """Receipt for a transaction the ledger accepted."""

    transaction_hash: str
    block_number: int
    status: str = "confirmed"

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "transaction_hash": self.transaction_hash,
            "block_number": self.block_number,
            "status": self.status,
        }


class Ledger(ABC):
    """
    The append-only log, root history and nullifier set of one pool.

    Queries are read-only. Submissions either return a receipt or raise
    :class:`zknote.exceptions.LedgerRevert` with the ledger's reason.
    """

    @abstractmethod
    def get_events(self, from_block: int = 0, to_block: Optional[int] = None) -> List[DepositEvent]:
        """Deposit events in ``[from_block, to_block]``; ``None`` means latest."""

    @abstractmethod
    def is_known_root(self, root: str) -> bool:
        """True if ``root`` is in the ledger's recent root history."""

    @abstractmethod
    def is_spent(self, nullifier_hash: str) -> bool:
        """True if ``nullifier_hash`` has already been withdrawn."""

    @abstractmethod
    def submit_deposit(self, commitment: str, value: int) -> TxReceipt:
        """Publish a commitment, paying ``value`` base units."""

    @abstractmethod
    def submit_withdrawal(
        self,
        proof: bytes,
        root: str,
        nullifier_hash: str,
        recipient: str,
        relayer: str,
        fee: str,
        refund: str,
        value: int = 0,
    ) -> TxReceipt:
        """Submit a withdrawal; arguments are the fixed-width hex call args."""
