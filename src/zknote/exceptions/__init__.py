"""Custom exceptions for the zk-note client."""

from typing import Optional


class ZKNoteException(Exception):
    """Base exception for all zk-note client errors."""
    pass


# Input Errors
class FormatError(ZKNoteException):
    """Raised when a note or request field is malformed.

    Attributes:
        field: Name of the offending field (e.g. ``"payload"``, ``"recipient"``)
    """

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class InvalidRefundError(FormatError):
    """Raised when a native-asset withdrawal carries a non-zero refund."""

    def __init__(self, message: str):
        super().__init__(message, field="refund")


# Merkle Tree Errors
class MerkleTreeError(ZKNoteException):
    """Base exception for Merkle tree errors."""
    pass


class CapacityExceededError(MerkleTreeError):
    """Raised when more leaves are supplied than the tree height allows."""
    pass


class IndexOutOfRangeError(MerkleTreeError):
    """Raised when a leaf index does not exist in the tree."""
    pass


# Event Log Errors
class CorruptedLogError(ZKNoteException):
    """Raised when the ledger's deposit log has gaps or duplicate indices."""
    pass


# Validation Errors
class ValidationError(ZKNoteException):
    """Base exception for expected pre-proof rejections."""
    pass


class StaleRootError(ValidationError):
    """Raised when the reconstructed root is not in the ledger's root history."""
    pass


class AlreadySpentError(ValidationError):
    """Raised when the note's nullifier hash is already marked spent."""
    pass


class CommitmentNotFoundError(ValidationError):
    """Raised when the note's commitment is not in the deposit log."""
    pass


# Proof Errors
class ProverError(ZKNoteException):
    """Raised when the external prover fails. Never retried automatically."""
    pass


class ProofCancelledError(ProverError):
    """Raised when the caller cancels proof generation."""
    pass


# Ledger Errors
class RevertReason:
    """Reason string returned by the ledger for a rejected transaction."""

    # Reverts that mean another submission got there first
    RACE_MESSAGES = (
        "The note has been already spent",
        "Cannot find your merkle root",
    )

    def __init__(self, message: str):
        self.message = message

    @property
    def is_race(self) -> bool:
        """True if the revert indicates a lost race rather than a bad request."""
        return any(self.message.startswith(m) for m in self.RACE_MESSAGES)

    def __eq__(self, other) -> bool:
        return isinstance(other, RevertReason) and other.message == self.message

    def __str__(self) -> str:
        return self.message

    def __repr__(self) -> str:
        return f"RevertReason({self.message!r}, is_race={self.is_race})"


class LedgerRevert(ZKNoteException):
    """Raised when the ledger rejects a submitted transaction."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = RevertReason(reason)
