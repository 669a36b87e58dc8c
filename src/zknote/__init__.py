"""Main package initialization."""

__version__ = "0.1.0"
__author__ = "zk-note Team"
__description__ = "Client pipeline for commitment notes and zero-knowledge withdrawals"

from .core.note import Note, Secret, encode, decode
from .core.hasher import CommitmentHasher, Deposit
from .core.merkle_tree import MerkleTree, MerklePath
from .core.reconstructor import reconstruct, locate
from .core.prover import ProofAssembler, Witness, CallArgs
from .core.withdrawal import ClientContext, NoteClient, WithdrawalOutcome, WithdrawalState

__all__ = [
    "Note",
    "Secret",
    "encode",
    "decode",
    "CommitmentHasher",
    "Deposit",
    "MerkleTree",
    "MerklePath",
    "reconstruct",
    "locate",
    "ProofAssembler",
    "Witness",
    "CallArgs",
    "ClientContext",
    "NoteClient",
    "WithdrawalOutcome",
    "WithdrawalState",
]
