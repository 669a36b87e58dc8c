"""Ledger interface and the in-process reference ledger."""

from zknote.ledger.base import DepositEvent, Ledger, TxReceipt
from zknote.ledger.local import (
    Base,
    DepositRecord,
    LocalLedger,
    NullifierRecord,
    RootRecord,
)

__all__ = [
    "DepositEvent",
    "Ledger",
    "TxReceipt",
    "LocalLedger",
    "DepositRecord",
    "NullifierRecord",
    "RootRecord",
    "Base",
]
