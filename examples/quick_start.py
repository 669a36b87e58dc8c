#!/usr/bin/env python3
"""
Quick start guide for the zk-note client.

Needs the compiled withdrawal circuit and its keys, see ``ZKNOTE_CIRCUIT_WASM``,
``ZKNOTE_PROVING_KEY`` and ``ZKNOTE_VERIFICATION_KEY``, and ``snarkjs`` on PATH.
"""

import logging
import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from zknote.config import get_settings
from zknote.core.note import decode
from zknote.core.withdrawal import ClientContext, NoteClient


def main():
    """Deposit into the local pool and withdraw the note again."""
    settings = get_settings()
    logging.basicConfig(level=settings.log_level.upper())

    print("=" * 70)
    print("ZK-NOTE QUICK START EXAMPLE")
    print("=" * 70)
    print()

    # Step 1: Wire the client
    print("Step 1: Open the pool")
    print("-" * 70)
    client = NoteClient(ClientContext.from_settings(settings))
    print(f"✓ Ledger: {client.context.ledger}")
    print(f"✓ Prover: {client.context.prover}")
    print()

    # Step 2: Deposit
    print(f"Step 2: Deposit 1 {settings.native_currency.upper()}")
    print("-" * 70)
    note = client.deposit(settings.native_currency, "1")
    print("✓ Deposit confirmed. Keep this note, it is the only way to withdraw:")
    print(f"  {note[:40]}...")
    print(f"  Network: {decode(note).network_id}")
    print()

    # Step 3: Withdraw
    print("Step 3: Withdraw to a fresh address")
    print("-" * 70)
    recipient = "0x" + "42" * 20
    outcome = client.withdraw(note, recipient)
    print(f"  States: {' -> '.join(s.value for s in outcome.history)}")
    if outcome.confirmed:
        print(f"✓ Withdrawal confirmed in block {outcome.receipt.block_number}")
    else:
        print(f"✗ Withdrawal {outcome.state.value}: {outcome.reason}")
    print()

    # Step 4: Spending twice fails before any proof is generated
    print("Step 4: Try to spend the note again")
    print("-" * 70)
    again = client.withdraw(note, recipient)
    print(f"✓ {again.state.value}: {again.reason}")


if __name__ == "__main__":
    main()
