#!/usr/bin/env python3
"""
Database Reset Script
Clears the local ledger: deposits, root history and spent nullifiers
"""

import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent / "src"))

from zknote.config import get_settings
from zknote.ledger.local import LocalLedger


def reset_database():
    """Drop every ledger table and start an empty pool."""
    settings = get_settings()
    print(f"🔄 Resetting ledger at {settings.database_url}...")

    ledger = LocalLedger(
        verifier=lambda proof, signals: False,
        database_url=settings.database_url,
        tree_height=settings.merkle_tree_height,
        denomination=settings.denomination,
        root_history_size=settings.root_history_size,
    )

    print("  ⚠️  Dropping all tables...")
    ledger.drop_tables()
    ledger.engine.dispose()

    # Re-opening recreates the tables and records the empty root
    print("  ✨ Creating tables...")
    fresh = LocalLedger(
        verifier=lambda proof, signals: False,
        database_url=settings.database_url,
        tree_height=settings.merkle_tree_height,
        denomination=settings.denomination,
        root_history_size=settings.root_history_size,
    )

    print("\n✅ Ledger reset complete!")
    print(f"   Empty root: {hex(fresh.tree.root)}")


if __name__ == "__main__":
    try:
        reset_database()
    except KeyboardInterrupt:
        print("\n\n⚠️  Operation cancelled by user")
        sys.exit(1)
    except Exception as e:
        print(f"\n❌ Fatal error: {e}")
        sys.exit(1)
