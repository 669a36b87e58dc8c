"""Rebuild the commitment tree from the ledger's deposit log.

Nothing is cached between calls: every reconstruction re-reads the full
event range ``[0, latest]``, so correctness depends only on the ledger.
"""

import logging
from typing import List, Optional, Sequence, Union

from zknote.core.merkle_tree import MerkleTree
from zknote.crypto.mimc import FieldHasher
from zknote.exceptions import CommitmentNotFoundError, CorruptedLogError
from zknote.ledger.base import DepositEvent, Ledger
from zknote.utils.encoding import hex_to_int
from zknote.utils.hash import FIELD_SIZE

logger = logging.getLogger(__name__)


def fetch_events(ledger: Ledger) -> List[DepositEvent]:
    """Read every deposit event from block 0 to latest."""
    events = ledger.get_events(from_block=0, to_block=None)
    logger.debug("Fetched %d deposit events", len(events))
    return events


def _commitment_value(event: DepositEvent) -> int:
    try:
        value = hex_to_int(event.commitment)
    except (TypeError, ValueError, AttributeError) as e:
        raise CorruptedLogError(f"Unreadable commitment at leaf {event.leaf_index}: {e}")
    if value >= FIELD_SIZE:
        raise CorruptedLogError(f"Commitment at leaf {event.leaf_index} is outside the field")
    return value


def ordered_leaves(events: Sequence[DepositEvent]) -> List[int]:
    """
    Sort events by leaf index and return their commitments.

    Raises:
        CorruptedLogError: On a gap, duplicate or negative leaf index
    """
    ordered = sorted(events, key=lambda e: e.leaf_index)
    for expected, event in enumerate(ordered):
        if event.leaf_index < 0:
            raise CorruptedLogError(f"Negative leaf index {event.leaf_index} in deposit log")
        if event.leaf_index != expected:
            if event.leaf_index < expected:
                raise CorruptedLogError(f"Duplicate leaf index {event.leaf_index} in deposit log")
            raise CorruptedLogError(
                f"Gap in deposit log: expected leaf {expected}, found {event.leaf_index}"
            )
    return [_commitment_value(event) for event in ordered]


def reconstruct(
    events: Sequence[DepositEvent],
    height: int = MerkleTree.DEFAULT_HEIGHT,
    hasher: Optional[FieldHasher] = None,
) -> MerkleTree:
    """
    Build the tree the ledger holds from its event log.

    Args:
        events: Deposit events in any order
        height: Tree height of the pool
        hasher: Node hash (default MiMC sponge)

    Returns:
        MerkleTree: Tree over all logged commitments

    Raises:
        CorruptedLogError: If the log is not a contiguous run from index 0
        CapacityExceededError: If the log holds more leaves than the height allows
    """
    tree = MerkleTree.build(height, ordered_leaves(events), hasher=hasher)
    logger.info("Reconstructed tree with %d leaves", len(tree))
    return tree


def locate(events: Sequence[DepositEvent], commitment: Union[int, str]) -> int:
    """
    Find the leaf index of a commitment.

    Args:
        events: Deposit events
        commitment: Commitment as int or hex string

    Returns:
        int: Leaf index of the first matching event

    Raises:
        CommitmentNotFoundError: If no event carries the commitment
    """
    target = commitment if isinstance(commitment, int) else hex_to_int(commitment)
    for event in events:
        if _commitment_value(event) == target:
            return event.leaf_index
    raise CommitmentNotFoundError("The deposit is not found in the tree")
