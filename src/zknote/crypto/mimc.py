"""
MiMC sponge hash over the BN254 scalar field.

This is the algebraic hash the withdrawal circuit and the on-chain tree use
for Merkle nodes. It is a Feistel network with 220 rounds and the ``x^5``
S-box; the round constants come from a Keccak-256 chain seeded with
``"mimcsponge"``, with the first and last constants forced to zero.

The sponge absorbs one field element per permutation into the left lane
and squeezes the left lane as output, so hashing two nodes is::

    R, C = 0, 0
    for x in (left, right):
        R, C = feistel(R + x, C, key=0)
    return R

Example:
    >>> sponge = MiMCSponge()
    >>> parent = sponge.hash_pair(left, right)
    >>> digest = sponge.hash_elements([nullifier, secret])

Security:
    - Round count and exponent are fixed; running time does not depend on
      the bit pattern of the inputs beyond Python's big-int arithmetic
    - Inputs must already be reduced field elements
"""

from abc import ABC, abstractmethod
from functools import lru_cache
from typing import List, Sequence, Tuple

from zknote.utils.hash import FIELD_SIZE, keccak256


SEED = "mimcsponge"
NROUNDS = 220


class FieldHasher(ABC):
    """
    Pluggable hash primitive over field elements.

    Implementations must be the identical primitive and parameterisation
    the paired circuit uses, or proofs will not verify.
    """

    @abstractmethod
    def hash_elements(self, values: Sequence[int]) -> int:
        """Hash an ordered sequence of field elements to one field element."""

    def hash_pair(self, left: int, right: int) -> int:
        """Merkle node hash, ``H(left || right)``."""
        return self.hash_elements((left, right))


@lru_cache(maxsize=None)
def round_constants(seed: str = SEED, n_rounds: int = NROUNDS) -> Tuple[int, ...]:
    """
    Derive the Feistel round constants.

    Args:
        seed: Domain string for the Keccak chain
        n_rounds: Number of rounds

    Returns:
        Tuple[int, ...]: ``n_rounds`` constants, first and last are zero
    """
    constants: List[int] = [0] * n_rounds
    digest = keccak256(seed)
    for i in range(1, n_rounds):
        digest = keccak256(digest)
        constants[i] = int.from_bytes(digest, "big") % FIELD_SIZE
    constants[0] = 0
    constants[-1] = 0
    return tuple(constants)


class MiMCSponge(FieldHasher):
    """MiMC-Feistel sponge with a single output lane."""

    def __init__(self, key: int = 0, n_rounds: int = NROUNDS):
        if not 0 <= key < FIELD_SIZE:
            raise ValueError("Key must be a field element")
        self.key = key
        self.n_rounds = n_rounds
        self.constants = round_constants(SEED, n_rounds)

    def permute(self, xl: int, xr: int) -> Tuple[int, int]:
        """
        Run the Feistel permutation on one ``(left, right)`` state.

        The final round does not swap lanes.
        """
        p = FIELD_SIZE
        k = self.key
        last = self.n_rounds - 1
        for i, c in enumerate(self.constants):
            t = (xl + k + c) % p
            t5 = pow(t, 5, p)
            if i < last:
                xl, xr = (xr + t5) % p, xl
            else:
                xr = (xr + t5) % p
        return xl, xr

    def hash_elements(self, values: Sequence[int]) -> int:
        r, c = 0, 0
        for value in values:
            if not 0 <= value < FIELD_SIZE:
                raise ValueError("Sponge input must be a field element")
            r = (r + value) % FIELD_SIZE
            r, c = self.permute(r, c)
        return r

    def __repr__(self) -> str:
        return f"MiMCSponge(rounds={self.n_rounds}, key={self.key})"
