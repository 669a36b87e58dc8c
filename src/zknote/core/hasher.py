"""Commitment and nullifier-hash derivation."""

from dataclasses import dataclass
from typing import Optional

from zknote.core.note import FIELD_BYTES, Secret
from zknote.crypto.mimc import FieldHasher, MiMCSponge
from zknote.utils.encoding import le_bytes_to_int, le_int_to_bytes, to_hex


@dataclass(frozen=True)
class Deposit:
    """A secret together with everything derived from it."""

    secret: Secret
    commitment: int
    nullifier_hash: int

    @property
    def nullifier(self) -> int:
        return self.secret.nullifier

    @property
    def preimage(self) -> bytes:
        return self.secret.preimage

    @property
    def commitment_hex(self) -> str:
        return to_hex(self.commitment)

    @property
    def nullifier_hash_hex(self) -> str:
        return to_hex(self.nullifier_hash)

    def __repr__(self) -> str:
        return f"Deposit(commitment={self.commitment_hex[:18]}...)"


class CommitmentHasher:
    """
    Derives public values from a secret.

    - commitment = H(le(nullifier, 31) || le(secret, 31))
    - nullifier_hash = H(le(nullifier, 31))

    Both byte strings are split into 31-byte little-endian field elements
    before hashing, so the two uses differ in sponge arity and cannot be
    confused with each other.
    """

    def __init__(self, hasher: Optional[FieldHasher] = None):
        self.hasher = hasher or MiMCSponge()

    def hash_bytes(self, data: bytes) -> int:
        """
        Hash a byte string whose length is a multiple of 31.

        Raises:
            ValueError: If the length is not a positive multiple of 31
        """
        if not data or len(data) % FIELD_BYTES:
            raise ValueError(f"Input length must be a positive multiple of {FIELD_BYTES} bytes")
        elements = [
            le_bytes_to_int(data[i:i + FIELD_BYTES])
            for i in range(0, len(data), FIELD_BYTES)
        ]
        return self.hasher.hash_elements(elements)

    def commitment_of(self, secret: Secret) -> int:
        """Leaf commitment for ``secret``."""
        return self.hash_bytes(secret.preimage)

    def nullifier_hash_of(self, nullifier: int) -> int:
        """Public nullifier hash revealed at withdrawal time."""
        return self.hash_bytes(le_int_to_bytes(nullifier, FIELD_BYTES))

    def create_deposit(self, secret: Secret) -> Deposit:
        return Deposit(
            secret=secret,
            commitment=self.commitment_of(secret),
            nullifier_hash=self.nullifier_hash_of(secret.nullifier),
        )
