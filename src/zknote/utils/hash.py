"""Cryptographic hash utilities."""

from typing import Union

from Crypto.Hash import keccak


# BN254 scalar field; every commitment, root and path element lives here
FIELD_SIZE = 21888242871839275222246405745257275088548364400416034343698204186575808495617


def keccak256(data: Union[bytes, str]) -> bytes:
    """
    Compute Keccak-256 (the Ethereum variant, not NIST SHA3-256).

    Args:
        data: Bytes or string to hash

    Returns:
        bytes: 32-byte digest
    """
    if isinstance(data, str):
        data = data.encode("utf-8")
    return keccak.new(data=data, digest_bits=256).digest()


def keccak256_field(data: Union[bytes, str]) -> int:
    """Keccak-256 digest interpreted big-endian and reduced into the field."""
    return int.from_bytes(keccak256(data), "big") % FIELD_SIZE


def is_field_element(value: int) -> bool:
    """True if ``value`` is a canonical element of the scalar field."""
    return isinstance(value, int) and 0 <= value < FIELD_SIZE
