"""Cryptographic primitives module"""

from zknote.crypto.mimc import (
    FieldHasher,
    MiMCSponge,
    round_constants,
)

__all__ = [
    'FieldHasher',
    'MiMCSponge',
    'round_constants',
]
