"""Note encoding and decoding.

A note is the only artifact a depositor keeps. Its string form is::

    tornado-<currency>-<amount>-<network_id>-0x<124 hex chars>

where the payload is ``le(nullifier, 31) || le(secret, 31)``.
"""

import os
import string
from dataclasses import dataclass

from zknote.utils.encoding import le_bytes_to_int, le_int_to_bytes
from zknote.exceptions import FormatError


NOTE_PREFIX = "tornado"
FIELD_BYTES = 31  # width of each preimage half
PREIMAGE_BYTES = FIELD_BYTES * 2
PAYLOAD_HEX_CHARS = PREIMAGE_BYTES * 2

_HEX_DIGITS = frozenset(string.hexdigits)
_CURRENCY_CHARS = frozenset(string.ascii_letters + string.digits + "_")


@dataclass(frozen=True)
class Secret:
    """The (nullifier, secret) pair behind a commitment."""

    nullifier: int
    secret: int

    def __post_init__(self):
        for name in ("nullifier", "secret"):
            value = getattr(self, name)
            if not isinstance(value, int) or not 0 <= value < 2 ** (8 * FIELD_BYTES):
                raise FormatError(f"{name} must be a {FIELD_BYTES}-byte unsigned integer", field=name)

    @classmethod
    def generate(cls) -> "Secret":
        """
        Generate a fresh secret pair.

        Implementation: os.urandom(31) for each half
        """
        return cls(
            nullifier=le_bytes_to_int(os.urandom(FIELD_BYTES)),
            secret=le_bytes_to_int(os.urandom(FIELD_BYTES)),
        )

    @property
    def preimage(self) -> bytes:
        """62-byte commitment preimage."""
        return le_int_to_bytes(self.nullifier, FIELD_BYTES) + le_int_to_bytes(self.secret, FIELD_BYTES)

    @classmethod
    def from_preimage(cls, preimage: bytes) -> "Secret":
        if len(preimage) != PREIMAGE_BYTES:
            raise FormatError(f"Preimage must be {PREIMAGE_BYTES} bytes", field="payload")
        return cls(
            nullifier=le_bytes_to_int(preimage[:FIELD_BYTES]),
            secret=le_bytes_to_int(preimage[FIELD_BYTES:]),
        )

    def __repr__(self) -> str:
        return "Secret(<redacted>)"


@dataclass(frozen=True)
class Note:
    """A secret plus the pool it was deposited into."""

    currency: str
    amount: str
    network_id: int
    secret: Secret

    @classmethod
    def generate(cls, currency: str, amount: str, network_id: int) -> "Note":
        note = cls(currency=currency, amount=str(amount), network_id=network_id, secret=Secret.generate())
        # Round through the grammar so bad metadata fails at creation time
        return decode(encode(note))

    def __str__(self) -> str:
        return encode(self)

    def __repr__(self) -> str:
        return f"Note(currency={self.currency!r}, amount={self.amount!r}, network_id={self.network_id})"


def encode(note: Note) -> str:
    """
    Serialize a note to its shareable string.

    Args:
        note: Note to encode

    Returns:
        str: ``tornado-{currency}-{amount}-{network_id}-0x{124 lowercase hex}``
    """
    return f"{NOTE_PREFIX}-{note.currency}-{note.amount}-{note.network_id}-0x{note.secret.preimage.hex()}"


def _parse_currency(value: str) -> str:
    if not value or not set(value) <= _CURRENCY_CHARS:
        raise FormatError("Currency must be a non-empty word", field="currency")
    return value


def _parse_amount(value: str) -> str:
    whole, dot, fraction = value.partition(".")
    if not whole.isdigit() or not whole.isascii():
        raise FormatError("Amount must be a decimal number", field="amount")
    if dot and (not fraction.isdigit() or not fraction.isascii()):
        raise FormatError("Amount must be a decimal number", field="amount")
    return value


def _parse_network_id(value: str) -> int:
    if not value.isdigit() or not value.isascii():
        raise FormatError("Network id must be an unsigned integer", field="network_id")
    return int(value)


def _parse_payload(value: str) -> Secret:
    if not value.startswith("0x"):
        raise FormatError("Payload must start with 0x", field="payload")
    digits = value[2:]
    if len(digits) != PAYLOAD_HEX_CHARS:
        raise FormatError(
            f"Payload must be exactly {PAYLOAD_HEX_CHARS} hex characters, got {len(digits)}",
            field="payload",
        )
    if not set(digits) <= _HEX_DIGITS:
        raise FormatError("Payload contains non-hex characters", field="payload")
    return Secret.from_preimage(bytes.fromhex(digits))


def decode(note_string: str) -> Note:
    """
    Parse a note string.

    Each field is checked in order and the first violation raises; nothing
    is returned for a partially valid note.

    Args:
        note_string: String produced by :func:`encode`

    Returns:
        Note: Decoded note

    Raises:
        FormatError: If any field does not match the grammar
    """
    if not isinstance(note_string, str):
        raise FormatError("Note must be a string", field="note")

    fields = note_string.split("-")
    if len(fields) != 5:
        raise FormatError("The note has invalid format", field="note")

    prefix, currency, amount, network_id, payload = fields
    if prefix != NOTE_PREFIX:
        raise FormatError(f"Note must start with '{NOTE_PREFIX}-'", field="prefix")

    return Note(
        currency=_parse_currency(currency),
        amount=_parse_amount(amount),
        network_id=_parse_network_id(network_id),
        secret=_parse_payload(payload),
    )
