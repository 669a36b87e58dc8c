"""Encoding and decoding utilities."""

from typing import Union


def bytes_to_hex(data: bytes) -> str:
    """
    Convert bytes to hexadecimal string.

    Args:
        data: Bytes to convert

    Returns:
        str: Hexadecimal string with '0x' prefix
    """
    return "0x" + data.hex()


def hex_to_bytes(hex_str: str) -> bytes:
    """
    Convert hexadecimal string to bytes.

    Args:
        hex_str: Hexadecimal string (with or without '0x' prefix)

    Returns:
        bytes: Decoded bytes

    Raises:
        ValueError: If hex string is invalid
    """
    if hex_str.startswith("0x"):
        hex_str = hex_str[2:]

    if len(hex_str) % 2 != 0:
        raise ValueError("Hex string must have even number of characters")

    return bytes.fromhex(hex_str)


def to_hex(value: Union[int, bytes], length: int = 32) -> str:
    """
    Render an integer or byte string as fixed-width, zero-padded hex.

    Args:
        value: Non-negative integer or raw bytes
        length: Width in bytes (32 for field elements, 20 for addresses)

    Returns:
        str: '0x' followed by exactly ``2 * length`` lowercase hex digits

    Raises:
        ValueError: If the value does not fit in ``length`` bytes
    """
    if isinstance(value, bytes):
        digits = value.hex()
    else:
        if value < 0:
            raise ValueError("Cannot hex-encode a negative value")
        digits = format(value, "x")

    if len(digits) > length * 2:
        raise ValueError(f"Value does not fit in {length} bytes")

    return "0x" + digits.rjust(length * 2, "0")


def hex_to_int(hex_str: str) -> int:
    """Parse a '0x'-prefixed (or bare) hex string into an integer."""
    if hex_str.startswith(("0x", "0X")):
        hex_str = hex_str[2:]
    if not hex_str:
        raise ValueError("Empty hex string")
    return int(hex_str, 16)


def le_int_to_bytes(value: int, length: int) -> bytes:
    """Little-endian encoding of ``value`` in exactly ``length`` bytes."""
    return value.to_bytes(length, "little")


def le_bytes_to_int(data: bytes) -> int:
    """Inverse of :func:`le_int_to_bytes`."""
    return int.from_bytes(data, "little")
