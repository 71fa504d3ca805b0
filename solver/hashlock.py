"""
Hashlock and secret encoding.

Aztec carries 256-bit values as two 128-bit field halves; Base carries them
as a single uint256 / bytes32. These helpers convert between the two.
"""

import hashlib
from typing import Tuple, Union

U128_MASK = (1 << 128) - 1
U256_MAX = (1 << 256) - 1


def split_secret(secret: int) -> Tuple[int, int]:
    """Split a 256-bit value into (high, low) 128-bit halves."""
    if not 0 <= secret <= U256_MAX:
        raise ValueError("secret must be a 256-bit unsigned integer")
    return secret >> 128, secret & U128_MASK


def join_secret(high: int, low: int) -> int:
    """Inverse of split_secret."""
    if not (0 <= high <= U128_MASK and 0 <= low <= U128_MASK):
        raise ValueError("halves must be 128-bit unsigned integers")
    return (high << 128) | low


def hashlock_bytes32(high: int, low: int) -> str:
    """Concatenate hashlock halves into a bytes32 hex string (no re-hashing)."""
    return "0x" + f"{join_secret(high, low):064x}"


def bytes32_to_parts(value: Union[str, bytes]) -> Tuple[int, int]:
    """Split a bytes32 (hex string or raw bytes) into (high, low)."""
    if isinstance(value, (bytes, bytearray)):
        if len(value) != 32:
            raise ValueError(f"bytes32 must be 32 bytes, got {len(value)}")
        return split_secret(int.from_bytes(value, "big"))

    hex_str = value[2:] if value.startswith(("0x", "0X")) else value
    if len(hex_str) != 64:
        raise ValueError(f"bytes32 must be 64 hex chars, got {len(hex_str)}")
    return split_secret(int(hex_str, 16))


def secret_to_bytes(secret: int) -> bytes:
    return secret.to_bytes(32, "big")


def sha256_hashlock(secret: int) -> int:
    """SHA-256 of the 32-byte big-endian secret, as an integer."""
    return int.from_bytes(hashlib.sha256(secret_to_bytes(secret)).digest(), "big")


def verify_secret(secret: int, hashlock_high: int, hashlock_low: int) -> bool:
    """Check that SHA256(secret) == hashlock."""
    try:
        return sha256_hashlock(secret) == join_secret(hashlock_high, hashlock_low)
    except (ValueError, OverflowError):
        return False


def parse_uint(value: Union[int, str]) -> int:
    """Parse an unsigned integer given as int, decimal string or 0x hex."""
    if isinstance(value, bool):
        raise ValueError("boolean is not an integer")
    if isinstance(value, int):
        result = value
    else:
        text = str(value).strip()
        if not text:
            raise ValueError("empty integer value")
        result = int(text, 16) if text.lower().startswith("0x") else int(text, 10)
    if result < 0:
        raise ValueError("value must be non-negative")
    return result


def normalize_swap_id(value: Union[int, str, bytes]) -> str:
    """
    Canonical swap id: lowercase 0x + 64 hex chars.

    Accepts decimal (as posted by clients), hex of any width, or raw bytes.
    """
    if isinstance(value, (bytes, bytearray)):
        number = int.from_bytes(value, "big")
    else:
        number = parse_uint(value)
    if number > U256_MAX:
        raise ValueError("swap id exceeds 256 bits")
    return "0x" + f"{number:064x}"


def pad_string(value: str, length: int) -> str:
    """Left-pad with spaces, as the Aztec Train contract expects."""
    return value.rjust(length, " ")
