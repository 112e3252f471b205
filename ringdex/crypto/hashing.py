"""
RingDEX Crypto Hashing Module

Keccak-256 hashing and tight ("packed") encoding of typed values, as used
for order hashes and ring hashes.
"""

from typing import Union

from Crypto.Hash import keccak as _keccak
from eth_utils import to_canonical_address


def keccak256(data: Union[bytes, str]) -> bytes:
    """
    Compute Keccak-256 hash (Ethereum standard).

    Args:
        data: Input bytes or hex string

    Returns:
        32-byte hash
    """
    if isinstance(data, str):
        if data.startswith('0x') or data.startswith('0X'):
            data = bytes.fromhex(data[2:])
        else:
            data = bytes.fromhex(data)

    k = _keccak.new(digest_bits=256)
    k.update(data)
    return k.digest()


def keccak256_hex(data: Union[bytes, str]) -> str:
    """Keccak-256 as a 0x-prefixed hex string."""
    return '0x' + keccak256(data).hex()


# ---------------------------------------------------------------------------
# Packed encoding
# ---------------------------------------------------------------------------

def pack_address(address: str) -> bytes:
    """20-byte canonical address."""
    return to_canonical_address(address)


def pack_uint(value: int, size: int = 32) -> bytes:
    """Big-endian unsigned integer of *size* bytes."""
    if value < 0:
        raise ValueError(f"Cannot pack negative integer: {value}")
    return value.to_bytes(size, "big")


def pack_bool(value: bool) -> bytes:
    return b"\x01" if value else b"\x00"


def xor_reduce(values, size: int) -> bytes:
    """XOR a sequence of integers together and pack the result."""
    acc = 0
    for value in values:
        acc ^= value
    return pack_uint(acc, size)
