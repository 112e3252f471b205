"""
RingDEX Cryptography Module

- Keccak-256 hashing and packed encoding
- secp256k1 signing and signer recovery (eth-keys)
"""

from .hashing import (
    keccak256,
    keccak256_hex,
    pack_address,
    pack_bool,
    pack_uint,
    xor_reduce,
)
from .signing import (
    RingSignature,
    addresses_equal,
    personal_message_hash,
    private_key_to_address,
    recover_signer,
    sign_hash,
)

__all__ = [
    # Hashing
    "keccak256", "keccak256_hex", "pack_address", "pack_bool", "pack_uint",
    "xor_reduce",
    # Signing
    "RingSignature", "addresses_equal", "personal_message_hash",
    "private_key_to_address", "recover_signer", "sign_hash",
]
