"""
RingDEX Crypto Signing Module

secp256k1 signing and signer recovery for order and ring hashes.

Hashes are signed Ethereum ``personal_sign`` style: the 32-byte hash is
prefixed with ``"\\x19Ethereum Signed Message:\\n32"`` and hashed again.
Signatures travel as ``(v, r, s)`` with ``v`` in {27, 28}.
"""

from dataclasses import dataclass
from typing import Union

from eth_keys import keys
from eth_keys.exceptions import BadSignature, ValidationError
from eth_utils import to_canonical_address

from ..exceptions import InvalidSignatureError
from .hashing import keccak256

PERSONAL_MESSAGE_PREFIX = b"\x19Ethereum Signed Message:\n32"


@dataclass(frozen=True)
class RingSignature:
    """An ECDSA signature split into its components."""
    v: int
    r: int
    s: int


def personal_message_hash(msg_hash: bytes) -> bytes:
    """Hash that is actually signed for a 32-byte message hash."""
    return keccak256(PERSONAL_MESSAGE_PREFIX + msg_hash)


def sign_hash(private_key: Union[bytes, keys.PrivateKey], msg_hash: bytes) -> RingSignature:
    """
    Sign a 32-byte hash.

    Args:
        private_key: 32 raw key bytes or an eth-keys PrivateKey
        msg_hash: Order hash or ring hash

    Returns:
        RingSignature with v in {27, 28}
    """
    if not isinstance(private_key, keys.PrivateKey):
        private_key = keys.PrivateKey(private_key)
    sig = private_key.sign_msg_hash(personal_message_hash(msg_hash))
    return RingSignature(v=sig.v + 27, r=sig.r, s=sig.s)


def recover_signer(msg_hash: bytes, signature: RingSignature) -> str:
    """
    Recover the checksum address that signed *msg_hash*.

    Raises:
        InvalidSignatureError: if the signature is malformed or unrecoverable
    """
    if signature.v not in (27, 28):
        raise InvalidSignatureError(f"Invalid recovery id v={signature.v}")
    try:
        sig = keys.Signature(vrs=(signature.v - 27, signature.r, signature.s))
        public_key = sig.recover_public_key_from_msg_hash(personal_message_hash(msg_hash))
    except (BadSignature, ValidationError) as e:
        raise InvalidSignatureError(f"Signature recovery failed: {e}") from e
    return public_key.to_checksum_address()


def private_key_to_address(private_key: Union[bytes, keys.PrivateKey]) -> str:
    if not isinstance(private_key, keys.PrivateKey):
        private_key = keys.PrivateKey(private_key)
    return private_key.public_key.to_checksum_address()


def addresses_equal(a: str, b: str) -> bool:
    """Compare two hex addresses ignoring checksum casing."""
    try:
        return to_canonical_address(a) == to_canonical_address(b)
    except ValueError:
        return False
