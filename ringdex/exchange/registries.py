"""
RingDEX External Collaborators

Contracts the engine consumes (structural typing via Protocol) and in-memory
implementations of each, used by tests, the CLI and embedding hosts that
keep their books in process:

  - AssetRegistry       which tokens may be traded
  - RingClaimRegistry   ring hashes and exclusive claims on them
  - LedgerTransfer      spendable balances and token movements
  - SignatureVerifier   signer recovery for a hash and signature
"""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Dict, Protocol, Sequence, Set, Tuple

from eth_utils import to_checksum_address

from ..crypto.hashing import keccak256, pack_uint, xor_reduce
from ..crypto.signing import RingSignature, recover_signer

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Contracts
# ---------------------------------------------------------------------------

class AssetRegistry(Protocol):
    def is_registered(self, token: str) -> bool: ...


class RingClaimRegistry(Protocol):
    def compute_ring_hash(
        self, ring_size: int, v_list: Sequence[int], r_list: Sequence[int], s_list: Sequence[int],
    ) -> bytes: ...
    def can_claim(self, ring_hash: bytes, fee_recipient: str) -> bool: ...
    def was_preregistered(self, ring_hash: bytes) -> bool: ...


class LedgerTransfer(Protocol):
    def spendable_balance(self, token: str, owner: str) -> int: ...
    def transfer(self, token: str, sender: str, recipient: str, amount: int) -> bool: ...


class SignatureVerifier(Protocol):
    def recover_signer(self, msg_hash: bytes, signature: RingSignature) -> str: ...


# ---------------------------------------------------------------------------
# Ring hash
# ---------------------------------------------------------------------------

def calculate_ring_hash(
    ring_size: int,
    v_list: Sequence[int],
    r_list: Sequence[int],
    s_list: Sequence[int],
) -> bytes:
    """
    keccak256(ring_size ‖ ⊕v ‖ ⊕r ‖ ⊕s) over the first *ring_size* order
    signatures.  The miner's trailing signature is excluded since it signs
    this hash.
    """
    return keccak256(b"".join([
        pack_uint(ring_size, 1),
        xor_reduce(v_list[:ring_size], 1),
        xor_reduce(r_list[:ring_size], 32),
        xor_reduce(s_list[:ring_size], 32),
    ]))


# ---------------------------------------------------------------------------
# In-memory implementations
# ---------------------------------------------------------------------------

class InMemoryAssetRegistry:
    """Token registration keyed by checksum address."""

    def __init__(self, tokens: Sequence[str] = ()):
        self._tokens: Set[str] = set()
        for token in tokens:
            self.register(token)

    def register(self, token: str) -> None:
        self._tokens.add(to_checksum_address(token))

    def unregister(self, token: str) -> None:
        self._tokens.discard(to_checksum_address(token))

    def is_registered(self, token: str) -> bool:
        try:
            return to_checksum_address(token) in self._tokens
        except ValueError:
            return False


class InMemoryRingClaimRegistry:
    """
    Ring hash claims.

    A miner may pre-register a ring hash before submitting it; from then on
    only that claimant may submit the ring.  Unclaimed hashes are open to
    anyone.
    """

    def __init__(self) -> None:
        self._claims: Dict[bytes, str] = {}

    def compute_ring_hash(self, ring_size, v_list, r_list, s_list) -> bytes:
        return calculate_ring_hash(ring_size, v_list, r_list, s_list)

    def submit_ring_hash(self, claimant: str, ring_hash: bytes) -> None:
        claimant = to_checksum_address(claimant)
        current = self._claims.get(ring_hash)
        if current is not None and current != claimant:
            raise ValueError(f"Ring hash 0x{ring_hash.hex()} already claimed by {current}")
        self._claims[ring_hash] = claimant
        logger.info("Ring hash 0x%s claimed by %s", ring_hash.hex(), claimant)

    def can_claim(self, ring_hash: bytes, fee_recipient: str) -> bool:
        current = self._claims.get(ring_hash)
        return current is None or current == to_checksum_address(fee_recipient)

    def was_preregistered(self, ring_hash: bytes) -> bool:
        return ring_hash in self._claims


class InMemoryLedger:
    """Token balances per account.  Spendable balance is the full balance."""

    def __init__(self) -> None:
        self._balances: Dict[Tuple[str, str], int] = defaultdict(int)

    @staticmethod
    def _key(token: str, owner: str) -> Tuple[str, str]:
        return to_checksum_address(token), to_checksum_address(owner)

    def credit(self, token: str, owner: str, amount: int) -> None:
        if amount < 0:
            raise ValueError("Credit amount must be non-negative")
        self._balances[self._key(token, owner)] += amount

    def balance_of(self, token: str, owner: str) -> int:
        return self._balances.get(self._key(token, owner), 0)

    def total_supply(self, token: str) -> int:
        token = to_checksum_address(token)
        return sum(v for (t, _), v in self._balances.items() if t == token)

    def spendable_balance(self, token: str, owner: str) -> int:
        return self.balance_of(token, owner)

    def transfer(self, token: str, sender: str, recipient: str, amount: int) -> bool:
        if amount < 0 or self.balance_of(token, sender) < amount:
            return False
        self._balances[self._key(token, sender)] -= amount
        self._balances[self._key(token, recipient)] += amount
        return True


class EthSignatureVerifier:
    """secp256k1 ecrecover of personal_sign signatures."""

    def recover_signer(self, msg_hash: bytes, signature: RingSignature) -> str:
        return recover_signer(msg_hash, signature)

