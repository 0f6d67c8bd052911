"""
Deterministic percentage rollout.

The bucket of an identity is part of the external contract shared with every
SDK that evaluates flags locally:

    bucket = murmur3_x86_32(utf8("{flag_key}:{rule_id}:{identity_key}"), seed=0) % 100

and the identity is in the rollout iff ``bucket < percentage``.
"""

from typing import Optional

BUCKET_COUNT = 100
HASH_SEED = 0

_C1 = 0xcc9e2d51
_C2 = 0x1b873593
_MASK = 0xffffffff


def _rotl32(value: int, shift: int) -> int:
    return ((value << shift) | (value >> (32 - shift))) & _MASK


def murmur3_32(data: bytes, seed: int = HASH_SEED) -> int:
    """MurmurHash3 x86 32-bit, returned unsigned."""
    length = len(data)
    h1 = seed & _MASK
    block_end = length & ~0x3

    for offset in range(0, block_end, 4):
        k1 = int.from_bytes(data[offset:offset + 4], "little")
        k1 = (k1 * _C1) & _MASK
        k1 = _rotl32(k1, 15)
        k1 = (k1 * _C2) & _MASK

        h1 ^= k1
        h1 = _rotl32(h1, 13)
        h1 = (h1 * 5 + 0xe6546b64) & _MASK

    tail = length & 0x3
    k1 = 0
    if tail == 3:
        k1 ^= data[block_end + 2] << 16
    if tail >= 2:
        k1 ^= data[block_end + 1] << 8
    if tail >= 1:
        k1 ^= data[block_end]
        k1 = (k1 * _C1) & _MASK
        k1 = _rotl32(k1, 15)
        k1 = (k1 * _C2) & _MASK
        h1 ^= k1

    h1 ^= length
    h1 ^= h1 >> 16
    h1 = (h1 * 0x85ebca6b) & _MASK
    h1 ^= h1 >> 13
    h1 = (h1 * 0xc2b2ae35) & _MASK
    h1 ^= h1 >> 16
    return h1


class RolloutBucketer:
    """Maps (flag, rule, identity) triples onto stable buckets in [0, 100)."""

    def bucket(self, flag_key: str, rule_id: str, identity_key: str) -> int:
        payload = f"{flag_key}:{rule_id}:{identity_key}".encode("utf-8")
        return murmur3_32(payload) % BUCKET_COUNT

    def in_bucket(
        self,
        flag_key: str,
        rule_id: str,
        identity_key: Optional[str],
        percentage: float
    ) -> bool:
        """Whether the identity falls inside the rollout percentage.

        100 admits everyone, identity or not; 0 admits no one. Without an
        identity key any partial rollout is closed.
        """
        if percentage >= BUCKET_COUNT:
            return True
        if percentage <= 0 or not identity_key:
            return False
        return self.bucket(flag_key, rule_id, identity_key) < percentage
