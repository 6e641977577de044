"""
Digest engine: content hashing over canonical bytes.

Uses hashlib. The hash function is selected by sealing version and is never
reinterpreted once a version exists.
"""

import hashlib
import hmac
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from .canonical import canonicalize
from .content import SealableContent
from .versions import DEFAULT_SEALING_VERSION, get_suite


DIGEST_SIZE = 32


@dataclass(frozen=True)
class Digest:
    """A 256-bit content digest tagged with its hash algorithm."""
    algorithm: str
    value: bytes

    def hex(self) -> str:
        return self.value.hex()

    def __str__(self) -> str:
        return self.hex()

    @classmethod
    def from_hex(cls, algorithm: str, text: str) -> "Digest":
        """
        Parse a hex digest.

        Raises:
            ValueError: If text is not 64 hex characters
        """
        raw = bytes.fromhex(text)
        if len(raw) != DIGEST_SIZE:
            raise ValueError(f"Digest must be {DIGEST_SIZE} bytes, got {len(raw)}")
        return cls(algorithm=algorithm, value=raw)


def digest(data: bytes, sealing_version: str = DEFAULT_SEALING_VERSION) -> Digest:
    """
    Hash canonical bytes with the function fixed by the sealing version.

    Args:
        data: Canonical form bytes
        sealing_version: Sealing version whose hash function applies

    Returns:
        Digest of the data

    Raises:
        UnsupportedSealingVersion: If the sealing version is unknown
    """
    suite = get_suite(sealing_version)
    return Digest(algorithm=suite.hash_algorithm, value=hashlib.new(suite.hash_algorithm, data).digest())


def compute_content_hash(
    content: SealableContent | Mapping[str, Any],
    sealing_version: str = DEFAULT_SEALING_VERSION,
) -> Digest:
    """
    Canonicalize sealable content and hash it.

    Args:
        content: Sealable content or its wire mapping
        sealing_version: Sealing version to apply

    Returns:
        Digest of the canonical form
    """
    return digest(canonicalize(content), sealing_version)


def digests_equal(left: str, right: str) -> bool:
    """
    Constant-time comparison of hex digest strings.
    """
    left = left if isinstance(left, str) else str(left or "")
    right = right if isinstance(right, str) else str(right or "")
    return hmac.compare_digest(left.encode("utf-8"), right.encode("utf-8"))
