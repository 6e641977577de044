"""
Sealing versions.

A sealing version binds a record to one exact combination of
canonicalization, hash function, signature scheme and text normalization.
Once a version has sealed a record its meaning is frozen: a stronger hash
means a new version, never a reinterpretation of an old one.
"""

from dataclasses import dataclass
from typing import Any

from .errors import UnsupportedSealingVersion


@dataclass(frozen=True)
class SealingSuite:
    """Algorithm combination identified by a sealing version."""
    version: str
    canonicalization: str
    hash_algorithm: str
    signature_algorithm: str
    curve: str
    text_normalization: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "canonicalization": self.canonicalization,
            "hashAlgorithm": self.hash_algorithm,
            "signatureAlgorithm": self.signature_algorithm,
            "curve": self.curve,
            "textNormalization": self.text_normalization,
        }


SEALING_SUITES: dict[str, SealingSuite] = {
    "v1": SealingSuite(
        version="v1",
        canonicalization="sorted-compact-json",
        hash_algorithm="sha256",
        signature_algorithm="ecdsa-sha256",
        curve="P-256",
        text_normalization="NFC",
    ),
    "v2": SealingSuite(
        version="v2",
        canonicalization="sorted-compact-json",
        hash_algorithm="sha3-256",
        signature_algorithm="ecdsa-sha256",
        curve="P-256",
        text_normalization="NFC",
    ),
}

DEFAULT_SEALING_VERSION = "v1"

SUPPORTED_SEALING_VERSIONS = sorted(SEALING_SUITES)


def get_suite(version: str) -> SealingSuite:
    """
    Look up the suite for a sealing version.

    Raises:
        UnsupportedSealingVersion: If the version is not registered
    """
    try:
        return SEALING_SUITES[version]
    except (KeyError, TypeError):
        raise UnsupportedSealingVersion(str(version)) from None
