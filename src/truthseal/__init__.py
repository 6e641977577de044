"""
truthseal: Tamper-evident sealing and offline verification of truth records.

A record is sealed once: its canonical form is hashed, the digest is signed
with a versioned ECDSA key and optionally attested by a time authority.
Anyone holding the exported bundle and a trusted public key can verify it,
offline, with no trust in the issuer's servers.
"""

from .canonical import canonical_json, canonicalize
from .content import Draft, GeoPoint, SealableContent, parse_draft
from .digest import Digest, compute_content_hash, digest
from .versions import DEFAULT_SEALING_VERSION, SUPPORTED_SEALING_VERSIONS, get_suite
from .keys import (
    FileKeyProvider,
    InMemoryKeyProvider,
    KeyMaterial,
    KeyRegistry,
    generate_key_pair,
)
from .sign import Signer, sign_digest, verify_signature
from .timestamp import (
    AttestationStatus,
    HttpTimeAuthority,
    LocalTimeAuthority,
    TimestampProof,
    attest_with_retry,
    verify_attestation,
)
from .record import RecordStatus, SealedRecord
from .store import InMemoryRecordStore, RecordStore
from .seal import DraftState, SealingOrchestrator
from .verify import VerificationVerdict, verify
from .bundle import VerificationBundle, export_bundle, load_bundle, parse_bundle
from .service import NotSealed, RecordLookup, TruthSealService, build_service
from .config import Settings
from .errors import (
    AlreadySealed,
    AttestationTimeout,
    AttestationUnavailable,
    ErrorCode,
    InvalidContent,
    KeyUnresolvable,
    KeyVersionConflict,
    MalformedInput,
    RecordNotFound,
    SigningUnavailable,
    TruthSealError,
    UnsupportedSealingVersion,
    VerificationError,
)

__version__ = "0.1.0"
__all__ = [
    # Canonical form
    "canonical_json",
    "canonicalize",
    "Draft",
    "GeoPoint",
    "SealableContent",
    "parse_draft",
    # Digests and sealing versions
    "Digest",
    "compute_content_hash",
    "digest",
    "DEFAULT_SEALING_VERSION",
    "SUPPORTED_SEALING_VERSIONS",
    "get_suite",
    # Keys and signing
    "FileKeyProvider",
    "InMemoryKeyProvider",
    "KeyMaterial",
    "KeyRegistry",
    "generate_key_pair",
    "Signer",
    "sign_digest",
    "verify_signature",
    # Timestamp attestation
    "AttestationStatus",
    "HttpTimeAuthority",
    "LocalTimeAuthority",
    "TimestampProof",
    "attest_with_retry",
    "verify_attestation",
    # Sealing
    "RecordStatus",
    "SealedRecord",
    "InMemoryRecordStore",
    "RecordStore",
    "DraftState",
    "SealingOrchestrator",
    # Verification and export
    "VerificationVerdict",
    "verify",
    "VerificationBundle",
    "export_bundle",
    "load_bundle",
    "parse_bundle",
    # Service
    "NotSealed",
    "RecordLookup",
    "TruthSealService",
    "build_service",
    "Settings",
    # Errors
    "AlreadySealed",
    "AttestationTimeout",
    "AttestationUnavailable",
    "ErrorCode",
    "InvalidContent",
    "KeyUnresolvable",
    "KeyVersionConflict",
    "MalformedInput",
    "RecordNotFound",
    "SigningUnavailable",
    "TruthSealError",
    "UnsupportedSealingVersion",
    "VerificationError",
]
