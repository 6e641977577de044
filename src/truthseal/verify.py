"""
Offline record verification for truthseal.

Re-derives the canonical form and digest from a record's own content, then
checks the stored hash, the issuer signature and the timestamp proof against
trusted material supplied by the caller. Nothing here touches the network:
a bundle exported years ago verifies with the bundle and a trusted key alone.

Verification never raises for record problems. Every finding is folded into
the verdict as a ``VerificationError``.
"""

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from cryptography import x509

from .canonical import canonicalize
from .content import format_timestamp
from .digest import Digest, digest, digests_equal
from .errors import (
    ErrorCode,
    InvalidContent,
    KeyUnresolvable,
    MalformedInput,
    UnsupportedSealingVersion,
    VerificationError,
)
from .keys import KeyMaterial, KeyRegistry
from .logging_config import audit_log
from .record import SealedRecord
from .sign import verify_signature
from .timestamp import verify_attestation
from .versions import get_suite


TrustedKeys = KeyRegistry | Mapping[str, KeyMaterial | str] | None

TrustedAuthorities = Iterable[x509.Certificate | str | bytes] | None

# details["reason"] for a contentHash that matches only case-insensitively
NON_CANONICAL_HEX = "non_canonical_hex"


@dataclass
class VerificationVerdict:
    """
    Outcome of verifying one record.

    ``timestamp_valid`` is None when the record carries no timestamp proof.
    """
    is_valid: bool
    integrity_valid: bool
    signature_valid: bool
    timestamp_valid: bool | None
    message: str
    record_id: str | None = None
    attested_timestamp: datetime | None = None
    errors: list[VerificationError] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "isValid": self.is_valid,
            "integrityValid": self.integrity_valid,
            "signatureValid": self.signature_valid,
            "timestampValid": self.timestamp_valid,
            "message": self.message,
            "recordId": self.record_id,
            "attestedTimestamp": (
                format_timestamp(self.attested_timestamp) if self.attested_timestamp else None
            ),
            "errors": [e.to_dict() for e in self.errors],
        }


def _malformed(message: str, code: ErrorCode = ErrorCode.MALFORMED_INPUT, record_id: str | None = None) -> VerificationVerdict:
    return VerificationVerdict(
        is_valid=False,
        integrity_valid=False,
        signature_valid=False,
        timestamp_valid=None,
        message=f"Malformed input: {message}",
        record_id=record_id,
        errors=[VerificationError(code=code, message=message)],
    )


def _as_record(subject: SealedRecord | Mapping[str, Any]) -> SealedRecord:
    if isinstance(subject, SealedRecord):
        return subject
    return SealedRecord.from_dict(subject)


def resolve_trusted_key(trusted_public_keys: TrustedKeys, version: str) -> KeyMaterial:
    """
    Find a key version among trusted keys.

    Args:
        trusted_public_keys: KeyRegistry, version -> KeyMaterial, or version -> PEM
        version: Key version named by the record

    Raises:
        KeyUnresolvable: If the version is not trusted
    """
    if trusted_public_keys is None:
        raise KeyUnresolvable(version)
    if isinstance(trusted_public_keys, KeyRegistry):
        return trusted_public_keys.get(version)

    entry = trusted_public_keys.get(version)
    if isinstance(entry, KeyMaterial):
        return entry
    if isinstance(entry, str) and entry:
        return KeyMaterial(version=version, pem=entry)
    raise KeyUnresolvable(version)


def verify_integrity(record: SealedRecord) -> tuple[bool, Digest, list[VerificationError]]:
    """
    Recompute the digest from the record's content and compare it to contentHash.

    Raises:
        InvalidContent: If the content cannot be canonicalized or the
            sealing version is unknown
    """
    recomputed = digest(canonicalize(record.content), record.sealing_version)
    if digests_equal(record.content_hash, recomputed.hex()):
        return True, recomputed, []
    if digests_equal(record.content_hash.lower(), recomputed.hex()):
        # Same digest, but contentHash must be lowercase hex
        return False, recomputed, [VerificationError(
            code=ErrorCode.CONTENT_HASH_MISMATCH,
            message=f"contentHash of record {record.id} is not lowercase hex",
            details={
                "record_id": record.id,
                "expected": recomputed.hex(),
                "actual": record.content_hash,
                "reason": NON_CANONICAL_HEX,
            },
        )]
    return False, recomputed, [VerificationError(
        code=ErrorCode.CONTENT_HASH_MISMATCH,
        message=f"Content hash mismatch for record {record.id}",
        details={
            "record_id": record.id,
            "expected": recomputed.hex(),
            "actual": record.content_hash,
        },
    )]


def verify_record_signature(
    record: SealedRecord,
    recomputed: Digest,
    trusted_public_keys: TrustedKeys,
) -> tuple[bool, list[VerificationError]]:
    """
    Verify the issuer signature over the recomputed digest.

    The signature is checked against the digest derived from the content,
    never against the stored contentHash.
    """
    try:
        material = resolve_trusted_key(trusted_public_keys, record.public_key_version)
    except KeyUnresolvable:
        return False, [VerificationError(
            code=ErrorCode.KEY_UNRESOLVABLE,
            message=f"Unknown key version: {record.public_key_version}",
            details={"public_key_version": record.public_key_version},
        )]

    suite = get_suite(record.sealing_version)
    try:
        if material.curve != suite.curve:
            raise ValueError(f"key curve {material.curve} does not match sealing suite curve {suite.curve}")
        public_key = material.load_public_key()
    except ValueError as exc:
        return False, [VerificationError(
            code=ErrorCode.SIGNATURE_INVALID,
            message=f"Trusted key {material.version} is unusable: {exc}",
            details={"public_key_version": material.version},
        )]

    if verify_signature(recomputed, record.signature, public_key):
        return True, []
    return False, [VerificationError(
        code=ErrorCode.SIGNATURE_INVALID,
        message=f"Signature verification failed for record {record.id}",
        details={"record_id": record.id, "public_key_version": material.version},
    )]


def verify_timestamp_proof(
    record: SealedRecord,
    recomputed: Digest,
    trusted_time_authorities: TrustedAuthorities,
) -> tuple[bool | None, datetime | None, list[VerificationError]]:
    """
    Check the record's timestamp proof, if any.

    Returns:
        (None, None, []) when the record has no proof; otherwise the validity,
        the attested time when valid, and any findings
    """
    if not record.timestamp_proof:
        return None, None, []

    check = verify_attestation(record.timestamp_proof, recomputed, trusted_time_authorities)
    if check.valid:
        return True, check.timestamp, []
    return False, None, [VerificationError(
        code=check.code or ErrorCode.TIMESTAMP_INVALID,
        message=check.reason or "Timestamp proof invalid",
        details={"record_id": record.id},
    )]


def _message(
    integrity_valid: bool,
    signature_valid: bool,
    timestamp_valid: bool | None,
    errors: list[VerificationError],
) -> str:
    if integrity_valid and signature_valid and timestamp_valid is not False:
        if timestamp_valid:
            return "Record verified: content unchanged, signature valid, timestamp attested"
        return "Record verified: content unchanged, signature valid"

    problems = []
    if not integrity_valid:
        if any(e.details.get("reason") == NON_CANONICAL_HEX for e in errors):
            problems.append("contentHash is not lowercase hex")
        else:
            problems.append("content has been modified since sealing")
    if not signature_valid:
        if any(e.code == ErrorCode.KEY_UNRESOLVABLE for e in errors):
            problems.append("unknown key version")
        else:
            problems.append("signature invalid")
    if timestamp_valid is False:
        problems.append("timestamp proof invalid")
    return "Verification failed: " + "; ".join(problems)


def verify(
    subject: SealedRecord | Mapping[str, Any],
    trusted_public_keys: TrustedKeys = None,
    trusted_time_authorities: TrustedAuthorities = None,
) -> VerificationVerdict:
    """
    Verify a sealed record, record mapping, or exported bundle mapping.

    Args:
        subject: The record or bundle to check
        trusted_public_keys: Keys the caller trusts, by version
        trusted_time_authorities: TSA certificates (or PEM text) the caller trusts

    Returns:
        VerificationVerdict; isValid requires integrity, signature, and a
        timestamp proof that is valid or absent
    """
    try:
        record = _as_record(subject)
    except MalformedInput as exc:
        verdict = _malformed(str(exc))
        audit_log.verification_completed(None, False, False, False, None)
        return verdict

    try:
        integrity_valid, recomputed, errors = verify_integrity(record)
    except UnsupportedSealingVersion as exc:
        verdict = _malformed(str(exc), ErrorCode.UNSUPPORTED_VERSION, record.id)
        audit_log.verification_completed(record.id, False, False, False, None)
        return verdict
    except InvalidContent as exc:
        verdict = _malformed(str(exc), record_id=record.id)
        audit_log.verification_completed(record.id, False, False, False, None)
        return verdict

    signature_valid, signature_errors = verify_record_signature(record, recomputed, trusted_public_keys)
    errors.extend(signature_errors)

    timestamp_valid, attested_at, timestamp_errors = verify_timestamp_proof(
        record, recomputed, trusted_time_authorities
    )
    errors.extend(timestamp_errors)

    is_valid = integrity_valid and signature_valid and timestamp_valid is not False
    verdict = VerificationVerdict(
        is_valid=is_valid,
        integrity_valid=integrity_valid,
        signature_valid=signature_valid,
        timestamp_valid=timestamp_valid,
        message=_message(integrity_valid, signature_valid, timestamp_valid, errors),
        record_id=record.id,
        attested_timestamp=attested_at,
        errors=errors,
    )
    audit_log.verification_completed(record.id, is_valid, integrity_valid, signature_valid, timestamp_valid)
    return verdict
