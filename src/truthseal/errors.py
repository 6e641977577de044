"""
Error types for truthseal.

Two families live here:

- Exceptions raised by construction-time operations (draft intake, sealing,
  key registration). They stop the operation and carry a specific kind.
- Verification error records. A verifier never raises for a bad record; it
  folds every problem into the verdict as a ``VerificationError`` entry.

Error codes are part of the audit trail and MUST stay stable across releases.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class TruthSealError(Exception):
    """Base class for all truthseal exceptions."""


class InvalidContent(TruthSealError):
    """Sealable content is missing a required field or is malformed."""

    def __init__(self, message: str, field_name: str | None = None):
        super().__init__(message)
        self.field_name = field_name


class UnsupportedSealingVersion(InvalidContent):
    """The requested sealing version is not registered."""

    def __init__(self, version: str):
        super().__init__(f"Unsupported sealing version: {version}", "sealingVersion")
        self.version = version


class AlreadySealed(TruthSealError):
    """A draft has already produced a sealed record."""

    def __init__(self, draft_id: str):
        super().__init__(f"Draft {draft_id} is already sealed")
        self.draft_id = draft_id


class SigningUnavailable(TruthSealError):
    """Private key material could not be used for signing."""

    def __init__(self, key_version: str, reason: str):
        super().__init__(f"Signing key {key_version} unavailable: {reason}")
        self.key_version = key_version
        self.reason = reason


class AttestationUnavailable(TruthSealError):
    """The time authority could not produce a timestamp proof."""


class AttestationTimeout(AttestationUnavailable):
    """The time authority did not answer within the call timeout."""


class KeyUnresolvable(TruthSealError):
    """A public key version is not known to the registry."""

    def __init__(self, version: str | None):
        super().__init__(f"Unknown key version: {version}")
        self.version = version


class KeyVersionConflict(TruthSealError):
    """A key version is already registered with different key material."""

    def __init__(self, version: str):
        super().__init__(f"Key version {version} is already registered with different material")
        self.version = version


class MalformedInput(TruthSealError):
    """A record or bundle could not be parsed for verification."""


class RecordNotFound(TruthSealError):
    """No sealed record exists for an identifier."""

    def __init__(self, record_id: str):
        super().__init__(f"Record not found: {record_id}")
        self.record_id = record_id


class ErrorCode(str, Enum):
    """
    Verification error codes.
    MUST stay stable: they appear in exported verdicts and audit logs.
    """
    MALFORMED_INPUT = "MALFORMED_INPUT"
    UNSUPPORTED_VERSION = "UNSUPPORTED_VERSION"
    CONTENT_HASH_MISMATCH = "CONTENT_HASH_MISMATCH"
    KEY_UNRESOLVABLE = "KEY_UNRESOLVABLE"
    SIGNATURE_INVALID = "SIGNATURE_INVALID"
    TIMESTAMP_INVALID = "TIMESTAMP_INVALID"
    TIMESTAMP_UNTRUSTED = "TIMESTAMP_UNTRUSTED"


@dataclass
class VerificationError:
    """
    A single verification finding with typed code and audit details.
    """
    code: ErrorCode
    message: str
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code.value,
            "message": self.message,
            "details": self.details,
        }
