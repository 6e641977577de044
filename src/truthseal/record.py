"""
Sealed record model.

A ``SealedRecord`` is created once by the sealing orchestrator and never
mutated. Corrections are new records with the same id and the next lineage
``version``.
"""

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from .content import REQUIRED_FIELDS, OPTIONAL_FIELDS, SealableContent, format_timestamp, parse_timestamp
from .errors import InvalidContent, MalformedInput
from .timestamp import AttestationStatus


class RecordStatus(str, Enum):
    """Lifecycle status; SEALED is the only state a record can be created in."""
    SEALED = "SEALED"


@dataclass(frozen=True)
class SealedRecord:
    """Sealable content plus everything that proves it."""
    content: SealableContent
    content_hash: str
    signature: str
    sealing_version: str
    public_key_version: str
    sealed_timestamp: datetime
    version: int = 1
    status: RecordStatus = RecordStatus.SEALED
    timestamp_proof: str | None = None
    attestation_status: AttestationStatus = AttestationStatus.NOT_REQUESTED
    draft_id: str | None = None

    @property
    def id(self) -> str:
        return self.content.id

    def to_dict(self) -> dict[str, Any]:
        """Record wire mapping (API response shape)."""
        data = self.content.to_sealable_dict()
        data.update({
            "sealedTimestamp": format_timestamp(self.sealed_timestamp),
            "contentHash": self.content_hash,
            "signature": self.signature,
            "version": self.version,
            "status": self.status.value,
            "sealingVersion": self.sealing_version,
            "publicKeyVersion": self.public_key_version,
            "attestationStatus": self.attestation_status.value,
        })
        if self.timestamp_proof is not None:
            data["timestampProof"] = self.timestamp_proof
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SealedRecord":
        """
        Parse a record or bundle mapping.

        Extra keys (bundle public key, instructions) are ignored here; the
        sealable subset is parsed strictly.

        Raises:
            MalformedInput: If any field is missing, mistyped or invalid
        """
        if not isinstance(data, Mapping):
            raise MalformedInput(f"Record must be an object, got {type(data).__name__}")

        sealable = {k: data[k] for k in REQUIRED_FIELDS + OPTIONAL_FIELDS if k in data}
        try:
            content = SealableContent.from_dict(sealable)
            sealed_timestamp = parse_timestamp(data.get("sealedTimestamp"), "sealedTimestamp")
        except InvalidContent as exc:
            raise MalformedInput(str(exc)) from exc

        for name in ("contentHash", "signature", "sealingVersion", "publicKeyVersion"):
            if not isinstance(data.get(name), str):
                raise MalformedInput(f"{name} must be a string")

        version = data.get("version", 1)
        if isinstance(version, bool) or not isinstance(version, int) or version < 1:
            raise MalformedInput("version must be a positive integer")

        try:
            status = RecordStatus(data.get("status", RecordStatus.SEALED.value))
        except ValueError:
            raise MalformedInput(f"Unknown record status: {data.get('status')!r}") from None

        proof = data.get("timestampProof")
        if proof is not None and not isinstance(proof, str):
            raise MalformedInput("timestampProof must be a string")

        try:
            attestation = AttestationStatus(
                data.get("attestationStatus")
                or (AttestationStatus.OBTAINED.value if proof else AttestationStatus.NOT_REQUESTED.value)
            )
        except ValueError:
            raise MalformedInput(f"Unknown attestation status: {data.get('attestationStatus')!r}") from None

        return cls(
            content=content,
            content_hash=data["contentHash"],
            signature=data["signature"],
            sealing_version=data["sealingVersion"],
            public_key_version=data["publicKeyVersion"],
            sealed_timestamp=sealed_timestamp,
            version=version,
            status=status,
            timestamp_proof=proof or None,
            attestation_status=attestation,
        )
