"""
Verification bundle export for truthseal.

A bundle is everything a third party needs to check a record offline: the
sealable content, the seal, the issuer public key, the timestamp proof and
plain-language instructions for doing the checks by hand.

Export is pure assembly; nothing is recomputed or re-signed here.
"""

import json
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .content import format_timestamp
from .errors import MalformedInput
from .keys import KeyMaterial
from .record import SealedRecord
from .versions import get_suite


GUARANTEES = {
    "integrity": "The record content has not been modified since it was sealed.",
    "authenticity": "The record was sealed by the holder of the private key matching the included public key.",
    "timestamp": "The record existed no later than the sealed timestamp; when a timestamp proof is present, "
                 "an independent time authority attests the time the content hash was seen.",
}

LIMITATIONS = {
    "contentTruth": "Sealing proves the content is unchanged, not that the content is true.",
    "authorship": "The signature identifies the sealing authority, not the person who wrote the content.",
    "timestampAccuracy": "Without a timestamp proof, the sealed timestamp is asserted by the sealing authority alone.",
}


def _hash_instructions(record: SealedRecord) -> dict[str, Any]:
    suite = get_suite(record.sealing_version)
    return {
        "description": f"Recompute the {suite.hash_algorithm.upper()} hash of the canonical content "
                       "and compare it with contentHash.",
        "steps": [
            "Take the fields id, ownerId, title, content, eventTimestamp and location (if present) from this bundle.",
            "Serialize them as JSON with keys sorted by code point at every level and no whitespace.",
            "Encode the JSON as UTF-8 without any further normalization.",
            f"Compute the {suite.hash_algorithm.upper()} hash of those bytes and render it as lowercase hex.",
            f"The result must equal contentHash ({record.content_hash}).",
        ],
    }


def _signature_instructions(record: SealedRecord, key_material: KeyMaterial) -> dict[str, Any]:
    return {
        "description": f"Verify the {key_material.algorithm} {key_material.curve} signature over the content hash "
                       "using the included public key.",
        "steps": [
            "Save publicKey.pem to public_key.pem.",
            "Convert contentHash from hex to binary: "
            f"echo -n \"{record.content_hash}\" | xxd -r -p > content_hash.bin",
            "Decode the signature from base64: echo -n \"<signature>\" | base64 -d > signature.bin",
            "Verify: openssl dgst -sha256 -verify public_key.pem -signature signature.bin content_hash.bin",
            "Confirm the public key fingerprint with the sealing authority's published key "
            f"version {key_material.version}.",
        ],
    }


def _timestamp_instructions() -> dict[str, Any]:
    return {
        "description": "Verify the time authority's timestamp proof over the content hash.",
        "steps": [
            "Decode timestampProof from base64; it is a JSON object.",
            "Check that the certificate belongs to a time authority you trust and carries the timeStamping usage.",
            "Verify signature over the canonical JSON of tstInfo with the certificate's public key.",
            "Compare tstInfo.messageImprint.hashedMessage with contentHash.",
            "Check that tstInfo.genTime falls inside the certificate validity period.",
        ],
        "note": "genTime is the time the authority saw the content hash.",
    }


@dataclass(frozen=True)
class VerificationBundle:
    """Self-contained export of one sealed record."""
    record: SealedRecord
    public_key: KeyMaterial

    @property
    def record_id(self) -> str:
        return self.record.id

    def to_dict(self) -> dict[str, Any]:
        """Bundle wire mapping."""
        data = self.record.content.to_sealable_dict()
        data.update({
            "sealedTimestamp": format_timestamp(self.record.sealed_timestamp),
            "contentHash": self.record.content_hash,
            "signature": self.record.signature,
            "version": self.record.version,
            "status": self.record.status.value,
            "sealingVersion": self.record.sealing_version,
            "publicKeyVersion": self.record.public_key_version,
            "publicKey": self.public_key.to_bundle_dict(),
        })
        if self.record.timestamp_proof is not None:
            data["timestampProof"] = self.record.timestamp_proof

        instructions = {
            "hashVerification": _hash_instructions(self.record),
            "signatureVerification": _signature_instructions(self.record, self.public_key),
        }
        if self.record.timestamp_proof is not None:
            instructions["timestampVerification"] = _timestamp_instructions()
        data["verificationInstructions"] = instructions
        data["guarantees"] = dict(GUARANTEES)
        data["limitations"] = dict(LIMITATIONS)
        return data

    def to_json(self, indent: int | None = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent, ensure_ascii=False)


def export_bundle(record: SealedRecord, key_material: KeyMaterial) -> VerificationBundle:
    """
    Assemble a verification bundle.

    Args:
        record: The sealed record
        key_material: Public key the record was signed with

    Raises:
        ValueError: If the key version differs from the record's publicKeyVersion
    """
    if key_material.version != record.public_key_version:
        raise ValueError(
            f"Key version {key_material.version} does not match record key version {record.public_key_version}"
        )
    return VerificationBundle(record=record, public_key=key_material)


def parse_bundle(data: Mapping[str, Any]) -> VerificationBundle:
    """
    Parse a bundle mapping.

    Raises:
        MalformedInput: If the record fields or embedded public key are invalid
    """
    if not isinstance(data, Mapping):
        raise MalformedInput(f"Bundle must be an object, got {type(data).__name__}")
    record = SealedRecord.from_dict(data)
    if "publicKey" not in data:
        raise MalformedInput("Bundle has no publicKey")
    key_material = KeyMaterial.from_dict(data["publicKey"])
    if key_material.version != record.public_key_version:
        raise MalformedInput(
            f"Embedded key version {key_material.version} does not match publicKeyVersion {record.public_key_version}"
        )
    return VerificationBundle(record=record, public_key=key_material)


def read_bundle_file(path: str | Path) -> dict[str, Any]:
    """
    Read bundle JSON from disk.

    Raises:
        OSError: If the file cannot be read
        MalformedInput: If it is not a JSON object
    """
    text = Path(path).read_text(encoding="utf-8")
    try:
        data = json.loads(text)
    except (ValueError, RecursionError) as exc:
        raise MalformedInput(f"{path} is not valid JSON ({exc})") from exc
    if not isinstance(data, dict):
        raise MalformedInput(f"{path} does not contain a JSON object")
    return data


def load_bundle(path: str | Path) -> VerificationBundle:
    """Read and parse a bundle file."""
    return parse_bundle(read_bundle_file(path))
