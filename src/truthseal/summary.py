"""
Bundle summary utilities for human-readable inspection.

Extracts key metadata from records and verification bundles without
modifying them.
"""

from typing import Any


def bundle_summary(bundle: dict[str, Any]) -> dict[str, Any]:
    """
    Extract a human-readable summary from a record or verification bundle.

    Args:
        bundle: A record or verification bundle dict

    Returns:
        Dict with record_id, version, title, content_hash, sealing and key
        versions, timestamps, and whether a timestamp proof is attached
    """
    public_key = bundle.get("publicKey") or {}

    return {
        "record_id": bundle.get("id", ""),
        "version": bundle.get("version", 1),
        "owner_id": bundle.get("ownerId", ""),
        "title": bundle.get("title", ""),
        "event_timestamp": bundle.get("eventTimestamp", ""),
        "sealed_timestamp": bundle.get("sealedTimestamp", ""),
        "content_hash": bundle.get("contentHash", ""),
        "sealing_version": bundle.get("sealingVersion", ""),
        "public_key_version": bundle.get("publicKeyVersion", ""),
        "key_curve": public_key.get("curve", "") if isinstance(public_key, dict) else "",
        "has_timestamp_proof": bool(bundle.get("timestampProof")),
        "has_location": "location" in bundle,
    }


def format_bundle_summary(bundle: dict[str, Any]) -> str:
    """
    Format a record or bundle as a single-line human-readable string.

    Args:
        bundle: A record or verification bundle dict

    Returns:
        String like "r1 v1 (v1/key-1) | T | sealed 2024-01-15T14:30:01.000Z | 3b5c1e0a9d2f4e71... | tsa"
    """
    s = bundle_summary(bundle)
    hash_short = s["content_hash"][:16] + "..." if len(s["content_hash"]) > 16 else s["content_hash"]
    title = s["title"] if len(s["title"]) <= 40 else s["title"][:37] + "..."
    proof = "tsa" if s["has_timestamp_proof"] else "no tsa"
    return (
        f"{s['record_id']} v{s['version']} ({s['sealing_version']}/{s['public_key_version']}) | {title} "
        f"| sealed {s['sealed_timestamp']} | {hash_short} | {proof}"
    )
