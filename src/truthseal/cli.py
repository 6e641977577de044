#!/usr/bin/env python3
"""
truthseal command line interface.

Usage:
    truthseal verify <bundle> [--trusted-keys <registry>] [--trust-embedded-key] [--tsa-cert <pem> ...] [--json]
    truthseal hash <content> [--sealing-version v1]
    truthseal keygen --version <v> --key-dir <dir> --registry <registry>
    truthseal seal <draft> --key-dir <dir> --registry <registry> [--key-version <v>] [--output <bundle>]
    truthseal summary <bundle>

Exit codes: 0 success, 1 verification failed, 2 usage or I/O error.
"""

import argparse
import dataclasses
import json
import logging
import os
import sys
from pathlib import Path
from typing import Any

from .bundle import read_bundle_file
from .canonical import canonicalize
from .config import Settings
from .content import OPTIONAL_FIELDS, REQUIRED_FIELDS
from .digest import digest
from .errors import MalformedInput, TruthSealError
from .keys import KeyMaterial, KeyRegistry, generate_key_pair, write_private_key
from .logging_config import configure_logging
from .service import build_service
from .summary import format_bundle_summary
from .verify import verify


logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_INVALID = 1
EXIT_ERROR = 2


class CommandError(Exception):
    """A usage or I/O problem reported to the user with exit code 2."""


def load_json(path: str) -> Any:
    """Load JSON from file."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    except OSError as exc:
        raise CommandError(f"cannot read {path}: {exc.strerror}") from exc
    except (ValueError, RecursionError) as exc:
        raise CommandError(f"{path} is not valid JSON ({exc})") from exc


def save_json(data: Any, path: str) -> None:
    """Save JSON to file."""
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2, ensure_ascii=False)
        f.write("\n")


def _load_registry(path: str, must_exist: bool = False) -> KeyRegistry:
    if must_exist and not Path(path).exists():
        raise CommandError(f"key registry not found: {path}")
    try:
        return KeyRegistry.load(path)
    except OSError as exc:
        raise CommandError(f"cannot read {path}: {exc.strerror}") from exc
    except (TruthSealError, ValueError) as exc:
        raise CommandError(f"invalid key registry {path}: {exc}") from exc


def _read_certificates(paths: list[str]) -> list[str]:
    certificates = []
    for path in paths:
        try:
            certificates.append(Path(path).read_text(encoding="utf-8"))
        except OSError as exc:
            raise CommandError(f"cannot read {path}: {exc.strerror}") from exc
    return certificates


def cmd_verify(args, settings: Settings) -> int:
    """Verify a bundle offline."""
    try:
        bundle = read_bundle_file(args.bundle)
    except OSError as exc:
        raise CommandError(f"cannot read {args.bundle}: {exc.strerror}") from exc
    except MalformedInput as exc:
        raise CommandError(str(exc)) from exc

    trusted: dict[str, KeyMaterial] = {}
    if args.trusted_keys:
        trusted.update(_load_registry(args.trusted_keys, must_exist=True).trusted_keys())
    if args.trust_embedded_key:
        try:
            embedded = KeyMaterial.from_dict(bundle.get("publicKey"))
        except MalformedInput as exc:
            logger.warning("Embedded public key ignored: %s", exc)
        else:
            trusted.setdefault(embedded.version, embedded)
    if not trusted:
        print("warning: no trusted keys given; the signature cannot be checked", file=sys.stderr)

    tsa_certs = _read_certificates(args.tsa_cert or [str(p) for p in settings.tsa_certs])
    verdict = verify(bundle, trusted, tsa_certs)

    if args.json:
        print(json.dumps(verdict.to_dict(), indent=2))
    else:
        mark = "✓" if verdict.is_valid else "✗"
        print(f"{mark} {verdict.message}")
        print(f"  integrity: {verdict.integrity_valid}")
        print(f"  signature: {verdict.signature_valid}")
        print(f"  timestamp: {'none' if verdict.timestamp_valid is None else verdict.timestamp_valid}")
        for error in verdict.errors:
            print(f"  - {error.code.value}: {error.message}", file=sys.stderr)

    fields = (verdict.is_valid, verdict.integrity_valid, verdict.signature_valid, verdict.timestamp_valid)
    return EXIT_INVALID if any(value is False for value in fields) else EXIT_OK


def cmd_hash(args, settings: Settings) -> int:
    """Print the canonical content digest of a content, record or bundle file."""
    data = load_json(args.file)
    if not isinstance(data, dict):
        raise CommandError(f"{args.file} does not contain a JSON object")

    sealing_version = args.sealing_version
    if "contentHash" in data:
        # Record or bundle: hash only the sealable subset, with its own sealing version
        sealing_version = sealing_version or data.get("sealingVersion")
        data = {k: data[k] for k in REQUIRED_FIELDS + OPTIONAL_FIELDS if k in data}

    try:
        result = digest(canonicalize(data), sealing_version or settings.sealing_version)
    except TruthSealError as exc:
        raise CommandError(str(exc)) from exc
    print(f"{result.algorithm}: {result.hex()}")
    return EXIT_OK


def cmd_keygen(args, settings: Settings) -> int:
    """Generate a signing key version and register its public half."""
    registry = _load_registry(args.registry)
    if args.version in registry:
        raise CommandError(f"key version {args.version} is already registered")

    password = settings.key_password
    if args.password_env:
        value = os.environ.get(args.password_env)
        if not value:
            raise CommandError(f"environment variable {args.password_env} is empty")
        password = value.encode("utf-8")

    try:
        private_key, material = generate_key_pair(args.version, args.curve)
        key_path = write_private_key(private_key, args.key_dir, args.version, password)
    except (FileExistsError, ValueError) as exc:
        raise CommandError(str(exc)) from exc
    except OSError as exc:
        raise CommandError(f"cannot write key to {args.key_dir}: {exc.strerror}") from exc

    registry.register(material)
    registry.save(args.registry)

    print(json.dumps(material.to_dict(), indent=2))
    print(f"\nPrivate key written to: {key_path}", file=sys.stderr)
    print(f"Registry updated: {args.registry}", file=sys.stderr)
    return EXIT_OK


def cmd_seal(args, settings: Settings) -> int:
    """Seal a draft locally and write its verification bundle."""
    draft = load_json(args.draft)
    if not isinstance(draft, dict):
        raise CommandError(f"{args.draft} does not contain a JSON object")

    overrides: dict[str, Any] = {
        "key_dir": Path(args.key_dir),
        "key_registry": Path(args.registry),
    }
    if args.key_version:
        overrides["signing_key_version"] = args.key_version
    if args.sealing_version:
        overrides["sealing_version"] = args.sealing_version
    if args.tsa_url:
        overrides["tsa_url"] = args.tsa_url

    try:
        local_settings = dataclasses.replace(settings, **overrides)
        service = build_service(local_settings, registry=_load_registry(args.registry))
        record = service.seal(draft, args.draft_id)
        bundle = service.export_bundle(record.id, record.version)
    except (TruthSealError, ValueError) as exc:
        raise CommandError(str(exc)) from exc
    except OSError as exc:
        raise CommandError(f"cannot read configuration: {exc}") from exc

    if args.output:
        save_json(bundle.to_dict(), args.output)
        print(f"Bundle saved to: {args.output}", file=sys.stderr)
    else:
        print(bundle.to_json())
    print(f"Sealed {record.id} v{record.version}: {record.content_hash} "
          f"(attestation {record.attestation_status.value})", file=sys.stderr)
    return EXIT_OK


def cmd_summary(args, settings: Settings) -> int:
    """Print a one-line summary of a bundle."""
    data = load_json(args.bundle)
    if not isinstance(data, dict):
        raise CommandError(f"{args.bundle} does not contain a JSON object")
    print(format_bundle_summary(data))
    return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="truthseal",
        description="Seal and verify truth records offline",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  truthseal keygen --version key-1 --key-dir keys --registry registry.json
  truthseal seal draft.json --key-dir keys --registry registry.json -o bundle.json
  truthseal verify bundle.json --trusted-keys registry.json
  truthseal hash bundle.json
  truthseal summary bundle.json
        """,
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Log at INFO level")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    verify_parser = subparsers.add_parser("verify", help="Verify a bundle offline")
    verify_parser.add_argument("bundle", help="Verification bundle JSON file")
    verify_parser.add_argument("-k", "--trusted-keys", help="Trusted public key registry JSON file")
    verify_parser.add_argument("--trust-embedded-key", action="store_true",
                               help="Trust the public key embedded in the bundle")
    verify_parser.add_argument("-t", "--tsa-cert", action="append",
                               help="Trusted time authority certificate PEM (repeatable)")
    verify_parser.add_argument("--json", action="store_true", help="Print the verdict as JSON")

    hash_parser = subparsers.add_parser("hash", help="Compute the canonical content digest")
    hash_parser.add_argument("file", help="Content, record or bundle JSON file")
    hash_parser.add_argument("-s", "--sealing-version", help="Sealing version (default: v1)")

    keygen_parser = subparsers.add_parser("keygen", help="Generate a signing key version")
    keygen_parser.add_argument("--version", required=True, help="Key version identifier")
    keygen_parser.add_argument("--key-dir", required=True, help="Directory for the private key")
    keygen_parser.add_argument("--registry", required=True, help="Public key registry JSON file")
    keygen_parser.add_argument("--curve", default="P-256", help="Curve (default: P-256)")
    keygen_parser.add_argument("--password-env", help="Environment variable holding the key password")

    seal_parser = subparsers.add_parser("seal", help="Seal a draft and export its bundle")
    seal_parser.add_argument("draft", help="Draft content JSON file")
    seal_parser.add_argument("--key-dir", required=True, help="Directory holding private keys")
    seal_parser.add_argument("--registry", required=True, help="Public key registry JSON file")
    seal_parser.add_argument("--key-version", help="Signing key version (default: latest)")
    seal_parser.add_argument("-s", "--sealing-version", help="Sealing version (default: v1)")
    seal_parser.add_argument("--draft-id", help="Idempotency key for the draft")
    seal_parser.add_argument("--tsa-url", help="Remote time authority URL")
    seal_parser.add_argument("-o", "--output", help="Output file for the bundle")

    summary_parser = subparsers.add_parser("summary", help="One-line bundle summary")
    summary_parser.add_argument("bundle", help="Verification bundle JSON file")

    return parser


COMMANDS = {
    "verify": cmd_verify,
    "hash": cmd_hash,
    "keygen": cmd_keygen,
    "seal": cmd_seal,
    "summary": cmd_summary,
}


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return EXIT_ERROR

    try:
        settings = Settings.from_env()
    except ValueError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return EXIT_ERROR

    configure_logging("INFO" if args.verbose else "WARNING", settings.log_json)

    try:
        return COMMANDS[args.command](args, settings)
    except CommandError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return EXIT_ERROR


if __name__ == "__main__":
    sys.exit(main())
