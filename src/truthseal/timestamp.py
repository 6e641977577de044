"""
Timestamp attestation for truthseal.

A time authority (TSA) signs a TSTInfo structure that binds a digest to the
time it saw it, mirroring RFC 3161 semantics. The proof travels as one
self-contained string: base64 of the canonical JSON

    {"certificate": <TSA cert PEM>, "signature": <b64>,
     "signatureAlgorithm": "ecdsa-sha256", "tstInfo": {...}}

so it can be checked offline, years later, with nothing but a trusted TSA
certificate fingerprint.

Attestation is best-effort during sealing: a failing or slow authority
degrades the record (no proof) but never blocks or aborts the seal.
"""

import base64
import binascii
import json
import logging
import secrets
import time
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any

import requests
from cryptography import x509
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec, padding, rsa
from cryptography.hazmat.primitives.serialization import Encoding
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

from .canonical import canonical_json
from .content import format_timestamp, parse_timestamp
from .digest import Digest, digests_equal
from .errors import (
    AttestationTimeout,
    AttestationUnavailable,
    ErrorCode,
    InvalidContent,
    MalformedInput,
)


logger = logging.getLogger(__name__)

# Policy OID for tokens issued by the in-process development authority
DEVELOPMENT_POLICY_OID = "1.2.3.4.5.6.7.8.9.0"

TOKEN_VERSION = 1

DEFAULT_TIMEOUT_SECONDS = 5.0


class AttestationStatus(str, Enum):
    """Attestation state recorded on a sealed record."""
    OBTAINED = "OBTAINED"
    UNAVAILABLE = "UNAVAILABLE"
    NOT_REQUESTED = "NOT_REQUESTED"


class AttemptResult(str, Enum):
    """Outcome of a bounded attestation attempt sequence."""
    OBTAINED = "obtained"
    TIMED_OUT = "timed_out"
    FAILED = "failed"


@dataclass(frozen=True)
class TimestampProof:
    """Decoded timestamp token."""
    tst_info: dict[str, Any]
    signature: str
    signature_algorithm: str
    certificate_pem: str

    @property
    def hash_algorithm(self) -> str:
        return self.tst_info["messageImprint"]["hashAlgorithm"]

    @property
    def hashed_message(self) -> str:
        return self.tst_info["messageImprint"]["hashedMessage"]

    @property
    def gen_time(self) -> datetime:
        return parse_timestamp(self.tst_info["genTime"], "genTime")

    @property
    def nonce(self) -> str | None:
        return self.tst_info.get("nonce")

    def to_dict(self) -> dict[str, Any]:
        return {
            "certificate": self.certificate_pem,
            "signature": self.signature,
            "signatureAlgorithm": self.signature_algorithm,
            "tstInfo": self.tst_info,
        }

    def encode(self) -> str:
        """Serialize to the transport string stored on records and bundles."""
        return base64.b64encode(canonical_json(self.to_dict()).encode("utf-8")).decode("ascii")

    @classmethod
    def decode(cls, token: str) -> "TimestampProof":
        """
        Parse a transport string.

        Raises:
            MalformedInput: If the token is not base64 JSON of the expected shape
        """
        if not isinstance(token, str) or not token:
            raise MalformedInput("Timestamp proof must be a non-empty string")
        try:
            data = json.loads(base64.b64decode(token, validate=True).decode("utf-8"))
        except (binascii.Error, ValueError, UnicodeDecodeError, RecursionError) as exc:
            raise MalformedInput(f"Timestamp proof is not base64 JSON ({exc})") from exc

        if not isinstance(data, dict):
            raise MalformedInput("Timestamp proof must decode to an object")
        for name in ("certificate", "signature", "signatureAlgorithm"):
            if not isinstance(data.get(name), str):
                raise MalformedInput(f"Timestamp proof missing {name}")

        tst_info = data.get("tstInfo")
        if not isinstance(tst_info, dict):
            raise MalformedInput("Timestamp proof missing tstInfo")
        imprint = tst_info.get("messageImprint")
        if not isinstance(imprint, dict) or not all(
            isinstance(imprint.get(k), str) for k in ("hashAlgorithm", "hashedMessage")
        ):
            raise MalformedInput("Timestamp proof has no valid messageImprint")
        if not isinstance(tst_info.get("genTime"), str):
            raise MalformedInput("Timestamp proof has no genTime")

        return cls(
            tst_info=tst_info,
            signature=data["signature"],
            signature_algorithm=data["signatureAlgorithm"],
            certificate_pem=data["certificate"],
        )


@dataclass(frozen=True)
class AttestationOutcome:
    """Result of ``attest_with_retry``: success, timeout or failure, never an exception."""
    result: AttemptResult
    proof: TimestampProof | None = None
    attempts: int = 0
    error: str | None = None

    @property
    def obtained(self) -> bool:
        return self.result is AttemptResult.OBTAINED


@dataclass(frozen=True)
class AttestationCheck:
    """Result of checking a timestamp proof against a digest."""
    valid: bool
    timestamp: datetime | None = None
    reason: str | None = None
    code: ErrorCode | None = None


def certificate_fingerprint(certificate: x509.Certificate) -> str:
    """SHA-256 fingerprint of a certificate, lowercase hex."""
    return certificate.fingerprint(hashes.SHA256()).hex()


def load_certificate(value: x509.Certificate | str | bytes) -> x509.Certificate:
    """Accept a certificate object or its PEM text."""
    if isinstance(value, x509.Certificate):
        return value
    if isinstance(value, str):
        value = value.encode("utf-8")
    return x509.load_pem_x509_certificate(value)


class TimeAuthority(ABC):
    """An independent source of timestamp proofs."""

    name: str = "time-authority"

    @abstractmethod
    def attest(self, digest: Digest, nonce: str | None = None) -> TimestampProof:
        """
        Obtain a proof that the digest existed now.

        Raises:
            AttestationUnavailable: If the authority cannot issue a proof
            AttestationTimeout: If the authority did not answer in time
        """


class LocalTimeAuthority(TimeAuthority):
    """
    In-process time authority holding its own EC key and certificate.

    Issues RFC-3161-style tokens. Used for development, tests and as the
    issuing side of an HTTP authority (see ``respond``).
    """

    def __init__(
        self,
        private_key: ec.EllipticCurvePrivateKey,
        certificate: x509.Certificate,
        policy_oid: str = DEVELOPMENT_POLICY_OID,
        clock: Callable[[], datetime] | None = None,
    ):
        self._private_key = private_key
        self._certificate = certificate
        self._policy_oid = policy_oid
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self.name = _subject_cn(certificate)

    @classmethod
    def generate(
        cls,
        common_name: str = "truthseal development TSA",
        organization: str = "truthseal",
        valid_days: int = 730,
        clock: Callable[[], datetime] | None = None,
    ) -> "LocalTimeAuthority":
        """Create an authority with a fresh P-256 key and self-signed certificate."""
        private_key = ec.generate_private_key(ec.SECP256R1())
        now = datetime.now(timezone.utc)
        subject = issuer = x509.Name([
            x509.NameAttribute(NameOID.ORGANIZATION_NAME, organization),
            x509.NameAttribute(NameOID.COMMON_NAME, common_name),
        ])
        certificate = (
            x509.CertificateBuilder()
            .subject_name(subject)
            .issuer_name(issuer)
            .public_key(private_key.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(now - timedelta(minutes=5))
            .not_valid_after(now + timedelta(days=valid_days))
            .add_extension(
                x509.KeyUsage(
                    digital_signature=True,
                    content_commitment=False,
                    key_encipherment=False,
                    data_encipherment=False,
                    key_agreement=False,
                    key_cert_sign=False,
                    crl_sign=False,
                    encipher_only=False,
                    decipher_only=False,
                ),
                critical=True,
            )
            .add_extension(
                x509.ExtendedKeyUsage([ExtendedKeyUsageOID.TIME_STAMPING]),
                critical=True,
            )
            .sign(private_key, hashes.SHA256())
        )
        logger.info("Generated time authority certificate for %s", common_name)
        return cls(private_key, certificate, clock=clock)

    @property
    def certificate(self) -> x509.Certificate:
        return self._certificate

    @property
    def certificate_pem(self) -> str:
        return self._certificate.public_bytes(Encoding.PEM).decode("ascii")

    @property
    def fingerprint(self) -> str:
        return certificate_fingerprint(self._certificate)

    def attest(self, digest: Digest, nonce: str | None = None) -> TimestampProof:
        gen_time = self._clock()
        tst_info = {
            "version": TOKEN_VERSION,
            "policy": self._policy_oid,
            "messageImprint": {
                "hashAlgorithm": digest.algorithm,
                "hashedMessage": digest.hex(),
            },
            "serialNumber": str(x509.random_serial_number()),
            "genTime": format_timestamp(gen_time),
            "accuracy": {"seconds": 1},
            "nonce": nonce,
            "tsa": self.name,
        }
        payload = canonical_json(tst_info).encode("utf-8")
        signature = self._private_key.sign(payload, ec.ECDSA(hashes.SHA256()))

        logger.debug("Issued timestamp serial=%s for digest %s", tst_info["serialNumber"], digest.hex())
        return TimestampProof(
            tst_info=tst_info,
            signature=base64.b64encode(signature).decode("ascii"),
            signature_algorithm="ecdsa-sha256",
            certificate_pem=self.certificate_pem,
        )

    def respond(self, request: Mapping[str, Any]) -> dict[str, Any]:
        """
        Handle one JSON timestamp request as an HTTP authority would.

        Args:
            request: {"hashAlgorithm": ..., "hashedMessage": <hex>, "nonce": ...}

        Returns:
            {"timestampProof": <token>}

        Raises:
            MalformedInput: If the request is not a valid timestamp request
        """
        algorithm = request.get("hashAlgorithm")
        hashed = request.get("hashedMessage")
        if not isinstance(algorithm, str) or not isinstance(hashed, str):
            raise MalformedInput("Timestamp request needs hashAlgorithm and hashedMessage")
        try:
            requested = Digest.from_hex(algorithm, hashed)
        except ValueError as exc:
            raise MalformedInput(f"Invalid hashedMessage ({exc})") from exc
        proof = self.attest(requested, nonce=request.get("nonce"))
        return {"timestampProof": proof.encode()}


class HttpTimeAuthority(TimeAuthority):
    """
    Remote time authority speaking JSON over HTTP.

    Request:  POST {"hashAlgorithm", "hashedMessage", "nonce"}
    Response: {"timestampProof": <token>}

    Every call carries a bounded timeout; a slow authority surfaces as
    ``AttestationTimeout`` instead of blocking the caller.
    """

    def __init__(
        self,
        url: str,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        session: requests.Session | None = None,
    ):
        self.url = url
        self.name = url
        self._timeout = timeout
        self._session = session or requests.Session()

    def attest(self, digest: Digest, nonce: str | None = None) -> TimestampProof:
        nonce = nonce or secrets.token_hex(16)
        request = {
            "hashAlgorithm": digest.algorithm,
            "hashedMessage": digest.hex(),
            "nonce": nonce,
        }
        try:
            response = self._session.post(self.url, json=request, timeout=self._timeout)
            response.raise_for_status()
            body = response.json()
        except requests.Timeout as exc:
            raise AttestationTimeout(f"Time authority {self.url} timed out after {self._timeout}s") from exc
        except requests.RequestException as exc:
            raise AttestationUnavailable(f"Time authority {self.url} request failed: {exc}") from exc
        except (ValueError, RecursionError) as exc:
            raise AttestationUnavailable(f"Time authority {self.url} returned invalid JSON") from exc

        token = body.get("timestampProof") if isinstance(body, dict) else None
        try:
            proof = TimestampProof.decode(token)
        except MalformedInput as exc:
            raise AttestationUnavailable(f"Time authority {self.url} returned a malformed token: {exc}") from exc

        if proof.hash_algorithm != digest.algorithm or not digests_equal(proof.hashed_message, digest.hex()):
            raise AttestationUnavailable(f"Time authority {self.url} attested a different digest")
        if proof.nonce != nonce:
            raise AttestationUnavailable(f"Time authority {self.url} did not echo the request nonce")
        return proof


def attest_with_retry(
    authority: TimeAuthority,
    digest: Digest,
    max_attempts: int = 3,
    backoff: float = 0.5,
    sleep: Callable[[float], None] = time.sleep,
) -> AttestationOutcome:
    """
    Ask an authority for a proof with bounded attempts and exponential backoff.

    Never raises for authority failures: the outcome says whether a proof was
    obtained, the last attempt timed out, or it failed.

    Args:
        authority: Time authority to call
        digest: Digest to attest
        max_attempts: Total attempts (at least 1)
        backoff: Delay before the second attempt; doubles each retry
        sleep: Sleep function (injectable for tests)
    """
    attempts = max(1, max_attempts)
    last_error: str | None = None
    timed_out = False

    for attempt in range(1, attempts + 1):
        try:
            proof = authority.attest(digest)
        except AttestationTimeout as exc:
            timed_out, last_error = True, str(exc)
        except AttestationUnavailable as exc:
            timed_out, last_error = False, str(exc)
        else:
            return AttestationOutcome(result=AttemptResult.OBTAINED, proof=proof, attempts=attempt)

        logger.warning(
            "Attestation attempt %d/%d via %s failed: %s",
            attempt, attempts, authority.name, last_error,
        )
        if attempt < attempts:
            sleep(backoff * 2 ** (attempt - 1))

    result = AttemptResult.TIMED_OUT if timed_out else AttemptResult.FAILED
    return AttestationOutcome(result=result, attempts=attempts, error=last_error)


def verify_attestation(
    proof: TimestampProof | str,
    digest: Digest,
    trusted_authorities: Iterable[x509.Certificate | str | bytes] | None = None,
) -> AttestationCheck:
    """
    Check a timestamp proof against a recomputed digest.

    The authority certificate embedded in the token must match one of the
    trusted certificates by SHA-256 fingerprint, carry the timeStamping
    extended key usage, and have been valid at genTime.

    Returns:
        AttestationCheck with the attested time when valid
    """
    if isinstance(proof, str):
        try:
            proof = TimestampProof.decode(proof)
        except MalformedInput as exc:
            return AttestationCheck(False, reason=str(exc), code=ErrorCode.TIMESTAMP_INVALID)

    try:
        certificate = load_certificate(proof.certificate_pem)
    except ValueError as exc:
        return AttestationCheck(False, reason=f"Invalid authority certificate ({exc})", code=ErrorCode.TIMESTAMP_INVALID)

    trusted: set[str] = set()
    for entry in trusted_authorities or []:
        try:
            trusted.add(certificate_fingerprint(load_certificate(entry)))
        except ValueError:
            logger.warning("Ignoring unreadable trusted time authority certificate")

    if certificate_fingerprint(certificate) not in trusted:
        return AttestationCheck(
            False,
            reason=f"Time authority {_subject_cn(certificate)} is not trusted",
            code=ErrorCode.TIMESTAMP_UNTRUSTED,
        )

    try:
        eku = certificate.extensions.get_extension_for_class(x509.ExtendedKeyUsage).value
    except x509.ExtensionNotFound:
        eku = None
    if eku is None or ExtendedKeyUsageOID.TIME_STAMPING not in eku:
        return AttestationCheck(
            False,
            reason="Authority certificate lacks the timeStamping usage",
            code=ErrorCode.TIMESTAMP_UNTRUSTED,
        )

    try:
        gen_time = proof.gen_time
    except InvalidContent as exc:
        return AttestationCheck(False, reason=str(exc), code=ErrorCode.TIMESTAMP_INVALID)

    if not certificate.not_valid_before_utc <= gen_time <= certificate.not_valid_after_utc:
        return AttestationCheck(
            False,
            reason="genTime is outside the authority certificate validity",
            code=ErrorCode.TIMESTAMP_INVALID,
        )

    try:
        signature = base64.b64decode(proof.signature, validate=True)
        _verify_token_signature(
            proof.signature_algorithm,
            certificate.public_key(),
            signature,
            canonical_json(proof.tst_info).encode("utf-8"),
        )
    except (InvalidSignature, binascii.Error, ValueError, InvalidContent, RecursionError) as exc:
        return AttestationCheck(
            False,
            reason=f"Timestamp signature verification failed ({type(exc).__name__})",
            code=ErrorCode.TIMESTAMP_INVALID,
        )

    if proof.hash_algorithm != digest.algorithm or not digests_equal(proof.hashed_message, digest.hex()):
        return AttestationCheck(
            False,
            reason="Timestamp proof attests a different digest",
            code=ErrorCode.TIMESTAMP_INVALID,
        )

    return AttestationCheck(True, timestamp=gen_time)


def _verify_token_signature(algorithm: str, public_key, signature: bytes, content: bytes) -> None:
    if algorithm == "ecdsa-sha256":
        if not isinstance(public_key, ec.EllipticCurvePublicKey):
            raise ValueError("ecdsa-sha256 requires an EC authority key")
        public_key.verify(signature, content, ec.ECDSA(hashes.SHA256()))
        return
    if algorithm == "rsa-sha256":
        if not isinstance(public_key, rsa.RSAPublicKey):
            raise ValueError("rsa-sha256 requires an RSA authority key")
        public_key.verify(signature, content, padding.PKCS1v15(), hashes.SHA256())
        return
    raise ValueError(f"unsupported timestamp signature algorithm: {algorithm}")


def _subject_cn(certificate: x509.Certificate) -> str:
    """Extract Common Name from certificate subject."""
    for attr in certificate.subject:
        if attr.oid == NameOID.COMMON_NAME:
            return str(attr.value)
    return "Unknown"
