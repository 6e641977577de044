"""Timestamp attestation tests: token format, trust checks, retries, HTTP authority."""

import base64
import json
from datetime import datetime, timedelta, timezone

import pytest
import requests
from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

from conftest import SAMPLE_SHA256

from truthseal import (
    AttestationTimeout,
    AttestationUnavailable,
    Digest,
    ErrorCode,
    HttpTimeAuthority,
    LocalTimeAuthority,
    MalformedInput,
    TimestampProof,
    attest_with_retry,
    verify_attestation,
)
from truthseal.timestamp import AttemptResult, TimeAuthority, certificate_fingerprint


def _sample_digest() -> Digest:
    return Digest.from_hex("sha256", SAMPLE_SHA256)


def _authority_without_eku() -> LocalTimeAuthority:
    private_key = ec.generate_private_key(ec.SECP256R1())
    now = datetime.now(timezone.utc)
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "no-eku")])
    certificate = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(private_key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(minutes=5))
        .not_valid_after(now + timedelta(days=1))
        .sign(private_key, hashes.SHA256())
    )
    return LocalTimeAuthority(private_key, certificate)


def _retoken(proof: TimestampProof, **tst_changes) -> str:
    tst_info = dict(proof.tst_info, **tst_changes)
    data = dict(proof.to_dict(), tstInfo=tst_info)
    return base64.b64encode(json.dumps(data).encode("utf-8")).decode("ascii")


class TestLocalTimeAuthority:

    def test_token_shape(self, tsa):
        proof = tsa.attest(_sample_digest(), nonce="n-1")
        assert proof.hash_algorithm == "sha256"
        assert proof.hashed_message == SAMPLE_SHA256
        assert proof.nonce == "n-1"
        assert proof.signature_algorithm == "ecdsa-sha256"
        assert proof.tst_info["tsa"] == "truthseal development TSA"
        assert set(proof.tst_info) == {
            "version", "policy", "messageImprint", "serialNumber", "genTime", "accuracy", "nonce", "tsa",
        }

    def test_encode_decode(self, tsa):
        proof = tsa.attest(_sample_digest())
        assert TimestampProof.decode(proof.encode()) == proof

    @pytest.mark.parametrize("token", ["", "!!!", base64.b64encode(b"[]").decode(), base64.b64encode(b"{}").decode()])
    def test_decode_rejects_garbage(self, token):
        with pytest.raises(MalformedInput):
            TimestampProof.decode(token)

    def test_decode_rejects_deep_nesting(self):
        token = base64.b64encode(("[" * 100000 + "]" * 100000).encode("ascii")).decode("ascii")
        with pytest.raises(MalformedInput):
            TimestampProof.decode(token)

    def test_respond_matches_http_protocol(self, tsa):
        body = tsa.respond({"hashAlgorithm": "sha256", "hashedMessage": SAMPLE_SHA256, "nonce": "abc"})
        proof = TimestampProof.decode(body["timestampProof"])
        assert proof.nonce == "abc"
        assert proof.hashed_message == SAMPLE_SHA256

    def test_respond_rejects_bad_request(self, tsa):
        with pytest.raises(MalformedInput):
            tsa.respond({"hashAlgorithm": "sha256", "hashedMessage": "abcd"})
        with pytest.raises(MalformedInput):
            tsa.respond({})


class TestVerifyAttestation:

    def test_valid_proof(self, tsa):
        proof = tsa.attest(_sample_digest())
        check = verify_attestation(proof.encode(), _sample_digest(), [tsa.certificate_pem])
        assert check.valid, check.reason
        assert check.timestamp == proof.gen_time

    def test_trust_by_certificate_object(self, tsa):
        proof = tsa.attest(_sample_digest())
        assert verify_attestation(proof, _sample_digest(), [tsa.certificate]).valid

    def test_untrusted_authority(self, tsa):
        proof = tsa.attest(_sample_digest())
        other = LocalTimeAuthority.generate(common_name="someone else")
        check = verify_attestation(proof, _sample_digest(), [other.certificate])
        assert not check.valid
        assert check.code == ErrorCode.TIMESTAMP_UNTRUSTED

    def test_no_trusted_authorities(self, tsa):
        check = verify_attestation(tsa.attest(_sample_digest()), _sample_digest(), None)
        assert check.code == ErrorCode.TIMESTAMP_UNTRUSTED

    def test_different_digest(self, tsa):
        proof = tsa.attest(Digest.from_hex("sha256", "11" * 32))
        check = verify_attestation(proof, _sample_digest(), [tsa.certificate])
        assert not check.valid
        assert check.code == ErrorCode.TIMESTAMP_INVALID

    def test_hash_algorithm_must_match(self, tsa):
        proof = tsa.attest(Digest.from_hex("sha3-256", SAMPLE_SHA256))
        check = verify_attestation(proof, _sample_digest(), [tsa.certificate])
        assert not check.valid

    def test_tampered_gen_time(self, tsa):
        proof = tsa.attest(_sample_digest())
        token = _retoken(proof, genTime="2000-01-01T00:00:00.000Z")
        check = verify_attestation(token, _sample_digest(), [tsa.certificate])
        assert not check.valid
        assert check.code == ErrorCode.TIMESTAMP_INVALID

    def test_tampered_imprint(self, tsa):
        proof = tsa.attest(Digest.from_hex("sha256", "11" * 32))
        token = _retoken(proof, messageImprint={"hashAlgorithm": "sha256", "hashedMessage": SAMPLE_SHA256})
        check = verify_attestation(token, _sample_digest(), [tsa.certificate])
        assert not check.valid
        assert "signature" in check.reason

    def test_gen_time_outside_certificate_validity(self):
        tsa = LocalTimeAuthority.generate(clock=lambda: datetime(2001, 1, 1, tzinfo=timezone.utc))
        check = verify_attestation(tsa.attest(_sample_digest()), _sample_digest(), [tsa.certificate])
        assert not check.valid
        assert check.code == ErrorCode.TIMESTAMP_INVALID

    def test_certificate_without_time_stamping_usage(self):
        tsa = _authority_without_eku()
        check = verify_attestation(tsa.attest(_sample_digest()), _sample_digest(), [tsa.certificate])
        assert not check.valid
        assert check.code == ErrorCode.TIMESTAMP_UNTRUSTED

    def test_malformed_token(self, tsa):
        check = verify_attestation("not-a-token", _sample_digest(), [tsa.certificate])
        assert not check.valid
        assert check.code == ErrorCode.TIMESTAMP_INVALID

    def test_fingerprint_is_sha256_hex(self, tsa):
        assert len(certificate_fingerprint(tsa.certificate)) == 64
        assert tsa.fingerprint == certificate_fingerprint(tsa.certificate)


class ScriptedAuthority(TimeAuthority):
    """Raises the scripted errors in order, then delegates to a real authority."""

    name = "scripted"

    def __init__(self, failures, delegate=None):
        self.failures = list(failures)
        self.delegate = delegate
        self.calls = 0

    def attest(self, digest, nonce=None):
        self.calls += 1
        if self.failures:
            raise self.failures.pop(0)
        return self.delegate.attest(digest, nonce)


class TestAttestWithRetry:

    def test_obtained_after_retries(self, tsa):
        sleeps = []
        authority = ScriptedAuthority([AttestationUnavailable("down"), AttestationTimeout("slow")], tsa)
        outcome = attest_with_retry(authority, _sample_digest(), max_attempts=3, backoff=0.5, sleep=sleeps.append)
        assert outcome.obtained
        assert outcome.result is AttemptResult.OBTAINED
        assert outcome.attempts == 3
        assert sleeps == [0.5, 1.0]

    def test_timed_out(self):
        authority = ScriptedAuthority([AttestationTimeout("slow")] * 3)
        outcome = attest_with_retry(authority, _sample_digest(), max_attempts=3, sleep=lambda _: None)
        assert outcome.result is AttemptResult.TIMED_OUT
        assert outcome.proof is None
        assert authority.calls == 3

    def test_failed(self):
        authority = ScriptedAuthority([AttestationTimeout("slow"), AttestationUnavailable("down")])
        outcome = attest_with_retry(authority, _sample_digest(), max_attempts=2, sleep=lambda _: None)
        assert outcome.result is AttemptResult.FAILED
        assert outcome.error == "down"

    def test_at_least_one_attempt(self, tsa):
        outcome = attest_with_retry(ScriptedAuthority([], tsa), _sample_digest(), max_attempts=0)
        assert outcome.obtained
        assert outcome.attempts == 1


class FakeResponse:
    def __init__(self, body, status_code=200):
        self._body = body
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")

    def json(self):
        if isinstance(self._body, Exception):
            raise self._body
        return self._body


class FakeSession:
    """requests.Session stand-in routing POSTs to a local authority."""

    def __init__(self, tsa=None, error=None, rewrite=None, status_code=200):
        self.tsa = tsa
        self.error = error
        self.rewrite = rewrite
        self.status_code = status_code
        self.requests = []

    def post(self, url, json=None, timeout=None):
        self.requests.append({"url": url, "json": json, "timeout": timeout})
        if self.error is not None:
            raise self.error
        request = self.rewrite(json) if self.rewrite else json
        return FakeResponse(self.tsa.respond(request), self.status_code)


class TestHttpTimeAuthority:

    def test_obtains_proof(self, tsa):
        session = FakeSession(tsa)
        authority = HttpTimeAuthority("https://tsa.example/stamp", timeout=2.5, session=session)
        proof = authority.attest(_sample_digest())

        sent = session.requests[0]
        assert sent["timeout"] == 2.5
        assert sent["json"]["hashedMessage"] == SAMPLE_SHA256
        assert sent["json"]["hashAlgorithm"] == "sha256"
        assert proof.nonce == sent["json"]["nonce"]
        assert verify_attestation(proof, _sample_digest(), [tsa.certificate]).valid

    def test_timeout(self):
        authority = HttpTimeAuthority("https://tsa.example", session=FakeSession(error=requests.Timeout("slow")))
        with pytest.raises(AttestationTimeout):
            authority.attest(_sample_digest())

    def test_connection_error(self):
        authority = HttpTimeAuthority("https://tsa.example", session=FakeSession(error=requests.ConnectionError("x")))
        with pytest.raises(AttestationUnavailable):
            authority.attest(_sample_digest())

    def test_http_error(self, tsa):
        authority = HttpTimeAuthority("https://tsa.example", session=FakeSession(tsa, status_code=503))
        with pytest.raises(AttestationUnavailable):
            authority.attest(_sample_digest())

    def test_wrong_digest_attested(self, tsa):
        session = FakeSession(tsa, rewrite=lambda req: dict(req, hashedMessage="22" * 32))
        with pytest.raises(AttestationUnavailable):
            HttpTimeAuthority("https://tsa.example", session=session).attest(_sample_digest())

    def test_nonce_not_echoed(self, tsa):
        session = FakeSession(tsa, rewrite=lambda req: dict(req, nonce="replayed"))
        with pytest.raises(AttestationUnavailable):
            HttpTimeAuthority("https://tsa.example", session=session).attest(_sample_digest())

    def test_timeout_counts_as_timed_out_outcome(self):
        authority = HttpTimeAuthority("https://tsa.example", session=FakeSession(error=requests.Timeout("slow")))
        outcome = attest_with_retry(authority, _sample_digest(), max_attempts=2, sleep=lambda _: None)
        assert outcome.result is AttemptResult.TIMED_OUT
