"""
Record signing for truthseal.

Produces ECDSA signatures over the raw digest bytes, hashed with SHA-256,
DER-encoded and base64-transported. This is the construction checked by

    openssl dgst -sha256 -verify public_key.pem -signature signature.bin content_hash.bin

so a verifier needs nothing but the digest, the signature and the PEM.

SECURITY: A private key is opened for exactly one signing call and released
afterwards. Callers never see or hold private key objects.
"""

import base64
import binascii
import logging

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec

from .digest import Digest
from .errors import KeyUnresolvable, SigningUnavailable
from .keys import KeyRegistry, PrivateKeyProvider, curve_name
from .versions import get_suite


logger = logging.getLogger(__name__)


def sign_digest(digest: Digest, private_key: ec.EllipticCurvePrivateKey) -> str:
    """
    Sign a digest with ECDSA/SHA-256.

    Args:
        digest: Content digest to sign
        private_key: EC private key

    Returns:
        Base64-encoded DER signature
    """
    signature = private_key.sign(digest.value, ec.ECDSA(hashes.SHA256()))
    return base64.b64encode(signature).decode("ascii")


def verify_signature(digest: Digest, signature: str, public_key: ec.EllipticCurvePublicKey) -> bool:
    """
    Check an ECDSA/SHA-256 signature over a digest.

    Never raises for bad input: an empty, non-base64 or non-DER signature is
    simply invalid.

    Args:
        digest: Digest the signature must cover
        signature: Base64-encoded DER signature
        public_key: EC public key

    Returns:
        True if the signature is valid
    """
    if not isinstance(signature, str) or not signature:
        return False
    try:
        signature_bytes = base64.b64decode(signature, validate=True)
    except (binascii.Error, ValueError):
        return False
    if not signature_bytes:
        return False

    try:
        public_key.verify(signature_bytes, digest.value, ec.ECDSA(hashes.SHA256()))
    except InvalidSignature:
        return False
    except ValueError:
        return False
    return True


class Signer:
    """
    Signs digests with versioned keys.

    The public half of a version must already be in the registry before the
    private half may sign: a signature nobody can ever check is refused.
    """

    def __init__(self, provider: PrivateKeyProvider, registry: KeyRegistry):
        self._provider = provider
        self._registry = registry

    @property
    def registry(self) -> KeyRegistry:
        return self._registry

    def sign(self, digest: Digest, key_version: str, sealing_version: str = "v1") -> str:
        """
        Sign a digest with one key version.

        Args:
            digest: Content digest
            key_version: Public key version to sign with
            sealing_version: Sealing version whose curve the key must match

        Returns:
            Base64-encoded DER signature

        Raises:
            SigningUnavailable: If the key is unregistered, unreadable, on the
                wrong curve, or does not match its registered public half
        """
        try:
            material = self._registry.get(key_version)
        except KeyUnresolvable:
            raise SigningUnavailable(key_version, "public key version is not registered") from None

        suite = get_suite(sealing_version)
        with self._provider.open(key_version) as private_key:
            if curve_name(private_key.curve) != suite.curve:
                raise SigningUnavailable(
                    key_version,
                    f"key curve {curve_name(private_key.curve)} does not match {suite.curve}",
                )
            if private_key.public_key().public_numbers() != material.load_public_key().public_numbers():
                raise SigningUnavailable(key_version, "private key does not match registered public key")
            signature = sign_digest(digest, private_key)

        logger.debug("Signed digest %s with key version %s", digest.hex(), key_version)
        return signature
