"""
Key material for truthseal.

Public halves live in an append-only ``KeyRegistry``: once a key version has
signed anything it must stay retrievable forever, so versions can be added
but never removed or replaced.

Private halves are only reachable through a ``PrivateKeyProvider``, which
hands out a loaded key for the duration of one ``with`` block and drops it
afterwards. Nothing in this module caches decrypted private keys.

SECURITY: Private key files MUST be readable only by the sealing service
(mode 0600). Never commit them.
"""

import json
import logging
import threading
from abc import ABC, abstractmethod
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec

from .content import format_timestamp, parse_timestamp
from .errors import InvalidContent, KeyUnresolvable, KeyVersionConflict, MalformedInput, SigningUnavailable


logger = logging.getLogger(__name__)

KEY_ALGORITHM = "ECDSA"

CURVES: dict[str, type[ec.EllipticCurve]] = {
    "P-256": ec.SECP256R1,
    "P-384": ec.SECP384R1,
}


def curve_name(curve: ec.EllipticCurve) -> str:
    """Map a cryptography curve object to its NIST name ("P-256")."""
    for name, curve_type in CURVES.items():
        if isinstance(curve, curve_type):
            return name
    return curve.name


def public_key_pem(key: ec.EllipticCurvePublicKey | ec.EllipticCurvePrivateKey) -> str:
    """Serialize the public half of a key as SubjectPublicKeyInfo PEM."""
    if isinstance(key, ec.EllipticCurvePrivateKey):
        key = key.public_key()
    return key.public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode("ascii")


@dataclass(frozen=True)
class KeyMaterial:
    """Public key material for one key version."""
    version: str
    pem: str
    algorithm: str = KEY_ALGORITHM
    curve: str = "P-256"
    created_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "pem": self.pem,
            "version": self.version,
            "algorithm": self.algorithm,
            "curve": self.curve,
        }
        if self.created_at is not None:
            data["createdAt"] = format_timestamp(self.created_at)
        return data

    def to_bundle_dict(self) -> dict[str, Any]:
        """The ``publicKey`` object of the bundle wire format."""
        return {
            "pem": self.pem,
            "version": self.version,
            "algorithm": self.algorithm,
            "curve": self.curve,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "KeyMaterial":
        """
        Parse key material from its wire mapping.

        Raises:
            MalformedInput: If required fields are missing or mistyped
        """
        if not isinstance(data, Mapping):
            raise MalformedInput("publicKey must be an object")
        for name in ("pem", "version", "algorithm", "curve"):
            if not isinstance(data.get(name), str) or not data[name]:
                raise MalformedInput(f"publicKey.{name} must be a non-empty string")
        created_at = None
        if data.get("createdAt"):
            try:
                created_at = parse_timestamp(data["createdAt"], "createdAt")
            except InvalidContent as exc:
                raise MalformedInput(str(exc)) from exc
        return cls(
            version=data["version"],
            pem=data["pem"],
            algorithm=data["algorithm"],
            curve=data["curve"],
            created_at=created_at,
        )

    def load_public_key(self) -> ec.EllipticCurvePublicKey:
        """
        Load the PEM as an EC public key on the declared curve.

        Raises:
            ValueError: If the PEM is invalid, not EC, or on another curve
        """
        return load_public_key(self.pem, self.curve)


def load_public_key(pem: str, curve: str | None = None) -> ec.EllipticCurvePublicKey:
    """
    Load an EC public key from PEM text.

    Args:
        pem: SubjectPublicKeyInfo PEM
        curve: Expected curve name ("P-256"); not checked if None

    Raises:
        ValueError: If the key is unreadable, not EC, or on the wrong curve
    """
    key_text = (pem or "").strip()
    if not key_text:
        raise ValueError("empty public key")
    try:
        key_obj = serialization.load_pem_public_key(key_text.encode("utf-8"))
    except Exception as exc:
        raise ValueError(f"invalid PEM public key ({exc})") from exc

    if not isinstance(key_obj, ec.EllipticCurvePublicKey):
        raise ValueError("expected an ECDSA public key")
    if curve is not None and curve_name(key_obj.curve) != curve:
        raise ValueError(f"expected curve {curve}, got {curve_name(key_obj.curve)}")
    return key_obj


class KeyRegistry:
    """
    Append-only registry of public key versions.

    Thread-safe; reads vastly outnumber writes. Registration order defines
    which version is "latest".
    """

    def __init__(self, materials: list[KeyMaterial] | None = None):
        self._lock = threading.RLock()
        self._keys: dict[str, KeyMaterial] = {}
        for material in materials or []:
            self.register(material)

    def register(self, material: KeyMaterial) -> KeyMaterial:
        """
        Add a key version.

        Re-registering identical material is a no-op.

        Raises:
            KeyVersionConflict: If the version exists with a different PEM
            ValueError: If the PEM does not load on its declared curve
        """
        material.load_public_key()
        with self._lock:
            existing = self._keys.get(material.version)
            if existing is not None:
                if existing.pem.strip() != material.pem.strip() or existing.curve != material.curve:
                    raise KeyVersionConflict(material.version)
                return existing
            self._keys[material.version] = material
        logger.info("Registered public key version %s (%s)", material.version, material.curve)
        return material

    def get(self, version: str) -> KeyMaterial:
        """
        Look up a key version.

        Raises:
            KeyUnresolvable: If the version was never registered
        """
        with self._lock:
            try:
                return self._keys[version]
            except (KeyError, TypeError):
                raise KeyUnresolvable(version) from None

    def latest(self) -> KeyMaterial:
        """
        Most recently registered key version.

        Raises:
            KeyUnresolvable: If the registry is empty
        """
        with self._lock:
            if not self._keys:
                raise KeyUnresolvable(None)
            return next(reversed(self._keys.values()))

    def versions(self) -> list[str]:
        with self._lock:
            return list(self._keys)

    def trusted_keys(self) -> dict[str, KeyMaterial]:
        """Snapshot of all versions, for handing to a verifier."""
        with self._lock:
            return dict(self._keys)

    def __contains__(self, version: object) -> bool:
        with self._lock:
            return version in self._keys

    def __len__(self) -> int:
        with self._lock:
            return len(self._keys)

    def to_dict(self) -> dict[str, Any]:
        with self._lock:
            return {"keys": [material.to_dict() for material in self._keys.values()]}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "KeyRegistry":
        if not isinstance(data, Mapping) or not isinstance(data.get("keys"), list):
            raise MalformedInput("Key registry must be an object with a 'keys' array")
        return cls([KeyMaterial.from_dict(entry) for entry in data["keys"]])

    @classmethod
    def load(cls, path: str | Path) -> "KeyRegistry":
        """Load a registry from a JSON file; a missing file is an empty registry."""
        path = Path(path)
        if not path.exists():
            return cls()
        with open(path, "r", encoding="utf-8") as f:
            return cls.from_dict(json.load(f))

    def save(self, path: str | Path) -> None:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(self.to_dict(), f, indent=2)
            f.write("\n")


class PrivateKeyProvider(ABC):
    """Source of private signing keys, scoped to a single signing call."""

    @abstractmethod
    def open(self, version: str) -> Iterator[ec.EllipticCurvePrivateKey]:
        """
        Context manager yielding the private key for a version.

        Raises:
            SigningUnavailable: If the key cannot be read or decrypted
        """


class FileKeyProvider(PrivateKeyProvider):
    """
    Reads ``<key_dir>/<version>.pem`` (PKCS8 PEM) on every signing call.
    """

    def __init__(self, key_dir: str | Path, password: bytes | None = None):
        self._key_dir = Path(key_dir)
        self._password = password

    def path_for(self, version: str) -> Path:
        return self._key_dir / f"{version}.pem"

    @contextmanager
    def open(self, version: str) -> Iterator[ec.EllipticCurvePrivateKey]:
        path = self.path_for(version)
        try:
            pem = path.read_bytes()
        except OSError as exc:
            raise SigningUnavailable(version, f"cannot read {path.name}: {exc.strerror}") from exc
        key = _load_private_key(pem, self._password, version)
        try:
            yield key
        finally:
            del key


class InMemoryKeyProvider(PrivateKeyProvider):
    """
    Holds PEM-encoded private keys and deserializes them per call.

    Intended for tests and single-process development setups.
    """

    def __init__(self, keys: Mapping[str, bytes] | None = None, password: bytes | None = None):
        self._pems: dict[str, bytes] = dict(keys or {})
        self._password = password

    def add(self, version: str, private_key_pem: bytes) -> None:
        self._pems[version] = private_key_pem

    @contextmanager
    def open(self, version: str) -> Iterator[ec.EllipticCurvePrivateKey]:
        pem = self._pems.get(version)
        if pem is None:
            raise SigningUnavailable(version, "no private key for this version")
        key = _load_private_key(pem, self._password, version)
        try:
            yield key
        finally:
            del key


def _load_private_key(pem: bytes, password: bytes | None, version: str) -> ec.EllipticCurvePrivateKey:
    try:
        key = serialization.load_pem_private_key(pem, password=password)
    except (ValueError, TypeError, UnsupportedAlgorithm) as exc:
        raise SigningUnavailable(version, f"cannot load private key ({exc})") from exc
    if not isinstance(key, ec.EllipticCurvePrivateKey):
        raise SigningUnavailable(version, "private key is not an ECDSA key")
    return key


def private_key_pem(key: ec.EllipticCurvePrivateKey, password: bytes | None = None) -> bytes:
    """Serialize a private key as PKCS8 PEM, encrypted when a password is given."""
    if password:
        encryption = serialization.BestAvailableEncryption(password)
    else:
        encryption = serialization.NoEncryption()
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=encryption,
    )


def generate_key_pair(
    version: str,
    curve: str = "P-256",
) -> tuple[ec.EllipticCurvePrivateKey, KeyMaterial]:
    """
    Mint a new key version.

    Rotation means calling this with a new version; an existing version is
    never regenerated.

    Returns:
        (private key, public key material)
    """
    if curve not in CURVES:
        raise ValueError(f"Unsupported curve: {curve}")
    private_key = ec.generate_private_key(CURVES[curve]())
    material = KeyMaterial(
        version=version,
        pem=public_key_pem(private_key),
        algorithm=KEY_ALGORITHM,
        curve=curve,
        created_at=datetime.now(timezone.utc),
    )
    return private_key, material


def write_private_key(
    key: ec.EllipticCurvePrivateKey,
    key_dir: str | Path,
    version: str,
    password: bytes | None = None,
) -> Path:
    """
    Write a private key to ``<key_dir>/<version>.pem`` with mode 0600.

    Raises:
        FileExistsError: If a key file for the version already exists
    """
    key_dir = Path(key_dir)
    key_dir.mkdir(parents=True, exist_ok=True)
    path = key_dir / f"{version}.pem"
    if path.exists():
        raise FileExistsError(f"Key file already exists: {path}")
    path.write_bytes(private_key_pem(key, password))
    path.chmod(0o600)
    logger.info("Wrote private key for version %s", version)
    return path
