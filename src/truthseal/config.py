"""
Configuration for truthseal.

All settings come from environment variables with the ``TRUTHSEAL_`` prefix:

    TRUTHSEAL_KEY_DIR              directory holding <version>.pem private keys
    TRUTHSEAL_KEY_PASSWORD         optional private key password
    TRUTHSEAL_KEY_REGISTRY         public key registry JSON file
    TRUTHSEAL_SIGNING_KEY_VERSION  key version used for sealing (default: latest)
    TRUTHSEAL_SEALING_VERSION      sealing version for new records (default: v1)
    TRUTHSEAL_TSA_URL              remote time authority endpoint (optional)
    TRUTHSEAL_TSA_TIMEOUT          per-call timeout in seconds (default: 5)
    TRUTHSEAL_TSA_ATTEMPTS         attestation attempts per seal (default: 3)
    TRUTHSEAL_TSA_BACKOFF          initial retry delay in seconds (default: 0.5)
    TRUTHSEAL_TSA_CERTS            trusted TSA certificate PEM files, os.pathsep separated
    TRUTHSEAL_LOG_LEVEL            log level (default: INFO)
    TRUTHSEAL_LOG_JSON             "1"/"true" for JSON logs (default: true)
"""

import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

from .errors import UnsupportedSealingVersion
from .timestamp import DEFAULT_TIMEOUT_SECONDS
from .versions import DEFAULT_SEALING_VERSION, get_suite


ENV_PREFIX = "TRUTHSEAL_"

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def _parse_bool(name: str, value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ValueError(f"{name} must be a boolean, got {value!r}")


def _parse_number(name: str, value: str, kind: type, minimum: float):
    try:
        number = kind(value)
    except ValueError:
        raise ValueError(f"{name} must be {'an integer' if kind is int else 'a number'}, got {value!r}") from None
    if number < minimum:
        raise ValueError(f"{name} must be >= {minimum}, got {number}")
    return number


@dataclass
class Settings:
    """Runtime settings for the sealing service and CLI."""
    key_dir: Path | None = None
    key_password: bytes | None = None
    key_registry: Path | None = None
    signing_key_version: str | None = None
    sealing_version: str = DEFAULT_SEALING_VERSION
    tsa_url: str | None = None
    tsa_timeout: float = DEFAULT_TIMEOUT_SECONDS
    tsa_attempts: int = 3
    tsa_backoff: float = 0.5
    tsa_certs: list[Path] = field(default_factory=list)
    log_level: str = "INFO"
    log_json: bool = True

    def __post_init__(self):
        self.validate()

    def validate(self) -> None:
        """
        Raises:
            ValueError: If any setting is out of range or unknown
        """
        try:
            get_suite(self.sealing_version)
        except UnsupportedSealingVersion as exc:
            raise ValueError(str(exc)) from exc
        if self.tsa_timeout <= 0:
            raise ValueError(f"tsa_timeout must be positive, got {self.tsa_timeout}")
        if self.tsa_attempts < 1:
            raise ValueError(f"tsa_attempts must be at least 1, got {self.tsa_attempts}")
        if self.tsa_backoff < 0:
            raise ValueError(f"tsa_backoff must not be negative, got {self.tsa_backoff}")
        if self.log_level.upper() not in LOG_LEVELS:
            raise ValueError(f"log_level must be one of {', '.join(LOG_LEVELS)}, got {self.log_level!r}")

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "Settings":
        """
        Load settings from environment variables.

        Args:
            environ: Mapping to read instead of os.environ

        Raises:
            ValueError: If a variable holds an invalid value
        """
        env = os.environ if environ is None else environ

        def get(name: str) -> str | None:
            value = env.get(ENV_PREFIX + name)
            if value is None or not value.strip():
                return None
            return value.strip()

        kwargs: dict = {}
        key_dir = get("KEY_DIR")
        if key_dir is not None:
            kwargs["key_dir"] = Path(key_dir)
        password = get("KEY_PASSWORD")
        if password is not None:
            kwargs["key_password"] = password.encode("utf-8")
        registry = get("KEY_REGISTRY")
        if registry is not None:
            kwargs["key_registry"] = Path(registry)

        for name, attr in (("SIGNING_KEY_VERSION", "signing_key_version"),
                           ("SEALING_VERSION", "sealing_version"),
                           ("TSA_URL", "tsa_url")):
            value = get(name)
            if value is not None:
                kwargs[attr] = value

        for name, attr, kind, minimum in (("TSA_TIMEOUT", "tsa_timeout", float, 0),
                                          ("TSA_ATTEMPTS", "tsa_attempts", int, 1),
                                          ("TSA_BACKOFF", "tsa_backoff", float, 0)):
            value = get(name)
            if value is not None:
                kwargs[attr] = _parse_number(ENV_PREFIX + name, value, kind, minimum)

        certs = get("TSA_CERTS")
        if certs is not None:
            kwargs["tsa_certs"] = [Path(p) for p in certs.split(os.pathsep) if p]
        log_level = get("LOG_LEVEL")
        if log_level is not None:
            kwargs["log_level"] = log_level.upper()
        log_json = get("LOG_JSON")
        if log_json is not None:
            kwargs["log_json"] = _parse_bool(ENV_PREFIX + "LOG_JSON", log_json)

        return cls(**kwargs)

    def trusted_tsa_certificates(self) -> list[str]:
        """
        Read the trusted TSA certificate files.

        Raises:
            OSError: If a file cannot be read
        """
        return [path.read_text(encoding="utf-8") for path in self.tsa_certs]
