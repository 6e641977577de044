"""
Service facade for truthseal.

The operations a transport layer (HTTP, RPC, CLI) exposes, wired from
configuration. Routing and authentication belong to the caller.
"""

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any

from cryptography import x509

from .bundle import VerificationBundle, export_bundle
from .config import Settings
from .content import parse_draft
from .errors import RecordNotFound
from .keys import FileKeyProvider, InMemoryKeyProvider, KeyMaterial, KeyRegistry, PrivateKeyProvider
from .logging_config import configure_logging
from .record import SealedRecord
from .seal import SealingOrchestrator
from .sign import Signer
from .store import InMemoryRecordStore, RecordStore
from .timestamp import HttpTimeAuthority, LocalTimeAuthority, TimeAuthority
from .verify import VerificationVerdict, verify


logger = logging.getLogger(__name__)


class LookupStatus(str, Enum):
    FOUND = "FOUND"
    NOT_SEALED = "NOT_SEALED"


@dataclass(frozen=True)
class RecordLookup:
    """Explicit result of looking a record up by id."""
    record_id: str
    status: LookupStatus
    record: SealedRecord | None = None

    @property
    def found(self) -> bool:
        return self.status is LookupStatus.FOUND


@dataclass(frozen=True)
class NotSealed:
    """Returned by ``verify`` when no sealed record exists for the id."""
    record_id: str

    @property
    def message(self) -> str:
        return f"Record {self.record_id} has not been sealed"

    def to_dict(self) -> dict[str, Any]:
        return {"recordId": self.record_id, "status": LookupStatus.NOT_SEALED.value, "message": self.message}


class TruthSealService:
    """
    Seal, look up, verify and export records.
    """

    def __init__(
        self,
        orchestrator: SealingOrchestrator,
        store: RecordStore,
        registry: KeyRegistry,
        trusted_time_authorities: list[x509.Certificate | str | bytes] | None = None,
    ):
        self._orchestrator = orchestrator
        self._store = store
        self._registry = registry
        self._trusted_time_authorities = list(trusted_time_authorities or [])

    @property
    def registry(self) -> KeyRegistry:
        return self._registry

    @property
    def store(self) -> RecordStore:
        return self._store

    def seal(self, draft_content: Mapping[str, Any], draft_id: str | None = None) -> SealedRecord:
        """
        Validate draft input and seal it.

        Args:
            draft_content: Loose user input (id, ownerId, title, content,
                eventTimestamp, location)
            draft_id: Idempotency key; generated when None

        Raises:
            InvalidContent: If the input fails intake validation
            AlreadySealed: If the draft was sealed before
            SigningUnavailable: If the signing key cannot be used
        """
        return self._orchestrator.seal(parse_draft(draft_content, draft_id))

    def lookup(self, record_id: str, version: int | None = None) -> RecordLookup:
        try:
            record = self._store.load(record_id, version)
        except RecordNotFound:
            return RecordLookup(record_id=record_id, status=LookupStatus.NOT_SEALED)
        return RecordLookup(record_id=record_id, status=LookupStatus.FOUND, record=record)

    def history(self, record_id: str) -> list[SealedRecord]:
        return self._store.history(record_id)

    def verify(self, record_id: str, version: int | None = None) -> VerificationVerdict | NotSealed:
        """
        Verify a stored record against this service's trusted keys and authorities.

        Returns:
            The verdict, or NotSealed if no record exists for the id
        """
        found = self.lookup(record_id, version)
        if not found.found:
            logger.info("Verification requested for unsealed record %s", record_id)
            return NotSealed(record_id)
        return verify(found.record, self._registry, self._trusted_time_authorities)

    def export_bundle(self, record_id: str, version: int | None = None) -> VerificationBundle:
        """
        Raises:
            RecordNotFound: If no record exists for the id
            KeyUnresolvable: If the record's key version is no longer registered
        """
        record = self._store.load(record_id, version)
        return export_bundle(record, self._registry.get(record.public_key_version))

    def get_public_key(self, version: str | None = None) -> KeyMaterial:
        """
        Public key by version, or the latest one.

        Raises:
            KeyUnresolvable: If the version is unknown or no key is registered
        """
        if version is None:
            return self._registry.latest()
        return self._registry.get(version)


def build_service(
    settings: Settings | None = None,
    store: RecordStore | None = None,
    provider: PrivateKeyProvider | None = None,
    registry: KeyRegistry | None = None,
    time_authority: TimeAuthority | None = None,
    setup_logging: bool = False,
) -> TruthSealService:
    """
    Wire a service from settings.

    Explicit collaborators override what the settings would build.

    Args:
        settings: Settings; loaded from the environment when None
        store: Record store (in-memory when None)
        provider: Private key provider (file provider when key_dir is set)
        registry: Public key registry (loaded from key_registry when set)
        time_authority: Time authority (HTTP when tsa_url is set)
        setup_logging: Configure logging from the settings
    """
    settings = settings or Settings.from_env()
    if setup_logging:
        configure_logging(settings.log_level, settings.log_json)

    if registry is None:
        registry = KeyRegistry.load(settings.key_registry) if settings.key_registry else KeyRegistry()
    if provider is None:
        if settings.key_dir is not None:
            provider = FileKeyProvider(settings.key_dir, settings.key_password)
        else:
            provider = InMemoryKeyProvider()
    if time_authority is None and settings.tsa_url:
        time_authority = HttpTimeAuthority(settings.tsa_url, timeout=settings.tsa_timeout)

    trusted: list[x509.Certificate | str | bytes] = list(settings.trusted_tsa_certificates())
    if isinstance(time_authority, LocalTimeAuthority):
        trusted.append(time_authority.certificate)
    if time_authority is not None and not trusted:
        logger.warning(
            "Time authority %s is configured but no trusted TSA certificates are set; "
            "its timestamp proofs will not verify",
            time_authority.name,
        )

    orchestrator = SealingOrchestrator(
        signer=Signer(provider, registry),
        store=store or InMemoryRecordStore(),
        key_version=settings.signing_key_version,
        time_authority=time_authority,
        sealing_version=settings.sealing_version,
        attestation_attempts=settings.tsa_attempts,
        attestation_backoff=settings.tsa_backoff,
    )
    logger.info(
        "truthseal service ready: %d key version(s), sealing %s, time authority %s",
        len(registry), settings.sealing_version, time_authority.name if time_authority else "none",
    )
    return TruthSealService(orchestrator, orchestrator.store, registry, trusted)
