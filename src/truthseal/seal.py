"""
Record sealing for truthseal.

The orchestrator performs the one-time DRAFTING -> SEALED transition:

    canonicalize -> digest -> sign -> attest (best effort) -> persist

A draft seals at most once. Concurrent attempts on the same draft are
serialized by a per-draft lock (never a global one) and the loser gets
``AlreadySealed``. If signing fails nothing is persisted; if attestation
fails the record is sealed without a timestamp proof and marked
``UNAVAILABLE``.
"""

import logging
import threading
from collections.abc import Callable
from datetime import datetime, timezone
from enum import Enum

from .canonical import canonicalize
from .content import Draft
from .digest import digest
from .errors import AlreadySealed, InvalidContent, KeyUnresolvable, SigningUnavailable
from .logging_config import audit_log
from .record import RecordStatus, SealedRecord
from .sign import Signer
from .store import RecordStore
from .timestamp import AttestationStatus, TimeAuthority, attest_with_retry
from .versions import DEFAULT_SEALING_VERSION, get_suite


logger = logging.getLogger(__name__)


class DraftState(str, Enum):
    DRAFTING = "DRAFTING"
    SEALED = "SEALED"


class KeyedLocks:
    """
    One lock per key, created on demand.

    The registry lock only guards the dict; work happens under the per-key
    lock so unrelated keys never contend.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}
        self._users: dict[str, int] = {}

    def acquire(self, key: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.setdefault(key, threading.Lock())
            self._users[key] = self._users.get(key, 0) + 1
        lock.acquire()
        return lock

    def release(self, key: str, lock: threading.Lock) -> None:
        lock.release()
        with self._guard:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]


def _utc_now() -> datetime:
    now = datetime.now(timezone.utc)
    return now.replace(microsecond=(now.microsecond // 1000) * 1000)


class SealingOrchestrator:
    """
    Composes canonicalizer, digest engine, signer and attestor into sealed records.
    """

    def __init__(
        self,
        signer: Signer,
        store: RecordStore,
        key_version: str | None = None,
        time_authority: TimeAuthority | None = None,
        sealing_version: str = DEFAULT_SEALING_VERSION,
        attestation_attempts: int = 3,
        attestation_backoff: float = 0.5,
        clock: Callable[[], datetime] = _utc_now,
        sleep: Callable[[float], None] | None = None,
    ):
        get_suite(sealing_version)
        self._signer = signer
        self._store = store
        self._key_version = key_version
        self._time_authority = time_authority
        self._sealing_version = sealing_version
        self._attestation_attempts = attestation_attempts
        self._attestation_backoff = attestation_backoff
        self._clock = clock
        self._sleep = sleep
        self._draft_locks = KeyedLocks()
        self._record_locks = KeyedLocks()

    @property
    def sealing_version(self) -> str:
        return self._sealing_version

    @property
    def store(self) -> RecordStore:
        return self._store

    def current_key_version(self) -> str:
        """Configured signing key version, else the latest registered one."""
        if self._key_version is not None:
            return self._key_version
        return self._signer.registry.latest().version

    def state(self, draft_id: str) -> DraftState:
        if self._store.find_by_draft(draft_id) is not None:
            return DraftState.SEALED
        return DraftState.DRAFTING

    def seal(self, draft: Draft) -> SealedRecord:
        """
        Seal a draft.

        Args:
            draft: Validated draft content

        Returns:
            The persisted sealed record

        Raises:
            AlreadySealed: If the draft has already been sealed
            InvalidContent: If the content cannot be canonicalized
            SigningUnavailable: If the signing key cannot be used
        """
        lock = self._draft_locks.acquire(draft.draft_id)
        try:
            if self._store.find_by_draft(draft.draft_id) is not None:
                audit_log.seal_rejected(draft.draft_id, "draft already sealed", "AlreadySealed")
                raise AlreadySealed(draft.draft_id)
            return self._seal_locked(draft)
        finally:
            self._draft_locks.release(draft.draft_id, lock)

    def _seal_locked(self, draft: Draft) -> SealedRecord:
        content = draft.content
        try:
            canonical = canonicalize(content)
            content_digest = digest(canonical, self._sealing_version)
        except InvalidContent as exc:
            audit_log.seal_rejected(draft.draft_id, str(exc), "InvalidContent")
            raise

        try:
            key_version = self.current_key_version()
        except KeyUnresolvable as exc:
            audit_log.seal_rejected(draft.draft_id, "no signing key is registered", "SigningUnavailable")
            raise SigningUnavailable(self._key_version or "latest", "no signing key is registered") from exc

        try:
            signature = self._signer.sign(content_digest, key_version, self._sealing_version)
        except SigningUnavailable as exc:
            audit_log.seal_rejected(draft.draft_id, exc.reason, "SigningUnavailable")
            raise
        except Exception as exc:
            # Any unexpected signer fault is still a signing failure to the caller
            audit_log.seal_rejected(draft.draft_id, str(exc), "SigningUnavailable")
            raise SigningUnavailable(key_version, str(exc)) from exc

        timestamp_proof = None
        attestation_status = AttestationStatus.NOT_REQUESTED
        if self._time_authority is not None:
            kwargs = {"sleep": self._sleep} if self._sleep is not None else {}
            outcome = attest_with_retry(
                self._time_authority,
                content_digest,
                max_attempts=self._attestation_attempts,
                backoff=self._attestation_backoff,
                **kwargs,
            )
            if outcome.obtained:
                timestamp_proof = outcome.proof.encode()
                attestation_status = AttestationStatus.OBTAINED
            else:
                attestation_status = AttestationStatus.UNAVAILABLE
                audit_log.attestation_degraded(content.id, content_digest.hex(), outcome.attempts, outcome.error)

        record_lock = self._record_locks.acquire(content.id)
        try:
            record = SealedRecord(
                content=content,
                content_hash=content_digest.hex(),
                signature=signature,
                sealing_version=self._sealing_version,
                public_key_version=key_version,
                sealed_timestamp=self._clock(),
                version=self._store.latest_version(content.id) + 1,
                status=RecordStatus.SEALED,
                timestamp_proof=timestamp_proof,
                attestation_status=attestation_status,
                draft_id=draft.draft_id,
            )
            self._store.save(record)
        finally:
            self._record_locks.release(content.id, record_lock)

        audit_log.record_sealed(
            record.id,
            record.version,
            record.content_hash,
            key_version,
            self._sealing_version,
            attestation_status.value,
        )
        logger.info("Sealed draft %s as record %s v%d", draft.draft_id, record.id, record.version)
        return record
