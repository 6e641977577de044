"""Shared fixtures: keys, registry, time authority, orchestrator, sample content."""

from datetime import datetime, timezone
from pathlib import Path

import pytest

# Add parent src to path for development
import sys
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from truthseal.content import parse_draft
from truthseal.keys import InMemoryKeyProvider, KeyRegistry, generate_key_pair, private_key_pem
from truthseal.seal import SealingOrchestrator
from truthseal.sign import Signer
from truthseal.store import InMemoryRecordStore
from truthseal.timestamp import LocalTimeAuthority


SAMPLE_CONTENT = {
    "id": "r1",
    "ownerId": "u1",
    "title": "T",
    "content": "hello",
    "eventTimestamp": "2024-01-15T14:30:00.000Z",
}

# sha256 of {"content":"hello","eventTimestamp":"2024-01-15T14:30:00.000Z","id":"r1","ownerId":"u1","title":"T"}
SAMPLE_SHA256 = "f89e6387b16a59aa792d01d7b18a2fd4630c8338cd0915104258682b360c17c3"

# sha3-256 of the same canonical bytes
SAMPLE_SHA3_256 = "f1e2fcfdab0c6758ac53d73eb2b388884f938131cdfe145928f3ab7707e466f3"

SEALED_AT = datetime(2024, 1, 15, 14, 31, 0, 123000, tzinfo=timezone.utc)


class FixedClock:
    def __init__(self, value: datetime = SEALED_AT):
        self.value = value

    def __call__(self) -> datetime:
        return self.value


@pytest.fixture
def sample_content() -> dict:
    return dict(SAMPLE_CONTENT)


@pytest.fixture
def key_pair():
    return generate_key_pair("key-1")


@pytest.fixture
def registry(key_pair) -> KeyRegistry:
    _, material = key_pair
    return KeyRegistry([material])


@pytest.fixture
def provider(key_pair) -> InMemoryKeyProvider:
    private_key, _ = key_pair
    return InMemoryKeyProvider({"key-1": private_key_pem(private_key)})


@pytest.fixture
def signer(provider, registry) -> Signer:
    return Signer(provider, registry)


@pytest.fixture
def store() -> InMemoryRecordStore:
    return InMemoryRecordStore()


@pytest.fixture
def tsa() -> LocalTimeAuthority:
    return LocalTimeAuthority.generate()


@pytest.fixture
def orchestrator(signer, store) -> SealingOrchestrator:
    return SealingOrchestrator(signer, store, key_version="key-1", clock=FixedClock())


@pytest.fixture
def attesting_orchestrator(signer, store, tsa) -> SealingOrchestrator:
    return SealingOrchestrator(
        signer, store, key_version="key-1", time_authority=tsa, sleep=lambda _: None
    )


@pytest.fixture
def sealed_record(orchestrator, sample_content):
    return orchestrator.seal(parse_draft(sample_content, draft_id="d1"))


@pytest.fixture
def attested_record(attesting_orchestrator, sample_content):
    return attesting_orchestrator.seal(parse_draft(sample_content, draft_id="d1"))
