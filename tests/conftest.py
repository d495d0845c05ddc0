"""
Pytest configuration and fixtures for envelope encryption tests.
"""

from __future__ import annotations

from typing import List

import pytest

import kms_envelope.utils
from kms_envelope import (
    DataKey,
    EnvelopeManager,
    InMemoryKeyService,
    InMemoryObjectStore,
    KeyService,
)

TEST_KEY_ID = "test-key"
TEST_AAD_TAG = "test-aad"


class SpyKeyService(KeyService):
    """Key service wrapper that records every call it forwards."""

    def __init__(self, inner: KeyService) -> None:
        self.inner = inner
        self.generate_calls = 0
        self.decrypt_calls = 0

    async def generate_data_key(self, key_id: str, key_spec: str = "AES_256") -> DataKey:
        self.generate_calls += 1
        return await self.inner.generate_data_key(key_id, key_spec)

    async def decrypt(
        self, key_id: str, ciphertext: bytes, algorithm: str = "SYMMETRIC_DEFAULT"
    ) -> bytes:
        self.decrypt_calls += 1
        return await self.inner.decrypt(key_id, ciphertext, algorithm)

    def classify_retryable(self, error: BaseException) -> bool:
        return self.inner.classify_retryable(error)


@pytest.fixture
async def key_service() -> InMemoryKeyService:
    """Create an in-memory key service holding TEST_KEY_ID."""
    service = InMemoryKeyService()
    await service.create_key(TEST_KEY_ID)
    return service


@pytest.fixture
def spy_key_service(key_service: InMemoryKeyService) -> SpyKeyService:
    return SpyKeyService(key_service)


@pytest.fixture
def envelope(key_service: InMemoryKeyService) -> EnvelopeManager:
    """Create an envelope manager over the in-memory key service."""
    return EnvelopeManager(key_service, TEST_KEY_ID, TEST_AAD_TAG)


@pytest.fixture
def object_store() -> InMemoryObjectStore:
    return InMemoryObjectStore()


@pytest.fixture
def tracked_tmp_paths(tmp_path, monkeypatch) -> List[str]:
    """
    Route scoped temp files into the test's tmp_path and record them.

    Lets a test assert that every intermediate file is gone afterwards.
    """
    created: List[str] = []
    counter = iter(range(1_000_000))

    def fake_tmp_path(n: int = 10, suffix: str = "") -> str:
        path = str(tmp_path / f"scoped-{next(counter)}{suffix}")
        created.append(path)
        return path

    monkeypatch.setattr(kms_envelope.utils, "tmp_path", fake_tmp_path)
    return created
