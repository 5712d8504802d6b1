"""Shared helpers for provider_keys tests."""

import json

import pytest

from provider_keys.backends import MemoryStore
from provider_keys.errors import PersistenceFailure

ANTHROPIC_KEY = "sk-ant-REDACTED"
OTHER_ANTHROPIC_KEY = "sk-ant-REDACTED"
UNSPLASH_KEY = "unsplash_access_key_1234567890"


def record_json(version: int = 1, **keys: str) -> str:
    """Serialized canonical record as an earlier run would have written it."""
    return json.dumps({"version": version, **keys, "updatedAt": "2024-01-01T00:00:00Z"})


def legacy_blob(**keys: str) -> str:
    return json.dumps({"data": {"apiKeys": keys}})


class CountingStore(MemoryStore):
    """MemoryStore that records every write."""

    def __init__(self, initial: dict[str, str] | None = None):
        super().__init__(initial)
        self.writes: list[tuple[str, str]] = []

    def set_item(self, name: str, value: str) -> None:
        self.writes.append((name, value))
        super().set_item(name, value)


class FailingStore(MemoryStore):
    """MemoryStore whose writes always fail."""

    def set_item(self, name: str, value: str) -> None:
        raise PersistenceFailure("disk full")


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep real credentials and settings out of the tests."""
    for name in (
        "ANTHROPIC_API_KEY",
        "OPENAI_API_KEY",
        "UNSPLASH_ACCESS_KEY",
        "NEXT_PUBLIC_UNSPLASH_ACCESS_KEY",
        "PROVIDER_KEYS_DATA_DIR",
        "PROVIDER_KEYS_SESSION_FILE",
        "PROVIDER_KEYS_COOKIE_FILE",
        "PROVIDER_KEYS_CLIENT",
        "PROVIDER_KEYS_MASTER_KEY",
        "PROVIDER_KEYS_ENV_FALLBACK",
        "PROVIDER_KEYS_VALIDATION_TIMEOUT",
    ):
        monkeypatch.delenv(name, raising=False)
