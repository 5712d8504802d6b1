"""
One-shot import of keys written by earlier releases.

Legacy locations, most authoritative first:
1. Unified settings blob in the durable store ("app-settings")
2. Session-scoped backup of the same blob ("api-keys-backup")
3. Cookies ("anthropic_key", "openai_key", "unsplash_key")

A key found by an earlier strategy is never replaced by a later one.
"""

import json
import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable

from .config import (
    LEGACY_BACKUP_KEY,
    LEGACY_SETTINGS_KEY,
    cookie_names,
    predecessor_of,
)
from .models import ApiKeys, KeyValueStore, Service
from .store import RecordStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MigrationStrategy:
    name: str
    extract: Callable[[], ApiKeys]


def _find_api_keys(blob: Any) -> dict[str, Any]:
    """Locate the ``apiKeys`` mapping inside a legacy settings blob.

    Accepts ``{"data": {"apiKeys": ...}}``, ``{"settings": {"apiKeys": ...}}``,
    a top-level ``{"apiKeys": ...}`` and, for backups, a flat
    ``{"anthropic": ..., "unsplash": ...}`` mapping.
    """
    if not isinstance(blob, dict):
        return {}
    for container in ("data", "settings"):
        nested = blob.get(container)
        if isinstance(nested, dict) and isinstance(nested.get("apiKeys"), dict):
            return nested["apiKeys"]
    if isinstance(blob.get("apiKeys"), dict):
        return blob["apiKeys"]
    return blob


def keys_from_mapping(raw: dict[str, Any]) -> ApiKeys:
    """Map legacy service names onto current services.

    A value stored under a predecessor name is used only when the current
    name has no value, and is recorded under the current name.
    """
    keys: ApiKeys = {}
    for service in Service:
        value = raw.get(service.value)
        if not (isinstance(value, str) and value.strip()):
            predecessor = predecessor_of(service)
            value = raw.get(predecessor) if predecessor else None
        if isinstance(value, str) and value.strip():
            keys[service] = value.strip()
    return keys


def _read_blob(store: KeyValueStore, name: str) -> ApiKeys:
    raw = store.get_item(name)
    if not raw:
        return {}
    try:
        blob = json.loads(raw)
    except json.JSONDecodeError as e:
        logger.warning(f"Ignoring unparseable legacy entry {name!r}: {e}")
        return {}
    return keys_from_mapping(_find_api_keys(blob))


def settings_blob_strategy(
    store: KeyValueStore, name: str = LEGACY_SETTINGS_KEY
) -> MigrationStrategy:
    return MigrationStrategy(f"settings:{name}", lambda: _read_blob(store, name))


def session_backup_strategy(
    store: KeyValueStore, name: str = LEGACY_BACKUP_KEY
) -> MigrationStrategy:
    return MigrationStrategy(f"session:{name}", lambda: _read_blob(store, name))


def cookie_strategy(cookies: KeyValueStore) -> MigrationStrategy:
    def extract() -> ApiKeys:
        keys: ApiKeys = {}
        for service in Service:
            for name in cookie_names(service):
                value = cookies.get_item(name)
                if value and value.strip():
                    keys[service] = value.strip()
                    break
        return keys

    return MigrationStrategy("cookies", extract)


def default_strategies(runtime) -> list[MigrationStrategy]:
    """Strategies for every legacy source the runtime has, in priority order."""
    strategies = []
    if runtime.durable is not None:
        strategies.append(settings_blob_strategy(runtime.durable))
    if runtime.session is not None:
        strategies.append(session_backup_strategy(runtime.session))
    if runtime.cookies is not None:
        strategies.append(cookie_strategy(runtime.cookies))
    return strategies


class Migrator:
    """Runs the legacy strategies at most once and saves what they recover."""

    def __init__(self, strategies: list[MigrationStrategy], store: RecordStore):
        self.strategies = list(strategies)
        self.store = store
        self._lock = threading.Lock()
        self._completed = False

    @property
    def completed(self) -> bool:
        return self._completed

    def collect(self) -> ApiKeys:
        """Run every strategy and merge their findings, first found wins."""
        recovered: ApiKeys = {}
        for strategy in self.strategies:
            try:
                found = strategy.extract()
            except (OSError, ValueError) as e:
                logger.warning(f"Migration source {strategy.name} failed: {e}")
                continue

            for service, value in found.items():
                if service in recovered:
                    continue
                recovered[service] = value
                logger.info(f"Migrated {service.value} key from {strategy.name}")
        return recovered

    def migrate(self) -> ApiKeys:
        """Recover legacy keys and write them through the store once.

        Returns:
            The recovered keys, or an empty map if migration already ran.
        """
        with self._lock:
            if self._completed:
                return {}
            # Marked before running so a failing source is never retried
            self._completed = True

            recovered = self.collect()
            if not recovered:
                logger.info("No legacy keys to migrate")
                return {}

            if self.store.save(recovered):
                logger.info("Migration complete, keys saved")
            else:
                logger.warning("Migration recovered keys but could not save them")
            return recovered
