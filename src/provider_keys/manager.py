"""
Key manager: the single owner of the active API key set.

Composes the record store, legacy migration, resolution, validation and
change notification behind one object. In a client-capable runtime keys are
loaded (and legacy keys migrated) once; in a server process the manager
never initializes and every read falls through to the environment.
"""

import logging
import threading
from enum import Enum
from typing import Mapping

from .config import Settings
from .migration import Migrator, default_strategies
from .models import ApiKeys, ResolvedKey, Service, ValidationResult
from .notifier import Listener, Notifier, Subscription
from .resolver import Resolver
from .runtime import Runtime
from .store import RecordStore
from .validation import LiveValidator, validate_format

logger = logging.getLogger(__name__)


class State(Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"


class KeyManager:
    def __init__(
        self,
        runtime: Runtime,
        validator: LiveValidator | None = None,
        environ: Mapping[str, str] | None = None,
        env_fallback: bool = True,
        migrator: Migrator | None = None,
    ):
        self.runtime = runtime
        self.validator = validator or LiveValidator()
        self.store = RecordStore(runtime.durable, runtime.cipher) if runtime.durable else None
        self.migrator = migrator
        if self.migrator is None and self.store is not None:
            self.migrator = Migrator(default_strategies(runtime), self.store)
        self.resolver = Resolver(
            self._stored_keys,
            environ=environ,
            client_capable=runtime.client_capable,
            env_fallback=env_fallback,
        )
        self.notifier = Notifier()

        self._keys: ApiKeys = {}
        self._state = State.UNINITIALIZED
        self._init_lock = threading.Lock()
        self._lock = threading.RLock()

    @property
    def state(self) -> State:
        return self._state

    @property
    def client_capable(self) -> bool:
        return self.runtime.client_capable

    def _stored_keys(self) -> ApiKeys:
        with self._lock:
            return dict(self._keys)

    def init(self) -> None:
        """Load stored keys and migrate legacy ones. Safe to call repeatedly."""
        if not self.client_capable:
            logger.debug("No client storage available, using environment keys only")
            return

        with self._init_lock:
            if self._state is not State.UNINITIALIZED:
                return
            self._state = State.INITIALIZING
            logger.info("Initializing key manager...")

            try:
                record = self.store.load()
                keys = dict(record.keys) if record else {}

                if (record is None or record.corrupted) and self.migrator is not None:
                    logger.info("No usable stored keys, attempting migration...")
                    for service, value in self.migrator.migrate().items():
                        keys.setdefault(service, value)

                with self._lock:
                    self._keys = keys
            finally:
                self._state = State.READY

            loaded = ", ".join(s.value for s in keys) or "none"
            logger.info(f"Key manager initialized (keys: {loaded})")

    def _ensure_ready(self) -> bool:
        if not self.client_capable:
            return False
        if self._state is not State.READY:
            self.init()
        return True

    def _parse(self, service: Service | str) -> Service | None:
        parsed = Service.parse(service)
        if parsed is None:
            logger.warning(f"Unknown service: {service!r}")
        return parsed

    def _commit(self, description: str, mutate) -> bool:
        """Apply a mutation, persist it, then notify listeners once.

        The broadcast runs under the same lock as the mutation so listeners
        receive snapshots in commit order.
        """
        with self._lock:
            mutate(self._keys)
            saved = self.store.save(self._keys)
            if not saved:
                logger.warning(f"{description}: kept in memory but not persisted")
            self.notifier.broadcast(self._keys)
        return saved

    def resolve(self, service: Service | str, override: str | None = None) -> ResolvedKey:
        """Resolve a key and report where it came from.

        Raises:
            ValueError: If the service is unknown.
        """
        parsed = Service.parse(service)
        if parsed is None:
            raise ValueError(f"Unknown service: {service!r}")
        self._ensure_ready()
        return self.resolver.resolve(parsed, override)

    def get(self, service: Service | str, override: str | None = None) -> str:
        """Return the effective key for a service, or "" if there is none."""
        if self._parse(service) is None:
            return ""
        return self.resolve(service, override).value

    def get_all(self) -> ApiKeys:
        """Return a copy of the keys held by the manager."""
        self._ensure_ready()
        return self._stored_keys()

    def set(self, service: Service | str, key: str) -> bool:
        """Store a key for a service. An empty key removes it."""
        if not self._ensure_ready():
            logger.warning(f"Refusing to store {service} key: no client storage")
            return False
        parsed = self._parse(service)
        if parsed is None:
            return False

        value = (key or "").strip()
        logger.info(f"Setting key for {parsed.value} (length {len(value)})")

        def mutate(keys: ApiKeys) -> None:
            if value:
                keys[parsed] = value
            else:
                keys.pop(parsed, None)

        return self._commit(f"Key for {parsed.value}", mutate)

    def set_all(self, patch: Mapping[Service | str, str]) -> bool:
        """Merge several keys at once, notifying listeners a single time."""
        if not self._ensure_ready():
            logger.warning("Refusing to store keys: no client storage")
            return False

        updates: dict[Service, str] = {}
        for name, key in patch.items():
            parsed = self._parse(name)
            if parsed is not None:
                updates[parsed] = (key or "").strip()
        logger.info(f"Setting keys for {', '.join(s.value for s in updates) or 'no services'}")

        def mutate(keys: ApiKeys) -> None:
            for service, value in updates.items():
                if value:
                    keys[service] = value
                else:
                    keys.pop(service, None)

        return self._commit("Keys", mutate)

    def remove(self, service: Service | str) -> bool:
        if not self._ensure_ready():
            logger.warning(f"Refusing to remove {service} key: no client storage")
            return False
        parsed = self._parse(service)
        if parsed is None:
            return False

        logger.info(f"Removing key for {parsed.value}")
        return self._commit(
            f"Removal of {parsed.value} key", lambda keys: keys.pop(parsed, None)
        )

    def clear(self) -> bool:
        if not self._ensure_ready():
            logger.warning("Refusing to clear keys: no client storage")
            return False

        logger.info("Clearing all keys")
        return self._commit("Clearing keys", lambda keys: keys.clear())

    def validate_format(self, service: Service | str, key: str | None) -> bool:
        return validate_format(service, key)

    async def validate_live(
        self,
        service: Service | str,
        key: str | None = None,
        timeout: float | None = None,
    ) -> ValidationResult:
        """Validate a key against the provider, defaulting to the resolved key.

        Raises:
            ValueError: If the service is unknown.
        """
        parsed = Service.parse(service)
        if parsed is None:
            raise ValueError(f"Unknown service: {service!r}")
        candidate = key if key is not None else self.get(parsed)
        return await self.validator.validate(parsed, candidate or "", timeout)

    def subscribe(self, listener: Listener) -> Subscription:
        return self.notifier.subscribe(listener)

    def unsubscribe(self, subscription: Subscription) -> None:
        self.notifier.unsubscribe(subscription)


def create_key_manager(
    settings: Settings | None = None,
    environ: Mapping[str, str] | None = None,
) -> KeyManager:
    """Build a key manager for this process from settings.

    The manager is initialized straight away when the process is a client;
    server processes get an uninitialized manager backed by the environment.
    """
    settings = settings or Settings()
    manager = KeyManager(
        Runtime.from_settings(settings),
        validator=LiveValidator(
            timeout=settings.validation_timeout,
            anthropic_base_url=settings.anthropic_base_url,
            anthropic_version=settings.anthropic_version,
            unsplash_base_url=settings.unsplash_base_url,
        ),
        environ=environ,
        env_fallback=settings.env_fallback,
    )
    if manager.client_capable:
        manager.init()
    return manager
