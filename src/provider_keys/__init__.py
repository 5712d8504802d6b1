from .models import (
    ApiKeys,
    KeySource,
    KeyValueStore,
    ResolvedKey,
    Service,
    StorageRecord,
    ValidationReason,
    ValidationResult,
)
from .errors import CorruptedStorage, KeyManagerError, PersistenceFailure
from .config import Settings, env_var_names
from .store import RecordStore
from .migration import Migrator, MigrationStrategy
from .resolver import Resolver
from .validation import LiveValidator, validate_format, mask_key
from .notifier import Notifier, Subscription
from .runtime import Runtime
from .manager import KeyManager, State, create_key_manager

__all__ = [
    "ApiKeys",
    "KeySource",
    "KeyValueStore",
    "ResolvedKey",
    "Service",
    "StorageRecord",
    "ValidationReason",
    "ValidationResult",
    "CorruptedStorage",
    "KeyManagerError",
    "PersistenceFailure",
    "Settings",
    "env_var_names",
    "RecordStore",
    "Migrator",
    "MigrationStrategy",
    "Resolver",
    "LiveValidator",
    "validate_format",
    "mask_key",
    "Notifier",
    "Subscription",
    "Runtime",
    "KeyManager",
    "State",
    "create_key_manager",
]
