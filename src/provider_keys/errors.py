"""Exceptions raised inside provider_keys.

None of these escape the public KeyManager methods; they are caught at the
store and migration boundaries and turned into return values.
"""


class KeyManagerError(Exception):
    """Base class for provider_keys errors."""


class CorruptedStorage(KeyManagerError, ValueError):
    """A persisted record or wrapped key could not be decoded."""


class PersistenceFailure(KeyManagerError, OSError):
    """A write to durable storage could not be completed."""
