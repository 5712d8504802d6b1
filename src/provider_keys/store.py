import logging
from datetime import datetime, timezone

from .backends.cipher import KeyCipher, PlainCipher
from .config import STORAGE_KEY, STORAGE_VERSION
from .errors import CorruptedStorage
from .models import ApiKeys, KeyValueStore, StorageRecord

logger = logging.getLogger(__name__)


class RecordStore:
    """Versioned persistence of the canonical key record.

    Pure CRUD over a KeyValueStore: the record is read and written as a
    whole, values are wrapped by the cipher on the way in and unwrapped on
    the way out.
    """

    def __init__(
        self,
        backend: KeyValueStore,
        cipher: KeyCipher | None = None,
        storage_key: str = STORAGE_KEY,
    ):
        self.backend = backend
        self.cipher = cipher or PlainCipher()
        self.storage_key = storage_key
        self._version = STORAGE_VERSION

    @property
    def version(self) -> int:
        """Version that the next write will carry."""
        return self._version

    def load(self) -> StorageRecord | None:
        """Load the stored record.

        Returns:
            None if nothing is stored, otherwise the record. A malformed
            record is returned empty with ``corrupted`` set.
        """
        try:
            raw = self.backend.get_item(self.storage_key)
        except OSError as e:
            logger.error(f"Failed to read stored keys: {e}")
            return None
        if not raw:
            return None

        try:
            record = StorageRecord.from_json(raw)
        except CorruptedStorage as e:
            logger.warning(f"Stored keys are corrupted, starting empty: {e}")
            return StorageRecord.empty(corrupted=True)

        self._version = max(self._version, record.version)

        keys: ApiKeys = {}
        for service, wrapped in record.keys.items():
            try:
                keys[service] = self.cipher.unwrap(wrapped)
            except CorruptedStorage as e:
                logger.warning(f"Dropping stored {service.value} key: {e}")
        return StorageRecord(
            version=record.version,
            keys={s: v.strip() for s, v in keys.items() if v.strip()},
            updated_at=record.updated_at,
        )

    def save(self, keys: ApiKeys) -> bool:
        """Persist the whole key set.

        Returns:
            True if the record was written, False if the write failed.
        """
        try:
            record = StorageRecord(
                version=self._version,
                keys={s: self.cipher.wrap(v) for s, v in keys.items() if v},
                updated_at=datetime.now(timezone.utc),
            )
            self.backend.set_item(self.storage_key, record.to_json())
        except OSError as e:
            # PersistenceFailure from our own backends, plain OSError from others
            logger.error(f"Failed to persist keys: {e}")
            return False

        logger.info(f"Keys saved to storage ({len(record.keys)} service(s))")
        return True
