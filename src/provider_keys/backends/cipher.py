"""
Wrapping of key values before they are persisted.

The durable store only ever sees wrapped values:
- PlainCipher leaves values untouched
- FernetCipher encrypts them with a master key
"""

import logging
from typing import Protocol

from ..errors import CorruptedStorage

logger = logging.getLogger(__name__)


class KeyCipher(Protocol):
    def wrap(self, value: str) -> str: ...

    def unwrap(self, value: str) -> str: ...


class PlainCipher:
    """Identity wrapping, for stores that are already private to the user."""

    def wrap(self, value: str) -> str:
        return value

    def unwrap(self, value: str) -> str:
        return value


class FernetCipher:
    """
    Fernet symmetric encryption of key values.

    The master key must be a url-safe base64 encoded 32-byte key, as produced
    by ``Fernet.generate_key()``.
    """

    def __init__(self, master_key: str | bytes):
        from cryptography.fernet import Fernet

        if isinstance(master_key, str):
            master_key = master_key.encode()
        try:
            self._fernet = Fernet(master_key)
        except (ValueError, TypeError) as e:
            raise ValueError(f"Invalid master key format: {e}") from e

    def wrap(self, value: str) -> str:
        return self._fernet.encrypt(value.encode()).decode()

    def unwrap(self, value: str) -> str:
        from cryptography.fernet import InvalidToken

        try:
            return self._fernet.decrypt(value.encode()).decode()
        except (InvalidToken, UnicodeDecodeError) as e:
            raise CorruptedStorage("Stored key could not be decrypted") from e
