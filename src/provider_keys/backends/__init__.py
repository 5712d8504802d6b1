from .file import JsonFileStore
from .memory import MemoryStore
from .cookies import CookieStore
from .cipher import KeyCipher, PlainCipher, FernetCipher

__all__ = [
    "JsonFileStore",
    "MemoryStore",
    "CookieStore",
    "KeyCipher",
    "PlainCipher",
    "FernetCipher",
]
