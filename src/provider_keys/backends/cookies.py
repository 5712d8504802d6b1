"""Read-only access to cookies left behind by older releases."""

import logging
from http.cookiejar import LoadError, MozillaCookieJar
from http.cookies import CookieError, SimpleCookie
from pathlib import Path
from urllib.parse import unquote

from ..errors import PersistenceFailure

logger = logging.getLogger(__name__)


class CookieStore:
    """KeyValueStore view over a set of cookies.

    Cookies are only ever read (during migration); writes are refused.
    """

    def __init__(self, cookies: dict[str, str] | None = None):
        self.cookies = {name: unquote(value) for name, value in (cookies or {}).items()}

    @classmethod
    def from_header(cls, header: str) -> "CookieStore":
        """Build a store from a ``Cookie:`` header value such as ``a=1; b=2``."""
        jar = SimpleCookie()
        try:
            jar.load(header or "")
        except CookieError as e:
            logger.warning(f"Ignoring malformed cookie header: {e}")
            return cls()
        return cls({name: morsel.value for name, morsel in jar.items()})

    @classmethod
    def from_file(cls, path: str | Path) -> "CookieStore":
        """Build a store from a Netscape/Mozilla format cookie jar file."""
        jar = MozillaCookieJar(str(Path(path).expanduser()))
        try:
            jar.load(ignore_discard=True, ignore_expires=True)
        except (OSError, LoadError) as e:
            logger.warning(f"Ignoring unreadable cookie file {path}: {e}")
            return cls()
        return cls({cookie.name: cookie.value or "" for cookie in jar})

    def get_item(self, name: str) -> str | None:
        return self.cookies.get(name)

    def set_item(self, name: str, value: str) -> None:
        raise PersistenceFailure("Cookie store is read-only")

    def remove_item(self, name: str) -> None:
        raise PersistenceFailure("Cookie store is read-only")
