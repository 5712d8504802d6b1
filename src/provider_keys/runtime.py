from dataclasses import dataclass, field

from .backends import CookieStore, FernetCipher, JsonFileStore, KeyCipher, PlainCipher
from .config import Settings
from .models import KeyValueStore


@dataclass(frozen=True)
class Runtime:
    """Storage capabilities of the running process.

    A client-capable runtime has a durable store of its own; a server
    process has none and only sees its environment.
    """

    durable: KeyValueStore | None = None
    session: KeyValueStore | None = None
    cookies: KeyValueStore | None = None
    cipher: KeyCipher = field(default_factory=PlainCipher)

    @property
    def client_capable(self) -> bool:
        return self.durable is not None

    @classmethod
    def client(
        cls,
        durable: KeyValueStore,
        session: KeyValueStore | None = None,
        cookies: KeyValueStore | None = None,
        cipher: KeyCipher | None = None,
    ) -> "Runtime":
        return cls(durable, session, cookies, cipher or PlainCipher())

    @classmethod
    def server(cls) -> "Runtime":
        return cls()

    @classmethod
    def from_settings(cls, settings: Settings) -> "Runtime":
        if not settings.client:
            return cls.server()

        cipher: KeyCipher = PlainCipher()
        if settings.master_key is not None:
            cipher = FernetCipher(settings.master_key.get_secret_value())

        return cls.client(
            durable=JsonFileStore(settings.storage_file),
            session=JsonFileStore(settings.session_file) if settings.session_file else None,
            cookies=CookieStore.from_file(settings.cookie_file) if settings.cookie_file else None,
            cipher=cipher,
        )
