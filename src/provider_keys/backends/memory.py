class MemoryStore:
    """KeyValueStore kept in process memory, used as the session-scoped store."""

    def __init__(self, initial: dict[str, str] | None = None):
        self.data: dict[str, str] = dict(initial or {})

    def get_item(self, name: str) -> str | None:
        return self.data.get(name)

    def set_item(self, name: str, value: str) -> None:
        self.data[name] = value

    def remove_item(self, name: str) -> None:
        self.data.pop(name, None)
