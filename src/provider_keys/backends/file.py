"""JSON file backed key-value store."""

import json
import logging
import os
import tempfile
from pathlib import Path

from ..errors import PersistenceFailure

logger = logging.getLogger(__name__)


class JsonFileStore:
    """KeyValueStore holding every item in one JSON object on disk.

    This is the durable store of a client: it survives restarts and is
    private to the user running the client.
    """

    def __init__(self, path: str | Path):
        """Initialize JsonFileStore.

        Args:
            path: Path to the JSON file. Parent directories are created on
                the first write.
        """
        self.path = Path(path).expanduser()

    def _read_items(self) -> dict[str, str]:
        """Read and parse the store file."""
        if not self.path.exists():
            return {}

        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
            logger.warning(f"Ignoring unreadable store file {self.path}: {e}")
            return {}

        if not isinstance(data, dict):
            logger.warning(f"Ignoring store file {self.path}: not a JSON object")
            return {}
        return {k: v for k, v in data.items() if isinstance(v, str)}

    def _write_items(self, items: dict[str, str]) -> None:
        """Write the store file atomically."""
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp"
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(items, f, indent=2)
                os.chmod(tmp_name, 0o600)
                os.replace(tmp_name, self.path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as e:
            raise PersistenceFailure(f"Failed to write {self.path}: {e}") from e

    def get_item(self, name: str) -> str | None:
        return self._read_items().get(name)

    def set_item(self, name: str, value: str) -> None:
        items = self._read_items()
        items[name] = value
        self._write_items(items)

    def remove_item(self, name: str) -> None:
        items = self._read_items()
        if items.pop(name, None) is not None:
            self._write_items(items)

    def items(self) -> dict[str, str]:
        """Return every stored item."""
        return self._read_items()
