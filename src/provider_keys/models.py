import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Protocol
from abc import abstractmethod

from .errors import CorruptedStorage


class Service(str, Enum):
    ANTHROPIC = "anthropic"
    UNSPLASH = "unsplash"

    @classmethod
    def parse(cls, name: "str | Service | None") -> "Service | None":
        """Return the service for an identifier, or None if it is unknown."""
        if isinstance(name, cls):
            return name
        try:
            return cls(str(name).strip().lower())
        except ValueError:
            return None


ApiKeys = dict[Service, str]


class KeySource(Enum):
    OVERRIDE = "override"
    STORED = "stored"
    ENVIRONMENT = "environment"
    NONE = "none"


@dataclass(frozen=True)
class ResolvedKey:
    service: Service
    value: str
    source: KeySource

    def __bool__(self) -> bool:
        return bool(self.value)


class ValidationReason(Enum):
    OK = "ok"
    FORMAT_INVALID = "format_invalid"
    UNAUTHORIZED = "unauthorized"
    NETWORK_ERROR = "network_error"
    RATE_LIMITED = "rate_limited"
    UNKNOWN_ERROR = "unknown_error"


@dataclass(frozen=True)
class ValidationResult:
    valid: bool
    reason: ValidationReason
    service: Service
    message: str = ""
    status_code: int | None = None

    def __post_init__(self):
        if self.valid != (self.reason is ValidationReason.OK):
            raise ValueError(
                f"valid={self.valid} is inconsistent with reason={self.reason.name}"
            )

    @classmethod
    def ok(cls, service: Service, status_code: int | None = None) -> "ValidationResult":
        return cls(
            True,
            ValidationReason.OK,
            service,
            f"{service.value} API key is valid",
            status_code,
        )

    @classmethod
    def failed(
        cls,
        service: Service,
        reason: ValidationReason,
        message: str,
        status_code: int | None = None,
    ) -> "ValidationResult":
        return cls(False, reason, service, message, status_code)


def _parse_timestamp(value: Any) -> datetime | None:
    if not isinstance(value, str):
        return None
    try:
        # fromisoformat() only accepts a trailing "Z" from 3.11 on
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


@dataclass(frozen=True)
class StorageRecord:
    """The persisted key set.

    Serialized as ``{"version": 1, "anthropic": "...", "unsplash": "...",
    "updatedAt": "<ISO-8601>"}``. Optional service fields are omitted when
    the service has no key.
    """

    version: int
    keys: ApiKeys = field(default_factory=dict)
    updated_at: datetime | None = None
    corrupted: bool = False

    @classmethod
    def empty(cls, version: int = 0, corrupted: bool = False) -> "StorageRecord":
        return cls(version=version, keys={}, corrupted=corrupted)

    @classmethod
    def from_json(cls, text: str) -> "StorageRecord":
        """Parse a stored record, tolerating missing and unknown fields.

        Raises:
            CorruptedStorage: If the text is not a JSON object.
        """
        try:
            data = json.loads(text)
        except (TypeError, json.JSONDecodeError) as e:
            raise CorruptedStorage(f"Stored record is not valid JSON: {e}") from e
        if not isinstance(data, dict):
            raise CorruptedStorage(
                f"Stored record must be a JSON object, got {type(data).__name__}"
            )

        version = data.get("version")
        if isinstance(version, bool) or not isinstance(version, int):
            version = 0

        keys = {
            service: value.strip()
            for service in Service
            if isinstance(value := data.get(service.value), str) and value.strip()
        }
        return cls(
            version=version,
            keys=keys,
            updated_at=_parse_timestamp(data.get("updatedAt")),
        )

    def to_json(self) -> str:
        data: dict[str, Any] = {"version": self.version}
        for service in Service:
            if value := self.keys.get(service):
                data[service.value] = value
        updated_at = self.updated_at or datetime.now(timezone.utc)
        data["updatedAt"] = updated_at.isoformat()
        return json.dumps(data)


class KeyValueStore(Protocol):
    """A string key-value store such as a local settings file or session cache."""

    @abstractmethod
    def get_item(self, name: str) -> str | None: ...

    @abstractmethod
    def set_item(self, name: str, value: str) -> None: ...

    @abstractmethod
    def remove_item(self, name: str) -> None: ...
