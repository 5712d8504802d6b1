from pathlib import Path

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

from .models import Service

DEFAULT_DATA_DIR = Path.home() / ".config/provider-keys"

# Name of the canonical record inside the durable store
STORAGE_KEY = "api-keys"
STORAGE_VERSION = 1

# Locations written by earlier releases
LEGACY_SETTINGS_KEY = "app-settings"
LEGACY_BACKUP_KEY = "api-keys-backup"

# Services that were renamed, mapped to the name they used to have
DEPRECATED_NAMES: dict[Service, str] = {
    Service.ANTHROPIC: "openai",
}

ENV_VARS: dict[Service, list[str]] = {
    Service.ANTHROPIC: ["ANTHROPIC_API_KEY"],
    Service.UNSPLASH: ["NEXT_PUBLIC_UNSPLASH_ACCESS_KEY", "UNSPLASH_ACCESS_KEY"],
}


def predecessor_of(service: Service) -> str | None:
    """Return the name a service was known by before it was renamed."""
    return DEPRECATED_NAMES.get(service)


def env_var_names(service: Service) -> list[str]:
    """Environment variables consulted for a service, most specific first."""
    names = list(ENV_VARS.get(service, [f"{service.value.upper()}_API_KEY"]))
    if predecessor := predecessor_of(service):
        names.append(f"{predecessor.upper()}_API_KEY")
    return list(dict.fromkeys(names))  # Dedupe preserving order


def cookie_names(service: Service) -> list[str]:
    """Cookie names that may hold a service's key, current name first."""
    names = [f"{service.value}_key"]
    if predecessor := predecessor_of(service):
        names.append(f"{predecessor}_key")
    return names


class Settings(BaseSettings):
    """Runtime settings for the key manager.

    Environment variables:
        PROVIDER_KEYS_DATA_DIR: Directory holding the durable key store
        PROVIDER_KEYS_SESSION_FILE: Optional session backup store to migrate from
        PROVIDER_KEYS_COOKIE_FILE: Optional Netscape cookie jar to migrate from
        PROVIDER_KEYS_CLIENT: Set to false for server processes
        PROVIDER_KEYS_MASTER_KEY: Fernet key used to wrap stored keys
    """

    model_config = SettingsConfigDict(
        env_prefix="PROVIDER_KEYS_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    data_dir: Path = Field(default=DEFAULT_DATA_DIR, description="Durable store directory")
    session_file: Path | None = Field(default=None, description="Session backup store")
    cookie_file: Path | None = Field(default=None, description="Cookie jar to migrate from")
    client: bool = Field(default=True, description="Client-capable runtime")
    env_fallback: bool = Field(
        default=True,
        description="Use environment variables when no stored key exists",
    )
    validation_timeout: float = Field(default=10.0, gt=0, description="Seconds")
    anthropic_base_url: str = "https://api.anthropic.com"
    anthropic_version: str = "2023-06-01"
    unsplash_base_url: str = "https://api.unsplash.com"
    master_key: SecretStr | None = Field(default=None, description="Fernet master key")

    @property
    def storage_file(self) -> Path:
        return self.data_dir.expanduser() / "storage.json"
