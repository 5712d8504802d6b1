"""
Effective key resolution.

For a service, the first non-empty value wins:
1. Key passed explicitly for this call
2. Key held by the key manager (stored or migrated)
3. Environment variables, the service's own before its predecessor's
"""

import logging
import os
from typing import Callable, Mapping

from .config import env_var_names
from .models import ApiKeys, KeySource, ResolvedKey, Service

logger = logging.getLogger(__name__)


class Resolver:
    def __init__(
        self,
        stored_keys: Callable[[], ApiKeys],
        environ: Mapping[str, str] | None = None,
        client_capable: bool = True,
        env_fallback: bool = True,
    ):
        """
        Initialize the resolver.

        Args:
            stored_keys: Returns the current in-memory key map
            environ: Environment to read fallbacks from (default os.environ)
            client_capable: Whether the process has its own key storage
            env_fallback: Whether a client may fall back to the environment
        """
        self.stored_keys = stored_keys
        self.environ = os.environ if environ is None else environ
        self.client_capable = client_capable
        self.env_fallback = env_fallback

    def from_environment(self, service: Service) -> str:
        for name in env_var_names(service):
            value = self.environ.get(name, "").strip()
            if value:
                logger.debug(f"Using environment variable {name} for {service.value}")
                return value
        return ""

    def resolve(self, service: Service, override: str | None = None) -> ResolvedKey:
        if override and override.strip():
            return ResolvedKey(service, override.strip(), KeySource.OVERRIDE)

        if self.client_capable:
            stored = self.stored_keys().get(service, "")
            if stored:
                return ResolvedKey(service, stored, KeySource.STORED)

        if not self.client_capable or self.env_fallback:
            value = self.from_environment(service)
            if value:
                return ResolvedKey(service, value, KeySource.ENVIRONMENT)

        return ResolvedKey(service, "", KeySource.NONE)
