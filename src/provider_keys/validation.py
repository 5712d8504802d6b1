"""
API key validation.

Two independent checks per service:
- validate_format(): a pattern match on the trimmed key, no I/O
- LiveValidator.validate(): one authenticated request to the provider

The live check always runs the format check first and skips the request
when it fails.
"""

import asyncio
import logging
import re
from typing import Any

import httpx

from .models import Service, ValidationReason, ValidationResult

logger = logging.getLogger(__name__)

KEY_PATTERNS: dict[Service, re.Pattern[str]] = {
    Service.ANTHROPIC: re.compile(r"sk-ant-[A-Za-z0-9_-]{20,}"),
    Service.UNSPLASH: re.compile(r"[A-Za-z0-9_-]{20,}"),
}

DEFAULT_TIMEOUT = 10.0


def validate_format(service: Service | str, key: Any) -> bool:
    """Check a key against its service's pattern. Never raises."""
    if not isinstance(key, str) or not key:
        return False
    parsed = Service.parse(service)
    pattern = KEY_PATTERNS.get(parsed) if parsed else None
    if pattern is None:
        return False
    return pattern.fullmatch(key.strip()) is not None


def mask_key(key: str) -> str:
    """Return a preview of a key that is safe to show or log."""
    if not key:
        return ""
    if len(key) <= 12:
        return "*" * len(key)
    return f"{key[:7]}...{key[-4:]}"


def classify_status(status_code: int) -> ValidationReason:
    if 200 <= status_code < 300:
        return ValidationReason.OK
    if status_code in (401, 403):
        return ValidationReason.UNAUTHORIZED
    if status_code == 429:
        return ValidationReason.RATE_LIMITED
    return ValidationReason.UNKNOWN_ERROR


class LiveValidator:
    """Checks keys against the providers' APIs."""

    def __init__(
        self,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
        anthropic_base_url: str = "https://api.anthropic.com",
        anthropic_version: str = "2023-06-01",
        unsplash_base_url: str = "https://api.unsplash.com",
    ):
        """
        Initialize the validator.

        Args:
            timeout: Default seconds allowed for one validation
            transport: Optional httpx transport (used by tests)
            anthropic_base_url: Anthropic API root
            anthropic_version: Value of the anthropic-version header
            unsplash_base_url: Unsplash API root
        """
        self.timeout = timeout
        self.transport = transport
        self.anthropic_base_url = anthropic_base_url.rstrip("/")
        self.anthropic_version = anthropic_version
        self.unsplash_base_url = unsplash_base_url.rstrip("/")

    def build_request(self, service: Service, key: str) -> httpx.Request:
        """Build the minimal authenticated request for a service."""
        if service is Service.ANTHROPIC:
            return httpx.Request(
                "GET",
                f"{self.anthropic_base_url}/v1/models",
                params={"limit": 1},
                headers={
                    "x-api-key": key,
                    "anthropic-version": self.anthropic_version,
                },
            )
        if service is Service.UNSPLASH:
            return httpx.Request(
                "GET",
                f"{self.unsplash_base_url}/photos/random",
                headers={
                    "Authorization": f"Client-ID {key}",
                    "Accept-Version": "v1",
                },
            )
        raise ValueError(f"No live check for service {service!r}")

    async def _send(self, request: httpx.Request, timeout: float) -> httpx.Response:
        async with httpx.AsyncClient(transport=self.transport, timeout=timeout) as client:
            return await client.send(request)

    async def validate(
        self, service: Service, key: str, timeout: float | None = None
    ) -> ValidationResult:
        """
        Validate a key, with exactly one request when the format is valid.

        Args:
            service: Service the key belongs to
            key: Candidate key
            timeout: Seconds before giving up (default: self.timeout)

        Returns:
            ValidationResult describing the outcome
        """
        if not validate_format(service, key):
            return ValidationResult.failed(
                service,
                ValidationReason.FORMAT_INVALID,
                f"Invalid {service.value} key format",
            )

        timeout = self.timeout if timeout is None else timeout
        request = self.build_request(service, key.strip())

        try:
            response = await asyncio.wait_for(self._send(request, timeout), timeout)
        except (asyncio.TimeoutError, httpx.TimeoutException):
            logger.warning(f"Validation of {service.value} key timed out after {timeout}s")
            return ValidationResult.failed(
                service, ValidationReason.NETWORK_ERROR, "Validation timed out"
            )
        except httpx.TransportError as e:
            logger.warning(f"Network error validating {service.value} key: {e}")
            return ValidationResult.failed(
                service,
                ValidationReason.NETWORK_ERROR,
                "Network error during validation",
            )
        except httpx.HTTPError as e:
            logger.error(f"Validation error for {service.value}: {e}")
            return ValidationResult.failed(
                service, ValidationReason.UNKNOWN_ERROR, f"Validation failed: {e}"
            )

        reason = classify_status(response.status_code)
        logger.info(f"{service.value} key validation returned HTTP {response.status_code}")
        if reason is ValidationReason.OK:
            return ValidationResult.ok(service, response.status_code)

        messages = {
            ValidationReason.UNAUTHORIZED: "Invalid API key",
            ValidationReason.RATE_LIMITED: "Rate limited by provider",
        }
        return ValidationResult.failed(
            service,
            reason,
            messages.get(reason, f"API returned {response.status_code}"),
            response.status_code,
        )
