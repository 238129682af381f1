"""Errors raised by the provider layer."""

from __future__ import annotations


class ProviderError(Exception):
    """Base class for whole-call failures of the chat gateway."""


class ProviderHTTPError(ProviderError):
    """A backend answered with a non-success HTTP status."""

    def __init__(self, provider: str, status_code: int, body: str):
        super().__init__(f"{provider} error: {status_code} - {body}")
        self.provider = provider
        self.status_code = status_code
        self.body = body


class CapabilityError(ProviderError):
    """The selected provider cannot perform the requested operation."""


class NoProviderError(ProviderError):
    """No provider was specified and none is active."""
