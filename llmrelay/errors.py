"""
Exception hierarchy for llmrelay.

Adapters and helpers raise these; the dispatcher catches them and returns a
ResponseEnvelope with `error` set instead of letting them cross the public
call boundary.
"""

from typing import Any, Optional


class LLMRelayError(Exception):
    """Base exception for all llmrelay errors."""

    pass


class NetworkError(LLMRelayError):
    """Connection failure, or a non-2xx response without a parseable error body."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ProviderError(LLMRelayError):
    """Structured error payload returned by the provider API."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        payload: Optional[Any] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.payload = payload


class ParseError(LLMRelayError):
    """A stream line or response body could not be decoded. Recoverable inside streams."""

    pass


class SafetyBlockError(LLMRelayError):
    """The provider refused to answer because of content filtering."""

    def __init__(self, reason: str):
        super().__init__(f"Safety filter: {reason}")
        self.reason = reason


class AbortError(LLMRelayError):
    """The call was cancelled. Partial output is still a valid result."""

    pass


class InvalidMessageError(LLMRelayError, ValueError):
    """A message could not be normalized (e.g. unknown role)."""

    pass


class UnsupportedDocumentError(LLMRelayError):
    """The text extractor cannot read this kind of document."""

    pass
