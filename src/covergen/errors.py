from __future__ import annotations

import math
from typing import Literal

LLMErrorCode = Literal[
    "NETWORK_ERROR",
    "INVALID_API_KEY",
    "RATE_LIMIT",
    "TIMEOUT",
    "INVALID_RESPONSE",
]


class CovergenError(Exception):
    """Base class for every error raised by covergen."""


class InputValidationError(CovergenError):
    def __init__(self, message: str, errors: list[tuple[str, str]] | None = None):
        super().__init__(message)
        self.errors = errors or []


class ProviderNotConfigured(CovergenError):
    def __init__(self, message: str = "No LLM provider configured. Save provider settings first."):
        super().__init__(message)


class ProviderNotFound(CovergenError, KeyError):
    def __init__(self, provider_id: str, available: list[str]):
        self.provider_id = provider_id
        self.available = available
        listed = ", ".join(available) if available else "none"
        super().__init__(f"Provider '{provider_id}' not found. Available providers: {listed}")

    def __str__(self) -> str:
        return self.args[0]


class RateLimited(CovergenError):
    def __init__(self, wait_seconds: float):
        self.wait_seconds = max(1, math.ceil(wait_seconds))
        super().__init__(
            f"Rate limit exceeded. Please wait {self.wait_seconds} seconds before trying again."
        )


class LLMError(CovergenError):
    def __init__(self, message: str, code: LLMErrorCode, provider: str):
        super().__init__(message)
        self.code = code
        self.provider = provider

    def __repr__(self) -> str:
        return f"LLMError(code={self.code!r}, provider={self.provider!r}, message={str(self)!r})"


class ResponseParseError(LLMError):
    def __init__(self, message: str, provider: str = "parser"):
        super().__init__(message, "INVALID_RESPONSE", provider)


class InvalidTransition(CovergenError, ValueError):
    pass


class NotFoundError(CovergenError, LookupError):
    pass


class StorageError(CovergenError):
    pass


class ExtractionError(CovergenError):
    def __init__(self, message: str, *, platform: str = "", url: str = ""):
        super().__init__(message)
        self.platform = platform
        self.url = url


class NoMatchingExtractor(ExtractionError):
    pass


class ExtractionFailed(ExtractionError):
    def __init__(self, field: str, *, platform: str = "", url: str = ""):
        self.field = field
        super().__init__(f"Could not extract {field}", platform=platform, url=url)


class ExportError(CovergenError):
    pass
