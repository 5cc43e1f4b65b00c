"""
Metrics Layer Exceptions - Error taxonomy for the resilience layer.

Every failure inside the layer is one of these types. None of them is
allowed to reach the presentation layer: category failures are absorbed
into fallback bundles, aborted requests are discarded silently.
"""

from datetime import datetime
from typing import Any, Optional


class MetricsLayerError(Exception):
    """Base exception for all metrics layer errors."""

    def __init__(
        self,
        message: str,
        source_name: Optional[str] = None,
        original_error: Optional[Exception] = None,
        context: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.source_name = source_name
        self.original_error = original_error
        self.context = context or {}
        self.timestamp = datetime.utcnow()

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "source_name": self.source_name,
            "original_error": str(self.original_error) if self.original_error else None,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
        }

    def __str__(self) -> str:
        parts = [f"{self.__class__.__name__}: {self.message}"]
        if self.source_name:
            parts.append(f"[source={self.source_name}]")
        if self.original_error:
            parts.append(f"(caused by: {self.original_error})")
        return " ".join(parts)


class NetworkError(MetricsLayerError):
    """Transport or HTTP failure talking to an upstream provider. Retryable."""

    def __init__(
        self,
        message: str,
        source_name: Optional[str] = None,
        status_code: Optional[int] = None,
        response_body: Optional[str] = None,
        request_url: Optional[str] = None,
        original_error: Optional[Exception] = None,
        context: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, source_name, original_error, context)
        self.status_code = status_code
        self.response_body = response_body
        self.request_url = request_url

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        data = super().to_dict()
        data.update({
            "status_code": self.status_code,
            "response_body": self.response_body,
            "request_url": self.request_url,
        })
        return data

    def is_rate_limited(self) -> bool:
        """Check if error is due to rate limiting."""
        return self.status_code == 429

    def is_server_error(self) -> bool:
        """Check if error is server-side."""
        return self.status_code is not None and 500 <= self.status_code < 600

    def is_client_error(self) -> bool:
        """Check if error is client-side."""
        return self.status_code is not None and 400 <= self.status_code < 500


class ValidationError(MetricsLayerError):
    """
    Upstream payload is missing required fields or has malformed values.

    Never retried: a malformed upstream contract does not heal on retry.
    """

    def __init__(
        self,
        message: str,
        category: Optional[str] = None,
        missing_fields: Optional[list[str]] = None,
        source_name: Optional[str] = None,
        original_error: Optional[Exception] = None,
        context: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, source_name, original_error, context)
        self.category = category
        self.missing_fields = missing_fields or []

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        data = super().to_dict()
        data.update({
            "category": self.category,
            "missing_fields": self.missing_fields,
        })
        return data


class AbortError(MetricsLayerError):
    """Operation was cancelled. Discarded silently by the token owner."""

    def __init__(
        self,
        message: str = "Operation aborted",
        source_name: Optional[str] = None,
        context: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, source_name, None, context)


class ExhaustedRetryError(MetricsLayerError):
    """All retry attempts failed. Carries the last underlying error."""

    def __init__(
        self,
        message: str,
        attempts: int,
        last_error: Optional[Exception] = None,
        source_name: Optional[str] = None,
        context: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, source_name, last_error, context)
        self.attempts = attempts
        self.last_error = last_error

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        data = super().to_dict()
        data["attempts"] = self.attempts
        return data


class ConfigurationError(MetricsLayerError):
    """Invalid metrics layer configuration."""

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        original_error: Optional[Exception] = None,
        context: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, None, original_error, context)
        self.config_key = config_key

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        data = super().to_dict()
        data["config_key"] = self.config_key
        return data
