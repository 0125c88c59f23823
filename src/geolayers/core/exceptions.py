"""
Custom exceptions for the environmental layer subsystem.
"""


class GeoLayersError(Exception):
    """Base exception for all geolayers errors."""

    retryable = False

    def __init__(self, message: str, details: str | None = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def __str__(self) -> str:
        if self.details:
            return f"{self.message}: {self.details}"
        return self.message


class ConfigurationError(GeoLayersError):
    """Raised when the configuration is missing, unreadable or invalid."""

    def __init__(self, source: str, details: str | None = None):
        super().__init__(f"Invalid configuration: {source}", details=details)
        self.source = source


class DisabledServiceError(GeoLayersError):
    """Raised when a provider is switched off in the configuration."""

    def __init__(self, service: str):
        super().__init__(
            f"{service.capitalize()} service is disabled",
            details="Enable the provider in the configuration file.",
        )
        self.service = service


class RateLimitExceeded(GeoLayersError):
    """Raised when a provider's call budget for the current window is spent."""

    retryable = True

    def __init__(
        self,
        service: str,
        retry_after: int | None = None,
    ):
        details = None
        if retry_after:
            details = f"Rate limit resets in {retry_after} seconds."
        super().__init__(f"Rate limit exceeded for {service}", details=details)
        self.service = service
        self.retry_after = retry_after


class UpstreamTransportError(GeoLayersError):
    """Raised when a provider request fails on the network or with an error status."""

    retryable = True

    def __init__(
        self,
        service: str,
        url: str,
        status_code: int | None = None,
        details: str | None = None,
    ):
        message = f"Failed to fetch {service} data from {url}"
        if status_code:
            message += f" (status {status_code})"
        super().__init__(message, details=details)
        self.service = service
        self.url = url
        self.status_code = status_code


class UpstreamFormatError(GeoLayersError):
    """Raised when a provider response cannot be decoded or normalized."""

    retryable = True

    def __init__(self, service: str, details: str | None = None):
        super().__init__(f"Invalid response from {service} API", details=details)
        self.service = service


class ValidationError(GeoLayersError):
    """Raised when request parameters fail validation."""

    def __init__(self, field: str, value: str, reason: str):
        super().__init__(
            f"Validation failed for {field}",
            details=f"Value '{value}' is invalid: {reason}",
        )
        self.field = field
        self.value = value
        self.reason = reason


class UnsupportedOperation(GeoLayersError):
    """Raised when a layer does not provide the requested operation."""

    def __init__(self, layer: str, operation: str):
        super().__init__(f"{operation} is not available for layer: {layer}")
        self.layer = layer
        self.operation = operation


class NoDataError(GeoLayersError):
    """Raised when no stored layer data covers the requested area."""

    def __init__(self, layer: str):
        super().__init__(f"No {layer} data available for this area")
        self.layer = layer


class CacheError(GeoLayersError):
    """Raised when a cache operation fails."""

    def __init__(self, operation: str, details: str | None = None):
        super().__init__(f"Cache error during {operation}", details=details)
        self.operation = operation


class RepositoryError(GeoLayersError):
    """Raised when a layer repository operation fails."""

    def __init__(self, operation: str, details: str | None = None):
        super().__init__(f"Layer repository error during {operation}", details=details)
        self.operation = operation
