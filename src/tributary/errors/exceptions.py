"""Custom exception classes for the Tributary sync engine."""


class TributaryError(Exception):
    """Base exception for Tributary.

    ``recoverable`` marks errors where retrying later (or skipping the item)
    is the expected response, as opposed to errors needing user action.
    """

    def __init__(
        self,
        code: str,
        message: str,
        details=None,
        status_code: int = 500,
        recoverable: bool = False,
    ):
        self.code = code
        self.message = message
        self.details = details
        self.status_code = status_code
        self.recoverable = recoverable
        super().__init__(message)


class ValidationError(TributaryError):
    """Request validation failure."""

    def __init__(self, message: str, details=None):
        super().__init__("VALIDATION_ERROR", message, details, status_code=400)


class NotFoundError(TributaryError):
    """Resource not found."""

    def __init__(self, resource: str, resource_id: str):
        super().__init__(
            "NOT_FOUND",
            f"{resource} '{resource_id}' not found",
            status_code=404,
        )


class AuthenticationError(TributaryError):
    """Caller identity missing."""

    def __init__(self, message: str = "Authentication required"):
        super().__init__("AUTHENTICATION_ERROR", message, status_code=401)


class ConflictError(TributaryError):
    """Resource state conflict."""

    def __init__(self, message: str):
        super().__init__("CONFLICT", message, status_code=409)


class NotConnectedError(TributaryError):
    """The user has no integration row for the provider."""

    def __init__(self, provider: str):
        super().__init__(
            "NOT_CONNECTED",
            f"Integration '{provider}' is not connected",
            details={"provider": provider},
            status_code=404,
        )


class TokenRefreshError(TributaryError):
    """Refresh token invalid or revoked. The user must reconnect."""

    def __init__(self, provider: str, reason: str = ""):
        message = f"Token refresh failed for {provider}. Please reconnect."
        if reason:
            message = f"{message} ({reason})"
        super().__init__(
            "TOKEN_REFRESH_FAILED",
            message,
            details={"provider": provider},
            status_code=401,
        )


class ProviderApiError(TributaryError):
    """Upstream provider call failed after retries."""

    def __init__(self, provider: str, message: str, upstream_status: int | None = None):
        super().__init__(
            "PROVIDER_API_ERROR",
            message,
            details={"provider": provider, "upstream_status": upstream_status},
            status_code=502,
            recoverable=True,
        )
        self.upstream_status = upstream_status


class ItemProcessingError(TributaryError):
    """A single item failed in dedup/pipeline. Never fails the whole run."""

    def __init__(self, item_id: str, message: str):
        super().__init__(
            "ITEM_PROCESSING_FAILED",
            message,
            details={"item_id": item_id},
            status_code=500,
            recoverable=True,
        )
        self.item_id = item_id


class SyncInProgressError(TributaryError):
    """Another run already holds the integration."""

    def __init__(self, provider: str):
        super().__init__(
            "SYNC_IN_PROGRESS",
            f"A sync for '{provider}' is already running",
            details={"provider": provider},
            status_code=409,
            recoverable=True,
        )


class WebhookSignatureError(TributaryError):
    """Webhook signature missing or invalid."""

    def __init__(self, provider: str):
        super().__init__(
            "INVALID_SIGNATURE",
            f"Invalid webhook signature for '{provider}'",
            status_code=401,
        )


class UnsupportedOperationError(TributaryError):
    """Adapter does not implement the requested capability."""

    def __init__(self, provider: str, operation: str):
        super().__init__(
            "UNSUPPORTED_OPERATION",
            f"{provider} does not support {operation}",
            status_code=400,
        )
