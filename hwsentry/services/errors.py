"""
Service layer exceptions.
"""


class ServiceError(Exception):
    """Base exception for service layer errors."""

    def __init__(self, message: str, service_id: str | None = None):
        self.service_id = service_id
        super().__init__(message)


class InvalidSkuError(ServiceError):
    """SKU is not in the catalog. Never retried, no fallback."""

    def __init__(self, sku: str):
        self.sku = sku
        super().__init__(f"Unknown SKU '{sku}'")


class RateLimitError(ServiceError):
    """Rate limit exceeded."""

    def __init__(self, client_id: str, retry_after: float | None = None):
        self.client_id = client_id
        self.retry_after = retry_after
        msg = f"Rate limit exceeded for client '{client_id}'"
        if retry_after:
            msg += f", retry after {retry_after:.1f}s"
        super().__init__(msg)


class UpstreamError(ServiceError):
    """A call to the extraction service failed."""

    kind = "upstream_error"


class TransientUpstreamError(UpstreamError):
    """Network, timeout or 5xx-class failure. Eligible for retry."""

    pass


class RequestTimeoutError(TransientUpstreamError):
    """Request timed out."""

    kind = "timeout"

    def __init__(self, service_id: str, timeout: float):
        self.timeout = timeout
        super().__init__(
            f"Request to service '{service_id}' timed out after {timeout}s",
            service_id=service_id,
        )


class UpstreamRunError(TransientUpstreamError):
    """The extraction run itself reported a failure."""

    pass


class PermanentUpstreamError(UpstreamError):
    """4xx-class failure. Not retried, still counts against the breaker."""

    def __init__(
        self,
        message: str,
        service_id: str | None = None,
        status_code: int | None = None,
    ):
        self.status_code = status_code
        super().__init__(message, service_id=service_id)


class MalformedResponseError(PermanentUpstreamError):
    """Upstream answered, but not with a result we accept."""

    kind = "malformed_response"


class CircuitOpenError(ServiceError):
    """Circuit breaker is open, request blocked."""

    kind = "circuit_open"

    def __init__(self, service_id: str, reset_after_seconds: float):
        self.reset_after_seconds = reset_after_seconds
        super().__init__(
            f"Circuit breaker open for service '{service_id}', "
            f"retry after {reset_after_seconds:.1f}s",
            service_id=service_id,
        )


class LockContentionError(ServiceError):
    """Another scan for the same SKU is in flight."""

    def __init__(self, sku: str):
        self.sku = sku
        super().__init__(f"Scan already in progress for SKU '{sku}'")


class StoreUnavailableError(ServiceError):
    """Key-value store operation failed."""

    pass


class InProgressNoDataError(ServiceError):
    """A scan is running for this SKU and nothing is cached yet."""

    def __init__(self, sku: str):
        self.sku = sku
        super().__init__(
            f"Scan in progress for SKU '{sku}' and no cached data is available yet"
        )


class UpstreamUnavailableError(ServiceError):
    """Every vendor failed and there is no cached data to fall back on."""

    def __init__(self, sku: str, errors: list | None = None):
        self.sku = sku
        self.errors = errors or []
        super().__init__(
            f"Upstream unavailable for SKU '{sku}' and no cached data to serve"
        )
