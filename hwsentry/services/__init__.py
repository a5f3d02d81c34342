"""
Service layer infrastructure - resilience patterns around the extraction service.

Provides:
- RetryPolicy / with_retry: Bounded exponential backoff
- CircuitBreaker: Prevents cascading failures
- SlidingWindowRateLimiter: Per-client admission control
- ScanCache: Latest result and history per SKU
- DistributedLock: Prevents duplicate concurrent scans of a SKU
- AnalyticsRecorder: Fire-and-forget outcome counters
- ScanOrchestrator: Combines all of the above into one scan
"""

from hwsentry.services.errors import (
    ServiceError,
    InvalidSkuError,
    RateLimitError,
    UpstreamError,
    TransientUpstreamError,
    PermanentUpstreamError,
    RequestTimeoutError,
    MalformedResponseError,
    CircuitOpenError,
    StoreUnavailableError,
    LockContentionError,
    InProgressNoDataError,
    UpstreamUnavailableError,
)
from hwsentry.services.retry import RetryPolicy, with_retry, is_retryable
from hwsentry.services.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitState,
)
from hwsentry.services.rate_limiter import SlidingWindowRateLimiter
from hwsentry.services.kv_store import KeyValueStore, MemoryKeyValueStore, Pipeline
from hwsentry.services.cache import ScanCache
from hwsentry.services.lock import DistributedLock, LockLease
from hwsentry.services.change_detector import detect_changes
from hwsentry.services.analytics import AnalyticsRecorder
from hwsentry.services.extraction import ExtractionClient, Extractor
from hwsentry.services.orchestrator import ScanOrchestrator

__all__ = [
    # Errors
    "ServiceError",
    "InvalidSkuError",
    "RateLimitError",
    "UpstreamError",
    "TransientUpstreamError",
    "PermanentUpstreamError",
    "RequestTimeoutError",
    "MalformedResponseError",
    "CircuitOpenError",
    "StoreUnavailableError",
    "LockContentionError",
    "InProgressNoDataError",
    "UpstreamUnavailableError",
    # Retry
    "RetryPolicy",
    "with_retry",
    "is_retryable",
    # Circuit Breaker
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitState",
    # Rate Limiter
    "SlidingWindowRateLimiter",
    # Store, cache and lock
    "KeyValueStore",
    "MemoryKeyValueStore",
    "Pipeline",
    "ScanCache",
    "DistributedLock",
    "LockLease",
    # Change detection
    "detect_changes",
    # Analytics
    "AnalyticsRecorder",
    # Extraction
    "ExtractionClient",
    "Extractor",
    # Orchestration
    "ScanOrchestrator",
]
