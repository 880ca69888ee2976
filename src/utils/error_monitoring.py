"""
Error classification and operation monitoring for the aggregation service.

Provider and AI failures are expected here: they are recorded, classified and
turned into ProviderError entries for the response envelope, never re-raised.
"""

import asyncio
import json
import logging
import time
import traceback
from collections import Counter, defaultdict, deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Deque, Dict, List, Optional, Tuple

import aiohttp

from src.models.content import ProviderError
from src.services.http_client import ProviderRequestError


PATTERN_THRESHOLD = 3


class ErrorSeverity(Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class ServiceType(Enum):
    """How much a failing service hurts a response."""
    CRITICAL = "critical"    # no response without it
    IMPORTANT = "important"  # response degrades
    OPTIONAL = "optional"    # another provider covers for it


class ErrorKind(Enum):
    AUTH = "auth"
    RATE_LIMIT = "rate_limit"
    TIMEOUT = "timeout"
    CONNECTION = "connection"
    BAD_RESPONSE = "bad_response"
    OTHER = "other"


@dataclass
class ErrorContext:
    """One recorded failure."""
    error_type: str
    error_message: str
    kind: str
    service: str
    operation: str
    severity: str
    timestamp: datetime
    stack_trace: str = ""
    code: Optional[str] = None
    recovery_action: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ServiceMetric:
    """Timing of one service operation."""
    service: str
    operation: str
    timestamp: datetime
    duration_ms: float
    success: bool
    error: Optional[str] = None


SERVICE_CRITICALITY: Dict[str, ServiceType] = {
    "aggregator": ServiceType.CRITICAL,
    "ai_service": ServiceType.IMPORTANT,
    "pipeline": ServiceType.IMPORTANT,
    "ranking": ServiceType.IMPORTANT,
    "cache": ServiceType.IMPORTANT,
    "newsapi": ServiceType.OPTIONAL,
    "gnews": ServiceType.OPTIONAL,
    "guardian": ServiceType.OPTIONAL,
}

RECOVERY_SUGGESTIONS: Dict[ErrorKind, str] = {
    ErrorKind.AUTH: "Authentication failure. Verify the provider API key in the environment.",
    ErrorKind.RATE_LIMIT: (
        "Rate limit encountered. Lower the provider requests-per-second setting "
        "or move the provider later in the priority order."
    ),
    ErrorKind.TIMEOUT: "Operation timed out. Increase PROVIDER_TIMEOUT or check provider latency.",
    ErrorKind.CONNECTION: "Check network connectivity and the provider status page, then retry shortly.",
    ErrorKind.BAD_RESPONSE: "The provider returned an unexpected payload. Check for API changes.",
}

# (kind, criticality) -> severity; missing pairs fall back to the service default
SEVERITY_TABLE: Dict[Tuple[ErrorKind, ServiceType], ErrorSeverity] = {
    (ErrorKind.AUTH, ServiceType.CRITICAL): ErrorSeverity.CRITICAL,
    (ErrorKind.AUTH, ServiceType.IMPORTANT): ErrorSeverity.HIGH,
    (ErrorKind.AUTH, ServiceType.OPTIONAL): ErrorSeverity.HIGH,
    (ErrorKind.CONNECTION, ServiceType.CRITICAL): ErrorSeverity.CRITICAL,
    (ErrorKind.RATE_LIMIT, ServiceType.CRITICAL): ErrorSeverity.HIGH,
    (ErrorKind.RATE_LIMIT, ServiceType.IMPORTANT): ErrorSeverity.HIGH,
    (ErrorKind.RATE_LIMIT, ServiceType.OPTIONAL): ErrorSeverity.MEDIUM,
}

DEFAULT_SEVERITY: Dict[ServiceType, ErrorSeverity] = {
    ServiceType.CRITICAL: ErrorSeverity.HIGH,
    ServiceType.IMPORTANT: ErrorSeverity.MEDIUM,
    ServiceType.OPTIONAL: ErrorSeverity.LOW,
}


def classify_kind(error: Exception) -> ErrorKind:
    """Bucket an exception by cause, using status and code when the HTTP layer set them."""
    if isinstance(error, ProviderRequestError):
        if error.status in (401, 403) or error.code == "MISSING_API_KEY":
            return ErrorKind.AUTH
        if error.status == 429:
            return ErrorKind.RATE_LIMIT
        if error.code == "TIMEOUT":
            return ErrorKind.TIMEOUT
        if error.code == "NO_RESPONSE":
            return ErrorKind.CONNECTION
        if error.code == "INVALID_RESPONSE":
            return ErrorKind.BAD_RESPONSE
    if isinstance(error, asyncio.TimeoutError):
        return ErrorKind.TIMEOUT
    if isinstance(error, (aiohttp.ClientConnectionError, ConnectionError)):
        return ErrorKind.CONNECTION

    message = str(error).lower()
    if "api key" in message or "unauthorized" in message or "auth" in message:
        return ErrorKind.AUTH
    if ("rate" in message and "limit" in message) or "too many requests" in message:
        return ErrorKind.RATE_LIMIT
    if "timeout" in message or "timed out" in message:
        return ErrorKind.TIMEOUT
    if "no response" in message:
        return ErrorKind.CONNECTION
    return ErrorKind.OTHER


class ErrorHandler:
    """
    Records and classifies recoverable errors.

    Nothing here raises: callers decide whether to degrade. A bounded history
    makes repeated failures of one provider show up as a pattern.
    """

    def __init__(self, history_size: int = 100) -> None:
        self.service_criticality: Dict[str, ServiceType] = dict(SERVICE_CRITICALITY)
        self.error_history: Deque[ErrorContext] = deque(maxlen=history_size)
        self.error_counts: Counter = Counter()
        self.logger = logging.getLogger(__name__)

    def handle_error(
        self,
        error: Exception,
        service: str,
        operation: str,
        context: Optional[Dict[str, Any]] = None,
    ) -> ErrorContext:
        kind = classify_kind(error)
        severity = self.classify_severity(error, service)
        error_context = ErrorContext(
            error_type=type(error).__name__,
            error_message=str(error) or type(error).__name__,
            kind=kind.value,
            service=service,
            operation=operation,
            severity=severity.value,
            timestamp=datetime.now(timezone.utc),
            stack_trace="".join(traceback.format_exception(type(error), error, error.__traceback__)),
            code=getattr(error, "code", None),
            recovery_action=RECOVERY_SUGGESTIONS.get(kind),
            metadata=context or {},
        )

        self.error_history.append(error_context)
        self.error_counts[error_context.error_type] += 1

        log = self.logger.error if severity in (ErrorSeverity.CRITICAL, ErrorSeverity.HIGH) else self.logger.warning
        log(json.dumps({
            "event": "error",
            "service": service,
            "operation": operation,
            "severity": severity.value,
            "kind": kind.value,
            "code": error_context.code,
            "error_type": error_context.error_type,
            "error_message": error_context.error_message,
            "timestamp": error_context.timestamp.isoformat(),
        }))
        return error_context

    def to_provider_error(self, error: Exception, source: str, operation: str = "fetch") -> ProviderError:
        """Record ``error`` and convert it into a ProviderError for the response envelope."""
        self.handle_error(error, source, operation)

        if isinstance(error, ProviderRequestError):
            return ProviderError(source=source, message=error.message, code=error.code, retryable=True)
        if isinstance(error, asyncio.TimeoutError):
            return ProviderError(source=source, message=f"{source} timed out", code="TIMEOUT", retryable=True)
        return ProviderError(source=source, message=str(error) or type(error).__name__, code="ERROR", retryable=True)

    def classify_severity(self, error: Exception, service: str) -> ErrorSeverity:
        service_type = self.service_criticality.get(service, ServiceType.OPTIONAL)
        kind = classify_kind(error)
        return SEVERITY_TABLE.get((kind, service_type), DEFAULT_SEVERITY[service_type])

    def get_recovery_suggestion(self, error: Exception) -> Optional[str]:
        return RECOVERY_SUGGESTIONS.get(classify_kind(error))

    def detect_error_patterns(self) -> List[str]:
        """Services that failed the same way at least PATTERN_THRESHOLD times in recent history."""
        counts = Counter((ctx.service, ctx.error_type) for ctx in self.error_history)
        return [
            f"{service} failed {count} times recently ({error_type})"
            for (service, error_type), count in counts.items()
            if count >= PATTERN_THRESHOLD
        ]

    def get_error_statistics(self) -> Dict[str, Any]:
        by_service = Counter(ctx.service for ctx in self.error_history)
        by_kind = Counter(ctx.kind for ctx in self.error_history)
        return {
            "total_errors": sum(self.error_counts.values()),
            "error_types": dict(self.error_counts),
            "by_service": dict(by_service),
            "by_kind": dict(by_kind),
            "patterns": self.detect_error_patterns(),
        }


class MonitoringService:
    """In-process operation timings and request counters."""

    def __init__(self, max_metrics: int = 10000):
        self.metrics: Deque[ServiceMetric] = deque(maxlen=max_metrics)
        self.operation_timings: Dict[str, Deque[float]] = defaultdict(lambda: deque(maxlen=max_metrics))
        self.total_requests = 0
        self.logger = logging.getLogger(__name__)

    def record_request(self) -> None:
        self.total_requests += 1

    def record_timing(
        self,
        service: str,
        operation: str,
        duration_ms: float,
        success: bool = True,
        error: Optional[str] = None,
    ) -> None:
        self.metrics.append(ServiceMetric(
            service=service,
            operation=operation,
            timestamp=datetime.now(timezone.utc),
            duration_ms=duration_ms,
            success=success,
            error=error,
        ))
        self.operation_timings[operation].append(duration_ms)

    async def track_async_operation(self, service: str, operation: str, func: Callable, *args, **kwargs) -> Any:
        start = time.perf_counter()
        try:
            result = await func(*args, **kwargs)
        except Exception as e:
            self.record_timing(service, operation, (time.perf_counter() - start) * 1000.0, False, str(e))
            raise
        self.record_timing(service, operation, (time.perf_counter() - start) * 1000.0)
        return result

    def average_duration(self, operations: Optional[List[str]] = None) -> float:
        """Mean duration in ms over ``operations`` (all operations when None)."""
        values = [
            duration
            for operation, timings in self.operation_timings.items()
            if operations is None or operation in operations
            for duration in timings
        ]
        return sum(values) / len(values) if values else 0.0

    def get_performance_summary(self, time_window: timedelta = timedelta(hours=24)) -> Dict[str, Any]:
        cutoff = datetime.now(timezone.utc) - time_window
        recent = [m for m in self.metrics if m.timestamp >= cutoff]

        services: Dict[str, Dict[str, int]] = {}
        for metric in recent:
            entry = services.setdefault(metric.service, {"count": 0, "errors": 0})
            entry["count"] += 1
            entry["errors"] += 0 if metric.success else 1

        successes = sum(1 for m in recent if m.success)
        return {
            "total_operations": len(recent),
            "success_rate": round(successes / len(recent) * 100.0, 2) if recent else 0.0,
            "services": services,
        }

    def get_operation_percentiles(
        self, operation: str, percentiles: Tuple[int, ...] = (50, 90, 95, 99)
    ) -> Dict[int, float]:
        """Linear-interpolated duration percentiles for one operation."""
        data = sorted(self.operation_timings.get(operation, []))
        if not data:
            return {p: 0.0 for p in percentiles}

        result: Dict[int, float] = {}
        for pct in percentiles:
            position = (len(data) - 1) * pct / 100.0
            lower = int(position)
            upper = min(lower + 1, len(data) - 1)
            weight = position - lower
            result[pct] = float(data[lower] * (1 - weight) + data[upper] * weight)
        return result

    def reset(self) -> None:
        self.metrics.clear()
        self.operation_timings.clear()
        self.total_requests = 0
