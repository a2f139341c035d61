"""
Core module - Configuration, admission control and shared infrastructure.

The orchestrator lives in ``auditly.core.orchestrator``; it is not re-exported
here because it depends on the analyzers package, which in turn depends on
these core modules.
"""

from .config import AuditConfig
from .errors import (
    AnalyzerConfigurationError,
    AnalyzerError,
    AnalyzerTimeoutError,
    AuditError,
    InvalidURLError,
    RateLimitExceededError,
    ReviewParseError,
    WorkerProtocolError,
)
from .rate_limiter import AdmissionResult, ClientQuota, RateLimitConfig, RateLimiter
from .storage import ScreenshotStore


__all__ = [
    # Configuration
    "AuditConfig",
    "RateLimitConfig",
    # Rate limiting
    "RateLimiter",
    "ClientQuota",
    "AdmissionResult",
    # Storage
    "ScreenshotStore",
    # Errors
    "AuditError",
    "InvalidURLError",
    "RateLimitExceededError",
    "AnalyzerError",
    "AnalyzerTimeoutError",
    "AnalyzerConfigurationError",
    "WorkerProtocolError",
    "ReviewParseError",
]
