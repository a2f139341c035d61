"""
Error hierarchy for the audit pipeline.

Client-facing errors (``AuditError``) stop an audit before any analyzer runs.
Analyzer errors (``AnalyzerError``) never leave an analyzer: BaseAnalyzer
turns them into zero-valued error results.
"""

from typing import Optional


class AuditError(Exception):
    """Base exception for errors surfaced to the caller"""
    pass


class InvalidURLError(AuditError):
    """Raised when the submitted URL is not an absolute http(s) URL"""

    def __init__(self, url: Optional[str] = None):
        self.url = url
        super().__init__("Invalid URL provided")


class RateLimitExceededError(AuditError):
    """Raised when a client has used up its quota for the current window"""

    def __init__(self, client_key: str, retry_after_seconds: int):
        self.client_key = client_key
        self.retry_after_seconds = retry_after_seconds
        super().__init__(
            f"Rate limit exceeded. Please try again in {retry_after_seconds} seconds."
        )


class AnalyzerError(Exception):
    """Base exception for failures inside an analyzer"""
    pass


class AnalyzerTimeoutError(AnalyzerError):
    """Raised when an analyzer engine exceeds its time budget"""
    pass


class AnalyzerConfigurationError(AnalyzerError):
    """Raised when an analyzer is missing required configuration"""
    pass


class WorkerProtocolError(AnalyzerError):
    """Raised when the quality worker answers with an unusable message"""
    pass


class ReviewParseError(AnalyzerError):
    """Raised when the generative model's reply does not match the review schema"""
    pass
