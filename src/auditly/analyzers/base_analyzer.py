"""
Base Analyzer - Abstract base class for all audit analyzers.

This module defines the contract every analyzer (structural, quality, visual)
follows: ``run()`` always resolves with a tagged AnalyzerResult whose data is
structurally complete, even when the underlying engine crashes, times out or
is not configured.

Design Pattern: Template Method
"""

import asyncio
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Generic, Optional, TypeVar

import structlog
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from ..core.errors import AnalyzerTimeoutError


class ReportModel(BaseModel):
    """Base for report payloads: snake_case in Python, camelCase on the wire"""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


class AnalyzerStatus(Enum):
    """Outcome of one analyzer run"""
    SUCCESS = "success"
    ERROR = "error"


T = TypeVar("T", bound=ReportModel)


@dataclass
class AnalyzerResult(Generic[T]):
    """
    Tagged result of one analyzer run.

    ``data`` is always a complete model. On error it holds the model's
    zero-valued defaults so consumers never branch on missing keys.
    """

    status: AnalyzerStatus
    data: T
    error: Optional[str] = None

    @classmethod
    def success(cls, data: T) -> "AnalyzerResult[T]":
        return cls(status=AnalyzerStatus.SUCCESS, data=data)

    @classmethod
    def failure(cls, data: T, error: str) -> "AnalyzerResult[T]":
        return cls(status=AnalyzerStatus.ERROR, data=data, error=error)

    @property
    def ok(self) -> bool:
        return self.status is AnalyzerStatus.SUCCESS

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization"""
        result = {"status": self.status.value, "data": self.data.to_dict()}
        if self.error is not None:
            result["error"] = self.error
        return result


class BaseAnalyzer(ABC, Generic[T]):
    """
    Abstract base class for all analyzers.

    Subclasses implement ``_analyze()`` and ``empty_data()``. ``run()`` wraps
    ``_analyze()`` with:
    1. A hard timeout (``asyncio.wait_for``), which cancels the engine call
       so its own cleanup (browser close, process kill) runs
    2. Failure isolation: every exception becomes an error result
    3. Structured logging and run statistics

    Cancellation from the caller is not swallowed.

    Example:
        >>> class EchoAnalyzer(BaseAnalyzer):
        ...     async def _analyze(self, request, **aux):
        ...         return EchoData(url=request.url)
        ...     def empty_data(self):
        ...         return EchoData()
    """

    def __init__(self, analyzer_name: str, timeout: float):
        """
        Initialize the base analyzer.

        Args:
            analyzer_name: Name used in logs and statistics
            timeout: Hard time budget for one run in seconds
        """
        self.analyzer_name = analyzer_name
        self.timeout = timeout

        # Statistics
        self.run_count = 0
        self.failure_count = 0
        self.last_duration: Optional[float] = None

        self.logger = structlog.get_logger(__name__, analyzer=self.analyzer_name)

    @abstractmethod
    async def _analyze(self, request, **aux) -> T:
        """
        Drive the engine to completion and return populated data.

        Implementations release their engine resources on every exit path and
        may raise freely; ``run()`` absorbs the exception.
        """
        pass

    @abstractmethod
    def empty_data(self) -> T:
        """Return the zero-valued data model used for error results"""
        pass

    async def run(self, request, **aux) -> AnalyzerResult[T]:
        """
        Run the analyzer against an audit request.

        Args:
            request: AuditRequest (anything with a ``url`` attribute)
            **aux: Analyzer-specific auxiliary input

        Returns:
            AnalyzerResult; never raises except on cancellation
        """
        self.run_count += 1
        started = time.monotonic()
        self.logger.info("analyzer_started", url=request.url)

        try:
            data = await asyncio.wait_for(self._analyze(request, **aux), timeout=self.timeout)

        except asyncio.TimeoutError:
            self.failure_count += 1
            error = AnalyzerTimeoutError(
                f"{self.analyzer_name} timed out after {self.timeout:g} seconds"
            )
            self.logger.error("analyzer_timeout", url=request.url, timeout=self.timeout)
            return AnalyzerResult.failure(self.empty_data(), str(error))

        except Exception as e:
            self.failure_count += 1
            self.logger.error(
                "analyzer_failed",
                url=request.url,
                error=str(e),
                exc_info=True,
            )
            return AnalyzerResult.failure(self.empty_data(), str(e) or type(e).__name__)

        finally:
            self.last_duration = time.monotonic() - started

        self.logger.info(
            "analyzer_completed",
            url=request.url,
            duration=f"{self.last_duration:.2f}s",
        )
        return AnalyzerResult.success(data)

    def get_statistics(self) -> Dict[str, Any]:
        """
        Get analyzer statistics.

        Returns:
            Dictionary with run and failure counts
        """
        return {
            "runs": self.run_count,
            "failures": self.failure_count,
            "last_duration": self.last_duration,
        }

    def __repr__(self) -> str:
        return (
            f"{self.analyzer_name}("
            f"timeout={self.timeout}, "
            f"runs={self.run_count}, "
            f"failures={self.failure_count})"
        )
