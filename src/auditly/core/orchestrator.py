"""
Audit Orchestrator - Central coordinator for the three analyzers.

Validates and admits each audit request, runs the structural analyzer, the
quality scorer and the visual reviewer with the right concurrency policy,
merges their results and hands back either one report (batch mode) or a
preview followed by the report (streamed mode).

Design Pattern: Fan-out/Join + Observer
"""

import asyncio
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Tuple
from urllib.parse import urlparse

import structlog

from ..analyzers.base_analyzer import AnalyzerResult, BaseAnalyzer
from ..analyzers.lighthouse_worker import QualityData
from ..analyzers.structural_analyzer import CoreWebVitals, StructuralData
from .errors import InvalidURLError, RateLimitExceededError
from .rate_limiter import RateLimiter


PREVIEW_MESSAGE = "Screenshots captured, running analysis..."


class AuditMode(Enum):
    """How results are delivered"""
    BATCH = "batch"
    STREAM = "stream"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _isoformat(moment: datetime) -> str:
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


@dataclass
class AuditRequest:
    """A validated, admitted audit request"""
    url: str
    client_key: str = "unknown"
    audit_id: str = field(default_factory=lambda: f"audit_{uuid.uuid4().hex[:12]}")
    received_at: datetime = field(default_factory=_utcnow)


@dataclass
class AuditReport:
    """Merged result of one audit; every analyzer result is always present"""
    url: str
    timestamp: datetime
    structural: AnalyzerResult
    quality: AnalyzerResult
    visual: AnalyzerResult

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization"""
        return {
            "url": self.url,
            "timestamp": _isoformat(self.timestamp),
            "structural": self.structural.to_dict(),
            "quality": self.quality.to_dict(),
            "visual": self.visual.to_dict(),
        }


def validate_url(url: Any) -> str:
    """
    Check that a value is an absolute http(s) URL with a host.

    Args:
        url: Submitted value

    Returns:
        The URL, stripped of surrounding whitespace

    Raises:
        InvalidURLError: If the value is not such a URL
    """
    if not isinstance(url, str) or not url.strip():
        raise InvalidURLError(url if isinstance(url, str) else None)

    url = url.strip()
    try:
        parsed = urlparse(url)
        port_ok = parsed.port is None or parsed.port > 0
    except ValueError:
        raise InvalidURLError(url)

    if parsed.scheme not in ("http", "https") or not parsed.hostname or not port_ok:
        raise InvalidURLError(url)
    if any(ch.isspace() for ch in url):
        raise InvalidURLError(url)

    return url


def merge_core_web_vitals(
    structural: AnalyzerResult,
    quality: AnalyzerResult,
) -> AnalyzerResult:
    """
    Copy the quality scorer's measured vitals into the structural report.

    Only applies when both analyzers succeeded; otherwise the structural
    result is returned untouched (vitals stay at zero).

    Args:
        structural: StructuralAnalyzer result
        quality: QualityScorer result

    Returns:
        Structural result with merged vitals (a copy when changed)
    """
    if not (structural.ok and quality.ok):
        return structural

    scores: QualityData = quality.data
    data: StructuralData = structural.data.model_copy(deep=True)
    data.technical.core_web_vitals = CoreWebVitals(
        lcp=scores.largest_contentful_paint / 1000,
        fid=scores.max_potential_fid,
        cls=scores.cumulative_layout_shift,
    )
    return AnalyzerResult.success(data)


class AuditOrchestrator:
    """
    Central coordinator for website audits.

    Responsibilities:
    1. Validate the URL and consult the rate limiter before any work starts
    2. Batch mode: run all three analyzers concurrently and join
    3. Streamed mode: run the structural analyzer first, emit a screenshot
       preview, then run the other two concurrently
    4. Merge quality metrics into the structural report
    5. Enforce an optional global deadline per audit

    Analyzer failures never abort an audit: each analyzer reports its own
    error result and the report is still produced.

    Example:
        >>> orchestrator = AuditOrchestrator(limiter, structural, quality, visual)
        >>> request = orchestrator.prepare("https://example.com", client_key="203.0.113.7")
        >>> report = await orchestrator.run(request)
    """

    def __init__(
        self,
        rate_limiter: RateLimiter,
        structural: BaseAnalyzer,
        quality: BaseAnalyzer,
        visual: BaseAnalyzer,
        audit_timeout: Optional[float] = 180.0,
    ):
        """
        Initialize the orchestrator.

        Args:
            rate_limiter: Per-client admission control
            structural: Structural analyzer (screenshots, DOM facts)
            quality: Quality scorer (Lighthouse)
            visual: Visual reviewer (generative AI)
            audit_timeout: Global deadline per audit in seconds (None disables)
        """
        self.rate_limiter = rate_limiter
        self.structural = structural
        self.quality = quality
        self.visual = visual
        self.audit_timeout = audit_timeout

        # State tracking
        self.active_audits: Dict[str, AuditRequest] = {}
        self.completed_count = 0

        self.logger = structlog.get_logger(__name__)

        # Observer pattern - callbacks
        self.observers: List[Callable[[str, Dict[str, Any]], None]] = []

    def subscribe(self, observer: Callable[[str, Dict[str, Any]], None]):
        """
        Subscribe to orchestrator events (Observer pattern).

        Events: audit_started, preview_ready, audit_completed.

        Args:
            observer: Callback taking (event, data)
        """
        self.observers.append(observer)
        self.logger.info("observer_subscribed", observer=getattr(observer, "__name__", repr(observer)))

    def _notify_observers(self, event: str, data: Dict[str, Any]):
        """Notify all observers of an event"""
        for observer in self.observers:
            try:
                observer(event, data)
            except Exception as e:
                self.logger.error(
                    "observer_error",
                    observer=getattr(observer, "__name__", repr(observer)),
                    error=str(e),
                )

    def prepare(self, url: Any, client_key: str = "unknown") -> AuditRequest:
        """
        Validate the URL and admit the request.

        Args:
            url: Submitted URL
            client_key: Rate limit bucket (usually the client IP)

        Returns:
            AuditRequest ready to run

        Raises:
            InvalidURLError: If the URL is not an absolute http(s) URL
            RateLimitExceededError: If the client's quota is used up
        """
        url = validate_url(url)

        admission = self.rate_limiter.admit(client_key)
        if not admission.allowed:
            raise RateLimitExceededError(client_key, admission.retry_after_seconds or 1)

        return AuditRequest(url=url, client_key=client_key)

    async def audit(self, url: Any, client_key: str = "unknown") -> AuditReport:
        """Prepare and run a batch audit in one call"""
        return await self.run(self.prepare(url, client_key))

    async def run(self, request: AuditRequest) -> AuditReport:
        """
        Batch mode: run all analyzers concurrently and return one report.

        Args:
            request: Prepared audit request

        Returns:
            Merged AuditReport
        """
        deadline = self._start(request, AuditMode.BATCH)
        try:
            results = await self._settle(
                request,
                {
                    "structural": (self.structural, {}),
                    "quality": (self.quality, {}),
                    "visual": (self.visual, {}),
                },
                deadline,
            )
            return self._finish(request, results["structural"], results["quality"], results["visual"])
        finally:
            self.active_audits.pop(request.audit_id, None)

    async def stream(self, request: AuditRequest) -> AsyncIterator[Dict[str, Any]]:
        """
        Streamed mode: yield a screenshot preview, then the final report.

        The preview is yielded at most once, only when the structural analyzer
        succeeded with screenshots, and always before the report. The report
        is always the last message.

        Args:
            request: Prepared audit request

        Yields:
            StreamedProgress dict, then AuditReport dict
        """
        deadline = self._start(request, AuditMode.STREAM)
        try:
            first = await self._settle(request, {"structural": (self.structural, {})}, deadline)
            structural = first["structural"]

            screenshots = structural.data.screenshots if structural.ok else None
            if screenshots is not None:
                progress = {
                    "status": "loading",
                    "preview": screenshots.to_dict(),
                    "message": PREVIEW_MESSAGE,
                }
                self.logger.info("preview_ready", audit_id=request.audit_id)
                self._notify_observers("preview_ready", {"audit_id": request.audit_id, **progress})
                yield progress

            rest = await self._settle(
                request,
                {
                    "quality": (self.quality, {}),
                    "visual": (self.visual, {"screenshots": screenshots}),
                },
                deadline,
            )
            report = self._finish(request, structural, rest["quality"], rest["visual"])
            yield report.to_dict()
        finally:
            self.active_audits.pop(request.audit_id, None)

    def _start(self, request: AuditRequest, mode: AuditMode) -> Optional[float]:
        """Register the audit and compute its deadline on the loop clock"""
        self.active_audits[request.audit_id] = request

        self.logger.info(
            "audit_started",
            audit_id=request.audit_id,
            url=request.url,
            client_key=request.client_key,
            mode=mode.value,
        )
        self._notify_observers(
            "audit_started",
            {"audit_id": request.audit_id, "url": request.url, "mode": mode.value},
        )

        if self.audit_timeout is None:
            return None
        return asyncio.get_running_loop().time() + self.audit_timeout

    def _finish(
        self,
        request: AuditRequest,
        structural: AnalyzerResult,
        quality: AnalyzerResult,
        visual: AnalyzerResult,
    ) -> AuditReport:
        report = AuditReport(
            url=request.url,
            timestamp=_utcnow(),
            structural=merge_core_web_vitals(structural, quality),
            quality=quality,
            visual=visual,
        )
        self.completed_count += 1

        statuses = {
            "structural": structural.status.value,
            "quality": quality.status.value,
            "visual": visual.status.value,
        }
        self.logger.info("audit_completed", audit_id=request.audit_id, url=request.url, **statuses)
        self._notify_observers("audit_completed", {"audit_id": request.audit_id, **statuses})
        return report

    async def _settle(
        self,
        request: AuditRequest,
        jobs: Dict[str, Tuple[BaseAnalyzer, Dict[str, Any]]],
        deadline: Optional[float],
    ) -> Dict[str, AnalyzerResult]:
        """
        Run analyzers concurrently and wait for every one to settle.

        Analyzers still running at the deadline are cancelled (so they
        release their engines) and reported as errors. An analyzer that
        raises despite its contract is reported as an error as well.

        Returns:
            Result per job name
        """
        loop = asyncio.get_running_loop()
        tasks = {
            name: asyncio.create_task(analyzer.run(request, **aux))
            for name, (analyzer, aux) in jobs.items()
        }

        timeout = None if deadline is None else max(0.0, deadline - loop.time())
        try:
            _, pending = await asyncio.wait(tasks.values(), timeout=timeout)
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)
        finally:
            # Caller cancelled us: do not leave analyzers running
            for task in tasks.values():
                if not task.done():
                    task.cancel()

        results: Dict[str, AnalyzerResult] = {}
        for name, task in tasks.items():
            analyzer = jobs[name][0]

            if task.cancelled():
                self.logger.error("analyzer_deadline_exceeded", audit_id=request.audit_id, analyzer=name)
                results[name] = AnalyzerResult.failure(
                    analyzer.empty_data(),
                    f"Audit deadline of {self.audit_timeout:g} seconds exceeded",
                )
                continue

            error = task.exception()
            if error is not None:
                self.logger.error(
                    "analyzer_contract_violation",
                    audit_id=request.audit_id,
                    analyzer=name,
                    error=str(error),
                    exc_info=error,
                )
                results[name] = AnalyzerResult.failure(analyzer.empty_data(), str(error) or type(error).__name__)
                continue

            results[name] = task.result()

        return results

    def get_status(self) -> Dict[str, Any]:
        """
        Get current orchestrator status.

        Returns:
            Status dictionary
        """
        return {
            "active_audits": len(self.active_audits),
            "completed_audits": self.completed_count,
            "audit_timeout": self.audit_timeout,
            "rate_limiter": self.rate_limiter.get_stats(),
            "analyzers": {
                "structural": self.structural.get_statistics(),
                "quality": self.quality.get_statistics(),
                "visual": self.visual.get_statistics(),
            },
        }


def build_orchestrator(config) -> AuditOrchestrator:
    """
    Wire the rate limiter and the three analyzers from an AuditConfig.

    Args:
        config: AuditConfig

    Returns:
        Ready-to-use AuditOrchestrator
    """
    from ..analyzers.quality_scorer import QualityScorer
    from ..analyzers.structural_analyzer import StructuralAnalyzer
    from ..analyzers.visual_reviewer import VisualReviewer
    from .storage import ScreenshotStore

    store = ScreenshotStore(config.screenshot_dir)

    return AuditOrchestrator(
        rate_limiter=RateLimiter(config.rate_limit),
        structural=StructuralAnalyzer(
            store=store,
            headless=config.headless,
            navigation_timeout=config.navigation_timeout,
            fallback_timeout=config.fallback_timeout,
            timeout=config.structural_timeout,
        ),
        quality=QualityScorer(
            timeout=config.quality_timeout,
            lighthouse_path=config.lighthouse_path,
        ),
        visual=VisualReviewer(
            api_key=config.google_api_key,
            model=config.gemini_model,
            store=store,
            timeout=config.visual_timeout,
        ),
        audit_timeout=config.audit_timeout,
    )
