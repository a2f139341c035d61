"""
Unit tests for AuditOrchestrator module.

Run with: pytest tests/unit/test_orchestrator.py -v
"""

import asyncio

import pytest

from auditly.analyzers.base_analyzer import AnalyzerResult, AnalyzerStatus, BaseAnalyzer
from auditly.analyzers.lighthouse_worker import QualityData
from auditly.analyzers.review_parser import VisualData
from auditly.analyzers.structural_analyzer import Screenshots, StructuralData
from auditly.core.errors import InvalidURLError, RateLimitExceededError
from auditly.core.orchestrator import (
    AuditOrchestrator,
    AuditRequest,
    merge_core_web_vitals,
    validate_url,
)
from auditly.core.rate_limiter import RateLimitConfig, RateLimiter


SCREENSHOTS = Screenshots(
    full_page="/audit?filename=example.com-1-full.png",
    viewport="/audit?filename=example.com-1-viewport.png",
)


class ScriptedAnalyzer(BaseAnalyzer):
    """Analyzer whose outcome is fixed by the test"""

    def __init__(self, name, data_cls, data=None, error=None, delay=0.0, timeout=5.0, events=None):
        super().__init__(analyzer_name=name, timeout=timeout)
        self.data_cls = data_cls
        self.data = data
        self.error = error
        self.delay = delay
        self.events = events if events is not None else []
        self.calls = []
        self.cancelled = False

    def empty_data(self):
        return self.data_cls()

    async def _analyze(self, request, **aux):
        self.calls.append(aux)
        self.events.append(f"{self.analyzer_name}:start")
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        self.events.append(f"{self.analyzer_name}:end")
        if self.error:
            raise self.error
        return self.data if self.data is not None else self.data_cls()


class RaisingAnalyzer(ScriptedAnalyzer):
    """Analyzer that breaks the never-raise contract"""

    async def run(self, request, **aux):
        raise RuntimeError("adapter bug")


def structural_data(with_screenshots=True):
    data = StructuralData(title="Example Domain")
    if with_screenshots:
        data.screenshots = SCREENSHOTS
    return data


def quality_data():
    return QualityData(
        performance=91,
        largest_contentful_paint=2500.0,
        cumulative_layout_shift=0.05,
        max_potential_fid=120.0,
    )


def make_orchestrator(
    structural=None,
    quality=None,
    visual=None,
    max_requests=100,
    audit_timeout=30.0,
    events=None,
):
    events = events if events is not None else []
    return AuditOrchestrator(
        rate_limiter=RateLimiter(RateLimitConfig(max_requests=max_requests)),
        structural=structural or ScriptedAnalyzer("structural", StructuralData, data=structural_data(), events=events),
        quality=quality or ScriptedAnalyzer("quality", QualityData, data=quality_data(), events=events),
        visual=visual or ScriptedAnalyzer("visual", VisualData, data=VisualData(overall_score=80), events=events),
        audit_timeout=audit_timeout,
    )


async def collect(stream):
    return [message async for message in stream]


class TestValidateUrl:
    """Test suite for URL validation"""

    @pytest.mark.parametrize("url", [
        "https://example.com",
        "http://example.com:8080/path?q=1",
        "  https://example.com/  ",
    ])
    def test_valid_urls(self, url):
        assert validate_url(url) == url.strip()

    @pytest.mark.parametrize("url", [
        "not-a-url",
        "",
        None,
        42,
        "ftp://example.com",
        "https://",
        "example.com",
        "https://exa mple.com",
        "http://example.com:99999",
    ])
    def test_invalid_urls(self, url):
        with pytest.raises(InvalidURLError):
            validate_url(url)


class TestMerge:
    """Test suite for the core web vitals merge"""

    def test_vitals_come_from_quality_when_both_succeed(self):
        merged = merge_core_web_vitals(
            AnalyzerResult.success(structural_data()),
            AnalyzerResult.success(quality_data()),
        )
        vitals = merged.data.technical.core_web_vitals

        assert vitals.lcp == 2.5
        assert vitals.fid == 120.0
        assert vitals.cls == 0.05

    def test_vitals_stay_zero_when_quality_fails(self):
        structural = AnalyzerResult.success(structural_data())
        merged = merge_core_web_vitals(
            structural,
            AnalyzerResult.failure(QualityData(), "Lighthouse exploded"),
        )
        vitals = merged.data.technical.core_web_vitals

        assert merged is structural
        assert (vitals.lcp, vitals.fid, vitals.cls) == (0, 0, 0)

    def test_merge_does_not_mutate_structural_input(self):
        structural = AnalyzerResult.success(structural_data())
        merge_core_web_vitals(structural, AnalyzerResult.success(quality_data()))

        assert structural.data.technical.core_web_vitals.lcp == 0


class TestAuditOrchestrator:
    """Test suite for AuditOrchestrator class"""

    def test_prepare_rejects_invalid_url_without_consuming_quota(self):
        """Test invalid URLs fail before the rate limiter is consulted"""
        orchestrator = make_orchestrator(max_requests=1)

        with pytest.raises(InvalidURLError):
            orchestrator.prepare("not-a-url", client_key="10.0.0.1")

        assert orchestrator.rate_limiter.get_quota("10.0.0.1") is None

    def test_prepare_raises_when_rate_limited(self):
        """Test the (N+1)th request is rejected with a retry hint"""
        orchestrator = make_orchestrator(max_requests=2)

        orchestrator.prepare("https://example.com", client_key="10.0.0.1")
        orchestrator.prepare("https://example.com", client_key="10.0.0.1")

        with pytest.raises(RateLimitExceededError) as excinfo:
            orchestrator.prepare("https://example.com", client_key="10.0.0.1")

        assert excinfo.value.retry_after_seconds > 0
        assert "seconds" in str(excinfo.value)

    @pytest.mark.asyncio
    async def test_batch_report_is_complete_and_merged(self):
        """Test batch mode returns every analyzer result and merged vitals"""
        orchestrator = make_orchestrator()

        report = await orchestrator.audit("https://example.com", client_key="10.0.0.1")
        body = report.to_dict()

        for name in ("structural", "quality", "visual"):
            assert body[name]["status"] == "success"
        assert body["url"] == "https://example.com"
        assert body["timestamp"].endswith("Z")
        assert body["structural"]["data"]["technical"]["coreWebVitals"] == {
            "lcp": 2.5, "fid": 120.0, "cls": 0.05,
        }
        assert body["quality"]["data"]["maxPotentialFID"] == 120.0

    @pytest.mark.asyncio
    async def test_batch_runs_analyzers_concurrently(self):
        """Test batch mode starts all analyzers before any finishes"""
        events = []
        orchestrator = make_orchestrator(
            structural=ScriptedAnalyzer("structural", StructuralData, data=structural_data(), delay=0.05, events=events),
            quality=ScriptedAnalyzer("quality", QualityData, delay=0.05, events=events),
            visual=ScriptedAnalyzer("visual", VisualData, delay=0.05, events=events),
        )

        await orchestrator.audit("https://example.com")

        assert [e.endswith(":start") for e in events[:3]] == [True, True, True]
        assert orchestrator.visual.calls == [{}]

    @pytest.mark.asyncio
    async def test_batch_isolates_analyzer_failures(self):
        """Test one failing analyzer flips only its own status"""
        orchestrator = make_orchestrator(
            visual=ScriptedAnalyzer("visual", VisualData, error=ValueError("model returned prose")),
        )

        report = (await orchestrator.audit("https://example.com")).to_dict()

        assert report["structural"]["status"] == "success"
        assert report["quality"]["status"] == "success"
        assert report["visual"]["status"] == "error"
        assert report["visual"]["error"] == "model returned prose"
        assert report["visual"]["data"]["overallScore"] == 0
        assert report["visual"]["data"]["quickFixes"]["seo"] == ""

    @pytest.mark.asyncio
    async def test_quality_failure_leaves_vitals_zero(self):
        """Test structural vitals stay zero when the scorer fails"""
        orchestrator = make_orchestrator(
            quality=ScriptedAnalyzer("quality", QualityData, error=RuntimeError("chrome crashed")),
        )

        report = await orchestrator.audit("https://example.com")
        vitals = report.structural.data.technical.core_web_vitals

        assert report.quality.status is AnalyzerStatus.ERROR
        assert (vitals.lcp, vitals.fid, vitals.cls) == (0, 0, 0)

    @pytest.mark.asyncio
    async def test_contract_violation_is_contained(self):
        """Test an analyzer that raises still yields a complete report"""
        orchestrator = make_orchestrator(
            quality=RaisingAnalyzer("quality", QualityData),
        )

        report = await orchestrator.audit("https://example.com")

        assert report.quality.status is AnalyzerStatus.ERROR
        assert report.quality.error == "adapter bug"
        assert report.structural.ok

    @pytest.mark.asyncio
    async def test_stream_emits_preview_before_report(self):
        """Test streamed mode yields exactly one preview, then the report"""
        events = []
        orchestrator = make_orchestrator(events=events)
        request = orchestrator.prepare("https://example.com")

        messages = await collect(orchestrator.stream(request))

        assert len(messages) == 2
        preview, report = messages
        assert preview["status"] == "loading"
        assert preview["preview"] == {
            "fullPage": SCREENSHOTS.full_page,
            "viewport": SCREENSHOTS.viewport,
        }
        assert preview["message"]
        assert set(report) == {"url", "timestamp", "structural", "quality", "visual"}

    @pytest.mark.asyncio
    async def test_stream_preview_precedes_other_analyzers(self):
        """Test the preview is emitted before quality and visual start"""
        events = []
        orchestrator = make_orchestrator(events=events)
        request = orchestrator.prepare("https://example.com")

        stream = orchestrator.stream(request)
        first = await stream.__anext__()

        assert first["status"] == "loading"
        assert events == ["structural:start", "structural:end"]

        rest = [message async for message in stream]
        assert len(rest) == 1
        assert "quality:start" in events and "visual:start" in events

    @pytest.mark.asyncio
    async def test_stream_passes_screenshots_to_visual(self):
        """Test the visual reviewer receives the screenshot locators"""
        orchestrator = make_orchestrator()
        request = orchestrator.prepare("https://example.com")

        await collect(orchestrator.stream(request))

        assert orchestrator.visual.calls == [{"screenshots": SCREENSHOTS}]

    @pytest.mark.asyncio
    async def test_stream_without_screenshots_emits_no_preview(self):
        """Test no preview is emitted when no screenshots were captured"""
        orchestrator = make_orchestrator(
            structural=ScriptedAnalyzer("structural", StructuralData, data=structural_data(with_screenshots=False)),
        )
        request = orchestrator.prepare("https://example.com")

        messages = await collect(orchestrator.stream(request))

        assert len(messages) == 1
        assert "status" not in messages[0]
        assert orchestrator.visual.calls == [{"screenshots": None}]

    @pytest.mark.asyncio
    async def test_stream_with_failed_structural_emits_no_preview(self):
        """Test a failed structural analyzer yields only the final report"""
        orchestrator = make_orchestrator(
            structural=ScriptedAnalyzer("structural", StructuralData, error=RuntimeError("navigation failed")),
        )
        request = orchestrator.prepare("https://example.com")

        messages = await collect(orchestrator.stream(request))

        assert len(messages) == 1
        assert messages[0]["structural"]["status"] == "error"
        assert messages[0]["quality"]["status"] == "success"

    @pytest.mark.asyncio
    async def test_global_deadline_cancels_slow_analyzers(self):
        """Test analyzers still running at the deadline are cancelled and reported"""
        slow = ScriptedAnalyzer("visual", VisualData, delay=10.0, timeout=30.0)
        orchestrator = make_orchestrator(visual=slow, audit_timeout=0.1)

        report = await orchestrator.audit("https://example.com")

        assert slow.cancelled is True
        assert report.visual.status is AnalyzerStatus.ERROR
        assert "deadline" in report.visual.error
        assert report.structural.ok
        assert report.quality.ok

    @pytest.mark.asyncio
    async def test_observer_receives_lifecycle_events(self):
        """Test subscribers see start, preview and completion events"""
        orchestrator = make_orchestrator()
        received = []

        def observer(event, data):
            received.append(event)

        def broken_observer(event, data):
            raise RuntimeError("observer bug")

        orchestrator.subscribe(observer)
        orchestrator.subscribe(broken_observer)

        await collect(orchestrator.stream(orchestrator.prepare("https://example.com")))

        assert received == ["audit_started", "preview_ready", "audit_completed"]

    @pytest.mark.asyncio
    async def test_get_status(self):
        """Test status reporting"""
        orchestrator = make_orchestrator()
        await orchestrator.run(AuditRequest(url="https://example.com"))

        status = orchestrator.get_status()

        assert status["active_audits"] == 0
        assert status["completed_audits"] == 1
        assert status["analyzers"]["structural"]["runs"] == 1
        assert "rate_limiter" in status


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
