"""
Lighthouse Worker - Out-of-process page quality scoring.

Run as ``python -m auditly.analyzers.lighthouse_worker``. The worker reads a
single JSON request from stdin, runs the Lighthouse CLI against the URL and
writes a single tagged JSON message to stdout:

    request:  {"url": "https://example.com", "timeout": 30}
    response: {"status": "success", "data": {...QualityData...}}
              {"status": "error", "error": "..."}

Logs go to stderr so stdout carries nothing but the response.
"""

import json
import subprocess
import sys
from typing import Any, Dict, List, Optional

import structlog
from pydantic import Field

from ..core.logging import configure_logging
from .base_analyzer import ReportModel


CATEGORIES = ["performance", "accessibility", "best-practices", "seo", "pwa"]

CHROME_FLAGS = [
    "--headless=new",
    "--disable-gpu",
    "--no-sandbox",
    "--disable-dev-shm-usage",
    "--disable-setuid-sandbox",
]

# QualityData field -> Lighthouse audit id
METRIC_AUDITS = {
    "first_contentful_paint": "first-contentful-paint",
    "speed_index": "speed-index",
    "largest_contentful_paint": "largest-contentful-paint",
    "time_to_interactive": "interactive",
    "total_blocking_time": "total-blocking-time",
    "cumulative_layout_shift": "cumulative-layout-shift",
    "first_meaningful_paint": "first-meaningful-paint",
    "max_potential_fid": "max-potential-fid",
    "server_response_time": "server-response-time",
    "main_thread_work": "mainthread-work-breakdown",
    "bootup_time": "bootup-time",
    "network_requests": "network-requests",
    "network_rtt": "network-rtt",
    "network_server_latency": "network-server-latency",
    "total_byte_weight": "total-byte-weight",
    "dom_size": "dom-size",
    "critical_request_chains": "critical-request-chains",
    "render_blocking_resources": "render-blocking-resources",
    "unminified_css": "unminified-css",
    "unminified_javascript": "unminified-javascript",
    "unused_css_rules": "unused-css-rules",
    "unused_javascript": "unused-javascript",
    "modern_image_formats": "modern-image-formats",
    "offscreen_images": "offscreen-images",
    "preload_lcp_image": "preload-lcp-image",
    "unload_javascript": "unload-javascript",
    "uses_text_compression": "uses-text-compression",
    "uses_responsive_images": "uses-responsive-images",
    "uses_rel_preconnect": "uses-rel-preconnect",
    "uses_rel_preload": "uses-rel-preload",
    "uses_http2": "uses-http2",
    "uses_passive_event_listeners": "uses-passive-event-listeners",
}


class ScreenEmulation(ReportModel):
    mobile: bool = False
    width: int = 0
    height: int = 0
    device_scale_factor: float = 0
    disabled: bool = False


class Throttling(ReportModel):
    rtt_ms: float = 0
    throughput_kbps: float = 0
    cpu_slowdown_multiplier: float = 0


class ConfigSettings(ReportModel):
    form_factor: str = ""
    screen_emulation: ScreenEmulation = Field(default_factory=ScreenEmulation)
    throttling: Throttling = Field(default_factory=Throttling)


class QualityData(ReportModel):
    """Lighthouse category scores (0-100) and raw numeric metrics"""

    performance: int = 0
    accessibility: int = 0
    best_practices: int = 0
    seo: int = 0
    progressive_web_app: int = 0

    first_contentful_paint: float = 0
    speed_index: float = 0
    largest_contentful_paint: float = 0
    time_to_interactive: float = 0
    total_blocking_time: float = 0
    cumulative_layout_shift: float = 0
    first_meaningful_paint: float = 0
    max_potential_fid: float = Field(default=0, alias="maxPotentialFID")
    server_response_time: float = 0
    main_thread_work: float = 0
    bootup_time: float = 0
    network_requests: float = 0
    network_rtt: float = 0
    network_server_latency: float = 0
    total_byte_weight: float = 0
    dom_size: float = 0
    critical_request_chains: float = 0
    render_blocking_resources: float = 0
    unminified_css: float = 0
    unminified_javascript: float = 0
    unused_css_rules: float = 0
    unused_javascript: float = 0
    modern_image_formats: float = 0
    offscreen_images: float = 0
    preload_lcp_image: float = 0
    unload_javascript: float = 0
    uses_text_compression: float = 0
    uses_responsive_images: float = 0
    uses_rel_preconnect: float = 0
    uses_rel_preload: float = 0
    uses_http2: float = 0
    uses_passive_event_listeners: float = 0

    config_settings: ConfigSettings = Field(default_factory=ConfigSettings)


def _numeric(audits: Dict[str, Any], audit_id: str) -> float:
    audit = audits.get(audit_id) or {}
    value = audit.get("numericValue")
    return value if isinstance(value, (int, float)) else 0


def _category_score(categories: Dict[str, Any], category_id: str) -> int:
    score = (categories.get(category_id) or {}).get("score")
    return round(score * 100) if isinstance(score, (int, float)) else 0


def summarize_lhr(lhr: Dict[str, Any]) -> QualityData:
    """
    Reduce a Lighthouse result (LHR) to QualityData.

    Missing categories or audits count as zero.

    Args:
        lhr: Parsed Lighthouse JSON report

    Returns:
        QualityData
    """
    categories = lhr.get("categories") or {}
    audits = lhr.get("audits") or {}
    settings = lhr.get("configSettings") or {}

    metrics = {name: _numeric(audits, audit_id) for name, audit_id in METRIC_AUDITS.items()}

    return QualityData(
        performance=_category_score(categories, "performance"),
        accessibility=_category_score(categories, "accessibility"),
        best_practices=_category_score(categories, "best-practices"),
        seo=_category_score(categories, "seo"),
        progressive_web_app=_category_score(categories, "pwa"),
        config_settings=ConfigSettings(
            form_factor=settings.get("formFactor") or "",
            screen_emulation=ScreenEmulation.model_validate(settings.get("screenEmulation") or {}),
            throttling=Throttling.model_validate(settings.get("throttling") or {}),
        ),
        **metrics,
    )


def build_command(
    url: str,
    lighthouse_path: str = "lighthouse",
    categories: Optional[List[str]] = None,
) -> List[str]:
    """
    Build the Lighthouse CLI command.

    Args:
        url: Page to score
        lighthouse_path: Path to the lighthouse binary
        categories: Categories to run (defaults to CATEGORIES)

    Returns:
        Command as list of strings
    """
    return [
        lighthouse_path,
        url,
        "--output=json",
        "--output-path=stdout",
        "--quiet",
        "--preset=desktop",
        f"--only-categories={','.join(categories or CATEGORIES)}",
        f"--chrome-flags={' '.join(CHROME_FLAGS)}",
    ]


def run_lighthouse(request: Dict[str, Any]) -> Dict[str, Any]:
    """
    Handle one worker request.

    Returns:
        Tagged response message; never raises
    """
    logger = structlog.get_logger(__name__)

    url = request.get("url")
    if not isinstance(url, str) or not url:
        return {"status": "error", "error": "Worker request has no url"}

    cmd = build_command(
        url,
        lighthouse_path=request.get("lighthouse_path") or "lighthouse",
        categories=request.get("categories"),
    )
    timeout = request.get("timeout")

    logger.info("lighthouse_started", url=url)
    try:
        # subprocess.run kills Lighthouse (and its Chrome) when the timeout expires
        completed = subprocess.run(cmd, capture_output=True, timeout=timeout, check=False)
    except FileNotFoundError:
        return {"status": "error", "error": f"Lighthouse binary not found: {cmd[0]}"}
    except subprocess.TimeoutExpired:
        return {"status": "error", "error": f"Lighthouse timed out after {timeout} seconds"}

    if completed.returncode != 0:
        stderr = completed.stderr.decode("utf-8", errors="replace").strip()
        logger.error("lighthouse_failed", url=url, returncode=completed.returncode)
        return {
            "status": "error",
            "error": f"Lighthouse exited with code {completed.returncode}: {stderr[-500:]}",
        }

    try:
        lhr = json.loads(completed.stdout)
    except json.JSONDecodeError as e:
        return {"status": "error", "error": f"Lighthouse produced invalid JSON: {e}"}

    if not isinstance(lhr, dict) or "categories" not in lhr:
        return {"status": "error", "error": "Lighthouse results are undefined"}

    runtime_error = lhr.get("runtimeError")
    if isinstance(runtime_error, dict) and runtime_error.get("code"):
        return {
            "status": "error",
            "error": runtime_error.get("message") or runtime_error["code"],
        }

    logger.info("lighthouse_completed", url=url)
    return {"status": "success", "data": summarize_lhr(lhr).to_dict()}


def main(stdin=None, stdout=None) -> int:
    """Read one request, answer with one message"""
    stdin = stdin or sys.stdin
    stdout = stdout or sys.stdout
    configure_logging(stream=sys.stderr)

    try:
        request = json.loads(stdin.readline() or "{}")
    except json.JSONDecodeError as e:
        response = {"status": "error", "error": f"Malformed worker request: {e}"}
    else:
        if isinstance(request, dict):
            response = run_lighthouse(request)
        else:
            response = {"status": "error", "error": "Worker request must be an object"}

    stdout.write(json.dumps(response) + "\n")
    stdout.flush()
    return 0


if __name__ == "__main__":
    sys.exit(main())
