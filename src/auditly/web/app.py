"""
HTTP interface for the audit service.

Routes:
    POST /audit                 run an audit (JSON report or NDJSON stream)
    GET  /audit?filename=<name> fetch a captured screenshot
"""

import asyncio
import contextlib
import json
from datetime import datetime, timezone
from typing import Optional

import structlog
from aiohttp import web

from ..core.config import AuditConfig
from ..core.errors import InvalidURLError, RateLimitExceededError
from ..core.orchestrator import AuditMode, AuditOrchestrator, build_orchestrator
from ..core.storage import ScreenshotStore


ORCHESTRATOR_KEY = web.AppKey("orchestrator", AuditOrchestrator)
CONFIG_KEY = web.AppKey("config", AuditConfig)
STORE_KEY = web.AppKey("store", ScreenshotStore)

NDJSON = "application/x-ndjson"

logger = structlog.get_logger(__name__)


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _server_error(error: BaseException) -> dict:
    return {
        "error": "Failed to perform audit",
        "details": str(error) or type(error).__name__,
        "timestamp": _timestamp(),
    }


def client_key(request: web.Request) -> str:
    """First X-Forwarded-For hop, else the peer address"""
    forwarded = request.headers.get("X-Forwarded-For", "")
    first = forwarded.split(",")[0].strip()
    if first:
        return first
    return request.remote or "unknown"


def _audit_mode(request: web.Request, config: AuditConfig) -> AuditMode:
    mode = request.query.get("mode")
    if mode == AuditMode.STREAM.value:
        return AuditMode.STREAM
    if mode == AuditMode.BATCH.value:
        return AuditMode.BATCH
    return AuditMode.STREAM if config.stream_by_default else AuditMode.BATCH


async def post_audit(request: web.Request) -> web.StreamResponse:
    orchestrator = request.app[ORCHESTRATOR_KEY]
    config = request.app[CONFIG_KEY]

    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        logger.warning("invalid_request_body")
        return web.json_response({"error": "Invalid JSON in request body"}, status=400)

    url = body.get("url") if isinstance(body, dict) else None

    try:
        audit_request = orchestrator.prepare(url, client_key=client_key(request))
    except InvalidURLError:
        return web.json_response({"error": "Invalid URL provided"}, status=400)
    except RateLimitExceededError as e:
        return web.json_response(
            {"error": str(e)},
            status=429,
            headers={"Retry-After": str(e.retry_after_seconds)},
        )

    if _audit_mode(request, config) is AuditMode.BATCH:
        try:
            report = await orchestrator.run(audit_request)
        except Exception as e:
            logger.error("audit_failed", url=audit_request.url, error=str(e), exc_info=True)
            return web.json_response(_server_error(e), status=500)
        return web.json_response(report.to_dict())

    return await _stream_audit(request, orchestrator, audit_request)


async def _stream_audit(request: web.Request, orchestrator: AuditOrchestrator, audit_request):
    response = web.StreamResponse(headers={"Content-Type": NDJSON, "Cache-Control": "no-cache"})

    try:
        async with contextlib.aclosing(orchestrator.stream(audit_request)) as messages:
            async for message in messages:
                if not response.prepared:
                    await response.prepare(request)
                await response.write(json.dumps(message).encode() + b"\n")
    except (ConnectionResetError, asyncio.CancelledError):
        logger.info("audit_stream_aborted", url=audit_request.url)
        raise
    except Exception as e:
        logger.error("audit_failed", url=audit_request.url, error=str(e), exc_info=True)
        if not response.prepared:
            return web.json_response(_server_error(e), status=500)
        # Headers are already sent; report the failure as the last message
        await response.write(json.dumps({"status": "error", **_server_error(e)}).encode() + b"\n")

    if not response.prepared:
        await response.prepare(request)
    await response.write_eof()
    return response


async def get_screenshot(request: web.Request) -> web.StreamResponse:
    filename = request.query.get("filename")
    if not filename:
        return web.Response(text="Filename is required", status=400)

    data = request.app[STORE_KEY].read(filename)
    if data is None:
        return web.Response(text="Screenshot not found", status=404)

    return web.Response(
        body=data,
        content_type="image/png",
        headers={"Cache-Control": "public, max-age=31536000"},
    )


async def _rate_limit_sweeper(app: web.Application):
    task = asyncio.create_task(app[ORCHESTRATOR_KEY].rate_limiter.run_sweeper())
    yield
    task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await task


def create_app(
    config: Optional[AuditConfig] = None,
    orchestrator: Optional[AuditOrchestrator] = None,
    store: Optional[ScreenshotStore] = None,
) -> web.Application:
    """
    Build the aiohttp application.

    Args:
        config: Service configuration (defaults plus environment if None)
        orchestrator: Pre-built orchestrator (built from config if None)
        store: Screenshot store for the artifact route

    Returns:
        aiohttp Application
    """
    config = config or AuditConfig().with_env()

    app = web.Application()
    app[CONFIG_KEY] = config
    app[ORCHESTRATOR_KEY] = orchestrator or build_orchestrator(config)
    app[STORE_KEY] = store or ScreenshotStore(config.screenshot_dir)

    app.router.add_post("/audit", post_audit)
    app.router.add_get("/audit", get_screenshot)
    app.cleanup_ctx.append(_rate_limit_sweeper)

    return app
