"""
Structural Analyzer - On-page SEO and DOM inspection with Playwright.

Loads the page in headless Chromium, extracts title, headings, images, links,
meta/social tags, structured data, content statistics and tracking scripts,
and captures a full-page and a viewport screenshot.

Navigation first waits for network idle; if that times out the page is loaded
once more with the relaxed ``domcontentloaded`` condition.
"""

import asyncio
import json
import time
from typing import Any, Dict, List, Optional, Type, TypeVar
from urllib.parse import urljoin, urlparse

import aiohttp
import structlog
from playwright.async_api import Page, async_playwright
from playwright.async_api import TimeoutError as PlaywrightTimeoutError
from pydantic import Field, ValidationError

from ..core.storage import ScreenshotStore
from .base_analyzer import BaseAnalyzer, ReportModel


class Headings(ReportModel):
    h1: List[str] = Field(default_factory=list)
    h2: List[str] = Field(default_factory=list)
    h3: List[str] = Field(default_factory=list)


class ImageStats(ReportModel):
    total: int = 0
    without_alt: int = 0
    oversized: int = 0
    unoptimized: int = 0
    lazy_loaded: int = 0


class LinkStats(ReportModel):
    total: int = 0
    internal: int = 0
    external: int = 0
    broken: int = 0
    no_follow: int = 0


class OpenGraphTags(ReportModel):
    title: Optional[str] = None
    description: Optional[str] = None
    image: Optional[str] = None
    url: Optional[str] = None


class TwitterTags(ReportModel):
    card: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None
    image: Optional[str] = None


class MetaTags(ReportModel):
    viewport: Optional[str] = None
    robots: Optional[str] = None
    canonical: Optional[str] = None
    og_tags: OpenGraphTags = Field(default_factory=OpenGraphTags)
    twitter_tags: TwitterTags = Field(default_factory=TwitterTags)


class SchemaMarkup(ReportModel):
    has_schema: bool = False
    types: List[str] = Field(default_factory=list)
    valid: bool = False
    errors: List[str] = Field(default_factory=list)


class CoreWebVitals(ReportModel):
    lcp: float = 0   # seconds
    fid: float = 0   # milliseconds
    cls: float = 0


class PageSpeed(ReportModel):
    load_time: float = 0
    time_to_first_byte: float = 0
    dom_content_loaded: float = 0


class TechnicalSeo(ReportModel):
    has_ssl: bool = False
    has_sitemap: bool = False
    has_robots_txt: bool = False
    mobile_friendly: bool = False
    core_web_vitals: CoreWebVitals = Field(default_factory=CoreWebVitals)
    page_speed: PageSpeed = Field(default_factory=PageSpeed)


class ContentStats(ReportModel):
    word_count: int = 0
    keyword_density: Dict[str, int] = Field(default_factory=dict)
    readability_score: float = 0
    content_to_code_ratio: float = 0
    has_video: bool = False
    has_audio: bool = False


class TrackingScripts(ReportModel):
    has_facebook_pixel: bool = False
    has_google_analytics: bool = False
    has_twitter_pixel: bool = False


class LoadTimings(ReportModel):
    load_time: float = 0
    dom_content_loaded: float = 0


class Screenshots(ReportModel):
    full_page: str
    viewport: str


class StructuralData(ReportModel):
    """Everything the browser scraper reports about one page"""

    title: Optional[str] = None
    meta_description: Optional[str] = None
    headings: Headings = Field(default_factory=Headings)
    images: ImageStats = Field(default_factory=ImageStats)
    links: LinkStats = Field(default_factory=LinkStats)
    meta: MetaTags = Field(default_factory=MetaTags)
    schema_markup: SchemaMarkup = Field(default_factory=SchemaMarkup, alias="schema")
    technical: TechnicalSeo = Field(default_factory=TechnicalSeo)
    content: ContentStats = Field(default_factory=ContentStats)
    social: TrackingScripts = Field(default_factory=TrackingScripts)
    performance: LoadTimings = Field(default_factory=LoadTimings)
    screenshots: Optional[Screenshots] = None


# In-page scripts. Each returns plain JSON-serialisable values.

_HEADINGS_JS = "els => els.map(el => (el.textContent || '').trim())"

_IMAGES_JS = """
imgs => ({
    total: imgs.length,
    withoutAlt: imgs.filter(img => !img.hasAttribute('alt')).length,
    oversized: imgs.filter(img => img.naturalWidth > img.width * 2).length,
    unoptimized: imgs.filter(img => {
        const src = img.getAttribute('src') || '';
        return !src.includes('.webp') && !src.includes('.avif');
    }).length,
    lazyLoaded: imgs.filter(img => img.getAttribute('loading') === 'lazy').length,
})
"""

_LINKS_JS = """
links => {
    const total = links.length;
    const internal = links.filter(link => {
        const href = link.getAttribute('href');
        return href && !href.startsWith('http');
    }).length;
    const noFollow = links.filter(link => (link.getAttribute('rel') || '').includes('nofollow')).length;
    return {total, internal, external: total - internal, broken: 0, noFollow};
}
"""

_SCHEMA_JS = "scripts => scripts.map(s => s.textContent || '')"

_CONTENT_JS = """
() => {
    const bodyText = document.body ? document.body.innerText : '';
    const words = bodyText.split(/\\s+/).filter(word => word.length > 0);
    const counts = new Map();
    words.forEach(word => {
        const clean = word.toLowerCase().replace(/[^a-z0-9]/g, '');
        if (clean.length > 3) {
            counts.set(clean, (counts.get(clean) || 0) + 1);
        }
    });
    const sentences = bodyText.split(/[.!?]+/).filter(s => s.trim().length > 0);
    const avgWords = sentences.length ? words.length / sentences.length : 0;
    const htmlLength = document.documentElement.outerHTML.length || 1;
    return {
        wordCount: words.length,
        keywordDensity: Object.fromEntries(counts),
        readabilityScore: Math.max(0, Math.min(100, 100 - avgWords * 2)),
        contentToCodeRatio: (bodyText.length / htmlLength) * 100,
        hasVideo: document.querySelector('video') !== null,
        hasAudio: document.querySelector('audio') !== null,
    };
}
"""

_TRACKING_JS = """
() => ({
    hasFacebookPixel: !!document.querySelector('script[src*="facebook.com/tr"], script[src*="connect.facebook.net"]'),
    hasGoogleAnalytics: !!document.querySelector('script[src*="google-analytics.com"], script[src*="googletagmanager.com"]'),
    hasTwitterPixel: !!document.querySelector('script[src*="static.ads-twitter.com"]'),
})
"""

_TIMING_JS = """
() => {
    const t = performance.timing;
    return {
        domContentLoaded: Math.max(0, t.domContentLoadedEventEnd - t.navigationStart),
        timeToFirstByte: Math.max(0, t.responseStart - t.requestStart),
    };
}
"""


M = TypeVar("M", bound=ReportModel)


class FieldExtractor:
    """
    Best-effort field extraction from a page.

    Every lookup returns its default when the selector is missing or the
    script throws. Failures are collected so they can be reported once per
    page instead of per field.
    """

    def __init__(self, page: Page):
        self.page = page
        self.failures: List[str] = []

    def _failed(self, label: str, error: Exception):
        self.failures.append(f"{label}: {type(error).__name__}")

    async def title(self) -> Optional[str]:
        try:
            return await self.page.title()
        except Exception as e:
            self._failed("title", e)
            return None

    async def attribute(self, selector: str, attribute: str, default: Any = None) -> Any:
        try:
            return await self.page.eval_on_selector(
                selector, "(el, name) => el.getAttribute(name)", attribute
            )
        except Exception as e:
            self._failed(selector, e)
            return default

    async def exists(self, selector: str) -> bool:
        try:
            return await self.page.query_selector(selector) is not None
        except Exception as e:
            self._failed(selector, e)
            return False

    async def each(self, selector: str, script: str, default: Any) -> Any:
        try:
            return await self.page.eval_on_selector_all(selector, script)
        except Exception as e:
            self._failed(selector, e)
            return default

    async def evaluate(self, label: str, script: str, default: Any) -> Any:
        try:
            return await self.page.evaluate(script)
        except Exception as e:
            self._failed(label, e)
            return default

    def model(self, label: str, model_cls: Type[M], raw: Any) -> M:
        """Validate a script result, falling back to the model's defaults"""
        try:
            return model_cls.model_validate(raw)
        except ValidationError as e:
            self._failed(label, e)
            return model_cls()


def summarize_schema(blocks: List[str]) -> SchemaMarkup:
    """
    Validate JSON-LD blocks.

    Args:
        blocks: Raw text of each ``application/ld+json`` script

    Returns:
        SchemaMarkup with the declared types and validation errors
    """
    types: List[str] = []
    errors: List[str] = []

    for block in blocks:
        try:
            data = json.loads(block)
        except json.JSONDecodeError:
            errors.append("Invalid JSON in schema markup")
            continue

        items = data if isinstance(data, list) else [data]
        for item in items:
            if not isinstance(item, dict):
                errors.append("Schema markup is not an object")
                continue
            item_type = item.get("@type")
            if isinstance(item_type, list):
                types.extend(str(t) for t in item_type)
            elif item_type:
                types.append(str(item_type))
            if not item.get("@context") or not item_type:
                errors.append("Missing required schema properties")

    return SchemaMarkup(
        has_schema=bool(types),
        types=types,
        valid=bool(blocks) and not errors,
        errors=errors,
    )


class StructuralAnalyzer(BaseAnalyzer[StructuralData]):
    """
    Browser-automation analyzer.

    Features:
    1. Strict-then-relaxed navigation (networkidle, then domcontentloaded)
    2. Best-effort extraction of every SEO field
    3. Full-page and viewport screenshots written to the ScreenshotStore
    4. robots.txt / sitemap.xml probes

    The browser, context and page are closed on every exit path, including
    timeout cancellation from BaseAnalyzer.

    Example:
        >>> analyzer = StructuralAnalyzer(ScreenshotStore("screenshots"))
        >>> result = await analyzer.run(request)
        >>> result.data.screenshots.viewport
    """

    LAUNCH_ARGS = ["--no-sandbox", "--disable-setuid-sandbox"]
    VIEWPORT = {"width": 1350, "height": 940}

    def __init__(
        self,
        store: ScreenshotStore,
        headless: bool = True,
        navigation_timeout: float = 30.0,
        fallback_timeout: float = 60.0,
        timeout: float = 120.0,
        capture_screenshots: bool = True,
        probe_timeout: float = 5.0,
    ):
        """
        Initialize the structural analyzer.

        Args:
            store: Screenshot storage
            headless: Run Chromium headless
            navigation_timeout: Strict navigation timeout in seconds
            fallback_timeout: Relaxed navigation timeout in seconds
            timeout: Budget for the whole run in seconds
            capture_screenshots: Write screenshots after extraction
            probe_timeout: Timeout for robots.txt / sitemap.xml probes
        """
        super().__init__(analyzer_name="StructuralAnalyzer", timeout=timeout)

        self.store = store
        self.headless = headless
        self.navigation_timeout = navigation_timeout
        self.fallback_timeout = fallback_timeout
        self.capture_screenshots = capture_screenshots
        self.probe_timeout = probe_timeout

    def empty_data(self) -> StructuralData:
        return StructuralData()

    async def _analyze(self, request, **aux) -> StructuralData:
        url = request.url

        async with async_playwright() as playwright:
            browser = await playwright.chromium.launch(
                headless=self.headless,
                args=self.LAUNCH_ARGS,
            )
            try:
                context = await browser.new_context(viewport=self.VIEWPORT)
                try:
                    page = await context.new_page()
                    try:
                        load_time = await self._navigate(page, url)
                        data = await self._extract(page, url, load_time)
                        if self.capture_screenshots:
                            data.screenshots = await self._capture(page, url)
                    finally:
                        await page.close()
                finally:
                    await context.close()
            finally:
                await browser.close()
                self.logger.debug("browser_closed", url=url)

        robots, sitemap = await self._probe_site_files(url)
        data.technical.has_robots_txt = robots
        data.technical.has_sitemap = sitemap

        return data

    async def _navigate(self, page: Page, url: str) -> float:
        """
        Load the page, falling back to a relaxed wait condition once.

        Returns:
            Load time in milliseconds
        """
        started = time.monotonic()
        try:
            await page.goto(
                url,
                wait_until="networkidle",
                timeout=self.navigation_timeout * 1000,
            )
        except PlaywrightTimeoutError:
            self.logger.warning(
                "navigation_fallback",
                url=url,
                wait_until="domcontentloaded",
            )
            started = time.monotonic()
            await page.goto(
                url,
                wait_until="domcontentloaded",
                timeout=self.fallback_timeout * 1000,
            )

        load_time = (time.monotonic() - started) * 1000
        self.logger.debug("page_loaded", url=url, load_time=f"{load_time:.0f}ms")
        return load_time

    async def _extract(self, page: Page, url: str, load_time: float) -> StructuralData:
        fields = FieldExtractor(page)

        title = await fields.title()
        meta_description = await fields.attribute('meta[name="description"]', "content")
        headings = Headings(
            h1=await fields.each("h1", _HEADINGS_JS, []),
            h2=await fields.each("h2", _HEADINGS_JS, []),
            h3=await fields.each("h3", _HEADINGS_JS, []),
        )

        images = fields.model("img", ImageStats, await fields.each("img", _IMAGES_JS, {}))
        links = fields.model("a", LinkStats, await fields.each("a", _LINKS_JS, {}))

        viewport = await fields.attribute('meta[name="viewport"]', "content")
        meta = MetaTags(
            viewport=viewport,
            robots=await fields.attribute('meta[name="robots"]', "content"),
            canonical=await fields.attribute('link[rel="canonical"]', "href"),
            og_tags=OpenGraphTags(
                title=await fields.attribute('meta[property="og:title"]', "content"),
                description=await fields.attribute('meta[property="og:description"]', "content"),
                image=await fields.attribute('meta[property="og:image"]', "content"),
                url=await fields.attribute('meta[property="og:url"]', "content"),
            ),
            twitter_tags=TwitterTags(
                card=await fields.attribute('meta[name="twitter:card"]', "content"),
                title=await fields.attribute('meta[name="twitter:title"]', "content"),
                description=await fields.attribute('meta[name="twitter:description"]', "content"),
                image=await fields.attribute('meta[name="twitter:image"]', "content"),
            ),
        )

        schema_blocks = await fields.each('script[type="application/ld+json"]', _SCHEMA_JS, [])
        timing = await fields.evaluate("timing", _TIMING_JS, {})
        dom_content_loaded = timing.get("domContentLoaded", 0)

        technical = TechnicalSeo(
            has_ssl=url.startswith("https://"),
            mobile_friendly=await fields.exists('meta[name="viewport"]'),
            page_speed=PageSpeed(
                load_time=load_time,
                time_to_first_byte=timing.get("timeToFirstByte", 0),
                dom_content_loaded=dom_content_loaded,
            ),
        )

        content = fields.model("content", ContentStats, await fields.evaluate("content", _CONTENT_JS, {}))
        social = fields.model("tracking", TrackingScripts, await fields.evaluate("tracking", _TRACKING_JS, {}))

        if fields.failures:
            self.logger.debug(
                "field_extraction_incomplete",
                url=url,
                missing=len(fields.failures),
                fields=fields.failures,
            )

        return StructuralData(
            title=title,
            meta_description=meta_description,
            headings=headings,
            images=images,
            links=links,
            meta=meta,
            schema_markup=summarize_schema(schema_blocks),
            technical=technical,
            content=content,
            social=social,
            performance=LoadTimings(load_time=load_time, dom_content_loaded=dom_content_loaded),
        )

    async def _capture(self, page: Page, url: str) -> Screenshots:
        self.store.ensure_directory()

        full_name = self.store.new_name(url, "full")
        viewport_name = self.store.new_name(url, "viewport")

        await page.screenshot(path=str(self.store.path_for(full_name)), full_page=True)
        await page.screenshot(path=str(self.store.path_for(viewport_name)))

        self.logger.info("screenshots_captured", url=url, full_page=full_name, viewport=viewport_name)
        return Screenshots(
            full_page=self.store.locator(full_name),
            viewport=self.store.locator(viewport_name),
        )

    async def _probe_site_files(self, url: str):
        """
        Check whether robots.txt and sitemap.xml are served.

        Returns:
            (has_robots_txt, has_sitemap); probe failures count as absent
        """
        parsed = urlparse(url)
        root = f"{parsed.scheme}://{parsed.netloc}/"
        timeout = aiohttp.ClientTimeout(total=self.probe_timeout)

        async with aiohttp.ClientSession(timeout=timeout) as session:
            robots, sitemap = await asyncio.gather(
                self._probe(session, urljoin(root, "robots.txt")),
                self._probe(session, urljoin(root, "sitemap.xml")),
            )
        return robots, sitemap

    async def _probe(self, session: aiohttp.ClientSession, url: str) -> bool:
        try:
            async with session.get(url, allow_redirects=True) as response:
                return response.status == 200
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            self.logger.debug("site_file_probe_failed", url=url, error=str(e))
            return False
