"""
Visual Reviewer - Generative-AI UX critique with Gemini.

Asks a Gemini model for a structured UX/UI review of the page, grounding it
on the structural analyzer's screenshots when they are available.
"""

from typing import Any, List, Optional

from google import genai
from google.genai import types

from ..core.errors import AnalyzerConfigurationError
from ..core.storage import ScreenshotStore
from .base_analyzer import BaseAnalyzer
from .review_parser import VisualData, parse_review


REVIEW_PROMPT = """
Analyze the following website for UX/UI design and user experience: {url}
{screenshot_note}
Please provide:
1. An overall UX score (0-100)
2. Key strengths of the design
3. Areas for improvement
4. Specific recommendations
5. One quick fix each for SEO, performance, mobile, content and accessibility
6. A short visual analysis of layout, color scheme, typography, visual
   hierarchy and mobile responsiveness

Respond with only a JSON object with the following structure:
{{
  "overallScore": number,
  "strengths": string[],
  "weaknesses": string[],
  "recommendations": string[],
  "quickFixes": {{
    "seo": string,
    "performance": string,
    "mobile": string,
    "content": string,
    "accessibility": string
  }},
  "visualAnalysis": {{
    "layout": string,
    "colorScheme": string,
    "typography": string,
    "visualHierarchy": string,
    "mobileResponsiveness": string
  }}
}}
"""

SCREENSHOT_NOTE = "Screenshots of the page (viewport, then full page) are attached.\n"

MISSING_KEY_MESSAGE = (
    "AI analysis is not configured. "
    "Please set GOOGLE_AI_API_KEY in your environment variables."
)


class VisualReviewer(BaseAnalyzer[VisualData]):
    """
    Gemini-backed UX reviewer.

    The model's reply is free-form text; it is accepted only after
    ``parse_review()`` has found a JSON object with every expected field.

    Example:
        >>> reviewer = VisualReviewer(api_key=os.environ["GOOGLE_AI_API_KEY"], store=store)
        >>> result = await reviewer.run(request, screenshots=structural.data.screenshots)
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = "gemini-2.0-flash",
        store: Optional[ScreenshotStore] = None,
        timeout: float = 60.0,
        client: Optional[Any] = None,
    ):
        """
        Initialize the visual reviewer.

        Args:
            api_key: Google AI API key
            model: Gemini model name
            store: Screenshot storage used to resolve screenshot locators
            timeout: Budget for one review in seconds
            client: Pre-built ``genai.Client`` (overrides api_key)
        """
        super().__init__(analyzer_name="VisualReviewer", timeout=timeout)

        self.api_key = api_key
        self.model = model
        self.store = store
        self._client = client

    def empty_data(self) -> VisualData:
        return VisualData()

    def _get_client(self):
        if self._client is None:
            if not self.api_key:
                raise AnalyzerConfigurationError(MISSING_KEY_MESSAGE)
            self._client = genai.Client(api_key=self.api_key)
        return self._client

    async def _analyze(self, request, screenshots=None, **aux) -> VisualData:
        client = self._get_client()

        images = self._load_screenshots(screenshots)
        prompt = REVIEW_PROMPT.format(
            url=request.url,
            screenshot_note=SCREENSHOT_NOTE if images else "",
        )
        contents: List[Any] = [
            types.Part.from_bytes(data=image, mime_type="image/png") for image in images
        ]
        contents.append(prompt)

        self.logger.debug("requesting_review", url=request.url, model=self.model, images=len(images))
        response = await client.aio.models.generate_content(model=self.model, contents=contents)

        return parse_review(getattr(response, "text", None))

    def _load_screenshots(self, screenshots) -> List[bytes]:
        """Read screenshot bytes for the given locators; unreadable ones are skipped"""
        if screenshots is None or self.store is None:
            return []

        images = []
        for locator in (screenshots.viewport, screenshots.full_page):
            try:
                data = self.store.read_locator(locator)
            except OSError as e:
                self.logger.warning("screenshot_unreadable", locator=locator, error=str(e))
                continue
            if data:
                images.append(data)
        return images
