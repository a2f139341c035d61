"""
Unit tests for VisualReviewer and the review parser.

Run with: pytest tests/unit/test_visual_reviewer.py -v
"""

import json
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from auditly.analyzers.base_analyzer import AnalyzerStatus
from auditly.analyzers.review_parser import VisualData, extract_object, parse_review, strip_fences
from auditly.analyzers.structural_analyzer import Screenshots
from auditly.analyzers.visual_reviewer import MISSING_KEY_MESSAGE, VisualReviewer
from auditly.core.errors import ReviewParseError
from auditly.core.storage import ScreenshotStore


REQUEST = SimpleNamespace(url="https://example.com")

REVIEW = {
    "overallScore": 78,
    "strengths": ["Clear headline"],
    "weaknesses": ["Low contrast footer"],
    "recommendations": ["Increase footer contrast"],
    "quickFixes": {
        "seo": "Add a meta description",
        "performance": "Compress hero image",
        "mobile": "Enlarge tap targets",
        "content": "Shorten intro",
        "accessibility": "Add alt text",
    },
    "visualAnalysis": {
        "layout": "Single column",
        "colorScheme": "Monochrome",
        "typography": "System fonts",
        "visualHierarchy": "Weak",
        "mobileResponsiveness": "Good",
    },
}


def make_client(text):
    client = MagicMock()
    client.aio.models.generate_content = AsyncMock(return_value=SimpleNamespace(text=text))
    return client


class TestParseReview:
    """Test suite for model reply parsing"""

    def test_plain_json(self):
        review = parse_review(json.dumps(REVIEW))

        assert review.overall_score == 78
        assert review.quick_fixes.mobile == "Enlarge tap targets"
        assert review.visual_analysis.color_scheme == "Monochrome"

    def test_fenced_json_with_prose(self):
        text = "Here is my review:\n```json\n" + json.dumps(REVIEW) + "\n```\nHope it helps!"

        assert parse_review(text).strengths == ["Clear headline"]

    def test_visual_analysis_is_optional(self):
        reply = {k: v for k, v in REVIEW.items() if k != "visualAnalysis"}

        review = parse_review(json.dumps(reply))

        assert review.visual_analysis is None
        assert review.to_dict()["visualAnalysis"] is None

    @pytest.mark.parametrize("text,reason", [
        ("", "empty"),
        ("   ", "empty"),
        (None, "empty"),
        ("I think the site looks great overall.", "does not contain a JSON object"),
        ("{overallScore: 80}", "Failed to parse"),
    ])
    def test_unusable_replies(self, text, reason):
        with pytest.raises(ReviewParseError, match=reason):
            parse_review(text)

    def test_missing_field_is_rejected(self):
        reply = {k: v for k, v in REVIEW.items() if k != "quickFixes"}

        with pytest.raises(ReviewParseError, match="quickFixes|quick_fixes"):
            parse_review(json.dumps(reply))

    def test_wrong_type_is_rejected(self):
        reply = dict(REVIEW, strengths="Clear headline")

        with pytest.raises(ReviewParseError):
            parse_review(json.dumps(reply))

    def test_score_out_of_range_is_rejected(self):
        with pytest.raises(ReviewParseError):
            parse_review(json.dumps(dict(REVIEW, overallScore=140)))

    def test_helpers(self):
        assert strip_fences("```\n{}\n```") == "{}"
        assert strip_fences("no fence") == "no fence"
        assert extract_object('noise {"a": {"b": 1}} tail') == '{"a": {"b": 1}}'


class TestVisualReviewer:
    """Test suite for VisualReviewer class"""

    @pytest.mark.asyncio
    async def test_missing_api_key(self):
        """Test a missing key yields a configuration error result"""
        reviewer = VisualReviewer(api_key=None)

        result = await reviewer.run(REQUEST)

        assert result.status is AnalyzerStatus.ERROR
        assert result.error == MISSING_KEY_MESSAGE
        assert "GOOGLE_AI_API_KEY" in result.error
        assert result.data == VisualData()

    @pytest.mark.asyncio
    async def test_successful_review(self):
        """Test a fenced JSON reply becomes VisualData"""
        client = make_client("```json\n" + json.dumps(REVIEW) + "\n```")
        reviewer = VisualReviewer(client=client, model="gemini-test")

        result = await reviewer.run(REQUEST)

        assert result.status is AnalyzerStatus.SUCCESS
        assert result.data.overall_score == 78
        kwargs = client.aio.models.generate_content.await_args.kwargs
        assert kwargs["model"] == "gemini-test"
        assert len(kwargs["contents"]) == 1
        assert "https://example.com" in kwargs["contents"][0]

    @pytest.mark.asyncio
    async def test_non_json_reply(self):
        """Test prose without JSON yields an error result with zero scores"""
        reviewer = VisualReviewer(client=make_client("The page looks clean and modern."))

        result = await reviewer.run(REQUEST)

        assert result.status is AnalyzerStatus.ERROR
        assert result.error == "AI response does not contain a JSON object"
        body = result.to_dict()
        assert body["data"]["overallScore"] == 0
        assert body["data"]["strengths"] == []
        assert body["data"]["quickFixes"]["seo"] == ""

    @pytest.mark.asyncio
    async def test_api_failure(self):
        """Test an API exception never escapes run()"""
        client = MagicMock()
        client.aio.models.generate_content = AsyncMock(side_effect=RuntimeError("quota exhausted"))
        reviewer = VisualReviewer(client=client)

        result = await reviewer.run(REQUEST)

        assert result.status is AnalyzerStatus.ERROR
        assert result.error == "quota exhausted"

    @pytest.mark.asyncio
    async def test_screenshots_are_attached(self, tmp_path):
        """Test stored screenshots are sent as image parts before the prompt"""
        store = ScreenshotStore(tmp_path)
        store.ensure_directory()
        (tmp_path / "viewport.png").write_bytes(b"\x89PNG viewport")
        (tmp_path / "full.png").write_bytes(b"\x89PNG full")
        screenshots = Screenshots(
            full_page=store.locator("full.png"),
            viewport=store.locator("viewport.png"),
        )
        client = make_client(json.dumps(REVIEW))
        reviewer = VisualReviewer(client=client, store=store)

        result = await reviewer.run(REQUEST, screenshots=screenshots)

        assert result.ok
        contents = client.aio.models.generate_content.await_args.kwargs["contents"]
        assert len(contents) == 3
        assert contents[0].inline_data.data == b"\x89PNG viewport"
        assert contents[1].inline_data.data == b"\x89PNG full"
        assert "Screenshots of the page" in contents[2]

    @pytest.mark.asyncio
    async def test_missing_screenshot_files_are_skipped(self, tmp_path):
        """Test unreadable locators fall back to a text-only request"""
        store = ScreenshotStore(tmp_path)
        screenshots = Screenshots(
            full_page=store.locator("gone-full.png"),
            viewport=store.locator("gone-viewport.png"),
        )
        client = make_client(json.dumps(REVIEW))
        reviewer = VisualReviewer(client=client, store=store)

        result = await reviewer.run(REQUEST, screenshots=screenshots)

        assert result.ok
        assert len(client.aio.models.generate_content.await_args.kwargs["contents"]) == 1


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
