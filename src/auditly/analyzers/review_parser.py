"""
Parser for the generative model's UX review.

Expected grammar of a reply:

    reply   := prose? fence? object fence? prose?
    fence   := "```" ["json"]
    object  := a single JSON object matching VisualData

Fences and surrounding prose are discarded, the outermost ``{...}`` block is
decoded and the result is validated strictly. Anything else is rejected with
ReviewParseError.
"""

import json
import re
from typing import List, Optional

from pydantic import Field, StrictStr, ValidationError

from ..core.errors import ReviewParseError
from .base_analyzer import ReportModel


_FENCE = re.compile(r"```[A-Za-z]*[ \t]*\n?(.*?)\n?```", re.DOTALL)


class QuickFixes(ReportModel):
    seo: str = ""
    performance: str = ""
    mobile: str = ""
    content: str = ""
    accessibility: str = ""


class VisualAnalysis(ReportModel):
    layout: str = ""
    color_scheme: str = ""
    typography: str = ""
    visual_hierarchy: str = ""
    mobile_responsiveness: str = ""


class VisualData(ReportModel):
    """UX/visual critique of a page"""

    overall_score: float = 0
    strengths: List[str] = Field(default_factory=list)
    weaknesses: List[str] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)
    quick_fixes: QuickFixes = Field(default_factory=QuickFixes)
    visual_analysis: Optional[VisualAnalysis] = None


# Strict mirrors of the models above: every field must be present in the reply
# and strings must really be strings.

class _QuickFixesSchema(ReportModel):
    seo: StrictStr
    performance: StrictStr
    mobile: StrictStr
    content: StrictStr
    accessibility: StrictStr


class _VisualAnalysisSchema(ReportModel):
    layout: StrictStr
    color_scheme: StrictStr
    typography: StrictStr
    visual_hierarchy: StrictStr
    mobile_responsiveness: StrictStr


class _ReviewSchema(ReportModel):
    overall_score: float = Field(ge=0, le=100, strict=True)
    strengths: List[StrictStr]
    weaknesses: List[StrictStr]
    recommendations: List[StrictStr]
    quick_fixes: _QuickFixesSchema
    visual_analysis: Optional[_VisualAnalysisSchema] = None


def strip_fences(text: str) -> str:
    """Return the body of the first Markdown code fence, or the text itself"""
    match = _FENCE.search(text)
    if match:
        return match.group(1)
    return text


def extract_object(text: str) -> str:
    """
    Cut the outermost JSON object out of free-form text.

    Raises:
        ReviewParseError: If no object delimiters are found
    """
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end <= start:
        raise ReviewParseError("AI response does not contain a JSON object")
    return text[start:end + 1]


def parse_review(text: Optional[str]) -> VisualData:
    """
    Parse and validate a model reply.

    Args:
        text: Raw reply text

    Returns:
        VisualData

    Raises:
        ReviewParseError: If the reply is empty, not JSON, or misses any
            expected field
    """
    if not text or not text.strip():
        raise ReviewParseError("AI response was empty")

    body = extract_object(strip_fences(text))
    try:
        payload = json.loads(body)
    except json.JSONDecodeError:
        raise ReviewParseError("Failed to parse AI analysis response")

    if not isinstance(payload, dict):
        raise ReviewParseError("AI response is not a JSON object")

    try:
        review = _ReviewSchema.model_validate(payload)
    except ValidationError as e:
        fields = sorted({".".join(str(p) for p in err["loc"]) for err in e.errors()})
        raise ReviewParseError(f"AI response is missing or has invalid fields: {', '.join(fields)}")

    return VisualData.model_validate(review.model_dump())
