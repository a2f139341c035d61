"""
Analyzers module.

This package contains the three audit analyzers. Each inherits from
BaseAnalyzer, whose run() always resolves with a structurally complete
AnalyzerResult.

Available analyzers:
- StructuralAnalyzer: DOM/SEO inspection and screenshots (Playwright)
- QualityScorer: Category scores and timing metrics (Lighthouse worker)
- VisualReviewer: UX/visual critique (Gemini)
"""

from .base_analyzer import (
    AnalyzerResult,
    AnalyzerStatus,
    BaseAnalyzer,
    ReportModel,
)
from .lighthouse_worker import QualityData
from .quality_scorer import QualityScorer
from .review_parser import VisualData, parse_review
from .structural_analyzer import Screenshots, StructuralAnalyzer, StructuralData
from .visual_reviewer import VisualReviewer


__all__ = [
    # Base classes
    "BaseAnalyzer",
    "AnalyzerResult",
    "AnalyzerStatus",
    "ReportModel",
    # Data
    "StructuralData",
    "Screenshots",
    "QualityData",
    "VisualData",
    "parse_review",
    # Analyzers
    "StructuralAnalyzer",
    "QualityScorer",
    "VisualReviewer",
]
