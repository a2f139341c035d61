"""
Unit tests for the command-line interface.

Run with: pytest tests/unit/test_cli.py -v
"""

import pytest
from click.testing import CliRunner

from auditly import __version__
from auditly.analyzers.base_analyzer import AnalyzerResult
from auditly.analyzers.lighthouse_worker import QualityData
from auditly.analyzers.review_parser import VisualData
from auditly.analyzers.structural_analyzer import StructuralData
from auditly.cli import cli, print_report
from auditly.core.orchestrator import AuditReport


class TestCli:
    """Test suite for click commands"""

    def test_version_command(self):
        result = CliRunner().invoke(cli, ["version"])

        assert result.exit_code == 0
        assert f"Auditly v{__version__}" in result.output
        assert "Lighthouse" in result.output

    def test_audit_rejects_invalid_url(self):
        result = CliRunner().invoke(cli, ["audit", "not-a-url"])

        assert result.exit_code == 2
        assert "Invalid URL provided" in result.output

    def test_print_report_handles_failed_analyzers(self):
        from datetime import datetime, timezone

        report = AuditReport(
            url="https://example.com",
            timestamp=datetime.now(timezone.utc),
            structural=AnalyzerResult.success(StructuralData(title="Example Domain")),
            quality=AnalyzerResult.failure(QualityData(), "Lighthouse binary not found: lighthouse"),
            visual=AnalyzerResult.failure(VisualData(), "AI analysis is not configured."),
        ).to_dict()

        print_report(report)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
