"""
Service configuration loaded from YAML and environment variables.
"""

import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

from .rate_limiter import RateLimitConfig


@dataclass
class AuditConfig:
    """Configuration for the audit service"""

    # HTTP server
    host: str = "127.0.0.1"
    port: int = 8080
    stream_by_default: bool = True

    # Orchestration
    audit_timeout: Optional[float] = 180.0  # Global deadline per audit (None disables)
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)

    # Structural analyzer (Playwright)
    screenshot_dir: str = "screenshots"
    headless: bool = True
    navigation_timeout: float = 30.0   # Strict (networkidle) attempt
    fallback_timeout: float = 60.0     # Relaxed (domcontentloaded) retry
    structural_timeout: float = 120.0

    # Quality scorer (Lighthouse worker)
    quality_timeout: float = 30.0
    lighthouse_path: str = "lighthouse"

    # Visual reviewer (Gemini)
    google_api_key: Optional[str] = None
    gemini_model: str = "gemini-2.0-flash"
    visual_timeout: float = 60.0

    # Logging
    log_level: str = "INFO"
    json_logs: bool = False

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AuditConfig":
        """
        Build a config from a mapping, ignoring unknown keys.

        Args:
            data: Mapping such as a parsed YAML document
        """
        known = {f.name for f in fields(cls)}
        values = {key: value for key, value in data.items() if key in known}

        rate_limit = values.get("rate_limit")
        if isinstance(rate_limit, dict):
            values["rate_limit"] = RateLimitConfig(**rate_limit)

        return cls(**values)

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "AuditConfig":
        """Load configuration from a YAML file"""
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}

        if not isinstance(data, dict):
            raise ValueError(f"Configuration file {path} must contain a mapping")

        return cls.from_dict(data)

    @classmethod
    def load(cls, path: Optional[Union[str, Path]] = None) -> "AuditConfig":
        """Load from an optional YAML file, then apply environment overrides"""
        config = cls.from_yaml(path) if path else cls()
        return config.with_env()

    def with_env(self, environ: Optional[Dict[str, str]] = None) -> "AuditConfig":
        """
        Apply environment variable overrides in place.

        Recognised variables: GOOGLE_AI_API_KEY, AUDITLY_SCREENSHOT_DIR,
        AUDITLY_GEMINI_MODEL, AUDITLY_RATE_LIMIT_MAX_REQUESTS,
        AUDITLY_RATE_LIMIT_WINDOW, AUDITLY_LOG_LEVEL.
        """
        env = os.environ if environ is None else environ

        if env.get("GOOGLE_AI_API_KEY"):
            self.google_api_key = env["GOOGLE_AI_API_KEY"]
        if env.get("AUDITLY_SCREENSHOT_DIR"):
            self.screenshot_dir = env["AUDITLY_SCREENSHOT_DIR"]
        if env.get("AUDITLY_GEMINI_MODEL"):
            self.gemini_model = env["AUDITLY_GEMINI_MODEL"]
        if env.get("AUDITLY_RATE_LIMIT_MAX_REQUESTS"):
            self.rate_limit.max_requests = int(env["AUDITLY_RATE_LIMIT_MAX_REQUESTS"])
        if env.get("AUDITLY_RATE_LIMIT_WINDOW"):
            self.rate_limit.window_seconds = float(env["AUDITLY_RATE_LIMIT_WINDOW"])
        if env.get("AUDITLY_LOG_LEVEL"):
            self.log_level = env["AUDITLY_LOG_LEVEL"]

        return self
