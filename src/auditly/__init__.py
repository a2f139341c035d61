"""
Auditly - Website Audit Service

Runs a browser scraper, a Lighthouse quality scorer and a Gemini visual
reviewer against a single URL and merges their findings into one report.

Copyright (c) 2025
Licensed under MIT License
"""

__version__ = "1.0.0"
__author__ = "Auditly Team"
__status__ = "Development"
