#!/usr/bin/env python3
"""
Auditly - Website Audit Service

Main entry point when running from a source checkout.

Usage:
    python main.py serve --port 8080
    python main.py audit https://example.com
"""

from auditly.cli import cli


if __name__ == '__main__':
    cli()
