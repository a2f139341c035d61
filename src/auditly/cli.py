"""
Auditly - Website Audit Service

Command-line interface: run the audit server or audit a URL directly.

Usage:
    auditly serve --port 8080
    auditly audit https://example.com
    auditly audit https://example.com --batch --output report.json
"""

import asyncio
import json
import sys
from pathlib import Path

import click
from aiohttp import web
from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from . import __version__
from .core.config import AuditConfig
from .core.errors import AuditError
from .core.logging import configure_logging
from .core.orchestrator import build_orchestrator
from .web import create_app


console = Console()


def _load_config(config_path) -> AuditConfig:
    config = AuditConfig.load(config_path)
    configure_logging(config.log_level, config.json_logs)
    return config


@click.group()
@click.version_option(version=__version__, prog_name="Auditly")
def cli():
    """
    Auditly - Website Audit Service

    Scrapes, scores and reviews a web page, then merges the findings.
    """
    pass


@cli.command()
@click.option('--config', 'config_path', type=click.Path(exists=True), help='YAML configuration file')
@click.option('--host', default=None, help='Bind address (overrides config)')
@click.option('--port', default=None, type=int, help='Port (overrides config)')
def serve(config_path, host, port):
    """
    Run the audit HTTP service.

    Example:
        auditly serve --port 8080
    """
    config = _load_config(config_path)
    if host:
        config.host = host
    if port:
        config.port = port

    console.print(f"[green]Auditly[/green] listening on http://{config.host}:{config.port}")
    console.print(f"[green]Screenshots:[/green] {config.screenshot_dir}")
    console.print(
        f"[green]Rate Limit:[/green] {config.rate_limit.max_requests} audits "
        f"per {config.rate_limit.window_seconds:g}s"
    )

    web.run_app(create_app(config), host=config.host, port=config.port, print=None)


@cli.command()
@click.argument('url')
@click.option('--config', 'config_path', type=click.Path(exists=True), help='YAML configuration file')
@click.option('--stream/--batch', default=True, help='Run the structural analyzer first and show the preview (default: stream)')
@click.option('--output', type=click.Path(), help='Save the report to a JSON file')
def audit(url, config_path, stream, output):
    """
    Audit a single URL from the command line.

    Example:
        auditly audit https://example.com
    """
    config = _load_config(config_path)

    console.print("\n" + "=" * 80)
    console.print("Auditly - Website Audit")
    console.print("=" * 80 + "\n")
    console.print(f"[green]Target:[/green] {url}")
    console.print(f"[green]Mode:[/green] {'stream' if stream else 'batch'}")
    console.print(f"[green]AI Review:[/green] {'[bold green]Configured[/bold green]' if config.google_api_key else '[dim]No API key[/dim]'}")
    console.print()

    try:
        report = asyncio.run(run_audit(config, url, stream))
    except AuditError as e:
        console.print(f"\n[bold red]Audit rejected:[/bold red] {e}")
        sys.exit(2)
    except KeyboardInterrupt:
        console.print("\n\n[yellow]Audit interrupted by user[/yellow]")
        sys.exit(1)

    print_report(report)

    if output:
        output_path = Path(output)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        with open(output_path, 'w') as f:
            json.dump(report, f, indent=2)
        console.print(f"\n[green]Report saved to:[/green] {output_path}")


async def run_audit(config: AuditConfig, url: str, stream: bool) -> dict:
    """
    Run one audit with a progress spinner.

    Returns:
        Report dictionary
    """
    orchestrator = build_orchestrator(config)
    request = orchestrator.prepare(url, client_key="cli")

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console,
    ) as progress:
        task = progress.add_task("[cyan]Running analyzers...", total=None)

        def on_event(event, data):
            if event == "preview_ready":
                progress.update(task, description=f"[cyan]{data['message']}")
                progress.console.print(f"[green]Viewport screenshot:[/green] {data['preview']['viewport']}")
            elif event == "audit_completed":
                progress.update(task, description="[green]Audit complete!")

        orchestrator.subscribe(on_event)

        if not stream:
            report = await orchestrator.run(request)
            return report.to_dict()

        final = {}
        async for message in orchestrator.stream(request):
            final = message
        return final


def _status_cell(result: dict) -> str:
    if result["status"] == "success":
        return "[green]success[/green]"
    return f"[red]error[/red] {result.get('error', '')}"


def print_report(report: dict):
    """Render the report summary as rich tables"""
    table = Table(title=f"Audit of {report['url']}")
    table.add_column("Analyzer", style="cyan", no_wrap=True)
    table.add_column("Status")

    for name in ("structural", "quality", "visual"):
        table.add_row(name.title(), _status_cell(report[name]))
    console.print(table)

    structural = report["structural"]["data"]
    vitals = structural["technical"]["coreWebVitals"]
    console.print(f"\n[bold]Title:[/bold] {structural['title'] or '[dim]missing[/dim]'}")
    console.print(f"[bold]Meta description:[/bold] {structural['metaDescription'] or '[dim]missing[/dim]'}")
    console.print(f"[bold]Core Web Vitals:[/bold] LCP {vitals['lcp']:.2f}s, FID {vitals['fid']:.0f}ms, CLS {vitals['cls']:.3f}")

    quality = report["quality"]["data"]
    scores = Table(title="Lighthouse Scores")
    for column in ("Performance", "Accessibility", "Best Practices", "SEO", "PWA"):
        scores.add_column(column, justify="right")
    scores.add_row(*(str(quality[key]) for key in (
        "performance", "accessibility", "bestPractices", "seo", "progressiveWebApp",
    )))
    console.print(scores)

    visual = report["visual"]["data"]
    if report["visual"]["status"] == "success":
        console.print(f"\n[bold cyan]UX Score:[/bold cyan] {visual['overallScore']:g}/100")
        for recommendation in visual["recommendations"]:
            console.print(f"  • {recommendation}")

    console.print("\n" + "=" * 80 + "\n")


@cli.command()
def version():
    """Show version information and capabilities"""
    console.print(f"\n[bold cyan]Auditly v{__version__}[/bold cyan]")
    console.print("[cyan]Website Audit Service[/cyan]\n")

    table = Table(title="Analyzers")
    table.add_column("Analyzer", style="cyan", no_wrap=True)
    table.add_column("Engine", style="green")
    table.add_column("Notes", style="yellow")

    table.add_row("Structural", "Playwright (Chromium)", "SEO facts, screenshots")
    table.add_row("Quality", "Lighthouse CLI", "Isolated worker process")
    table.add_row("Visual", "Gemini", "Requires GOOGLE_AI_API_KEY")

    console.print(table)
    console.print()
