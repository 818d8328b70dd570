"""
clonecheck - CLI Entry Point.
Operator CLI using Click and Rich.
"""

import asyncio
import json
import sys
from functools import wraps
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from clonecheck import __version__
from clonecheck.config.settings import get_settings
from clonecheck.services.analysis_validator import AnalysisValidator, to_versioned_document
from clonecheck.services.first_party import create_first_party_extractor
from clonecheck.services.validation_service import ValidationService
from clonecheck.utils.errors import AppError, build_error_response, resolve_request_id
from clonecheck.utils.logger import setup_logging
from clonecheck.utils.retry import generate_error_guidance

# Initialize Rich Console
console = Console()

# =============================================================================
# Helper Functions
# =============================================================================

def async_command(f):
    """Decorator to run async click commands."""
    @wraps(f)
    def wrapper(*args, **kwargs):
        return asyncio.run(f(*args, **kwargs))
    return wrapper


def setup_logger(verbose: bool):
    """Configure logging based on verbosity."""
    setup_logging(level="DEBUG" if verbose else "WARNING", json_format=False)


def fail(error: Exception, verbose: bool = False) -> None:
    """Print the user-facing message of a failure and exit with status 1."""
    message = error.user_message if isinstance(error, AppError) else "Internal server error"
    console.print(f"[bold red]Error:[/bold red] {message}")
    if verbose:
        console.print(f"[dim]{type(error).__name__}: {error}[/dim]")
    sys.exit(1)


def read_json(path: str):
    return json.loads(Path(path).read_text(encoding="utf-8"))


# =============================================================================
# CLI Group
# =============================================================================

@click.group()
@click.version_option(version=__version__)
def cli():
    """clonecheck - validation and error taxonomy for AI business analyses"""
    pass

# =============================================================================
# Commands
# =============================================================================

@cli.command()
@click.argument("file_path", type=click.Path(exists=True))
@click.option("--url", "target_url", required=True, help="URL the analysis was generated for")
@click.option("--first-party", "first_party_path", type=click.Path(exists=True), help="JSON file with first-party data")
@click.option("--verbose", is_flag=True, help="Detailed logging")
def validate_analysis(file_path: str, target_url: str, first_party_path: Optional[str], verbose: bool):
    """
    Repair and validate a raw AI analysis payload.

    FILE_PATH: JSON file with the provider response.
    """
    setup_logger(verbose)
    service = ValidationService()
    validator = AnalysisValidator(service)

    try:
        raw = read_json(file_path)
        first_party = None
        if first_party_path:
            first_party = service.validate_first_party_data(read_json(first_party_path))
            if first_party is None:
                console.print("[yellow]Warning: first-party data is invalid and was ignored.[/yellow]")

        analysis = validator.parse_enhanced_analysis(raw, target_url, first_party)
    except json.JSONDecodeError as e:
        console.print(f"[bold red]Error:[/bold red] File is not valid JSON ({e.msg})")
        sys.exit(1)
    except AppError as e:
        fail(e, verbose)

    confidence = analysis.technical.confidence if analysis.technical else None
    table = Table(title="Analysis Summary", show_header=False)
    table.add_row("Schema Version", "2")
    table.add_row("Confidence", "n/a" if confidence is None else f"{confidence:.2f}")
    table.add_row(
        "Speculative",
        "[yellow]Yes[/yellow]" if service.is_speculative(confidence) else "No",
    )
    table.add_row("Sources", str(len(analysis.sources)))
    console.print(table)
    console.print_json(json.dumps(to_versioned_document(analysis)))


@cli.command()
@click.argument("url")
@click.option("--goal", default=None, help="Optional analysis goal")
@click.option("--request-id", default=None, help="Forwarded X-Request-ID")
def check_request(url: str, goal: Optional[str], request_id: Optional[str]):
    """
    Validate an analysis request.

    Prints the canonical URL, or the wire error body on failure.
    """
    setup_logger(False)
    body = {"url": url} if goal is None else {"url": url, "goal": goal}

    try:
        request = ValidationService().validate_analysis_request(body)
    except AppError as e:
        settings = get_settings()
        status, payload = build_error_response(
            e, resolve_request_id(request_id), production=settings.is_production
        )
        console.print(f"[bold red]{status}[/bold red]")
        console.print_json(json.dumps(payload))
        sys.exit(1)

    console.print(f"[green]✓[/green] {request.url}")
    if request.goal:
        console.print(f"Goal: {request.goal}")


@cli.command()
@click.argument("message")
@click.option("--context", default=None, help="What was being done, e.g. 'analyzing the website'")
def guidance(message: str, context: Optional[str]):
    """Show user guidance for an error MESSAGE."""
    result = generate_error_guidance(Exception(message), context=context)

    lines = [f"[bold]{result.user_message}[/bold]", ""]
    lines.extend(f"• {step}" for step in result.next_steps)
    lines.append("")
    lines.append(f"Retryable: {'[green]yes[/green]' if result.retryable else '[red]no[/red]'}")
    if result.estimated_wait_time:
        lines.append(f"Estimated wait: {result.estimated_wait_time}")

    console.print(Panel("\n".join(lines), title="Error Guidance"))


@cli.command()
@click.argument("url")
@click.option("--verbose", is_flag=True, help="Detailed logging")
@async_command
async def fetch_first_party(url: str, verbose: bool):
    """
    Extract sanitized first-party data from URL.
    Outputs JSON result to stdout.
    """
    setup_logger(verbose)

    try:
        async with create_first_party_extractor(get_settings()) as extractor:
            console.print(f"[dim]Fetching {url}...[/dim]", style="italic")
            data = await extractor.extract(url)
    except AppError as e:
        fail(e, verbose)

    console.print_json(data.to_json())


@cli.command()
def validate_setup():
    """Check AI provider keys and environment configuration."""
    console.print("[bold]Validating Setup...[/bold]")

    try:
        settings = get_settings()
    except Exception as e:
        console.print(f"[bold red]Configuration Error:[/bold red] {e}")
        sys.exit(1)

    provider = settings.get_ai_provider()

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Check")
    table.add_column("Status")
    table.add_column("Details")

    status = "[green]Pass[/green]" if provider != "none" else "[red]Fail[/red]"
    table.add_row("AI Provider", status, provider)
    table.add_row("Environment", "[blue]Info[/blue]", settings.app_env)
    table.add_row(
        "Retry Policy",
        "[blue]Info[/blue]",
        f"{settings.retry_max_attempts} attempts, {settings.retry_delay_ms}ms x{settings.retry_backoff_multiplier}",
    )
    table.add_row("AI Timeout", "[blue]Info[/blue]", f"{settings.ai_timeout_ms}ms")
    console.print(table)

    if provider == "none":
        console.print(
            "\n[yellow]Warning: No AI provider key configured "
            "(GEMINI_API_KEY, OPENAI_API_KEY or ANTHROPIC_API_KEY).[/yellow]"
        )
        sys.exit(1)


if __name__ == "__main__":
    cli()
