"""
Command Line Interface for Train Station Security.

This module provides CLI commands for inspecting the security policy,
previewing response headers, and checking strings and files against the
sanitizer and upload rules.
"""

import mimetypes
import sys
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from train_station_security import __version__
from train_station_security.config.settings import get_settings, validate_required_settings
from train_station_security.core.logging import get_logger, setup_logging
from train_station_security.security.headers import SecurityHeaders
from train_station_security.security.sanitization import InputSanitizer, SanitizationMode
from train_station_security.security.uploads import (
    SIGNATURE_SCAN_BYTES,
    FileUploadDescriptor,
    FileUploadValidator,
)

app = typer.Typer(
    name="train-station-security",
    help="Train Station Dashboard security middleware CLI",
    add_completion=False,
)
console = Console()


@app.callback()
def configure_logging():
    """Configure logging from settings before any command runs."""
    settings = get_settings()
    setup_logging(settings.log_level, settings.environment, settings.log_file)


@app.command()
def version():
    """Show version information."""
    console.print(f"Train Station Security v{__version__}")


@app.command()
def validate_config():
    """Validate the security configuration."""
    try:
        settings = get_settings()
        validate_required_settings(settings)
    except Exception as e:
        console.print(f"❌ Configuration validation failed: {e}", style="red")
        sys.exit(1)

    console.print("✅ Configuration validation successful!", style="green")

    policy = settings.security
    table = Table(title="Security Policy")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="magenta")

    table.add_row("Environment", settings.environment)
    table.add_row("Debug Mode", str(settings.debug))
    table.add_row("CSRF Protection", "✅ Enabled" if policy.enable_csrf else "❌ Disabled")
    table.add_row("Security Headers", "✅ Enabled" if policy.enable_security_headers else "❌ Disabled")
    table.add_row("Input Sanitization", "✅ Enabled" if policy.enable_input_sanitization else "❌ Disabled")
    table.add_row(
        "SQL Injection Filter",
        "✅ Enabled" if policy.enable_sql_injection_protection else "❌ Disabled",
    )
    table.add_row("Max Upload Size", f"{policy.max_file_size_mb:g}MB")
    table.add_row("CSRF Token TTL", f"{policy.csrf_token_ttl_seconds}s")
    table.add_row(
        "Session Limits",
        f"{policy.session_max_age_seconds}s age / {policy.session_max_idle_seconds}s idle",
    )

    console.print(table)


@app.command()
def headers():
    """Show the security headers sent with every response."""
    security_headers = SecurityHeaders(get_settings().security).get_headers()
    if not security_headers:
        console.print("Security headers are disabled", style="yellow")
        return

    table = Table(title="Security Headers")
    table.add_column("Header", style="cyan", no_wrap=True)
    table.add_column("Value", style="magenta", overflow="fold")

    for name, value in security_headers.items():
        table.add_row(name, value)

    console.print(table)


@app.command()
def sanitize(
    text: str = typer.Argument(..., help="Text to sanitize"),
    mode: SanitizationMode = typer.Option(SanitizationMode.TEXT, help="Sanitization mode"),
):
    """Sanitize a string and print the result."""
    sanitizer = InputSanitizer(get_settings().security)
    console.print(sanitizer.sanitize_string(text, mode), markup=False, highlight=False)


@app.command()
def check_file(
    path: Path = typer.Argument(..., exists=True, dir_okay=False, help="File to check"),
    mime_type: Optional[str] = typer.Option(None, help="Declared MIME type (guessed if omitted)"),
):
    """Check a file against the upload rules."""
    logger = get_logger("check_file")

    declared_type = mime_type or mimetypes.guess_type(path.name)[0] or "application/octet-stream"
    with path.open("rb") as f:
        head = f.read(SIGNATURE_SCAN_BYTES)

    descriptor = FileUploadDescriptor(
        name=path.name,
        mime_type=declared_type,
        size_bytes=path.stat().st_size,
        content=head,
    )
    result = FileUploadValidator(get_settings().security).validate(descriptor)
    logger.info("File checked", path=str(path), valid=result.valid)

    if result.valid:
        console.print(f"✅ {result.sanitized_name} is acceptable", style="green", markup=False)
        return

    console.print(f"❌ {path.name} rejected:", style="red", markup=False)
    for error in result.errors:
        console.print(f"  - {error}", markup=False)
    sys.exit(1)


def main():
    """Main CLI entry point."""
    app()


if __name__ == "__main__":
    main()
