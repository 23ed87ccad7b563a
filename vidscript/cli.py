"""vidscript CLI — extract a transcript from the command line.

Usage:
    vidscript "https://youtu.be/dQw4w9WgXcQ" --guest-ip 127.0.0.1
    vidscript "https://www.bilibili.com/video/BV1xx411c7mD" --user alice --tier pro --format srt
    vidscript --check
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path

import typer

from .exporter import ExportFormat

app = typer.Typer(add_completion=False, pretty_exceptions_enable=False)


@app.command()
def main(
    url: str = typer.Argument(None, help="Video URL (YouTube, Bilibili or Xiaohongshu)"),
    guest_ip: str = typer.Option(None, "--guest-ip", help="Run as a guest keyed by this IP address"),
    user: str = typer.Option(None, "--user", help="Account id for an authenticated run"),
    tier: str = typer.Option("free", "--tier", help="Subscription tier: free, pro or enterprise"),
    fmt: ExportFormat = typer.Option(ExportFormat.TXT, "--format", help="Output format"),
    language: str = typer.Option(None, "--language", help="Spoken language hint, e.g. 'en' (default: auto)"),
    output: Path = typer.Option(None, "--output", "-o", help="Write the transcript to this file"),
    check: bool = typer.Option(False, "--check", help="Report downloader / transcription availability"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log pipeline progress to stderr"),
) -> None:
    """Video-to-transcript extraction."""
    sys.stdout.reconfigure(encoding="utf-8")
    if verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    from .orchestrator import get_orchestrator

    orchestrator = get_orchestrator()

    if check:
        services = orchestrator.check_services()
        for name, ok in services.items():
            typer.echo(f"  {name:<14} {'ok' if ok else 'unavailable'}")
        raise typer.Exit(0 if all(services.values()) else 1)

    if not url:
        typer.echo("Error: a video URL is required.\n"
                   "  vidscript 'https://youtu.be/<id>' --guest-ip 127.0.0.1\n"
                   "  vidscript 'https://youtu.be/<id>' --user <account> --tier pro")
        raise typer.Exit(1)

    if guest_ip and user:
        typer.echo("Error: use either --guest-ip or --user, not both.")
        raise typer.Exit(1)

    def _report(event) -> None:
        if verbose:
            typer.echo(f"[{event.stage}] {event.status_text}", err=True)

    if user:
        result = orchestrator.extract_authenticated(url, user, language=language, tier=tier, progress=_report)
    else:
        result = orchestrator.extract_guest(url, guest_ip or "127.0.0.1", language=language, progress=_report)

    if result.kind == "error":
        typer.echo(f"Error [{result.error_kind.value}]: {result.message}", err=True)
        raise typer.Exit(2)

    from .exporter import format_transcript

    rendered = format_transcript(result.transcript, fmt)
    if output:
        output.write_text(rendered, encoding="utf-8")
        typer.echo(f"Wrote {fmt.value} transcript to {output}", err=True)
    else:
        typer.echo(rendered)

    if result.degraded_by is not None:
        typer.echo(f"Warning: transcription failed ({result.degraded_by.value}), fallback transcript returned",
                   err=True)
    if result.guest_info is not None:
        typer.echo(f"Guest extractions remaining today: {result.guest_info.remaining_extractions}", err=True)


if __name__ == "__main__":
    app()
