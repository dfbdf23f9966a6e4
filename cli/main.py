"""crawlworker CLI: entry-point for running and debugging the crawl worker.

Usage:
    crawlworker --help

Commands:
    run             → lease and crawl against the orchestrator until a stop condition
    scrape          → fetch and extract one page locally (no orchestrator involved)
    validate-input  → check a run-input JSON file and print the resolved config
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

import typer

from crawlworker.config import settings

app = typer.Typer(
    name="crawlworker",
    help="Website content crawler worker.",
    no_args_is_help=True,
)


def _configure_logging() -> None:
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


# ---------------------------------------------------------------------------
# Worker
# ---------------------------------------------------------------------------
@app.command("run")
def run() -> None:
    """Run the worker against the orchestrator API configured in the environment."""
    from crawlworker.worker import run_worker

    _configure_logging()
    typer.echo(f"[run] Starting worker for run {settings.run_id or '(unset)'!r} …")
    exit_code = run_worker(settings)
    if exit_code != 0:
        typer.echo("[run] Run crashed; see log output above.", err=True)
        raise typer.Exit(exit_code)
    typer.echo("[run] Run finished.")


# ---------------------------------------------------------------------------
# Local debugging
# ---------------------------------------------------------------------------
@app.command("scrape")
def scrape(
    url: str = typer.Option(..., help="URL to fetch."),
    engine: str = typer.Option("http:fast", help="Engine: http:fast | playwright | camoufox."),
    transformer: str = typer.Option("markdown", help="Markdown mode: none | readable | markdown."),
) -> None:
    """Fetch a single URL, run extraction and link discovery, and print the result."""
    from crawlworker.policy import build_scope_matcher, resolve_engine
    from crawlworker.scraper import (
        ExtractionOptions,
        FetchOptions,
        HttpSession,
        discover_links,
        ensure_not_blocked,
        extract_content,
        fetch_page,
    )

    _configure_logging()
    resolution = resolve_engine(engine, settings.camoufox_available)
    if resolution.fallback_reason:
        typer.echo(f"[scrape] {engine} unavailable ({resolution.fallback_reason}); using {resolution.selected}")

    scope = build_scope_matcher([url])
    http = HttpSession(settings.proxy, settings.user_agent, settings.request_timeout)
    options = FetchOptions(
        user_agent=settings.user_agent,
        request_timeout=settings.request_timeout,
        navigation_timeout=settings.navigation_timeout_for(settings.proxy.enabled),
    )

    typer.echo(f"[scrape] Fetching {url!r} with {resolution.selected} …")
    try:
        page = ensure_not_blocked(fetch_page(url, resolution.selected, options, http))
    finally:
        http.close()
    typer.echo(f"[scrape] HTTP {page.status_code} via {page.fetch_engine}, extracting content …")

    extracted = extract_content(
        page.html,
        url,
        page.final_url,
        ExtractionOptions(html_transformer=transformer, is_in_scope=scope),
    )
    discovered = discover_links(page.html, page.final_url, is_in_scope=scope)

    typer.echo(f"[scrape] Title      : {extracted.title or '(none)'}")
    typer.echo(f"[scrape] Language   : {extracted.language or '(none)'}")
    typer.echo(f"[scrape] Links      : {len(extracted.links)}")
    typer.echo(f"[scrape] Discovered : {len(discovered)} in-scope")
    typer.echo("")
    typer.echo(extracted.content_markdown or extracted.content_text or "")


@app.command("validate-input")
def validate_input(
    path: Path = typer.Argument(..., help="Path to a run-input JSON file."),
) -> None:
    """Validate a run-input JSON file and print the resolved configuration."""
    from crawlworker.runtime.input import InputValidationError, parse_run_input

    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        typer.echo(f"[validate-input] Cannot read {path}: {exc}", err=True)
        raise typer.Exit(2)

    try:
        config = parse_run_input(raw)
    except InputValidationError as exc:
        typer.echo(f"[validate-input] Invalid input: {exc}", err=True)
        raise typer.Exit(1)

    typer.echo(json.dumps(config.model_dump(by_alias=True), indent=2))


# ---------------------------------------------------------------------------
# Entry-point
# ---------------------------------------------------------------------------
if __name__ == "__main__":
    app()
