"""AppVet CLI - security review for marketplace app uploads."""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path

import click

from .. import __version__
from ..models.review import Recommendation, ReviewResult, ReviewStatus

EXIT_CODES = {
    Recommendation.APPROVE: 0,
    Recommendation.REJECT: 1,
    Recommendation.MANUAL_REVIEW: 2,
}
EXIT_FAILED = 12
EXIT_CONFIG_ERROR = 13


def exit_code_for(result: ReviewResult) -> int:
    if result.status != ReviewStatus.COMPLETED or result.recommendation is None:
        return EXIT_FAILED
    return EXIT_CODES[result.recommendation]


def _load_config(config_path: str | None, cli_overrides: dict | None = None):
    from ..core.config import get_effective_config

    return get_effective_config(
        config_path=Path(config_path) if config_path else None,
        cli_overrides=cli_overrides,
    )


def _emit(result: ReviewResult, output: str | None, report: bool) -> None:
    payload = result.model_dump_json(by_alias=True, indent=2)
    if output:
        Path(output).write_text(payload, encoding="utf-8")
        click.echo(f"Wrote {output}")
    if report:
        from ..formatters.markdown import generate_review_report

        click.echo(generate_review_report(result))
    elif not output:
        click.echo(payload)


@click.group()
@click.version_option(version=__version__, prog_name="appvet")
def cli() -> None:
    """AppVet - automated security review for uploaded app archives."""


@cli.command()
@click.argument("archive", type=click.Path(exists=True, dir_okay=False))
@click.option("--app-id", required=True, help="Marketplace app identifier")
@click.option("--file-hash", type=str, help="Content hash of the upload (computed if omitted)")
@click.option("--config", "config_path", type=click.Path(exists=True, dir_okay=False), help="Config file")
@click.option("--output", "-o", type=click.Path(dir_okay=False), help="Write the JSON result here")
@click.option("--store", type=click.Path(file_okay=False), help="Review store directory")
@click.option("--name", type=str, default="", help="App name")
@click.option("--description", type=str, default="", help="App description")
@click.option("--category", type=str, default="", help="App category")
@click.option("--price", type=float, default=0.0, help="App price")
@click.option("--sandbox/--no-sandbox", default=None, help="Override sandbox.enabled")
@click.option("--report", is_flag=True, help="Print a markdown report instead of JSON")
def review(
    archive: str,
    app_id: str,
    file_hash: str | None,
    config_path: str | None,
    output: str | None,
    store: str | None,
    name: str,
    description: str,
    category: str,
    price: float,
    sandbox: bool | None,
    report: bool,
) -> None:
    """Run the full review pipeline on ARCHIVE."""
    from ..core.extractor import compute_file_hash
    from ..core.orchestrator import ReviewOrchestrator
    from ..core.store import ReviewStore
    from ..exceptions import ConfigurationError, ReviewStoreError
    from ..models.review import ReviewMetadata

    overrides = {"sandbox": {"enabled": sandbox}} if sandbox is not None else None
    try:
        config = _load_config(config_path, overrides)
    except ConfigurationError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(EXIT_CONFIG_ERROR)

    archive_path = Path(archive)
    file_hash = file_hash or compute_file_hash(archive_path)
    review_store = ReviewStore(Path(store)) if store else None

    try:
        if review_store is not None:
            existing = review_store.latest_completed(app_id, file_hash)
            if existing is not None:
                click.echo(f"Reusing completed review {existing.id} for {file_hash[:12]}", err=True)
                _emit(existing, output, report)
                sys.exit(exit_code_for(existing))

        orchestrator = ReviewOrchestrator(config, store=review_store)
        metadata = ReviewMetadata(
            name=name, description=description, category=category, price=price
        )
        result = asyncio.run(orchestrator.review(app_id, archive_path, file_hash, metadata))
    except ConfigurationError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(EXIT_CONFIG_ERROR)
    except ReviewStoreError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(EXIT_FAILED)

    _emit(result, output, report)
    sys.exit(exit_code_for(result))


@cli.command()
@click.argument("archive", type=click.Path(exists=True, dir_okay=False))
@click.option("--app-id", required=True, help="Marketplace app identifier")
@click.option("--file-hash", type=str, help="Content hash of the upload (computed if omitted)")
@click.option("--config", "config_path", type=click.Path(exists=True, dir_okay=False), help="Config file")
@click.option("--output", "-o", type=click.Path(dir_okay=False), help="Write the JSON result here")
def quick(
    archive: str,
    app_id: str,
    file_hash: str | None,
    config_path: str | None,
    output: str | None,
) -> None:
    """Pattern-only scan of ARCHIVE. Makes no reasoning calls."""
    from ..core.extractor import compute_file_hash
    from ..core.orchestrator import run_quick_review
    from ..exceptions import ConfigurationError

    try:
        config = _load_config(config_path)
    except ConfigurationError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(EXIT_CONFIG_ERROR)

    archive_path = Path(archive)
    result = asyncio.run(
        run_quick_review(app_id, archive_path, file_hash or compute_file_hash(archive_path), config)
    )
    _emit(result, output, report=False)
    sys.exit(exit_code_for(result))


@cli.command()
@click.argument("score", type=click.IntRange(0, 100))
@click.option("--config", "config_path", type=click.Path(exists=True, dir_okay=False), help="Config file")
def trigger(score: int, config_path: str | None) -> None:
    """Print whether an upload with basic SCORE should get a full review."""
    from ..core.orchestrator import ReviewOrchestrator
    from ..exceptions import ConfigurationError

    try:
        orchestrator = ReviewOrchestrator(_load_config(config_path))
    except ConfigurationError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(EXIT_CONFIG_ERROR)

    click.echo("yes" if orchestrator.should_trigger(score) else "no")


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
