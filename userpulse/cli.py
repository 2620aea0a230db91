"""Command-line interface for UserPulse."""

import asyncio
import logging
import sys
from pathlib import Path
from typing import List, Optional

import typer
from pydantic import ValidationError
from typing_extensions import Annotated

from userpulse.config.settings import settings
from userpulse.core.errors import JobFailed, UserPulseError
from userpulse.core.service import build_service
from userpulse.models.dtos import AnalysisResult, MiningRequest
from userpulse.utils.logging_utils import setup_logging

app = typer.Typer(help="UserPulse - competitive intelligence from Reddit discussions")

logger = logging.getLogger(__name__)


@app.command()
def serve(
    host: Annotated[str, typer.Option("--host", help="Interface to bind")] = settings.API_HOST,
    port: Annotated[int, typer.Option("--port", "-p", help="Port to listen on")] = settings.API_PORT,
    loglevel: Annotated[str, typer.Option("--loglevel", "-l", help="Logging level")] = "INFO",
) -> None:
    """Run the HTTP API."""
    import uvicorn

    setup_logging(level=loglevel)
    logger.info(f"Serving {settings.APP_NAME} on {host}:{port}")
    uvicorn.run("userpulse.api.main:app", host=host, port=port, log_level=loglevel.lower())


async def run_analysis(request: MiningRequest, timeout: Optional[float]) -> AnalysisResult:
    service = build_service(settings)
    try:
        return await service.client().run(request, timeout=timeout, on_log=typer.echo)
    finally:
        await service.close()


@app.command()
def analyze(
    entity: Annotated[str, typer.Argument(help="Your product")],
    competitor: Annotated[List[str], typer.Option("--competitor", "-c", help="Competitor name (1-3)")],
    days: Annotated[int, typer.Option("--days", "-d", help="Look-back window in days")] = 30,
    min_score: Annotated[int, typer.Option("--min-score", help="Minimum post score")] = 5,
    max_threads: Annotated[int, typer.Option("--max-threads", help="Per-product item cap")] = 250,
    community: Annotated[Optional[List[str]], typer.Option("--community", "-s", help="Subreddit to search (repeatable)")] = None,
    url: Annotated[Optional[str], typer.Option("--url", "-u", help="Product home page used to describe it")] = None,
    timeout: Annotated[Optional[float], typer.Option("--timeout", "-t", help="Seconds to wait before the local fallback report")] = None,
    output: Annotated[Optional[Path], typer.Option("--output", "-o", help="Write the markdown report here instead of stdout")] = None,
    csv_output: Annotated[Optional[Path], typer.Option("--csv", help="Write the CSV appendix here")] = None,
    loglevel: Annotated[str, typer.Option("--loglevel", "-l", help="Logging level")] = "WARNING",
) -> None:
    """Mine Reddit for ENTITY and its competitors and print the report."""
    setup_logging(level=loglevel)

    payload = dict(entity=entity, competitors=competitor, days=days, min_score=min_score, max_threads=max_threads)
    if community:
        payload["communities"] = community
    if url:
        payload["url"] = url
    try:
        request = MiningRequest(**payload)
    except ValidationError as e:
        typer.echo(f"Invalid input data: {e}", err=True)
        raise typer.Exit(code=2)

    try:
        result = asyncio.run(run_analysis(request, timeout))
    except JobFailed as e:
        typer.echo(f"Analysis failed: {e.error}", err=True)
        raise typer.Exit(code=1)
    except UserPulseError as e:
        logger.critical(f"Unhandled service error: {e}", exc_info=True)
        sys.exit(1)

    if output:
        output.write_text(result.report.raw, encoding="utf-8")
        typer.echo(f"Report written to {output}")
    else:
        typer.echo(result.report.raw)
    if csv_output:
        csv_output.write_text(result.report.appendix_csv, encoding="utf-8")
        typer.echo(f"CSV appendix written to {csv_output}")


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
