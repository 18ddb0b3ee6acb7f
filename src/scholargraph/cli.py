from __future__ import annotations

import asyncio
import json
import uuid
from pathlib import Path

import typer

from scholargraph.db.enums import ProcessingStatus
from scholargraph.db.session import Database
from scholargraph.errors import ConfigurationError, ScholarGraphError
from scholargraph.graph.papers import PaperStore
from scholargraph.llm.openai_client import OpenAIAnalysisClient
from scholargraph.log import setup_logging
from scholargraph.pipeline.ingestion import IngestionPipeline
from scholargraph.settings import Settings, get_settings

app = typer.Typer(help="Scholarly-paper knowledge graph ingestion.")


@app.callback()
def main(
    log_level: str | None = typer.Option(None, help="Override SCHOLARGRAPH_LOG_LEVEL (DEBUG, INFO, ...)."),
) -> None:
    settings = get_settings()
    setup_logging(log_level or settings.log_level, settings.log_file)


def _require_config(settings: Settings) -> None:
    try:
        settings.require_runtime_config()
    except ConfigurationError as e:
        typer.echo(f"Error: {e.message}", err=True)
        raise typer.Exit(2)


def _load_papers(path: Path) -> list[dict]:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise typer.BadParameter(f"{path} is not valid JSON: {e}")
    # Accept either a bare list or {"papers": [...]}.
    if isinstance(data, dict):
        data = data.get("papers")
    if not isinstance(data, list) or not all(isinstance(p, dict) for p in data):
        raise typer.BadParameter(f"{path} must contain a JSON list of paper objects")
    return data


async def _ingest(settings: Settings, papers: list[dict], concurrency: int) -> int:
    db = Database(settings.database_url)
    try:
        async with OpenAIAnalysisClient.from_settings(settings) as client:
            pipeline = IngestionPipeline(db, client, settings)
            summary = await pipeline.ingest_batch(papers, concurrency=concurrency)
    finally:
        await db.dispose()

    typer.echo(f"Success: {summary.success_count}")
    typer.echo(f"Failed:  {summary.failure_count}")
    for failure in summary.failures:
        title = failure.paper.get("title", "<untitled>")
        message = failure.error.message if isinstance(failure.error, ScholarGraphError) else str(failure.error)
        typer.echo(f"  ✗ {title}: {message}", err=True)
    return 1 if summary.failure_count else 0


@app.command()
def ingest(
    file: Path = typer.Argument(..., exists=True, dir_okay=False, help="JSON list of paper objects."),
    concurrency: int | None = typer.Option(None, min=1, help="Papers in flight at once (default from settings)."),
) -> None:
    """
    Ingest papers from a JSON file.

    Each object needs at least a `title`; `abstract`, `full_text`, `authors`,
    `external_id`, `doi`, `publication_date` and `venue` are optional.
    """
    settings = get_settings()
    _require_config(settings)
    papers = _load_papers(file)
    code = asyncio.run(_ingest(settings, papers, concurrency or settings.batch_concurrency))
    raise typer.Exit(code)


async def _reprocess(settings: Settings, paper_id: uuid.UUID) -> None:
    db = Database(settings.database_url)
    try:
        async with OpenAIAnalysisClient.from_settings(settings) as client:
            pipeline = IngestionPipeline(db, client, settings)
            analysis = await pipeline.reprocess_paper(paper_id)
    finally:
        await db.dispose()
    typer.echo(
        f"{paper_id}: {len(analysis.node_ids)} nodes, {analysis.edges.created} edges "
        f"({analysis.edges.unresolved} unresolved)"
    )


@app.command()
def reprocess(paper_id: str = typer.Argument(..., help="Paper id (UUID).")) -> None:
    """Run extraction again for an existing paper."""
    try:
        pid = uuid.UUID(paper_id)
    except ValueError:
        raise typer.BadParameter(f"Not a UUID: {paper_id!r}")
    settings = get_settings()
    _require_config(settings)
    try:
        asyncio.run(_reprocess(settings, pid))
    except ScholarGraphError as e:
        typer.echo(f"Reprocessing failed: {e.message}", err=True)
        raise typer.Exit(1)


async def _stats(settings: Settings) -> None:
    db = Database(settings.database_url)
    try:
        # Stats never call the text-analysis capability.
        pipeline = IngestionPipeline(db, client=None, settings=settings)
        stats = await pipeline.get_stats()
    finally:
        await db.dispose()

    typer.echo(f"Papers: {stats.total_papers}")
    for status, count in stats.papers_by_status.items():
        typer.echo(f"  {status:<12} {count}")
    typer.echo(f"Nodes: {stats.total_nodes}")
    for kind, count in sorted(stats.nodes_by_kind.items()):
        typer.echo(f"  {kind:<12} {count}")
    typer.echo(f"Edges: {stats.total_edges}")
    for kind, count in sorted(stats.edges_by_kind.items()):
        typer.echo(f"  {kind:<16} {count}")


@app.command()
def stats() -> None:
    """Print paper, node and edge counts."""
    asyncio.run(_stats(get_settings()))


async def _papers(settings: Settings, status: ProcessingStatus, limit: int) -> None:
    db = Database(settings.database_url)
    try:
        rows = await PaperStore(db).find_by_status(status, limit=limit)
    finally:
        await db.dispose()
    for paper in rows:
        when = paper.processed_at.isoformat() if paper.processed_at else "-"
        typer.echo(f"{paper.id}  {paper.external_id or '-':<16} {when:<32} {paper.title}")
    typer.echo(f"{len(rows)} {status.value} paper(s)")


@app.command()
def papers(
    status: ProcessingStatus = typer.Option(ProcessingStatus.failed, help="Processing status to list."),
    limit: int = typer.Option(50, min=1, help="Maximum rows."),
) -> None:
    """List papers by processing status (failed papers by default)."""
    asyncio.run(_papers(get_settings(), status, limit))


async def _init_db(settings: Settings) -> None:
    db = Database(settings.database_url)
    try:
        await db.create_all()
    finally:
        await db.dispose()


@app.command("init-db")
def init_db() -> None:
    """Create missing tables from the model definitions."""
    asyncio.run(_init_db(get_settings()))
    typer.echo("tables created")


async def _ping(settings: Settings) -> None:
    db = Database(settings.database_url)
    try:
        await db.ping()
    finally:
        await db.dispose()


@app.command()
def check() -> None:
    """Validate configuration and database connectivity."""
    settings = get_settings()
    _require_config(settings)
    try:
        asyncio.run(_ping(settings))
    except Exception as e:
        typer.echo(f"Database unreachable: {e}", err=True)
        raise typer.Exit(1)
    typer.echo("configuration ok")
    typer.echo("database ok")


if __name__ == "__main__":
    app()
