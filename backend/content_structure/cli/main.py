"""CLI entrypoint for the content structure indexer."""

from __future__ import annotations

import json
import logging
from dataclasses import asdict
from pathlib import Path
from typing import Optional

import typer

from content_structure.core.config import Settings
from content_structure.core.errors import StructureError
from content_structure.core.logging import configure_logging
from content_structure.core.metrics import write_metrics
from content_structure.db.sqlite import SQLiteDatabase
from content_structure.ingest.pipeline import StructurePipeline

app = typer.Typer(name="content-structure", help="Index a content tree into a structure database")


def _table_counts(db_path: Path, read_only: bool = False) -> dict[str, int]:
    with SQLiteDatabase(db_path, read_only=read_only) as db:
        return {table: db.count_rows(table) for table in db.list_tables()}


@app.command()
def collect(
    content_dir: Path = typer.Argument(..., help="Directory holding the markdown content", resolve_path=True),
    root: Optional[Path] = typer.Option(None, "--root", help="Project root for relative paths"),
    out: Optional[Path] = typer.Option(None, "--out", help="Output directory for the database and blobs"),
    config: Optional[Path] = typer.Option(None, "--config", help="YAML configuration file"),
    folder_docs: Optional[bool] = typer.Option(
        None, "--folder-docs/--file-docs", help="Merge each folder's markdown files into one document"
    ),
    metrics_file: Optional[Path] = typer.Option(None, "--metrics-file", help="Write Prometheus metrics here"),
    json_logs: bool = typer.Option(True, "--json-logs/--plain-logs", help="Log format on stderr"),
    debug: bool = typer.Option(False, "--debug", help="Log at DEBUG level"),
) -> None:
    """Run one indexing pass over CONTENT_DIR."""
    configure_logging(use_json=json_logs)
    try:
        settings = Settings.from_yaml(
            config,
            root_dir=root,
            content_dir=content_dir,
            out_dir=out,
            folder_single_doc=folder_docs,
            debug=debug or None,
        )
        if settings.debug:
            configure_logging(level=logging.DEBUG, use_json=json_logs)
        result = StructurePipeline(settings).run()
    except StructureError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1)
    finally:
        if metrics_file is not None:
            write_metrics(metrics_file)
    payload = {
        "version_id": result.version_id,
        "database": str(settings.db_path),
        "stats": result.stats.to_dict(),
        "tables": _table_counts(settings.db_path),
        "migrations": [asdict(migration) for migration in result.migrations if migration.action != "unchanged"],
    }
    typer.echo(json.dumps(payload, indent=2))


@app.command()
def summary(
    db: Optional[Path] = typer.Option(None, "--db", help="Structure database path"),
    root: Optional[Path] = typer.Option(None, "--root", help="Project root for relative paths"),
    out: Optional[Path] = typer.Option(None, "--out", help="Output directory holding the database"),
    config: Optional[Path] = typer.Option(None, "--config", help="YAML configuration file"),
) -> None:
    """Print row counts of an existing structure database."""
    db_path = db or Settings.from_yaml(config, root_dir=root, out_dir=out).db_path
    if not db_path.exists():
        typer.echo(f"Error: database {db_path} does not exist", err=True)
        raise typer.Exit(code=1)
    typer.echo(json.dumps({"database": str(db_path), "tables": _table_counts(db_path, read_only=True)}, indent=2))


if __name__ == "__main__":
    app()
