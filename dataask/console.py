#!/usr/bin/env python3
"""
Command-line interface for previewing, importing and summarizing data files.

    python -m dataask.console preview sales.csv
    python -m dataask.console import sales.csv --table sales --database data/sales.sqlite
    python -m dataask.console stats --database data/sales.sqlite --table sales --column amount
"""

import argparse
import os
import sys
import threading
import time
from typing import Optional

from rich.console import Console
from rich.panel import Panel
from rich.progress import BarColumn, Progress, TextColumn
from rich.table import Table

from .api.schemas.shared import validate_table_name
from .core.config import settings
from .core.errors import DataAskError, ValidationError
from .core.logging_config import configure_logging
from .db.connections import ConnectionManager
from .db.introspection import fetch_column_values
from .domain.imports.jobs import ImportProgressRegistry
from .domain.imports.orchestrator import (
    build_importer,
    prepare_import,
    preview_upload,
    request_from_preview,
)
from .domain.statistics.summarizer import summarize_column
from .domain.uploads.scratch import ScratchFileStore


class DataAskConsole:
    """Runs the import pipeline and the statistics summarizer from a terminal."""

    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console()
        self.registry = ImportProgressRegistry(retention_seconds=settings.import_job_retention_seconds)
        self.connections = ConnectionManager(settings.data_dir)
        self.scratch = ScratchFileStore(
            settings.upload_scratch_dir,
            max_bytes=settings.upload_max_file_size_mb * 1024 * 1024,
            ttl_seconds=settings.upload_ttl_seconds,
        )

    def print_preview(self, preview) -> None:
        columns = Table(title=f"{preview.filename} ({preview.row_count} rows)")
        columns.add_column("Column", style="cyan", no_wrap=True)
        columns.add_column("Type", style="green")
        columns.add_column("Missing", justify="right")
        columns.add_column("Samples", style="white")
        for column in preview.columns:
            columns.add_row(
                column.name,
                column.type.value,
                str(column.missing_count),
                ", ".join(str(value) for value in column.sample_values),
            )
        self.console.print(columns)

        if preview.sample_data:
            sample = Table(title="Sample rows", show_lines=False)
            for header in preview.headers:
                sample.add_column(header, overflow="fold")
            for row in preview.sample_data:
                sample.add_row(*["" if value is None else str(value) for value in row])
            self.console.print(sample)

        for warning in preview.warnings:
            self.console.print(f"[yellow]Warning:[/yellow] {warning}")

    def preview(self, path: str, sheet_name: Optional[str] = None) -> None:
        stored = self.scratch.save_copy(path, os.path.basename(path))
        try:
            preview = preview_upload(stored, os.path.basename(path), settings, sheet_name=sheet_name)
            self.print_preview(preview)
        finally:
            self.scratch.discard(stored)

    def import_file(
        self,
        path: str,
        table_name: str,
        database: Optional[str] = None,
        mode: str = "create",
        sheet_name: Optional[str] = None,
    ) -> bool:
        try:
            table_name = validate_table_name(table_name)
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc
        file_name = os.path.basename(path)
        stored = self.scratch.save_copy(path, file_name)
        try:
            preview = preview_upload(stored, file_name, settings, sheet_name=sheet_name)
            self.print_preview(preview)
            connection_id = None
            if database:
                connection_id = self.connections.create_connection(
                    os.path.basename(database), database, must_exist=False
                ).id
            request = request_from_preview(preview, table_name, connection_id=connection_id, mode=mode)
            prepared = prepare_import(
                request,
                connections=self.connections,
                registry=self.registry,
                scratch=self.scratch,
                total_rows=preview.row_count,
            )
        except Exception:
            self.scratch.discard(stored)
            raise

        importer = build_importer(self.registry, settings)
        worker = threading.Thread(target=importer.run, args=(prepared.plan,), daemon=True)
        import_id = prepared.response.import_id

        with Progress(
            TextColumn("[bold blue]{task.description}"),
            BarColumn(),
            TextColumn("{task.percentage:>3.0f}%"),
            console=self.console,
        ) as progress:
            task = progress.add_task(f"Importing into {table_name}", total=100)
            worker.start()
            try:
                while worker.is_alive():
                    job = self.registry.get(import_id)
                    if job is not None:
                        progress.update(task, completed=job.progress, description=job.message)
                    time.sleep(0.2)
            except KeyboardInterrupt:
                self.registry.request_cancel(import_id)
                worker.join()
            worker.join()
            job = self.registry.require(import_id)
            progress.update(task, completed=job.progress, description=job.message)

        connection = self.connections.get(prepared.response.connection_id)
        if job.status == "completed":
            summary = job.summary
            self.console.print(Panel.fit(
                f"[green]{job.message}[/green]\n"
                f"Database: {connection.filename}\n"
                f"Rows inserted: {summary.rows_inserted}\n"
                f"Rows rejected: {summary.rows_rejected} "
                f"({summary.malformed_rows} malformed, {summary.null_constraint_rejections} missing required values)\n"
                f"Cells set to NULL: {summary.coerced_cells}",
                title="Import complete",
                border_style="green",
            ))
            return True

        self.console.print(Panel.fit(
            f"[red]{job.error}[/red]\nReason: {job.failure_reason}",
            title="Import failed",
            border_style="red",
        ))
        return False

    def stats(self, database: str, table_name: str, column_name: str, outlier_method: str = "iqr") -> None:
        connection = self.connections.create_connection(os.path.basename(database), database)
        column = fetch_column_values(connection.engine, table_name, column_name, settings.statistics_max_rows)
        result = summarize_column(column["values"], outlier_method, column["column_name"], column["sampled"])

        table = Table(title=f"{column['table_name']}.{column['column_name']}")
        table.add_column("Statistic", style="cyan", no_wrap=True)
        table.add_column("Value", justify="right")
        for name, value in result.model_dump().items():
            if value is None or name == "column":
                continue
            if isinstance(value, float):
                value = f"{value:.4f}"
            table.add_row(name, str(value))
        self.console.print(table)


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="DataAsk console - preview and import CSV/Excel files into SQLite",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    preview_parser = subparsers.add_parser("preview", help="Show inferred column types and sample rows")
    preview_parser.add_argument("path")
    preview_parser.add_argument("--sheet", help="Spreadsheet sheet name (default: first sheet)")

    import_parser = subparsers.add_parser("import", help="Import a file into a SQLite table")
    import_parser.add_argument("path")
    import_parser.add_argument("--table", required=True, help="Target table name")
    import_parser.add_argument("--database", help="SQLite file (default: a new file under data_dir)")
    import_parser.add_argument("--append", action="store_true", help="Append to an existing table")
    import_parser.add_argument("--sheet", help="Spreadsheet sheet name (default: first sheet)")

    stats_parser = subparsers.add_parser("stats", help="Summarize one column of a table")
    stats_parser.add_argument("--database", required=True)
    stats_parser.add_argument("--table", required=True)
    stats_parser.add_argument("--column", required=True)
    stats_parser.add_argument("--outliers", choices=["iqr", "zscore"], default="iqr")

    args = parser.parse_args()
    configure_logging(settings.log_level, settings.log_levels)
    app_console = DataAskConsole()

    try:
        if args.command == "preview":
            app_console.preview(args.path, sheet_name=args.sheet)
        elif args.command == "import":
            ok = app_console.import_file(
                args.path,
                args.table,
                database=args.database,
                mode="append" if args.append else "create",
                sheet_name=args.sheet,
            )
            if not ok:
                sys.exit(1)
        else:
            app_console.stats(args.database, args.table, args.column, args.outliers)
    except DataAskError as exc:
        app_console.console.print(f"[red]Error ({exc.kind}):[/red] {exc.message}")
        sys.exit(1)
    finally:
        app_console.connections.dispose_all()


if __name__ == "__main__":
    main()
