from __future__ import annotations

import os
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from ..config import AppConfig, dump_config, load_config
from ..errors import PipelineError
from ..models import BatchReport, UploadItem
from ..context import BatchContext
from ..orchestrator import BatchOrchestrator
from ..transforms import load_transform
from ..utils import generate_run_id

console = Console()

app = typer.Typer(help="Batch MRI-to-CT conversion toolkit")


def _load_config(path: Path | None) -> AppConfig:
    return load_config(path)


def _collect(context: BatchContext, paths: list[Path]) -> list[UploadItem]:
    items: list[UploadItem] = []
    for path in paths:
        if path.is_file():
            items.append(context.stage_path(path))
        elif path.is_dir():
            for file_path in sorted(path.rglob("*")):
                if not file_path.is_file():
                    continue
                relative = file_path.parent.relative_to(path).as_posix()
                items.append(context.stage_path(file_path, relative_path=None if relative == "." else relative))
        else:
            console.print(f"[yellow]Skipping missing path[/yellow]: {path}")
    return items


def _print_report(report: BatchReport) -> None:
    table = Table(title=f"Batch {report.batch_id} ({report.state.value})")
    table.add_column("File")
    table.add_column("Status")
    table.add_column("Reason")
    table.add_column("Output")
    for entry in report.per_item:
        style = "green" if entry.status == "SUCCESS" else "red"
        table.add_row(entry.name, f"[{style}]{entry.status}[/{style}]", entry.reason, entry.output_name or "-")
    console.print(table)
    console.print(
        f"Submitted {report.total_submitted} files: {report.accepted} accepted, {report.rejected} rejected, "
        f"{report.succeeded} converted, {report.failed} failed."
    )


@app.command()
def convert(
    path: list[Path],
    output: Path | None = typer.Option(None, "--output", "-o", help="Archive to write"),
    config: Path | None = typer.Option(None, "--config", help="Path to config.toml"),
    parallel: int | None = typer.Option(None, "--parallel", min=1, help="Parallel workers"),
    transform: str | None = typer.Option(None, "--transform", help="Transform as package.module:callable"),
) -> None:
    cfg = _load_config(config)
    orchestrator = BatchOrchestrator(cfg, load_transform(transform or cfg.runtime.transform))
    target = output or Path(cfg.output.archive_name)
    partial = target.with_name(target.name + ".part")
    context = orchestrator.new_context()
    try:
        items = _collect(context, path)
    except BaseException:
        context.close()
        raise
    try:
        run = orchestrator.process_batch(items, context=context, concurrency=parallel)
    except PipelineError as exc:
        console.print(f"[red]Batch failed[/red]: {exc.code} - {exc}")
        if exc.report is not None:
            _print_report(exc.report)
        raise typer.Exit(1) from exc

    try:
        with partial.open("wb") as sink:
            run.write_to(sink)
    except PipelineError as exc:
        partial.unlink(missing_ok=True)
        console.print(f"[red]Archive failed[/red]: {exc.code} - {exc}")
        if run.report is not None:
            _print_report(run.report)
        raise typer.Exit(1) from exc
    finally:
        run.close()
    os.replace(partial, target)
    if run.report is not None:
        _print_report(run.report)
    console.print(f"[green]Archive written[/green]: {target}")


@app.command("config")
def show_config(
    config: Path | None = typer.Option(None, "--config", help="Path to config.toml"),
) -> None:
    console.print_json(dump_config(_load_config(config)))


@app.command()
def serve(
    config: Path | None = typer.Option(None, "--config", help="Path to config.toml"),
    host: str | None = typer.Option(None, "--host"),
    port: int | None = typer.Option(None, "--port"),
) -> None:
    import uvicorn

    from api.app import create_app

    cfg = _load_config(config)
    cfg.runtime.enable_local_api = True
    uvicorn.run(create_app(cfg), host=host or cfg.api.host, port=port or cfg.api.port)


@app.command()
def new_batch_id() -> None:
    console.print(generate_run_id("batch"))


if __name__ == "__main__":
    app()
