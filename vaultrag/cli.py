"""
CLI interface for vault indexing and retrieval.

Usage:
    vaultrag index
    vaultrag find "what did I decide about the roadmap?"
    vaultrag watch
"""

import asyncio
import json
import os
from pathlib import Path
from typing import Optional

import typer
from typing_extensions import Annotated

from .api import VaultIndex
from .config import load_or_create_config
from .logging_config import configure_quiet_mode, enable_debug_mode
from .types import ChangeEvent, ChangeKind


# Configure quiet mode by default (suppress verbose library output)
# Set VAULTRAG_VERBOSE=1 to enable debug mode via environment
if os.environ.get("VAULTRAG_VERBOSE") == "1":
    enable_debug_mode()
else:
    configure_quiet_mode(quiet=True)


def _version_callback(value: bool):
    if value:
        from importlib.metadata import version
        print(f"vaultrag {version('vaultrag')}")
        raise typer.Exit()


def _verbose_callback(value: bool):
    if value:
        enable_debug_mode()


# Global state for CLI options
_json_output = False
_vault_override: Optional[Path] = None
_store_override: Optional[Path] = None


def _json_callback(value: bool):
    global _json_output
    _json_output = value


def _get_json_output() -> bool:
    return _json_output


app = typer.Typer(
    name="vaultrag",
    help="Semantic search over a vault of notes.",
    no_args_is_help=True,
    rich_markup_mode=None,
)


@app.callback()
def main_callback(
    verbose: Annotated[bool, typer.Option(
        "--verbose", "-v",
        help="Enable debug-level logging to stderr",
        callback=_verbose_callback,
        is_eager=True,
    )] = False,
    output_json: Annotated[bool, typer.Option(
        "--json", "-j",
        help="Output as JSON",
        callback=_json_callback,
        is_eager=True,
    )] = False,
    version: Annotated[Optional[bool], typer.Option(
        "--version",
        help="Show version and exit",
        callback=_version_callback,
        is_eager=True,
    )] = None,
    vault: Annotated[Optional[Path], typer.Option(
        "--vault", "-V",
        envvar="VAULTRAG_VAULT",
        help="Path to the vault (default: current directory)",
    )] = None,
    store: Annotated[Optional[Path], typer.Option(
        "--store", "-s",
        envvar="VAULTRAG_STORE_PATH",
        help="Path to the store directory (default: <vault>/.vaultrag)",
    )] = None,
):
    """Semantic search over a vault of notes."""
    global _vault_override, _store_override
    _vault_override = vault
    _store_override = store


def _vault_path() -> Path:
    return (_vault_override or Path.cwd()).expanduser().resolve()


def _make_index() -> VaultIndex:
    """Build the index for the current --vault/--store options."""
    return VaultIndex(_vault_path(), _store_override)


def _progress(done: int, total: int) -> None:
    if not _get_json_output():
        typer.echo(f"\r  {done}/{total}", nl=False, err=True)


# -----------------------------------------------------------------------------
# Commands
# -----------------------------------------------------------------------------

@app.command()
def index():
    """
    Index every note in the vault.

    Only notes whose content changed since the last run are re-embedded.
    """
    async def run():
        async with _make_index() as vi:
            return await vi.index_all(progress_callback=_progress)

    report = asyncio.run(run())
    if _get_json_output():
        typer.echo(json.dumps(report.to_dict(), indent=2))
        return
    typer.echo("", err=True)
    typer.echo(
        f"Indexed {report.indexed}, unchanged {report.unchanged}, "
        f"empty {report.empty}, excluded {report.excluded}, failed {len(report.failed)}"
    )
    for path, error in report.failed.items():
        typer.echo(f"  failed: {path}: {error}", err=True)
    if report.failed:
        raise typer.Exit(1)


@app.command()
def find(
    query: Annotated[str, typer.Argument(help="Search query text")],
    top_k: Annotated[Optional[int], typer.Option(
        "--top-k", "-n",
        help="Maximum chunks to return (default: from config)"
    )] = None,
    threshold: Annotated[Optional[float], typer.Option(
        "--threshold", "-t",
        help="Minimum cosine similarity (default: from config)"
    )] = None,
    context: Annotated[bool, typer.Option(
        "--context", "-c",
        help="Print the formatted context block instead of a result list"
    )] = False,
):
    """
    Find note excerpts similar to a query.

    \b
    Examples:
        vaultrag find "quarterly planning"
        vaultrag find "garden" -n 3 -t 0.5
        vaultrag --json find "travel"
    """
    async def run():
        async with _make_index() as vi:
            return await vi.retrieve(query, top_k=top_k, threshold=threshold)

    ctx = asyncio.run(run())
    if _get_json_output():
        typer.echo(json.dumps(ctx.to_dict(), indent=2))
    elif context:
        typer.echo(ctx.formatted_context, nl=False)
    elif not ctx.chunks:
        typer.echo("No results.")
    else:
        for result in ctx.chunks:
            meta = result.metadata
            snippet = " ".join(result.content.split())[:100]
            typer.echo(
                f"{result.similarity:.3f}  {meta.file_path} "
                f"[{meta.chunk_index + 1}/{meta.total_chunks}]  {snippet}"
            )


@app.command()
def stats():
    """Show index size."""
    async def run():
        async with _make_index() as vi:
            return vi.get_index_stats()

    result = asyncio.run(run())
    if _get_json_output():
        typer.echo(json.dumps(result, indent=2))
        return
    typer.echo(f"chunks: {result['total_documents']}")
    typer.echo(f"notes: {result['indexed_files']}")
    typer.echo(f"dimension: {result['dimension'] or '-'}")


@app.command()
def clear(
    yes: Annotated[bool, typer.Option(
        "--yes", "-y",
        help="Don't ask for confirmation"
    )] = False,
):
    """Remove every indexed chunk. The next index run re-embeds all notes."""
    if not yes:
        typer.confirm("Clear the whole index?", abort=True)

    async def run():
        async with _make_index() as vi:
            vi.clear_index()

    asyncio.run(run())
    typer.echo("Index cleared.")


@app.command()
def watch(
    interval: Annotated[float, typer.Option(
        "--interval", "-i",
        help="Seconds between vault scans"
    )] = 2.0,
    initial: Annotated[bool, typer.Option(
        "--initial/--no-initial",
        help="Index the whole vault before watching"
    )] = True,
):
    """
    Keep the index up to date while notes change.

    Polls the vault, applies creates, deletes and renames as they are
    seen, and re-indexes modified notes once per scan.
    """
    async def run():
        async with _make_index() as vi:
            if initial:
                report = await vi.index_all()
                typer.echo(f"Indexed {report.indexed}, unchanged {report.unchanged}", err=True)
            source = vi.source
            scan = getattr(source, "scan_changes", None)
            if scan is None:
                raise typer.BadParameter("Document source does not support change scanning")
            await asyncio.to_thread(scan)
            typer.echo(f"Watching {vi.vault_path} (Ctrl+C to stop)", err=True)
            while True:
                await asyncio.sleep(interval)
                events = await asyncio.to_thread(scan)
                for event in events:
                    vi.submit(event)
                if events:
                    # Polling has no editor focus; treat each scan as focus leaving
                    vi.submit(ChangeEvent(ChangeKind.FOCUS_LEFT))
                    await vi.drain()
                    vi.flush()

    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        typer.echo("Stopped.", err=True)


@app.command("config")
def show_config():
    """Show the store configuration."""
    store_path = _store_override or (_vault_path() / ".vaultrag")
    cfg = load_or_create_config(Path(store_path).expanduser().resolve())
    data = {
        "store": str(cfg.path),
        "embedding": {"name": cfg.embedding.name, **cfg.embedding.params},
        "llm": {"name": cfg.llm.name, **cfg.llm.params} if cfg.llm else None,
        "rag": cfg.rag.to_dict(),
        "embedding_identity": (
            {
                "provider": cfg.embedding_identity.provider,
                "model": cfg.embedding_identity.model,
                "dimension": cfg.embedding_identity.dimension,
            }
            if cfg.embedding_identity else None
        ),
    }
    if _get_json_output():
        typer.echo(json.dumps(data, indent=2))
        return
    typer.echo(f"store: {data['store']}")
    typer.echo(f"embedding: {cfg.embedding.name} {cfg.embedding.params or ''}".rstrip())
    typer.echo(f"llm: {cfg.llm.name if cfg.llm else 'none'}")
    for key, value in data["rag"].items():
        typer.echo(f"  {key}: {value}")


def main():
    try:
        app()
    except SystemExit:
        raise  # Let typer handle exit codes
    except KeyboardInterrupt:
        raise SystemExit(130)  # Standard exit code for Ctrl+C
    except Exception as e:
        # Log full traceback to file, show clean message to user
        from .errors import log_exception
        log_path = log_exception(e, context="vaultrag CLI")
        typer.echo(f"Error: {e}", err=True)
        typer.echo(f"Details logged to {log_path}", err=True)
        raise SystemExit(1)


if __name__ == "__main__":
    main()
