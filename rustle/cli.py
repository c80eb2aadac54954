"""
Command-line interface for Rustle.

Provides commands for:
- Extracting translatable text and generating locale files
- Translating a single text through the resolution engine
- Maintaining the local translation cache
- Managing the API key
- Showing configuration

Usage:
    rustle extract --src ./src --output ./public/rustle --target-langs es,fr
    rustle translate "Welcome" --target es
    rustle cache stats
    rustle keys set
    rustle-engine --src ./src            # extraction only
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from rustle import __version__
from rustle.config import (
    DEFAULT_OUTPUT_DIR,
    DEFAULT_SOURCE_LANGUAGE,
    DEFAULT_SRC_DIR,
    DEFAULT_TARGET_LANGUAGES,
    LOCALES_DIRNAME,
    EngineConfig,
    ExtractorConfig,
    get_api_url,
    get_cache_dir,
    is_hardened,
)
from rustle.errors import CacheImportError, RustleError
from rustle.extractor import ExtractionReport, Extractor
from rustle.keys import KeyManager
from rustle.offline import OfflineManager
from rustle.storage import CacheStore, FileStorageAdapter

app = typer.Typer(
    name="rustle",
    help="Rustle: AI-assisted web page translation",
    add_completion=False,
)
engine_app = typer.Typer(
    name="rustle-engine",
    help="Extract translatable text and generate locale files",
    add_completion=False,
)
console = Console()
logger = logging.getLogger("rustle")


def setup_logging(debug: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


def parse_languages(value: str) -> list[str]:
    return [lang.strip() for lang in value.split(",") if lang.strip()]


def open_cache() -> CacheStore:
    return CacheStore(FileStorageAdapter(get_cache_dir() / "cache.json"))


def version_callback(value: bool):
    if value:
        console.print(f"Rustle v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        False, "--version", "-v",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
):
    """Rustle: fingerprint, extract and translate web page text."""
    pass


def print_report(report: ExtractionReport, config: ExtractorConfig) -> None:
    table = Table(title="Extraction Summary")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("Files scanned", str(report.files_scanned))
    if report.files_failed:
        table.add_row("Files failed", f"[red]{report.files_failed}[/]")
    table.add_row("Total entries", str(report.total_entries))
    table.add_row("New", str(report.new))
    table.add_row("Updated", str(report.updated))
    table.add_row("Unchanged", str(report.unchanged))
    if report.collisions:
        table.add_row("Fingerprint collisions", f"[yellow]{report.collisions}[/]")
    console.print(table)

    if report.locales:
        locales = Table(title="Locales")
        locales.add_column("Locale", style="cyan")
        locales.add_column("Translated", style="green")
        locales.add_column("Reused")
        locales.add_column("Source fallback", style="yellow")
        for locale, stats in report.locales.items():
            locales.add_row(locale, str(stats.translated), str(stats.reused), str(stats.fallback))
        console.print(locales)

    console.print(f"\n[green]✓[/] Master file: {config.master_path}")
    console.print(f"[green]✓[/] Locale files: {config.locales_dir}")


def run_extraction(
    src: Path,
    output: Path,
    source_lang: str,
    target_langs: str,
    debug: bool,
) -> None:
    setup_logging(debug)
    config = ExtractorConfig.from_env(
        src_dir=src,
        output_dir=output,
        source_language=source_lang,
        target_languages=parse_languages(target_langs),
        debug=debug,
    )
    console.print(f"[bold]Rustle extraction[/] {config.src_dir} → {config.output_dir}")
    console.print(f"[dim]Languages: {config.source_language} → {', '.join(config.target_languages)}[/]")
    if not config.api_key:
        console.print("[yellow]⚠[/] No API key configured, locale files will contain source text")

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console,
        transient=True,
    ) as progress:
        task = progress.add_task("Scanning...", total=None)
        extractor = Extractor(config, progress=lambda name: progress.update(task, description=f"Scanning {name}"))
        try:
            report = asyncio.run(extractor.run())
        except OSError as e:
            console.print(f"[red]Extraction failed:[/] {e}")
            raise typer.Exit(1)
    print_report(report, config)


SRC_OPTION = typer.Option(DEFAULT_SRC_DIR, "--src", help="Source directory to scan")
OUTPUT_OPTION = typer.Option(DEFAULT_OUTPUT_DIR, "--output", help="Output directory")
SOURCE_LANG_OPTION = typer.Option(DEFAULT_SOURCE_LANGUAGE, "--source-lang", help="Source language code")
TARGET_LANGS_OPTION = typer.Option(
    ",".join(DEFAULT_TARGET_LANGUAGES), "--target-langs",
    help="Comma-separated target language codes",
)
DEBUG_OPTION = typer.Option(False, "--debug", help="Enable debug logging")


@app.command()
def extract(
    src: Path = SRC_OPTION,
    output: Path = OUTPUT_OPTION,
    source_lang: str = SOURCE_LANG_OPTION,
    target_langs: str = TARGET_LANGS_OPTION,
    debug: bool = DEBUG_OPTION,
):
    """Extract translatable text and generate master and locale files."""
    run_extraction(src, output, source_lang, target_langs, debug)


@engine_app.command()
def engine_main(
    src: Path = SRC_OPTION,
    output: Path = OUTPUT_OPTION,
    source_lang: str = SOURCE_LANG_OPTION,
    target_langs: str = TARGET_LANGS_OPTION,
    debug: bool = DEBUG_OPTION,
):
    """Extract translatable text and generate master and locale files."""
    run_extraction(src, output, source_lang, target_langs, debug)


@app.command()
def translate(
    text: str = typer.Argument(..., help="Text to translate"),
    target: str = typer.Option(..., "--target", "-t", help="Target language code"),
    source: str = typer.Option(DEFAULT_SOURCE_LANGUAGE, "--source", "-s", help="Source language code"),
    locale_dir: Optional[Path] = typer.Option(
        None, "--locale-dir",
        help="Directory with <locale>.json files (default: <output>/locales)",
    ),
    no_cache: bool = typer.Option(False, "--no-cache", help="Skip the local cache"),
    debug: bool = DEBUG_OPTION,
):
    """Translate one text: static locale data, then cache, then the API."""
    from rustle.engine import TranslationEngine

    setup_logging(debug)
    if locale_dir is None:
        default_dir = DEFAULT_OUTPUT_DIR / LOCALES_DIRNAME
        locale_dir = default_dir if default_dir.exists() else None

    config = EngineConfig(
        source_language=source,
        current_locale=target,
        api_key=KeyManager().get_key() or "",
        api_url=get_api_url(),
        locale_dir=locale_dir,
        debug=debug,
    )

    async def _run() -> str:
        engine = TranslationEngine(config, cache=open_cache())
        try:
            await engine.init()
            return await engine.translate(text, target, use_cache=not no_cache)
        finally:
            await engine.destroy()

    try:
        result = asyncio.run(_run())
    except RustleError as e:
        console.print(f"[red]Translation failed:[/] {e}")
        raise typer.Exit(1)
    console.print(result)


@app.command()
def cache(
    action: str = typer.Argument(..., help="Action: stats, clear, cleanup, export, import"),
    file: Optional[Path] = typer.Argument(None, help="Backup file for export/import"),
):
    """Maintain the local translation cache.

    Examples:
        rustle cache stats
        rustle cache export backup.json
        rustle cache import backup.json
    """
    store = open_cache()
    offline = OfflineManager(store)

    if action == "stats":
        stats = store.get_cache_stats()
        table = Table(title="Translation Cache")
        table.add_column("Metric", style="cyan")
        table.add_column("Value", style="green")
        table.add_row("Location", str(get_cache_dir()))
        table.add_row("Entries", str(stats.item_count))
        table.add_row("Size", f"{stats.approx_byte_size / 1024:.1f} KB")
        console.print(table)

    elif action == "clear":
        store.clear_cache()
        console.print("[green]✓[/] Translation cache cleared")

    elif action == "cleanup":
        removed = store.cleanup_old_cache()
        console.print(f"[green]✓[/] Removed {removed} expired entries")

    elif action == "export":
        data = offline.export_cache()
        if file:
            file.write_text(data, encoding="utf-8")
            console.print(f"[green]✓[/] Exported cache to {file}")
        else:
            console.print(data, markup=False, highlight=False)

    elif action == "import":
        if not file:
            console.print("[red]Error:[/] Backup file required")
            raise typer.Exit(1)
        try:
            count = offline.import_cache(file.read_text(encoding="utf-8"))
        except (OSError, CacheImportError) as e:
            console.print(f"[red]Import failed:[/] {e}")
            raise typer.Exit(1)
        console.print(f"[green]✓[/] Imported {count} cache entries")

    else:
        console.print(f"[red]Error:[/] Unknown action '{action}'")
        console.print("Available actions: stats, clear, cleanup, export, import")
        raise typer.Exit(1)


@app.command()
def keys(
    action: str = typer.Argument(..., help="Action: list, set, get, delete"),
    value: Optional[str] = typer.Option(None, "--value", help="Key to store (prompted if omitted)"),
):
    """Manage the Rustle API key.

    Examples:
        rustle keys list
        rustle keys set
        rustle keys delete
    """
    km = KeyManager()

    if action == "list":
        table = Table(title="API Keys Status")
        table.add_column("Service", style="cyan")
        table.add_column("Status", style="green")
        table.add_column("Source", style="yellow")
        table.add_column("Value", style="dim")
        for info in km.list_keys():
            status = "[green]✓ Set[/]" if info.is_set else "[red]✗ Not set[/]"
            table.add_row(info.service, status, info.source, info.masked_value or "-")
        console.print(table)
        console.print("\n[dim]Priority: env > keychain > config file[/]")

    elif action == "set":
        key = value or typer.prompt("Enter Rustle API key", hide_input=True)
        if not key:
            console.print("[red]Error:[/] Key cannot be empty")
            raise typer.Exit(1)
        storage = km.set_key(key)
        console.print(f"[green]✓[/] API key saved to {storage}")
        if storage == "config":
            console.print("[yellow]Note:[/] Key stored in local file (~/.rustle/keys.json)")

    elif action == "get":
        info = km.get_key_info()
        if info.is_set:
            console.print(f"[green]✓[/] Key found ({info.source}): {info.masked_value}")
        else:
            console.print("[red]✗[/] No key found")
            console.print("Set with: [cyan]rustle keys set[/]")

    elif action == "delete":
        if km.delete_key():
            console.print("[green]✓[/] API key deleted")
        else:
            console.print("[yellow]⚠[/] No stored key to delete")

    else:
        console.print(f"[red]Error:[/] Unknown action '{action}'")
        console.print("Available actions: list, set, get, delete")
        raise typer.Exit(1)


@app.command()
def info():
    """Show configuration."""
    console.print(f"[bold]Rustle v{__version__}[/]\n")
    key_info = KeyManager().get_key_info()

    table = Table(title="Configuration")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("API URL", get_api_url())
    table.add_row("Hardened mode", "yes" if is_hardened() else "no")
    table.add_row(
        "API key",
        f"{key_info.masked_value} ({key_info.source})" if key_info.is_set else "[red]not set[/]",
    )
    table.add_row("Cache directory", str(get_cache_dir()))
    table.add_row("Default source", str(DEFAULT_SRC_DIR))
    table.add_row("Default output", str(DEFAULT_OUTPUT_DIR))
    table.add_row("Languages", f"{DEFAULT_SOURCE_LANGUAGE} → {', '.join(DEFAULT_TARGET_LANGUAGES)}")
    console.print(table)


if __name__ == "__main__":
    app()
