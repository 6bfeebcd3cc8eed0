"""CLI entry point for docctx."""

import json
import os
import sys
from pathlib import Path
from typing import Optional, Tuple

import click
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel

from docctx import __version__
from docctx.config import CONFIG_DIR, CONFIG_FILE, Config, load_config
from docctx.context_engine import ContextAssemblyEngine
from docctx.discovery import FileDiscovery
from docctx.exceptions import ConfigError, DocctxError
from docctx.logger import get_logger, setup_logging

console = Console()
logger = get_logger()


@click.group()
@click.version_option(version=__version__, prog_name="docctx")
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True),
    help="Path to config file",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output")
@click.option("--quiet", "-q", is_flag=True, help="Only show errors")
@click.option("--json", "json_output", is_flag=True, help="Output in JSON format")
@click.option(
    "--log-file",
    type=click.Path(),
    help="Write logs to file for debugging"
)
@click.pass_context
def cli(
    ctx: click.Context,
    config: Optional[str],
    verbose: bool,
    quiet: bool,
    json_output: bool,
    log_file: Optional[str]
) -> None:
    """docctx: token-budgeted context assembly for document generation."""
    ctx.ensure_object(dict)

    if verbose and quiet:
        click.echo("Error: --verbose and --quiet are mutually exclusive", err=True)
        sys.exit(1)

    setup_logging(
        verbose=verbose,
        quiet=quiet or json_output,  # JSON implies quiet
        log_file=Path(log_file) if log_file else None,
    )

    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet
    ctx.obj["json"] = json_output

    try:
        ctx.obj["config"] = load_config(Path(config) if config else None)
    except DocctxError as e:
        click.echo(f"Error loading config: {e}", err=True)
        sys.exit(1)


def _assembly_options(func):
    """Options shared by every command that fills a context store."""
    options = [
        click.option("--core", type=click.Path(exists=True, dir_okay=False),
                     help="Core context file (defaults to core_file from config)"),
        click.option("--enriched", "-e", multiple=True, metavar="KEY=PATH",
                     help="Register an enriched fragment (repeatable)"),
        click.option("--inject", type=click.Path(exists=True, file_okay=False),
                     help="Discover and inject relevant files from this directory"),
        click.option("--existing-docs", type=click.Path(file_okay=False),
                     help="Directory of previously generated documents"),
        click.option("--provider", help="Provider of the active model"),
        click.option("--model", help="Active model name"),
    ]
    for option in reversed(options):
        func = option(func)
    return func


def _parse_enriched(values: Tuple[str, ...]):
    pairs = []
    for value in values:
        key, sep, path = value.partition("=")
        if not sep or not key.strip() or not path.strip():
            raise click.BadParameter(f"expected KEY=PATH, got {value!r}", param_hint="--enriched")
        pairs.append((key.strip(), Path(path.strip())))
    return pairs


def _read_context_file(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise ConfigError(f"Cannot read context file {path}: {e}") from e


def _load_engine(
    ctx: click.Context,
    core: Optional[str],
    enriched: Tuple[str, ...],
    inject: Optional[str],
    existing_docs: Optional[str],
    provider: Optional[str],
    model: Optional[str],
) -> ContextAssemblyEngine:
    """Build an engine from config plus command-line sources."""
    config: Config = ctx.obj["config"]
    engine = ContextAssemblyEngine.from_config(config)

    if provider or model:
        engine.use_model(provider or config.model.provider, model or config.model.model)

    core_path = Path(core) if core else config.root / config.core_file
    if core_path.exists():
        engine.set_core_context(_read_context_file(core_path))
    else:
        logger.warning(f"Core context file not found: {core_path}")

    sources = [(key, config.root / path) for key, path in config.enriched.items()]
    sources.extend(_parse_enriched(enriched))
    for key, path in sources:
        engine.add_enriched_context(key, _read_context_file(path), tags=(path.stem,))

    if existing_docs:
        engine.load_existing_documents(Path(existing_docs))
    if inject:
        engine.inject_high_relevance_fragments(Path(inject))
    return engine


@cli.command()
@click.option(
    "--path",
    "-p",
    type=click.Path(exists=True, file_okay=False, dir_okay=True),
    default=".",
    help="Project root",
)
@click.option(
    "--force",
    "-f",
    is_flag=True,
    help="Overwrite existing configuration",
)
@click.pass_context
def init(ctx: click.Context, path: str, force: bool) -> None:
    """Initialize docctx in your project."""
    root = Path(path).resolve()
    config_path = root / CONFIG_DIR / CONFIG_FILE

    if config_path.exists() and not force:
        if ctx.obj.get("quiet") or ctx.obj.get("json"):
            click.echo("Already initialized", err=True)
        else:
            console.print("[yellow]⚠ docctx is already initialized. Use --force to overwrite.[/yellow]")
        return

    config = Config.create_default(root)
    config.save(config_path)

    if ctx.obj.get("quiet"):
        click.echo(config_path)
    elif ctx.obj.get("json"):
        click.echo(json.dumps({
            "status": "initialized",
            "config_path": str(config_path)
        }))
    else:
        console.print(f"[green]✓[/green] Created config at [cyan]{config_path}[/cyan]")
        console.print("\nNext steps:")
        console.print("  [dim]•[/dim] Run [bold]docctx discover[/bold] to see which files would be injected")
        console.print("  [dim]•[/dim] Run [bold]docctx build <document-type>[/bold] to assemble context")


@cli.command()
@click.argument("document_type")
@_assembly_options
@click.option(
    "--output",
    "-o",
    type=click.Path(dir_okay=False),
    help="Write the assembled context to this file",
)
@click.pass_context
def build(
    ctx: click.Context,
    document_type: str,
    core: Optional[str],
    enriched: Tuple[str, ...],
    inject: Optional[str],
    existing_docs: Optional[str],
    provider: Optional[str],
    model: Optional[str],
    output: Optional[str],
) -> None:
    """Assemble the context for DOCUMENT_TYPE.

    Example: docctx build risk-analysis --core README.md --inject docs
    """
    engine = _load_engine(ctx, core, enriched, inject, existing_docs, provider, model)
    result = engine.build(document_type)

    if output:
        Path(output).write_text(result.text, encoding="utf-8")

    if ctx.obj.get("json"):
        click.echo(json.dumps(result.to_dict(include_text=not output), indent=2))
        return
    if ctx.obj.get("quiet"):
        if not output:
            click.echo(result.text)
        return

    if not output:
        console.print(Panel(
            escape(result.text),
            title=f"📄 {document_type} ({result.budget_display})",
            border_style="blue",
        ))
    else:
        console.print(f"[green]✓[/green] Wrote context to [cyan]{output}[/cyan]")
    console.print(
        f"  Model: {result.profile.key} ({result.tier.value}), "
        f"phase {result.phase_reached}, {result.utilization_percentage:.1f}% utilization"
    )
    console.print(f"  Included: {', '.join(result.included_fragment_keys)}")
    for warning in result.overflow_warnings:
        console.print(f"  [yellow]⚠[/yellow] {escape(warning.message)}")


@cli.command()
@click.argument("document_type")
@_assembly_options
@click.pass_context
def analyze(
    ctx: click.Context,
    document_type: str,
    core: Optional[str],
    enriched: Tuple[str, ...],
    inject: Optional[str],
    existing_docs: Optional[str],
    provider: Optional[str],
    model: Optional[str],
) -> None:
    """Report context utilization for DOCUMENT_TYPE."""
    engine = _load_engine(ctx, core, enriched, inject, existing_docs, provider, model)
    report = engine.analyze(document_type)

    if ctx.obj.get("json"):
        click.echo(engine.reporter.render_json(report))
    elif ctx.obj.get("quiet"):
        click.echo(engine.reporter.render_markdown(report))
    else:
        console.print(Panel(
            escape(engine.reporter.render_markdown(report)),
            title=f"📊 {document_type} ({report.utilization_percentage:.1f}%)",
            border_style="blue",
        ))


@cli.command()
@_assembly_options
@click.pass_context
def report(
    ctx: click.Context,
    core: Optional[str],
    enriched: Tuple[str, ...],
    inject: Optional[str],
    existing_docs: Optional[str],
    provider: Optional[str],
    model: Optional[str],
) -> None:
    """Show the engine-wide performance report."""
    engine = _load_engine(ctx, core, enriched, inject, existing_docs, provider, model)

    if ctx.obj.get("json"):
        data = engine.get_metrics()
        data["injection"] = engine.get_injection_statistics()
        click.echo(json.dumps(data, indent=2))
    elif ctx.obj.get("quiet"):
        click.echo(engine.render_engine_report())
    else:
        console.print(Panel(
            escape(engine.render_engine_report()),
            title="🧠 docctx",
            border_style="blue",
        ))


@cli.command()
@click.option("--provider", help="Only list models for this provider")
@click.pass_context
def models(ctx: click.Context, provider: Optional[str]) -> None:
    """List known model capability profiles."""
    engine = ContextAssemblyEngine.from_config(ctx.obj["config"])
    profiles = [
        p for p in engine.registry.list_profiles()
        if provider is None or p.provider == provider
    ]

    if ctx.obj.get("json"):
        click.echo(json.dumps([p.to_dict() for p in profiles], indent=2))
        return

    for p in profiles:
        if ctx.obj.get("quiet"):
            click.echo(p.key)
        else:
            console.print(
                f"  [bold]{p.key}[/bold]  {p.max_context_tokens:,} max, "
                f"{p.available_tokens:,} available"
            )


@cli.command()
@click.option(
    "--path",
    "-p",
    type=click.Path(exists=True, file_okay=False, dir_okay=True),
    default=None,
    help="Directory to scan (defaults to the project root)",
)
@click.option("--min-score", type=int, default=None, help="Minimum relevance score (0-100)")
@click.option("--limit", "-n", type=int, default=None, help="Maximum files to list")
@click.pass_context
def discover(
    ctx: click.Context,
    path: Optional[str],
    min_score: Optional[int],
    limit: Optional[int],
) -> None:
    """Show which project files discovery would inject, best first."""
    config: Config = ctx.obj["config"]
    root = Path(path) if path else config.root
    threshold = config.discovery.min_score if min_score is None else min_score
    count = config.discovery.max_count if limit is None else limit

    found = FileDiscovery(root, config.discovery).discover(
        timeout=config.discovery.timeout_seconds,
    )
    selected = [f for f in found.files if f.score >= threshold][:count]

    if ctx.obj.get("json"):
        click.echo(json.dumps({
            "root": str(root),
            "scanned": found.scanned,
            "unreadable": found.unreadable,
            "oversize": found.oversize,
            "timed_out": found.timed_out,
            "files": [
                {"path": f.rel_path, "score": f.score, "category": f.category, "key": f.key}
                for f in selected
            ],
        }, indent=2))
        return

    if ctx.obj.get("quiet"):
        for f in selected:
            click.echo(f"{f.score}\t{f.rel_path}")
        return

    console.print(f"[dim]Scanned {found.scanned} files under {root}[/dim]")
    if not selected:
        console.print(f"[yellow]No files scored >= {threshold}[/yellow]")
    for f in selected:
        console.print(f"  [bold]{f.score:>3}[/bold]  {f.rel_path}  [dim]({f.category})[/dim]")
    if found.unreadable:
        console.print(f"[yellow]⚠ {found.unreadable} unreadable file(s) skipped[/yellow]")


def main() -> None:
    """Entry point."""
    try:
        cli()
    except DocctxError as e:
        console.print(f"[red]Error:[/red] {escape(str(e))}")
        sys.exit(1)
    except Exception as e:
        console.print(f"[red]Unexpected error:[/red] {escape(str(e))}")
        if os.environ.get("DOCCTX_DEBUG"):
            import traceback
            console.print(escape(traceback.format_exc()))
        sys.exit(1)


if __name__ == "__main__":
    main()
