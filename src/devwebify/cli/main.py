"""devwebify CLI - turn API collections into DevWeb load test scripts."""

import json
import os
from pathlib import Path
from typing import Annotated

import typer
from rich.panel import Panel
from rich.table import Table

import devwebify
from devwebify import console as dw_console
from devwebify.config import get_settings
from devwebify.exceptions import CollectionParseError, ConfigurationError, OutputWriteError
from devwebify.generator.script import Analysis, GeneratorOptions, generate
from devwebify.logging import configure_logging, get_logger
from devwebify.pipeline import analyze_collection, convert_collection

# Configure logging early from env vars; -v/-vv and --log-format may reconfigure later.
configure_logging(
    level=os.environ.get("DEVWEBIFY_LOG_LEVEL", "WARNING"),
    json_output=os.environ.get("DEVWEBIFY_LOG_FORMAT", "console") == "json",
)

LOG = get_logger(__name__)

app = typer.Typer(
    name="devwebify",
    help="""
    devwebify - turn Postman and Bruno collections into DevWeb scripts

    \b
    Quick start:
      devwebify convert api.postman_collection.json -o ./script
      devwebify analyze api.postman_collection.json
    """,
    no_args_is_help=True,
    rich_markup_mode="rich",
    context_settings={"help_option_names": ["-h", "--help"]},
)
console = dw_console.out_console


InputFile = Annotated[
    Path,
    typer.Argument(
        help="Postman or Bruno collection export (JSON)",
        exists=True,
        file_okay=True,
        dir_okay=False,
        readable=True,
    ),
]
EnvironmentOption = Annotated[
    Path | None,
    typer.Option("--environment", "-e", help="Postman environment export overriding collection variables"),
]


@app.callback(invoke_without_command=True)
def main_callback(
    verbose: Annotated[
        int,
        typer.Option("--verbose", "-v", count=True, help="Increase verbosity (-v for info, -vv for debug)"),
    ] = 0,
    log_format: Annotated[
        str | None,
        typer.Option("--log-format", help="Log output format: console (human-readable) or json (structured)"),
    ] = None,
) -> None:
    """devwebify - turn API collections into DevWeb scripts."""
    settings = get_settings()
    json_output = (log_format or settings.log_format) == "json"

    if verbose >= 2:
        configure_logging(level="DEBUG", json_output=json_output)
    elif verbose >= 1:
        configure_logging(level="INFO", json_output=json_output)
    elif log_format is not None:
        configure_logging(level=settings.log_level, json_output=json_output)


def _options(
    *,
    think_time: float | None,
    no_correlation: bool,
    no_classification: bool,
    no_auth: bool,
    no_scripts: bool,
    no_transactions: bool,
    no_comments: bool,
) -> GeneratorOptions:
    if think_time is not None and think_time < 0:
        raise ConfigurationError("--think-time must not be negative")
    return GeneratorOptions.from_settings(
        think_time=think_time,
        use_correlation=not no_correlation,
        use_classification=not no_classification,
        use_authentication=not no_auth,
        use_custom_scripts=not no_scripts,
        use_transactions=not no_transactions,
        add_comments=not no_comments,
    )


def _print_correlations(report: dict) -> None:
    rules = report["correlations"]["rules"]
    if not rules:
        console.print("[dim]No correlations detected[/dim]\n")
        return

    table = Table(
        title="Correlations",
        title_style="bold",
        header_style="bold cyan",
        border_style="dim",
    )
    table.add_column("Variable", style="cyan")
    table.add_column("Type", style="magenta")
    table.add_column("Producer", style="white")
    table.add_column("Consumer", style="white")
    table.add_column("Location", style="dim")

    for rule in rules:
        table.add_row(
            rule["name"],
            rule["type"],
            rule["producer_request"],
            rule["consumer_request"],
            rule["usage_location"],
        )
    console.print(table)


def _summary(report: dict) -> str:
    requests = report["requests"]
    lines = [
        f"[bold]{report['collection']['name']}[/bold] ({report['collection']['format']})",
        f"[dim]Requests:[/dim]     {requests['total']}",
        f"[dim]Correlations:[/dim] {report['correlations']['total']}",
        f"[dim]Parameters:[/dim]   {report['parameters']['total']}",
        f"[dim]Auth configs:[/dim] {report['authentication']['total']}",
        f"[dim]Warnings:[/dim]     {len(report['warnings'])}",
    ]
    classification = report.get("classification")
    if classification:
        lines.append(
            f"[dim]Variables:[/dim]    {len(classification['dynamic'])} dynamic, "
            f"{len(classification['parameterized'])} parameterized, "
            f"{len(classification['builtin'])} built-in"
        )
    return "\n".join(lines)


@app.command("convert")
def convert(
    collection: InputFile,
    output: Annotated[
        Path | None,
        typer.Option("--output", "-o", help="Output directory (default: DEVWEBIFY_OUTPUT_DIR)"),
    ] = None,
    environment: EnvironmentOption = None,
    think_time: Annotated[
        float | None,
        typer.Option("--think-time", "-t", help="Seconds to sleep between requests"),
    ] = None,
    no_correlation: Annotated[bool, typer.Option("--no-correlation", help="Skip correlation detection")] = False,
    no_classification: Annotated[
        bool, typer.Option("--no-classification", help="Inline declared values instead of classifying them")
    ] = False,
    no_auth: Annotated[bool, typer.Option("--no-auth", help="Skip authentication handling")] = False,
    no_scripts: Annotated[bool, typer.Option("--no-scripts", help="Skip pre-request/test script conversion")] = False,
    no_transactions: Annotated[
        bool, typer.Option("--no-transactions", help="Do not wrap folders in transactions")
    ] = False,
    no_comments: Annotated[bool, typer.Option("--no-comments", help="Omit explanatory comments")] = False,
) -> None:
    """Convert a collection into a DevWeb script directory.

    \b
    Examples:
        devwebify convert api.json -o ./script
        devwebify convert api.json -e staging.postman_environment.json
        devwebify convert api.json --no-transactions --think-time 0
    """
    output_dir = output or get_settings().output_dir
    try:
        options = _options(
            think_time=think_time,
            no_correlation=no_correlation,
            no_classification=no_classification,
            no_auth=no_auth,
            no_scripts=no_scripts,
            no_transactions=no_transactions,
            no_comments=no_comments,
        )
        result = convert_collection(collection, output_dir, environment_path=environment, options=options)
    except (CollectionParseError, ConfigurationError) as exc:
        dw_console.error(str(exc))
        raise typer.Exit(1) from None
    except OutputWriteError as exc:
        dw_console.write_failed(exc)
        raise typer.Exit(1) from None

    if result.parse_errors:
        dw_console.unreadable_items(result.parse_errors)

    console.print(Panel(_summary(result.report), title="[green]Conversion complete[/green]", border_style="green"))
    _print_correlations(result.report)
    dw_console.conversion_warnings(result.report["warnings"])
    for path in result.files:
        dw_console.file_written(result.output_dir / path)


@app.command("analyze")
def analyze(
    collection: InputFile,
    environment: EnvironmentOption = None,
    as_json: Annotated[bool, typer.Option("--json", help="Print the full report as JSON")] = False,
) -> None:
    """Analyze a collection and report correlations, variables and auth without writing files."""
    try:
        analysis: Analysis = analyze_collection(collection, environment_path=environment)
    except CollectionParseError as exc:
        dw_console.error(str(exc))
        raise typer.Exit(1) from None

    report = generate(analysis).report
    if as_json:
        console.print_json(json.dumps(report))
        return

    console.print(Panel(_summary(report), title="Collection analysis", border_style="cyan"))
    _print_correlations(report)
    for recommendation in report["correlations"]["recommendations"]:
        dw_console.info(recommendation)
    dw_console.conversion_warnings(report["warnings"])


@app.command("version")
def version() -> None:
    """Show devwebify version and configuration."""
    settings = get_settings()
    console.print(
        Panel(
            f"[bold cyan]devwebify[/bold cyan] v{devwebify.__version__}\n\n"
            f"[dim]Output:[/dim]     {settings.output_dir}\n"
            f"[dim]Think time:[/dim] {settings.think_time:g}s",
            title="Collections to DevWeb scripts",
            border_style="cyan",
        )
    )


if __name__ == "__main__":
    app()
