"""
Command-line interface for the GEO content pipeline.

Runs the same operations as the dashboard API against the configured
database: list keywords, generate content, inspect history and manage
usage limits.
"""

import logging
import sys
from typing import Optional

import click
from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.table import Table

from .auth import PermissionDenied
from .config import PipelineConfig
from .keyword_loader import is_error_sentinel
from .models import GenerationOptions, Identity
from .services import Services, build_services
from .usage_ledger import UsageRecordNotFound

console = Console()


def _identity(services: Services, user_id: str, email: Optional[str]) -> Identity:
    return services.policy.identify(user_id, email)


@click.group()
@click.option(
    "--database-url",
    type=str,
    envvar="GEO_DATABASE_URL",
    help="SQLAlchemy database URL. Can also be set via GEO_DATABASE_URL env var.",
)
@click.option(
    "--user-id",
    type=str,
    default="cli",
    show_default=True,
    help="User id the command runs as.",
)
@click.option(
    "--email",
    type=str,
    envvar="GEO_USER_EMAIL",
    help="Email for the user. Admin emails get an unlimited cap.",
)
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    default=False,
    help="Enable verbose output.",
)
@click.pass_context
def main(ctx: click.Context, database_url: Optional[str], user_id: str, email: Optional[str], verbose: bool) -> None:
    """
    GEO Content Pipeline - keyword to GEO-optimized content.

    Examples:

        geo-pipeline keywords

        geo-pipeline generate 魚油推薦

        geo-pipeline --email admin@example.com reset-usage some-user
    """
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    overrides = {"database_url": database_url} if database_url else {}
    try:
        config = PipelineConfig.from_env(**overrides)
    except ValueError as e:
        console.print(f"[red]Configuration error:[/red] {e}")
        sys.exit(1)
    services = build_services(config)
    ctx.obj = {
        "services": services,
        "identity": _identity(services, user_id, email),
        "verbose": verbose,
    }


@main.command()
@click.pass_context
def keywords(ctx: click.Context) -> None:
    """List spreadsheet and personal keywords."""
    services: Services = ctx.obj["services"]
    identity: Identity = ctx.obj["identity"]

    spreadsheet = services.catalog.spreadsheet_keywords()
    if is_error_sentinel(spreadsheet):
        console.print(f"[yellow]Spreadsheet unavailable:[/yellow] {spreadsheet[0]}")

    table = Table(title="Keywords", show_header=True)
    table.add_column("Source", style="cyan")
    table.add_column("Keyword", style="green")
    table.add_column("ID", style="dim")
    for record in services.catalog.all_keywords(identity):
        table.add_row(record.source.value, record.phrase, str(record.id or ""))
    console.print(table)


@main.command()
@click.argument("keyword")
@click.option("--model", type=str, help="Model to try first.")
@click.option("--instruction", type=str, help="Custom instruction for the second stage.")
@click.option("--force-refresh", is_flag=True, default=False, help="Skip the cache.")
@click.option("--show-draft", is_flag=True, default=False, help="Print the first-stage draft too.")
@click.pass_context
def generate(
    ctx: click.Context,
    keyword: str,
    model: Optional[str],
    instruction: Optional[str],
    force_refresh: bool,
    show_draft: bool,
) -> None:
    """Generate GEO content for KEYWORD."""
    services: Services = ctx.obj["services"]
    identity: Identity = ctx.obj["identity"]

    console.print(Panel.fit(
        f"[bold blue]GEO Content Pipeline[/bold blue]\nKeyword: {keyword}",
        border_style="blue",
    ))

    options = GenerationOptions(model=model, custom_instruction=instruction, force_refresh=force_refresh)
    try:
        with console.status("[bold green]Generating..."):
            result = services.pipeline.generate(identity, keyword, options)
    except ValueError as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)

    if not result.is_success:
        console.print(f"[red]{result.error_kind.value}:[/red] {result.error_message}")
        if result.contact:
            console.print(f"Contact: {result.contact}")
        sys.exit(1)

    if result.paa_questions:
        console.print("\n[bold]People Also Ask[/bold]")
        for question in result.paa_questions:
            console.print(f"  - {question}")

    if show_draft and result.draft_content:
        console.print(Panel(Markdown(result.draft_content), title="Draft", border_style="dim"))

    console.print(Panel(Markdown(result.content), title="GEO content", border_style="green"))

    source = "cache" if result.cached else result.model_used
    console.print(f"\n[bold green]Done[/bold green] ({source})")
    if result.compliance is not None:
        _display_compliance(result.compliance)


def _display_compliance(report) -> None:
    table = Table(title="Compliance", show_header=True)
    table.add_column("Check", style="cyan")
    table.add_column("Passed")
    table.add_column("Detail", style="dim")
    for check in report.checks:
        table.add_row(check.name, "[green]yes[/green]" if check.passed else "[red]no[/red]", check.detail)
    console.print(table)


@main.command()
@click.option("--limit", type=int, default=20, show_default=True, help="Rows to show.")
@click.option("--all-users", is_flag=True, default=False, help="Show every user's results (admin only).")
@click.pass_context
def history(ctx: click.Context, limit: int, all_users: bool) -> None:
    """Show recent generation results."""
    services: Services = ctx.obj["services"]
    identity: Identity = ctx.obj["identity"]
    if all_users:
        try:
            services.policy.require_admin(identity)
        except PermissionDenied as e:
            console.print(f"[red]Error:[/red] {e}")
            sys.exit(1)

    results = services.store.list_recent(limit=limit, user_id=None if all_users else identity.user_id)
    table = Table(title="History", show_header=True)
    table.add_column("ID", style="dim")
    table.add_column("Keyword", style="green")
    table.add_column("Model", style="cyan")
    table.add_column("PAA")
    table.add_column("Created")
    for result in results:
        table.add_row(
            str(result.id),
            result.keyword,
            result.model_used or "",
            str(len(result.paa_questions)),
            result.created_at.strftime("%Y-%m-%d %H:%M") if result.created_at else "",
        )
    console.print(table)


@main.command()
@click.pass_context
def usage(ctx: click.Context) -> None:
    """Show the current user's usage."""
    services: Services = ctx.obj["services"]
    record = services.ledger.get_or_create(ctx.obj["identity"])
    remaining = "unlimited" if record.remaining is None else str(record.remaining)
    console.print(
        f"[cyan]{record.user_id}[/cyan]: {record.usage_count}/{record.max_usage} used, "
        f"{remaining} remaining, premium={record.is_premium}"
    )


@main.command("reset-usage")
@click.argument("user_id")
@click.pass_context
def reset_usage(ctx: click.Context, user_id: str) -> None:
    """Reset USER_ID's counter to zero (admin only)."""
    services: Services = ctx.obj["services"]
    try:
        services.policy.require_admin(ctx.obj["identity"])
        record = services.ledger.reset(user_id)
    except (PermissionDenied, UsageRecordNotFound) as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)
    console.print(f"[green]Reset[/green] {record.user_id}: {record.usage_count}/{record.max_usage}")


@main.command("set-limits")
@click.argument("user_id")
@click.option("--max-usage", type=int, required=True, help="New cap.")
@click.option("--premium/--no-premium", default=False, help="Premium flag.")
@click.pass_context
def set_limits(ctx: click.Context, user_id: str, max_usage: int, premium: bool) -> None:
    """Change USER_ID's cap and premium flag (admin only)."""
    services: Services = ctx.obj["services"]
    try:
        services.policy.require_admin(ctx.obj["identity"])
        record = services.ledger.set_limits(user_id, max_usage, premium)
    except (PermissionDenied, UsageRecordNotFound, ValueError) as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)
    console.print(
        f"[green]Updated[/green] {record.user_id}: max_usage={record.max_usage}, premium={record.is_premium}"
    )


def run_cli() -> None:
    """Entry point for the CLI."""
    main()


if __name__ == "__main__":
    run_cli()
