"""Command-line interface for the vCD migration tool."""

import asyncio
import logging
import sys
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Annotated, Any

import structlog
import typer
from rich.console import Console
from rich.table import Table

from vcd_migrate import __version__
from vcd_migrate.config import Config
from vcd_migrate.context import MigrationScope, open_context
from vcd_migrate.credentials import (
    CredentialProvider,
    DefaultPasswordProvider,
    EnvironmentCredentialProvider,
    InteractiveCredentialProvider,
)
from vcd_migrate.exceptions import ConfigurationError, VcdMigrationError
from vcd_migrate.models import MIGRATABLE_KINDS, ObjectKind
from vcd_migrate.orchestration import MigrationOrchestrator
from vcd_migrate.resources import MigrationTask

# Create Typer app
app = typer.Typer(
    name="vcd-migrate",
    help="Migrate vCloud Director objects between management planes",
    add_completion=False,
)

console = Console()

STATE_STYLES = {
    "Ready": "green",
    "Skipped": "yellow",
    "Failed": "red",
}

ConfigOption = Annotated[
    Path | None,
    typer.Option(
        "--config",
        "-c",
        help="Path to configuration file (optional, uses environment variables by default)",
    ),
]
LogLevelOption = Annotated[
    str,
    typer.Option("--log-level", "-l", help="Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"),
]
LogFormatOption = Annotated[
    str, typer.Option("--log-format", "-f", help="Log format (json or text)")
]
LogFileOption = Annotated[
    Path | None, typer.Option("--log-file", help="Append a plain-text run log to this file")
]
DefaultPasswordOption = Annotated[
    str | None,
    typer.Option(
        "--default-password",
        help="Password given to every migrated user",
        envvar="VCD_DEFAULT_USER_PASSWORD",
    ),
]
PromptPasswordsOption = Annotated[
    bool,
    typer.Option(
        "--prompt-passwords/--no-prompt-passwords",
        help="Prompt for passwords that are not configured",
    ),
]


def setup_logging(
    log_level: str = "INFO", log_format: str = "text", log_file: Path | None = None
) -> None:
    """Setup structured logging.

    Args:
        log_level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        log_format: Log format (json or text).
        log_file: Optional file the rendered log lines are appended to.
    """
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_file is not None:
        handlers.append(logging.FileHandler(log_file, mode="a", encoding="utf-8"))
    logging.basicConfig(
        level=log_level.upper(), format="%(message)s", handlers=handlers, force=True
    )

    processors = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if log_format.lower() == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        # No ANSI colors when lines also go to a file
        processors.append(structlog.dev.ConsoleRenderer(colors=log_file is None))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def load_config(config_file: Path | None) -> Config:
    """Load configuration from a file when given, else from the environment."""
    try:
        if config_file is not None:
            return Config.from_file(config_file)
        return Config.from_env()
    except (ValueError, FileNotFoundError) as e:
        raise ConfigurationError(str(e)) from e


def build_credentials(
    config: Config, default_password: str | None, prompt_passwords: bool
) -> CredentialProvider:
    """Pick the credential provider for this run from the operator's options."""
    fallback: CredentialProvider = (
        InteractiveCredentialProvider() if prompt_passwords else EnvironmentCredentialProvider()
    )
    if default_password is None and config.default_user_password is not None:
        default_password = config.default_user_password.get_secret_value()
    if default_password:
        return DefaultPasswordProvider(default_password, fallback=fallback)
    return fallback


def parse_kind(kind: str) -> ObjectKind:
    try:
        parsed = ObjectKind(kind)
    except ValueError:
        parsed = None
    if parsed not in MIGRATABLE_KINDS:
        choices = ", ".join(k.value for k in MIGRATABLE_KINDS)
        raise typer.BadParameter(f"KIND must be one of: {choices}")
    return parsed


def _display_tasks(tasks: list[MigrationTask]) -> None:
    if not tasks:
        return

    table = Table(title="📋 Migration Tasks")
    table.add_column("Kind", style="cyan")
    table.add_column("Name", style="blue")
    table.add_column("Operation", style="magenta")
    table.add_column("State")
    table.add_column("Target")

    for task in tasks:
        style = STATE_STYLES.get(task.state.value, "white")
        detail = task.error if task.error else (task.target_ref.href if task.target_ref else "")
        table.add_row(
            task.kind.value,
            task.name,
            task.operation.value,
            f"[{style}]{task.state.value}[/{style}]",
            detail,
        )

    console.print("\n")
    console.print(table)


def _run(
    config: Config,
    credentials: CredentialProvider,
    action: Callable[[MigrationOrchestrator], Awaitable[Any]],
) -> None:
    """Connect, run ``action`` and report; exit 1 on any migration error."""
    logger = structlog.get_logger(__name__)

    async def main() -> None:
        async with open_context(config, credentials) as context:
            orchestrator = MigrationOrchestrator(context)
            try:
                await action(orchestrator)
            finally:
                _display_tasks(context.tasks)

    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        console.print("\n[red]Migration interrupted by user[/red]")
        logger.info("Migration interrupted by user")
        sys.exit(1)
    except VcdMigrationError as e:
        console.print(f"[red]Migration failed: {e}[/red]")
        logger.error("Migration failed", error=str(e), error_type=type(e).__name__)
        sys.exit(1)

    console.print("\n[green]Migration completed successfully![/green]")


def _configure(
    config_file: Path | None,
    log_level: str,
    log_format: str,
    log_file: Path | None,
) -> Config:
    setup_logging(log_level, log_format, log_file)
    try:
        config = load_config(config_file)
    except ConfigurationError as e:
        console.print(f"[red]Configuration error: {e}[/red]")
        structlog.get_logger(__name__).error("Configuration error", error=str(e))
        sys.exit(1)

    config.logging.level = log_level
    config.logging.format = log_format
    if log_file is not None:
        config.logging.file = log_file
    return config


@app.command()
def migrate(
    kind: Annotated[str, typer.Argument(help="Organization, OrgVdc, ExternalNetwork, AdminUser, OrgVdcNetwork or EdgeGateway")],
    name: Annotated[
        str | None,
        typer.Argument(help="Object name (read from the file with --from-file)"),
    ] = None,
    org: Annotated[
        str | None, typer.Option("--org", "-o", help="Organization the object belongs to")
    ] = None,
    vdc: Annotated[
        str | None, typer.Option("--vdc", help="VDC the object belongs to")
    ] = None,
    from_file: Annotated[
        Path | None,
        typer.Option("--from-file", help="Read the object from a captured XML document"),
    ] = None,
    services_only: Annotated[
        bool,
        typer.Option(
            "--services-only",
            help="Only re-apply an edge gateway's service configuration",
        ),
    ] = False,
    default_password: DefaultPasswordOption = None,
    prompt_passwords: PromptPasswordsOption = True,
    provider_vdc: Annotated[
        str | None, typer.Option("--provider-vdc", help="Target provider VDC name")
    ] = None,
    vcenter: Annotated[
        str | None, typer.Option("--vcenter", help="Target vCenter name")
    ] = None,
    portgroup: Annotated[
        str | None, typer.Option("--portgroup", help="Target portgroup name")
    ] = None,
    config_file: ConfigOption = None,
    log_level: LogLevelOption = "INFO",
    log_format: LogFormatOption = "text",
    log_file: LogFileOption = None,
) -> None:
    """Migrate one object from the source (or a file) to the target.

    Examples:
        vcd-migrate migrate ExternalNetwork ext-net-01
        vcd-migrate migrate EdgeGateway acme-egw --org acme --vdc acme-vdc
        vcd-migrate migrate EdgeGateway acme-egw --org acme --vdc acme-vdc --services-only
        vcd-migrate migrate AdminUser --from-file alice.xml --org acme
    """
    object_kind = parse_kind(kind)
    if services_only and object_kind is not ObjectKind.EDGE_GATEWAY:
        raise typer.BadParameter("--services-only is only valid for EdgeGateway")
    if name is None and from_file is None:
        raise typer.BadParameter("NAME is required unless --from-file is given")

    config = _configure(config_file, log_level, log_format, log_file)
    if provider_vdc:
        config.provider.provider_vdc = provider_vdc
    if vcenter:
        config.provider.vcenter = vcenter
    if portgroup:
        config.provider.portgroup = portgroup

    credentials = build_credentials(config, default_password, prompt_passwords)
    scope = MigrationScope(org=org, vdc=vdc)

    structlog.get_logger(__name__).info(
        "Starting migration",
        kind=object_kind.value,
        name=name,
        from_file=str(from_file) if from_file else None,
        target=config.target.host,
        source=config.source.host if config.source else None,
    )

    async def action(orchestrator: MigrationOrchestrator) -> MigrationTask:
        if from_file is not None:
            return await orchestrator.migrate_from_file(
                object_kind, from_file, scope, services_only
            )
        return await orchestrator.migrate_object(object_kind, name, scope, services_only)

    _run(config, credentials, action)


@app.command("migrate-org")
def migrate_org(
    name: Annotated[str, typer.Argument(help="Organization name")],
    default_password: DefaultPasswordOption = None,
    prompt_passwords: PromptPasswordsOption = True,
    provider_vdc: Annotated[
        str | None, typer.Option("--provider-vdc", help="Target provider VDC name")
    ] = None,
    config_file: ConfigOption = None,
    log_level: LogLevelOption = "INFO",
    log_format: LogFormatOption = "text",
    log_file: LogFileOption = None,
) -> None:
    """Migrate an organization with its users, VDCs, gateways and networks."""
    config = _configure(config_file, log_level, log_format, log_file)
    if provider_vdc:
        config.provider.provider_vdc = provider_vdc
    credentials = build_credentials(config, default_password, prompt_passwords)

    async def action(orchestrator: MigrationOrchestrator) -> dict[str, Any]:
        results = await orchestrator.migrate_organization(name)
        summary = results["summary"]
        console.print(
            f"[blue]Created:[/blue] {summary['created']}  "
            f"[yellow]Skipped:[/yellow] {summary['skipped']}  "
            f"[red]Failed:[/red] {summary['failed']}"
        )
        return results

    _run(config, credentials, action)


@app.command()
def validate(
    config_file: ConfigOption = None,
    prompt_passwords: PromptPasswordsOption = True,
    log_level: LogLevelOption = "INFO",
    log_format: LogFormatOption = "text",
) -> None:
    """Validate configuration and connectivity to the configured endpoints."""
    config = _configure(config_file, log_level, log_format, None)
    credentials = build_credentials(config, None, prompt_passwords)
    logger = structlog.get_logger(__name__)

    async def check() -> Table:
        table = Table(title="🔗 Endpoints")
        table.add_column("Endpoint", style="cyan")
        table.add_column("Host", style="blue")
        table.add_column("Login", style="magenta")
        table.add_column("API version", justify="right")
        table.add_column("Locator", style="green")

        async with open_context(config, credentials) as context:
            endpoints = [(context.target, context.target_locator)]
            if context.source is not None:
                endpoints.append((context.source, context.source_locator))
            for client, locator in endpoints:
                table.add_row(
                    client.name,
                    client.endpoint_config.host,
                    client.endpoint_config.login,
                    client.api_version,
                    type(locator).__name__,
                )
        return table

    try:
        table = asyncio.run(check())
    except VcdMigrationError as e:
        console.print(f"[red]❌ Validation failed: {e}[/red]")
        logger.error("Validation failed", error=str(e))
        sys.exit(1)

    console.print(table)
    console.print("[green]✅ Configuration is valid[/green]")


@app.command()
def version() -> None:
    """Show version information."""
    console.print(f"vcd-migrate version {__version__}")


if __name__ == "__main__":
    app()
