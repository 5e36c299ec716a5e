"""Main CLI entry point for GitHub Migrator."""

import sys
import asyncio
from typing import Optional
from pathlib import Path

import click
from rich.console import Console
from rich.panel import Panel
from rich.progress import (
    Progress,
    SpinnerColumn,
    TextColumn,
    BarColumn,
    TaskProgressColumn,
)
from rich.table import Table

from .. import __version__
from ..config.config import Config
from ..utils.logging import setup_logging
from ..migration.engine import MigrationEngine
from ..migration.transfer import detect_format
from ..models.mapping import MappingFilter, MappingStatus
from ..models.run import MigrationRun, RunScope, RunStatus
from ..server.app import serve as serve_app

console = Console()

POLL_INTERVAL_SECONDS = 0.5


@click.group()
@click.version_option(version=__version__, prog_name='github-migrator')
@click.option(
    '--config',
    '-c',
    type=click.Path(exists=True),
    help='Path to configuration file',
)
@click.option(
    '--verbose',
    '-v',
    is_flag=True,
    help='Enable verbose logging',
)
@click.pass_context
def cli(ctx: click.Context, config: Optional[str], verbose: bool) -> None:
    """GitHub Migrator - Migrate teams and their repository access into GitHub."""
    ctx.ensure_object(dict)

    if config:
        ctx.obj['config_path'] = config
    ctx.obj['verbose'] = verbose

    # Basic logging until the config is loaded
    log_level = 'DEBUG' if verbose else 'INFO'
    setup_logging(log_level)


@cli.command()
@click.option(
    '--output',
    '-o',
    default='config.yaml',
    help='Output configuration file path',
)
@click.pass_context
def init(ctx: click.Context, output: str) -> None:
    """Initialize a new configuration file."""
    console.print(
        Panel.fit(
            '[bold green]GitHub Migrator[/bold green]\n'
            'Initializing configuration...',
            border_style='green',
        )
    )

    try:
        Config.create_template(output)

        console.print(f'[green]✓[/green] Configuration template created at: {output}')
        console.print(
            f'[yellow]Please edit {output} with your source and GitHub details[/yellow]'
        )

    except OSError as e:
        console.print(f'[red]✗[/red] Failed to create configuration: {e}')
        sys.exit(1)


@cli.command()
@click.option('--org', '-o', required=True, help='Source organization (Azure DevOps: project)')
@click.option('--members', is_flag=True, help='Also count team members')
@click.pass_context
def discover(ctx: click.Context, org: str, members: bool) -> None:
    """Discover source teams and record them as unmapped team mappings."""
    try:
        engine = _create_engine(ctx)
        try:
            result = engine.discovery.discover(org, include_members=members)
        finally:
            engine.close()

        table = Table(title=f'Discovery: {org}')
        table.add_column('Metric', style='cyan')
        table.add_column('Count', style='green')
        table.add_row('Teams', str(result.teams))
        table.add_row('New teams', str(result.new_teams))
        table.add_row('Updated teams', str(result.updated_teams))
        table.add_row('Repositories', str(result.repositories))
        if members:
            table.add_row('Members', str(result.members))
        console.print(table)
        _print_errors(result.errors, engine.config.migration.error_display_limit)

    except Exception as e:
        _fail(ctx, 'Discovery failed', e)


@cli.command()
@click.option(
    '--dry-run',
    is_flag=True,
    help='Perform a dry run without making changes',
)
@click.option('--source-org', help='Only migrate teams of this source organization')
@click.option('--team', help='Only migrate this team slug (requires --source-org)')
@click.pass_context
def execute(
    ctx: click.Context, dry_run: bool, source_org: Optional[str], team: Optional[str]
) -> None:
    """Create mapped teams in GitHub and grant their repository permissions."""
    console.print(
        Panel.fit(
            '[bold blue]GitHub Migrator[/bold blue]\n'
            'Starting team migration...',
            border_style='blue',
        )
    )

    try:
        config = _load_config(ctx)
        _setup_logging_with_config(ctx, config)

        dry_run = dry_run or config.migration.dry_run
        if dry_run:
            console.print(
                '[yellow]Running in dry-run mode - no changes will be made[/yellow]'
            )

        scope = RunScope(source_org=source_org, source_slug=team)
        engine = _create_engine(ctx, config)
        try:
            summary = asyncio.run(_run_migration(engine, scope, dry_run))
        finally:
            engine.close()

        _display_migration_summary(summary, config.migration.error_display_limit)

    except Exception as e:
        _fail(ctx, 'Migration failed', e)


@cli.command()
@click.option('--source-org', help='Only show statistics for this source organization')
@click.pass_context
def status(ctx: click.Context, source_org: Optional[str]) -> None:
    """Show team mapping and migration status."""
    console.print(
        Panel.fit(
            '[bold magenta]GitHub Migrator[/bold magenta]\nMigration Status',
            border_style='magenta',
        )
    )

    try:
        engine = _create_engine(ctx)
        try:
            mapping_stats = engine.store.mapping_stats(source_org)
            execution_stats = engine.store.execution_stats()
        finally:
            engine.close()

        table = Table(title='Team Mappings')
        table.add_column('Mapping status', style='cyan')
        table.add_column('Count', style='green')
        for key in ('total', 'mapped', 'unmapped', 'skipped'):
            table.add_row(key, str(mapping_stats[key]))
        console.print(table)

        table = Table(title='Migration')
        table.add_column('Status', style='cyan')
        table.add_column('Teams', style='green')
        for key, count in execution_stats['migration_status'].items():
            table.add_row(key, str(count))
        for key, count in sorted(execution_stats['sync_status'].items()):
            table.add_row(f'sync: {key}', str(count))
        table.add_row('Teams created in destination', str(execution_stats['teams_created_in_dest']))
        table.add_row('Repositories synced', str(execution_stats['total_repos_synced']))
        console.print(table)

    except Exception as e:
        _fail(ctx, 'Failed to load status', e)


@cli.command()
@click.option('--source-org', help='Only reset teams of this source organization')
@click.option('--team', help='Only reset this team slug (requires --source-org)')
@click.pass_context
def reset(ctx: click.Context, source_org: Optional[str], team: Optional[str]) -> None:
    """Reset migration status to pending so the next run re-syncs."""
    try:
        scope = RunScope(source_org=source_org, source_slug=team)
        engine = _create_engine(ctx)
        try:
            count = engine.orchestrator.reset_migration_status(scope)
        finally:
            engine.close()
        console.print(f'[green]✓[/green] Reset {count} team mappings to pending')

    except Exception as e:
        _fail(ctx, 'Reset failed', e)


@cli.command()
@click.option(
    '--format',
    '-f',
    'fmt',
    type=click.Choice(['csv', 'json']),
    default='csv',
    help='Export format',
)
@click.option('--output', '-o', help='Output file (default: stdout)')
@click.option(
    '--status',
    'mapping_status',
    type=click.Choice([s.value for s in MappingStatus]),
    help='Only export mappings with this mapping status',
)
@click.option('--source-org', help='Only export teams of this source organization')
@click.pass_context
def export(
    ctx: click.Context,
    fmt: str,
    output: Optional[str],
    mapping_status: Optional[str],
    source_org: Optional[str],
) -> None:
    """Export team mappings as CSV or JSON."""
    try:
        engine = _create_engine(ctx)
        try:
            filters = MappingFilter(
                status=MappingStatus(mapping_status) if mapping_status else None,
                source_org=source_org,
            )
            content = engine.transfer.export_mappings(fmt, filters)
        finally:
            engine.close()

        if output:
            Path(output).write_text(content, encoding='utf-8')
            console.print(f'[green]✓[/green] Team mappings exported to: {output}')
        else:
            click.echo(content, nl=False)

    except Exception as e:
        _fail(ctx, 'Export failed', e)


@cli.command(name='import')
@click.argument('file', type=click.Path(exists=True, dir_okay=False))
@click.option(
    '--repositories',
    is_flag=True,
    help='File maps source repositories to destination repositories',
)
@click.pass_context
def import_(ctx: click.Context, file: str, repositories: bool) -> None:
    """Import team mappings (or repository destinations) from CSV or JSON."""
    try:
        content = Path(file).read_text(encoding='utf-8-sig')
        fmt = detect_format(file)
        engine = _create_engine(ctx)
        try:
            if repositories:
                result = engine.transfer.import_repository_destinations(content, fmt)
            else:
                result = engine.transfer.import_mappings(content, fmt)
        finally:
            engine.close()

        console.print(
            f'[green]✓[/green] Imported: {result.created} created, '
            f'{result.updated} updated, {result.errors} errors'
        )
        _print_errors(result.messages, engine.config.migration.error_display_limit)

    except Exception as e:
        _fail(ctx, 'Import failed', e)


@cli.command()
@click.option('--host', help='Bind address (default from config)')
@click.option('--port', type=int, help='Bind port (default from config)')
@click.pass_context
def serve(ctx: click.Context, host: Optional[str], port: Optional[int]) -> None:
    """Serve the team migration HTTP API."""
    try:
        config = _load_config(ctx)
        _setup_logging_with_config(ctx, config)
        engine = _create_engine(ctx, config)
        host = host or config.server.host
        port = port or config.server.port
        console.print(f'[blue]Serving team migration API on http://{host}:{port}[/blue]')
        serve_app(engine, host, port, log_level=config.logging.level)

    except Exception as e:
        _fail(ctx, 'Server failed', e)


def _load_config(ctx: click.Context) -> Config:
    """Load configuration from file or environment."""
    config_path = (ctx.obj or {}).get('config_path')

    if config_path:
        if not Path(config_path).exists():
            raise FileNotFoundError(f'Configuration file not found: {config_path}')
        return Config.from_file(config_path)
    else:
        default_paths = ['config.yaml', 'config.yml', '.github-migrator.yaml']
        for path in default_paths:
            if Path(path).exists():
                return Config.from_file(path)

        # Fall back to environment variables
        try:
            return Config.from_env()
        except ValueError:
            raise FileNotFoundError(
                'No configuration found. Use --config to specify a file or run "github-migrator init" to create one.'
            )


def _setup_logging_with_config(ctx: click.Context, config: Config) -> None:
    """Setup logging with configuration from config file."""
    verbose = (ctx.obj or {}).get('verbose', False)

    # Verbose flag overrides the configured level
    log_level = 'DEBUG' if verbose else config.logging.level
    setup_logging(
        level=log_level, log_file=config.logging.file, log_format=config.logging.format
    )


def _create_engine(ctx: click.Context, config: Optional[Config] = None) -> MigrationEngine:
    """Build the engine from the loaded configuration."""
    if config is None:
        config = _load_config(ctx)
        _setup_logging_with_config(ctx, config)
    return MigrationEngine(config)


def _fail(ctx: click.Context, message: str, error: Exception) -> None:
    console.print(f'[red]✗[/red] {message}: {error}')
    if (ctx.obj or {}).get('verbose'):
        console.print_exception()
    sys.exit(1)


async def _run_migration(
    engine: MigrationEngine, scope: RunScope, dry_run: bool = False
) -> MigrationRun:
    """Run a migration and render its progress until it finishes."""
    handle = await engine.orchestrator.execute_migration(scope, dry_run=dry_run)
    operation = 'Dry run' if dry_run else 'Migration'

    with Progress(
        SpinnerColumn(),
        TextColumn('[progress.description]{task.description}'),
        BarColumn(),
        TaskProgressColumn(),
        console=console,
    ) as progress:
        snapshot = handle.progress()
        task = progress.add_task(
            f'[blue]{operation} starting...', total=max(snapshot.total_teams, 1)
        )

        while not handle.done:
            await asyncio.sleep(POLL_INTERVAL_SECONDS)
            snapshot = handle.progress()
            current = snapshot.current_team or ''
            progress.update(
                task,
                completed=snapshot.processed_teams,
                total=max(snapshot.total_teams, 1),
                description=f'[blue]{operation} in progress {current}',
            )

        summary = await handle.wait()
        colour = 'green' if summary.status == RunStatus.COMPLETED else 'yellow'
        progress.update(
            task,
            completed=max(summary.total_teams, 1),
            total=max(summary.total_teams, 1),
            description=f'[{colour}]{operation} {summary.status.value}',
        )

    return summary


def _display_migration_summary(summary: MigrationRun, error_limit: int = 5) -> None:
    """Display migration summary results."""
    table = Table(title='Migration Summary')
    table.add_column('Teams', style='cyan')
    table.add_column('Processed', style='blue')
    table.add_column('Created', style='green')
    table.add_column('Existing', style='yellow')
    table.add_column('Failed', style='red')
    table.add_column('Repositories synced', style='green')
    table.add_row(
        str(summary.total_teams),
        str(summary.processed_teams),
        str(summary.created_teams),
        str(summary.skipped_teams),
        str(summary.failed_teams),
        str(summary.total_repos_synced),
    )
    console.print(table)

    if summary.started_at and summary.completed_at:
        duration = summary.completed_at - summary.started_at
        console.print(f'\n[blue]Migration Duration:[/blue] {duration}')

    if summary.status == RunStatus.COMPLETED:
        console.print(f'[green]✓[/green] Run {summary.status.value}')
    else:
        console.print(f'[yellow]![/yellow] Run {summary.status.value}')

    _print_errors(summary.errors, error_limit)


def _print_errors(errors, limit: int = 5) -> None:
    if not errors:
        return
    console.print(f'\n[red]Errors ({len(errors)}):[/red]')
    for error in errors[:limit]:
        console.print(f'  • {error}')
    if len(errors) > limit:
        console.print(f'  ... and {len(errors) - limit} more errors')


def main() -> None:
    """Main entry point for the CLI application."""
    try:
        cli()
    except KeyboardInterrupt:
        console.print('\n[red]Migration interrupted by user[/red]')
        sys.exit(1)
    except Exception as e:
        console.print(f'[red]Error: {e}[/red]')
        sys.exit(1)


if __name__ == '__main__':
    main()
