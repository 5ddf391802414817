"""
'backup' CLI command group.

Usage:
    flask --app pvebackup backup run
    flask --app pvebackup backup check
    flask --app pvebackup backup plan [--date YYYY-MM-DD]
    flask --app pvebackup backup schedule
"""

import signal
from datetime import date

import click
from flask import current_app
from flask.cli import AppGroup

from pvebackup.backup.commands import CommandRunner
from pvebackup.backup.errors import PreflightFailure, RunInterrupted
from pvebackup.backup.executor import run_backup
from pvebackup.backup.preflight import PreflightValidator
from pvebackup.backup.retention import RetentionManager
from pvebackup.backup.transfer import RcloneRemote, TransferError
from pvebackup.config import BackupSettings


backup_cli = AppGroup('backup', help='Encrypted offsite backups with GFS retention.')


def load_settings() -> BackupSettings:
    """Build the immutable run settings from the app config."""
    try:
        return BackupSettings.from_mapping(current_app.config)
    except ValueError as e:
        raise click.ClickException(f"Invalid configuration: {e}")


def _raise_interrupted(signum, frame):
    # Later signals must not abort the cleanup of the interrupted run
    signal.signal(signal.SIGTERM, signal.SIG_IGN)
    raise RunInterrupted(f"Script terminated by {signal.Signals(signum).name}")


def _make_remote(settings: BackupSettings, runner: CommandRunner) -> RcloneRemote:
    return RcloneRemote(
        runner,
        settings.rclone_remote,
        transfers=settings.rclone_transfers,
        stats_interval=settings.rclone_stats_interval,
        log_file=settings.log_file,
    )


@backup_cli.command('run')
@click.pass_context
def run_command(ctx):
    """Run the full backup pipeline once."""
    settings = load_settings()

    previous_handler = signal.signal(signal.SIGTERM, _raise_interrupted)
    try:
        report = run_backup(settings, runner=CommandRunner())
    finally:
        signal.signal(signal.SIGTERM, previous_handler)

    ctx.exit(report.exit_code)


@backup_cli.command('check')
@click.pass_context
def check_command(ctx):
    """Run preflight checks only."""
    settings = load_settings()
    runner = CommandRunner()

    validator = PreflightValidator(settings, runner, _make_remote(settings, runner))
    try:
        report = validator.validate()
    except PreflightFailure as e:
        click.echo(f"Preflight failed: {e}", err=True)
        ctx.exit(1)

    click.echo("Preflight OK")
    if not report.notifications_enabled:
        click.echo("Warning: sendmail not found, error notifications disabled")


@backup_cli.command('plan')
@click.option('--date', 'as_of', type=click.DateTime(formats=['%Y-%m-%d']),
              default=None, help='Evaluate retention as of this date (default: today).')
@click.pass_context
def plan_command(ctx, as_of):
    """Show which remote snapshot sets retention would keep or delete."""
    settings = load_settings()
    runner = CommandRunner()
    today = as_of.date() if as_of else date.today()

    manager = RetentionManager(_make_remote(settings, runner), settings.retention)
    try:
        plan = manager.plan(today)
    except TransferError as e:
        click.echo(f"Failed to list remote: {e}", err=True)
        ctx.exit(1)

    for decision in plan.decisions:
        if decision.keep:
            click.echo(f"KEEP    {decision.snapshot.name}  [{decision.reason}]")
        else:
            click.echo(f"DELETE  {decision.snapshot.name}")
    click.echo(f"{len(plan.kept)} kept, {len(plan.deleted)} to delete")


@backup_cli.command('schedule')
@click.pass_context
def schedule_command(ctx):
    """Run the pipeline on SCHEDULE_CRON until SIGTERM or Ctrl-C."""
    from pvebackup.scheduler import create_scheduler, run_scheduler

    settings = load_settings()
    cron = current_app.config['SCHEDULE_CRON']
    try:
        scheduler = create_scheduler(
            settings,
            cron=cron,
            timezone=current_app.config['SCHEDULER_TIMEZONE'],
            runner=CommandRunner(),
        )
    except ValueError as e:
        raise click.ClickException(f"Invalid SCHEDULE_CRON '{cron}': {e}")

    click.echo(f"Scheduling offsite backup: '{cron}'")
    ctx.exit(run_scheduler(scheduler))
