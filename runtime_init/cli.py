"""
CLI interface for runtime-init.

Provides commands: run, validate, status.
"""

import asyncio
import sys
from pathlib import Path

import click

from runtime_init import __version__
from runtime_init.cloud.registry import CloudClientRegistry
from runtime_init.config import RuntimeSettings, load_config
from runtime_init.errors import RuntimeInitError
from runtime_init.pipeline import Onboarder, load_status
from runtime_init.utils import (
    format_duration,
    print_error,
    print_info,
    print_success,
    setup_logging,
)

CONFIG_FILE = click.Path(exists=True, dir_okay=False, path_type=Path)


@click.group()
@click.version_option(version=__version__, prog_name="runtime-init")
def main():
    """
    runtime-init - day-0 onboarding for BIG-IP appliances.

    Resolves runtime parameters, waits for the device, runs command phases,
    installs extensions and applies their declarations.
    """
    pass


@main.command()
@click.option(
    "--config-file",
    "-c",
    required=True,
    type=CONFIG_FILE,
    help="Onboarding document (YAML or JSON)",
)
@click.option(
    "--env-file",
    type=CONFIG_FILE,
    help="Dotenv file with RUNTIME_INIT_* settings",
)
@click.option(
    "--dry-run",
    is_flag=True,
    help="Validate configuration without executing",
)
@click.option(
    "--verbose",
    is_flag=True,
    help="Enable debug logging",
)
def run(config_file, env_file, dry_run, verbose):
    """
    Run the onboarding pipeline.

    Examples:

      # Onboard with a document
      runtime-init run --config-file /config/cloud/runtime-init.yaml

      # Dry run (validation only)
      runtime-init run -c runtime-init.yaml --dry-run
    """
    try:
        settings = RuntimeSettings.from_env(env_file=env_file)
        config = load_config(config_file)

        log_level = "DEBUG" if verbose else settings.effective_log_level(config.controls)
        logger = setup_logging(
            settings.effective_log_file(config.controls),
            log_level,
            settings.log_format,
        )

        onboarder = Onboarder(
            config,
            settings,
            cloud_clients=CloudClientRegistry.discover(),
            logger=logger,
        )
        result = asyncio.run(onboarder.run(dry_run=dry_run))

    except RuntimeInitError as e:
        print_error(f"Onboarding failed: {e}")
        sys.exit(1)

    if not result.success:
        print_error(f"Onboarding failed: {result.error_message}")
        sys.exit(1)


@main.command()
@click.option(
    "--config-file",
    "-c",
    required=True,
    type=CONFIG_FILE,
    help="Onboarding document (YAML or JSON)",
)
def validate(config_file):
    """
    Validate an onboarding document without contacting any service.

    Examples:

      runtime-init validate --config-file runtime-init.yaml
    """
    try:
        config = load_config(config_file)
    except RuntimeInitError as e:
        print_error(f"Validation failed: {e}")
        sys.exit(1)

    for section, count in config.summary().items():
        print_info(f"  {section}: {count}")
    print_success("Configuration is valid")


@main.command()
@click.option(
    "--env-file",
    type=CONFIG_FILE,
    help="Dotenv file with RUNTIME_INIT_* settings",
)
def status(env_file):
    """
    Show the result of the last onboarding run.
    """
    try:
        settings = RuntimeSettings.from_env(env_file=env_file)
        last_run = load_status(settings)
    except (RuntimeInitError, OSError, ValueError, KeyError) as e:
        print_error(f"Could not retrieve status: {e}")
        sys.exit(1)

    if last_run is None:
        print_info("No previous onboarding runs found")
        return

    status_text = "SUCCESS" if last_run.success else "FAILED"
    click.echo(f"Last Run: {last_run.started_at.strftime('%Y-%m-%d %H:%M:%S')}")
    click.echo(f"Status: {status_text}")
    click.echo(f"Duration: {format_duration(last_run.duration_seconds)}")
    if last_run.dry_run:
        click.echo("Mode: dry run")
    if last_run.error_message:
        click.echo(f"Error: {last_run.error_message}")

    if last_run.stages:
        click.echo("Stages:")
        for stage_name, stage_result in last_run.stages.items():
            marker = "ok" if stage_result.success else "FAILED"
            duration = format_duration(stage_result.duration_seconds)
            click.echo(f"  {stage_name:<22} {duration:>8}  {marker}")

    if not last_run.success:
        sys.exit(1)


if __name__ == "__main__":
    main()
