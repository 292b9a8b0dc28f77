#!/usr/bin/env python3
"""
Intune Onboarding CLI - moves a Mac from Active Directory and Jamf to Intune.
"""

import json
import logging
import sys

import click

logger = logging.getLogger(__name__)


@click.group(help="Intune Onboarding CLI (AD unbind, Jamf offboarding, Company Portal hand-off)")
def cli():
    """Intune onboarding automation commands."""
    pass


@cli.command("run")
@click.option("--dry-run/--no-dry-run", default=False, help="Log mutating commands instead of running them (default: False)")
@click.option("--log-level", default=None, help="Override the configured log level (DEBUG, INFO, WARNING, ...)")
@click.option("--log-to-file/--no-log-to-file", default=True, help="Write the audit log file (default: True)")
def run(dry_run, log_level, log_to_file):
    """Run the offboarding workflow on this Mac."""
    from intune_onboarding import __version__
    from intune_onboarding.config import Config
    from intune_onboarding.logger import setup_logging, write_run_header
    from intune_onboarding.services.system import MacSystem
    from intune_onboarding.utils.shell import CommandRunner
    from intune_onboarding.workflows.offboarding import OffboardingOrchestrator

    if dry_run:
        click.echo("DRY RUN: mutating commands and API calls will only be logged")

    try:
        config = Config()
        setup_logging(log_level=log_level or config.log_level, log_to_file=log_to_file, log_dir=config.log_dir)
        write_run_header(__version__, MacSystem(CommandRunner()).os_version(), config.log_dir if log_to_file else None)

        orchestrator = OffboardingOrchestrator.from_config(config, dry_run=dry_run)
        exit_code = orchestrator.run()
    except Exception as e:
        logger.exception(f"Fatal error during offboarding: {e}")
        click.echo(f"ERROR: Fatal error during offboarding: {e}")
        sys.exit(1)

    for outcome in orchestrator.outcomes:
        click.echo(f"  {outcome}")
    if exit_code == 0:
        click.echo("SUCCESS: Offboarding completed")
    else:
        click.echo(f"ERROR: Offboarding failed with code {exit_code}")
    sys.exit(exit_code)


@cli.command("status")
def status():
    """Show directory, encryption and management state of this Mac."""
    from intune_onboarding.config import Config
    from intune_onboarding.services import (
        DirectoryIdentityAdapter,
        EncryptionController,
        MacSystem,
        ManagementAgent,
        Notifier,
    )
    from intune_onboarding.utils.shell import CommandRunner

    config = Config()
    runner = CommandRunner(dry_run=True)
    system = MacSystem(runner)
    notifier = Notifier(config.display_name, config.company_name, runner)

    report = {}
    for service in (system, DirectoryIdentityAdapter(runner), EncryptionController(notifier, system, runner),
                    ManagementAgent(runner)):
        report.update(service.status())
    report["company_portal_installed"] = system.app_installed(config.company_portal_name)

    click.echo(json.dumps(report, indent=2))


@cli.command("validate-config")
@click.option("--verbose", is_flag=True, help="Log the full configuration status")
def validate_config(verbose):
    """Validate settings.yaml and secret availability."""
    from intune_onboarding.config import Config
    from intune_onboarding.logger import setup_logging

    setup_logging(log_level="INFO", log_to_file=False)
    config = Config()
    ok = config.validate_configuration(verbose=verbose)

    click.echo(json.dumps(config.get_configuration_summary(), indent=2))
    if ok:
        click.echo("Configuration is valid")
        sys.exit(0)
    click.echo("ERROR: Configuration is invalid")
    sys.exit(1)


def main():
    cli()


if __name__ == "__main__":
    main()
