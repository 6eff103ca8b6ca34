# Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
# SPDX-License-Identifier: MIT-0

"""
Foundation CLI - Main Command Line Interface

Provisions and tears down the per-repository Terraform foundation stack.
"""

import logging
import sys

import click
from botocore.exceptions import BotoCoreError, ClientError

from . import display
from .aws import CLIENT_CONFIG, create_session
from .bucket_reclaimer import BucketReclaimer
from .config import (
    FoundationSettings,
    build_parameters,
    caller_account,
    load_settings,
    resolve_region,
)
from .confirmations import ConsoleConfirmationProvider
from .deployer import StackDeployer
from .destroyer import StackDestroyer
from .exceptions import FoundationError, OperationInterruptedError, PartialFailureError
from .inventory import StackInventory
from .prerequisites import PrerequisiteValidator, require_ready
from .repository import get_remote_url, project_name
from .stack_monitor import StackMonitor
from .template import FoundationTemplate

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
EXIT_FAILURE = 1
EXIT_INTERRUPTED = 130


def configure_logging(settings: FoundationSettings, verbose: bool):
    level = logging.INFO if verbose else logging.WARNING
    if settings.log_level and not verbose:
        level = getattr(logging, settings.log_level.upper(), logging.WARNING)
    logging.basicConfig(level=level, format=LOG_FORMAT)


def _session_and_region(settings: FoundationSettings):
    session = create_session(settings.region, settings.profile)
    return session, resolve_region(settings, session)


def _ensure_prerequisites(settings: FoundationSettings, session, region: str):
    report = PrerequisiteValidator(session, region, settings.template_file).run()
    if not report.ready:
        display.show_prerequisite_report(report)
    require_ready(report)


def _monitor(settings: FoundationSettings, session, region: str) -> StackMonitor:
    cfn = session.client("cloudformation", region_name=region, config=CLIENT_CONFIG)
    return StackMonitor(
        cfn,
        poll_interval=settings.poll_interval,
        timeout=settings.wait_timeout,
        console=display.console,
    )


def _fail(error: FoundationError):
    display.show_error(error)
    if isinstance(error, OperationInterruptedError):
        sys.exit(EXIT_INTERRUPTED)
    sys.exit(EXIT_FAILURE)


def _aws_failure(error: Exception) -> PartialFailureError:
    """Categorize an AWS error no component translated"""
    return PartialFailureError(f"AWS call failed: {error}")


@click.group()
@click.version_option(version="1.0.0")
@click.option("--region", help="AWS region (default: AWS_REGION or profile region)")
@click.option("--profile", help="AWS profile name")
@click.option("--template-file", help="Foundation template (default: bootstrap.yaml)")
@click.option("--verbose", "-v", is_flag=True, help="Enable info logging")
@click.pass_context
def cli(ctx, region, profile, template_file, verbose):
    """
    Foundation CLI - Terraform state foundation for a repository

    This tool provides commands for:
    - Deploying the state bucket, lock table, OIDC provider and deployment role
    - Destroying them with explicit confirmation
    - Showing stack status and prerequisite checks
    """
    settings = load_settings(region=region, profile=profile, template_file=template_file)
    configure_logging(settings, verbose)
    ctx.obj = settings


@cli.command()
@click.pass_obj
def deploy(settings: FoundationSettings):
    """Create or converge the foundation stack"""
    try:
        session, region = _session_and_region(settings)
        _ensure_prerequisites(settings, session, region)

        template = FoundationTemplate.load(settings.template_file)
        parameters = build_parameters(settings, session, get_remote_url())

        deployer = StackDeployer(
            session,
            region,
            template,
            monitor=_monitor(settings, session, region),
            reclaimer=BucketReclaimer(session, region, max_workers=settings.reclaim_workers),
        )
        result = deployer.deploy(parameters, ConsoleConfirmationProvider(display.console))
        display.show_deployment_result(result)

    except FoundationError as e:
        logger.error(f"Deploy failed: {e}")
        _fail(e)
    except (ClientError, BotoCoreError) as e:
        logger.error(f"Deploy failed: {e}", exc_info=True)
        _fail(_aws_failure(e))
    except KeyboardInterrupt:
        display.err_console.print("[yellow]Interrupted[/yellow]")
        sys.exit(EXIT_INTERRUPTED)


@cli.command()
@click.pass_obj
def destroy(settings: FoundationSettings):
    """Delete the foundation stack, optionally with its state buckets"""
    try:
        session, region = _session_and_region(settings)
        _ensure_prerequisites(settings, session, region)

        project = project_name(get_remote_url())
        destroyer = StackDestroyer(
            session,
            region,
            monitor=_monitor(settings, session, region),
            reclaimer=BucketReclaimer(session, region, max_workers=settings.reclaim_workers),
        )
        result = destroyer.destroy(
            project,
            caller_account(session, region),
            project,
            ConsoleConfirmationProvider(display.console),
        )
        display.show_destruction_result(result)

    except FoundationError as e:
        logger.error(f"Destroy failed: {e}")
        _fail(e)
    except (ClientError, BotoCoreError) as e:
        logger.error(f"Destroy failed: {e}", exc_info=True)
        _fail(_aws_failure(e))
    except KeyboardInterrupt:
        display.err_console.print("[yellow]Interrupted[/yellow]")
        sys.exit(EXIT_INTERRUPTED)


@cli.command()
@click.pass_obj
def status(settings: FoundationSettings):
    """Show the foundation stack, its resources and published parameters"""
    try:
        session, region = _session_and_region(settings)
        project = project_name(get_remote_url())
        inventory = StackInventory(session, region).collect(
            project, caller_account(session, region), project
        )
        display.show_status(inventory)
    except FoundationError as e:
        _fail(e)
    except (ClientError, BotoCoreError) as e:
        logger.error(f"Status failed: {e}", exc_info=True)
        _fail(_aws_failure(e))


@cli.command()
@click.pass_obj
def check(settings: FoundationSettings):
    """Run prerequisite checks only"""
    session, region = _session_and_region(settings)
    report = PrerequisiteValidator(session, region, settings.template_file).run()
    display.show_prerequisite_report(report)
    if not report.ready:
        sys.exit(EXIT_FAILURE)


def main():
    """Main entry point for the CLI"""
    cli()


if __name__ == "__main__":
    main()
