# Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
# SPDX-License-Identifier: MIT-0

"""
Display Module

Rich UI components for stack status, run results and errors.
"""

from typing import Dict, Sequence

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .exceptions import FoundationError, StackOperationError
from .models import DeploymentResult, DestructionResult, ReclaimResult, StackState
from .prerequisites import PrerequisiteReport

console = Console()
err_console = Console(stderr=True)

STATE_STYLES = {
    StackState.HEALTHY: "green",
    StackState.ABSENT: "dim",
    StackState.BUSY: "yellow",
    StackState.FAILED_INITIAL: "red",
    StackState.FAILED_UPDATE: "red",
    StackState.STUCK: "bold red",
    StackState.DEGRADED: "red",
}


def create_failures_table(failures: Sequence) -> Table:
    """
    Create table of failed resources

    Args:
        failures: ResourceFailure models

    Returns:
        Rich Table object
    """
    table = Table(title="Failed Resources", show_header=True, header_style="bold red")
    table.add_column("Resource", style="cyan")
    table.add_column("Type")
    table.add_column("Status", style="red")
    table.add_column("Reason", max_width=80)

    for failure in failures:
        table.add_row(failure.logical_id, failure.resource_type, failure.status, failure.reason)

    return table


def create_reclaim_table(results: Sequence[ReclaimResult]) -> Table:
    table = Table(title="Reclaimed Buckets", show_header=True, header_style="bold blue")
    table.add_column("Bucket", style="cyan")
    table.add_column("Versions", justify="right")
    table.add_column("Delete Markers", justify="right")
    table.add_column("Deleted")
    table.add_column("Errors", justify="right")

    for result in results:
        if not result.existed:
            table.add_row(result.bucket, "-", "-", "absent", "0", style="dim")
            continue
        table.add_row(
            result.bucket,
            str(result.versions_deleted),
            str(result.markers_deleted),
            "[green]yes[/green]" if result.bucket_deleted else "[red]no[/red]",
            str(len(result.errors)),
        )
    return table


def show_error(error: FoundationError):
    """Print a categorized error with its diagnostic hint to stderr"""
    err_console.print(f"[red]✗ {error.category}: {error.message}[/red]")
    if isinstance(error, StackOperationError):
        if error.detail_available:
            err_console.print(create_failures_table(error.failures))
        else:
            err_console.print("[yellow]Failure detail unavailable[/yellow]")
    last_status = getattr(error, "last_status", None)
    if last_status:
        err_console.print(f"Last stack status: {last_status}")
    if error.hint:
        err_console.print(f"[dim]Hint: {error.hint}[/dim]")


def show_deployment_result(result: DeploymentResult):
    if result.no_changes:
        console.print(f"\n[green]✓ Stack {result.stack_name} is up to date (no changes)[/green]\n")
    else:
        console.print(
            f"\n[green]✓ Stack {result.transition.value} completed successfully! "
            f"({result.status})[/green]\n"
        )

    if result.imported:
        console.print(f"Imported: {', '.join(result.imported)}")
    if result.skipped_orphans:
        console.print(
            f"[yellow]Not imported (tag match only): {', '.join(result.skipped_orphans)}[/yellow]"
        )
    if result.reclaimed:
        console.print(create_reclaim_table(result.reclaimed))

    if result.outputs:
        table = Table(title="Stack Outputs", show_header=True, header_style="bold blue")
        table.add_column("Output", style="cyan")
        table.add_column("Value")
        for key, value in sorted(result.outputs.items()):
            table.add_row(key, value)
        console.print(table)

    if result.published:
        console.print("[bold]Published parameters:[/bold]")
        for name in result.published:
            console.print(f"  {name}")
    console.print()


def show_destruction_result(result: DestructionResult):
    if result.noop:
        console.print(f"[green]✓ Nothing to destroy for {result.stack_name}[/green]")
        return
    if result.declined:
        console.print("[yellow]Destroy cancelled, nothing was changed[/yellow]")
        return

    if result.stack_deleted:
        console.print(f"\n[green]✓ Stack {result.stack_name} deleted[/green]\n")
    if result.reclaimed:
        console.print(create_reclaim_table(result.reclaimed))
    if result.retained_buckets:
        console.print("[yellow]Retained buckets (delete them later with destroy):[/yellow]")
        for bucket in result.retained_buckets:
            console.print(f"  • {bucket}")
    if result.unpublished:
        console.print(f"Removed parameters: {', '.join(result.unpublished)}")
    console.print()


def show_prerequisite_report(report: PrerequisiteReport):
    if report.ready:
        console.print("[green]✓ All prerequisites met[/green]")
        return
    table = Table(title="Unmet Prerequisites", show_header=True, header_style="bold red")
    table.add_column("Check", style="cyan")
    table.add_column("Detail")
    for failure in report.failures:
        table.add_row(failure.reason.value, failure.detail)
    console.print(table)


def show_status(inventory: Dict):
    """
    Display the status command output

    Args:
        inventory: Dictionary from StackInventory.collect()
    """
    snapshot = inventory["snapshot"]
    style = STATE_STYLES.get(snapshot.state, "white")
    record = snapshot.record

    content = f"""[bold]Stack:[/bold] {snapshot.stack_name}
[bold]State:[/bold] [{style}]{snapshot.state.value}[/{style}]
[bold]Status:[/bold] {record.status if record else "does not exist"}
[bold]Termination protection:[/bold] {record.termination_protection if record else "N/A"}"""
    console.print(Panel(content, title="Foundation Stack", border_style="blue"))

    if record and record.outputs:
        table = Table(title="Outputs", show_header=True, header_style="bold blue")
        table.add_column("Output", style="cyan")
        table.add_column("Value")
        for key, value in sorted(record.outputs.items()):
            table.add_row(key, value)
        console.print(table)

    if snapshot.resources:
        table = Table(title="Resources", show_header=True, header_style="bold blue")
        table.add_column("Logical ID", style="cyan")
        table.add_column("Type")
        table.add_column("Physical ID")
        table.add_column("Status")
        for resource in snapshot.resources:
            table.add_row(
                resource.logical_id, resource.resource_type, resource.physical_id, resource.status
            )
        console.print(table)

    buckets = inventory.get("buckets", [])
    if buckets:
        table = Table(title="Buckets", show_header=True, header_style="bold blue")
        table.add_column("Resource", style="cyan")
        table.add_column("Bucket")
        table.add_column("Versioning")
        for bucket in buckets:
            table.add_row(bucket["logical_id"], bucket["bucket_name"], bucket["versioning"])
        console.print(table)

    tables = inventory.get("tables", [])
    if tables:
        table = Table(title="Lock Tables", show_header=True, header_style="bold blue")
        table.add_column("Table", style="cyan")
        table.add_column("Status")
        table.add_column("Deletion Protection")
        for info in tables:
            table.add_row(info["table_name"], info["status"], str(info["deletion_protection"]))
        console.print(table)

    parameters = inventory.get("parameters", {})
    if parameters:
        table = Table(title="Published Parameters", show_header=True, header_style="bold blue")
        table.add_column("Name", style="cyan")
        table.add_column("Value")
        for name, value in parameters.items():
            table.add_row(name, value or "[dim]not set[/dim]")
        console.print(table)

    if snapshot.orphans:
        console.print("[yellow]Orphaned resources:[/yellow]")
        for orphan in snapshot.orphans:
            console.print(f"  • {orphan.physical_id} ({orphan.confidence.value})")
    console.print()
