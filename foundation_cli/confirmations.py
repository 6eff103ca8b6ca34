# Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
# SPDX-License-Identifier: MIT-0

"""
Operator confirmations.

Executors receive a confirmation provider instead of reading the console
themselves, so the state machine can run without a terminal.
"""

from abc import ABC, abstractmethod
from typing import Optional, Sequence

import click
from rich.console import Console
from rich.table import Table

from .models import OrphanCandidate, OrphanChoice

DESTROY_PHRASE = "DESTROY"
DELETE_BUCKETS_PHRASE = "DELETE BUCKETS"


class ConfirmationProvider(ABC):
    """Interface for operator decisions"""

    @abstractmethod
    def choose_orphan_action(self, candidates: Sequence[OrphanCandidate]) -> OrphanChoice:
        pass

    @abstractmethod
    def confirm_destroy(self, stack_name: str) -> bool:
        pass

    @abstractmethod
    def confirm_bucket_deletion(self, buckets: Sequence[str]) -> bool:
        pass


class ConsoleConfirmationProvider(ConfirmationProvider):
    """Prompts on the terminal; destructive steps require typed phrases"""

    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console()

    def choose_orphan_action(self, candidates: Sequence[OrphanCandidate]) -> OrphanChoice:
        table = Table(title="Orphaned Resources", show_header=True, header_style="bold yellow")
        table.add_column("Resource", style="cyan")
        table.add_column("Kind")
        table.add_column("Match")
        table.add_column("Importable")
        for candidate in candidates:
            table.add_row(
                candidate.physical_id,
                candidate.kind.value,
                candidate.confidence.value,
                "yes" if candidate.importable else "no",
            )
        self.console.print(table)

        choice = click.prompt(
            "Import these resources into the stack or discard them",
            type=click.Choice(["import", "discard"], case_sensitive=False),
        )
        return OrphanChoice(choice.upper())

    def confirm_destroy(self, stack_name: str) -> bool:
        self.console.print(
            f"[bold red]This will delete stack '{stack_name}' and its foundation resources.[/bold red]"
        )
        answer = click.prompt(f"Type {DESTROY_PHRASE} to continue", default="", show_default=False)
        return answer.strip() == DESTROY_PHRASE

    def confirm_bucket_deletion(self, buckets: Sequence[str]) -> bool:
        self.console.print("[bold red]Bucket contents, including all versions, will be lost:[/bold red]")
        for bucket in buckets:
            self.console.print(f"  • {bucket}")
        answer = click.prompt(
            f"Type {DELETE_BUCKETS_PHRASE} to delete them, anything else to retain",
            default="",
            show_default=False,
        )
        return answer.strip() == DELETE_BUCKETS_PHRASE
