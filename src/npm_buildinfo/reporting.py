"""
Console output for install/ci runs.

Lists dependencies that could not be found in Artifactory and prints the
run summary using the Rich library.
"""

from typing import Optional, Sequence

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .checksum_enricher import EnrichmentStats
from .manifest import BuildDependency, ResolvedManifest


class BuildInfoReporter:
    """Formats and displays the outcome of a build-info collection."""

    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console(stderr=True)

    def print_missing_dependencies(self, missing: Sequence[BuildDependency]) -> None:
        """
        Warn about dependencies that will not be recorded in build-info.

        Args:
            missing: Dependencies without a checksum
        """
        if not missing:
            return

        table = Table(
            title="⚠️  Dependencies missing from Artifactory",
            box=box.ROUNDED,
            title_style="bold yellow",
        )
        table.add_column("Dependency", style="bold")
        table.add_column("Scopes")
        table.add_column("Requested by", style="dim")

        for dep in missing:
            requested_by = " → ".join(dep.requested_by[0][1:]) if dep.requested_by else ""
            table.add_row(dep.id, ", ".join(dep.scopes), requested_by)

        self.console.print(table)
        self.console.print(
            "The npm dependencies above could not be found in Artifactory and "
            "therefore are not included in the build-info. Deleting the local "
            "cache will force populating Artifactory with these dependencies.",
            style="yellow",
        )

    def print_summary(
        self,
        command: str,
        manifest: Optional[ResolvedManifest] = None,
        stats: Optional[EnrichmentStats] = None,
    ) -> None:
        """Print the closing summary of an install/ci run."""
        if manifest is None:
            self.console.print(f"✅ npm {command} finished successfully.", style="green")
            return

        table = Table(title="📊 Build-info Summary", box=box.ROUNDED, title_style="bold cyan")
        table.add_column("Dependencies", style="bold")
        table.add_column("Count", justify="center")
        table.add_row("Recorded", f"[green]{len(manifest.resolved)}[/green]")
        if manifest.missing:
            table.add_row("Missing", f"[bold yellow]{len(manifest.missing)}[/bold yellow]")
        if stats is not None:
            table.add_row("From previous build", str(stats.from_previous_build))
            table.add_row("From Artifactory", str(stats.from_registry))

        self.console.print(table)
        self.console.print(
            Panel(
                f"npm {command} finished successfully.",
                border_style="green",
            )
        )

    def print_error(self, message: str) -> None:
        self.console.print(f"❌ {message}", style="bold red")
