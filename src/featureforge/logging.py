from __future__ import annotations

import sys
from collections.abc import Sequence
from typing import TYPE_CHECKING

import polars as pl
import rich.console as console_
import rich.table as table_
from loguru import logger

if TYPE_CHECKING:
    from featureforge.contracts import ModelContract
    from featureforge.lineage import LineageGraph
    from featureforge.resolver import Plan
    from featureforge.validation import ValidationReport
    from featureforge.views import FeatureView


console = console_.Console()


def setup_logging(verbose: bool = False) -> None:
    """
    Configure loguru logging for CLI.

    Sets up colored stderr output with configurable verbosity.
    Should be called once at CLI entry point.

    Args:
        verbose: Enable DEBUG level logging. Defaults to False (INFO level).
    """
    logger.remove()

    level = "DEBUG" if verbose else "INFO"

    logger.add(
        sys.stderr,
        format="<level>{level: <8}</level> | {message}",
        level=level,
        colorize=True,
    )


def print_views_table(views: list[FeatureView]) -> None:
    """
    Display feature views in a formatted table.

    Args:
        views: Feature views to list
    """
    table = table_.Table(title="Feature Views")
    table.add_column("Name", style="cyan")
    table.add_column("Entity", style="green")
    table.add_column("Fields")
    table.add_column("Timestamp", style="dim")
    table.add_column("Source", style="dim")
    table.add_column("Tags", style="magenta")

    for view in views:
        table.add_row(
            view.name,
            view.entity.name,
            ", ".join(f.name or "" for f in view.feature_fields),
            view.timestamp_column or "-",
            repr(view.batch_source) if view.batch_source else "-",
            ", ".join(view.tags) if view.tags else "-",
        )

    console.print(table)


def print_contracts_table(contracts: list[ModelContract]) -> None:
    """
    Display model contracts in a formatted table.

    Args:
        contracts: Model contracts to list
    """
    table = table_.Table(title="Model Contracts")
    table.add_column("Name", style="cyan")
    table.add_column("Inputs", style="green")
    table.add_column("Outputs")
    table.add_column("Prediction Source", style="dim")

    for contract in contracts:
        table.add_row(
            contract.name,
            ", ".join(r.qualified_name for r in contract.inputs),
            ", ".join(f"{o.field.name} ({o.kind})" for o in contract.outputs),
            repr(contract.prediction_source) if contract.prediction_source else "-",
        )

    console.print(table)


def print_plan(plan: Plan) -> None:
    """
    Display the steps of an evaluation plan.

    Args:
        plan: Resolved plan
    """
    table = table_.Table(title=f"Plan: {plan.target}")
    table.add_column("#", justify="right", style="dim")
    table.add_column("Kind", style="cyan")
    table.add_column("Node", style="green")
    table.add_column("Fields")
    table.add_column("Source", style="dim")
    table.add_column("Depends On", style="dim")

    for index, step in enumerate(plan.steps):
        table.add_row(
            str(index),
            step.kind,
            step.node,
            ", ".join(step.fields) or "-",
            step.source or "-",
            ", ".join(str(d) for d in step.depends_on) or "-",
        )

    console.print(table)


def print_lineage(
    graph: LineageGraph,
    qids: list[str],
    relations: Sequence[str] | None = None,
) -> None:
    """
    Display the fields read by each requested field.

    Args:
        graph: Lineage graph
        qids: Field ids to show, in display order
        relations: Edge relations to follow. Defaults to all.
    """
    table = table_.Table(title="Lineage")
    table.add_column("Field", style="cyan")
    table.add_column("Reads", style="green")

    for qid in qids:
        table.add_row(qid, ", ".join(graph.parents(qid, relations)) or "-")

    console.print(table)


def print_validation_report(report: ValidationReport) -> None:
    """
    Display validation violations in a formatted table.

    Args:
        report: Report to display
    """
    if report.passed:
        print_success(f"All {report.checked} field(s) passed validation")
        return

    table = table_.Table(title="Validation Violations")
    table.add_column("Field", style="cyan")
    table.add_column("Kind", style="yellow")
    table.add_column("Rows", justify="right")
    table.add_column("Details")

    for violation in report.violations:
        table.add_row(
            f"{violation.view}.{violation.field}",
            violation.kind,
            str(violation.count),
            violation.describe(),
        )

    console.print(table)


def print_success(message: str) -> None:
    """
    Print a success message with checkmark.

    Args:
        message: Success message to display
    """
    console.print(f"[green]✓[/green] {message}")


def print_error(message: str) -> None:
    """
    Print an error message with X mark.

    Args:
        message: Error message to display
    """
    console.print(f"[red]✗[/red] {message}")


def print_warning(message: str) -> None:
    """
    Print a warning message with warning symbol.

    Args:
        message: Warning message to display
    """
    console.print(f"[yellow]![/yellow] {message}")


def print_info(message: str) -> None:
    console.print(message)


def print_preview(title: str, df: pl.DataFrame, max_rows: int = 5) -> None:
    """
    Display the first rows of a result.

    Args:
        title: Table title
        df: Result to preview
        max_rows: Number of rows to display. Defaults to 5.
    """
    table = table_.Table(title=f"Preview: {title}", title_style="cyan")

    for col_name in df.columns:
        table.add_column(col_name, style="dim")

    for row in df.head(max_rows).iter_rows():
        table.add_row(*[str(v) for v in row])

    console.print(table)
    console.print(f"[dim]{len(df):,} rows total[/dim]\n")
