from pathlib import Path
from typing import Annotated

import cyclopts
import polars as pl
from loguru import logger

import featureforge.lineage as lineage_
import featureforge.profiles as profiles
import featureforge.validation as validation
from featureforge.discovery import find_definitions_file
from featureforge.engine import PointInTimeJoinEngine
from featureforge.errors import FeatureStoreError
from featureforge.loader import load_definitions
from featureforge.logging import (
    print_contracts_table,
    print_error,
    print_lineage,
    print_plan,
    print_preview,
    print_success,
    print_validation_report,
    print_views_table,
    print_warning,
    setup_logging,
)
from featureforge.registry import SchemaRegistry
from featureforge.resolver import DependencyResolver
from featureforge.synthetic import n_examples

app = cyclopts.App(name="featureforge", help="A typed feature store")

TargetOption = Annotated[
    str | None,
    cyclopts.Parameter(
        name="--target",
        help="Path to definitions.py or a schema document. Automatically handled.",
    ),
]


@app.meta.default
def launcher(
    *tokens: str,
    verbose: Annotated[
        bool, cyclopts.Parameter(name=["--verbose", "-v"], help="Debug logging")
    ] = False,
) -> None:
    """
    CLI entry point that configures logging and dispatches commands.

    Args:
        *tokens: Command tokens to execute
        verbose: Enable debug logging. Defaults to False.
    """
    setup_logging(verbose=verbose)
    app(tokens)


def _load(target: str | None) -> SchemaRegistry:
    if target is None:
        discovered = find_definitions_file()
        if discovered is None:
            print_error("Could not find definitions.py or schema.yaml. Specify --target explicitly.")
            raise SystemExit(1)
        target = str(discovered)
        logger.debug(f"Auto-discovered definitions file: {target}")

    try:
        return load_definitions(target)
    except (FeatureStoreError, FileNotFoundError, ValueError) as e:
        print_error(str(e))
        raise SystemExit(1)


def _split(value: str | None) -> list[str] | None:
    return [v.strip() for v in value.split(",") if v.strip()] if value else None


@app.command
def list_(
    target: TargetOption = None,
    tags: Annotated[
        str | None, cyclopts.Parameter(help="Comma-separated list of view tags.")
    ] = None,
):
    """
    Display registered feature views and model contracts.

    Args:
        target: Path to definitions file. Defaults to auto-discovery.
        tags: Only show views with one of these tags. Defaults to None.
    """
    registry = _load(target)
    tag_names = _split(tags)

    if tag_names:
        unknown = set(tag_names) - set(registry.list_tags())
        if unknown:
            print_error(f"Unknown tags: {', '.join(sorted(unknown))}")
            raise SystemExit(1)

    print_views_table(registry.list_views(tags=tag_names))
    if not tag_names:
        print_contracts_table(registry.list_contracts())


@app.command
def plan(
    name: str,
    target: TargetOption = None,
    fields: Annotated[
        str | None,
        cyclopts.Parameter(name="--fields", help="Comma-separated field names or view:field ids"),
    ] = None,
):
    """
    Show the evaluation plan for a view or contract.

    Args:
        name: View or contract to plan
        target: Path to definitions file. Defaults to auto-discovery.
        fields: Fields to request. Defaults to all features.
    """
    registry = _load(target)

    try:
        resolved = DependencyResolver(registry).plan(name, _split(fields))
    except FeatureStoreError as e:
        print_error(str(e))
        raise SystemExit(1)

    print_plan(resolved)


@app.command
def lineage(
    name: str,
    target: TargetOption = None,
    all_relations: Annotated[
        bool,
        cyclopts.Parameter(
            name="--all", help="Include prediction and label edges of model contracts"
        ),
    ] = False,
):
    """
    Show every field a view or contract depends on.

    Args:
        name: View, contract, or view:field id
        target: Path to definitions file. Defaults to auto-discovery.
        all_relations: Follow contract edges as well as derivations. Defaults to False.
    """
    registry = _load(target)
    graph = registry.lineage()
    relations = None if all_relations else (lineage_.DERIVES,)

    try:
        if ":" in name:
            roots = [registry.field(name).qualified_name]
        else:
            node = registry.resolve(name)
            roots = [f.qualified_name for f in node.fields.values()]
    except FeatureStoreError as e:
        print_error(str(e))
        raise SystemExit(1)

    print_lineage(graph, graph.ancestors(roots, relations=relations), relations=relations)


@app.command
def validate(target: TargetOption = None):
    """
    Load definitions and check the whole schema graph.

    Reports duplicate names, unknown references, type errors and cycles.

    Args:
        target: Path to definitions file. Defaults to auto-discovery.
    """
    registry = _load(target)

    views = registry.list_views()
    contracts = registry.list_contracts()
    for view in views:
        if all(s is None for s in view.sources().values()):
            print_warning(f"View '{view.name}' has no source and can only be read through an override")

    print_success(
        f"Schema '{registry.name}' is valid: {len(views)} view(s), {len(contracts)} contract(s)"
    )


@app.command
def profile(
    name: Annotated[
        str | None,
        cyclopts.Parameter(name="--profile", help="Profile to show. Defaults to the active one."),
    ] = None,
    config: Annotated[
        Path | None,
        cyclopts.Parameter(name="--config", help="Path to featureforge.yaml"),
    ] = None,
):
    """
    Show the active or named profile from featureforge.yaml.

    Args:
        name: Profile name. Defaults to FEATUREFORGE_PROFILE or the default profile.
        config: Path to the config file. Defaults to ./featureforge.yaml.
    """
    info = profiles.get_profile_info(config)
    if info is None:
        print_error(f"No {profiles.CONFIG_FILENAME} found.")
        raise SystemExit(1)

    active, source, _ = info
    try:
        selected = profiles.load_profile(name or active, config)
    except FeatureStoreError as e:
        print_error(str(e))
        raise SystemExit(1)

    profiles.print_profile(name or active, selected)
    if name is None:
        logger.debug(f"Profile selected from {source}")


@app.command
def sample(
    name: str,
    target: TargetOption = None,
    count: Annotated[int, cyclopts.Parameter(help="Number of rows")] = 5,
    seed: Annotated[int | None, cyclopts.Parameter(help="Random seed")] = None,
):
    """
    Preview synthetic rows generated from a view's or contract's schema.

    Args:
        name: View or contract
        target: Path to definitions file. Defaults to auto-discovery.
        count: Number of rows. Defaults to 5.
        seed: Random seed. Defaults to None.
    """
    registry = _load(target)

    try:
        node = registry.resolve(name)
    except FeatureStoreError as e:
        print_error(str(e))
        raise SystemExit(1)

    print_preview(name, n_examples(node, count=count, seed=seed), max_rows=count)


@app.command
def check(
    name: str,
    data: Path,
    target: TargetOption = None,
):
    """
    Validate a Parquet or CSV file against a view's declared fields.

    Args:
        name: View or contract the rows belong to
        data: Parquet or CSV file
        target: Path to definitions file. Defaults to auto-discovery.
    """
    registry = _load(target)

    try:
        node = registry.resolve(name)
        rows = _read_rows(data)
        names = [
            *([node.timestamp_column] if node.timestamp_column else []),
            *(f.name or "" for f in node.raw_fields),
        ]
        conformed = PointInTimeJoinEngine(registry).conform(node, rows, names, allow_missing=True)
    except (FeatureStoreError, FileNotFoundError, ValueError) as e:
        print_error(str(e))
        raise SystemExit(1)

    report = validation.validate_frame(
        conformed,
        [(f, f.name or "") for f in node.raw_fields],
        id_column=node.entity.key,
    )
    print_validation_report(report)
    if not report.passed:
        raise SystemExit(1)


def _read_rows(path: Path) -> pl.DataFrame:
    if not path.exists():
        raise FileNotFoundError(f"File not found: {path}")
    match path.suffix:
        case ".parquet":
            return pl.read_parquet(path)
        case ".csv":
            return pl.read_csv(path, try_parse_dates=True)
        case _:
            raise ValueError(f"Unsupported data format: {path.suffix}")
