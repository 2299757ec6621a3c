"""Unit tests for CLI commands."""

from unittest.mock import patch

import polars as pl
import pytest

from featureforge.cli import check, lineage, list_, plan, profile, sample, validate


@pytest.fixture
def definitions_file(temp_dir):
    """Create a valid definitions file for testing."""
    definitions_file = temp_dir / "definitions.py"
    definitions_file.write_text(
        """
import featureforge as ff
import polars as pl

wine_id = ff.Entity(name="wine_id", dtype=ff.int64)


@ff.feature_view(
    name="wine",
    entity=wine_id,
    batch_source=ff.InMemorySource(
        pl.DataFrame({"wine_id": [1, 2], "alcohol": [9.5, 13.0], "quality": [5, 7]}),
        name="wine_batch",
    ),
    tags=["wine"],
)
class Wine:
    alcohol = ff.Field(ff.float64, constraints=[ff.lower_bound(0)])
    quality = ff.Field(ff.int64, constraints=[ff.upper_bound(10)])
    is_strong = ff.derived(alcohol > 12)


registry = ff.SchemaRegistry(nodes=[Wine], name="cellar")
"""
    )
    return definitions_file


def test_list_command_prints_views_and_contracts(definitions_file):
    # Given a definitions file
    target = str(definitions_file)

    # When listing
    with (
        patch("featureforge.cli.print_views_table") as mock_views,
        patch("featureforge.cli.print_contracts_table") as mock_contracts,
    ):
        list_(target=target)

    # Then both tables are printed
    views = mock_views.call_args[0][0]
    assert [v.name for v in views] == ["wine"]
    mock_contracts.assert_called_once_with([])


def test_list_command_filters_by_tag(definitions_file):
    with (
        patch("featureforge.cli.print_views_table") as mock_views,
        patch("featureforge.cli.print_contracts_table") as mock_contracts,
    ):
        list_(target=str(definitions_file), tags="wine")

    assert [v.name for v in mock_views.call_args[0][0]] == ["wine"]
    mock_contracts.assert_not_called()


def test_list_command_unknown_tag_exits(definitions_file):
    # Given a tag no view carries
    # When listing
    # Then the command fails
    with patch("featureforge.cli.print_error") as mock_error:
        with pytest.raises(SystemExit) as exc_info:
            list_(target=str(definitions_file), tags="beer")

    assert exc_info.value.code == 1
    assert "beer" in mock_error.call_args[0][0]


def test_default_target_is_discovered(definitions_file, temp_dir, monkeypatch):
    # Given a definitions file in the working directory
    (temp_dir / "featureforge.yaml").write_text("profiles: {}\n")
    monkeypatch.chdir(temp_dir)

    # When listing with no target
    with (
        patch("featureforge.cli.print_views_table") as mock_views,
        patch("featureforge.cli.print_contracts_table"),
    ):
        list_(target=None)

    # Then the discovered file is used
    mock_views.assert_called_once()


def test_missing_target_exits(temp_dir, monkeypatch):
    (temp_dir / "featureforge.yaml").write_text("profiles: {}\n")
    monkeypatch.chdir(temp_dir)

    with patch("featureforge.cli.print_error") as mock_error:
        with pytest.raises(SystemExit):
            list_(target=None)

    assert "Could not find" in mock_error.call_args[0][0]


def test_broken_definitions_exit(temp_dir):
    # Given a definitions file that fails to import
    definitions_file = temp_dir / "definitions.py"
    definitions_file.write_text("raise RuntimeError('boom')\n")

    # When listing
    # Then the load error is printed
    with patch("featureforge.cli.print_error") as mock_error:
        with pytest.raises(SystemExit):
            list_(target=str(definitions_file))

    assert "Failed to load" in mock_error.call_args[0][0]


def test_plan_command_prints_plan(definitions_file):
    # Given a request for a derived field
    # When planning
    with patch("featureforge.cli.print_plan") as mock_plan:
        plan("wine", target=str(definitions_file), fields="is_strong")

    # Then the plan reads before it derives
    resolved = mock_plan.call_args[0][0]
    assert [s.kind for s in resolved.steps] == ["read", "derive"]
    assert resolved.requested == ("wine:is_strong",)


def test_plan_command_unknown_field_exits(definitions_file):
    with patch("featureforge.cli.print_error") as mock_error:
        with pytest.raises(SystemExit):
            plan("wine", target=str(definitions_file), fields="color")

    assert "color" in mock_error.call_args[0][0]


def test_lineage_command_for_a_field(definitions_file):
    # Given a derived field id
    # When showing its lineage
    with patch("featureforge.cli.print_lineage") as mock_lineage:
        lineage("wine:is_strong", target=str(definitions_file))

    # Then its input is among the listed ids
    qids = mock_lineage.call_args[0][1]
    assert "wine:alcohol" in qids


def test_lineage_command_unknown_node_exits(definitions_file):
    with patch("featureforge.cli.print_error"):
        with pytest.raises(SystemExit):
            lineage("beer", target=str(definitions_file))


def test_validate_command(definitions_file):
    with patch("featureforge.cli.print_success") as mock_success:
        validate(target=str(definitions_file))

    mock_success.assert_called_once_with("Schema 'cellar' is valid: 1 view(s), 0 contract(s)")


def test_validate_command_warns_on_sourceless_views(temp_dir):
    # Given a view without any source
    document = temp_dir / "schema.yaml"
    document.write_text(
        """
name: bare
entities:
  - {name: wine_id, type: int64}
views:
  - name: wine
    entity: wine_id
    fields:
      - {name: alcohol, type: float64}
"""
    )

    # When validating
    with (
        patch("featureforge.cli.print_warning") as mock_warning,
        patch("featureforge.cli.print_success"),
    ):
        validate(target=str(document))

    # Then a warning names the view
    assert "'wine' has no source" in mock_warning.call_args[0][0]


def test_profile_command(temp_dir, monkeypatch):
    # Given a config with a default profile
    monkeypatch.delenv("FEATUREFORGE_PROFILE", raising=False)
    config = temp_dir / "featureforge.yaml"
    config.write_text("default_profile: dev\nprofiles:\n  dev:\n    staleness: ignore\n")

    # When showing the active profile
    with patch("featureforge.profiles.print_profile") as mock_print:
        profile(config=config)

    # Then the dev profile is shown
    name, selected = mock_print.call_args[0]
    assert name == "dev"
    assert selected.staleness == "ignore"


def test_profile_command_without_config_exits(temp_dir):
    with patch("featureforge.cli.print_error") as mock_error:
        with pytest.raises(SystemExit):
            profile(config=temp_dir / "featureforge.yaml")

    assert "No featureforge.yaml found" in mock_error.call_args[0][0]


def test_sample_command_previews_rows(definitions_file):
    # When sampling three rows
    with patch("featureforge.cli.print_preview") as mock_preview:
        sample("wine", target=str(definitions_file), count=3, seed=1)

    # Then a frame with the raw columns is previewed
    title, df = mock_preview.call_args[0]
    assert title == "wine"
    assert df.columns == ["wine_id", "alcohol", "quality"]
    assert df.height == 3


def test_check_command_passes_valid_file(definitions_file, temp_dir):
    # Given a file that respects every constraint
    data = temp_dir / "wine.parquet"
    pl.DataFrame({"wine_id": [1, 2], "alcohol": [9.5, 13.0], "quality": [5, 7]}).write_parquet(data)

    # When checking it
    with patch("featureforge.cli.print_validation_report") as mock_report:
        check("wine", data, target=str(definitions_file))

    # Then the report passes
    assert mock_report.call_args[0][0].passed


def test_check_command_reports_violations(definitions_file, temp_dir):
    # Given a CSV with a quality above its bound
    data = temp_dir / "wine.csv"
    pl.DataFrame({"wine_id": [1, 2], "alcohol": [9.5, 13.0], "quality": [5, 12]}).write_csv(data)

    # When checking it
    # Then the command fails after printing the report
    with patch("featureforge.cli.print_validation_report") as mock_report:
        with pytest.raises(SystemExit) as exc_info:
            check("wine", data, target=str(definitions_file))

    assert exc_info.value.code == 1
    report = mock_report.call_args[0][0]
    assert [(v.field, v.entity_ids) for v in report.violations] == [("quality", (2,))]


def test_check_command_schema_mismatch_exits(definitions_file, temp_dir):
    # Given a file whose alcohol column holds strings
    data = temp_dir / "wine.parquet"
    pl.DataFrame({"wine_id": [1], "alcohol": ["strong"], "quality": [5]}).write_parquet(data)

    with patch("featureforge.cli.print_error") as mock_error:
        with pytest.raises(SystemExit):
            check("wine", data, target=str(definitions_file))

    assert "alcohol" in mock_error.call_args[0][0]
