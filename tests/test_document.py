"""Tests for loading and dumping schema documents."""

import json

import pytest

import featureforge as ff
from featureforge.document import build_registry, parse_document
from featureforge.errors import DefinitionsLoadError
from featureforge.profiles import RetryConfig

SENSOR_DOCUMENT = {
    "name": "plant",
    "entities": [{"name": "sensor_id", "type": "int64"}],
    "views": [
        {
            "name": "sensors",
            "entity": "sensor_id",
            "event_timestamp": "read_at",
            "acceptable_freshness": "1h",
            "unacceptable_freshness": "1d",
            "batch_source": {"kind": "random", "count": 5, "seed": 1},
            "fields": [
                {
                    "name": "value",
                    "type": "float64",
                    "constraints": [{"kind": "lower_bound", "value": 0}],
                },
                {
                    "name": "doubled",
                    "expression": {
                        "kind": "binary",
                        "op": "*",
                        "left": {"kind": "field", "ref": "sensors:value"},
                        "right": {"kind": "literal", "value": 2},
                    },
                },
            ],
        }
    ],
}


def test_dump_then_build_preserves_the_schema(wine_registry):
    # Given a registry declared in code
    dumped = ff.dump_registry(wine_registry)

    # When building a registry from its document
    rebuilt = build_registry(parse_document(dumped))

    # Then dumping it again gives the same document
    assert ff.dump_registry(rebuilt) == dumped
    assert rebuilt.field("wine:is_strong").dtype == ff.boolean
    assert rebuilt.resolve("wine_quality").output("predicted_quality").ground_truth.qualified_name == (
        "wine:quality"
    )


def test_yaml_file_round_trip(wine_registry, temp_dir):
    # Given a registry written as YAML
    path = temp_dir / "schema" / "wine.yaml"
    dumped = ff.dump_registry(wine_registry, path)

    # When loading the file
    loaded = ff.load_registry(path)

    # Then the schema is unchanged
    assert path.exists()
    assert ff.dump_registry(loaded) == dumped


def test_json_dump(wine_registry, temp_dir):
    path = temp_dir / "wine.json"

    ff.dump_registry(wine_registry, path)

    data = json.loads(path.read_text())
    assert data["name"] == "wine"
    assert [v["name"] for v in data["views"]] == ["wine"]
    assert ff.load_document(path).contracts[0].name == "wine_quality"


def test_random_batch_source_is_generated_for_the_view():
    # Given a view with a random batch source
    registry = build_registry(parse_document(SENSOR_DOCUMENT))

    # When building
    view = registry.resolve("sensors")

    # Then the source holds rows matching the view's schema
    assert isinstance(view.batch_source, ff.RandomDataSource)
    assert view.batch_source.df.columns == ["sensor_id", "read_at", "value"]
    assert view.batch_source.df.height == 5
    assert view.acceptable_freshness.total_seconds() == 3600


def test_derived_field_type_is_inferred():
    registry = build_registry(parse_document(SENSOR_DOCUMENT))

    assert registry.field("sensors:doubled").dtype == ff.float64


def test_retry_settings_wrap_sources():
    # Given a profile retry policy and one source with its own policy
    document = parse_document(
        {
            "entities": [{"name": "sensor_id", "type": "int64"}],
            "views": [
                {
                    "name": "a",
                    "entity": "sensor_id",
                    "batch_source": {"kind": "memory"},
                    "fields": [{"name": "x", "type": "int64"}],
                },
                {
                    "name": "b",
                    "entity": "sensor_id",
                    "batch_source": {"kind": "memory", "retry": {"max_attempts": 2}},
                    "fields": [{"name": "y", "type": "int64"}],
                },
            ],
        }
    )

    # When building with the profile policy
    registry = build_registry(document, retry=RetryConfig(max_attempts=5, base_delay=0))

    # Then sources are wrapped, the source's own policy winning
    a = registry.resolve("a").batch_source
    b = registry.resolve("b").batch_source
    assert isinstance(a, ff.RetryingSource) and a.max_attempts == 5
    assert isinstance(b, ff.RetryingSource) and b.max_attempts == 2


def test_invalid_document_lists_locations():
    with pytest.raises(DefinitionsLoadError, match="views.0.entity"):
        parse_document({"views": [{"name": "wine", "fields": []}]})


def test_unknown_source_kind_is_rejected():
    with pytest.raises(DefinitionsLoadError, match="Invalid schema document"):
        parse_document(
            {
                "entities": [{"name": "id"}],
                "views": [{"name": "v", "entity": "id", "batch_source": {"kind": "s3"}}],
            }
        )


def test_undeclared_entity_raises():
    document = parse_document({"views": [{"name": "wine", "entity": "wine_id"}]})

    with pytest.raises(DefinitionsLoadError, match="undeclared entity 'wine_id'"):
        build_registry(document)


def test_invalid_field_type_raises():
    document = parse_document(
        {
            "entities": [{"name": "id"}],
            "views": [{"name": "v", "entity": "id", "fields": [{"name": "x", "type": "decimal"}]}],
        }
    )

    with pytest.raises(DefinitionsLoadError, match="Field 'x': invalid definition"):
        build_registry(document)


def test_field_without_type_or_expression_raises():
    document = parse_document(
        {
            "entities": [{"name": "id"}],
            "views": [{"name": "v", "entity": "id", "fields": [{"name": "x"}]}],
        }
    )

    with pytest.raises(DefinitionsLoadError, match="needs a type or an expression"):
        build_registry(document)


def test_contract_entity_must_be_inferable():
    document = parse_document(
        {
            "contracts": [
                {
                    "name": "model",
                    "features": ["missing:x"],
                    "outputs": [{"kind": "prediction", "field": {"name": "p", "type": "float64"}}],
                }
            ]
        }
    )

    with pytest.raises(DefinitionsLoadError, match="Cannot infer the entity"):
        build_registry(document)


def test_load_document_errors(temp_dir):
    with pytest.raises(DefinitionsLoadError, match="not found"):
        ff.load_document(temp_dir / "missing.yaml")

    listed = temp_dir / "list.yaml"
    listed.write_text("- a\n- b\n")
    with pytest.raises(DefinitionsLoadError, match="Expected a mapping"):
        ff.load_document(listed)
