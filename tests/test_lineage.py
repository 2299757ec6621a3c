import pytest

import featureforge as ff
import featureforge.lineage as lineage
from featureforge.errors import CyclicDependencyError
from featureforge.lineage import Edge, LineageGraph


@pytest.fixture
def graph(wine_registry):
    return wine_registry.lineage()


def test_derived_field_reads_its_inputs(graph):
    assert graph.parents("wine:is_strong") == ["wine:alcohol"]
    assert graph.parents("wine:alcohol") == []


def test_contract_outputs_read_inputs_and_ground_truth(graph):
    # Given a label output with ground truth
    # Then it reads every input and its ground truth
    assert graph.parents("wine_quality:predicted_quality") == ["wine:alcohol", "wine:quality"]
    assert graph.parents("wine_quality:predicted_quality", relations=[lineage.LABELS]) == [
        "wine:quality"
    ]
    assert graph.parents("wine_quality:model_version") == ["wine:alcohol"]


def test_derivation_only_view_of_contract(graph):
    assert graph.parents("wine_quality:predicted_quality", relations=[lineage.DERIVES]) == []


def test_ancestors_include_roots_in_dependency_order(graph):
    assert graph.ancestors(["wine:is_strong"]) == ["wine:alcohol", "wine:is_strong"]


def test_topological_order_follows_declaration_for_ties(graph):
    # Given the full graph
    order = graph.topological_order()

    # Then every field follows the fields it reads, ties kept in declaration order
    assert order.index("wine:alcohol") < order.index("wine:is_strong")
    assert order.index("wine:alcohol") < order.index("wine_quality:predicted_quality")
    assert order[:3] == ["wine:wine_id", "wine:alcohol", "wine:color"]


def test_topological_order_is_deterministic(wine_registry):
    first = wine_registry.lineage().topological_order()
    rebuilt = LineageGraph.build(wine_registry.nodes()).topological_order()

    assert first == rebuilt


def test_find_cycle_on_acyclic_graph(graph):
    assert graph.find_cycle() is None


def test_cycle_is_reported():
    # Given two fields reading each other
    graph = LineageGraph(
        order=["loop:a", "loop:b"],
        edges={
            "loop:a": [Edge("loop:a", "loop:b", lineage.DERIVES)],
            "loop:b": [Edge("loop:b", "loop:a", lineage.DERIVES)],
        },
    )

    # When ordering
    # Then the cycle is named
    assert graph.find_cycle() == ["loop:a", "loop:b"]
    with pytest.raises(CyclicDependencyError) as exc_info:
        graph.topological_order()
    assert exc_info.value.cycle == ["loop:a", "loop:b"]


def test_to_dict_lists_edges(graph):
    exported = graph.to_dict()

    assert "wine:is_strong" in exported["nodes"]
    assert {"from": "wine:is_strong", "to": "wine:alcohol", "relation": "derives"} in exported["edges"]
    assert {
        "from": "wine_quality:predicted_quality",
        "to": "wine:quality",
        "relation": "labels",
    } in exported["edges"]


def test_chained_contract_reads_upstream_output(wine_view, quality_model):
    # Given a contract consuming another contract's prediction
    downstream = ff.ModelContract(
        name="wine_price",
        features=[quality_model.predicted_quality],
        outputs=[ff.model_version(ff.Field(ff.string, name="price_model"))],
    )
    registry = ff.SchemaRegistry(nodes=[wine_view, quality_model, downstream])

    # When walking all relations
    ancestors = registry.lineage().ancestors(["wine_price:price_model"])

    # Then the upstream contract and its inputs are included
    assert ancestors.index("wine:alcohol") < ancestors.index("wine_quality:predicted_quality")
    assert ancestors[-1] == "wine_price:price_model"
