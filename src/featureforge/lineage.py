"""
Lineage graph over qualified field ids.

The graph is derived from the registered views and contracts and rebuilt
whenever the registry changes. Nodes are ``view:field`` ids; an edge
``X -> Y`` means "X reads Y". Three relations produce edges:

    derives   a derived field reads the fields in its expression
    predicts  a contract output reads every contract input
    labels    a label output reads its ground truth field
"""

from __future__ import annotations

import heapq
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import featureforge.errors as errors

if TYPE_CHECKING:
    from featureforge.views import SchemaNode

DERIVES = "derives"
PREDICTS = "predicts"
LABELS = "labels"


@dataclass(frozen=True)
class Edge:
    child: str
    parent: str
    relation: str


@dataclass
class LineageGraph:
    """
    Immutable "reads" graph between fields.

    Attributes:
        order: Field ids in declaration order, used to break ties
        edges: Outgoing edges per field id
    """

    order: list[str] = field(default_factory=list)
    edges: dict[str, list[Edge]] = field(default_factory=dict)

    @classmethod
    def build(cls, nodes: Iterable[SchemaNode]) -> LineageGraph:
        """
        Build the graph from registered nodes.

        Every field reference must already be bound to a handle.
        """
        from featureforge.contracts import ModelContract

        graph = cls()
        for node in nodes:
            for f in node:
                qid = f.qualified_name
                graph.order.append(qid)
                graph.edges[qid] = [
                    Edge(qid, ref.qualified_name, DERIVES) for ref in f.references()
                ]

            if isinstance(node, ModelContract):
                inputs = [ref.qualified_name for ref in node.inputs]
                for output in node.outputs:
                    qid = output.field.qualified_name
                    graph.edges[qid].extend(Edge(qid, parent, PREDICTS) for parent in inputs)
                    if output.ground_truth is not None:
                        graph.edges[qid].append(
                            Edge(qid, output.ground_truth.qualified_name, LABELS)
                        )
        return graph

    def parents(self, qid: str, relations: Sequence[str] | None = None) -> list[str]:
        """Fields directly read by ``qid``."""
        return [
            e.parent
            for e in self.edges.get(qid, [])
            if relations is None or e.relation in relations
        ]

    def ancestors(
        self,
        qids: Iterable[str],
        relations: Sequence[str] | None = None,
    ) -> list[str]:
        """
        Transitive closure of fields read by ``qids``, including them.

        Returns:
            Field ids in topological order, dependencies first
        """
        seen: set[str] = set()
        stack = list(qids)
        while stack:
            current = stack.pop()
            if current in seen:
                continue
            seen.add(current)
            stack.extend(self.parents(current, relations))
        return self.topological_order(seen, relations)

    def topological_order(
        self,
        subset: Iterable[str] | None = None,
        relations: Sequence[str] | None = None,
    ) -> list[str]:
        """
        Order field ids so that every field follows the fields it reads.

        Ties between independent fields are broken by declaration order,
        so the same graph always produces the same order.

        Raises:
            CyclicDependencyError: If the subset contains a cycle
        """
        members = set(self.order if subset is None else subset)
        rank = {qid: index for index, qid in enumerate(self.order)}
        pending: dict[str, int] = {}
        children: dict[str, list[str]] = {qid: [] for qid in members}

        for qid in members:
            parents = [p for p in self.parents(qid, relations) if p in members]
            pending[qid] = len(set(parents))
            for parent in set(parents):
                children[parent].append(qid)

        ready = [(rank.get(qid, len(rank)), qid) for qid, count in pending.items() if count == 0]
        heapq.heapify(ready)
        ordered: list[str] = []

        while ready:
            _, qid = heapq.heappop(ready)
            ordered.append(qid)
            for child in children[qid]:
                pending[child] -= 1
                if pending[child] == 0:
                    heapq.heappush(ready, (rank.get(child, len(rank)), child))

        if len(ordered) != len(members):
            cycle = self.find_cycle(relations) or sorted(members - set(ordered))
            raise errors.CyclicDependencyError(cycle)
        return ordered

    def find_cycle(self, relations: Sequence[str] | None = None) -> list[str] | None:
        """
        Find one cycle, if any.

        Returns:
            Field ids along the cycle, or None for an acyclic graph
        """
        white, grey, black = 0, 1, 2
        color = {qid: white for qid in self.order}
        path: list[str] = []

        def visit(qid: str) -> list[str] | None:
            color[qid] = grey
            path.append(qid)
            for parent in self.parents(qid, relations):
                state = color.get(parent, black)
                if state == grey:
                    return path[path.index(parent):]
                if state == white:
                    found = visit(parent)
                    if found:
                        return found
            path.pop()
            color[qid] = black
            return None

        for qid in self.order:
            if color[qid] == white:
                found = visit(qid)
                if found:
                    return found
        return None

    def to_dict(self) -> dict[str, Any]:
        """Export nodes and edges for catalog tooling."""
        return {
            "nodes": list(self.order),
            "edges": [
                {"from": e.child, "to": e.parent, "relation": e.relation}
                for qid in self.order
                for e in self.edges.get(qid, [])
            ],
        }
