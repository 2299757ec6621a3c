"""
Dependency resolver.

Turns a request for fields of a view or contract into an ordered plan of
read and derive steps. The resolver only looks at the schema graph, never
at data, so plans are cached per (target, fields, registry version).
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from loguru import logger

import featureforge.errors as errors
import featureforge.fields as fields_
import featureforge.lineage as lineage_
from featureforge.contracts import ModelContract
from featureforge.registry import SchemaRegistry
from featureforge.views import FeatureView, SchemaNode

READ = "read"
DERIVE = "derive"

type FieldSpec = str | fields_.Field


@dataclass(frozen=True)
class PlanStep:
    """
    One step of an evaluation plan.

    Attributes:
        kind: "read" for a raw source read, "derive" for a computed field
        node: Name of the view or contract the fields belong to
        fields: Field names produced by the step
        source: Adapter the step reads from, for read steps
        depends_on: Indices of earlier steps this step needs
    """

    kind: str
    node: str
    fields: tuple[str, ...]
    source: str | None = None
    depends_on: tuple[int, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "node": self.node,
            "fields": list(self.fields),
            "source": self.source,
            "depends_on": list(self.depends_on),
        }


@dataclass(frozen=True)
class Plan:
    """
    Ordered evaluation plan.

    Every step's inputs are produced by an earlier step or by a raw read.

    Attributes:
        target: Requested view or contract
        steps: Steps in execution order
        requested: Qualified ids of the fields the caller asked for
        columns: Output column name of every field the plan touches,
            keyed by qualified id
    """

    target: str
    steps: tuple[PlanStep, ...]
    requested: tuple[str, ...]
    columns: dict[str, str] = field(default_factory=dict)

    @property
    def reads(self) -> list[PlanStep]:
        return [s for s in self.steps if s.kind == READ]

    @property
    def derives(self) -> list[PlanStep]:
        return [s for s in self.steps if s.kind == DERIVE]

    @property
    def output_columns(self) -> list[str]:
        return [self.columns[qid] for qid in self.requested]

    def independent_reads(self) -> list[list[PlanStep]]:
        """
        Group read steps that can run concurrently.

        Read steps never depend on each other, so they form one group.
        """
        reads = self.reads
        return [reads] if reads else []

    def to_dict(self) -> dict[str, Any]:
        return {
            "target": self.target,
            "requested": list(self.requested),
            "columns": dict(self.columns),
            "steps": [s.to_dict() for s in self.steps],
        }


class DependencyResolver:
    """
    Expands requests into evaluation plans.

    Example:
        resolver = DependencyResolver(registry)
        plan = resolver.plan("taxi_trips", fields=["travel_distance"])
    """

    def __init__(self, registry: SchemaRegistry) -> None:
        self.registry = registry
        self._cache: dict[tuple[str, tuple[str, ...], int], Plan] = {}

    def plan(
        self,
        target: str | SchemaNode,
        fields: Sequence[FieldSpec] | None = None,
    ) -> Plan:
        """
        Build the plan for fields of a view or contract.

        Args:
            target: View or contract
            fields: Field names of the target, handles, or ``view:field``
                ids. Defaults to every feature of a view, or the inputs of
                a contract.

        Returns:
            Cached or freshly built plan

        Raises:
            NotFoundError: If the target or a field does not exist
            CyclicDependencyError: If the requested fields depend on a cycle
            UnsatisfiableRequestError: If a raw ancestor has no source
        """
        node = self.registry.resolve(target)
        requested = self._requested(node, fields)
        key = (node.name, tuple(f.qualified_name for f in requested), self.registry.version)

        if key in self._cache:
            return self._cache[key]

        plan = self._build(node, requested)
        self._cache[key] = plan
        logger.debug(f"Planned '{node.name}': {len(plan.reads)} reads, {len(plan.derives)} derives")
        return plan

    def _requested(
        self,
        node: SchemaNode,
        fields: Sequence[FieldSpec] | None,
    ) -> list[fields_.Field]:
        if fields is None:
            if isinstance(node, ModelContract):
                return node.features
            return node.feature_fields

        resolved: list[fields_.Field] = []
        for spec in fields:
            if isinstance(spec, fields_.Field):
                f = self.registry.field(spec.qualified_name)
            elif ":" in spec:
                f = self.registry.field(spec)
            else:
                f = node.field(spec)
            if not any(f is r for r in resolved):
                resolved.append(f)
        return resolved

    def _build(self, node: SchemaNode, requested: list[fields_.Field]) -> Plan:
        graph = self.registry.lineage()
        ordered = graph.ancestors(
            [f.qualified_name for f in requested], relations=(lineage_.DERIVES,)
        )
        needed = [self.registry.field(qid) for qid in ordered]

        reads: dict[str, list[str]] = {}
        for f in needed:
            if f.is_derived or isinstance(f, fields_.EntityKey):
                continue
            names = reads.setdefault(f.view or "", [])
            if not isinstance(f, fields_.EventTimestamp):
                names.append(f.name or "")

        steps: list[PlanStep] = []
        producer: dict[str, int] = {}

        for owner_name, names in reads.items():
            owner = self.registry.resolve(owner_name)
            source = self._source_name(owner, names)
            declared = [f.name for f in owner.raw_fields if f.name in names]
            steps.append(PlanStep(READ, owner_name, tuple(declared), source))
            for name in declared:
                producer[f"{owner_name}:{name}"] = len(steps) - 1
            if owner.event_timestamp is not None:
                producer[owner.event_timestamp.qualified_name] = len(steps) - 1

        for f in needed:
            if not f.is_derived:
                continue
            depends = sorted(
                {producer[ref.qualified_name] for ref in f.references() if ref.qualified_name in producer}
            )
            steps.append(PlanStep(DERIVE, f.view or "", (f.name or "",), None, tuple(depends)))
            producer[f.qualified_name] = len(steps) - 1

        return Plan(
            target=node.name,
            steps=tuple(steps),
            requested=tuple(f.qualified_name for f in requested),
            columns=self._columns(needed),
        )

    def _source_name(self, owner: SchemaNode, names: list[str]) -> str:
        source = self.registry.source_for(owner)
        if source is None and isinstance(owner, FeatureView):
            source = owner.materialized_source or owner.stream_source
        if source is None:
            raise errors.UnsatisfiableRequestError(owner.name, names)
        return source.name

    def _columns(self, needed: list[fields_.Field]) -> dict[str, str]:
        counts: dict[str, int] = {}
        for f in needed:
            if not isinstance(f, (fields_.EntityKey, fields_.EventTimestamp)):
                counts[f.name or ""] = counts.get(f.name or "", 0) + 1

        columns: dict[str, str] = {}
        for f in needed:
            qid = f.qualified_name
            if isinstance(f, fields_.EntityKey):
                columns[qid] = f.name or ""
            elif isinstance(f, fields_.EventTimestamp):
                columns[qid] = f"__ts__{f.view}"
            elif counts[f.name or ""] > 1:
                columns[qid] = f"{f.view}__{f.name}"
            else:
                columns[qid] = f.name or ""
        return columns
