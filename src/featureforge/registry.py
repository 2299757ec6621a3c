"""
Schema registry.

The registry owns every declared entity, feature view and model contract.
Registration validates the whole graph (names, references, types, cycles)
and is all-or-nothing: a failed ``register`` leaves the registry as it
was. After build the graph is read-only; only the source used to read a
view can be swapped, for test and synthetic data injection.
"""

from __future__ import annotations

import copy
import threading
from collections import Counter
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from types import ModuleType

from loguru import logger

import featureforge.errors as errors
import featureforge.expressions as expressions
import featureforge.fields as fields_
from featureforge.contracts import ModelContract
from featureforge.entities import Entity
from featureforge.lineage import LineageGraph
from featureforge.sources.base import SourceAdapter
from featureforge.views import FeatureView, SchemaNode


class SchemaRegistry:
    """
    Central registry of schema nodes.

    Attributes:
        name: Project identifier
        version: Incremented on every change, including source swaps

    Example:
        registry = ff.SchemaRegistry(nodes=[Wine, quality_model])
        registry.resolve("wine").alcohol
    """

    def __init__(
        self,
        nodes: Sequence[SchemaNode | ModuleType] = (),
        name: str = "default",
    ) -> None:
        self.name = name
        self.version = 0
        self._nodes: dict[str, SchemaNode] = {}
        self._entities: dict[str, Entity] = {}
        self._overrides: dict[str, SourceAdapter] = {}
        self._in_flight: Counter[str] = Counter()
        self._lock = threading.Lock()
        self._lineage = LineageGraph()

        if nodes:
            self.register(*nodes)

    # -------------------------------------------------------------------------
    # Registration
    # -------------------------------------------------------------------------

    def register(self, *items: SchemaNode | ModuleType) -> None:
        """
        Register views, contracts or modules containing them.

        The whole graph is validated after adding the new nodes. On any
        failure the registry is rolled back to its previous state.

        Raises:
            DuplicateNameError: If a node or entity name collides
            UnknownReferenceError: If a field references an undeclared field
            InvalidTypeError: If an expression or label is ill-typed
            CyclicDependencyError: If fields depend on each other in a cycle
        """
        nodes = self._expand(items)
        saved_nodes = dict(self._nodes)
        saved_entities = dict(self._entities)

        try:
            for node in nodes:
                self._add_node(node)
            lineage = self._build()
        except errors.FeatureStoreError:
            self._nodes = saved_nodes
            self._entities = saved_entities
            raise

        self._lineage = lineage
        self.version += 1
        logger.debug(
            f"Registry '{self.name}' v{self.version}: {len(self._nodes)} nodes, "
            f"{len(lineage.order)} fields"
        )

    def _expand(self, items: Sequence[SchemaNode | ModuleType]) -> list[SchemaNode]:
        nodes: list[SchemaNode] = []
        for item in items:
            if isinstance(item, SchemaNode):
                nodes.append(item)
            elif isinstance(item, ModuleType):
                found = [obj for obj in vars(item).values() if isinstance(obj, SchemaNode)]
                if not found:
                    logger.warning(f"No feature views or contracts found in module: {item.__name__}")
                nodes.extend(found)
            else:
                raise TypeError(
                    f"Expected FeatureView, ModelContract or module, got {type(item).__name__}"
                )
        return nodes

    def _add_node(self, node: SchemaNode) -> None:
        if node.name in self._nodes:
            if self._nodes[node.name] is node:
                return
            raise errors.DuplicateNameError(node.kind, node.name)

        known = self._entities.get(node.entity.name)
        if known is not None and known.dtype != node.entity.dtype:
            raise errors.DuplicateNameError(
                "entity",
                node.entity.name,
                hint=f"Already registered as {known.dtype}, '{node.name}' declares {node.entity.dtype}.",
            )

        self._entities.setdefault(node.entity.name, node.entity)
        self._nodes[node.name] = node
        logger.debug(f"Registered {node.kind}: {node.name}")

    def _bind(self, owner: str, ref: expressions.FieldRef) -> None:
        if ref.field is not None:
            target = ref.field
            if target.view is None or self._nodes.get(target.view) is not target.owner:
                raise errors.UnknownReferenceError(owner, f"{target.view or '?'}:{target.name}")
            return

        node = self._nodes.get(ref.view or "")
        if node is None or ref.name not in node.fields:
            raise errors.UnknownReferenceError(owner, ref.qualified_name)
        ref.bind(node.fields[ref.name])

    def _build(self) -> LineageGraph:
        for node in self._nodes.values():
            for f in node.derived_fields:
                for ref in f.references():
                    self._bind(f.qualified_name, ref)

            if isinstance(node, ModelContract):
                for ref in node.inputs:
                    self._bind(node.name, ref)
                for output in node.labels:
                    assert output.ground_truth is not None
                    self._bind(output.field.qualified_name, output.ground_truth)
                    truth = output.ground_truth.field
                    if not isinstance(truth.owner, FeatureView):  # type: ignore[union-attr]
                        raise errors.DeclarationError(
                            f"Label '{output.field.qualified_name}' must trace back to a "
                            f"feature view field, got '{output.ground_truth.qualified_name}'",
                            hint="Use a feature view field as ground_truth.",
                        )

        lineage = LineageGraph.build(self._nodes.values())
        cycle = lineage.find_cycle()
        if cycle:
            raise errors.CyclicDependencyError(cycle)

        for qid in lineage.topological_order():
            f = self.field(qid)
            if f.is_derived:
                f.check()
        for node in self._nodes.values():
            if isinstance(node, ModelContract):
                node.check_labels()

        return lineage

    # -------------------------------------------------------------------------
    # Lookup
    # -------------------------------------------------------------------------

    def resolve(self, name: str | SchemaNode) -> SchemaNode:
        """
        Get a registered view or contract.

        Raises:
            NotFoundError: If no node has this name
        """
        if isinstance(name, SchemaNode):
            name = name.name
        if name not in self._nodes:
            raise errors.NotFoundError("view or contract", name, available=list(self._nodes))
        return self._nodes[name]

    def view(self, name: str) -> FeatureView:
        node = self.resolve(name)
        if not isinstance(node, FeatureView):
            raise errors.NotFoundError(
                "feature view", name, available=[v.name for v in self.list_views()]
            )
        return node

    def contract(self, name: str) -> ModelContract:
        node = self.resolve(name)
        if not isinstance(node, ModelContract):
            raise errors.NotFoundError(
                "model contract", name, available=[c.name for c in self.list_contracts()]
            )
        return node

    def field(self, qualified_id: str) -> fields_.Field:
        """
        Get a field by its ``view:field`` id.

        Raises:
            NotFoundError: If the node or field does not exist
        """
        view, _, name = qualified_id.partition(":")
        return self.resolve(view).field(name)

    @property
    def entities(self) -> dict[str, Entity]:
        return dict(self._entities)

    def nodes(self) -> list[SchemaNode]:
        return list(self._nodes.values())

    def list_views(self, tags: list[str] | None = None) -> list[FeatureView]:
        """
        Return registered feature views.

        Args:
            tags: Only return views carrying any of these tags
        """
        views = [n for n in self._nodes.values() if isinstance(n, FeatureView)]
        if not tags:
            return views
        return [v for v in views if any(tag in tags for tag in v.tags)]

    def list_contracts(self) -> list[ModelContract]:
        return [n for n in self._nodes.values() if isinstance(n, ModelContract)]

    def list_tags(self) -> list[str]:
        """Sorted distinct tags across all nodes."""
        return sorted({tag for node in self._nodes.values() for tag in node.tags})

    def lineage(self) -> LineageGraph:
        return self._lineage

    def __contains__(self, name: str) -> bool:
        return name in self._nodes

    # -------------------------------------------------------------------------
    # Sources
    # -------------------------------------------------------------------------

    def source_for(self, node: str | SchemaNode) -> SourceAdapter | None:
        """
        Get the adapter used to read a view or contract.

        Returns the injected adapter when one was set, else the view's
        batch source or the contract's prediction source.
        """
        resolved = self.resolve(node)
        if resolved.name in self._overrides:
            return self._overrides[resolved.name]
        if isinstance(resolved, ModelContract):
            return resolved.prediction_source
        assert isinstance(resolved, FeatureView)
        return resolved.batch_source

    def has_override(self, node: str | SchemaNode) -> bool:
        return self.resolve(node).name in self._overrides

    def update_source_for(self, node: str | SchemaNode, adapter: SourceAdapter) -> None:
        """
        Swap the adapter a view is read from, without touching the graph.

        Raises:
            FeatureStoreError: If a request against the view is in flight
        """
        resolved = self.resolve(node)
        with self._lock:
            if self._in_flight[resolved.name]:
                raise errors.FeatureStoreError(
                    f"Cannot swap the source of '{resolved.name}' while "
                    f"{self._in_flight[resolved.name]} request(s) are in flight",
                    hint="Swap sources during setup, or use with_source() for a separate snapshot.",
                )
            self._overrides[resolved.name] = adapter
            self.version += 1
        logger.debug(f"Source for '{resolved.name}' set to {adapter!r}")

    def with_source(self, node: str | SchemaNode, adapter: SourceAdapter) -> SchemaRegistry:
        """Return a snapshot of this registry reading ``node`` from ``adapter``."""
        resolved = self.resolve(node)
        snapshot = copy.copy(self)
        snapshot._overrides = {**self._overrides, resolved.name: adapter}
        snapshot._in_flight = Counter()
        snapshot._lock = threading.Lock()
        snapshot.version = self.version + 1
        return snapshot

    @contextmanager
    def in_flight(self, names: Sequence[str]) -> Iterator[None]:
        """Mark views as being read by a request."""
        with self._lock:
            self._in_flight.update(names)
        try:
            yield
        finally:
            with self._lock:
                self._in_flight.subtract(names)

    def __repr__(self) -> str:
        return f"SchemaRegistry({self.name!r}, nodes={list(self._nodes)})"
