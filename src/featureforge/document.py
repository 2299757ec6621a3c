"""
Serialized schema document.

A registry can be loaded from, and dumped to, a single declarative
document (YAML or JSON) listing entities, feature views, fields,
constraints, derived-feature expressions and model contracts with their
sources and freshness settings. The document is validated with pydantic
before any node is built.

Example schema.yaml:
    name: wine
    entities:
      - name: wine_id
        type: int64
    views:
      - name: wine
        entity: wine_id
        batch_source:
          kind: csv
          path: data/wine.csv
        fields:
          - name: alcohol
            type: float64
            constraints:
              - {kind: lower_bound, value: 0}
              - {kind: upper_bound, value: 20}
          - name: is_strong
            expression:
              kind: binary
              op: ">"
              left: {kind: field, ref: "wine:alcohol"}
              right: {kind: literal, value: 12}
"""

from __future__ import annotations

import json
import typing as T
from pathlib import Path

from loguru import logger
from omegaconf import DictConfig, OmegaConf
from pydantic import BaseModel, Field, ValidationError

import featureforge.constraints as constraints_
import featureforge.contracts as contracts_
import featureforge.errors as errors
import featureforge.expressions as expressions
import featureforge.fields as fields_
import featureforge.types as types_
from featureforge.entities import Entity
from featureforge.profiles import RetryConfig
from featureforge.registry import SchemaRegistry
from featureforge.views import FeatureView, SchemaNode

if T.TYPE_CHECKING:
    import featureforge.sources as sources


# =============================================================================
# Source Configs
# =============================================================================


class _SourceDoc(BaseModel, frozen=True):
    retry: RetryConfig | None = None

    def _build(self) -> sources.SourceAdapter:
        raise NotImplementedError

    def create(self) -> sources.SourceAdapter:
        """Create the adapter, wrapped with retries when configured."""
        import featureforge.sources as sources

        adapter = self._build()
        if self.retry is None:
            return adapter
        return sources.RetryingSource(
            adapter,
            max_attempts=self.retry.max_attempts,
            base_delay=self.retry.base_delay,
        )


class MemorySourceDoc(_SourceDoc, frozen=True):
    """In-memory source, empty until rows are written."""

    kind: T.Literal["memory"] = "memory"
    name: str = "memory"

    def _build(self) -> sources.InMemorySource:
        import featureforge.sources as sources

        return sources.InMemorySource(name=self.name)


class ParquetSourceDoc(_SourceDoc, frozen=True):
    kind: T.Literal["parquet"] = "parquet"
    path: str

    def _build(self) -> sources.ParquetSource:
        import featureforge.sources as sources

        return sources.ParquetSource(self.path)


class CsvSourceDoc(_SourceDoc, frozen=True):
    kind: T.Literal["csv"] = "csv"
    path: str
    separator: str = ","

    def _build(self) -> sources.CsvSource:
        import featureforge.sources as sources

        return sources.CsvSource(self.path, separator=self.separator)


class DuckDBSourceDoc(_SourceDoc, frozen=True):
    kind: T.Literal["duckdb"] = "duckdb"
    database: str = ":memory:"
    table: str | None = None
    query: str | None = None

    def _build(self) -> sources.DuckDBSource:
        import featureforge.sources as sources

        return sources.DuckDBSource(table=self.table, query=self.query, database=self.database)


class RandomSourceDoc(_SourceDoc, frozen=True):
    """Synthetic rows generated from the owning node's schema once it exists."""

    kind: T.Literal["random"] = "random"
    count: int = Field(default=100, ge=0)
    seed: int | None = None

    def create_for(self, node: SchemaNode) -> sources.RandomDataSource:
        import featureforge.sources as sources

        return sources.RandomDataSource(node, count=self.count, seed=self.seed)


SourceDoc = T.Annotated[
    MemorySourceDoc | ParquetSourceDoc | CsvSourceDoc | DuckDBSourceDoc | RandomSourceDoc,
    Field(discriminator="kind"),
]


# =============================================================================
# Schema Nodes
# =============================================================================


class EntityDoc(BaseModel, frozen=True):
    name: str
    type: str = "string"
    description: str | None = None


class ConstraintDoc(BaseModel, frozen=True):
    kind: T.Literal["lower_bound", "upper_bound", "accepted_values"]
    value: T.Any = None
    values: list[T.Any] | None = None
    inclusive: bool = True


class FieldDoc(BaseModel, frozen=True):
    name: str
    type: str | None = None
    required: bool | None = None
    constraints: list[ConstraintDoc] = Field(default_factory=list)
    description: str | None = None
    expression: dict[str, T.Any] | None = None
    role: str = "field"


class ViewDoc(BaseModel, frozen=True):
    name: str
    entity: str
    event_timestamp: str | None = None
    fields: list[FieldDoc] = Field(default_factory=list)
    batch_source: SourceDoc | None = None
    materialized_source: SourceDoc | None = None
    stream_source: SourceDoc | None = None
    acceptable_freshness: str | None = None
    unacceptable_freshness: str | None = None
    description: str | None = None
    tags: list[str] = Field(default_factory=list)


class OutputDoc(BaseModel, frozen=True):
    kind: T.Literal["classification_label", "regression_label", "model_version", "prediction"]
    field: FieldDoc
    ground_truth: str | None = None


class ContractDoc(BaseModel, frozen=True):
    name: str
    entity: str | None = None
    features: list[str]
    outputs: list[OutputDoc]
    event_timestamp: str | None = None
    prediction_source: SourceDoc | None = None
    dataset_store: SourceDoc | None = None
    acceptable_freshness: str | None = None
    unacceptable_freshness: str | None = None
    description: str | None = None
    tags: list[str] = Field(default_factory=list)


class SchemaDocument(BaseModel, frozen=True):
    """Root of a serialized schema."""

    name: str = "default"
    entities: list[EntityDoc] = Field(default_factory=list)
    views: list[ViewDoc] = Field(default_factory=list)
    contracts: list[ContractDoc] = Field(default_factory=list)


# =============================================================================
# Loading
# =============================================================================


def load_document(path: str | Path) -> SchemaDocument:
    """
    Read and validate a schema document.

    Args:
        path: YAML or JSON file

    Returns:
        Validated document

    Raises:
        DefinitionsLoadError: If the file is missing, unparsable or invalid
    """
    path = Path(path)
    if not path.exists():
        raise errors.DefinitionsLoadError(f"Schema document not found: {path}")

    try:
        loaded = OmegaConf.load(path)
    except Exception as e:
        raise errors.DefinitionsLoadError(
            f"Failed to parse {path}", hint="Check the YAML/JSON syntax.", cause=e
        ) from e

    if not isinstance(loaded, DictConfig):
        raise errors.DefinitionsLoadError(f"Expected a mapping at the top of {path}")

    return parse_document(OmegaConf.to_container(loaded, resolve=True), source=str(path))


def parse_document(data: T.Any, source: str = "<document>") -> SchemaDocument:
    """
    Validate a document given as a plain dictionary.

    Raises:
        DefinitionsLoadError: If the document does not match the schema
    """
    try:
        return SchemaDocument.model_validate(data)
    except ValidationError as e:
        error_lines = []
        for err in e.errors():
            loc = ".".join(str(x) for x in err["loc"])
            error_lines.append(f"  {loc}: {err['msg']}")
        raise errors.DefinitionsLoadError(
            f"Invalid schema document {source}:\n" + "\n".join(error_lines),
            hint="Compare the document against the output of dump_registry().",
        ) from e


def _constraint(doc: ConstraintDoc) -> constraints_.Constraint:
    try:
        return constraints_.Constraint.from_dict(doc.model_dump(exclude_none=True))
    except KeyError as e:
        raise errors.DefinitionsLoadError(f"Constraint '{doc.kind}' is missing {e}") from e


def _field(doc: FieldDoc) -> fields_.Field:
    try:
        dtype = types_.parse_type(doc.type) if doc.type else None
        expr = expressions.from_dict(doc.expression) if doc.expression is not None else None
    except (ValueError, KeyError) as e:
        raise errors.DefinitionsLoadError(f"Field '{doc.name}': invalid definition {e}") from e
    constraints = [_constraint(c) for c in doc.constraints]

    if expr is not None:
        return fields_.derived(
            expr,
            dtype=dtype,
            name=doc.name,
            required=doc.required,
            constraints=constraints,
            description=doc.description,
        )

    if dtype is None:
        raise errors.DefinitionsLoadError(f"Field '{doc.name}' needs a type or an expression")
    return fields_.Field(
        dtype,
        name=doc.name,
        required=doc.required,
        constraints=constraints,
        description=doc.description,
    )


def _source(doc: SourceDoc | None, retry: RetryConfig | None = None) -> sources.SourceAdapter | None:
    if doc is None or isinstance(doc, RandomSourceDoc):
        return None
    if doc.retry is None and retry is not None:
        doc = doc.model_copy(update={"retry": retry})
    return doc.create()


def _attach_random(node: SchemaNode, attribute: str, doc: SourceDoc | None) -> None:
    if isinstance(doc, RandomSourceDoc):
        setattr(node, attribute, doc.create_for(node))


def build_registry(document: SchemaDocument, retry: RetryConfig | None = None) -> SchemaRegistry:
    """
    Build a registry from a validated document.

    Args:
        document: Validated document
        retry: Retry settings for sources that do not declare their own

    Raises:
        DefinitionsLoadError: If a view names an undeclared entity
        DeclarationError: If the declared graph is invalid
    """
    entities = {e.name: Entity(name=e.name, dtype=e.type, description=e.description) for e in document.entities}
    view_entities: dict[str, Entity] = {}
    nodes: list[SchemaNode] = []

    def entity(name: str, owner: str) -> Entity:
        if name not in entities:
            raise errors.DefinitionsLoadError(
                f"'{owner}' uses undeclared entity '{name}'",
                hint=f"Declared entities: {', '.join(sorted(entities)) or '-'}",
            )
        return entities[name]

    for doc in document.views:
        view = FeatureView(
            name=doc.name,
            entity=entity(doc.entity, doc.name),
            fields=[_field(f) for f in doc.fields],
            event_timestamp=doc.event_timestamp,
            batch_source=_source(doc.batch_source, retry),
            materialized_source=_source(doc.materialized_source, retry),
            stream_source=_source(doc.stream_source, retry),
            acceptable_freshness=doc.acceptable_freshness,
            unacceptable_freshness=doc.unacceptable_freshness,
            description=doc.description,
            tags=doc.tags,
        )
        for attribute in ("batch_source", "materialized_source", "stream_source"):
            _attach_random(view, attribute, getattr(doc, attribute))
        view_entities[view.name] = view.entity
        nodes.append(view)

    for doc in document.contracts:
        if doc.entity is not None:
            contract_entity = entity(doc.entity, doc.name)
        else:
            owners = [ref.partition(":")[0] for ref in doc.features]
            known = [view_entities[o] for o in owners if o in view_entities]
            if not known:
                raise errors.DefinitionsLoadError(
                    f"Cannot infer the entity of contract '{doc.name}'",
                    hint="Set 'entity' on the contract.",
                )
            contract_entity = known[0]

        outputs = [
            contracts_.Output(
                field=_field(o.field),
                kind=o.kind,
                ground_truth=expressions.ref(o.ground_truth) if o.ground_truth else None,
            )
            for o in doc.outputs
        ]
        contract = contracts_.ModelContract(
            name=doc.name,
            features=doc.features,
            outputs=outputs,
            prediction_source=_source(doc.prediction_source, retry),
            dataset_store=_source(doc.dataset_store, retry),
            entity=contract_entity,
            event_timestamp=doc.event_timestamp,
            acceptable_freshness=doc.acceptable_freshness,
            unacceptable_freshness=doc.unacceptable_freshness,
            description=doc.description,
            tags=doc.tags,
        )
        _attach_random(contract, "prediction_source", doc.prediction_source)
        _attach_random(contract, "dataset_store", doc.dataset_store)
        nodes.append(contract)

    registry = SchemaRegistry(nodes=nodes, name=document.name)
    logger.debug(f"Built registry '{document.name}' from document with {len(nodes)} nodes")
    return registry


def load_registry(path: str | Path, retry: RetryConfig | None = None) -> SchemaRegistry:
    """
    Load a registry from a schema document file.

    Example:
        registry = ff.load_registry("schema.yaml")
    """
    return build_registry(load_document(path), retry=retry)


# =============================================================================
# Dumping
# =============================================================================


def dump_registry(registry: SchemaRegistry, path: str | Path | None = None) -> dict[str, T.Any]:
    """
    Serialize a registry to the document format.

    Args:
        registry: Registry to serialize
        path: Optional destination. ``.json`` files are written as JSON,
            anything else as YAML.

    Returns:
        The document as a dictionary
    """
    data: dict[str, T.Any] = {
        "name": registry.name,
        "entities": [e.to_dict() for e in registry.entities.values()],
        "views": [v.to_dict() for v in registry.list_views()],
        "contracts": [c.to_dict() for c in registry.list_contracts()],
    }

    if path is not None:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        if path.suffix == ".json":
            path.write_text(json.dumps(data, indent=2, default=str))
        else:
            OmegaConf.save(OmegaConf.create(data), path)
        logger.debug(f"Wrote schema document to {path}")

    return data
