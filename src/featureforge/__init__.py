"""
featureforge: A typed feature store.

Define entities, feature views, derived features and model contracts as
code, then resolve them against pluggable sources into point-in-time
correct datasets for training and inference.

Public API:
    Entity: Business object a view is keyed by
    Field: Typed field handle; operators build derived feature expressions
    feature_view: Class decorator declaring a feature view
    ModelContract: Inputs, predictions and labels of a model
    SchemaRegistry: Validated graph of views and contracts
    FeatureStore: Query surface for retrieval, labels, splits and writes
    n_examples: Schema-respecting synthetic rows
"""

from featureforge.constraints import accepted_values, lower_bound, upper_bound
from featureforge.contracts import (
    ModelContract,
    Output,
    classification_label,
    model_version,
    regression_label,
)
from featureforge.document import dump_registry, load_document, load_registry
from featureforge.engine import CancellationToken, PointInTimeJoinEngine, RequestOptions
from featureforge.entities import Entity
from featureforge.errors import (
    CancelledError,
    CyclicDependencyError,
    DeclarationError,
    DuplicateNameError,
    FeatureStoreError,
    InvalidTypeError,
    MissingSourceError,
    NotFoundError,
    SchemaMismatchError,
    SourceUnavailableError,
    StalenessError,
    StalenessWarning,
    UnknownReferenceError,
    UnsatisfiableRequestError,
    ValidationError,
)
from featureforge.expressions import ref
from featureforge.fields import EventTimestamp, Field, derived, one_hot
from featureforge.registry import SchemaRegistry
from featureforge.resolver import DependencyResolver, Plan, PlanStep
from featureforge.results import DatasetSplits, RetrievalResult
from featureforge.sources import (
    CsvSource,
    DuckDBSource,
    InMemorySource,
    ParquetSource,
    RandomDataSource,
    RetryingSource,
    SourceAdapter,
    file_source,
)
from featureforge.store import FeatureStore, RetrievalJob
from featureforge.synthetic import n_examples
from featureforge.types import (
    DataType,
    boolean,
    bytes_,
    float32,
    float64,
    int32,
    int64,
    json,
    optional,
    string,
    timestamp,
)
from featureforge.validation import ConstraintViolation, RequiredFieldViolation, ValidationReport
from featureforge.views import FeatureView, feature_view

__all__ = [
    "Entity",
    "Field",
    "EventTimestamp",
    "derived",
    "one_hot",
    "ref",
    "FeatureView",
    "feature_view",
    "ModelContract",
    "Output",
    "classification_label",
    "regression_label",
    "model_version",
    "SchemaRegistry",
    "DependencyResolver",
    "Plan",
    "PlanStep",
    "PointInTimeJoinEngine",
    "RequestOptions",
    "CancellationToken",
    "FeatureStore",
    "RetrievalJob",
    "RetrievalResult",
    "DatasetSplits",
    "ValidationReport",
    "RequiredFieldViolation",
    "ConstraintViolation",
    "lower_bound",
    "upper_bound",
    "accepted_values",
    "DataType",
    "int32",
    "int64",
    "float32",
    "float64",
    "boolean",
    "string",
    "timestamp",
    "bytes_",
    "json",
    "optional",
    "SourceAdapter",
    "InMemorySource",
    "ParquetSource",
    "CsvSource",
    "DuckDBSource",
    "RandomDataSource",
    "RetryingSource",
    "file_source",
    "n_examples",
    "load_document",
    "load_registry",
    "dump_registry",
    "FeatureStoreError",
    "DeclarationError",
    "DuplicateNameError",
    "InvalidTypeError",
    "UnknownReferenceError",
    "CyclicDependencyError",
    "NotFoundError",
    "UnsatisfiableRequestError",
    "MissingSourceError",
    "SourceUnavailableError",
    "CancelledError",
    "SchemaMismatchError",
    "ValidationError",
    "StalenessError",
    "StalenessWarning",
]
