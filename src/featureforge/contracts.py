"""
Model contracts.

A model contract binds an ordered list of input features to the output
fields a model produces, plus the sources where predictions and dataset
splits are persisted. The model itself is opaque: featureforge only
resolves the data going in and coming out.

Outputs are tagged with ``classification_label``, ``regression_label``
or ``model_version``. Label outputs name the feature view field acting as
their ground truth. Output fields are handles, so a downstream contract
can use them as inputs (chained models).

Example:
    quality_model = ff.ModelContract(
        name="wine_quality",
        features=[Wine.alcohol],
        outputs=[
            ff.classification_label(
                ff.Field(ff.int32, name="predicted_quality"),
                ground_truth=Wine.quality,
            ),
            ff.model_version(ff.Field(ff.string, name="model_version")),
        ],
        prediction_source=ff.InMemorySource(name="wine_predictions"),
    )
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import timedelta
from typing import Any

import featureforge.errors as errors
import featureforge.expressions as expressions
import featureforge.fields as fields_
from featureforge.entities import Entity
from featureforge.sources.base import SourceAdapter
from featureforge.views import SchemaNode

CLASSIFICATION_LABEL = "classification_label"
REGRESSION_LABEL = "regression_label"
MODEL_VERSION = "model_version"
PREDICTION = "prediction"

LABEL_KINDS = (CLASSIFICATION_LABEL, REGRESSION_LABEL)


@dataclass(eq=False)
class Output:
    """
    A tagged output field of a model contract.

    Attributes:
        field: The output field handle
        kind: classification_label, regression_label, model_version or prediction
        ground_truth: Reference to the feature view field holding the
            true value, for label outputs
    """

    field: fields_.Field
    kind: str = PREDICTION
    ground_truth: expressions.FieldRef | None = None

    @property
    def is_label(self) -> bool:
        return self.kind in LABEL_KINDS

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"kind": self.kind, "field": self.field.to_dict()}
        if self.ground_truth is not None:
            result["ground_truth"] = self.ground_truth.qualified_name
        return result


def _as_ref(value: fields_.Field | expressions.FieldRef | str) -> expressions.FieldRef:
    if isinstance(value, str):
        return expressions.ref(value)
    if isinstance(value, expressions.FieldRef):
        return value
    if isinstance(value, fields_.Field):
        return expressions.FieldRef(field=value)
    raise TypeError(f"Expected a field handle or 'view:field' string, got {type(value).__name__}")


def classification_label(
    field: fields_.Field,
    ground_truth: fields_.Field | str,
) -> Output:
    """
    Tag an output as a predicted class.

    Args:
        field: Output field, typically the same type as the ground truth
        ground_truth: Feature view field with the true class

    Returns:
        Tagged output
    """
    return Output(field=field, kind=CLASSIFICATION_LABEL, ground_truth=_as_ref(ground_truth))


def regression_label(
    field: fields_.Field,
    ground_truth: fields_.Field | str,
) -> Output:
    """
    Tag an output as a predicted numeric value.

    Args:
        field: Numeric output field
        ground_truth: Numeric feature view field with the true value

    Returns:
        Tagged output
    """
    if not field.dtype.is_numeric:
        raise errors.InvalidTypeError(
            f"Regression output '{field.name}' must be numeric, got {field.dtype}",
            field=field.name,
        )
    return Output(field=field, kind=REGRESSION_LABEL, ground_truth=_as_ref(ground_truth))


def model_version(field: fields_.Field) -> Output:
    """Tag an output as the version of the model that produced a prediction."""
    return Output(field=field, kind=MODEL_VERSION)


class ModelContract(SchemaNode):
    """
    Metadata binding input features to prediction and label fields.

    Attributes:
        name: Contract identifier
        inputs: References to the input features, in request order
        outputs: Tagged output fields, owned by this contract
        prediction_source: Where predictions are persisted
        dataset_store: Where train/test/validation splits are persisted
    """

    kind = "contract"

    def __init__(
        self,
        name: str,
        features: Sequence[fields_.Field | str],
        outputs: Sequence[Output | fields_.Field],
        prediction_source: SourceAdapter | None = None,
        dataset_store: SourceAdapter | None = None,
        entity: Entity | None = None,
        event_timestamp: fields_.Field | str | None = None,
        acceptable_freshness: timedelta | str | None = None,
        unacceptable_freshness: timedelta | str | None = None,
        description: str | None = None,
        tags: Sequence[str] | None = None,
    ) -> None:
        if not features:
            raise errors.DeclarationError(f"Contract '{name}' needs at least one input feature")
        if not outputs:
            raise errors.DeclarationError(f"Contract '{name}' needs at least one output field")

        self.inputs = [_as_ref(f) for f in features]
        self.outputs = [o if isinstance(o, Output) else Output(field=o) for o in outputs]

        if entity is None:
            entity = self._infer_entity(name)

        super().__init__(
            name=name,
            entity=entity,
            fields=[o.field for o in self.outputs],
            event_timestamp=event_timestamp,
            acceptable_freshness=acceptable_freshness,
            unacceptable_freshness=unacceptable_freshness,
            description=description,
            tags=tags,
        )
        self.prediction_source = prediction_source
        self.dataset_store = dataset_store

    def _infer_entity(self, name: str) -> Entity:
        for ref in self.inputs:
            owner = ref.field.owner if ref.field is not None else None
            if owner is not None:
                return owner.entity
        raise errors.DeclarationError(
            f"Cannot infer the entity of contract '{name}'",
            hint="Pass entity= when every input is a string reference.",
        )

    @property
    def features(self) -> list[fields_.Field]:
        """Bound input field handles. Available once the registry has bound references."""
        unbound = [r.qualified_name for r in self.inputs if r.field is None]
        if unbound:
            raise errors.FeatureStoreError(
                f"Contract '{self.name}' has unbound inputs: {unbound}",
                hint="Register the contract in a SchemaRegistry first.",
            )
        return [r.field for r in self.inputs]  # type: ignore[misc]

    @property
    def labels(self) -> list[Output]:
        return [o for o in self.outputs if o.is_label]

    def output(self, name: str) -> Output:
        for o in self.outputs:
            if o.field.name == name:
                return o
        raise errors.NotFoundError(
            "output", f"{self.name}.{name}", available=[o.field.name or "" for o in self.outputs]
        )

    def check_labels(self) -> None:
        """
        Check label outputs against their ground truth types.

        Raises:
            InvalidTypeError: If a label and its ground truth disagree
        """
        for o in self.labels:
            assert o.ground_truth is not None and o.ground_truth.field is not None
            truth = o.ground_truth.field.dtype
            out = o.field.dtype
            if o.kind == REGRESSION_LABEL and not truth.is_numeric:
                raise errors.InvalidTypeError(
                    f"Regression label '{self.name}.{o.field.name}' has non-numeric "
                    f"ground truth '{o.ground_truth.qualified_name}' ({truth})",
                    field=o.field.name,
                )
            if o.kind == CLASSIFICATION_LABEL and not (
                truth.kind == out.kind or truth.can_widen_to(out) or out.can_widen_to(truth)
            ):
                raise errors.InvalidTypeError(
                    f"Classification label '{self.name}.{o.field.name}' is {out} but its "
                    f"ground truth '{o.ground_truth.qualified_name}' is {truth}",
                    field=o.field.name,
                )

    def sources(self) -> dict[str, SourceAdapter | None]:
        return {
            "prediction_source": self.prediction_source,
            "dataset_store": self.dataset_store,
        }

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "name": self.name,
            "entity": self.entity.name,
            "features": [r.qualified_name for r in self.inputs],
            "outputs": [o.to_dict() for o in self.outputs],
        }
        if self.event_timestamp is not None:
            result["event_timestamp"] = self.event_timestamp.name
        for key, source in self.sources().items():
            if source is not None:
                result[key] = source.to_dict()
        result.update(self._freshness_dict())
        if self.description:
            result["description"] = self.description
        if self.tags:
            result["tags"] = self.tags
        return result


