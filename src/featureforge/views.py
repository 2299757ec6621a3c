"""
Feature view definitions.

A feature view is a typed, sourced collection of fields keyed by one
entity. Views are declared either with the ``FeatureView`` constructor or
with the ``@feature_view`` class decorator, which collects the Field
attributes of the class in declaration order.

Example:
    wine_id = ff.Entity(name="wine_id", dtype=ff.int64)

    @ff.feature_view(name="wine", entity=wine_id, batch_source=ff.CsvSource("wine.csv"))
    class Wine:
        alcohol = ff.Field(ff.float64, constraints=[ff.lower_bound(0), ff.upper_bound(20)])
        quality = ff.Field(ff.int32, constraints=[ff.lower_bound(0), ff.upper_bound(10)])
        is_strong = ff.derived(alcohol > 12)

    Wine.alcohol  # field handle
"""

from __future__ import annotations

from collections.abc import Callable, Iterator, Sequence
from datetime import timedelta
from typing import Any

from loguru import logger

import featureforge.durations as durations
import featureforge.errors as errors
import featureforge.fields as fields_
import featureforge.types as types_
from featureforge.entities import Entity
from featureforge.sources.base import SourceAdapter


class SchemaNode:
    """
    Shared structure of feature views and model contracts.

    A node owns an entity key field, at most one event timestamp field,
    and an ordered set of other fields, all bound to the node's name.
    """

    kind = "node"

    def __init__(
        self,
        name: str,
        entity: Entity,
        fields: Sequence[fields_.Field] = (),
        event_timestamp: fields_.Field | str | None = None,
        acceptable_freshness: timedelta | str | None = None,
        unacceptable_freshness: timedelta | str | None = None,
        description: str | None = None,
        tags: Sequence[str] | None = None,
    ) -> None:
        if not name:
            raise errors.DeclarationError(f"{self.kind.title()} name cannot be empty")

        self.name = name
        self.entity = entity
        self.description = description
        self.tags = list(tags) if tags else []
        self.acceptable_freshness = durations.to_timedelta(acceptable_freshness)
        self.unacceptable_freshness = durations.to_timedelta(unacceptable_freshness)
        self._fields: dict[str, fields_.Field] = {}
        self.event_timestamp: fields_.Field | None = None

        if (
            self.acceptable_freshness is not None
            and self.unacceptable_freshness is not None
            and self.acceptable_freshness >= self.unacceptable_freshness
        ):
            raise errors.DeclarationError(
                f"{self.kind.title()} '{name}': acceptable_freshness "
                f"({self.acceptable_freshness}) must be less than "
                f"unacceptable_freshness ({self.unacceptable_freshness})"
            )

        self.entity_key = fields_.EntityKey(dtype=entity.dtype, name=entity.key)
        self._add(self.entity_key)

        timestamps = [f for f in fields if isinstance(f, fields_.EventTimestamp)]
        if event_timestamp is not None:
            if isinstance(event_timestamp, str):
                event_timestamp = fields_.EventTimestamp(name=event_timestamp)
            timestamps.insert(0, event_timestamp)

        distinct = list({id(f): f for f in timestamps}.values())
        if len(distinct) > 1:
            names = [f.name for f in distinct]
            raise errors.DeclarationError(
                f"{self.kind.title()} '{name}' declares more than one event timestamp: {names}"
            )

        if distinct:
            ts = distinct[0]
            if ts.dtype.kind != types_.TypeKind.TIMESTAMP:
                raise errors.InvalidTypeError(
                    f"Event timestamp '{ts.name}' of '{name}' must be a timestamp, got {ts.dtype}",
                    field=ts.name,
                )
            self.event_timestamp = ts
            self._add(ts)

        for field in fields:
            if field is self.event_timestamp:
                continue
            self._add(field)

    def _add(self, field: fields_.Field) -> None:
        if field.name is None:
            raise errors.DeclarationError(f"Unnamed field in '{self.name}'")
        if field.name in self._fields:
            raise errors.DuplicateNameError("field", f"{self.name}.{field.name}")
        field.bind(self.name)
        field.owner = self
        self._fields[field.name] = field

    def __getattr__(self, name: str) -> fields_.Field:
        fields = self.__dict__.get("_fields")
        if fields is not None and name in fields:
            return fields[name]
        raise AttributeError(f"'{type(self).__name__}' object has no attribute '{name}'")

    def __getitem__(self, name: str) -> fields_.Field:
        return self.field(name)

    def __iter__(self) -> Iterator[fields_.Field]:
        return iter(self._fields.values())

    @property
    def fields(self) -> dict[str, fields_.Field]:
        """All fields in declaration order, entity key first."""
        return dict(self._fields)

    def field(self, name: str) -> fields_.Field:
        """
        Get a field by name.

        Raises:
            NotFoundError: If the node has no such field
        """
        if name not in self._fields:
            raise errors.NotFoundError("field", f"{self.name}.{name}", available=list(self._fields))
        return self._fields[name]

    @property
    def feature_fields(self) -> list[fields_.Field]:
        """Fields other than the entity key and event timestamp."""
        return [
            f for f in self._fields.values()
            if f is not self.entity_key and f is not self.event_timestamp
        ]

    @property
    def raw_fields(self) -> list[fields_.Field]:
        return [f for f in self.feature_fields if not f.is_derived]

    @property
    def derived_fields(self) -> list[fields_.Field]:
        return [f for f in self.feature_fields if f.is_derived]

    @property
    def timestamp_column(self) -> str | None:
        return self.event_timestamp.name if self.event_timestamp is not None else None

    def sources(self) -> dict[str, SourceAdapter | None]:
        raise NotImplementedError

    def _freshness_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {}
        if self.acceptable_freshness is not None:
            result["acceptable_freshness"] = durations.format_duration(self.acceptable_freshness)
        if self.unacceptable_freshness is not None:
            result["unacceptable_freshness"] = durations.format_duration(self.unacceptable_freshness)
        return result

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.name!r}, fields={list(self._fields)})"


class FeatureView(SchemaNode):
    """
    A named collection of fields keyed by one entity.

    Attributes:
        name: View identifier
        entity: Entity the rows are keyed by
        event_timestamp: Point-in-time anchor field, if any
        batch_source: Historical source of truth
        materialized_source: Optional cache of batch_source
        stream_source: Optional low-latency source for online reads
        acceptable_freshness: Age above which reads warn
        unacceptable_freshness: Age above which reads fail
    """

    kind = "view"

    def __init__(
        self,
        name: str,
        entity: Entity,
        fields: Sequence[fields_.Field] = (),
        event_timestamp: fields_.Field | str | None = None,
        batch_source: SourceAdapter | None = None,
        materialized_source: SourceAdapter | None = None,
        stream_source: SourceAdapter | None = None,
        acceptable_freshness: timedelta | str | None = None,
        unacceptable_freshness: timedelta | str | None = None,
        description: str | None = None,
        tags: Sequence[str] | None = None,
    ) -> None:
        super().__init__(
            name=name,
            entity=entity,
            fields=fields,
            event_timestamp=event_timestamp,
            acceptable_freshness=acceptable_freshness,
            unacceptable_freshness=unacceptable_freshness,
            description=description,
            tags=tags,
        )
        self.batch_source = batch_source
        self.materialized_source = materialized_source
        self.stream_source = stream_source

    def sources(self) -> dict[str, SourceAdapter | None]:
        return {
            "batch_source": self.batch_source,
            "materialized_source": self.materialized_source,
            "stream_source": self.stream_source,
        }

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "name": self.name,
            "entity": self.entity.name,
            "fields": [f.to_dict() for f in self.feature_fields],
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


def _collect_fields(namespace: dict[str, Any]) -> list[fields_.Field]:
    collected: list[fields_.Field] = []
    for attr, value in namespace.items():
        if attr.startswith("__"):
            continue
        if isinstance(value, fields_.Field):
            collected.append(value)
        elif isinstance(value, (list, tuple)) and value and all(
            isinstance(item, fields_.Field) for item in value
        ):
            collected.extend(value)
    return collected


def feature_view(
    name: str | None = None,
    entity: Entity | None = None,
    batch_source: SourceAdapter | None = None,
    materialized_source: SourceAdapter | None = None,
    stream_source: SourceAdapter | None = None,
    acceptable_freshness: timedelta | str | None = None,
    unacceptable_freshness: timedelta | str | None = None,
    description: str | None = None,
    tags: Sequence[str] | None = None,
) -> Callable[[type], FeatureView]:
    """
    Class decorator that turns a class of Field attributes into a FeatureView.

    Args:
        name: View name. Defaults to the class name in snake case.
        entity: Entity the rows are keyed by
        batch_source: Historical source of truth
        materialized_source: Optional cache of batch_source
        stream_source: Optional low-latency source
        acceptable_freshness: Age above which reads warn
        unacceptable_freshness: Age above which reads fail
        description: Defaults to the class docstring
        tags: Grouping tags

    Returns:
        Decorator producing a FeatureView

    Example:
        @ff.feature_view(name="taxi_departures", entity=trip, batch_source=departures)
        class Departures:
            pickup_at = ff.EventTimestamp()
            latitude = ff.Field(ff.float64)
            longitude = ff.Field(ff.float64)
    """
    if entity is None:
        raise errors.DeclarationError("feature_view requires an entity")

    def decorator(cls: type) -> FeatureView:
        view_name = name or _snake_case(cls.__name__)
        collected = _collect_fields(dict(vars(cls)))
        if not collected:
            logger.warning(f"No fields found in feature view class: {cls.__name__}")

        logger.debug(f"Declared feature view '{view_name}' with {len(collected)} fields")
        return FeatureView(
            name=view_name,
            entity=entity,
            fields=collected,
            batch_source=batch_source,
            materialized_source=materialized_source,
            stream_source=stream_source,
            acceptable_freshness=acceptable_freshness,
            unacceptable_freshness=unacceptable_freshness,
            description=description or (cls.__doc__.strip() if cls.__doc__ else None),
            tags=tags,
        )

    return decorator


def _snake_case(value: str) -> str:
    chars: list[str] = []
    for index, char in enumerate(value):
        if char.isupper() and index > 0 and not value[index - 1].isupper():
            chars.append("_")
        chars.append(char.lower())
    return "".join(chars)
