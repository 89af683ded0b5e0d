"""Metric specifications and the functions that fetch values from raw groups."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Callable

from k8smetrics.integration import SourceType

RawValue = Any
RawMetrics = dict[str, Any]
RawGroups = dict[str, dict[str, RawMetrics]]
"""Raw metrics indexed by entity type, then entity name, then metric name."""

FetchedValue = Any
FetchFunc = Callable[[str, str, RawGroups], Any]
TransformFunc = Callable[[Any], Any]
EntityIDGeneratorFunc = Callable[[str, str, RawGroups], str]
EntityTypeGeneratorFunc = Callable[[str, str, RawGroups, str], str]


class FetchError(LookupError):
    """A value could not be fetched from the raw groups."""

    def __str__(self) -> str:
        return str(self.args[0]) if self.args else ""


class FetchedValues(dict):
    """Several named values fetched at once; each becomes its own metric."""


@dataclass
class Spec:
    """Specification of a single metric."""

    name: str
    value_func: FetchFunc
    source_type: SourceType
    optional: bool = False


@dataclass
class SpecGroup:
    """A set of metric specs that share entity ID and type generation."""

    specs: list[Spec] = field(default_factory=list)
    id_generator: EntityIDGeneratorFunc | None = None
    type_generator: EntityTypeGeneratorFunc | None = None


SpecGroups = dict[str, SpecGroup]


def _quote(text: str) -> str:
    return json.dumps(text, ensure_ascii=False)


def from_raw(metric_key: str) -> FetchFunc:
    """Return a fetch function that reads ``metric_key`` straight from the raw groups."""

    def fetch(group_label: str, entity_id: str, groups: RawGroups) -> FetchedValue:
        try:
            group = groups[group_label]
        except KeyError:
            raise FetchError(f"group {_quote(group_label)} not found") from None
        try:
            entity = group[entity_id]
        except KeyError:
            raise FetchError(f"entity {_quote(entity_id)} not found") from None
        try:
            return entity[metric_key]
        except KeyError:
            raise FetchError(f"metric {_quote(metric_key)} not found") from None

    return fetch


def transform(fetch_func: FetchFunc, transform_func: TransformFunc) -> FetchFunc:
    """Return a fetch function applying ``transform_func`` to what ``fetch_func`` fetches."""

    def fetch(group_label: str, entity_id: str, groups: RawGroups) -> FetchedValue:
        return transform_func(fetch_func(group_label, entity_id, groups))

    return fetch