"""Entities, metric sets and inventory that make up an integration's payload."""

from __future__ import annotations

import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping


class IntegrationError(Exception):
    """Raised when an entity or metric cannot be defined."""


class SourceType(Enum):
    """How a metric value is interpreted."""

    GAUGE = "gauge"
    RATE = "rate"
    DELTA = "delta"
    ATTRIBUTE = "attribute"


def _to_float(name: str, value: Any) -> float:
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    if isinstance(value, (int, float)):
        return float(value)
    raise IntegrationError(f"non-numeric value {value!r} for metric {name!r}")


class MetricSet:
    """A sample of metrics of one event type."""

    def __init__(
        self,
        event_type: str,
        attributes: Mapping[str, str] | None = None,
        history: dict[tuple, tuple[float, float]] | None = None,
    ) -> None:
        self.metrics: dict[str, Any] = {"event_type": event_type}
        self._history = history if history is not None else {}
        for name, value in (attributes or {}).items():
            self.set_metric(name, value, SourceType.ATTRIBUTE)

    def _difference(self, name: str, value: float, source_type: SourceType) -> float:
        key = (
            self.metrics["event_type"],
            tuple(sorted((k, v) for k, v in self.metrics.items() if isinstance(v, str))),
            name,
        )
        now = time.time()
        previous = self._history.get(key)
        self._history[key] = (value, now)
        if previous is None:
            return 0.0
        old_value, old_time = previous
        difference = value - old_value
        if difference < 0:
            raise IntegrationError(f"source was reset for metric {name!r}")
        if source_type is SourceType.DELTA:
            return difference
        elapsed = now - old_time
        return difference / elapsed if elapsed > 0 else 0.0

    def set_metric(self, name: str, value: Any, source_type: SourceType) -> None:
        """Set a metric, converting its value according to ``source_type``."""
        if source_type is SourceType.ATTRIBUTE:
            if not isinstance(value, str):
                raise IntegrationError("non-string source type for attribute")
            self.metrics[name] = value
        elif source_type is SourceType.GAUGE:
            self.metrics[name] = _to_float(name, value)
        elif source_type in (SourceType.RATE, SourceType.DELTA):
            self.metrics[name] = self._difference(name, _to_float(name, value), source_type)
        else:
            raise IntegrationError(f"unknown source type {source_type!r}")

    def __repr__(self) -> str:
        return f"MetricSet({self.metrics!r})"


class Inventory:
    """Inventory items of an entity, indexed by key and field."""

    def __init__(self) -> None:
        self.items: dict[str, dict[str, Any]] = {}

    def set_item(self, key: str, field: str, value: Any) -> None:
        """Store ``value`` under ``key`` and ``field``."""
        self.items.setdefault(key, {})[field] = value


@dataclass(frozen=True)
class EntityMetadata:
    """Identity of an entity."""

    name: str
    namespace: str


class Entity:
    """A monitored entity with its metric sets and inventory."""

    def __init__(self, name: str, entity_type: str, history: dict | None = None) -> None:
        self.metadata = EntityMetadata(name=name, namespace=entity_type)
        self.metrics: list[MetricSet] = []
        self.inventory = Inventory()
        self._custom_attributes: dict[str, str] = {}
        self._history = history if history is not None else {}

    def new_metric_set(self, event_type: str) -> MetricSet:
        """Create and attach a metric set carrying the entity's attributes."""
        metric_set = MetricSet(event_type, self._custom_attributes, self._history)
        self.metrics.append(metric_set)
        return metric_set

    def add_attributes(self, attributes: Mapping[str, str]) -> None:
        """Add attributes that every metric set created afterwards will carry."""
        self._custom_attributes.update(attributes)

    def __repr__(self) -> str:
        return f"Entity({self.metadata.name!r}, {self.metadata.namespace!r})"


class Integration:
    """A named collection of entities."""

    def __init__(self, name: str, version: str) -> None:
        self.name = name
        self.version = version
        self.entities: list[Entity] = []
        self._history: dict = {}

    def entity(self, name: str, entity_type: str) -> Entity:
        """Return the entity with this name and type, creating it if needed."""
        if not name or not entity_type:
            raise IntegrationError("entity name and type are required when defining one")
        for existing in self.entities:
            if existing.metadata == EntityMetadata(name, entity_type):
                return existing
        created = Entity(name, entity_type, self._history)
        self.entities.append(created)
        return created

    def clear(self) -> None:
        """Remove all entities."""
        self.entities = []