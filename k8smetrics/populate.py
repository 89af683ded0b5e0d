"""Populating an integration from raw grouped data and metric specifications."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Callable

from k8smetrics.definition import FetchedValues, RawGroups, SpecGroups
from k8smetrics.integration import Integration, IntegrationError, MetricSet, SourceType

GuessFunc = Callable[[str, str, str, RawGroups], str]
"""Guesses a metric set type from cluster name, group label, entity ID and groups."""


@dataclass
class IntegrationPopulateConfig:
    """Everything needed to populate an integration."""

    integration: Integration
    cluster_name: str
    k8s_version: Any
    ms_type_guesser: GuessFunc
    groups: RawGroups
    specs: SpecGroups


def _populate_cluster(integration: Integration, cluster_name: str, k8s_version: Any) -> None:
    entity = integration.entity(cluster_name, "k8s:cluster")
    metric_set = entity.new_metric_set("K8sClusterSample")
    entity.inventory.set_item("cluster", "name", cluster_name)
    metric_set.set_metric("clusterName", cluster_name, SourceType.ATTRIBUTE)
    version = str(k8s_version)
    entity.inventory.set_item("cluster", "k8sVersion", version)
    metric_set.set_metric("clusterK8sVersion", version, SourceType.ATTRIBUTE)


def _populate_metric_set(
    metric_set: MetricSet,
    group_label: str,
    entity_id: str,
    groups: RawGroups,
    specs: SpecGroups,
) -> tuple[bool, list[Exception]]:
    populated = False
    errors: list[Exception] = []
    for spec in specs[group_label].specs:
        try:
            value = spec.value_func(group_label, entity_id, groups)
        except Exception as err:
            if not spec.optional:
                errors.append(
                    IntegrationError(f"cannot fetch value for metric {json.dumps(spec.name)}: {err}")
                )
            continue

        values = value.items() if isinstance(value, FetchedValues) else [(spec.name, value)]
        for name, item in values:
            try:
                metric_set.set_metric(name, item, spec.source_type)
            except IntegrationError as err:
                if not spec.optional:
                    errors.append(
                        IntegrationError(f"cannot set metric {name} with value {item} in metric set, {err}")
                    )
                continue
            populated = True
    return populated, errors


def integration_populator(config: IntegrationPopulateConfig) -> tuple[bool, list[Exception]]:
    """Populate the integration; return whether any metric was set and the errors met."""
    populated = False
    errors: list[Exception] = []
    entity_type = ""
    for group_label, entities in config.groups.items():
        spec_group = config.specs.get(group_label)
        if spec_group is None:
            continue
        for entity_id in entities:
            ms_entity_id = entity_id
            if spec_group.id_generator is not None:
                try:
                    ms_entity_id = spec_group.id_generator(group_label, entity_id, config.groups)
                except Exception as err:
                    errors.append(IntegrationError(f"error generating entity ID for {entity_id}: {err}"))
                    continue

            if spec_group.type_generator is not None:
                try:
                    entity_type = spec_group.type_generator(
                        group_label, entity_id, config.groups, config.cluster_name
                    )
                except Exception as err:
                    errors.append(IntegrationError(f"error generating entity type for {entity_id}: {err}"))
                    continue

            try:
                entity = config.integration.entity(ms_entity_id, entity_type)
            except IntegrationError as err:
                errors.append(err)
                continue

            entity.add_attributes(
                {"clusterName": config.cluster_name, "displayName": entity.metadata.name}
            )

            try:
                ms_type = config.ms_type_guesser(config.cluster_name, group_label, entity_id, config.groups)
            except Exception as err:
                errors.append(err)
                continue

            metric_set = entity.new_metric_set(ms_type)
            was_populated, populate_errors = _populate_metric_set(
                metric_set, group_label, entity_id, config.groups, config.specs
            )
            errors.extend(
                IntegrationError(f"error populating metric for entity ID {entity_id}: {err}")
                for err in populate_errors
            )
            populated = populated or was_populated

    if populated:
        try:
            _populate_cluster(config.integration, config.cluster_name, config.k8s_version)
        except IntegrationError as err:
            errors.append(err)
    return populated, errors