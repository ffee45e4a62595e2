"""Reference rewriting.

Resource bodies carry ``{{ref:<logicalId>:<attribute>}}`` placeholders. Once
units are known, each placeholder becomes an ARM template expression:

- producer in the same unit: a scope-native resource function such as
  ``resourceId(...)`` or ``reference(...)``,
- producer in another unit: ``parameters('<name>')``, where the producer unit
  declares an output of that name and the deployment manifest binds the
  output to the consumer's parameter.

A placeholder filling a whole string becomes ``[expr]``; placeholders embedded
in text become ``[concat('...', expr, '...')]``.
"""

import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Set, Tuple

from .collector import ResourceDescriptor
from .exceptions import InternalInvariantError
from .partitioner import TemplateUnit
from .references import REFERENCE_PATTERN
from .scope import DeploymentScope, ScopeKey
from .utils import thaw_json

logger = logging.getLogger(__name__)

DEPLOYMENTS_TYPE = "Microsoft.Resources/deployments"
DEPLOYMENTS_API_VERSION = "2022-09-01"
MANAGEMENT_GROUPS_TYPE = "Microsoft.Management/managementGroups"

_UNSAFE_OUTPUT_CHARS = re.compile(r"[^A-Za-z0-9_]")


@dataclass(frozen=True)
class CrossUnitReference:
    """A reference whose producer and consumer live in different units."""

    producer_logical_id: str
    consumer_logical_id: str
    attribute: str
    producer_unit: str
    consumer_unit: str
    output_name: str
    crosses_scope: bool
    binding: str
    """Expression reading the producer output, relative to the consumer's scope"""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "producer": self.producer_logical_id,
            "consumer": self.consumer_logical_id,
            "attribute": self.attribute,
            "fromUnit": self.producer_unit,
            "output": self.output_name,
            "crossesScope": self.crosses_scope,
            "binding": self.binding,
        }


def quote(value: str) -> str:
    """Quote a literal for use inside an ARM expression."""
    return "'" + value.replace("'", "''") + "'"


def output_name(logical_id: str, attribute: str) -> str:
    """Base name of the output carrying ``attribute`` of ``logical_id``.

    Different ids can share a base name ('my-store' and 'my_store');
    ``OutputNames`` makes them unique within one synthesis.
    """
    return _UNSAFE_OUTPUT_CHARS.sub("_", f"{logical_id}_{attribute}")


class OutputNames:
    """Assigns each (logical id, attribute) one output name, unique per synthesis.

    The first claimant of a base name keeps it; later claimants get a
    numeric suffix in the order they are first linked.
    """

    def __init__(self) -> None:
        self._names: Dict[Tuple[str, str], str] = {}
        self._taken: Set[str] = set()

    def name_for(self, logical_id: str, attribute: str) -> str:
        key = (logical_id, attribute)
        name = self._names.get(key)
        if name is not None:
            return name
        base = output_name(logical_id, attribute)
        name, suffix = base, 2
        while name in self._taken:
            name = f"{base}_{suffix}"
            suffix += 1
        self._names[key] = name
        self._taken.add(name)
        return name


def resource_id_expression(descriptor: ResourceDescriptor) -> str:
    """Scope-native resource id of ``descriptor`` inside its own deployment."""
    return _scoped_id(
        descriptor.deployment_scope, descriptor.provider_type, descriptor.declared_name.split("/")
    )


def _scoped_id(scope: DeploymentScope, provider_type: str, name_segments: Sequence[str]) -> str:
    arguments = ", ".join([quote(provider_type)] + [quote(s) for s in name_segments])
    if scope is DeploymentScope.RESOURCE_GROUP:
        return f"resourceId({arguments})"
    if scope is DeploymentScope.SUBSCRIPTION:
        return f"subscriptionResourceId({arguments})"
    if scope is DeploymentScope.MANAGEMENT_GROUP:
        return f"extensionResourceId(managementGroup().id, {arguments})"
    return f"tenantResourceId({arguments})"


def attribute_expression(descriptor: ResourceDescriptor, attribute: str) -> str:
    """Expression for ``attribute`` of a resource deployed in the same template."""
    if attribute == "name":
        return quote(descriptor.declared_name)
    resource_id = resource_id_expression(descriptor)
    if attribute == "id":
        return resource_id
    api_version = quote(descriptor.api_version)
    if attribute == "properties":
        return f"reference({resource_id}, {api_version})"
    if attribute.startswith("properties."):
        return f"reference({resource_id}, {api_version}).{attribute[len('properties.'):]}"
    return f"reference({resource_id}, {api_version}, 'Full').{attribute}"


def deployment_id_expression(unit_name: str, target: ScopeKey, relative_to: ScopeKey) -> str:
    """Id of the deployment of ``unit_name`` at ``target``, seen from ``relative_to``.

    Deployments at the caller's own scope use the scope-native function;
    anything else is fully qualified with subscription, resource group or
    management group.
    """
    if target == relative_to:
        return _scoped_id(target.scope, DEPLOYMENTS_TYPE, [unit_name])

    deployment = f"{quote(DEPLOYMENTS_TYPE)}, {quote(unit_name)}"
    if target.scope is DeploymentScope.RESOURCE_GROUP:
        return (
            f"resourceId({quote(target.subscription_id or '')}, "
            f"{quote(target.resource_group or '')}, {deployment})"
        )
    if target.scope is DeploymentScope.SUBSCRIPTION:
        return f"subscriptionResourceId({quote(target.subscription_id or '')}, {deployment})"
    if target.scope is DeploymentScope.MANAGEMENT_GROUP:
        group = f"tenantResourceId({quote(MANAGEMENT_GROUPS_TYPE)}, {quote(target.management_group_id or '')})"
        return f"extensionResourceId({group}, {deployment})"
    return f"tenantResourceId({deployment})"


def output_binding(unit_name: str, target: ScopeKey, relative_to: ScopeKey, name: str) -> str:
    deployment_id = deployment_id_expression(unit_name, target, relative_to)
    return f"reference({deployment_id}, {quote(DEPLOYMENTS_API_VERSION)}).outputs.{name}.value"


def rewrite_string(value: str, resolve: Callable[[str, str], str]) -> str:
    """Replace every placeholder in ``value`` with the expression ``resolve`` returns."""
    matches = list(REFERENCE_PATTERN.finditer(value))
    if not matches:
        return value
    if len(matches) == 1 and matches[0].span() == (0, len(value)):
        match = matches[0]
        return f"[{resolve(match.group('logical_id'), match.group('attribute'))}]"

    parts: List[str] = []
    cursor = 0
    for match in matches:
        if match.start() > cursor:
            parts.append(quote(value[cursor:match.start()]))
        parts.append(resolve(match.group("logical_id"), match.group("attribute")))
        cursor = match.end()
    if cursor < len(value):
        parts.append(quote(value[cursor:]))
    return f"[concat({', '.join(parts)})]"


def rewrite_value(value: Any, resolve: Callable[[str, str], str]) -> Any:
    """Rewrite placeholders anywhere inside a mutable JSON value."""
    if isinstance(value, str):
        return rewrite_string(value, resolve)
    if isinstance(value, dict):
        return {key: rewrite_value(item, resolve) for key, item in value.items()}
    if isinstance(value, list):
        return [rewrite_value(item, resolve) for item in value]
    return value


class ReferenceRewriter:
    """Rewrites placeholders and wires outputs and parameters between units."""

    def rewrite(
        self,
        units: Sequence[TemplateUnit],
        descriptors_by_id: Mapping[str, ResourceDescriptor],
    ) -> List[CrossUnitReference]:
        """Fill in ``bodies``, ``parameters`` and ``outputs`` of every unit.

        Returns:
            All cross-unit references, in consumer order

        Raises:
            InternalInvariantError: If a placeholder names an unknown producer,
                or a producer lands in a later unit than its consumer
        """
        unit_of: Dict[str, TemplateUnit] = {}
        position: Dict[str, int] = {}
        for index, unit in enumerate(units):
            position[unit.name] = index
            for logical_id in unit.logical_ids:
                unit_of[logical_id] = unit

        names = OutputNames()
        references: List[CrossUnitReference] = []
        for unit in units:
            unit.bodies = []
            unit.parameters, unit.outputs = {}, {}
            unit.inbound, unit.outbound = [], []
            seen: Set[Tuple[str, str]] = set()
            for descriptor in unit.resources:
                resolve = self._resolver(
                    descriptor, unit, unit_of, position, descriptors_by_id, names, seen, references
                )
                body = rewrite_value(thaw_json(descriptor.serialized_body), resolve)
                depends_on = self._intra_unit_dependencies(descriptor, unit, unit_of, descriptors_by_id)
                if depends_on:
                    existing = list(body.get("dependsOn", []))
                    body["dependsOn"] = existing + [d for d in depends_on if d not in existing]
                unit.bodies.append(body)

        for unit in units:
            unit.depends_on.sort(key=lambda name: position[name])
        logger.info(f"Rewrote {len(references)} cross-unit references")
        return references

    def _resolver(
        self,
        consumer: ResourceDescriptor,
        unit: TemplateUnit,
        unit_of: Mapping[str, TemplateUnit],
        position: Mapping[str, int],
        descriptors_by_id: Mapping[str, ResourceDescriptor],
        names: OutputNames,
        seen: Set[Tuple[str, str]],
        references: List[CrossUnitReference],
    ) -> Callable[[str, str], str]:
        def resolve(logical_id: str, attribute: str) -> str:
            producer = descriptors_by_id.get(logical_id)
            producer_unit = unit_of.get(logical_id)
            if producer is None or producer_unit is None:
                raise InternalInvariantError(
                    f"{consumer.logical_id} references unknown resource '{logical_id}'",
                    context={"consumer": consumer.logical_id, "producer": logical_id},
                )
            if producer_unit is unit:
                return attribute_expression(producer, attribute)
            if position[producer_unit.name] > position[unit.name]:
                raise InternalInvariantError(
                    f"{consumer.logical_id} in {unit.name} references {logical_id} "
                    f"in later unit {producer_unit.name}"
                )

            name = names.name_for(logical_id, attribute)
            key = (logical_id, attribute)
            if key not in seen:
                self._link(name, producer, attribute, producer_unit, consumer, unit, references)
                seen.add(key)
            return f"parameters({quote(name)})"

        return resolve

    def _link(
        self,
        name: str,
        producer: ResourceDescriptor,
        attribute: str,
        producer_unit: TemplateUnit,
        consumer: ResourceDescriptor,
        consumer_unit: TemplateUnit,
        references: List[CrossUnitReference],
    ) -> None:
        if attribute == "name":
            value = producer.declared_name
        else:
            value = f"[{attribute_expression(producer, attribute)}]"
        output = {"type": "string", "value": value}
        existing = producer_unit.outputs.get(name)
        if existing is not None and existing != output:
            raise InternalInvariantError(
                f"Output name '{name}' of {producer_unit.name} is produced twice"
            )
        if name in consumer_unit.parameters:
            raise InternalInvariantError(
                f"Parameter name '{name}' of {consumer_unit.name} is bound twice"
            )
        producer_unit.outputs[name] = output
        consumer_unit.parameters[name] = {"type": "string"}
        if producer_unit.name not in consumer_unit.depends_on:
            consumer_unit.depends_on.append(producer_unit.name)

        reference = CrossUnitReference(
            producer_logical_id=producer.logical_id,
            consumer_logical_id=consumer.logical_id,
            attribute=attribute,
            producer_unit=producer_unit.name,
            consumer_unit=consumer_unit.name,
            output_name=name,
            crosses_scope=producer_unit.scope_key != consumer_unit.scope_key,
            binding=output_binding(
                producer_unit.name, producer_unit.scope_key, consumer_unit.scope_key, name
            ),
        )
        producer_unit.outbound.append(reference)
        consumer_unit.inbound.append(reference)
        references.append(reference)
        logger.debug(
            f"{consumer.logical_id} reads {producer.logical_id}.{attribute} "
            f"from {producer_unit.name} as '{name}'"
        )

    def _intra_unit_dependencies(
        self,
        descriptor: ResourceDescriptor,
        unit: TemplateUnit,
        unit_of: Mapping[str, TemplateUnit],
        descriptors_by_id: Mapping[str, ResourceDescriptor],
    ) -> List[str]:
        members = unit.logical_ids
        targets = [
            target
            for target in descriptor.dependencies
            if target != descriptor.logical_id and unit_of.get(target) is unit
        ]
        targets.sort(key=members.index)
        return [f"[{resource_id_expression(descriptors_by_id[t])}]" for t in targets]


def unresolved_placeholders(value: Any) -> Optional[str]:
    """Return the first placeholder left in a rewritten value, if any."""
    if isinstance(value, str):
        match = REFERENCE_PATTERN.search(value)
        return match.group(0) if match else None
    if isinstance(value, dict):
        items = value.values()
    elif isinstance(value, list):
        items = value
    else:
        return None
    for item in items:
        found = unresolved_placeholders(item)
        if found:
            return found
    return None


__all__ = [
    "CrossUnitReference",
    "DEPLOYMENTS_API_VERSION",
    "OutputNames",
    "DEPLOYMENTS_TYPE",
    "ReferenceRewriter",
    "attribute_expression",
    "deployment_id_expression",
    "output_binding",
    "output_name",
    "quote",
    "resource_id_expression",
    "rewrite_string",
    "unresolved_placeholders",
]
