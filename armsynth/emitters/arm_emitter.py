"""ARM template emitter.

Renders one deployment template per unit, the deployment manifest, and an
orchestrating ``azuredeploy.json`` that deploys every unit as a linked
``Microsoft.Resources/deployments`` resource in manifest order.
"""

import logging
from typing import Any, Dict, List, Optional, Sequence

from ..config.models import (
    ARM_MAX_OUTPUTS_PER_TEMPLATE,
    ARM_MAX_PARAMETERS_PER_TEMPLATE,
    ARM_MAX_TEMPLATE_BYTES,
)
from ..exceptions import InternalInvariantError
from ..manifest import MANIFEST_FILE, Manifest
from ..partitioner import TemplateUnit
from ..rewriter import (
    DEPLOYMENTS_API_VERSION,
    DEPLOYMENTS_TYPE,
    deployment_id_expression,
    output_binding,
    unresolved_placeholders,
)
from ..scope import DeploymentScope, ScopeKey
from . import register_emitter
from .base import TemplateEmitter, serialize_document

logger = logging.getLogger(__name__)

CONTENT_VERSION = "1.0.0.0"
ROOT_TEMPLATE_FILE = "azuredeploy.json"
ARTIFACTS_LOCATION = "_artifactsLocation"
ARTIFACTS_SAS_TOKEN = "_artifactsLocationSasToken"


def root_scope_for(units: Sequence[TemplateUnit]) -> ScopeKey:
    """Narrowest scope from which every unit can be deployed.

    One shared target is used as is; units spread over one subscription
    are deployed from that subscription; anything else from the tenant.
    """
    keys: List[ScopeKey] = []
    for unit in units:
        if unit.scope_key not in keys:
            keys.append(unit.scope_key)
    if len(keys) == 1:
        return keys[0]
    subscriptions = {key.subscription_id for key in keys}
    in_subscription = all(
        key.scope in (DeploymentScope.SUBSCRIPTION, DeploymentScope.RESOURCE_GROUP)
        for key in keys
    )
    if in_subscription and len(subscriptions) == 1:
        return ScopeKey(DeploymentScope.SUBSCRIPTION, subscription_id=keys[0].subscription_id)
    return ScopeKey(DeploymentScope.TENANT)


def supports_root_template(units: Sequence[TemplateUnit]) -> bool:
    """False when a tenant-level root would have to reach into resource groups."""
    root_key = root_scope_for(units)
    if root_key.scope is not DeploymentScope.TENANT:
        return True
    return all(unit.scope_key.scope is not DeploymentScope.RESOURCE_GROUP for unit in units)


class ArmTemplateEmitter(TemplateEmitter):
    """Emitter for Azure Resource Manager templates.

    Config:
        emit_root_template: Also render ``azuredeploy.json`` (default True)
        max_template_bytes: Size limit of one rendered unit (default 4 MiB)
        max_parameters: Parameter limit of one unit (default 256)
        max_outputs: Output limit of one unit (default 64)
    """

    def render(
        self, units: Sequence[TemplateUnit], manifest: Manifest
    ) -> Dict[str, Dict[str, Any]]:
        try:
            documents: Dict[str, Dict[str, Any]] = {}
            for unit in units:
                documents[unit.file_name] = self.render_unit(unit)
            documents[MANIFEST_FILE] = manifest.to_dict()
            if units and self.config.get("emit_root_template", True):
                if supports_root_template(units):
                    documents[ROOT_TEMPLATE_FILE] = self.render_root_template(units)
                else:
                    logger.warning(
                        "Units target resource groups in several subscriptions; "
                        f"skipping {ROOT_TEMPLATE_FILE}, deploy units in manifest order"
                    )
        except Exception as e:
            raise self.wrap_failure(e) from e
        return documents

    def render_unit(self, unit: TemplateUnit) -> Dict[str, Any]:
        if len(unit.bodies) != unit.resource_count:
            raise InternalInvariantError(
                f"Unit {unit.name} has {unit.resource_count} resources but "
                f"{len(unit.bodies)} rewritten bodies"
            )
        leftover = unresolved_placeholders(unit.bodies)
        if leftover:
            raise InternalInvariantError(
                f"Unit {unit.name} still contains the placeholder {leftover}"
            )
        document = {
            "$schema": unit.scope_key.scope.schema,
            "contentVersion": CONTENT_VERSION,
            "parameters": dict(sorted(unit.parameters.items())),
            "resources": list(unit.bodies),
            "outputs": dict(sorted(unit.outputs.items())),
        }
        self._check_limits(unit, document)
        return document

    def _check_limits(self, unit: TemplateUnit, document: Dict[str, Any]) -> None:
        """Reject a rendered unit that Resource Manager would refuse to deploy."""
        max_parameters = self.config.get("max_parameters", ARM_MAX_PARAMETERS_PER_TEMPLATE)
        if len(unit.parameters) > max_parameters:
            raise InternalInvariantError(
                f"Unit {unit.name} declares {len(unit.parameters)} parameters; "
                f"at most {max_parameters} are allowed"
            )
        max_outputs = self.config.get("max_outputs", ARM_MAX_OUTPUTS_PER_TEMPLATE)
        if len(unit.outputs) > max_outputs:
            raise InternalInvariantError(
                f"Unit {unit.name} declares {len(unit.outputs)} outputs; "
                f"at most {max_outputs} are allowed"
            )
        max_bytes = self.config.get("max_template_bytes", ARM_MAX_TEMPLATE_BYTES)
        size = len(serialize_document(document).encode("utf-8"))
        if size > max_bytes:
            raise InternalInvariantError(
                f"Unit {unit.name} renders to {size} bytes; at most {max_bytes} are allowed",
                context={"unit": unit.name, "size_bytes": size},
            )

    def render_root_template(self, units: Sequence[TemplateUnit]) -> Dict[str, Any]:
        root_key = root_scope_for(units)
        scope_of = {unit.name: unit.scope_key for unit in units}
        resources = [self._deployment_resource(unit, root_key, scope_of) for unit in units]
        return {
            "$schema": root_key.scope.schema,
            "contentVersion": CONTENT_VERSION,
            "parameters": {
                ARTIFACTS_LOCATION: {
                    "type": "string",
                    "metadata": {"description": "Base URI where the unit templates are staged"},
                },
                ARTIFACTS_SAS_TOKEN: {
                    "type": "securestring",
                    "defaultValue": "",
                    "metadata": {"description": "SAS token for the staged unit templates"},
                },
            },
            "resources": resources,
        }

    def _deployment_resource(
        self, unit: TemplateUnit, root_key: ScopeKey, scope_of: Dict[str, ScopeKey]
    ) -> Dict[str, Any]:
        deployment: Dict[str, Any] = {
            "type": DEPLOYMENTS_TYPE,
            "apiVersion": DEPLOYMENTS_API_VERSION,
            "name": unit.name,
        }
        deployment.update(self._target_properties(unit, root_key))

        parameters = {}
        for reference in sorted(unit.inbound, key=lambda r: r.output_name):
            binding = output_binding(
                reference.producer_unit,
                scope_of[reference.producer_unit],
                root_key,
                reference.output_name,
            )
            parameters[reference.output_name] = {"value": f"[{binding}]"}

        deployment["properties"] = {
            "mode": "Incremental",
            "templateLink": {
                "uri": (
                    f"[concat(parameters('{ARTIFACTS_LOCATION}'), '/', '{unit.file_name}', "
                    f"parameters('{ARTIFACTS_SAS_TOKEN}'))]"
                ),
                "contentVersion": CONTENT_VERSION,
            },
            "parameters": parameters,
        }
        if unit.depends_on:
            deployment["dependsOn"] = [
                f"[{deployment_id_expression(name, scope_of[name], root_key)}]"
                for name in unit.depends_on
            ]
        return deployment

    def _target_properties(self, unit: TemplateUnit, root_key: ScopeKey) -> Dict[str, Any]:
        """Properties that point a nested deployment at the unit's scope."""
        target = unit.scope_key
        if target == root_key:
            return {}
        location = _location_or_default(unit.location)

        if root_key.scope is DeploymentScope.SUBSCRIPTION:
            if target.scope is DeploymentScope.RESOURCE_GROUP:
                return {"resourceGroup": target.resource_group}
        elif root_key.scope is DeploymentScope.TENANT:
            if target.scope is DeploymentScope.SUBSCRIPTION:
                return {"subscriptionId": target.subscription_id, "location": location}
            if target.scope is DeploymentScope.MANAGEMENT_GROUP:
                return {
                    "scope": f"Microsoft.Management/managementGroups/{target.management_group_id}",
                    "location": location,
                }

        # Nesting deeper than one scope level is not supported
        raise InternalInvariantError(
            f"Cannot deploy {unit.name} at {target.label} from a {root_key.label} root template",
            context={"unit": unit.name, "root_scope": root_key.label},
            recovery_suggestion="Deploy the units individually in manifest order",
        )


def _location_or_default(location: Optional[str]) -> str:
    return location or "[deployment().location]"


register_emitter("arm", ArmTemplateEmitter)

__all__ = [
    "ArmTemplateEmitter",
    "ROOT_TEMPLATE_FILE",
    "root_scope_for",
    "supports_root_template",
]
