from __future__ import annotations

from typing import Any, Mapping

from azure.core.exceptions import HttpResponseError, ResourceNotFoundError
from azure.mgmt.resource import ResourceManagementClient

from imgops.core.build import AuthContext, ResourceRef
from imgops.core.errors import ProvisioningError, ProvisioningFailure

RESOURCE_GROUP_TAGS = {"createdBy": "imgops", "purpose": "customimage"}


def _error_code_and_message(exc: HttpResponseError) -> tuple[str | None, str]:
    """Extract the ARM error code/message from an SDK error."""
    err = getattr(exc, "error", None)
    code = getattr(err, "code", None)
    message = getattr(err, "message", None) or getattr(exc, "message", None) or str(exc)
    return code, str(message)


def _state_text(value: Any) -> str:
    """Return the plain text of an SDK enum or string state."""
    return str(getattr(value, "value", value) or "")


def _plain_outputs(outputs: Mapping[str, Any] | None) -> dict[str, Any]:
    """Flatten ARM outputs of the form {"name": {"type": ..., "value": ...}}."""
    plain: dict[str, Any] = {}
    for key, item in (outputs or {}).items():
        plain[key] = item.get("value") if isinstance(item, dict) else item
    return plain


class AzureResourcesAdapter:
    """Adapter around the Azure resource manager APIs (resource groups, deployments)."""

    def __init__(self, client: ResourceManagementClient):
        self.client = client

    @classmethod
    def from_auth(cls, auth: AuthContext) -> AzureResourcesAdapter:
        return cls(ResourceManagementClient(auth.credential, auth.subscription_id))

    def resource_group_exists(self, resource_group: str) -> bool:
        return bool(self.client.resource_groups.check_existence(resource_group))

    def list_resources(self, resource_group: str, resource_kind: str) -> list[ResourceRef] | None:
        """Return resources of a kind, or None when the resource group does not exist."""
        if not self.resource_group_exists(resource_group):
            return None
        try:
            items = self.client.resources.list_by_resource_group(
                resource_group,
                filter=f"resourceType eq '{resource_kind}'",
            )
            return [
                ResourceRef(name=r.name, kind=r.type or resource_kind)
                for r in items
                if r.name
            ]
        except ResourceNotFoundError:
            return None

    def ensure_resource_group(self, resource_group: str, location: str) -> bool:
        """Create the resource group if missing. Return True when it was created."""
        try:
            if self.resource_group_exists(resource_group):
                return False
            self.client.resource_groups.create_or_update(
                resource_group,
                {"location": location, "tags": dict(RESOURCE_GROUP_TAGS)},
            )
        except HttpResponseError as exc:
            code, message = _error_code_and_message(exc)
            raise ProvisioningError(
                f"Could not create resource group '{resource_group}': {message}",
                code=code,
                context={"resource_group": resource_group},
            ) from exc
        return True

    def deploy_template(
        self,
        resource_group: str,
        deployment_name: str,
        template: Mapping[str, Any],
        parameters: Mapping[str, Any],
    ) -> dict[str, Any]:
        """Deploy a template in incremental mode and return its outputs as plain values."""
        deployment = {
            "properties": {
                "mode": "Incremental",
                "template": dict(template),
                "parameters": {k: {"value": v} for k, v in parameters.items()},
            }
        }
        context = {"resource_group": resource_group, "deployment": deployment_name}

        try:
            poller = self.client.deployments.begin_create_or_update(
                resource_group, deployment_name, deployment
            )
            result = poller.result()
        except HttpResponseError as exc:
            code, message = _error_code_and_message(exc)
            raise ProvisioningError(
                f"Deployment '{deployment_name}' failed: {message}",
                code=code,
                failures=self.failed_operations(resource_group, deployment_name),
                context=context,
            ) from exc

        props = result.properties
        state = _state_text(getattr(props, "provisioning_state", None))
        if state and state != "Succeeded":
            raise ProvisioningError(
                f"Deployment '{deployment_name}' ended in state {state}",
                failures=self.failed_operations(resource_group, deployment_name),
                context=context,
            )
        return _plain_outputs(getattr(props, "outputs", None))

    def failed_operations(
        self, resource_group: str, deployment_name: str
    ) -> list[ProvisioningFailure]:
        """Collect per-resource failures of a deployment (best-effort)."""
        failures: list[ProvisioningFailure] = []
        try:
            operations = list(
                self.client.deployment_operations.list(resource_group, deployment_name)
            )
        except HttpResponseError:
            return failures

        for op in operations:
            props = getattr(op, "properties", None)
            if props is None or _state_text(props.provisioning_state) != "Failed":
                continue
            target = getattr(props, "target_resource", None)
            resource = (
                f"{target.resource_type}/{target.resource_name}" if target else "unknown"
            )
            status = getattr(props, "status_message", None)
            error = getattr(status, "error", None)
            failures.append(
                ProvisioningFailure(
                    resource=resource,
                    code=getattr(error, "code", None),
                    message=str(getattr(error, "message", None) or status or "failed"),
                )
            )
        return failures
