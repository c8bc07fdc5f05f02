"""Infrastructure provisioning through a declarative template.

The provisioner makes sure the job resource group exists and then deploys
the build template into it. Deployments run in incremental mode, so the
durable network resources are left untouched on later builds while a new
VM, NIC and public IP are added under the timestamp-qualified names.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping, Protocol

from imgops.core.build import AdminCredentials, ProvisionResult
from imgops.core.errors import ConfigurationError, ProvisioningError
from imgops.core.settings import DEFAULT_TEMPLATE

REQUIRED_OUTPUTS = ("vmId", "vmName", "networkId")


class ProvisionAdapter(Protocol):
    """Interface for resource group and template deployment operations."""

    def ensure_resource_group(self, resource_group: str, location: str) -> bool:
        """Create the resource group if missing. Return True when it was created."""
        ...

    def deploy_template(
        self,
        resource_group: str,
        deployment_name: str,
        template: Mapping[str, Any],
        parameters: Mapping[str, Any],
    ) -> Mapping[str, Any]:
        """Deploy a template and return its outputs as plain values."""
        ...


@dataclass(frozen=True)
class TemplateParameters:
    """Parameters handed to the build template."""

    location: str
    credentials: AdminCredentials
    build_timestamp: str
    job_number: int
    name_prefix: str
    vm_size: str | None = None

    def as_dict(self) -> dict[str, Any]:
        params: dict[str, Any] = {
            "location": self.location,
            "adminUsername": self.credentials.username,
            "adminPassword": self.credentials.password,
            "buildTimestamp": self.build_timestamp,
            "jobNumber": self.job_number,
            "namePrefix": self.name_prefix,
        }
        if self.vm_size:
            params["vmSize"] = self.vm_size
        return params


def load_template(path: Path | None = None) -> dict[str, Any]:
    """Read an ARM template from disk (the bundled build template by default)."""
    path = Path(path) if path else DEFAULT_TEMPLATE
    try:
        template = json.loads(path.read_text(encoding="utf-8"))
    except OSError as exc:
        raise ConfigurationError(f"Cannot read template '{path}': {exc}") from exc
    except json.JSONDecodeError as exc:
        raise ConfigurationError(f"Template '{path}' is not valid JSON: {exc}") from exc
    if not isinstance(template, dict) or "resources" not in template:
        raise ConfigurationError(f"Template '{path}' has no 'resources' section.")
    return template


def deployment_name_for(build_timestamp: str) -> str:
    return f"imgops-build-{build_timestamp}"


def provision(
    adapter: ProvisionAdapter,
    template: Mapping[str, Any],
    parameters: TemplateParameters,
    resource_group: str,
) -> ProvisionResult:
    """
    Ensure the resource group exists and deploy the build template.

    Args:
        adapter: Adapter used for resource group and deployment calls.
        template: Parsed ARM template.
        parameters: Template parameters for this build.
        resource_group: Target resource group (created when missing).

    Returns:
        ProvisionResult with the VM id/name, public address and network id.

    Raises:
        ProvisioningError: When the deployment fails or its outputs are incomplete.
    """
    context = {"resource_group": resource_group}
    adapter.ensure_resource_group(resource_group, parameters.location)

    deployment_name = deployment_name_for(parameters.build_timestamp)
    outputs = dict(
        adapter.deploy_template(
            resource_group,
            deployment_name,
            template,
            parameters.as_dict(),
        )
        or {}
    )

    missing = [key for key in REQUIRED_OUTPUTS if not outputs.get(key)]
    if missing:
        raise ProvisioningError(
            f"Deployment '{deployment_name}' finished without outputs: {', '.join(missing)}",
            context=context,
        )

    return ProvisionResult(
        vm_id=str(outputs["vmId"]),
        vm_name=str(outputs["vmName"]),
        public_address=outputs.get("publicAddress") or None,
        network_id=str(outputs["networkId"]),
        deployment_name=deployment_name,
        outputs=outputs,
    )
