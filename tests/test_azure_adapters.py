from types import SimpleNamespace

import pytest
from azure.core.exceptions import HttpResponseError

from imgops.core.adapters.azurecompute import AzureComputeAdapter, parse_run_command_result
from imgops.core.adapters.azureresources import AzureResourcesAdapter
from imgops.core.build import PowerState
from imgops.core.errors import ProvisioningError


def _status(code, message="", level="Info"):
    return SimpleNamespace(code=code, message=message, level=level)


class _Poller:
    def __init__(self, result=None):
        self._result = result

    def result(self):
        return self._result


def test_windows_run_command_streams_are_split():
    result = parse_run_command_result(
        SimpleNamespace(
            value=[
                _status("ComponentStatus/StdOut/succeeded", "installed 7zip"),
                _status("ComponentStatus/StdErr/succeeded", ""),
            ]
        )
    )

    assert result.ok
    assert result.stdout == "installed 7zip"
    assert result.stderr == ""


def test_stderr_output_counts_as_failure():
    result = parse_run_command_result(
        SimpleNamespace(
            value=[
                _status("ComponentStatus/StdOut/succeeded", "step 1"),
                _status("ComponentStatus/StdErr/succeeded", "choco: not found"),
            ]
        )
    )

    assert result.exit_code == 1
    assert result.stderr == "choco: not found"


def test_linux_markers_are_split():
    message = "Enable succeeded: \n[stdout]\nhello\n[stderr]\n"
    result = parse_run_command_result(
        SimpleNamespace(value=[_status("ProvisioningState/succeeded", message)])
    )

    assert result.ok
    assert result.stdout == "hello"


def test_error_level_fails_without_stderr():
    result = parse_run_command_result(
        SimpleNamespace(value=[_status("ProvisioningState/failed", "", level="Error")])
    )

    assert result.exit_code == 1


def test_get_power_state_reads_instance_view():
    view = SimpleNamespace(
        statuses=[
            SimpleNamespace(code="ProvisioningState/succeeded"),
            SimpleNamespace(code="PowerState/deallocated"),
        ]
    )
    compute = SimpleNamespace(
        virtual_machines=SimpleNamespace(instance_view=lambda rg, vm: view)
    )

    adapter = AzureComputeAdapter(compute, network=None)

    assert adapter.get_power_state("rg", "vm") == PowerState.DEALLOCATED


def test_get_power_state_without_power_status_is_unknown():
    compute = SimpleNamespace(
        virtual_machines=SimpleNamespace(
            instance_view=lambda rg, vm: SimpleNamespace(statuses=None)
        )
    )

    assert AzureComputeAdapter(compute, None).get_power_state("rg", "vm") == PowerState.UNKNOWN


def _resources_client(*, exists=True, items=(), deployment=None, deploy_exc=None, operations=()):
    def _begin(rg, name, body):
        if deploy_exc:
            raise deploy_exc
        _begin.body = body
        return _Poller(deployment)

    client = SimpleNamespace(
        resource_groups=SimpleNamespace(
            check_existence=lambda rg: exists,
            create_or_update=lambda rg, body: None,
        ),
        resources=SimpleNamespace(
            list_by_resource_group=lambda rg, filter=None: list(items)
        ),
        deployments=SimpleNamespace(begin_create_or_update=_begin),
        deployment_operations=SimpleNamespace(list=lambda rg, name: list(operations)),
    )
    return client, _begin


def test_list_resources_returns_none_for_missing_group():
    client, _ = _resources_client(exists=False)

    assert AzureResourcesAdapter(client).list_resources("rg", "kind") is None


def test_list_resources_maps_names_and_types():
    client, _ = _resources_client(
        items=[SimpleNamespace(name="vm-1", type="Microsoft.Compute/virtualMachines")]
    )

    refs = AzureResourcesAdapter(client).list_resources("rg", "Microsoft.Compute/virtualMachines")

    assert [(r.name, r.kind) for r in refs] == [("vm-1", "Microsoft.Compute/virtualMachines")]


def test_deploy_template_wraps_parameters_and_flattens_outputs():
    deployment = SimpleNamespace(
        properties=SimpleNamespace(
            provisioning_state="Succeeded",
            outputs={"vmName": {"type": "String", "value": "lab-build-vm-1"}},
        )
    )
    client, begin = _resources_client(deployment=deployment)

    outputs = AzureResourcesAdapter(client).deploy_template(
        "rg", "imgops-build-1", {"resources": []}, {"jobNumber": 5}
    )

    assert outputs == {"vmName": "lab-build-vm-1"}
    assert begin.body["properties"]["mode"] == "Incremental"
    assert begin.body["properties"]["parameters"] == {"jobNumber": {"value": 5}}


def test_deploy_template_failure_lists_failed_operations():
    failed_op = SimpleNamespace(
        properties=SimpleNamespace(
            provisioning_state="Failed",
            target_resource=SimpleNamespace(
                resource_type="Microsoft.Compute/virtualMachines",
                resource_name="lab-build-vm-1",
            ),
            status_message=SimpleNamespace(
                error=SimpleNamespace(code="SkuNotAvailable", message="size not available")
            ),
        )
    )
    client, _ = _resources_client(
        deploy_exc=HttpResponseError(message="deployment failed"),
        operations=[failed_op],
    )

    with pytest.raises(ProvisioningError) as info:
        AzureResourcesAdapter(client).deploy_template("rg", "dep", {"resources": []}, {})

    failures = info.value.failures
    assert [(f.resource, f.code) for f in failures] == [
        ("Microsoft.Compute/virtualMachines/lab-build-vm-1", "SkuNotAvailable")
    ]
    assert "SkuNotAvailable" in info.value.describe()


def test_ensure_resource_group_is_idempotent():
    client, _ = _resources_client(exists=True)

    assert AzureResourcesAdapter(client).ensure_resource_group("rg", "westeurope") is False
