import json

import pytest

from imgops.core.build import AdminCredentials
from imgops.core.errors import ConfigurationError, ErrorKind, ProvisioningError
from imgops.core.provision import (
    TemplateParameters,
    deployment_name_for,
    load_template,
    provision,
)

TS = "20240501101502"


def _params(**overrides):
    values = dict(
        location="westeurope",
        credentials=AdminCredentials("imgbuildadmin", "S3cret!pass"),
        build_timestamp=TS,
        job_number=5,
        name_prefix="lab",
    )
    values.update(overrides)
    return TemplateParameters(**values)


def test_template_parameters_as_dict():
    params = _params(vm_size="Standard_D4s_v3").as_dict()

    assert params == {
        "location": "westeurope",
        "adminUsername": "imgbuildadmin",
        "adminPassword": "S3cret!pass",
        "buildTimestamp": TS,
        "jobNumber": 5,
        "namePrefix": "lab",
        "vmSize": "Standard_D4s_v3",
    }


def test_provision_creates_group_and_returns_outputs(cloud):
    result = provision(cloud, {"resources": []}, _params(), "rg-lab-customimage-job5")

    assert result.vm_name == f"lab-build-vm-{TS}"
    assert result.public_address == "20.1.2.3"
    assert result.deployment_name == deployment_name_for(TS) == f"imgops-build-{TS}"
    assert cloud.ops() == ["ensure_resource_group", "deploy_template"]


def test_provision_twice_keeps_durable_resources(cloud):
    provision(cloud, {"resources": []}, _params(), "rg-lab-customimage-job5")
    provision(cloud, {"resources": []}, _params(build_timestamp="20240502000000"), "rg-lab-customimage-job5")

    group = cloud.groups["rg-lab-customimage-job5"]
    assert list(group).count("lab-image-vnet-job5") == 1
    assert f"lab-build-vm-{TS}" in group
    assert "lab-build-vm-20240502000000" in group


def test_missing_outputs_raise_provisioning_error():
    class _NoOutputs:
        def ensure_resource_group(self, resource_group, location):
            return True

        def deploy_template(self, resource_group, deployment_name, template, parameters):
            return {"vmName": "vm"}

    with pytest.raises(ProvisioningError, match="vmId, networkId") as info:
        provision(_NoOutputs(), {"resources": []}, _params(), "rg")

    assert info.value.kind == ErrorKind.PROVISIONING


def test_deployment_errors_propagate(cloud):
    cloud.fail["deploy_template"] = ProvisioningError("SkuNotAvailable", code="SkuNotAvailable")

    with pytest.raises(ProvisioningError) as info:
        provision(cloud, {"resources": []}, _params(), "rg")

    assert info.value.describe().startswith("[SkuNotAvailable]")


def test_bundled_template_loads():
    template = load_template()

    assert "resources" in template
    assert {"vmId", "vmName", "publicAddress", "networkId"} <= set(template["outputs"])
    assert {"adminPassword", "buildTimestamp", "jobNumber", "namePrefix"} <= set(
        template["parameters"]
    )


def test_load_template_rejects_invalid_json(tmp_path):
    path = tmp_path / "bad.json"
    path.write_text("{not json", encoding="utf-8")

    with pytest.raises(ConfigurationError, match="not valid JSON"):
        load_template(path)


def test_load_template_requires_resources(tmp_path):
    path = tmp_path / "empty.json"
    path.write_text(json.dumps({"parameters": {}}), encoding="utf-8")

    with pytest.raises(ConfigurationError, match="resources"):
        load_template(path)


def test_admin_password_is_hidden_and_complex():
    creds = AdminCredentials.generate("imgbuildadmin")

    assert creds.password not in repr(creds)
    assert len(creds.password) == 24
    assert any(c.isupper() for c in creds.password)
    assert any(c.islower() for c in creds.password)
    assert any(c.isdigit() for c in creds.password)
    assert any(not c.isalnum() for c in creds.password)
