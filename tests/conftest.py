from __future__ import annotations

import logging
import sys
from pathlib import Path

import pytest

# Ensure tests always import the local src tree, not an older installed wheel.
ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
sys.path.insert(0, str(SRC))

from imgops.core.build import ImageHandle, PowerState, ResourceRef, RunResult  # noqa: E402
from imgops.core.runlog import BuildLog  # noqa: E402
from imgops.core.settings import VM_RESOURCE_KIND  # noqa: E402

SYSPREP_MARKER = "# sysprep"


class ListHandler(logging.Handler):
    """Collects formatted run-log lines."""

    def __init__(self):
        super().__init__()
        self.lines: list[str] = []
        self.records: list[logging.LogRecord] = []

    def emit(self, record: logging.LogRecord) -> None:
        self.records.append(record)
        self.lines.append(self.format(record))


class FakeCloud:
    """
    In-memory stand-in for both Azure adapters.

    Resource groups map to {name: kind}. Deploying the build template adds
    the network, security group, VM, NIC, public IP and OS disk; running the
    sysprep script switches the VM to stopped.
    """

    def __init__(self):
        self.groups: dict[str, dict[str, str]] = {}
        self.power = PowerState.RUNNING
        self.boot_state = PowerState.RUNNING
        self.calls: list[tuple] = []
        self.fail: dict[str, Exception] = {}
        self.run_results: dict[str, RunResult] = {}
        self.images: dict[str, list[ImageHandle]] = {}

    def _check(self, op: str) -> None:
        exc = self.fail.get(op)
        if exc is not None:
            raise exc

    # quota / provisioning
    def list_resources(self, resource_group, resource_kind):
        self.calls.append(("list_resources", resource_group))
        self._check("list_resources")
        if resource_group not in self.groups:
            return None
        return [
            ResourceRef(name=name, kind=kind)
            for name, kind in self.groups[resource_group].items()
            if kind == resource_kind
        ]

    def ensure_resource_group(self, resource_group, location):
        self.calls.append(("ensure_resource_group", resource_group))
        if resource_group in self.groups:
            return False
        self.groups[resource_group] = {}
        return True

    def deploy_template(self, resource_group, deployment_name, template, parameters):
        self.calls.append(("deploy_template", resource_group, deployment_name))
        self._check("deploy_template")
        prefix = parameters["namePrefix"]
        job = parameters["jobNumber"]
        ts = parameters["buildTimestamp"]
        group = self.groups[resource_group]
        group[f"{prefix}-image-vnet-job{job}"] = "Microsoft.Network/virtualNetworks"
        group[f"{prefix}-image-nsg-job{job}"] = "Microsoft.Network/networkSecurityGroups"
        group[f"{prefix}-build-vm-{ts}"] = VM_RESOURCE_KIND
        group[f"{prefix}-build-nic-{ts}"] = "Microsoft.Network/networkInterfaces"
        group[f"{prefix}-build-pip-{ts}"] = "Microsoft.Network/publicIPAddresses"
        group[f"{prefix}-build-osdisk-{ts}"] = "Microsoft.Compute/disks"
        self.power = self.boot_state
        return {
            "vmId": f"/subscriptions/s/resourceGroups/{resource_group}/vm/{prefix}-build-vm-{ts}",
            "vmName": f"{prefix}-build-vm-{ts}",
            "publicAddress": "20.1.2.3",
            "networkId": f"/subscriptions/s/resourceGroups/{resource_group}/vnet/{job}",
        }

    # remote / power
    def run_script(self, resource_group, vm_name, script):
        purpose = "sysprep" if SYSPREP_MARKER in script else "customize"
        self.calls.append(("run_script", purpose))
        if purpose == "sysprep":
            self.power = PowerState.STOPPED
        self._check(f"run_script:{purpose}")
        return self.run_results.get(purpose, RunResult(exit_code=0, stdout=f"{purpose} ok"))

    def get_power_state(self, resource_group, vm_name):
        self.calls.append(("get_power_state", vm_name))
        return self.power

    # capture
    def deallocate_vm(self, resource_group, vm_name):
        self.calls.append(("deallocate_vm", vm_name))
        self._check("deallocate_vm")
        self.power = PowerState.DEALLOCATED

    def generalize_vm(self, resource_group, vm_name):
        self.calls.append(("generalize_vm", vm_name))
        self._check("generalize_vm")

    def create_image(self, resource_group, image_name, vm_name, location, hyper_v_generation):
        self.calls.append(("create_image", image_name, hyper_v_generation))
        self._check("create_image")
        image = ImageHandle(id=f"/images/{image_name}", name=image_name)
        self.groups[resource_group][image_name] = "Microsoft.Compute/images"
        self.images.setdefault(resource_group, []).append(image)
        return image

    # cleanup
    def _delete(self, op, resource_group, name):
        self.calls.append((op, name))
        self._check(op)
        self.groups.get(resource_group, {}).pop(name, None)

    def delete_vm(self, resource_group, name):
        self._delete("delete_vm", resource_group, name)

    def delete_disk(self, resource_group, name):
        self._delete("delete_disk", resource_group, name)

    def delete_nic(self, resource_group, name):
        self._delete("delete_nic", resource_group, name)

    def delete_public_ip(self, resource_group, name):
        self._delete("delete_public_ip", resource_group, name)

    def ops(self) -> list[str]:
        return [c[0] for c in self.calls]


class FakeClock:
    """Monotonic clock advanced only by the fake sleep."""

    def __init__(self):
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def cloud() -> FakeCloud:
    return FakeCloud()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def run_log():
    handler = ListHandler()
    log = BuildLog(handlers=[handler])
    log.handler = handler
    yield log
    log.close()
