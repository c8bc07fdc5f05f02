"""Synchronous in-guest script execution.

Scripts are shipped to the VM through the provider's run-command mechanism
and the caller blocks until the script has finished. The executor only
reports what happened; whether a failure matters is decided by the
orchestrator.
"""

from __future__ import annotations

from pathlib import Path
from typing import Protocol

from imgops.core.build import RunResult
from imgops.core.errors import ConfigurationError, RemoteExecutionError


class RemoteAdapter(Protocol):
    """Interface for running a script inside a VM."""

    def run_script(self, resource_group: str, vm_name: str, script: str) -> RunResult:
        """Run a script and return its result once it has completed."""
        ...


def load_script(path: Path) -> str:
    """Read an in-guest script from disk."""
    try:
        return Path(path).read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigurationError(f"Cannot read script '{path}': {exc}") from exc


def execute(
    adapter: RemoteAdapter,
    resource_group: str,
    vm_name: str,
    script: str,
    *,
    purpose: str = "script",
) -> RunResult:
    """
    Run a script in the VM and wait for its result.

    Args:
        adapter: Adapter that dispatches the run-command.
        resource_group: Resource group of the VM.
        vm_name: Target VM.
        script: Script text, sent as-is.
        purpose: Short label used in error messages (e.g. "customization").

    Returns:
        The RunResult of a script that exited with code 0.

    Raises:
        RemoteExecutionError: If dispatch fails or the script exits non-zero.
    """
    context = {"resource_group": resource_group, "vm": vm_name}
    try:
        result = adapter.run_script(resource_group, vm_name, script)
    except RemoteExecutionError:
        raise
    except Exception as exc:  # noqa: BLE001
        raise RemoteExecutionError(
            f"Could not run {purpose} on '{vm_name}': {exc}", context=context
        ) from exc

    if not result.ok:
        detail = result.stderr.strip().splitlines()[-1] if result.stderr.strip() else ""
        msg = f"{purpose.capitalize()} exited with code {result.exit_code}"
        raise RemoteExecutionError(
            f"{msg}: {detail}" if detail else msg,
            result=result,
            context=context,
        )
    return result
