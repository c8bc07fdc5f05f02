"""Pre-flight resource quota guard.

The guard runs once, before anything is created, and rejects a build when
the target resource group already holds the allowed number of resources of
a kind. A resource group that does not exist yet simply holds nothing.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol

from imgops.core.build import ResourceRef
from imgops.core.errors import QuotaExceededError


class QuotaAdapter(Protocol):
    """Interface for listing resources in a scope."""

    def list_resources(self, resource_group: str, resource_kind: str) -> list[ResourceRef] | None:
        """Return resources of a kind, or None when the resource group does not exist."""
        ...


@dataclass(frozen=True)
class QuotaCheck:
    """Outcome of a quota check."""

    scope: str
    resource_kind: str
    max_allowed: int
    existing: list[ResourceRef] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return len(self.existing) < self.max_allowed


def check_quota(
    adapter: QuotaAdapter,
    scope: str,
    resource_kind: str,
    max_allowed: int,
) -> QuotaCheck:
    """
    Compare the resources already present in a scope against a limit.

    Args:
        adapter: Adapter used to list resources.
        scope: Resource group name.
        resource_kind: Provider resource type, e.g. Microsoft.Compute/virtualMachines.
        max_allowed: Maximum number of resources of that kind.

    Returns:
        A QuotaCheck; `ok` is False when the count has reached max_allowed.
    """
    if max_allowed < 1:
        raise ValueError("max_allowed must be >= 1")
    existing = adapter.list_resources(scope, resource_kind) or []
    return QuotaCheck(
        scope=scope,
        resource_kind=resource_kind,
        max_allowed=max_allowed,
        existing=list(existing),
    )


def ensure_quota(
    adapter: QuotaAdapter,
    scope: str,
    resource_kind: str,
    max_allowed: int,
) -> QuotaCheck:
    """Run check_quota and raise QuotaExceededError when the limit is reached."""
    check = check_quota(adapter, scope, resource_kind, max_allowed)
    if check.ok:
        return check

    listing = ", ".join(f"{r.name} ({r.kind})" for r in check.existing)
    raise QuotaExceededError(
        f"Resource group '{scope}' already contains {len(check.existing)} "
        f"resource(s) of type {resource_kind} (limit {max_allowed}): {listing}. "
        "Delete or finish the existing build before starting a new one.",
        check.existing,
        context={"resource_group": scope},
    )
