"""Interactive selection of tenant, subscription and region."""

from __future__ import annotations

import questionary

from imgops.cli.common.output import out
from imgops.core.auth import Subscription, Tenant

_MAX_NAME_WIDTH = 48


def _truncate(text: str, max_len: int) -> str:
    """Return text capped at max_len characters using an ASCII ellipsis."""
    if max_len <= 3 or len(text) <= max_len:
        return text[:max_len]
    return f"{text[: max_len - 3]}..."


def _choice_title(name: str, ident: str, *, name_width: int) -> str:
    """Format one choice as `<name>  (<id>)` with an aligned id column."""
    short_name = _truncate(name, _MAX_NAME_WIDTH)
    return f"{short_name.ljust(name_width)}  ({ident})"


def _name_width(names: list[str]) -> int:
    return max((len(_truncate(n, _MAX_NAME_WIDTH)) for n in names), default=0)


def select_tenant(tenants: list[Tenant]) -> Tenant | None:
    """Prompt for a tenant. A single tenant is returned without asking."""
    if len(tenants) <= 1:
        return tenants[0] if tenants else None

    width = _name_width([t.name or t.id for t in tenants])
    choices = [
        questionary.Choice(
            title=_choice_title(t.name or t.id, t.id, name_width=width),
            value=t,
        )
        for t in tenants
    ]
    return out.select_one("Select a tenant:", choices)


def select_subscription(subscriptions: list[Subscription]) -> Subscription | None:
    """Prompt for a subscription. A single subscription is returned without asking."""
    if len(subscriptions) <= 1:
        return subscriptions[0] if subscriptions else None

    width = _name_width([s.name for s in subscriptions])
    choices = [
        questionary.Choice(
            title=_choice_title(s.name, s.id, name_width=width),
            value=s,
        )
        for s in subscriptions
    ]
    return out.select_one("Select a subscription:", choices)


def select_location(locations: list[str], wanted: str | None = None) -> str | None:
    """Return `wanted` when the subscription offers it, otherwise prompt for a region."""
    if wanted and wanted in locations:
        return wanted
    if not locations:
        return wanted
    if wanted:
        out.warn(f"Region '{wanted}' is not available in this subscription.")
    return out.select_one("Select a region:", sorted(locations))
