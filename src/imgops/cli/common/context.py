"""Application context management for the CLI."""

from __future__ import annotations

from dataclasses import dataclass

from imgops.cli import tui
from imgops.cli.common.exits import die
from imgops.cli.common.output import out
from imgops.core.adapters.azurecompute import AzureComputeAdapter
from imgops.core.adapters.azureresources import AzureResourcesAdapter
from imgops.core.auth import (
    AzureDirectory,
    build_auth_context,
    get_credential,
    verify_credential,
)
from imgops.core.build import AuthContext
from imgops.core.errors import AuthenticationError


@dataclass
class BuildAppContext:
    """Application context holding the Azure auth context and adapters."""

    auth: AuthContext
    directory: AzureDirectory
    resources: AzureResourcesAdapter
    compute: AzureComputeAdapter


def _sign_in(tenant: str | None, force_login: bool):
    """Return (credential, principal, token tenant), re-authenticating once if needed."""
    credential = get_credential(tenant, force_login=force_login)
    reauth = None if force_login else (lambda: get_credential(tenant, force_login=True))
    return verify_credential(credential, tenant, reauthenticate=reauth)


def resolve_auth(
    tenant: str | None,
    subscription: str | None,
    *,
    force_login: bool = False,
) -> tuple[AuthContext, AzureDirectory]:
    """
    Authenticate and settle on a tenant and subscription.

    Tenant and subscription are taken from the arguments when given; otherwise
    the single available one is used, or the user is asked to pick one.
    """
    credential, principal, token_tenant = _sign_in(tenant, force_login)
    directory = AzureDirectory(credential)
    tenant_id = tenant or token_tenant

    if not tenant:
        tenants = directory.list_tenants()
        chosen = tui.select_tenant(tenants)
        if chosen is None and tenants:
            raise AuthenticationError("No tenant selected.")
        if chosen and chosen.id != token_tenant:
            credential, principal, _ = _sign_in(chosen.id, force_login)
            directory = AzureDirectory(credential)
        if chosen:
            tenant_id = chosen.id

    subscription_id = subscription
    if not subscription_id:
        subs = directory.list_subscriptions(tenant_id)
        if not subs:
            raise AuthenticationError(
                f"No enabled subscriptions found for tenant {tenant_id or '(default)'}."
            )
        picked = tui.select_subscription(subs)
        if picked is None:
            raise AuthenticationError("No subscription selected.")
        subscription_id = picked.id

    auth = build_auth_context(
        tenant_id,
        subscription_id,
        credential=credential,
        principal=principal,
    )
    return auth, directory


def build_context(
    tenant: str | None,
    subscription: str | None,
    *,
    force_login: bool = False,
) -> BuildAppContext:
    """Build and return the application context with Azure adapters.

    Args:
        tenant: Optional tenant id; prompted for when several exist.
        subscription: Optional subscription id; prompted for when several exist.
        force_login: Always sign in interactively.

    Returns:
        BuildAppContext: Application context with configured adapters.
    """
    out.info("Signing in to Azure...")
    try:
        auth, directory = resolve_auth(tenant, subscription, force_login=force_login)
    except AuthenticationError as exc:
        die(exc.describe(), code=1)

    out.kv(
        {
            "Principal": auth.principal,
            "Tenant": auth.tenant_id or "(default)",
            "Subscription": auth.subscription_id,
        }
    )
    return BuildAppContext(
        auth=auth,
        directory=directory,
        resources=AzureResourcesAdapter.from_auth(auth),
        compute=AzureComputeAdapter.from_auth(auth),
    )
