"""Authentication helpers for Azure.

This module creates azure-identity credentials, verifies them with a single
token request, and resolves the tenant / subscription / principal triple a
build runs under. Choosing between several tenants or subscriptions is not
done here; the caller passes the selection back in.
"""

from __future__ import annotations

import base64
import json
from dataclasses import dataclass
from typing import Any, Callable

from azure.core.exceptions import ClientAuthenticationError, HttpResponseError
from azure.identity import DefaultAzureCredential, InteractiveBrowserCredential
from azure.mgmt.subscription import SubscriptionClient

from imgops.core.build import AuthContext
from imgops.core.errors import AuthenticationError

ARM_SCOPE = "https://management.azure.com/.default"


@dataclass(frozen=True)
class Tenant:
    """An Azure AD tenant visible to the signed-in principal."""

    id: str
    name: str | None = None


@dataclass(frozen=True)
class Subscription:
    """An Azure subscription visible to the signed-in principal."""

    id: str
    name: str
    tenant_id: str | None = None
    state: str | None = None


def _state_text(value: Any) -> str:
    return str(getattr(value, "value", value) or "")


def _format_auth_error(message: str, tenant_id: str | None) -> str:
    """Return a user-friendly auth error message."""
    cmd = "az login"
    if tenant_id:
        cmd = f"{cmd} --tenant {tenant_id}"
    return (
        f"Azure authentication failed: {message.splitlines()[0] if message else 'unknown error'}\n"
        f"Sign in again with:\n  $ {cmd}\nor re-run with --force-login."
    )


def _decode_claims(token: str) -> dict[str, Any]:
    """Decode the (unverified) payload of a JWT access token."""
    try:
        payload = token.split(".")[1]
        payload += "=" * (-len(payload) % 4)
        return json.loads(base64.urlsafe_b64decode(payload.encode("ascii")))
    except (IndexError, ValueError):
        return {}


def principal_from_token(token: str) -> tuple[str, str | None]:
    """Return (principal display name, tenant id) from an access token."""
    claims = _decode_claims(token)
    principal = (
        claims.get("upn")
        or claims.get("unique_name")
        or claims.get("preferred_username")
        or claims.get("appid")
        or claims.get("oid")
        or "unknown"
    )
    return str(principal), claims.get("tid")


def get_credential(tenant_id: str | None = None, *, force_login: bool = False):
    """
    Create an azure-identity credential.

    DefaultAzureCredential covers environment variables, managed identity and
    an existing `az login`. With force_login an interactive browser sign-in is
    always performed instead.
    """
    if force_login:
        return InteractiveBrowserCredential(tenant_id=tenant_id)
    if tenant_id:
        return DefaultAzureCredential(
            interactive_browser_tenant_id=tenant_id,
            additionally_allowed_tenants=[tenant_id],
        )
    return DefaultAzureCredential()


def verify_credential(
    credential,
    tenant_id: str | None = None,
    *,
    reauthenticate: Callable[[], Any] | None = None,
):
    """
    Request a management token, re-authenticating once on failure.

    Returns:
        (credential, principal, token tenant id). The credential returned is
        the one that produced the token.
    """
    try:
        token = credential.get_token(ARM_SCOPE)
    except ClientAuthenticationError as exc:
        if reauthenticate is None:
            raise AuthenticationError(_format_auth_error(str(exc), tenant_id)) from exc
        credential = reauthenticate()
        try:
            token = credential.get_token(ARM_SCOPE)
        except ClientAuthenticationError as retry_exc:
            raise AuthenticationError(
                _format_auth_error(str(retry_exc), tenant_id)
            ) from retry_exc

    principal, token_tenant = principal_from_token(token.token)
    return credential, principal, token_tenant


class AzureDirectory:
    """Lists tenants, subscriptions and locations for a credential."""

    def __init__(self, credential, client: SubscriptionClient | None = None):
        self.credential = credential
        self.client = client or SubscriptionClient(credential)

    def list_tenants(self) -> list[Tenant]:
        try:
            return [
                Tenant(id=t.tenant_id, name=getattr(t, "display_name", None))
                for t in self.client.tenants.list()
                if t.tenant_id
            ]
        except (ClientAuthenticationError, HttpResponseError) as exc:
            raise AuthenticationError(f"Could not list tenants: {exc}") from exc

    def list_subscriptions(self, tenant_id: str | None = None) -> list[Subscription]:
        """List enabled subscriptions, optionally restricted to one tenant."""
        try:
            subs = [
                Subscription(
                    id=s.subscription_id,
                    name=s.display_name or s.subscription_id,
                    tenant_id=getattr(s, "tenant_id", None),
                    state=_state_text(getattr(s, "state", None)) or None,
                )
                for s in self.client.subscriptions.list()
                if s.subscription_id
            ]
        except (ClientAuthenticationError, HttpResponseError) as exc:
            raise AuthenticationError(f"Could not list subscriptions: {exc}") from exc

        if tenant_id:
            subs = [s for s in subs if s.tenant_id in (None, tenant_id)]
        return [s for s in subs if (s.state or "Enabled").lower() == "enabled"]

    def list_locations(self, subscription_id: str) -> list[str]:
        """Return the region names available to a subscription."""
        try:
            return sorted(
                loc.name
                for loc in self.client.subscriptions.list_locations(subscription_id)
                if loc.name
            )
        except HttpResponseError as exc:
            raise AuthenticationError(
                f"Could not list locations for subscription {subscription_id}: {exc}"
            ) from exc


def build_auth_context(
    tenant_id: str | None,
    subscription_id: str,
    *,
    credential,
    principal: str,
) -> AuthContext:
    """Assemble the read-only AuthContext handed to the adapters."""
    if not subscription_id:
        raise AuthenticationError("No subscription selected.")
    return AuthContext(
        tenant_id=tenant_id or "",
        subscription_id=subscription_id,
        principal=principal,
        credential=credential,
    )
