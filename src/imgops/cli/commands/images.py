"""Commands for inspecting names, listing images and cleaning up earlier builds."""

from __future__ import annotations

import re
from dataclasses import replace

from azure.core.exceptions import HttpResponseError, ResourceNotFoundError

from imgops.cli.common.context import build_context
from imgops.cli.common.exits import EXIT_USAGE, die, exit_from_exc, ok_exit, warn_exit
from imgops.cli.common.options import (
    ConfirmOpt,
    DryRunOpt,
    ForceLoginOpt,
    JobOpt,
    PrefixOpt,
    ResourceGroupOpt,
    SubscriptionOpt,
    TenantOpt,
    TimestampOpt,
)
from imgops.cli.common.output import out
from imgops.cli.commands.build import resolve_settings
from imgops.core.build import ResourceRef
from imgops.core.cleanup import cleanup as core_cleanup
from imgops.core.cleanup import cleanup_error, ephemeral_targets
from imgops.core.naming import new_build_timestamp, resolve_names, resource_group_name
from imgops.core.settings import VM_RESOURCE_KIND

_TIMESTAMP_RE = re.compile(r"^\d{14}$")


def _timestamp_or_exit(timestamp: str | None, *, required: bool) -> str:
    """Validate a YYYYMMDDHHMMSS timestamp (or make a fresh one when optional)."""
    if not timestamp:
        if required:
            die("Missing --timestamp (YYYYMMDDHHMMSS) of the build to clean up.", code=EXIT_USAGE)
        return new_build_timestamp()
    if not _TIMESTAMP_RE.match(timestamp):
        die(f"Invalid timestamp '{timestamp}' (expected YYYYMMDDHHMMSS).", code=EXIT_USAGE)
    return timestamp


def names(
    job: int = JobOpt,
    timestamp: str | None = TimestampOpt,
    prefix: str | None = PrefixOpt,
):
    """Show the resource names a build uses (no Azure access needed)."""
    settings = resolve_settings(
        job=job, prefix=prefix, template=None, customize_script=None, log_dir=None
    )
    stamp = _timestamp_or_exit(timestamp, required=False)
    out.names_table(resolve_names(job, stamp, settings.prefix), title=f"Names for job {job}")


def images(
    tenant: str | None = TenantOpt,
    subscription: str | None = SubscriptionOpt,
    job: int = JobOpt,
    force_login: bool = ForceLoginOpt,
    resource_group: str | None = ResourceGroupOpt,
    prefix: str | None = PrefixOpt,
):
    """List captured images and leftover build VMs of a job."""
    settings = resolve_settings(
        job=job, prefix=prefix, template=None, customize_script=None, log_dir=None
    )
    rg = resource_group or resource_group_name(job, settings.prefix)
    appctx = build_context(tenant, subscription, force_login=force_login)

    try:
        with out.status("Loading images..."):
            found = appctx.compute.list_images(rg)
            vms = appctx.resources.list_resources(rg, VM_RESOURCE_KIND)
    except ResourceNotFoundError as exc:
        exit_from_exc(exc, message=f"Resource group '{rg}' does not exist.", code=1)
    except HttpResponseError as exc:
        exit_from_exc(exc, message=f"Could not list resources in '{rg}': {exc.message}", code=1)

    if vms:
        out.warn(f"{len(vms)} build VM(s) still present in {rg}")
        out.resources_table(vms, title="Build VMs")

    if not found:
        warn_exit(f"No images found in {rg}", code=0)

    out.header("Images")
    out.images_table(found, title=f"Images in {rg}")


def cleanup(
    tenant: str | None = TenantOpt,
    subscription: str | None = SubscriptionOpt,
    job: int = JobOpt,
    timestamp: str | None = TimestampOpt,
    force_login: bool = ForceLoginOpt,
    resource_group: str | None = ResourceGroupOpt,
    prefix: str | None = PrefixOpt,
    confirm: bool = ConfirmOpt,
    dry_run: bool = DryRunOpt,
):
    """Delete the ephemeral resources (VM, disk, NIC, IP) left by an earlier build."""
    settings = resolve_settings(
        job=job, prefix=prefix, template=None, customize_script=None, log_dir=None
    )
    stamp = _timestamp_or_exit(timestamp, required=True)
    build_names = resolve_names(job, stamp, settings.prefix)
    if resource_group:
        build_names = replace(build_names, resource_group=resource_group)

    out.header(f"Cleanup for job {job}, build {stamp}")
    out.resources_table(
        [ResourceRef(name=name, kind=kind) for kind, name in ephemeral_targets(build_names)],
        title=f"Resources to delete in {build_names.resource_group}",
    )

    if dry_run:
        warn_exit("Dry-run enabled: nothing was deleted", code=0)

    if confirm and not out.confirm("Delete these resources?"):
        ok_exit("Cancelled")

    appctx = build_context(tenant, subscription, force_login=force_login)
    with out.status("Deleting resources..."):
        results = core_cleanup(appctx.compute, build_names)

    out.cleanup_table(results, title="Cleanup results")
    error = cleanup_error(build_names, results)
    if error:
        warn_exit(error.describe(), code=0)
    out.success("Ephemeral resources deleted")
