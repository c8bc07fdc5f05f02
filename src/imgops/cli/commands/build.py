"""Command that runs a complete image build."""

from __future__ import annotations

from dataclasses import replace
from pathlib import Path

import typer

from imgops.cli import tui
from imgops.cli.common.context import build_context
from imgops.cli.common.exits import (
    EXIT_FAILED,
    EXIT_INTERRUPTED,
    EXIT_USAGE,
    die,
    ok_exit,
    warn_exit,
)
from imgops.cli.common.options import (
    ConfirmOpt,
    CustomizeScriptOpt,
    DryRunOpt,
    ForceLoginOpt,
    JobOpt,
    LocationOpt,
    LogDirOpt,
    PrefixOpt,
    ResourceGroupOpt,
    SubscriptionOpt,
    TemplateOpt,
    TenantOpt,
)
from imgops.cli.common.output import OutHandler, out
from imgops.cli.common.progress import StageProgress
from imgops.core.build import BuildJob
from imgops.core.errors import AuthenticationError, ConfigurationError, ErrorKind
from imgops.core.naming import new_build_timestamp, resolve_names
from imgops.core.orchestrator import BuildOrchestrator
from imgops.core.provision import load_template
from imgops.core.remote import load_script
from imgops.core.runlog import BuildLog
from imgops.core.settings import BuildSettings, load_settings, validate_job_number


def resolve_settings(
    *,
    job: int,
    prefix: str | None,
    template: Path | None,
    customize_script: Path | None,
    log_dir: Path | None,
) -> BuildSettings:
    """Load settings, apply CLI overrides and validate the job number."""
    settings = load_settings().with_overrides(
        prefix=prefix,
        template_path=template,
        customize_script=customize_script,
        log_dir=log_dir,
    )
    try:
        validate_job_number(job, settings)
    except ConfigurationError as exc:
        die(exc.message, code=EXIT_USAGE)
    return settings


def build(
    tenant: str | None = TenantOpt,
    subscription: str | None = SubscriptionOpt,
    job: int = JobOpt,
    force_login: bool = ForceLoginOpt,
    location: str | None = LocationOpt,
    resource_group: str | None = ResourceGroupOpt,
    prefix: str | None = PrefixOpt,
    template: Path | None = TemplateOpt,
    customize_script: Path | None = CustomizeScriptOpt,
    log_dir: Path | None = LogDirOpt,
    confirm: bool = ConfirmOpt,
    dry_run: bool = DryRunOpt,
):
    """
    Build a custom image: provision, customize, sysprep, capture, clean up.
    """
    settings = resolve_settings(
        job=job,
        prefix=prefix,
        template=template,
        customize_script=customize_script,
        log_dir=log_dir,
    )

    try:
        template_doc = load_template(settings.template_path)
        customize_text = load_script(settings.customize_script)
        sysprep_text = load_script(settings.sysprep_script)
    except ConfigurationError as exc:
        die(exc.message, code=EXIT_FAILED)

    appctx = build_context(tenant, subscription, force_login=force_login)

    try:
        with out.status("Loading regions..."):
            locations = appctx.directory.list_locations(appctx.auth.subscription_id)
    except AuthenticationError as exc:
        out.warn(f"{exc.message}; using '{location or settings.location}' unchecked")
        locations = []
    chosen_location = tui.select_location(locations, location or settings.location)
    if not chosen_location:
        warn_exit("No region selected", code=EXIT_FAILED)

    stamp = new_build_timestamp()
    names = resolve_names(job, stamp, settings.prefix)
    if resource_group:
        names = replace(names, resource_group=resource_group)

    out.header(f"Image build for job {job}")
    out.kv({"Location": chosen_location, "Build timestamp": stamp})
    out.names_table(names)

    if dry_run:
        warn_exit("Dry-run enabled: nothing was created", code=0)

    if confirm and not out.confirm("Start the build?"):
        ok_exit("Cancelled")

    build_job = BuildJob(
        job_number=job,
        build_timestamp=stamp,
        names=names,
        location=chosen_location,
    )

    with BuildLog.open(settings.log_dir, stamp, handlers=[OutHandler()]) as log:
        out.info(f"Session log: {log.path}")
        try:
            with StageProgress() as progress:
                orchestrator = BuildOrchestrator(
                    appctx.resources,
                    appctx.compute,
                    settings,
                    log,
                    template=template_doc,
                    customize_script=customize_text,
                    sysprep_script=sysprep_text,
                    on_stage=progress,
                )
                report = orchestrator.run(build_job)
        except KeyboardInterrupt:
            log.error(
                f"Interrupted at stage {build_job.stage.value}; resources were left as-is "
                f"(resource group {names.resource_group}, VM {names.vm_name})"
            )
            raise typer.Exit(EXIT_INTERRUPTED)

    out.stages_table(report.outcomes, title="Build stages")
    if report.cleanup:
        out.cleanup_table(report.cleanup, title="Ephemeral resources")

    if not report.ok:
        code = (
            EXIT_INTERRUPTED
            if report.error is not None and report.error.kind == ErrorKind.MONITOR_CANCELLED
            else EXIT_FAILED
        )
        die(
            f"Build failed at {report.failed_stage.value if report.failed_stage else '?'}. "
            f"Resource group: {names.resource_group}, VM: {names.vm_name}",
            code=code,
        )

    if report.warnings:
        out.warn(f"Completed with {len(report.warnings)} warning(s)")
    out.success(f"Image ready: {report.image.name}")
    out.kv({"Image id": report.image.id})
