"""Image build orchestration.

The orchestrator runs one build through a fixed, linear sequence of stages:

    Init -> QuotaChecked -> Provisioned -> Customized -> Sysprepped
         -> ShutdownConfirmed -> Captured -> CleanedUp -> Done

Every stage produces a StageOutcome. Whether a failed outcome aborts the
build or is only reported as a warning is looked up in STAGE_POLICY, so the
failure policy is plain data rather than a set of exception filters. There
are no retries at this level and no rollback: a fatal failure leaves the
resources as they are and reports the identifiers needed to continue by hand.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Protocol

from imgops.core.build import (
    AdminCredentials,
    BuildJob,
    BuildStage,
    CleanupResult,
    ImageHandle,
    ProvisionResult,
)
from imgops.core.capture import CaptureAdapter, capture
from imgops.core.cleanup import CleanupAdapter, cleanup, cleanup_error
from imgops.core.errors import ErrorKind, ImageBuildError
from imgops.core.power import MonitorResult, PowerStateAdapter, PowerStateMonitor
from imgops.core.provision import ProvisionAdapter, TemplateParameters, provision
from imgops.core.quota import QuotaAdapter, ensure_quota
from imgops.core.remote import RemoteAdapter, execute
from imgops.core.runlog import BuildLog
from imgops.core.settings import VM_RESOURCE_KIND, BuildSettings


class FailurePolicy(str, Enum):
    """What a failed stage does to the build."""

    FATAL = "fatal"
    WARN = "warn"


# stage -> (policy, kind used for unexpected exceptions raised in that stage)
STAGE_POLICY: dict[BuildStage, tuple[FailurePolicy, ErrorKind]] = {
    BuildStage.QUOTA_CHECKED: (FailurePolicy.FATAL, ErrorKind.QUOTA_EXCEEDED),
    BuildStage.PROVISIONED: (FailurePolicy.FATAL, ErrorKind.PROVISIONING),
    BuildStage.CUSTOMIZED: (FailurePolicy.WARN, ErrorKind.REMOTE_EXECUTION),
    BuildStage.SYSPREPPED: (FailurePolicy.WARN, ErrorKind.REMOTE_EXECUTION),
    BuildStage.SHUTDOWN_CONFIRMED: (FailurePolicy.FATAL, ErrorKind.SHUTDOWN_TIMEOUT),
    BuildStage.CAPTURED: (FailurePolicy.FATAL, ErrorKind.CAPTURE),
    BuildStage.CLEANED_UP: (FailurePolicy.WARN, ErrorKind.CLEANUP),
}


class BuildResources(QuotaAdapter, ProvisionAdapter, Protocol):
    """Resource-manager side of the build (quota listing, deployments)."""


class BuildCompute(
    RemoteAdapter, PowerStateAdapter, CaptureAdapter, CleanupAdapter, Protocol
):
    """Compute side of the build (run-command, power state, capture, deletes)."""


@dataclass(frozen=True)
class StageOutcome:
    """Result of attempting one stage."""

    stage: BuildStage
    value: Any = None
    error: ImageBuildError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class BuildReport:
    """What happened during one build run."""

    job: BuildJob
    outcomes: list[StageOutcome] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    provisioned: ProvisionResult | None = None
    shutdown: MonitorResult | None = None
    image: ImageHandle | None = None
    cleanup: list[CleanupResult] = field(default_factory=list)
    error: ImageBuildError | None = None
    failed_stage: BuildStage | None = None

    @property
    def stage(self) -> BuildStage:
        return self.job.stage

    @property
    def ok(self) -> bool:
        return self.error is None and self.job.stage == BuildStage.DONE

    def reached(self, stage: BuildStage) -> bool:
        """Return True if the stage was attempted during this run."""
        return any(o.stage == stage for o in self.outcomes)


def decide(outcome: StageOutcome) -> FailurePolicy | None:
    """Return None for a successful outcome, else the stage's failure policy."""
    if outcome.ok:
        return None
    # a cancelled wait leaves the VM for the user; nothing may run after it
    if outcome.error.kind is ErrorKind.MONITOR_CANCELLED:
        return FailurePolicy.FATAL
    policy, _ = STAGE_POLICY[outcome.stage]
    return policy


StageCallback = Callable[[BuildStage], None]


class BuildOrchestrator:
    """Sequence all build stages for one BuildJob and apply the failure policy."""

    def __init__(
        self,
        resources: BuildResources,
        compute: BuildCompute,
        settings: BuildSettings,
        log: BuildLog,
        *,
        template: dict[str, Any],
        customize_script: str,
        sysprep_script: str,
        monitor: PowerStateMonitor | None = None,
        on_stage: StageCallback | None = None,
    ):
        self.resources = resources
        self.compute = compute
        self.settings = settings
        self.log = log
        self.template = template
        self.customize_script = customize_script
        self.sysprep_script = sysprep_script
        self.monitor = monitor or PowerStateMonitor(
            compute,
            interval=settings.poll_interval,
            max_wait=settings.shutdown_timeout,
            log=log,
        )
        self.on_stage = on_stage

    def run(self, job: BuildJob) -> BuildReport:
        """
        Run a build from its current stage to Done.

        Returns:
            A BuildReport. `report.ok` is False when a fatal stage failed; in
            that case `report.error` holds the error and the job stays at the
            last completed stage.
        """
        report = BuildReport(job=job)
        steps: list[tuple[BuildStage, Callable[[BuildReport], Any]]] = [
            (BuildStage.QUOTA_CHECKED, self._check_quota),
            (BuildStage.PROVISIONED, self._provision),
            (BuildStage.CUSTOMIZED, self._customize),
            (BuildStage.SYSPREPPED, self._sysprep),
            (BuildStage.SHUTDOWN_CONFIRMED, self._wait_for_shutdown),
            (BuildStage.CAPTURED, self._capture),
            (BuildStage.CLEANED_UP, self._cleanup),
        ]

        self.log.info(
            f"Starting image build for job {job.job_number} "
            f"(resource group {job.resource_group}, VM {job.vm_name}, "
            f"location {job.location})"
        )

        for stage, action in steps:
            outcome = self._attempt(stage, action, report)
            report.outcomes.append(outcome)

            policy = decide(outcome)
            if policy is FailurePolicy.FATAL:
                return self._abort(report, outcome)
            if policy is FailurePolicy.WARN:
                message = f"{stage.value}: {outcome.error.describe()}"
                report.warnings.append(message)
                self.log.warning(f"{message} (continuing)")

            self._advance(job, stage)

        self._advance(job, BuildStage.DONE)
        self.log.success(
            f"Image build complete: {report.image.name if report.image else '-'}"
            + (f" with {len(report.warnings)} warning(s)" if report.warnings else "")
        )
        return report

    def _attempt(
        self,
        stage: BuildStage,
        action: Callable[[BuildReport], Any],
        report: BuildReport,
    ) -> StageOutcome:
        """Run one stage action and turn any failure into a StageOutcome."""
        try:
            return StageOutcome(stage=stage, value=action(report))
        except ImageBuildError as exc:
            return StageOutcome(stage=stage, error=exc)
        except Exception as exc:  # noqa: BLE001
            _, kind = STAGE_POLICY[stage]
            job = report.job
            error = ImageBuildError(
                f"Unexpected error: {exc}",
                kind=kind,
                context={"resource_group": job.resource_group, "vm": job.vm_name},
            )
            error.__cause__ = exc
            return StageOutcome(stage=stage, error=error)

    def _advance(self, job: BuildJob, stage: BuildStage) -> None:
        job.stage = stage
        if self.on_stage:
            self.on_stage(stage)

    def _abort(self, report: BuildReport, outcome: StageOutcome) -> BuildReport:
        job = report.job
        error = outcome.error
        report.error = error
        report.failed_stage = outcome.stage
        self.log.error(
            f"Build failed at stage {outcome.stage.value} "
            f"[{error.kind.value}]: {error.describe()}"
        )
        self.log.error(
            f"Resource group: {job.resource_group} | VM: {job.vm_name} | "
            f"last completed stage: {job.stage.value}"
        )
        if outcome.stage == BuildStage.CAPTURED:
            self.log.error(
                f"VM '{job.vm_name}' was kept for debugging and may already be generalized."
            )
        elif outcome.stage == BuildStage.SHUTDOWN_CONFIRMED:
            self.log.error(f"VM '{job.vm_name}' was left in its current state.")
        return report

    # ------------------------------------------------------------------
    # Stage actions
    # ------------------------------------------------------------------

    def _check_quota(self, report: BuildReport):
        job = report.job
        self.log.info(f"Checking existing VMs in {job.resource_group}")
        check = ensure_quota(
            self.resources,
            job.resource_group,
            VM_RESOURCE_KIND,
            self.settings.max_vms,
        )
        self.log.info(
            f"Quota ok: {len(check.existing)}/{check.max_allowed} VM(s) in {job.resource_group}"
        )
        return check

    def _provision(self, report: BuildReport) -> ProvisionResult:
        job = report.job
        if job.credentials is None:
            job.credentials = AdminCredentials.generate(self.settings.admin_username)

        self.log.info(f"Provisioning build infrastructure in {job.resource_group}")
        params = TemplateParameters(
            location=job.location,
            credentials=job.credentials,
            build_timestamp=job.build_timestamp,
            job_number=job.job_number,
            name_prefix=self.settings.prefix,
            vm_size=self.settings.vm_size,
        )
        result = provision(self.resources, self.template, params, job.resource_group)
        report.provisioned = result
        self.log.success(
            f"VM '{result.vm_name}' provisioned"
            + (f" at {result.public_address}" if result.public_address else "")
        )
        return result

    def _customize(self, report: BuildReport):
        job = report.job
        self.log.info(f"Waiting for '{job.vm_name}' to be running")
        self.monitor.wait_until_running(
            job.resource_group, job.vm_name, max_wait=self.settings.ready_timeout
        )
        self.log.info(f"Running customization script on '{job.vm_name}'")
        result = execute(
            self.compute,
            job.resource_group,
            job.vm_name,
            self.customize_script,
            purpose="customization",
        )
        for line in result.stdout.splitlines():
            if line.strip():
                self.log.info(f"  {line.rstrip()}")
        self.log.success("Customization finished")
        return result

    def _sysprep(self, report: BuildReport):
        job = report.job
        self.log.info(f"Dispatching sysprep to '{job.vm_name}'")
        result = execute(
            self.compute,
            job.resource_group,
            job.vm_name,
            self.sysprep_script,
            purpose="sysprep",
        )
        self.log.info("Sysprep dispatched; the VM shuts itself down when it is done")
        return result

    def _wait_for_shutdown(self, report: BuildReport) -> MonitorResult:
        job = report.job
        self.log.info(f"Waiting for '{job.vm_name}' to shut down")
        result = self.monitor.wait_for_shutdown(job.resource_group, job.vm_name)
        report.shutdown = result
        self.log.success(
            f"VM '{job.vm_name}' is {result.power_state.value} after {int(result.elapsed)}s"
        )
        return result

    def _capture(self, report: BuildReport) -> ImageHandle:
        job = report.job
        image = capture(
            self.compute,
            job.resource_group,
            job.vm_name,
            job.names.image_name,
            job.location,
            power_state=report.shutdown.power_state,
            hyper_v_generation=self.settings.hyper_v_generation,
            log=self.log,
        )
        report.image = image
        job.credentials = None
        self.log.success(f"Image captured: {image.name} ({image.id})")
        return image

    def _cleanup(self, report: BuildReport) -> list[CleanupResult]:
        job = report.job
        self.log.info("Deleting ephemeral build resources")
        results = cleanup(self.compute, job.names)
        report.cleanup = results
        for r in results:
            if r.deleted:
                self.log.info(f"Deleted {r.kind} '{r.name}'")
        error = cleanup_error(job.names, results)
        if error:
            raise error
        return results
