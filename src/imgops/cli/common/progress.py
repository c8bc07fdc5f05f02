"""Progress display for a running build."""

from __future__ import annotations

from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TaskProgressColumn,
    TextColumn,
    TimeElapsedColumn,
)

from imgops.cli.common.output import console
from imgops.core.build import PIPELINE, BuildStage

_TOTAL_STEPS = len(PIPELINE) - 1


def stage_position(stage: BuildStage) -> int:
    """Return how many transitions separate Init from the given stage."""
    return PIPELINE.index(stage)


def stage_label(stage: BuildStage) -> str:
    """Render `<n>/<total> <stage>` for the progress line."""
    return f"{stage_position(stage)}/{_TOTAL_STEPS} {stage.value}"


class StageProgress:
    """
    Live progress bar that follows the orchestrator's stage transitions.

    Use as a context manager and pass the instance as the orchestrator's
    `on_stage` callback. Log lines printed through the shared console are
    rendered above the bar.
    """

    def __init__(self) -> None:
        self._progress = Progress(
            SpinnerColumn(),
            TextColumn("[bold]{task.description}[/]"),
            BarColumn(),
            TaskProgressColumn(),
            TimeElapsedColumn(),
            console=console,
            transient=True,
        )
        self._task_id = None

    def __enter__(self) -> StageProgress:
        self._progress.start()
        self._task_id = self._progress.add_task(
            stage_label(BuildStage.INIT), total=_TOTAL_STEPS
        )
        return self

    def __exit__(self, *exc) -> None:
        self._progress.stop()

    def __call__(self, stage: BuildStage) -> None:
        if self._task_id is None:
            return
        self._progress.update(
            self._task_id,
            description=stage_label(stage),
            completed=stage_position(stage),
        )
