"""VM power-state monitoring.

The monitor polls the provider for a VM's power state at a fixed interval
until a target state is reached or a hard ceiling is hit. Time is read from
an injectable clock and waiting goes through an injectable sleep function,
so the state machine can be driven in tests without real delays.

Cancelling a wait (cancel() or Ctrl+C) only stops local polling; the VM
itself is left exactly as it is for manual inspection.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Collection, Protocol

from imgops.core.build import PowerState
from imgops.core.errors import (
    ImageBuildError,
    MonitorCancelledError,
    RemoteExecutionError,
    ShutdownTimeoutError,
)
from imgops.core.runlog import BuildLog

DEFAULT_POLL_INTERVAL = 30
DEFAULT_MAX_WAIT = 20 * 60


class PowerStateAdapter(Protocol):
    """Interface for reading a VM's power state."""

    def get_power_state(self, resource_group: str, vm_name: str) -> PowerState:
        """Return the current power state of a VM."""
        ...


class MonitorState(str, Enum):
    """States of the monitor itself (not of the VM)."""

    IDLE = "Idle"
    RUNNING = "Running"
    WAITING = "Stopping/Other"
    STOPPED = "Stopped"
    DEALLOCATED = "Deallocated"
    REACHED = "Reached"
    TIMED_OUT = "TimedOut"
    CANCELLED = "Cancelled"


@dataclass(frozen=True)
class MonitorResult:
    """
    Result of a successful wait.

    Attributes:
        state: Terminal monitor state.
        power_state: Last observed VM power state.
        elapsed: Seconds since the wait started.
        polls: Number of poll intervals waited before the target was seen.
    """

    state: MonitorState
    power_state: PowerState
    elapsed: float
    polls: int


TimeoutFactory = Callable[[float, PowerState], ImageBuildError]


def _format_elapsed(seconds: float) -> str:
    minutes, secs = divmod(int(seconds), 60)
    return f"{minutes}m{secs:02d}s"


class PowerStateMonitor:
    """Poll a VM's power state until a target state or a timeout."""

    def __init__(
        self,
        adapter: PowerStateAdapter,
        *,
        interval: float = DEFAULT_POLL_INTERVAL,
        max_wait: float = DEFAULT_MAX_WAIT,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], object] | None = None,
        log: BuildLog | None = None,
    ):
        if interval <= 0:
            raise ValueError("interval must be > 0")
        if max_wait < 0:
            raise ValueError("max_wait must be >= 0")
        self.adapter = adapter
        self.interval = interval
        self.max_wait = max_wait
        self.clock = clock
        self._cancel = threading.Event()
        self.sleep = sleep or self._cancel.wait
        self.log = log
        self.state = MonitorState.IDLE

    def cancel(self) -> None:
        """Stop waiting at the next opportunity. Safe to call from another thread."""
        self._cancel.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def wait_for_shutdown(self, resource_group: str, vm_name: str) -> MonitorResult:
        """
        Block until the VM is stopped or deallocated.

        Raises:
            ShutdownTimeoutError: If max_wait elapses first.
            MonitorCancelledError: If the wait is cancelled.
        """

        def _timeout(elapsed: float, last: PowerState) -> ImageBuildError:
            return ShutdownTimeoutError(
                f"VM '{vm_name}' did not shut down within {_format_elapsed(elapsed)} "
                f"(last state: {last.value})",
                elapsed=elapsed,
                last_state=last,
                context={"resource_group": resource_group, "vm": vm_name},
            )

        return self._wait(
            resource_group,
            vm_name,
            (PowerState.STOPPED, PowerState.DEALLOCATED),
            self.max_wait,
            _timeout,
        )

    def wait_until_running(
        self,
        resource_group: str,
        vm_name: str,
        *,
        max_wait: float | None = None,
    ) -> MonitorResult:
        """Block until the VM reports running, e.g. before sending a script."""

        def _timeout(elapsed: float, last: PowerState) -> ImageBuildError:
            return RemoteExecutionError(
                f"VM '{vm_name}' was not running after {_format_elapsed(elapsed)} "
                f"(last state: {last.value})",
                context={"resource_group": resource_group, "vm": vm_name},
            )

        return self._wait(
            resource_group,
            vm_name,
            (PowerState.RUNNING,),
            self.max_wait if max_wait is None else max_wait,
            _timeout,
        )

    def _wait(
        self,
        resource_group: str,
        vm_name: str,
        targets: Collection[PowerState],
        max_wait: float,
        on_timeout: TimeoutFactory,
    ) -> MonitorResult:
        start = self.clock()
        polls = 0
        last: PowerState | None = None

        try:
            while True:
                if self.cancelled:
                    raise KeyboardInterrupt

                last = self.adapter.get_power_state(resource_group, vm_name)
                elapsed = self.clock() - start

                if last in targets:
                    self.state = self._terminal_state(last)
                    return MonitorResult(
                        state=self.state,
                        power_state=last,
                        elapsed=elapsed,
                        polls=polls,
                    )

                self.state = (
                    MonitorState.RUNNING
                    if last == PowerState.RUNNING
                    else MonitorState.WAITING
                )

                if elapsed >= max_wait:
                    self.state = MonitorState.TIMED_OUT
                    raise on_timeout(elapsed, last)

                if self.log:
                    self.log.info(
                        f"VM '{vm_name}' is {last.value} "
                        f"({_format_elapsed(elapsed)} elapsed), checking again in "
                        f"{int(self.interval)}s"
                    )
                self.sleep(min(self.interval, max_wait - elapsed))
                polls += 1
        except KeyboardInterrupt as exc:
            self.state = MonitorState.CANCELLED
            raise MonitorCancelledError(
                f"Stopped waiting for VM '{vm_name}'; the VM was left as-is",
                last_state=last,
                context={"resource_group": resource_group, "vm": vm_name},
            ) from exc

    @staticmethod
    def _terminal_state(state: PowerState) -> MonitorState:
        if state == PowerState.STOPPED:
            return MonitorState.STOPPED
        if state == PowerState.DEALLOCATED:
            return MonitorState.DEALLOCATED
        return MonitorState.REACHED
