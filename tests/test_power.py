import pytest

from imgops.core.build import PowerState
from imgops.core.errors import (
    MonitorCancelledError,
    RemoteExecutionError,
    ShutdownTimeoutError,
)
from imgops.core.power import MonitorState, PowerStateMonitor


class _SequenceAdapter:
    """Returns the given states in order, repeating the last one."""

    def __init__(self, states):
        self.states = list(states)
        self.calls = 0

    def get_power_state(self, resource_group, vm_name):
        self.calls += 1
        if len(self.states) > 1:
            return self.states.pop(0)
        return self.states[0]


def _monitor(adapter, clock, **kwargs):
    kwargs.setdefault("interval", 30)
    kwargs.setdefault("max_wait", 1200)
    return PowerStateMonitor(adapter, clock=clock, sleep=clock.sleep, **kwargs)


def test_rejects_invalid_interval(clock):
    with pytest.raises(ValueError, match="interval"):
        _monitor(_SequenceAdapter([PowerState.RUNNING]), clock, interval=0)


def test_shutdown_reached_after_two_polls(clock):
    adapter = _SequenceAdapter([PowerState.RUNNING, PowerState.RUNNING, PowerState.STOPPED])
    monitor = _monitor(adapter, clock)

    result = monitor.wait_for_shutdown("rg", "vm")

    assert result.power_state == PowerState.STOPPED
    assert result.state == MonitorState.STOPPED
    assert result.polls == 2
    assert result.elapsed == 60
    assert clock.sleeps == [30, 30]
    assert adapter.calls == 3


def test_already_stopped_returns_without_sleeping(clock):
    monitor = _monitor(_SequenceAdapter([PowerState.DEALLOCATED]), clock)

    result = monitor.wait_for_shutdown("rg", "vm")

    assert result.state == MonitorState.DEALLOCATED
    assert result.polls == 0
    assert clock.sleeps == []


def test_deallocating_is_not_a_target(clock):
    adapter = _SequenceAdapter(
        [PowerState.STOPPING, PowerState.DEALLOCATING, PowerState.DEALLOCATED]
    )

    result = _monitor(adapter, clock).wait_for_shutdown("rg", "vm")

    assert result.power_state == PowerState.DEALLOCATED
    assert result.polls == 2


def test_unknown_state_keeps_polling(clock):
    adapter = _SequenceAdapter([PowerState.UNKNOWN, PowerState.STOPPED])

    result = _monitor(adapter, clock).wait_for_shutdown("rg", "vm")

    assert result.polls == 1


def test_timeout_is_raised_at_the_ceiling(clock):
    monitor = _monitor(_SequenceAdapter([PowerState.RUNNING]), clock, max_wait=100)

    with pytest.raises(ShutdownTimeoutError) as info:
        monitor.wait_for_shutdown("rg", "vm")

    assert info.value.elapsed == 100
    assert info.value.last_state == PowerState.RUNNING
    assert info.value.context == {"resource_group": "rg", "vm": "vm"}
    assert clock.sleeps == [30, 30, 30, 10]
    assert monitor.state == MonitorState.TIMED_OUT


def test_wait_until_running_times_out_as_remote_error(clock):
    monitor = _monitor(_SequenceAdapter([PowerState.STARTING]), clock)

    with pytest.raises(RemoteExecutionError, match="not running"):
        monitor.wait_until_running("rg", "vm", max_wait=60)


def test_wait_until_running_returns_when_running(clock):
    adapter = _SequenceAdapter([PowerState.STARTING, PowerState.RUNNING])

    result = _monitor(adapter, clock).wait_until_running("rg", "vm")

    assert result.power_state == PowerState.RUNNING
    assert result.state == MonitorState.REACHED


def test_cancel_stops_polling_without_touching_vm(clock):
    adapter = _SequenceAdapter([PowerState.RUNNING])
    monitor = _monitor(adapter, clock)
    monitor.cancel()

    with pytest.raises(MonitorCancelledError):
        monitor.wait_for_shutdown("rg", "vm")

    assert adapter.calls == 0
    assert monitor.state == MonitorState.CANCELLED


def test_keyboard_interrupt_during_sleep_cancels(clock):
    def _interrupt(_seconds):
        raise KeyboardInterrupt

    monitor = PowerStateMonitor(
        _SequenceAdapter([PowerState.RUNNING]),
        interval=30,
        max_wait=1200,
        clock=clock,
        sleep=_interrupt,
    )

    with pytest.raises(MonitorCancelledError) as info:
        monitor.wait_for_shutdown("rg", "vm")

    assert info.value.last_state == PowerState.RUNNING


def test_progress_is_logged(clock, run_log):
    adapter = _SequenceAdapter([PowerState.RUNNING, PowerState.STOPPED])

    _monitor(adapter, clock, log=run_log).wait_for_shutdown("rg", "vm-1")

    assert any("vm-1" in line and "running" in line for line in run_log.handler.lines)


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("PowerState/running", PowerState.RUNNING),
        ("PowerState/deallocated", PowerState.DEALLOCATED),
        ("VM stopped", PowerState.STOPPED),
        ("PowerState/hibernated", PowerState.UNKNOWN),
        (None, PowerState.UNKNOWN),
    ],
)
def test_power_state_parse(raw, expected):
    assert PowerState.parse(raw) == expected
