"""Shared fixtures: a fake clock and a scripted reactor device."""

import pytest

from burn_control.config import SafetyConfig
from burn_control.device import DeviceError, ReactorDevice
from burn_control.telemetry import ReactorStatusSnapshot


class FakeClock:
    """Clock that only moves when something sleeps."""

    def __init__(self, start=0.0):
        self.t = start
        self.sleeps = []

    def now(self):
        return self.t

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        if seconds > 0:
            self.t += seconds


def make_info(
    temperature=7000.0,
    field=0.5,
    saturation=0.4,
    fuel_used=0.1,
    status="running",
    max_field=1.0e8,
    max_energy=1.0e9,
    max_fuel=10000.0,
    drain=100000.0,
):
    """Raw device info with fractions converted to absolute values."""
    return {
        "status": status,
        "temperature": temperature,
        "fieldStrength": field * max_field,
        "maxFieldStrength": max_field,
        "energySaturation": saturation * max_energy,
        "maxEnergySaturation": max_energy,
        "fuelConversion": fuel_used * max_fuel,
        "maxFuelConversion": max_fuel,
        "fieldDrainRate": drain,
    }


def make_snapshot(timestamp=0.0, **kwargs):
    return ReactorStatusSnapshot.from_info(make_info(**kwargs), timestamp=timestamp)


class MockReactor(ReactorDevice):
    """Reactor returning scripted info and recording every gate write.

    ``infos`` is consumed one entry per ``get_reactor_info`` call; the last
    entry repeats. A ``None`` entry makes that read fail.
    """

    def __init__(self, infos=None):
        self.infos = list(infos or [make_info()])
        self.reads = 0
        self.writes = []
        self.flows = {"in": 0.0, "out": 0.0}
        self.overrides = {}
        self.stopped = False
        self.fail_writes = set()

    def get_reactor_info(self):
        index = min(self.reads, len(self.infos) - 1)
        self.reads += 1
        info = self.infos[index]
        if info is None:
            raise DeviceError("peripheral detached")
        return dict(info)

    def stop_reactor(self):
        self.stopped = True

    def get_flow(self, gate):
        return self.flows[gate]

    def set_flow(self, gate, value):
        self.writes.append((gate, value))
        if (gate, value) in self.fail_writes or gate in self.fail_writes:
            raise DeviceError("write rejected")
        self.flows[gate] = value

    def set_override(self, gate, enabled):
        self.overrides[gate] = enabled

    def gate_writes(self, gate):
        return [value for g, value in self.writes if g == gate]


@pytest.fixture
def config():
    return SafetyConfig()


@pytest.fixture
def clock():
    return FakeClock()
