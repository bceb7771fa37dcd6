"""Simulated reactor for dry runs

A deliberately small plant model: every state variable relaxes toward an
operating point set by the gate flows. It is good enough to watch the
controller charge, burn and recover without real hardware.

    generation  ~ base_generation * T / 8000
    saturation  += (generation - outflow) * dt
    field       -> min(1, inflow / (2 * drain))      (tau = field_tau)
    temperature -> 6500 + 3000 * (1 - saturation)    (tau = thermal_tau)
"""

import logging
import math
from typing import Any, Dict

from .device import GATES, DeviceError, ReactorDevice
from .scheduler import MonotonicClock


class SimulatedReactor(ReactorDevice):
    def __init__(
        self,
        clock=None,
        max_energy: float = 1.0e9,
        max_field: float = 1.0e8,
        max_fuel: float = 10368.0,
        base_generation: float = 2.0e6,  # RF/s at 8000C
        field_drain: float = 1.0e6,  # RF/t
        fuel_rate: float = 0.01,  # fuel units/s at 8000C
        field_tau: float = 5.0,
        thermal_tau: float = 30.0,
    ):
        self.clock = clock or MonotonicClock()
        self.max_energy = max_energy
        self.max_field = max_field
        self.max_fuel = max_fuel
        self.base_generation = base_generation
        self.field_drain = field_drain
        self.fuel_rate = fuel_rate
        self.field_tau = field_tau
        self.thermal_tau = thermal_tau

        self.status = "running"
        self.temperature = 7000.0
        self.field_strength = 0.5 * max_field
        self.energy = 0.5 * max_energy
        self.fuel_conversion = 0.0
        self.flows = {gate: 0.0 for gate in GATES}
        self.overrides = {gate: False for gate in GATES}

        self._last = self.clock.now()
        self.logger = logging.getLogger(self.__class__.__name__)

    @staticmethod
    def _relax(value: float, target: float, dt: float, tau: float) -> float:
        return value + (target - value) * (1.0 - math.exp(-dt / tau))

    def _advance(self):
        now = self.clock.now()
        dt = now - self._last
        self._last = now
        if dt <= 0:
            return

        field_target = min(1.0, self.flows["in"] / (2.0 * self.field_drain))
        field_fraction = self._relax(
            self.field_strength / self.max_field, field_target, dt, self.field_tau
        )
        self.field_strength = field_fraction * self.max_field

        if self.status == "running":
            heat = self.temperature / 8000.0
            generation = self.base_generation * heat
            self.energy += (generation - self.flows["out"]) * dt
            self.energy = min(max(self.energy, 0.0), self.max_energy)
            self.fuel_conversion = min(
                self.max_fuel, self.fuel_conversion + self.fuel_rate * heat * dt
            )
            saturation = self.energy / self.max_energy
            temp_target = 6500.0 + 3000.0 * (1.0 - saturation)
        elif self.status == "stopping":
            temp_target = 20.0
        else:
            return

        self.temperature = self._relax(self.temperature, temp_target, dt, self.thermal_tau)
        if self.status == "stopping" and self.temperature < 2000.0:
            self.status = "cold"
            self.logger.info("Simulated reactor is cold")

    def get_reactor_info(self) -> Dict[str, Any]:
        self._advance()
        return {
            "status": self.status,
            "temperature": self.temperature,
            "fieldStrength": self.field_strength,
            "maxFieldStrength": self.max_field,
            "energySaturation": self.energy,
            "maxEnergySaturation": self.max_energy,
            "fuelConversion": self.fuel_conversion,
            "maxFuelConversion": self.max_fuel,
            "fieldDrainRate": self.field_drain,
        }

    def stop_reactor(self):
        self._advance()
        if self.status == "running":
            self.status = "stopping"

    def get_flow(self, gate: str) -> float:
        if gate not in GATES:
            raise DeviceError(f"Unknown gate {gate!r}")
        return self.flows[gate]

    def set_flow(self, gate: str, value: int):
        if gate not in GATES:
            raise DeviceError(f"Unknown gate {gate!r}")
        if not self.overrides[gate]:
            raise DeviceError(f"{gate} gate is not in override mode")
        self._advance()
        self.flows[gate] = float(max(0, value))

    def set_override(self, gate: str, enabled: bool):
        if gate not in GATES:
            raise DeviceError(f"Unknown gate {gate!r}")
        self.overrides[gate] = enabled
