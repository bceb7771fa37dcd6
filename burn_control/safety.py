"""Safety checks

Pure functions of a snapshot and the config: calling them again on the same
snapshot always gives the same answer. Acting on the result (shutting the
reactor down) is left to the controller.

Missing telemetry never trips the emergency or fuel check on its own. A
fraction that cannot be computed because its capacity field is absent or zero
counts as "not applicable" there. The burn watchdog is stricter: an unknown
buffer fraction ends the burn.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from .config import NEAR_FULL_SATURATION, SafetyConfig
from .telemetry import INACTIVE_STATUSES, ReactorStatus, ReactorStatusSnapshot


def is_emergency(snapshot: Optional[ReactorStatusSnapshot], config: SafetyConfig) -> bool:
    """True when temperature, field or fuel is past its hard limit"""
    if snapshot is None or snapshot.temperature is None:
        return False

    if snapshot.status in INACTIVE_STATUSES:
        return False

    if snapshot.temperature > config.default_temp + config.max_overshoot:
        return True

    field = snapshot.field_fraction
    if field is not None and field < config.shut_down_field:
        return True

    fuel = snapshot.fuel_remaining
    if fuel is not None and fuel < config.min_fuel:
        return True

    return False


def emergency_reason(snapshot: ReactorStatusSnapshot, config: SafetyConfig) -> str:
    """Human readable cause for the emergency log entry"""
    reasons = []
    if snapshot.temperature is not None and (
        snapshot.temperature > config.default_temp + config.max_overshoot
    ):
        reasons.append(
            f"temperature {snapshot.temperature:.0f} > "
            f"{config.default_temp + config.max_overshoot:.0f}"
        )
    field = snapshot.field_fraction
    if field is not None and field < config.shut_down_field:
        reasons.append(f"field {field:.3f} < {config.shut_down_field:.3f}")
    fuel = snapshot.fuel_remaining
    if fuel is not None and fuel < config.min_fuel:
        reasons.append(f"fuel {fuel:.3f} < {config.min_fuel:.3f}")
    return ", ".join(reasons) or "unknown"


@dataclass(frozen=True)
class FuelCheck:
    """Verdict of the fuel and buffer check"""

    ok: bool
    reason: Optional[str] = None
    warning: Optional[str] = None


def check_fuel_and_buffer(snapshot: ReactorStatusSnapshot, config: SafetyConfig) -> FuelCheck:
    """Check there is fuel left and the energy buffer is not full"""
    if snapshot.status == ReactorStatus.COLD:
        return FuelCheck(ok=True)

    fuel = snapshot.fuel_remaining
    if fuel is not None and fuel <= 0:
        return FuelCheck(ok=False, reason="Reactor has no fuel, insert fuel before startup")

    sat = snapshot.saturation_fraction
    if sat is not None:
        if sat >= 1.0:
            return FuelCheck(ok=False, reason="Energy buffer full")
        if sat >= NEAR_FULL_SATURATION and snapshot.status.is_running:
            return FuelCheck(ok=True, warning="Energy buffer nearing full capacity")

    return FuelCheck(ok=True)


class BurnWatchdog:
    """Per-tick check during a burn, independent of the planner

    The planner's reserve covers the expected drain; this floor catches
    everything it did not foresee within one burn tick.
    """

    def __init__(self, config: SafetyConfig):
        self.config = config
        self.logger = logging.getLogger(self.__class__.__name__)
        self.last_trip: Optional[str] = None

    def check(self, snapshot: ReactorStatusSnapshot) -> bool:
        """True while it is safe to keep burning

        A buffer fraction that cannot be computed ends the burn, the drain
        is then unobservable. An undefined field fraction does not.
        """
        sat = snapshot.saturation_fraction
        if sat is None:
            self.last_trip = "saturation unknown"
            return False
        if sat < self.config.abort_burn_frac:
            self.last_trip = f"saturation {sat:.3f} < {self.config.abort_burn_frac:.3f}"
            return False

        field = snapshot.field_fraction
        if field is not None and field < self.config.shut_down_field:
            self.last_trip = f"field {field:.3f} < {self.config.shut_down_field:.3f}"
            return False

        return True
