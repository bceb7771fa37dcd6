"""
Safety configuration for the burn controller
============================================

All tunables are collected in one immutable ``SafetyConfig`` that is built
once at startup and handed to every component. The strategy constants below
it are part of the burn/recover algorithm itself and are not meant to be
tuned per installation.
"""

import json
import math
from dataclasses import dataclass, fields, replace as dc_replace
from typing import Any, Dict


# Burn gating: all three must hold before a burn is even planned
BURN_MIN_FIELD_FRACTION = 0.40
BURN_MIN_SATURATION_FRACTION = 0.30

# Recovery must outlast the drain so the margin is rebuilt before the next burn
REST_MULTIPLIER = 1.2

# Fallback regulation
TEMPERATURE_OUTFLOW_GAIN = 20000.0  # RF/t per degree above target
SAFE_DUMP_SATURATION = 0.90  # start dumping above 90% buffer
SAFE_DUMP_GAIN = 10.0  # (sat - 0.9) * 10 -> 0..1 of max outflow
WEAK_FIELD_FRACTION = 0.30  # below this: no dumping, full charge
FIELD_INFLOW_GAIN = 60000000.0  # RF/t per unit of field error
DEFAULT_FIELD_DRAIN = 100000.0  # RF/t when the device omits fieldDrainRate
LARGE_OUTFLOW = 1000000.0  # outflow above this forces full charge

# Buffer warning level while running
NEAR_FULL_SATURATION = 0.95


@dataclass(frozen=True)
class SafetyConfig:
    """Thresholds and tunables shared by the whole control core"""

    # Actuator limits [RF/t]
    charge_inflow: float = 2000000000.0
    max_outflow: float = 2000000000.0

    # Targets and hard limits
    default_temp: float = 8000.0  # target core temperature
    default_field: float = 0.5  # target field fraction
    max_overshoot: float = 200.0  # allowed degrees above target
    shut_down_field: float = 0.15  # field floor
    min_fuel: float = 0.02  # remaining fuel floor

    # Burn planning
    max_tick_lag: float = 0.5  # worst-case telemetry delay [s]
    safety_margin_frac: float = 0.05
    min_safe_saturation_frac: float = 0.10
    abort_burn_frac: float = 0.08  # watchdog floor
    rate_sample_window: int = 5

    # Loop timing
    burn_outflow_fraction: float = 0.95  # requested outflow as share of max
    ramp_steps: int = 6
    ramp_step_delay: float = 0.03  # [s]
    pre_charge_delay: float = 0.15  # [s]
    burn_tick_interval: float = 0.05  # [s], ~20 Hz watchdog
    control_interval: float = 1.0  # [s]
    max_consecutive_failures: int = 5

    def __post_init__(self):
        """Reject values the control loop cannot work with"""
        for f in fields(self):
            value = getattr(self, f.name)
            if not math.isfinite(float(value)):
                raise ValueError(f"{f.name} must be finite, got {value}")

        for name in ("charge_inflow", "max_outflow", "default_temp"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")

        for name in (
            "default_field",
            "shut_down_field",
            "min_fuel",
            "safety_margin_frac",
            "min_safe_saturation_frac",
            "abort_burn_frac",
        ):
            value = getattr(self, name)
            if not 0.0 <= value < 1.0:
                raise ValueError(f"{name} must be a fraction in [0, 1), got {value}")

        if not 0.0 < self.burn_outflow_fraction <= 1.0:
            raise ValueError("burn_outflow_fraction must be in (0, 1]")

        for name in ("max_overshoot", "max_tick_lag", "ramp_step_delay", "pre_charge_delay"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must not be negative")

        for name in ("burn_tick_interval", "control_interval"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")

        for name in ("rate_sample_window", "ramp_steps", "max_consecutive_failures"):
            if int(getattr(self, name)) < 1:
                raise ValueError(f"{name} must be at least 1")

    def replace(self, **overrides) -> "SafetyConfig":
        """Return a copy with some fields changed (validated again)"""
        return dc_replace(self, **overrides)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SafetyConfig":
        """Build a config from a mapping, accepting a nested ``reactor`` table

        Raises:
            ValueError: On unknown keys or out-of-range values
        """
        if not isinstance(data, dict):
            raise ValueError("Configuration must be a JSON object")

        if isinstance(data.get("reactor"), dict):
            extra = sorted(set(data) - {"reactor"})
            if extra:
                raise ValueError(f"Keys outside the reactor table: {extra}")
            data = data["reactor"]

        known = {f.name: f for f in fields(cls)}
        unknown = sorted(set(data) - set(known))
        if unknown:
            raise ValueError(f"Unknown configuration keys: {unknown}")

        values = {}
        for name, value in data.items():
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ValueError(f"{name} must be numeric, got {value!r}")
            values[name] = int(value) if known[name].type is int else float(value)

        return cls(**values)

    @classmethod
    def load(cls, path: str) -> "SafetyConfig":
        """Load configuration from a JSON file"""
        with open(path, "r") as f:
            try:
                data = json.load(f)
            except json.JSONDecodeError as e:
                raise ValueError(f"Invalid configuration file {path}: {e}") from e

        return cls.from_dict(data)
