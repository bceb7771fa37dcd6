"""Reactor telemetry snapshot and status parsing"""

import math
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional


class ReactorStatus(Enum):
    """Operating mode as reported by the reactor"""

    COLD = "cold"
    OFFLINE = "offline"
    WARMING_UP = "warming_up"
    CHARGING = "charging"
    RUNNING = "running"
    ONLINE = "online"
    STOPPING = "stopping"
    BEYOND_HOPE = "beyond_hope"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: Any) -> "ReactorStatus":
        if isinstance(value, str):
            try:
                return cls(value.strip().lower())
            except ValueError:
                pass
        return cls.UNKNOWN

    @property
    def is_running(self) -> bool:
        return self in (ReactorStatus.RUNNING, ReactorStatus.ONLINE)


# Modes in which the reactor is not producing and no emergency can be raised
INACTIVE_STATUSES = frozenset(
    {
        ReactorStatus.COLD,
        ReactorStatus.OFFLINE,
        ReactorStatus.WARMING_UP,
        ReactorStatus.CHARGING,
    }
)


def _number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or value is None:
        return None
    try:
        result = float(value)
    except (TypeError, ValueError):
        return None
    # NaN and Infinity survive json.loads but are never a usable reading
    if not math.isfinite(result):
        return None
    return result


def _ratio(numerator: Optional[float], denominator: Optional[float]) -> Optional[float]:
    """Divide guarding a missing or non-positive denominator"""
    if numerator is None or denominator is None or denominator <= 0:
        return None
    return numerator / denominator


@dataclass(frozen=True)
class ReactorStatusSnapshot:
    """Immutable view of one reactor info read

    Any field may be None when the device did not report it. The fraction
    properties return None whenever they cannot be computed, callers treat
    that as "not applicable".
    """

    timestamp: float
    status: ReactorStatus = ReactorStatus.UNKNOWN
    temperature: Optional[float] = None
    field_strength: Optional[float] = None
    max_field_strength: Optional[float] = None
    energy_saturation: Optional[float] = None
    max_energy_saturation: Optional[float] = None
    fuel_conversion: Optional[float] = None
    max_fuel_conversion: Optional[float] = None
    field_drain_rate: Optional[float] = None

    @classmethod
    def from_info(
        cls, info: Dict[str, Any], timestamp: Optional[float] = None
    ) -> "ReactorStatusSnapshot":
        """Parse the raw info mapping returned by the reactor

        Args:
            info: Mapping with the device's camelCase keys
            timestamp: Monotonic read time, defaults to ``time.monotonic()``
        """
        return cls(
            timestamp=time.monotonic() if timestamp is None else timestamp,
            status=ReactorStatus.parse(info.get("status")),
            temperature=_number(info.get("temperature")),
            field_strength=_number(info.get("fieldStrength")),
            max_field_strength=_number(info.get("maxFieldStrength")),
            energy_saturation=_number(info.get("energySaturation")),
            max_energy_saturation=_number(info.get("maxEnergySaturation")),
            fuel_conversion=_number(info.get("fuelConversion")),
            max_fuel_conversion=_number(info.get("maxFuelConversion")),
            field_drain_rate=_number(info.get("fieldDrainRate")),
        )

    @property
    def field_fraction(self) -> Optional[float]:
        return _ratio(self.field_strength, self.max_field_strength)

    @property
    def saturation_fraction(self) -> Optional[float]:
        return _ratio(self.energy_saturation, self.max_energy_saturation)

    @property
    def fuel_remaining(self) -> Optional[float]:
        """Unconverted fuel as a fraction of the fuel basis"""
        converted = _ratio(self.fuel_conversion, self.max_fuel_conversion)
        if converted is None:
            return None
        return 1.0 - converted

    def summary(self) -> str:
        """One-line status for the log"""

        def pct(value: Optional[float]) -> str:
            return "n/a" if value is None else f"{value * 100:.1f}%"

        temp = "n/a" if self.temperature is None else f"{self.temperature:.0f}C"
        return (
            f"status={self.status.value} temp={temp} "
            f"field={pct(self.field_fraction)} "
            f"saturation={pct(self.saturation_fraction)} "
            f"fuel={pct(self.fuel_remaining)}"
        )
