"""Safety-bounded burn planning

A burn discharges the buffer at (close to) maximum outflow for as long as the
buffer can sustain it without ever falling below::

    min_safe_saturation_frac + safety_margin_frac + lag reserve

where the lag reserve is what the buffer can lose during ``max_tick_lag``
seconds at the predicted net drain. Even if telemetry lags by the worst case
while the burn runs, the buffer stays above the floor before the next
observation can react.
"""

import logging
import math
from dataclasses import dataclass
from typing import Optional

from .config import REST_MULTIPLIER, SafetyConfig
from .telemetry import ReactorStatusSnapshot


@dataclass(frozen=True)
class BurnPlan:
    """Parameters of one discharge burn"""

    allowed_outflow: int  # RF/t, floored, <= max_outflow
    burn_duration: float  # s, > 0
    rest_duration: float  # s, >= burn_duration
    predicted_net: float  # RF/s during the burn, negative drains
    required_reserve_fraction: float  # share of capacity held back


class BurnPlanner:
    """Stateless planner: same inputs, same plan"""

    def __init__(self, config: SafetyConfig):
        self.config = config
        self.logger = logging.getLogger(self.__class__.__name__)

    def plan(
        self,
        snapshot: ReactorStatusSnapshot,
        estimated_rate: float,
        desired_outflow: Optional[float] = None,
    ) -> Optional[BurnPlan]:
        """Compute a burn plan, or None when no burn is safe

        Args:
            snapshot: Latest reactor telemetry
            estimated_rate: Net buffer rate without the burn [RF/s]
            desired_outflow: Requested discharge, defaults to
                ``burn_outflow_fraction`` of ``max_outflow``
        """
        cfg = self.config
        capacity = snapshot.max_energy_saturation
        if capacity is None or capacity <= 0 or snapshot.energy_saturation is None:
            return None

        sat_fraction = snapshot.energy_saturation / capacity

        if desired_outflow is None:
            desired_outflow = cfg.max_outflow * cfg.burn_outflow_fraction
        outflow = min(max(desired_outflow, 0.0), cfg.max_outflow)

        net = estimated_rate - outflow

        reserve_fraction = 0.0
        if net < 0:
            worst_drop = abs(net) * cfg.max_tick_lag
            reserve_fraction = worst_drop / capacity
        required_reserve = reserve_fraction + cfg.safety_margin_frac

        available_fraction = sat_fraction - required_reserve - cfg.min_safe_saturation_frac
        if available_fraction <= 0:
            self.logger.debug(
                "No safe burn: saturation %.3f, reserve %.3f, floor %.3f",
                sat_fraction,
                required_reserve,
                cfg.min_safe_saturation_frac,
            )
            return None

        available_energy = available_fraction * capacity
        burn_duration = available_energy / max(1.0, abs(net))

        return BurnPlan(
            allowed_outflow=int(math.floor(outflow)),
            burn_duration=burn_duration,
            rest_duration=burn_duration * REST_MULTIPLIER,
            predicted_net=net,
            required_reserve_fraction=required_reserve,
        )
