"""
Burn/recover reactor controller
===============================

Keeps the reactor inside its safe envelope while extracting as much energy as
possible. Instead of throttling the output gate continuously, the controller
charges the energy buffer, discharges it in a bounded burn at high outflow,
then rests long enough to rebuild the margin before the next burn:

    IDLE --(field > 40%, buffer > 30%, temp < target, plan found)--> BURNING
    BURNING --(duration elapsed | watchdog trip | telemetry lost)--> rest --> IDLE

When no burn is allowed the controller regulates continuously: outflow
follows the temperature error (plus a dump above 90% buffer) and inflow
follows the field error.

Everything runs on one thread. The only pauses are the ramp step delay, the
burn tick and the post-burn rest, and fresh telemetry is read after each of
them before anything is decided.
"""

import logging
import math
import signal
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple

import numpy as np

from .config import (
    BURN_MIN_FIELD_FRACTION,
    BURN_MIN_SATURATION_FRACTION,
    DEFAULT_FIELD_DRAIN,
    FIELD_INFLOW_GAIN,
    LARGE_OUTFLOW,
    SAFE_DUMP_GAIN,
    SAFE_DUMP_SATURATION,
    TEMPERATURE_OUTFLOW_GAIN,
    WEAK_FIELD_FRACTION,
    SafetyConfig,
)
from .device import GATES, INFLOW_GATE, OUTFLOW_GATE, DeviceLink, FlowActuator, ReactorDevice
from .estimator import EnergyRateEstimator
from .planner import BurnPlan, BurnPlanner
from .ramp import RampController
from .safety import BurnWatchdog, check_fuel_and_buffer, emergency_reason, is_emergency
from .scheduler import MonotonicClock
from .telemetry import ReactorStatus, ReactorStatusSnapshot


class ControllerState(Enum):
    IDLE = "idle"  # charging or recovering
    BURNING = "burning"


class BurnOutcome(Enum):
    COMPLETED = "completed"
    WATCHDOG_TRIP = "watchdog_trip"
    TELEMETRY_LOST = "telemetry_lost"
    STOPPED = "stopped"


@dataclass(frozen=True)
class BurnResult:
    plan: BurnPlan
    outcome: BurnOutcome
    elapsed: float  # s spent in the burn loop


def regulation_setpoints(
    snapshot: ReactorStatusSnapshot, config: SafetyConfig
) -> Tuple[int, int]:
    """Continuous (inflow, outflow) when no burn is running

    Unknown field or buffer fractions count as 0, which means full charge and
    no dumping.
    """
    field = snapshot.field_fraction or 0.0
    saturation = snapshot.saturation_fraction or 0.0

    outflow = 0.0
    if snapshot.temperature is not None and snapshot.temperature > config.default_temp:
        outflow = (snapshot.temperature - config.default_temp) * TEMPERATURE_OUTFLOW_GAIN

    # Dumping into a weak field would destabilize it
    if saturation > SAFE_DUMP_SATURATION and field > WEAK_FIELD_FRACTION:
        excess = (saturation - SAFE_DUMP_SATURATION) * SAFE_DUMP_GAIN
        outflow = max(outflow, excess * config.max_outflow)

    drain = snapshot.field_drain_rate
    if drain is None:
        drain = DEFAULT_FIELD_DRAIN

    if outflow > LARGE_OUTFLOW or field < WEAK_FIELD_FRACTION:
        inflow = config.charge_inflow
    else:
        inflow = drain + (config.default_field - field) * FIELD_INFLOW_GAIN

    inflow = float(np.clip(inflow, 0.0, config.charge_inflow))
    outflow = float(np.clip(outflow, 0.0, config.max_outflow))
    return int(math.floor(inflow)), int(math.floor(outflow))


class ReactorController:
    """Owns the device link, the estimator window and the burn state"""

    def __init__(
        self,
        device: ReactorDevice,
        config: Optional[SafetyConfig] = None,
        clock=None,
    ):
        self.logger = logging.getLogger(self.__class__.__name__)

        self.config = config or SafetyConfig()
        self.clock = clock or MonotonicClock()

        self.link = DeviceLink(device, clock=self.clock)
        self.inflow = FlowActuator(self.link, INFLOW_GATE, self.config.charge_inflow)
        self.outflow = FlowActuator(self.link, OUTFLOW_GATE, self.config.max_outflow)

        self.estimator = EnergyRateEstimator(self.config.rate_sample_window)
        self.planner = BurnPlanner(self.config)
        self.ramp = RampController(self.clock)
        self.watchdog = BurnWatchdog(self.config)

        self.state = ControllerState.IDLE
        self.snapshot: Optional[ReactorStatusSnapshot] = None
        self.consecutive_failures = 0
        self.shutdown_executed = False
        self.last_burn: Optional[BurnResult] = None
        self.running = True

    # ------------------------------------------------------------------
    # Setup and status
    # ------------------------------------------------------------------

    def setup(self):
        """Take manual control of both gates and start from a clean state"""
        self.logger.info("Initializing reactor gates...")
        for gate in GATES:
            if self.link.enable_override(gate):
                self.link.set_flow(gate, 0)

        self.estimator.reset()
        self.state = ControllerState.IDLE
        self.consecutive_failures = 0
        self.shutdown_executed = False
        self.logger.info("Reactor gates initialized")

    def refresh_status(self) -> bool:
        """Poll the reactor, keeping the last snapshot if the read fails"""
        snapshot = self.link.poll_status()
        if snapshot is None:
            self.consecutive_failures += 1
            return False

        self.consecutive_failures = 0
        self.snapshot = snapshot
        return True

    def is_emergency(self) -> bool:
        return is_emergency(self.snapshot, self.config)

    # ------------------------------------------------------------------
    # Protective actions
    # ------------------------------------------------------------------

    def fail_safe_shutdown(self, reason: str = "safety limit exceeded"):
        """Stop the reactor and close both gates"""
        self.link.stop_device()
        self.link.set_inflow(0)
        self.link.set_outflow(0)

        self.shutdown_executed = True
        self.state = ControllerState.IDLE
        self.running = False
        self.logger.critical("Emergency reactor shutdown executed: %s", reason)

    def handle_stopping(self):
        self.link.set_inflow(0)
        self.link.set_outflow(0)

    def check_fuel_and_chaos(self) -> bool:
        """Fuel and buffer check; shuts the reactor down when it fails"""
        if self.snapshot is None:
            return False

        verdict = check_fuel_and_buffer(self.snapshot, self.config)
        if verdict.warning:
            self.logger.warning(verdict.warning)
        if not verdict.ok:
            self.logger.error(verdict.reason)
            self.fail_safe_shutdown(verdict.reason)
            return False
        return True

    # ------------------------------------------------------------------
    # Burn decision and execution
    # ------------------------------------------------------------------

    def wants_burn(self, snapshot: ReactorStatusSnapshot) -> bool:
        field = snapshot.field_fraction
        saturation = snapshot.saturation_fraction
        return (
            field is not None
            and field > BURN_MIN_FIELD_FRACTION
            and saturation is not None
            and saturation > BURN_MIN_SATURATION_FRACTION
            and snapshot.temperature is not None
            and snapshot.temperature < self.config.default_temp
        )

    def adjust_temp_and_field(self) -> Optional[BurnResult]:
        """Burn if a safe plan exists, otherwise regulate continuously"""
        snapshot = self.snapshot
        if snapshot is None or snapshot.temperature is None:
            return None

        self.estimator.update(
            snapshot.timestamp,
            snapshot.saturation_fraction,
            snapshot.max_energy_saturation,
        )

        if self.wants_burn(snapshot):
            plan = self.planner.plan(snapshot, self.estimator.estimated_rate)
            if plan is not None:
                return self.execute_burn(plan)
            self.logger.info("Burn conditions met but no safe plan, regulating")

        self.regulate(snapshot)
        return None

    def execute_burn(self, plan: BurnPlan) -> BurnResult:
        """Ramp up, burn under the watchdog, then recover"""
        cfg = self.config
        self.state = ControllerState.BURNING
        self.logger.info(
            "Starting burn: outflow %d RF/t for %.1fs (net %.0f RF/s, reserve %.1f%%)",
            plan.allowed_outflow,
            plan.burn_duration,
            plan.predicted_net,
            plan.required_reserve_fraction * 100,
        )

        # Pre-charge so the field input is in place before the drain starts
        self.ramp.ramp_to(self.inflow, cfg.charge_inflow, cfg.ramp_steps, cfg.ramp_step_delay)
        self.clock.sleep(cfg.pre_charge_delay)
        self.ramp.ramp_to(self.outflow, plan.allowed_outflow, cfg.ramp_steps, cfg.ramp_step_delay)

        outcome = BurnOutcome.COMPLETED
        start = self.clock.now()
        while self.clock.now() - start < plan.burn_duration:
            if not self.running:
                outcome = BurnOutcome.STOPPED
                break

            if not self.refresh_status():
                outcome = BurnOutcome.TELEMETRY_LOST
                break

            if not self.watchdog.check(self.snapshot):
                self.link.set_outflow(0)
                outcome = BurnOutcome.WATCHDOG_TRIP
                break

            self.clock.sleep(cfg.burn_tick_interval)

        elapsed = self.clock.now() - start

        self.link.set_outflow(0)
        self.link.set_inflow(cfg.charge_inflow)

        if outcome == BurnOutcome.COMPLETED:
            self.logger.info("Burn completed after %.1fs", elapsed)
        elif outcome == BurnOutcome.WATCHDOG_TRIP:
            self.logger.warning(
                "Burn aborted by watchdog after %.1fs: %s", elapsed, self.watchdog.last_trip
            )
        else:
            self.logger.warning("Burn aborted after %.1fs: %s", elapsed, outcome.value)

        if outcome != BurnOutcome.STOPPED:
            rest = max(1, int(math.floor(plan.rest_duration)))
            self.logger.info("Recovering for %ds", rest)
            self.clock.sleep(rest)

        self.state = ControllerState.IDLE
        self.last_burn = BurnResult(plan=plan, outcome=outcome, elapsed=elapsed)
        return self.last_burn

    def regulate(self, snapshot: ReactorStatusSnapshot) -> Tuple[int, int]:
        inflow, outflow = regulation_setpoints(snapshot, self.config)
        self.link.set_inflow(inflow)
        self.link.set_outflow(outflow)
        self.logger.debug("Regulating: inflow %d, outflow %d", inflow, outflow)
        return inflow, outflow

    # ------------------------------------------------------------------
    # Main loop
    # ------------------------------------------------------------------

    def run_cycle(self):
        """One control cycle: poll, protect, then burn or regulate"""
        if not self.refresh_status():
            self.logger.error(
                "Failed to refresh reactor status (%d consecutive)",
                self.consecutive_failures,
            )
            if self.consecutive_failures >= self.config.max_consecutive_failures:
                self.fail_safe_shutdown(
                    f"{self.consecutive_failures} consecutive telemetry failures"
                )
            return

        snapshot = self.snapshot
        self.logger.info(
            "%s rate=%.0fRF/s state=%s",
            snapshot.summary(),
            self.estimator.estimated_rate,
            self.state.value,
        )

        if snapshot.status == ReactorStatus.STOPPING:
            self.handle_stopping()
            return

        if self.is_emergency():
            self.fail_safe_shutdown(emergency_reason(snapshot, self.config))
            return

        if not self.check_fuel_and_chaos():
            return

        self.adjust_temp_and_field()

    def _signal_handler(self, signum, frame):
        """Handle shutdown signals gracefully"""
        self.logger.info("Received signal %s, initiating graceful shutdown...", signum)
        self.running = False

    def run(self):
        """Main control loop, runs until a signal or a fail-safe shutdown"""
        signal.signal(signal.SIGTERM, self._signal_handler)
        signal.signal(signal.SIGINT, self._signal_handler)

        self.logger.info("Reactor burn controller starting...")
        self.setup()

        while self.running:
            loop_start = self.clock.now()
            try:
                self.run_cycle()
            except Exception as e:
                self.logger.error("Error in control loop: %s", e, exc_info=True)

            elapsed = self.clock.now() - loop_start
            if self.running:
                self.clock.sleep(max(0.0, self.config.control_interval - elapsed))

        self.logger.info("Shutting down...")
        if not self.shutdown_executed:
            # Leave the field fed and the output closed
            self.link.set_outflow(0)
            self.link.set_inflow(self.config.charge_inflow)
