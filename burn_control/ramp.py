"""Gradual actuator ramping"""

import logging
import math

import numpy as np

from .scheduler import MonotonicClock


class RampController:
    """Move a gate setpoint linearly to a target in equal steps

    Abrupt jumps destabilize the containment field and make telemetry
    overshoot, so setpoint changes before and after a burn go through here.
    """

    def __init__(self, clock=None):
        self.clock = clock or MonotonicClock()
        self.logger = logging.getLogger(self.__class__.__name__)

    def ramp_to(self, actuator, target: float, steps: int = 6, step_delay: float = 0.05):
        """Ramp ``actuator`` from its current setpoint to ``target``

        Args:
            actuator: Object with ``read()``, ``write(value)`` and ``ceiling``
            target: Final setpoint
            steps: Number of writes
            step_delay: Pause after each write [s]

        Returns:
            Number of writes that failed
        """
        steps = max(1, int(steps))
        current = actuator.read()
        if current is None:
            current = 0.0

        values = np.linspace(current, target, steps + 1)[1:]
        values = np.clip(values, 0.0, actuator.ceiling)

        failures = 0
        for value in values:
            # Best effort: keep going through the remaining steps
            if not actuator.write(int(math.floor(value))):
                failures += 1
            self.clock.sleep(step_delay)

        if failures:
            self.logger.warning(
                "Ramp of %s to %d finished with %d/%d failed writes",
                getattr(actuator, "name", "actuator"),
                int(target),
                failures,
                steps,
            )
        return failures
