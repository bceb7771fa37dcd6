"""Net energy generation estimate from buffer telemetry"""

import logging
from collections import deque
from typing import Optional

import numpy as np


class EnergyRateEstimator:
    """Moving average of the buffer's net fill rate [RF/s]

    Each update after the first turns the change in saturation since the
    previous update into one rate sample. The estimate is the mean of the
    last ``window`` samples; positive means the buffer is filling.
    """

    def __init__(self, window: int = 5):
        if window < 1:
            raise ValueError("window must be at least 1")
        self.window = window
        self.samples = deque(maxlen=window)
        self.estimated_rate = 0.0

        self._last_timestamp: Optional[float] = None
        self._last_saturation: Optional[float] = None

        self.logger = logging.getLogger(self.__class__.__name__)

    def reset(self):
        self.samples.clear()
        self.estimated_rate = 0.0
        self._last_timestamp = None
        self._last_saturation = None

    def update(
        self,
        timestamp: Optional[float],
        saturation: Optional[float],
        max_saturation: Optional[float],
    ):
        """Record one buffer reading

        Args:
            timestamp: Monotonic read time [s]
            saturation: Buffer fill as a fraction of capacity
            max_saturation: Buffer capacity [RF]
        """
        if timestamp is None or saturation is None:
            return
        if max_saturation is None or max_saturation <= 0:
            return

        if self._last_timestamp is None:
            # First reading is only a baseline
            self._last_timestamp = timestamp
            self._last_saturation = saturation
            return

        dt = timestamp - self._last_timestamp
        if dt <= 0:
            return

        rate = (saturation - self._last_saturation) * max_saturation / dt
        self.samples.append(rate)
        self.estimated_rate = float(np.mean(self.samples))

        self._last_timestamp = timestamp
        self._last_saturation = saturation

        self.logger.debug(
            "Rate sample %.0f RF/s, estimate %.0f RF/s over %d samples",
            rate,
            self.estimated_rate,
            len(self.samples),
        )
