"""Clock used for every timed pause of the control loop

The controller is single-threaded: ramp step delays, the burn tick and the
post-burn rest are the only suspension points, and all of them go through a
clock object so that tests can drive time explicitly.
"""

import time


class MonotonicClock:
    """Wall-clock independent time source backed by ``time.monotonic``"""

    def now(self) -> float:
        return time.monotonic()

    def sleep(self, seconds: float):
        if seconds > 0:
            time.sleep(seconds)
