"""Burn/recover controller for a reactor with an input and an output flux gate"""

from .config import SafetyConfig
from .controller import BurnOutcome, BurnResult, ControllerState, ReactorController
from .device import BridgeReactor, DeviceError, DeviceLink, ReactorDevice
from .estimator import EnergyRateEstimator
from .planner import BurnPlan, BurnPlanner
from .ramp import RampController
from .safety import BurnWatchdog, check_fuel_and_buffer, is_emergency
from .simulation import SimulatedReactor
from .telemetry import ReactorStatus, ReactorStatusSnapshot

__version__ = "0.1.0"
