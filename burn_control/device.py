"""Reactor device access

``ReactorDevice`` is the raw interface a concrete backend implements; its
methods raise ``DeviceError`` (or anything else) on failure. The control core
never talks to a device directly but through ``DeviceLink``, which swallows
and logs every failure and reports it as ``None`` / ``False`` instead.
"""

import json
import logging
import shlex
import subprocess
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence, Union

from .scheduler import MonotonicClock
from .telemetry import ReactorStatusSnapshot

INFLOW_GATE = "in"
OUTFLOW_GATE = "out"
GATES = (INFLOW_GATE, OUTFLOW_GATE)


class DeviceError(Exception):
    """A single device read or write did not succeed"""


class ReactorDevice(ABC):
    """Stabilizer plus the two flux gates bound to it"""

    @abstractmethod
    def get_reactor_info(self) -> Dict[str, Any]:
        """Raw info mapping (temperature, fieldStrength, ...)"""

    @abstractmethod
    def stop_reactor(self):
        pass

    @abstractmethod
    def get_flow(self, gate: str) -> float:
        """Current override setpoint of ``gate`` ("in" or "out")"""

    @abstractmethod
    def set_flow(self, gate: str, value: int):
        pass

    @abstractmethod
    def set_override(self, gate: str, enabled: bool):
        """Switch a gate between manual override and redstone control"""


class BridgeReactor(ReactorDevice):
    """Reactor reached through an external bridge executable

    The bridge is any program accepting these sub-commands:

        info                      -> JSON object on stdout
        flow get <in|out>         -> number on stdout
        flow set <in|out> <value>
        override <in|out> <on|off>
        stop
    """

    def __init__(self, command: Union[str, Sequence[str]], timeout: float = 5.0):
        self.command = shlex.split(command) if isinstance(command, str) else list(command)
        if not self.command:
            raise ValueError("Bridge command must not be empty")
        self.timeout = timeout
        self.logger = logging.getLogger(self.__class__.__name__)

    def _run(self, *args: str) -> str:
        argv: List[str] = self.command + list(args)
        try:
            result = subprocess.run(
                argv,
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            raise DeviceError(f"bridge {' '.join(args)} failed: {e}") from e

        if result.returncode != 0:
            raise DeviceError(
                f"bridge {' '.join(args)} exited with {result.returncode}: "
                f"{result.stderr.strip()}"
            )
        return result.stdout

    @staticmethod
    def _check_gate(gate: str):
        if gate not in GATES:
            raise DeviceError(f"Unknown gate {gate!r}")

    def get_reactor_info(self) -> Dict[str, Any]:
        output = self._run("info")
        try:
            info = json.loads(output)
        except json.JSONDecodeError as e:
            raise DeviceError(f"Unparsable reactor info: {e}") from e
        if not isinstance(info, dict):
            raise DeviceError("Reactor info is not an object")
        return info

    def stop_reactor(self):
        self._run("stop")

    def get_flow(self, gate: str) -> float:
        self._check_gate(gate)
        output = self._run("flow", "get", gate).strip()
        try:
            return float(output)
        except ValueError as e:
            raise DeviceError(f"Unparsable flow value {output!r}") from e

    def set_flow(self, gate: str, value: int):
        self._check_gate(gate)
        self._run("flow", "set", gate, str(int(value)))

    def set_override(self, gate: str, enabled: bool):
        self._check_gate(gate)
        self._run("override", gate, "on" if enabled else "off")


class DeviceLink:
    """Fail-soft access to a ``ReactorDevice``

    Every call is isolated: a failure is logged and returned as ``None`` or
    ``False`` so one bad read or write can never halt the control loop.
    """

    def __init__(self, device: ReactorDevice, clock=None):
        self.device = device
        self.clock = clock or MonotonicClock()
        self.logger = logging.getLogger(self.__class__.__name__)

    def poll_status(self) -> Optional[ReactorStatusSnapshot]:
        try:
            info = self.device.get_reactor_info()
        except Exception as e:
            self.logger.error("Failed to read reactor info: %s", e)
            return None

        if not info:
            self.logger.error("Reactor returned no info")
            return None

        return ReactorStatusSnapshot.from_info(info, timestamp=self.clock.now())

    def get_flow(self, gate: str) -> Optional[float]:
        try:
            return float(self.device.get_flow(gate))
        except Exception as e:
            self.logger.error("Failed to read %s gate: %s", gate, e)
            return None

    def set_flow(self, gate: str, value: float) -> bool:
        try:
            self.device.set_flow(gate, int(value))
            return True
        except Exception as e:
            self.logger.error("Failed to set %s gate to %s: %s", gate, value, e)
            return False

    def set_inflow(self, value: float) -> bool:
        return self.set_flow(INFLOW_GATE, value)

    def set_outflow(self, value: float) -> bool:
        return self.set_flow(OUTFLOW_GATE, value)

    def get_current_outflow(self) -> Optional[float]:
        return self.get_flow(OUTFLOW_GATE)

    def enable_override(self, gate: str) -> bool:
        try:
            self.device.set_override(gate, True)
            return True
        except Exception as e:
            self.logger.error("Failed to enable override on %s gate: %s", gate, e)
            return False

    def stop_device(self) -> bool:
        try:
            self.device.stop_reactor()
            return True
        except Exception as e:
            self.logger.error("Failed to stop reactor: %s", e)
            return False


class FlowActuator:
    """One flux gate seen as a setpoint with a hard ceiling"""

    def __init__(self, link: DeviceLink, gate: str, ceiling: float):
        if gate not in GATES:
            raise ValueError(f"Unknown gate {gate!r}")
        self.link = link
        self.gate = gate
        self.ceiling = ceiling

    @property
    def name(self) -> str:
        return f"{self.gate}flow"

    def read(self) -> Optional[float]:
        return self.link.get_flow(self.gate)

    def write(self, value: float) -> bool:
        return self.link.set_flow(self.gate, value)
