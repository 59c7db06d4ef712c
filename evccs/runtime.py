"""Shared runtime pieces: parameter store, log modules and diagnostics output."""

from __future__ import annotations

import enum
import sys
import time
from dataclasses import dataclass, field
from typing import Callable, Iterable, TextIO


class LogModule(enum.IntFlag):
    """Selectable trace sources; the ``logging`` parameter is a mask of these."""

    NONE = 0
    CONNMGR = 1
    HOMEPLUG = 2
    HWIF = 4
    PEV = 8
    SDP = 16
    IPV6 = 32
    MODEMFINDER = 64
    TCP = 128


class LockState(enum.IntEnum):
    """State of the connector lock actuator."""

    UNKNOWN = 0
    OPEN = 1
    CLOSED = 2
    OPENING = 3
    CLOSING = 4


@dataclass
class Parameters:
    """The controller's parameter and spot-value store."""

    logging: LogModule = LogModule.NONE
    checkpoint: int = 0
    enable: bool = True
    allow_unlock: bool = True
    opmode: int = 0
    actuator_test: int = 0
    # control and proximity pilot
    control_pilot_duty: float = 0.0
    adc_proximity_pilot: float = 0.0
    resistance_prox_pilot: float = 0.0
    pp_variant: int = 0
    cable_current_limit: float = 0.0
    plug_present: bool = False
    # basic AC charging
    evse_ac_current_limit: float = 0.0
    basic_ac_charging: bool = False
    ac_obc_state: int = 0
    port_state: int = 0
    # connector lock and contactors
    lock_state: LockState = LockState.UNKNOWN
    lock_open_thresh: int = 0
    lock_closed_thresh: int = 0
    lock_run_time: int = 1500
    lock_duty: int = 50
    economizer_duty: int = 50
    # battery and charging
    inlet_voltage: int = 0
    demo_voltage: int = 0
    demo_control: int = 0
    battery_voltage: int = 0
    target_voltage: int = 0
    charge_current: int = 0
    temp_limited_current: float = 500.0
    limitation_reason: int = 0
    ev_target_current: int = 0
    soc: int = 0
    stop_reason: int = 0
    can_watchdog: int = 0
    max_current: int = 0
    max_power: int = 0
    max_voltage: int = 0
    evse_max_voltage: float = 0.0
    evse_max_current: float = 0.0
    evse_voltage: float = 0.0
    evse_current: int = 0
    # hardware
    wakeup_pin_func: int = 0
    hardware_variant: int = 0
    adc_hw_variant: int = 0


def _monotonic_ms() -> int:
    return int(time.monotonic() * 1000)


@dataclass
class Diagnostics:
    """Trace output, checkpoint tracking and status publishing."""

    params: Parameters
    output: TextIO | None = None
    clock: Callable[[], int] = _monotonic_ms
    statuses: list[tuple[str, ...]] = field(default_factory=list)

    def _enabled(self, module: LogModule) -> bool:
        return bool(self.params.logging & module)

    def _write(self, text: str) -> None:
        stream = self.output if self.output is not None else sys.stdout
        stream.write(text + "\n")

    def trace(self, module: LogModule, message: str, value: int | None = None) -> None:
        """Write a timestamped line if the module is enabled for logging."""
        if not self._enabled(module):
            return
        if value is None:
            self._write(f"[{self.clock()}] {message}")
        else:
            self._write(f"[{self.clock()}] {message} {int(value)}")

    def trace_bytes(self, module: LogModule, message: str, data: Iterable[int]) -> None:
        """Write a timestamped line followed by the data as hex digits."""
        if not self._enabled(module):
            return
        self._write(f"[{self.clock()}] {message} {bytes(data).hex()}")

    def set_checkpoint(self, number: int) -> None:
        """Record the current progress checkpoint."""
        self.params.checkpoint = number

    @property
    def checkpoint(self) -> int:
        return self.params.checkpoint

    def publish_status(self, *args: object) -> None:
        """Record a human readable status made of one or more parts."""
        self.statuses.append(tuple(str(arg) for arg in args))