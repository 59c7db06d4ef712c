"""Basic AC charging: control pilot PWM, proximity pilot and onboard charger status."""

from __future__ import annotations

import enum
from typing import Protocol

from evccs.runtime import LockState, Parameters

MAX_ADC_VALUE = 4095

RED = 1
GREEN = 2
BLUE = 4

PORT_STATE_READY = 0x2
PORT_STATE_AC_CHARGING = 0x3
PORT_STATE_ERROR = 0x7

PLUG_PRESENT_BELOW_OHM = 5000.0
OPEN_PP_RESISTANCE = 10000.0

_DEBOUNCE_CYCLES = 5
_BUTTON_BLOCK_CYCLES = 150

# Nominal cable coding resistors and their current ratings, checked in this order.
_CABLE_CODES = (
    (1500.0, 13.0),
    (680.0, 20.0),
    (220.0, 32.0),
    (100.0, 63.0),
)


class ObcState(enum.IntEnum):
    """Status requested by the AC onboard charger."""

    IDLE = 0
    LOCK = 1
    CHARGE = 2
    PAUSE = 3
    COMPLETE = 4
    ERROR = 5


class ChargePort(Protocol):
    """The outputs the AC charging logic drives."""

    def set_state_b(self) -> None: ...

    def set_state_c(self) -> None: ...

    def trigger_connector_locking(self) -> None: ...

    def trigger_connector_unlocking(self) -> None: ...


class StopButton(Protocol):
    def is_pressed_500ms(self) -> bool: ...


def _circuit(variant: int) -> tuple[float, float, float]:
    """Return (pull-up voltage, ADC input divider factor, effective pull-up resistor)."""
    if variant == 0:
        # 1k pull-up to 3V3, no pull-down, no divider.
        return 3.3, 1.0, 1000.0
    if variant == 1:
        # 330 ohm to 5V with 3k pull-down, 47k/47k divider to the ADC.
        return 4.5, (47.0 + 47.0) / 47.0, 1.0 / (1.0 / 330.0 + 1.0 / 3000.0)
    # 330 ohm to 5V without pull-down, 47k/47k divider to the ADC.
    return 5.0, (47.0 + 47.0) / 47.0, 330.0


def pp_resistance(adc_value: float, variant: int) -> float:
    """Resistance on the proximity pilot in ohms for the given input circuit variant."""
    u_pull, divider, r_pull = _circuit(variant)
    u_meas = 3.3 * adc_value / MAX_ADC_VALUE * divider
    if u_meas > u_pull - 0.5:
        # Too close to the pull-up voltage to compute without overflow.
        return OPEN_PP_RESISTANCE
    if u_meas < 0.05:
        return 0.0
    return r_pull / (u_pull / u_meas - 1)


def cable_current_limit(resistance: float) -> float:
    """Current rating in amperes coded by the cable's PP resistor, 0 if none matches."""
    limit = 0.0
    for nominal, current in _CABLE_CODES:
        if nominal * 0.8 < resistance < nominal * 1.2:
            limit = current
    return limit


def evse_current_limit(duty_percent: float) -> float:
    """AC current limit in amperes signalled by the control pilot duty cycle."""
    duty = int(duty_percent) & 0xFF
    if duty < 8:
        return 0.0  # digital communication range, no analog limit
    if duty < 10:
        return 6.0
    if duty < 85:
        return float(int(duty * 0.6) & 0xFF)
    if duty <= 96:
        return float(int((duty - 64) * 2.5) & 0xFF)
    if duty <= 97:
        return 80.0
    return 0.0


class AcChargerController:
    """Handles charging from a basic AC charger; call tick() every 100 ms."""

    def __init__(self, params: Parameters, port: ChargePort,
                 button: StopButton | None = None) -> None:
        self._params = params
        self._port = port
        self._button = button
        self._basic_ac = False
        self._previous_state = int(ObcState.IDLE)
        self._debounce_ac_valid = 0
        self._debounce_five_percent = 0
        self._button_stop = False
        self._stop_timer = 0
        self._cycle_divider = 0

    @property
    def previous_state(self) -> int:
        """The state that was last acted upon."""
        return self._previous_state

    def is_basic_ac_charging(self) -> bool:
        return self._basic_ac

    def activate(self) -> None:
        """Switch to basic AC charging, after a CP PWM in the analog range was seen."""
        self._basic_ac = True

    def deactivate(self) -> None:
        """Leave basic AC charging, when something else than an analog charger is seen."""
        self._basic_ac = False

    def rgb(self) -> int:
        """LED colour bits (red 1, green 2, blue 4) for the current state; call cyclically."""
        self._cycle_divider = (self._cycle_divider + 1) & 0xFF
        slow = bool(self._cycle_divider & 2)
        state = self._previous_state
        if state == ObcState.IDLE:
            return BLUE if slow else 0
        if state == ObcState.LOCK:
            return BLUE
        if state == ObcState.CHARGE:
            return GREEN if slow else 0
        if state == ObcState.COMPLETE:
            return BLUE + GREEN
        if state == ObcState.ERROR:
            return RED
        return RED if self._cycle_divider & 1 else 0

    def calculate_current_limit(self) -> float:
        """Derive the EVSE current limit from the CP duty and debounce AC detection."""
        duty = int(self._params.control_pilot_duty) & 0xFF
        limit = evse_current_limit(duty)
        if duty < 8:
            if self._debounce_five_percent < _DEBOUNCE_CYCLES:
                self._debounce_five_percent += 1
            else:
                # Stable 5 % PWM: digital communication, not basic AC charging.
                self.deactivate()
        else:
            self._debounce_five_percent = 0
        self._params.evse_ac_current_limit = limit

        # Debounce so that bouncing during plug-in is not taken as AC charging PWM.
        if limit > 0:
            if self._debounce_ac_valid < _DEBOUNCE_CYCLES:
                self._debounce_ac_valid += 1
            else:
                self.activate()
        else:
            self._debounce_ac_valid = 0
        return limit

    def evaluate_proximity_pilot(self, adc_value: float) -> float:
        """Store PP raw value, resistance, cable limit and plug presence; return the resistance."""
        params = self._params
        params.adc_proximity_pilot = float(adc_value)
        resistance = pp_resistance(adc_value, params.pp_variant)
        params.resistance_prox_pilot = resistance
        params.cable_current_limit = cable_current_limit(resistance)
        params.plug_present = resistance < PLUG_PRESENT_BELOW_OHM
        return resistance

    def _button_pressed(self) -> bool:
        return self._button is not None and self._button.is_pressed_500ms()

    def trigger_actions(self) -> None:
        """Act on the state requested by the onboard charger."""
        params = self._params
        params.basic_ac_charging = self._basic_ac
        if not self._basic_ac:
            return

        requested = int(params.ac_obc_state) & 0xFF
        if self._button_pressed() and requested != ObcState.IDLE:
            requested = ObcState.IDLE
            self._button_stop = True
            self._stop_timer = 0
        if self._button_stop:
            requested = ObcState.IDLE
            self._stop_timer = (self._stop_timer + 1) & 0xFFFF
            if self._stop_timer > _BUTTON_BLOCK_CYCLES:
                self._button_stop = False
        if not params.enable:
            requested = ObcState.IDLE

        no_actuator_test = params.actuator_test == 0
        if requested == ObcState.IDLE:
            self._port.set_state_b()
            params.port_state = PORT_STATE_READY
            if params.lock_state == LockState.CLOSED and params.allow_unlock and no_actuator_test:
                self._port.trigger_connector_unlocking()
        elif requested == ObcState.LOCK:
            if params.lock_state == LockState.OPEN and no_actuator_test:
                self._port.trigger_connector_locking()
        elif requested == ObcState.ERROR:
            params.port_state = PORT_STATE_ERROR
        elif requested == ObcState.COMPLETE:
            self._port.set_state_b()
        elif requested == ObcState.CHARGE:
            if params.lock_state == LockState.OPEN and no_actuator_test:
                self._port.trigger_connector_locking()
            # No AC power is requested before the connector is locked.
            if params.lock_state == LockState.CLOSED:
                self._port.set_state_c()
                params.port_state = PORT_STATE_AC_CHARGING
        self._previous_state = int(requested)

    def tick(self, pp_adc_value: float) -> None:
        """One 100 ms cycle: current limit, proximity pilot, actions."""
        self.calculate_current_limit()
        self.evaluate_proximity_pilot(pp_adc_value)
        self.trigger_actions()