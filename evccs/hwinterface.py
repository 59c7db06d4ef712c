"""Hardware interface: CP measurement, LEDs, contactors, connector lock and actuator tests."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Protocol

from evccs.runtime import Diagnostics, LockState, LogModule

CAN_TIMEOUT = 30  # multiples of 100 ms
CONTACT_LOCK_PERIOD = 4096  # PWM period of the contactor and lock outputs
DEMO_CONTROL_STANDALONE = 1

CP_DUTY_VALID_CYCLES = 3
CONTACTOR_CYCLES_FOR_FULL_PWM = 33 // 5
CONTACTOR_CYCLES_SEQUENTIAL = 33 // 3
SIMULATED_SOC_START = 2000
SIMULATED_SOC_FULL = 10000
WAKEUP_PULSE_CYCLES = 10
ACTUATOR_TEST_MIN_PP_OHM = 2000.0
LOCK_STEP_MS = 30

_DEMO_VOLTAGE_MIN = 150
_DEMO_VOLTAGE_MAX = 250
_DEMO_CURRENT = 10
_ACCU_FULL_ABOVE_SOC = 95
_FEEDBACK_SLOPE = 10

RED = 1
GREEN = 2
BLUE = 4


class ActuatorTest(enum.IntEnum):
    """Actuator test selection; anything else ends a running test."""

    NONE = 0
    CLOSELOCK = 1
    OPENLOCK = 2
    CONTACTOR = 3
    STATEC = 4
    LEDGREEN = 5
    LEDRED = 6
    LEDBLUE = 7


class WakeupMode(enum.IntFlag):
    """Behaviour of the wake-up output for other control units."""

    NONE = 0
    LEVEL = 1
    PULSE = 2
    ONVALIDCP = 4
    ONVALIDPP = 8


class StopReason(enum.IntEnum):
    NONE = 0
    BUTTON = 1
    MISSING_ENABLE = 2
    CAN_TIMEOUT = 3
    INLET_OVERHEAT = 4
    ACCU_FULL = 5
    CHARGER_SHUTDOWN = 6
    CHARGER_EVSE_MALFUNCTION = 7
    CHARGER_EMERGENCY_SHUTDOWN = 8


class LimitationReason(enum.IntEnum):
    NONE = 0
    INLET_HOT = 1


class _LockTestStatus(enum.IntEnum):
    IDLE = 0
    LOCKING_TRIGGERED = 1
    UNLOCKING_TRIGGERED = 2


@dataclass
class HardwareOutputs:
    """The current state of all driven outputs."""

    state_c: bool = False
    red: bool = False
    green: bool = False
    blue: bool = False
    contactor_enabled: bool = False
    contactor_duty: tuple[int, int] = (0, 0)
    h_bridge_duty: tuple[int, int] = (0, 0)
    trigger_wakeup: bool = False

    @property
    def rgb(self) -> int:
        """LED state as colour bits (red 1, green 2, blue 4)."""
        return (RED if self.red else 0) | (GREEN if self.green else 0) | (BLUE if self.blue else 0)


class _StopButton(Protocol):
    def is_pressed_500ms(self) -> bool: ...


class _AcCharging(Protocol):
    def is_basic_ac_charging(self) -> bool: ...

    def rgb(self) -> int: ...


class HardwareInterface:
    """Drives the charge port hardware; call cyclic() every 30 ms."""

    def __init__(self, diagnostics: Diagnostics, button: _StopButton | None = None,
                 ac_charger: _AcCharging | None = None) -> None:
        self._diag = diagnostics
        self._params = diagnostics.params
        self.button = button
        self.ac_charger = ac_charger
        self.outputs = HardwareOutputs()
        self.simulated_soc = 0

        self._cp_capture: tuple[int, int] | None = None
        self._cp_valid_cycles = 0
        self._contactor_request = False
        self._contactor_timer1 = 0
        self._contactor_timer2 = 0
        self._duty1 = 0
        self._duty2 = 0
        self._led_divider = 0
        self._lock_request = LockState.UNKNOWN
        self._lock_state = LockState.UNKNOWN
        self._lock_target = LockState.UNKNOWN
        self._lock_timer = 0
        self._last_feedback = 0
        self._lock_closed_time = 0
        self._test_running = False
        self._test_lock_status = _LockTestStatus.IDLE
        self._wakeup_pulse = WAKEUP_PULSE_CYCLES

        self._set_h_bridge(0, 0)
        self._set_contactor_pwm(0, 0)

    # ------------------------------------------------------------ outputs

    @property
    def lock_request(self) -> LockState:
        """The lock movement requested and not yet started."""
        return self._lock_request

    def _trace(self, message: str, value: int | None = None) -> None:
        self._diag.trace(LogModule.HWIF, message, value)

    def _set_h_bridge(self, out1: int, out2: int) -> None:
        self.outputs.h_bridge_duty = (out1 & 0xFFFF, out2 & 0xFFFF)

    def _set_contactor_pwm(self, out1: int, out2: int) -> None:
        self.outputs.contactor_enabled = out1 > 0 or out2 > 0
        self.outputs.contactor_duty = (out1 & 0xFFFF, out2 & 0xFFFF)

    def set_state_b(self) -> None:
        self.outputs.state_c = False

    def set_state_c(self) -> None:
        self.outputs.state_c = True

    def set_power_relay_on(self) -> None:
        self._contactor_request = True

    def set_power_relay_off(self) -> None:
        self._contactor_request = False

    def set_rgb(self, rgb: int) -> None:
        """Set the three LEDs from colour bits: red 1, green 2, blue 4."""
        self.outputs.red = bool(rgb & RED)
        self.outputs.green = bool(rgb & GREEN)
        self.outputs.blue = bool(rgb & BLUE)

    def trigger_connector_locking(self) -> None:
        self._lock_request = LockState.CLOSED

    def trigger_connector_unlocking(self) -> None:
        self._lock_request = LockState.OPEN

    def is_connector_locked(self) -> bool:
        return self._lock_state == LockState.CLOSED

    # ------------------------------------------------------------ values

    def _demo_standalone(self) -> bool:
        params = self._params
        return (_DEMO_VOLTAGE_MIN <= params.demo_voltage <= _DEMO_VOLTAGE_MAX
                and params.demo_control == DEMO_CONTROL_STANDALONE)

    def inlet_voltage(self) -> int:
        return int(self._params.inlet_voltage)

    def accu_voltage(self) -> int:
        """Battery voltage; in stand-alone demo mode it is taken from the demo voltage."""
        if self._demo_standalone():
            self._params.battery_voltage = self._params.demo_voltage
        return int(self._params.battery_voltage)

    def charging_target_voltage(self) -> int:
        """Target voltage; in stand-alone demo mode it is taken from the demo voltage."""
        if self._demo_standalone():
            self._params.target_voltage = self._params.demo_voltage
        return int(self._params.target_voltage)

    def charging_target_current(self) -> int:
        """The BMS current demand, limited by the inlet temperature limit."""
        params = self._params
        if self._demo_standalone():
            params.charge_current = _DEMO_CURRENT
        demand = int(params.charge_current)
        limit = int(params.temp_limited_current)
        if demand > limit:
            params.limitation_reason = LimitationReason.INLET_HOT
            target = limit
        else:
            params.limitation_reason = LimitationReason.NONE
            target = demand
        params.ev_target_current = target
        return target

    def soc(self) -> int:
        return int(self._params.soc)

    def is_accu_full(self) -> bool:
        return self._params.soc > _ACCU_FULL_ABOVE_SOC

    def stop_charge_requested(self) -> bool:
        """Check all stop conditions; the last one that applies is stored as stop reason."""
        params = self._params
        reason = StopReason.NONE
        if self.button is not None and self.button.is_pressed_500ms():
            reason = StopReason.BUTTON
            params.stop_reason = reason
            self._trace("User pressed the stop button.")
        if not params.enable:
            reason = StopReason.MISSING_ENABLE
            params.stop_reason = reason
            self._trace("Got enable=false.")
        if params.can_watchdog >= CAN_TIMEOUT and params.demo_control != DEMO_CONTROL_STANDALONE:
            reason = StopReason.CAN_TIMEOUT
            params.stop_reason = reason
            self._trace("Timeout of CanWatchdog.")
        if params.temp_limited_current < 0.1:
            reason = StopReason.INLET_OVERHEAT
            params.stop_reason = reason
            self._trace("Inlet overheated.")
        return reason != StopReason.NONE

    def simulate_charging(self) -> None:
        """Increase the simulated SOC (in 0.01 %) up to full."""
        if self.simulated_soc < SIMULATED_SOC_FULL:
            self.simulated_soc += 1

    def reset_simulation(self) -> None:
        self.simulated_soc = SIMULATED_SOC_START

    # ------------------------------------------------------------ wake-up and logging

    def wakeup_other_peripherals(self, keep_power_on: bool) -> None:
        """Drive the wake-up output according to the configured wake-up mode."""
        params = self._params
        out = self.outputs
        duty_valid = int(params.control_pilot_duty) > 3
        pp_valid = int(params.resistance_prox_pilot) < 2000
        if not keep_power_on:
            # Make sure we do not wake ourselves up.
            out.trigger_wakeup = False
            return
        mode = int(params.wakeup_pin_func)
        if mode == WakeupMode.LEVEL:
            out.trigger_wakeup = True
        elif mode == WakeupMode.PULSE:
            if self._wakeup_pulse > 0:
                self._wakeup_pulse -= 1
                out.trigger_wakeup = True
            else:
                out.trigger_wakeup = False
        elif mode == WakeupMode.LEVEL | WakeupMode.ONVALIDCP:
            out.trigger_wakeup = duty_valid
        elif mode == WakeupMode.LEVEL | WakeupMode.ONVALIDPP:
            out.trigger_wakeup = pp_valid or duty_valid
        elif mode == WakeupMode.PULSE | WakeupMode.ONVALIDCP:
            if duty_valid and self._wakeup_pulse > 0:
                self._wakeup_pulse -= 1
                out.trigger_wakeup = True
            elif not duty_valid:
                self._wakeup_pulse = WAKEUP_PULSE_CYCLES  # pulse again when PWM returns
                out.trigger_wakeup = False
            else:
                out.trigger_wakeup = False

    def log_cp_pp_data(self) -> None:
        """Trace the measured CP duty, PP values and hardware variant."""
        params = self._params
        self._trace("cpDuty [%] ", int(params.control_pilot_duty))
        self._trace("AdcProximityPilot ", int(params.adc_proximity_pilot))
        self._trace("ResistanceProxPilot [ohm] ", int(params.resistance_prox_pilot))
        self._trace("HardwareVariant ", int(params.hardware_variant))

    # ------------------------------------------------------------ cyclic handling

    def _read_lock_state(self, feedback: int, now_ms: int) -> LockState:
        params = self._params
        open_thresh = params.lock_open_thresh
        closed_thresh = params.lock_closed_thresh
        slope = feedback - self._last_feedback
        state = LockState.UNKNOWN
        if closed_thresh > open_thresh:
            if feedback > closed_thresh:
                state = LockState.CLOSED
            elif feedback < open_thresh:
                state = LockState.OPEN
            elif slope < _FEEDBACK_SLOPE:
                state = LockState.OPENING
            elif slope > _FEEDBACK_SLOPE:
                state = LockState.CLOSING
        elif closed_thresh < open_thresh:
            if feedback < closed_thresh:
                state = LockState.CLOSED
            elif feedback > open_thresh:
                state = LockState.OPEN
            elif slope > _FEEDBACK_SLOPE:
                state = LockState.OPENING
            elif slope < _FEEDBACK_SLOPE:
                state = LockState.CLOSING

        if state == LockState.CLOSED:
            self._lock_closed_time = now_ms
        # Report opening for at least the run time after leaving the closed state.
        elapsed = (now_ms - self._lock_closed_time) & 0xFFFFFFFF
        if state == LockState.OPEN and elapsed < (params.lock_run_time & 0xFFFFFFFF):
            state = LockState.OPENING
        self._last_feedback = feedback
        return state

    def _handle_contactors(self) -> None:
        if not self._contactor_request:
            self._duty1 = 0
            self._duty2 = 0
            self._contactor_timer1 = 0
            # The second contactor starts later to limit the peak current.
            self._contactor_timer2 = -CONTACTOR_CYCLES_SEQUENTIAL
        else:
            economized = (self._params.economizer_duty * CONTACT_LOCK_PERIOD) // 100
            if self._contactor_timer1 == 0:
                self._duty1 = CONTACT_LOCK_PERIOD
                self._trace("Turning on charge port contactor 1")
            if self._contactor_timer2 == 0:
                self._duty2 = CONTACT_LOCK_PERIOD
                self._trace("Turning on charge port contactor 2")
            if self._contactor_timer1 >= CONTACTOR_CYCLES_FOR_FULL_PWM:
                self._duty1 = economized
            if self._contactor_timer2 >= CONTACTOR_CYCLES_FOR_FULL_PWM:
                self._duty2 = economized
            if self._contactor_timer1 < 127:
                self._contactor_timer1 += 1
            if self._contactor_timer2 < 127:
                self._contactor_timer2 += 1
        self._set_contactor_pwm(self._duty1, self._duty2)

    def _handle_lock(self, feedback: int, now_ms: int) -> None:
        params = self._params
        swing = (CONTACT_LOCK_PERIOD * params.lock_duty) // 100
        pwm_neg = CONTACT_LOCK_PERIOD // 2 - swing
        pwm_pos = CONTACT_LOCK_PERIOD // 2 + swing

        if params.lock_closed_thresh != params.lock_open_thresh:
            self._lock_state = self._read_lock_state(feedback, now_ms)
            if self._lock_request == LockState.OPEN and self._lock_state != LockState.OPEN:
                params.lock_state = LockState.OPENING
                self._set_h_bridge(pwm_neg, pwm_pos)
            elif self._lock_request == LockState.CLOSED and self._lock_state != LockState.CLOSED:
                params.lock_state = LockState.CLOSING
                self._set_h_bridge(pwm_pos, pwm_neg)
            else:
                params.lock_state = self._lock_state
                self._set_h_bridge(0, 0)
            return

        # Without feedback the lock is driven for a fixed time.
        pwm_neg = 0
        pwm_pos = CONTACT_LOCK_PERIOD
        if self._lock_request == LockState.OPEN and self._lock_target == LockState.UNKNOWN:
            self._trace("unlocking the connector")
            params.lock_state = LockState.OPENING
            self._set_h_bridge(pwm_neg, pwm_pos)
            self._lock_timer = (params.lock_run_time // LOCK_STEP_MS) & 0xFFFF
            self._lock_target = LockState.OPEN
            self._lock_request = LockState.UNKNOWN
        if self._lock_request == LockState.CLOSED and self._lock_target == LockState.UNKNOWN:
            self._trace("locking the connector")
            params.lock_state = LockState.CLOSING
            self._set_h_bridge(pwm_pos, pwm_neg)
            self._lock_timer = (params.lock_run_time // LOCK_STEP_MS) & 0xFFFF
            self._lock_target = LockState.CLOSED
            self._lock_request = LockState.UNKNOWN
        if self._lock_timer > 0:
            self._lock_timer -= 1
            if self._lock_timer == 0:
                self._set_h_bridge(0, 0)
                params.lock_state = self._lock_target
                self._lock_state = self._lock_target
                self._lock_target = LockState.UNKNOWN
                self._trace("finished connector (un)locking")

    def _handle_leds(self) -> None:
        self._led_divider = (self._led_divider + 1) & 0xFF
        div = self._led_divider
        if self.ac_charger is not None and self.ac_charger.is_basic_ac_charging():
            self.set_rgb(self.ac_charger.rgb())
            return
        cp = self._diag.checkpoint
        if cp < 100:
            # Modem sleeping, defective, or search ongoing.
            self.set_rgb(BLUE | GREEN | RED)
            return
        if 100 <= cp < 150:
            self.set_rgb(GREEN)
        if 150 < cp <= 530:
            self.set_rgb(GREEN if div & 4 else 0)
        if 540 <= cp < 560:
            self.set_rgb(GREEN if div & 2 else 0)
        if cp >= 560:
            self.set_rgb(BLUE if div & 2 else 0)
        if 570 <= cp < 700:
            self.set_rgb(BLUE if div & 1 else 0)
        if 700 <= cp < 800:
            self.set_rgb(BLUE)
        if 800 <= cp < 900:
            self.set_rgb(BLUE if div & 1 else GREEN)
        if cp == 900:
            self.set_rgb(BLUE | GREEN)
        if cp > 1000:
            self.set_rgb(RED)

    def _run_actuator_test(self) -> None:
        selection = self._params.actuator_test
        ongoing = True
        if selection == ActuatorTest.CLOSELOCK:
            # Trigger only once to avoid permanent actuation.
            if self._test_lock_status != _LockTestStatus.LOCKING_TRIGGERED:
                self.trigger_connector_locking()
                self._test_lock_status = _LockTestStatus.LOCKING_TRIGGERED
        elif selection == ActuatorTest.OPENLOCK:
            if self._test_lock_status != _LockTestStatus.UNLOCKING_TRIGGERED:
                self.trigger_connector_unlocking()
                self._test_lock_status = _LockTestStatus.UNLOCKING_TRIGGERED
        elif selection == ActuatorTest.CONTACTOR:
            self.set_power_relay_on()
            self._test_lock_status = _LockTestStatus.IDLE
        elif selection == ActuatorTest.STATEC:
            self.set_state_c()
            self._test_lock_status = _LockTestStatus.IDLE
        elif selection == ActuatorTest.LEDGREEN:
            self.set_rgb(GREEN)
            self._test_lock_status = _LockTestStatus.IDLE
        elif selection == ActuatorTest.LEDRED:
            self.set_rgb(RED)
            self._test_lock_status = _LockTestStatus.IDLE
        elif selection == ActuatorTest.LEDBLUE:
            self.set_rgb(BLUE)
            self._test_lock_status = _LockTestStatus.IDLE
        else:
            ongoing = False
            self._test_lock_status = _LockTestStatus.IDLE
            if self._test_running:
                # The test just ended: return the outputs to their defaults.
                self.set_power_relay_off()
                self.set_state_b()
                self.trigger_connector_unlocking()
        self._test_running = ongoing

    def cyclic(self, cp_capture: tuple[int, int] | None, lock_feedback: int,
               now_ms: int) -> None:
        """One 30 ms cycle.

        cp_capture is (high time, period) of a fresh CP PWM capture, or None if no
        capture happened; lock_feedback is the lock feedback ADC value.
        """
        params = self._params
        if cp_capture is not None:
            high_time, period = cp_capture
            if period <= 0:
                raise ValueError("CP PWM period must be positive")
            self._cp_capture = (high_time, period)
            self._cp_valid_cycles = CP_DUTY_VALID_CYCLES

        if self._cp_valid_cycles > 0 and self._cp_capture is not None:
            self._cp_valid_cycles -= 1
            high_time, period = self._cp_capture
            duty = 100.0 * high_time / period
        else:
            duty = 0.0
        params.control_pilot_duty = duty

        # Actuator tests only while not connected to a charger.
        allowed = params.resistance_prox_pilot > ACTUATOR_TEST_MIN_PP_OHM and params.opmode == 0
        if allowed:
            self._run_actuator_test()
        elif self._test_running:
            params.actuator_test = ActuatorTest.NONE
            self._run_actuator_test()
        else:
            params.actuator_test = ActuatorTest.NONE

        if not self._test_running:
            self._handle_leds()

        self._handle_contactors()
        self._handle_lock(lock_feedback, now_ms)