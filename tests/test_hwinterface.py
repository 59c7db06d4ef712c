import io

import pytest

from evccs.acobc import RED, AcChargerController, ObcState
from evccs.hwinterface import (
    CAN_TIMEOUT,
    CONTACT_LOCK_PERIOD,
    DEMO_CONTROL_STANDALONE,
    SIMULATED_SOC_FULL,
    SIMULATED_SOC_START,
    WAKEUP_PULSE_CYCLES,
    ActuatorTest,
    HardwareInterface,
    LimitationReason,
    StopReason,
    WakeupMode,
)
from evccs.runtime import Diagnostics, LockState, LogModule, Parameters


@pytest.fixture
def env():
    params = Parameters()
    out = io.StringIO()
    diag = Diagnostics(params, output=out, clock=lambda: 0)
    return params, diag, HardwareInterface(diag), out


def test_initial_outputs_are_off(env):
    _, _, hw, _ = env
    assert hw.outputs.h_bridge_duty == (0, 0)
    assert hw.outputs.contactor_duty == (0, 0)
    assert hw.outputs.contactor_enabled is False


def test_set_rgb_bits(env):
    _, _, hw, _ = env
    hw.set_rgb(RED | 4)
    assert hw.outputs.red and hw.outputs.blue and not hw.outputs.green
    assert hw.outputs.rgb == RED | 4


def test_state_b_and_c(env):
    _, _, hw, _ = env
    hw.set_state_c()
    assert hw.outputs.state_c is True
    hw.set_state_b()
    assert hw.outputs.state_c is False


def test_demo_voltage_used_in_standalone(env):
    params, _, hw, _ = env
    params.demo_voltage = 200
    params.demo_control = DEMO_CONTROL_STANDALONE
    assert hw.accu_voltage() == 200
    assert params.battery_voltage == 200
    assert hw.charging_target_voltage() == 200


def test_demo_voltage_out_of_range_is_ignored(env):
    params, _, hw, _ = env
    params.demo_voltage = 300
    params.demo_control = DEMO_CONTROL_STANDALONE
    params.battery_voltage = 350
    assert hw.accu_voltage() == 350


def test_target_current_limited_by_inlet_temperature(env):
    params, _, hw, _ = env
    params.charge_current = 100
    params.temp_limited_current = 50
    assert hw.charging_target_current() == 50
    assert params.limitation_reason == LimitationReason.INLET_HOT
    assert params.ev_target_current == 50


def test_target_current_unlimited(env):
    params, _, hw, _ = env
    params.charge_current = 40
    params.temp_limited_current = 50
    assert hw.charging_target_current() == 40
    assert params.limitation_reason == LimitationReason.NONE


def test_accu_full_threshold(env):
    params, _, hw, _ = env
    params.soc = 95
    assert hw.is_accu_full() is False
    params.soc = 96
    assert hw.is_accu_full() is True
    assert hw.soc() == 96


def test_no_stop_by_default(env):
    params, _, hw, _ = env
    assert hw.stop_charge_requested() is False
    assert params.stop_reason == StopReason.NONE


@pytest.mark.parametrize(
    "field, value, reason",
    [
        ("enable", False, StopReason.MISSING_ENABLE),
        ("temp_limited_current", 0.0, StopReason.INLET_OVERHEAT),
        ("can_watchdog", CAN_TIMEOUT, StopReason.CAN_TIMEOUT),
    ],
)
def test_stop_reasons(env, field, value, reason):
    params, _, hw, _ = env
    setattr(params, field, value)
    assert hw.stop_charge_requested() is True
    assert params.stop_reason == reason


def test_can_timeout_ignored_in_standalone(env):
    params, _, hw, _ = env
    params.can_watchdog = CAN_TIMEOUT
    params.demo_control = DEMO_CONTROL_STANDALONE
    assert hw.stop_charge_requested() is False


def test_simulation(env):
    _, _, hw, _ = env
    hw.reset_simulation()
    assert hw.simulated_soc == SIMULATED_SOC_START
    hw.simulate_charging()
    assert hw.simulated_soc == SIMULATED_SOC_START + 1
    hw.simulated_soc = SIMULATED_SOC_FULL
    hw.simulate_charging()
    assert hw.simulated_soc == SIMULATED_SOC_FULL


def test_contactors_sequential_then_economized(env):
    params, _, hw, _ = env
    params.economizer_duty = 50
    hw.set_power_relay_off()
    hw.cyclic(None, 0, 0)
    hw.set_power_relay_on()
    hw.cyclic(None, 0, 0)
    assert hw.outputs.contactor_duty == (CONTACT_LOCK_PERIOD, 0)
    assert hw.outputs.contactor_enabled is True
    for _ in range(30):
        hw.cyclic(None, 0, 0)
    half = CONTACT_LOCK_PERIOD // 2
    assert hw.outputs.contactor_duty == (half, half)
    hw.set_power_relay_off()
    hw.cyclic(None, 0, 0)
    assert hw.outputs.contactor_duty == (0, 0)
    assert hw.outputs.contactor_enabled is False


def test_lock_without_feedback_is_time_based(env):
    params, _, hw, _ = env
    params.lock_run_time = 90  # three 30 ms steps
    hw.trigger_connector_locking()
    hw.cyclic(None, 0, 0)
    assert params.lock_state == LockState.CLOSING
    assert hw.outputs.h_bridge_duty == (CONTACT_LOCK_PERIOD, 0)
    hw.cyclic(None, 0, 0)
    assert hw.is_connector_locked() is False
    hw.cyclic(None, 0, 0)
    assert params.lock_state == LockState.CLOSED
    assert hw.outputs.h_bridge_duty == (0, 0)
    assert hw.is_connector_locked() is True


def test_lock_with_feedback(env):
    params, _, hw, _ = env
    params.lock_open_thresh = 100
    params.lock_closed_thresh = 3000
    hw.trigger_connector_locking()
    hw.cyclic(None, 50, 100000)
    assert params.lock_state == LockState.CLOSING
    closing_drive = hw.outputs.h_bridge_duty
    hw.cyclic(None, 3500, 100030)
    assert params.lock_state == LockState.CLOSED
    assert hw.outputs.h_bridge_duty == (0, 0)
    assert hw.is_connector_locked() is True
    hw.trigger_connector_unlocking()
    hw.cyclic(None, 3500, 100060)
    assert params.lock_state == LockState.OPENING
    assert hw.outputs.h_bridge_duty == tuple(reversed(closing_drive))


def test_cp_duty_times_out(env):
    params, _, hw, _ = env
    hw.cyclic((25, 100), 0, 0)
    assert params.control_pilot_duty == pytest.approx(25.0)
    hw.cyclic(None, 0, 0)
    hw.cyclic(None, 0, 0)
    assert params.control_pilot_duty == pytest.approx(25.0)
    hw.cyclic(None, 0, 0)
    assert params.control_pilot_duty == 0.0


def test_cp_zero_period_rejected(env):
    _, _, hw, _ = env
    with pytest.raises(ValueError):
        hw.cyclic((25, 0), 0, 0)


@pytest.mark.parametrize("checkpoint, rgb", [(0, 7), (120, 2), (700, 4), (900, 6), (1100, 1)])
def test_leds_follow_checkpoint(env, checkpoint, rgb):
    _, diag, hw, _ = env
    diag.set_checkpoint(checkpoint)
    hw.cyclic(None, 0, 0)
    assert hw.outputs.rgb == rgb


def test_leds_from_ac_charger(env):
    params, _, hw, _ = env
    controller = AcChargerController(params, hw)
    controller.activate()
    params.ac_obc_state = ObcState.ERROR
    controller.trigger_actions()
    hw.ac_charger = controller
    hw.cyclic(None, 0, 0)
    assert hw.outputs.rgb == RED


def test_actuator_test_led_and_cancel(env):
    params, _, hw, _ = env
    params.resistance_prox_pilot = 3000.0
    params.actuator_test = ActuatorTest.LEDBLUE
    hw.cyclic(None, 0, 0)
    assert hw.outputs.rgb == 4
    params.actuator_test = ActuatorTest.STATEC
    hw.cyclic(None, 0, 0)
    assert hw.outputs.state_c is True
    params.resistance_prox_pilot = 0.0
    hw.cyclic(None, 0, 0)
    assert params.actuator_test == ActuatorTest.NONE
    assert hw.outputs.state_c is False


def test_actuator_test_close_lock(env):
    params, _, hw, _ = env
    params.resistance_prox_pilot = 3000.0
    params.lock_run_time = 0
    params.actuator_test = ActuatorTest.CLOSELOCK
    hw.cyclic(None, 0, 0)
    assert params.lock_state == LockState.CLOSING


def test_actuator_test_not_allowed_resets_selection(env):
    params, _, hw, _ = env
    params.actuator_test = ActuatorTest.LEDRED
    hw.cyclic(None, 0, 0)
    assert params.actuator_test == ActuatorTest.NONE


def test_wakeup_without_power_is_off(env):
    params, _, hw, _ = env
    params.wakeup_pin_func = WakeupMode.LEVEL
    hw.wakeup_other_peripherals(False)
    assert hw.outputs.trigger_wakeup is False
    hw.wakeup_other_peripherals(True)
    assert hw.outputs.trigger_wakeup is True


def test_wakeup_pulse_ends(env):
    params, _, hw, _ = env
    params.wakeup_pin_func = WakeupMode.PULSE
    states = []
    for _ in range(WAKEUP_PULSE_CYCLES + 1):
        hw.wakeup_other_peripherals(True)
        states.append(hw.outputs.trigger_wakeup)
    assert states == [True] * WAKEUP_PULSE_CYCLES + [False]


def test_wakeup_on_valid_cp(env):
    params, _, hw, _ = env
    params.wakeup_pin_func = WakeupMode.LEVEL | WakeupMode.ONVALIDCP
    params.control_pilot_duty = 10.0
    hw.wakeup_other_peripherals(True)
    assert hw.outputs.trigger_wakeup is True
    params.control_pilot_duty = 0.0
    hw.wakeup_other_peripherals(True)
    assert hw.outputs.trigger_wakeup is False


def test_log_cp_pp_data(env):
    params, _, hw, out = env
    params.logging = LogModule.HWIF
    params.hardware_variant = 4003
    hw.log_cp_pp_data()
    assert "HardwareVariant  4003" in out.getvalue()
    assert len(out.getvalue().splitlines()) == 4


def test_inlet_voltage(env):
    params, _, hw, _ = env
    params.inlet_voltage = 380
    assert hw.inlet_voltage() == 380