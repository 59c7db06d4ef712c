# evccs

Vehicle-side logic for CCS charging, written as plain Python objects that are
driven by cyclic calls. The package holds no hardware or network access of its
own: measured values such as ADC readings or CP PWM captures are passed in,
frames to send go to a callable you supply, and outputs are recorded in
objects you can inspect.

## Installation

```
pip install .
```

To run the tests:

```
pip install ".[test]"
pytest
```

## Modules

- `evccs.runtime` – shared state: `Parameters` (a dataclass holding all
  parameters and spot values), `Diagnostics` (`trace`, `trace_bytes`,
  `set_checkpoint`, `publish_status`), the `LogModule` flags that select which
  traces are written, and `LockState`.
- `evccs.connmgr` – `ConnectionManager` and `ConnectionLevel`. Layers report
  success with `modem_finder_ok`, `slac_ok`, `sdp_ok`, `tcp_ok` and
  `appl_ok`; `tick()` counts the timers down and derives the overall level,
  read with `level()`.
- `evccs.pushbutton` – `PushButton`: `update(adc_value)` evaluates the analog
  button input, `is_pressed_500ms()` reports a long press (only if
  `allow_unlock` is set), `accumulated_digits()` gives the last four press
  counts as a decimal number.
- `evccs.hwvariants` – `is_near`, `hardware_variant_from_adc` and
  `evaluate_hardware_variant` identify the board revision (4002 to 4005, or
  999 for unknown) from a divider ADC value.
- `evccs.homeplug_frames` – composing and parsing HomePlug AV management
  frames: `compose_get_sw_req`, `compose_slac_param_req`,
  `compose_start_atten_char_ind`, `compose_mnbc_sound_ind`,
  `compose_atten_char_rsp`, `compose_slac_match_req`, `compose_set_key_req`,
  `compose_get_key_req`, `parse_get_sw_cnf` (returning a
  `SoftwareVersionInfo`), plus `ether_type`, `management_message_type`,
  `format_mac` and the `MessageType` enum.
- `evccs.slac` – `HomeplugStation` runs the SLAC sequencer
  (`run_slac_sequencer`), the SDP retry state machine
  (`run_sdp_state_machine`) and evaluates received frames (`handle_frame`).
  `sanity_check()` raises `SanityCheckError` on an impossible state.
- `evccs.modemfinder` – `ModemFinder` sends a software version request while
  only the link is up and reports the number of answering modems to the
  connection manager.
- `evccs.acobc` – `AcChargerController` for basic AC charging, with the pure
  functions `pp_resistance`, `cable_current_limit` and `evse_current_limit`,
  and the `ObcState` enum.
- `evccs.hwinterface` – `HardwareInterface`: CP duty measurement, contactors
  with economizer PWM, connector lock with or without feedback, LEDs, CP
  state B/C, wake-up line and actuator tests. Outputs are kept in a
  `HardwareOutputs` instance at `outputs`.

## Examples

```python
from evccs.runtime import Diagnostics, Parameters
from evccs.connmgr import ConnectionManager, ConnectionLevel

diagnostics = Diagnostics(Parameters())
manager = ConnectionManager(diagnostics)
manager.modem_finder_ok(2)
manager.tick()
assert manager.level() == ConnectionLevel.TWO_MODEMS_FOUND
```

```python
from evccs.acobc import evse_current_limit, cable_current_limit

evse_current_limit(50)      # 30.0 A at 50 % PWM
cable_current_limit(220.0)  # 32.0 A cable
```

```python
from evccs.slac import HomeplugStation

sent = []
station = HomeplugStation(diagnostics, manager, transmit=sent.append)
station.read_modem_versions()   # one GET_SW.REQ frame is now in sent
```

All state machines are meant to be ticked at a fixed rate (30 ms for the
communication layers and the hardware interface, 100 ms for AC charger
handling), as their timeouts are counted in cycles.

## What the package does not do

- It does not send or receive anything itself: frames go to the `transmit`
  callable, and received frames must be handed to `handle_frame`.
- It does not build or evaluate IPv6, UDP or TCP packets. The SDP state
  machine only decides when to send a discovery request and calls the
  `sdp_request` callable you pass to `HomeplugStation`; SDP responses and
  neighbor discovery must be handled outside the package, which then calls
  `ConnectionManager.sdp_ok()`.
- It has no DC charging session (no EXI messages), no command-line program
  and no persistent storage of parameters.