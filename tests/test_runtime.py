import io

from evccs.runtime import Diagnostics, LockState, LogModule, Parameters


def make_diag(logging=LogModule.NONE, now=1234):
    params = Parameters(logging=logging)
    out = io.StringIO()
    return Diagnostics(params, output=out, clock=lambda: now), out


def test_trace_silent_when_module_disabled():
    diag, out = make_diag(logging=LogModule.PEV)
    diag.trace(LogModule.HOMEPLUG, "hello")
    assert out.getvalue() == ""


def test_trace_prints_timestamped_message():
    diag, out = make_diag(logging=LogModule.HOMEPLUG | LogModule.PEV)
    diag.trace(LogModule.HOMEPLUG, "hello")
    assert out.getvalue() == "[1234] hello\n"


def test_trace_with_value():
    diag, out = make_diag(logging=LogModule.HWIF, now=7)
    diag.trace(LogModule.HWIF, "count", 5)
    assert out.getvalue() == "[7] count 5\n"


def test_trace_bytes_as_hex():
    diag, out = make_diag(logging=LogModule.PEV, now=7)
    diag.trace_bytes(LogModule.PEV, "session", [0x0A, 0xFF, 0x00])
    assert out.getvalue() == "[7] session 0aff00\n"


def test_trace_bytes_disabled():
    diag, out = make_diag(logging=LogModule.NONE)
    diag.trace_bytes(LogModule.PEV, "session", b"\x01")
    assert out.getvalue() == ""


def test_set_checkpoint_updates_parameter():
    diag, _ = make_diag()
    diag.set_checkpoint(560)
    assert diag.params.checkpoint == 560
    assert diag.checkpoint == 560


def test_publish_status_records_parts():
    diag, _ = make_diag()
    diag.publish_status("Eth", "no link")
    diag.publish_status("Modems:", 2)
    assert diag.statuses == [("Eth", "no link"), ("Modems:", "2")]


def test_parameters_lock_state_round_trip():
    params = Parameters()
    params.lock_state = LockState(2)
    assert params.lock_state is LockState.CLOSED