"""PEV side of the SLAC procedure and of the SECC discovery (SDP) retries."""

from __future__ import annotations

import enum
from typing import Callable, Iterable

from evccs.connmgr import ConnectionLevel, ConnectionManager
from evccs.homeplug_frames import (
    MAC_LEN,
    MMTYPE_CNF,
    MMTYPE_IND,
    NID_LEN,
    NMK_LEN,
    MessageType,
    compose_atten_char_rsp,
    compose_get_key_req,
    compose_get_sw_req,
    compose_mnbc_sound_ind,
    compose_set_key_req,
    compose_slac_match_req,
    compose_slac_param_req,
    compose_start_atten_char_ind,
    format_mac,
    management_message_type,
    parse_get_sw_cnf,
)
from evccs.runtime import Diagnostics, LogModule

DEFAULT_MAC = bytes.fromhex("feedbeefaffe")

_PARAM_CNF_TIMEOUT_CYCLES = 33
_TOO_LONG_CYCLES = 500
_START_ATTEN_CHAR_COUNT = 3
_SOUND_COUNT = 10
_FIND_MODEMS_CYCLES = 10
_MAX_EVSE_MODEM_MISSING = 20
_SDP_REPETITIONS = 50
_SDP_RETRY_DELAY = 15

_NID_OFFSET = 85
_NMK_OFFSET = 93
_ATTEN_SOUNDS_OFFSET = 69
_SET_KEY_RESULT_OFFSET = 19


class SlacState(enum.IntEnum):
    INITIAL = 0
    MODEM_SEARCH_ONGOING = 1
    READY_FOR_SLAC = 2
    WAITING_FOR_MODEM_RESTARTED = 3
    WAITING_FOR_SLAC_PARAM_CNF = 4
    SLAC_PARAM_CNF_RECEIVED = 5
    BEFORE_START_ATTEN_CHAR = 6
    SOUNDING = 7
    WAIT_FOR_ATTEN_CHAR_IND = 8
    ATTEN_CHAR_IND_RECEIVED = 9
    DELAY_BEFORE_MATCH = 10
    WAITING_FOR_SLAC_MATCH_CNF = 11
    WAITING_FOR_RESTART2 = 12
    FIND_MODEMS2 = 13
    WAITING_FOR_SW_VERSIONS = 14
    READY_FOR_SDP = 15
    SDP = 16


class SanityCheckError(RuntimeError):
    """Raised when a state machine holds a state it can never reach."""


def _require(frame: bytes, length: int, what: str) -> None:
    if len(frame) < length:
        raise ValueError(f"frame too short for {what}: {len(frame)} < {length}")


class HomeplugStation:
    """Runs SLAC and SDP for the vehicle; call the run_* methods every 30 ms."""

    def __init__(
        self,
        diagnostics: Diagnostics,
        connection: ConnectionManager,
        transmit: Callable[[bytes], None],
        own_mac: Iterable[int] = DEFAULT_MAC,
        sdp_request: Callable[[], None] | None = None,
        log_physical_data: Callable[[], None] | None = None,
    ) -> None:
        mac = bytes(own_mac)
        if len(mac) != MAC_LEN:
            raise ValueError(f"own MAC must be {MAC_LEN} bytes, got {len(mac)}")
        self.own_mac = mac
        self._diag = diagnostics
        self._connection = connection
        self._transmit = transmit
        self._sdp_request = sdp_request
        self._log_physical_data = log_physical_data

        self.evse_mac = bytearray(MAC_LEN)
        self.software_versions: dict[bytes, str | None] = {}
        self.number_of_software_version_responses = 0
        self.state = SlacState.INITIAL
        self.sdp_state = 0
        self._nid = bytes(NID_LEN)
        self._nmk = bytes(NMK_LEN)
        self._found_modems = 0
        self._cycles_in_state = 0
        self._delay_cycles = 0
        self._remaining_start_atten_char = 0
        self._remaining_sounds = 0
        self._reported_sounds = 0
        self._sdp_repetitions = 0
        self._evse_modem_missing = 0

        self._handlers: dict[int, Callable[[bytes], None]] = {
            MessageType.CM_SLAC_MATCH + MMTYPE_CNF: self._on_slac_match_cnf,
            MessageType.CM_SLAC_PARAM + MMTYPE_CNF: self._on_slac_param_cnf,
            MessageType.CM_ATTEN_CHAR + MMTYPE_IND: self._on_atten_char_ind,
            MessageType.CM_SET_KEY + MMTYPE_CNF: self._on_set_key_cnf,
            MessageType.CM_GET_SW + MMTYPE_CNF: self._on_get_sw_cnf,
        }
        self._sequencer: dict[SlacState, Callable[[], bool]] = {
            SlacState.INITIAL: self._run_initial,
            SlacState.READY_FOR_SLAC: self._run_ready_for_slac,
            SlacState.WAITING_FOR_SLAC_PARAM_CNF: self._run_waiting_for_param_cnf,
            SlacState.SLAC_PARAM_CNF_RECEIVED: self._run_param_cnf_received,
            SlacState.BEFORE_START_ATTEN_CHAR: self._run_before_start_atten_char,
            SlacState.SOUNDING: self._run_sounding,
            SlacState.WAIT_FOR_ATTEN_CHAR_IND: self._run_wait_for_atten_char_ind,
            SlacState.ATTEN_CHAR_IND_RECEIVED: self._run_atten_char_ind_received,
            SlacState.DELAY_BEFORE_MATCH: self._run_delay_before_match,
            SlacState.WAITING_FOR_SLAC_MATCH_CNF: self._run_waiting_for_match_cnf,
            SlacState.WAITING_FOR_RESTART2: self._run_waiting_for_restart2,
            SlacState.FIND_MODEMS2: self._run_find_modems2,
        }
        self.reset()

    # ------------------------------------------------------------------ helpers

    @property
    def reported_sounds(self) -> int:
        """Number of sounds the charger reported in its ATTEN_CHAR.IND."""
        return self._reported_sounds

    @property
    def evse_modem_found(self) -> bool:
        # Two modems seen means one in the car and one in the charger.
        return self._found_modems > 1

    def _trace(self, message: str) -> None:
        self._diag.trace(LogModule.HOMEPLUG, message)

    def _enter(self, state: SlacState) -> None:
        self._trace(f"[PEVSLAC] from {int(self.state)} entering {int(state)}")
        self.state = state
        self._cycles_in_state = 0

    def _is_too_long(self) -> bool:
        return self._cycles_in_state > _TOO_LONG_CYCLES

    def _log_physical(self) -> None:
        if self._log_physical_data is not None:
            self._log_physical_data()

    def reset(self) -> None:
        """Bring the SLAC sequencer to its start-up state."""
        self.state = SlacState.READY_FOR_SLAC
        self._cycles_in_state = 0
        self._delay_cycles = 0
        self.number_of_software_version_responses = 0
        self._found_modems = 0

    def read_modem_versions(self) -> None:
        """Ask all modems in reach for their software version."""
        self._transmit(compose_get_sw_req(self.own_mac))

    def sanity_check(self) -> None:
        """Raise SanityCheckError if a state machine is in an impossible state."""
        if int(self.state) > SlacState.SDP:
            self._trace("ERROR: Sanity check of the homeplug state machine failed.")
            raise SanityCheckError("homeplug state machine in invalid state")
        if self.sdp_state >= 2:
            self._trace("ERROR: Sanity check of the SDP state machine failed.")
            raise SanityCheckError("SDP state machine in invalid state")

    # ------------------------------------------------------------ reception

    def handle_frame(self, frame: Iterable[int]) -> None:
        """Evaluate a received HomePlug management frame."""
        data = bytes(frame)
        if self._connection.level() == ConnectionLevel.APPL_RUNNING:
            # High level communication is running: ignore cross-talk from other cables.
            self._trace("[HOMEPLUG] Ignoring homeplug message, because high level "
                        "communication is ongoing.")
            return
        handler = self._handlers.get(management_message_type(data))
        if handler is not None:
            handler(data)

    def _on_slac_param_cnf(self, frame: bytes) -> None:
        self._trace("[PEVSLAC] Checkpoint102: received SLAC_PARAM.CNF")
        self._diag.set_checkpoint(102)
        if self.state == SlacState.WAITING_FOR_SLAC_PARAM_CNF:
            self._delay_cycles = 4
            self._enter(SlacState.SLAC_PARAM_CNF_RECEIVED)

    def _on_atten_char_ind(self, frame: bytes) -> None:
        self._trace("[PEVSLAC] received ATTEN_CHAR.IND")
        if self.state != SlacState.WAIT_FOR_ATTEN_CHAR_IND:
            return
        _require(frame, _ATTEN_SOUNDS_OFFSET + 1, "ATTEN_CHAR.IND")
        self.evse_mac[:] = frame[6:12]
        self._reported_sounds = frame[_ATTEN_SOUNDS_OFFSET]
        response = compose_atten_char_rsp(self.own_mac, self.evse_mac)
        self._trace("[PEVSLAC] transmitting ATTEN_CHAR.RSP...")
        self._diag.set_checkpoint(140)
        self._transmit(response)
        self.state = SlacState.ATTEN_CHAR_IND_RECEIVED

    def _on_slac_match_cnf(self, frame: bytes) -> None:
        self._trace("[PEVSLAC] received SLAC_MATCH.CNF")
        _require(frame, _NMK_OFFSET + NMK_LEN, "SLAC_MATCH.CNF")
        self._nid = bytes(frame[_NID_OFFSET:_NID_OFFSET + NID_LEN])
        self._nmk = bytes(frame[_NMK_OFFSET:_NMK_OFFSET + NMK_LEN])
        self._trace("[PEVSLAC] From SlacMatchCnf, got network membership key (NMK) and NID.")
        request = compose_set_key_req(self.own_mac, self._nid, self._nmk)
        self._trace("[PEVSLAC] Checkpoint170: transmitting CM_SET_KEY.REQ")
        self._diag.set_checkpoint(170)
        self._diag.publish_status("SLAC", "set key")
        self._transmit(request)
        if self.state == SlacState.WAITING_FOR_SLAC_MATCH_CNF:
            self._enter(SlacState.WAITING_FOR_RESTART2)

    def _on_set_key_cnf(self, frame: bytes) -> None:
        self._trace("[PEVSLAC] received SET_KEY.CNF")
        _require(frame, _SET_KEY_RESULT_OFFSET + 1, "SET_KEY.CNF")
        result = frame[_SET_KEY_RESULT_OFFSET]
        # Despite the specification, a result of 0 means the key was not taken.
        if result == 0:
            self._trace("[PEVSLAC] SetKeyCnf says 0, this would be a bad sign for local "
                        "modem, but normal for remote.")
            return
        self._trace(f"[PEVSLAC] SetKeyCnf says {result}, this is formally 'rejected', "
                    "but indeed ok.")
        self._diag.publish_status("modem is", "restarting")
        self._connection.slac_ok()

    def _on_get_sw_cnf(self, frame: bytes) -> None:
        self._trace("[PEVSLAC] received GET_SW.CNF")
        self.number_of_software_version_responses = (
            self.number_of_software_version_responses + 1) & 0xFF
        info = parse_get_sw_cnf(frame)
        self.software_versions[info.source_mac] = info.version
        if info.version is not None:
            self._trace(f"For MAC {format_mac(info.source_mac)} software version "
                        f"{info.version}")

    # ------------------------------------------------------------ sequencer

    def run_slac_sequencer(self) -> None:
        """One 30 ms step of the SLAC sequence."""
        self._cycles_in_state = (self._cycles_in_state + 1) & 0xFFFF
        level = self._connection.level()
        if level < ConnectionLevel.ONE_MODEM_FOUND or level >= ConnectionLevel.TWO_MODEMS_FOUND:
            # Either no modem at all, or the pairing is already done.
            if self.state != SlacState.INITIAL:
                self._enter(SlacState.INITIAL)
            return
        handler = self._sequencer.get(self.state)
        if handler is None or not handler():
            self._trace("[PEVSLAC] ERROR: Invalid state reached")
            self._enter(SlacState.INITIAL)

    def _count_down(self) -> bool:
        if self._delay_cycles > 0:
            self._delay_cycles -= 1
            return True
        return False

    def _run_initial(self) -> bool:
        self._enter(SlacState.READY_FOR_SLAC)
        return True

    def _run_ready_for_slac(self) -> bool:
        self._diag.publish_status("Starting SLAC", "")
        self._trace("[PEVSLAC] Checkpoint100: Sending SLAC_PARAM.REQ...")
        self._log_physical()
        self._diag.set_checkpoint(100)
        self._transmit(compose_slac_param_req(self.own_mac))
        self._enter(SlacState.WAITING_FOR_SLAC_PARAM_CNF)
        return True

    def _run_waiting_for_param_cnf(self) -> bool:
        if self._cycles_in_state >= _PARAM_CNF_TIMEOUT_CYCLES:
            self._trace("[PEVSLAC] Timeout while waiting for SLAC_PARAM.CNF")
            self._enter(SlacState.INITIAL)
        return True

    def _run_param_cnf_received(self) -> bool:
        self._delay_cycles = 1
        self._remaining_start_atten_char = _START_ATTEN_CHAR_COUNT
        self._enter(SlacState.BEFORE_START_ATTEN_CHAR)
        return True

    def _run_before_start_atten_char(self) -> bool:
        if self._count_down():
            return True
        if self._remaining_start_atten_char > 0:
            self._remaining_start_atten_char -= 1
            frame = compose_start_atten_char_ind(self.own_mac)
            self._trace("[PEVSLAC] transmitting START_ATTEN_CHAR.IND...")
            self._transmit(frame)
            self._delay_cycles = 0
            return True
        self._delay_cycles = 0
        self._remaining_sounds = _SOUND_COUNT
        self._enter(SlacState.SOUNDING)
        return True

    def _run_sounding(self) -> bool:
        if self._count_down():
            return True
        if self._remaining_sounds <= 0:
            return False
        self._remaining_sounds -= 1
        frame = compose_mnbc_sound_ind(self.own_mac, self._remaining_sounds)
        self._trace("[PEVSLAC] transmitting MNBC_SOUND.IND...")
        self._diag.set_checkpoint(104)
        self._transmit(frame)
        if self._remaining_sounds == 0:
            self._enter(SlacState.WAIT_FOR_ATTEN_CHAR_IND)
        self._delay_cycles = 0
        return True

    def _run_wait_for_atten_char_ind(self) -> bool:
        if self._is_too_long():
            self._enter(SlacState.INITIAL)
        return True

    def _run_atten_char_ind_received(self) -> bool:
        self._enter(SlacState.DELAY_BEFORE_MATCH)
        self._delay_cycles = 30
        return True

    def _run_delay_before_match(self) -> bool:
        if self._count_down():
            return True
        frame = compose_slac_match_req(self.own_mac, self.evse_mac)
        self._diag.publish_status("SLAC", "match req")
        self._trace("[PEVSLAC] Checkpoint150: transmitting SLAC_MATCH.REQ...")
        self._diag.set_checkpoint(150)
        self._transmit(frame)
        self._enter(SlacState.WAITING_FOR_SLAC_MATCH_CNF)
        return True

    def _run_waiting_for_match_cnf(self) -> bool:
        if self._is_too_long():
            self._enter(SlacState.INITIAL)
            return True
        self._delay_cycles = 100  # wait for the modem restart after SET_KEY
        return True

    def _run_waiting_for_restart2(self) -> bool:
        if self._count_down():
            return True
        self._trace("[PEVSLAC] Checking whether the pairing worked, by GET_KEY.REQ...")
        self._found_modems = 0
        self._evse_modem_missing = 0
        self._transmit(compose_get_key_req(self.own_mac, self._nid))
        self._enter(SlacState.FIND_MODEMS2)
        return True

    def _run_find_modems2(self) -> bool:
        if self._cycles_in_state < _FIND_MODEMS_CYCLES:
            return True
        self._trace("[PEVSLAC] It was sufficient time to get the answers from the modems.")
        self._log_physical()
        if not self.evse_modem_found:
            self._evse_modem_missing += 1
            self._trace("[PEVSLAC] No EVSE seen (yet). Still waiting for it.")
            if self._evse_modem_missing > _MAX_EVSE_MODEM_MISSING:
                self._trace("[PEVSLAC] We lost the connection to the EVSE modem. "
                            "Back to the beginning.")
                self._enter(SlacState.INITIAL)
                return True
            self._delay_cycles = 30
            self._enter(SlacState.WAITING_FOR_RESTART2)
            return True
        self._trace("[PEVSLAC] EVSE is up, pairing successful.")
        self._evse_modem_missing = 0
        self._connection.modem_finder_ok(2)
        self._enter(SlacState.INITIAL)
        return True

    # ------------------------------------------------------------------ SDP

    def run_sdp_state_machine(self) -> None:
        """One 30 ms step of the SECC discovery with its retries."""
        level = self._connection.level()
        if level < ConnectionLevel.SLAC_ONGOING or level > ConnectionLevel.TWO_MODEMS_FOUND:
            self.sdp_state = 0
            return
        if self.sdp_state == 0:
            self._diag.publish_status("SDP ongoing", "")
            self._diag.trace(LogModule.HOMEPLUG, "[SDP] Checkpoint200: Starting SDP.")
            self._diag.set_checkpoint(200)
            self._delay_cycles = 0
            self._sdp_repetitions = _SDP_REPETITIONS
            self.sdp_state = 1
            return
        if self.sdp_state == 1:
            if self._count_down():
                return
            if self._sdp_repetitions > 0:
                if self._sdp_request is not None:
                    self._sdp_request()
                self._sdp_repetitions -= 1
                self._delay_cycles = _SDP_RETRY_DELAY
                return
            self._diag.trace(LogModule.HOMEPLUG,
                             "[SDP] ERROR: Did not receive SDP response. Giving up.")
            self.sdp_state = 0