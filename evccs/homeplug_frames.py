"""HomePlug AV management message frames used for SLAC and modem discovery."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Iterable

HOMEPLUG_ETHER_TYPE = 0x88E1
BROADCAST_MAC = b"\xff" * 6

MMTYPE_REQ = 0x0000
MMTYPE_CNF = 0x0001
MMTYPE_IND = 0x0002
MMTYPE_RSP = 0x0003

MAC_LEN = 6
NID_LEN = 7
NMK_LEN = 16

_MAX_VERSION_LEN = 0x30


class MessageType(enum.IntEnum):
    """Base management message types; add an MMTYPE_* variant to get the full type."""

    CM_SET_KEY = 0x6008
    CM_GET_KEY = 0x600C
    CM_SC_JOIN = 0x6010
    CM_CHAN_EST = 0x6014
    CM_TM_UPDATE = 0x6018
    CM_AMP_MAP = 0x601C
    CM_BRG_INFO = 0x6020
    CM_CONN_NEW = 0x6024
    CM_CONN_REL = 0x6028
    CM_CONN_MOD = 0x602C
    CM_CONN_INFO = 0x6030
    CM_STA_CAP = 0x6034
    CM_NW_INFO = 0x6038
    CM_GET_BEACON = 0x603C
    CM_HFID = 0x6040
    CM_MME_ERROR = 0x6044
    CM_NW_STATS = 0x6048
    CM_SLAC_PARAM = 0x6064
    CM_START_ATTEN_CHAR = 0x6068
    CM_ATTEN_CHAR = 0x606C
    CM_PKCS_CERT = 0x6070
    CM_MNBC_SOUND = 0x6074
    CM_VALIDATE = 0x6078
    CM_SLAC_MATCH = 0x607C
    CM_SLAC_USER_DATA = 0x6080
    CM_ATTEN_PROFILE = 0x6084
    CM_GET_SW = 0xA000


@dataclass(frozen=True)
class SoftwareVersionInfo:
    """Contents of a GET_SW.CNF: the answering modem and its firmware version."""

    source_mac: bytes
    version: str | None


def _checked(value: Iterable[int], length: int, what: str) -> bytes:
    data = bytes(value)
    if len(data) != length:
        raise ValueError(f"{what} must be {length} bytes, got {len(data)}")
    return data


def format_mac(mac: Iterable[int]) -> str:
    """Format a MAC address as colon separated lower-case hex."""
    return ":".join(f"{b:02x}" for b in _checked(mac, MAC_LEN, "MAC address"))


def ether_type(frame: bytes) -> int:
    """Return the EtherType of an Ethernet frame."""
    if len(frame) < 14:
        raise ValueError("frame too short for an Ethernet header")
    return frame[12] * 256 + frame[13]


def management_message_type(frame: bytes) -> int:
    """Return the MMTYPE (base value plus variant) of a HomePlug frame."""
    if len(frame) < 17:
        raise ValueError("frame too short for a HomePlug management header")
    return (frame[16] << 8) + frame[15]


def _frame(length: int, destination: bytes, source: bytes, version: int,
           mmtype: int) -> bytearray:
    buf = bytearray(length)
    buf[0:6] = destination
    buf[6:12] = source
    buf[12] = HOMEPLUG_ETHER_TYPE >> 8
    buf[13] = HOMEPLUG_ETHER_TYPE & 0xFF
    buf[14] = version
    buf[15] = mmtype & 0xFF
    buf[16] = mmtype >> 8
    return buf


def compose_get_sw_req(own_mac: Iterable[int]) -> bytes:
    """GET_SW.REQ broadcast, asking all modems for their software version."""
    mac = _checked(own_mac, MAC_LEN, "own MAC")
    buf = _frame(60, BROADCAST_MAC, mac, 0x00, MessageType.CM_GET_SW + MMTYPE_REQ)
    buf[17:20] = b"\x00\xb0\x52"  # vendor OUI
    return bytes(buf)


def compose_slac_param_req(own_mac: Iterable[int]) -> bytes:
    """SLAC_PARAM.REQ broadcast; the run id is the own MAC plus two zero bytes."""
    mac = _checked(own_mac, MAC_LEN, "own MAC")
    buf = _frame(60, BROADCAST_MAC, mac, 0x01, MessageType.CM_SLAC_PARAM + MMTYPE_REQ)
    buf[21:27] = mac
    return bytes(buf)


def compose_start_atten_char_ind(own_mac: Iterable[int]) -> bytes:
    """START_ATTEN_CHAR.IND announcing ten sounds within 600 ms."""
    mac = _checked(own_mac, MAC_LEN, "own MAC")
    buf = _frame(60, BROADCAST_MAC, mac, 0x01,
                 MessageType.CM_START_ATTEN_CHAR + MMTYPE_IND)
    buf[21] = 0x0A  # number of sounds
    buf[22] = 6  # timeout in 100 ms steps
    buf[23] = 0x01  # response type
    buf[24:30] = mac  # sound forwarding station
    buf[30:36] = mac  # run id
    return bytes(buf)


def compose_mnbc_sound_ind(own_mac: Iterable[int], remaining_sounds: int) -> bytes:
    """MNBC_SOUND.IND with the countdown of remaining sounds."""
    mac = _checked(own_mac, MAC_LEN, "own MAC")
    if not 0 <= remaining_sounds <= 0xFF:
        raise ValueError("remaining_sounds must fit into one byte")
    buf = _frame(71, BROADCAST_MAC, mac, 0x01, MessageType.CM_MNBC_SOUND + MMTYPE_IND)
    buf[38] = remaining_sounds
    buf[39:45] = mac  # run id
    buf[55:71] = b"\xff" * 16  # random number
    return bytes(buf)


def compose_atten_char_rsp(own_mac: Iterable[int], evse_mac: Iterable[int]) -> bytes:
    """ATTEN_CHAR.RSP sent to the charger, result OK."""
    mac = _checked(own_mac, MAC_LEN, "own MAC")
    evse = _checked(evse_mac, MAC_LEN, "EVSE MAC")
    buf = _frame(70, evse, mac, 0x01, MessageType.CM_ATTEN_CHAR + MMTYPE_RSP)
    buf[21:27] = mac  # source address
    buf[27:33] = mac  # run id
    return bytes(buf)


def compose_slac_match_req(own_mac: Iterable[int], evse_mac: Iterable[int]) -> bytes:
    """SLAC_MATCH.REQ sent to the chosen charger."""
    mac = _checked(own_mac, MAC_LEN, "own MAC")
    evse = _checked(evse_mac, MAC_LEN, "EVSE MAC")
    buf = _frame(85, evse, mac, 0x01, MessageType.CM_SLAC_MATCH + MMTYPE_REQ)
    buf[21] = 0x3E  # length, little endian
    buf[22] = 0x00
    buf[40:46] = mac  # PEV MAC
    buf[63:69] = evse  # EVSE MAC
    buf[69:75] = mac  # run id
    return bytes(buf)


def compose_set_key_req(own_mac: Iterable[int], nid: Iterable[int],
                        nmk: Iterable[int]) -> bytes:
    """CM_SET_KEY.REQ that programs the local modem with the network key."""
    mac = _checked(own_mac, MAC_LEN, "own MAC")
    nid_bytes = _checked(nid, NID_LEN, "NID")
    nmk_bytes = _checked(nmk, NMK_LEN, "NMK")
    buf = _frame(60, BROADCAST_MAC, mac, 0x01, MessageType.CM_SET_KEY + MMTYPE_REQ)
    buf[19] = 0x01  # key info type
    buf[20:24] = b"\xaa" * 4  # my nonce
    buf[28] = 0x04  # protocol id
    buf[33:40] = nid_bytes
    buf[40] = 0x01  # payload encryption key select: NMK
    buf[41:57] = nmk_bytes
    return bytes(buf)


def compose_get_key_req(own_mac: Iterable[int], nid: Iterable[int]) -> bytes:
    """CM_GET_KEY.REQ, used to check whether the pairing worked."""
    mac = _checked(own_mac, MAC_LEN, "own MAC")
    nid_bytes = _checked(nid, NID_LEN, "NID")
    buf = _frame(60, BROADCAST_MAC, mac, 0x01, MessageType.CM_GET_KEY + MMTYPE_REQ)
    buf[19] = 0x00  # request type: direct
    buf[20] = 0x01  # requested key type: NMK
    buf[21:28] = nid_bytes
    buf[28:32] = b"\xaa" * 4  # my nonce
    buf[32] = 0x04  # protocol id
    return bytes(buf)


def parse_get_sw_cnf(frame: bytes) -> SoftwareVersionInfo:
    """Extract the sender MAC and the software version from a GET_SW.CNF."""
    if len(frame) < 23:
        raise ValueError("frame too short for a GET_SW.CNF")
    source_mac = bytes(frame[6:12])
    length = frame[22]
    if not 0 < length < _MAX_VERSION_LEN:
        return SoftwareVersionInfo(source_mac, None)
    raw = frame[23:23 + length]
    if len(raw) != length:
        raise ValueError("frame too short for the announced version string")
    version = "".join(chr(b if b >= 0x20 else 0x20) for b in raw)
    return SoftwareVersionInfo(source_mac, version)