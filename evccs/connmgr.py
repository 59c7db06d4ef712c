"""Connection manager: derives an overall connection level from OK reports."""

from __future__ import annotations

import enum

from evccs.runtime import Diagnostics, LogModule

CYCLES_PER_SECOND = 33
_TIMER_5S = 5 * CYCLES_PER_SECOND
_TIMER_10S = 10 * CYCLES_PER_SECOND
_TIMER_20S = 20 * CYCLES_PER_SECOND


class ConnectionLevel(enum.IntEnum):
    NONE = 0
    ETH_LINK_PRESENT = 5
    ONE_MODEM_FOUND = 10
    SLAC_ONGOING = 15
    TWO_MODEMS_FOUND = 20
    SDP_DONE = 50
    TCP_RUNNING = 80
    APPL_RUNNING = 100


# Highest level first: a running upper layer implies the lower ones.
_PRIORITY = (
    ("appl", ConnectionLevel.APPL_RUNNING),
    ("tcp", ConnectionLevel.TCP_RUNNING),
    ("sdp", ConnectionLevel.SDP_DONE),
    ("modem_remote", ConnectionLevel.TWO_MODEMS_FOUND),
    ("slac", ConnectionLevel.SLAC_ONGOING),
    ("modem_local", ConnectionLevel.ONE_MODEM_FOUND),
    ("eth_link", ConnectionLevel.ETH_LINK_PRESENT),
)

_DEBUG_ORDER = ("eth_link", "modem_local", "modem_remote", "slac", "sdp", "tcp", "appl")


class ConnectionManager:
    """Collects timed OK reports of each layer; call tick() every 30 ms."""

    def __init__(self, diagnostics: Diagnostics) -> None:
        self._diag = diagnostics
        self._timers = dict.fromkeys(_DEBUG_ORDER, 0)
        self._level = ConnectionLevel.NONE
        self._old_level = ConnectionLevel.NONE
        self._cycles = 0

    def level(self) -> ConnectionLevel:
        return self._level

    def debug_line(self) -> str:
        counters = " ".join(str(self._timers[name]) for name in _DEBUG_ORDER)
        return f"[CONNMGR] {counters} --> {int(self._level)}"

    def tick(self) -> None:
        for name, value in self._timers.items():
            if value > 0:
                self._timers[name] = value - 1

        self._level = next(
            (level for name, level in _PRIORITY if self._timers[name] > 0),
            ConnectionLevel.NONE,
        )
        # The modem is wired via SPI, so the link is always considered up.
        self._timers["eth_link"] = _TIMER_5S

        if self._level != self._old_level:
            self._diag.trace(
                LogModule.CONNMGR,
                f"[CONNMGR] ConnectionLevel changed from {int(self._old_level)} "
                f"to {int(self._level)}.",
            )
            self._old_level = self._level

        if self._cycles % CYCLES_PER_SECOND == 0:
            self._diag.trace(LogModule.CONNMGR, self.debug_line())
            if self._level < ConnectionLevel.ETH_LINK_PRESENT:
                self._diag.publish_status("Eth", "no link")
        self._cycles = (self._cycles + 1) & 0xFFFF

    def modem_finder_ok(self, count: int) -> None:
        if count >= 1:
            self._timers["modem_local"] = _TIMER_5S
        if count >= 2:
            self._timers["modem_remote"] = _TIMER_10S

    def slac_ok(self) -> None:
        # The modems restart after SetKey and need time to pair.
        self._timers["slac"] = _TIMER_20S

    def sdp_ok(self) -> None:
        self._timers["sdp"] = _TIMER_5S

    def tcp_ok(self) -> None:
        self._timers["tcp"] = _TIMER_5S

    def appl_ok(self, timeout_seconds: int) -> None:
        self._timers["appl"] = ((timeout_seconds & 0xFF) * CYCLES_PER_SECOND) & 0xFFFF