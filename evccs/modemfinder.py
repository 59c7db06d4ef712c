"""Modem finder: counts the modems answering a software version request."""

from __future__ import annotations

import enum

from evccs.connmgr import ConnectionLevel, ConnectionManager
from evccs.runtime import Diagnostics, LogModule
from evccs.slac import HomeplugStation

_WAIT_CYCLES = 15


class _Phase(enum.IntEnum):
    IDLE = 0
    WAITING_FOR_RESPONSES = 1
    SHOWING_RESULT = 2


class ModemFinder:
    """Searches for modems while only the link is up; call tick() every 30 ms."""

    def __init__(self, station: HomeplugStation, connection: ConnectionManager,
                 diagnostics: Diagnostics) -> None:
        self._station = station
        self._connection = connection
        self._diag = diagnostics
        self._phase = _Phase.IDLE
        self._delay = 0

    def tick(self) -> None:
        if (self._connection.level() == ConnectionLevel.ETH_LINK_PRESENT
                and self._phase == _Phase.IDLE):
            self._diag.trace(LogModule.MODEMFINDER, "[ModemFinder] Starting modem search")
            self._diag.publish_status("Modem search", "")
            self._station.read_modem_versions()
            self._diag.set_checkpoint(6)
            self._station.number_of_software_version_responses = 0
            self._delay = _WAIT_CYCLES
            self._phase = _Phase.WAITING_FOR_RESPONSES
            return
        if self._phase == _Phase.WAITING_FOR_RESPONSES:
            if self._delay > 0:
                self._delay -= 1
                return
            count = self._station.number_of_software_version_responses
            self._diag.trace_bytes(LogModule.MODEMFINDER,
                                   "[ModemFinder] Number of modems:", [count])
            self._diag.publish_status("Modems:", str(count))
            if count > 0:
                self._connection.modem_finder_ok(count)
            self._delay = _WAIT_CYCLES
            self._phase = _Phase.SHOWING_RESULT
            return
        if self._phase == _Phase.SHOWING_RESULT:
            if self._delay > 0:
                self._delay -= 1
                return
            self._phase = _Phase.IDLE