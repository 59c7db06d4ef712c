import io
from types import SimpleNamespace

import pytest

from evccs.connmgr import ConnectionLevel, ConnectionManager
from evccs.homeplug_frames import compose_get_sw_req
from evccs.modemfinder import ModemFinder
from evccs.runtime import Diagnostics, LogModule, Parameters
from evccs.slac import HomeplugStation

OWN_MAC = bytes.fromhex("020000000001")


def get_sw_cnf(source):
    buf = bytearray(60)
    buf[6:12] = source
    buf[12] = 0x88
    buf[13] = 0xE1
    buf[15] = 0x01
    buf[16] = 0xA0
    buf[22] = 3
    buf[23:26] = b"abc"
    return buf


@pytest.fixture
def env():
    params = Parameters(logging=LogModule.MODEMFINDER)
    diag = Diagnostics(params, output=io.StringIO(), clock=lambda: 0)
    conn = ConnectionManager(diag)
    sent = []
    station = HomeplugStation(diag, conn, sent.append, own_mac=OWN_MAC)
    finder = ModemFinder(station, conn, diag)
    return SimpleNamespace(params=params, diag=diag, conn=conn, sent=sent,
                           station=station, finder=finder)


def link_up(env):
    env.conn.tick()
    env.conn.tick()


def ticks(env, n):
    for _ in range(n):
        env.finder.tick()


def test_no_search_without_link(env):
    env.finder.tick()
    assert env.sent == []


def test_search_starts_with_link(env):
    link_up(env)
    assert env.conn.level() == ConnectionLevel.ETH_LINK_PRESENT
    env.finder.tick()
    assert env.sent == [compose_get_sw_req(OWN_MAC)]
    assert env.params.checkpoint == 6
    assert ("Modem search", "") in env.diag.statuses


def test_two_responses_reported(env):
    link_up(env)
    env.finder.tick()
    env.station.handle_frame(get_sw_cnf(bytes.fromhex("020000000002")))
    env.station.handle_frame(get_sw_cnf(bytes.fromhex("020000000003")))
    ticks(env, 15)
    assert all(status[0] != "Modems:" for status in env.diag.statuses)
    env.finder.tick()
    assert ("Modems:", "2") in env.diag.statuses
    env.conn.tick()
    assert env.conn.level() == ConnectionLevel.TWO_MODEMS_FOUND


def test_no_response_then_new_search(env):
    link_up(env)
    ticks(env, 17)
    assert ("Modems:", "0") in env.diag.statuses
    env.conn.tick()
    assert env.conn.level() == ConnectionLevel.ETH_LINK_PRESENT
    ticks(env, 16)
    assert len(env.sent) == 1
    env.finder.tick()
    assert env.sent == [compose_get_sw_req(OWN_MAC)] * 2


def test_counter_reset_at_search_start(env):
    link_up(env)
    env.station.handle_frame(get_sw_cnf(bytes.fromhex("020000000002")))
    assert env.station.number_of_software_version_responses == 1
    env.finder.tick()
    assert env.station.number_of_software_version_responses == 0