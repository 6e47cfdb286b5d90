import pytest

from cbsensor.isolation import (
    IPPROTO_UDP,
    IsolationAction,
    IsolationControl,
    IsolationMode,
    NetworkIsolation,
    parse_isolation_control,
)

IPPROTO_TCP = 6
ALLOWED = 0x0A000001
OTHER = 0x0A000002


@pytest.fixture
def isolated():
    isolation = NetworkIsolation()
    isolation.set_mode(IsolationControl(IsolationMode.ON, [ALLOWED, 0]).pack())
    return isolation


def test_pack_wire_bytes():
    packed = IsolationControl(IsolationMode.ON, [ALLOWED]).pack()
    assert packed == b"\x01\x00\x00\x00\x01\x00\x00\x00\x01\x00\x00\x0a"


def test_round_trip():
    control = IsolationControl(IsolationMode.ON, [ALLOWED, OTHER, 7])
    assert parse_isolation_control(control.pack()) == control


def test_empty_list_round_trip():
    control = IsolationControl(IsolationMode.ON, [])
    assert parse_isolation_control(control.pack()) == control


def test_short_buffer_rejected():
    packed = IsolationControl(IsolationMode.ON, [ALLOWED, OTHER]).pack()
    with pytest.raises(ValueError):
        parse_isolation_control(packed[:-1])
    with pytest.raises(ValueError):
        parse_isolation_control(b"\x01\x00")


def test_off_is_disabled():
    isolation = NetworkIsolation()
    assert isolation.intercept(OTHER, True, IPPROTO_TCP, 80) == IsolationAction.DISABLED


def test_allowed_address(isolated):
    assert isolated.intercept(ALLOWED, True, IPPROTO_TCP, 443) == IsolationAction.ALLOW


def test_other_address_blocked(isolated):
    assert isolated.intercept(OTHER, True, IPPROTO_TCP, 443) == IsolationAction.BLOCK


def test_zero_entry_does_not_allow_zero(isolated):
    assert isolated.intercept(0, True, IPPROTO_TCP, 443) == IsolationAction.BLOCK


def test_ipv6_blocked_even_if_matching(isolated):
    assert isolated.intercept(ALLOWED, False, IPPROTO_TCP, 443) == IsolationAction.BLOCK


@pytest.mark.parametrize("is_ipv4,port", [(True, 67), (True, 68), (False, 546),
                                          (False, 547), (True, 53), (False, 53)])
def test_dhcp_and_dns_allowed(isolated, is_ipv4, port):
    assert isolated.intercept(OTHER, is_ipv4, IPPROTO_UDP, port) == IsolationAction.ALLOW


def test_dhcp_port_of_other_family_blocked(isolated):
    assert isolated.intercept(OTHER, True, IPPROTO_UDP, 546) == IsolationAction.BLOCK
    assert isolated.intercept(OTHER, True, IPPROTO_TCP, 53) == IsolationAction.BLOCK


def test_stats_follow_mode(isolated):
    assert isolated.stats.isolation_enabled is True
    isolated.set_mode(IsolationControl(IsolationMode.OFF, []).pack())
    assert isolated.stats.isolation_enabled is False
    assert isolated.intercept(OTHER, True, IPPROTO_TCP, 80) == IsolationAction.DISABLED


def test_shutdown(isolated):
    isolated.shutdown()
    assert isolated.control is None
    assert isolated.intercept(OTHER, True, IPPROTO_TCP, 80) is None
    with pytest.raises(RuntimeError):
        isolated.set_mode(IsolationControl(IsolationMode.ON, []).pack())