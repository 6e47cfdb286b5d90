import pytest

from cbsensor.eventfilter import (
    EventFilter,
    should_exclude_uid,
    should_log,
    to_windows_timestamp,
)
from cbsensor.events import EventType


def test_filter_constants():
    assert int(EventFilter.ALL) == 0x2F
    assert should_log(EventType.PROCESS_START, EventFilter.ALL) is True
    assert should_log(EventType.PROCESS_START, EventFilter.DATAFILEWRITES) is False
    assert should_log(EventType.FILE_WRITE, EventFilter.DATAFILEWRITES) is False


@pytest.mark.parametrize("event_type,flag", [
    (EventType.PROCESS_START, EventFilter.PROCESSES),
    (EventType.PROCESS_EXIT, EventFilter.PROCESSES),
    (EventType.MODULE_LOAD, EventFilter.MODULE_LOADS),
    (EventType.FILE_WRITE, EventFilter.FILEMODS),
    (EventType.FILE_CLOSE, EventFilter.FILEMODS),
    (EventType.NET_ACCEPT, EventFilter.NETCONNS),
    (EventType.DNS_RESPONSE, EventFilter.NETCONNS),
])
def test_filtered_types_follow_their_flag(event_type, flag):
    assert should_log(event_type, flag) is True
    assert should_log(event_type, EventFilter.ALL & ~flag) is False
    assert should_log(event_type, 0) is False


@pytest.mark.parametrize("event_type", [
    EventType.PROCESS_BLOCKED,
    EventType.PROCESS_NOT_BLOCKED,
    EventType.HEARTBEAT,
    EventType.WEB_PROXY,
    EventType.PROC_ANALYZE,
    EventType.UNKNOWN,
])
def test_unfiltered_types_always_logged(event_type):
    assert should_log(event_type, 0) is True


def test_default_filter_logs_everything_filtered():
    assert should_log(EventType.FILE_CREATE) is True


def test_windows_epoch():
    assert to_windows_timestamp(0) == 116444736000000000


def test_windows_timestamp_scales():
    base = to_windows_timestamp(0, 0)
    assert to_windows_timestamp(1, 0) - base == 10000000
    assert to_windows_timestamp(0, 199) - base == 1
    assert to_windows_timestamp(5, 300) > to_windows_timestamp(5, 200)


def test_windows_timestamp_wraps_to_64_bits():
    assert 0 <= to_windows_timestamp(2 ** 62) < 2 ** 64


def test_exclude_server_uid():
    assert should_exclude_uid(500, server_uid=500) is True
    assert should_exclude_uid(501, server_uid=500) is False


def test_exclude_ignored_uid():
    assert should_exclude_uid(1000, ignored_uids=[10, 1000]) is True
    assert should_exclude_uid(0, ignored_uids=[10, 1000]) is False


def test_no_server_uid_by_default():
    assert should_exclude_uid(0) is False