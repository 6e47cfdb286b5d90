import io

import pytest

from cbsensor.events import (
    EVENT_SIZE,
    BlockResponse,
    DnsResponse,
    Event,
    EventType,
    FileGeneric,
    Heartbeat,
    ModuleLoad,
    NetworkConnect,
    ProcessBlockType,
    ProcessExit,
    ProcessInfo,
    ProcessStart,
    SockAddr,
    TerminateFailureReason,
    decode_event,
    iter_events,
)
from cbsensor.filetypes import FileType


def info():
    return ProcessInfo(
        pid=4242,
        process_start_time=132000000000000000,
        event_time=132000000010000000,
        process_start_time_unix=(1600000000, 5),
        event_time_unix=(1600000001, 999999999),
    )


def test_event_header_compiles_to_known_size():
    # The source's own test only checks that the header compiles.
    assert EVENT_SIZE == 5211
    assert len(Event().pack()) == EVENT_SIZE


@pytest.mark.parametrize(
    "event_type, details",
    [
        (
            EventType.PROCESS_START,
            ProcessStart(1, 1000, 2, True, 77, "/usr/bin/true", "true --help", True),
        ),
        (EventType.PROCESS_EXIT, ProcessExit(4242)),
        (EventType.MODULE_LOAD, ModuleLoad("/lib/libc.so.6", 0x7F0000000000)),
        (EventType.FILE_WRITE, FileGeneric("/tmp/a.pdf", FileType.PDF)),
        (EventType.FILE_CLOSE, FileGeneric("/tmp/b", FileType.UNKNOWN)),
        (
            EventType.NET_CONNECT_POST,
            NetworkConnect(
                6,
                SockAddr(2, 40000, "10.0.0.1"),
                SockAddr(2, 443, "192.0.2.5"),
                "proxy.example.com",
                8080,
            ),
        ),
        (EventType.DNS_RESPONSE, DnsResponse(4, b"\x12\x34\x81\x80")),
        (
            EventType.PROCESS_BLOCKED,
            BlockResponse(
                ProcessBlockType.AFTER_STARTUP,
                TerminateFailureReason.NONE,
                0,
                1000,
                99,
                "bad",
                "",
                False,
            ),
        ),
        (EventType.HEARTBEAT, Heartbeat(1, 2, 3, 4)),
    ],
)
def test_round_trip(event_type, details):
    event = Event(event_type, info(), details, canary=0)
    packed = event.pack()
    assert len(packed) == EVENT_SIZE
    assert decode_event(packed) == event


def test_event_type_is_little_endian_at_start():
    packed = Event(EventType.HEARTBEAT, details=Heartbeat()).pack()
    assert packed[:4] == (31).to_bytes(4, "little")


def test_ipv4_sockaddr_wire_layout():
    details = NetworkConnect(local_addr=SockAddr(2, 80, "10.0.0.1"))
    packed = Event(EventType.NET_ACCEPT, details=details).pack()
    local = packed[60:60 + 128]
    assert local[0:2] == b"\x02\x00"
    assert local[2:4] == b"\x00\x50"
    assert local[4:8] == bytes([10, 0, 0, 1])


def test_ipv6_sockaddr_round_trip():
    addr = SockAddr(10, 53, "2001:db8::1", flowinfo=7, scope_id=3)
    details = NetworkConnect(17, addr, addr)
    event = decode_event(Event(EventType.NET_CONNECT_PRE, details=details).pack())
    assert event.details.local_addr == addr
    assert event.details.is_v4 is False


def test_is_v4_follows_local_family():
    assert NetworkConnect(local_addr=SockAddr(2, 1, "127.0.0.1")).is_v4 is True


def test_unknown_family_keeps_only_family():
    details = NetworkConnect(local_addr=SockAddr(1))
    event = decode_event(Event(EventType.WEB_PROXY, details=details).pack())
    assert event.details.local_addr == SockAddr(1)


def test_event_without_details_decodes_to_none():
    event = Event(EventType.PROC_ANALYZE, info())
    assert decode_event(event.pack()) == event


def test_unknown_event_type_kept_as_int():
    event = decode_event(Event(99).pack())
    assert event.event_type == 99
    assert not isinstance(event.event_type, EventType)
    assert event.details is None


def test_unknown_failure_reason_kept_as_int():
    details = BlockResponse(failure_reason=9)
    event = decode_event(Event(EventType.PROCESS_NOT_BLOCKED, details=details).pack())
    assert event.details.failure_reason == 9


def test_canary_round_trips():
    assert decode_event(Event(canary=0xDEADBEEF).pack()).canary == 0xDEADBEEF


def test_mismatched_details_rejected():
    with pytest.raises(TypeError):
        Event(EventType.PROCESS_EXIT, details=Heartbeat()).pack()


def test_details_for_event_without_payload_rejected():
    with pytest.raises(TypeError):
        Event(EventType.UNKNOWN, details=ProcessExit(1)).pack()


def test_path_too_long_rejected():
    with pytest.raises(ValueError):
        Event(EventType.FILE_CREATE, details=FileGeneric("/" * 4097)).pack()


def test_longest_path_fits():
    path = "/" + "a" * 4095
    event = decode_event(Event(EventType.FILE_CREATE, details=FileGeneric(path)).pack())
    assert event.details.path == path


def test_dns_data_too_long_rejected():
    with pytest.raises(ValueError):
        Event(EventType.DNS_RESPONSE, details=DnsResponse(769, bytes(769))).pack()


@pytest.mark.parametrize("size", [0, EVENT_SIZE - 1, EVENT_SIZE + 1])
def test_decode_wrong_length(size):
    with pytest.raises(ValueError):
        decode_event(bytes(size))


def test_iter_events_drops_partial_tail():
    first = Event(EventType.PROCESS_EXIT, info(), ProcessExit(1))
    second = Event(EventType.HEARTBEAT, info(), Heartbeat(5, 6, 7, 8))
    stream = io.BytesIO(first.pack() + second.pack() + b"\x01\x02\x03")
    assert list(iter_events(stream)) == [first, second]


def test_iter_events_empty_stream():
    assert list(iter_events(io.BytesIO(b""))) == []


class _Trickle(io.RawIOBase):
    def __init__(self, data, step):
        self._data = data
        self._step = step

    def readable(self):
        return True

    def read(self, size=-1):
        chunk, self._data = self._data[: self._step], self._data[self._step:]
        return chunk


def test_non_utf8_path_survives_round_trip():
    path = b"/tmp/\xff\xfe".decode("utf-8", "surrogateescape")
    event = Event(EventType.FILE_WRITE, details=FileGeneric(path))
    assert decode_event(event.pack()).details.path == path