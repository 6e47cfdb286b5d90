"""Deciding which events are reported, and event timestamps."""

from __future__ import annotations

import logging
from enum import IntFlag
from typing import Iterable

from cbsensor.events import EventType

log = logging.getLogger(__name__)

_WINDOWS_EPOCH_OFFSET = 116444736000000000
_TICKS_PER_SECOND = 10000000
_NANOSECONDS_PER_TICK = 100
_UINT64_MASK = (1 << 64) - 1
NO_SERVER_UID = 0xFFFFFFFF


class EventFilter(IntFlag):
    """Classes of event that can be switched on or off."""

    PROCESSES = 0x00000001
    MODULE_LOADS = 0x00000002
    FILEMODS = 0x00000004
    NETCONNS = 0x00000008
    DATAFILEWRITES = 0x00000010
    PROCESSUSER = 0x00000020
    ALL = 0x0000002F


_FILTER_BY_TYPE = {
    EventType.PROCESS_START: EventFilter.PROCESSES,
    EventType.PROCESS_EXIT: EventFilter.PROCESSES,
    EventType.MODULE_LOAD: EventFilter.MODULE_LOADS,
    EventType.FILE_CREATE: EventFilter.FILEMODS,
    EventType.FILE_DELETE: EventFilter.FILEMODS,
    EventType.FILE_WRITE: EventFilter.FILEMODS,
    EventType.FILE_CLOSE: EventFilter.FILEMODS,
    EventType.NET_CONNECT_PRE: EventFilter.NETCONNS,
    EventType.NET_CONNECT_POST: EventFilter.NETCONNS,
    EventType.NET_ACCEPT: EventFilter.NETCONNS,
    EventType.DNS_RESPONSE: EventFilter.NETCONNS,
}

_ALWAYS_LOGGED = frozenset({
    EventType.PROCESS_BLOCKED,
    EventType.PROCESS_NOT_BLOCKED,
    EventType.HEARTBEAT,
    EventType.WEB_PROXY,
})


def should_log(event_type, event_filter=EventFilter.ALL) -> bool:
    """Whether events of ``event_type`` pass ``event_filter``."""
    required = _FILTER_BY_TYPE.get(int(event_type))
    if required is not None:
        return (int(event_filter) & required) == required
    if int(event_type) not in _ALWAYS_LOGGED:
        log.warning("Unknown shouldlog event type %d", int(event_type))
    return True


def to_windows_timestamp(seconds: int, nanoseconds: int = 0) -> int:
    """Convert a unix time to 100ns ticks since 1601, as an unsigned 64-bit value."""
    ticks = (
        seconds * _TICKS_PER_SECOND
        + _WINDOWS_EPOCH_OFFSET
        + nanoseconds // _NANOSECONDS_PER_TICK
    )
    return ticks & _UINT64_MASK


def should_exclude_uid(uid: int, server_uid: int = NO_SERVER_UID,
                       ignored_uids: Iterable[int] = ()) -> bool:
    """Whether events caused by ``uid`` are suppressed."""
    return uid == server_uid or uid in set(ignored_uids)