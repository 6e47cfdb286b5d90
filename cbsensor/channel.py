"""The queue of events waiting for the daemon, and the requests it sends back."""

from __future__ import annotations

import errno
import logging
import os
import struct
import time
from collections import deque
from enum import IntEnum
from typing import Optional, Union

from cbsensor.banning import BanTable, IgnoreList, parse_protection_control
from cbsensor.eventfilter import (
    NO_SERVER_UID,
    EventFilter,
    should_exclude_uid,
    should_log,
    to_windows_timestamp,
)
from cbsensor.events import (
    EVENT_DYNAMIC_STRUCT,
    TRUSTED_PATH_SIZE,
    Event,
    EventType,
    Heartbeat,
    ProcessInfo,
)
from cbsensor.isolation import NetworkIsolation
from cbsensor.stats import EventStats

log = logging.getLogger(__name__)

MSG_QUEUE_SIZE = 8192
DEFAULT_MAX_IGNORED = 256

_UINT32_MASK = 0xFFFFFFFF
_ULONG = struct.Struct("<Q")
_HEARTBEAT = struct.Struct("<QQQQ")
_NS_PER_SECOND = 1_000_000_000
_CRITICAL_PERCENT = 90

_PRIORITY_TYPES = frozenset({
    EventType.PROCESS_START,
    EventType.PROCESS_EXIT,
    EventType.PROCESS_BLOCKED,
    EventType.PROCESS_NOT_BLOCKED,
})


class DriverRequest(IntEnum):
    """Requests the daemon can send to the sensor."""

    UNKNOWN = 0
    GET_VERSION = 1
    APPLY_FILTER = 2
    IGNORE_UID = 3
    IGNORE_PID = 4
    IGNORE_SERVER = 5
    SET_BANNED_PID = 6
    SET_BANNED_INODE = 7
    SET_TRUSTED_PATH = 8
    ISOLATION_MODE_CONTROL = 9
    CLR_BANNED_INODE = 10
    PROTECTION_ENABLED = 11
    SET_LOG_LEVEL = 12
    HEARTBEAT = 13
    MAX = 14


class ChannelError(OSError):
    """A channel operation failed; ``errno`` says why."""

    def __init__(self, code: int, message: str) -> None:
        super().__init__(code, message)


def _as_int(data) -> int:
    if isinstance(data, int):
        return data
    raw = bytes(data)
    if len(raw) < _ULONG.size:
        raise ChannelError(errno.ENOMEM, "failed to copy arg")
    return _ULONG.unpack_from(raw, 0)[0]


def _current_uid() -> int:
    getuid = getattr(os, "getuid", None)
    return getuid() if getuid is not None else 0


class EventChannel:
    """Two priority queues of events for a single reader, plus request handling.

    Process start, exit and block events go to the priority queue; everything
    else goes to the ordinary one.  ``banned_action`` is the protection control
    action value that marks an inode as banned.
    """

    def __init__(self, *, banned_action: int, queue_size: int = MSG_QUEUE_SIZE,
                 max_ignored_pids: int = DEFAULT_MAX_IGNORED,
                 max_ignored_uids: int = DEFAULT_MAX_IGNORED,
                 bans: Optional[BanTable] = None,
                 isolation: Optional[NetworkIsolation] = None,
                 stats: Optional[EventStats] = None) -> None:
        if queue_size <= 0:
            raise ValueError("queue_size must be positive")
        self.banned_action = banned_action
        self._queue_size = queue_size
        self._pri0: deque[Event] = deque()
        self._pri1: deque[Event] = deque()
        self.have_reader = False
        self.event_filter = EventFilter.ALL
        self.server_uid = NO_SERVER_UID
        self.ignored_pids = IgnoreList(max_ignored_pids)
        self.ignored_uids = IgnoreList(max_ignored_uids)
        self.bans = bans if bans is not None else BanTable()
        self.isolation = isolation if isolation is not None else NetworkIsolation()
        self.stats = stats if stats is not None else EventStats()

    @property
    def pending(self) -> tuple[int, int]:
        """Number of events waiting in the priority and ordinary queues."""
        return len(self._pri0), len(self._pri1)

    def open(self) -> None:
        """Attach the single reader."""
        if self.have_reader:
            raise ChannelError(errno.EMFILE, "can only have one connection")
        self.have_reader = True

    def release(self) -> None:
        """Detach the reader."""
        self.have_reader = False

    def send(self, event: Event) -> bool:
        """Queue an event; False if there is no reader or its queue is full."""
        if not self.have_reader:
            return False
        queue = self._pri0 if int(event.event_type) in _PRIORITY_TYPES else self._pri1
        if len(queue) >= self._queue_size:
            self.stats.record_drop()
            log.debug("Failed insertion: queue full")
            return False
        queue.append(event)
        return True

    def read(self) -> Event:
        """Take the next event, favouring the priority queue unless the other is nearly full."""
        qlen_a, qlen_b = self.pending
        if qlen_a == 0 and qlen_b == 0:
            raise ChannelError(errno.ENOMEM, "empty queue")
        a_pct = qlen_a * 100 // self._queue_size
        b_pct = qlen_b * 100 // self._queue_size
        if a_pct >= _CRITICAL_PERCENT or (qlen_a != 0 and b_pct < _CRITICAL_PERCENT):
            queue = self._pri0
        else:
            queue = self._pri1
        if not queue:
            raise ChannelError(errno.ENOMEM, "failed to dequeue event")
        event = queue.popleft()
        self.stats.record_read(event.event_type)
        return event

    def poll(self) -> bool:
        """Whether an event is ready to be read."""
        return any(self.pending)

    def drain(self) -> int:
        """Discard every queued event and return how many there were."""
        count = len(self._pri0) + len(self._pri1)
        self._pri0.clear()
        self._pri1.clear()
        return count

    def _heartbeat(self, data) -> None:
        if isinstance(data, Heartbeat):
            user_memory, user_peak = data.user_memory, data.user_memory_peak
        else:
            raw = bytes(data)
            if len(raw) < _HEARTBEAT.size:
                raise ChannelError(errno.ENOMEM, "failed to copy arg")
            user_memory, user_peak, _, _ = _HEARTBEAT.unpack_from(raw, 0)

        if not should_log(EventType.HEARTBEAT, self.event_filter) or should_exclude_uid(
            _current_uid(), self.server_uid, self.ignored_uids
        ):
            log.error("Unable to alloc heartbeat event.")
            return

        self.stats.set_user_memory(user_memory, user_peak)
        seconds, nanoseconds = divmod(time.time_ns(), _NS_PER_SECOND)
        info = ProcessInfo(
            pid=os.getpid(),
            event_time=to_windows_timestamp(seconds, nanoseconds),
            event_time_unix=(seconds, nanoseconds),
        )
        details = Heartbeat(
            user_memory, user_peak,
            self.stats.kernel_memory, self.stats.kernel_memory_peak,
        )
        self.send(Event(EventType.HEARTBEAT, info, details))

    def handle_request(self, request, data) -> None:
        """Carry out one request from the daemon with its argument ``data``."""
        if data is None:
            raise ChannelError(errno.ENOMEM, "arg null")

        try:
            request = DriverRequest(request)
        except ValueError:
            log.warning("Unknown request type %d", int(request))
            return

        if request == DriverRequest.APPLY_FILTER:
            event_filter = _as_int(data) & _UINT32_MASK
            if event_filter != self.event_filter:
                log.info("+Applying filter 0x%X", event_filter)
                self.event_filter = event_filter
        elif request == DriverRequest.IGNORE_UID:
            self.ignored_uids.add(_as_int(data) & _UINT32_MASK)
        elif request == DriverRequest.IGNORE_SERVER:
            uid = _as_int(data) & _UINT32_MASK
            if uid != self.server_uid:
                log.info("+Setting CB server UID=%u", uid)
                self.server_uid = uid
        elif request == DriverRequest.IGNORE_PID:
            self.ignored_pids.add(_as_int(data) & _UINT32_MASK)
        elif request == DriverRequest.ISOLATION_MODE_CONTROL:
            try:
                self.isolation.set_mode(data)
            except (ValueError, RuntimeError) as exc:
                log.error("isolation control rejected: %s", exc)
        elif request == DriverRequest.HEARTBEAT:
            self._heartbeat(data)
        elif request == DriverRequest.SET_BANNED_INODE:
            try:
                entries = parse_protection_control(data)
            except ValueError as exc:
                raise ChannelError(errno.ENOMEM, "failed to copy arg") from exc
            for entry in entries:
                if entry.action == self.banned_action:
                    self.bans.ban_inode(entry.inode)
                    log.debug("banned inode: %d", entry.inode)
        elif request in (DriverRequest.PROTECTION_ENABLED,
                         DriverRequest.CLR_BANNED_INODE):
            # Enabling or disabling protection also clears every ban.
            if request == DriverRequest.PROTECTION_ENABLED:
                self.bans.set_protection_state(_as_int(data) & _UINT32_MASK)
            self.bans.clear_all()
        elif request == DriverRequest.SET_TRUSTED_PATH:
            raw = bytes(data)
            if len(raw) < TRUSTED_PATH_SIZE:
                raise ChannelError(errno.ENOMEM, "failed to copy arg")
            path = raw[:TRUSTED_PATH_SIZE].split(b"\0", 1)[0]
            log.debug("path=%s", path.decode("utf-8", "surrogateescape"))
        else:
            log.warning("Unknown request type %d", int(request))


def dynamic_request(size: int, address: int) -> bytes:
    """Encode the size and address of a variable sized request payload."""
    return EVENT_DYNAMIC_STRUCT.pack(size, address)