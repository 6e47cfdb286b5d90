"""Interval statistics of event traffic and memory use, and their text reports."""

from __future__ import annotations

import time
from dataclasses import dataclass

from cbsensor.eventfilter import to_windows_timestamp
from cbsensor.events import EventType

MAX_VALID_INTERVALS = 60
MAX_INTERVALS = 62
NUM_STATS = 17
EVENT_STATS = 13
MEM_START = EVENT_STATS
MEM_STATS = EVENT_STATS + 4
STAT_INTERVAL = 15  # seconds between ticks

_UINT64_MASK = (1 << 64) - 1
_NS_PER_SECOND = 1_000_000_000

# Positions of the counters in one interval's row.
_QUEUED_TOTAL = 0
_QUEUED_PRI0 = 1
_QUEUED_PRI1 = 2
_DROPPED = 3
_TOTAL = 4
_PROCESS = 5
_MODLOAD = 6
_FILE = 7
_NET = 8
_DNS = 9
_PROXY = 10
_BLOCK = 11
_OTHER = 12
_MEM_USER = 13
_MEM_USER_PEAK = 14
_MEM_KERNEL = 15
_MEM_KERNEL_PEAK = 16


@dataclass(frozen=True)
class _StatString:
    name: str
    str_format: str
    num_format: str


_STAT_STRINGS = (
    _StatString("Total Queued", " %12s ||", " %12d ||"),
    _StatString("Queued in P0", " %12s |", " %12d |"),
    _StatString("Queued in P1", " %12s |", " %12d |"),
    _StatString("Dropped", " %7s |", " %7d |"),
    _StatString("All", " %7s |", " %7d |"),
    _StatString("Process", " %7s |", " %7d |"),
    _StatString("Modload", " %7s |", " %7d |"),
    _StatString("File", " %7s |", " %7d |"),
    _StatString("Net", " %7s |", " %7d |"),
    _StatString("DNS", " %7s |", " %7d |"),
    _StatString("Proxy", " %7s |", " %7d |"),
    _StatString("Blocked", " %7s |", " %7d |"),
    _StatString("Other", " %7s |", " %7d |"),
    _StatString("User", " %10s |", " %10d |"),
    _StatString("User Peak", " %10s |", " %10d |"),
    _StatString("Kernel", " %7s |", " %7d |"),
    _StatString("Kernel Peak", " %12s |", " %12d |"),
)

_COUNTER_BY_TYPE = {
    EventType.PROCESS_START: _PROCESS,
    EventType.PROCESS_EXIT: _PROCESS,
    EventType.MODULE_LOAD: _MODLOAD,
    EventType.FILE_CREATE: _FILE,
    EventType.FILE_DELETE: _FILE,
    EventType.FILE_WRITE: _FILE,
    EventType.FILE_CLOSE: _FILE,
    EventType.NET_CONNECT_PRE: _NET,
    EventType.NET_CONNECT_POST: _NET,
    EventType.NET_ACCEPT: _NET,
    EventType.DNS_RESPONSE: _DNS,
    EventType.WEB_PROXY: _PROXY,
    EventType.PROCESS_BLOCKED: _BLOCK,
    EventType.PROCESS_NOT_BLOCKED: _BLOCK,
}


def _signed64(value: int) -> int:
    value &= _UINT64_MASK
    return value - (1 << 64) if value >> 63 else value


def _now_ns(now) -> int:
    return time.time_ns() if now is None else int(now)


def _windows_time(ns: int) -> int:
    seconds, nanoseconds = divmod(ns, _NS_PER_SECOND)
    return _signed64(to_windows_timestamp(seconds, nanoseconds))


class EventStats:
    """A ring of cumulative counters, one row per STAT_INTERVAL.

    Each row holds running totals, so the difference of two rows divided by
    the number of intervals between them gives an average.  Times are unix
    nanoseconds; ``now=None`` means the current time.
    """

    def __init__(self, kernel_memory: int = 0, now=None) -> None:
        self.stats = [[0] * NUM_STATS for _ in range(MAX_INTERVALS)]
        self.times = [0] * MAX_INTERVALS
        self.current = 0
        self.valid_intervals = 0
        self._ready_prev0 = 0
        self._ready_prev1 = 0
        self.times[0] = _now_ns(now)
        self.stats[0][_MEM_KERNEL] = kernel_memory
        self.stats[0][_MEM_KERNEL_PEAK] = kernel_memory

    @property
    def _row(self) -> list[int]:
        return self.stats[self.current]

    @property
    def kernel_memory(self) -> int:
        return self._row[_MEM_KERNEL]

    @property
    def kernel_memory_peak(self) -> int:
        return self._row[_MEM_KERNEL_PEAK]

    def record_read(self, event_type) -> None:
        """Count one event handed to the reader."""
        row = self._row
        row[_TOTAL] += 1
        row[_COUNTER_BY_TYPE.get(int(event_type), _OTHER)] += 1

    def record_drop(self) -> None:
        """Count one event dropped because its queue was full."""
        self._row[_DROPPED] += 1

    def set_user_memory(self, memory: int, peak: int) -> None:
        """Record the memory use the daemon reported."""
        row = self._row
        row[_MEM_USER] = memory
        row[_MEM_USER_PEAK] = peak

    def tick(self, ready0: int, ready1: int, kernel_memory: int, now=None) -> None:
        """Close the current interval given the queue depths, and start the next."""
        curr = self.current
        nxt = (curr + 1) % MAX_INTERVALS
        row = self.stats[curr]

        if ready0 > self._ready_prev0:
            row[_QUEUED_PRI0] += ready0 - self._ready_prev0
        if ready1 > self._ready_prev1:
            row[_QUEUED_PRI1] += ready1 - self._ready_prev1
        self._ready_prev0 = ready0
        self._ready_prev1 = ready1
        row[_QUEUED_TOTAL] += ready0 + ready1

        self.stats[nxt] = list(row)
        self.current = nxt
        self.valid_intervals += 1
        self.times[nxt] = _now_ns(now)

        new_row = self.stats[nxt]
        peak = new_row[_MEM_KERNEL_PEAK]
        new_row[_MEM_KERNEL] = kernel_memory
        new_row[_MEM_KERNEL_PEAK] = max(kernel_memory, peak)

    def reset(self, now=None) -> None:
        """Start the statistics again from an empty interval."""
        self.current = 0
        self.valid_intervals = 0
        for index in (0, MAX_INTERVALS - 1):
            self.stats[index] = [0] * NUM_STATS
        self.times[0] = _now_ns(now)

    def show_events_avg(self) -> str:
        """Totals and 1, 5 and 15 minute per-second averages of each event counter."""
        valid = self.valid_intervals
        if valid == 0:
            return "No Data\n"
        curr = self.current + MAX_INTERVALS
        counts = [min(valid, limit) for limit in (4, 20, 60)]
        bases = [(curr - count) % MAX_INTERVALS for count in counts]
        curr = (curr - 1) % MAX_INTERVALS

        lines = [" %15s | %9s | %9s | %9s | %10s |\n"
                 % ("Stat", "Total", "1 min avg", "5 min avg", "15 min avg")]
        for index in range(1, EVENT_STATS):
            total = self.stats[curr][index]
            averages = [
                _signed64(((total - self.stats[base][index]) & _UINT64_MASK)
                          // count // STAT_INTERVAL)
                for base, count in zip(bases, counts)
            ]
            lines.append(" %15s | %9d | %9d | %9d | %10d |\n"
                         % (_STAT_STRINGS[index].name, _signed64(total), *averages))
        lines.append("\n")
        return "".join(lines)

    def _detail_rows(self):
        valid = min(self.valid_intervals, MAX_VALID_INTERVALS)
        start = (MAX_INTERVALS + self.current - valid) % MAX_INTERVALS + MAX_INTERVALS
        for offset in range(valid):
            left = (start + offset - 1) % MAX_INTERVALS
            right = (start + offset) % MAX_INTERVALS
            yield left, right

    @staticmethod
    def _detail_header(stat_range: range) -> str:
        parts = [" %19s |" % "Timestamp"]
        parts.extend(_STAT_STRINGS[j].str_format % _STAT_STRINGS[j].name
                     for j in stat_range)
        parts.append("\n")
        return "".join(parts)

    def show_events_detail(self) -> str:
        """Per-interval event counts, one line per valid interval."""
        if self.valid_intervals == 0:
            return "No Data\n"
        stat_range = range(EVENT_STATS)
        lines = [self._detail_header(stat_range)]
        for left, right in self._detail_rows():
            parts = [" %19d |" % _windows_time(self.times[right])]
            parts.extend(
                _STAT_STRINGS[j].num_format
                % _signed64(self.stats[right][j] - self.stats[left][j])
                for j in stat_range
            )
            parts.append("\n")
            lines.append("".join(parts))
        return "".join(lines)

    def show_memory(self) -> str:
        """Current user and kernel memory use and their peaks."""
        row = self._row
        return "".join("%9d " % _signed64(row[j]) for j in range(MEM_START, MEM_STATS)) + "\n"

    def show_memory_detail(self) -> str:
        """Memory use at the end of each valid interval."""
        if self.valid_intervals == 0:
            return "No Data\n"
        stat_range = range(MEM_START, MEM_STATS)
        lines = [self._detail_header(stat_range)]
        for _, right in self._detail_rows():
            parts = [" %19d |" % _windows_time(self.times[right])]
            parts.extend(_STAT_STRINGS[j].num_format % _signed64(self.stats[right][j])
                         for j in stat_range)
            parts.append("\n")
            lines.append("".join(parts))
        return "".join(lines)