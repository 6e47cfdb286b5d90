"""Binary layout of the events the sensor hands to user space."""

from __future__ import annotations

import ipaddress
import struct
from dataclasses import dataclass, field
from enum import IntEnum
from typing import BinaryIO, ClassVar, Iterator, Union

from cbsensor.filetypes import FileType

PATH_MAX = 4096
CB_MAX_CMDLINE_SIZE = 1024
CB_PROXY_SERVER_MAX_LEN = 256
DNS_DATA_SIZE = 768
SOCKADDR_STORAGE_SIZE = 128
TRUSTED_PATH_SIZE = PATH_MAX + 1

CB_PROCESS_START_BY_FORK = 0x00000001
CB_PROCESS_START_BY_EXEC = 0x00000002

# size and user-space address of a variable sized request payload
EVENT_DYNAMIC_STRUCT = struct.Struct("<QQ")

_AF_INET = 2
_AF_INET6 = 10

_PATH_FIELD = PATH_MAX + 1
_CMDLINE_FIELD = CB_MAX_CMDLINE_SIZE + 1


class EventType(IntEnum):
    """Kinds of event reported by the sensor."""

    UNKNOWN = 0
    PROCESS_START = 1
    PROCESS_EXIT = 2
    MODULE_LOAD = 3
    FILE_CREATE = 10
    FILE_DELETE = 11
    FILE_WRITE = 12
    FILE_CLOSE = 13
    NET_CONNECT_PRE = 20
    NET_CONNECT_POST = 21
    NET_ACCEPT = 22
    DNS_RESPONSE = 25
    PROC_ANALYZE = 27
    PROCESS_BLOCKED = 28
    PROCESS_NOT_BLOCKED = 29
    WEB_PROXY = 30
    HEARTBEAT = 31
    MAX = 32


class ProcessBlockType(IntEnum):
    """When a banned process was killed."""

    DURING_STARTUP = 0
    AFTER_STARTUP = 1


class TerminateFailureReason(IntEnum):
    """Why killing a banned process failed, if it did."""

    NONE = 0
    PROCESS_OPEN_FAILURE = 2
    PROCESS_TERMINATE_FAILURE = 3


def _enum_or_int(enum_cls, value: int):
    try:
        return enum_cls(value)
    except ValueError:
        return value


def _decode_cstring(raw: bytes) -> str:
    return raw.split(b"\0", 1)[0].decode("utf-8", "surrogateescape")


def _encode_cstring(text: str, size: int, name: str) -> bytes:
    raw = text.encode("utf-8", "surrogateescape")
    if len(raw) >= size:
        raise ValueError(f"{name} is {len(raw)} bytes; at most {size - 1} fit")
    return raw


@dataclass
class ProcessInfo:
    """Process id and times common to every event; unix times are (sec, nsec)."""

    pid: int = 0
    process_start_time: int = 0
    event_time: int = 0
    process_start_time_unix: tuple[int, int] = (0, 0)
    event_time_unix: tuple[int, int] = (0, 0)

    _STRUCT: ClassVar[struct.Struct] = struct.Struct("<iqqqqqq")

    def _pack(self) -> bytes:
        return self._STRUCT.pack(
            self.pid,
            self.process_start_time,
            self.event_time,
            *self.process_start_time_unix,
            *self.event_time_unix,
        )

    @classmethod
    def _unpack(cls, data: bytes) -> "ProcessInfo":
        pid, start, when, start_s, start_ns, when_s, when_ns = cls._STRUCT.unpack(data)
        return cls(pid, start, when, (start_s, start_ns), (when_s, when_ns))


@dataclass
class ProcessStart:
    """A process was started by fork or exec."""

    parent: int = 0
    uid: int = 0
    start_action: int = 0
    observed: bool = False
    inode: int = 0
    path: str = ""
    cmd_line: str = ""
    path_found: bool = False

    _STRUCT: ClassVar[struct.Struct] = struct.Struct(
        f"<iIi?Q{_PATH_FIELD}s{_CMDLINE_FIELD}s?"
    )

    def _pack(self) -> bytes:
        return self._STRUCT.pack(
            self.parent,
            self.uid,
            self.start_action,
            self.observed,
            self.inode,
            _encode_cstring(self.path, _PATH_FIELD, "path"),
            _encode_cstring(self.cmd_line, _CMDLINE_FIELD, "cmd_line"),
            self.path_found,
        )

    @classmethod
    def _unpack(cls, data: bytes) -> "ProcessStart":
        parent, uid, action, observed, inode, path, cmd, found = cls._STRUCT.unpack(data)
        return cls(
            parent, uid, action, observed, inode,
            _decode_cstring(path), _decode_cstring(cmd), found,
        )


@dataclass
class ProcessExit:
    """A process exited."""

    pid: int = 0

    _STRUCT: ClassVar[struct.Struct] = struct.Struct("<i")

    def _pack(self) -> bytes:
        return self._STRUCT.pack(self.pid)

    @classmethod
    def _unpack(cls, data: bytes) -> "ProcessExit":
        return cls(*cls._STRUCT.unpack(data))


@dataclass
class ModuleLoad:
    """A shared object or module was mapped into a process."""

    module_name: str = ""
    base_address: int = 0

    _STRUCT: ClassVar[struct.Struct] = struct.Struct(f"<{_PATH_FIELD}sq")

    def _pack(self) -> bytes:
        return self._STRUCT.pack(
            _encode_cstring(self.module_name, _PATH_FIELD, "module_name"),
            self.base_address,
        )

    @classmethod
    def _unpack(cls, data: bytes) -> "ModuleLoad":
        name, base = cls._STRUCT.unpack(data)
        return cls(_decode_cstring(name), base)


@dataclass
class FileGeneric:
    """A file was created, deleted, written or closed."""

    path: str = ""
    file_type: Union[FileType, int] = FileType.UNKNOWN

    _STRUCT: ClassVar[struct.Struct] = struct.Struct(f"<{_PATH_FIELD}si")

    def _pack(self) -> bytes:
        return self._STRUCT.pack(
            _encode_cstring(self.path, _PATH_FIELD, "path"), int(self.file_type)
        )

    @classmethod
    def _unpack(cls, data: bytes) -> "FileGeneric":
        path, file_type = cls._STRUCT.unpack(data)
        return cls(_decode_cstring(path), _enum_or_int(FileType, file_type))


@dataclass
class SockAddr:
    """A socket address stored in a 128 byte sockaddr_storage."""

    family: int = 0
    port: int = 0
    host: str = ""
    flowinfo: int = 0
    scope_id: int = 0

    def _pack(self) -> bytes:
        raw = bytearray(SOCKADDR_STORAGE_SIZE)
        struct.pack_into("<H", raw, 0, self.family)
        if self.family == _AF_INET:
            struct.pack_into(">H", raw, 2, self.port)
            raw[4:8] = ipaddress.IPv4Address(self.host or "0.0.0.0").packed
        elif self.family == _AF_INET6:
            struct.pack_into(">HI", raw, 2, self.port, self.flowinfo)
            raw[8:24] = ipaddress.IPv6Address(self.host or "::").packed
            struct.pack_into("<I", raw, 24, self.scope_id)
        return bytes(raw)

    @classmethod
    def _unpack(cls, data: bytes) -> "SockAddr":
        (family,) = struct.unpack_from("<H", data, 0)
        if family == _AF_INET:
            (port,) = struct.unpack_from(">H", data, 2)
            return cls(family, port, str(ipaddress.IPv4Address(data[4:8])))
        if family == _AF_INET6:
            port, flowinfo = struct.unpack_from(">HI", data, 2)
            (scope_id,) = struct.unpack_from("<I", data, 24)
            host = str(ipaddress.IPv6Address(data[8:24]))
            return cls(family, port, host, flowinfo, scope_id)
        return cls(family)


@dataclass
class NetworkConnect:
    """A connection was made, accepted or passed through a proxy."""

    protocol: int = 0
    local_addr: SockAddr = field(default_factory=SockAddr)
    remote_addr: SockAddr = field(default_factory=SockAddr)
    actual_server: str = ""
    actual_port: int = 0

    _STRUCT: ClassVar[struct.Struct] = struct.Struct(
        f"<i{SOCKADDR_STORAGE_SIZE}s{SOCKADDR_STORAGE_SIZE}s{CB_PROXY_SERVER_MAX_LEN}sH"
    )

    @property
    def is_v4(self) -> bool:
        return self.local_addr.family == _AF_INET

    def _pack(self) -> bytes:
        return self._STRUCT.pack(
            self.protocol,
            self.local_addr._pack(),
            self.remote_addr._pack(),
            _encode_cstring(self.actual_server, CB_PROXY_SERVER_MAX_LEN, "actual_server"),
            self.actual_port,
        )

    @classmethod
    def _unpack(cls, data: bytes) -> "NetworkConnect":
        protocol, local, remote, server, port = cls._STRUCT.unpack(data)
        return cls(
            protocol, SockAddr._unpack(local), SockAddr._unpack(remote),
            _decode_cstring(server), port,
        )


@dataclass
class DnsResponse:
    """A captured DNS response packet."""

    length: int = 0
    data: bytes = b""

    _STRUCT: ClassVar[struct.Struct] = struct.Struct(f"<I{DNS_DATA_SIZE}s")

    def _pack(self) -> bytes:
        if len(self.data) > DNS_DATA_SIZE:
            raise ValueError(f"DNS data is limited to {DNS_DATA_SIZE} bytes")
        return self._STRUCT.pack(self.length, bytes(self.data))

    @classmethod
    def _unpack(cls, data: bytes) -> "DnsResponse":
        length, payload = cls._STRUCT.unpack(data)
        return cls(length, payload[:min(length, DNS_DATA_SIZE)])


@dataclass
class BlockResponse:
    """A banned process was, or could not be, killed."""

    block_type: Union[ProcessBlockType, int] = ProcessBlockType.DURING_STARTUP
    failure_reason: Union[TerminateFailureReason, int] = TerminateFailureReason.NONE
    failure_reason_details: int = 0
    uid: int = 0
    inode: int = 0
    path: str = ""
    cmd_line: str = ""
    path_found: bool = False

    _STRUCT: ClassVar[struct.Struct] = struct.Struct(
        f"<iiIIQ{_PATH_FIELD}s{_CMDLINE_FIELD}s?"
    )

    def _pack(self) -> bytes:
        return self._STRUCT.pack(
            int(self.block_type),
            int(self.failure_reason),
            self.failure_reason_details,
            self.uid,
            self.inode,
            _encode_cstring(self.path, _PATH_FIELD, "path"),
            _encode_cstring(self.cmd_line, _CMDLINE_FIELD, "cmd_line"),
            self.path_found,
        )

    @classmethod
    def _unpack(cls, data: bytes) -> "BlockResponse":
        block, reason, details, uid, inode, path, cmd, found = cls._STRUCT.unpack(data)
        return cls(
            _enum_or_int(ProcessBlockType, block),
            _enum_or_int(TerminateFailureReason, reason),
            details, uid, inode,
            _decode_cstring(path), _decode_cstring(cmd), found,
        )


@dataclass
class Heartbeat:
    """Memory use reported by the daemon and the sensor."""

    user_memory: int = 0
    user_memory_peak: int = 0
    kernel_memory: int = 0
    kernel_memory_peak: int = 0

    _STRUCT: ClassVar[struct.Struct] = struct.Struct("<QQQQ")

    def _pack(self) -> bytes:
        return self._STRUCT.pack(
            self.user_memory, self.user_memory_peak,
            self.kernel_memory, self.kernel_memory_peak,
        )

    @classmethod
    def _unpack(cls, data: bytes) -> "Heartbeat":
        return cls(*cls._STRUCT.unpack(data))


Details = Union[
    ProcessStart, ProcessExit, ModuleLoad, FileGeneric,
    NetworkConnect, DnsResponse, BlockResponse, Heartbeat,
]

_DETAILS_BY_TYPE: dict[int, type] = {
    EventType.PROCESS_START: ProcessStart,
    EventType.PROCESS_EXIT: ProcessExit,
    EventType.MODULE_LOAD: ModuleLoad,
    EventType.FILE_CREATE: FileGeneric,
    EventType.FILE_DELETE: FileGeneric,
    EventType.FILE_WRITE: FileGeneric,
    EventType.FILE_CLOSE: FileGeneric,
    EventType.NET_CONNECT_PRE: NetworkConnect,
    EventType.NET_CONNECT_POST: NetworkConnect,
    EventType.NET_ACCEPT: NetworkConnect,
    EventType.WEB_PROXY: NetworkConnect,
    EventType.DNS_RESPONSE: DnsResponse,
    EventType.PROCESS_BLOCKED: BlockResponse,
    EventType.PROCESS_NOT_BLOCKED: BlockResponse,
    EventType.HEARTBEAT: Heartbeat,
}

_UNION_SIZE = max(
    cls._STRUCT.size
    for cls in (ProcessStart, ProcessExit, ModuleLoad, FileGeneric,
                NetworkConnect, DnsResponse, BlockResponse, Heartbeat)
)
_TYPE_STRUCT = struct.Struct("<i")
_CANARY_STRUCT = struct.Struct("<Q")
_PROC_INFO_OFFSET = _TYPE_STRUCT.size
_UNION_OFFSET = _PROC_INFO_OFFSET + ProcessInfo._STRUCT.size
_CANARY_OFFSET = _UNION_OFFSET + _UNION_SIZE

EVENT_SIZE = _CANARY_OFFSET + _CANARY_STRUCT.size


@dataclass
class Event:
    """One fixed-size event record; ``details`` depends on ``event_type``."""

    event_type: Union[EventType, int] = EventType.UNKNOWN
    proc_info: ProcessInfo = field(default_factory=ProcessInfo)
    details: Details | None = None
    canary: int = 0

    def pack(self) -> bytes:
        """Encode the event as an EVENT_SIZE byte record."""
        if self.details is None:
            union = bytes(_UNION_SIZE)
        else:
            expected = _DETAILS_BY_TYPE.get(int(self.event_type))
            if expected is None or not isinstance(self.details, expected):
                raise TypeError(
                    f"{type(self.details).__name__} details do not belong "
                    f"to event type {self.event_type!r}"
                )
            union = self.details._pack().ljust(_UNION_SIZE, b"\0")
        return (
            _TYPE_STRUCT.pack(int(self.event_type))
            + self.proc_info._pack()
            + union
            + _CANARY_STRUCT.pack(self.canary)
        )


def decode_event(data) -> Event:
    """Decode one EVENT_SIZE byte record."""
    raw = bytes(data)
    if len(raw) != EVENT_SIZE:
        raise ValueError(f"an event is {EVENT_SIZE} bytes, got {len(raw)}")
    (type_value,) = _TYPE_STRUCT.unpack_from(raw, 0)
    event_type = _enum_or_int(EventType, type_value)
    proc_info = ProcessInfo._unpack(raw[_PROC_INFO_OFFSET:_UNION_OFFSET])
    details = None
    details_cls = _DETAILS_BY_TYPE.get(type_value)
    if details_cls is not None:
        size = details_cls._STRUCT.size
        details = details_cls._unpack(raw[_UNION_OFFSET:_UNION_OFFSET + size])
    (canary,) = _CANARY_STRUCT.unpack_from(raw, _CANARY_OFFSET)
    return Event(event_type, proc_info, details, canary)


def _read_exact(stream: BinaryIO, size: int) -> bytes | None:
    chunks = []
    remaining = size
    while remaining:
        chunk = stream.read(remaining)
        if not chunk:
            return None
        chunks.append(chunk)
        remaining -= len(chunk)
    return b"".join(chunks)


def iter_events(stream: BinaryIO) -> Iterator[Event]:
    """Yield each whole event read from a binary stream; a partial tail is dropped."""
    while (record := _read_exact(stream, EVENT_SIZE)) is not None:
        yield decode_event(record)