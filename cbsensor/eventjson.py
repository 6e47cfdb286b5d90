"""JSON rendering of decoded sensor events."""

from __future__ import annotations

import ipaddress
from typing import Any, Callable

from cbsensor.events import (
    BlockResponse,
    Event,
    EventType,
    FileGeneric,
    ModuleLoad,
    NetworkConnect,
    ProcessBlockType,
    ProcessExit,
    ProcessInfo,
    ProcessStart,
    SockAddr,
    TerminateFailureReason,
)
from cbsensor.filetypes import FileType

_AF_INET = 2
_AF_INET6 = 10

_EVENT_TYPE_NAMES = {
    EventType.UNKNOWN: "Unknown",
    EventType.PROCESS_START: "Process start",
    EventType.PROCESS_EXIT: "Process exit",
    EventType.MODULE_LOAD: "Module load",
    EventType.FILE_CREATE: "File create",
    EventType.FILE_DELETE: "File delete",
    EventType.FILE_WRITE: "File write",
    EventType.FILE_CLOSE: "File close",
    EventType.NET_CONNECT_PRE: "Network connection pre-connect",
    EventType.NET_CONNECT_POST: "Network connection post-connect",
    EventType.NET_ACCEPT: "Network connection accept",
    EventType.DNS_RESPONSE: "DNS response",
    EventType.PROC_ANALYZE: "Process analyze",
    EventType.PROCESS_BLOCKED: "Process blocked",
    EventType.PROCESS_NOT_BLOCKED: "Process not blocked",
    EventType.WEB_PROXY: "Web proxy",
    EventType.HEARTBEAT: "Heartbeat",
}

_FILE_TYPE_NAMES = {
    FileType.UNKNOWN: "Unknown",
    FileType.PE: "PE",
    FileType.ELF: "ELF",
    FileType.UNIVERSAL_BIN: "Universal Bin",
    FileType.EICAR: "EICAR",
    FileType.OFFICE_LEGACY: "Office Legacy",
    FileType.OFFICE_OPEN_XML: "Office OpenXML",
    FileType.PDF: "PDF",
    FileType.ARCHIVE_PKZIP: "PKZIP",
    FileType.ARCHIVE_LZH: "LZH",
    FileType.ARCHIVE_LZW: "LZW",
    FileType.ARCHIVE_RAR: "RAR",
    FileType.ARCHIVE_TAR: "TAR",
    FileType.ARCHIVE_7ZIP: "7ZIP",
}

_BLOCK_TYPE_NAMES = {
    ProcessBlockType.DURING_STARTUP: "At startup",
    ProcessBlockType.AFTER_STARTUP: "After startup",
}

_FAILURE_REASON_NAMES = {
    TerminateFailureReason.NONE: "Success",
    TerminateFailureReason.PROCESS_OPEN_FAILURE: "Process open failure",
    TerminateFailureReason.PROCESS_TERMINATE_FAILURE: "Failed",
}


def _enum_name(names: dict, value, default: str) -> str:
    """Name of an enum value; values without a name take the table's first name."""
    return names.get(int(value), default)


def process_info_to_json(info: ProcessInfo) -> dict[str, Any]:
    """JSON object for the process information common to every event."""
    return {
        "PID": info.pid,
        "Windows start time": info.process_start_time,
        "Windows event time": info.event_time,
    }


def _process_start(data: ProcessStart) -> dict[str, Any]:
    return {
        "Parent PID": data.parent,
        "UID": data.uid,
        "Start type": data.start_action,
        "Observed": data.observed,
        "INode": data.inode,
        "Path": data.path,
        "Command line": data.cmd_line,
        "Path found": data.path_found,
    }


def _process_exit(data: ProcessExit) -> dict[str, Any]:
    return {"PID": data.pid}


def _module_load(data: ModuleLoad) -> dict[str, Any]:
    return {"Module name": data.module_name, "Base address": data.base_address}


def _file_generic(data: FileGeneric) -> dict[str, Any]:
    return {
        "File path": data.path,
        "File type": _enum_name(_FILE_TYPE_NAMES, data.file_type, "Unknown"),
    }


def _sock_addr(addr: SockAddr) -> dict[str, Any]:
    # The address is always read from the IPv4 address slot of the storage,
    # and the port is the raw network-order field read in host order.
    if addr.family == _AF_INET:
        address: str | None = str(ipaddress.IPv4Address(addr.host or "0.0.0.0"))
    elif addr.family == _AF_INET6:
        packed = ipaddress.IPv6Address(addr.host or "::").packed
        raw = addr.flowinfo.to_bytes(4, "big") + packed[:12]
        address = str(ipaddress.IPv6Address(raw))
    else:
        address = None
    port = int.from_bytes(addr.port.to_bytes(2, "big"), "little")
    return {"Address": address, "Port": port}


def _network_connect(data: NetworkConnect) -> dict[str, Any]:
    return {
        "Protocol": data.protocol,
        "Local address": _sock_addr(data.local_addr),
        "Remote address": _sock_addr(data.remote_addr),
        "Port": data.actual_port,
    }


def _block_response(data: BlockResponse) -> dict[str, Any]:
    return {
        "Process blocked": _enum_name(_BLOCK_TYPE_NAMES, data.block_type, "At startup"),
        "Process termination result": _enum_name(
            _FAILURE_REASON_NAMES, data.failure_reason, "Success"
        ),
        "Result code": data.failure_reason_details,
        "UID": data.uid,
        "INode": data.inode,
        "Path": data.path,
        "Command line": data.cmd_line,
        "Path found": data.path_found,
    }


_DETAIL_ENCODERS: dict[int, tuple[type, Callable[[Any], Any]]] = {
    EventType.PROCESS_START: (ProcessStart, _process_start),
    EventType.PROCESS_EXIT: (ProcessExit, _process_exit),
    EventType.MODULE_LOAD: (ModuleLoad, _module_load),
    EventType.FILE_CREATE: (FileGeneric, _file_generic),
    EventType.FILE_DELETE: (FileGeneric, _file_generic),
    EventType.FILE_WRITE: (FileGeneric, _file_generic),
    EventType.FILE_CLOSE: (FileGeneric, _file_generic),
    EventType.NET_CONNECT_PRE: (NetworkConnect, _network_connect),
    EventType.NET_CONNECT_POST: (NetworkConnect, _network_connect),
    EventType.NET_ACCEPT: (NetworkConnect, _network_connect),
    EventType.WEB_PROXY: (NetworkConnect, _network_connect),
    EventType.PROCESS_BLOCKED: (BlockResponse, _block_response),
    EventType.PROCESS_NOT_BLOCKED: (BlockResponse, _block_response),
}

# Types whose details are emitted as a null value: the DNS payload has no
# JSON form.
_NULL_DETAIL_TYPES = frozenset({int(EventType.DNS_RESPONSE)})


def details_to_json(event: Event) -> Any:
    """JSON value of an event's type-specific details, or None if it has none."""
    entry = _DETAIL_ENCODERS.get(int(event.event_type))
    if entry is None:
        return None
    details_cls, encode = entry
    details = event.details if event.details is not None else details_cls()
    return encode(details)


def event_to_json(event: Event) -> dict[str, Any]:
    """JSON object describing a whole event."""
    result: dict[str, Any] = {
        "type": _enum_name(_EVENT_TYPE_NAMES, event.event_type, "Unknown"),
        "process info": process_info_to_json(event.proc_info),
    }
    kind = int(event.event_type)
    if kind in _DETAIL_ENCODERS or kind in _NULL_DETAIL_TYPES:
        result["Details"] = details_to_json(event)
    return result