# cbsensor

Tools for working with the event records produced by an endpoint sensor,
and in-memory models of the sensor's policy logic.

## What is in the package

| Module | What it provides |
| --- | --- |
| `cbsensor.events` | The fixed-size binary event record: `Event` (with `Event.pack()`), `decode_event`, `iter_events`, the `EventType`, `ProcessBlockType` and `TerminateFailureReason` enums, and the detail classes `ProcessInfo`, `ProcessStart`, `ProcessExit`, `ModuleLoad`, `FileGeneric`, `SockAddr`, `NetworkConnect`, `DnsResponse`, `BlockResponse`, `Heartbeat`. |
| `cbsensor.eventjson` | `event_to_json`, `process_info_to_json`, `details_to_json`: JSON-ready dictionaries for decoded events. |
| `cbsensor.cli` | `convert_stream` and `main`, behind the `cbevent-parser` command. |
| `cbsensor.filetypes` | `determine_file_type` and `file_type_str`, with the `FileType` enum. Recognises executable ELF, PE (`MZ`), the EICAR test file and, when data files are asked for, PDF, PKZIP, Office Open XML, legacy Office, TAR, 7-Zip, RAR, LZH and LZW. |
| `cbsensor.eventfilter` | `EventFilter` flags, `should_log`, `should_exclude_uid` and `to_windows_timestamp` (100 ns ticks since 1601). |
| `cbsensor.isolation` | `IsolationMode`, `IsolationAction`, `IsolationControl`, `parse_isolation_control`, `IsolationStats` and `NetworkIsolation`. |
| `cbsensor.banning` | `BanTable` (banned inodes and protection state), `IgnoreList` (bounded pid or uid lists), `ProtectionEntry` and `parse_protection_control`. |
| `cbsensor.writecache` | `FileWriteCache`, a bucketed cache of writes already reported, and `jhash`. |
| `cbsensor.stats` | `EventStats`, a ring of per-interval counters with text reports. |
| `cbsensor.channel` | `EventChannel`, a two-priority event queue for a single reader that also handles `DriverRequest` requests; failures raise `ChannelError`. |

The package has no third-party dependencies.

## Installation

```
pip install .
```

## Converting an event capture to JSON

`cbevent-parser` reads a file of binary event records and prints each whole
record as indented JSON, keys sorted. A trailing partial record is ignored.

```
cbevent-parser events.bin
```

With no argument the records are read from standard input:

```
cat events.bin | cbevent-parser
```

## Using the library

Decoding and rendering events:

```python
from cbsensor.events import iter_events
from cbsensor.eventjson import event_to_json

with open("events.bin", "rb") as stream:
    for event in iter_events(stream):
        print(event_to_json(event))
```

Records can also be built and encoded:

```python
from cbsensor.events import Event, EventType, FileGeneric, decode_event

record = Event(EventType.FILE_WRITE, details=FileGeneric("/tmp/report.pdf")).pack()
assert decode_event(record).details.path == "/tmp/report.pdf"
```

Classifying file contents:

```python
from cbsensor.filetypes import determine_file_type, file_type_str

kind = determine_file_type(b"%PDF-1.7 ...", True)
print(file_type_str(kind))  # "Pdf"
```

Network isolation:

```python
import ipaddress
from cbsensor.isolation import IsolationControl, IsolationMode, NetworkIsolation

allowed = int(ipaddress.IPv4Address("10.0.0.5"))
isolation = NetworkIsolation()
isolation.set_mode(IsolationControl(IsolationMode.ON, [allowed]).pack())
isolation.intercept(allowed, True, 6, 443)   # IsolationAction.ALLOW
isolation.intercept(allowed + 1, True, 6, 443)  # IsolationAction.BLOCK
```

UDP traffic to the DHCP and DNS ports is always allowed; IPv6 peers are
otherwise blocked, since the allow list holds IPv4 addresses only.

The event channel:

```python
from cbsensor.channel import EventChannel
from cbsensor.events import Event, EventType

channel = EventChannel(banned_action=1)
channel.open()
channel.send(Event(EventType.PROCESS_START))
event = channel.read()
```

`EventChannel.handle_request` applies filters, ignore lists, bans,
protection state, isolation control and heartbeats, keeping the results on
the channel's `event_filter`, `ignored_pids`, `ignored_uids`, `bans`,
`isolation` and `stats`.

## What the package does not do

The package does not watch a running system. It does not hook process
starts, file operations or network connections, does not kill processes and
does not read events from a live sensor device. `BanTable` only calls the
`kill_running` callback it is given, and `EventChannel` is an in-memory
queue that callers fill themselves. DNS response details have no JSON form
and are rendered as `null`.

## Running the tests

```
pip install .[test]
pytest
```