"""Network isolation: only allow-listed IPv4 peers, DHCP and DNS get through."""

from __future__ import annotations

import ipaddress
import logging
import struct
import threading
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Union

log = logging.getLogger(__name__)

IPPROTO_UDP = 17

# Ports are given in host byte order.
_DHCP_PORTS_V4 = frozenset({67, 68})
_DHCP_PORTS_V6 = frozenset({546, 547})
_DNS_PORT = 53

_HEADER = struct.Struct("<iI")
_ADDRESS = struct.Struct("<I")
# The control structure always has room for at least one address.
_CONTROL_BASE_SIZE = _HEADER.size + _ADDRESS.size
_UINT32_MASK = 0xFFFFFFFF


class IsolationMode(IntEnum):
    """Whether isolation is switched on."""

    OFF = 0
    ON = 1


class IsolationAction(IntEnum):
    """Verdict for one connection."""

    DISABLED = 0
    ALLOW = 1
    BLOCK = 2


def _mode_or_int(value: int) -> Union[IsolationMode, int]:
    try:
        return IsolationMode(value)
    except ValueError:
        return value


@dataclass
class IsolationControl:
    """Isolation mode and the IPv4 addresses (as host-order integers) still allowed."""

    isolation_mode: Union[IsolationMode, int] = IsolationMode.OFF
    allowed_ip_addresses: list[int] = field(default_factory=list)

    def pack(self) -> bytes:
        """Encode as the variable sized control structure."""
        addresses = list(self.allowed_ip_addresses) or [0]
        body = b"".join(_ADDRESS.pack(address) for address in addresses)
        return _HEADER.pack(int(self.isolation_mode), len(self.allowed_ip_addresses)) + body


def parse_isolation_control(buffer) -> IsolationControl:
    """Decode a control structure, rejecting one that claims more addresses than it holds."""
    raw = bytes(buffer)
    if len(raw) < _HEADER.size:
        raise ValueError(
            f"isolation control needs at least {_HEADER.size} bytes, got {len(raw)}"
        )
    mode, count = _HEADER.unpack_from(raw, 0)
    # The size check works in 32-bit arithmetic, so a count of zero wraps.
    expected = (_CONTROL_BASE_SIZE + _ADDRESS.size * (count - 1)) & _UINT32_MASK
    if expected > len(raw) or _HEADER.size + _ADDRESS.size * count > len(raw):
        raise ValueError(
            f"expected buffer is larger than what was received "
            f"({_HEADER.size + _ADDRESS.size * count} > {len(raw)})"
        )
    addresses = [
        _ADDRESS.unpack_from(raw, _HEADER.size + _ADDRESS.size * index)[0]
        for index in range(count)
    ]
    return IsolationControl(_mode_or_int(mode), addresses)


@dataclass
class IsolationStats:
    """Isolation state and packet counters."""

    isolation_enabled: bool = False
    blocked_inbound_ip4_packets: int = 0
    blocked_inbound_ip6_packets: int = 0
    allowed_inbound_ip4_packets: int = 0
    allowed_inbound_ip6_packets: int = 0


class NetworkIsolation:
    """Holds the current isolation control and judges connections against it."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._control: IsolationControl | None = None
        self.mode: Union[IsolationMode, int] = IsolationMode.OFF
        self.stats = IsolationStats()
        self.initialized = True

    @property
    def control(self) -> IsolationControl | None:
        return self._control

    def _apply_mode(self, mode) -> None:
        self.mode = mode
        self.stats.isolation_enabled = mode == IsolationMode.ON
        log.info("CB ISOLATION MODE: %s",
                 "DISABLED" if mode == IsolationMode.OFF else "ENABLED")

    def set_mode(self, buffer) -> IsolationControl:
        """Install the control structure in ``buffer`` and return it decoded."""
        if not self.initialized:
            raise RuntimeError("network isolation is not initialized")
        control = parse_isolation_control(buffer)
        with self._lock:
            self._control = control
            self._apply_mode(control.isolation_mode)
            if control.isolation_mode == IsolationMode.OFF:
                log.info("isolation OFF")
            else:
                for address in control.allowed_ip_addresses:
                    log.info("isolation ON IP: %s", ipaddress.IPv4Address(address))
        return control

    def intercept(self, remote_ip: int, is_ipv4: bool, protocol: int,
                  port: int) -> IsolationAction | None:
        """Verdict for a connection; None when isolation has nothing to say."""
        if not self.initialized:
            return None
        if self.mode == IsolationMode.OFF:
            return IsolationAction.DISABLED

        if protocol == IPPROTO_UDP and (
            (is_ipv4 and port in _DHCP_PORTS_V4)
            or (not is_ipv4 and port in _DHCP_PORTS_V6)
            or port == _DNS_PORT
        ):
            return IsolationAction.ALLOW

        if self._control is None:
            return None

        # The allow list holds IPv4 addresses only, so IPv6 is always blocked.
        if is_ipv4:
            with self._lock:
                allowed = self._control.allowed_ip_addresses
                if remote_ip and remote_ip in allowed:
                    return IsolationAction.ALLOW

        log.debug("ISOLATION BLOCKED: %s ADDR: 0x%08x PROTO: %s PORT: %u",
                  "IPv4" if is_ipv4 else "IPv6", remote_ip,
                  "UDP" if protocol == IPPROTO_UDP else "TCP", port)
        return IsolationAction.BLOCK

    def shutdown(self) -> None:
        """Switch isolation off and forget the control structure."""
        if not self.initialized:
            return
        self.initialized = False
        self.mode = IsolationMode.OFF
        with self._lock:
            self._control = None