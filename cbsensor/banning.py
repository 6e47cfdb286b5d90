"""Banned executables by inode, protection state and ignore lists."""

from __future__ import annotations

import logging
import struct
from collections import Counter
from dataclasses import dataclass, field
from typing import Callable, Iterator, Optional

log = logging.getLogger(__name__)

PROTECTION_DISABLED = 0
PROTECTION_ENABLED = 1
KERNMSG_MAX = 10

_COUNT = struct.Struct("<Q")
_ENTRY = struct.Struct("<iQ")
PROTECTION_CONTROL_SIZE = _COUNT.size + _ENTRY.size * KERNMSG_MAX


@dataclass(frozen=True)
class ProtectionEntry:
    """One action on one inode in a protection control request."""

    action: int
    inode: int


def parse_protection_control(buffer) -> list[ProtectionEntry]:
    """Decode a protection control request into its entries."""
    raw = bytes(buffer)
    if len(raw) < PROTECTION_CONTROL_SIZE:
        raise ValueError(
            f"protection control is {PROTECTION_CONTROL_SIZE} bytes, got {len(raw)}"
        )
    (count,) = _COUNT.unpack_from(raw, 0)
    if count > KERNMSG_MAX:
        raise ValueError(f"protection control holds at most {KERNMSG_MAX} entries")
    return [
        ProtectionEntry(*_ENTRY.unpack_from(raw, _COUNT.size + _ENTRY.size * index))
        for index in range(count)
    ]


class BanTable:
    """Inodes whose processes must not run."""

    def __init__(self, kill_running: Optional[Callable[[int], None]] = None) -> None:
        self._bans: Counter[int] = Counter()
        self._kill_running = kill_running
        self.protection_state = PROTECTION_ENABLED

    @property
    def protection_enabled(self) -> bool:
        return self.protection_state != PROTECTION_DISABLED

    def __len__(self) -> int:
        return sum(self._bans.values())

    def set_protection_state(self, state: int) -> None:
        """Switch protection on (non-zero) or off (zero)."""
        if state == self.protection_state:
            return
        log.info("Setting protection state to %u", state)
        self.protection_state = state

    def ban_inode(self, inode: int) -> bool:
        """Ban an inode and kill processes already running from it."""
        self._bans[inode] += 1
        if self.protection_enabled and self._kill_running is not None:
            log.info("Kill process with ino=%d", inode)
            self._kill_running(inode)
        return True

    def clear_inode(self, inode: int) -> bool:
        """Remove one ban on an inode; False if there was none."""
        if not self._bans or inode == 0 or inode not in self._bans:
            return False
        self._bans[inode] -= 1
        if self._bans[inode] <= 0:
            del self._bans[inode]
        return True

    def clear_all(self) -> None:
        """Remove every ban."""
        self._bans.clear()

    def is_banned(self, inode: int) -> bool:
        """Whether a process from this inode must be killed now."""
        if not self.protection_enabled:
            return False
        if not self._bans or inode == 0:
            return False
        return inode in self._bans


@dataclass
class IgnoreList:
    """A bounded list of process or user ids whose activity is ignored."""

    capacity: int
    values: list[int] = field(default_factory=list)

    def __contains__(self, value: int) -> bool:
        return value in self.values

    def __len__(self) -> int:
        return len(self.values)

    def __iter__(self) -> Iterator[int]:
        return iter(self.values)

    def add(self, value: int) -> bool:
        """Add a value; False if it was already there or the list is full."""
        if value in self.values:
            return False
        if len(self.values) >= self.capacity:
            return False
        self.values.append(value)
        log.info("Adding %d at %d", value, len(self.values))
        return True

    def clear(self) -> None:
        """Forget every value."""
        self.values.clear()