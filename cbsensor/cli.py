"""Command that prints a stream of binary sensor events as JSON."""

from __future__ import annotations

import json
import sys
from typing import BinaryIO, TextIO

from cbsensor.eventjson import event_to_json
from cbsensor.events import iter_events


def convert_stream(stream: BinaryIO, out: TextIO) -> int:
    """Write every whole event in ``stream`` to ``out`` as indented JSON; return the count."""
    count = 0
    for event in iter_events(stream):
        out.write(json.dumps(event_to_json(event), indent=2, sort_keys=True,
                             ensure_ascii=False))
        out.write("\n")
        count += 1
    return count


def main(argv=None) -> int:
    """Read events from the named file, or from standard input, and print them."""
    args = sys.argv[1:] if argv is None else list(argv)
    if args:
        try:
            with open(args[0], "rb") as stream:
                convert_stream(stream, sys.stdout)
        except OSError:
            # An unreadable input yields no events, as an empty one would.
            pass
    else:
        convert_stream(sys.stdin.buffer, sys.stdout)
    sys.stdout.flush()
    return 0


if __name__ == "__main__":
    sys.exit(main())