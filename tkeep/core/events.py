"""Event records of the timer log and their ordering.

The log is a list of events ordered by timestamp (ties keep the order in which they were added). Each
event changes one data item of one timer: its time, description, group or one named extra-info value.
Absolute events replace the data item, relative events adjust it.
"""

import re
import secrets
from collections import namedtuple
from dataclasses import dataclass
from enum import Enum
from tkeep.common.errors import CorruptLogError
from tkeep.util import format_datetime_iso, parse_datetime


EventTrait = namedtuple("EventTrait", ["is_absolute", "data_item", "sort"])


class EventKind(Enum):
    SET_GROUP = "G"
    SET_DESCRIPTION = "D"
    SET_TIME = "T"
    PAUSE = "p"
    RUN = "r"
    INCREASE_TIME = "i"
    SET_EXTRA = "E"

    @property
    def code(self):
        return self.value

    @property
    def is_absolute(self):
        return _TRAITS[self].is_absolute

    @property
    def sort(self):
        return _TRAITS[self].sort

    @classmethod
    def from_code(cls, code):
        try:
            return cls(code)
        except ValueError:
            raise CorruptLogError(f"Unknown event code '{code}'") from None


# Constant properties per kind. The sort value orders events that share a timestamp.
_TRAITS = {
    EventKind.SET_GROUP:       EventTrait(True,  "g", 1),
    EventKind.SET_DESCRIPTION: EventTrait(True,  "d", 2),
    EventKind.SET_TIME:        EventTrait(True,  "t", 3),
    EventKind.PAUSE:           EventTrait(False, "t", 4),
    EventKind.RUN:             EventTrait(False, "t", 5),
    EventKind.INCREASE_TIME:   EventTrait(False, "t", 6),
    EventKind.SET_EXTRA:       EventTrait(True,  "e", 7),
}


@dataclass(frozen=True)
class Event:
    timestamp: int
    timer: int | str
    kind: EventKind
    args: tuple = ()


# Random token that tags absolute events, so they can be told apart when logs from different places meet.
def create_event_id():
    return secrets.token_hex(8).upper()

#region === Timer keys and ordering ===

# Real timers are numbered 0..n, anything else is an auxiliary key that only carries extra info.
def is_timer_key(key):
    return isinstance(key, int) and not isinstance(key, bool) and key >= 0

def parse_timer_key(text):
    text = text.strip()
    if re.fullmatch(r"\d+", text):
        return int(text)
    return text

# Sort key that puts numeric timers (in numeric order) before the string keys.
def timer_sort_key(key):
    if isinstance(key, int):
        return (0, key, "")
    return (1, 0, str(key))

# The data item an event changes. Extra info is tracked per info name, so each name is its own item.
def data_item(event):
    item = _TRAITS[event.kind].data_item
    if event.kind is EventKind.SET_EXTRA:
        return (item, event.args[0])
    return item

def event_sort_key(event):
    return (event.timestamp, event.kind.sort, timer_sort_key(event.timer))

# Returns the events in canonical order: by timestamp, then kind, then timer. The sort is stable, so
# events that still compare equal keep their insertion order.
def sort_events(events):
    return sorted(events, key=event_sort_key)

#endregion === Timer keys and ordering ===

#region === Log file lines ===

# Number of arguments per kind as (required, maximum). The event ids were added later, so they're optional
# on read.
_ARG_COUNTS = {
    EventKind.SET_GROUP: (2, 3),
    EventKind.SET_DESCRIPTION: (1, 2),
    EventKind.SET_TIME: (1, 2),
    EventKind.PAUSE: (0, 0),
    EventKind.RUN: (0, 0),
    EventKind.INCREASE_TIME: (1, 1),
    EventKind.SET_EXTRA: (2, 2),
}

def _clean_arg(value):
    return str(value).replace("\t", " ").replace("\r", " ").replace("\n", " ")

# Formats one event as a log line (without line ending).
def format_line(event):
    fields = [format_datetime_iso(event.timestamp), str(event.timer), event.kind.code]
    fields.extend(_clean_arg(arg) for arg in event.args)
    return "\t".join(fields)

def format_log(events):
    return "".join(format_line(event) + "\n" for event in events)

# Parses one log line into an Event. Returns None for blank and comment lines.
def parse_line(line, line_number=None):
    line = line.rstrip("\r\n")
    if not line.strip() or line.lstrip().startswith("#"):
        return None

    fields = line.split("\t")
    if len(fields) < 3:
        raise CorruptLogError(f"Expected at least 3 tab separated fields, got {len(fields)}: '{line}'", line_number)
    try:
        timestamp = parse_datetime(fields[0])
    except ValueError as e:
        raise CorruptLogError(str(e), line_number) from None
    timer = parse_timer_key(fields[1])
    try:
        kind = EventKind.from_code(fields[2])
    except CorruptLogError as e:
        raise CorruptLogError(str(e), line_number) from None

    args = fields[3:]
    required, maximum = _ARG_COUNTS[kind]
    if not required <= len(args) <= maximum:
        raise CorruptLogError(f"Event '{kind.code}' takes {required}-{maximum} arguments, got {len(args)}: '{line}'", line_number)
    # Time values are integers, everything else stays text
    if kind in (EventKind.SET_TIME, EventKind.INCREASE_TIME):
        try:
            args[0] = int(args[0])
        except ValueError:
            raise CorruptLogError(f"Invalid time value '{args[0]}'", line_number) from None

    return Event(timestamp, timer, kind, tuple(args))

# Parses the full contents of a log file, in file order.
def parse_log(text):
    events = []
    for line_number, line in enumerate(text.splitlines(), start=1):
        event = parse_line(line, line_number)
        if event is not None:
            events.append(event)
    return events

#endregion === Log file lines ===
