import threading
from enum import Enum
from tkeep.core.events import timer_sort_key


class ChangeField(Enum):
    TIME = "T"
    DESCRIPTION = "D"
    GROUP = "G"


# This object collects which observable fields of which timers changed since the UI last looked. Every
# state changing function marks what it touches; the UI drains the set and refreshes just those timers.
class ChangeSet:

    def __init__(self):
        self._changed = {}  # timer -> set of ChangeField
        self._lock = threading.Lock()

    # Mark the given fields of one timer (or a list of timers) as changed.
    def mark(self, timers, *fields):
        if not isinstance(timers, (list, tuple, set, frozenset)):
            timers = [timers]
        fields = {ChangeField(f) for f in fields}
        with self._lock:
            for timer in timers:
                self._changed.setdefault(timer, set()).update(fields)

    # Returns [(timer, frozenset(fields)), ...] sorted by timer, without clearing anything.
    def peek(self):
        with self._lock:
            return self._entries()

    # Same as peek(), but also clears the set. Snapshot and clear happen under one lock, so a mark() racing
    # with the drain either lands in this result or stays pending for the next one.
    def drain(self):
        with self._lock:
            entries = self._entries()
            self._changed = {}
        return entries

    def _entries(self):
        return [(timer, frozenset(fields))
                for timer, fields in sorted(self._changed.items(), key=lambda item: timer_sort_key(item[0]))]

    def __bool__(self):
        with self._lock:
            return bool(self._changed)
