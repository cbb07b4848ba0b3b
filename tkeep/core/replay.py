import bisect
from tkeep.common.errors import CorruptLogError
from tkeep.core.changes import ChangeField
from tkeep.core.events import EventKind, is_timer_key, timer_sort_key


# The derived, 'running-total' state of all timers. It's rebuilt from the log by replay() and patched by
# the storage for every new event, so the log doesn't have to be replayed for each change.
class Snapshot:

    def __init__(self):
        self.times = {}
        self.descriptions = {}
        self.group_names = {}
        self.group_types = {}
        self.running = {}
        self.extras = {}        # timer -> info name -> [(timestamp, value), ...]
        # Timestamp up to which the running timers' times are accumulated
        self.as_of = 0

    def is_empty(self):
        return not (self.times or self.descriptions or self.group_names or self.group_types
                    or self.running or self.extras)

    # All keys that have any state, numeric timers first.
    def timers(self):
        keys = set(self.times) | set(self.descriptions) | set(self.group_names) | set(self.running) | set(self.extras)
        return sorted(keys, key=timer_sort_key)

    def running_timers(self):
        return sorted((t for t, running in self.running.items() if running and is_timer_key(t)), key=timer_sort_key)

    # Resets everything known about one timer.
    def reset_timer(self, timer):
        self.times[timer] = 0
        self.descriptions[timer] = ""
        self.group_names[timer] = ""
        self.group_types[timer] = ""
        self.running[timer] = False
        self.extras.pop(timer, None)

    # The specified amount of time has passed, add it to the running timers (or to just one timer).
    def pass_time(self, seconds, timer=None, changes=None):
        timers = [timer] if timer is not None else list(self.running)
        for t in timers:
            if self.running.get(t):
                self.times[t] = self.times.get(t, 0) + seconds
                if changes is not None:
                    changes.mark(t, ChangeField.TIME)

    # Brings the running timers up to the given time.
    def advance(self, now, changes=None):
        if now != self.as_of:
            self.pass_time(now - self.as_of, changes=changes)
            self.as_of = now

    # Applies the effect of one event, without passing any time.
    def apply(self, event):
        timer = event.timer
        kind = event.kind
        if kind is EventKind.SET_TIME:
            self.times[timer] = event.args[0]
        elif kind is EventKind.SET_DESCRIPTION:
            self.descriptions[timer] = event.args[0]
        elif kind is EventKind.SET_GROUP:
            self.group_names[timer] = event.args[0]
            self.group_types[timer] = event.args[1]
        elif kind is EventKind.INCREASE_TIME:
            self.times[timer] = self.times.get(timer, 0) + event.args[0]
        elif kind is EventKind.RUN:
            self.running[timer] = True
        elif kind is EventKind.PAUSE:
            self.running[timer] = False
        elif kind is EventKind.SET_EXTRA:
            name, value = event.args
            history = self.extras.setdefault(timer, {}).setdefault(name, [])
            bisect.insort(history, (event.timestamp, value), key=lambda entry: entry[0])
        else:
            raise CorruptLogError(f"Unknown code in event {event}: '{kind}'")

    # Extra info values for timer/name with start <= timestamp <= end, oldest first.
    def extra_history(self, timer, name, start=None, end=None):
        history = self.extras.get(timer, {}).get(name, [])
        return [(ts, value) for ts, value in history
                if (start is None or ts >= start) and (end is None or ts <= end)]


# Note on events in the future:
# A timestamp in the future usually comes from another system with a wrong clock (timestamps are UTC, so
# timezones don't cause it). Ignoring those events would be the purist's choice, but it's inconvenient when
# e.g. booking free hours ahead of time. So all events are played back no matter how far ahead they are, and
# the time between them counts as elapsed time like any other. Only the running status must be the one of
# right now: it's saved at the moment the scan crosses 'now' and restored at the end.

# Replays the events (in list order) and returns the snapshot at time now. If timer is given, only that
# timer's state in the given snapshot is rebuilt, from that timer's events only.
def replay(events, now, snapshot=None, timer=None, changes=None):
    if snapshot is None or timer is None:
        snapshot = Snapshot()
    if timer is not None:
        snapshot.reset_timer(timer)

    saved_running = None
    last_ts = 0
    for event in events:
        if timer is not None and event.timer != timer:
            continue
        if saved_running is None and last_ts <= now < event.timestamp:
            # We crossed the current time
            saved_running = dict(snapshot.running)

        # Add the elapsed time to the running timers
        snapshot.pass_time(event.timestamp - last_ts, timer, changes)
        last_ts = event.timestamp
        snapshot.apply(event)

    # Update the running timers to now. With last_ts in the future this is negative, and takes back the time
    # added beyond the last event to the timers that are still running.
    snapshot.pass_time(now - last_ts, timer, changes)

    if saved_running is not None:
        # Went into the future, so restore the running status as it is now
        if timer is not None:
            snapshot.running[timer] = saved_running.get(timer, False)
        else:
            snapshot.running = saved_running

    if timer is None:
        snapshot.as_of = now
    return snapshot
