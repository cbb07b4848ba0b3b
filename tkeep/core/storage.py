"""Storage of the timer events, kept in sync with the event log on disk.

The on-disk log is the single source of truth and may be shared by several processes (e.g. two instances
of the application). Every state changing call is one read-modify-write cycle:

1. Reread the file (under an exclusive lock) if its mtime differs from the one we last saw.
2. Apply the command to the in-memory events and patch the snapshot.
3. Verify the mtime is still ours, then append the new lines or rewrite the whole file (under the lock).
4. Mirror the same write to the backup file, best effort and in the background.

The lock is only held while reading or while writing, never across the modification in between.
"""

import os
import time
from pathlib import Path
from tkeep.common.errors import ConcurrentModificationError
from tkeep.common.logger import log
from tkeep.core import commands, timeline
from tkeep.core.backup import BackupWorker
from tkeep.core.changes import ChangeField, ChangeSet
from tkeep.core.compactor import compact
from tkeep.core.events import (
    Event,
    EventKind,
    create_event_id,
    timer_sort_key,
    format_log,
    is_timer_key,
    parse_log,
)
from tkeep.core.replay import Snapshot, replay
from tkeep.util.filelock import locked

ALL_FIELDS = (ChangeField.TIME, ChangeField.DESCRIPTION, ChangeField.GROUP)

# The timers a brand new installation starts with, as (description, group name, group type).
DEFAULT_TIMERS = [
    ("Rest time",       "Other activities",   "2"),
    ("Lunch",           "Own time",           "1"),
    ("General Meeting", "General",            "0"),
    ("Project Meeting", "Project Strawberry", "0"),
    ("Implementation",  "Project Strawberry", "0"),
    ("Writing webpage", "Project Strawberry", "0"),
]

def default_seed_events():
    events = [Event(0, timer, EventKind.SET_DESCRIPTION, (description, create_event_id()))
              for timer, (description, _, _) in enumerate(DEFAULT_TIMERS)]
    events += [Event(0, timer, EventKind.SET_GROUP, (name, group_type, create_event_id()))
               for timer, (_, name, group_type) in enumerate(DEFAULT_TIMERS)]
    return events

def _require_timer(timer):
    if not is_timer_key(timer):
        raise ValueError(f"'{timer}' is not a timer, only numbered timers keep time")


class Storage:

    def __init__(self, path, backup_path=None, keep_days=7, seed_events=None, clock=None, backup_worker=None):
        self.path = Path(path)
        self.keep_days = keep_days
        self.clock = clock or time.time

        # Until the file has been read, the in-memory log is the seed. It's written out entirely the first
        # time something changes.
        self.events = list(seed_events) if seed_events is not None else default_seed_events()
        self.snapshot = Snapshot()
        self.changes = ChangeSet()

        self.disk_stamp = None  # (mtime in ns, size) at the last read or write
        self.pending_rewrite = True
        self.pending_append = 0
        self._resync = set()

        if backup_worker is None and backup_path:
            backup_worker = BackupWorker(backup_path)
        self.backup = backup_worker

        # command type -> handler
        self._handlers = {
            commands.SetTime: self._do_set_time,
            commands.SetDescription: self._do_set_description,
            commands.SetGroup: self._do_set_group,
            commands.SetExtra: self._do_set_extra,
            commands.IncreaseTime: self._do_increase_time,
            commands.TransferTime: self._do_transfer_time,
            commands.Run: self._do_run,
            commands.Pause: self._do_pause,
            commands.PauseAll: self._do_pause_all,
            commands.RunPauseBatch: self._do_run_pause_batch,
        }

    def now(self):
        return int(self.clock())

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    # Waits for pending backups and stops the backup worker.
    def close(self):
        if self.backup is not None:
            self.backup.close()

    #region === Read-modify-write cycle ===

    # What identifies a version of the file: (mtime in ns, size). The size catches a write that lands
    # within the filesystem's mtime resolution.
    @staticmethod
    def _stamp(stat):
        return (stat.st_mtime_ns, stat.st_size)

    def _disk_stamp(self):
        try:
            return self._stamp(os.stat(self.path))
        except FileNotFoundError:
            return None

    # Step 1: bring the in-memory state up to date with the file. Returns the original file contents if the
    # file was (re)read, None otherwise.
    def _load(self):
        now = self.now()
        stamp = self._disk_stamp()
        if stamp is not None and stamp != self.disk_stamp:
            log.info(f"Reading storage '{self.path}' (last seen={self.disk_stamp}, now={stamp})")
            with open(self.path, "r", encoding="utf-8", newline="") as f, locked(f):
                contents = f.read()
                # Take the stamp within the lock to avoid a race
                read_stamp = self._stamp(os.fstat(f.fileno()))
            # Only a file that parsed counts as seen, a corrupt one fails again on the next cycle
            self.events = parse_log(contents)
            self.disk_stamp = read_stamp

            previous = self.snapshot.timers()
            self.snapshot = replay(self.events, now)
            self.changes.mark(set(previous) | set(self.snapshot.timers()), *ALL_FIELDS)

            # In memory and on disk are in sync again
            self.pending_rewrite = False
            self.pending_append = 0
            return contents

        if stamp is None and self.events and self.snapshot.is_empty():
            # No file and nothing derived yet: this is the first initialization from the seed
            self.snapshot = replay(self.events, now)
            self.changes.mark(self.snapshot.timers(), *ALL_FIELDS)
        self.snapshot.advance(now, self.changes)
        return None

    # Step 3 and 4: write what changed to disk and mirror it to the backup.
    def _commit(self, original_contents):
        written = None
        if self.pending_rewrite or self.pending_append:
            if self.pending_rewrite:
                written = format_log(self.events)
            else:
                written = format_log(self.events[-self.pending_append:])

            current = self._disk_stamp()
            if current != self.disk_stamp:
                raise ConcurrentModificationError(self.path, self.disk_stamp, current)

            self.path.parent.mkdir(parents=True, exist_ok=True)
            # "a+" neither truncates nor touches the file before the lock is ours
            with open(self.path, "a+", encoding="utf-8", newline="\n") as f, locked(f):
                current = self._stamp(os.fstat(f.fileno()))
                # A file we never saw must still be empty (we may have just created it)
                if current != self.disk_stamp and not (self.disk_stamp is None and current[1] == 0):
                    raise ConcurrentModificationError(self.path, self.disk_stamp, current)
                if self.pending_rewrite:
                    f.seek(0)
                    f.truncate()
                else:
                    f.seek(0, os.SEEK_END)
                f.write(written)
                f.flush()
                self.disk_stamp = self._stamp(os.fstat(f.fileno()))
            if self.pending_rewrite:
                log.debug(f"Storage rewrite of {len(self.events)} events to '{self.path}'")
            else:
                log.debug(f"Storage append of {self.pending_append} events to '{self.path}'")

        self._mirror(original_contents, written)

        # Changes are on disk, reset the flags
        self.pending_rewrite = False
        self.pending_append = 0

    def _mirror(self, original_contents, written):
        if self.backup is None:
            return
        if original_contents is not None:
            # The file was just reread, so the backup gets the complete contents
            if written is None:
                self.backup.submit(original_contents)
            elif self.pending_rewrite:
                self.backup.submit(written)
            else:
                self.backup.submit(original_contents + written)
        elif written is not None:
            self.backup.submit(written, append=not self.pending_rewrite)

    # Runs one read-modify-write cycle for the command and returns the command's result.
    def execute(self, command):
        handler = self._handlers.get(type(command))
        if handler is None:
            raise TypeError(f"Unknown storage command: {command!r}")

        original_contents = self._load()
        self._resync = set()
        result, paused = handler(command)
        self._commit(original_contents)

        # Paused timers and events that aren't happening right now can't be patched into the snapshot,
        # those timers are rebuilt from the log
        for timer in sorted(self._resync | set(paused), key=timer_sort_key):
            replay(self.events, self.snapshot.as_of, self.snapshot, timer, self.changes)
        return result

    # Reads the file if it changed on disk. Nothing is written, not even a pending seed.
    def refresh(self):
        self._mirror(self._load(), None)

    #endregion === Read-modify-write cycle ===

    #region === Event list operations ===

    # Adds one event to the in-memory log. An event at or after the last one is appended, anything earlier
    # is spliced into place and forces a rewrite of the whole file.
    def _insert_event(self, timestamp, timer, kind, *args):
        event = Event(timestamp, timer, kind, tuple(args))
        log.debug(f"add_event({timestamp},{timer},{kind.code},{args})")

        idx = len(self.events)
        while idx > 0 and timestamp < self.events[idx - 1].timestamp:
            idx -= 1
        if idx == len(self.events):
            self.events.append(event)
            self.pending_append += 1
        else:
            self.events.insert(idx, event)
            self.pending_rewrite = True
        if timestamp != self.snapshot.as_of:
            self._resync.add(timer)
        return event

    def _compact(self):
        self.events, dropped = compact(self.events, self.keep_days, self.now())
        if dropped:
            self.pending_rewrite = True

    def _ts(self, timestamp):
        return self.now() if timestamp is None else int(timestamp)

    #endregion === Event list operations ===

    #region === Command handlers ===

    # The time has two aspects that both need setting for an absolute event: the time and the running
    # status. Don't use get-modify-set with this, increase_time() keeps changes relative.
    def _do_set_time(self, command):
        for timer in command.timers:
            _require_timer(timer)
        ts = self._ts(command.timestamp)
        for timer in command.timers:
            self._insert_event(ts, timer, EventKind.SET_TIME, int(command.value), create_event_id())
            running = self.snapshot.running.get(timer, False)
            self._insert_event(ts, timer, EventKind.RUN if running else EventKind.PAUSE)
        self._compact()

        for timer in command.timers:
            self.snapshot.times[timer] = int(command.value)
        self.changes.mark(list(command.timers), ChangeField.TIME)
        return None, ()

    def _do_set_description(self, command):
        ts = self._ts(command.timestamp)
        self._insert_event(ts, command.timer, EventKind.SET_DESCRIPTION, command.text, create_event_id())
        self._compact()

        self.snapshot.descriptions[command.timer] = command.text
        self.changes.mark(command.timer, ChangeField.DESCRIPTION)
        return None, ()

    def _do_set_group(self, command):
        ts = self._ts(command.timestamp)
        self._insert_event(ts, command.timer, EventKind.SET_GROUP, command.name, command.type, create_event_id())
        self._compact()

        self.snapshot.group_names[command.timer] = command.name
        self.snapshot.group_types[command.timer] = command.type
        self.changes.mark(command.timer, ChangeField.GROUP)
        return None, ()

    def _do_set_extra(self, command):
        ts = self._ts(command.timestamp)
        event = self._insert_event(ts, command.timer, EventKind.SET_EXTRA, command.name, command.value)
        self._compact()

        self.snapshot.apply(event)
        return None, ()

    # No range checking here, a negative delta decreases the time.
    def _do_increase_time(self, command):
        _require_timer(command.timer)
        ts = self._ts(command.timestamp)
        self._insert_event(ts, command.timer, EventKind.INCREASE_TIME, int(command.delta))

        self.snapshot.times[command.timer] = self.snapshot.times.get(command.timer, 0) + int(command.delta)
        self.changes.mark(command.timer, ChangeField.TIME)
        return self.snapshot.times[command.timer], ()

    def _do_transfer_time(self, command):
        _require_timer(command.from_timer)
        _require_timer(command.to_timer)
        ts = self._ts(command.timestamp)
        delta = int(command.delta)
        self._insert_event(ts, command.from_timer, EventKind.INCREASE_TIME, -delta)
        self._insert_event(ts, command.to_timer, EventKind.INCREASE_TIME, delta)

        times = self.snapshot.times
        times[command.from_timer] = times.get(command.from_timer, 0) - delta
        times[command.to_timer] = times.get(command.to_timer, 0) + delta
        self.changes.mark([command.from_timer, command.to_timer], ChangeField.TIME)
        return (times[command.from_timer], times[command.to_timer]), ()

    def _do_run(self, command):
        _require_timer(command.timer)
        ts = self._ts(command.timestamp)
        if not self.snapshot.running.get(command.timer):
            self._insert_event(ts, command.timer, EventKind.RUN)
            self.snapshot.running[command.timer] = True
        self._compact()
        return None, ()

    def _do_pause(self, command):
        _require_timer(command.timer)
        ts = self._ts(command.timestamp)
        if self.snapshot.running.get(command.timer):
            self._insert_event(ts, command.timer, EventKind.PAUSE)
            self.snapshot.running[command.timer] = False
        self._compact()
        return None, (command.timer,)

    def _do_pause_all(self, command):
        ts = self._ts(command.timestamp)
        paused = []
        for timer in self.snapshot.running_timers():
            self._insert_event(ts, timer, EventKind.PAUSE)
            self.snapshot.running[timer] = False
            paused.append(timer)
        self._compact()
        return paused, tuple(paused)

    def _do_run_pause_batch(self, command):
        for entry in command.events:
            _require_timer(entry.timer)
        paused = []
        for entry in command.events:
            ts = self._ts(entry.timestamp)
            running = self.snapshot.running.get(entry.timer, False)
            if entry.kind is EventKind.RUN and not running:
                # Should run, but is stopped
                self._insert_event(ts, entry.timer, EventKind.RUN)
                self.snapshot.running[entry.timer] = True
            elif entry.kind is EventKind.PAUSE and running:
                # Should stop, but is running
                self._insert_event(ts, entry.timer, EventKind.PAUSE)
                self.snapshot.running[entry.timer] = False
                paused.append(entry.timer)
        self._compact()
        return None, tuple(paused)

    #endregion === Command handlers ===

    #region === State setting functions ===

    # Set the specified timer(s) to the specified time.
    def set_time(self, timers, value, timestamp=None):
        if not isinstance(timers, (list, tuple, set, frozenset)):
            timers = [timers]
        return self.execute(commands.SetTime(tuple(timers), value, timestamp))

    def set_description(self, timer, text, timestamp=None):
        return self.execute(commands.SetDescription(timer, text, timestamp))

    def set_group(self, timer, name, group_type, timestamp=None):
        return self.execute(commands.SetGroup(timer, name, group_type, timestamp))

    def set_extra(self, timer, name, value, timestamp=None):
        return self.execute(commands.SetExtra(timer, name, value, timestamp))

    # Increase the time of the timer, returns the new value.
    def increase_time(self, timer, delta, timestamp=None):
        return self.execute(commands.IncreaseTime(timer, delta, timestamp))

    # Transfers time between timers, returns (new from time, new to time).
    def transfer_time(self, from_timer, to_timer, delta, timestamp=None):
        return self.execute(commands.TransferTime(from_timer, to_timer, delta, timestamp))

    def run(self, timer, timestamp=None):
        return self.execute(commands.Run(timer, timestamp))

    def pause(self, timer, timestamp=None):
        return self.execute(commands.Pause(timer, timestamp))

    # Pauses every running timer, returns the timers that were paused.
    def pause_all(self, timestamp=None):
        return self.execute(commands.PauseAll(timestamp))

    # Applies a list of BatchEvent (or (kind, timer[, timestamp]) tuples) in one cycle.
    def apply_run_pause_batch(self, events):
        batch = tuple(e if isinstance(e, commands.BatchEvent) else commands.BatchEvent(*e) for e in events)
        return self.execute(commands.RunPauseBatch(batch))

    #endregion === State setting functions ===

    #region === State retrieval functions ===

    def _current(self):
        self.snapshot.advance(self.now(), self.changes)
        return self.snapshot

    def get_current_time(self, timer):
        return self._current().times.get(timer, 0)

    def get_current_description(self, timer):
        return self.snapshot.descriptions.get(timer, "")

    def get_current_group_name(self, timer):
        return self.snapshot.group_names.get(timer, "")

    def get_current_group_type(self, timer):
        return self.snapshot.group_types.get(timer, "")

    def get_running(self, timer):
        return self.snapshot.running.get(timer, False)

    def get_all_running(self):
        return self.snapshot.running_timers()

    # All groups in use as [{"name": ..., "type": ...}], each name once, in case-insensitive order. With
    # all_groups every group that occurs anywhere in the log is returned, otherwise only the ones timers
    # currently have. Groups with an empty name are deleted groups and skipped.
    def get_used_groups(self, all_groups=False):
        groups = {}
        if all_groups:
            for event in self.read_log():
                if event.kind is EventKind.SET_GROUP and event.args[0] != "":
                    groups[event.args[0]] = {"name": event.args[0], "type": event.args[1]}
        else:
            for timer, name in self.snapshot.group_names.items():
                if name != "":
                    groups[name] = {"name": name, "type": self.snapshot.group_types.get(timer, "")}
        return sorted(groups.values(), key=lambda g: g["name"].lower())

    # Extra info history [(timestamp, value), ...] for timer/name, optionally limited to start..end.
    def get_extra(self, timer, name, start=None, end=None):
        return self.snapshot.extra_history(timer, name, start, end)

    # The extra info value in effect at the given time (default now), None if there isn't one.
    def get_extra_value(self, timer, name, at=None):
        history = self.snapshot.extra_history(timer, name, end=self._ts(at))
        return history[-1][1] if history else None

    #endregion === State retrieval functions ===

    #region === Change notification ===

    def mark_changed(self, timers, *fields):
        self.changes.mark(timers, *fields)

    # Reading the changes brings the running timers up to now first, so their time shows as changed.
    def peek_changed(self):
        self._current()
        return self.changes.peek()

    def drain_changed(self):
        self._current()
        return self.changes.drain()

    #endregion === Change notification ===

    #region === Log and timeline ===

    # Reads the storage file if necessary and returns a copy of the events.
    def read_log(self):
        self.refresh()
        return list(self.events)

    def get_raw_timeline(self):
        return timeline.get_raw_timeline(self.read_log(), self.now())

    def get_timeline(self, options=None):
        return timeline.build_timeline(self.read_log(), self.now(), options)

    def get_timeline_totals(self, periods):
        return timeline.totals(periods, self.get_current_time)

    #endregion === Log and timeline ===
