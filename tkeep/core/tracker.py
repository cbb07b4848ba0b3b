"""The active timer model on top of the storage.

Exactly one timer is 'active', which is the one that runs while the tracker isn't stopped. Activating
another timer pauses the old one and runs the new one in a single storage cycle. The tick loop (driven by
a UI timer or the command line) detects suspends and keeps the storage in sync with the disk.
"""

from tkeep.common.logger import log
from tkeep.core.events import EventKind
from tkeep.core.snapshot import create_snapshot, prune_snapshots
from tkeep.core.timeline import TimelineOptions
from tkeep.util import parse_time_expression

# Seconds a description edit has to stay unchanged before it is written
DESCRIPTION_SETTLE_TIME = 10


class Tracker:

    def __init__(self, storage, num_timers=10, default_timer=0, pause_on_suspend=True, max_tick_gap=30,
                 scheduler=None, snapshot_dir=None):
        self.storage = storage
        self.num_timers = num_timers
        self.default_timer = default_timer
        self.pause_on_suspend = pause_on_suspend
        self.max_tick_gap = max_tick_gap
        self.scheduler = scheduler
        self.snapshot_dir = snapshot_dir

        self._last_active = None
        self._last_tick = 0
        self._last_refresh = 0
        # Edits waiting to settle: timer -> (timestamp of the last edit, text)
        self._pending_descriptions = {}

        self.storage.refresh()
        # Running timers at startup mean the previous session wasn't stopped
        self.is_stopped = not self.storage.get_all_running()

    def check_timer(self, timer):
        if not (isinstance(timer, int) and 0 <= timer < self.num_timers):
            raise ValueError(f"Timer {timer} is out of range (0-{self.num_timers - 1})")
        return timer

    # Lets the scheduler know about a change. A high priority change is snapshotted right away.
    def _changed(self, reason, priority="normal"):
        if self.scheduler is not None and self.scheduler.request(reason, priority):
            self.take_snapshot(reason, priority)

    #region === Active timer ===

    # The active timer: the first running one, else the last active one, else the default. Any other running
    # timers are paused, so only one runs afterwards.
    def get_active(self):
        running = self.storage.get_all_running()
        if running:
            active = running[0]
        elif self._last_active is not None:
            active = self._last_active
        else:
            active = self.default_timer

        if len(running) > 1:
            log.info(f"More than one timer running ({running}), keeping only {active}")
            self.storage.apply_run_pause_batch([(EventKind.PAUSE, timer) for timer in running[1:]])
        self._last_active = active
        return active

    # Makes timer the active one, and starts running if stopped.
    def activate(self, timer):
        self.check_timer(timer)
        active = self.get_active()
        if timer != active:
            batch = [(EventKind.PAUSE, active)] if not self.is_stopped else []
            batch.append((EventKind.RUN, timer))
            self.storage.apply_run_pause_batch(batch)
            log.info(f"Activated timer {timer} (was {active})")
            self._changed(f"activate {timer}")
        self._last_active = timer
        # Always start running if paused
        self.start()

    def start(self):
        if self.is_stopped:
            self.is_stopped = False
            self.storage.run(self.get_active())
            self._changed("start")

    def stop(self):
        if not self.is_stopped:
            self.is_stopped = True
            self.storage.pause(self.get_active())
            self._changed("stop")

    def toggle(self):
        if self.is_stopped:
            self.start()
        else:
            self.stop()

    #endregion === Active timer ===

    #region === Time changes ===

    # Set the timer to the time expression.
    def set_timer(self, timer, expression):
        value = parse_time_expression(expression)
        self.storage.set_time(self.check_timer(timer), value)
        self._changed(f"set {timer}")

    # Add the time expression to the timer. Returns False (and changes nothing) if that would make the time
    # negative. The check uses the current value, but the change is stored as a relative one.
    def add_time(self, timer, expression):
        delta = parse_time_expression(expression)
        self.check_timer(timer)
        if self.storage.get_current_time(timer) + delta < 0:
            return False
        self.storage.increase_time(timer, delta)
        self._changed(f"add {timer}")
        return True

    def add_active_time(self, expression):
        return self.add_time(self.get_active(), expression)

    # Transfer the time expression from from_timer to to_timer, either defaulting to the active timer.
    # Returns False if the transfer would make either timer negative, in which case nothing is done.
    def transfer_time(self, from_timer, to_timer, expression):
        delta = parse_time_expression(expression)
        active = self.get_active()
        from_timer = self.check_timer(active if from_timer is None else from_timer)
        to_timer = self.check_timer(active if to_timer is None else to_timer)

        if (self.storage.get_current_time(from_timer) - delta < 0
                or self.storage.get_current_time(to_timer) + delta < 0):
            return False
        self.storage.transfer_time(from_timer, to_timer, delta)
        self._changed(f"transfer {from_timer}->{to_timer}")
        return True

    #endregion === Time changes ===

    #region === Descriptions ===

    # Collects a description edit as it is typed. The text is only written once it hasn't changed for
    # DESCRIPTION_SETTLE_TIME seconds (see process_pending_descriptions), with the time of the last edit.
    def set_description_delayed(self, timer, text):
        self.check_timer(timer)
        if text == self.storage.get_current_description(timer):
            # Back to the stored text, so there is nothing to write
            self._pending_descriptions.pop(timer, None)
        else:
            pending = self._pending_descriptions.get(timer)
            if pending is None or pending[1] != text:
                self._pending_descriptions[timer] = (self.storage.now(), text)

    def get_pending_description(self, timer):
        pending = self._pending_descriptions.get(timer)
        return pending[1] if pending is not None else None

    # Writes the edits that have settled, or all of them when forced. Returns the timers written.
    def process_pending_descriptions(self, now=None, force=False):
        now = self.storage.now() if now is None else now
        written = []
        for timer, (timestamp, text) in sorted(self._pending_descriptions.items()):
            if force or now - timestamp > DESCRIPTION_SETTLE_TIME:
                self.storage.set_description(timer, text, timestamp)
                del self._pending_descriptions[timer]
                written.append(timer)
        if written:
            log.debug(f"Wrote pending descriptions for timers {written}")
            self._changed(f"describe {written}")
        return written

    def flush_pending_descriptions(self):
        return self.process_pending_descriptions(force=True)

    #endregion === Descriptions ===

    #region === Tick loop ===

    # Called regularly (about every second) with the current time.
    def tick(self, now):
        if now != self._last_tick:
            if (self.pause_on_suspend and not self.is_stopped and self._last_tick > 0
                    and now - self._last_tick > self.max_tick_gap):
                # No ticks for a while, so a suspend is assumed. The time in between doesn't count, but
                # there's activity again so the timer runs from now on.
                active = self.get_active()
                log.info(f"No tick for {now - self._last_tick}s, assuming suspend: pausing timer {active} at {self._last_tick}")
                self.storage.apply_run_pause_batch([
                    (EventKind.PAUSE, active, self._last_tick),
                    (EventKind.RUN, active, now),
                ])
                self._changed("suspend", "high")
            self._last_tick = now

        # Pick up changes by other instances once a minute
        if now - self._last_refresh >= 60:
            self.storage.refresh()
            self._last_refresh = now

        self.process_pending_descriptions(now)

        if self.scheduler is not None:
            fire, reason = self.scheduler.check()
            if fire:
                self.take_snapshot(reason)

    def take_snapshot(self, reason, priority="normal"):
        path = create_snapshot(self.storage.read_log(), reason, priority, directory=self.snapshot_dir)
        prune_snapshots(directory=self.snapshot_dir)
        if self.scheduler is not None:
            self.scheduler.mark_done()
        return path

    #endregion === Tick loop ===

    # The last period before the current one, as a Period, or None. Nothing is discarded or rounded and only
    # gaps under 10 seconds are closed, so this is the period as it was recorded.
    def previous_period(self):
        options = TimelineOptions(min_gap=10, min_period=0, round=0, discard=())
        periods = self.storage.get_timeline(options)
        if periods and periods[-1].timer == self.get_active() and not self.is_stopped:
            # Last period is the currently running one on the active timer
            periods.pop()
        return periods[-1] if periods else None

    # Writes the pending description edits and closes the storage.
    def close(self):
        self.flush_pending_descriptions()
        self.storage.close()
