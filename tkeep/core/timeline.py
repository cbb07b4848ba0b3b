"""Creation and cleanup of the timeline.

A timeline is a list of periods (start, end, timer), sorted by (start, end, timer), in which no two periods
overlap. It's generated from the run and pause events in the log; the time changes (increases, decreases,
transfers and set-times) are then merged into it as extra periods. For reporting, a number of heuristics
smoothen out the result: small gaps and periods are absorbed by their neighbours, times are rounded and
periods crossing midnight are split per day.

    periods = build_timeline(events, now)
    totals(periods)  ->  {timer: (time in periods, live time)}
"""

import heapq
from dataclasses import dataclass, field
from datetime import datetime, time, timedelta
from enum import Enum
from tkeep.common.logger import log
from tkeep.core.events import EventKind, is_timer_key, sort_events
from tkeep.util import round_to


@dataclass
class Period:
    start: int
    end: int
    timer: int | None
    flagged: bool = False

    @property
    def duration(self):
        return self.end - self.start

    def as_tuple(self):
        return (self.start, self.end, self.timer)


class ModificationKind(Enum):
    INCREASE = "i"
    DECREASE = "d"
    TRANSFER = "t"


# A change of time that isn't a run/pause period. The amount is positive, except for an increase that
# hasn't been through combine_modifications() yet. For a transfer the time moves from timer to to_timer.
@dataclass
class Modification:
    kind: ModificationKind
    timestamp: int
    amount: int
    timer: int
    to_timer: int | None = None


@dataclass
class TimelineOptions:
    min_gap: int = 2 * 60       # gaps smaller than this are filled by the periods on each side
    min_period: int = 2 * 60    # periods smaller than this are divided between the periods on each side
    round: int = 5 * 60         # times are rounded to multiples of this, 0 to skip
    discard: tuple = (0,)       # these timers are left out of the timeline
    cleanup: bool = True        # False returns the timeline with only the modifications applied
    tz: object = field(default=None, repr=False)    # tzinfo for midnight splitting, None = local time

    @classmethod
    def from_dict(cls, values):
        known = {k: v for k, v in (values or {}).items() if k in ("min_gap", "min_period", "round", "discard", "cleanup")}
        if "discard" in known:
            known["discard"] = tuple(known["discard"])
        return cls(**known)


#region === Generic functions ===

# Given 4 points in time, return a point between t2 and t3, so that the space between t2 and t3 is divided
# between t1-t2 and t3-t4 proportionally to their sizes. The return value is rounded to an integer.
# Requires t1 <= t2 <= t3 <= t4.
def distribute(t1, t2, t3, t4):
    if not (t1 <= t2 <= t3 <= t4):
        raise ValueError(f"distribute(): times not increasing: [T-{t2 - t1}, T={t2}] and [T+{t3 - t2}, T+{t4 - t2}]")

    d12 = t2 - t1
    d23 = t3 - t2
    d34 = t4 - t3
    if d12 + d34 > 0:
        f = d12 / (d12 + d34)  # relative size of 1-2 wrt 3-4
    else:
        f = 0.5  # both 0, therefore equal
    return t2 + round_to(d23 * f, 1)

# Find the periods before, during and after this timestamp. Returns the 3 indexes, None where there is no
# such period. The start of a period is inclusive, the end exclusive.
def find_period(periods, ts):
    idx_before = idx_during = idx_after = None
    for idx, period in enumerate(periods):
        if period.end <= ts:
            idx_before = idx
        elif period.start <= ts < period.end:
            idx_during = idx
        elif period.start > ts:
            idx_after = idx
            break
    return idx_before, idx_during, idx_after

_SAME = object()

# Replace part of the period at idx by a period of abs(amount) for timer: at its start if amount >= 0, at
# its end if amount < 0. Without a timer the existing one is used (so the period is only split); a timer of
# None means the time goes nowhere and that part is removed. Only periods with a positive duration are
# kept. Returns the indexes of the resulting periods.
def insert_period(periods, idx, amount, timer=_SAME):
    old = periods[idx]
    if timer is _SAME:
        timer = old.timer

    if amount >= 0:
        middle = old.start + amount
        first, second = timer, old.timer
    else:
        middle = old.end + amount
        first, second = old.timer, timer
    if middle < old.start or middle > old.end:
        raise ValueError(f"Amount ({amount}) too big for period ({old.start}-{old.end} (={old.duration}))")

    parts = []
    if middle > old.start and first is not None:
        parts.append(Period(old.start, middle, first))
    if old.end > middle and second is not None:
        parts.append(Period(middle, old.end, second))
    periods[idx:idx + 1] = parts
    return list(range(idx, idx + len(parts)))

# Totals per timer as {timer: (total time in the periods, current live time)}. The live time comes from
# live_time(timer) when given, else it's None.
def totals(periods, live_time=None):
    sums = {}
    for period in periods:
        sums[period.timer] = sums.get(period.timer, 0) + period.duration
    return {timer: (total, live_time(timer) if live_time else None) for timer, total in sorted(sums.items())}

def _next_midnight(ts, tz):
    moment = datetime.fromtimestamp(ts, tz)
    tomorrow = moment.date() + timedelta(days=1)
    return int(datetime.combine(tomorrow, time(), tzinfo=tz).timestamp())

# Split the periods that cross midnight, so that each period is in one day only. Midnight is taken in the
# given timezone, or in local time. A day isn't always 24 hours (daylight saving), so every midnight is
# computed from the calendar date.
def split_midnight(periods, tz=None):
    result = []
    for period in periods:
        start = period.start
        midnight = _next_midnight(start, tz)
        while midnight < period.end:
            result.append(Period(start, midnight, period.timer))
            start = midnight
            midnight = _next_midnight(start, tz)
        result.append(Period(start, period.end, period.timer))
    periods[:] = result

#endregion === Generic functions ===

#region === Generic visitor-like functions ===

# Flags every period for which condition(period, idx) returns True.
def flag_periods(periods, condition):
    for idx, period in enumerate(periods):
        if condition(period, idx):
            period.flagged = True

# For each pair of adjacent periods for which condition(left, right) holds, the left one is extended to
# cover the right one, which is removed.
def join_periods(periods, condition):
    joined = []
    for period in periods:
        if joined and condition(joined[-1], period):
            joined[-1].end = period.end
        else:
            joined.append(period)
    periods[:] = joined

def remove_flagged_periods(periods):
    periods[:] = [p for p in periods if not p.flagged]

#endregion === Generic visitor-like functions ===

#region === Cleanup operations ===

# Round all times to a multiple of step.
def round_times(periods, step):
    for period in periods:
        period.start = round_to(period.start, step)
        period.end = round_to(period.end, step)

# Fill gaps smaller than min_time, to remove 'glitches'. The gap is divided between the periods on each
# side.
def remove_small_gaps(periods, min_time):
    for a, b in zip(periods, periods[1:]):
        if abs(b.start - a.end) < min_time:
            a.end = b.start = distribute(a.start, a.end, b.start, b.end)

# Remove periods smaller than min_time, to remove 'glitches'. Their time goes to the adjacent (without gap)
# periods.
def remove_small_periods(periods, min_time):
    flag_periods(periods, lambda period, idx: abs(period.duration) < min_time)
    # String the adjacent short ones together
    join_periods(periods, lambda left, right: left.end == right.start and left.flagged and right.flagged)

    for i, period in enumerate(periods):
        if not period.flagged:
            continue
        left = periods[i - 1] if i > 0 and periods[i - 1].end == period.start else None
        right = periods[i + 1] if i < len(periods) - 1 and period.end == periods[i + 1].start else None
        if left and right:
            middle = distribute(left.start, left.end, right.start, right.end)
            left.end = right.start = middle
            period.start = period.end = middle
        elif left:
            left.end = period.end
            period.start = period.end
        elif right:
            right.start = period.start
            period.end = period.start
    remove_flagged_periods(periods)

# Join adjacent periods of the same timer into one.
def join_same_periods(periods):
    join_periods(periods, lambda left, right: left.end == right.start and left.timer == right.timer)

#endregion === Cleanup operations ===

#region === Building the timeline ===

# Collects the periods and modifications from the events. Returns (periods, modifications), both unsorted
# and raw: zero-length periods are still there and no transfers are recognized yet.
def extract_timeline(events, now):
    periods = []
    modifications = []
    open_since = {}  # timer -> start of the running period

    def close(timer, end):
        # A pause without a run gives a 0-length period
        start = open_since.pop(timer, end)
        periods.append(Period(start, end, timer))

    for event in sort_events(events):
        timer = event.timer
        if not is_timer_key(timer):
            continue
        kind = event.kind
        if kind is EventKind.SET_TIME:
            # The time starts over: earlier changes are superseded, and so is the running part up to here
            modifications = [m for m in modifications if m.timer != timer]
            if timer in open_since:
                open_since[timer] = event.timestamp
            if event.args[0] != 0:
                modifications.append(Modification(ModificationKind.INCREASE, event.timestamp, event.args[0], timer))
        elif kind is EventKind.INCREASE_TIME:
            if event.args[0] != 0:
                modifications.append(Modification(ModificationKind.INCREASE, event.timestamp, event.args[0], timer))
        elif kind is EventKind.RUN:
            if timer in open_since:
                # Already running: stop it first. That keeps this timestamp in the timeline, analogous to the
                # 0-length period of a lone pause.
                close(timer, event.timestamp)
            open_since[timer] = event.timestamp
        elif kind is EventKind.PAUSE:
            close(timer, event.timestamp)
    # The running timers end now
    for timer in sorted(open_since):
        close(timer, max(now, open_since[timer]))
    return periods, modifications

# Recognizes transfers (adjacent opposite increases of two timers at one timestamp) and turns the remaining
# negative increases into decreases. All amounts in the result are positive.
def combine_modifications(modifications):
    result = []
    i = 0
    while i < len(modifications):
        a = modifications[i]
        b = modifications[i + 1] if i + 1 < len(modifications) else None
        if (b is not None and a.kind is b.kind is ModificationKind.INCREASE and a.timestamp == b.timestamp
                and a.amount == -b.amount and a.timer != b.timer):
            source, target = (a, b) if a.amount < 0 else (b, a)
            result.append(Modification(ModificationKind.TRANSFER, a.timestamp, target.amount, source.timer, target.timer))
            i += 2
            continue
        if a.kind is ModificationKind.INCREASE and a.amount < 0:
            a = Modification(ModificationKind.DECREASE, a.timestamp, -a.amount, a.timer)
        result.append(a)
        i += 1
    return result

# Makes the periods non-overlapping. The period that starts later wins: an earlier period of another timer
# is cut off where it starts, and whatever it had after the later period ends is queued again. Overlapping
# periods of the same timer are merged.
def resolve_overlaps(periods):
    heap = [(p.start, p.end, p.timer) for p in periods if p.end > p.start]
    heapq.heapify(heap)
    result = []
    while heap:
        start, end, timer = heapq.heappop(heap)
        if result and start < result[-1].end:
            last = result[-1]
            if last.timer == timer:
                last.end = max(last.end, end)
                continue
            log.debug(f"Timeline overlap of timer {last.timer} ({last.start}-{last.end}) and {timer} ({start}-{end})")
            if last.end > end:
                heapq.heappush(heap, (end, last.end, last.timer))
            last.end = start
            if last.end <= last.start:
                result.pop()
        result.append(Period(start, end, timer))
    return result

# The timeline as recorded, with its modifications not yet applied. Returns (periods, modifications):
# sorted non-overlapping periods without 0-length ones, and the combined modifications.
def get_raw_timeline(events, now):
    periods, modifications = extract_timeline(events, now)
    periods = [p for p in periods if p.start != p.end]
    periods.sort(key=Period.as_tuple)
    return resolve_overlaps(periods), combine_modifications(modifications)

def _insert_increase(periods, mod, idx_before, idx_during):
    # The period ends at the insertion point: the timestamp, or the start of the period it falls in
    if idx_during is not None:
        point = periods[idx_during].start
    else:
        point = mod.timestamp

    if idx_before is None:
        # Nothing before, there's room enough
        periods.insert(0, Period(point - mod.amount, point, mod.timer))
        return
    if point - periods[idx_before].end >= mod.amount:
        periods.insert(idx_before + 1, Period(point - mod.amount, point, mod.timer))
        return

    # Search backwards for a gap where this amount fits as a whole, and insert it at the end of that gap
    idx = idx_before - 1
    while idx >= 0 and periods[idx + 1].start - periods[idx].end < mod.amount:
        idx -= 1
    # With idx == -1 this is before the first period
    end = periods[idx + 1].start
    periods.insert(idx + 1, Period(end - mod.amount, end, mod.timer))

def _remove_time(periods, mod, idx_before, idx_during):
    if mod.kind is ModificationKind.TRANSFER:
        source, target = mod.timer, mod.to_timer
    else:
        source, target = mod.timer, None  # time goes to the 'sink'
    remaining = mod.amount
    negatives = []

    # Take what's possible from the start of the current period
    if idx_during is not None and periods[idx_during].timer == source:
        this_amount = min(remaining, mod.timestamp - periods[idx_during].start)
        remaining -= this_amount
        insert_period(periods, idx_during, this_amount, target)

    # Then from the ends of the earlier periods of the same timer
    if remaining > 0 and idx_before is not None:
        for idx in range(idx_before, -1, -1):
            period = periods[idx]
            if period.timer != source:
                continue
            this_amount = min(remaining, period.duration)
            remaining -= this_amount
            insert_period(periods, idx, -this_amount, target)
            if remaining == 0:
                break

    if remaining > 0:
        # More time is taken than there was in all the periods, which makes the time negative. This is
        # represented by a period of negative duration at the front.
        log.warning(f"Timeline: {remaining}s more removed from timer {source} than it ever ran ({mod})")
        end = periods[0].start if periods else mod.timestamp
        negatives.append(Period(end, end - remaining, source))
        if target is not None:
            periods.insert(0, Period(end - remaining, end, target))
    return negatives

# Merges the modifications into the periods (in place). Returns the negative-duration periods that were
# needed for time removed beyond what the periods held; they're kept out of the list itself.
def process_modifications(periods, modifications):
    negatives = []
    for mod in sorted(modifications, key=lambda m: m.timestamp):
        idx_before, idx_during, _ = find_period(periods, mod.timestamp)
        if mod.kind is ModificationKind.INCREASE:
            _insert_increase(periods, mod, idx_before, idx_during)
        elif mod.kind in (ModificationKind.DECREASE, ModificationKind.TRANSFER):
            negatives += _remove_time(periods, mod, idx_before, idx_during)
        else:
            raise ValueError(f"Unknown modification kind: '{mod.kind}'")
    return negatives

# The complete timeline: modifications applied, unwanted timers discarded and (unless options.cleanup is
# off) smoothed out for reporting.
def build_timeline(events, now, options=None):
    options = options or TimelineOptions()
    periods, modifications = get_raw_timeline(events, now)
    negatives = process_modifications(periods, modifications)

    if options.discard:
        discard = set(options.discard)
        periods = [p for p in periods if p.timer not in discard]
        negatives = [p for p in negatives if p.timer not in discard]

    if options.cleanup:
        # Remove the 'noise'
        remove_small_gaps(periods, options.min_gap)
        remove_small_periods(periods, options.min_period)
        join_same_periods(periods)

        if options.round > 0:
            round_times(periods, options.round)
            # Cleanup 'noise' that rounding may cause
            remove_small_periods(periods, 1)
            join_same_periods(periods)

        # Don't let the periods span midnight
        split_midnight(periods, options.tz)

    if negatives:
        periods = sorted(periods + negatives, key=Period.as_tuple)
    log.debug(f"Timeline built: {len(periods)} periods from {len(modifications)} modifications")
    return periods

#endregion === Building the timeline ===
