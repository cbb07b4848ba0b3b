import os
import time
from datetime import datetime
from pathlib import Path
from tkeep.common.setup import PATHS
from tkeep.common.logger import log
from tkeep.core.events import format_log

# Exponential-ish time-tier targets in seconds.  For each tier we keep the snapshot whose
# timestamp is closest to (now - tier).
TIERS = [
    5 * 60,       # ~5 minutes ago
    10 * 60,      # ~10 minutes ago
    20 * 60,      # ~20 minutes ago
    60 * 60,      # ~1 hour ago
    6 * 3600,     # ~6 hours ago
    24 * 3600,    # ~1 day ago
    2 * 86400,    # ~2 days ago
    4 * 86400,    # ~4 days ago
]

_PREFIX = "events_"
_SUFFIX = ".log"

# Writes a full copy of the event log as a snapshot. The reason and priority go in as comment lines, so the
# snapshot is itself a valid log file that can be copied over the data file to restore it.
def create_snapshot(events, reason, priority="normal", directory=None):
    directory = Path(directory) if directory is not None else PATHS.snapshots
    directory.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S_%f")
    target_path = directory / f"{_PREFIX}{timestamp}{_SUFFIX}"
    with open(target_path, "w", encoding="utf-8", newline="\n") as f:
        f.write(f"# snapshot_reason: {reason}\n")
        f.write(f"# snapshot_priority: {priority}\n")
        f.write(format_log(events))
    log.debug(f"Saved snapshot for reason '{reason}', priority '{priority}' to {target_path}")
    return target_path

# Extracts and returns the datetime from a given snapshot's filename, such as
# events_20260212_140311_123456.log -> 2/12/2026, 2:03PM, 11.123456 seconds
def _parse_snapshot_time(filename):
    base = os.path.splitext(filename)[0]  # events_20260212_140311_123456
    parts = base.split("_", 1)
    if len(parts) < 2:
        return None
    try:
        return datetime.strptime(parts[1], "%Y%m%d_%H%M%S_%f")
    except ValueError:
        return None

# Use time-tier retention to remove all snapshots that don't best fit any tier. The newest snapshot is always kept.
# We then calculate which snapshot is closest to each tier in TIERS, and delete everything else. Returns the number
# of removed snapshots.
def prune_snapshots(directory=None, now=None):
    directory = Path(directory) if directory is not None else PATHS.snapshots
    if not directory.is_dir():
        return 0

    # Gather snapshots with parsed timestamps
    entries = []
    for path in directory.iterdir():
        filename = path.name
        if not filename.startswith(_PREFIX) or not filename.endswith(_SUFFIX):
            continue
        ts = _parse_snapshot_time(filename)
        if ts is not None:
            entries.append((filename, ts))

    # This means there isn't anything to prune yet.
    if len(entries) <= 1:
        return 0

    # Sort by newest first
    entries.sort(key=lambda e: e[1], reverse=True)
    now = now or datetime.now()

    # Always keep newest
    keep = {entries[0][0]}

    # For each tier, find closest snapshot
    for tier_secs in TIERS:
        target = now.timestamp() - tier_secs
        best = min(entries, key=lambda e: abs(e[1].timestamp() - target))
        keep.add(best[0])

    # Delete everything not in the keep set
    pruned_count = 0
    for filename, _ in entries:
        if filename not in keep:
            try:
                os.remove(directory / filename)
                pruned_count += 1
            except OSError:
                log.warning(f"Could not remove snapshot '{filename}'", exc_info=True)
    if pruned_count > 0:
        log.info(f"Pruned {pruned_count} files from '{directory}'")
    return pruned_count


class SnapshotScheduler:
    """Tracks when snapshots should be created.  Does NOT create them.

    Normal-priority requests are debounced (coalesced over a short window)
    and gated by a minimum interval.  High-priority requests return True
    from ``request()`` so the caller can snapshot immediately.
    """

    def __init__(self, min_interval=300, debounce=30, clock=time.monotonic):
        self._min_interval = min_interval  # seconds between normal snapshots
        self._debounce = debounce          # seconds to wait after last action
        self._clock = clock
        self._dirty = False
        self._dirty_reason = None
        self._last_action_time = None
        self._last_snapshot_time = clock()

    def request(self, reason, priority="normal"):
        """Request a snapshot.

        Returns True if the snapshot should happen immediately (high priority).
        For normal priority, marks dirty and returns False.
        """
        if priority == "high":
            return True
        self._dirty = True
        self._dirty_reason = reason
        self._last_action_time = self._clock()
        return False

    def check(self):
        """Called from the tick loop.  Returns (should_fire, reason).

        Fires when dirty, the debounce expired and the min interval elapsed.
        Without changes there is nothing new to copy, so nothing fires.
        """
        if not self._dirty or self._last_action_time is None:
            return False, None
        now = self._clock()
        debounce_ok = (now - self._last_action_time) >= self._debounce
        interval_ok = (now - self._last_snapshot_time) >= self._min_interval
        if debounce_ok and interval_ok:
            return True, self._dirty_reason
        return False, None

    def mark_done(self):
        """Called after a snapshot was successfully created."""
        self._dirty = False
        self._dirty_reason = None
        self._last_action_time = None
        self._last_snapshot_time = self._clock()
