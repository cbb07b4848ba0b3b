from tkeep.common.logger import log
from tkeep.core.events import data_item

SECONDS_PER_DAY = 24 * 60 * 60


# Removes events that no longer matter for any replay starting inside the retention window.
#
# Events are cancelled by *later* absolute events, so the log is scanned newest to oldest in one pass:
# - Events newer than the boundary (now - keep_days) are always kept.
# - At or before the boundary, the first absolute event seen for a (timer, data item) is kept, since a
#   replay from the boundary needs it as its starting value. Every older event for that same pair
#   (absolute or relative) is superseded by it and dropped.
# Run and pause are relative time events, so once a set-time is anchored they go too. That's why set-time
# always writes the running status right behind it.
#
# Returns (kept events in original order, number of dropped events).
def compact(events, keep_days, now):
    boundary = now - keep_days * SECONDS_PER_DAY
    anchored = set()  # (timer, data item)
    kept = []
    dropped = 0
    for event in reversed(events):
        if event.timestamp > boundary:
            kept.append(event)
            continue

        item = (event.timer, data_item(event))
        if item in anchored:
            log.debug(f"Removing superseded event {event}")
            dropped += 1
            continue

        kept.append(event)
        if event.kind.is_absolute:
            anchored.add(item)
    kept.reverse()

    if dropped:
        log.info(f"Compacted event log: dropped {dropped} of {len(events)} events older than {keep_days} days")
    return kept, dropped
