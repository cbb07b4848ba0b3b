from tkeep.util.misc import (
    now_iso,
    round_to,
    local_utc_offset,
    format_tz,
    format_datetime_iso,
    parse_datetime,
    parse_time_expression,
    format_duration,
)
