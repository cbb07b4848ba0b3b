import calendar
import math
import re
from datetime import datetime, timedelta

_EPOCH = datetime(1970, 1, 1)

# Simply returns the current local time as an ISO8601 string with timezone offset.
def now_iso():
    return datetime.now().astimezone().isoformat()

# Rounds value to the nearest multiple of step, with halves rounded away from zero (so 2.5 -> 3 and
# -2.5 -> -3, unlike python's round()).
def round_to(value, step=1):
    quotient = value / step
    rounded = math.copysign(math.floor(abs(quotient) + 0.5), quotient)
    return int(rounded) * step

#region === Timestamps ===

# Returns the local UTC offset (in seconds) that applies at the given unix timestamp.
def local_utc_offset(timestamp):
    return int(datetime.fromtimestamp(timestamp).astimezone().utcoffset().total_seconds())

# Format an offset in seconds as a +HHMM/-HHMM timezone specification.
def format_tz(offset):
    minutes = round_to(offset / 60)
    sign = "+"
    if minutes < 0:
        sign = "-"
        minutes = -minutes
    return f"{sign}{minutes // 60:02d}{minutes % 60:02d}"

# Formats a unix timestamp as "yyyy-mm-dd hh:mm:ss +zzzz". When no offset is given, the local offset
# at that moment is used, so the written text always reads as local time.
def format_datetime_iso(timestamp, offset=None):
    if offset is None:
        offset = local_utc_offset(timestamp)
    # Shift into the target zone and print the fields as if they were UTC
    wall = _EPOCH + timedelta(seconds=timestamp + offset)
    return f"{wall:%Y-%m-%d %H:%M:%S} {format_tz(offset)}"

_DATETIME_RE = re.compile(r"""^\s*
    (\d{4})\D+(\d{1,2})\D+(\d{1,2})         # yyyy-mm-dd
    \D+
    (\d{1,2})\D+(\d{2})\D+(\d{2})           # hh:mm:ss
    (?:\s*
        (?:(UTC|Z)                          # explicit UTC marker
        |([+-])\s*(\d{1,2}):?(\d{2}))       # or a +hh:mm / -hhmm offset
    )?\s*$""", re.VERBOSE | re.IGNORECASE)
_INTEGER_RE = re.compile(r"^\s*-?\d+\s*$")

# Parses a timestamp as written in the event log back into a unix timestamp. Accepts
# "yyyy-mm-dd hh:mm:ss +zzzz", the same with UTC/Z or without any zone (read as UTC), and a bare integer
# which is taken as a unix timestamp already. Raises ValueError for anything else.
def parse_datetime(text):
    match = _DATETIME_RE.match(text)
    if match:
        year, month, day, hour, minute, second = (int(g) for g in match.group(1, 2, 3, 4, 5, 6))
        offset = 0
        if match.group(8):
            offset = int(match.group(9)) * 3600 + int(match.group(10)) * 60
            if match.group(8) == "-":
                offset = -offset
        # The fields are in the given timezone, so subtract the offset to get to UTC
        return calendar.timegm((year, month, day, hour, minute, second)) - offset
    if _INTEGER_RE.match(text):
        return int(text)
    raise ValueError(f"Unknown format for timestamp: '{text}'")

#endregion === Timestamps ===

#region === Durations ===

_TIME_TERM = re.compile(r"""\s*(?P<sign>[+-]?)\s*(?:
    (?P<hms_h>\d+):(?P<hms_m>\d+):(?P<hms_s>\d+)
    |(?P<hm_h>\d+):(?P<hm_m>\d+)
    |(?P<units>(?:\d+\s*[hHms]\s*)+)
    |(?P<seconds>\d+)
)\s*""", re.VERBOSE)
_UNIT_PART = re.compile(r"(\d+)\s*([hHms])")
_UNIT_SECONDS = {"h": 3600, "H": 3600, "m": 60, "s": 1}

# Evaluates a user supplied time expression to a number of seconds. Terms can be h:mm:ss, h:mm, unit
# notation like 1h30m, 90m or 45s, or a bare number of seconds, and are combined with + and -.
# An empty expression is 0. Raises ValueError when the expression can't be read.
def parse_time_expression(expression):
    text = expression.strip()
    if not text:
        return 0

    total = 0
    pos = 0
    while pos < len(text):
        match = _TIME_TERM.match(text, pos)
        # Every term after the first needs an operator in front of it
        if not match or match.end() == pos or (pos > 0 and not match.group("sign")):
            raise ValueError(f"Invalid time expression '{expression}'")

        if match.group("hms_h") is not None:
            value = int(match.group("hms_h")) * 3600 + int(match.group("hms_m")) * 60 + int(match.group("hms_s"))
        elif match.group("hm_h") is not None:
            value = int(match.group("hm_h")) * 3600 + int(match.group("hm_m")) * 60
        elif match.group("units") is not None:
            value = sum(int(n) * _UNIT_SECONDS[unit] for n, unit in _UNIT_PART.findall(match.group("units")))
        else:
            value = int(match.group("seconds"))

        total += -value if match.group("sign") == "-" else value
        pos = match.end()
    return total

# Formats a number of seconds as h:mm, with a leading minus for negative amounts.
def format_duration(seconds):
    sign = "-" if seconds < 0 else ""
    minutes = abs(int(seconds)) // 60
    return f"{sign}{minutes // 60}:{minutes % 60:02d}"

#endregion === Durations ===
