# The state mutations Storage.execute() understands. Each one is carried out as exactly one read-modify-write
# cycle of the event log. A timestamp of None means "now".

from dataclasses import dataclass
from tkeep.core.events import EventKind


@dataclass(frozen=True)
class SetTime:
    timers: tuple
    value: int
    timestamp: int | None = None

@dataclass(frozen=True)
class SetDescription:
    timer: int
    text: str
    timestamp: int | None = None

@dataclass(frozen=True)
class SetGroup:
    timer: int
    name: str
    type: str
    timestamp: int | None = None

@dataclass(frozen=True)
class SetExtra:
    timer: int | str
    name: str
    value: str
    timestamp: int | None = None

@dataclass(frozen=True)
class IncreaseTime:
    timer: int
    delta: int
    timestamp: int | None = None

@dataclass(frozen=True)
class TransferTime:
    from_timer: int
    to_timer: int
    delta: int
    timestamp: int | None = None

@dataclass(frozen=True)
class Run:
    timer: int
    timestamp: int | None = None

@dataclass(frozen=True)
class Pause:
    timer: int
    timestamp: int | None = None

@dataclass(frozen=True)
class PauseAll:
    timestamp: int | None = None

# One entry of a RunPauseBatch, kind is EventKind.RUN or EventKind.PAUSE.
@dataclass(frozen=True)
class BatchEvent:
    kind: EventKind
    timer: int
    timestamp: int | None = None

    def __post_init__(self):
        if self.kind not in (EventKind.RUN, EventKind.PAUSE):
            raise ValueError(f"Unknown event code ({self.kind}), expected run or pause")

@dataclass(frozen=True)
class RunPauseBatch:
    events: tuple
