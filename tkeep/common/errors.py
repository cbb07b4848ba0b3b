# Base class for every error the core raises on purpose.
class TimeKeeperError(Exception):
    pass

# The event log contains something that can't be interpreted: a line that doesn't parse or an event code
# that replay doesn't know. Never recoverable, the operation is aborted.
class CorruptLogError(TimeKeeperError):

    def __init__(self, message, line_number=None):
        if line_number is not None:
            message = f"line {line_number}: {message}"
        super().__init__(message)
        self.line_number = line_number

# The event log was changed on disk by someone else between our last read and the write we're about to
# do. The write is refused, the caller decides what to do (no automatic merge or retry).
class ConcurrentModificationError(TimeKeeperError):

    def __init__(self, path, expected, actual):
        super().__init__(
            f"Cannot write storage '{path}': file changed since last read "
            f"(expected (mtime, size) {expected}, found {actual})"
        )
        self.path = path
        self.expected = expected
        self.actual = actual
