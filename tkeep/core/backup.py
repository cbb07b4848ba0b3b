"""Best-effort mirroring of the event log to a second location.

The backup path may well live on a slow or unreachable network share, so the copy runs on a worker thread
and never on the caller's path. Requests are coalesced into one pending slot: appended lines are
concatenated and a full rewrite replaces whatever was pending, so nothing queued is ever lost. Failures
are logged and otherwise ignored.
"""

import atexit
import threading
from dataclasses import dataclass
from pathlib import Path
from tkeep.common.logger import log
from tkeep.util.filelock import locked


@dataclass(frozen=True)
class BackupRequest:
    contents: str
    append: bool

    # Combines this (older) request with a newer one into a single equivalent request.
    def merge(self, newer):
        if newer.append:
            return BackupRequest(self.contents + newer.contents, self.append)
        return newer


class BackupWorker:

    def __init__(self, path, background=True):
        self.path = Path(path)
        self._cond = threading.Condition()
        self._pending = None
        self._busy = False
        self._closed = False
        self._thread = None

        if background:
            try:
                thread = threading.Thread(target=self._run, name="tkeep-backup", daemon=True)
                thread.start()
                self._thread = thread
            except RuntimeError:
                log.warning("Could not start the backup thread, backups will be written synchronously", exc_info=True)
        # Whatever is still queued at shutdown gets written
        atexit.register(self.close)

    @property
    def is_background(self):
        return self._thread is not None

    # Queue the given contents for the backup file, either replacing it or appended to it.
    def submit(self, contents, append=False):
        request = BackupRequest(contents, append)
        if self._thread is None or self._closed:
            self._write(request)
            return
        with self._cond:
            self._pending = request if self._pending is None else self._pending.merge(request)
            self._cond.notify_all()

    # Blocks until everything submitted so far has been written.
    def flush(self):
        if self._thread is None:
            return
        with self._cond:
            while (self._pending is not None or self._busy) and self._thread.is_alive():
                self._cond.wait(timeout=0.5)

    # Writes what's pending and stops the worker. Safe to call more than once.
    def close(self):
        with self._cond:
            if self._closed:
                return
            self._closed = True
            self._cond.notify_all()
        atexit.unregister(self.close)
        if self._thread is not None:
            self._thread.join()
            log.debug(f"Backup worker for '{self.path}' stopped")

    def _run(self):
        while True:
            with self._cond:
                while self._pending is None and not self._closed:
                    self._cond.wait()
                request, self._pending = self._pending, None
                if request is None:
                    return
                self._busy = True
            try:
                self._write(request)
            finally:
                with self._cond:
                    self._busy = False
                    self._cond.notify_all()

    def _write(self, request):
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "a+", encoding="utf-8", newline="\n") as f, locked(f):
                if request.append:
                    f.seek(0, 2)
                else:
                    f.seek(0)
                    f.truncate()
                f.write(request.contents)
            log.debug(f"Backup {'append' if request.append else 'rewrite'} of {len(request.contents)} chars to '{self.path}'")
        except OSError:
            log.warning(f"Failed to write backup '{self.path}', ignoring", exc_info=True)
