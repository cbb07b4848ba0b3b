"""Qt side of the change notifications: polls the storage and pushes what changed as a signal."""

import signal
import sys
import time

from PySide6.QtCore import QCoreApplication, QObject, QTimer, Signal


class ChangeBridge(QObject):
    """Drains the storage's changed timers once per tick and emits them.

    ``timers_changed`` carries the drained ``[(timer, frozenset(fields)), ...]``
    list and is only emitted when something changed.  With a tracker the same
    tick also drives ``Tracker.tick()``, so suspend detection and the periodic
    refresh run on the UI thread.
    """

    timers_changed = Signal(list)

    def __init__(self, storage, tracker=None, interval=1000, clock=time.time, parent=None):
        super().__init__(parent)
        self.storage = storage
        self.tracker = tracker
        self._clock = clock

        # -- Tick timer --
        self._timer = QTimer(self)
        self._timer.setInterval(interval)
        self._timer.timeout.connect(self.poll)

    def start(self):
        self._timer.start()

    def stop(self):
        self._timer.stop()

    @property
    def is_active(self):
        return self._timer.isActive()

    def poll(self):
        """One tick. Returns the drained entries."""
        if self.tracker is not None:
            self.tracker.tick(int(self._clock()))
        entries = self.storage.drain_changed()
        if entries:
            self.timers_changed.emit(entries)
        return entries


# Runs a Qt event loop around a ChangeBridge until quit (Ctrl+C, or after duration seconds). Every batch of
# changed timers goes to on_change. Returns the exit code of the event loop.
def watch(storage, tracker=None, interval=1000, duration=None, on_change=None):
    app = QCoreApplication.instance() or QCoreApplication(sys.argv[:1])
    bridge = ChangeBridge(storage, tracker, interval)
    if on_change is not None:
        bridge.timers_changed.connect(on_change)

    # The handler runs whenever control returns to Python, which the tick guarantees
    previous_handler = signal.signal(signal.SIGINT, lambda *_: app.quit())
    if duration is not None:
        QTimer.singleShot(int(duration * 1000), app.quit)
    bridge.start()
    try:
        return app.exec()
    finally:
        bridge.stop()
        signal.signal(signal.SIGINT, previous_handler)
