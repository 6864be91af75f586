"""Dose worker — background thread for dose calculation.

Runs DoseEngine.calculate_result off the UI thread.  A DoseEngine is not
reentrant, so one worker owns one engine and keeps at most one
calculation in flight; requests arriving mid-run are coalesced into a
single follow-up run.
"""

from __future__ import annotations

import threading
from typing import TYPE_CHECKING

from PyQt6.QtCore import QThread, pyqtSignal

if TYPE_CHECKING:
    from tps.core.dose_engine import DoseEngine


class DoseWorker(QThread):
    """Background thread for 2D dose computation.

    Usage::

        worker = DoseWorker(engine)
        worker.progress.connect(on_progress)
        worker.result_ready.connect(on_result)
        worker.error_occurred.connect(on_error)
        engine.add_beam(0.0, 20.0, 6.0)   # only while the worker is idle
        worker.request()
    """

    progress = pyqtSignal(int)          # 0-100%
    result_ready = pyqtSignal(object)   # DoseResult
    error_occurred = pyqtSignal(str)

    def __init__(self, engine: DoseEngine, parent=None):
        super().__init__(parent)
        self._engine = engine
        self._lock = threading.Lock()
        self._busy = False
        self._pending = False
        self._cancelled = False

    @property
    def engine(self) -> DoseEngine:
        return self._engine

    def is_busy(self) -> bool:
        with self._lock:
            return self._busy

    def has_pending(self) -> bool:
        with self._lock:
            return self._pending

    def request(self) -> None:
        """Start a calculation, or queue one follow-up if already busy."""
        with self._lock:
            self._cancelled = False
            if self._busy:
                self._pending = True
                return
            self._busy = True
        # Previous run may still be unwinding after clearing _busy
        self.wait()
        self.start()

    def cancel(self) -> None:
        """Drop the current result and any queued follow-up.

        The running calculation completes; its result is not emitted.
        """
        with self._lock:
            self._cancelled = True
            self._pending = False

    def run(self) -> None:
        """Execute dose calculation(s) in background thread."""
        while True:
            try:
                result = self._engine.calculate_result(
                    progress_callback=self.progress.emit,
                )
            except Exception as e:
                with self._lock:
                    self._busy = False
                    self._pending = False
                self.error_occurred.emit(str(e))
                return

            with self._lock:
                cancelled = self._cancelled
                rerun = self._pending
                self._pending = False
                if not rerun:
                    self._busy = False

            if not cancelled:
                self.result_ready.emit(result)
            if not rerun:
                return
