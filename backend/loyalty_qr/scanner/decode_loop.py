# Overview: Fixed-rate background task that polls the camera for QR codes.

from __future__ import annotations

import logging
import threading
import time


logger = logging.getLogger(__name__)


class DecodeLoop:
    """
    Calls tick() every interval seconds on a worker thread.

    One tick runs at a time. pause() holds the loop between ticks without
    stopping the thread; resume() lets it continue. stop() ends it for good.
    Exceptions from tick() are logged and the loop keeps going.
    """

    def __init__(self, tick, interval: float, name: str = "qr-decode-loop"):
        if interval <= 0:
            raise ValueError("interval must be > 0")
        self._tick = tick
        self._interval = interval
        self._name = name
        self._stop_event = threading.Event()
        self._active = threading.Event()
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        if self._thread is not None:
            raise RuntimeError("Decode loop already started")
        self._active.set()
        self._thread = threading.Thread(target=self._run, name=self._name, daemon=True)
        self._thread.start()

    def pause(self) -> None:
        self._active.clear()

    def resume(self) -> None:
        if not self._stop_event.is_set():
            self._active.set()

    def stop(self, wait: bool = True, timeout: float = 2.0) -> None:
        self._stop_event.set()
        self._active.set()  # wake a paused loop so it can exit
        thread = self._thread
        if wait and thread is not None and thread is not threading.current_thread():
            thread.join(timeout)

    @property
    def is_paused(self) -> bool:
        return not self._active.is_set()

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive() and not self._stop_event.is_set()

    def _run(self) -> None:
        while not self._stop_event.is_set():
            if not self._active.wait(timeout=self._interval):
                continue
            if self._stop_event.is_set():
                break

            started = time.monotonic()
            try:
                self._tick()
            except Exception:
                logger.exception("Decode loop tick failed")

            remaining = self._interval - (time.monotonic() - started)
            if remaining > 0:
                self._stop_event.wait(remaining)
