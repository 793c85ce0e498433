# sniper/state.py
import threading
from typing import Set


class ProcessState:
    """
    The only state shared between the Admission Gate and the Trade Sequencer:
    the single-flight lock and the append-only seen-set.
    Never reset for the lifetime of the process.
    """
    def __init__(self):
        self._mutex = threading.Lock()
        self._in_flight = False
        self._seen: Set[str] = set()

    def try_acquire(self) -> bool:
        """Takes the single-flight lock without waiting. False if already held."""
        with self._mutex:
            if self._in_flight:
                return False
            self._in_flight = True
            return True

    def release(self):
        with self._mutex:
            if not self._in_flight:
                raise RuntimeError("single-flight lock released while not held")
            self._in_flight = False

    @property
    def in_flight(self) -> bool:
        with self._mutex:
            return self._in_flight

    def mark_seen(self, asset_id: str):
        with self._mutex:
            self._seen.add(asset_id)

    def has_seen(self, asset_id: str) -> bool:
        with self._mutex:
            return asset_id in self._seen

    @property
    def seen_count(self) -> int:
        with self._mutex:
            return len(self._seen)
