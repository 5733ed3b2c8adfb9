"""
bailabeat - Cycle Tracker
Maps the beat stream onto the repeating 8-count of the dance.
Positions 4 and 8 are the pause ("dash") counts.
"""

import math
from dataclasses import dataclass
from typing import Optional

from config import CycleConfig
from logging_utils import log_event


@dataclass(frozen=True)
class CycleState:
    display_position: int     # 1..cycle_length
    cycle_index: int          # Cycles started since the last reset
    is_downbeat: bool
    is_dash_beat: bool


class CycleTracker:
    """Counts beats through the cycle; pure state transitions, no I/O."""

    def __init__(self, config: Optional[CycleConfig] = None):
        self.config = config or CycleConfig()
        self.reset()

    def reset(self) -> None:
        self.position = 0                           # 0-based internal position
        self.cycle_index = 0
        self.last_beat_time: Optional[float] = None
        self.cycle_start_time: Optional[float] = None
        self.bpm: Optional[float] = None
        self.tempo_deviation_pending = False

    def process_beat(self, is_downbeat: bool, timestamp_ms: float, bpm: Optional[float] = None) -> CycleState:
        cfg = self.config

        try:
            timestamp_ms = float(timestamp_ms)
        except (TypeError, ValueError):
            return self._drop("unreadable timestamp")
        if not math.isfinite(timestamp_ms) or timestamp_ms < 0:
            return self._drop("bad timestamp")
        if bpm is not None:
            try:
                bpm = float(bpm)
            except (TypeError, ValueError):
                return self._drop("unreadable tempo hint")
            if not math.isfinite(bpm):
                return self._drop("bad tempo hint")

        if self.last_beat_time is not None and timestamp_ms - self.last_beat_time > cfg.timeout_ms:
            log_event("INFO", "Cycle", "Phrase timed out, count restarted",
                      gap_ms=f"{timestamp_ms - self.last_beat_time:.0f}", cycles=self.cycle_index)
            self.position = 0
            self.cycle_index = 0
            self.cycle_start_time = None

        if bpm is not None and bpm > 0:
            self._note_tempo(float(bpm))

        if is_downbeat:
            self.cycle_index += 1
            self.position = 0
            self.cycle_start_time = timestamp_ms
            if self.tempo_deviation_pending:
                # Nothing to realign beyond the new cycle start itself
                self.tempo_deviation_pending = False
                log_event("INFO", "Cycle", "Resynced to new tempo on downbeat", bpm=f"{self.bpm:.1f}")
        else:
            self.position = (self.position + 1) % cfg.cycle_length

        self.last_beat_time = timestamp_ms
        return self._state(is_downbeat)

    def _drop(self, reason: str) -> CycleState:
        log_event("DEBUG", "Cycle", "Dropped beat", reason=reason)
        return self.current_state()

    def _note_tempo(self, bpm: float) -> None:
        previous = self.bpm
        self.bpm = bpm
        if previous is None:
            return
        if abs(bpm - previous) / previous > self.config.tempo_deviation:
            if not self.tempo_deviation_pending:
                log_event("INFO", "Cycle", "Tempo deviation, waiting for next downbeat",
                          previous=f"{previous:.1f}", bpm=f"{bpm:.1f}")
            self.tempo_deviation_pending = True

    def _state(self, downbeat_hint: bool) -> CycleState:
        display = self.position + 1
        is_dash = display in self.config.dash_positions
        if downbeat_hint and is_dash:
            # Downbeats land on position 1; reaching this means the hint order broke
            log_event("WARN", "Cycle", "Downbeat hint on a dash position ignored", position=display)
        return CycleState(
            display_position=display,
            cycle_index=self.cycle_index,
            is_downbeat=downbeat_hint and not is_dash,
            is_dash_beat=is_dash,
        )

    def current_state(self) -> CycleState:
        """Snapshot for display refreshes; never reports a downbeat."""
        return self._state(False)

    def predicted_next_beat_time(self) -> Optional[float]:
        """Expected time of the next beat from the last tempo hint, or None."""
        if not self.bpm or self.last_beat_time is None:
            return None
        interval = 60000.0 / self.bpm
        if self.cycle_start_time is None:
            return self.last_beat_time + interval
        return self.cycle_start_time + (self.position + 1) * interval
