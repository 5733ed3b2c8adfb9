"""
bailabeat - Listening Session
Wires frame source -> beat detector -> cycle tracker and keeps the display
state the UI shows, including the "no music" idle policy.
"""

import time
from dataclasses import dataclass, replace
from typing import Callable, Optional, Protocol

from beat_detector import BeatDetector, BeatEvent, SpectrumFrame
from config import Config
from cycle_tracker import CycleTracker
from logging_utils import log_event


class FrameSource(Protocol):
    def start(self) -> None: ...
    def stop(self) -> None: ...
    def poll_frame(self) -> Optional[SpectrumFrame]: ...


@dataclass(frozen=True)
class DisplayState:
    """What the count display shows right now"""
    current_beat: int = 0             # 0 = idle, else 1..8
    cycle: int = 0
    is_downbeat: bool = False
    is_dash_beat: bool = False
    bpm: int = 0
    no_music_detected: bool = False
    listening: bool = False


class ListeningSession:
    """One detector and one tracker for the lifetime of a listening session."""

    def __init__(
        self,
        config: Config,
        frame_source: Optional[FrameSource] = None,
        on_state: Optional[Callable[[DisplayState], None]] = None,
        clock: Callable[[], float] = time.perf_counter,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.config = config
        self.frame_source = frame_source
        self.on_state = on_state
        self._clock = clock
        self._sleep = sleep

        self.detector = BeatDetector(config.beat, on_tempo_update=self._on_tempo_update)
        self.tracker = CycleTracker(config.cycle)
        self.state = DisplayState()
        self.running = False

        self._started_at_ms: Optional[float] = None
        self._last_delivered_ms: Optional[float] = None
        self._seen_beat = False
        self._overruns = 0

    def start(self) -> None:
        if self.running:
            return
        if self.frame_source is not None:
            self.frame_source.start()
        self.detector.start()
        self.tracker.reset()
        self._started_at_ms = None
        self._last_delivered_ms = None
        self._seen_beat = False
        self._overruns = 0
        self.running = True
        self._set_state(DisplayState(listening=True))
        log_event("INFO", "Session", "Listening")

    def stop(self) -> None:
        """Stop after the current tick; the loop exits at its next check."""
        if not self.running:
            return
        self.running = False
        self.detector.stop()
        self.tracker.reset()
        if self.frame_source is not None:
            self.frame_source.stop()
        self._set_state(DisplayState())
        log_event("INFO", "Session", "Stopped", overruns=self._overruns)

    # ------------------------------------------------------------------
    # Ticking
    # ------------------------------------------------------------------
    def step(self, frame: SpectrumFrame) -> DisplayState:
        """Process one analyser frame synchronously."""
        if not self.running:
            return self.state
        if self._started_at_ms is None:
            self._started_at_ms = frame.now_ms

        event = self.detector.process_frame(frame)
        if event is not None and event.is_beat:
            self._deliver(event, frame.now_ms)
        self._apply_idle_policy(frame.now_ms)
        return self.state

    def tick(self) -> DisplayState:
        """Pull the newest frame from the source and process it."""
        frame = self.frame_source.poll_frame() if self.frame_source is not None else None
        if frame is not None:
            return self.step(frame)
        now_ms = self._clock() * 1000.0
        if self._started_at_ms is None:
            self._started_at_ms = now_ms
        self._apply_idle_policy(now_ms)
        return self.state

    def run(self, max_ticks: Optional[int] = None) -> None:
        """Cooperative loop at the configured tick rate until stop()."""
        interval = 1.0 / self.config.session.tick_hz
        ticks = 0
        while self.running:
            started = self._clock()
            self.tick()
            ticks += 1
            if max_ticks is not None and ticks >= max_ticks:
                return
            remaining = interval - (self._clock() - started)
            if remaining > 0:
                self._sleep(remaining)
            else:
                self._overruns += 1
                log_event("DEBUG", "Session", "Tick over budget", ms=f"{(interval - remaining) * 1000:.1f}")

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------
    def _deliver(self, event: BeatEvent, now_ms: float) -> None:
        guard = self.config.session.duplicate_guard_ms
        if self._last_delivered_ms is not None and now_ms - self._last_delivered_ms < guard:
            log_event("DEBUG", "Session", "Duplicate beat ignored", gap_ms=f"{now_ms - self._last_delivered_ms:.0f}")
            return
        self._last_delivered_ms = now_ms
        self._seen_beat = True

        bpm_hint = self.detector.stable_bpm if self.detector.stable_bpm > 0 else None
        cycle = self.tracker.process_beat(event.is_downbeat, event.timestamp_ms, bpm_hint)
        self._set_state(replace(
            self.state,
            current_beat=cycle.display_position,
            cycle=cycle.cycle_index,
            is_downbeat=cycle.is_downbeat,
            is_dash_beat=cycle.is_dash_beat,
            bpm=self.detector.bpm,
            no_music_detected=False,
        ))

    def _on_tempo_update(self, bpm: int) -> None:
        if self.running:
            self._set_state(replace(self.state, bpm=bpm))

    def _apply_idle_policy(self, now_ms: float) -> None:
        cfg = self.config.session
        if not self._seen_beat:
            if (not self.state.no_music_detected
                    and now_ms - self._started_at_ms >= cfg.no_music_start_ms):
                log_event("INFO", "Session", "No music detected")
                self._set_state(replace(self.state, no_music_detected=True))
            return

        if self.state.no_music_detected:
            return
        if now_ms - self._last_delivered_ms >= cfg.music_stopped_ms:
            log_event("INFO", "Session", "Music stopped", idle_ms=f"{now_ms - self._last_delivered_ms:.0f}")
            self._set_state(DisplayState(listening=True, no_music_detected=True))

    def _set_state(self, state: DisplayState) -> None:
        self.state = state
        if self.on_state is not None:
            self.on_state(state)
