"""
bailabeat - Beat Detector
Turns a stream of frequency-weighted energy snapshots into beat events,
downbeat marks and a smoothed tempo estimate.

One call to ``process_frame`` (or ``process_energy``) is one tick. The
detector never blocks and never raises on bad numbers: malformed ticks are
dropped and empty statistics short-circuit to "no beat".
"""

import math
from collections import deque
from dataclasses import dataclass
from typing import Callable, Optional, Sequence

import numpy as np

from config import BeatDetectionConfig
from frequency_utils import band_weights, weighted_energy
from logging_utils import log_event


@dataclass
class SpectrumFrame:
    """One analyser frame delivered by the audio front-end."""
    magnitudes: Sequence[float]   # Magnitude per frequency bin, bin 0 = DC
    sample_rate_hz: float
    now_ms: float                 # Monotonic capture time


@dataclass
class BeatEvent:
    """Result of one detector tick"""
    is_beat: bool
    is_downbeat: bool
    timestamp_ms: float       # Beat instant (predictive beats are stamped ahead)
    energy: float             # Weighted energy of the tick
    predicted: bool = False   # True if emitted by the look-ahead path
    bpm: int = 0              # Rounded stabilized tempo at emission, 0 = unknown


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


class BeatDetector:
    """
    Online beat detector with adaptive threshold, adaptive debounce,
    predictive early trigger and outlier-filtered tempo tracking.
    """

    def __init__(
        self,
        config: Optional[BeatDetectionConfig] = None,
        on_beat: Optional[Callable[[BeatEvent], None]] = None,
        on_tempo_update: Optional[Callable[[int], None]] = None,
    ):
        self.config = config or BeatDetectionConfig()
        self.on_beat = on_beat
        self.on_tempo_update = on_tempo_update
        self.running = False

        self._weights: Optional[np.ndarray] = None
        self._weights_key: Optional[tuple] = None

        self.reset()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def reset(self) -> None:
        """Clear all rolling state. Running state is left untouched."""
        cfg = self.config
        self.energy_history: deque = deque(maxlen=cfg.history_size)
        self.beat_history: deque = deque(maxlen=cfg.beat_history_size)
        self.bpm_history: deque = deque(maxlen=cfg.bpm_history_size)
        self.previous_energy = 0.0
        self.stable_bpm = 0.0
        self.beat_count = 0
        self.last_beat_time: Optional[float] = None
        self.predicted_next_beat_ms: Optional[float] = None
        self._last_predicted_trigger_ms: Optional[float] = None
        self._last_tick_ms: Optional[float] = None
        self._reported_bpm = 0

        self._stat_ticks = 0
        self._stat_dropped = 0
        self._stat_main_beats = 0
        self._stat_predicted_beats = 0
        self._stat_suppressed = 0
        self._stat_debounced = 0

    def start(self) -> None:
        """Begin a listening session from a clean state."""
        self.reset()
        self.running = True
        log_event("INFO", "Detector", "Started", window=self.config.history_size)

    def stop(self) -> None:
        """End the session; nothing carries over to the next start."""
        if not self.running:
            self.reset()
            return
        self.running = False
        self._log_session_summary()
        self.reset()
        log_event("INFO", "Detector", "Stopped")

    def _log_session_summary(self) -> None:
        if self._stat_ticks <= 0:
            return
        log_event(
            "INFO",
            "Detector",
            "Session summary",
            ticks=self._stat_ticks,
            dropped=self._stat_dropped,
            beats=self._stat_main_beats + self._stat_predicted_beats,
            predicted=self._stat_predicted_beats,
            suppressed=self._stat_suppressed,
            debounced=self._stat_debounced,
            bpm=self.bpm,
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    @property
    def bpm(self) -> int:
        """Rounded stabilized tempo, 0 until established."""
        if self.stable_bpm <= 0:
            return 0
        return _round_half_up(self.stable_bpm)

    def debounce_interval_ms(self) -> float:
        """Minimum spacing a new main-path beat needs from the last one."""
        cfg = self.config
        if len(self.beat_history) >= 2:
            # Mean of consecutive gaps telescopes to (last - first) / (n - 1)
            span = self.beat_history[-1] - self.beat_history[0]
            avg_interval = span / (len(self.beat_history) - 1)
            return max(cfg.debounce_min_ms, min(cfg.debounce_max_ms, avg_interval * cfg.debounce_fraction))
        return cfg.debounce_default_ms

    # ------------------------------------------------------------------
    # Per-tick entry points
    # ------------------------------------------------------------------
    def process_frame(self, frame: SpectrumFrame) -> Optional[BeatEvent]:
        """Run one tick on an analyser frame. Returns None for a dropped tick."""
        if not self.running:
            return None

        try:
            magnitudes = np.asarray(frame.magnitudes, dtype=np.float64)
            sample_rate = float(frame.sample_rate_hz)
        except (TypeError, ValueError):
            return self._drop("unreadable frame")

        if magnitudes.ndim != 1 or magnitudes.size == 0:
            return self._drop("empty magnitudes")
        if not np.all(np.isfinite(magnitudes)):
            return self._drop("non-finite magnitudes")
        if np.any(magnitudes < 0):
            return self._drop("negative magnitudes")
        if not math.isfinite(sample_rate) or sample_rate <= 0:
            return self._drop("bad sample rate")

        energy = weighted_energy(magnitudes, sample_rate, self._weights_for(magnitudes.size, sample_rate))
        return self._tick(energy, frame.now_ms)

    def process_energy(self, energy: float, now_ms: float) -> Optional[BeatEvent]:
        """Run one tick on a precomputed energy snapshot."""
        if not self.running:
            return None
        try:
            energy = float(energy)
        except (TypeError, ValueError):
            return self._drop("unreadable energy")
        if not math.isfinite(energy) or energy < 0:
            return self._drop("bad energy")
        return self._tick(energy, now_ms)

    def _weights_for(self, bin_count: int, sample_rate: float) -> np.ndarray:
        key = (bin_count, sample_rate)
        if self._weights is None or self._weights_key != key:
            cfg = self.config
            self._weights = band_weights(
                bin_count,
                sample_rate,
                kick_band=cfg.kick_band,
                kick_weight=cfg.kick_weight,
                percussion_band=cfg.percussion_band,
                percussion_weight=cfg.percussion_weight,
                other_weight=cfg.other_weight,
            )
            self._weights_key = key
        return self._weights

    def _drop(self, reason: str) -> None:
        self._stat_dropped += 1
        log_event("DEBUG", "Detector", "Dropped tick", reason=reason)
        return None

    def _tick(self, energy: float, now_ms) -> Optional[BeatEvent]:
        try:
            now = float(now_ms)
        except (TypeError, ValueError):
            return self._drop("unreadable timestamp")
        if not math.isfinite(now) or now < 0:
            return self._drop("bad timestamp")
        if self._last_tick_ms is not None and now < self._last_tick_ms:
            return self._drop("timestamp went backwards")

        self._last_tick_ms = now
        self._stat_ticks += 1

        event = self._check_prediction(energy, now)

        # Main path runs every tick, even right after a predictive trigger
        self.energy_history.append(energy)
        if self._detect_beat(energy, now):
            if (self._last_predicted_trigger_ms is not None
                    and now - self._last_predicted_trigger_ms < self.config.prediction_dedup_ms):
                self._stat_suppressed += 1
                log_event("DEBUG", "Detector", "Main beat suppressed after predictive trigger",
                          now=f"{now:.1f}", trigger=f"{self._last_predicted_trigger_ms:.1f}")
            else:
                self._stat_main_beats += 1
                event = self._emit(now, energy, predicted=False)

        if event is None:
            return BeatEvent(is_beat=False, is_downbeat=False, timestamp_ms=now, energy=energy, bpm=self.bpm)
        return event

    # ------------------------------------------------------------------
    # Detection
    # ------------------------------------------------------------------
    def _check_prediction(self, energy: float, now: float) -> Optional[BeatEvent]:
        """Fire early when the predicted beat is due and energy is rising."""
        cfg = self.config
        if self.predicted_next_beat_ms is None:
            return None
        if len(self.energy_history) < cfg.history_size:
            return None
        if now < self.predicted_next_beat_ms - cfg.prediction_lookahead_ms:
            return None

        avg_energy = float(np.mean(self.energy_history))
        if energy <= avg_energy * cfg.prediction_energy_multiplier or energy <= cfg.min_energy:
            return None
        if (self._last_predicted_trigger_ms is not None
                and now - self._last_predicted_trigger_ms <= cfg.prediction_retrigger_ms):
            return None

        self._last_predicted_trigger_ms = now
        self._stat_predicted_beats += 1
        return self._emit(now + cfg.prediction_lookahead_ms, energy, predicted=True)

    def _detect_beat(self, energy: float, now: float) -> bool:
        """Threshold + onset test with adaptive debounce (main path).

        Accepted candidates go into the beat history even when their event
        is later suppressed, so the debounce and prediction keep tracking
        the raw beat grid.
        """
        cfg = self.config
        previous = self.previous_energy
        self.previous_energy = energy

        if len(self.energy_history) < cfg.history_size:
            return False

        values = np.fromiter(self.energy_history, dtype=np.float64, count=len(self.energy_history))
        avg_energy = float(values.mean())

        # Quiet room, no music playing
        if avg_energy < cfg.min_energy:
            return False

        onset_ratio = (energy - previous) / previous if previous > 0 else 0.0
        has_onset = onset_ratio >= cfg.onset_threshold

        std_dev = float(values.std())
        threshold = avg_energy + cfg.threshold_multiplier * std_dev

        is_beat = (
            energy > cfg.min_energy
            and energy > threshold
            and (has_onset or energy > avg_energy * cfg.relative_multiplier)
        )
        if not is_beat:
            return False

        min_interval = self.debounce_interval_ms()
        if self.beat_history and now - self.beat_history[-1] < min_interval:
            self._stat_debounced += 1
            return False

        self.beat_history.append(now)
        log_event("DEBUG", "Detector", "Beat candidate",
                  energy=f"{energy:.2f}", threshold=f"{threshold:.2f}",
                  onset=f"{onset_ratio:.2f}", debounce_ms=f"{min_interval:.0f}")
        return True

    def _emit(self, timestamp: float, energy: float, predicted: bool) -> BeatEvent:
        is_downbeat = self.beat_count % self.config.downbeat_interval == 0

        self._update_tempo(timestamp)
        self.last_beat_time = timestamp
        self.beat_count += 1
        self._update_prediction(timestamp)

        event = BeatEvent(
            is_beat=True,
            is_downbeat=is_downbeat,
            timestamp_ms=timestamp,
            energy=energy,
            predicted=predicted,
            bpm=self.bpm,
        )
        log_event("DEBUG", "Detector", "Beat", count=self.beat_count, downbeat=is_downbeat,
                  predicted=predicted, timestamp=f"{timestamp:.1f}", bpm=self.bpm)
        if self.on_beat is not None:
            self.on_beat(event)
        return event

    def _update_prediction(self, beat_time: float) -> None:
        if len(self.beat_history) >= 2:
            span = self.beat_history[-1] - self.beat_history[0]
            self.predicted_next_beat_ms = beat_time + span / (len(self.beat_history) - 1)
        elif self.stable_bpm > 0:
            self.predicted_next_beat_ms = beat_time + 60000.0 / self.stable_bpm
        else:
            self.predicted_next_beat_ms = None

    # ------------------------------------------------------------------
    # Tempo
    # ------------------------------------------------------------------
    def _update_tempo(self, beat_time: float) -> None:
        cfg = self.config
        if self.last_beat_time is None:
            return
        interval = beat_time - self.last_beat_time
        if interval <= 0:
            return

        bpm = 60000.0 / interval
        if bpm < cfg.bpm_min or bpm > cfg.bpm_max:
            return

        if (len(self.bpm_history) >= cfg.bpm_outlier_min_samples
                and self.stable_bpm > 0
                and abs(bpm - self.stable_bpm) > self.stable_bpm * cfg.bpm_outlier_deviation):
            log_event("DEBUG", "Tempo", "Outlier rejected", sample=f"{bpm:.1f}", stable=f"{self.stable_bpm:.1f}")
        else:
            self.bpm_history.append(bpm)

        candidate = self._candidate_bpm()
        if candidate <= 0:
            return

        if self.stable_bpm == 0:
            self.stable_bpm = candidate
        else:
            alpha = cfg.bpm_smoothing
            self.stable_bpm = self.stable_bpm * (1.0 - alpha) + candidate * alpha

        rounded = self.bpm
        if rounded != self._reported_bpm:
            self._reported_bpm = rounded
            log_event("INFO", "Tempo", "Tempo updated", bpm=rounded, samples=len(self.bpm_history))
            if self.on_tempo_update is not None:
                self.on_tempo_update(rounded)

    def _candidate_bpm(self) -> float:
        """Trimmed median: mean of a small window around the sorted middle."""
        if not self.bpm_history:
            return 0.0
        ordered = sorted(self.bpm_history)
        window = self.config.bpm_median_window
        if len(ordered) >= window:
            mid = len(ordered) // 2
            half = window // 2
            ordered = ordered[max(0, mid - half):min(len(ordered), mid + half + 1)]
        return float(np.mean(ordered))
