# bailabeat Configuration
# All default values and constants

from dataclasses import dataclass, field, is_dataclass
from typing import Tuple

from logging_utils import log_event


CURRENT_CONFIG_VERSION = 1


@dataclass
class BeatDetectionConfig:
    """Beat detection parameters"""
    history_size: int = 43                 # Energy window in ticks (~1 s)
    min_energy: float = 1.5                # Silence floor for avg and current energy
    onset_threshold: float = 0.12          # Relative rise vs previous tick to count as onset
    threshold_multiplier: float = 1.3      # Dynamic threshold = avg + mult * std
    relative_multiplier: float = 1.08      # Alternate accept path: energy > avg * this
    beat_history_size: int = 15            # Beat timestamps kept (~3 s)
    debounce_default_ms: float = 200.0     # Min inter-beat interval until 2 beats are known
    debounce_min_ms: float = 150.0
    debounce_max_ms: float = 300.0
    debounce_fraction: float = 0.6         # Fraction of avg interval used as debounce
    downbeat_interval: int = 8             # Every Nth accepted beat is a downbeat

    # Predictive trigger
    prediction_lookahead_ms: float = 250.0  # Window before predicted beat; also the stamp offset
    prediction_energy_multiplier: float = 1.05
    prediction_retrigger_ms: float = 100.0  # Min spacing between predictive triggers
    prediction_dedup_ms: float = 150.0      # Main-path beats this close to a predictive one are dropped

    # Tempo estimation
    bpm_min: float = 60.0
    bpm_max: float = 200.0
    bpm_history_size: int = 20
    bpm_outlier_deviation: float = 0.4      # Reject samples this far from the stable tempo
    bpm_outlier_min_samples: int = 5        # Samples required before outlier rejection applies
    bpm_median_window: int = 5              # Width of the trimmed-median window
    bpm_smoothing: float = 0.2              # Weight of the new candidate per update

    # Frequency weighting of the energy snapshot (Hz)
    kick_band: Tuple[float, float] = (40.0, 120.0)
    kick_weight: float = 3.0
    percussion_band: Tuple[float, float] = (120.0, 200.0)
    percussion_weight: float = 1.5
    other_weight: float = 0.5


@dataclass
class CycleConfig:
    """Dance-count cycle parameters"""
    cycle_length: int = 8
    dash_positions: Tuple[int, ...] = (4, 8)     # Display positions rendered as pauses
    timeout_ms: float = 3000.0                   # Gap that ends a phrase
    tempo_deviation: float = 0.10                # Tempo hint change that flags a resync


@dataclass
class AudioConfig:
    """Audio capture settings"""
    sample_rate: int = 44100
    fft_size: int = 2048               # 1024 frequency bins
    block_size: int = 1024             # Frames per capture callback
    channels: int = 1
    # Device index - None means use system default input
    device_index: int | None = None
    # Kick-drum band-pass ahead of the analyser
    bandpass_enabled: bool = True
    bandpass_center_hz: float = 80.0
    bandpass_q: float = 2.0
    # Analyser output scaling
    smoothing: float = 0.3             # Exponential smoothing across frames (0-1)
    min_db: float = -100.0
    max_db: float = -30.0
    queue_size: int = 4                # Analysed frames waiting for the tick loop


@dataclass
class SessionConfig:
    """Listening session policy"""
    tick_hz: float = 60.0
    duplicate_guard_ms: float = 100.0      # Ignore delivered beats closer than this
    no_music_start_ms: float = 5000.0      # No beat since start -> no music
    music_stopped_ms: float = 2000.0       # No beat since last beat -> idle


@dataclass
class Config:
    """Master configuration"""
    version: int = 1                  # Schema version for persisted configs
    beat: BeatDetectionConfig = field(default_factory=BeatDetectionConfig)
    cycle: CycleConfig = field(default_factory=CycleConfig)
    audio: AudioConfig = field(default_factory=AudioConfig)
    session: SessionConfig = field(default_factory=SessionConfig)
    log_level: str = "INFO"           # Logging level (DEBUG/INFO/WARNING/ERROR)


def apply_dict_to_dataclass(target, data) -> None:
    """Recursively apply values from a dict onto a dataclass instance.
    Unknown keys are ignored; tuple fields are rebuilt from JSON lists."""
    if not isinstance(data, dict):
        return

    for key, value in data.items():
        if not hasattr(target, key):
            continue

        current = getattr(target, key)

        if is_dataclass(current):
            if isinstance(value, dict):
                apply_dict_to_dataclass(current, value)
            else:
                log_event("WARN", "Config", "Expected a section, keeping default", key=key)
            continue

        if isinstance(current, tuple):
            if isinstance(value, (list, tuple)):
                setattr(target, key, tuple(value))
            else:
                log_event("WARN", "Config", "Expected a list, keeping default", key=key)
            continue

        setattr(target, key, value)


def _clamped(obj, name: str, default: float, low: float, high: float) -> None:
    try:
        value = float(getattr(obj, name, default))
    except (TypeError, ValueError):
        value = default
    setattr(obj, name, max(low, min(high, value)))


def migrate_config(config: Config, loaded_version) -> None:
    """Upgrade older config structures to the current schema.
    Replaces nulls with defaults, clamps safety ranges and bumps version."""
    try:
        version = int(loaded_version) if loaded_version is not None else 0
    except (TypeError, ValueError):
        version = 0

    defaults = Config()
    for section in ("beat", "cycle", "audio", "session"):
        current = getattr(config, section)
        default_section = getattr(defaults, section)
        for name, default_value in vars(default_section).items():
            if name == "device_index":
                continue
            if getattr(current, name, None) is None:
                setattr(current, name, default_value)

    if version < 1:
        log_event("INFO", "Config", "Migrating legacy config", from_version=version)

    if not isinstance(config.log_level, str) or not config.log_level:
        config.log_level = "INFO"

    beat = config.beat
    _clamped(beat, "min_energy", 1.5, 0.0, 255.0)
    _clamped(beat, "onset_threshold", 0.12, 0.0, 10.0)
    _clamped(beat, "bpm_smoothing", 0.2, 0.01, 1.0)
    _clamped(beat, "bpm_outlier_deviation", 0.4, 0.05, 1.0)
    _clamped(beat, "debounce_fraction", 0.6, 0.1, 1.0)
    beat.history_size = max(2, int(beat.history_size))
    beat.downbeat_interval = max(1, int(beat.downbeat_interval))
    if beat.bpm_min > beat.bpm_max:
        beat.bpm_min, beat.bpm_max = beat.bpm_max, beat.bpm_min
    if beat.debounce_min_ms > beat.debounce_max_ms:
        beat.debounce_min_ms, beat.debounce_max_ms = beat.debounce_max_ms, beat.debounce_min_ms

    config.cycle.cycle_length = max(1, int(config.cycle.cycle_length))
    _clamped(config.cycle, "tempo_deviation", 0.10, 0.0, 1.0)
    _clamped(config.audio, "smoothing", 0.3, 0.0, 0.99)
    _clamped(config.session, "tick_hz", 60.0, 1.0, 240.0)

    config.version = CURRENT_CONFIG_VERSION
