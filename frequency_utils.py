from typing import Sequence

import numpy as np


def bin_width_hz(sample_rate: float, bin_count: int) -> float:
    """Width of one analyser bin: Nyquist spread uniformly over the bins."""
    if bin_count <= 0 or sample_rate <= 0:
        return 0.0
    return (sample_rate / 2.0) / bin_count


def band_weights(
    bin_count: int,
    sample_rate: float,
    kick_band: Sequence[float] = (40.0, 120.0),
    kick_weight: float = 3.0,
    percussion_band: Sequence[float] = (120.0, 200.0),
    percussion_weight: float = 1.5,
    other_weight: float = 0.5,
) -> np.ndarray:
    """Per-bin weights emphasising kick drum and low percussion.

    A bin sitting exactly on the kick/percussion boundary belongs to the
    kick band.
    """
    freqs = np.arange(bin_count, dtype=np.float64) * bin_width_hz(sample_rate, bin_count)
    weights = np.full(bin_count, other_weight, dtype=np.float64)
    in_percussion = (freqs >= percussion_band[0]) & (freqs <= percussion_band[1])
    in_kick = (freqs >= kick_band[0]) & (freqs <= kick_band[1])
    weights[in_percussion] = percussion_weight
    weights[in_kick] = kick_weight
    return weights


def weighted_energy(magnitudes, sample_rate: float, weights: np.ndarray | None = None, **band_kwargs) -> float:
    """Frequency-weighted mean magnitude of one frame.

    ``weights`` can be passed in to skip rebuilding them every tick; it
    must match the number of bins.
    """
    data = np.asarray(magnitudes, dtype=np.float64)
    if data.size == 0:
        return 0.0
    if weights is None or len(weights) != data.size:
        weights = band_weights(data.size, sample_rate, **band_kwargs)
    total = float(np.sum(weights))
    if total <= 0:
        return 0.0
    return float(np.dot(data, weights) / total)


def byte_magnitudes(spectrum: np.ndarray, min_db: float = -100.0, max_db: float = -30.0) -> np.ndarray:
    """Map linear FFT magnitudes onto 0..255 over the [min_db, max_db] range."""
    if spectrum is None or len(spectrum) == 0:
        return np.zeros(0, dtype=np.float64)
    span = max_db - min_db
    if span <= 0:
        return np.zeros(len(spectrum), dtype=np.float64)
    db = 20.0 * np.log10(np.maximum(spectrum, 1e-12))
    scaled = 255.0 * (db - min_db) / span
    return np.floor(np.clip(scaled, 0.0, 255.0))
