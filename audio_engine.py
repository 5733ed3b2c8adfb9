"""
bailabeat - Audio Engine
Captures microphone audio and turns each block into an analyser frame
(byte-scaled FFT magnitudes) for the beat detector.
Uses sounddevice for capture and scipy for the kick-drum band-pass.
"""

import queue
import time
from typing import Callable, Optional

import numpy as np
from scipy.signal import iirpeak, lfilter

from beat_detector import SpectrumFrame
from config import AudioConfig
from frequency_utils import byte_magnitudes
from logging_utils import log_event


def _sounddevice():
    # Deferred so the analysis path works on hosts without PortAudio
    import sounddevice as sd
    return sd


class AudioEngine:
    """
    Microphone front-end.

    Capture runs on the sounddevice callback thread; analysed frames are
    handed to the tick loop through a small queue where the newest frame
    wins.
    """

    def __init__(self, config: AudioConfig, clock: Callable[[], float] = time.perf_counter):
        self.config = config
        self._clock = clock
        self.stream = None
        self.running = False

        self._frames: queue.Queue = queue.Queue(maxsize=max(1, config.queue_size))
        self._window = np.blackman(config.fft_size)
        self._reset_analysis()

    def _reset_analysis(self) -> None:
        cfg = self.config
        self._ring = np.zeros(cfg.fft_size, dtype=np.float64)
        self._smoothed = np.zeros(cfg.fft_size // 2, dtype=np.float64)
        self._filter_b: Optional[np.ndarray] = None
        self._filter_a: Optional[np.ndarray] = None
        self._filter_zi: Optional[np.ndarray] = None
        self._blocks = 0
        self._overflows = 0
        self._init_bandpass()

    def _init_bandpass(self) -> None:
        """Second-order band-pass centred on the kick drum"""
        cfg = self.config
        if not cfg.bandpass_enabled:
            return
        nyquist = cfg.sample_rate / 2
        if not 0 < cfg.bandpass_center_hz < nyquist or cfg.bandpass_q <= 0:
            log_event("WARN", "Audio", "Band-pass disabled, bad parameters",
                      center=cfg.bandpass_center_hz, q=cfg.bandpass_q)
            return
        self._filter_b, self._filter_a = iirpeak(cfg.bandpass_center_hz, cfg.bandpass_q, fs=cfg.sample_rate)
        self._filter_zi = np.zeros(max(len(self._filter_a), len(self._filter_b)) - 1)

    def start(self) -> None:
        """Start microphone capture"""
        if self.running:
            return

        sd = _sounddevice()
        cfg = self.config
        self._reset_analysis()
        self._drain()

        try:
            self.stream = sd.InputStream(
                device=cfg.device_index,
                channels=cfg.channels,
                samplerate=cfg.sample_rate,
                blocksize=cfg.block_size,
                dtype='float32',
                callback=self._audio_callback,
            )
            self.stream.start()
        except sd.PortAudioError as e:
            log_event("ERROR", "Audio", "Failed to start capture", error=e)
            self.stream = None
            raise

        self.running = True
        log_event("INFO", "Audio", "Capture started", device=cfg.device_index,
                  sample_rate=cfg.sample_rate, fft_size=cfg.fft_size)

    def stop(self) -> None:
        """Stop capture and discard pending frames"""
        self.running = False
        if self.stream is not None:
            self.stream.stop()
            self.stream.close()
            self.stream = None
            log_event("INFO", "Audio", "Stopped", blocks=self._blocks, overflows=self._overflows)
        self._drain()

    def _audio_callback(self, indata, frames, time_info, status):
        """sounddevice callback - analyse the block and queue the frame"""
        if status:
            self._overflows += 1
            log_event("WARN", "Audio", "Stream status", status=status)
        if not self.running:
            return
        frame = self.analyse_block(indata, self._clock() * 1000.0)
        self._push(frame)

    def analyse_block(self, block: np.ndarray, now_ms: float) -> SpectrumFrame:
        """Filter, window and transform the newest samples into an analyser frame."""
        cfg = self.config
        data = np.asarray(block, dtype=np.float64)
        if data.ndim == 2:
            mono = data.mean(axis=1) if data.shape[1] > 1 else data[:, 0]
        else:
            mono = data.ravel()

        if self._filter_b is not None and mono.size:
            mono, self._filter_zi = lfilter(self._filter_b, self._filter_a, mono, zi=self._filter_zi)

        n = mono.size
        if n >= cfg.fft_size:
            self._ring[:] = mono[-cfg.fft_size:]
        elif n:
            self._ring[:-n] = self._ring[n:]
            self._ring[-n:] = mono

        spectrum = np.abs(np.fft.rfft(self._ring * self._window))[:cfg.fft_size // 2] / cfg.fft_size
        s = cfg.smoothing
        self._smoothed = s * self._smoothed + (1.0 - s) * spectrum
        self._blocks += 1

        return SpectrumFrame(
            magnitudes=byte_magnitudes(self._smoothed, cfg.min_db, cfg.max_db),
            sample_rate_hz=cfg.sample_rate,
            now_ms=now_ms,
        )

    def _push(self, frame: SpectrumFrame) -> None:
        if self._frames.full():
            try:
                self._frames.get_nowait()
            except queue.Empty:
                pass
        try:
            self._frames.put_nowait(frame)
        except queue.Full:
            pass

    def poll_frame(self) -> Optional[SpectrumFrame]:
        """Return the newest analysed frame, or None if nothing arrived."""
        latest = None
        while True:
            try:
                latest = self._frames.get_nowait()
            except queue.Empty:
                return latest

    def _drain(self) -> None:
        while True:
            try:
                self._frames.get_nowait()
            except queue.Empty:
                return

    @staticmethod
    def list_devices() -> list[dict]:
        """Input-capable devices as dicts with index, name, inputs, sample rate"""
        sd = _sounddevice()
        devices = []
        for i, d in enumerate(sd.query_devices()):
            if d['max_input_channels'] <= 0:
                continue
            devices.append({
                'index': i,
                'name': d['name'],
                'inputs': d['max_input_channels'],
                'sample_rate': d['default_samplerate'],
            })
        return devices
