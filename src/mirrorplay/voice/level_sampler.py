"""
Loudness sampling for a live microphone stream.

The sampler keeps the most recent analysis window of PCM16 audio and turns it
into a normalized level in [0, 1]. The level is derived the way a browser
analyser node reports byte frequency data: a windowed FFT, magnitudes in
decibels mapped onto 0..255, then the mean of the bins divided by a fixed
reference ceiling.
"""

import logging
import threading
from collections.abc import Callable

import numpy as np

logger = logging.getLogger(__name__)

FFT_SIZE = 256
MIN_DECIBELS = -100.0
MAX_DECIBELS = -30.0
REFERENCE_CEILING = 128.0


def byte_frequency_data(window: np.ndarray, fft_size: int = FFT_SIZE) -> np.ndarray:
    """
    Compute byte-scaled frequency magnitudes for one analysis window.

    Args:
        window: Float samples in [-1, 1]; zero-padded or truncated to fft_size
        fft_size: FFT size; yields fft_size // 2 bins

    Returns:
        uint8 array of fft_size // 2 bins
    """
    x = np.zeros(fft_size, dtype=np.float64)
    n = min(len(window), fft_size)
    if n:
        x[-n:] = window[-n:]

    spectrum = np.fft.rfft(x * np.blackman(fft_size))[: fft_size // 2]
    magnitude = np.abs(spectrum) / fft_size
    decibels = 20.0 * np.log10(np.maximum(magnitude, 1e-12))

    scaled = 255.0 * (decibels - MIN_DECIBELS) / (MAX_DECIBELS - MIN_DECIBELS)
    return np.clip(scaled, 0, 255).astype(np.uint8)


class AudioLevelSampler:
    """
    Produces a normalized loudness value from the latest captured audio.

    feed() is called from the recorder thread with each chunk; sample() is
    called from the sampling timer. Listeners (e.g. a level meter) receive
    every sampled value.
    """

    def __init__(
        self,
        fft_size: int = FFT_SIZE,
        reference_ceiling: float = REFERENCE_CEILING,
    ):
        self.fft_size = fft_size
        self.reference_ceiling = reference_ceiling

        self._lock = threading.Lock()
        self._window = np.zeros(0, dtype=np.float32)
        self._level = 0.0
        self._listeners: list[Callable[[float], None]] = []

    def add_listener(self, callback: Callable[[float], None]) -> None:
        self._listeners.append(callback)

    def feed(self, chunk: bytes, channels: int = 1) -> None:
        """Append a PCM16 chunk, keeping only the last fft_size mono samples."""
        samples = np.frombuffer(chunk, dtype=np.int16)
        if channels > 1:
            usable = len(samples) - len(samples) % channels
            samples = samples[:usable].reshape(-1, channels).mean(axis=1)
        mono = samples.astype(np.float32) / 32768.0

        with self._lock:
            self._window = np.concatenate((self._window, mono))[-self.fft_size :]

    def sample(self) -> float:
        """Compute the current level, publish it and return it."""
        with self._lock:
            window = self._window.copy()

        if window.size == 0:
            level = 0.0
        else:
            data = byte_frequency_data(window, self.fft_size)
            level = min(float(data.mean()) / self.reference_ceiling, 1.0)

        self._level = level
        for listener in self._listeners:
            try:
                listener(level)
            except Exception as e:
                logger.debug(f"Level listener failed: {e}")
        return level

    def reset(self) -> None:
        with self._lock:
            self._window = np.zeros(0, dtype=np.float32)
        self._level = 0.0

    @property
    def level(self) -> float:
        """Most recently sampled level."""
        return self._level
