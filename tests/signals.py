"""Synthetic test signals."""

import numpy as np

SAMPLE_RATE = 16000


def tone(seconds: float, amplitude: float = 0.1, freq: float = 220.0,
         sr: int = SAMPLE_RATE) -> np.ndarray:
    t = np.arange(int(seconds * sr)) / sr
    return amplitude * np.sin(2 * np.pi * freq * t)


def silence(seconds: float, sr: int = SAMPLE_RATE) -> np.ndarray:
    return np.zeros(int(seconds * sr))


def burst_train(count: int, period: float = 0.25, burst: float = 0.1,
                amplitude: float = 0.5, freq: float = 1000.0,
                sr: int = SAMPLE_RATE) -> np.ndarray:
    """Hann-shaped tone bursts, one every ``period`` seconds"""
    period_len = int(period * sr)
    burst_len = int(burst * sr)
    t = np.arange(burst_len) / sr
    shaped = amplitude * np.hanning(burst_len) * np.sin(2 * np.pi * freq * t)
    
    out = np.zeros(count * period_len)
    for i in range(count):
        start = i * period_len
        out[start:start + burst_len] = shaped
    return out
