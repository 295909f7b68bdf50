"""Numeric helpers shared by the scoring components."""

import math

import numpy as np


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves away from -inf (0.5 -> 1, 2.5 -> 3)"""
    return int(math.floor(value + 0.5))


def round_to(value: float, digits: int) -> float:
    """Half-up rounding to ``digits`` decimals; non-finite values pass through"""
    if not math.isfinite(value):
        return value
    scale = 10 ** digits
    return math.floor(value * scale + 0.5) / scale


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def as_buffer(audio) -> np.ndarray:
    """Coerce any sample sequence to a 1-D float64 array"""
    buffer = np.asarray(audio, dtype=np.float64)
    if buffer.ndim != 1:
        buffer = buffer.reshape(-1)
    return buffer


def compute_rms(buffer: np.ndarray) -> float:
    if buffer.size == 0:
        return 0.0
    return float(np.sqrt(np.mean(buffer ** 2)))


def segment_db(buffer: np.ndarray, floor: float = 1e-10) -> float:
    """
    RMS level in dB (relative to 1.0).
    
    The RMS is floored before the log so silence gives a large negative
    number instead of -inf; an empty buffer still returns -inf.
    """
    if buffer.size == 0:
        return -np.inf
    return float(20 * np.log10(max(compute_rms(buffer), floor)))
