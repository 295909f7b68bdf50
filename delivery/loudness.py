"""
Loudness Measurement Module
===========================

Gated integrated loudness (LUFS-style) and loudness normalization.

Features:
- 400 ms measurement blocks with 75% overlap
- Two-stage gating (absolute -70 dB, then relative -10 dB)
- Normalization to a target loudness with hard clipping to [-1, 1]
- Leading-window noise floor estimate

All operations are deterministic and logged.
"""

import numpy as np
from dataclasses import dataclass
from typing import Dict
import logging

from .config import EngineConfig, DEFAULT_CONFIG
from .utils import as_buffer, segment_db

logger = logging.getLogger(__name__)


@dataclass
class NormalizationResult:
    """Result of loudness normalization"""
    normalized: np.ndarray
    current_lufs: float
    gain_db: float
    gain_linear: float
    
    def to_dict(self) -> Dict:
        return {
            "current_lufs": self.current_lufs,
            "gain_db": self.gain_db,
            "gain_linear": self.gain_linear,
            "samples": int(self.normalized.size)
        }


class LoudnessMeter:
    """
    Gated integrated loudness meter.
    
    Long silent stretches are removed by the absolute gate; the relative gate
    then drops quiet blocks relative to the first-pass average.
    """
    
    def __init__(self, config: EngineConfig = None):
        """
        Initialize meter with frozen config.
        
        Args:
            config: EngineConfig instance (uses DEFAULT if None)
        """
        self.config = config or DEFAULT_CONFIG.engine
    
    def block_mean_squares(self, buffer: np.ndarray, sample_rate: int) -> np.ndarray:
        """
        Mean-square energy of every measurement block.
        
        Args:
            buffer: Mono audio samples
            sample_rate: Sample rate in Hz
            
        Returns:
            Array of per-block mean squares (empty if the buffer is shorter
            than one block)
        """
        block_size = int(sample_rate * self.config.LUFS_BLOCK_MS / 1000)
        overlap = int(block_size * self.config.LUFS_BLOCK_OVERLAP)
        hop = max(1, block_size - overlap)
        
        if block_size <= 0 or buffer.size <= block_size:
            return np.array([])
        
        starts = np.arange(0, buffer.size - block_size, hop)
        
        # Cumulative energy gives every block sum in O(n)
        energy = np.concatenate(([0.0], np.cumsum(buffer ** 2)))
        return (energy[starts + block_size] - energy[starts]) / block_size
    
    def gated_mean_square(self, buffer: np.ndarray, sample_rate: int) -> float:
        """
        Mean square of the blocks surviving both gates.
        
        Returns 0 when there are no blocks or none pass the absolute gate.
        """
        blocks = self.block_mean_squares(buffer, sample_rate)
        if blocks.size == 0:
            return 0.0
        
        absolute_gate = 10 ** (self.config.ABSOLUTE_GATE_DB / 10)
        gated = blocks[blocks >= absolute_gate]
        if gated.size == 0:
            return 0.0
        
        average = float(np.mean(gated))
        relative_gate = average * 10 ** (self.config.RELATIVE_GATE_DB / 10)
        final_blocks = gated[gated >= relative_gate]
        if final_blocks.size == 0:
            return average
        
        return float(np.mean(final_blocks))
    
    def calculate_lufs(self, audio, sample_rate: int) -> float:
        """
        Integrated loudness of a buffer.
        
        Args:
            audio: Mono audio samples in [-1, 1]
            sample_rate: Sample rate in Hz
            
        Returns:
            Loudness in LUFS, -inf for empty or fully gated buffers
        """
        buffer = as_buffer(audio)
        if buffer.size == 0:
            return -np.inf
        
        mean_square = self.gated_mean_square(buffer, sample_rate)
        if mean_square == 0:
            return -np.inf
        
        return float(self.config.LUFS_OFFSET + 10 * np.log10(mean_square))
    
    def noise_floor(self, audio, sample_rate: int) -> float:
        """
        Noise floor in dB from the leading window of a recording.
        
        Args:
            audio: Mono audio samples
            sample_rate: Sample rate in Hz
            
        Returns:
            RMS level of the first NOISE_FLOOR_WINDOW_MS in dB (-inf if empty)
        """
        buffer = as_buffer(audio)
        window = int(sample_rate * self.config.NOISE_FLOOR_WINDOW_MS / 1000)
        segment = buffer[:min(window, buffer.size)]
        if segment.size == 0:
            return -np.inf
        return segment_db(segment, self.config.DB_FLOOR)

    def rms_db(self, audio) -> float:
        """Whole-buffer RMS level in dB (floored, -inf if empty)"""
        return segment_db(as_buffer(audio), self.config.DB_FLOOR)


class Normalizer:
    """
    Scale a buffer toward a target loudness.
    """
    
    def __init__(self, config: EngineConfig = None, meter: LoudnessMeter = None):
        self.config = config or DEFAULT_CONFIG.engine
        self.meter = meter or LoudnessMeter(self.config)
    
    def normalize_to_lufs(self, audio, sample_rate: int,
                          target_lufs: float = None) -> NormalizationResult:
        """
        Normalize audio to a target loudness.
        
        Pure silence (non-finite loudness) is returned unchanged with unit gain.
        
        Args:
            audio: Mono audio samples
            sample_rate: Sample rate in Hz
            target_lufs: Target loudness (uses config default if None)
            
        Returns:
            NormalizationResult with the clipped, scaled buffer
        """
        target_lufs = self.config.TARGET_LUFS if target_lufs is None else target_lufs
        buffer = as_buffer(audio)
        
        current_lufs = self.meter.calculate_lufs(buffer, sample_rate)
        if not np.isfinite(current_lufs):
            logger.debug("Loudness not measurable, skipping normalization")
            return NormalizationResult(
                normalized=buffer,
                current_lufs=-np.inf,
                gain_db=0.0,
                gain_linear=1.0
            )
        
        gain_db = target_lufs - current_lufs
        gain_linear = 10 ** (gain_db / 20)
        normalized = np.clip(buffer * gain_linear, -1.0, 1.0)
        
        logger.debug(f"Normalized {current_lufs:.1f} -> {target_lufs:.1f} LUFS "
                     f"(gain {gain_db:+.1f} dB)")
        
        return NormalizationResult(
            normalized=normalized,
            current_lufs=current_lufs,
            gain_db=gain_db,
            gain_linear=gain_linear
        )
