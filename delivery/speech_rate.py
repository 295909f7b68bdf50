"""
Speech Rate Estimation Module
=============================

Syllable-onset counting on a mono buffer, converted to words per minute.

Methods:
- energy-peaks: local maxima of short-frame energy
- spectral-flux: local maxima of positive spectral change (128-bin direct DFT)
- transcript: word count from the transcription collaborator, falling back
  to spectral flux on any failure
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

import numpy as np
from numpy.lib.stride_tricks import sliding_window_view

from .audio_io import encode_wav
from .collaborators import TranscriptionClient
from .config import (
    EngineConfig, DEFAULT_CONFIG, MetricConfig, Thresholds,
    SPEECH_RATE, ENERGY_PEAKS, SPECTRAL_FLUX, TRANSCRIPT, thresholds_for
)
from .utils import as_buffer, clamp, round_half_up, round_to

logger = logging.getLogger(__name__)

# Frames per DFT batch; bounds the frame matrix for long recordings
DFT_CHUNK_FRAMES = 512


@dataclass
class SpeechRateResult:
    """Speech rate estimate and score"""
    words_per_minute: int
    syllables_per_second: float
    score: int
    method: str
    transcript: Optional[str] = None
    tag: str = "FLUENCY"
    
    def to_dict(self) -> Dict:
        return {
            "words_per_minute": self.words_per_minute,
            "syllables_per_second": self.syllables_per_second,
            "score": self.score,
            "method": self.method,
            "transcript": self.transcript,
            "tag": self.tag
        }


def score_speech_rate(wpm: float, thresholds: Thresholds) -> float:
    """
    Score a speaking rate.
    
    0 at or below ``min``, linear up to 100 at ``ideal``, 100 above ``ideal``.
    Fast speech is not penalized.
    """
    if wpm <= 0 or wpm < thresholds.min:
        return 0.0
    if wpm < thresholds.ideal:
        span = thresholds.ideal - thresholds.min
        if span <= 0:
            return 100.0
        return (wpm - thresholds.min) / span * 100
    return 100.0


class SpeechRateEstimator:
    """
    Onset-based and transcript-based speech rate estimation.
    """
    
    def __init__(self, config: EngineConfig = None,
                 transcriber: TranscriptionClient = None):
        """
        Initialize estimator.
        
        Args:
            config: EngineConfig instance
            transcriber: Optional transcription collaborator
        """
        self.config = config or DEFAULT_CONFIG.engine
        self.transcriber = transcriber
        self._basis_cache: Dict[int, tuple] = {}
    
    def _frame_params(self, sample_rate: int):
        frame = int(sample_rate * self.config.ONSET_FRAME_MS / 1000)
        hop = max(1, frame // 2)
        return frame, hop
    
    # =========================================================================
    # ONSET DETECTORS
    # =========================================================================
    
    def frame_energies(self, buffer: np.ndarray, sample_rate: int) -> np.ndarray:
        """Mean-square energy of 20 ms frames with 10 ms hop"""
        frame, hop = self._frame_params(sample_rate)
        if frame <= 0 or buffer.size <= frame:
            return np.array([])
        windows = sliding_window_view(buffer, frame)[0:buffer.size - frame:hop]
        return np.mean(windows ** 2, axis=1)
    
    def detect_syllables_energy(self, audio, sample_rate: int) -> int:
        """
        Count syllable onsets as energy peaks.
        
        A peak is a local maximum above 15% of the loudest frame, at least
        ENERGY_MIN_PEAK_GAP + 1 frames after the previous peak.
        """
        energies = self.frame_energies(as_buffer(audio), sample_rate)
        if energies.size == 0:
            return 0
        
        threshold = float(np.max(energies)) * self.config.ENERGY_PEAK_RATIO
        return self._count_peaks(energies, threshold, self.config.ENERGY_MIN_PEAK_GAP,
                                 last=-10)
    
    def _dft_basis(self, frame: int):
        basis = self._basis_cache.get(frame)
        if basis is None:
            k = np.arange(self.config.SPECTRAL_BINS)[:, None]
            n = np.arange(frame)[None, :]
            angles = 2 * np.pi * k * n / frame
            basis = (np.cos(angles).T, np.sin(angles).T)
            self._basis_cache[frame] = basis
        return basis
    
    def spectral_flux(self, buffer: np.ndarray, sample_rate: int) -> np.ndarray:
        """
        Positive spectral flux per frame.
        
        Magnitudes come from a direct DFT over the first SPECTRAL_BINS bins;
        the first frame is compared against an all-zero spectrum.
        """
        frame, hop = self._frame_params(sample_rate)
        if frame <= 0 or buffer.size < frame:
            return np.array([])
        
        windows = sliding_window_view(buffer, frame)[::hop]
        cos_basis, sin_basis = self._dft_basis(frame)
        
        spectra = []
        for start in range(0, len(windows), DFT_CHUNK_FRAMES):
            chunk = windows[start:start + DFT_CHUNK_FRAMES]
            real = chunk @ cos_basis
            imag = -(chunk @ sin_basis)
            spectra.append(np.sqrt(real ** 2 + imag ** 2))
        magnitudes = np.vstack(spectra)
        
        previous = np.vstack((np.zeros((1, magnitudes.shape[1])), magnitudes[:-1]))
        return np.sum(np.clip(magnitudes - previous, 0, None), axis=1)
    
    def detect_syllables_spectral_flux(self, audio, sample_rate: int) -> int:
        """
        Count syllable onsets as spectral-flux peaks.
        
        Threshold adapts to the recording: max(1.5 x median, 0.5 x p75).
        At least one syllable is reported whenever a frame exists.
        """
        flux = self.spectral_flux(as_buffer(audio), sample_rate)
        if flux.size == 0:
            return 0
        
        ordered = np.sort(flux)
        median = float(ordered[ordered.size // 2])
        p75 = float(ordered[int(ordered.size * 0.75)])
        threshold = max(median * self.config.FLUX_MEDIAN_FACTOR,
                        p75 * self.config.FLUX_P75_FACTOR)
        
        peaks = self._count_peaks(flux, threshold, self.config.FLUX_MIN_PEAK_GAP, last=-5)
        return max(1, peaks)
    
    @staticmethod
    def _count_peaks(values: np.ndarray, threshold: float, min_gap: int, last: int) -> int:
        peaks = 0
        for i in range(1, len(values) - 1):
            if (values[i] > threshold and values[i] > values[i - 1]
                    and values[i] > values[i + 1] and i - last > min_gap):
                peaks += 1
                last = i
        return peaks
    
    def words_per_minute(self, syllables: int, duration_sec: float) -> int:
        """Syllable count to WPM at SYLLABLES_PER_WORD syllables per word"""
        if duration_sec <= 0:
            return 0
        return round_half_up(syllables / duration_sec * 60 / self.config.SYLLABLES_PER_WORD)
    
    def segment_rate(self, audio, sample_rate: int) -> int:
        """Spectral-flux WPM of a segment (duration floored at MIN_DURATION_SEC)"""
        buffer = as_buffer(audio)
        duration = max(buffer.size / sample_rate, self.config.MIN_DURATION_SEC)
        return self.words_per_minute(self.detect_syllables_spectral_flux(buffer, sample_rate),
                                     duration)
    
    # =========================================================================
    # ESTIMATION
    # =========================================================================
    
    def _transcript_rate(self, raw_audio: np.ndarray, sample_rate: int,
                         duration_sec: float, audio_bytes: Optional[bytes],
                         word_count: Optional[int]):
        transcript = None
        if word_count is None:
            if audio_bytes is None:
                audio_bytes = encode_wav(raw_audio, sample_rate)
            result = self.transcriber.transcribe(audio_bytes)
            transcript = result.transcript
            word_count = result.resolve_word_count(duration_sec)
        
        wpm = round_half_up(word_count / duration_sec * 60) if duration_sec > 0 else 0
        return wpm, transcript
    
    def estimate(self, audio, sample_rate: int, metrics: List[MetricConfig],
                 duration_sec: float, method: str = SPECTRAL_FLUX,
                 raw_audio=None, audio_bytes: bytes = None,
                 word_count: int = None) -> SpeechRateResult:
        """
        Estimate and score the speaking rate.
        
        Args:
            audio: Processed (possibly normalized) mono buffer
            sample_rate: Sample rate in Hz
            metrics: Resolved metric config
            duration_sec: Effective speaking duration
            method: 'energy-peaks', 'spectral-flux' or 'transcript'
            raw_audio: Unprocessed buffer sent for transcription
            audio_bytes: Encoded recording sent for transcription as is
            word_count: Precomputed word count (skips the transcription call)
            
        Returns:
            SpeechRateResult
        """
        buffer = as_buffer(audio)
        wpm = 0
        transcript = None
        used_method = method
        
        if method == TRANSCRIPT:
            if word_count is not None or self.transcriber is not None:
                try:
                    raw = buffer if raw_audio is None else as_buffer(raw_audio)
                    wpm, transcript = self._transcript_rate(raw, sample_rate, duration_sec,
                                                            audio_bytes, word_count)
                except Exception as e:
                    logger.warning(f"Transcript speech rate unavailable, using spectral flux: {e}")
                    wpm = 0
            if not wpm:
                used_method = SPECTRAL_FLUX
        
        if not wpm:
            if used_method == ENERGY_PEAKS:
                syllables = self.detect_syllables_energy(buffer, sample_rate)
            else:
                syllables = self.detect_syllables_spectral_flux(buffer, sample_rate)
            wpm = self.words_per_minute(syllables, duration_sec)
        
        syllables_per_second = wpm / 60 * self.config.SYLLABLES_PER_WORD
        score = score_speech_rate(wpm, thresholds_for(metrics, SPEECH_RATE))
        
        logger.debug(f"Speech rate ({used_method}): {wpm} WPM, score {score:.1f}")
        
        return SpeechRateResult(
            words_per_minute=wpm,
            syllables_per_second=round_to(syllables_per_second, 1),
            score=round_half_up(clamp(score, 0, 100)),
            method=used_method,
            transcript=transcript
        )
