"""
Segment Analyzers
=================

Independent per-metric scorers for a complete mono recording.

- VolumeAnalyzer: overall level against the volume thresholds (ENERGY)
- AccelerationAnalyzer: level and rate change between halves (DYNAMICS)
- ResponseTimeAnalyzer: delay before the first sound (READINESS)
- PauseAnalyzer: pause ratio and pause lengths (FLUIDITY)

Voice-activity segments are supplied by the caller; no VAD runs here.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import numpy as np

from .config import (
    EngineConfig, DEFAULT_CONFIG, MetricConfig,
    VOLUME, RESPONSE_TIME, PAUSE_MANAGEMENT, thresholds_for
)
from .speech_rate import SpeechRateEstimator
from .utils import as_buffer, clamp, compute_rms, round_half_up, round_to, segment_db

logger = logging.getLogger(__name__)


# ============================================================================
# VOICE ACTIVITY INPUT
# ============================================================================

@dataclass
class SpeechSegment:
    """Detected speech span, in milliseconds"""
    start: float
    end: float
    duration: float = None
    
    def __post_init__(self):
        if self.duration is None:
            self.duration = self.end - self.start
    
    @classmethod
    def from_dict(cls, data: Dict) -> "SpeechSegment":
        return cls(start=float(data["start"]), end=float(data["end"]),
                   duration=float(data["duration"]) if "duration" in data else None)


@dataclass
class VADMetrics:
    """Externally computed voice-activity summary (times in milliseconds)"""
    speech_segments: List[SpeechSegment] = field(default_factory=list)
    total_speech_time: float = 0.0
    total_silence_time: float = 0.0
    speech_ratio: float = 0.0
    is_speaking: bool = False
    speech_probability: float = 0.0
    
    @classmethod
    def from_dict(cls, data: Dict) -> "VADMetrics":
        """Accepts snake_case or camelCase keys"""
        def pick(snake, camel, default):
            return data.get(snake, data.get(camel, default))
        
        segments = pick("speech_segments", "speechSegments", []) or []
        return cls(
            speech_segments=[SpeechSegment.from_dict(s) for s in segments],
            total_speech_time=float(pick("total_speech_time", "totalSpeechTime", 0.0)),
            total_silence_time=float(pick("total_silence_time", "totalSilenceTime", 0.0)),
            speech_ratio=float(pick("speech_ratio", "speechRatio", 0.0)),
            is_speaking=bool(pick("is_speaking", "isSpeaking", False)),
            speech_probability=float(pick("speech_probability", "speechProbability", 0.0))
        )


# ============================================================================
# RESULTS
# ============================================================================

@dataclass
class VolumeResult:
    average_db: float
    score: int
    tag: str = "ENERGY"
    
    def to_dict(self) -> Dict:
        return {"average_db": self.average_db, "score": self.score, "tag": self.tag}


@dataclass
class AccelerationResult:
    score: int
    segment1_volume: float
    segment2_volume: float
    segment1_rate: int
    segment2_rate: int
    is_accelerating: bool
    tag: str = "DYNAMICS"
    
    def to_dict(self) -> Dict:
        return {
            "score": self.score,
            "segment1_volume": self.segment1_volume,
            "segment2_volume": self.segment2_volume,
            "segment1_rate": self.segment1_rate,
            "segment2_rate": self.segment2_rate,
            "is_accelerating": self.is_accelerating,
            "tag": self.tag
        }


@dataclass
class ResponseTimeResult:
    response_time_ms: int
    score: int
    tag: str = "READINESS"
    
    def to_dict(self) -> Dict:
        return {"response_time_ms": self.response_time_ms, "score": self.score, "tag": self.tag}


@dataclass
class PauseResult:
    pause_count: int
    avg_pause_duration: float
    max_pause_duration: float
    pause_ratio: float
    score: int
    tag: str = "FLUIDITY"
    
    def to_dict(self) -> Dict:
        return {
            "pause_count": self.pause_count,
            "avg_pause_duration": self.avg_pause_duration,
            "max_pause_duration": self.max_pause_duration,
            "pause_ratio": self.pause_ratio,
            "score": self.score,
            "tag": self.tag
        }


# ============================================================================
# ANALYZERS
# ============================================================================

class VolumeAnalyzer:
    """
    Score the overall level of a recording.
    
    Piecewise over [min, ideal, mid, max] with mid = (ideal + max) / 2:
    0 -> 90 from min to ideal, peak of 100 at mid, back to 90 at max,
    then 5 points lost per dB above max.
    """
    
    def __init__(self, config: EngineConfig = None):
        self.config = config or DEFAULT_CONFIG.engine
    
    def score_db(self, db: float, metrics: List[MetricConfig]) -> float:
        t = thresholds_for(metrics, VOLUME)
        
        if t.ideal <= db <= t.max:
            midpoint = (t.ideal + t.max) / 2
            if db <= midpoint:
                span = midpoint - t.ideal
                return 90 + ((db - t.ideal) / span * 10 if span > 0 else 10)
            return 100 - (db - midpoint) / (t.max - midpoint) * 10
        if db > t.max:
            return max(0.0, 90 - (db - t.max) * self.config.VOLUME_DECAY_PER_DB)
        if db >= t.min and t.ideal > t.min:
            return (db - t.min) / (t.ideal - t.min) * 90
        return 0.0
    
    def analyze(self, audio, metrics: List[MetricConfig],
                device_db_offset: float = 0.0) -> VolumeResult:
        """
        Args:
            audio: Mono buffer (unnormalized)
            metrics: Resolved metric config
            device_db_offset: target - reference level of the device (0 if
                uncalibrated)
        """
        db = segment_db(as_buffer(audio), self.config.DB_FLOOR) + device_db_offset
        score = self.score_db(db, metrics) if math.isfinite(db) else 0.0
        
        return VolumeResult(
            average_db=round_to(db, 1),
            score=round_half_up(clamp(score, 0, 100))
        )


class AccelerationAnalyzer:
    """
    Compare level and speaking rate between the first and second half.
    """
    
    def __init__(self, config: EngineConfig = None,
                 estimator: SpeechRateEstimator = None):
        self.config = config or DEFAULT_CONFIG.engine
        self.estimator = estimator or SpeechRateEstimator(self.config)
    
    def analyze(self, audio, sample_rate: int,
                metrics: List[MetricConfig] = None) -> AccelerationResult:
        buffer = as_buffer(audio)
        midpoint = buffer.size // 2
        first, second = buffer[:midpoint], buffer[midpoint:]
        
        vol1 = segment_db(first, self.config.DB_FLOOR)
        vol2 = segment_db(second, self.config.DB_FLOOR)
        rate1 = self.estimator.segment_rate(first, sample_rate)
        rate2 = self.estimator.segment_rate(second, sample_rate)
        
        volume_increase = vol2 - vol1
        if not math.isfinite(volume_increase):
            volume_increase = 0.0
        rate_increase = rate2 - rate1
        
        is_accelerating = volume_increase > 0 or rate_increase > 5
        score = 50 + max(0.0, volume_increase * 2 + rate_increase * 0.5)
        
        return AccelerationResult(
            score=round_half_up(clamp(score, 0, 100)),
            segment1_volume=round_to(vol1, 1),
            segment2_volume=round_to(vol2, 1),
            segment1_rate=rate1,
            segment2_rate=rate2,
            is_accelerating=is_accelerating
        )


class ResponseTimeAnalyzer:
    """
    Time until the recording first rises above its own noise floor.
    
    Threshold names are inverted for this metric: ``min`` is the slower
    bound (50 points) and ``ideal`` the fast bound (100 points).
    """
    
    def __init__(self, config: EngineConfig = None):
        self.config = config or DEFAULT_CONFIG.engine
    
    def adaptive_noise_floor(self, buffer: np.ndarray, sample_rate: int) -> float:
        window = int(sample_rate * self.config.NOISE_FLOOR_WINDOW_MS / 1000)
        segment = buffer[:min(window, buffer.size)]
        if segment.size == 0:
            return self.config.EMPTY_NOISE_FLOOR
        return max(self.config.MIN_NOISE_FLOOR,
                   compute_rms(segment) * self.config.NOISE_FLOOR_FACTOR)
    
    def score_response(self, response_ms: float, metrics: List[MetricConfig]) -> float:
        t = thresholds_for(metrics, RESPONSE_TIME)
        if response_ms <= t.ideal:
            return 100.0
        if response_ms <= t.min:
            return 100 - (response_ms - t.ideal) / (t.min - t.ideal) * 50
        return max(0.0, 50 * (1 - (response_ms - t.min) / self.config.RESPONSE_DECAY_MS))
    
    def analyze(self, audio, sample_rate: int,
                metrics: List[MetricConfig]) -> ResponseTimeResult:
        buffer = as_buffer(audio)
        noise_floor = self.adaptive_noise_floor(buffer, sample_rate)
        
        above = np.flatnonzero(np.abs(buffer) > noise_floor)
        # Speech from the first sample leaves nothing above its own floor
        onset = int(above[0]) if above.size else 0
        
        response_ms = round_half_up(onset / sample_rate * 1000)
        score = self.score_response(response_ms, metrics)
        
        return ResponseTimeResult(
            response_time_ms=response_ms,
            score=round_half_up(clamp(score, 0, 100))
        )


class PauseAnalyzer:
    """
    Pause ratio and pause statistics.
    
    Uses caller-supplied speech segments when present, otherwise 50 ms frame
    energy thresholding.
    """
    
    def __init__(self, config: EngineConfig = None):
        self.config = config or DEFAULT_CONFIG.engine
    
    def pauses_from_segments(self, vad: VADMetrics, total_ms: float) -> List[float]:
        """Gaps (ms) between sorted segments plus the trailing gap"""
        ordered = sorted(vad.speech_segments, key=lambda s: s.start)
        pauses = []
        cursor = 0.0
        for segment in ordered:
            if segment.start > cursor:
                pauses.append(segment.start - cursor)
            cursor = max(cursor, segment.end)
        if cursor < total_ms:
            pauses.append(total_ms - cursor)
        
        min_pause_ms = self.config.MIN_PAUSE_SEC * 1000
        return [p for p in pauses if p >= min_pause_ms]
    
    def pauses_from_energy(self, buffer: np.ndarray, sample_rate: int):
        """
        Silent runs of 50 ms frames.
        
        Returns:
            Tuple of (pause durations in seconds, silent frames, total frames)
        """
        frame = int(sample_rate * self.config.PAUSE_FRAME_MS / 1000)
        if frame <= 0 or buffer.size <= frame:
            return [], 0, 0
        
        frame_sec = frame / sample_rate
        pauses = []
        silent_frames = 0
        total_frames = 0
        current_silent = 0.0
        
        for start in range(0, buffer.size - frame, frame):
            silent = compute_rms(buffer[start:start + frame]) < self.config.PAUSE_SILENCE_RMS
            if silent:
                silent_frames += 1
                current_silent += frame_sec
            else:
                if current_silent >= self.config.MIN_PAUSE_SEC:
                    pauses.append(current_silent)
                current_silent = 0.0
            total_frames += 1
        
        if current_silent >= self.config.MIN_PAUSE_SEC:
            pauses.append(current_silent)
        
        return pauses, silent_frames, total_frames
    
    def score_ratio(self, pause_ratio: float, metrics: List[MetricConfig]) -> float:
        t = thresholds_for(metrics, PAUSE_MANAGEMENT)
        allowance = self.config.PAUSE_RATIO_ALLOWANCE
        if pause_ratio <= allowance:
            return 100.0
        if t.max <= 0:
            return 0.0
        return max(0.0, 100 - (pause_ratio - allowance) / t.max * 100)
    
    def analyze(self, audio, sample_rate: int, metrics: List[MetricConfig],
                vad: Optional[VADMetrics] = None) -> PauseResult:
        buffer = as_buffer(audio)
        
        if vad is not None and vad.speech_segments:
            pause_ratio = 1 - clamp(vad.speech_ratio, 0, 1)
            total_ms = buffer.size / sample_rate * 1000
            pauses = [p / 1000 for p in self.pauses_from_segments(vad, total_ms)]
        else:
            pauses, silent_frames, total_frames = self.pauses_from_energy(buffer, sample_rate)
            pause_ratio = silent_frames / max(1, total_frames)
        
        max_pause = max(pauses) if pauses else 0.0
        avg_pause = sum(pauses) / len(pauses) if pauses else 0.0
        score = self.score_ratio(pause_ratio, metrics)
        
        return PauseResult(
            pause_count=len(pauses),
            avg_pause_duration=round_to(avg_pause, 2),
            max_pause_duration=round_to(max_pause, 2),
            pause_ratio=round_to(pause_ratio, 2),
            score=round_half_up(clamp(score, 0, 100))
        )
