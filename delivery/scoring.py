"""
Score Aggregation Module
========================

Combines the per-metric results into an overall score, a feedback tier and
rule-based feedback lines.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import numpy as np

from .config import (
    EngineConfig, DEFAULT_CONFIG, MetricConfig, METRIC_IDS,
    VOLUME, SPEECH_RATE, ACCELERATION, RESPONSE_TIME, PAUSE_MANAGEMENT
)
from .analyzers import VolumeResult, AccelerationResult, ResponseTimeResult, PauseResult
from .speech_rate import SpeechRateResult
from .utils import clamp, round_half_up

logger = logging.getLogger(__name__)

# Feedback lines
VOLUME_FEEDBACK = "Speak louder and keep your voice energy more stable."
SLOW_RATE_FEEDBACK = "Try speaking a bit faster for more natural fluency."
FAST_RATE_FEEDBACK = "Slow down slightly to improve clarity."
RESPONSE_FEEDBACK = "Start speaking sooner after the prompt."
PAUSE_FEEDBACK = "Reduce long pauses to keep smoother flow."
ACCELERATION_FEEDBACK = "Build momentum from start to finish."
OUTSTANDING_FEEDBACK = "Excellent work. Strong delivery and control."
POSITIVE_FEEDBACK = "Great job. Keep this rhythm and consistency."
NO_SPEECH_FEEDBACK = "No speech detected. Please try again and speak clearly."


@dataclass
class NormalizationDiagnostics:
    """Rounded loudness trace of a calibrated analysis"""
    original_lufs: float
    calibrated_lufs: float
    final_lufs: float
    device_gain: float
    normalization_gain: float
    
    def to_dict(self) -> Dict:
        return {
            "original_lufs": self.original_lufs,
            "calibrated_lufs": self.calibrated_lufs,
            "final_lufs": self.final_lufs,
            "device_gain": self.device_gain,
            "normalization_gain": self.normalization_gain
        }


@dataclass
class AnalysisResult:
    """Complete delivery analysis for one recording"""
    volume: VolumeResult
    speech_rate: SpeechRateResult
    acceleration: AccelerationResult
    response_time: ResponseTimeResult
    pause_management: PauseResult
    overall_score: int
    emotional_feedback: str
    feedback: List[str] = field(default_factory=list)
    normalization: Optional[NormalizationDiagnostics] = None
    
    @property
    def pauses(self) -> PauseResult:
        return self.pause_management
    
    @property
    def metrics(self) -> Dict[str, int]:
        """Flat per-metric score summary"""
        return {
            "volume": self.volume.score,
            "speechRate": self.speech_rate.score,
            "pauses": self.pause_management.score,
            "latency": self.response_time.score,
            "endIntensity": self.acceleration.score
        }
    
    def to_dict(self) -> Dict:
        return {
            "volume": self.volume.to_dict(),
            "speech_rate": self.speech_rate.to_dict(),
            "acceleration": self.acceleration.to_dict(),
            "response_time": self.response_time.to_dict(),
            "pause_management": self.pause_management.to_dict(),
            "overall_score": self.overall_score,
            "emotional_feedback": self.emotional_feedback,
            "feedback": list(self.feedback),
            "normalization": self.normalization.to_dict() if self.normalization else None,
            "metrics": self.metrics
        }
    
    def to_csv_row(self) -> Dict:
        """Flatten result for CSV export"""
        row = {
            "overall_score": self.overall_score,
            "emotional_feedback": self.emotional_feedback,
            "average_db": self.volume.average_db,
            "words_per_minute": self.speech_rate.words_per_minute,
            "speech_rate_method": self.speech_rate.method,
            "response_time_ms": self.response_time.response_time_ms,
            "pause_count": self.pause_management.pause_count,
            "pause_ratio": self.pause_management.pause_ratio,
            "is_accelerating": self.acceleration.is_accelerating,
        }
        row.update({f"{name}_score": score for name, score in self.metrics.items()})
        if self.normalization:
            row.update(self.normalization.to_dict())
        return row


def normalized_weights(metrics: List[MetricConfig]) -> Dict[str, float]:
    """
    Weights of the five metrics scaled to sum to 1.
    
    Metrics absent from the config weigh 0. The divisor is at least 1 so an
    all-zero config yields all-zero weights.
    """
    raw = {metric_id: 0.0 for metric_id in METRIC_IDS}
    for metric in metrics:
        if metric.id in raw:
            raw[metric.id] = float(metric.weight)
    
    total = max(1.0, sum(raw.values()))
    return {metric_id: weight / total for metric_id, weight in raw.items()}


class ScoreAggregator:
    """
    Weighted overall score, tier and feedback.
    """
    
    def __init__(self, config: EngineConfig = None):
        self.config = config or DEFAULT_CONFIG.engine
    
    def tier(self, overall_score: int) -> str:
        if overall_score >= self.config.EXCELLENT_SCORE:
            return "excellent"
        if overall_score >= self.config.GOOD_SCORE:
            return "good"
        return "poor"
    
    def build_feedback(self, volume: VolumeResult, speech_rate: SpeechRateResult,
                       acceleration: AccelerationResult, response_time: ResponseTimeResult,
                       pauses: PauseResult, overall_score: int) -> List[str]:
        """Ordered feedback lines for every metric scoring below FEEDBACK_SCORE"""
        cutoff = self.config.FEEDBACK_SCORE
        feedback = []
        
        if volume.score < cutoff:
            feedback.append(VOLUME_FEEDBACK)
        if speech_rate.score < cutoff:
            if speech_rate.words_per_minute < self.config.SLOW_SPEECH_WPM:
                feedback.append(SLOW_RATE_FEEDBACK)
            else:
                feedback.append(FAST_RATE_FEEDBACK)
        if response_time.score < cutoff:
            feedback.append(RESPONSE_FEEDBACK)
        if pauses.score < cutoff:
            feedback.append(PAUSE_FEEDBACK)
        if acceleration.score < cutoff:
            feedback.append(ACCELERATION_FEEDBACK)
        
        if not feedback:
            if overall_score >= self.config.OUTSTANDING_SCORE:
                feedback.append(OUTSTANDING_FEEDBACK)
            else:
                feedback.append(POSITIVE_FEEDBACK)
        
        return feedback
    
    def aggregate(self, metrics: List[MetricConfig], volume: VolumeResult,
                  speech_rate: SpeechRateResult, acceleration: AccelerationResult,
                  response_time: ResponseTimeResult, pauses: PauseResult,
                  normalization: NormalizationDiagnostics = None) -> AnalysisResult:
        """
        Combine metric results into an AnalysisResult.
        
        Args:
            metrics: Resolved metric config (weights)
            volume, speech_rate, acceleration, response_time, pauses: Metric results
            normalization: Optional loudness diagnostics
            
        Returns:
            AnalysisResult
        """
        weights = normalized_weights(metrics)
        weighted = (
            volume.score * weights[VOLUME]
            + speech_rate.score * weights[SPEECH_RATE]
            + acceleration.score * weights[ACCELERATION]
            + response_time.score * weights[RESPONSE_TIME]
            + pauses.score * weights[PAUSE_MANAGEMENT]
        )
        overall = int(clamp(round_half_up(weighted), 0, 100))
        
        logger.debug(f"Overall score {overall} (weighted {weighted:.2f})")
        
        return AnalysisResult(
            volume=volume,
            speech_rate=speech_rate,
            acceleration=acceleration,
            response_time=response_time,
            pause_management=pauses,
            overall_score=overall,
            emotional_feedback=self.tier(overall),
            feedback=self.build_feedback(volume, speech_rate, acceleration,
                                         response_time, pauses, overall),
            normalization=normalization
        )
    
    def no_speech_result(self, method: str) -> AnalysisResult:
        """All-zero result for a recording without detected speech"""
        return AnalysisResult(
            volume=VolumeResult(average_db=-np.inf, score=0),
            speech_rate=SpeechRateResult(words_per_minute=0, syllables_per_second=0.0,
                                         score=0, method=method),
            acceleration=AccelerationResult(score=0, segment1_volume=0.0, segment2_volume=0.0,
                                            segment1_rate=0, segment2_rate=0,
                                            is_accelerating=False),
            response_time=ResponseTimeResult(response_time_ms=0, score=0),
            pause_management=PauseResult(pause_count=0, avg_pause_duration=0.0,
                                         max_pause_duration=0.0, pause_ratio=1.0, score=0),
            overall_score=0,
            emotional_feedback="poor",
            feedback=[NO_SPEECH_FEEDBACK]
        )
