"""Tests for the volume, acceleration, response time and pause analyzers."""

import numpy as np
import pytest

from delivery.analyzers import (
    VADMetrics, SpeechSegment, VolumeAnalyzer, AccelerationAnalyzer,
    ResponseTimeAnalyzer, PauseAnalyzer
)
from delivery.config import DEFAULT_METRICS, MetricConfig, Thresholds, PAUSE_MANAGEMENT
from tests.signals import tone, silence

METRICS = list(DEFAULT_METRICS)


class TestVolume:
    
    @pytest.mark.parametrize("db, expected", [
        (-50.0, 0.0),
        (-35.0, 0.0),
        (-25.0, 45.0),
        (-15.0, 90.0),
        (-7.5, 100.0),
        (0.0, 90.0),
        (2.0, 80.0),
        (30.0, 0.0),
    ])
    def test_piecewise_score(self, db, expected):
        assert VolumeAnalyzer().score_db(db, METRICS) == pytest.approx(expected)
    
    def test_minus_15_db_scores_high(self):
        level = np.full(16000, 10 ** (-15 / 20))
        result = VolumeAnalyzer().analyze(level, METRICS)
        
        assert result.average_db == -15.0
        assert 90 <= result.score <= 100
        assert result.tag == "ENERGY"
    
    def test_device_offset_shifts_level(self):
        level = np.full(16000, 10 ** (-15 / 20))
        result = VolumeAnalyzer().analyze(level, METRICS, device_db_offset=7.5)
        
        assert result.average_db == -7.5
        assert result.score == 100
    
    def test_silence_scores_zero(self):
        result = VolumeAnalyzer().analyze(silence(1.0), METRICS)
        assert result.average_db == -200.0
        assert result.score == 0
    
    def test_ideal_equal_to_max(self):
        flat = [MetricConfig("volume", 1, Thresholds(-30.0, -10.0, -10.0))]
        assert VolumeAnalyzer().score_db(-10.0, flat) == pytest.approx(100.0)


class TestAcceleration:
    
    def test_steady_silence(self, sr):
        result = AccelerationAnalyzer().analyze(silence(1.0), sr, METRICS)
        
        assert result.score == 50
        assert not result.is_accelerating
        assert result.segment1_rate == result.segment2_rate
        assert result.tag == "DYNAMICS"
    
    def test_louder_second_half(self, sr):
        audio = np.concatenate([tone(0.5, amplitude=0.05), tone(0.5, amplitude=0.5)])
        result = AccelerationAnalyzer().analyze(audio, sr, METRICS)
        
        assert result.is_accelerating
        assert result.segment2_volume - result.segment1_volume == pytest.approx(20.0, abs=0.2)
        assert result.segment1_volume == pytest.approx(-29.0, abs=0.1)
        assert 50 <= result.score <= 100
    
    def test_empty_buffer(self, sr):
        result = AccelerationAnalyzer().analyze(np.array([]), sr, METRICS)
        assert result.score == 50
        assert not result.is_accelerating


class TestResponseTime:
    
    def test_delayed_onset(self, sr):
        audio = np.concatenate([silence(0.5), tone(1.0, amplitude=0.3)])
        result = ResponseTimeAnalyzer().analyze(audio, sr, METRICS)
        
        assert result.response_time_ms == 500
        # 100 -> 50 between 200 ms and 2000 ms
        assert result.score == 92
        assert result.tag == "READINESS"
    
    @pytest.mark.parametrize("response_ms, expected", [
        (0, 100.0),
        (200, 100.0),
        (1100, 75.0),
        (2000, 50.0),
        (3500, 25.0),
        (5000, 0.0),
        (9000, 0.0),
    ])
    def test_score_curve(self, response_ms, expected):
        assert ResponseTimeAnalyzer().score_response(response_ms, METRICS) == pytest.approx(expected)
    
    def test_noise_floor_is_adaptive(self, sr):
        analyzer = ResponseTimeAnalyzer()
        assert analyzer.adaptive_noise_floor(silence(1.0), sr) == 0.005
        assert analyzer.adaptive_noise_floor(np.array([]), sr) == 0.01
        
        hum = tone(1.0, amplitude=0.1)
        assert analyzer.adaptive_noise_floor(hum, sr) == pytest.approx(3 * 0.1 / np.sqrt(2), rel=0.01)
    
    def test_onset_above_background_hum(self, sr):
        audio = np.concatenate([tone(0.3, amplitude=0.01), tone(0.7, amplitude=0.5, freq=440.0)])
        result = ResponseTimeAnalyzer().analyze(audio, sr, METRICS)
        assert 300 <= result.response_time_ms <= 302


class TestPauses:
    
    def test_vad_segments(self, sr):
        vad = VADMetrics(
            speech_segments=[SpeechSegment(1500, 2500), SpeechSegment(0, 1000)],
            total_speech_time=2000,
            speech_ratio=0.67
        )
        result = PauseAnalyzer().analyze(silence(3.0), sr, METRICS, vad)
        
        assert result.pause_count == 2
        assert result.avg_pause_duration == 0.5
        assert result.max_pause_duration == 0.5
        assert result.pause_ratio == 0.33
        assert result.score == 92
        assert result.tag == "FLUIDITY"
    
    def test_short_gaps_are_not_pauses(self, sr):
        vad = VADMetrics(
            speech_segments=[SpeechSegment(0, 1000), SpeechSegment(1100, 3000)],
            total_speech_time=2900,
            speech_ratio=0.97
        )
        result = PauseAnalyzer().analyze(silence(3.0), sr, METRICS, vad)
        
        assert result.pause_count == 0
        assert result.score == 100
    
    def test_energy_fallback(self, sr):
        audio = np.concatenate([tone(1.0, amplitude=0.3), silence(0.5), tone(0.5, amplitude=0.3)])
        result = PauseAnalyzer().analyze(audio, sr, METRICS)
        
        assert result.pause_count == 1
        assert result.max_pause_duration == 0.5
        assert result.pause_ratio == 0.26
        assert result.score == 94
    
    def test_trailing_silence_is_a_pause(self, sr):
        audio = np.concatenate([tone(1.0, amplitude=0.3), silence(1.0)])
        result = PauseAnalyzer().analyze(audio, sr, METRICS)
        assert result.pause_count == 1
    
    def test_continuous_speech(self, sr):
        result = PauseAnalyzer().analyze(tone(2.0, amplitude=0.3), sr, METRICS)
        
        assert result.pause_count == 0
        assert result.pause_ratio == 0.0
        assert result.score == 100
    
    def test_zero_max_threshold(self, sr):
        strict = [MetricConfig(PAUSE_MANAGEMENT, 10, Thresholds(0.0, 0.0, 0.0))]
        result = PauseAnalyzer().analyze(silence(2.0), sr, strict)
        assert result.score == 0
    
    def test_vad_from_camel_case_dict(self):
        vad = VADMetrics.from_dict({
            "speechSegments": [{"start": 100, "end": 900}],
            "totalSpeechTime": 800,
            "totalSilenceTime": 200,
            "speechRatio": 0.8,
            "isSpeaking": False,
            "speechProbability": 0.1,
        })
        assert vad.speech_segments[0].duration == 800
        assert vad.speech_ratio == 0.8
        assert vad.total_speech_time == 800
