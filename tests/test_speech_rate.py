"""Tests for onset-based and transcript-based speech rate."""

from unittest.mock import Mock

import numpy as np
import pytest

from delivery.collaborators import CollaboratorError, TranscriptionResult
from delivery.config import (
    DEFAULT_METRICS, Thresholds, ENERGY_PEAKS, SPECTRAL_FLUX, TRANSCRIPT
)
from delivery.speech_rate import SpeechRateEstimator, score_speech_rate
from tests.signals import burst_train, silence, tone

METRICS = list(DEFAULT_METRICS)


@pytest.fixture
def estimator():
    return SpeechRateEstimator()


class TestScoring:
    
    @pytest.mark.parametrize("wpm, expected", [
        (0, 0.0),
        (60, 0.0),
        (90, 0.0),
        (120, 50.0),
        (150, 100.0),
        (300, 100.0),
    ])
    def test_score_speech_rate(self, wpm, expected):
        assert score_speech_rate(wpm, Thresholds(90.0, 150.0, 220.0)) == pytest.approx(expected)
    
    def test_words_per_minute(self, estimator):
        assert estimator.words_per_minute(10, 4.0) == 100
        assert estimator.words_per_minute(3, 0.0) == 0


class TestOnsetDetectors:
    
    def test_energy_peaks_count_bursts(self, estimator, sr):
        assert estimator.detect_syllables_energy(burst_train(8), sr) == 8
    
    def test_energy_peaks_on_silence(self, estimator, sr):
        assert estimator.detect_syllables_energy(silence(1.0), sr) == 0
    
    def test_energy_peaks_on_too_short_buffer(self, estimator, sr):
        assert estimator.detect_syllables_energy(tone(0.01), sr) == 0
    
    def test_spectral_flux_finds_bursts(self, estimator, sr):
        count = estimator.detect_syllables_spectral_flux(burst_train(8), sr)
        assert 8 <= count <= 24
    
    def test_spectral_flux_floor_is_one(self, estimator, sr):
        assert estimator.detect_syllables_spectral_flux(silence(1.0), sr) == 1
    
    def test_spectral_flux_single_frame(self, estimator, sr):
        # Exactly one 20 ms frame still counts
        assert estimator.detect_syllables_spectral_flux(tone(0.02), sr) == 1
        assert estimator.detect_syllables_spectral_flux(tone(0.019), sr) == 0
    
    def test_flux_matches_direct_dft(self, estimator, sr):
        buffer = burst_train(2)
        flux = estimator.spectral_flux(buffer, sr)
        
        frame, hop = 320, 160
        n = np.arange(frame)
        previous = np.zeros(128)
        for idx in (0, 5, 30):
            start = idx * hop
            chunk = buffer[start:start + frame]
            mags = np.array([
                abs(np.sum(chunk * np.exp(-2j * np.pi * k * n / frame))) for k in range(128)
            ])
            if idx > 0:
                prev_chunk = buffer[start - hop:start - hop + frame]
                previous = np.array([
                    abs(np.sum(prev_chunk * np.exp(-2j * np.pi * k * n / frame))) for k in range(128)
                ])
            expected = np.sum(np.clip(mags - previous, 0, None))
            assert flux[idx] == pytest.approx(expected, rel=1e-6, abs=1e-9)


class TestEstimate:
    
    def test_energy_peaks_method(self, estimator, sr):
        result = estimator.estimate(burst_train(8), sr, METRICS, 2.0, method=ENERGY_PEAKS)
        
        assert result.method == ENERGY_PEAKS
        assert result.words_per_minute == 160
        assert result.syllables_per_second == 4.0
        assert result.score == 100
        assert result.tag == "FLUENCY"
    
    def test_precomputed_word_count(self, estimator, sr):
        result = estimator.estimate(tone(2.0), sr, METRICS, 2.0, method=TRANSCRIPT, word_count=5)
        
        assert result.method == TRANSCRIPT
        assert result.words_per_minute == 150
    
    def test_transcriber_result(self, sr):
        transcriber = Mock()
        transcriber.transcribe.return_value = TranscriptionResult(transcript="one two three four",
                                                                  word_count=4)
        estimator = SpeechRateEstimator(transcriber=transcriber)
        
        result = estimator.estimate(tone(2.0), sr, METRICS, 2.0, method=TRANSCRIPT)
        
        assert result.method == TRANSCRIPT
        assert result.words_per_minute == 120
        assert result.transcript == "one two three four"
        sent = transcriber.transcribe.call_args[0][0]
        assert isinstance(sent, bytes) and sent[:4] == b"RIFF"
    
    def test_transcriber_failure_falls_back(self, sr):
        transcriber = Mock()
        transcriber.transcribe.side_effect = CollaboratorError("timeout")
        estimator = SpeechRateEstimator(transcriber=transcriber)
        
        result = estimator.estimate(burst_train(8), sr, METRICS, 2.0, method=TRANSCRIPT)
        
        assert result.method == SPECTRAL_FLUX
        assert result.words_per_minute > 0
    
    def test_zero_words_falls_back(self, sr):
        transcriber = Mock()
        transcriber.transcribe.return_value = TranscriptionResult(transcript="", word_count=0)
        estimator = SpeechRateEstimator(transcriber=transcriber)
        
        result = estimator.estimate(burst_train(8), sr, METRICS, 2.0, method=TRANSCRIPT)
        assert result.method == SPECTRAL_FLUX
    
    def test_transcript_without_collaborator_falls_back(self, estimator, sr):
        result = estimator.estimate(burst_train(8), sr, METRICS, 2.0, method=TRANSCRIPT)
        assert result.method == SPECTRAL_FLUX
    
    def test_segment_rate_floors_duration(self, estimator, sr):
        # One flux frame in 20 ms, counted over at least 100 ms
        assert estimator.segment_rate(tone(0.02), sr) == 400
