"""Tests for gated loudness measurement and normalization."""

import numpy as np
import pytest

from delivery.loudness import LoudnessMeter, Normalizer
from tests.signals import tone, silence


@pytest.fixture
def meter():
    return LoudnessMeter()


class TestLoudnessMeter:
    
    def test_empty_buffer_is_negative_infinity(self, meter, sr):
        assert meter.calculate_lufs(np.array([]), sr) == -np.inf
    
    def test_silence_is_fully_gated(self, meter, sr):
        assert meter.calculate_lufs(silence(1.0), sr) == -np.inf
    
    def test_buffer_shorter_than_a_block(self, meter, sr):
        assert meter.block_mean_squares(tone(0.3), sr).size == 0
        assert meter.calculate_lufs(tone(0.3), sr) == -np.inf
    
    def test_block_layout(self, meter, sr):
        # 400 ms blocks, 100 ms hop, starts strictly before len - block
        blocks = meter.block_mean_squares(tone(1.0), sr)
        assert blocks.size == 6
    
    def test_sine_loudness(self, meter, sr):
        # Mean square of a sine is A^2 / 2
        expected = -0.691 + 10 * np.log10(0.1 ** 2 / 2)
        assert meter.calculate_lufs(tone(1.0, amplitude=0.1), sr) == pytest.approx(expected, abs=0.01)
    
    def test_relative_gate_ignores_quiet_tail(self, meter, sr):
        loud = tone(2.0, amplitude=0.1)
        with_tail = np.concatenate([loud, tone(2.0, amplitude=0.001)])
        assert meter.calculate_lufs(with_tail, sr) == pytest.approx(
            meter.calculate_lufs(loud, sr), abs=0.5)
    
    def test_long_silence_does_not_drag_loudness_down(self, meter, sr):
        padded = np.concatenate([silence(3.0), tone(2.0, amplitude=0.1)])
        assert meter.calculate_lufs(padded, sr) == pytest.approx(
            meter.calculate_lufs(tone(2.0, amplitude=0.1), sr), abs=0.5)
    
    def test_noise_floor_of_silence_uses_db_floor(self, meter, sr):
        assert meter.noise_floor(silence(0.5), sr) == pytest.approx(-200.0)
    
    def test_noise_floor_of_empty_buffer(self, meter, sr):
        assert meter.noise_floor(np.array([]), sr) == -np.inf
    
    def test_rms_db(self, meter):
        level = 10 ** (-15 / 20)
        assert meter.rms_db(np.full(1000, level)) == pytest.approx(-15.0)


class TestNormalizer:
    
    def test_reaches_target(self, sr):
        normalizer = Normalizer()
        result = normalizer.normalize_to_lufs(tone(2.0, amplitude=0.1), sr, target_lufs=-23.0)
        
        assert LoudnessMeter().calculate_lufs(result.normalized, sr) == pytest.approx(-23.0, abs=0.05)
        assert result.gain_linear == pytest.approx(10 ** (result.gain_db / 20))
    
    def test_output_is_clipped(self, sr):
        result = Normalizer().normalize_to_lufs(tone(1.0, amplitude=0.5), sr, target_lufs=0.0)
        
        assert result.gain_linear > 1
        assert np.max(np.abs(result.normalized)) <= 1.0
    
    def test_silence_is_returned_unchanged(self, sr):
        quiet = silence(1.0)
        result = Normalizer().normalize_to_lufs(quiet, sr)
        
        assert result.gain_linear == 1.0
        assert result.gain_db == 0.0
        assert result.current_lufs == -np.inf
        np.testing.assert_array_equal(result.normalized, quiet)
    
    def test_default_target(self, sr):
        result = Normalizer().normalize_to_lufs(tone(2.0, amplitude=0.05), sr)
        assert result.current_lufs + result.gain_db == pytest.approx(-23.0)
