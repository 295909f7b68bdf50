"""Tests for metric config resolution."""

import json
from unittest.mock import Mock, patch

import pytest

from delivery.collaborators import (
    CollaboratorError, HttpScoringConfigSource, StaticScoringConfigSource
)
from delivery.config import (
    DEFAULT_METRICS, Thresholds, VOLUME, SPEECH_RATE, PAUSE_MANAGEMENT,
    RESPONSE_TIME, SPECTRAL_FLUX, ENERGY_PEAKS, find_metric
)
from delivery.metric_config import (
    ConfigCache, MetricConfigResolver, parse_metric_overrides, map_remote_rows,
    METRIC_OVERRIDE_KEY, SPEECH_RATE_METHOD_KEY
)

REMOTE_ROWS = [
    {"metric_name": "volume", "weight": 0.3, "min_value": -40, "max_value": -10},
    {"metric_name": "pauses", "weight": 0.15, "min_value": 0, "max_value": 3},
    {"metric_name": "latency", "weight": 0.05, "min_value": 2500, "max_value": 300},
    {"metric_name": "applause", "weight": 0.5, "min_value": 0, "max_value": 1},
]


class TestOverrideParsing:
    
    @pytest.mark.parametrize("raw", [
        None, "", "{not json", json.dumps({"id": "volume"}), "[1, 2]",
        json.dumps([{"id": ["volume"], "enabled": True, "weight": 10}]),
        json.dumps([{"id": {"name": "volume"}, "enabled": True, "weight": 10}]),
    ])
    def test_malformed_payloads_are_rejected(self, raw):
        result = parse_metric_overrides(raw)
        assert not result.ok
        assert result.metrics == []
    
    def test_disabled_and_zero_weight_entries_are_skipped(self):
        result = parse_metric_overrides([
            {"id": "volume", "enabled": False, "weight": 50},
            {"id": "speechRate", "enabled": True, "weight": 0},
            {"id": "tempo", "enabled": True, "weight": 10},
        ])
        assert not result.ok
        assert result.skipped == 3
    
    def test_partial_override_is_backfilled(self):
        result = parse_metric_overrides(json.dumps([
            {"id": "volume", "enabled": True, "weight": 80, "thresholds": {"min": -40}},
            {"id": "speechRate", "enabled": True, "weight": 20},
        ]))
        
        assert result.ok
        assert [m.id for m in result.metrics] == [VOLUME, SPEECH_RATE]
        volume = find_metric(result.metrics, VOLUME)
        assert volume.thresholds == Thresholds(-40.0, -15.0, 0.0)
        assert find_metric(result.metrics, SPEECH_RATE).method == SPECTRAL_FLUX
    
    def test_unknown_method_falls_back(self):
        result = parse_metric_overrides([
            {"id": "speechRate", "enabled": True, "weight": 1, "method": "magic"},
        ])
        assert result.metrics[0].method == SPECTRAL_FLUX


class TestRemoteMapping:
    
    def test_rows_map_onto_internal_ids(self):
        metrics = map_remote_rows(REMOTE_ROWS)
        
        volume = find_metric(metrics, VOLUME)
        assert volume.weight == 30
        assert volume.thresholds == Thresholds(-40.0, -10.0, 0.0)
        
        pauses = find_metric(metrics, PAUSE_MANAGEMENT)
        assert pauses.weight == 15
        assert pauses.thresholds == Thresholds(0.0, 3.0, 3.0)
        
        latency = find_metric(metrics, RESPONSE_TIME)
        assert latency.thresholds == Thresholds(2500.0, 300.0, 0.0)
    
    def test_unmentioned_metrics_keep_defaults(self):
        metrics = map_remote_rows(REMOTE_ROWS)
        assert find_metric(metrics, SPEECH_RATE) == find_metric(DEFAULT_METRICS, SPEECH_RATE)
        assert len(metrics) == 5
    
    def test_malformed_rows_are_ignored(self):
        metrics = map_remote_rows([
            {"metric_name": ["volume"], "weight": 0.4},
            "volume",
            None,
            {"metric_name": 7, "weight": 0.9},
            {"metric_name": "volume", "weight": 0.3},
        ])
        assert find_metric(metrics, VOLUME).weight == 30
        assert len(metrics) == 5


class TestConfigCache:
    
    def test_expires_after_ttl(self, fake_clock):
        cache = ConfigCache(60, clock=fake_clock)
        cache.put(list(DEFAULT_METRICS))
        
        fake_clock.advance(60)
        assert cache.get() is not None
        fake_clock.advance(1)
        assert cache.get() is None
    
    def test_clear(self, fake_clock):
        cache = ConfigCache(60, clock=fake_clock)
        cache.put(list(DEFAULT_METRICS))
        cache.clear()
        assert cache.get() is None


class TestResolver:
    
    def test_defaults_without_collaborators(self):
        assert MetricConfigResolver().get_config() == list(DEFAULT_METRICS)
    
    def test_remote_is_cached(self, fake_clock):
        remote = Mock(wraps=StaticScoringConfigSource(REMOTE_ROWS))
        resolver = MetricConfigResolver(remote=remote, cache=ConfigCache(60, clock=fake_clock))
        
        first = resolver.get_config()
        fake_clock.advance(30)
        second = resolver.get_config()
        
        assert first == second
        assert find_metric(first, VOLUME).weight == 30
        assert remote.fetch_rows.call_count == 1
        
        fake_clock.advance(31)
        resolver.get_config()
        assert remote.fetch_rows.call_count == 2
    
    def test_fetch_failure_falls_back_to_defaults(self, fake_clock):
        remote = Mock()
        remote.fetch_rows.side_effect = CollaboratorError("down")
        resolver = MetricConfigResolver(remote=remote, cache=ConfigCache(60, clock=fake_clock))
        
        assert resolver.get_config() == list(DEFAULT_METRICS)
        # The fallback is cached too
        resolver.get_config()
        assert remote.fetch_rows.call_count == 1
    
    def test_empty_remote_falls_back_to_defaults(self):
        resolver = MetricConfigResolver(remote=StaticScoringConfigSource([]))
        assert resolver.get_config() == list(DEFAULT_METRICS)
    
    @patch("delivery.collaborators.requests.get")
    def test_unhashable_metric_name_falls_back_to_defaults(self, mock_get):
        response = Mock()
        response.json.return_value = [{"metric_name": ["volume"], "weight": 0.4}]
        mock_get.return_value = response
        resolver = MetricConfigResolver(remote=HttpScoringConfigSource("http://config.local/scoring"))
        
        assert resolver.get_config() == list(DEFAULT_METRICS)
    
    def test_non_list_rows_fall_back_to_defaults(self):
        remote = Mock()
        remote.fetch_rows.return_value = {"metric_name": "volume"}
        assert MetricConfigResolver(remote=remote).get_config() == list(DEFAULT_METRICS)
    
    def test_override_with_unhashable_id_does_not_raise(self, memory_store):
        memory_store.set(METRIC_OVERRIDE_KEY, json.dumps([{"id": ["volume"], "enabled": True, "weight": 10}]))
        resolver = MetricConfigResolver(override_store=memory_store)
        assert resolver.get_config() == list(DEFAULT_METRICS)
    
    def test_override_wins_over_remote(self, memory_store):
        memory_store.set(METRIC_OVERRIDE_KEY, json.dumps([
            {"id": "volume", "enabled": True, "weight": 100},
        ]))
        remote = Mock()
        resolver = MetricConfigResolver(override_store=memory_store, remote=remote)
        
        config = resolver.get_config()
        assert [m.id for m in config] == [VOLUME]
        remote.fetch_rows.assert_not_called()
    
    def test_malformed_override_is_ignored(self, memory_store):
        memory_store.set(METRIC_OVERRIDE_KEY, "{broken")
        resolver = MetricConfigResolver(override_store=memory_store)
        assert resolver.get_config() == list(DEFAULT_METRICS)
    
    def test_speech_rate_method_preference(self, memory_store):
        resolver = MetricConfigResolver(override_store=memory_store)
        assert resolver.get_speech_rate_method(list(DEFAULT_METRICS)) == SPECTRAL_FLUX
        
        memory_store.set(SPEECH_RATE_METHOD_KEY, ENERGY_PEAKS)
        assert resolver.get_speech_rate_method(list(DEFAULT_METRICS)) == ENERGY_PEAKS
        
        memory_store.set(SPEECH_RATE_METHOD_KEY, "unknown")
        assert resolver.get_speech_rate_method([]) == SPECTRAL_FLUX
