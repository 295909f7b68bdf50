"""
Metric Configuration Resolution
===============================

Resolves the effective per-metric weights and thresholds.

Precedence:
1. Local override (validated; fully replaces everything else when non-empty)
2. Cached remote scoring config (fresh for CONFIG_CACHE_TTL_SEC)
3. Remote scoring config, refetched
4. Compiled defaults (on any fetch error or empty result)
"""

import json
import logging
import math
import time
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, List, Optional

from .config import (
    EngineConfig, DEFAULT_CONFIG, MetricConfig, Thresholds,
    DEFAULT_METRIC_MAP, EXTERNAL_METRIC_MAP, SPEECH_RATE, PAUSE_MANAGEMENT,
    SPECTRAL_FLUX, SPEECH_RATE_METHODS, default_metric_config, find_metric
)
from .storage import KeyValueStore

logger = logging.getLogger(__name__)

METRIC_OVERRIDE_KEY = "metricConfig"
SPEECH_RATE_METHOD_KEY = "speechRateMethod"


@dataclass
class OverrideParseResult:
    """Outcome of validating a local override payload"""
    ok: bool
    metrics: List[MetricConfig] = field(default_factory=list)
    error: Optional[str] = None
    skipped: int = 0


def _to_float(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return float(value)
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def parse_metric_overrides(raw: Any) -> OverrideParseResult:
    """
    Validate a local metric override.
    
    Accepts JSON text or an already decoded list. An entry is kept when its id
    is a known metric, it is enabled and its weight is positive. Missing
    threshold fields and the speech-rate method are backfilled from the
    compiled defaults. Never raises.
    
    Args:
        raw: JSON string, list of dicts, or None
        
    Returns:
        OverrideParseResult (ok=False when the payload is absent or malformed)
    """
    if raw is None or raw == "":
        return OverrideParseResult(ok=False, error="no override")
    
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except ValueError as e:
            return OverrideParseResult(ok=False, error=f"invalid JSON: {e}")
    
    if not isinstance(raw, list):
        return OverrideParseResult(ok=False, error="override is not an array")
    
    metrics = []
    skipped = 0
    for entry in raw:
        if not isinstance(entry, dict):
            skipped += 1
            continue
        
        metric_id = entry.get("id")
        weight = _to_float(entry.get("weight"))
        if (not isinstance(metric_id, str) or metric_id not in DEFAULT_METRIC_MAP
                or entry.get("enabled") is not True
                or weight is None or weight <= 0):
            skipped += 1
            continue
        
        fallback = DEFAULT_METRIC_MAP[metric_id]
        thresholds = entry.get("thresholds")
        if not isinstance(thresholds, dict):
            thresholds = {}
        
        def pick(name: str) -> float:
            value = _to_float(thresholds.get(name))
            return getattr(fallback.thresholds, name) if value is None else value
        
        method = entry.get("method")
        if method not in SPEECH_RATE_METHODS:
            method = fallback.method
        
        metrics.append(MetricConfig(
            id=metric_id,
            weight=weight,
            thresholds=Thresholds(pick("min"), pick("ideal"), pick("max")),
            method=method
        ))
    
    if not metrics:
        return OverrideParseResult(ok=False, error="no enabled metrics", skipped=skipped)
    
    return OverrideParseResult(ok=True, metrics=metrics, skipped=skipped)


def map_remote_rows(rows: List[Dict]) -> List[MetricConfig]:
    """
    Map remote scoring_config rows onto the internal metric config.
    
    Weights arrive as 0-1 fractions and become 0-100 integers. min_value
    replaces the lower bound and max_value the ideal (and, for pause
    management only, the upper bound). Unknown metric names are ignored.
    """
    base = {m.id: m for m in default_metric_config()}
    
    for row in rows:
        if not isinstance(row, dict) or not isinstance(row.get("metric_name"), str):
            continue
        metric_id = EXTERNAL_METRIC_MAP.get(row["metric_name"])
        if metric_id is None:
            continue
        prev = base[metric_id]
        
        weight = _to_float(row.get("weight"))
        min_value = _to_float(row.get("min_value"))
        max_value = _to_float(row.get("max_value"))
        
        base[metric_id] = replace(
            prev,
            weight=int(math.floor(weight * 100 + 0.5)) if weight is not None else prev.weight,
            thresholds=Thresholds(
                min=prev.thresholds.min if min_value is None else min_value,
                ideal=prev.thresholds.ideal if max_value is None else max_value,
                max=(max_value if metric_id == PAUSE_MANAGEMENT and max_value is not None
                     else prev.thresholds.max)
            )
        )
    
    return list(base.values())


class ConfigCache:
    """
    Timestamped holder for the last fetched remote config.
    
    Owned by the composition root so several resolvers can share it.
    """
    
    def __init__(self, ttl_sec: float = 60.0, clock: Callable[[], float] = time.time):
        self.ttl_sec = ttl_sec
        self.clock = clock
        self._payload: Optional[List[MetricConfig]] = None
        self._fetched_at = 0.0
    
    def get(self) -> Optional[List[MetricConfig]]:
        """Cached payload while fresh, else None"""
        if self._payload is None:
            return None
        if self.clock() - self._fetched_at > self.ttl_sec:
            return None
        return self._payload
    
    def put(self, payload: List[MetricConfig]):
        self._payload = payload
        self._fetched_at = self.clock()
    
    def clear(self):
        self._payload = None
        self._fetched_at = 0.0


class MetricConfigResolver:
    """
    Three-tier metric configuration resolver.
    
    Usage:
        resolver = MetricConfigResolver(override_store=store, remote=source)
        config = resolver.get_config()
    """
    
    def __init__(self, override_store: KeyValueStore = None,
                 remote=None,
                 cache: ConfigCache = None,
                 config: EngineConfig = None):
        """
        Initialize resolver.
        
        Args:
            override_store: Store holding the local override (optional)
            remote: Scoring-config collaborator with ``fetch_rows()`` (optional)
            cache: Shared ConfigCache (a private one if None)
            config: EngineConfig instance
        """
        self.config = config or DEFAULT_CONFIG.engine
        self.override_store = override_store
        self.remote = remote
        self.cache = cache or ConfigCache(self.config.CONFIG_CACHE_TTL_SEC)
    
    def local_override(self) -> OverrideParseResult:
        if self.override_store is None:
            return OverrideParseResult(ok=False, error="no override store")
        return parse_metric_overrides(self.override_store.get(METRIC_OVERRIDE_KEY))
    
    def fetch_remote(self) -> List[MetricConfig]:
        """Fetch and map the remote config; defaults on error or empty result"""
        if self.remote is None:
            return default_metric_config()
        
        try:
            rows = self.remote.fetch_rows()
        except Exception as e:
            logger.warning(f"Scoring config fetch failed, using defaults: {e}")
            return default_metric_config()
        
        if not rows:
            logger.info("Remote scoring config empty, using defaults")
            return default_metric_config()
        
        if not isinstance(rows, list):
            logger.warning("Remote scoring config is not a list of rows, using defaults")
            return default_metric_config()
        
        return map_remote_rows(rows)
    
    def get_config(self) -> List[MetricConfig]:
        """
        Effective metric configuration.
        
        Returns:
            List of MetricConfig; metrics missing from it take no part in
            aggregation
        """
        override = self.local_override()
        if override.ok:
            logger.debug(f"Using local metric override ({len(override.metrics)} metrics)")
            return override.metrics
        
        cached = self.cache.get()
        if cached is not None:
            return cached
        
        resolved = self.fetch_remote()
        self.cache.put(resolved)
        return resolved
    
    def get_speech_rate_method(self, metrics: List[MetricConfig]) -> str:
        """Local method preference, then the configured method, then spectral flux"""
        if self.override_store is not None:
            local_method = self.override_store.get(SPEECH_RATE_METHOD_KEY)
            if local_method in SPEECH_RATE_METHODS:
                return local_method
        
        metric = find_metric(metrics, SPEECH_RATE)
        if metric is not None and metric.method in SPEECH_RATE_METHODS:
            return metric.method
        return SPECTRAL_FLUX
