"""
Engine Configuration Module
===========================

FROZEN scoring parameters and runtime settings.
DO NOT MODIFY the frozen constants without version bump and documentation.

All settings are deterministic for reproducibility.
"""

import os
from dataclasses import dataclass, field, replace
from typing import Dict, Optional
import hashlib
import json
from datetime import datetime

# ============================================================================
# FROZEN SCORING PARAMETERS - DO NOT MODIFY
# ============================================================================

@dataclass(frozen=True)
class EngineConfig:
    """
    Frozen delivery-scoring configuration.
    
    All parameters are locked for reproducibility.
    Modify only with version increment and audit trail.
    """
    # Loudness target (LUFS) used for normalization and device offsets
    TARGET_LUFS: float = -23.0
    
    # Gated loudness measurement
    LUFS_BLOCK_MS: int = 400             # Measurement block length
    LUFS_BLOCK_OVERLAP: float = 0.75     # 100 ms hop at 400 ms blocks
    ABSOLUTE_GATE_DB: float = -70.0      # Mean-square gate (dB)
    RELATIVE_GATE_DB: float = -10.0      # Below first-pass average
    LUFS_OFFSET: float = -0.691
    
    # Calibration
    MIN_DEVICE_GAIN: float = 0.1
    MAX_DEVICE_GAIN: float = 10.0
    NOISE_FLOOR_WINDOW_MS: int = 100     # Leading window for noise floor
    MAX_RECORDING_HISTORY: int = 10
    MIN_HISTORY_FOR_RECALIBRATION: int = 3
    LUFS_VARIANCE_THRESHOLD: float = 5.0
    NOISE_VARIANCE_THRESHOLD_DB: float = 10.0
    MAX_CALIBRATION_AGE_DAYS: float = 30.0
    RECOMMEND_SEVERITY: float = 2.0
    DEFAULT_SEVERITY: float = 1.5
    QUIET_LEVEL_LUFS: float = -28.0      # Calibration check bands
    LOUD_LEVEL_LUFS: float = -20.0
    
    # Metric config resolution
    CONFIG_CACHE_TTL_SEC: float = 60.0
    
    # Onset detection
    ONSET_FRAME_MS: int = 20
    SPECTRAL_BINS: int = 128
    ENERGY_PEAK_RATIO: float = 0.15
    ENERGY_MIN_PEAK_GAP: int = 3         # Frames; peak needs i - last > gap
    FLUX_MIN_PEAK_GAP: int = 4
    FLUX_MEDIAN_FACTOR: float = 1.5
    FLUX_P75_FACTOR: float = 0.5
    SYLLABLES_PER_WORD: float = 1.5
    MIN_DURATION_SEC: float = 0.1
    
    # Segment analyzers
    DB_FLOOR: float = 1e-10              # RMS floor before log10
    VOLUME_DECAY_PER_DB: float = 5.0
    MIN_NOISE_FLOOR: float = 0.005
    NOISE_FLOOR_FACTOR: float = 3.0
    EMPTY_NOISE_FLOOR: float = 0.01
    RESPONSE_DECAY_MS: float = 3000.0
    PAUSE_FRAME_MS: int = 50
    PAUSE_SILENCE_RMS: float = 0.01
    MIN_PAUSE_SEC: float = 0.15
    PAUSE_RATIO_ALLOWANCE: float = 0.1
    
    # Aggregation
    NO_SPEECH_RATIO: float = 0.02
    NO_SPEECH_MIN_MS: float = 200.0
    EXCELLENT_SCORE: int = 70
    GOOD_SCORE: int = 40
    FEEDBACK_SCORE: int = 60
    OUTSTANDING_SCORE: int = 90
    SLOW_SPEECH_WPM: int = 100
    
    # Version tracking
    CONFIG_VERSION: str = "1.0.0"


# ============================================================================
# METRIC CONFIGURATION
# ============================================================================

VOLUME = "volume"
SPEECH_RATE = "speechRate"
ACCELERATION = "acceleration"
RESPONSE_TIME = "responseTime"
PAUSE_MANAGEMENT = "pauseManagement"

METRIC_IDS = (VOLUME, SPEECH_RATE, ACCELERATION, RESPONSE_TIME, PAUSE_MANAGEMENT)

# Speech-rate estimation methods
ENERGY_PEAKS = "energy-peaks"
SPECTRAL_FLUX = "spectral-flux"
TRANSCRIPT = "transcript"

SPEECH_RATE_METHODS = (ENERGY_PEAKS, SPECTRAL_FLUX, TRANSCRIPT)

# Remote scoring_config metric_name -> internal metric id
EXTERNAL_METRIC_MAP: Dict[str, str] = {
    "volume": VOLUME,
    "speech_rate": SPEECH_RATE,
    "end_intensity": ACCELERATION,
    "latency": RESPONSE_TIME,
    "pauses": PAUSE_MANAGEMENT,
}


@dataclass(frozen=True)
class Thresholds:
    """Score bounds for one metric (units depend on the metric)"""
    min: float
    ideal: float
    max: float
    
    def to_dict(self) -> Dict:
        return {"min": self.min, "ideal": self.ideal, "max": self.max}


@dataclass(frozen=True)
class MetricConfig:
    """Weight and thresholds for a single metric"""
    id: str
    weight: float
    thresholds: Thresholds
    method: Optional[str] = None
    
    def to_dict(self) -> Dict:
        data = {
            "id": self.id,
            "weight": self.weight,
            "thresholds": self.thresholds.to_dict(),
        }
        if self.method is not None:
            data["method"] = self.method
        return data


DEFAULT_METRICS = (
    MetricConfig(VOLUME, 40, Thresholds(-35.0, -15.0, 0.0)),
    MetricConfig(SPEECH_RATE, 40, Thresholds(90.0, 150.0, 220.0), method=SPECTRAL_FLUX),
    MetricConfig(ACCELERATION, 5, Thresholds(0.0, 50.0, 100.0)),
    # min is the slower bound for response time
    MetricConfig(RESPONSE_TIME, 5, Thresholds(2000.0, 200.0, 0.0)),
    MetricConfig(PAUSE_MANAGEMENT, 10, Thresholds(0.0, 0.0, 2.71)),
)

DEFAULT_METRIC_MAP: Dict[str, MetricConfig] = {m.id: m for m in DEFAULT_METRICS}


def default_metric_config() -> list:
    """Fresh list of the compiled default metric configs"""
    return list(DEFAULT_METRICS)


def find_metric(config, metric_id: str) -> Optional[MetricConfig]:
    """Return the config entry for ``metric_id`` or None"""
    for metric in config:
        if metric.id == metric_id:
            return metric
    return None


def thresholds_for(config, metric_id: str) -> Thresholds:
    """Thresholds for ``metric_id``, falling back to the compiled default"""
    metric = find_metric(config, metric_id)
    if metric is None:
        return DEFAULT_METRIC_MAP[metric_id].thresholds
    return metric.thresholds


# ============================================================================
# RUNTIME CONFIGURATION
# ============================================================================

@dataclass
class PipelineConfig:
    """
    Main runtime configuration.
    
    Combines the frozen engine constants with collaborator and storage settings.
    """
    engine: EngineConfig = field(default_factory=EngineConfig)
    
    # Runtime settings (can be modified)
    scoring_config_url: Optional[str] = None     # Remote scoring_config rows
    transcription_url: Optional[str] = None      # Remote transcription service
    request_timeout_sec: float = 30.0
    store_path: Optional[str] = None             # JSON key-value store file
    output_dir: str = "delivery_output"
    verbose: bool = False
    
    def __post_init__(self):
        """Generate config hash for version tracking"""
        self._config_hash = self._compute_hash()
        self._created_at = datetime.now().isoformat()
    
    def _compute_hash(self) -> str:
        """Compute deterministic hash of frozen parameters"""
        config_dict = {
            "engine": {
                k: v for k, v in self.engine.__dict__.items()
                if not k.startswith("_")
            },
            "metrics": [m.to_dict() for m in DEFAULT_METRICS],
        }
        config_str = json.dumps(config_dict, sort_keys=True)
        return hashlib.sha256(config_str.encode()).hexdigest()[:16]
    
    @property
    def config_hash(self) -> str:
        return self._config_hash
    
    def to_dict(self) -> Dict:
        """Export configuration as dictionary"""
        return {
            "engine": {k: v for k, v in self.engine.__dict__.items()},
            "runtime": {
                "scoring_config_url": self.scoring_config_url,
                "transcription_url": self.transcription_url,
                "request_timeout_sec": self.request_timeout_sec,
                "store_path": self.store_path,
                "output_dir": self.output_dir,
                "verbose": self.verbose,
            },
            "meta": {
                "config_hash": self._config_hash,
                "created_at": self._created_at,
                "version": self.engine.CONFIG_VERSION
            }
        }
    
    def save(self, path: str):
        """Save configuration to JSON file"""
        with open(path, "w") as f:
            json.dump(self.to_dict(), f, indent=2)
    
    @classmethod
    def load(cls, path: str) -> "PipelineConfig":
        """Load runtime settings from JSON file (engine constants stay frozen)"""
        with open(path, "r") as f:
            data = json.load(f)
        
        runtime = data.get("runtime", {})
        config = cls()
        config.scoring_config_url = runtime.get("scoring_config_url")
        config.transcription_url = runtime.get("transcription_url")
        config.request_timeout_sec = float(runtime.get("request_timeout_sec", 30.0))
        config.store_path = runtime.get("store_path")
        config.output_dir = runtime.get("output_dir", config.output_dir)
        config.verbose = bool(runtime.get("verbose", False))
        
        return config
    
    @classmethod
    def from_env(cls) -> "PipelineConfig":
        """Build runtime settings from DELIVERY_* environment variables"""
        config = cls()
        config.scoring_config_url = os.environ.get("DELIVERY_SCORING_CONFIG_URL")
        config.transcription_url = os.environ.get("DELIVERY_TRANSCRIPTION_URL")
        config.store_path = os.environ.get("DELIVERY_STORE_PATH")
        timeout = os.environ.get("DELIVERY_REQUEST_TIMEOUT")
        if timeout:
            config.request_timeout_sec = float(timeout)
        return config
    
    def with_target(self, target_lufs: float) -> "PipelineConfig":
        """Copy of this config with a different loudness target"""
        config = PipelineConfig(
            engine=replace(self.engine, TARGET_LUFS=target_lufs),
            scoring_config_url=self.scoring_config_url,
            transcription_url=self.transcription_url,
            request_timeout_sec=self.request_timeout_sec,
            store_path=self.store_path,
            output_dir=self.output_dir,
            verbose=self.verbose,
        )
        return config


# ============================================================================
# DEFAULT CONFIGURATION INSTANCE
# ============================================================================

DEFAULT_CONFIG = PipelineConfig()


if __name__ == "__main__":
    # Print configuration for verification
    config = PipelineConfig()
    print(f"Engine Configuration v{config.engine.CONFIG_VERSION}")
    print(f"Config Hash: {config.config_hash}")
    print(f"\nLoudness Settings:")
    print(f"  Target: {config.engine.TARGET_LUFS} LUFS")
    print(f"  Block: {config.engine.LUFS_BLOCK_MS} ms")
    print(f"\nMetric Defaults:")
    for metric in DEFAULT_METRICS:
        print(f"  {metric.id}: weight={metric.weight} {metric.thresholds.to_dict()}")
