"""
Delivery - Spoken Response Delivery Scoring Engine
==================================================

Deterministic scoring of how a spoken answer was delivered: loudness,
speaking rate, momentum, response latency and pausing.

Modules:
- config: Frozen engine constants, metric defaults and runtime settings
- storage: Key-value stores for calibration profiles and overrides
- loudness: Gated LUFS measurement and loudness normalization
- calibration: Per-device calibration profiles and recalibration heuristics
- metric_config: Local override, cached remote and default metric configs
- collaborators: Scoring-config and transcription service clients
- speech_rate: Energy-peak, spectral-flux and transcript speech rate
- analyzers: Volume, acceleration, response time and pause scoring
- scoring: Weighted aggregation, tiers and feedback
- orchestrator: Single-recording and batch entry points
- reporting: Batch figures and summary report
"""

__version__ = "1.0.0"
__author__ = "Delivery Scoring Team"
