"""
Delivery Orchestrator
=====================

Entry points that wire the scoring components together.

Features:
- DeliveryAnalyzer: one recording in, one AnalysisResult out
- No-speech short-circuit driven by injected VAD metrics
- Device calibration and loudness normalization before analysis
- BatchAnalyzer: directory scoring with progress, CSV and JSON summary
"""

import os
import json
import time
import logging
from pathlib import Path
from typing import Dict, List, Optional, Union
from dataclasses import dataclass
from datetime import datetime

import pandas as pd
from tqdm import tqdm

from .config import PipelineConfig, DEFAULT_CONFIG, ENERGY_PEAKS, default_metric_config
from .storage import KeyValueStore, InMemoryStore, JsonFileStore
from .audio_io import load_audio, find_audio_files
from .calibration import CalibrationStore
from .collaborators import HttpScoringConfigSource, HttpTranscriptionClient
from .metric_config import MetricConfigResolver, ConfigCache
from .speech_rate import SpeechRateEstimator
from .analyzers import (
    VADMetrics, VolumeAnalyzer, AccelerationAnalyzer,
    ResponseTimeAnalyzer, PauseAnalyzer
)
from .scoring import ScoreAggregator, AnalysisResult, NormalizationDiagnostics
from .utils import as_buffer, round_to

logger = logging.getLogger(__name__)


def _coerce_vad(vad_metrics) -> Optional[VADMetrics]:
    if vad_metrics is None or isinstance(vad_metrics, VADMetrics):
        return vad_metrics
    return VADMetrics.from_dict(vad_metrics)


class DeliveryAnalyzer:
    """
    Score the delivery of a single spoken response.
    
    Usage:
        analyzer = DeliveryAnalyzer.from_config(config)
        result = analyzer.analyze(samples, 16000, device_id="usb-mic")
    """
    
    def __init__(self, config: PipelineConfig = None,
                 calibration_store: CalibrationStore = None,
                 resolver: MetricConfigResolver = None,
                 estimator: SpeechRateEstimator = None):
        """
        Initialize analyzer.
        
        Args:
            config: PipelineConfig instance
            calibration_store: Device calibration profiles (in-memory if None)
            resolver: Metric config resolver (compiled defaults if None)
            estimator: Speech rate estimator (no transcription if None)
        """
        self.config = config or DEFAULT_CONFIG
        engine = self.config.engine
        
        self.calibration = calibration_store or CalibrationStore(InMemoryStore(), engine)
        self.resolver = resolver or MetricConfigResolver(config=engine)
        self.estimator = estimator or SpeechRateEstimator(engine)
        
        self.volume_analyzer = VolumeAnalyzer(engine)
        self.acceleration_analyzer = AccelerationAnalyzer(engine, self.estimator)
        self.response_analyzer = ResponseTimeAnalyzer(engine)
        self.pause_analyzer = PauseAnalyzer(engine)
        self.aggregator = ScoreAggregator(engine)
    
    @classmethod
    def from_config(cls, config: PipelineConfig = None,
                    store: KeyValueStore = None,
                    cache: ConfigCache = None) -> "DeliveryAnalyzer":
        """
        Build an analyzer and its collaborators from runtime settings.
        
        The same key-value store holds calibration profiles and the local
        metric override.
        """
        config = config or DEFAULT_CONFIG
        engine = config.engine
        
        if store is None:
            store = JsonFileStore(config.store_path) if config.store_path else InMemoryStore()
        
        remote = None
        if config.scoring_config_url:
            remote = HttpScoringConfigSource(config.scoring_config_url,
                                             timeout=config.request_timeout_sec)
        transcriber = None
        if config.transcription_url:
            transcriber = HttpTranscriptionClient(config.transcription_url,
                                                  timeout=config.request_timeout_sec)
        
        return cls(
            config=config,
            calibration_store=CalibrationStore(store, engine),
            resolver=MetricConfigResolver(store, remote, cache, engine),
            estimator=SpeechRateEstimator(engine, transcriber)
        )
    
    def has_speech(self, vad: Optional[VADMetrics]) -> bool:
        if vad is None:
            return True
        engine = self.config.engine
        no_speech = (vad.speech_ratio <= engine.NO_SPEECH_RATIO
                     and vad.total_speech_time < engine.NO_SPEECH_MIN_MS)
        return not no_speech
    
    def effective_duration(self, total_sec: float, vad: Optional[VADMetrics]) -> float:
        """Speaking duration with half the non-speech time discounted"""
        floor = self.config.engine.MIN_DURATION_SEC
        if vad is None:
            return max(floor, total_sec)
        speech_sec = vad.total_speech_time / 1000
        return max(floor, total_sec - (total_sec - speech_sec) / 2)
    
    def analyze(self, audio, sample_rate: int,
                device_id: str = None,
                vad_metrics: Union[VADMetrics, Dict, None] = None,
                word_count: int = None,
                audio_bytes: bytes = None) -> AnalysisResult:
        """
        Run the full delivery analysis.
        
        Args:
            audio: Mono float samples
            sample_rate: Sample rate in Hz
            device_id: Calibrated device to apply (optional)
            vad_metrics: Voice-activity summary (VADMetrics or dict)
            word_count: Precomputed word count for the transcript method
            audio_bytes: Encoded recording for the transcription collaborator
            
        Returns:
            AnalysisResult
        """
        raw = as_buffer(audio)
        vad = _coerce_vad(vad_metrics)
        
        metrics = self.resolver.get_config()
        method = self.resolver.get_speech_rate_method(metrics)
        
        if sample_rate is None or sample_rate <= 0:
            logger.error(f"Invalid sample rate {sample_rate}, returning zero result")
            return self.aggregator.no_speech_result(method)
        
        if not self.has_speech(vad):
            logger.info("No speech detected, returning zero result")
            return self.aggregator.no_speech_result(method)
        
        processed = raw
        normalization = None
        device_offset = 0.0
        target = self.config.engine.TARGET_LUFS
        
        if device_id:
            outcome = self.calibration.calibrate_and_normalize(raw, sample_rate,
                                                               device_id, target)
            processed = outcome.normalized
            normalization = NormalizationDiagnostics(
                original_lufs=round_to(outcome.original_lufs, 1),
                calibrated_lufs=round_to(outcome.calibrated_lufs, 1),
                final_lufs=round_to(outcome.final_lufs, 1),
                device_gain=round_to(outcome.device_gain, 2),
                normalization_gain=round_to(outcome.normalization_gain, 2)
            )
            device_offset = self.calibration.device_offset(device_id, target)
        
        volume = self.volume_analyzer.analyze(raw, metrics, device_offset)
        
        duration = self.effective_duration(processed.size / sample_rate, vad)
        speech_rate = self.estimator.estimate(
            processed, sample_rate, metrics, duration, method,
            raw_audio=raw, audio_bytes=audio_bytes, word_count=word_count
        )
        acceleration = self.acceleration_analyzer.analyze(processed, sample_rate, metrics)
        response_time = self.response_analyzer.analyze(processed, sample_rate, metrics)
        pauses = self.pause_analyzer.analyze(processed, sample_rate, metrics, vad)
        
        result = self.aggregator.aggregate(metrics, volume, speech_rate, acceleration,
                                           response_time, pauses, normalization)
        
        logger.info(f"Analysis complete: overall {result.overall_score} "
                    f"({result.emotional_feedback})")
        return result
    
    def quick_analyze(self, audio, sample_rate: int) -> AnalysisResult:
        """
        Offline analysis without calibration or remote config.
        
        Uses the local override (or compiled defaults) and energy-peak
        speech rate over the whole recording.
        """
        buffer = as_buffer(audio)
        override = self.resolver.local_override()
        metrics = override.metrics if override.ok else default_metric_config()
        if sample_rate is None or sample_rate <= 0:
            logger.error(f"Invalid sample rate {sample_rate}, returning zero result")
            return self.aggregator.no_speech_result(ENERGY_PEAKS)
        
        duration = self.effective_duration(buffer.size / sample_rate, None)
        volume = self.volume_analyzer.analyze(buffer, metrics)
        speech_rate = self.estimator.estimate(buffer, sample_rate, metrics, duration,
                                              ENERGY_PEAKS)
        acceleration = self.acceleration_analyzer.analyze(buffer, sample_rate, metrics)
        response_time = self.response_analyzer.analyze(buffer, sample_rate, metrics)
        pauses = self.pause_analyzer.analyze(buffer, sample_rate, metrics)
        
        return self.aggregator.aggregate(metrics, volume, speech_rate, acceleration,
                                         response_time, pauses)


# ============================================================================
# BATCH SCORING
# ============================================================================

@dataclass
class FileResult:
    """Result of scoring a single file"""
    filepath: str
    result: Optional[AnalysisResult] = None
    success: bool = False
    error: Optional[str] = None
    processing_time_sec: float = 0.0
    
    def to_dict(self) -> Dict:
        return {
            "filepath": self.filepath,
            "result": self.result.to_dict() if self.result else None,
            "success": self.success,
            "error": self.error,
            "processing_time_sec": self.processing_time_sec
        }
    
    def to_csv_row(self) -> Dict:
        """Flatten result for CSV export"""
        row = {"filename": os.path.basename(self.filepath), "filepath": self.filepath}
        if self.result:
            row.update(self.result.to_csv_row())
        row.update({
            "success": self.success,
            "error": self.error,
            "processing_time_sec": self.processing_time_sec,
        })
        return row


class BatchAnalyzer:
    """
    Score every audio file under a directory.
    
    Files are processed sequentially against one shared analyzer (one
    resolver, one calibration store).
    
    Usage:
        batch = BatchAnalyzer(analyzer, config)
        df = batch.run("recordings/", output_dir="results/")
    """
    
    def __init__(self, analyzer: DeliveryAnalyzer = None,
                 config: PipelineConfig = None):
        self.config = config or DEFAULT_CONFIG
        self.analyzer = analyzer or DeliveryAnalyzer.from_config(self.config)
        self.results: List[FileResult] = []
        self._run_metadata: Dict = {}
    
    def process_file(self, filepath: str, device_id: str = None,
                     vad_metrics=None) -> FileResult:
        start_time = time.time()
        file_result = FileResult(filepath=filepath)
        
        try:
            audio, sr = load_audio(filepath)
            file_result.result = self.analyzer.analyze(audio, sr, device_id=device_id,
                                                       vad_metrics=vad_metrics)
            file_result.success = True
        except Exception as e:
            file_result.error = f"{type(e).__name__}: {e}"
            logger.error(f"Processing failed for {filepath}: {e}")
        
        file_result.processing_time_sec = time.time() - start_time
        return file_result
    
    def run(self, input_dir: str, output_dir: str = None,
            device_id: str = None,
            show_progress: bool = True) -> pd.DataFrame:
        """
        Score all audio files under ``input_dir``.
        
        Args:
            input_dir: Directory searched recursively for audio files
            output_dir: Output directory for CSV and JSON files
            device_id: Calibrated device applied to every file (optional)
            show_progress: Show progress bar
            
        Returns:
            DataFrame with one row per file
        """
        start_time = time.time()
        output_dir = output_dir or self.config.output_dir
        output_path = Path(output_dir)
        output_path.mkdir(parents=True, exist_ok=True)
        
        self._run_metadata = {
            "input_dir": input_dir,
            "output_dir": output_dir,
            "device_id": device_id,
            "config_hash": self.config.config_hash,
            "config_version": self.config.engine.CONFIG_VERSION,
            "start_time": datetime.now().isoformat()
        }
        
        files = find_audio_files(input_dir)
        if not files:
            logger.warning(f"No audio files found in {input_dir}")
            return pd.DataFrame()
        
        logger.info(f"Scoring {len(files)} files from {input_dir}")
        
        iterator = tqdm(files, desc="Scoring") if show_progress else files
        self.results = [self.process_file(path, device_id) for path in iterator]
        
        df = pd.DataFrame([r.to_csv_row() for r in self.results])
        self._save_results(df, output_path)
        
        elapsed = time.time() - start_time
        successful = sum(1 for r in self.results if r.success)
        self._run_metadata.update({
            "end_time": datetime.now().isoformat(),
            "elapsed_sec": elapsed,
            "successful": successful,
            "failed": len(self.results) - successful
        })
        
        logger.info(f"Batch complete: {successful}/{len(self.results)} successful "
                    f"in {elapsed:.1f}s")
        return df
    
    def _save_results(self, df: pd.DataFrame, output_path: Path):
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        
        csv_path = output_path / f"delivery_scores_{timestamp}.csv"
        df.to_csv(csv_path, index=False)
        logger.info(f"Saved CSV: {csv_path}")
        
        summary = compute_summary(df)
        summary_path = output_path / f"summary_statistics_{timestamp}.json"
        with open(summary_path, 'w') as f:
            json.dump(summary, f, indent=2, default=str)
        logger.info(f"Saved summary: {summary_path}")
        
        meta_path = output_path / f"run_metadata_{timestamp}.json"
        with open(meta_path, 'w') as f:
            json.dump(self._run_metadata, f, indent=2, default=str)
        
        self.config.save(str(output_path / f"config_snapshot_{timestamp}.json"))


SCORE_COLUMNS = ['overall_score', 'volume_score', 'speechRate_score', 'pauses_score',
                 'latency_score', 'endIntensity_score']


def compute_summary(df: pd.DataFrame) -> Dict:
    """
    Summary statistics of a batch results frame.
    """
    summary = {
        "total_files": len(df),
        "successful": int(df['success'].sum()) if 'success' in df.columns else 0,
    }
    summary["failed"] = summary["total_files"] - summary["successful"]
    
    for column in SCORE_COLUMNS + ['words_per_minute', 'response_time_ms', 'pause_ratio']:
        if column in df.columns:
            valid = pd.to_numeric(df[column], errors='coerce').dropna()
            if len(valid) > 0:
                summary[f"{column}_mean"] = float(valid.mean())
                summary[f"{column}_std"] = float(valid.std()) if len(valid) > 1 else 0.0
                summary[f"{column}_min"] = float(valid.min())
                summary[f"{column}_max"] = float(valid.max())
                summary[f"{column}_median"] = float(valid.median())
    
    if 'emotional_feedback' in df.columns:
        counts = df['emotional_feedback'].dropna().value_counts()
        summary["tier_counts"] = {str(k): int(v) for k, v in counts.items()}
    
    return summary
