"""
Delivery Scoring Runner
=======================

Command-line entry point for the delivery scoring engine.

Usage:
    python run_analysis.py analyze answer.wav                  # Score one recording
    python run_analysis.py analyze answer.wav --device usb-mic # Apply device calibration
    python run_analysis.py batch ./recordings                  # Score a directory
    python run_analysis.py normalize answer.wav --device usb-mic # Write normalized copy
    python run_analysis.py calibrate usb-mic --noise room.wav --reference voice.wav
    python run_analysis.py status usb-mic                      # Recalibration status
    python run_analysis.py profiles                            # List calibrated devices
    python run_analysis.py delete usb-mic                      # Remove a profile

Version: 1.0.0
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from datetime import datetime

from delivery.config import PipelineConfig
from delivery.storage import JsonFileStore, OverlayStore
from delivery.audio_io import load_audio, save_audio
from delivery.calibration import CalibrationStore
from delivery.metric_config import METRIC_OVERRIDE_KEY
from delivery.orchestrator import DeliveryAnalyzer, BatchAnalyzer
from delivery.reporting import DeliveryReporter

DEFAULT_STORE = "delivery_store.json"

logger = logging.getLogger(__name__)


def setup_logging(output_dir: str, verbose: bool = False):
    """Configure logging for the runner."""
    log_dir = Path(output_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_file = log_dir / f"delivery_{timestamp}.log"
    
    level = logging.DEBUG if verbose else logging.INFO
    
    logging.basicConfig(
        level=level,
        format='%(asctime)s | %(levelname)-8s | %(name)s | %(message)s',
        handlers=[
            logging.FileHandler(log_file),
            logging.StreamHandler()
        ]
    )
    
    # Reduce noise from third-party libraries
    logging.getLogger('matplotlib').setLevel(logging.WARNING)
    logging.getLogger('PIL').setLevel(logging.WARNING)
    logging.getLogger('urllib3').setLevel(logging.WARNING)
    
    return str(log_file)


def build_config(args) -> PipelineConfig:
    config = PipelineConfig.load(args.config) if args.config else PipelineConfig.from_env()
    if args.scoring_config_url:
        config.scoring_config_url = args.scoring_config_url
    if args.transcription_url:
        config.transcription_url = args.transcription_url
    config.store_path = args.store or config.store_path or DEFAULT_STORE
    config.output_dir = args.output
    config.verbose = args.verbose
    if args.target_lufs is not None:
        config = config.with_target(args.target_lufs)
    return config


# ============================================================================
# COMMANDS
# ============================================================================

def cmd_analyze(args, config: PipelineConfig) -> int:
    store = JsonFileStore(config.store_path)
    if args.override:
        # Applies to this run only; calibration history still persists
        with open(args.override, 'r') as f:
            store = OverlayStore(store, {METRIC_OVERRIDE_KEY: f.read()})
    
    vad_metrics = None
    if args.vad:
        with open(args.vad, 'r') as f:
            vad_metrics = json.load(f)
    
    analyzer = DeliveryAnalyzer.from_config(config, store=store)
    status = 0
    
    for path in args.files:
        try:
            audio, sr = load_audio(path)
        except Exception as e:
            logger.error(f"Could not load {path}: {e}")
            status = 1
            continue
        
        result = analyzer.analyze(audio, sr, device_id=args.device,
                                  vad_metrics=vad_metrics, word_count=args.word_count)
        
        if args.json:
            print(json.dumps({"file": path, **result.to_dict()}, indent=2, default=str))
            continue
        
        print(f"\n{path}")
        print(f"  Overall: {result.overall_score} ({result.emotional_feedback})")
        for name, score in result.metrics.items():
            print(f"  {name:<14} {score:>3}")
        print(f"  Speech rate: {result.speech_rate.words_per_minute} WPM "
              f"({result.speech_rate.method})")
        if result.normalization:
            n = result.normalization
            print(f"  Loudness: {n.original_lufs} -> {n.final_lufs} LUFS "
                  f"(device gain {n.device_gain})")
        for line in result.feedback:
            print(f"  - {line}")
    
    return status


def cmd_batch(args, config: PipelineConfig) -> int:
    input_path = Path(args.input_dir)
    if not input_path.exists():
        logger.error(f"Input path does not exist: {input_path}")
        return 1
    
    batch = BatchAnalyzer(config=config)
    df = batch.run(str(input_path), config.output_dir, device_id=args.device)
    
    if df.empty:
        logger.warning("Nothing was scored")
        return 1
    
    if not args.no_report:
        DeliveryReporter(df, str(Path(config.output_dir) / "reports")).generate_full_report()
    return 0


def cmd_normalize(args, config: PipelineConfig) -> int:
    calibration = CalibrationStore(JsonFileStore(config.store_path), config.engine)
    out_dir = Path(args.out_dir or Path(config.output_dir) / "normalized")

    for path in args.files:
        audio, sr = load_audio(path)
        outcome = calibration.calibrate_and_normalize(audio, sr, device_id=args.device,
                                                      target_lufs=config.engine.TARGET_LUFS)
        target = out_dir / f"{Path(path).stem}_normalized.wav"
        save_audio(outcome.normalized, sr, str(target))
        print(f"{path}: {outcome.original_lufs:.1f} -> {outcome.final_lufs:.1f} LUFS ({target})")
    return 0


def cmd_calibrate(args, config: PipelineConfig) -> int:
    calibration = CalibrationStore(JsonFileStore(config.store_path), config.engine)
    
    if args.gain is not None:
        profile = calibration.set_manual_gain(args.device_id, args.gain, args.label)
    else:
        if not args.noise or not args.reference:
            logger.error("Provide --noise and --reference recordings, or --gain")
            return 1
        noise, sr = load_audio(args.noise)
        reference, _ = load_audio(args.reference, sample_rate=sr)
        profile = calibration.calibrate_device(args.device_id, args.label,
                                               noise, reference, sr)
        level = calibration.classify_level(profile.reference_level,
                                           profile.gain_adjustment)
        print(f"Calibrated level check: {level}")
    
    print(json.dumps(profile.to_dict(), indent=2))
    return 0


def cmd_status(args, config: PipelineConfig) -> int:
    calibration = CalibrationStore(JsonFileStore(config.store_path), config.engine)
    if calibration.get_profile(args.device_id) is None:
        logger.error(f"No calibration profile for {args.device_id}")
        return 1
    status = calibration.get_recalibration_status(args.device_id)
    print(f"{status.status}: {status.message}")
    return 0


def cmd_profiles(args, config: PipelineConfig) -> int:
    calibration = CalibrationStore(JsonFileStore(config.store_path), config.engine)
    profiles = calibration.list_profiles()
    if not profiles:
        print("No calibrated devices")
    for profile in profiles:
        print(f"{profile.device_id:<24} {profile.device_label:<28} "
              f"gain={profile.gain_adjustment:.2f} "
              f"recordings={len(profile.recording_history)}")
    return 0


def cmd_delete(args, config: PipelineConfig) -> int:
    calibration = CalibrationStore(JsonFileStore(config.store_path), config.engine)
    calibration.delete_profile(args.device_id)
    print(f"Deleted {args.device_id}")
    return 0


COMMANDS = {
    "analyze": cmd_analyze,
    "batch": cmd_batch,
    "normalize": cmd_normalize,
    "calibrate": cmd_calibrate,
    "status": cmd_status,
    "profiles": cmd_profiles,
    "delete": cmd_delete,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Spoken response delivery scoring",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Score a recording with voice-activity metrics and a known word count
  python run_analysis.py analyze answer.wav --vad answer_vad.json --word-count 42

  # Score a folder and write CSV, summary and figures
  python run_analysis.py batch ./recordings --output results
        """
    )
    
    parser.add_argument('--config', type=str, help='Runtime config JSON (see PipelineConfig.save)')
    parser.add_argument('--store', type=str, help=f'Key-value store file (default: {DEFAULT_STORE})')
    parser.add_argument('--scoring-config-url', type=str, help='Remote scoring config endpoint')
    parser.add_argument('--transcription-url', type=str, help='Transcription service endpoint')
    parser.add_argument('--target-lufs', type=float, help='Normalization target (default: -23)')
    parser.add_argument('--output', '-o', type=str, default='delivery_output',
                        help='Output directory for logs and results (default: delivery_output)')
    parser.add_argument('--verbose', '-v', action='store_true', help='Enable verbose logging')
    
    sub = parser.add_subparsers(dest='command', required=True)
    
    analyze = sub.add_parser('analyze', help='Score one or more recordings')
    analyze.add_argument('files', nargs='+', help='Audio files')
    analyze.add_argument('--device', type=str, help='Calibrated device id')
    analyze.add_argument('--vad', type=str, help='Voice-activity metrics JSON file')
    analyze.add_argument('--word-count', type=int, help='Precomputed word count')
    analyze.add_argument('--override', type=str, help='Metric override JSON file for this run only')
    analyze.add_argument('--json', action='store_true', help='Print full results as JSON')
    
    batch = sub.add_parser('batch', help='Score every recording in a directory')
    batch.add_argument('input_dir', help='Directory with audio files')
    batch.add_argument('--device', type=str, help='Calibrated device id')
    batch.add_argument('--no-report', action='store_true', help='Skip figures and summary report')
    
    normalize = sub.add_parser('normalize', help='Write loudness-normalized copies')
    normalize.add_argument('files', nargs='+', help='Audio files')
    normalize.add_argument('--device', type=str, help='Calibrated device id')
    normalize.add_argument('--out-dir', type=str, help='Output directory (default: <output>/normalized)')
    
    calibrate = sub.add_parser('calibrate', help='Calibrate a recording device')
    calibrate.add_argument('device_id', help='Device id')
    calibrate.add_argument('--label', type=str, default='Default Microphone', help='Device label')
    calibrate.add_argument('--noise', type=str, help='Room recording without speech')
    calibrate.add_argument('--reference', type=str, help='Recording of normal-volume speech')
    calibrate.add_argument('--gain', type=float, help='Set a manual linear gain instead')
    
    status = sub.add_parser('status', help='Show recalibration status of a device')
    status.add_argument('device_id', help='Device id')
    
    sub.add_parser('profiles', help='List calibrated devices')
    
    delete = sub.add_parser('delete', help='Delete a device profile')
    delete.add_argument('device_id', help='Device id')
    
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)
    config = build_config(args)
    
    log_file = setup_logging(config.output_dir, config.verbose)
    logger.debug(f"Log file: {log_file} (config {config.config_hash})")
    
    return COMMANDS[args.command](args, config)


if __name__ == "__main__":
    sys.exit(main())
