"""
Device Calibration Module
=========================

Per-device calibration profiles that make loudness-dependent scoring fair
across microphones.

Features:
- Profile lifecycle (create, save, lookup, delete) over a key-value store
- Calibrated normalization: device gain, then loudness normalization
- Recording history ring used by the recalibration heuristics
- Calibration procedure from a noise recording and a spoken reference
"""

import json
import logging
import math
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

import numpy as np

from .config import EngineConfig, DEFAULT_CONFIG
from .loudness import LoudnessMeter, Normalizer
from .storage import KeyValueStore, InMemoryStore
from .utils import as_buffer, clamp

logger = logging.getLogger(__name__)

CALIBRATION_STORAGE_KEY = "audio_calibration_profiles"
SECONDS_PER_DAY = 60 * 60 * 24


@dataclass(frozen=True)
class RecordingStats:
    """Loudness snapshot of one calibrated analysis"""
    timestamp: float
    original_lufs: float
    calibrated_lufs: float
    final_lufs: float
    noise_floor: float
    
    def to_dict(self) -> Dict:
        return {
            "timestamp": self.timestamp,
            "original_lufs": _json_number(self.original_lufs),
            "calibrated_lufs": _json_number(self.calibrated_lufs),
            "final_lufs": _json_number(self.final_lufs),
            "noise_floor": _json_number(self.noise_floor)
        }
    
    @classmethod
    def from_dict(cls, data: Dict) -> "RecordingStats":
        return cls(
            timestamp=float(data["timestamp"]),
            original_lufs=_number(data["original_lufs"]),
            calibrated_lufs=_number(data["calibrated_lufs"]),
            final_lufs=_number(data["final_lufs"]),
            noise_floor=_number(data["noise_floor"])
        )


@dataclass
class CalibrationProfile:
    """Calibration state of one physical input device"""
    device_id: str
    device_label: str
    noise_floor: float
    reference_level: float
    gain_adjustment: float
    created_at: float
    last_used: float
    recording_history: List[RecordingStats] = field(default_factory=list)
    
    def to_dict(self) -> Dict:
        return {
            "device_id": self.device_id,
            "device_label": self.device_label,
            "noise_floor": _json_number(self.noise_floor),
            "reference_level": _json_number(self.reference_level),
            "gain_adjustment": self.gain_adjustment,
            "created_at": self.created_at,
            "last_used": self.last_used,
            "recording_history": [s.to_dict() for s in self.recording_history]
        }
    
    @classmethod
    def from_dict(cls, data: Dict) -> "CalibrationProfile":
        return cls(
            device_id=str(data["device_id"]),
            device_label=str(data.get("device_label", "")),
            noise_floor=_number(data["noise_floor"]),
            reference_level=_number(data["reference_level"]),
            gain_adjustment=float(data["gain_adjustment"]),
            created_at=float(data["created_at"]),
            last_used=float(data.get("last_used", data["created_at"])),
            recording_history=[
                RecordingStats.from_dict(s) for s in data.get("recording_history") or []
            ]
        )


@dataclass
class CalibrationOutcome:
    """Result of calibrated normalization"""
    normalized: np.ndarray
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
class RecalibrationSuggestion:
    should_recalibrate: bool
    reason: Optional[str] = None
    variance: Optional[float] = None
    threshold: Optional[float] = None
    
    def to_dict(self) -> Dict:
        return {
            "should_recalibrate": self.should_recalibrate,
            "reason": self.reason,
            "variance": self.variance,
            "threshold": self.threshold
        }


@dataclass
class RecalibrationStatus:
    status: str  # 'good', 'warning', 'recommend'
    message: str
    variance: Optional[float] = None
    
    def to_dict(self) -> Dict:
        return {"status": self.status, "message": self.message, "variance": self.variance}


def _number(value) -> float:
    """Persisted numbers may be None for -inf"""
    if value is None:
        return -math.inf
    return float(value)


def _json_number(value: float) -> Optional[float]:
    return float(value) if math.isfinite(value) else None


def finite_values(values: List[float]) -> List[float]:
    return [v for v in values if v is not None and math.isfinite(v)]


def population_std(values: List[float]) -> float:
    """Population standard deviation of the finite values (0 for fewer than two)"""
    values = finite_values(values)
    if len(values) < 2:
        return 0.0
    return float(np.std(np.asarray(values, dtype=np.float64)))


class CalibrationStore:
    """
    Keyed store of calibration profiles.
    
    Profiles live as one JSON array under CALIBRATION_STORAGE_KEY. No other
    component mutates a profile directly.
    """
    
    def __init__(self, store: KeyValueStore = None,
                 config: EngineConfig = None,
                 clock: Callable[[], float] = time.time):
        """
        Initialize calibration store.
        
        Args:
            store: Device-scoped key-value store (in-memory if None)
            config: EngineConfig instance
            clock: Returns the current time in epoch seconds
        """
        self.store = store if store is not None else InMemoryStore()
        self.config = config or DEFAULT_CONFIG.engine
        self.clock = clock
        self.meter = LoudnessMeter(self.config)
        self.normalizer = Normalizer(self.config, self.meter)
    
    # =========================================================================
    # PROFILE LIFECYCLE
    # =========================================================================
    
    def list_profiles(self) -> List[CalibrationProfile]:
        """All stored profiles; unparsable data yields an empty list"""
        raw = self.store.get(CALIBRATION_STORAGE_KEY)
        if not raw:
            return []
        
        try:
            entries = json.loads(raw)
        except ValueError as e:
            logger.warning(f"Discarding unparsable calibration data: {e}")
            return []
        
        if not isinstance(entries, list):
            logger.warning("Discarding calibration data that is not a list")
            return []
        
        profiles = []
        for entry in entries:
            try:
                profiles.append(CalibrationProfile.from_dict(entry))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping corrupt calibration profile: {e}")
        return profiles
    
    def _write_profiles(self, profiles: List[CalibrationProfile]):
        self.store.set(CALIBRATION_STORAGE_KEY,
                       json.dumps([p.to_dict() for p in profiles]))
    
    def save_profile(self, profile: CalibrationProfile):
        """Insert or replace the profile for its device id"""
        profiles = self.list_profiles()
        for idx, existing in enumerate(profiles):
            if existing.device_id == profile.device_id:
                profiles[idx] = profile
                break
        else:
            profiles.append(profile)
        self._write_profiles(profiles)
    
    def get_profile(self, device_id: str) -> Optional[CalibrationProfile]:
        """Look up a profile and mark it as used"""
        for profile in self.list_profiles():
            if profile.device_id == device_id:
                profile.last_used = self.clock()
                self.save_profile(profile)
                return profile
        return None
    
    def delete_profile(self, device_id: str):
        profiles = [p for p in self.list_profiles() if p.device_id != device_id]
        self._write_profiles(profiles)
        logger.info(f"Deleted calibration profile for {device_id}")
    
    def create_profile(self, device_id: str, device_label: str,
                       noise_floor: float, reference_level: float,
                       target_level: float = None) -> CalibrationProfile:
        """
        Build a profile whose gain brings the reference level to the target.
        
        Args:
            device_id: Stable device key
            device_label: Human-readable device name
            noise_floor: Background noise level in dB
            reference_level: Loudness of the spoken reference (LUFS)
            target_level: Target loudness (uses config default if None)
            
        Returns:
            New CalibrationProfile (not yet saved)
        """
        target_level = self.config.TARGET_LUFS if target_level is None else target_level
        gain_db = target_level - reference_level
        try:
            gain = 10 ** (gain_db / 20)
        except OverflowError:
            gain = math.inf
        if math.isnan(gain):
            gain = 1.0
        
        now = self.clock()
        return CalibrationProfile(
            device_id=device_id,
            device_label=device_label,
            noise_floor=noise_floor,
            reference_level=reference_level,
            gain_adjustment=clamp(gain, self.config.MIN_DEVICE_GAIN, self.config.MAX_DEVICE_GAIN),
            created_at=now,
            last_used=now,
            recording_history=[]
        )
    
    def track_recording(self, device_id: str, original_lufs: float,
                        calibrated_lufs: float, final_lufs: float,
                        noise_floor: float):
        """Append a RecordingStats entry, keeping the newest entries only"""
        profile = self.get_profile(device_id)
        if profile is None:
            return
        
        profile.recording_history.append(RecordingStats(
            timestamp=self.clock(),
            original_lufs=original_lufs,
            calibrated_lufs=calibrated_lufs,
            final_lufs=final_lufs,
            noise_floor=noise_floor
        ))
        limit = self.config.MAX_RECORDING_HISTORY
        if len(profile.recording_history) > limit:
            profile.recording_history = profile.recording_history[-limit:]
        
        self.save_profile(profile)
    
    # =========================================================================
    # CALIBRATED NORMALIZATION
    # =========================================================================
    
    def calibrate_and_normalize(self, audio, sample_rate: int,
                                device_id: str = None,
                                target_lufs: float = None) -> CalibrationOutcome:
        """
        Apply device gain (if calibrated) and normalize to the target loudness.
        
        Args:
            audio: Mono audio samples
            sample_rate: Sample rate in Hz
            device_id: Device whose profile should be applied
            target_lufs: Target loudness (uses config default if None)
            
        Returns:
            CalibrationOutcome with the processed buffer and diagnostics
        """
        target_lufs = self.config.TARGET_LUFS if target_lufs is None else target_lufs
        buffer = as_buffer(audio)
        processed = buffer
        device_gain = 1.0
        original_lufs = self.meter.calculate_lufs(buffer, sample_rate)
        
        if device_id:
            profile = self.get_profile(device_id)
            if profile is not None and profile.gain_adjustment != 1:
                device_gain = profile.gain_adjustment
                processed = np.clip(buffer * device_gain, -1.0, 1.0)
        
        calibrated_lufs = self.meter.calculate_lufs(processed, sample_rate)
        normalization = self.normalizer.normalize_to_lufs(processed, sample_rate, target_lufs)
        final_lufs = self.meter.calculate_lufs(normalization.normalized, sample_rate)
        
        if device_id:
            self.track_recording(
                device_id,
                original_lufs=original_lufs,
                calibrated_lufs=calibrated_lufs,
                final_lufs=final_lufs,
                noise_floor=self.meter.noise_floor(buffer, sample_rate)
            )
        
        logger.debug(f"Calibrated normalization: {original_lufs:.1f} -> "
                     f"{calibrated_lufs:.1f} -> {final_lufs:.1f} LUFS")
        
        return CalibrationOutcome(
            normalized=normalization.normalized,
            original_lufs=original_lufs,
            calibrated_lufs=calibrated_lufs,
            final_lufs=final_lufs,
            device_gain=device_gain,
            normalization_gain=normalization.gain_linear
        )
    
    def device_offset(self, device_id: str, target_lufs: float = None) -> float:
        """dB offset (target - reference) for a calibrated device, else 0"""
        if not device_id:
            return 0.0
        profile = self.get_profile(device_id)
        if profile is None or not math.isfinite(profile.reference_level):
            return 0.0
        target_lufs = self.config.TARGET_LUFS if target_lufs is None else target_lufs
        return target_lufs - profile.reference_level
    
    # =========================================================================
    # RECALIBRATION HEURISTICS
    # =========================================================================
    
    def check_recalibration_needed(self, device_id: str) -> RecalibrationSuggestion:
        """
        Decide whether a device profile looks stale.
        
        Checks, in order: loudness variance across recent recordings,
        noise floor variance, then profile age.
        """
        profile = self.get_profile(device_id)
        if (profile is None or
                len(profile.recording_history) < self.config.MIN_HISTORY_FOR_RECALIBRATION):
            return RecalibrationSuggestion(should_recalibrate=False)
        
        history = profile.recording_history
        min_history = self.config.MIN_HISTORY_FOR_RECALIBRATION
        
        # Silent or sub-block recordings measure -inf and are left out
        lufs_values = finite_values([h.original_lufs for h in history])
        lufs_threshold = self.config.LUFS_VARIANCE_THRESHOLD
        lufs_std = population_std(lufs_values)
        if len(lufs_values) >= min_history and lufs_std > lufs_threshold:
            return RecalibrationSuggestion(
                should_recalibrate=True,
                reason=f"High variance in audio levels detected ({lufs_std:.1f} LUFS).",
                variance=lufs_std,
                threshold=lufs_threshold
            )
        
        noise_threshold = self.config.NOISE_VARIANCE_THRESHOLD_DB
        noise_values = finite_values([h.noise_floor for h in history])
        noise_std = population_std(noise_values)
        if len(noise_values) >= min_history and noise_std > noise_threshold:
            return RecalibrationSuggestion(
                should_recalibrate=True,
                reason=f"Background noise level changed significantly ({noise_std:.1f} dB).",
                variance=noise_std,
                threshold=noise_threshold
            )
        
        days_since = (self.clock() - profile.created_at) / SECONDS_PER_DAY
        if days_since > self.config.MAX_CALIBRATION_AGE_DAYS:
            return RecalibrationSuggestion(
                should_recalibrate=True,
                reason=f"Calibration is {int(math.floor(days_since))} days old."
            )
        
        return RecalibrationSuggestion(should_recalibrate=False)
    
    def get_recalibration_status(self, device_id: str) -> RecalibrationStatus:
        """Map the recalibration suggestion onto good / warning / recommend"""
        suggestion = self.check_recalibration_needed(device_id)
        if not suggestion.should_recalibrate:
            return RecalibrationStatus("good", "Calibration is accurate and up to date.")
        
        if suggestion.variance and suggestion.threshold:
            severity = suggestion.variance / suggestion.threshold
        else:
            severity = self.config.DEFAULT_SEVERITY
        
        if severity > self.config.RECOMMEND_SEVERITY:
            return RecalibrationStatus(
                "recommend",
                suggestion.reason or "Recalibration strongly recommended.",
                suggestion.variance
            )
        
        return RecalibrationStatus(
            "warning",
            suggestion.reason or "Consider recalibrating soon.",
            suggestion.variance
        )
    
    # =========================================================================
    # CALIBRATION PROCEDURE
    # =========================================================================
    
    def measure_reference_level(self, audio, sample_rate: int) -> float:
        """Loudness of a spoken reference recording"""
        return self.meter.calculate_lufs(audio, sample_rate)
    
    def calibrate_device(self, device_id: str, device_label: str,
                         noise_audio, reference_audio,
                         sample_rate: int) -> CalibrationProfile:
        """
        Run the two-step calibration and persist the resulting profile.
        
        Args:
            device_id: Stable device key
            device_label: Human-readable device name
            noise_audio: Recording of the room with nobody speaking
            reference_audio: Recording of normal-volume speech
            sample_rate: Sample rate of both recordings
            
        Returns:
            The saved CalibrationProfile
        """
        noise_floor = self.meter.noise_floor(noise_audio, sample_rate)
        reference_level = self.measure_reference_level(reference_audio, sample_rate)
        
        if not math.isfinite(reference_level):
            logger.warning(f"Reference recording for {device_id} has no measurable loudness")
        
        profile = self.create_profile(device_id, device_label, noise_floor, reference_level)
        self.save_profile(profile)
        
        logger.info(f"Calibrated {device_id}: noise={noise_floor:.1f} dB, "
                    f"reference={reference_level:.1f} LUFS, gain={profile.gain_adjustment:.2f}")
        return profile
    
    def set_manual_gain(self, device_id: str, gain: float,
                        device_label: str = "Default Microphone") -> CalibrationProfile:
        """
        Override the stored gain of a device.
        
        A placeholder profile (noise -40 dB, reference at target) is created
        when the device has never been calibrated.
        """
        profile = self.get_profile(device_id)
        if profile is None:
            profile = self.create_profile(device_id, device_label, -40.0, self.config.TARGET_LUFS)
        profile.gain_adjustment = clamp(float(gain), self.config.MIN_DEVICE_GAIN,
                                        self.config.MAX_DEVICE_GAIN)
        self.save_profile(profile)
        return profile
    
    def classify_level(self, lufs: float, gain: float = 1.0) -> str:
        """
        Classify a measured level after applying a candidate gain.
        
        Returns:
            'too_quiet', 'good' or 'too_loud'
        """
        adjusted = lufs + 20 * math.log10(max(gain, self.config.DB_FLOOR))
        if adjusted < self.config.QUIET_LEVEL_LUFS:
            return "too_quiet"
        if adjusted < self.config.LOUD_LEVEL_LUFS:
            return "good"
        return "too_loud"
