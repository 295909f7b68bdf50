"""
Audio I/O helpers.

Loading keeps the file's own sample rate: every analysis constant is expressed
in milliseconds, so no resampling is needed.
"""

import io
import logging
from pathlib import Path
from typing import Tuple

import librosa
import numpy as np
import soundfile as sf

logger = logging.getLogger(__name__)

AUDIO_EXTENSIONS = (".wav", ".flac", ".ogg", ".mp3", ".m4a")


def load_audio(filepath: str, sample_rate: int = None) -> Tuple[np.ndarray, int]:
    """
    Load an audio file as a mono float buffer.
    
    Args:
        filepath: Path to audio file
        sample_rate: Resample to this rate (None keeps the native rate)
        
    Returns:
        Tuple of (audio_array, sample_rate)
    """
    try:
        audio, sr = librosa.load(filepath, sr=sample_rate, mono=True)
        logger.debug(f"Loaded {filepath}: {len(audio)/sr:.2f}s @ {sr}Hz")
        return audio.astype(np.float64), int(sr)
    except Exception as e:
        logger.error(f"Failed to load {filepath}: {e}")
        raise


def save_audio(audio: np.ndarray, sr: int, filepath: str):
    """
    Save a buffer as 16-bit PCM.
    
    Args:
        audio: Audio array
        sr: Sample rate
        filepath: Output path
    """
    Path(filepath).parent.mkdir(parents=True, exist_ok=True)
    sf.write(filepath, audio, sr, subtype='PCM_16')
    logger.debug(f"Saved audio to {filepath}")


def encode_wav(audio: np.ndarray, sr: int) -> bytes:
    """Encode a buffer as an in-memory 16-bit WAV file"""
    stream = io.BytesIO()
    sf.write(stream, np.clip(audio, -1.0, 1.0), sr, format='WAV', subtype='PCM_16')
    return stream.getvalue()


def find_audio_files(root_dir: str) -> list:
    """All audio files below ``root_dir`` in sorted order"""
    root = Path(root_dir)
    return sorted(
        str(p) for p in root.rglob("*")
        if p.is_file() and p.suffix.lower() in AUDIO_EXTENSIONS
    )
