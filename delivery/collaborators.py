"""
External Collaborators
======================

Contracts and HTTP clients for the two remote services the engine consumes:

- Scoring-config service: rows of {metric_name, weight, min_value, max_value}
- Transcription service: {transcript, wordsPerMinute | wordCount | words, confidence}

Both are single round trips with no retry loop; failures surface as
CollaboratorError and callers fall back locally.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

import requests

from .utils import round_half_up

logger = logging.getLogger(__name__)


class CollaboratorError(Exception):
    """Remote collaborator unavailable or returned an unusable payload"""


@dataclass
class TranscriptionResult:
    """Transcription collaborator response"""
    transcript: str = ""
    word_count: Optional[int] = None
    words_per_minute: Optional[float] = None
    duration: Optional[float] = None
    confidence: Optional[float] = None
    
    def resolve_word_count(self, duration_sec: float) -> int:
        """Word count, derived from words-per-minute when not given directly"""
        if self.word_count is not None:
            return int(self.word_count)
        if self.words_per_minute:
            duration = self.duration if self.duration else duration_sec
            return round_half_up(self.words_per_minute * duration / 60)
        return 0
    
    @classmethod
    def from_payload(cls, payload: Dict) -> "TranscriptionResult":
        if not isinstance(payload, dict):
            raise CollaboratorError("Transcription payload is not an object")
        
        words = payload.get("words")
        word_count = payload.get("wordCount", payload.get("word_count"))
        if word_count is None and isinstance(words, list):
            word_count = len(words)
        
        wpm = payload.get("wordsPerMinute", payload.get("words_per_minute"))
        try:
            return cls(
                transcript=str(payload.get("transcript") or ""),
                word_count=int(word_count) if word_count is not None else None,
                words_per_minute=float(wpm) if wpm is not None else None,
                duration=float(payload["duration"]) if payload.get("duration") else None,
                confidence=float(payload["confidence"]) if payload.get("confidence") is not None else None
            )
        except (TypeError, ValueError) as e:
            raise CollaboratorError(f"Malformed transcription payload: {e}") from e


class ScoringConfigSource:
    """Scoring-config collaborator contract"""
    
    def fetch_rows(self) -> List[Dict]:
        raise NotImplementedError


class StaticScoringConfigSource(ScoringConfigSource):
    """Fixed rows, e.g. loaded from a JSON export of the scoring_config table"""
    
    def __init__(self, rows: List[Dict]):
        self.rows = list(rows)
    
    def fetch_rows(self) -> List[Dict]:
        return list(self.rows)


class HttpScoringConfigSource(ScoringConfigSource):
    """
    Read scoring_config rows from an HTTP endpoint.
    
    The endpoint returns either a JSON array of rows or an object with the
    rows under "data".
    """
    
    def __init__(self, url: str, timeout: float = 30.0,
                 headers: Dict[str, str] = None):
        self.url = url
        self.timeout = timeout
        self.headers = headers or {}
    
    def fetch_rows(self) -> List[Dict]:
        try:
            response = requests.get(self.url, headers=self.headers, timeout=self.timeout)
            response.raise_for_status()
            payload = response.json()
        except (requests.RequestException, ValueError) as e:
            raise CollaboratorError(f"Scoring config service error: {e}") from e
        
        if isinstance(payload, dict):
            payload = payload.get("data")
        if not isinstance(payload, list):
            raise CollaboratorError("Scoring config payload is not a list of rows")
        
        rows = [row for row in payload if isinstance(row, dict)]
        logger.debug(f"Fetched {len(rows)} scoring config rows from {self.url}")
        return rows


class TranscriptionClient:
    """Transcription collaborator contract"""
    
    def transcribe(self, audio_bytes: bytes,
                   mime_type: str = "audio/wav") -> TranscriptionResult:
        raise NotImplementedError


class HttpTranscriptionClient(TranscriptionClient):
    """
    Send a recording to a transcription endpoint as multipart form data.
    """
    
    def __init__(self, url: str, timeout: float = 60.0,
                 headers: Dict[str, str] = None):
        self.url = url
        self.timeout = timeout
        self.headers = headers or {}
    
    def transcribe(self, audio_bytes: bytes,
                   mime_type: str = "audio/wav") -> TranscriptionResult:
        files = {"audio": ("recording.wav", audio_bytes, mime_type)}
        try:
            response = requests.post(self.url, files=files, headers=self.headers,
                                     timeout=self.timeout)
            response.raise_for_status()
            payload = response.json()
        except (requests.RequestException, ValueError) as e:
            raise CollaboratorError(f"Transcription service error: {e}") from e
        
        result = TranscriptionResult.from_payload(payload)
        logger.debug(f"Transcribed {len(audio_bytes)} bytes: {result.word_count} words")
        return result
