"""Transcription result models."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class WordTiming:
    word: str
    start: float
    end: float


@dataclass
class TranscriptSegment:
    """A timed sub-span of a transcript."""
    start: float
    end: float
    text: str
    confidence: Optional[float] = None
    words: Optional[List[WordTiming]] = None


@dataclass
class TranscriptResult:
    """Result of one transcription call."""
    transcript: str
    confidence: float
    language: str
    processing_time: float  # Seconds
    segments: List[TranscriptSegment] = field(default_factory=list)
    error: Optional[str] = None
    from_cache: bool = False

    def to_cache_dict(self) -> Dict[str, Any]:
        """Serializable form without per-call fields."""
        return {
            "transcript": self.transcript,
            "confidence": self.confidence,
            "language": self.language,
            "segments": [
                {
                    "start": s.start,
                    "end": s.end,
                    "text": s.text,
                    "confidence": s.confidence,
                    "words": [{"word": w.word, "start": w.start, "end": w.end} for w in s.words]
                    if s.words is not None else None,
                }
                for s in self.segments
            ],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], processing_time: float = 0.0) -> "TranscriptResult":
        segments = []
        for s in data.get("segments") or []:
            words = s.get("words")
            segments.append(TranscriptSegment(
                start=float(s.get("start", 0.0)),
                end=float(s.get("end", 0.0)),
                text=s.get("text", ""),
                confidence=s.get("confidence"),
                words=[WordTiming(w["word"], float(w["start"]), float(w["end"])) for w in words]
                if words is not None else None,
            ))
        return cls(
            transcript=data.get("transcript", ""),
            confidence=float(data.get("confidence", 0.0)),
            language=data.get("language", "unknown"),
            processing_time=processing_time,
            segments=segments,
            error=data.get("error"),
        )

    @classmethod
    def failed(cls, error: str, processing_time: float = 0.0) -> "TranscriptResult":
        """Zero-confidence placeholder for a segment that could not be transcribed."""
        return cls(transcript="", confidence=0.0, language="unknown",
                   processing_time=processing_time, error=error)
