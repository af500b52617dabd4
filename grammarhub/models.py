"""Dataclasses describing the objects that flow through a grammarhub workflow."""

from __future__ import annotations

import mimetypes
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional, Tuple

_EXTENSION_TYPES = {
    ".mp3": "audio/mpeg",
    ".wav": "audio/wav",
    ".m4a": "audio/x-m4a",
    ".ogg": "audio/ogg",
    ".webm": "audio/webm",
}


class Difficulty(str, Enum):
    """Difficulty tier of a grammar point, ordered from easiest to hardest."""

    BEGINNER = "Beginner"
    INTERMEDIATE = "Intermediate"
    ADVANCED = "Advanced"

    @property
    def rank(self) -> int:
        return list(Difficulty).index(self)

    # str already defines every rich comparison, so each one is overridden.
    def __lt__(self, other: object) -> bool:
        if not isinstance(other, Difficulty):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other: object) -> bool:
        if not isinstance(other, Difficulty):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other: object) -> bool:
        if not isinstance(other, Difficulty):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other: object) -> bool:
        if not isinstance(other, Difficulty):
            return NotImplemented
        return self.rank >= other.rank


class WorkflowState(str, Enum):
    IDLE = "idle"
    UPLOADING = "uploading"
    TRANSCRIBING = "transcribing"
    REVIEWING_TRANSCRIPT = "reviewing_transcript"
    ANALYZING = "analyzing"
    SUCCESS = "success"
    ERROR = "error"


@dataclass(slots=True)
class Settings:
    """User configuration stored on disk."""

    endpoint: str = ""
    storage_key: str = ""
    bucket_name: str = "audio-uploads"
    ai_api_key: str = ""
    transcription_backend: str = "local"
    whisper_model: str = "base"
    transcription_model: str = "whisper-1"
    analysis_model: str = "gpt-4o-mini"
    language: str = "english"

    @property
    def has_storage_credentials(self) -> bool:
        return bool(self.endpoint and self.storage_key)

    @property
    def has_ai_credentials(self) -> bool:
        return bool(self.ai_api_key)


@dataclass(frozen=True, slots=True)
class AudioFile:
    """An audio recording selected for processing."""

    name: str
    media_type: str
    data: bytes = field(repr=False)

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def suffix(self) -> str:
        return Path(self.name).suffix or ".wav"

    @classmethod
    def from_path(cls, path: Path, media_type: Optional[str] = None) -> "AudioFile":
        if media_type is None:
            media_type = _EXTENSION_TYPES.get(path.suffix.lower())
        if media_type is None:
            media_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
        return cls(name=path.name, media_type=media_type, data=path.read_bytes())


@dataclass(frozen=True, slots=True)
class GrammarPoint:
    title: str
    explanation: str
    example: str
    difficulty: Difficulty

    def as_record(self) -> dict:
        return {
            "title": self.title,
            "explanation": self.explanation,
            "example": self.example,
            "difficulty": self.difficulty.value,
        }


@dataclass(frozen=True, slots=True)
class GrammarAnalysis:
    """Output of a single grammar extraction request."""

    summary: str
    grammar_points: Tuple[GrammarPoint, ...]


@dataclass(frozen=True, slots=True)
class AnalysisResult:
    """Transcript plus the grammar extracted from it."""

    transcript: str
    summary: str
    grammar_points: Tuple[GrammarPoint, ...]

    @classmethod
    def combine(cls, transcript: str, analysis: GrammarAnalysis) -> "AnalysisResult":
        return cls(
            transcript=transcript,
            summary=analysis.summary,
            grammar_points=analysis.grammar_points,
        )


@dataclass(frozen=True, slots=True)
class ModelProgress:
    """Latest download progress reported while the speech model loads."""

    name: str
    progress: float


@dataclass(frozen=True, slots=True)
class WorkflowSnapshot:
    state: WorkflowState
    filename: Optional[str] = None
    storage_path: Optional[str] = None
    transcript: Optional[str] = None
    progress: Optional[ModelProgress] = None
    result: Optional[AnalysisResult] = None
    error: Optional[str] = None
    config_prompt: Optional[str] = None
