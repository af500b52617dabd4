"""Checks applied to a selected file before anything is sent over the network."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Collection, Optional

from .models import AudioFile

ALLOWED_AUDIO_TYPES = (
    "audio/mpeg",
    "audio/wav",
    "audio/mp3",
    "audio/x-m4a",
    "audio/ogg",
    "audio/webm",
)
MAX_FILE_SIZE_MB = 20
MAX_FILE_SIZE_BYTES = MAX_FILE_SIZE_MB * 1024 * 1024


class RejectionReason(str, Enum):
    UNSUPPORTED_TYPE = "unsupported_type"
    TOO_LARGE = "too_large"


@dataclass(frozen=True, slots=True)
class Validation:
    reason: Optional[RejectionReason] = None
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.reason is None


def validate_file(
    file: AudioFile,
    allowed_types: Collection[str] = ALLOWED_AUDIO_TYPES,
    max_bytes: int = MAX_FILE_SIZE_BYTES,
) -> Validation:
    if file.media_type not in allowed_types:
        return Validation(
            RejectionReason.UNSUPPORTED_TYPE,
            "Invalid file type. Allowed: MP3, WAV, M4A, OGG, WEBM.",
        )
    if file.size > max_bytes:
        limit_mb = max_bytes / (1024 * 1024)
        return Validation(
            RejectionReason.TOO_LARGE,
            f"File too large. Max size is {limit_mb:g}MB.",
        )
    return Validation()
