"""Audio transcription backends."""

from __future__ import annotations

import hashlib
import logging
import os
from pathlib import Path
from typing import Callable, Optional, Protocol

import httpx
import openai

from .ai import AIClient, translate_error
from .errors import UpstreamGenericError
from .models import AudioFile, Settings

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str, float], None]

DEFAULT_DOWNLOAD_ROOT = Path(os.getenv("XDG_CACHE_HOME", Path.home() / ".cache")) / "whisper"
_CHUNK_SIZE = 1 << 16


class TranscriptionBackend(Protocol):
    """Common interface for transcription backends that run inline."""

    def transcribe(self, file: AudioFile, settings: Settings) -> str:
        """Return the verbatim transcript of ``file``."""


class RemoteTranscriber:
    """Transcription through the hosted AI API."""

    def __init__(self, client: Optional[AIClient] = None) -> None:
        self._client = client or AIClient()

    def transcribe(self, file: AudioFile, settings: Settings) -> str:
        client = self._client.get(settings.ai_api_key)
        try:
            response = client.audio.transcriptions.create(
                model=settings.transcription_model,
                file=(file.name, file.data, file.media_type),
                prompt="Transcribe verbatim. If there are several speakers, format it like a script.",
            )
        except openai.OpenAIError as exc:
            logger.error("Remote transcription failed: %s", exc)
            raise translate_error(exc, "transcription") from exc

        text = (getattr(response, "text", None) or "").strip()
        if not text:
            raise UpstreamGenericError("No transcription received from the AI API.")
        return text


def _sha256(path: Path) -> str:
    digest = hashlib.sha256()
    with path.open("rb") as fh:
        for chunk in iter(lambda: fh.read(_CHUNK_SIZE), b""):
            digest.update(chunk)
    return digest.hexdigest()


def download_checkpoint(
    url: str,
    root: Path,
    progress_callback: Optional[ProgressCallback] = None,
    client: Optional[httpx.Client] = None,
) -> Path:
    """Fetch a whisper checkpoint into ``root``, reporting percent complete.

    Checkpoint URLs carry their SHA-256 as the second-to-last path segment;
    cached files are reused only when they still match it.
    """

    root.mkdir(parents=True, exist_ok=True)
    name = url.rsplit("/", 1)[-1]
    expected_sha256 = url.split("/")[-2]
    target = root / name

    def report(progress: float) -> None:
        if progress_callback is not None:
            progress_callback(name, progress)

    if target.is_file():
        if _sha256(target) == expected_sha256:
            report(100.0)
            return target
        logger.warning("Checksum mismatch for cached %s; downloading again", target)

    partial = target.with_name(target.name + ".part")
    owns_client = client is None
    http = client or httpx.Client(follow_redirects=True, timeout=None)
    try:
        with http.stream("GET", url) as response:
            response.raise_for_status()
            total = int(response.headers.get("content-length") or 0)
            received = 0
            last_reported = -1
            report(0.0)
            with partial.open("wb") as output:
                for chunk in response.iter_bytes(_CHUNK_SIZE):
                    output.write(chunk)
                    received += len(chunk)
                    if total:
                        percent = int(received * 100 / total)
                        if percent != last_reported:
                            last_reported = percent
                            report(float(percent))
    finally:
        if owns_client:
            http.close()

    if _sha256(partial) != expected_sha256:
        partial.unlink(missing_ok=True)
        raise RuntimeError(f"Downloaded {name} does not match its expected checksum.")
    os.replace(partial, target)
    report(100.0)
    return target


class WhisperPipeline:
    """Local speech recognition with the ``openai-whisper`` package.

    The model is fetched and loaded on first use and kept for the lifetime of
    the pipeline. Only the transcription worker thread touches it.
    """

    def __init__(
        self,
        model_name: str = "base",
        language: Optional[str] = "english",
        download_root: Optional[Path] = None,
        device: Optional[str] = None,
    ) -> None:
        self.model_name = model_name
        self.language = language
        self.download_root = download_root or DEFAULT_DOWNLOAD_ROOT
        self.device = device
        self._model = None

    @property
    def loaded(self) -> bool:
        return self._model is not None

    def get_instance(self, progress_callback: Optional[ProgressCallback] = None):
        if self._model is None:
            self._model = self._load(progress_callback)
        return self._model

    def _load(self, progress_callback: Optional[ProgressCallback]):
        try:
            import torch
            import whisper  # type: ignore
        except Exception as exc:  # pragma: no cover - optional dependency
            raise RuntimeError(
                "The `openai-whisper` package is required for local transcription."
            ) from exc

        if self.device is None:
            self.device = "cuda" if torch.cuda.is_available() else "cpu"

        # whisper publishes checkpoint URLs only through the private _MODELS
        # table, and its own download has no progress hook.
        url = getattr(whisper, "_MODELS", {}).get(self.model_name)
        if url is not None:
            checkpoint = str(download_checkpoint(url, self.download_root, progress_callback))
        elif os.path.isfile(self.model_name):
            checkpoint = self.model_name
        elif self.model_name in whisper.available_models():
            logger.info("Loading whisper model %s through whisper's own download", self.model_name)
            return whisper.load_model(
                self.model_name, device=self.device, download_root=str(self.download_root)
            )
        else:
            raise RuntimeError(
                f"Unknown whisper model {self.model_name!r}. "
                f"Available: {', '.join(whisper.available_models())}"
            )

        logger.info("Loading whisper model %s on %s", self.model_name, self.device)
        return whisper.load_model(checkpoint, device=self.device)

    def transcribe(self, audio_path: Path) -> str:
        model = self.get_instance()
        result = model.transcribe(
            str(audio_path),
            task="transcribe",
            language=self.language,
            temperature=0.0,
        )
        return result.get("text", "").strip()
