"""Application context owning settings and the lazily created providers."""

from __future__ import annotations

import logging
from typing import Callable, Optional

from . import config as config_mod
from .grammar import GrammarAnalyzer
from .models import Settings
from .storage import SupabaseStorage
from .transcriber import RemoteTranscriber, TranscriptionBackend, WhisperPipeline
from .worker import Message, TranscriptionWorker

logger = logging.getLogger(__name__)


class Session:
    """Everything one interactive session needs, created on first use.

    The whisper pipeline and its worker thread are rebuilt only when the
    configured model or language changes; the storage provider rebuilds its
    own HTTP client when credentials change.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        storage: Optional[SupabaseStorage] = None,
        transcriber: Optional[TranscriptionBackend] = None,
        analyzer: Optional[GrammarAnalyzer] = None,
        pipeline_factory: Optional[Callable[[Settings], WhisperPipeline]] = None,
    ) -> None:
        self._settings = settings if settings is not None else config_mod.load_settings()
        self.storage = storage or SupabaseStorage()
        self.transcriber = transcriber or RemoteTranscriber()
        self.analyzer = analyzer or GrammarAnalyzer()
        self._pipeline_factory = pipeline_factory or _default_pipeline
        self._pipeline: Optional[WhisperPipeline] = None
        self._pipeline_key: Optional[tuple] = None
        self._worker: Optional[TranscriptionWorker] = None

    @property
    def settings(self) -> Settings:
        return self._settings

    def update_settings(self, settings: Settings) -> None:
        config_mod.save_settings(settings)
        self._settings = settings

    @property
    def uses_local_transcription(self) -> bool:
        return self._settings.transcription_backend != "remote"

    def pipeline(self) -> WhisperPipeline:
        key = (self._settings.whisper_model, self._settings.language)
        if self._pipeline is None or key != self._pipeline_key:
            if self._worker is not None:
                logger.debug("Retiring transcription worker for %s", self._pipeline_key)
                self._worker.stop()
                self._worker = None
            self._pipeline = self._pipeline_factory(self._settings)
            self._pipeline_key = key
        return self._pipeline

    def transcription_worker(self, on_message: Callable[[Message], None]) -> TranscriptionWorker:
        pipeline = self.pipeline()
        if self._worker is None:
            logger.debug("Starting transcription worker")
            self._worker = TranscriptionWorker(pipeline, on_message)
            self._worker.start()
        return self._worker

    def close(self) -> None:
        if self._worker is not None:
            self._worker.close()
            self._worker = None
        self.storage.close()


def _default_pipeline(settings: Settings) -> WhisperPipeline:
    return WhisperPipeline(model_name=settings.whisper_model, language=settings.language or None)
