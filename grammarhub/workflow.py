"""The upload, transcribe, review and analyze state machine."""

from __future__ import annotations

import asyncio
import logging
import tempfile
from pathlib import Path
from typing import Collection, Optional

from fastapi.concurrency import run_in_threadpool

from .errors import GrammarHubError, MissingConfiguration, ValidationError, WorkflowError
from .models import (
    AnalysisResult,
    AudioFile,
    ModelProgress,
    WorkflowSnapshot,
    WorkflowState,
)
from .session import Session
from .validation import ALLOWED_AUDIO_TYPES, MAX_FILE_SIZE_BYTES, validate_file
from .worker import Message

logger = logging.getLogger(__name__)

BUSY_STATES = frozenset({WorkflowState.UPLOADING, WorkflowState.TRANSCRIBING, WorkflowState.ANALYZING})

STORAGE_PROMPT = "Please configure storage details to continue."
AI_KEY_PROMPT = "An AI API key is required for the analysis step."
REMOTE_AI_KEY_PROMPT = "An AI API key is required for remote transcription."


class WorkflowController:
    """Drive one audio file from upload to a saved grammar analysis.

    Only one workflow is active at a time. Every run gets a generation number
    that ``reset`` and failures advance, and local transcription requests
    carry an id echoed by the worker. Results from an older generation or
    request are dropped; nothing in flight is cancelled.
    """

    def __init__(
        self,
        session: Session,
        allowed_types: Collection[str] = ALLOWED_AUDIO_TYPES,
        max_bytes: int = MAX_FILE_SIZE_BYTES,
    ) -> None:
        self._session = session
        self._allowed_types = allowed_types
        self._max_bytes = max_bytes
        self._changed = asyncio.Event()
        self._audio_handle: Optional[Path] = None
        self._generation = 0
        self._request_seq = 0
        self._request_id: Optional[int] = None
        self.state = WorkflowState.IDLE
        self.file: Optional[AudioFile] = None
        self.storage_path: Optional[str] = None
        self.transcript: Optional[str] = None
        self.result: Optional[AnalysisResult] = None
        self.progress: Optional[ModelProgress] = None
        self.error: Optional[str] = None
        self.config_prompt: Optional[str] = None

    @property
    def session(self) -> Session:
        return self._session

    def snapshot(self) -> WorkflowSnapshot:
        return WorkflowSnapshot(
            state=self.state,
            filename=self.file.name if self.file else None,
            storage_path=self.storage_path,
            transcript=self.transcript,
            progress=self.progress,
            result=self.result,
            error=self.error,
            config_prompt=self.config_prompt,
        )

    def _transition(self, state: WorkflowState) -> None:
        logger.debug("Workflow %s -> %s", self.state.value, state.value)
        self.state = state
        self._notify()

    def _notify(self) -> None:
        changed, self._changed = self._changed, asyncio.Event()
        changed.set()

    async def wait_for_change(self) -> WorkflowState:
        await self._changed.wait()
        return self.state

    async def wait_until_settled(self) -> WorkflowState:
        while self.state in BUSY_STATES:
            await self.wait_for_change()
        return self.state

    def clear_messages(self) -> None:
        self.error = None
        self.config_prompt = None
        self._notify()

    async def select_file(self, file: AudioFile) -> WorkflowState:
        if self.state is not WorkflowState.IDLE:
            raise WorkflowError("Another recording is already being processed. Start over first.")
        self.error = None
        self.config_prompt = None

        validation = validate_file(file, self._allowed_types, self._max_bytes)
        if not validation.ok:
            self.error = validation.message
            self._notify()
            raise ValidationError(validation.message)

        settings = self._session.settings
        if not settings.has_storage_credentials:
            self._prompt_for_configuration(STORAGE_PROMPT)
        if not self._session.uses_local_transcription and not settings.has_ai_credentials:
            self._prompt_for_configuration(REMOTE_AI_KEY_PROMPT)

        self._generation += 1
        generation = self._generation
        self.file = file
        self._transition(WorkflowState.UPLOADING)
        try:
            storage_path = await run_in_threadpool(self._session.storage.upload_file, file, settings)
        except GrammarHubError as exc:
            if self._is_current(generation, WorkflowState.UPLOADING):
                self._fail(f"Upload failed: {exc}")
            return self.state
        if not self._is_current(generation, WorkflowState.UPLOADING):
            logger.debug("Dropping upload result for abandoned file %s", file.name)
            return self.state

        self.storage_path = storage_path
        self._transition(WorkflowState.TRANSCRIBING)
        if self._session.uses_local_transcription:
            self._request_local_transcription(file)
        else:
            await self._transcribe_remotely(file, generation)
        return self.state

    def _is_current(self, generation: int, state: WorkflowState) -> bool:
        return self._generation == generation and self.state is state

    def _prompt_for_configuration(self, message: str) -> None:
        self.config_prompt = message
        self._notify()
        raise MissingConfiguration(message)

    async def _transcribe_remotely(self, file: AudioFile, generation: int) -> None:
        settings = self._session.settings
        try:
            text = await run_in_threadpool(self._session.transcriber.transcribe, file, settings)
        except GrammarHubError as exc:
            if self._is_current(generation, WorkflowState.TRANSCRIBING):
                self._fail(f"Transcription Error: {exc}")
            return
        if self._is_current(generation, WorkflowState.TRANSCRIBING):
            self._transcription_complete(text)
        else:
            logger.debug("Dropping transcript for abandoned file %s", file.name)

    def _request_local_transcription(self, file: AudioFile) -> None:
        loop = asyncio.get_running_loop()

        def deliver(message: Message) -> None:
            loop.call_soon_threadsafe(self.handle_worker_message, message)

        with tempfile.NamedTemporaryFile(prefix="grammarhub-", suffix=file.suffix, delete=False) as fh:
            fh.write(file.data)
        self._audio_handle = Path(fh.name)
        worker = self._session.transcription_worker(deliver)
        self._request_seq += 1
        self._request_id = self._request_seq
        worker.post({"type": "transcribe", "audio": str(self._audio_handle), "id": self._request_id})

    def handle_worker_message(self, message: Message) -> None:
        """Apply a reply from the transcription worker."""

        status = message.get("status")
        if message.get("id") != self._request_id:
            logger.debug("Ignoring %s reply to an abandoned request", status)
            return
        if self.state is not WorkflowState.TRANSCRIBING:
            logger.debug("Ignoring %s message outside transcription", status)
            return
        if status == "progress":
            self.progress = ModelProgress(
                name=str(message.get("file", "")),
                progress=float(message.get("progress", 0)),
            )
            self._notify()
        elif status == "ready":
            logger.info("Speech-recognition model ready")
        elif status == "complete":
            self._transcription_complete(str(message.get("result") or ""))
        elif status == "error":
            self._fail(f"Transcription Error: {message.get('error')}")
        else:
            logger.debug("Unknown worker status %r", status)

    def _transcription_complete(self, text: str) -> None:
        self.transcript = text.strip()
        self.progress = None
        self._discard_audio_handle()
        self._transition(WorkflowState.REVIEWING_TRANSCRIPT)

    async def confirm_transcript(self, transcript: Optional[str] = None) -> WorkflowState:
        """Analyze the reviewed transcript, as edited by the user."""

        if self.state is not WorkflowState.REVIEWING_TRANSCRIPT or self.file is None:
            raise WorkflowError("There is no transcript awaiting review.")
        settings = self._session.settings
        self.config_prompt = None
        if not settings.has_ai_credentials:
            self._prompt_for_configuration(AI_KEY_PROMPT)

        text = transcript if transcript is not None else (self.transcript or "")
        file, storage_path = self.file, self.storage_path or ""
        generation = self._generation
        self.transcript = text
        self._transition(WorkflowState.ANALYZING)
        try:
            analysis = await run_in_threadpool(self._session.analyzer.analyze, text, settings)
        except GrammarHubError as exc:
            if self._is_current(generation, WorkflowState.ANALYZING):
                self._fail(str(exc))
            return self.state
        if not self._is_current(generation, WorkflowState.ANALYZING):
            logger.debug("Dropping analysis result for abandoned file %s", file.name)
            return self.state

        result = AnalysisResult.combine(text, analysis)
        saved = await run_in_threadpool(
            self._session.storage.save_record, file.name, storage_path, result, settings
        )
        if not saved:
            logger.info("Analysis of %s was not persisted", file.name)
        if self._is_current(generation, WorkflowState.ANALYZING):
            self.result = result
            self._transition(WorkflowState.SUCCESS)
        return self.state

    def cancel_review(self) -> None:
        if self.state is not WorkflowState.REVIEWING_TRANSCRIPT:
            raise WorkflowError("There is no transcript awaiting review.")
        self.reset()

    def reset(self) -> None:
        self._abandon_run()
        self.file = None
        self.storage_path = None
        self.transcript = None
        self.result = None
        self.progress = None
        self.error = None
        self.config_prompt = None
        self._transition(WorkflowState.IDLE)

    def _fail(self, message: str) -> None:
        logger.error("Workflow failed: %s", message)
        self._abandon_run()
        self.file = None
        self.storage_path = None
        self.transcript = None
        self.result = None
        self.progress = None
        self.error = message
        self._transition(WorkflowState.ERROR)

    def _discard_audio_handle(self) -> None:
        if self._audio_handle is not None:
            self._audio_handle.unlink(missing_ok=True)
            self._audio_handle = None

    def _abandon_run(self) -> None:
        self._generation += 1
        self._request_id = None
        self._discard_audio_handle()
