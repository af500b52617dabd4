"""Background thread that hosts the local speech-recognition pipeline."""

from __future__ import annotations

import logging
import queue
import threading
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from .transcriber import WhisperPipeline

logger = logging.getLogger(__name__)

Message = Dict[str, Any]

_STOP = object()


class TranscriptionWorker:
    """A single dedicated thread exchanging discrete messages with its owner.

    Requests are ``{"type": "load"}`` and ``{"type": "transcribe", "audio": path}``.
    Replies passed to ``on_message`` are ``{"status": "progress", "file", "progress"}``,
    ``{"status": "ready"}``, ``{"status": "complete", "result"}`` and
    ``{"status": "error", "error"}``. A request may carry an ``id``; every
    reply to it, progress included, echoes that id.
    """

    def __init__(self, pipeline: WhisperPipeline, on_message: Callable[[Message], None]) -> None:
        self._pipeline = pipeline
        self._on_message = on_message
        self._inbox: "queue.Queue[object]" = queue.Queue()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._thread = threading.Thread(
            target=self._run, args=(self._inbox,), name="grammarhub-transcriber", daemon=True
        )
        self._thread.start()

    def post(self, message: Message) -> None:
        self.start()
        self._inbox.put(message)

    def stop(self) -> None:
        """Let the thread finish its queued requests and exit, without waiting."""

        if self._thread is None:
            return
        self._inbox.put(_STOP)
        self._inbox = queue.Queue()
        self._thread = None

    def close(self, timeout: Optional[float] = 5.0) -> None:
        thread = self._thread
        self.stop()
        if thread is None:
            return
        thread.join(timeout)
        if thread.is_alive():
            logger.warning("Transcription worker did not stop within %ss", timeout)

    def _run(self, inbox: "queue.Queue[object]") -> None:
        while True:
            message = inbox.get()
            if message is _STOP:
                break
            self._dispatch(message)

    def _dispatch(self, message: Any) -> None:
        kind = message.get("type") if isinstance(message, dict) else None
        if kind == "load":
            self._handle_load(message.get("id"))
        elif kind == "transcribe":
            self._handle_transcribe(message.get("audio"), message.get("id"))
        else:
            logger.debug("Ignoring unknown worker message: %r", message)

    def _progress_reporter(self, request_id: Any) -> Callable[[str, float], None]:
        def report(name: str, progress: float) -> None:
            self._emit({"status": "progress", "file": name, "progress": progress}, request_id)

        return report

    def _handle_load(self, request_id: Any) -> None:
        try:
            self._pipeline.get_instance(progress_callback=self._progress_reporter(request_id))
        except Exception as exc:
            logger.exception("Failed to load speech-recognition model")
            self._emit({"status": "error", "error": str(exc)}, request_id)
            return
        self._emit({"status": "ready"}, request_id)

    def _handle_transcribe(self, audio: Optional[str], request_id: Any) -> None:
        try:
            if not audio:
                raise ValueError("No audio was provided for transcription.")
            self._pipeline.get_instance(progress_callback=self._progress_reporter(request_id))
            text = self._pipeline.transcribe(Path(audio))
        except Exception as exc:
            logger.exception("Local transcription failed")
            self._emit({"status": "error", "error": str(exc)}, request_id)
            return
        self._emit({"status": "complete", "result": text}, request_id)

    def _emit(self, message: Message, request_id: Any = None) -> None:
        if request_id is not None:
            message["id"] = request_id
        try:
            self._on_message(message)
        except Exception:
            logger.exception("Worker message handler failed for %s", message.get("status"))
