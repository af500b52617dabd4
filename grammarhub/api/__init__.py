"""FastAPI application driving a grammarhub workflow from the browser."""

from __future__ import annotations

from typing import List, Optional

from fastapi import (
    FastAPI,
    File,
    HTTPException,
    Request,
    UploadFile,
    status,
)
from pydantic import BaseModel, Field

from .. import __version__
from ..config import settings_from_record, settings_to_record
from ..errors import MissingConfiguration, ValidationError, WorkflowError
from ..models import AudioFile, WorkflowSnapshot, WorkflowState
from ..session import Session
from ..workflow import WorkflowController


class HealthResponse(BaseModel):
    status: str = "ok"
    version: str
    transcription_backend: str
    model: str


class SettingsPayload(BaseModel):
    endpoint: str = ""
    storageKey: str = ""
    bucketName: str = "audio-uploads"
    aiApiKey: str = ""
    transcriptionBackend: str = "local"
    whisperModel: str = "base"
    transcriptionModel: str = "whisper-1"
    analysisModel: str = "gpt-4o-mini"
    language: str = "english"


class ProgressPayload(BaseModel):
    name: str
    progress: float


class GrammarPointPayload(BaseModel):
    title: str
    explanation: str
    example: str
    difficulty: str


class AnalysisPayload(BaseModel):
    transcription: str
    summary: str
    grammarPoints: List[GrammarPointPayload] = Field(default_factory=list)


class WorkflowPayload(BaseModel):
    state: WorkflowState
    filename: Optional[str] = None
    storage_path: Optional[str] = None
    transcript: Optional[str] = None
    progress: Optional[ProgressPayload] = None
    result: Optional[AnalysisPayload] = None
    error: Optional[str] = None
    config_prompt: Optional[str] = None


class TranscriptRequest(BaseModel):
    transcript: str


def _snapshot_to_payload(snapshot: WorkflowSnapshot) -> WorkflowPayload:
    result = None
    if snapshot.result is not None:
        result = AnalysisPayload(
            transcription=snapshot.result.transcript,
            summary=snapshot.result.summary,
            grammarPoints=[
                GrammarPointPayload(**point.as_record()) for point in snapshot.result.grammar_points
            ],
        )
    progress = None
    if snapshot.progress is not None:
        progress = ProgressPayload(name=snapshot.progress.name, progress=snapshot.progress.progress)
    return WorkflowPayload(
        state=snapshot.state,
        filename=snapshot.filename,
        storage_path=snapshot.storage_path,
        transcript=snapshot.transcript,
        progress=progress,
        result=result,
        error=snapshot.error,
        config_prompt=snapshot.config_prompt,
    )


def _controller(request: Request) -> WorkflowController:
    return request.app.state.controller


def create_app(session: Optional[Session] = None) -> FastAPI:
    """Build the API around a single workflow session."""

    app = FastAPI(
        title="grammarhub API",
        description="Upload classroom audio, review the transcript and extract grammar points.",
        version=__version__,
    )
    app.state.session = session or Session()
    app.state.controller = WorkflowController(app.state.session)

    @app.on_event("shutdown")
    async def close_session() -> None:
        app.state.session.close()

    @app.get("/health", response_model=HealthResponse)
    async def healthcheck(request: Request) -> HealthResponse:
        settings = request.app.state.session.settings
        local = request.app.state.session.uses_local_transcription
        return HealthResponse(
            version=__version__,
            transcription_backend="local" if local else "remote",
            model=settings.whisper_model if local else settings.transcription_model,
        )

    @app.get("/settings", response_model=SettingsPayload)
    async def read_settings(request: Request) -> SettingsPayload:
        return SettingsPayload(**settings_to_record(request.app.state.session.settings))

    @app.put("/settings", response_model=SettingsPayload)
    async def save_settings(payload: SettingsPayload, request: Request) -> SettingsPayload:
        settings = settings_from_record(payload.model_dump())
        request.app.state.session.update_settings(settings)
        _controller(request).clear_messages()
        return SettingsPayload(**settings_to_record(settings))

    @app.get("/workflow", response_model=WorkflowPayload)
    async def read_workflow(request: Request) -> WorkflowPayload:
        return _snapshot_to_payload(_controller(request).snapshot())

    @app.post("/workflow/file", response_model=WorkflowPayload)
    async def upload_file(request: Request, file: UploadFile = File(...)) -> WorkflowPayload:
        controller = _controller(request)
        audio = AudioFile(
            name=file.filename or "audio",
            media_type=file.content_type or "application/octet-stream",
            data=await file.read(),
        )
        try:
            await controller.select_file(audio)
        except ValidationError as exc:
            raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
        except MissingConfiguration as exc:
            raise HTTPException(status_code=status.HTTP_428_PRECONDITION_REQUIRED, detail=str(exc)) from exc
        except WorkflowError as exc:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
        return _snapshot_to_payload(controller.snapshot())

    @app.post("/workflow/transcript", response_model=WorkflowPayload)
    async def confirm_transcript(payload: TranscriptRequest, request: Request) -> WorkflowPayload:
        controller = _controller(request)
        try:
            await controller.confirm_transcript(payload.transcript)
        except MissingConfiguration as exc:
            raise HTTPException(status_code=status.HTTP_428_PRECONDITION_REQUIRED, detail=str(exc)) from exc
        except WorkflowError as exc:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
        return _snapshot_to_payload(controller.snapshot())

    @app.post("/workflow/cancel", response_model=WorkflowPayload)
    async def cancel_review(request: Request) -> WorkflowPayload:
        controller = _controller(request)
        try:
            controller.cancel_review()
        except WorkflowError as exc:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
        return _snapshot_to_payload(controller.snapshot())

    @app.post("/workflow/reset", response_model=WorkflowPayload)
    async def reset_workflow(request: Request) -> WorkflowPayload:
        controller = _controller(request)
        controller.reset()
        return _snapshot_to_payload(controller.snapshot())

    return app


__all__ = ["create_app"]
