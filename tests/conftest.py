from __future__ import annotations

from typing import List, Optional

import pytest

from grammarhub import config
from grammarhub.models import (
    AudioFile,
    Difficulty,
    GrammarAnalysis,
    GrammarPoint,
    Settings,
)
from grammarhub.session import Session

AUDIO = AudioFile(name="lesson one.mp3", media_type="audio/mpeg", data=b"ID3fake-audio")


def make_settings(**overrides) -> Settings:
    values = {
        "endpoint": "https://project.supabase.co",
        "storage_key": "anon-key",
        "bucket_name": "audio-uploads",
        "ai_api_key": "sk-test",
    }
    values.update(overrides)
    return Settings(**values)


def make_analysis(count: int = 3) -> GrammarAnalysis:
    difficulties = list(Difficulty)
    return GrammarAnalysis(
        summary="Two students plan a weekend trip.",
        grammar_points=tuple(
            GrammarPoint(
                title=f"Point {index}",
                explanation="Used to talk about plans.",
                example="We are going to visit the lake.",
                difficulty=difficulties[index % 3],
            )
            for index in range(count)
        ),
    )


class FakeStorage:
    def __init__(self, fail_upload: Optional[Exception] = None, save_ok: bool = True) -> None:
        self.fail_upload = fail_upload
        self.save_ok = save_ok
        self.uploads: List[AudioFile] = []
        self.records: List[tuple] = []
        self.closed = False

    def upload_file(self, file: AudioFile, settings: Settings) -> str:
        if self.fail_upload is not None:
            raise self.fail_upload
        self.uploads.append(file)
        return f"1700000000000_{len(self.uploads)}.mp3"

    def save_record(self, filename, storage_path, result, settings) -> bool:
        self.records.append((filename, storage_path, result))
        return self.save_ok

    def close(self) -> None:
        self.closed = True


class FakeTranscriber:
    def __init__(self, text: str = "  Hello class, today we are going to read.  ", exc: Optional[Exception] = None):
        self.text = text
        self.exc = exc
        self.calls: List[AudioFile] = []

    def transcribe(self, file: AudioFile, settings: Settings) -> str:
        self.calls.append(file)
        if self.exc is not None:
            raise self.exc
        return self.text.strip()


class FakeAnalyzer:
    def __init__(self, exc: Optional[Exception] = None) -> None:
        self.exc = exc
        self.transcripts: List[str] = []

    def analyze(self, transcript: str, settings: Settings) -> GrammarAnalysis:
        self.transcripts.append(transcript)
        if self.exc is not None:
            raise self.exc
        return make_analysis()


class FakePipeline:
    """Stands in for the whisper pipeline inside the real worker thread."""

    model_name = "base"
    device = "cpu"

    def __init__(self, text: str = " Local transcript. ", exc: Optional[Exception] = None) -> None:
        self.text = text
        self.exc = exc
        self.loaded = False
        self.audio_paths: List[str] = []

    def get_instance(self, progress_callback=None):
        if not self.loaded:
            if progress_callback is not None:
                progress_callback("model.pt", 40.0)
                progress_callback("model.pt", 100.0)
            self.loaded = True
        return self

    def transcribe(self, audio_path) -> str:
        self.audio_paths.append(str(audio_path))
        if self.exc is not None:
            raise self.exc
        return self.text.strip()


class RecordingWorker:
    def __init__(self) -> None:
        self.posted: List[dict] = []

    def post(self, message: dict) -> None:
        self.posted.append(message)

    def close(self) -> None:
        pass


@pytest.fixture(autouse=True)
def isolated_store(tmp_path, monkeypatch):
    store_path = tmp_path / "store.json"
    monkeypatch.setattr(config, "STORE_PATH", store_path)
    return store_path


@pytest.fixture
def storage() -> FakeStorage:
    return FakeStorage()


@pytest.fixture
def analyzer() -> FakeAnalyzer:
    return FakeAnalyzer()


@pytest.fixture
def pipeline() -> FakePipeline:
    return FakePipeline()


@pytest.fixture
def session(storage, analyzer, pipeline) -> Session:
    session = Session(
        make_settings(),
        storage=storage,
        transcriber=FakeTranscriber(),
        analyzer=analyzer,
        pipeline_factory=lambda settings: pipeline,
    )
    yield session
    session.close()
