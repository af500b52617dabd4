import hashlib
import sys
from types import SimpleNamespace

import httpx
import openai
import pytest

from grammarhub.ai import AIClient
from grammarhub.errors import MissingConfiguration, UpstreamGenericError, UpstreamNetworkError
from grammarhub.models import AudioFile, Settings
from grammarhub.transcriber import RemoteTranscriber, WhisperPipeline, download_checkpoint

from .conftest import AUDIO, make_settings

CHECKPOINT = b"\x00whisper-weights" * 4096
CHECKPOINT_SHA = hashlib.sha256(CHECKPOINT).hexdigest()
CHECKPOINT_URL = f"https://models.example.test/{CHECKPOINT_SHA}/tiny.pt"


class FakeTranscriptions:
    def __init__(self, text="", exc=None):
        self.text = text
        self.exc = exc
        self.calls = []

    def create(self, **kwargs):
        self.calls.append(kwargs)
        if self.exc is not None:
            raise self.exc
        return SimpleNamespace(text=self.text)


def _remote(transcriptions):
    client = SimpleNamespace(audio=SimpleNamespace(transcriptions=transcriptions))
    return RemoteTranscriber(AIClient(factory=lambda api_key: client))


def test_remote_transcription_returns_trimmed_text():
    transcriptions = FakeTranscriptions("  Good morning, everyone.\n")
    text = _remote(transcriptions).transcribe(AUDIO, make_settings(transcription_model="whisper-test"))

    assert text == "Good morning, everyone."
    call = transcriptions.calls[0]
    assert call["model"] == "whisper-test"
    assert call["file"] == (AUDIO.name, AUDIO.data, AUDIO.media_type)


def test_remote_transcription_requires_a_key():
    transcriptions = FakeTranscriptions("text")
    with pytest.raises(MissingConfiguration):
        _remote(transcriptions).transcribe(AUDIO, Settings())
    assert transcriptions.calls == []


def test_empty_remote_transcription_is_an_error():
    with pytest.raises(UpstreamGenericError, match="No transcription"):
        _remote(FakeTranscriptions("   ")).transcribe(AUDIO, make_settings())


def test_remote_transport_failure_is_a_network_error():
    request = httpx.Request("POST", "https://api.openai.com/v1/audio/transcriptions")
    transcriptions = FakeTranscriptions(exc=openai.APIConnectionError(request=request))
    with pytest.raises(UpstreamNetworkError):
        _remote(transcriptions).transcribe(AUDIO, make_settings())


def test_audio_file_from_path_detects_media_type(tmp_path):
    path = tmp_path / "Lesson.WAV"
    path.write_bytes(b"RIFF")
    audio = AudioFile.from_path(path)
    assert audio.media_type == "audio/wav"
    assert audio.size == 4
    assert AudioFile.from_path(path, media_type="audio/x-m4a").media_type == "audio/x-m4a"


def _download_client(payload=CHECKPOINT):
    requests = []

    def handler(request):
        requests.append(request)
        return httpx.Response(200, content=payload)

    return httpx.Client(transport=httpx.MockTransport(handler)), requests


def test_checkpoint_download_reports_progress_and_verifies(tmp_path):
    client, requests = _download_client()
    reports = []

    path = download_checkpoint(CHECKPOINT_URL, tmp_path, lambda name, pct: reports.append((name, pct)), client)

    assert path == tmp_path / "tiny.pt"
    assert path.read_bytes() == CHECKPOINT
    assert len(requests) == 1
    assert reports[0] == ("tiny.pt", 0.0)
    assert reports[-1] == ("tiny.pt", 100.0)
    percents = [pct for _, pct in reports]
    assert percents == sorted(percents)
    assert not (tmp_path / "tiny.pt.part").exists()


def test_cached_checkpoint_is_reused(tmp_path):
    (tmp_path / "tiny.pt").write_bytes(CHECKPOINT)
    client, requests = _download_client()
    reports = []

    download_checkpoint(CHECKPOINT_URL, tmp_path, lambda name, pct: reports.append(pct), client)

    assert requests == []
    assert reports == [100.0]


def test_corrupt_download_is_discarded(tmp_path):
    client, _ = _download_client(payload=b"truncated")
    with pytest.raises(RuntimeError, match="checksum"):
        download_checkpoint(CHECKPOINT_URL, tmp_path, None, client)
    assert not (tmp_path / "tiny.pt").exists()
    assert not (tmp_path / "tiny.pt.part").exists()


def test_whisper_without_a_model_table_uses_its_own_download(tmp_path, monkeypatch):
    loads = []
    fake_whisper = SimpleNamespace(
        available_models=lambda: ["tiny", "base"],
        load_model=lambda name, **kwargs: loads.append((name, kwargs)) or "model",
    )
    monkeypatch.setitem(sys.modules, "whisper", fake_whisper)
    monkeypatch.setitem(sys.modules, "torch", SimpleNamespace(cuda=SimpleNamespace(is_available=lambda: False)))

    pipeline = WhisperPipeline("tiny", download_root=tmp_path)

    assert pipeline.get_instance() == "model"
    assert loads == [("tiny", {"device": "cpu", "download_root": str(tmp_path)})]


def test_unknown_whisper_model_is_reported(tmp_path, monkeypatch):
    fake_whisper = SimpleNamespace(_MODELS={}, available_models=lambda: ["tiny"], load_model=None)
    monkeypatch.setitem(sys.modules, "whisper", fake_whisper)
    monkeypatch.setitem(sys.modules, "torch", SimpleNamespace(cuda=SimpleNamespace(is_available=lambda: False)))

    with pytest.raises(RuntimeError, match="Unknown whisper model 'huge'"):
        WhisperPipeline("huge", download_root=tmp_path).get_instance()
