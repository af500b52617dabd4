import threading

from grammarhub.worker import TranscriptionWorker

from .conftest import FakePipeline


class Inbox:
    def __init__(self, until=("complete", "error")):
        self.messages = []
        self.until = until
        self.done = threading.Event()

    def __call__(self, message):
        self.messages.append(message)
        if message["status"] in self.until:
            self.done.set()


def _run(pipeline, request, until=("complete", "error")):
    inbox = Inbox(until)
    worker = TranscriptionWorker(pipeline, inbox)
    worker.post(request)
    assert inbox.done.wait(5), "worker did not reply"
    worker.close()
    return inbox.messages, worker


def test_transcribe_reports_progress_then_result():
    pipeline = FakePipeline(text="  Hello there.  ")
    messages, worker = _run(pipeline, {"type": "transcribe", "audio": "/tmp/lesson.wav"})

    assert messages == [
        {"status": "progress", "file": "model.pt", "progress": 40.0},
        {"status": "progress", "file": "model.pt", "progress": 100.0},
        {"status": "complete", "result": "Hello there."},
    ]
    assert pipeline.audio_paths == ["/tmp/lesson.wav"]
    assert not worker.running


def test_model_is_loaded_once_per_pipeline():
    pipeline = FakePipeline()
    inbox = Inbox()
    worker = TranscriptionWorker(pipeline, inbox)
    worker.post({"type": "transcribe", "audio": "/tmp/a.wav"})
    assert inbox.done.wait(5)

    inbox.done.clear()
    inbox.messages.clear()
    worker.post({"type": "transcribe", "audio": "/tmp/b.wav"})
    assert inbox.done.wait(5)
    worker.close()

    assert [m["status"] for m in inbox.messages] == ["complete"]


def test_load_request_replies_ready():
    messages, _ = _run(FakePipeline(), {"type": "load"}, until=("ready", "error"))
    assert [m["status"] for m in messages] == ["progress", "progress", "ready"]


def test_failure_is_a_single_terminal_error():
    pipeline = FakePipeline(exc=RuntimeError("ffmpeg could not decode audio"))
    messages, _ = _run(pipeline, {"type": "transcribe", "audio": "/tmp/broken.wav"})

    terminal = [m for m in messages if m["status"] != "progress"]
    assert terminal == [{"status": "error", "error": "ffmpeg could not decode audio"}]


def test_missing_audio_is_an_error():
    messages, _ = _run(FakePipeline(), {"type": "transcribe"})
    assert messages[-1]["status"] == "error"


def test_worker_starts_lazily_and_stops_on_close():
    worker = TranscriptionWorker(FakePipeline(), lambda message: None)
    assert not worker.running
    worker.start()
    assert worker.running
    worker.close()
    assert not worker.running


def test_replies_echo_the_request_id():
    messages, _ = _run(FakePipeline(), {"type": "transcribe", "audio": "/tmp/a.wav", "id": 3})
    assert {m["id"] for m in messages} == {3}
    assert [m["status"] for m in messages] == ["progress", "progress", "complete"]


def test_stop_returns_while_a_request_drains():
    release = threading.Event()

    class SlowPipeline(FakePipeline):
        def transcribe(self, audio_path):
            assert release.wait(5)
            return super().transcribe(audio_path)

    inbox = Inbox()
    worker = TranscriptionWorker(SlowPipeline(), inbox)
    worker.post({"type": "transcribe", "audio": "/tmp/a.wav"})
    worker.stop()
    assert not worker.running

    release.set()
    assert inbox.done.wait(5)
    assert inbox.messages[-1]["status"] == "complete"
