"""Command line interface for the grammarhub application."""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import asdict
from pathlib import Path
from typing import Dict, Optional

import typer

from . import __version__
from . import config as config_mod
from .config import ConfigError
from .errors import GrammarHubError, MissingConfiguration
from .models import AnalysisResult, AudioFile, WorkflowState
from .session import Session
from .workflow import WorkflowController

app = typer.Typer(add_completion=False, help="Turn classroom audio into grammar lessons.")

logger = logging.getLogger(__name__)


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def _fail(message: str) -> None:
    typer.secho(message, fg=typer.colors.RED, err=True)
    raise typer.Exit(code=1)


def _print_result(result: AnalysisResult) -> None:
    typer.secho("Summary:", fg=typer.colors.GREEN, bold=True)
    typer.echo(result.summary)
    typer.echo()
    for index, point in enumerate(result.grammar_points, start=1):
        typer.secho(f"{index}. {point.title} [{point.difficulty.value}]", fg=typer.colors.BLUE, bold=True)
        typer.echo(f"   {point.explanation}")
        typer.secho(f'   "{point.example}"', fg=typer.colors.CYAN)
        typer.echo()


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", help="Log debug output."),
    version: bool = typer.Option(False, "--version", "-v", help="Show version and exit"),
) -> None:
    _configure_logging(verbose)
    if version:
        typer.echo(f"grammarhub v{__version__}")
        raise typer.Exit()

    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())
        raise typer.Exit()


async def _run_workflow(
    controller: WorkflowController,
    audio: AudioFile,
    review: bool,
) -> None:
    last_progress: Optional[tuple] = None
    state = await controller.select_file(audio)
    if controller.storage_path:
        typer.secho(f"Uploaded to {controller.storage_path}", fg=typer.colors.BLUE)

    while state is WorkflowState.TRANSCRIBING:
        progress = controller.progress
        if progress is not None:
            current = (progress.name, round(progress.progress))
            if current != last_progress:
                last_progress = current
                typer.echo(f"Loading {progress.name}: {current[1]}%")
        state = await controller.wait_for_change()

    if state is not WorkflowState.REVIEWING_TRANSCRIPT:
        return

    transcript = controller.transcript or ""
    if review:
        edited = typer.edit(transcript, extension=".txt")
        if edited is not None:
            transcript = edited.strip()
        typer.echo(transcript)
        if not typer.confirm("\nAnalyze this transcript?", default=True):
            controller.cancel_review()
            return

    await controller.confirm_transcript(transcript)


@app.command()
def analyze(
    audio: Path = typer.Argument(..., exists=True, readable=True, dir_okay=False, help="Path to the audio file."),
    review: bool = typer.Option(True, "--review/--no-review", help="Edit the transcript before analysis."),
    media_type: Optional[str] = typer.Option(None, "--media-type", help="Override the detected media type."),
    as_json: bool = typer.Option(False, "--json", help="Print the result as JSON."),
) -> None:
    """Upload, transcribe and extract grammar points from a recording."""

    session = Session()
    controller = WorkflowController(session)
    try:
        asyncio.run(_run_workflow(controller, AudioFile.from_path(audio, media_type), review))
    except MissingConfiguration as exc:
        _fail(f"{exc} Run `grammarhub setup` or `grammarhub config`.")
    except GrammarHubError as exc:
        _fail(str(exc))
    finally:
        session.close()

    if controller.state is WorkflowState.IDLE:
        typer.secho("Analysis cancelled.", fg=typer.colors.YELLOW)
        return
    if controller.state is WorkflowState.ERROR or controller.result is None:
        _fail(controller.error or "Analysis failed.")

    result = controller.result
    if as_json:
        typer.echo(
            json.dumps(
                {
                    "transcription": result.transcript,
                    "summary": result.summary,
                    "grammarPoints": [point.as_record() for point in result.grammar_points],
                },
                indent=2,
            )
        )
        return
    _print_result(result)


@app.command()
def config(
    endpoint: Optional[str] = typer.Option(None, help="Storage project URL."),
    storage_key: Optional[str] = typer.Option(None, help="Storage anon key."),
    bucket_name: Optional[str] = typer.Option(None, help="Bucket receiving uploaded audio."),
    ai_api_key: Optional[str] = typer.Option(None, help="API key for transcription and grammar analysis."),
    transcription_backend: Optional[str] = typer.Option(None, help="Transcription backend (local or remote)."),
    whisper_model: Optional[str] = typer.Option(None, help="Whisper model name for local transcription."),
    transcription_model: Optional[str] = typer.Option(None, help="Model id for remote transcription."),
    analysis_model: Optional[str] = typer.Option(None, help="Model id for grammar analysis."),
    language: Optional[str] = typer.Option(None, help="Spoken language of the recordings."),
    show: bool = typer.Option(False, "--show", help="Display the active configuration."),
) -> None:
    """Update or inspect configuration settings."""

    updates: Dict[str, object] = {
        key: value
        for key, value in {
            "endpoint": endpoint,
            "storage_key": storage_key,
            "bucket_name": bucket_name,
            "ai_api_key": ai_api_key,
            "transcription_backend": transcription_backend,
            "whisper_model": whisper_model,
            "transcription_model": transcription_model,
            "analysis_model": analysis_model,
            "language": language,
        }.items()
        if value is not None
    }

    if show or not updates:
        settings = config_mod.load_settings()
        typer.echo(json.dumps(asdict(settings), indent=2, default=str))
        return

    if transcription_backend is not None and transcription_backend not in ("local", "remote"):
        _fail("Transcription backend must be 'local' or 'remote'.")

    try:
        config_mod.update_settings(**updates)
    except ConfigError as exc:
        _fail(str(exc))
    typer.secho("Configuration updated.", fg=typer.colors.BLUE)


@app.command()
def setup() -> None:
    """Run the interactive setup wizard."""

    from .onboarding import run_onboarding

    try:
        run_onboarding()
    except ConfigError as exc:
        _fail(f"Setup failed: {exc}")


@app.command()
def prepare() -> None:
    """Download and load the local speech-recognition model."""

    session = Session()
    pipeline = session.pipeline()
    last_reported: Dict[str, int] = {}

    def report(name: str, progress: float) -> None:
        percent = int(progress)
        if percent // 10 != last_reported.get(name, -1) // 10 or percent == 100:
            last_reported[name] = percent
            typer.echo(f"{name}: {percent}%")

    try:
        pipeline.get_instance(progress_callback=report)
    except Exception as exc:
        logger.debug("Model preparation failed", exc_info=True)
        _fail(f"Could not load whisper model {pipeline.model_name!r}: {exc}")
    typer.secho(f"Whisper model {pipeline.model_name!r} is ready on {pipeline.device}.", fg=typer.colors.GREEN)


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", envvar="GRAMMARHUB_HOST", help="Interface to bind."),
    port: int = typer.Option(8001, envvar="GRAMMARHUB_PORT", help="Port to listen on."),
) -> None:
    """Run the HTTP API for the browser front-end."""

    import uvicorn

    typer.secho(f"Starting grammarhub API on {host}:{port}", fg=typer.colors.BLUE)
    uvicorn.run("grammarhub.api:create_app", factory=True, host=host, port=port)


if __name__ == "__main__":  # pragma: no cover
    app()
