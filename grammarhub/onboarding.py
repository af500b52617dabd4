from __future__ import annotations

from typing import Optional

from rich.console import Console
from rich.panel import Panel
from rich.prompt import Confirm, Prompt
from rich.table import Table
from rich.text import Text

from .config import STORE_PATH, load_settings, save_settings
from .models import Settings


def _mask(value: str) -> str:
    if not value:
        return "(not set)"
    return value[:4] + "…" if len(value) > 8 else "****"


def _ask_secret(label: str, current: str) -> str:
    hint = " (leave empty to keep the current value)" if current else ""
    value = Prompt.ask(f"{label}{hint}", password=True, default="", show_default=False)
    return value or current


def run_onboarding(console: Optional[Console] = None) -> Settings:
    console = console or Console()
    settings = load_settings()

    welcome_text = Text()
    welcome_text.append("Welcome to grammarhub!\n\n", style="bold cyan")
    welcome_text.append("Turn classroom recordings into grammar lessons\n", style="dim")

    console.print(Panel(welcome_text, border_style="cyan", expand=False))
    console.print()

    console.print("[bold]Storage[/bold]")
    console.print("Audio files and analyses are saved to your Supabase project.")
    console.print()
    settings.endpoint = Prompt.ask("Project URL", default=settings.endpoint or None) or ""
    settings.storage_key = _ask_secret("Anon key", settings.storage_key)
    settings.bucket_name = Prompt.ask("Bucket name", default=settings.bucket_name)

    console.print()
    console.print("[bold]Transcription Engine[/bold]")
    console.print()
    console.print("Choose your transcription backend:")
    console.print("  1. Local Whisper (free, private, runs on this machine)")
    console.print("  2. AI API (fast, requires an API key)")
    console.print()

    default_choice = "2" if settings.transcription_backend == "remote" else "1"
    backend_choice = Prompt.ask("Select option", choices=["1", "2"], default=default_choice)
    if backend_choice == "1":
        settings.transcription_backend = "local"
        console.print()
        console.print("Whisper model (base is recommended for speed):")
        console.print("  tiny, base, small, medium, large")
        settings.whisper_model = Prompt.ask("Model", default=settings.whisper_model)
    else:
        settings.transcription_backend = "remote"

    console.print()
    console.print("[bold]Grammar Analysis[/bold]")
    console.print("(Get a key at https://platform.openai.com/api-keys)")
    settings.ai_api_key = _ask_secret("AI API key", settings.ai_api_key)

    console.print()
    summary = Table(show_header=False, box=None, padding=(0, 2))
    summary.add_column(style="cyan")
    summary.add_column()

    summary.add_row("Endpoint:", settings.endpoint or "(not set)")
    summary.add_row("Storage key:", _mask(settings.storage_key))
    summary.add_row("Bucket:", settings.bucket_name)
    summary.add_row("Transcription:", settings.transcription_backend)
    summary.add_row("AI API key:", _mask(settings.ai_api_key))

    console.print(Panel(summary, title="Your Configuration", border_style="green"))
    console.print()

    if Confirm.ask("Save this configuration?", default=True):
        save_settings(settings)
        console.print("[green]Configuration saved to[/green]", STORE_PATH)
        console.print()
        console.print("[bold]To analyze a recording, run:[/bold]")
        console.print("  [cyan]grammarhub analyze <audio-file>[/cyan]")
        console.print()
    else:
        console.print("[yellow]Configuration not saved. Run 'grammarhub setup' to try again.[/yellow]")
    return settings
