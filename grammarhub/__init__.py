"""Top-level package for grammarhub."""

__version__ = "0.3.0"

from . import config, grammar, storage, transcriber, workflow  # noqa: E402

__all__ = ["config", "grammar", "storage", "transcriber", "workflow", "__version__"]
