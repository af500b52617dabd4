"""Shared access to the generative-AI API."""

from __future__ import annotations

import logging
from typing import Callable, Optional

import openai

from .errors import (
    GrammarHubError,
    MissingConfiguration,
    UpstreamGenericError,
    UpstreamNetworkError,
    UpstreamQuotaError,
)

logger = logging.getLogger(__name__)


class AIClient:
    """Build an OpenAI client on demand, rebuilding it when the API key changes."""

    def __init__(self, factory: Optional[Callable[[str], object]] = None) -> None:
        self._factory = factory
        self._client: Optional[object] = None
        self._api_key: Optional[str] = None

    def get(self, api_key: str):
        if not api_key:
            raise MissingConfiguration("AI API key is missing.")
        if self._client is None or api_key != self._api_key:
            self._client = self._build(api_key)
            self._api_key = api_key
        return self._client

    def _build(self, api_key: str):
        if self._factory is not None:
            return self._factory(api_key)
        logger.debug("Creating OpenAI client")
        return openai.OpenAI(api_key=api_key)


def translate_error(exc: Exception, action: str) -> GrammarHubError:
    """Map an exception raised by the OpenAI SDK onto the grammarhub taxonomy."""

    if isinstance(exc, GrammarHubError):
        return exc
    if isinstance(exc, openai.APIConnectionError):
        return UpstreamNetworkError(
            f"Network Error: Unable to connect to the AI API during {action}. "
            "Please check your connection or proxy."
        )
    if isinstance(exc, openai.RateLimitError):
        return UpstreamQuotaError(
            "The AI API quota or rate limit was exceeded. "
            "Wait a moment or replace the API key in your settings."
        )
    if isinstance(exc, openai.APIStatusError):
        return UpstreamGenericError(f"{action.capitalize()} failed: {exc.message}")
    return UpstreamGenericError(f"{action.capitalize()} failed: {exc}")
