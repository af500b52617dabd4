"""Object storage and analysis records on a Supabase-compatible backend."""

from __future__ import annotations

import logging
import re
import time
from datetime import datetime, timezone
from typing import Optional, Tuple

import httpx

from .errors import (
    GrammarHubError,
    MissingConfiguration,
    UpstreamGenericError,
    UpstreamNetworkError,
    UpstreamPermissionError,
)
from .models import AnalysisResult, AudioFile, Settings

logger = logging.getLogger(__name__)

RECORD_TABLE = "audio_analyses"
CACHE_CONTROL_SECONDS = 3600

_PERMISSION_PHRASES = ("row-level security", "policy", "violates")
_PERMISSION_CODES = {"42501"}

_NON_ASCII_RE = re.compile(r"[^\x00-\x7F]")
_WHITESPACE_RE = re.compile(r"\s+")
_UNSAFE_RE = re.compile(r"[^A-Za-z0-9_.-]")


def sanitize_filename(name: str) -> str:
    name = _NON_ASCII_RE.sub("", name)
    name = _WHITESPACE_RE.sub("_", name)
    return _UNSAFE_RE.sub("", name)


def build_storage_path(filename: str, now: Optional[float] = None) -> str:
    """Return ``<epoch-millis>_<sanitized filename>`` for an upload."""

    timestamp = int((time.time() if now is None else now) * 1000)
    return f"{timestamp}_{sanitize_filename(filename)}"


def _error_details(response: httpx.Response) -> Tuple[str, str]:
    try:
        payload = response.json()
    except ValueError:
        return response.text or response.reason_phrase, ""
    if not isinstance(payload, dict):
        return str(payload), ""
    message = payload.get("message") or payload.get("error") or response.reason_phrase
    code = payload.get("code") or payload.get("statusCode") or ""
    return str(message), str(code)


def _is_permission_error(message: str, code: str) -> bool:
    lowered = message.lower()
    return code in _PERMISSION_CODES or any(phrase in lowered for phrase in _PERMISSION_PHRASES)


class SupabaseStorage:
    """Upload audio and persist analyses over the storage REST API."""

    def __init__(self, transport: Optional[httpx.BaseTransport] = None, timeout: float = 60.0) -> None:
        self._transport = transport
        self._timeout = timeout
        self._client: Optional[httpx.Client] = None
        self._credentials: Optional[Tuple[str, str]] = None

    def _get_client(self, settings: Settings) -> httpx.Client:
        if not settings.has_storage_credentials:
            raise MissingConfiguration(
                "Storage client could not be initialised. Check your endpoint and key."
            )
        credentials = (settings.endpoint, settings.storage_key)
        if self._client is None or credentials != self._credentials:
            if self._client is not None:
                self._client.close()
            logger.debug("Creating storage client for %s", settings.endpoint)
            self._client = httpx.Client(
                base_url=settings.endpoint.rstrip("/"),
                headers={
                    "apikey": settings.storage_key,
                    "Authorization": f"Bearer {settings.storage_key}",
                },
                timeout=self._timeout,
                transport=self._transport,
            )
            self._credentials = credentials
        return self._client

    def upload_file(self, file: AudioFile, settings: Settings, now: Optional[float] = None) -> str:
        """Upload ``file`` to the configured bucket and return its storage path."""

        client = self._get_client(settings)
        path = build_storage_path(file.name, now)
        try:
            response = client.post(
                f"/storage/v1/object/{settings.bucket_name}/{path}",
                content=file.data,
                headers={
                    "content-type": file.media_type,
                    "cache-control": f"max-age={CACHE_CONTROL_SECONDS}",
                    "x-upsert": "false",
                },
            )
        except httpx.TransportError as exc:
            raise UpstreamNetworkError(f"Unable to reach the storage service: {exc}") from exc

        if response.is_error:
            message, code = _error_details(response)
            logger.error("Storage upload failed (%s): %s", response.status_code, message)
            if _is_permission_error(message, code):
                raise UpstreamPermissionError(
                    "Access denied (RLS policy). Open Storage > Policies for bucket "
                    f"'{settings.bucket_name}' and add a policy allowing anonymous users to INSERT."
                )
            raise UpstreamGenericError(message)

        logger.info("Uploaded %s to %s/%s", file.name, settings.bucket_name, path)
        return path

    def save_record(
        self,
        filename: str,
        storage_path: str,
        result: AnalysisResult,
        settings: Settings,
    ) -> bool:
        """Insert an analysis row. Failures are logged and reported as ``False``."""

        row = {
            "filename": filename,
            "storage_path": storage_path,
            "transcription": result.transcript,
            "grammar_data": [point.as_record() for point in result.grammar_points],
            "created_at": datetime.now(timezone.utc).isoformat(),
        }
        try:
            client = self._get_client(settings)
            response = client.post(
                f"/rest/v1/{RECORD_TABLE}",
                json=[row],
                headers={"Prefer": "return=minimal"},
            )
            response.raise_for_status()
        except (httpx.HTTPError, GrammarHubError) as exc:
            logger.warning(
                "Could not save analysis record (table %r might not exist or a policy blocks inserts): %s",
                RECORD_TABLE,
                exc,
            )
            return False
        return True

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None
            self._credentials = None
