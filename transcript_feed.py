"""Transcript ingestion from the HTTP transcript source."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any

import requests

from errors import ItemFetchError
from models import Video

LOGGER = logging.getLogger(__name__)

REQUEST_TIMEOUT_SECONDS = 20
MAX_ATTEMPTS = 3
_INITIAL_BACKOFF_SECONDS = 1.0
_RETRYABLE_STATUS = frozenset({429, 500, 502, 503, 504})


@dataclass(frozen=True, slots=True)
class RawTranscript:
    """Transcript exactly as the source returned it, before cleaning."""

    video: Video
    segments: tuple[str, ...]


def fetch_transcript(
    video: Video,
    api_url: str,
    timeout: float = REQUEST_TIMEOUT_SECONDS,
    max_attempts: int = MAX_ATTEMPTS,
    session: requests.Session | None = None,
) -> RawTranscript:
    """Fetch one video's transcript from ``{api_url}/{video_id}``.

    Retries connection errors and 429/5xx responses with exponential backoff.
    After the last attempt, or on a non-retryable response, raises
    ItemFetchError.
    """
    url = f"{api_url}/{video.video_id}"
    client = session or requests
    delay_seconds = _INITIAL_BACKOFF_SECONDS
    last_error: Exception | None = None

    for attempt in range(1, max_attempts + 1):
        try:
            response = client.get(url, timeout=timeout)
            if response.status_code in _RETRYABLE_STATUS and attempt < max_attempts:
                LOGGER.warning(
                    "Transcript fetch: video_id=%s status=%s attempt %s/%s, retrying",
                    video.video_id,
                    response.status_code,
                    attempt,
                    max_attempts,
                )
                time.sleep(delay_seconds)
                delay_seconds *= 2
                continue
            response.raise_for_status()
            segments = _parse_transcript_payload(response.json())
            LOGGER.info("Transcript fetch: video_id=%s segments=%s", video.video_id, len(segments))
            return RawTranscript(video=video, segments=segments)
        except requests.HTTPError as exc:
            last_error = exc
            status = exc.response.status_code if exc.response is not None else None
            if status not in _RETRYABLE_STATUS:
                break
        except (requests.RequestException, ValueError) as exc:
            last_error = exc
            if attempt >= max_attempts:
                break
            LOGGER.warning(
                "Transcript fetch: video_id=%s attempt %s/%s failed: %s",
                video.video_id,
                attempt,
                max_attempts,
                exc,
            )
            time.sleep(delay_seconds)
            delay_seconds *= 2

    raise ItemFetchError(video.video_id, str(last_error))


def _parse_transcript_payload(payload: Any) -> tuple[str, ...]:
    """Accept ``{"segments": [{"text": ...}, ...]}`` or a bare segment list."""
    if isinstance(payload, dict):
        payload = payload.get("segments", payload.get("transcript"))
    if not isinstance(payload, list):
        raise ValueError("Unexpected transcript payload shape: expected a list of segments")

    segments: list[str] = []
    for item in payload:
        if isinstance(item, dict):
            text = item.get("text")
        else:
            text = item
        if isinstance(text, str):
            segments.append(text)
    return tuple(segments)
