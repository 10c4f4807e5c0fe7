"""OpenAI embeddings client for transcript chunks."""

from __future__ import annotations

import logging
import os
import time

from openai import AuthenticationError, BadRequestError, NotFoundError, OpenAI, PermissionDeniedError

from errors import ConfigurationError, TransientExternalError

OPENAI_EMBEDDING_MODEL = os.getenv("OPENAI_EMBEDDING_MODEL", "text-embedding-3-small")
REQUEST_TIMEOUT_SECONDS = 60
MAX_ATTEMPTS = 3
BATCH_SIZE = 96
# Stored embeddings are rounded so the snapshot bytes stay stable.
EMBEDDING_DECIMALS = 6

LOGGER = logging.getLogger(__name__)

# Request errors that no retry can fix.
_REJECTED_ERRORS = (AuthenticationError, PermissionDeniedError, NotFoundError, BadRequestError)


def embed_texts(
    texts: list[str],
    model: str | None = None,
    timeout: float = REQUEST_TIMEOUT_SECONDS,
    max_attempts: int = MAX_ATTEMPTS,
) -> list[tuple[float, ...]]:
    """Return one embedding per input text, in input order."""
    if not texts:
        return []

    api_key = os.getenv("OPENAI_API_KEY")
    if not api_key:
        raise ConfigurationError("OPENAI_API_KEY environment variable is required")

    model = model or OPENAI_EMBEDDING_MODEL
    client = OpenAI(api_key=api_key, timeout=timeout)
    vectors: list[tuple[float, ...]] = []

    for start in range(0, len(texts), BATCH_SIZE):
        batch = texts[start:start + BATCH_SIZE]
        vectors.extend(_embed_batch(client, batch, model=model, max_attempts=max_attempts))

    LOGGER.info("Embedded %s chunks with model=%s", len(vectors), model)
    return vectors


def _embed_batch(
    client: OpenAI,
    batch: list[str],
    model: str,
    max_attempts: int,
) -> list[tuple[float, ...]]:
    delay_seconds = 1.0
    last_error: Exception | None = None

    for attempt in range(1, max_attempts + 1):
        try:
            response = client.embeddings.create(model=model, input=batch)
            data = sorted(response.data, key=lambda item: item.index)
            if len(data) != len(batch):
                raise RuntimeError(f"expected {len(batch)} embeddings, got {len(data)}")
            return [tuple(round(float(v), EMBEDDING_DECIMALS) for v in item.embedding) for item in data]
        except _REJECTED_ERRORS as exc:
            raise ConfigurationError(f"Embedding request rejected (model={model}): {exc}") from exc
        except Exception as exc:  # timeouts, rate limits, 5xx and short responses are retried
            last_error = exc
            LOGGER.warning(
                "Embedding batch of %s failed on attempt %s/%s: %s",
                len(batch),
                attempt,
                max_attempts,
                exc,
            )
            if attempt < max_attempts:
                time.sleep(delay_seconds)
                delay_seconds *= 2

    raise TransientExternalError(f"Embedding request failed after {max_attempts} attempts: {last_error}")
