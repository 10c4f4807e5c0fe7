"""ETL executor: fetch -> clean -> chunk -> embed -> Snapshot."""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed

from cleaning import chunk_text, clean_segments, text_hash
from embeddings_client import embed_texts
from errors import ItemFetchError, RunCancelledError
from job_config import ExecutorSettings
from models import Chunk, Snapshot, TranscriptRecord
from transcript_feed import RawTranscript, fetch_transcript

LOGGER = logging.getLogger(__name__)


def run_etl(
    settings: ExecutorSettings,
    *,
    previous: Snapshot | None = None,
    cancel_event: threading.Event | None = None,
) -> Snapshot:
    """Build a candidate Snapshot from the configured videos.

    Partial-failure policy comes from settings.on_item_failure and is the same
    for every Run of a job:

    - "abort": any failed fetch fails the whole Run (after all fetches join).
    - "skip":  failed videos are left out of the Snapshot and logged.

    ``previous`` is only read: embeddings for chunks whose text already
    appears in it (under the same embedding model) are reused.
    """
    cancel_event = cancel_event or threading.Event()

    raw_transcripts = _fetch_all(settings, cancel_event)
    _check_cancelled(cancel_event)

    prepared: list[tuple[RawTranscript, str, list[str]]] = []
    for raw in sorted(raw_transcripts, key=lambda r: r.video.video_id):
        text = clean_segments(raw.segments)
        if not text:
            LOGGER.warning("Transcript for video_id=%s is empty after cleaning", raw.video.video_id)
        prepared.append((raw, text, chunk_text(text, settings.chunk_chars)))

    embeddings = _embed_chunks(
        [chunk for _, _, chunks in prepared for chunk in chunks],
        settings=settings,
        previous=previous,
        cancel_event=cancel_event,
    )

    records = []
    for raw, text, chunks in prepared:
        records.append(
            TranscriptRecord(
                video_id=raw.video.video_id,
                title=raw.video.title,
                url=raw.video.url,
                text_hash=text_hash(text),
                chunks=tuple(
                    Chunk(index=i, text=chunk, embedding=embeddings[chunk])
                    for i, chunk in enumerate(chunks)
                ),
            )
        )

    snapshot = Snapshot(records=tuple(records), embedding_model=settings.embedding_model)
    LOGGER.info(
        "ETL complete: videos=%s records=%s chunks=%s content_hash=%s",
        len(settings.videos),
        len(snapshot.records),
        sum(len(r.chunks) for r in snapshot.records),
        snapshot.content_hash[:12],
    )
    return snapshot


def _fetch_all(settings: ExecutorSettings, cancel_event: threading.Event) -> list[RawTranscript]:
    fetched: list[RawTranscript] = []
    failures: list[ItemFetchError] = []

    with ThreadPoolExecutor(max_workers=settings.max_workers) as pool:
        futures = {
            pool.submit(
                fetch_transcript,
                video,
                settings.transcript_api_url,
                timeout=settings.request_timeout_seconds,
                max_attempts=settings.max_attempts,
            ): video
            for video in settings.videos
        }
        for future in as_completed(futures):
            if cancel_event.is_set():
                for pending in futures:
                    pending.cancel()
                break
            try:
                fetched.append(future.result())
            except ItemFetchError as exc:
                failures.append(exc)
                LOGGER.warning("ETL fetch failed: %s", exc)

    _check_cancelled(cancel_event)

    if failures:
        if settings.on_item_failure == "abort":
            failed_ids = ", ".join(sorted(f.video_id for f in failures))
            LOGGER.error(
                "ETL aborting: %s of %s fetches failed (%s)",
                len(failures),
                len(settings.videos),
                failed_ids,
            )
            raise failures[0]
        if not fetched:
            LOGGER.error("ETL aborting: all %s fetches failed, refusing to build an empty snapshot", len(failures))
            raise failures[0]
        LOGGER.warning(
            "ETL skipping %s failed videos: %s",
            len(failures),
            ", ".join(sorted(f.video_id for f in failures)),
        )

    return fetched


def _embed_chunks(
    chunks: list[str],
    settings: ExecutorSettings,
    previous: Snapshot | None,
    cancel_event: threading.Event,
) -> dict[str, tuple[float, ...]]:
    known: dict[str, tuple[float, ...]] = {}
    if previous is not None and previous.embedding_model == settings.embedding_model:
        for record in previous.records:
            for chunk in record.chunks:
                if chunk.embedding:
                    known[chunk.text] = chunk.embedding

    missing = sorted({chunk for chunk in chunks if chunk not in known})
    LOGGER.info(
        "Embeddings: total_chunks=%s reused=%s to_compute=%s",
        len(chunks),
        sum(1 for chunk in chunks if chunk in known),
        len(missing),
    )

    _check_cancelled(cancel_event)
    if missing:
        vectors = embed_texts(
            missing,
            model=settings.embedding_model,
            timeout=settings.request_timeout_seconds,
            max_attempts=settings.max_attempts,
        )
        known.update(zip(missing, vectors))
    return known


def _check_cancelled(cancel_event: threading.Event) -> None:
    if cancel_event.is_set():
        raise RunCancelledError("ETL cancelled before completion")
