"""
Channel ingestion pipeline.

Linear state machine with an early exit to CANCELLED or FAILED from every
stage:

    RESOLVING -> LISTING -> FETCHING_DETAILS -> FETCHING_ARTIFACTS -> COMPLETE

``IngestionPipeline.run(job)`` is a generator of progress-channel events
(``progress``, then exactly one terminal ``complete`` or ``error``). A
cancelled job emits nothing further; closing the generator counts as
cancellation.
"""

from __future__ import annotations

import logging
import re
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterator, Optional, Union

import config

from .normalize import best_thumbnail, date_prefix, parse_counter, parse_iso_duration
from .source import CollectionSource

logger = logging.getLogger("tubechat")

_CHANNEL_ID_RE = re.compile(r"/channel/(UC[\w-]+)")
_HANDLE_RE = re.compile(r"@([\w.-]+)")

INVALID_REFERENCE_MESSAGE = (
    "Invalid YouTube channel URL. Use format: https://www.youtube.com/@channelname"
)


class PipelineFatalError(Exception):
    """Unrecoverable failure during resolving, listing or detail fetching."""


class InvalidReferenceError(PipelineFatalError):
    def __init__(self, message: str = INVALID_REFERENCE_MESSAGE):
        super().__init__(message)


class ChannelNotFoundError(PipelineFatalError):
    def __init__(self, message: str = "Channel not found"):
        super().__init__(message)


class JobCancelled(Exception):
    """Raised internally once cancellation is observed."""


class JobState(str, Enum):
    RESOLVING = "resolving"
    LISTING = "listing"
    FETCHING_DETAILS = "fetching_details"
    FETCHING_ARTIFACTS = "fetching_artifacts"
    COMPLETE = "complete"
    CANCELLED = "cancelled"
    FAILED = "failed"


TERMINAL_STATES = frozenset({JobState.COMPLETE, JobState.CANCELLED, JobState.FAILED})


@dataclass(frozen=True)
class ArtifactText:
    text: str


@dataclass(frozen=True)
class ArtifactMissing:
    reason: str = ""


Artifact = Union[ArtifactText, ArtifactMissing]


@dataclass(frozen=True)
class Item:
    """One harvested video, normalized."""
    video_id: str
    title: str
    description: str
    artifact: Artifact
    duration: int
    duration_iso: str
    release_date: str
    view_count: int
    like_count: int
    comment_count: int
    thumbnail: str

    @property
    def video_url(self) -> str:
        return f"https://www.youtube.com/watch?v={self.video_id}"

    @property
    def transcript(self) -> Optional[str]:
        return self.artifact.text if isinstance(self.artifact, ArtifactText) else None

    @classmethod
    def from_resource(cls, resource: dict, artifact: Artifact) -> "Item":
        snippet = resource.get("snippet") or {}
        stats = resource.get("statistics") or {}
        content = resource.get("contentDetails") or {}
        duration_iso = content.get("duration") or ""
        return cls(
            video_id=resource.get("id", ""),
            title=snippet.get("title", ""),
            description=snippet.get("description", ""),
            artifact=artifact,
            duration=parse_iso_duration(duration_iso),
            duration_iso=duration_iso,
            release_date=date_prefix(snippet.get("publishedAt")),
            view_count=parse_counter(stats.get("viewCount")),
            like_count=parse_counter(stats.get("likeCount")),
            comment_count=parse_counter(stats.get("commentCount")),
            thumbnail=best_thumbnail(snippet.get("thumbnails")),
        )

    def to_dict(self) -> dict:
        return {
            "video_id": self.video_id,
            "title": self.title,
            "description": self.description,
            "transcript": self.transcript,
            "duration": self.duration,
            "duration_iso": self.duration_iso,
            "release_date": self.release_date,
            "view_count": self.view_count,
            "like_count": self.like_count,
            "comment_count": self.comment_count,
            "video_url": self.video_url,
            "thumbnail": self.thumbnail,
        }


@dataclass
class IngestionJob:
    """Mutable record of one harvest run."""
    reference: str
    limit: int
    state: JobState = JobState.RESOLVING
    channel_id: str = ""
    channel_title: str = ""
    item_ids: list[str] = field(default_factory=list)
    resources: list[dict] = field(default_factory=list)
    items: list[Item] = field(default_factory=list)
    error: str = ""


def resolve_reference(reference: str, source: CollectionSource) -> str:
    """Derive a channel ID from a URL or handle.

    Canonical ``/channel/UC...`` IDs are taken as-is; ``@handle`` is looked
    up, falling back to a search for the handle text.
    """
    reference = (reference or "").strip()
    m = _CHANNEL_ID_RE.search(reference)
    if m:
        return m.group(1)
    m = _HANDLE_RE.search(reference)
    if not m:
        raise InvalidReferenceError()
    handle = m.group(1)
    channel_id = source.resolve_by_handle(handle) or source.search(handle)
    if not channel_id:
        raise ChannelNotFoundError()
    return channel_id


def _progress(message: str, percent: int) -> dict:
    return {"type": "progress", "message": message, "percent": percent}


class IngestionPipeline:
    """Runs ingestion jobs against a CollectionSource."""

    def __init__(
        self,
        source: CollectionSource,
        cancel_event: threading.Event | None = None,
        page_size: int | None = None,
        batch_size: int | None = None,
    ):
        self.source = source
        self.cancel_event = cancel_event or threading.Event()
        self.page_size = page_size or config.INGEST_PAGE_SIZE
        self.batch_size = batch_size or config.INGEST_DETAIL_BATCH_SIZE

    def cancel(self) -> None:
        self.cancel_event.set()

    def _check_cancel(self) -> None:
        if self.cancel_event.is_set():
            raise JobCancelled()

    def run(self, job: IngestionJob) -> Iterator[dict]:
        """Drive ``job`` to a terminal state, yielding progress events."""
        try:
            yield from self._stages(job)
        except JobCancelled:
            job.state = JobState.CANCELLED
            logger.info(f"Ingestion of {job.reference!r} cancelled")
        except Exception as e:
            job.state = JobState.FAILED
            job.error = str(e) or type(e).__name__
            logger.warning(f"Ingestion of {job.reference!r} failed: {job.error}",
                           exc_info=not isinstance(e, PipelineFatalError))
            yield {"type": "error", "message": job.error}
        finally:
            if job.state not in TERMINAL_STATES:
                # Consumer closed the stream
                self.cancel_event.set()
                job.state = JobState.CANCELLED
                logger.info(f"Ingestion of {job.reference!r} closed by consumer")

    def _stages(self, job: IngestionJob) -> Iterator[dict]:
        # Resolving
        self._check_cancel()
        job.state = JobState.RESOLVING
        yield _progress("Resolving channel...", 5)
        job.channel_id = resolve_reference(job.reference, self.source)

        # Listing
        self._check_cancel()
        job.state = JobState.LISTING
        yield _progress("Getting channel uploads...", 10)
        details = self.source.get_collection_details(job.channel_id)
        if details is None:
            raise ChannelNotFoundError()
        job.channel_title = details.title
        self._list_items(job, details.uploads_id)

        # FetchingDetails
        self._check_cancel()
        job.state = JobState.FETCHING_DETAILS
        yield _progress(f"Found {len(job.item_ids)} videos, fetching details...", 20)
        for start in range(0, len(job.item_ids), self.batch_size):
            self._check_cancel()
            batch = job.item_ids[start:start + self.batch_size]
            job.resources.extend(self.source.get_item_details(batch))

        # FetchingArtifacts
        self._check_cancel()
        job.state = JobState.FETCHING_ARTIFACTS
        yield _progress("Fetching transcripts...", 40)
        total = len(job.resources)
        for i, resource in enumerate(job.resources):
            self._check_cancel()
            title = (resource.get("snippet") or {}).get("title", "")
            yield _progress(
                f"Processing video {i + 1}/{total}: {title[:50]}...",
                40 + round(i / total * 50),
            )
            self._check_cancel()
            artifact = self._fetch_artifact(resource.get("id", ""))
            job.items.append(Item.from_resource(resource, artifact))

        self._check_cancel()
        job.state = JobState.COMPLETE
        yield _progress("Done!", 100)
        yield {
            "type": "complete",
            "channelTitle": job.channel_title,
            "data": [item.to_dict() for item in job.items],
        }

    def _list_items(self, job: IngestionJob, uploads_id: str) -> None:
        page_token = None
        while len(job.item_ids) < job.limit:
            self._check_cancel()
            page = self.source.list_items(
                uploads_id,
                min(self.page_size, job.limit - len(job.item_ids)),
                page_token,
            )
            for item_id in page.item_ids:
                job.item_ids.append(item_id)
                if len(job.item_ids) >= job.limit:
                    break
            page_token = page.next_page_token
            if not page_token:
                break

    def _fetch_artifact(self, item_id: str) -> Artifact:
        try:
            return ArtifactText(self.source.get_artifact(item_id))
        except Exception as e:
            logger.debug(f"No transcript for {item_id}: {e}")
            return ArtifactMissing(str(e) or type(e).__name__)
