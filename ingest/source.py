"""
Collection source collaborators.

``CollectionSource`` is the seam the ingestion pipeline talks to. The
production implementation, ``YouTubeSource``, calls the YouTube Data API v3
for channel/playlist/video metadata and youtube-transcript-api for
transcripts.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field

import requests
from youtube_transcript_api import YouTubeTranscriptApi

import config

from .http_utils import request_json

logger = logging.getLogger("tubechat")

YOUTUBE_API_BASE = "https://www.googleapis.com/youtube/v3"


@dataclass(frozen=True)
class CollectionDetails:
    """A resolved channel: display title plus the playlist holding its uploads."""
    collection_id: str
    title: str
    uploads_id: str


@dataclass(frozen=True)
class ItemPage:
    item_ids: list[str] = field(default_factory=list)
    next_page_token: str | None = None


class CollectionSource(ABC):
    """Listing, detail and artifact lookups for one kind of collection."""

    @abstractmethod
    def resolve_by_handle(self, handle: str) -> str | None:
        """Return the collection ID for ``handle``, or None if unknown."""

    @abstractmethod
    def search(self, query: str) -> str | None:
        """Free-text lookup; returns the first hit's collection ID or None."""

    @abstractmethod
    def get_collection_details(self, collection_id: str) -> CollectionDetails | None:
        """Title and uploads list for a collection, or None if it does not exist."""

    @abstractmethod
    def list_items(self, uploads_id: str, max_results: int,
                   page_token: str | None = None) -> ItemPage:
        """One page of item IDs, at most ``max_results`` long."""

    @abstractmethod
    def get_item_details(self, item_ids: list[str]) -> list[dict]:
        """Full metadata for a batch of item IDs, in API resource shape."""

    @abstractmethod
    def get_artifact(self, item_id: str) -> str:
        """Side artifact text for one item. Raises if unavailable."""


class YouTubeSource(CollectionSource):
    """YouTube Data API v3 + transcript scraper."""

    def __init__(self, api_key: str, timeout: float | None = None,
                 session: requests.Session | None = None):
        if not api_key:
            raise ValueError("YOUTUBE_API_KEY not configured on server")
        self._api_key = api_key
        self._timeout = timeout or config.INGEST_REQUEST_TIMEOUT
        self._session = session or requests.Session()
        self._transcripts = YouTubeTranscriptApi()

    def _get(self, resource: str, **params) -> dict:
        params["key"] = self._api_key
        return request_json(
            f"{YOUTUBE_API_BASE}/{resource}",
            params=params,
            timeout=self._timeout,
            session=self._session,
        )

    def resolve_by_handle(self, handle: str) -> str | None:
        data = self._get("channels", part="id", forHandle=handle)
        items = data.get("items") or []
        return items[0]["id"] if items else None

    def search(self, query: str) -> str | None:
        data = self._get("search", part="snippet", q=query, type="channel", maxResults=1)
        items = data.get("items") or []
        if not items:
            return None
        return items[0].get("snippet", {}).get("channelId") or items[0].get("id", {}).get("channelId")

    def get_collection_details(self, collection_id: str) -> CollectionDetails | None:
        data = self._get("channels", part="contentDetails,snippet", id=collection_id)
        items = data.get("items") or []
        if not items:
            return None
        channel = items[0]
        return CollectionDetails(
            collection_id=channel["id"],
            title=channel.get("snippet", {}).get("title", ""),
            uploads_id=channel["contentDetails"]["relatedPlaylists"]["uploads"],
        )

    def list_items(self, uploads_id: str, max_results: int,
                   page_token: str | None = None) -> ItemPage:
        params = {"part": "contentDetails", "playlistId": uploads_id, "maxResults": max_results}
        if page_token:
            params["pageToken"] = page_token
        data = self._get("playlistItems", **params)
        ids = [
            item["contentDetails"]["videoId"]
            for item in data.get("items") or []
            if item.get("contentDetails", {}).get("videoId")
        ]
        return ItemPage(item_ids=ids, next_page_token=data.get("nextPageToken"))

    def get_item_details(self, item_ids: list[str]) -> list[dict]:
        if not item_ids:
            return []
        data = self._get("videos", part="snippet,statistics,contentDetails", id=",".join(item_ids))
        return list(data.get("items") or [])

    def get_artifact(self, item_id: str) -> str:
        fetched = self._transcripts.fetch(item_id)
        return " ".join(snippet.text for snippet in fetched)
