"""
YouTube Data API v3 implementation of RemoteCollectionClient.

This module wraps the three read endpoints the sync engine needs
(playlists, playlistItems, videos) on top of aiohttp, and translates
HTTP failures into the tagged exception taxonomy:

    429, 403 rateLimitExceeded       -> RateLimitError (Retry-After honored)
    403 quotaExceeded                -> QuotaExceededError
    401                              -> AuthenticationError
    409                              -> SyncConflictError
    400, 404, other 4xx              -> ValidationError
    5xx, connection errors, timeouts -> NetworkError

Authentication:
    An API key is enough for public playlists. With OAuth credentials the
    client sends a bearer token and can refresh it via the refresh-token
    grant when the resilience layer asks it to.

Usage:
    async with YouTubeClient(config.youtube) as client:
        metadata = await client.get_collection_metadata("PLabc123")
"""

import asyncio
import re
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Mapping, Sequence

import aiohttp

from playlist_sync.core.config import YouTubeConfig
from playlist_sync.core.exceptions import (
    AuthenticationError,
    NetworkError,
    PlaylistSyncError,
    QuotaExceededError,
    RateLimitError,
    RemoteError,
    SyncConflictError,
    ValidationError,
)
from playlist_sync.core.logger import get_logger
from playlist_sync.remote.base import MAX_BATCH_SIZE
from playlist_sync.remote.models import (
    CollectionMetadata,
    ItemDetails,
    MembershipEntry,
    MembershipPage,
)


logger = get_logger(__name__)


API_BASE_URL = "https://www.googleapis.com/youtube/v3"
TOKEN_URL = "https://oauth2.googleapis.com/token"

_PLAYLIST_ID_RE = re.compile(r"^[A-Za-z0-9_-]+$")
_PLAYLIST_URL_RE = re.compile(r"[?&]list=([A-Za-z0-9_-]+)")
_ISO_DURATION_RE = re.compile(
    r"^P(?:(?P<days>\d+)D)?(?:T(?:(?P<hours>\d+)H)?(?:(?P<minutes>\d+)M)?(?:(?P<seconds>\d+)S)?)?$"
)

_RATE_LIMIT_REASONS = {"rateLimitExceeded", "userRateLimitExceeded"}
_QUOTA_REASONS = {"quotaExceeded", "dailyLimitExceeded"}


def extract_playlist_id(url_or_id: str) -> str:
    """
    Extract a playlist id from a YouTube URL, or validate a raw id.

    Raises:
        ValidationError: If no playlist id can be found.

    Examples:
        extract_playlist_id("PLrAXtmErZgOeiKm4sgNOknGvNjby9efdf")
        extract_playlist_id("https://www.youtube.com/playlist?list=PLrAX...")
        extract_playlist_id("https://www.youtube.com/watch?v=abc&list=PLrAX...")
    """
    value = url_or_id.strip()

    if _PLAYLIST_ID_RE.match(value):
        return value

    match = _PLAYLIST_URL_RE.search(value)
    if match:
        return match.group(1)

    raise ValidationError(
        f"Invalid playlist URL or ID: {url_or_id}",
        details={"input": url_or_id}
    )


def parse_iso_duration(value: str | None) -> int | None:
    """
    Convert an ISO-8601 duration ("PT1H2M3S") to seconds.

    Returns None for missing or unparseable values (live streams report "P0D").
    """
    if not value:
        return None
    match = _ISO_DURATION_RE.match(value)
    if not match:
        return None
    parts = {k: int(v) if v else 0 for k, v in match.groupdict().items()}
    return parts["days"] * 86400 + parts["hours"] * 3600 + parts["minutes"] * 60 + parts["seconds"]


def parse_retry_after(value: str | None) -> float | None:
    """Parse a Retry-After header (delta-seconds or HTTP date) into seconds."""
    if not value:
        return None
    try:
        return max(float(value), 0.0)
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return max((when - datetime.now(timezone.utc)).total_seconds(), 0.0)


def _parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def error_from_response(
    status: int,
    payload: Any,
    headers: Mapping[str, str] | None = None
) -> PlaylistSyncError:
    """
    Translate an HTTP error response into a tagged exception.

    Args:
        status: HTTP status code.
        payload: Decoded JSON body (or None if the body was not JSON).
        headers: Response headers, used for Retry-After.
    """
    headers = headers or {}
    error = payload.get("error", {}) if isinstance(payload, dict) else {}
    message = error.get("message") or f"YouTube API returned HTTP {status}"
    reasons = {e.get("reason") for e in error.get("errors", []) if isinstance(e, dict)}
    details = {"http_status": status, "reasons": sorted(r for r in reasons if r)}

    if status == 429 or (status == 403 and reasons & _RATE_LIMIT_REASONS):
        return RateLimitError(
            message,
            retry_after=parse_retry_after(headers.get("Retry-After")),
            details=details,
            status_code=status
        )
    if status == 403 and reasons & _QUOTA_REASONS:
        # The remote ledger is authoritative; we don't know its counters
        return QuotaExceededError(used=0, limit=0, requested=0, details=details)
    if status == 401:
        return AuthenticationError(message, details=details, status_code=status)
    if status == 409:
        return SyncConflictError(message, details=details)
    if status >= 500:
        return NetworkError(message, details=details, status_code=status)
    if 400 <= status < 500:
        return ValidationError(message, details=details)
    return RemoteError(message, details=details, status_code=status)


class YouTubeClient:
    """
    aiohttp-based YouTube Data API client.

    The aiohttp session is created lazily inside the running event loop and
    closed by close() / the async context manager. A pre-built session can be
    injected (tests do this); the client then does not close it.
    """

    def __init__(
        self,
        config: YouTubeConfig,
        page_size: int = MAX_BATCH_SIZE,
        session: aiohttp.ClientSession | None = None,
        timeout: float = 30.0,
        api_base_url: str = API_BASE_URL
    ) -> None:
        self.config = config
        self.page_size = min(page_size, MAX_BATCH_SIZE)
        self.api_base_url = api_base_url.rstrip("/")
        self._session = session
        self._owns_session = session is None
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._access_token = config.access_token

    async def __aenter__(self) -> "YouTubeClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def close(self) -> None:
        if self._session is not None and self._owns_session:
            await self._session.close()
            self._session = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
        return self._session

    def _auth(self) -> tuple[dict[str, str], dict[str, str]]:
        """Return (params, headers) carrying the current credentials."""
        if self._access_token:
            return {}, {"Authorization": f"Bearer {self._access_token}"}
        if self.config.api_key:
            return {"key": self.config.api_key}, {}
        raise AuthenticationError(
            "No YouTube credentials available",
            details={"can_refresh": self.config.can_refresh}
        )

    async def _request(self, resource: str, params: dict[str, Any]) -> dict[str, Any]:
        auth_params, headers = self._auth()
        url = f"{self.api_base_url}/{resource}"
        query = {**params, **auth_params}

        try:
            async with self._get_session().get(url, params=query, headers=headers) as response:
                try:
                    payload = await response.json(content_type=None)
                except (aiohttp.ContentTypeError, ValueError):
                    payload = None

                if response.status >= 400:
                    raise error_from_response(response.status, payload, response.headers)

                if not isinstance(payload, dict):
                    raise NetworkError(
                        f"Malformed response from {resource}",
                        details={"resource": resource, "http_status": response.status}
                    )
                return payload
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise NetworkError(
                f"Request to {resource} failed: {e or type(e).__name__}",
                details={"resource": resource, "original_error": repr(e)}
            ) from e

    async def get_collection_metadata(self, remote_id: str) -> CollectionMetadata:
        payload = await self._request("playlists", {
            "part": "snippet,contentDetails",
            "id": remote_id,
            "maxResults": 1,
        })

        items = payload.get("items") or []
        if not items:
            raise ValidationError(
                f"Playlist not found: {remote_id}",
                details={"playlist_id": remote_id}
            )

        playlist = items[0]
        snippet = playlist.get("snippet") or {}
        content = playlist.get("contentDetails") or {}
        thumbnails = snippet.get("thumbnails") or {}

        return CollectionMetadata(
            remote_id=remote_id,
            title=snippet.get("title") or "Untitled Playlist",
            item_count=int(content.get("itemCount") or 0),
            description=snippet.get("description") or None,
            channel_title=snippet.get("channelTitle") or None,
            thumbnail_url=(thumbnails.get("default") or {}).get("url"),
        )

    async def get_membership_page(
        self,
        remote_id: str,
        page_token: str | None = None
    ) -> MembershipPage:
        params: dict[str, Any] = {
            "part": "snippet,contentDetails",
            "playlistId": remote_id,
            "maxResults": self.page_size,
        }
        if page_token:
            params["pageToken"] = page_token

        payload = await self._request("playlistItems", params)

        entries = []
        for raw in payload.get("items") or []:
            snippet = raw.get("snippet") or {}
            content = raw.get("contentDetails") or {}
            video_id = content.get("videoId") or (snippet.get("resourceId") or {}).get("videoId")
            if not video_id:
                logger.debug(f"Skipping playlist entry without video id in {remote_id}")
                continue
            entries.append(MembershipEntry(
                remote_item_id=video_id,
                position=int(snippet.get("position") or 0),
                added_at=_parse_timestamp(snippet.get("publishedAt")),
            ))

        return MembershipPage(
            items=tuple(entries),
            next_page_token=payload.get("nextPageToken") or None,
        )

    async def get_item_details_batch(self, remote_item_ids: Sequence[str]) -> list[ItemDetails]:
        if len(remote_item_ids) > MAX_BATCH_SIZE:
            raise ValidationError(
                f"At most {MAX_BATCH_SIZE} ids per details request",
                details={"requested": len(remote_item_ids)}
            )
        if not remote_item_ids:
            return []

        payload = await self._request("videos", {
            "part": "snippet,contentDetails,statistics",
            "id": ",".join(remote_item_ids),
            "maxResults": MAX_BATCH_SIZE,
        })

        details = []
        for raw in payload.get("items") or []:
            snippet = raw.get("snippet") or {}
            content = raw.get("contentDetails") or {}
            statistics = raw.get("statistics") or {}
            thumbnails = snippet.get("thumbnails") or {}
            view_count = statistics.get("viewCount")

            details.append(ItemDetails(
                remote_item_id=raw["id"],
                title=snippet.get("title") or "Untitled",
                duration_seconds=parse_iso_duration(content.get("duration")),
                description=snippet.get("description") or None,
                channel_title=snippet.get("channelTitle") or None,
                thumbnail_url=(thumbnails.get("default") or {}).get("url"),
                published_at=snippet.get("publishedAt"),
                view_count=int(view_count) if view_count is not None else None,
                raw=raw,
            ))
        return details

    async def refresh_credentials(self) -> None:
        """
        Exchange the refresh token for a new access token.

        Raises:
            AuthenticationError: If no refresh credentials are configured or
                                 the token endpoint rejects them.
        """
        if not self.config.can_refresh:
            raise AuthenticationError(
                "Cannot refresh credentials: no refresh token configured",
                details={"has_api_key": bool(self.config.api_key)}
            )

        data = {
            "grant_type": "refresh_token",
            "refresh_token": self.config.refresh_token,
            "client_id": self.config.client_id,
            "client_secret": self.config.client_secret,
        }

        try:
            async with self._get_session().post(TOKEN_URL, data=data) as response:
                try:
                    payload = await response.json(content_type=None) or {}
                except (aiohttp.ContentTypeError, ValueError):
                    payload = {}
                if response.status != 200 or not payload.get("access_token"):
                    raise AuthenticationError(
                        "Token refresh rejected",
                        details={"http_status": response.status,
                                 "error": payload.get("error")},
                        status_code=response.status
                    )
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise NetworkError(
                f"Token refresh failed: {e or type(e).__name__}",
                details={"original_error": repr(e)}
            ) from e

        self._access_token = payload["access_token"]
        logger.info("YouTube access token refreshed")
