"""
Interface of the remote collection client.

The sync engine only talks to the remote source through this protocol, so
tests can substitute an in-memory fake and other providers can be plugged
in without touching the orchestrator.

Implementations raise the tagged exceptions from playlist_sync.core.exceptions
(NetworkError, RateLimitError, AuthenticationError, ...) so the resilience
layer can classify failures. Per-request timeouts are the client's concern.
"""

from typing import Protocol, Sequence, runtime_checkable

from playlist_sync.remote.models import (
    CollectionMetadata,
    ItemDetails,
    MembershipPage,
)


# Maximum ids per get_item_details_batch call
MAX_BATCH_SIZE = 50


@runtime_checkable
class RemoteCollectionClient(Protocol):

    async def get_collection_metadata(self, remote_id: str) -> CollectionMetadata:
        """Fetch title, item count and other playlist metadata."""
        ...

    async def get_membership_page(
        self,
        remote_id: str,
        page_token: str | None = None
    ) -> MembershipPage:
        """Fetch one page of ordered membership."""
        ...

    async def get_item_details_batch(self, remote_item_ids: Sequence[str]) -> list[ItemDetails]:
        """Fetch details for at most MAX_BATCH_SIZE items."""
        ...

    async def refresh_credentials(self) -> None:
        """Obtain fresh credentials after an AuthenticationError."""
        ...
