"""Daily quota accounting."""

from playlist_sync.quota.ledger import (
    PAGINATED_OPERATIONS,
    QuotaLedger,
    QuotaReservation,
    QuotaStats,
)

__all__ = [
    "PAGINATED_OPERATIONS",
    "QuotaLedger",
    "QuotaReservation",
    "QuotaStats",
]
