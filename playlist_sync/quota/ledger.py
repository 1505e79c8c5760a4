"""
Daily quota ledger.

Every remote call costs quota units out of a fixed daily budget. The ledger
persists usage per UTC calendar day and accepts or rejects a reservation
before the call is made. The check, the increment and the audit row are one
SQLite write transaction (Database.reserve_quota), so concurrent callers,
in this process or another, can never jointly overspend.

Usage:
    ledger = QuotaLedger(database, config.quota)

    cost = ledger.cost_for("playlist.items", item_count=120)   # 3 pages
    reservation = ledger.reserve("playlist.items", cost)
    if not reservation.accepted:
        ...  # wait for day rollover

    # Inside a resilient operation, where an exception is wanted:
    ledger.require("video.details", 1)
"""

import math
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Callable

from playlist_sync.core.config import QuotaConfig
from playlist_sync.core.database import Database
from playlist_sync.core.exceptions import QuotaExceededError, ValidationError
from playlist_sync.core.logger import get_logger
from playlist_sync.core.models import QuotaUsage


logger = get_logger(__name__)


# Operation types charged per page of `page_size` items
PAGINATED_OPERATIONS = frozenset({"playlist.items", "video.details"})


@dataclass(frozen=True)
class QuotaReservation:
    """
    Outcome of a reservation attempt.

    Attributes:
        accepted: True if the units were reserved.
        operation_type: What the units were requested for.
        requested: Units asked for.
        used: Units consumed today after the attempt.
        limit: Today's limit.
    """
    accepted: bool
    operation_type: str
    requested: int
    used: int
    limit: int

    @property
    def remaining(self) -> int:
        return max(self.limit - self.used, 0)


@dataclass(frozen=True)
class QuotaStats:
    """Usage summary for one day."""
    day: date
    used: int
    limit: int
    percent_used: float
    operations: int
    operations_by_type: dict[str, dict[str, int]] = field(default_factory=dict)


class QuotaLedger:
    """
    Tracks and enforces the daily call budget.

    Explicitly constructed and passed to whoever needs it; tests build one
    per database so quota state never leaks between them.

    Args:
        database: Where usage rows live.
        config: Limit, warning threshold, page size and cost table.
        clock: Returns the current aware datetime. Defaults to UTC now.
        on_warning: Called with today's QuotaUsage the first time remaining
                    units drop below config.warn_threshold on a given day.
    """

    def __init__(
        self,
        database: Database,
        config: QuotaConfig,
        clock: Callable[[], datetime] | None = None,
        on_warning: Callable[[QuotaUsage], None] | None = None
    ) -> None:
        self.database = database
        self.config = config
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._on_warning = on_warning
        self._warned_day: date | None = None

    def today(self) -> date:
        """Current day key; days roll over at UTC midnight."""
        return self._clock().astimezone(timezone.utc).date()

    def cost_for(self, operation_type: str, item_count: int | None = None) -> int:
        """
        Quota cost of one operation, from the configured cost table.

        Paginated operations cost ceil(item_count / page_size) * unit_cost,
        with item_count defaulting to a single page.
        """
        unit_cost = self.config.costs.get(operation_type)
        if unit_cost is None:
            logger.warning(f"Unknown operation type '{operation_type}', using default cost 1")
            return 1

        if operation_type in PAGINATED_OPERATIONS:
            count = self.config.page_size if item_count is None else max(item_count, 1)
            return math.ceil(count / self.config.page_size) * unit_cost

        return unit_cost

    def calculate_sync_cost(self, item_count: int) -> int:
        """Estimated cost of a full sync of a collection with item_count items."""
        return (
            self.cost_for("playlist.details")
            + self.cost_for("playlist.items", item_count)
            + self.cost_for("video.details", item_count)
        )

    def reserve(self, operation_type: str, cost: int) -> QuotaReservation:
        """
        Atomically reserve `cost` units for today.

        A rejected reservation writes nothing. Callers must not retry a
        rejection before the day rolls over.

        Raises:
            ValidationError: If cost is not a positive integer.
            DatabaseError: If the usage row cannot be read or written.
        """
        if isinstance(cost, bool) or not isinstance(cost, int) or cost < 1:
            raise ValidationError(
                f"Quota cost must be a positive integer, got {cost!r}",
                details={"operation_type": operation_type, "cost": cost}
            )

        now = self._clock()
        day = now.astimezone(timezone.utc).date()

        accepted, usage = self.database.reserve_quota(
            day, operation_type, cost, self.config.daily_limit, now
        )

        reservation = QuotaReservation(
            accepted=accepted,
            operation_type=operation_type,
            requested=cost,
            used=usage.used,
            limit=usage.limit,
        )

        if not accepted:
            logger.warning(
                f"Quota reservation rejected for {operation_type}: "
                f"{usage.used}/{usage.limit} used, {cost} requested"
            )
            return reservation

        logger.debug(
            f"Reserved {cost} quota for {operation_type} "
            f"({usage.used}/{usage.limit}, {usage.remaining} remaining)"
        )
        self._check_warning(usage)
        return reservation

    def require(self, operation_type: str, cost: int) -> QuotaReservation:
        """
        Like reserve(), but raise QuotaExceededError on rejection.

        Raises:
            QuotaExceededError: If the reservation is rejected.
        """
        reservation = self.reserve(operation_type, cost)
        if not reservation.accepted:
            raise QuotaExceededError(
                used=reservation.used,
                limit=reservation.limit,
                requested=cost,
                details={"operation_type": operation_type}
            )
        return reservation

    def _check_warning(self, usage: QuotaUsage) -> None:
        if usage.remaining >= self.config.warn_threshold or usage.day == self._warned_day:
            return

        self._warned_day = usage.day
        logger.warning(
            f"Approaching daily quota limit: {usage.used}/{usage.limit} used "
            f"({usage.percent_used:.1f}%), {usage.remaining} remaining"
        )
        if self._on_warning is not None:
            try:
                self._on_warning(usage)
            except Exception:
                logger.exception("Quota warning callback failed")

    def get_today_usage(self) -> QuotaUsage:
        """Today's usage; a day without reservations reports 0 used."""
        day = self.today()
        usage = self.database.get_quota_usage(day)
        if usage is None:
            return QuotaUsage(day=day, used=0, limit=self.config.daily_limit)
        return usage

    def can_use(self, cost: int) -> bool:
        """Advisory check only; reserve() is the authoritative gate."""
        usage = self.get_today_usage()
        return usage.used + cost <= usage.limit

    def get_usage_stats(self, days: int = 7) -> list[QuotaStats]:
        """Usage for the last `days` days (today included), newest first."""
        since = self.today() - timedelta(days=max(days, 1) - 1)
        stats = []
        for entry in self.database.get_quota_history(since):
            usage: QuotaUsage = entry["usage"]
            by_type: dict[str, dict[str, int]] = {}
            for op in entry["operations"]:
                bucket = by_type.setdefault(op["operation_type"], {"count": 0, "total_cost": 0})
                bucket["count"] += 1
                bucket["total_cost"] += op["cost"]
            stats.append(QuotaStats(
                day=usage.day,
                used=usage.used,
                limit=usage.limit,
                percent_used=usage.percent_used,
                operations=len(entry["operations"]),
                operations_by_type=by_type,
            ))
        return stats
