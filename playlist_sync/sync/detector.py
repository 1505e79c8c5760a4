"""
Membership change detection.

Compares the active members stored for a collection with a freshly fetched
remote membership, keyed by the item's remote id:

    added      remote entries whose item has no active local member
    removed    active local members whose item is absent remotely
    reordered  items present on both sides at a different position

Local members are assumed to be unique per item (the members table enforces
one active row per collection/item pair). A remote listing that repeats an
item keeps its first occurrence.
"""

from dataclasses import dataclass, field
from typing import Sequence

from playlist_sync.core.logger import get_logger
from playlist_sync.core.models import Member
from playlist_sync.remote.models import MembershipEntry


logger = get_logger(__name__)


@dataclass(frozen=True)
class Reorder:
    """An existing member that moved to new_position."""
    member: Member
    new_position: int


@dataclass(frozen=True)
class ChangeSet:
    added: tuple[MembershipEntry, ...] = field(default_factory=tuple)
    removed: tuple[Member, ...] = field(default_factory=tuple)
    reordered: tuple[Reorder, ...] = field(default_factory=tuple)

    @property
    def has_changes(self) -> bool:
        return bool(self.added or self.removed or self.reordered)

    def summary(self) -> str:
        return f"+{len(self.added)} added, -{len(self.removed)} removed, ~{len(self.reordered)} reordered"


def detect_changes(
    local_members: Sequence[Member],
    remote_entries: Sequence[MembershipEntry]
) -> ChangeSet:
    """
    Diff local membership against remote membership.

    Args:
        local_members: Active members of the collection.
        remote_entries: Remote membership in listing order.

    Returns:
        ChangeSet with `added`/`reordered` in remote order and `removed` in
        local order.
    """
    local_by_key = {member.item_remote_id: member for member in local_members}

    remote_by_key: dict[str, MembershipEntry] = {}
    for entry in remote_entries:
        if entry.remote_item_id in remote_by_key:
            logger.warning(
                f"Item {entry.remote_item_id} appears more than once in remote listing; "
                f"keeping position {remote_by_key[entry.remote_item_id].position}, "
                f"ignoring position {entry.position}"
            )
            continue
        remote_by_key[entry.remote_item_id] = entry

    added = []
    reordered = []
    for key, entry in remote_by_key.items():
        member = local_by_key.get(key)
        if member is None:
            added.append(entry)
        elif member.position != entry.position:
            reordered.append(Reorder(member=member, new_position=entry.position))

    removed = [member for member in local_members if member.item_remote_id not in remote_by_key]

    return ChangeSet(added=tuple(added), removed=tuple(removed), reordered=tuple(reordered))
