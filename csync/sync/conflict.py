"""
Conflict resolution module for N-way contact synchronization.

When the same tagged entity was edited in several accounts since the
last successful run, the edit with the latest modification time wins
and its whole body replaces the other copies.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone

from csync.sync.identity import EPOCH
from csync.sync.tags import SyncTag


@dataclass
class UpdateCandidate:
    """
    An entity edited after the watermark in one account.

    Attributes:
        account: Account holding the edited copy
        remote_id: Resource name of the copy in that account
        tag: Synchronization tag shared by all copies
        last_updated: Modification time reported by the API
    """

    account: str
    remote_id: str
    tag: SyncTag
    last_updated: datetime


@dataclass
class ConflictResult:
    """
    Result of a conflict resolution operation.

    Attributes:
        winner: The candidate whose body is propagated
        candidates: Every candidate that was considered
        reason: Human-readable explanation of why the winner was chosen
    """

    winner: UpdateCandidate
    candidates: list[UpdateCandidate] = field(default_factory=list)
    reason: str = ""

    @property
    def is_conflict(self) -> bool:
        """True when more than one account edited the entity."""
        return len(self.candidates) > 1


def _normalize(value: datetime | None) -> datetime:
    if value is None:
        return EPOCH
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class ConflictResolver:
    """
    Picks the authoritative copy among concurrent edits of one entity.

    Implements whole-entity last-modified-wins; there is no field-level
    merge. Equal timestamps go to the candidate encountered first.

    Usage:
        resolver = ConflictResolver()
        result = resolver.resolve(candidates_for_tag)
        body = replicas[result.winner.account].fetch_body(...)
    """

    def resolve(self, candidates: list[UpdateCandidate]) -> ConflictResult:
        """
        Resolve concurrent edits of one tag.

        Args:
            candidates: Edits of the same tag, in account order

        Returns:
            ConflictResult naming the winning candidate

        Raises:
            ValueError: If no candidate is given
        """
        if not candidates:
            raise ValueError("Cannot resolve a conflict without candidates")

        winner = candidates[0]
        for candidate in candidates[1:]:
            if _normalize(candidate.last_updated) > _normalize(winner.last_updated):
                winner = candidate

        if len(candidates) == 1:
            reason = f"Only {winner.account} changed since the last sync"
        else:
            newest = _normalize(winner.last_updated)
            tied = [
                c for c in candidates if _normalize(c.last_updated) == newest
            ]
            if len(tied) > 1:
                reason = (
                    f"Equal timestamps ({newest}), defaulting to {winner.account}"
                )
            else:
                reason = f"{winner.account} has the newest modification ({newest})"

        return ConflictResult(winner=winner, candidates=list(candidates), reason=reason)

    def __repr__(self) -> str:
        return "ConflictResolver(strategy=last_modified_wins)"
