"""
Match finder — decides which ledger events describe the same booking.

An event is a candidate duplicate of a target when any of these
holds:

1. Exact identity: both carry the same identity_ref (kind and id).
2. Metadata identity: a well-known booking-id metadata key on one
   side equals the identity id of the other, whose ref is of the
   booking kind.
3. External code: both carry the same external booking code.
4. Fuzzy proximity: same client, the event is a service sale, the
   two occurred within the fuzzy window, and the amounts agree to
   the cent (or one of rules 1-3 already holds).

Matching answers "could these be the same sale?". Whether a group
of matches is worth reconciling automatically is a separate,
more conservative question answered by is_suspicious().
"""

import logging
from collections import defaultdict
from datetime import timedelta
from decimal import Decimal
from typing import Iterable, Sequence

from sales_ledger.config import Settings
from sales_ledger.models.enums import CompositeType
from sales_ledger.schemas.ledger_event import (
    BookingTarget,
    LedgerEvent,
    metadata_identity_keys,
    to_cents,
)

logger = logging.getLogger(__name__)

AMOUNT_TOLERANCE = Decimal("0.01")


class _DisjointSet:
    """Union-find over event ids."""

    def __init__(self, ids: Iterable[str]):
        self.parent = {i: i for i in ids}

    def find(self, i: str) -> str:
        while self.parent[i] != i:
            self.parent[i] = self.parent[self.parent[i]]
            i = self.parent[i]
        return i

    def union(self, a: str, b: str) -> None:
        root_a, root_b = self.find(a), self.find(b)
        if root_a != root_b:
            self.parent[root_b] = root_a


class MatchFinder:
    """
    Candidate lookup and whole-store duplicate grouping.

    The two windows are independent: fuzzy_window bounds how far
    apart two sales can occur and still be one booking, while
    race_window flags events whose records were written almost
    simultaneously.
    """

    def __init__(
        self,
        fuzzy_window: timedelta = timedelta(hours=2),
        race_window: timedelta = timedelta(seconds=3),
    ):
        self.fuzzy_window = fuzzy_window
        self.race_window = race_window

    @classmethod
    def from_settings(cls, settings: Settings) -> "MatchFinder":
        return cls(
            fuzzy_window=timedelta(hours=settings.FUZZY_MATCH_WINDOW_HOURS),
            race_window=timedelta(seconds=settings.RACE_WINDOW_SECONDS),
        )

    # --- Candidate lookup ---

    def find_candidates(
        self,
        events: Iterable[LedgerEvent],
        target: LedgerEvent | BookingTarget,
    ) -> list[LedgerEvent]:
        """Return every event that may be a duplicate of target."""
        if isinstance(target, LedgerEvent):
            target = BookingTarget.from_event(target)

        return [
            event for event in events
            if event.id != target.exclude_id and self.matches(event, target)
        ]

    def matches(self, event: LedgerEvent, target: BookingTarget) -> bool:
        # A shared key already satisfies rule 4's amount clause, so the
        # fuzzy check only needs the amount comparison.
        return self.shares_key(event, target) or self._is_fuzzy_match(
            event, target
        )

    def shares_key(self, event: LedgerEvent, target: BookingTarget) -> bool:
        """Rules 1-3: any exact identity, metadata id or booking code."""
        # Rule 1
        if (
            event.identity_ref is not None
            and event.identity_ref == target.identity_ref
        ):
            return True

        # Rule 2, in both directions
        if metadata_identity_keys(event.metadata) & target.identity_keys:
            return True
        target_metadata_keys = set(target.identity_keys)
        if target.identity_ref is not None:
            target_metadata_keys.discard(target.identity_ref.key)
        if (
            event.identity_ref is not None
            and event.identity_ref.key in target_metadata_keys
        ):
            return True

        # Rule 3
        return bool(event.booking_codes & target.external_booking_codes)

    def _is_fuzzy_match(
        self, event: LedgerEvent, target: BookingTarget
    ) -> bool:
        if not event.client_id or event.client_id != target.client_id:
            return False
        if not event.composite_type.includes_services:
            return False
        # Two different explicit bookings are never the same sale.
        if (
            event.identity_ref is not None
            and target.identity_ref is not None
            and event.identity_ref != target.identity_ref
        ):
            return False
        if abs(event.occurred_at - target.occurred_at) > self.fuzzy_window:
            return False
        return abs(event.amount - target.amount) < AMOUNT_TOLERANCE

    # --- Group classification ---

    def is_suspicious(self, group: Sequence[LedgerEvent]) -> bool:
        """
        Whether a multi-member group looks like accidental duplication.

        Differing amounts, differing channels, or two records
        written within the race window. Identical records written
        far apart could be legitimately repeated charges.
        """
        if len(group) < 2:
            return False
        if len({to_cents(e.amount) for e in group}) > 1:
            return True
        if len({e.origination_channel for e in group}) > 1:
            return True
        return self.has_write_race(group)

    def has_write_race(self, group: Sequence[LedgerEvent]) -> bool:
        created = sorted(e.created_at for e in group)
        return any(
            later - earlier < self.race_window
            for earlier, later in zip(created, created[1:])
        )

    @staticmethod
    def shares_identity_ref(group: Sequence[LedgerEvent]) -> bool:
        refs = [e.identity_ref for e in group if e.identity_ref is not None]
        return len(refs) != len(set(refs))

    # --- Whole-store partitioning ---

    def group_duplicates(
        self, events: Sequence[LedgerEvent]
    ) -> list[list[LedgerEvent]]:
        """
        Partition the store into groups that cleanup should reconcile.

        Events are connected when they share an identity (kind and
        id, metadata ids counting as the booking kind) or a booking
        code, then each connected set is split by
        composite type: a booking may legitimately own one
        service sale and one product sale. A group is returned if
        two members carry the same identity_ref, or if it is
        duplicate-suspicious.
        """
        disjoint = _DisjointSet(e.id for e in events)
        owners: dict[tuple[str, ...], str] = {}
        for event in events:
            keys = [("id", kind, i) for kind, i in event.identity_keys]
            keys += [("code", c) for c in event.booking_codes]
            for key in keys:
                if key in owners:
                    disjoint.union(owners[key], event.id)
                else:
                    owners[key] = event.id

        buckets: dict[tuple[str, CompositeType], list[LedgerEvent]] = (
            defaultdict(list)
        )
        for event in events:
            root = disjoint.find(event.id)
            buckets[(root, event.composite_type)].append(event)

        groups = []
        for members in buckets.values():
            if len(members) < 2:
                continue
            members.sort(key=lambda e: (e.created_at, e.id))
            if self.shares_identity_ref(members) or self.is_suspicious(members):
                groups.append(members)
            else:
                logger.debug(
                    "event=group_skipped ids=%s reason=not_suspicious",
                    [e.id for e in members],
                )

        groups.sort(key=lambda g: (g[0].created_at, g[0].id))
        return groups
