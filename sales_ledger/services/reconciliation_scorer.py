"""
Reconciliation scorer — picks the canonical event of a duplicate group.

Rules, first match wins:

1. Explicit discount: a member with discount_percentage > 0 is kept.
   The discount is recomputed against the highest amount in the
   group, which is taken to be the pre-discount price.
2. Several origination channels: the most complete member is kept
   (line items, amount split, client/staff, metadata). If it is
   noticeably cheaper than the highest amount, the difference is
   treated as an implicit discount.
3. One channel, different amounts: the cheapest member is kept and
   the difference to the highest amount is treated as an implicit
   discount.
4. Identical amounts from one channel: the most recent record wins.

The kept event is always a new instance with updated_at advanced.
The removed events are returned exactly as they were.
"""

import enum
import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Callable, Sequence

from sales_ledger.config import Settings
from sales_ledger.models.enums import CompositeType, LineItemKind
from sales_ledger.schemas.ledger_event import (
    CENT,
    LedgerEvent,
    to_cents,
    utc_now,
)

logger = logging.getLogger(__name__)

HUNDRED = Decimal("100")
DISCOUNT_MARKER = "% off"


class ReconciliationRule(str, enum.Enum):
    EXPLICIT_DISCOUNT = "explicit-discount"
    MOST_COMPLETE = "most-complete"
    LOWEST_AMOUNT = "lowest-amount"
    MOST_RECENT = "most-recent"


@dataclass(frozen=True)
class ReconciliationResult:
    keep: LedgerEvent
    remove: list[LedgerEvent] = field(default_factory=list)
    rule: ReconciliationRule = ReconciliationRule.MOST_RECENT


def completeness_score(event: LedgerEvent) -> int:
    """How much detail an event carries. Higher is better."""
    score = 0
    if event.line_items:
        score += 5
    if event.service_amount is not None:
        score += 3
    if event.product_amount is not None:
        score += 3
    if event.client_id:
        score += 2
    if event.staff_id:
        score += 2
    if event.metadata:
        score += 2
    return score


def split_amounts(event: LedgerEvent) -> tuple[Decimal, Decimal]:
    """
    Derive (service_amount, product_amount) for an event.

    Line items first, then explicit split fields, then the
    composite type. The service side absorbs any difference so
    that service + product always equals amount; discounts only
    ever apply to services.
    """
    if event.line_items:
        product = sum(
            (i.total_price for i in event.line_items
             if i.kind == LineItemKind.PRODUCT),
            Decimal("0"),
        )
        service = sum(
            (i.total_price for i in event.line_items
             if i.kind == LineItemKind.SERVICE),
            Decimal("0"),
        )
        if abs(service + product - event.amount) >= CENT:
            service = event.amount - product
        return service, product

    if event.product_amount is not None or event.service_amount is not None:
        product = event.product_amount or Decimal("0")
        return event.amount - product, product

    if event.composite_type == CompositeType.PRODUCT_ONLY:
        return Decimal("0"), event.amount
    return event.amount, Decimal("0")


def with_discount_suffix(description: str, percentage: Decimal) -> str:
    if DISCOUNT_MARKER in description:
        return description
    return f"{description} ({percentage}{DISCOUNT_MARKER})".strip()


class ReconciliationScorer:
    """
    Selects and enriches the canonical member of a duplicate group.

    The outcome depends only on the group's content, never on the
    order the members were passed in, so running cleanup again
    (or after an insert) reaches the same decision.
    """

    def __init__(
        self,
        implicit_discount_threshold: Decimal = Decimal("1"),
        clock: Callable[[], datetime] = utc_now,
    ):
        self.implicit_discount_threshold = Decimal(
            str(implicit_discount_threshold)
        )
        self.clock = clock

    @classmethod
    def from_settings(cls, settings: Settings) -> "ReconciliationScorer":
        return cls(
            implicit_discount_threshold=Decimal(
                str(settings.IMPLICIT_DISCOUNT_THRESHOLD_PERCENT)
            )
        )

    def reconcile(self, group: Sequence[LedgerEvent]) -> ReconciliationResult:
        """
        Pick the event to keep and the events to remove.

        Raises ValueError for an empty group.
        """
        if not group:
            raise ValueError("cannot reconcile an empty group")

        members = sorted(group, key=lambda e: (e.created_at, e.id))
        highest = max(e.amount for e in members)

        discounted = [e for e in members if e.has_explicit_discount]
        if discounted:
            # Several members may claim a discount; the earliest claim
            # wins so that the choice is stable across runs.
            chosen = discounted[0]
            if highest > chosen.amount:
                keep = self._reconstruct(chosen, highest)
            else:
                keep = self._annotate(chosen)
            return self._result(
                members, chosen, keep, ReconciliationRule.EXPLICIT_DISCOUNT
            )

        if len({e.origination_channel for e in members}) > 1:
            # max() returns the first of equal scores: the earliest.
            chosen = max(members, key=completeness_score)
            keep = self._maybe_implicit_discount(chosen, highest)
            return self._result(
                members, chosen, keep, ReconciliationRule.MOST_COMPLETE
            )

        if len({to_cents(e.amount) for e in members}) > 1:
            chosen = min(members, key=lambda e: e.amount)
            keep = self._maybe_implicit_discount(chosen, highest)
            return self._result(
                members, chosen, keep, ReconciliationRule.LOWEST_AMOUNT
            )

        chosen = members[-1]
        keep = chosen.model_copy(update={"updated_at": self.clock()})
        return self._result(
            members, chosen, keep, ReconciliationRule.MOST_RECENT
        )

    def _result(
        self,
        members: list[LedgerEvent],
        chosen: LedgerEvent,
        keep: LedgerEvent,
        rule: ReconciliationRule,
    ) -> ReconciliationResult:
        remove = [e for e in members if e.id != chosen.id]
        logger.debug(
            "event=group_reconciled rule=%s keep=%s amount=%s remove=%s",
            rule.value, keep.id, to_cents(keep.amount),
            [e.id for e in remove],
        )
        return ReconciliationResult(keep=keep, remove=remove, rule=rule)

    def _maybe_implicit_discount(
        self, event: LedgerEvent, highest: Decimal
    ) -> LedgerEvent:
        """Reconstruct a discount if event is clearly below highest."""
        floor = highest * (HUNDRED - self.implicit_discount_threshold) / HUNDRED
        if event.amount < floor:
            return self._reconstruct(event, highest)
        return event.model_copy(update={"updated_at": self.clock()})

    def _reconstruct(
        self, event: LedgerEvent, original: Decimal
    ) -> LedgerEvent:
        """
        Rebuild discount fields assuming original was the full price.

        Full precision is kept; rounding happens when the event
        is serialized.
        """
        service, product = split_amounts(event)
        discount_amount = original - event.amount
        percentage = (discount_amount / original * HUNDRED).quantize(
            Decimal("1"), rounding=ROUND_HALF_UP
        )
        return event.model_copy(update={
            "service_amount": service,
            "product_amount": product,
            "original_service_amount": original - product,
            "discount_amount": discount_amount,
            "discount_percentage": percentage,
            "description": with_discount_suffix(event.description, percentage),
            "updated_at": self.clock(),
        })

    def _annotate(self, event: LedgerEvent) -> LedgerEvent:
        """
        Fill the split for an explicitly discounted event.

        Used when no member is more expensive, so there is nothing
        to recompute the discount against: the event's own claim
        stands.
        """
        service, product = split_amounts(event)
        original_service = event.original_service_amount
        if original_service is None:
            original_service = service + (event.discount_amount or Decimal("0"))
        return event.model_copy(update={
            "service_amount": service,
            "product_amount": product,
            "original_service_amount": original_service,
            "description": with_discount_suffix(
                event.description, event.discount_percentage
            ),
            "updated_at": self.clock(),
        })
