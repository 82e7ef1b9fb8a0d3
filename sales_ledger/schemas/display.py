"""
Pydantic schemas for read-side projections and reports.
"""

from pydantic import BaseModel, Field


class DisplayBreakdown(BaseModel):
    """
    Normalized money breakdown of one ledger event.

    All amounts are pre-formatted strings with two decimals.
    """
    service_amount: str = "0.00"
    product_amount: str = "0.00"
    original_amount: str = "0.00"
    final_amount: str = "0.00"
    discount_label: str = ""


class DuplicateGroupReport(BaseModel):
    """What cleanup would do to one duplicate group."""
    keep_id: str
    remove_ids: list[str]
    rule: str
    amounts: list[str]
    channels: list[str]


class DuplicateReport(BaseModel):
    """Dry-run summary of a cleanup pass."""
    total_events: int
    group_count: int
    removable_count: int
    groups: list[DuplicateGroupReport] = Field(default_factory=list)


class CleanupResponse(BaseModel):
    removed: int
