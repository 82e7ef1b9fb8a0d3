"""
Shared enumerations.

Using Python enums for channels, composite types and statuses
ensures that only valid values reach the store. An unknown
channel is rejected at validation time, not discovered later
during cleanup.
"""

import enum


class OriginationChannel(str, enum.Enum):
    """Where a sale record was produced."""
    POS = "pos"
    CALENDAR = "calendar"
    PORTAL = "portal"
    MANUAL = "manual"
    SYSTEM = "system"
    HOME_SERVICE = "home-service"


class CompositeType(str, enum.Enum):
    """What a ledger event charges for."""
    SERVICE_ONLY = "service-only"
    PRODUCT_ONLY = "product-only"
    CONSOLIDATED = "consolidated"

    @property
    def includes_services(self) -> bool:
        return self in (CompositeType.SERVICE_ONLY, CompositeType.CONSOLIDATED)


class LineItemKind(str, enum.Enum):
    SERVICE = "service"
    PRODUCT = "product"


class EventStatus(str, enum.Enum):
    COMPLETED = "completed"
    PENDING = "pending"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"
    PARTIAL = "partial"
