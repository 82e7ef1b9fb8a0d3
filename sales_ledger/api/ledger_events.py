"""
Ledger event API endpoints.

The API layer is thin: it translates HTTP requests into calls on
LedgerEventService and service exceptions into status codes.
Booking problems and unbalanced updates are the caller's fault
(400), unknown ids are 404, and a failing store is 503 so that
clients know to retry.
"""

from fastapi import APIRouter, Depends, HTTPException, Response
from pydantic import ValidationError

from sales_ledger.api.dependencies import get_ledger_service
from sales_ledger.exceptions import (
    InvalidBookingError,
    NotFoundError,
    StoreError,
    UnbalancedEventError,
)
from sales_ledger.schemas.booking import BookingCheckout
from sales_ledger.schemas.display import (
    CleanupResponse,
    DisplayBreakdown,
    DuplicateReport,
)
from sales_ledger.schemas.ledger_event import (
    LedgerEvent,
    LedgerEventCreate,
    LedgerEventFilter,
    LedgerEventUpdate,
)
from sales_ledger.services.ledger_service import LedgerEventService

router = APIRouter(prefix="/ledger-events", tags=["Ledger Events"])


def _store_unavailable(e: StoreError) -> HTTPException:
    return HTTPException(status_code=503, detail=str(e))


@router.post("/bookings", response_model=LedgerEvent, status_code=201)
async def create_from_booking(
    request: BookingCheckout,
    service: LedgerEventService = Depends(get_ledger_service),
):
    """
    Record the checkout of a booking.

    If the booking already has an event of the same composite
    type, that event is returned instead of a new one.
    """
    try:
        return await service.create(
            request.booking, request.discount_percentage
        )
    except (InvalidBookingError, UnbalancedEventError) as e:
        raise HTTPException(status_code=400, detail=str(e))
    except StoreError as e:
        raise _store_unavailable(e)


@router.post("", response_model=LedgerEvent, status_code=201)
async def record_event(
    request: LedgerEventCreate,
    service: LedgerEventService = Depends(get_ledger_service),
):
    """Record a sale produced by another origination channel."""
    try:
        return await service.record(request)
    except (UnbalancedEventError, ValidationError) as e:
        raise HTTPException(status_code=400, detail=str(e))
    except StoreError as e:
        raise _store_unavailable(e)


@router.get("", response_model=list[LedgerEvent])
def list_events(
    criteria: LedgerEventFilter = Depends(),
    service: LedgerEventService = Depends(get_ledger_service),
):
    """List events matching the query parameters, newest first."""
    return service.filter(criteria)


@router.post("/cleanup", response_model=CleanupResponse)
async def cleanup_duplicates(
    service: LedgerEventService = Depends(get_ledger_service),
):
    """
    Reconcile every duplicate group in the store.

    Safe to call repeatedly: a clean store reports 0 removed.
    """
    try:
        removed = await service.cleanup_all()
    except StoreError as e:
        raise _store_unavailable(e)
    return CleanupResponse(removed=removed)


@router.get("/duplicates", response_model=DuplicateReport)
def analyze_duplicates(
    service: LedgerEventService = Depends(get_ledger_service),
):
    """What a cleanup would do right now. Nothing is changed."""
    return service.analyze_duplicates()


@router.get("/{event_id}", response_model=LedgerEvent)
def get_event(
    event_id: str,
    service: LedgerEventService = Depends(get_ledger_service),
):
    event = service.get(event_id)
    if event is None:
        raise HTTPException(
            status_code=404, detail=f"Ledger event {event_id} not found"
        )
    return event


@router.patch("/{event_id}", response_model=LedgerEvent)
async def update_event(
    event_id: str,
    request: LedgerEventUpdate,
    service: LedgerEventService = Depends(get_ledger_service),
):
    """
    Update some fields of an event.

    The result must still balance: changing the amount of an
    event with a service/product split means sending the new
    split too.
    """
    try:
        return await service.update(event_id, request)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except (UnbalancedEventError, ValidationError) as e:
        raise HTTPException(status_code=400, detail=str(e))
    except StoreError as e:
        raise _store_unavailable(e)


@router.delete("/{event_id}", status_code=204)
async def delete_event(
    event_id: str,
    service: LedgerEventService = Depends(get_ledger_service),
):
    try:
        await service.remove(event_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except StoreError as e:
        raise _store_unavailable(e)
    return Response(status_code=204)


@router.get("/{event_id}/display", response_model=DisplayBreakdown)
def display_event(
    event_id: str,
    service: LedgerEventService = Depends(get_ledger_service),
):
    """Service/product/discount breakdown formatted for display."""
    event = service.get(event_id)
    if event is None:
        raise HTTPException(
            status_code=404, detail=f"Ledger event {event_id} not found"
        )
    return service.project(event)
