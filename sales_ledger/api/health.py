"""
Health check endpoint.

Used by load balancers, monitoring systems, and humans
to verify the application is running and responsive.
"""

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from sales_ledger.api.dependencies import get_ledger_service
from sales_ledger.models.base import get_db
from sales_ledger.services.ledger_service import LedgerEventService

router = APIRouter(tags=["Health"])


@router.get("/health")
def health_check(
    db: Session = Depends(get_db),
    service: LedgerEventService = Depends(get_ledger_service),
):
    """
    Return application health status.

    Reports database connectivity and whether the in-memory
    event store finished loading. Either failing marks the
    instance as degraded.
    """
    try:
        db.execute(text("SELECT 1"))
        db_status = "healthy"
    except SQLAlchemyError:
        db_status = "unhealthy"

    store_status = "loaded" if service.store.loaded else "not_loaded"
    healthy = db_status == "healthy" and service.store.loaded

    return {
        "status": "healthy" if healthy else "degraded",
        "service": "sales-ledger",
        "database": db_status,
        "store": store_status,
        "ledger_events": len(service.store),
    }
