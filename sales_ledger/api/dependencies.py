"""
Shared FastAPI dependencies.

The ledger event service is built once by the application
lifespan and kept on app.state; endpoints receive it through
get_ledger_service() so tests can swap it out with
dependency_overrides.
"""

from fastapi import HTTPException, Request

from sales_ledger.services.ledger_service import LedgerEventService


def get_ledger_service(request: Request) -> LedgerEventService:
    service = getattr(request.app.state, "ledger_service", None)
    if service is None:
        raise HTTPException(
            status_code=503, detail="Ledger service is not initialized"
        )
    return service
