"""Shared API dependencies: single import point for all routers.

Re-exports the database session dependency and provides the checkout
registry so that router modules can import everything from one place::

    from campflow.api.deps import get_db, get_registry, get_checkout
"""

from fastapi import Depends, HTTPException, Request, status

from campflow.database import get_db
from campflow.services.checkout_service import CheckoutRegistry, CheckoutSession


def get_registry(request: Request) -> CheckoutRegistry:
    """The registry created in the application lifespan."""
    registry = getattr(request.app.state, "checkout_registry", None)
    if registry is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Checkout service is not ready",
        )
    return registry


def get_checkout(
    session_key: str,
    registry: CheckoutRegistry = Depends(get_registry),
) -> CheckoutSession:
    """Look up the live checkout for a session key (404 if none)."""
    session = registry.get(session_key)
    if session is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"kind": "not_found", "message": "Checkout session not found. Start a new booking."},
        )
    return session


__all__ = [
    "get_db",
    "get_registry",
    "get_checkout",
]
