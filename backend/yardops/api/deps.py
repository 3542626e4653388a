"""
FastAPI dependencies for authentication, sessions and services.

The dashboard authenticates against a separate identity service and sends a
bearer token with every request. Mutating endpoints also carry the acting
user's ``firstName`` as a query parameter; it is what history lines and notes
record, so it wins over the name in the token when both are present.
"""

from dataclasses import dataclass
from typing import Annotated, Optional

from fastapi import Depends, HTTPException, Query, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from yardops.core.logging import get_logger, set_actor
from yardops.core.security import TokenError, decode_token
from yardops.database.connection import get_db
from yardops.services.leads.service import (
    LeadConflictError,
    LeadNotFoundError,
    LeadService,
    LeadValidationError,
)
from yardops.services.notifications.service import NotificationValidationError
from yardops.services.orders.repository import (
    DuplicateOrderError,
    OrderNotFoundError,
    YardNotFoundError,
    YardVersionConflictError,
)
from yardops.services.orders.service import OrderService, OrderValidationError
from yardops.services.orders.state_machine import StateTransitionError, YardValidationError
from yardops.services.reports.service import ReportService, ReportValidationError
from yardops.services.search.search_service import OrderSearchService, SearchQueryError

logger = get_logger(__name__)

security = HTTPBearer(auto_error=False)

BAD_REQUEST_ERRORS = (
    OrderValidationError,
    YardValidationError,
    StateTransitionError,
    NotificationValidationError,
    ReportValidationError,
    LeadValidationError,
    SearchQueryError,
)
NOT_FOUND_ERRORS = (OrderNotFoundError, YardNotFoundError, LeadNotFoundError)
CONFLICT_ERRORS = (DuplicateOrderError, YardVersionConflictError, LeadConflictError)


@dataclass(frozen=True)
class AuthenticatedUser:
    """Identity carried by the dashboard's bearer token."""

    id: str
    first_name: str
    email: Optional[str] = None
    role: str = "Sales"


async def get_current_user(
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(security)],
) -> AuthenticatedUser:
    """
    Validate the bearer token and return the user it identifies.

    Raises:
        HTTPException: 401 if the token is missing, expired or invalid
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    if credentials is None:
        logger.warning("Authentication failed: No credentials provided")
        raise credentials_exception

    try:
        payload = decode_token(credentials.credentials)
    except TokenError as e:
        logger.warning("Authentication failed", code=e.code, error=str(e))
        raise credentials_exception from e

    user = AuthenticatedUser(
        id=str(payload["sub"]),
        first_name=payload.get("firstName") or "",
        email=payload.get("email"),
        role=payload.get("role") or "Sales",
    )
    set_actor(user.first_name or None)
    return user


CurrentUser = Annotated[AuthenticatedUser, Depends(get_current_user)]
DatabaseSession = Annotated[AsyncSession, Depends(get_db)]


async def get_acting_first_name(
    current_user: CurrentUser,
    first_name: Annotated[
        Optional[str],
        Query(alias="firstName", description="Acting user recorded in history and notes"),
    ] = None,
) -> str:
    name = (first_name or "").strip() or current_user.first_name
    set_actor(name or None)
    return name


ActingFirstName = Annotated[str, Depends(get_acting_first_name)]


def get_order_service(db: DatabaseSession) -> OrderService:
    return OrderService(db)


def get_search_service(db: DatabaseSession) -> OrderSearchService:
    return OrderSearchService(db)


def get_report_service(db: DatabaseSession) -> ReportService:
    return ReportService(db)


def get_lead_service(db: DatabaseSession) -> LeadService:
    return LeadService(db)


OrderServiceDep = Annotated[OrderService, Depends(get_order_service)]
SearchServiceDep = Annotated[OrderSearchService, Depends(get_search_service)]
ReportServiceDep = Annotated[ReportService, Depends(get_report_service)]
LeadServiceDep = Annotated[LeadService, Depends(get_lead_service)]


def to_http_exception(error: Exception, operation: str) -> HTTPException:
    """
    Map a service-layer exception to an HTTP error and log it.

    Validation errors become 400, missing orders, yards and leads 404,
    duplicates and stale writes 409; anything else is a 500 whose detail
    does not leak internals.
    """
    context = getattr(error, "context", {})

    if isinstance(error, BAD_REQUEST_ERRORS):
        logger.warning(f"{operation} rejected", error=str(error), context=context)
        detail = str(error)
        fields = getattr(error, "fields", None)
        if fields:
            detail = {"message": str(error), "fields": fields}
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)

    if isinstance(error, NOT_FOUND_ERRORS):
        logger.info(f"{operation} target not found", error=str(error), context=context)
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(error))

    if isinstance(error, CONFLICT_ERRORS):
        logger.warning(f"{operation} conflict", error=str(error), context=context)
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(error))

    logger.error(
        f"Unexpected error in {operation}",
        error=str(error),
        error_type=type(error).__name__,
        context=context,
    )
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail="An unexpected error occurred",
    )
