"""
Order and yard workflow endpoints.

Every mutating endpoint accepts ``firstName`` as a query parameter naming the
acting user. Responses carry a human-readable ``message`` and the updated
order; e-mail side effects report ``emailStatus`` and never fail the request.
"""

from typing import Optional

from fastapi import APIRouter, Body, Query, status

from yardops.api.deps import (
    ActingFirstName,
    CurrentUser,
    OrderServiceDep,
    SearchServiceDep,
    to_http_exception,
)
from yardops.core.logging import get_logger
from yardops.schemas.orders import (
    ActualGPRequest,
    CancelOnlyRequest,
    CancelShipmentRequest,
    CustRefundRequest,
    DisputeRequest,
    NoteRequest,
    NotesResponse,
    OrderCreateRequest,
    OrderListResponse,
    OrderResponse,
    OrderUpdateRequest,
    PaymentStatusRequest,
    ReimbursementRequest,
    RefundOnlyRequest,
    RefundStatusRequest,
    StoreCreditEntry,
    WorkflowResponse,
    YardCreateRequest,
    YardEditRequest,
    YardUpdateRequest,
)
from yardops.services.search.search_service import OrderSearchService

logger = get_logger(__name__)

router = APIRouter(prefix="/orders", tags=["orders"])


# ============================================================================
# Listing
# ============================================================================


async def _order_page(
    search: OrderSearchService,
    *,
    view: Optional[str],
    month: Optional[str],
    year: Optional[int],
    start: Optional[str],
    end: Optional[str],
    page: int,
    limit: Optional[int],
    search_term: Optional[str],
) -> OrderListResponse:
    try:
        result = await search.list_orders(
            start=start,
            end=end,
            month=month,
            year=year,
            page=page,
            limit=limit,
            search_term=search_term,
            view=view,
        )
    except Exception as e:
        raise to_http_exception(e, "Order listing") from e

    return OrderListResponse(
        orders=[OrderResponse.model_validate(order) for order in result.orders],
        total_pages=result.total_pages,
        total_orders=result.total_orders,
        current_page=result.current_page,
        start=result.start,
        end=result.end,
    )


@router.get(
    "/monthlyOrders",
    response_model=OrderListResponse,
    summary="List orders in a window",
    description="Paged orders for start/end days, a month, or the current month, "
    "optionally filtered by a fuzzy search term",
)
async def monthly_orders(
    current_user: CurrentUser,
    search: SearchServiceDep,
    month: Optional[str] = Query(None, description="Month abbreviation or number"),
    year: Optional[int] = Query(None, ge=2000, le=2100),
    start: Optional[str] = Query(None, description="First day, YYYY-MM-DD"),
    end: Optional[str] = Query(None, description="Last day, YYYY-MM-DD"),
    page: int = Query(1),
    limit: Optional[int] = Query(None),
    search_term: Optional[str] = Query(None, alias="searchTerm"),
) -> OrderListResponse:
    return await _order_page(
        search,
        view=None,
        month=month,
        year=year,
        start=start,
        end=end,
        page=page,
        limit=limit,
        search_term=search_term,
    )


# Path -> (view name, summary) for the dashboard listings.
VIEW_ROUTES: dict[str, tuple[str, str]] = {
    "/placed": ("placed", "Placed orders"),
    "/customerApproved": ("customerApproved", "Customer approved orders"),
    "/yardProcessingOrders": ("yardProcessing", "Orders in yard processing"),
    "/inTransitOrders": ("inTransit", "Orders in transit"),
    "/cancelledOrders": ("cancelled", "Cancelled orders"),
    "/refundedOrders": ("refunded", "Refunded orders"),
    "/disputedOrders": ("disputed", "Disputed orders"),
    "/fulfilledOrders": ("fulfilled", "Fulfilled orders"),
    "/overallEscalationOrders": ("overallEscalations", "Orders with any escalated yard"),
    "/ongoingEscalationOrders": (
        "ongoingEscalations",
        "Escalated orders still being worked",
    ),
}


def _view_endpoint(view: str):
    async def list_view(
        current_user: CurrentUser,
        search: SearchServiceDep,
        month: Optional[str] = Query(None, description="Month abbreviation or number"),
        year: Optional[int] = Query(None, ge=2000, le=2100),
        start: Optional[str] = Query(None, description="First day, YYYY-MM-DD"),
        end: Optional[str] = Query(None, description="Last day, YYYY-MM-DD"),
        page: int = Query(1),
        limit: Optional[int] = Query(None),
        search_term: Optional[str] = Query(None, alias="searchTerm"),
    ) -> OrderListResponse:
        return await _order_page(
            search,
            view=view,
            month=month,
            year=year,
            start=start,
            end=end,
            page=page,
            limit=limit,
            search_term=search_term,
        )

    list_view.__name__ = f"list_{view}_orders"
    return list_view


for _path, (_view, _summary) in VIEW_ROUTES.items():
    router.add_api_route(
        _path,
        _view_endpoint(_view),
        methods=["GET"],
        response_model=OrderListResponse,
        summary=_summary,
    )


@router.get(
    "/storeCredits",
    response_model=list[StoreCreditEntry],
    summary="Yards holding store credit",
)
async def store_credits(
    current_user: CurrentUser,
    service: OrderServiceDep,
) -> list[StoreCreditEntry]:
    try:
        entries = await service.store_credits()
    except Exception as e:
        raise to_http_exception(e, "Store credit listing") from e
    return [StoreCreditEntry(**entry) for entry in entries]


# ============================================================================
# Escalation leg label voids
# ============================================================================


async def _void_leg(
    service: OrderServiceDep, order_no: str, yard_index: int, leg: str, first_name: str
) -> WorkflowResponse:
    try:
        result = await service.void_leg(order_no, yard_index, leg, first_name)
    except Exception as e:
        raise to_http_exception(e, "Leg label void") from e
    return WorkflowResponse.from_result(result)


@router.put(
    "/voidLabelRepCust/{order_no}/{yard_index}",
    response_model=WorkflowResponse,
    summary="Void the customer replacement label",
)
async def void_label_rep_cust(
    order_no: str,
    yard_index: int,
    current_user: CurrentUser,
    first_name: ActingFirstName,
    service: OrderServiceDep,
) -> WorkflowResponse:
    return await _void_leg(service, order_no, yard_index, "customer", first_name)


@router.put(
    "/voidLabelRepYard/{order_no}/{yard_index}",
    response_model=WorkflowResponse,
    summary="Void the yard replacement label",
)
async def void_label_rep_yard(
    order_no: str,
    yard_index: int,
    current_user: CurrentUser,
    first_name: ActingFirstName,
    service: OrderServiceDep,
) -> WorkflowResponse:
    return await _void_leg(service, order_no, yard_index, "yard", first_name)


@router.put(
    "/voidLabelReturn/{order_no}/{yard_index}",
    response_model=WorkflowResponse,
    summary="Void the customer return label",
)
async def void_label_return(
    order_no: str,
    yard_index: int,
    current_user: CurrentUser,
    first_name: ActingFirstName,
    service: OrderServiceDep,
) -> WorkflowResponse:
    return await _void_leg(service, order_no, yard_index, "return", first_name)


# ============================================================================
# Orders
# ============================================================================


@router.post(
    "",
    response_model=OrderResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create order",
)
async def create_order(
    request: OrderCreateRequest,
    current_user: CurrentUser,
    first_name: ActingFirstName,
    service: OrderServiceDep,
) -> OrderResponse:
    logger.info("Creating order", order_no=request.order_no)
    try:
        order = await service.create_order(request, first_name)
    except Exception as e:
        raise to_http_exception(e, "Order creation") from e
    return OrderResponse.model_validate(order)


@router.get("/{order_no}", response_model=OrderResponse, summary="Get order")
async def get_order(
    order_no: str,
    current_user: CurrentUser,
    service: OrderServiceDep,
) -> OrderResponse:
    try:
        order = await service.get_order(order_no)
    except Exception as e:
        raise to_http_exception(e, "Order retrieval") from e
    return OrderResponse.model_validate(order)


@router.put("/{order_no}", response_model=WorkflowResponse, summary="Update order")
async def update_order(
    order_no: str,
    request: OrderUpdateRequest,
    current_user: CurrentUser,
    first_name: ActingFirstName,
    service: OrderServiceDep,
) -> WorkflowResponse:
    try:
        result = await service.update_order(order_no, request, first_name)
    except Exception as e:
        raise to_http_exception(e, "Order update") from e
    return WorkflowResponse.from_result(result)


# ============================================================================
# Yards
# ============================================================================


@router.post(
    "/{order_no}/additionalInfo",
    response_model=WorkflowResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Attach a yard",
)
async def add_yard(
    order_no: str,
    request: YardCreateRequest,
    current_user: CurrentUser,
    first_name: ActingFirstName,
    service: OrderServiceDep,
) -> WorkflowResponse:
    try:
        result = await service.add_yard(order_no, request, first_name)
    except Exception as e:
        raise to_http_exception(e, "Yard creation") from e
    return WorkflowResponse.from_result(result)


@router.put(
    "/{order_no}/additionalInfo/{yard_index}",
    response_model=WorkflowResponse,
    summary="Update yard status, save escalation or void label",
)
async def update_yard(
    order_no: str,
    yard_index: int,
    request: YardUpdateRequest,
    current_user: CurrentUser,
    first_name: ActingFirstName,
    service: OrderServiceDep,
) -> WorkflowResponse:
    try:
        result = await service.update_yard(order_no, yard_index, request, first_name)
    except Exception as e:
        raise to_http_exception(e, "Yard update") from e
    return WorkflowResponse.from_result(result)


@router.patch(
    "/{order_no}/additionalInfo/{yard_index}",
    response_model=WorkflowResponse,
    summary="Edit yard details",
)
async def edit_yard(
    order_no: str,
    yard_index: int,
    request: YardEditRequest,
    current_user: CurrentUser,
    first_name: ActingFirstName,
    service: OrderServiceDep,
) -> WorkflowResponse:
    try:
        result = await service.edit_yard(order_no, yard_index, request, first_name)
    except Exception as e:
        raise to_http_exception(e, "Yard edit") from e
    return WorkflowResponse.from_result(result)


@router.patch(
    "/{order_no}/additionalInfo/{yard_index}/paymentStatus",
    response_model=WorkflowResponse,
    summary="Update yard payment status",
)
async def update_payment_status(
    order_no: str,
    yard_index: int,
    request: PaymentStatusRequest,
    current_user: CurrentUser,
    first_name: ActingFirstName,
    service: OrderServiceDep,
) -> WorkflowResponse:
    try:
        result = await service.update_payment_status(order_no, yard_index, request, first_name)
    except Exception as e:
        raise to_http_exception(e, "Payment status update") from e
    return WorkflowResponse.from_result(result)


@router.patch(
    "/{order_no}/additionalInfo/{yard_index}/refundStatus",
    response_model=WorkflowResponse,
    summary="Update yard refund status and flags",
)
async def update_refund_status(
    order_no: str,
    yard_index: int,
    request: RefundStatusRequest,
    current_user: CurrentUser,
    first_name: ActingFirstName,
    service: OrderServiceDep,
) -> WorkflowResponse:
    try:
        result = await service.update_refund_status(order_no, yard_index, request, first_name)
    except Exception as e:
        raise to_http_exception(e, "Refund status update") from e
    return WorkflowResponse.from_result(result)


@router.patch(
    "/{order_no}/additionalInfo/{yard_index}/notes",
    response_model=NotesResponse,
    summary="Add a yard note",
)
async def add_yard_note(
    order_no: str,
    yard_index: int,
    request: NoteRequest,
    current_user: CurrentUser,
    service: OrderServiceDep,
) -> NotesResponse:
    try:
        notes = await service.add_yard_note(order_no, yard_index, request)
    except Exception as e:
        raise to_http_exception(e, "Yard note") from e
    return NotesResponse(message="Note added", notes=notes)


@router.put(
    "/{order_no}/cancelShipment",
    response_model=WorkflowResponse,
    summary="Cancel a shipped part",
)
async def cancel_shipment(
    order_no: str,
    request: CancelShipmentRequest,
    current_user: CurrentUser,
    first_name: ActingFirstName,
    service: OrderServiceDep,
) -> WorkflowResponse:
    try:
        result = await service.cancel_shipment(
            order_no, request.yard_index, first_name, request.expected_version
        )
    except Exception as e:
        raise to_http_exception(e, "Shipment cancellation") from e
    return WorkflowResponse.from_result(result)


# ============================================================================
# Order-level refund, dispute, cancellation and notes
# ============================================================================


@router.put("/{order_no}/custRefund", response_model=WorkflowResponse, summary="Record customer refund")
async def cust_refund(
    order_no: str,
    request: CustRefundRequest,
    current_user: CurrentUser,
    first_name: ActingFirstName,
    service: OrderServiceDep,
) -> WorkflowResponse:
    try:
        result = await service.cust_refund(order_no, request, first_name)
    except Exception as e:
        raise to_http_exception(e, "Customer refund") from e
    return WorkflowResponse.from_result(result)


@router.put("/{order_no}/dispute", response_model=WorkflowResponse, summary="Mark order disputed")
async def dispute(
    order_no: str,
    request: DisputeRequest,
    current_user: CurrentUser,
    first_name: ActingFirstName,
    service: OrderServiceDep,
) -> WorkflowResponse:
    try:
        result = await service.dispute(order_no, request, first_name)
    except Exception as e:
        raise to_http_exception(e, "Dispute") from e
    return WorkflowResponse.from_result(result)


@router.put("/{order_no}/cancelOnly", response_model=WorkflowResponse, summary="Cancel order")
async def cancel_only(
    order_no: str,
    request: CancelOnlyRequest,
    current_user: CurrentUser,
    first_name: ActingFirstName,
    service: OrderServiceDep,
) -> WorkflowResponse:
    try:
        result = await service.cancel_only(order_no, request, first_name)
    except Exception as e:
        raise to_http_exception(e, "Cancellation") from e
    return WorkflowResponse.from_result(result)


@router.put("/{order_no}/refundOnly", response_model=WorkflowResponse, summary="Refund order")
async def refund_only(
    order_no: str,
    request: RefundOnlyRequest,
    current_user: CurrentUser,
    first_name: ActingFirstName,
    service: OrderServiceDep,
) -> WorkflowResponse:
    try:
        result = await service.refund_only(order_no, request, first_name)
    except Exception as e:
        raise to_http_exception(e, "Refund") from e
    return WorkflowResponse.from_result(result)


@router.put("/{order_no}/reimbursement", response_model=WorkflowResponse, summary="Record reimbursement")
async def reimbursement(
    order_no: str,
    request: ReimbursementRequest,
    current_user: CurrentUser,
    first_name: ActingFirstName,
    service: OrderServiceDep,
) -> WorkflowResponse:
    try:
        result = await service.reimbursement(order_no, request, first_name)
    except Exception as e:
        raise to_http_exception(e, "Reimbursement") from e
    return WorkflowResponse.from_result(result)


@router.put("/{order_no}/updateActualGP", response_model=WorkflowResponse, summary="Set actual GP")
async def update_actual_gp(
    order_no: str,
    current_user: CurrentUser,
    first_name: ActingFirstName,
    service: OrderServiceDep,
    request: ActualGPRequest = Body(default_factory=ActualGPRequest),
) -> WorkflowResponse:
    try:
        result = await service.update_actual_gp(order_no, request, first_name)
    except Exception as e:
        raise to_http_exception(e, "Actual GP update") from e
    return WorkflowResponse.from_result(result)


@router.patch("/{order_no}/supportNotes", response_model=NotesResponse, summary="Add a support note")
async def add_support_note(
    order_no: str,
    request: NoteRequest,
    current_user: CurrentUser,
    service: OrderServiceDep,
) -> NotesResponse:
    try:
        notes = await service.add_support_note(order_no, request)
    except Exception as e:
        raise to_http_exception(e, "Support note") from e
    return NotesResponse(message="Support note added", notes=notes)
