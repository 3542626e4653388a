"""
Customer and yard e-mail endpoints.

Each endpoint queues one outbox e-mail and attempts delivery after the
business change commits. Documents (shipping labels, refund receipts,
purchase orders) arrive as multipart ``pdfFile`` uploads.
"""

from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, File, Form, HTTPException, Query, UploadFile, status
from pydantic import TypeAdapter, ValidationError

from yardops.api.deps import ActingFirstName, CurrentUser, OrderServiceDep, to_http_exception
from yardops.core.logging import get_logger
from yardops.schemas.orders import EscalationState, WorkflowResponse
from yardops.services.notifications.service import Attachment
from yardops.services.orders.enums import ReplacementLeg

logger = get_logger(__name__)

router = APIRouter(prefix="/emails", tags=["emails"])

_escalation_adapter = TypeAdapter(EscalationState)

MAX_ATTACHMENT_BYTES = 10 * 1024 * 1024


async def _attachment(upload: Optional[UploadFile]) -> Optional[Attachment]:
    if upload is None or not upload.filename:
        return None
    content = await upload.read()
    if len(content) > MAX_ATTACHMENT_BYTES:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"{upload.filename} exceeds the 10 MB attachment limit",
        )
    return Attachment(
        filename=upload.filename,
        content=content,
        content_type=upload.content_type or "application/pdf",
    )


def _escalation(raw: Optional[str]):
    """Parse the escalation state sent alongside a leg e-mail as a JSON form field."""
    if not raw:
        return None
    try:
        return _escalation_adapter.validate_json(raw)
    except ValidationError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"message": "Invalid escalation", "errors": e.errors(include_url=False)},
        ) from e


@router.post(
    "/orders/sendTrackingInfo/{order_no}",
    response_model=WorkflowResponse,
    summary="E-mail tracking details to the customer",
)
async def send_tracking_info(
    order_no: str,
    current_user: CurrentUser,
    first_name: ActingFirstName,
    service: OrderServiceDep,
    yard_index: int = Query(..., alias="yardIndex", ge=1),
) -> WorkflowResponse:
    try:
        result = await service.send_tracking_email(order_no, yard_index, first_name)
    except Exception as e:
        raise to_http_exception(e, "Tracking e-mail") from e
    return WorkflowResponse.from_result(result)


@router.post(
    "/customer-delivered/{order_no}",
    response_model=WorkflowResponse,
    summary="E-mail delivery confirmation to the customer",
)
async def send_delivery_confirmation(
    order_no: str,
    current_user: CurrentUser,
    first_name: ActingFirstName,
    service: OrderServiceDep,
    yard_index: int = Query(..., alias="yardIndex", ge=1),
) -> WorkflowResponse:
    try:
        result = await service.send_delivery_email(order_no, yard_index, first_name)
    except Exception as e:
        raise to_http_exception(e, "Delivery e-mail") from e
    return WorkflowResponse.from_result(result)


@router.post(
    "/orders/sendReplacementEmail/{order_no}",
    response_model=WorkflowResponse,
    summary="E-mail one replacement leg",
    description="Saves the posted escalation state first, then e-mails the customer "
    "(customer leg) or the replacement's tracking (yard leg)",
)
async def send_replacement_email(
    order_no: str,
    current_user: CurrentUser,
    first_name: ActingFirstName,
    service: OrderServiceDep,
    yard_index: int = Query(..., alias="yardIndex", ge=1),
    leg: ReplacementLeg = Query(ReplacementLeg.CUSTOMER),
    confirm: bool = Form(False),
    escalation: Optional[str] = Form(None),
    expected_version: Optional[int] = Form(None, alias="expectedVersion"),
    pdf_file: Optional[UploadFile] = File(None, alias="pdfFile"),
) -> WorkflowResponse:
    attachment = await _attachment(pdf_file)
    state = _escalation(escalation)
    try:
        result = await service.send_replacement_email(
            order_no,
            yard_index,
            leg,
            first_name,
            attachment=attachment,
            escalation=state,
            confirm=confirm,
            expected_version=expected_version,
        )
    except Exception as e:
        raise to_http_exception(e, "Replacement e-mail") from e
    return WorkflowResponse.from_result(result)


@router.post(
    "/orders/sendReturnEmail/{order_no}",
    response_model=WorkflowResponse,
    summary="E-mail return instructions to the customer",
)
async def send_return_email(
    order_no: str,
    current_user: CurrentUser,
    first_name: ActingFirstName,
    service: OrderServiceDep,
    yard_index: int = Query(..., alias="yardIndex", ge=1),
    confirm: bool = Form(False),
    escalation: Optional[str] = Form(None),
    expected_version: Optional[int] = Form(None, alias="expectedVersion"),
    pdf_file: Optional[UploadFile] = File(None, alias="pdfFile"),
) -> WorkflowResponse:
    attachment = await _attachment(pdf_file)
    state = _escalation(escalation)
    try:
        result = await service.send_return_email(
            order_no,
            yard_index,
            first_name,
            attachment=attachment,
            escalation=state,
            confirm=confirm,
            expected_version=expected_version,
        )
    except Exception as e:
        raise to_http_exception(e, "Return e-mail") from e
    return WorkflowResponse.from_result(result)


@router.post(
    "/orders/sendRefundConfirmation/{order_no}",
    response_model=WorkflowResponse,
    summary="E-mail the refund receipt to the customer",
)
async def send_refund_confirmation(
    order_no: str,
    current_user: CurrentUser,
    first_name: ActingFirstName,
    service: OrderServiceDep,
    refunded_amount: Optional[Decimal] = Query(None, alias="refundedAmount", ge=0),
    pdf_file: Optional[UploadFile] = File(None, alias="pdfFile"),
) -> WorkflowResponse:
    attachment = await _attachment(pdf_file)
    try:
        result = await service.send_refund_confirmation(
            order_no, first_name, attachment, amount=refunded_amount
        )
    except Exception as e:
        raise to_http_exception(e, "Refund confirmation e-mail") from e
    return WorkflowResponse.from_result(result)


@router.post(
    "/orders/sendRefundEmail/{order_no}",
    response_model=WorkflowResponse,
    summary="Ask a yard to refund a charge",
)
async def send_yard_refund_email(
    order_no: str,
    current_user: CurrentUser,
    first_name: ActingFirstName,
    service: OrderServiceDep,
    yard_index: int = Query(..., alias="yardIndex", ge=1),
    refund_to_collect: Optional[Decimal] = Form(None, alias="refundToCollect", ge=0),
    refund_reason: Optional[str] = Form(None, alias="refundReason"),
    return_tracking: str = Form("", alias="returnTracking"),
    pdf_file: Optional[UploadFile] = File(None, alias="pdfFile"),
) -> WorkflowResponse:
    attachment = await _attachment(pdf_file)
    try:
        result = await service.send_yard_refund_email(
            order_no,
            yard_index,
            first_name,
            attachment,
            refund_to_collect=refund_to_collect,
            refund_reason=refund_reason,
            return_tracking=return_tracking,
        )
    except Exception as e:
        raise to_http_exception(e, "Yard refund e-mail") from e
    return WorkflowResponse.from_result(result)


@router.post(
    "/sendPOEmailYard/{order_no}",
    response_model=WorkflowResponse,
    summary="E-mail the purchase order to a yard",
)
async def send_po_email(
    order_no: str,
    current_user: CurrentUser,
    first_name: ActingFirstName,
    service: OrderServiceDep,
    yard_index: int = Query(..., alias="yardIndex", ge=1),
    files: Optional[list[UploadFile]] = File(None, alias="images"),
) -> WorkflowResponse:
    attachments = [a for a in [await _attachment(f) for f in files or []] if a is not None]
    try:
        result = await service.send_po_email(order_no, yard_index, first_name, attachments)
    except Exception as e:
        raise to_http_exception(e, "PO e-mail") from e
    return WorkflowResponse.from_result(result)


@router.post(
    "/order-cancel/{order_no}",
    response_model=WorkflowResponse,
    summary="E-mail the cancellation notice",
)
async def send_cancellation_email(
    order_no: str,
    current_user: CurrentUser,
    first_name: ActingFirstName,
    service: OrderServiceDep,
    cancelled_ref_amount: Optional[Decimal] = Query(None, alias="cancelledRefAmount", ge=0),
) -> WorkflowResponse:
    try:
        result = await service.send_cancellation_email(order_no, first_name, cancelled_ref_amount)
    except Exception as e:
        raise to_http_exception(e, "Cancellation e-mail") from e
    return WorkflowResponse.from_result(result)


@router.post(
    "/sendReimburseEmail/{order_no}",
    response_model=WorkflowResponse,
    summary="E-mail the reimbursement confirmation",
)
async def send_reimbursement_email(
    order_no: str,
    current_user: CurrentUser,
    first_name: ActingFirstName,
    service: OrderServiceDep,
    amount: Optional[Decimal] = Query(None, ge=0),
) -> WorkflowResponse:
    try:
        result = await service.send_reimbursement_email(order_no, first_name, amount)
    except Exception as e:
        raise to_http_exception(e, "Reimbursement e-mail") from e
    return WorkflowResponse.from_result(result)
