"""
Lead inbox endpoints.

Leads are addressed by numeric id or by Gmail message id.
"""

from typing import Optional

from fastapi import APIRouter, Query, status

from yardops.api.deps import CurrentUser, LeadServiceDep, to_http_exception
from yardops.core.logging import get_logger
from yardops.database.models.lead import LeadStatus
from yardops.schemas.leads import (
    CommentRequest,
    DailyStatisticsResponse,
    LabelsRequest,
    LeadIngestRequest,
    LeadListResponse,
    LeadResponse,
)

logger = get_logger(__name__)

router = APIRouter(prefix="/leads", tags=["leads"])


@router.get("/messages", response_model=LeadListResponse, summary="List leads")
async def list_leads(
    current_user: CurrentUser,
    service: LeadServiceDep,
    status_filter: Optional[LeadStatus] = Query(None, alias="status"),
    claimed_by: Optional[str] = Query(None, alias="claimedBy"),
    agent_email: Optional[str] = Query(None, alias="agentEmail"),
    page: int = Query(1, ge=1),
    limit: int = Query(25, ge=1, le=100),
) -> LeadListResponse:
    try:
        result = await service.list_leads(status_filter, claimed_by, agent_email, page, limit)
    except Exception as e:
        raise to_http_exception(e, "Lead listing") from e
    return LeadListResponse.model_validate(result)


@router.post(
    "/messages",
    response_model=LeadResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Ingest a synced lead e-mail",
)
async def ingest_lead(
    request: LeadIngestRequest,
    current_user: CurrentUser,
    service: LeadServiceDep,
) -> LeadResponse:
    try:
        lead = await service.ingest(request)
    except Exception as e:
        raise to_http_exception(e, "Lead ingest") from e
    return LeadResponse.model_validate(lead)


@router.get("/messages/{lead_id}", response_model=LeadResponse, summary="Get lead")
async def get_lead(
    lead_id: str,
    current_user: CurrentUser,
    service: LeadServiceDep,
) -> LeadResponse:
    try:
        lead = await service.get_lead(lead_id)
    except Exception as e:
        raise to_http_exception(e, "Lead retrieval") from e
    return LeadResponse.model_validate(lead)


@router.post("/messages/{lead_id}/claim", response_model=LeadResponse, summary="Claim lead")
async def claim_lead(
    lead_id: str,
    current_user: CurrentUser,
    service: LeadServiceDep,
) -> LeadResponse:
    try:
        lead = await service.claim(lead_id, current_user.id, current_user.first_name)
    except Exception as e:
        raise to_http_exception(e, "Lead claim") from e
    return LeadResponse.model_validate(lead)


@router.patch("/messages/{lead_id}/labels", response_model=LeadResponse, summary="Replace labels")
async def update_labels(
    lead_id: str,
    request: LabelsRequest,
    current_user: CurrentUser,
    service: LeadServiceDep,
) -> LeadResponse:
    try:
        lead = await service.update_labels(lead_id, request.labels)
    except Exception as e:
        raise to_http_exception(e, "Lead labels") from e
    return LeadResponse.model_validate(lead)


@router.post("/messages/{lead_id}/comments", response_model=LeadResponse, summary="Add comment")
async def add_comment(
    lead_id: str,
    request: CommentRequest,
    current_user: CurrentUser,
    service: LeadServiceDep,
) -> LeadResponse:
    try:
        lead = await service.add_comment(lead_id, request.comment, current_user.first_name)
    except Exception as e:
        raise to_http_exception(e, "Lead comment") from e
    return LeadResponse.model_validate(lead)


@router.patch("/messages/{lead_id}/close", response_model=LeadResponse, summary="Close lead")
async def close_lead(
    lead_id: str,
    current_user: CurrentUser,
    service: LeadServiceDep,
) -> LeadResponse:
    try:
        lead = await service.close(lead_id)
    except Exception as e:
        raise to_http_exception(e, "Lead close") from e
    return LeadResponse.model_validate(lead)


@router.patch("/messages/{lead_id}/reopen", response_model=LeadResponse, summary="Reopen lead")
async def reopen_lead(
    lead_id: str,
    current_user: CurrentUser,
    service: LeadServiceDep,
) -> LeadResponse:
    try:
        lead = await service.reopen(lead_id)
    except Exception as e:
        raise to_http_exception(e, "Lead reopen") from e
    return LeadResponse.model_validate(lead)


@router.get(
    "/statistics/daily",
    response_model=DailyStatisticsResponse,
    summary="Claimed leads per day and agent",
)
async def daily_statistics(
    current_user: CurrentUser,
    service: LeadServiceDep,
    start_date: Optional[str] = Query(None, alias="startDate"),
    end_date: Optional[str] = Query(None, alias="endDate"),
    agent_email: Optional[str] = Query(None, alias="agentEmail"),
) -> DailyStatisticsResponse:
    try:
        stats = await service.daily_statistics(start_date, end_date, agent_email)
    except Exception as e:
        raise to_http_exception(e, "Lead statistics") from e
    return DailyStatisticsResponse.model_validate(stats)
