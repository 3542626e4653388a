"""
Lead inbox service.

Leads are sales e-mails synced from Gmail. An agent claims a lead, works it
with labels and comments, and closes it; a closed lead can be reopened by
the owner. Claiming is first-come: the second claimer gets a conflict.
"""

import math
from collections import defaultdict
from datetime import date, timedelta
from typing import Any, Optional

from sqlalchemy import and_, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from yardops.core.logging import get_logger
from yardops.core.timeutils import local_midnight_utc, to_business_time, utcnow
from yardops.database.models.lead import GmailLeadMessage, LeadStatus
from yardops.schemas.leads import LeadIngestRequest

logger = get_logger(__name__)

DEFAULT_PAGE_SIZE = 25
MAX_PAGE_SIZE = 100


class LeadServiceError(Exception):
    """Base exception for lead service errors."""

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.context = context


class LeadNotFoundError(LeadServiceError):
    pass


class LeadConflictError(LeadServiceError):
    """Raised when a lead is already claimed by someone."""

    pass


class LeadValidationError(LeadServiceError):
    pass


def normalize_labels(labels: list[str], owner_label: Optional[str] = None) -> list[str]:
    """
    Trim, drop blanks and de-duplicate labels, keeping first-seen order.

    The owner's label is always present on a claimed lead.

    Example:
        >>> normalize_labels([" hot ", "", "hot", "Mia"], "Mia")
        ['hot', 'Mia']
    """
    seen: list[str] = []
    for label in labels:
        label = (label or "").strip()
        if label and label not in seen:
            seen.append(label)
    if owner_label and owner_label not in seen:
        seen.insert(0, owner_label)
    return seen


def _owner_label(lead: GmailLeadMessage) -> Optional[str]:
    return (lead.claimed_by_name or "").strip() or None


class LeadService:
    """Claim workflow and statistics for Gmail leads."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def _get(self, lead_ref: str) -> GmailLeadMessage:
        """
        Load a lead by numeric id or Gmail message id.

        Raises:
            LeadNotFoundError: If no lead matches
        """
        ref = str(lead_ref).strip()
        if ref.isdigit():
            stmt = select(GmailLeadMessage).where(GmailLeadMessage.id == int(ref))
        else:
            stmt = select(GmailLeadMessage).where(GmailLeadMessage.message_id == ref)
        result = await self.session.execute(stmt)
        lead = result.scalar_one_or_none()
        if lead is None:
            raise LeadNotFoundError("Lead not found", lead=ref)
        return lead

    async def _save(self, lead: GmailLeadMessage) -> GmailLeadMessage:
        await self.session.commit()
        await self.session.refresh(lead)
        return lead

    async def get_lead(self, lead_ref: str) -> GmailLeadMessage:
        return await self._get(lead_ref)

    async def ingest(self, request: LeadIngestRequest) -> GmailLeadMessage:
        """
        Insert a synced message or refresh its content if already known.

        Claim state, labels and comments are never touched by a re-sync.
        """
        result = await self.session.execute(
            select(GmailLeadMessage).where(GmailLeadMessage.message_id == request.message_id)
        )
        lead = result.scalar_one_or_none()
        fields = request.model_dump(exclude={"message_id"})

        if lead is None:
            lead = GmailLeadMessage(
                message_id=request.message_id,
                status=LeadStatus.ACTIVE,
                labels=[],
                comments=[],
                **{key: value for key, value in fields.items() if value is not None},
            )
            self.session.add(lead)
            logger.info("Lead ingested", message_id=request.message_id)
        else:
            for key in request.model_fields_set - {"message_id"}:
                if fields[key] is not None:
                    setattr(lead, key, fields[key])
            logger.debug("Lead refreshed", message_id=request.message_id)

        return await self._save(lead)

    async def list_leads(
        self,
        status: Optional[LeadStatus] = None,
        claimed_by: Optional[str] = None,
        agent_email: Optional[str] = None,
        page: int = 1,
        limit: int = DEFAULT_PAGE_SIZE,
    ) -> dict[str, Any]:
        """Newest leads first, optionally filtered by status, owner or inbox."""
        page = max(page, 1)
        limit = min(max(limit, 1), MAX_PAGE_SIZE)

        conditions = []
        if status is not None:
            conditions.append(GmailLeadMessage.status == status)
        if claimed_by:
            conditions.append(GmailLeadMessage.claimed_by == claimed_by)
        if agent_email:
            conditions.append(GmailLeadMessage.agent_email == agent_email)

        count_stmt = select(func.count()).select_from(GmailLeadMessage)
        stmt = select(GmailLeadMessage)
        if conditions:
            count_stmt = count_stmt.where(and_(*conditions))
            stmt = stmt.where(and_(*conditions))

        total = (await self.session.execute(count_stmt)).scalar_one()
        stmt = (
            stmt.order_by(
                GmailLeadMessage.internal_date.desc().nulls_last(),
                GmailLeadMessage.id.desc(),
            )
            .offset((page - 1) * limit)
            .limit(limit)
        )
        leads = list((await self.session.execute(stmt)).scalars().all())

        return {
            "messages": leads,
            "total": total,
            "page": page,
            "total_pages": math.ceil(total / limit) if total else 0,
        }

    async def claim(self, lead_ref: str, user_id: str, first_name: str) -> GmailLeadMessage:
        """
        Claim an unowned lead.

        Raises:
            LeadNotFoundError: If the lead does not exist
            LeadConflictError: If the lead already has an owner
        """
        lead = await self._get(lead_ref)
        if lead.claimed_by:
            raise LeadConflictError(
                "Already claimed", lead=lead.id, claimed_by=lead.claimed_by_name
            )

        lead.claimed_by = user_id
        lead.claimed_by_name = first_name
        lead.claimed_at = utcnow()
        lead.status = LeadStatus.CLAIMED
        lead.labels = normalize_labels(list(lead.labels or []), _owner_label(lead))

        logger.info("Lead claimed", lead=lead.id, claimed_by=first_name)
        return await self._save(lead)

    async def update_labels(self, lead_ref: str, labels: list[str]) -> GmailLeadMessage:
        lead = await self._get(lead_ref)
        lead.labels = normalize_labels(labels, _owner_label(lead))
        return await self._save(lead)

    async def add_comment(self, lead_ref: str, text: str, author: str) -> GmailLeadMessage:
        """
        Append a comment.

        Raises:
            LeadValidationError: If the comment is empty
        """
        text = (text or "").strip()
        if not text:
            raise LeadValidationError("Comment text is required")

        lead = await self._get(lead_ref)
        lead.comments = [
            *(lead.comments or []),
            {"text": text, "author": author, "createdAt": utcnow().isoformat()},
        ]
        return await self._save(lead)

    async def close(self, lead_ref: str) -> GmailLeadMessage:
        lead = await self._get(lead_ref)
        if lead.status != LeadStatus.CLAIMED:
            raise LeadValidationError("Only claimed leads can be closed.", lead=lead.id)

        lead.status = LeadStatus.CLOSED
        lead.closed_at = utcnow()
        logger.info("Lead closed", lead=lead.id)
        return await self._save(lead)

    async def reopen(self, lead_ref: str) -> GmailLeadMessage:
        lead = await self._get(lead_ref)
        if lead.status != LeadStatus.CLOSED:
            raise LeadValidationError("Only closed leads can be reopened.", lead=lead.id)

        lead.status = LeadStatus.CLAIMED
        lead.closed_at = None
        logger.info("Lead reopened", lead=lead.id)
        return await self._save(lead)

    async def daily_statistics(
        self,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
        agent_email: Optional[str] = None,
    ) -> dict[str, Any]:
        """
        Claimed leads per business day and per agent.

        Days are inclusive and default to today. Only leads that are still
        claimed or were closed count; the day is the claim day.

        Raises:
            LeadValidationError: If a date cannot be parsed or start is after end
        """
        today = to_business_time(utcnow()).date()
        try:
            start_day = date.fromisoformat(start_date[:10]) if start_date else today
            end_day = date.fromisoformat(end_date[:10]) if end_date else start_day
        except ValueError as e:
            raise LeadValidationError(f"Invalid date: {e}") from e
        if start_day > end_day:
            raise LeadValidationError("startDate must not be after endDate")

        window_start = local_midnight_utc(start_day)
        window_end = local_midnight_utc(end_day + timedelta(days=1))

        conditions = [
            GmailLeadMessage.status.in_([LeadStatus.CLAIMED, LeadStatus.CLOSED]),
            GmailLeadMessage.claimed_at >= window_start,
            GmailLeadMessage.claimed_at < window_end,
        ]
        if agent_email:
            conditions.append(GmailLeadMessage.agent_email == agent_email)

        stmt = (
            select(GmailLeadMessage)
            .where(and_(*conditions))
            .order_by(GmailLeadMessage.claimed_at.desc())
        )
        leads = (await self.session.execute(stmt)).scalars().all()

        days: dict[str, dict[str, dict[str, Any]]] = defaultdict(dict)
        agent_totals: dict[str, dict[str, Any]] = {}
        for lead in leads:
            day = to_business_time(lead.claimed_at).date().isoformat()
            agent_id = lead.claimed_by or "unknown"
            agent_name = lead.claimed_by_name or "Unknown"

            bucket = days[day].setdefault(
                agent_id,
                {"agent_id": agent_id, "agent_name": agent_name, "count": 0, "leads": []},
            )
            bucket["count"] += 1
            bucket["leads"].append(lead)

            total = agent_totals.setdefault(
                agent_id, {"agent_id": agent_id, "agent_name": agent_name, "total_leads": 0}
            )
            total["total_leads"] += 1

        daily_stats = [
            {
                "date": day,
                "total": sum(agent["count"] for agent in agents.values()),
                "agents": sorted(agents.values(), key=lambda agent: -agent["count"]),
            }
            for day, agents in sorted(days.items(), reverse=True)
        ]

        return {
            "daily_stats": daily_stats,
            "total_leads": len(leads),
            "agent_stats": sorted(agent_totals.values(), key=lambda agent: -agent["total_leads"]),
            "date_range": {"start": window_start, "end": window_end},
        }


def get_lead_service(session: AsyncSession) -> LeadService:
    return LeadService(session)
