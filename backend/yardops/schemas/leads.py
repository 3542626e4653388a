"""Gmail lead inbox schemas."""

from datetime import datetime
from typing import Optional

from pydantic import Field

from yardops.database.models.lead import LeadStatus
from yardops.schemas.orders import WireModel


class LeadIngestRequest(WireModel):
    """A lead e-mail as delivered by the inbox sync."""

    message_id: str = Field(..., min_length=1, max_length=255)
    thread_id: Optional[str] = None
    subject: str = ""
    sender: str = Field("", alias="from")
    snippet: str = ""
    body_html: Optional[str] = None
    agent_email: Optional[str] = None
    internal_date: Optional[datetime] = None


class LeadComment(WireModel):
    text: str
    author: str
    created_at: datetime


class LeadResponse(WireModel):
    id: int
    message_id: str
    thread_id: Optional[str] = None
    subject: str = ""
    sender: str = Field("", alias="from")
    snippet: str = ""
    body_html: Optional[str] = None
    agent_email: Optional[str] = None
    internal_date: Optional[datetime] = None
    status: LeadStatus
    claimed_by: Optional[str] = None
    claimed_by_name: Optional[str] = None
    claimed_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    labels: list[str] = Field(default_factory=list)
    comments: list[LeadComment] = Field(default_factory=list)


class LeadListResponse(WireModel):
    messages: list[LeadResponse]
    total: int
    page: int
    total_pages: int


class LabelsRequest(WireModel):
    labels: list[str] = Field(default_factory=list)


class CommentRequest(WireModel):
    comment: str = ""


class LeadSummary(WireModel):
    id: int
    message_id: str
    subject: str = ""
    sender: str = Field("", alias="from")
    claimed_at: Optional[datetime] = None
    labels: list[str] = Field(default_factory=list)
    status: LeadStatus


class AgentDayStat(WireModel):
    agent_id: str
    agent_name: str
    count: int
    leads: list[LeadSummary]


class DailyLeadStat(WireModel):
    date: str
    total: int
    agents: list[AgentDayStat]


class AgentLeadStat(WireModel):
    agent_id: str
    agent_name: str
    total_leads: int


class DateRange(WireModel):
    start: datetime
    end: datetime


class DailyStatisticsResponse(WireModel):
    daily_stats: list[DailyLeadStat]
    total_leads: int
    agent_stats: list[AgentLeadStat]
    date_range: DateRange
