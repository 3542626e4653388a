"""
Gmail lead messages pulled from the sales inboxes.
"""

import enum
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import DateTime, Index, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from yardops.database.base import BaseModel, create_table_args
from yardops.database.models.order import enum_type


class LeadStatus(str, enum.Enum):
    """Claim state of a lead.

    Valid transitions:
    - active -> claimed
    - claimed -> closed
    - closed -> claimed (reopen)
    """

    ACTIVE = "active"
    CLAIMED = "claimed"
    CLOSED = "closed"


class GmailLeadMessage(BaseModel):
    """
    A lead e-mail and the sales workflow state attached to it.

    ``claimed_by`` is the identity-service user id of the owner; there is no
    local users table. ``comments`` is append-only.
    """

    __tablename__ = "gmail_lead_messages"

    message_id: Mapped[str] = mapped_column(String(255), nullable=False)
    thread_id: Mapped[Optional[str]] = mapped_column(String(255), index=True)
    subject: Mapped[str] = mapped_column(String(1000), nullable=False, default="")
    sender: Mapped[str] = mapped_column(String(500), nullable=False, default="")
    snippet: Mapped[str] = mapped_column(Text, nullable=False, default="")
    body_html: Mapped[Optional[str]] = mapped_column(Text)
    agent_email: Mapped[Optional[str]] = mapped_column(String(255), index=True)
    internal_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    status: Mapped[LeadStatus] = mapped_column(
        enum_type(LeadStatus, "lead_status"),
        nullable=False,
        default=LeadStatus.ACTIVE,
    )
    claimed_by: Mapped[Optional[str]] = mapped_column(String(255), index=True)
    claimed_by_name: Mapped[Optional[str]] = mapped_column(String(120))
    claimed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    closed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    labels: Mapped[list[str]] = mapped_column(JSONB, nullable=False, default=list)
    comments: Mapped[list[dict[str, Any]]] = mapped_column(JSONB, nullable=False, default=list)

    __table_args__ = create_table_args(
        UniqueConstraint("message_id", name="uq_gmail_lead_messages_message_id"),
        Index("ix_gmail_lead_messages_status_date", "status", "internal_date"),
        comment="Sales leads ingested from Gmail",
    )
