"""
Outbox of transactional e-mails.

A row is written in the same transaction as the business change that
triggers it and delivered after commit. Failed rows stay in the table and
are retried by the outbox worker until they succeed or exhaust their attempts.
"""

import enum
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import CheckConstraint, DateTime, Index, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from yardops.database.base import BaseModel, create_table_args
from yardops.database.models.order import enum_type
from yardops.services.orders.enums import EmailKind


class OutboxStatus(str, enum.Enum):
    """Delivery state of an outbox row."""

    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"

    def is_terminal(self) -> bool:
        return self == OutboxStatus.SENT


class EmailOutbox(BaseModel):
    """
    Pending or delivered e-mail.

    Attributes:
        order_no: Order the e-mail is about
        yard_index: 1-based yard position for yard-scoped e-mails
        kind: Which workflow e-mail this is
        sender: From address
        recipient: Primary recipient
        bcc: Blind copies
        subject: Rendered subject line
        html_body: Rendered HTML body
        text_body: Rendered plain-text body
        attachments: List of {filename, content_type, content_b64}
        status: pending, sent or failed
        attempts: Delivery attempts so far
        last_error: Error text of the most recent failed attempt
        message_id: SES message id once sent
        sent_at: When SES accepted the message
    """

    __tablename__ = "email_outbox"

    order_no: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    yard_index: Mapped[Optional[int]] = mapped_column(Integer)
    kind: Mapped[EmailKind] = mapped_column(
        enum_type(EmailKind, "email_kind"),
        nullable=False,
    )
    sender: Mapped[str] = mapped_column(String(255), nullable=False)
    recipient: Mapped[str] = mapped_column(String(255), nullable=False)
    bcc: Mapped[list[str]] = mapped_column(JSONB, nullable=False, default=list)
    subject: Mapped[str] = mapped_column(String(500), nullable=False)
    html_body: Mapped[str] = mapped_column(Text, nullable=False)
    text_body: Mapped[Optional[str]] = mapped_column(Text)
    attachments: Mapped[list[dict[str, Any]]] = mapped_column(
        JSONB, nullable=False, default=list
    )

    status: Mapped[OutboxStatus] = mapped_column(
        enum_type(OutboxStatus, "outbox_status"),
        nullable=False,
        default=OutboxStatus.PENDING,
    )
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_error: Mapped[Optional[str]] = mapped_column(Text)
    message_id: Mapped[Optional[str]] = mapped_column(String(255))
    sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    __table_args__ = create_table_args(
        Index("ix_email_outbox_status_attempts", "status", "attempts"),
        CheckConstraint("attempts >= 0", name="ck_email_outbox_attempts_non_negative"),
        CheckConstraint("length(recipient) >= 3", name="ck_email_outbox_recipient_min_length"),
        comment="Transactional e-mail outbox",
    )

    @property
    def is_pending(self) -> bool:
        return self.status in (OutboxStatus.PENDING, OutboxStatus.FAILED)

    def mark_sent(self, message_id: Optional[str]) -> None:
        self.status = OutboxStatus.SENT
        self.message_id = message_id
        self.sent_at = datetime.now(timezone.utc)
        self.last_error = None

    def mark_failed(self, error_message: str) -> None:
        self.status = OutboxStatus.FAILED
        self.last_error = error_message[:2000]
