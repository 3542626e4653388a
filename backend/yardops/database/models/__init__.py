"""
Database models package initialization.

Models are imported here so they register with the Base metadata for
Alembic autogeneration and relationship resolution.
"""

from yardops.database.base import Base, BaseModel, create_table_args
from yardops.database.models.lead import GmailLeadMessage, LeadStatus
from yardops.database.models.notification import EmailOutbox, OutboxStatus
from yardops.database.models.order import Order, Yard

__all__ = [
    "Base",
    "BaseModel",
    "create_table_args",
    "EmailOutbox",
    "GmailLeadMessage",
    "LeadStatus",
    "Order",
    "OutboxStatus",
    "Yard",
]
