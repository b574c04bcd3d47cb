"""Pydantic read schemas for mapping records."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel


class EntityKind(str, Enum):
    company = "company"
    contact = "contact"
    deal = "deal"
    order = "order"
    request = "request"


class MappingRecord(BaseModel):
    """One persisted correspondence between a platform id and a CRM id.

    Link fields that do not apply to a kind stay ``None`` (an order carries
    ``deal_id``, a contact carries ``crm_company_id``, and so on).
    """

    id: int
    kind: EntityKind
    name: str | None = None
    ops_id: str
    crm_id: str | None = None
    company_id: int | None = None
    contact_id: int | None = None
    deal_id: int | None = None
    crm_company_id: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
