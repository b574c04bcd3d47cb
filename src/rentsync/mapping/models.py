"""Mapping store persistence models -- one correspondence table per entity kind.

Five SQLAlchemy models sharing the MappingColumns mixin:
- CompanyMapping (synced_companies): platform Contact <-> CRM company
- ContactMapping (synced_contacts): platform ContactPerson <-> CRM contact
- DealMapping (synced_deals): platform Project <-> CRM deal
- OrderMapping (synced_order): platform Subproject <-> CRM order
- RequestMapping (synced_request): platform project request <-> CRM deal

``ops_id`` is the operations-platform id and is unique per table; ``crm_id``
is unique once assigned. Links between mappings are integer row references
that are nulled when the referenced row disappears.
"""

from __future__ import annotations

from datetime import datetime
from typing import ClassVar

from sqlalchemy import DateTime, ForeignKey, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column

from src.rentsync.core.database import Base


class MappingColumns:
    """Columns shared by every mapping table."""

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str | None] = mapped_column(String(300), nullable=True)
    ops_id: Mapped[str] = mapped_column(String(50), nullable=False, unique=True, index=True)
    crm_id: Mapped[str | None] = mapped_column(String(50), nullable=True, unique=True, index=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        onupdate=func.now(),
        nullable=True,
    )


class CompanyMapping(MappingColumns, Base):
    """Operations-platform customer (Contact) mirrored as a CRM company."""

    __tablename__ = "synced_companies"

    foreign_keys: ClassVar[tuple[str, ...]] = ()


class ContactMapping(MappingColumns, Base):
    """Operations-platform contact person mirrored as a CRM contact.

    ``crm_company_id`` records the CRM company the contact was attached to
    when it was created, so a later association removal can be matched.
    """

    __tablename__ = "synced_contacts"

    foreign_keys: ClassVar[tuple[str, ...]] = ("crm_company_id",)

    crm_company_id: Mapped[str | None] = mapped_column(String(50), nullable=True)


class DealMapping(MappingColumns, Base):
    """Operations-platform project mirrored as a CRM deal."""

    __tablename__ = "synced_deals"

    foreign_keys: ClassVar[tuple[str, ...]] = ("company_id", "contact_id")

    company_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("synced_companies.id", ondelete="SET NULL"), nullable=True
    )
    contact_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("synced_contacts.id", ondelete="SET NULL"), nullable=True
    )


class OrderMapping(MappingColumns, Base):
    """Operations-platform sub-project mirrored as a CRM order."""

    __tablename__ = "synced_order"

    foreign_keys: ClassVar[tuple[str, ...]] = ("deal_id", "company_id", "contact_id")

    deal_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("synced_deals.id", ondelete="SET NULL"), nullable=True
    )
    company_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("synced_companies.id", ondelete="SET NULL"), nullable=True
    )
    contact_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("synced_contacts.id", ondelete="SET NULL"), nullable=True
    )


class RequestMapping(MappingColumns, Base):
    """Rental request created on the platform from a CRM deal."""

    __tablename__ = "synced_request"

    foreign_keys: ClassVar[tuple[str, ...]] = ("company_id",)

    company_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("synced_companies.id", ondelete="SET NULL"), nullable=True
    )
