"""Mapping store -- async persistence of platform <-> CRM id correspondences.

Provides MappingStore (one per entity kind) and MappingRepository, the
container the sync operations receive. Uses the session_factory callable
pattern: every method opens its own short session and commits before
returning, so no transaction is held across remote calls.

Lookups return None when nothing matches; absence is the normal state of
an entity that has not been synced yet. Database errors propagate to the
caller because the sync cannot proceed safely without the store.
"""

from __future__ import annotations

from typing import Any

import structlog
from sqlalchemy import delete, func, select, update

from src.rentsync.core.database import SessionFactory, dialect_insert
from src.rentsync.core.exceptions import MappingError
from src.rentsync.mapping.models import (
    CompanyMapping,
    ContactMapping,
    DealMapping,
    MappingColumns,
    OrderMapping,
    RequestMapping,
)
from src.rentsync.mapping.schemas import EntityKind, MappingRecord

logger = structlog.get_logger(__name__)

_LINK_FIELDS = ("company_id", "contact_id", "deal_id", "crm_company_id")


def _key(value: Any) -> str | None:
    """Normalize an external id to its stored string form."""
    if value is None or value == "":
        return None
    return str(value)


def _model_to_record(model: MappingColumns, kind: EntityKind) -> MappingRecord:
    """Convert a mapping row to a MappingRecord schema."""
    return MappingRecord(
        id=model.id,
        kind=kind,
        name=model.name,
        ops_id=model.ops_id,
        crm_id=model.crm_id,
        created_at=model.created_at,
        updated_at=model.updated_at,
        **{field: getattr(model, field, None) for field in _LINK_FIELDS},
    )


class MappingStore:
    """Async CRUD for one mapping table.

    Args:
        session_factory: Async callable that yields AsyncSession instances.
        model: Mapping model class for the entity kind.
        kind: EntityKind stamped on returned records.
    """

    def __init__(self, session_factory: SessionFactory, model: type, kind: EntityKind) -> None:
        self._session_factory = session_factory
        self._model = model
        self._kind = kind

    @property
    def kind(self) -> EntityKind:
        return self._kind

    async def _first(self, *criteria) -> MappingRecord | None:
        async for session in self._session_factory():
            result = await session.execute(select(self._model).where(*criteria).limit(1))
            row = result.scalar_one_or_none()
            return _model_to_record(row, self._kind) if row else None
        return None

    async def find_by_ops_id(self, ops_id: Any) -> MappingRecord | None:
        """Look up the mapping for a platform id."""
        key = _key(ops_id)
        if key is None:
            return None
        return await self._first(self._model.ops_id == key)

    async def find_by_crm_id(self, crm_id: Any) -> MappingRecord | None:
        """Look up the mapping for a CRM id."""
        key = _key(crm_id)
        if key is None:
            return None
        return await self._first(self._model.crm_id == key)

    async def get(self, row_id: int | None) -> MappingRecord | None:
        """Fetch a mapping by its row id (used to follow link columns)."""
        if not row_id:
            return None
        return await self._first(self._model.id == row_id)

    async def find_by_name(self, name: str) -> MappingRecord | None:
        return await self._first(self._model.name == name)

    async def list_all(self) -> list[MappingRecord]:
        """Return every mapping row of this kind."""
        async for session in self._session_factory():
            result = await session.execute(select(self._model).order_by(self._model.id))
            return [_model_to_record(row, self._kind) for row in result.scalars().all()]
        return []

    async def upsert(
        self,
        name: str | None,
        ops_id: Any,
        crm_id: Any = None,
        **links: Any,
    ) -> MappingRecord:
        """Insert a mapping, or update name/crm_id/links of the existing row.

        Keyed on the unique ``ops_id``: repeated calls for the same platform
        id always leave exactly one row. A ``crm_id`` of None keeps the id
        already stored.

        Args:
            name: Human-readable name.
            ops_id: Platform id (unique key).
            crm_id: CRM id, if known.
            **links: Link columns valid for this kind (company_id, deal_id, ...).

        Returns:
            The stored MappingRecord.
        """
        key = _key(ops_id)
        if key is None:
            raise MappingError(f"{self._kind.value} mapping requires a platform id")
        self._check_links(links)

        values: dict[str, Any] = {"name": name, "ops_id": key, "crm_id": _key(crm_id), **links}

        async for session in self._session_factory():
            stmt = dialect_insert(session, self._model).values(**values)
            table = self._model.__table__
            set_: dict[str, Any] = {
                "name": stmt.excluded.name,
                "crm_id": func.coalesce(stmt.excluded.crm_id, table.c.crm_id),
                "updated_at": func.now(),
            }
            for field in links:
                set_[field] = getattr(stmt.excluded, field)
            stmt = stmt.on_conflict_do_update(index_elements=["ops_id"], set_=set_)
            await session.execute(stmt)
            await session.commit()

            result = await session.execute(select(self._model).where(self._model.ops_id == key))
            record = _model_to_record(result.scalar_one(), self._kind)

        logger.info(
            "mapping.upserted",
            kind=self._kind.value,
            ops_id=key,
            crm_id=record.crm_id,
        )
        return record

    async def update_name(self, ops_id: Any, name: str | None) -> bool:
        """Rename a mapping. Returns False when no row matched."""
        return await self._update(ops_id, {"name": name})

    async def update_crm_id(self, ops_id: Any, crm_id: Any) -> bool:
        return await self._update(ops_id, {"crm_id": _key(crm_id)})

    async def update_foreign_key(self, ops_id: Any, field: str, value: Any) -> bool:
        """Point a link column at another mapping row (or clear it with None)."""
        self._check_links({field: value})
        return await self._update(ops_id, {field: value})

    async def delete(self, ops_id: Any) -> bool:
        """Remove the mapping for a platform id. Returns False when absent."""
        key = _key(ops_id)
        if key is None:
            return False
        async for session in self._session_factory():
            result = await session.execute(delete(self._model).where(self._model.ops_id == key))
            await session.commit()
            deleted = result.rowcount > 0
            if deleted:
                logger.info("mapping.deleted", kind=self._kind.value, ops_id=key)
            return deleted
        return False

    async def _update(self, ops_id: Any, values: dict[str, Any]) -> bool:
        key = _key(ops_id)
        if key is None:
            return False
        async for session in self._session_factory():
            result = await session.execute(
                update(self._model)
                .where(self._model.ops_id == key)
                .values(**values, updated_at=func.now())
            )
            await session.commit()
            return result.rowcount > 0
        return False

    def _check_links(self, links: dict[str, Any]) -> None:
        allowed = self._model.foreign_keys
        unknown = [field for field in links if field not in allowed]
        if unknown:
            raise MappingError(
                f"{self._kind.value} mapping has no link column(s) {', '.join(unknown)}"
            )


class MappingRepository:
    """All mapping stores, one attribute per entity kind.

    Args:
        session_factory: Async callable that yields AsyncSession instances.
    """

    def __init__(self, session_factory: SessionFactory) -> None:
        self.companies = MappingStore(session_factory, CompanyMapping, EntityKind.company)
        self.contacts = MappingStore(session_factory, ContactMapping, EntityKind.contact)
        self.deals = MappingStore(session_factory, DealMapping, EntityKind.deal)
        self.orders = MappingStore(session_factory, OrderMapping, EntityKind.order)
        self.requests = MappingStore(session_factory, RequestMapping, EntityKind.request)

    def for_kind(self, kind: EntityKind) -> MappingStore:
        return {
            EntityKind.company: self.companies,
            EntityKind.contact: self.contacts,
            EntityKind.deal: self.deals,
            EntityKind.order: self.orders,
            EntityKind.request: self.requests,
        }[kind]
