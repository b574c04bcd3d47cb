"""Company sync: platform contacts (customers) <-> CRM companies."""

from __future__ import annotations

from typing import Any

import structlog

from src.rentsync.core.exceptions import ConflictError
from src.rentsync.sync.context import SyncAction, SyncContext, record_outcome
from src.rentsync.sync.field_mapping import company_properties, ops_company_body

logger = structlog.get_logger(__name__)

KIND = "company"


class CompanySync:
    """Create, update and delete CRM companies for platform contacts.

    Also handles the reverse direction for companies that originate in
    the CRM (created there first, then mirrored as platform contacts).
    """

    def __init__(self, ctx: SyncContext) -> None:
        self._ctx = ctx
        self._store = ctx.mappings.companies

    # ── Platform -> CRM ────────────────────────────────────────────────────

    async def create_from_ops(self, ref: str) -> SyncAction:
        contact = await self._ctx.ops.get(ref)
        if contact is None:
            logger.warning("company_sync.source_missing", ref=ref)
            return record_outcome(KIND, "create", SyncAction.skipped)

        ops_id = contact["id"]
        async with self._ctx.locks.acquire(KIND, ops_id):
            if await self._store.find_by_ops_id(ops_id) is not None:
                logger.info("company_sync.already_mapped", ops_id=ops_id)
                return record_outcome(KIND, "create", SyncAction.skipped)

            properties = company_properties(contact, include_type=True)
            try:
                company = await self._ctx.crm.create_company(properties)
                crm_id = company["id"]
            except ConflictError as exc:
                if not exc.existing_id:
                    raise
                # The CRM already holds this company; adopt it
                crm_id = exc.existing_id
                await self._ctx.crm.update_company(crm_id, properties)
                logger.info("company_sync.adopted_existing", ops_id=ops_id, crm_id=crm_id)

            await self._store.upsert(properties["name"], ops_id, crm_id)

        logger.info("company_sync.created", ops_id=ops_id, crm_id=crm_id)
        return record_outcome(KIND, "create", SyncAction.created)

    async def update_from_ops(self, ref: str) -> SyncAction:
        contact = await self._ctx.ops.get(ref)
        if contact is None:
            logger.warning("company_sync.source_missing", ref=ref)
            return record_outcome(KIND, "update", SyncAction.skipped)

        ops_id = contact["id"]
        async with self._ctx.locks.acquire(KIND, ops_id):
            mapping = await self._ctx.wait_for_mapping(self._store, ops_id=ops_id)
            if mapping is None:
                logger.warning("company_sync.update_unmapped", ops_id=ops_id)
                return record_outcome(KIND, "update", SyncAction.skipped)

            properties = company_properties(contact)
            if await self._ctx.crm.update_company(mapping.crm_id, properties) is None:
                logger.warning("company_sync.remote_missing", ops_id=ops_id, crm_id=mapping.crm_id)
            await self._store.update_name(ops_id, properties["name"])

        logger.info("company_sync.updated", ops_id=ops_id, crm_id=mapping.crm_id)
        return record_outcome(KIND, "update", SyncAction.updated)

    async def delete_from_ops(self, ops_id: Any) -> SyncAction:
        async with self._ctx.locks.acquire(KIND, ops_id):
            mapping = await self._store.find_by_ops_id(ops_id)
            if mapping is None:
                return record_outcome(KIND, "delete", SyncAction.skipped)
            if mapping.crm_id:
                await self._ctx.crm.delete_company(mapping.crm_id)
            await self._store.delete(ops_id)

        logger.info("company_sync.deleted", ops_id=str(ops_id), crm_id=mapping.crm_id)
        return record_outcome(KIND, "delete", SyncAction.deleted)

    # ── CRM -> platform ────────────────────────────────────────────────────

    async def create_from_crm(self, crm_id: Any) -> SyncAction:
        company = await self._ctx.crm.get_company(crm_id)
        if company is None:
            logger.warning("company_sync.crm_source_missing", crm_id=str(crm_id))
            return record_outcome(KIND, "create", SyncAction.skipped)

        async with self._ctx.locks.acquire("company:crm", crm_id):
            if await self._store.find_by_crm_id(crm_id) is not None:
                return record_outcome(KIND, "create", SyncAction.skipped)

            body = ops_company_body(company)
            contact = await self._ctx.ops.create_contact(body)
            await self._store.upsert(body["name"], contact["id"], crm_id)

        logger.info("company_sync.created_in_ops", crm_id=str(crm_id), ops_id=contact["id"])
        return record_outcome(KIND, "create", SyncAction.created)

    async def update_from_crm(self, crm_id: Any) -> SyncAction:
        mapping = await self._ctx.wait_for_mapping(self._store, crm_id=crm_id)
        if mapping is None:
            logger.warning("company_sync.crm_update_unmapped", crm_id=str(crm_id))
            return record_outcome(KIND, "update", SyncAction.skipped)

        company = await self._ctx.crm.get_company(crm_id)
        if company is None:
            return record_outcome(KIND, "update", SyncAction.skipped)

        body = ops_company_body(company)
        async with self._ctx.locks.acquire(KIND, mapping.ops_id):
            await self._ctx.ops.update_contact(mapping.ops_id, body)
            await self._store.update_name(mapping.ops_id, body["name"])

        logger.info("company_sync.updated_in_ops", crm_id=str(crm_id), ops_id=mapping.ops_id)
        return record_outcome(KIND, "update", SyncAction.updated)
