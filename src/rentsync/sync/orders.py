"""Order sync: platform sub-projects -> CRM orders.

An order hangs off the deal of its parent project, so creation waits
(boundedly) for that deal mapping and associates the new order to the
deal, the project's customer company and its contact person.
"""

from __future__ import annotations

from typing import Any

import structlog

from src.rentsync.clients.crm import CrmObject
from src.rentsync.mapping.schemas import MappingRecord
from src.rentsync.sync.associations import Link, replace_links
from src.rentsync.sync.context import SyncAction, SyncContext, record_outcome
from src.rentsync.sync.field_mapping import extract_id_from_ref, order_properties

logger = structlog.get_logger(__name__)

KIND = "order"


class OrderSync:
    """Create, update and delete CRM orders for platform sub-projects."""

    def __init__(self, ctx: SyncContext) -> None:
        self._ctx = ctx
        self._store = ctx.mappings.orders

    def _properties(self, subproject: dict) -> dict[str, Any]:
        status_id = extract_id_from_ref(subproject.get("status"))
        return order_properties(subproject, status_id, self._ctx.order_pipeline_id)

    async def create_from_ops(self, ref: str) -> SyncAction:
        subproject = await self._ctx.ops.get(ref)
        if subproject is None:
            logger.warning("order_sync.source_missing", ref=ref)
            return record_outcome(KIND, "create", SyncAction.skipped)

        ops_id = subproject["id"]
        project_id = extract_id_from_ref(subproject.get("project"))
        deal = await self._ctx.wait_for_mapping(self._ctx.mappings.deals, ops_id=project_id)
        if deal is None:
            logger.warning("order_sync.deal_unmapped", ops_id=ops_id, project_id=project_id)
            return record_outcome(KIND, "create", SyncAction.skipped)

        async with self._ctx.locks.acquire(KIND, ops_id):
            if await self._store.find_by_ops_id(ops_id) is not None:
                logger.info("order_sync.already_mapped", ops_id=ops_id)
                return record_outcome(KIND, "create", SyncAction.skipped)

            project = await self._ctx.ops.get(subproject.get("project")) or {}
            company = await self._ctx.mappings.companies.find_by_ops_id(
                extract_id_from_ref(project.get("customer"))
            )
            contact = await self._ctx.mappings.contacts.find_by_ops_id(
                extract_id_from_ref(project.get("cust_contact"))
            )

            types = self._ctx.associations
            associations = [self._ctx.crm.association(deal.crm_id, types.order_to_deal)]
            if company and company.crm_id:
                associations.append(self._ctx.crm.association(company.crm_id, types.order_to_company))
            if contact and contact.crm_id:
                associations.append(self._ctx.crm.association(contact.crm_id, types.order_to_contact))

            properties = self._properties(subproject)
            order = await self._ctx.crm.create_order(properties, associations)
            await self._store.upsert(
                properties["hs_order_name"],
                ops_id,
                order["id"],
                deal_id=deal.id,
                company_id=company.id if company else None,
                contact_id=contact.id if contact else None,
            )

        logger.info("order_sync.created", ops_id=ops_id, crm_id=order["id"], deal_crm_id=deal.crm_id)
        return record_outcome(KIND, "create", SyncAction.created)

    async def update_from_ops(self, ref: str) -> SyncAction:
        subproject = await self._ctx.ops.get(ref)
        if subproject is None:
            logger.warning("order_sync.source_missing", ref=ref)
            return record_outcome(KIND, "update", SyncAction.skipped)

        ops_id = subproject["id"]
        async with self._ctx.locks.acquire(KIND, ops_id):
            mapping = await self._ctx.wait_for_mapping(self._store, ops_id=ops_id)
            if mapping is None:
                logger.warning("order_sync.update_unmapped", ops_id=ops_id)
                return record_outcome(KIND, "update", SyncAction.skipped)
            await self.apply(subproject, mapping)

        logger.info("order_sync.updated", ops_id=ops_id, crm_id=mapping.crm_id)
        return record_outcome(KIND, "update", SyncAction.updated)

    async def apply(self, subproject: dict, mapping: MappingRecord) -> None:
        """Push the sub-project's current fields onto its mapped order."""
        properties = self._properties(subproject)
        if await self._ctx.crm.update_order(mapping.crm_id, properties) is None:
            logger.warning("order_sync.remote_missing", ops_id=mapping.ops_id, crm_id=mapping.crm_id)
        await self._store.update_name(mapping.ops_id, properties["hs_order_name"])

    async def delete_from_ops(self, ops_id: Any) -> SyncAction:
        async with self._ctx.locks.acquire(KIND, ops_id):
            mapping = await self._store.find_by_ops_id(ops_id)
            if mapping is None:
                return record_outcome(KIND, "delete", SyncAction.skipped)
            if mapping.crm_id:
                await self._ctx.crm.delete_order(mapping.crm_id)
            await self._store.delete(ops_id)

        logger.info("order_sync.deleted", ops_id=str(ops_id), crm_id=mapping.crm_id)
        return record_outcome(KIND, "delete", SyncAction.deleted)

    async def repair_associations(
        self, mapping: MappingRecord, company_ops_id: Any, contact_ops_id: Any
    ) -> bool:
        """Point the order's company/contact edges at the project's current ones."""
        types = self._ctx.associations
        return await replace_links(
            self._ctx.crm,
            self._store,
            mapping,
            CrmObject.ORDERS,
            [
                Link("company_id", CrmObject.COMPANIES, types.order_to_company,
                     self._ctx.mappings.companies, company_ops_id),
                Link("contact_id", CrmObject.CONTACTS, types.order_to_contact,
                     self._ctx.mappings.contacts, contact_ops_id),
            ],
        )
