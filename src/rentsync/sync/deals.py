"""Deal sync: platform projects -> CRM deals.

Besides the deal's own fields, a project update recomputes the deal's
company and contact associations and cascades any change to the orders
of the project's sub-projects. The reconciliation sweep reuses ``apply``
for the same repair.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

import structlog

from src.rentsync.clients.crm import CrmObject
from src.rentsync.mapping.schemas import MappingRecord
from src.rentsync.sync.associations import Link, replace_links
from src.rentsync.sync.context import SyncAction, SyncContext, record_outcome
from src.rentsync.sync.field_mapping import build_ref, deal_properties, extract_id_from_ref
from src.rentsync.sync.orders import OrderSync
from src.rentsync.sync.requests import RequestSync

logger = structlog.get_logger(__name__)

KIND = "deal"


class DealSync:
    """Create, update and delete CRM deals for platform projects.

    Args:
        ctx: Shared sync collaborators.
        orders: Order sync used to cascade association repairs.
        requests: Request sync consulted before creating a deal, so projects
            converted from a rental request reuse the request's CRM deal.
    """

    def __init__(
        self,
        ctx: SyncContext,
        orders: OrderSync | None = None,
        requests: RequestSync | None = None,
    ) -> None:
        self._ctx = ctx
        self._store = ctx.mappings.deals
        self._orders = orders or OrderSync(ctx)
        self._requests = requests or RequestSync(ctx)

    def _properties(self, project: dict, today: datetime | None = None) -> dict[str, Any]:
        return deal_properties(project, today or datetime.now(timezone.utc), self._ctx.owner_map)

    async def create_from_ops(self, ref: str) -> SyncAction:
        project = await self._ctx.ops.get(ref)
        if project is None:
            logger.warning("deal_sync.source_missing", ref=ref)
            return record_outcome(KIND, "create", SyncAction.skipped)

        ops_id = project["id"]
        async with self._ctx.locks.acquire(KIND, ops_id):
            if await self._store.find_by_ops_id(ops_id) is not None:
                logger.info("deal_sync.already_mapped", ops_id=ops_id)
                return record_outcome(KIND, "create", SyncAction.skipped)

            converted = await self._requests.convert_to_deal(project)
            if converted is not None:
                await self.apply(project, converted)
                return record_outcome(KIND, "create", SyncAction.converted)

            company = await self._ctx.mappings.companies.find_by_ops_id(
                extract_id_from_ref(project.get("customer"))
            )
            contact = await self._ctx.mappings.contacts.find_by_ops_id(
                extract_id_from_ref(project.get("cust_contact"))
            )
            types = self._ctx.associations
            associations = []
            if company and company.crm_id:
                associations.append(self._ctx.crm.association(company.crm_id, types.deal_to_company))
            if contact and contact.crm_id:
                associations.append(self._ctx.crm.association(contact.crm_id, types.deal_to_contact))

            properties = self._properties(project)
            deal = await self._ctx.crm.create_deal(properties, associations)
            await self._store.upsert(
                properties["dealname"],
                ops_id,
                deal["id"],
                company_id=company.id if company else None,
                contact_id=contact.id if contact else None,
            )

        logger.info("deal_sync.created", ops_id=ops_id, crm_id=deal["id"])
        return record_outcome(KIND, "create", SyncAction.created)

    async def update_from_ops(self, ref: str) -> SyncAction:
        project = await self._ctx.ops.get(ref)
        if project is None:
            logger.warning("deal_sync.source_missing", ref=ref)
            return record_outcome(KIND, "update", SyncAction.skipped)

        ops_id = project["id"]
        async with self._ctx.locks.acquire(KIND, ops_id):
            mapping = await self._ctx.wait_for_mapping(self._store, ops_id=ops_id)
            if mapping is None:
                logger.warning("deal_sync.update_unmapped", ops_id=ops_id)
                return record_outcome(KIND, "update", SyncAction.skipped)
            await self.apply(project, mapping)

        logger.info("deal_sync.updated", ops_id=ops_id, crm_id=mapping.crm_id)
        return record_outcome(KIND, "update", SyncAction.updated)

    async def apply(self, project: dict, mapping: MappingRecord, cascade: bool = True) -> bool:
        """Bring a mapped deal (and its orders' edges) in line with the project.

        With ``cascade`` off, orders are left to the caller (the sweep walks
        them itself).

        Returns:
            True when any association was changed.
        """
        company_ops_id = extract_id_from_ref(project.get("customer"))
        contact_ops_id = extract_id_from_ref(project.get("cust_contact"))

        types = self._ctx.associations
        changed = await replace_links(
            self._ctx.crm,
            self._store,
            mapping,
            CrmObject.DEALS,
            [
                Link("company_id", CrmObject.COMPANIES, types.deal_to_company,
                     self._ctx.mappings.companies, company_ops_id),
                Link("contact_id", CrmObject.CONTACTS, types.deal_to_contact,
                     self._ctx.mappings.contacts, contact_ops_id),
            ],
        )
        if changed and cascade:
            await self._cascade_to_orders(project, company_ops_id, contact_ops_id)

        properties = self._properties(project)
        if await self._ctx.crm.update_deal(mapping.crm_id, properties) is None:
            logger.warning("deal_sync.remote_missing", ops_id=mapping.ops_id, crm_id=mapping.crm_id)
        await self._store.update_name(mapping.ops_id, properties["dealname"])
        return changed

    async def _cascade_to_orders(self, project: dict, company_ops_id: Any, contact_ops_id: Any) -> None:
        project_ref = build_ref("projects", project["id"])
        for subproject in await self._ctx.ops.get_project_subprojects(project_ref):
            async with self._ctx.locks.acquire("order", subproject["id"]):
                order = await self._ctx.mappings.orders.find_by_ops_id(subproject["id"])
                if order is None:
                    continue
                await self._orders.repair_associations(order, company_ops_id, contact_ops_id)

    async def delete_from_ops(self, ops_id: Any) -> SyncAction:
        async with self._ctx.locks.acquire(KIND, ops_id):
            mapping = await self._store.find_by_ops_id(ops_id)
            if mapping is None:
                return record_outcome(KIND, "delete", SyncAction.skipped)
            if mapping.crm_id:
                await self._ctx.crm.delete_deal(mapping.crm_id)
            await self._store.delete(ops_id)

        logger.info("deal_sync.deleted", ops_id=str(ops_id), crm_id=mapping.crm_id)
        return record_outcome(KIND, "delete", SyncAction.deleted)
