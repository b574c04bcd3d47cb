"""Contact sync: platform contact persons <-> CRM contacts.

A contact person always lives under a platform contact (company), so a
CRM contact is only created once the parent company is mapped, and it is
associated to that company on creation.
"""

from __future__ import annotations

from typing import Any

import structlog

from src.rentsync.clients.crm import CrmClient, CrmObject
from src.rentsync.core.exceptions import ConflictError
from src.rentsync.mapping.schemas import MappingRecord
from src.rentsync.sync.context import SyncAction, SyncContext, record_outcome
from src.rentsync.sync.field_mapping import (
    contact_properties,
    extract_id_from_ref,
    find_association_id,
    ops_contact_person_body,
)

logger = structlog.get_logger(__name__)

KIND = "contact"


def _display_name(person: dict) -> str:
    name = person.get("displayname")
    if name:
        return name
    return " ".join(p for p in (person.get("firstname"), person.get("lastname")) if p)


def _crm_display_name(contact: dict) -> str:
    properties = contact.get("properties", {})
    return " ".join(p for p in (properties.get("firstname"), properties.get("lastname")) if p)


class ContactSync:
    """Create, update and delete CRM contacts for platform contact persons."""

    def __init__(self, ctx: SyncContext) -> None:
        self._ctx = ctx
        self._store = ctx.mappings.contacts
        self._companies = ctx.mappings.companies

    @property
    def _crm(self) -> CrmClient:
        return self._ctx.crm

    def _parent_id(self, person: dict, parent_ops_id: Any) -> Any:
        if parent_ops_id is not None:
            return parent_ops_id
        return extract_id_from_ref(person.get("contact"))

    # ── Platform -> CRM ────────────────────────────────────────────────────

    async def create_from_ops(self, ref: str, parent_ops_id: Any = None) -> SyncAction:
        person = await self._ctx.ops.get(ref)
        if person is None:
            logger.warning("contact_sync.source_missing", ref=ref)
            return record_outcome(KIND, "create", SyncAction.skipped)

        ops_id = person["id"]
        parent_id = self._parent_id(person, parent_ops_id)
        company = await self._ctx.wait_for_mapping(self._companies, ops_id=parent_id)
        if company is None:
            logger.warning("contact_sync.company_unmapped", ops_id=ops_id, company_ops_id=parent_id)
            return record_outcome(KIND, "create", SyncAction.skipped)

        async with self._ctx.locks.acquire(KIND, ops_id):
            if await self._store.find_by_ops_id(ops_id) is not None:
                logger.info("contact_sync.already_mapped", ops_id=ops_id)
                return record_outcome(KIND, "create", SyncAction.skipped)

            properties = contact_properties(person)
            association = self._crm.association(company.crm_id, self._ctx.associations.contact_to_company)
            try:
                created = await self._crm.create_contact(properties, [association])
                crm_id = created["id"]
            except ConflictError as exc:
                if not exc.existing_id:
                    raise
                crm_id = exc.existing_id
                await self._crm.add_association(
                    CrmObject.CONTACTS,
                    crm_id,
                    CrmObject.COMPANIES,
                    company.crm_id,
                    self._ctx.associations.contact_to_company,
                )
                logger.info("contact_sync.adopted_existing", ops_id=ops_id, crm_id=crm_id)

            await self._store.upsert(
                _display_name(person), ops_id, crm_id, crm_company_id=company.crm_id
            )

        logger.info("contact_sync.created", ops_id=ops_id, crm_id=crm_id, company_crm_id=company.crm_id)
        return record_outcome(KIND, "create", SyncAction.created)

    async def update_from_ops(self, ref: str, parent_ops_id: Any = None) -> SyncAction:
        person = await self._ctx.ops.get(ref)
        if person is None:
            logger.warning("contact_sync.source_missing", ref=ref)
            return record_outcome(KIND, "update", SyncAction.skipped)

        ops_id = person["id"]
        async with self._ctx.locks.acquire(KIND, ops_id):
            mapping = await self._ctx.wait_for_mapping(self._store, ops_id=ops_id)
            if mapping is None:
                logger.warning("contact_sync.update_unmapped", ops_id=ops_id)
                return record_outcome(KIND, "update", SyncAction.skipped)

            if await self._crm.update_contact(mapping.crm_id, contact_properties(person)) is None:
                logger.warning("contact_sync.remote_missing", ops_id=ops_id, crm_id=mapping.crm_id)
            await self._store.update_name(ops_id, _display_name(person))

            parent_id = self._parent_id(person, parent_ops_id)
            company = await self._companies.find_by_ops_id(parent_id) if parent_id else None
            if company is not None and company.crm_id != mapping.crm_company_id:
                await self._move_to_company(mapping, company.crm_id)

        logger.info("contact_sync.updated", ops_id=ops_id, crm_id=mapping.crm_id)
        return record_outcome(KIND, "update", SyncAction.updated)

    async def _move_to_company(self, mapping: MappingRecord, company_crm_id: str) -> None:
        type_id = self._ctx.associations.contact_to_company
        if mapping.crm_company_id:
            await self._crm.remove_association(
                CrmObject.CONTACTS, mapping.crm_id, CrmObject.COMPANIES, mapping.crm_company_id, type_id
            )
        await self._crm.add_association(
            CrmObject.CONTACTS, mapping.crm_id, CrmObject.COMPANIES, company_crm_id, type_id
        )
        await self._store.update_foreign_key(mapping.ops_id, "crm_company_id", company_crm_id)
        logger.info(
            "contact_sync.company_changed",
            ops_id=mapping.ops_id,
            previous_company_crm_id=mapping.crm_company_id,
            company_crm_id=company_crm_id,
        )

    async def delete_from_ops(self, ops_id: Any) -> SyncAction:
        async with self._ctx.locks.acquire(KIND, ops_id):
            mapping = await self._store.find_by_ops_id(ops_id)
            if mapping is None:
                return record_outcome(KIND, "delete", SyncAction.skipped)
            if mapping.crm_id:
                await self._crm.delete_contact(mapping.crm_id)
            await self._store.delete(ops_id)

        logger.info("contact_sync.deleted", ops_id=str(ops_id), crm_id=mapping.crm_id)
        return record_outcome(KIND, "delete", SyncAction.deleted)

    # ── CRM -> platform ────────────────────────────────────────────────────

    async def create_from_crm(self, crm_id: Any) -> SyncAction:
        contact = await self._crm.get_contact(crm_id)
        if contact is None:
            logger.warning("contact_sync.crm_source_missing", crm_id=str(crm_id))
            return record_outcome(KIND, "create", SyncAction.skipped)

        results = contact.get("associations", {}).get("companies", {}).get("results", [])
        company_crm_id = find_association_id(results, "contact_to_company")
        if company_crm_id is None and results:
            company_crm_id = str(results[0].get("id"))
        if company_crm_id is None:
            logger.info("contact_sync.no_primary_company", crm_id=str(crm_id))
            return record_outcome(KIND, "create", SyncAction.skipped)

        return await self._create_person(contact, company_crm_id)

    async def update_from_crm(self, crm_id: Any) -> SyncAction:
        mapping = await self._ctx.wait_for_mapping(self._store, crm_id=crm_id)
        if mapping is None:
            logger.warning("contact_sync.crm_update_unmapped", crm_id=str(crm_id))
            return record_outcome(KIND, "update", SyncAction.skipped)

        contact = await self._crm.get_contact(crm_id)
        if contact is None:
            return record_outcome(KIND, "update", SyncAction.skipped)

        async with self._ctx.locks.acquire(KIND, mapping.ops_id):
            await self._ctx.ops.update_contact_person(mapping.ops_id, ops_contact_person_body(contact))
            await self._store.update_name(mapping.ops_id, _crm_display_name(contact))

        logger.info("contact_sync.updated_in_ops", crm_id=str(crm_id), ops_id=mapping.ops_id)
        return record_outcome(KIND, "update", SyncAction.updated)

    async def association_changed(
        self, contact_crm_id: Any, company_crm_id: Any, removed: bool
    ) -> SyncAction:
        """React to a contact<->company association edit made in the CRM."""
        company = await self._companies.find_by_crm_id(company_crm_id)
        if company is None:
            logger.info("contact_sync.association_company_unmapped", company_crm_id=str(company_crm_id))
            return record_outcome(KIND, "associate", SyncAction.skipped)

        mapping = await self._store.find_by_crm_id(contact_crm_id)
        if removed:
            if mapping is None or mapping.crm_company_id != str(company_crm_id):
                return record_outcome(KIND, "associate", SyncAction.skipped)
            async with self._ctx.locks.acquire(KIND, mapping.ops_id):
                await self._ctx.ops.delete_contact_person(mapping.ops_id)
                await self._store.delete(mapping.ops_id)
            logger.info(
                "contact_sync.person_removed",
                crm_id=str(contact_crm_id),
                ops_id=mapping.ops_id,
                company_crm_id=str(company_crm_id),
            )
            return record_outcome(KIND, "associate", SyncAction.deleted)

        if mapping is not None:
            logger.info("contact_sync.already_linked", crm_id=str(contact_crm_id), ops_id=mapping.ops_id)
            return record_outcome(KIND, "associate", SyncAction.skipped)

        contact = await self._crm.get_contact(contact_crm_id)
        if contact is None:
            return record_outcome(KIND, "associate", SyncAction.skipped)
        return await self._create_person(contact, str(company_crm_id))

    async def _create_person(self, contact: dict, company_crm_id: str) -> SyncAction:
        crm_id = str(contact["id"])
        company = await self._ctx.wait_for_mapping(self._companies, crm_id=company_crm_id)
        if company is None:
            logger.warning("contact_sync.company_unmapped", crm_id=crm_id, company_crm_id=company_crm_id)
            return record_outcome(KIND, "create", SyncAction.skipped)

        async with self._ctx.locks.acquire("contact:crm", crm_id):
            if await self._store.find_by_crm_id(crm_id) is not None:
                return record_outcome(KIND, "create", SyncAction.skipped)

            person = await self._ctx.ops.create_contact_person(
                company.ops_id, ops_contact_person_body(contact)
            )
            await self._store.upsert(
                _crm_display_name(contact), person["id"], crm_id, crm_company_id=company.crm_id
            )

        logger.info("contact_sync.created_in_ops", crm_id=crm_id, ops_id=person["id"], company_ops_id=company.ops_id)
        return record_outcome(KIND, "create", SyncAction.created)
