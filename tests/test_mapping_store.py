"""Tests for the mapping store (SQLite-backed)."""

from __future__ import annotations

import pytest

from src.rentsync.core.exceptions import MappingError
from src.rentsync.mapping.schemas import EntityKind


class TestMappingStoreLookups:
    async def test_absent_mapping_is_none(self, mappings):
        assert await mappings.companies.find_by_ops_id(41) is None
        assert await mappings.companies.find_by_crm_id("900") is None

    async def test_empty_ids_never_match(self, mappings):
        await mappings.companies.upsert("Acme", 1, "900")
        assert await mappings.companies.find_by_ops_id(None) is None
        assert await mappings.companies.find_by_crm_id("") is None

    async def test_ids_are_normalized_to_strings(self, mappings):
        await mappings.companies.upsert("Acme", 12, 900)

        by_int = await mappings.companies.find_by_ops_id(12)
        by_str = await mappings.companies.find_by_ops_id("12")
        by_crm = await mappings.companies.find_by_crm_id(900)

        assert by_int is not None and by_int == by_str == by_crm
        assert by_int.ops_id == "12"
        assert by_int.crm_id == "900"
        assert by_int.kind == EntityKind.company

    async def test_find_by_name(self, mappings):
        await mappings.companies.upsert("Mangler Virksomhed", 7, "70")
        found = await mappings.companies.find_by_name("Mangler Virksomhed")
        assert found is not None and found.ops_id == "7"


class TestMappingStoreUpsert:
    async def test_repeated_upsert_leaves_one_row(self, mappings):
        await mappings.deals.upsert("Festival", 5, "500")
        await mappings.deals.upsert("Festival 2026", 5, "500")

        rows = await mappings.deals.list_all()
        assert len(rows) == 1
        assert rows[0].name == "Festival 2026"

    async def test_upsert_without_crm_id_keeps_existing(self, mappings):
        await mappings.deals.upsert("Festival", 5, "500")
        record = await mappings.deals.upsert("Festival", 5)
        assert record.crm_id == "500"

    async def test_links_are_stored(self, mappings):
        company = await mappings.companies.upsert("Acme", 1, "100")
        contact = await mappings.contacts.upsert("Jane Doe", 2, "200", crm_company_id="100")
        deal = await mappings.deals.upsert(
            "Festival", 3, "300", company_id=company.id, contact_id=contact.id
        )
        order = await mappings.orders.upsert("Stage", 4, "400", deal_id=deal.id, company_id=company.id)

        assert deal.company_id == company.id
        assert deal.contact_id == contact.id
        assert order.deal_id == deal.id
        assert contact.crm_company_id == "100"

    async def test_unknown_link_column_is_rejected(self, mappings):
        with pytest.raises(MappingError):
            await mappings.companies.upsert("Acme", 1, "100", deal_id=3)

    async def test_missing_platform_id_is_rejected(self, mappings):
        with pytest.raises(MappingError):
            await mappings.companies.upsert("Acme", None, "100")


class TestMappingStoreUpdates:
    async def test_update_foreign_key(self, mappings):
        old = await mappings.companies.upsert("Old", 1, "100")
        new = await mappings.companies.upsert("New", 2, "200")
        await mappings.deals.upsert("Festival", 3, "300", company_id=old.id)

        assert await mappings.deals.update_foreign_key(3, "company_id", new.id) is True
        assert (await mappings.deals.find_by_ops_id(3)).company_id == new.id

    async def test_update_on_missing_row_reports_false(self, mappings):
        assert await mappings.deals.update_name(99, "Nothing") is False
        assert await mappings.deals.update_crm_id(99, "1") is False

    async def test_delete(self, mappings):
        await mappings.orders.upsert("Stage", 4, "400")
        assert await mappings.orders.delete(4) is True
        assert await mappings.orders.find_by_ops_id(4) is None
        assert await mappings.orders.delete(4) is False

    async def test_deleting_a_linked_row_clears_the_link(self, mappings):
        company = await mappings.companies.upsert("Acme", 1, "100")
        await mappings.deals.upsert("Festival", 3, "300", company_id=company.id)

        assert await mappings.companies.delete(1) is True

        assert (await mappings.deals.find_by_ops_id(3)).company_id is None

    async def test_get_follows_row_id(self, mappings):
        company = await mappings.companies.upsert("Acme", 1, "100")
        assert (await mappings.companies.get(company.id)).crm_id == "100"
        assert await mappings.companies.get(None) is None

    async def test_for_kind(self, mappings):
        assert mappings.for_kind(EntityKind.order) is mappings.orders
        assert mappings.for_kind(EntityKind.request).kind == EntityKind.request
