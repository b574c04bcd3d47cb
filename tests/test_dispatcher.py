"""Tests for webhook routing, burst collapsing and the WebhookEvent lifecycle."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from src.rentsync.webhooks.dispatcher import SOURCE_CRM, SOURCE_OPS, WebhookDispatcher


# ── Helpers ────────────────────────────────────────────────────────────────


@pytest.fixture
def syncs() -> dict[str, AsyncMock]:
    return {name: AsyncMock() for name in ("companies", "contacts", "deals", "orders", "requests")}


@pytest.fixture
def dispatcher(syncs, error_logger) -> WebhookDispatcher:
    return WebhookDispatcher(**syncs, error_logger=error_logger, integration_user_id=235)


def _crm_event(subscription: str, object_id: int = 5, **extra) -> dict:
    return {
        "eventId": extra.pop("eventId", object_id * 10),
        "subscriptionType": subscription,
        "objectId": object_id,
        "changeSource": extra.pop("changeSource", "CRM_UI"),
        **extra,
    }


def _ops_payload(item_type: str, event_type: str, items: list, user_id: int = 7) -> dict:
    return {"eventType": event_type, "itemType": item_type, "items": items, "user": {"id": user_id}}


async def _statuses(error_logger, source: str) -> list[str]:
    return sorted(event.status for event in await error_logger.get_webhook_events(source=source))


# ── CRM ────────────────────────────────────────────────────────────────────


class TestCrmRouting:
    async def test_integration_writes_are_ignored(self, dispatcher, syncs, error_logger):
        await dispatcher.handle_batch(SOURCE_CRM, [_crm_event("deal.creation", changeSource="INTEGRATION")])

        syncs["requests"].create_from_crm_deal.assert_not_awaited()
        assert await _statuses(error_logger, "crm") == ["ignored"]

    async def test_auto_associated_burst_is_dropped_whole(self, dispatcher, syncs, error_logger):
        def association(event_id, source):
            return {
                "eventId": event_id,
                "subscriptionType": "contact.associationChange",
                "associationType": "CONTACT_TO_COMPANY",
                "fromObjectId": 20,
                "toObjectId": 30,
                "changeSource": source,
            }

        await dispatcher.handle_batch(
            SOURCE_CRM, [association(1, "AUTO_ASSOCIATE_BY_DOMAIN"), association(2, "CRM_UI")]
        )

        syncs["contacts"].association_changed.assert_not_awaited()
        assert await _statuses(error_logger, "crm") == ["ignored", "ignored"]

    async def test_first_event_source_decides_for_the_batch(self, dispatcher, syncs, error_logger):
        await dispatcher.handle_batch(
            SOURCE_CRM,
            [
                _crm_event("company.creation", object_id=9, changeSource="API"),
                _crm_event("company.creation", object_id=10),
            ],
        )

        syncs["companies"].create_from_crm.assert_not_awaited()
        assert await _statuses(error_logger, "crm") == ["ignored", "ignored"]

    async def test_burst_collapses_to_the_creation(self, dispatcher, syncs, error_logger):
        await dispatcher.handle_batch(
            SOURCE_CRM,
            [
                _crm_event("deal.creation", eventId=1),
                _crm_event("deal.propertyChange", eventId=2, propertyName="dealname", propertyValue="X"),
            ],
        )

        syncs["requests"].create_from_crm_deal.assert_awaited_once_with(5)
        syncs["requests"].retry_from_crm.assert_not_awaited()
        assert await _statuses(error_logger, "crm") == ["completed", "ignored"]

    async def test_single_payload_is_accepted(self, dispatcher, syncs):
        await dispatcher.handle_batch(SOURCE_CRM, _crm_event("company.creation", object_id=9))

        syncs["companies"].create_from_crm.assert_awaited_once_with(9)

    async def test_deal_property_change_routes_to_retry(self, dispatcher, syncs):
        await dispatcher.handle_batch(
            SOURCE_CRM,
            [_crm_event("deal.propertyChange", propertyName="retry_sync", propertyValue="Create")],
        )

        syncs["requests"].retry_from_crm.assert_awaited_once_with(5, "retry_sync", "Create")

    async def test_deal_deletion(self, dispatcher, syncs):
        await dispatcher.handle_batch(SOURCE_CRM, [_crm_event("deal.deletion")])

        syncs["requests"].delete_from_crm_deal.assert_awaited_once_with(5)

    async def test_contact_property_change(self, dispatcher, syncs):
        await dispatcher.handle_batch(
            SOURCE_CRM, [_crm_event("contact.propertyChange", object_id=8, propertyName="email")]
        )

        syncs["contacts"].update_from_crm.assert_awaited_once_with(8)

    @pytest.mark.parametrize(
        ("association", "from_id", "to_id"),
        [("CONTACT_TO_COMPANY", 20, 30), ("COMPANY_TO_CONTACT", 30, 20)],
    )
    async def test_association_change_orients_the_pair(
        self, dispatcher, syncs, association, from_id, to_id
    ):
        event = {
            "eventId": 1,
            "subscriptionType": "contact.associationChange",
            "associationType": association,
            "fromObjectId": from_id,
            "toObjectId": to_id,
            "associationRemoved": True,
            "changeSource": "CRM_UI",
        }

        await dispatcher.handle_batch(SOURCE_CRM, [event])

        syncs["contacts"].association_changed.assert_awaited_once_with(20, 30, True)

    async def test_other_associations_are_unrouted(self, dispatcher, syncs, error_logger):
        event = {
            "eventId": 1,
            "subscriptionType": "deal.associationChange",
            "associationType": "DEAL_TO_COMPANY",
            "fromObjectId": 1,
            "toObjectId": 2,
            "changeSource": "CRM_UI",
        }

        await dispatcher.handle_batch(SOURCE_CRM, [event])

        syncs["contacts"].association_changed.assert_not_awaited()
        assert await _statuses(error_logger, "crm") == ["ignored"]

    async def test_empty_batch(self, dispatcher, error_logger):
        await dispatcher.handle_batch(SOURCE_CRM, [])
        assert await error_logger.get_webhook_events() == []


# ── Operations platform ────────────────────────────────────────────────────


class TestOpsRouting:
    async def test_integration_user_is_ignored(self, dispatcher, syncs, error_logger):
        await dispatcher.handle_batch(
            SOURCE_OPS, _ops_payload("Project", "update", [{"id": 5}], user_id=235)
        )

        syncs["deals"].update_from_ops.assert_not_awaited()
        assert await _statuses(error_logger, "ops") == ["ignored"]

    async def test_integration_user_id_as_string_is_ignored(self, dispatcher, syncs, error_logger):
        payload = _ops_payload("Project", "update", [{"id": 5}])
        payload["user"] = {"id": "235"}

        await dispatcher.handle_batch(SOURCE_OPS, payload)

        syncs["deals"].update_from_ops.assert_not_awaited()
        assert await _statuses(error_logger, "ops") == ["ignored"]

    async def test_non_numeric_user_id_is_processed(self, dispatcher, syncs):
        payload = _ops_payload("Project", "update", [{"id": 5}])
        payload["user"] = {"id": "system"}

        await dispatcher.handle_batch(SOURCE_OPS, payload)

        syncs["deals"].update_from_ops.assert_awaited_once_with("/projects/5")

    async def test_items_are_routed_with_built_refs(self, dispatcher, syncs, error_logger):
        await dispatcher.handle_batch(SOURCE_OPS, _ops_payload("Project", "create", [{"id": 5}, 6]))

        syncs["deals"].create_from_ops.assert_any_await("/projects/5")
        syncs["deals"].create_from_ops.assert_any_await("/projects/6")
        assert await _statuses(error_logger, "ops") == ["completed", "completed"]

    async def test_explicit_ref_wins(self, dispatcher, syncs):
        await dispatcher.handle_batch(
            SOURCE_OPS, _ops_payload("Subproject", "update", [{"id": 51, "ref": "/subprojects/51?x=1"}])
        )

        syncs["orders"].update_from_ops.assert_awaited_once_with("/subprojects/51?x=1")

    async def test_contact_person_carries_parent(self, dispatcher, syncs):
        await dispatcher.handle_batch(
            SOURCE_OPS, _ops_payload("ContactPerson", "create", [{"id": 3, "parent": {"id": 11}}])
        )

        syncs["contacts"].create_from_ops.assert_awaited_once_with("/contactpersons/3", 11)

    async def test_delete_passes_the_id(self, dispatcher, syncs):
        await dispatcher.handle_batch(SOURCE_OPS, _ops_payload("Contact", "delete", [{"id": 11}]))

        syncs["companies"].delete_from_ops.assert_awaited_once_with(11)

    async def test_unknown_item_type_is_ignored(self, dispatcher, error_logger):
        await dispatcher.handle_batch(SOURCE_OPS, _ops_payload("Invoice", "create", [{"id": 1}]))

        assert await _statuses(error_logger, "ops") == ["ignored"]

    async def test_failure_is_recorded_and_batch_continues(self, dispatcher, syncs, error_logger):
        async def create(ref):
            if ref == "/contacts/11":
                raise RuntimeError("crm exploded")

        syncs["companies"].create_from_ops.side_effect = create

        await dispatcher.handle_batch(
            SOURCE_OPS, _ops_payload("Contact", "create", [{"id": 11}, {"id": 12}])
        )

        assert syncs["companies"].create_from_ops.await_count == 2
        events = {e.object_id: e for e in await error_logger.get_webhook_events(source="ops")}
        assert events["11"].status == "failed"
        assert events["11"].error_message == "crm exploded"
        assert events["11"].error_id is not None
        assert events["12"].status == "completed"

        [error] = await error_logger.get_recent_errors()
        assert error.id == events["11"].error_id
        assert error.error_type == "webhook"
        assert error.source_system == "ops"
        assert error.ops_id == "11"


class TestDispatcher:
    async def test_unknown_source_raises(self, dispatcher):
        with pytest.raises(ValueError):
            await dispatcher.handle_batch("erp", {})

    def test_from_context_wires_shared_operations(self, ctx, error_logger):
        dispatcher = WebhookDispatcher.from_context(ctx, error_logger)

        assert dispatcher.deals is not None
        assert dispatcher.orders is not None
