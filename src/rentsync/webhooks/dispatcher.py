"""Route webhook notifications to the entity sync operations.

handle_batch is the single entry point for both sources. Each dispatched
notification gets a WebhookEvent row that moves received -> processing ->
completed/failed; notifications dropped as noise are stored as ignored.
A failing notification is logged through the ErrorLogger and does not
stop the rest of its batch.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any

import structlog

from src.rentsync.clients.crm import CrmObject
from src.rentsync.observability.errors import ErrorLogger
from src.rentsync.observability.metrics import webhook_events_total
from src.rentsync.observability.models import WebhookStatus
from src.rentsync.sync.companies import CompanySync
from src.rentsync.sync.contacts import ContactSync
from src.rentsync.sync.context import SyncContext
from src.rentsync.sync.deals import DealSync
from src.rentsync.sync.field_mapping import build_ref
from src.rentsync.sync.orders import OrderSync
from src.rentsync.sync.requests import RequestSync
from src.rentsync.webhooks.dedup import (
    filter_duplicate_events,
    is_association_change,
    is_creation,
    is_ignored_source,
    is_property_change,
)

logger = structlog.get_logger(__name__)

SOURCE_CRM = "crm"
SOURCE_OPS = "ops"

Handler = Callable[[], Awaitable[Any]]

# Platform itemType -> resource path segment
_OPS_RESOURCES = {
    "Project": "projects",
    "Subproject": "subprojects",
    "Contact": "contacts",
    "ContactPerson": "contactpersons",
}

_CONTACT_COMPANY_ASSOCIATIONS = ("CONTACT_TO_COMPANY", "COMPANY_TO_CONTACT")


class WebhookDispatcher:
    """Turns raw webhook payloads into sync operations.

    Args:
        companies, contacts, deals, orders, requests: Entity sync operations.
        error_logger: Persists WebhookEvents and failures.
        integration_user_id: Platform user whose edits are the engine's own writes.
    """

    def __init__(
        self,
        companies: CompanySync,
        contacts: ContactSync,
        deals: DealSync,
        orders: OrderSync,
        requests: RequestSync,
        error_logger: ErrorLogger,
        integration_user_id: int = 235,
    ) -> None:
        self._companies = companies
        self._contacts = contacts
        self._deals = deals
        self._orders = orders
        self._requests = requests
        self._errors = error_logger
        self._integration_user_id = integration_user_id

    @classmethod
    def from_context(
        cls, ctx: SyncContext, error_logger: ErrorLogger, integration_user_id: int = 235
    ) -> WebhookDispatcher:
        orders = OrderSync(ctx)
        requests = RequestSync(ctx)
        return cls(
            companies=CompanySync(ctx),
            contacts=ContactSync(ctx),
            deals=DealSync(ctx, orders=orders, requests=requests),
            orders=orders,
            requests=requests,
            error_logger=error_logger,
            integration_user_id=integration_user_id,
        )

    @property
    def deals(self) -> DealSync:
        return self._deals

    @property
    def orders(self) -> OrderSync:
        return self._orders

    async def handle_batch(self, source: str, payload: Any) -> None:
        """Process one inbound webhook delivery. Never raises for a single bad event."""
        if source == SOURCE_CRM:
            await self._handle_crm(payload if isinstance(payload, list) else [payload])
        elif source == SOURCE_OPS:
            await self._handle_ops(payload)
        else:
            raise ValueError(f"unknown webhook source {source!r}")

    # ── Lifecycle ──────────────────────────────────────────────────────────

    async def _ignore(self, source: str, raw: Any, reason: str, **fields: Any) -> None:
        await self._errors.log_webhook_event(source, raw, status=WebhookStatus.ignored, **fields)
        webhook_events_total.labels(source=source, status=WebhookStatus.ignored.value).inc()
        logger.info("webhook.ignored", source=source, reason=reason, object_id=fields.get("object_id"))

    async def _process(
        self,
        source: str,
        raw: Any,
        handler: Handler | None,
        context: dict[str, Any],
        **fields: Any,
    ) -> None:
        if handler is None:
            await self._ignore(source, raw, "unrouted", **fields)
            return

        event_id = await self._errors.log_webhook_event(source, raw, **fields)
        await self._errors.update_webhook_event(event_id, WebhookStatus.processing)
        try:
            outcome = await handler()
        except Exception as exc:
            # Boundary of one notification: record it and carry on with the batch
            error_id = await self._errors.log_error(
                exc,
                {**context, "webhook": True, "webhook_event_id": event_id, "source_system": source},
            )
            await self._errors.update_webhook_event(
                event_id, WebhookStatus.failed, error_id=error_id, error_message=str(exc)
            )
            webhook_events_total.labels(source=source, status=WebhookStatus.failed.value).inc()
            return

        await self._errors.update_webhook_event(event_id, WebhookStatus.completed)
        webhook_events_total.labels(source=source, status=WebhookStatus.completed.value).inc()
        logger.info(
            "webhook.processed",
            source=source,
            event_id=event_id,
            object_id=fields.get("object_id"),
            outcome=getattr(outcome, "value", outcome),
        )

    # ── CRM (System A) ─────────────────────────────────────────────────────

    async def _handle_crm(self, events: list[dict]) -> None:
        if not events:
            return

        # The first event's change source speaks for the whole burst
        if is_ignored_source(events[0]):
            for event in events:
                await self._ignore(SOURCE_CRM, event, "ignored_batch", **self._crm_fields(event))
            return

        remaining = []
        for event in events:
            if is_ignored_source(event):
                await self._ignore(SOURCE_CRM, event, "ignored_source", **self._crm_fields(event))
            else:
                remaining.append(event)

        kept = filter_duplicate_events(remaining)
        for event in remaining:
            if not any(event is k for k in kept):
                await self._ignore(SOURCE_CRM, event, "duplicate", **self._crm_fields(event))

        for event in kept:
            await self._process(
                SOURCE_CRM,
                event,
                self._route_crm(event),
                {"module": "webhooks.crm", "function": event.get("subscriptionType"), "crm_id": event.get("objectId")},
                **self._crm_fields(event),
            )

    @staticmethod
    def _crm_fields(event: dict) -> dict[str, Any]:
        object_id = event.get("objectId", event.get("fromObjectId"))
        return {
            "event_id": str(event["eventId"]) if event.get("eventId") is not None else None,
            "event_type": event.get("subscriptionType"),
            "subscription_type": event.get("subscriptionType"),
            "object_type": event.get("objectTypeId") or event.get("associationType"),
            "object_id": str(object_id) if object_id is not None else None,
        }

    def _route_crm(self, event: dict) -> Handler | None:
        if is_association_change(event):
            association = event.get("associationType")
            if association not in _CONTACT_COMPANY_ASSOCIATIONS:
                return None
            if association == "CONTACT_TO_COMPANY":
                contact_id, company_id = event.get("fromObjectId"), event.get("toObjectId")
            else:
                company_id, contact_id = event.get("fromObjectId"), event.get("toObjectId")
            removed = bool(event.get("associationRemoved"))
            return lambda: self._contacts.association_changed(contact_id, company_id, removed)

        object_type = self._crm_object_type(event)
        object_id = event.get("objectId")

        if object_type == CrmObject.DEALS:
            if is_creation(event):
                return lambda: self._requests.create_from_crm_deal(object_id)
            if is_property_change(event):
                return lambda: self._requests.retry_from_crm(
                    object_id, event.get("propertyName"), event.get("propertyValue")
                )
            if str(event.get("subscriptionType", "")).endswith("deletion"):
                return lambda: self._requests.delete_from_crm_deal(object_id)
        elif object_type == CrmObject.COMPANIES:
            if is_creation(event):
                return lambda: self._companies.create_from_crm(object_id)
            if is_property_change(event):
                return lambda: self._companies.update_from_crm(object_id)
        elif object_type == CrmObject.CONTACTS:
            if is_creation(event):
                return lambda: self._contacts.create_from_crm(object_id)
            if is_property_change(event):
                return lambda: self._contacts.update_from_crm(object_id)
        return None

    @staticmethod
    def _crm_object_type(event: dict) -> str | None:
        type_id = event.get("objectTypeId")
        subscription = str(event.get("subscriptionType", ""))
        if type_id == CrmObject.DEAL_TYPE_ID or subscription.startswith("deal."):
            return CrmObject.DEALS
        if type_id == CrmObject.COMPANY_TYPE_ID or subscription.startswith("company."):
            return CrmObject.COMPANIES
        if type_id == CrmObject.CONTACT_TYPE_ID or subscription.startswith("contact."):
            return CrmObject.CONTACTS
        return None

    # ── Operations platform (System B) ─────────────────────────────────────

    async def _handle_ops(self, payload: dict) -> None:
        event_type = payload.get("eventType")
        item_type = payload.get("itemType")
        items = payload.get("items") or []
        user_id = (payload.get("user") or {}).get("id")

        if user_id is not None and str(user_id) == str(self._integration_user_id):
            await self._ignore(
                SOURCE_OPS, payload, "integration_user", event_type=event_type, object_type=item_type
            )
            return

        for item in items:
            item_id, ref, parent_id = self._ops_item(item_type, item)
            await self._process(
                SOURCE_OPS,
                {**payload, "items": [item]},
                self._route_ops(event_type, item_type, item_id, ref, parent_id),
                {"module": "webhooks.ops", "function": f"{item_type}.{event_type}", "ops_id": item_id},
                event_type=event_type,
                object_type=item_type,
                object_id=str(item_id) if item_id is not None else None,
            )

    @staticmethod
    def _ops_item(item_type: str | None, item: Any) -> tuple[Any, str | None, Any]:
        if not isinstance(item, dict):
            item = {"id": item}
        item_id = item.get("id")
        ref = item.get("ref")
        if not ref and item_id is not None and item_type in _OPS_RESOURCES:
            ref = build_ref(_OPS_RESOURCES[item_type], item_id)
        parent_id = (item.get("parent") or {}).get("id")
        return item_id, ref, parent_id

    def _route_ops(
        self, event_type: str | None, item_type: str | None, item_id: Any, ref: str | None, parent_id: Any
    ) -> Handler | None:
        if item_id is None:
            return None

        if item_type == "Project":
            routes = {
                "create": lambda: self._deals.create_from_ops(ref),
                "update": lambda: self._deals.update_from_ops(ref),
                "delete": lambda: self._deals.delete_from_ops(item_id),
            }
        elif item_type == "Subproject":
            routes = {
                "create": lambda: self._orders.create_from_ops(ref),
                "update": lambda: self._orders.update_from_ops(ref),
                "delete": lambda: self._orders.delete_from_ops(item_id),
            }
        elif item_type == "Contact":
            routes = {
                "create": lambda: self._companies.create_from_ops(ref),
                "update": lambda: self._companies.update_from_ops(ref),
                "delete": lambda: self._companies.delete_from_ops(item_id),
            }
        elif item_type == "ContactPerson":
            routes = {
                "create": lambda: self._contacts.create_from_ops(ref, parent_id),
                "update": lambda: self._contacts.update_from_ops(ref, parent_id),
                "delete": lambda: self._contacts.delete_from_ops(item_id),
            }
        else:
            return None
        return routes.get(event_type or "")
