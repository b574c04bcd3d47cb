"""Async client for the CRM REST API (System A).

Covers the object endpoints the sync engine uses -- deals, orders,
companies and contacts -- plus v3 association edges and paginated list
and search endpoints. A 409 on create surfaces as ConflictError carrying
the id of the object the CRM already holds, when the body names one.
"""

from __future__ import annotations

import re
from typing import Any

import httpx
import structlog

from src.rentsync.clients.base import BaseApiClient
from src.rentsync.core.exceptions import ConflictError

logger = structlog.get_logger(__name__)

_EXISTING_ID = re.compile(r"Existing ID:\s*(\d+)", re.IGNORECASE)


class CrmObject:
    """CRM object type identifiers used in paths and webhook payloads."""

    CONTACTS = "contacts"
    COMPANIES = "companies"
    DEALS = "deals"
    ORDERS = "orders"

    # objectTypeId values carried by webhook notifications
    CONTACT_TYPE_ID = "0-1"
    COMPANY_TYPE_ID = "0-2"
    DEAL_TYPE_ID = "0-3"
    ORDER_TYPE_ID = "0-123"


class CrmClient(BaseApiClient):
    """Async client for CRM objects and associations."""

    SYSTEM = "crm"
    OBJECTS_PATH = "/crm/v3/objects"
    PAGE_SIZE = 100

    def __init__(self, token: str, base_url: str = "https://api.hubapi.com", **kwargs: Any) -> None:
        super().__init__(token, base_url, **kwargs)

    def _error_for(self, response: httpx.Response, method: str, path: str) -> Exception:
        if response.status_code == 409:
            match = _EXISTING_ID.search(response.text)
            logger.warning(
                "crm_client.conflict",
                method=method,
                endpoint=path,
                existing_id=match.group(1) if match else None,
            )
            return ConflictError(
                self.SYSTEM,
                response.text,
                existing_id=match.group(1) if match else None,
                method=method,
                endpoint=path,
            )
        return super()._error_for(response, method, path)

    # ── Generic objects ────────────────────────────────────────────────────

    async def get_object(
        self,
        object_type: str,
        object_id: str | int,
        properties: list[str] | None = None,
        associations: list[str] | None = None,
    ) -> dict | None:
        """Fetch one object, or None when it no longer exists."""
        params: dict[str, Any] = {}
        if properties:
            params["properties"] = ",".join(properties)
        if associations:
            params["associations"] = ",".join(associations)
        return await self._get(f"{self.OBJECTS_PATH}/{object_type}/{object_id}", params or None)

    async def create_object(
        self,
        object_type: str,
        properties: dict[str, Any],
        associations: list[dict] | None = None,
    ) -> dict:
        """Create an object with optional inline associations.

        Single-shot: a failed create is never resent, so a timeout can not
        produce a second object.
        """
        body: dict[str, Any] = {"properties": properties}
        if associations:
            body["associations"] = associations
        data = await self._request("POST", f"{self.OBJECTS_PATH}/{object_type}", json=body)
        logger.info("crm_client.object_created", object_type=object_type, object_id=data.get("id"))
        return data

    async def update_object(
        self, object_type: str, object_id: str | int, properties: dict[str, Any]
    ) -> dict | None:
        """PATCH properties. Returns None when the object is gone."""
        return await self._request(
            "PATCH",
            f"{self.OBJECTS_PATH}/{object_type}/{object_id}",
            json={"properties": properties},
            not_found_ok=True,
        )

    async def delete_object(self, object_type: str, object_id: str | int) -> bool:
        """Archive an object. Returns False when it was already gone."""
        path = f"{self.OBJECTS_PATH}/{object_type}/{object_id}"
        response = await self._send("DELETE", path)
        if response.status_code == 404:
            return False
        if not response.is_success:
            raise self._error_for(response, "DELETE", path)
        logger.info("crm_client.object_deleted", object_type=object_type, object_id=str(object_id))
        return True

    async def list_objects(
        self, object_type: str, properties: list[str] | None = None
    ) -> list[dict]:
        """Return every object of a type, following ``paging.next.link``."""
        params: dict[str, Any] | None = {"limit": self.PAGE_SIZE}
        if properties:
            params["properties"] = ",".join(properties)
        url: str | None = f"{self.OBJECTS_PATH}/{object_type}"
        results: list[dict] = []
        while url:
            page = await self._get(url, params) or {}
            results.extend(page.get("results", []))
            url = page.get("paging", {}).get("next", {}).get("link")
            params = None  # the continuation link already carries the query
        return results

    async def search_objects(
        self,
        object_type: str,
        filters: list[dict],
        properties: list[str] | None = None,
    ) -> list[dict]:
        """Property-filtered search, following the ``after`` cursor."""
        body: dict[str, Any] = {
            "filterGroups": [{"filters": filters}],
            "limit": self.PAGE_SIZE,
        }
        if properties:
            body["properties"] = properties
        results: list[dict] = []
        while True:
            page = await self._request(
                "POST", f"{self.OBJECTS_PATH}/{object_type}/search", json=body
            ) or {}
            results.extend(page.get("results", []))
            after = page.get("paging", {}).get("next", {}).get("after")
            if not after:
                return results
            body["after"] = after

    # ── Associations ───────────────────────────────────────────────────────

    @staticmethod
    def association(to_id: str | int, type_id: int) -> dict:
        """Inline association payload for create requests."""
        return {
            "to": {"id": str(to_id)},
            "types": [{"associationCategory": "HUBSPOT_DEFINED", "associationTypeId": type_id}],
        }

    def _association_path(
        self, from_type: str, from_id: str | int, to_type: str, to_id: str | int, type_id: int
    ) -> str:
        return f"{self.OBJECTS_PATH}/{from_type}/{from_id}/associations/{to_type}/{to_id}/{type_id}"

    async def add_association(
        self, from_type: str, from_id: str | int, to_type: str, to_id: str | int, type_id: int
    ) -> None:
        await self._request("PUT", self._association_path(from_type, from_id, to_type, to_id, type_id))
        logger.info(
            "crm_client.association_added",
            from_type=from_type,
            from_id=str(from_id),
            to_type=to_type,
            to_id=str(to_id),
            type_id=type_id,
        )

    async def remove_association(
        self, from_type: str, from_id: str | int, to_type: str, to_id: str | int, type_id: int
    ) -> bool:
        """Delete an association edge. Returns False when the edge was absent."""
        path = self._association_path(from_type, from_id, to_type, to_id, type_id)
        response = await self._send("DELETE", path)
        if response.status_code == 404:
            return False
        if not response.is_success:
            raise self._error_for(response, "DELETE", path)
        logger.info(
            "crm_client.association_removed",
            from_type=from_type,
            from_id=str(from_id),
            to_type=to_type,
            to_id=str(to_id),
            type_id=type_id,
        )
        return True

    # ── Typed helpers ──────────────────────────────────────────────────────

    async def get_deal(self, deal_id: str | int, associations: list[str] | None = None) -> dict | None:
        return await self.get_object(CrmObject.DEALS, deal_id, associations=associations)

    async def create_deal(self, properties: dict[str, Any], associations: list[dict] | None = None) -> dict:
        return await self.create_object(CrmObject.DEALS, properties, associations)

    async def update_deal(self, deal_id: str | int, properties: dict[str, Any]) -> dict | None:
        return await self.update_object(CrmObject.DEALS, deal_id, properties)

    async def create_order(self, properties: dict[str, Any], associations: list[dict] | None = None) -> dict:
        return await self.create_object(CrmObject.ORDERS, properties, associations)

    async def update_order(self, order_id: str | int, properties: dict[str, Any]) -> dict | None:
        return await self.update_object(CrmObject.ORDERS, order_id, properties)

    async def delete_order(self, order_id: str | int) -> bool:
        return await self.delete_object(CrmObject.ORDERS, order_id)

    async def get_company(self, company_id: str | int) -> dict | None:
        return await self.get_object(
            CrmObject.COMPANIES, company_id, properties=["name", "cvrnummer"], associations=["contacts"]
        )

    async def create_company(self, properties: dict[str, Any]) -> dict:
        return await self.create_object(CrmObject.COMPANIES, properties)

    async def update_company(self, company_id: str | int, properties: dict[str, Any]) -> dict | None:
        return await self.update_object(CrmObject.COMPANIES, company_id, properties)

    async def delete_company(self, company_id: str | int) -> bool:
        return await self.delete_object(CrmObject.COMPANIES, company_id)

    async def get_contact(self, contact_id: str | int) -> dict | None:
        return await self.get_object(
            CrmObject.CONTACTS,
            contact_id,
            properties=["firstname", "lastname", "email"],
            associations=["companies"],
        )

    async def create_contact(self, properties: dict[str, Any], associations: list[dict] | None = None) -> dict:
        return await self.create_object(CrmObject.CONTACTS, properties, associations)

    async def update_contact(self, contact_id: str | int, properties: dict[str, Any]) -> dict | None:
        return await self.update_object(CrmObject.CONTACTS, contact_id, properties)

    async def delete_contact(self, contact_id: str | int) -> bool:
        return await self.delete_object(CrmObject.CONTACTS, contact_id)

    async def delete_deal(self, deal_id: str | int) -> bool:
        return await self.delete_object(CrmObject.DEALS, deal_id)
