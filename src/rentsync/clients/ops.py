"""Async client for the operations platform REST API (System B).

Resources are addressed by reference paths (``/projects/12``,
``/contacts/7``) that webhook payloads and other resources embed, so most
reads go through ``get(ref)``. Responses wrap their payload in ``data``.
Project listing pages with ``limit``/``offset`` until an empty page.
"""

from __future__ import annotations

from typing import Any

import structlog

from src.rentsync.clients.base import BaseApiClient

logger = structlog.get_logger(__name__)


class OpsClient(BaseApiClient):
    """Async client for projects, contacts and rental requests.

    Args:
        token: Platform API token.
        base_url: API root.
        app_url: Web app root used to build links written back to the CRM.
        archived_project_type: Project type reference excluded from listings.
    """

    SYSTEM = "ops"
    PAGE_SIZE = 50

    def __init__(
        self,
        token: str,
        base_url: str = "https://api.rentman.net",
        app_url: str = "https://tourcare2.rentmanapp.com",
        archived_project_type: str = "projecttypes/109",
        **kwargs: Any,
    ) -> None:
        super().__init__(token, base_url, **kwargs)
        self._app_url = app_url.rstrip("/")
        self._archived_project_type = archived_project_type

    async def get(self, ref: str | None) -> dict | None:
        """Fetch any resource by reference path; None when empty or gone."""
        if not ref:
            return None
        body = await self._get(ref if ref.startswith(("/", "http")) else f"/{ref}")
        return body.get("data") if body else None

    async def get_list(self, ref: str) -> list[dict]:
        return await self.get(ref) or []

    async def _paged(self, path: str, params: dict[str, Any] | None = None) -> list[dict]:
        items: list[dict] = []
        offset = 0
        while True:
            body = await self._get(path, {**(params or {}), "limit": self.PAGE_SIZE, "offset": offset})
            page = (body or {}).get("data") or []
            if not page:
                return items
            items.extend(page)
            offset += self.PAGE_SIZE

    # ── Projects ───────────────────────────────────────────────────────────

    async def list_projects(self) -> list[dict]:
        """All projects except the archived project type."""
        projects = await self._paged(
            "/projects", {"project_type[neq]": self._archived_project_type}
        )
        logger.info("ops_client.projects_listed", count=len(projects))
        return projects

    async def get_project(self, project_id: str | int) -> dict | None:
        return await self.get(f"/projects/{project_id}")

    async def get_project_subprojects(self, project_ref: str) -> list[dict]:
        return await self.get_list(f"{project_ref}/subprojects")

    async def get_subproject(self, subproject_id: str | int) -> dict | None:
        return await self.get(f"/subprojects/{subproject_id}")

    async def get_status(self, status_ref: str | None) -> dict | None:
        return await self.get(status_ref)

    # ── Contacts (companies) and contact persons ───────────────────────────

    async def get_contact(self, contact_id: str | int) -> dict | None:
        return await self.get(f"/contacts/{contact_id}")

    async def create_contact(self, body: dict[str, Any]) -> dict:
        data = (await self._request("POST", "/contacts", json=body))["data"]
        logger.info("ops_client.contact_created", contact_id=data.get("id"))
        return data

    async def update_contact(self, contact_id: str | int, body: dict[str, Any]) -> dict | None:
        result = await self._request("PUT", f"/contacts/{contact_id}", json=body, not_found_ok=True)
        return result.get("data") if result else None

    async def delete_contact(self, contact_id: str | int) -> None:
        await self._request("DELETE", f"/contacts/{contact_id}", not_found_ok=True)
        logger.info("ops_client.contact_deleted", contact_id=str(contact_id))

    async def get_contact_person(self, person_id: str | int) -> dict | None:
        return await self.get(f"/contactpersons/{person_id}")

    async def create_contact_person(self, company_id: str | int, body: dict[str, Any]) -> dict:
        data = (await self._request("POST", f"/contacts/{company_id}/contactpersons", json=body))["data"]
        logger.info("ops_client.contact_person_created", company_id=str(company_id), person_id=data.get("id"))
        return data

    async def update_contact_person(self, person_id: str | int, body: dict[str, Any]) -> dict | None:
        result = await self._request("PUT", f"/contactpersons/{person_id}", json=body, not_found_ok=True)
        return result.get("data") if result else None

    async def delete_contact_person(self, person_id: str | int) -> None:
        await self._request("DELETE", f"/contactpersons/{person_id}", not_found_ok=True)
        logger.info("ops_client.contact_person_deleted", person_id=str(person_id))

    # ── Rental requests ────────────────────────────────────────────────────

    async def create_project_request(self, body: dict[str, Any]) -> dict:
        data = (await self._request("POST", "/projectrequests", json=body))["data"]
        logger.info("ops_client.project_request_created", request_id=data.get("id"))
        return data

    async def delete_project_request(self, request_id: str | int) -> None:
        await self._request("DELETE", f"/projectrequests/{request_id}", not_found_ok=True)
        logger.info("ops_client.project_request_deleted", request_id=str(request_id))

    async def list_project_requests(self) -> list[dict]:
        return await self._paged("/projectrequests")

    # ── App links ──────────────────────────────────────────────────────────

    def build_request_url(self, request_id: str | int) -> str:
        return f"{self._app_url}/#/requests/{request_id}/details"

    def build_project_url(self, project_id: str | int, subproject_id: str | int | None = None) -> str:
        url = f"{self._app_url}/#/projects/{project_id}/details"
        if subproject_id:
            url += f"?subproject={subproject_id}"
        return url
