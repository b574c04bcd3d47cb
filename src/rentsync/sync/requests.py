"""Rental request sync: CRM deals -> platform project requests.

Deals created in the CRM with a usage period become rental requests on
the platform. The request link and planning period are written back onto
the deal. When the platform later turns the request into a project, the
request mapping becomes the project's deal mapping so no second deal is
created for it.
"""

from __future__ import annotations

from typing import Any

import structlog

from src.rentsync.core.exceptions import ApiError
from src.rentsync.mapping.schemas import MappingRecord
from src.rentsync.sync.context import SyncAction, SyncContext, record_outcome
from src.rentsync.sync.field_mapping import (
    build_ref,
    find_association_id,
    rental_request_body,
)

logger = structlog.get_logger(__name__)

KIND = "request"

RETRY_PROPERTY = "opret_i_rentam_request"
RETRY_VALUE = "Proev Igen"


class RequestSync:
    """Create and delete platform rental requests for CRM deals."""

    def __init__(self, ctx: SyncContext) -> None:
        self._ctx = ctx
        self._store = ctx.mappings.requests

    async def create_from_crm_deal(self, deal_id: Any) -> SyncAction:
        deal = await self._ctx.crm.get_deal(deal_id, associations=["companies"])
        if deal is None:
            logger.warning("request_sync.deal_missing", deal_id=str(deal_id))
            return record_outcome(KIND, "create", SyncAction.skipped)

        async with self._ctx.locks.acquire("request:crm", deal_id):
            if await self._store.find_by_crm_id(deal_id) is not None:
                logger.info("request_sync.already_mapped", deal_id=str(deal_id))
                return record_outcome(KIND, "create", SyncAction.skipped)

            # Keep the deal out of the default pipeline views until the request exists
            await self._ctx.crm.update_deal(deal_id, {"hidden_rentman_request": True})

            company = await self._company_for(deal)
            body = rental_request_body(deal, company.ops_id if company else None)
            if body is None:
                logger.info("request_sync.no_usage_period", deal_id=str(deal_id))
                return record_outcome(KIND, "create", SyncAction.skipped)

            request = await self._ctx.ops.create_project_request(body)
            await self._ctx.crm.update_deal(
                deal_id,
                {
                    "hidden_rentman_request": True,
                    RETRY_PROPERTY: "Ja",
                    "start_planning_period": body["planperiod_start"],
                    "slut_planning_period": body["planperiod_end"],
                    "rentman_projekt": self._ctx.ops.build_request_url(request["id"]),
                },
            )
            await self._store.upsert(
                body["name"],
                request["id"],
                deal_id,
                company_id=company.id if company else None,
            )

        logger.info("request_sync.created", deal_id=str(deal_id), request_id=request["id"])
        return record_outcome(KIND, "create", SyncAction.created)

    async def _company_for(self, deal: dict) -> MappingRecord | None:
        results = deal.get("associations", {}).get("companies", {}).get("results", [])
        company_crm_id = find_association_id(results, "deal_to_company")
        if company_crm_id is not None:
            company = await self._ctx.mappings.companies.find_by_crm_id(company_crm_id)
            if company is not None:
                return company
        logger.info(
            "request_sync.company_fallback",
            deal_id=deal.get("id"),
            company_crm_id=company_crm_id,
            fallback=self._ctx.missing_company_name,
        )
        return await self._ctx.mappings.companies.find_by_name(self._ctx.missing_company_name)

    async def retry_from_crm(self, deal_id: Any, property_name: str | None, value: Any) -> SyncAction:
        """Handle the CRM's "try again" switch on a deal."""
        if property_name != RETRY_PROPERTY or value != RETRY_VALUE:
            return record_outcome(KIND, "retry", SyncAction.skipped)

        request = await self._store.find_by_crm_id(deal_id)
        deal = await self._ctx.mappings.deals.find_by_crm_id(deal_id)
        if request is None and deal is None:
            return await self.create_from_crm_deal(deal_id)

        await self._ctx.crm.update_deal(deal_id, {"hidden_rentman_request": True})
        logger.info("request_sync.retry_already_synced", deal_id=str(deal_id))
        return record_outcome(KIND, "retry", SyncAction.skipped)

    async def delete_from_crm_deal(self, deal_id: Any) -> SyncAction:
        request = await self._store.find_by_crm_id(deal_id)
        if request is None:
            return record_outcome(KIND, "delete", SyncAction.skipped)

        async with self._ctx.locks.acquire(KIND, request.ops_id):
            await self._ctx.ops.delete_project_request(request.ops_id)
            await self._store.delete(request.ops_id)

        logger.info("request_sync.deleted", deal_id=str(deal_id), request_id=request.ops_id)
        return record_outcome(KIND, "delete", SyncAction.deleted)

    async def convert_to_deal(self, project: dict) -> MappingRecord | None:
        """Turn the request a project was created from into its deal mapping.

        Returns the new deal mapping, or None when the project did not come
        from a request this engine created.
        """
        project_ref = build_ref("projects", project["id"])
        linked = None
        for candidate in await self._ctx.ops.list_project_requests():
            if candidate.get("linked_project") == project_ref:
                linked = candidate
                break
        if linked is None:
            return None

        request = await self._store.find_by_ops_id(linked["id"])
        if request is None or not request.crm_id:
            return None

        # Links start empty so the following deal update adds the edges
        deal = await self._ctx.mappings.deals.upsert(
            project.get("displayname") or project.get("name"), project["id"], request.crm_id
        )
        await self._store.delete(request.ops_id)
        try:
            await self._ctx.ops.delete_project_request(request.ops_id)
        except ApiError as exc:
            # Deal mapping already written; the request stays on the platform
            logger.warning(
                "request_sync.request_delete_failed",
                request_id=request.ops_id,
                status_code=exc.status_code,
            )
        record_outcome(KIND, "convert", SyncAction.converted)
        logger.info(
            "request_sync.converted",
            request_id=request.ops_id,
            project_id=project["id"],
            deal_crm_id=request.crm_id,
        )
        return deal
