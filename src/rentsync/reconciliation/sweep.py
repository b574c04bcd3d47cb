"""Full reconciliation pass over every non-archived platform project.

For each project with a deal mapping the sweep re-applies the deal update
path (fields plus company/contact association repair) and then does the
same for every mapped sub-project order. Projects and sub-projects
without a mapping are only reported, never created. Deal mappings whose
project no longer appears in the listing are reported as orphaned.
"""

from __future__ import annotations

import time

import structlog
from pydantic import BaseModel, Field

from src.rentsync.observability.errors import ErrorLogger
from src.rentsync.observability.metrics import reconciliation_runs_total
from src.rentsync.sync.context import SyncContext
from src.rentsync.sync.deals import DealSync
from src.rentsync.sync.field_mapping import build_ref, extract_id_from_ref
from src.rentsync.sync.orders import OrderSync

logger = structlog.get_logger(__name__)


class SweepResult(BaseModel):
    """Counts from one reconciliation run."""

    checked: int = 0
    repaired: int = 0
    failed: int = 0
    unmapped_projects: list[str] = Field(default_factory=list)
    unmapped_subprojects: list[str] = Field(default_factory=list)
    orphaned_deals: list[str] = Field(default_factory=list)
    duration_ms: int = 0

    @property
    def unmapped(self) -> int:
        return len(self.unmapped_projects) + len(self.unmapped_subprojects)


class ReconciliationSweep:
    """Compares platform projects against the mapping store and repairs drift.

    Args:
        ctx: Shared sync collaborators.
        deals: Deal sync whose update path is re-applied per project.
        orders: Order sync used for sub-project orders.
        error_logger: Receives per-project failures.
    """

    def __init__(
        self,
        ctx: SyncContext,
        deals: DealSync,
        orders: OrderSync,
        error_logger: ErrorLogger | None = None,
    ) -> None:
        self._ctx = ctx
        self._deals = deals
        self._orders = orders
        self._errors = error_logger

    async def run(self) -> SweepResult:
        start = time.monotonic()
        result = SweepResult()
        logger.info("reconciliation.started")

        try:
            projects = await self._ctx.ops.list_projects()
            mapped_ids = {m.ops_id for m in await self._ctx.mappings.deals.list_all()}
        except Exception:
            reconciliation_runs_total.labels(outcome="failed").inc()
            logger.error("reconciliation.listing_failed", exc_info=True)
            raise

        listed = {str(project["id"]) for project in projects}
        result.orphaned_deals = sorted(mapped_ids - listed)

        for project in projects:
            result.checked += 1
            project_id = str(project["id"])
            if project_id not in mapped_ids:
                result.unmapped_projects.append(project_id)
                continue
            try:
                if await self._reconcile_project(project, result):
                    result.repaired += 1
            except Exception as exc:
                # One project failing must not end the pass
                result.failed += 1
                logger.warning("reconciliation.project_failed", project_id=project_id, error=str(exc))
                if self._errors is not None:
                    await self._errors.log_error(
                        exc,
                        {
                            "module": "reconciliation",
                            "function": "run",
                            "sync": True,
                            "ops_id": project_id,
                        },
                    )

        result.duration_ms = int((time.monotonic() - start) * 1000)
        reconciliation_runs_total.labels(outcome="completed").inc()
        logger.info(
            "reconciliation.completed",
            checked=result.checked,
            repaired=result.repaired,
            unmapped=result.unmapped,
            orphaned=len(result.orphaned_deals),
            failed=result.failed,
            duration_ms=result.duration_ms,
        )
        return result

    async def _reconcile_project(self, project: dict, result: SweepResult) -> bool:
        """Re-apply one project and its sub-projects. True when edges changed."""
        project_id = project["id"]
        async with self._ctx.locks.acquire("deal", project_id):
            mapping = await self._ctx.mappings.deals.find_by_ops_id(project_id)
            if mapping is None:
                result.unmapped_projects.append(str(project_id))
                return False
            changed = await self._deals.apply(project, mapping, cascade=False)

        company_ops_id = extract_id_from_ref(project.get("customer"))
        contact_ops_id = extract_id_from_ref(project.get("cust_contact"))
        subprojects = await self._ctx.ops.get_project_subprojects(build_ref("projects", project_id))
        for subproject in subprojects:
            async with self._ctx.locks.acquire("order", subproject["id"]):
                order = await self._ctx.mappings.orders.find_by_ops_id(subproject["id"])
                if order is None:
                    result.unmapped_subprojects.append(str(subproject["id"]))
                    continue
                if await self._orders.repair_associations(order, company_ops_id, contact_ops_id):
                    changed = True
                await self._orders.apply(subproject, order)
        return changed
