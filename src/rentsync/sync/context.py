"""Shared collaborators for the entity sync operations.

SyncContext bundles the two remote clients, the mapping repository, the
per-entity lease and the tunables every sync class needs, so each class
takes a single constructor argument and tests can build one with fakes.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import structlog

from src.rentsync.clients.base import Sleep
from src.rentsync.clients.crm import CrmClient
from src.rentsync.clients.ops import OpsClient
from src.rentsync.config import Settings
from src.rentsync.mapping.schemas import MappingRecord
from src.rentsync.mapping.store import MappingRepository, MappingStore
from src.rentsync.observability.metrics import sync_operations_total
from src.rentsync.sync.locks import KeyedLock

logger = structlog.get_logger(__name__)


class SyncAction(str, Enum):
    """Outcome of one entity sync operation."""

    created = "created"
    updated = "updated"
    deleted = "deleted"
    converted = "converted"
    skipped = "skipped"


@dataclass(frozen=True)
class AssociationTypes:
    """CRM association type ids for each edge the engine maintains."""

    deal_to_company: int = 5
    deal_to_contact: int = 3
    order_to_company: int = 509
    order_to_contact: int = 507
    order_to_deal: int = 512
    contact_to_company: int = 1


@dataclass
class SyncContext:
    """Everything an entity sync operation needs."""

    crm: CrmClient
    ops: OpsClient
    mappings: MappingRepository
    locks: KeyedLock = field(default_factory=KeyedLock)
    associations: AssociationTypes = field(default_factory=AssociationTypes)
    order_pipeline_id: str = ""
    owner_map: dict[str, str] = field(default_factory=dict)
    missing_company_name: str = "Mangler Virksomhed"
    lookup_attempts: int = 3
    lookup_delay: float = 3.0
    sleep: Sleep = asyncio.sleep

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        crm: CrmClient,
        ops: OpsClient,
        mappings: MappingRepository,
    ) -> SyncContext:
        return cls(
            crm=crm,
            ops=ops,
            mappings=mappings,
            locks=KeyedLock(timeout=settings.ENTITY_LOCK_TIMEOUT_SECONDS),
            associations=AssociationTypes(
                deal_to_company=settings.ASSOC_DEAL_TO_COMPANY,
                deal_to_contact=settings.ASSOC_DEAL_TO_CONTACT,
                order_to_company=settings.ASSOC_ORDER_TO_COMPANY,
                order_to_contact=settings.ASSOC_ORDER_TO_CONTACT,
                order_to_deal=settings.ASSOC_ORDER_TO_DEAL,
                contact_to_company=settings.ASSOC_CONTACT_TO_COMPANY,
            ),
            order_pipeline_id=settings.CRM_ORDER_PIPELINE_ID,
            owner_map=dict(settings.OPS_CREW_TO_CRM_OWNER),
            missing_company_name=settings.MISSING_COMPANY_NAME,
            lookup_attempts=settings.MAPPING_LOOKUP_ATTEMPTS,
            lookup_delay=settings.MAPPING_LOOKUP_DELAY_SECONDS,
        )

    async def wait_for_mapping(
        self,
        store: MappingStore,
        ops_id: Any = None,
        crm_id: Any = None,
    ) -> MappingRecord | None:
        """Look up a mapping, retrying a bounded number of times.

        Used where the mapping may belong to a create that has not landed
        yet (an order whose deal is still being created, an update that
        overtook its create). Gives up with None after ``lookup_attempts``.
        """
        for attempt in range(1, self.lookup_attempts + 1):
            if crm_id is not None:
                record = await store.find_by_crm_id(crm_id)
            else:
                record = await store.find_by_ops_id(ops_id)
            if record is not None:
                return record
            if attempt < self.lookup_attempts:
                logger.info(
                    "mapping.lookup_retry",
                    kind=store.kind.value,
                    ops_id=ops_id,
                    crm_id=crm_id,
                    attempt=attempt,
                )
                await self.sleep(self.lookup_delay)
        return None


def record_outcome(kind: str, action: str, outcome: SyncAction) -> SyncAction:
    """Count a sync outcome and hand it back to the caller."""
    sync_operations_total.labels(kind=kind, action=action, outcome=outcome.value).inc()
    return outcome
