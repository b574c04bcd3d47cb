"""Association maintenance for CRM deals and orders.

A deal or order mirrors the company and contact its platform project
points at. When that link moves, the edge to the previously recorded CRM
object is removed first and an edge to the newly linked object is added
(when it is mapped), then the mapping row's link column follows. A link
whose platform id is unchanged is left alone.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import structlog

from src.rentsync.clients.crm import CrmClient
from src.rentsync.mapping.schemas import MappingRecord
from src.rentsync.mapping.store import MappingStore

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class Link:
    """One association a mapped CRM object should carry.

    Attributes:
        field: Link column on the owning mapping row (company_id, contact_id).
        to_type: CRM object type at the other end of the edge.
        type_id: CRM association type id.
        target_store: Mapping store for the linked entity kind.
        current_ops_id: Platform id the source entity links to right now.
    """

    field: str
    to_type: str
    type_id: int
    target_store: MappingStore
    current_ops_id: Any


def _key(value: Any) -> str | None:
    return None if value is None or value == "" else str(value)


async def replace_links(
    crm: CrmClient,
    owner_store: MappingStore,
    owner: MappingRecord,
    from_type: str,
    links: list[Link],
) -> bool:
    """Bring the CRM edges of ``owner`` in line with ``links``.

    Returns:
        True when at least one link changed.
    """
    changed = False
    for link in links:
        previous = await link.target_store.get(getattr(owner, link.field))
        previous_ops_id = previous.ops_id if previous else None
        current_ops_id = _key(link.current_ops_id)
        if previous_ops_id == current_ops_id:
            continue

        current = (
            await link.target_store.find_by_ops_id(current_ops_id) if current_ops_id else None
        )
        if previous is None and current is None:
            continue
        if previous and previous.crm_id:
            await crm.remove_association(
                from_type, owner.crm_id, link.to_type, previous.crm_id, link.type_id
            )
        if current and current.crm_id:
            await crm.add_association(
                from_type, owner.crm_id, link.to_type, current.crm_id, link.type_id
            )
        await owner_store.update_foreign_key(
            owner.ops_id, link.field, current.id if current else None
        )
        logger.info(
            "associations.replaced",
            from_type=from_type,
            from_id=owner.crm_id,
            field=link.field,
            previous_ops_id=previous_ops_id,
            current_ops_id=current_ops_id,
            mapped=current is not None,
        )
        changed = True
    return changed
