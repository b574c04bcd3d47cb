"""Entity sync operations between the operations platform and the CRM.

Exports:
    SyncContext: Clients, mapping stores, per-entity lease and tunables.
    SyncAction: Outcome of a single sync operation.
    CompanySync: Platform contacts <-> CRM companies.
    ContactSync: Platform contact persons <-> CRM contacts.
    DealSync: Platform projects -> CRM deals, with association repair.
    OrderSync: Platform sub-projects -> CRM orders.
    RequestSync: CRM deals -> platform rental requests.
    KeyedLock: Per-(kind, id) lease serializing create-or-skip decisions.
"""

from src.rentsync.sync.companies import CompanySync
from src.rentsync.sync.contacts import ContactSync
from src.rentsync.sync.context import AssociationTypes, SyncAction, SyncContext
from src.rentsync.sync.deals import DealSync
from src.rentsync.sync.locks import KeyedLock
from src.rentsync.sync.orders import OrderSync
from src.rentsync.sync.requests import RequestSync

__all__ = [
    "AssociationTypes",
    "CompanySync",
    "ContactSync",
    "DealSync",
    "KeyedLock",
    "OrderSync",
    "RequestSync",
    "SyncAction",
    "SyncContext",
]
