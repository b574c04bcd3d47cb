"""Remote API clients for the CRM (System A) and the operations platform (System B).

Both share BaseApiClient: bearer auth, 429 exponential backoff with a
retry cap, 404-as-None on lookups and single-shot writes.
"""

from src.rentsync.clients.base import BackoffPolicy, BaseApiClient
from src.rentsync.clients.crm import CrmClient, CrmObject
from src.rentsync.clients.ops import OpsClient

__all__ = [
    "BackoffPolicy",
    "BaseApiClient",
    "CrmClient",
    "CrmObject",
    "OpsClient",
]
