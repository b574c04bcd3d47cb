"""Reconciliation -- periodic full comparison of platform projects against the mapping store."""

from src.rentsync.reconciliation.scheduler import ReconciliationScheduler
from src.rentsync.reconciliation.sweep import ReconciliationSweep, SweepResult

__all__ = ["ReconciliationScheduler", "ReconciliationSweep", "SweepResult"]
