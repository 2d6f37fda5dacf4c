"""
Event reconciliation module
State projection, history replay and live read replicas
"""

from .projection import StateProjection
from .log import EventReconciliationLog
from .replica import ReadReplica

__all__ = [
    "StateProjection",
    "EventReconciliationLog",
    "ReadReplica",
]
