"""
Background Workers

Scheduled tasks that run alongside the RPC server.
"""

from .sweeper import DepositMonitor, ExpirySweeper, PeriodicWorker

__all__ = [
    "DepositMonitor",
    "ExpirySweeper",
    "PeriodicWorker",
]
