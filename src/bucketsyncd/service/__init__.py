"""
Long-running service: pipeline supervision and signal handling.
"""

from bucketsyncd.service.supervisor import SyncService, run_service, serve

__all__ = [
    "SyncService",
    "run_service",
    "serve",
]
