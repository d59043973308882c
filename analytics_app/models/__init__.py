# analytics_app/models/__init__.py
"""
Database models package
"""

from .base import BaseModel, db
from .business import Customer, DiagnosticResult, Location, Room, Student, Transaction
from .sync_run import SyncRun, SyncRunStatus, SyncTrigger

__all__ = [
    "db",
    "BaseModel",
    "Customer",
    "Student",
    "Location",
    "Room",
    "Transaction",
    "DiagnosticResult",
    "SyncRun",
    "SyncRunStatus",
    "SyncTrigger",
]
