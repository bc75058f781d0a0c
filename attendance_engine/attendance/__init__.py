from .ledger import AttendanceLedger, LedgerState
from .records import (
    RECORD_STATUSES,
    STATUS_ABSENT,
    STATUS_PENDING,
    STATUS_PRESENT,
    AttendanceRecord,
)

__all__ = [
    "AttendanceLedger",
    "LedgerState",
    "AttendanceRecord",
    "RECORD_STATUSES",
    "STATUS_ABSENT",
    "STATUS_PENDING",
    "STATUS_PRESENT",
]
