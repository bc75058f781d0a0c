"""Attendance record types."""
from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import date, datetime
from typing import Any, Dict, Mapping, Optional

STATUS_PRESENT = "present"
STATUS_ABSENT = "absent"
STATUS_PENDING = "pending"
RECORD_STATUSES = (STATUS_PRESENT, STATUS_ABSENT)


@dataclass(frozen=True)
class AttendanceRecord:
    student_id: str
    course: str
    status: str
    timestamp: datetime
    attendance_date: date
    distance: Optional[float] = None
    id: Optional[int] = None

    def __post_init__(self):
        if self.status not in RECORD_STATUSES:
            raise ValueError(f"Invalid attendance status {self.status!r}")

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "AttendanceRecord":
        timestamp = row["recorded_at"]
        if isinstance(timestamp, str):
            timestamp = datetime.fromisoformat(timestamp)
        day = row["attendance_date"]
        if isinstance(day, str):
            day = date.fromisoformat(day)
        distance = row.get("distance")
        return cls(
            student_id=row["student_id"],
            course=row["course"],
            status=row["status"],
            timestamp=timestamp,
            attendance_date=day,
            distance=float(distance) if distance is not None else None,
            id=row.get("id"),
        )

    def to_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        payload["timestamp"] = self.timestamp.isoformat()
        payload["attendance_date"] = self.attendance_date.isoformat()
        return payload
