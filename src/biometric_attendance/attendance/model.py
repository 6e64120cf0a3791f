from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Optional

from ..core.constants import DEFAULT_LOCATION
from ..core.enums import AttendanceStatus, BiometricMethod, SessionState


@dataclass(frozen=True)
class AttendanceEntry:
    """Thực thể miền (domain): bản ghi chấm công của một người trong một ngày."""

    entry_id: int
    identity_id: str
    work_date: date
    time_in: datetime
    time_out: Optional[datetime]
    method: BiometricMethod
    confidence: Optional[float] = None
    status: AttendanceStatus = AttendanceStatus.PRESENT
    location: str = DEFAULT_LOCATION
    notes: Optional[str] = None
    login_photo_url: Optional[str] = None
    logout_photo_url: Optional[str] = None
    user_agent: Optional[str] = None
    ip_address: Optional[str] = None


@dataclass(frozen=True)
class NewAttendanceEntry:
    """Values for a ledger insert (the ledger assigns the id)."""

    identity_id: str
    work_date: date
    time_in: datetime
    method: BiometricMethod
    confidence: Optional[float]
    status: AttendanceStatus = AttendanceStatus.PRESENT
    location: str = DEFAULT_LOCATION
    notes: Optional[str] = None
    login_photo_url: Optional[str] = None
    user_agent: Optional[str] = None
    ip_address: Optional[str] = None

    def with_id(self, entry_id: int) -> AttendanceEntry:
        return AttendanceEntry(
            entry_id=entry_id,
            identity_id=self.identity_id,
            work_date=self.work_date,
            time_in=self.time_in,
            time_out=None,
            method=self.method,
            confidence=self.confidence,
            status=self.status,
            location=self.location,
            notes=self.notes,
            login_photo_url=self.login_photo_url,
            user_agent=self.user_agent,
            ip_address=self.ip_address,
        )


def duration(entry: AttendanceEntry) -> Optional[timedelta]:
    if entry.time_out is None:
        return None
    return entry.time_out - entry.time_in


def session_state(entry: Optional[AttendanceEntry]) -> SessionState:
    if entry is None or entry.time_in is None:
        return SessionState.NO_ENTRY
    if entry.time_out is None:
        return SessionState.LOGGED_IN
    return SessionState.LOGGED_OUT
