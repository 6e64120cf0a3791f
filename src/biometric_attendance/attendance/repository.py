from __future__ import annotations

from datetime import date, datetime
from typing import Iterable, Optional, Protocol, Sequence, Set

from ..identities.model import Identity
from .model import AttendanceEntry, NewAttendanceEntry


def eligible_on(identities: Iterable[Identity], day: date) -> list[Identity]:
    """Identities that could attend on ``day``: enrolled on or before it."""
    return [i for i in identities if i.enrolled_at.date() <= day]


class AttendanceLedger(Protocol):
    """Per-(identity, day) attendance records.

    Implementations enforce the uniqueness of (identity, day):
    ``create_entry`` raises DuplicateEntry instead of overwriting, and
    ``close_entry`` raises EntryNotOpen when the entry already has a time-out.
    """

    def get_today_entry(self, identity_id: str, day: date) -> Optional[AttendanceEntry]:
        raise NotImplementedError

    def create_entry(self, entry: NewAttendanceEntry) -> int:
        raise NotImplementedError

    def close_entry(self, entry_id: int, time_out: datetime, photo_url: Optional[str] = None) -> None:
        raise NotImplementedError

    def list_present_identity_ids(self, day: date) -> Set[str]:
        raise NotImplementedError

    def list_for_day(self, day: date) -> Sequence[AttendanceEntry]:
        raise NotImplementedError

    def list_for_identity(
        self,
        identity_id: str,
        *,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        limit: Optional[int] = None,
    ) -> Sequence[AttendanceEntry]:
        raise NotImplementedError

    def list_absentees(self, day: date, active_identities: Iterable[Identity]) -> Set[str]:
        """Active identities enrolled by ``day`` with no entry that day."""

        present = self.list_present_identity_ids(day)
        return {i.identity_id for i in eligible_on(active_identities, day) if i.identity_id not in present}
