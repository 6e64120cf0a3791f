from __future__ import annotations

from datetime import date, datetime
from typing import Any, Dict, Optional, Sequence, Set

import mysql.connector

from ..core.enums import AttendanceStatus, BiometricMethod
from ..core.exceptions import DuplicateEntry, EntryNotOpen
from ..database.connection import DatabaseConnection
from ..database.mysql_base import db_cursor, fetchall, fetchone, is_duplicate_key
from .model import AttendanceEntry, NewAttendanceEntry
from .repository import AttendanceLedger

_ENTRY_COLUMNS = """
    entry_id, identity_id, work_date, time_in, time_out, confidence, method, status,
    location, notes, login_photo_url, logout_photo_url, user_agent, ip_address
"""


def _to_entry(r: Dict[str, Any]) -> AttendanceEntry:
    return AttendanceEntry(
        entry_id=int(r["entry_id"]),
        identity_id=r["identity_id"],
        work_date=r["work_date"],
        time_in=r["time_in"],
        time_out=r.get("time_out"),
        method=BiometricMethod(r["method"]),
        confidence=float(r["confidence"]) if r.get("confidence") is not None else None,
        status=AttendanceStatus(r["status"]),
        location=r["location"],
        notes=r.get("notes"),
        login_photo_url=r.get("login_photo_url"),
        logout_photo_url=r.get("logout_photo_url"),
        user_agent=r.get("user_agent"),
        ip_address=r.get("ip_address"),
    )


class MySQLAttendanceLedger(AttendanceLedger):
    def __init__(self, conn_factory: DatabaseConnection):
        self._conn_factory = conn_factory

    def get_today_entry(self, identity_id: str, day: date) -> Optional[AttendanceEntry]:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                f"""
                SELECT {_ENTRY_COLUMNS}
                FROM attendance_entries
                WHERE identity_id=%s AND work_date=%s
                """,
                (identity_id, day),
            )
            r = fetchone(cur)
            return _to_entry(r) if r else None

    def create_entry(self, entry: NewAttendanceEntry) -> int:
        # The UNIQUE(identity_id, work_date) key makes this a conditional insert.
        try:
            with db_cursor(self._conn_factory) as (_, cur):
                cur.execute(
                    """
                    INSERT INTO attendance_entries(
                        identity_id, work_date, time_in, confidence, method, status,
                        location, notes, login_photo_url, user_agent, ip_address
                    )
                    VALUES(%s,%s,%s,%s,%s,%s,%s,%s,%s,%s,%s)
                    """,
                    (
                        entry.identity_id,
                        entry.work_date,
                        entry.time_in,
                        entry.confidence,
                        entry.method.value,
                        entry.status.value,
                        entry.location,
                        entry.notes,
                        entry.login_photo_url,
                        entry.user_agent,
                        entry.ip_address,
                    ),
                )
                return int(cur.lastrowid)
        except mysql.connector.Error as e:
            if is_duplicate_key(e):
                raise DuplicateEntry(f"Entry already exists for {entry.identity_id} on {entry.work_date}") from e
            raise

    def close_entry(self, entry_id: int, time_out: datetime, photo_url: Optional[str] = None) -> None:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                """
                UPDATE attendance_entries
                SET time_out=%s, logout_photo_url=COALESCE(%s, logout_photo_url)
                WHERE entry_id=%s AND time_out IS NULL
                """,
                (time_out, photo_url, int(entry_id)),
            )
            if cur.rowcount == 0:
                raise EntryNotOpen(f"Entry {entry_id} is missing or already closed")

    def list_present_identity_ids(self, day: date) -> Set[str]:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                "SELECT DISTINCT identity_id FROM attendance_entries WHERE work_date=%s",
                (day,),
            )
            return {r["identity_id"] for r in fetchall(cur)}

    def list_for_day(self, day: date) -> Sequence[AttendanceEntry]:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                f"""
                SELECT {_ENTRY_COLUMNS}
                FROM attendance_entries
                WHERE work_date=%s
                ORDER BY time_in DESC
                """,
                (day,),
            )
            return [_to_entry(r) for r in fetchall(cur)]

    def list_for_identity(
        self,
        identity_id: str,
        *,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        limit: Optional[int] = None,
    ) -> Sequence[AttendanceEntry]:
        clauses = ["identity_id=%s"]
        params: list[object] = [identity_id]

        if start_date is not None:
            clauses.append("work_date >= %s")
            params.append(start_date)
        if end_date is not None:
            clauses.append("work_date <= %s")
            params.append(end_date)

        where = " AND ".join(clauses)
        limit_sql = ""
        if limit is not None:
            limit_sql = "LIMIT %s"
            params.append(int(limit))

        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                f"""
                SELECT {_ENTRY_COLUMNS}
                FROM attendance_entries
                WHERE {where}
                ORDER BY work_date DESC, time_in DESC
                {limit_sql}
                """,
                tuple(params),
            )
            return [_to_entry(r) for r in fetchall(cur)]
