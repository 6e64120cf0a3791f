"""Daily login/logout state machine.

Per (identity, day): NO_ENTRY -> LOGGED_IN -> LOGGED_OUT (terminal).
The read-decide-write sequence runs inside a per-(identity, day) lock, and
the ledger's conditional insert/close backs it up across processes.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import date, datetime, timedelta, tzinfo
from typing import Optional

from ..common.datetime_utils import now_local, to_canonical, work_day
from ..common.validators import truncate
from ..core.constants import (
    CERTAIN_CONFIDENCE,
    DEFAULT_LOCATION,
    MAX_LOCATION_LENGTH,
    MAX_NOTES_LENGTH,
    MAX_USER_AGENT_LENGTH,
)
from ..core.enums import BiometricMethod, SessionAction, SessionState, TransitionKind
from ..core.exceptions import (
    AlreadyCompleted,
    AlreadyLoggedIn,
    DuplicateEntry,
    EntryNotOpen,
    MustLoginFirst,
    StorageError,
)
from ..notifications.dispatcher import EventDispatcher
from ..storage.photo_store import PhotoStore
from .locks import KeyedLocks
from .model import AttendanceEntry, NewAttendanceEntry, duration, session_state
from .repository import AttendanceLedger

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SessionContext:
    """Caller-supplied context, carried through unvalidated."""

    location: str = DEFAULT_LOCATION
    notes: Optional[str] = None
    user_agent: Optional[str] = None
    ip_address: Optional[str] = None


@dataclass(frozen=True)
class PhotoCapture:
    photo: bytes
    name: str


@dataclass(frozen=True)
class Transition:
    """Result of a successful login or logout."""

    kind: TransitionKind
    identity_id: str
    entry: AttendanceEntry
    method: BiometricMethod
    confidence: Optional[float]
    at: datetime

    @property
    def work_date(self) -> date:
        return self.entry.work_date

    @property
    def duration(self) -> Optional[timedelta]:
        return duration(self.entry)


def decide(entry: Optional[AttendanceEntry], action: SessionAction) -> TransitionKind:
    """Pick the transition for ``action`` given today's entry, or raise SessionRejected."""
    state = session_state(entry)

    if action == SessionAction.AUTO:
        if state is SessionState.LOGGED_OUT:
            raise AlreadyCompleted()
        action = SessionAction.LOGOUT if state is SessionState.LOGGED_IN else SessionAction.LOGIN

    if action == SessionAction.LOGIN:
        if state is SessionState.LOGGED_OUT:
            raise AlreadyCompleted()
        if state is SessionState.LOGGED_IN:
            raise AlreadyLoggedIn()
        return TransitionKind.LOGIN

    if state is SessionState.NO_ENTRY:
        raise MustLoginFirst()
    if state is SessionState.LOGGED_OUT:
        raise AlreadyCompleted("You have already logged out for today")
    return TransitionKind.LOGOUT


class SessionResolver:
    def __init__(
        self,
        ledger: AttendanceLedger,
        *,
        locks: KeyedLocks | None = None,
        dispatcher: EventDispatcher | None = None,
        photos: PhotoStore | None = None,
        tz: tzinfo | None = None,
    ):
        self._ledger = ledger
        self._locks = locks or KeyedLocks()
        self._dispatcher = dispatcher
        self._photos = photos
        self._tz = tz

    def today(self, now: datetime | None = None) -> date:
        return work_day(now or now_local(self._tz), self._tz)

    def current_entry(self, identity_id: str, *, now: datetime | None = None) -> Optional[AttendanceEntry]:
        return self._ledger.get_today_entry(identity_id, self.today(now))

    def resolve(
        self,
        identity_id: str,
        *,
        method: BiometricMethod,
        confidence: Optional[float],
        action: SessionAction = SessionAction.AUTO,
        now: datetime | None = None,
        context: SessionContext | None = None,
        photo: PhotoCapture | None = None,
    ) -> Transition:
        now = to_canonical(now, self._tz) if now else now_local(self._tz)
        day = now.date()
        context = context or SessionContext()
        if method == BiometricMethod.FINGERPRINT:
            confidence = CERTAIN_CONFIDENCE

        if action == SessionAction.AUTO:
            # Intent comes from the state the caller saw; a concurrent winner
            # turns it into a rejection below instead of an instant logout.
            action = SessionAction(decide(self._ledger.get_today_entry(identity_id, day), action).value)

        with self._locks.hold((identity_id, day)):
            entry = self._ledger.get_today_entry(identity_id, day)
            kind = decide(entry, action)
            photo_url = self._store_photo(identity_id, kind, now, photo)

            if kind is TransitionKind.LOGIN:
                result = self._login(identity_id, day, now, method, confidence, context, photo_url)
            else:
                result = self._logout(entry, now, photo_url)

        transition = Transition(
            kind=kind,
            identity_id=identity_id,
            entry=result,
            method=method,
            confidence=confidence,
            at=now,
        )
        logger.info(
            "Attendance %s for %s on %s (method=%s, confidence=%s)",
            kind.value,
            identity_id,
            day.isoformat(),
            method.value,
            f"{confidence:.3f}" if confidence is not None else "-",
        )
        if self._dispatcher:
            self._dispatcher.publish(transition)
        return transition

    def _login(
        self,
        identity_id: str,
        day: date,
        now: datetime,
        method: BiometricMethod,
        confidence: Optional[float],
        context: SessionContext,
        photo_url: Optional[str],
    ) -> AttendanceEntry:
        new_entry = NewAttendanceEntry(
            identity_id=identity_id,
            work_date=day,
            time_in=now,
            method=method,
            confidence=confidence,
            location=truncate(context.location, MAX_LOCATION_LENGTH) or DEFAULT_LOCATION,
            notes=truncate(context.notes, MAX_NOTES_LENGTH),
            login_photo_url=photo_url,
            user_agent=truncate(context.user_agent, MAX_USER_AGENT_LENGTH),
            ip_address=context.ip_address,
        )
        try:
            entry_id = self._ledger.create_entry(new_entry)
        except DuplicateEntry:
            # Lost a race against another process; the winner's entry stands.
            logger.info("Concurrent login for %s on %s lost the insert race", identity_id, day.isoformat())
            raise AlreadyLoggedIn()
        return new_entry.with_id(entry_id)

    def _logout(self, entry: AttendanceEntry, now: datetime, photo_url: Optional[str]) -> AttendanceEntry:
        try:
            self._ledger.close_entry(entry.entry_id, now, photo_url)
        except EntryNotOpen:
            logger.info("Concurrent logout for %s on %s lost the update race", entry.identity_id, entry.work_date)
            raise AlreadyCompleted()
        return replace(entry, time_out=now, logout_photo_url=photo_url or entry.logout_photo_url)

    def _store_photo(
        self,
        identity_id: str,
        kind: TransitionKind,
        now: datetime,
        photo: PhotoCapture | None,
    ) -> Optional[str]:
        if photo is None or self._photos is None:
            return None
        try:
            return self._photos.store(photo.photo, identity_id=identity_id, name=photo.name, kind=kind.value, at=now)
        except StorageError as e:
            # Upload failure never blocks the attendance decision.
            logger.warning("Continuing %s for %s without photo: %s", kind.value, identity_id, e)
            return None
