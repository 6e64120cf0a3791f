from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, tzinfo
from typing import Dict, List, Optional, Sequence

from ..biometrics.assertion import (
    FingerprintAssertion,
    hash_credential_id,
    is_valid_credential_id,
    sign_count,
    verify_assertion,
)
from ..biometrics.matcher import FaceCandidate, FaceMatch, match
from ..common.datetime_utils import format_duration, now_local, to_canonical
from ..core.constants import (
    DEFAULT_COUNTRY_CODE,
    DEFAULT_EMBEDDING_DIMENSION,
    DEFAULT_HISTORY_LIMIT,
    DEFAULT_MATCH_THRESHOLD,
    DEFAULT_TREND_DAYS,
    MAX_CALENDAR_DAYS,
)
from ..core.enums import (
    AttendanceStatus,
    BiometricMethod,
    MarkOutcome,
    SessionAction,
    SessionState,
    TransitionKind,
)
from ..core.exceptions import NotFound, SessionRejected, ValidationError
from ..identities.model import Identity
from ..identities.repository import IdentityRepository
from ..notifications.whatsapp import AbsenceNotice, absence_notices
from .model import AttendanceEntry, duration, session_state
from .repository import AttendanceLedger, eligible_on
from .session import PhotoCapture, SessionContext, SessionResolver

logger = logging.getLogger(__name__)

MESSAGES: Dict[MarkOutcome, str] = {
    MarkOutcome.LOGGED_IN: "Login successful",
    MarkOutcome.LOGGED_OUT: "Logout successful",
    MarkOutcome.NO_MATCH: "Face not recognized. Please try again or contact admin.",
    MarkOutcome.VERIFICATION_FAILED: "Fingerprint verification failed",
    MarkOutcome.REPLAY_DETECTED: "Fingerprint assertion was already used. Please scan again.",
    MarkOutcome.ALREADY_LOGGED_IN: "You are already logged in for today",
    MarkOutcome.ALREADY_COMPLETED: "You have already completed your attendance for today",
    MarkOutcome.MUST_LOGIN_FIRST: "You must login first before logging out",
}

_UNKNOWN_CREDENTIAL_MESSAGE = "Fingerprint not registered. Please enroll first."


@dataclass(frozen=True)
class MarkResult:
    outcome: MarkOutcome
    message: str
    identity: Optional[Identity] = None
    entry: Optional[AttendanceEntry] = None
    confidence: Optional[float] = None
    distance: Optional[float] = None

    @property
    def success(self) -> bool:
        return self.outcome in (MarkOutcome.LOGGED_IN, MarkOutcome.LOGGED_OUT)

    @property
    def duration(self) -> Optional[str]:
        if self.entry is None:
            return None
        d = duration(self.entry)
        return format_duration(d) if d is not None else None


@dataclass(frozen=True)
class LoginStatus:
    identity: Identity
    state: SessionState
    entry: Optional[AttendanceEntry]

    @property
    def can_login(self) -> bool:
        return self.state is SessionState.NO_ENTRY

    @property
    def can_logout(self) -> bool:
        return self.state is SessionState.LOGGED_IN


@dataclass(frozen=True)
class AbsenceReport:
    day: date
    notices: List[AbsenceNotice] = field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.notices)


@dataclass(frozen=True)
class DayCount:
    day: date
    present: int


@dataclass(frozen=True)
class DailyStats:
    day: date
    total_active: int
    present: int
    by_method: Dict[str, int]
    trend: List[DayCount]

    @property
    def absent(self) -> int:
        return self.total_active - self.present

    @property
    def attendance_rate(self) -> float:
        if self.total_active == 0:
            return 0.0
        return round(self.present / self.total_active * 100, 1)


@dataclass(frozen=True)
class CalendarDay:
    day: date
    entry: Optional[AttendanceEntry] = None

    @property
    def status(self) -> str:
        return self.entry.status.value if self.entry else "none"


@dataclass(frozen=True)
class IdentityStats:
    """Attendance since enrollment; every day from enrollment to today counts."""

    total_days: int
    present_days: int

    @property
    def absent_days(self) -> int:
        return max(0, self.total_days - self.present_days)

    @property
    def percentage(self) -> float:
        if self.total_days <= 0:
            return 0.0
        return round(self.present_days / self.total_days * 100, 2)


class AttendanceService:
    """Use case: biometric attendance marking and the reports built on the ledger."""

    def __init__(
        self,
        identities: IdentityRepository,
        ledger: AttendanceLedger,
        resolver: SessionResolver,
        *,
        threshold: float = DEFAULT_MATCH_THRESHOLD,
        dimension: int = DEFAULT_EMBEDDING_DIMENSION,
        tz: tzinfo | None = None,
        organization_name: str = "",
        country_code: str = DEFAULT_COUNTRY_CODE,
    ):
        self._identities = identities
        self._ledger = ledger
        self._resolver = resolver
        self._threshold = float(threshold)
        self._dimension = int(dimension)
        self._tz = tz
        self._organization = organization_name
        self._country_code = country_code

    def _now(self, now: datetime | None) -> datetime:
        return to_canonical(now, self._tz) if now else now_local(self._tz)

    def _identify_face(self, sample: Sequence[float]) -> Optional[FaceMatch]:
        candidates = []
        for t in self._identities.list_face_templates():
            if len(t.embedding) != self._dimension:
                logger.warning(
                    "Skipping face template of %s: %d values, expected %d",
                    t.identity_id,
                    len(t.embedding),
                    self._dimension,
                )
                continue
            candidates.append(FaceCandidate(identity_id=t.identity_id, embedding=t.embedding))
        return match(sample, candidates, self._threshold, dimension=self._dimension)

    def _active_identity(self, identity_id: str) -> Optional[Identity]:
        identity = self._identities.get_by_id(identity_id)
        if identity is None or not identity.is_active:
            return None
        return identity

    def mark_with_face(
        self,
        sample: Sequence[float],
        *,
        action: SessionAction = SessionAction.AUTO,
        context: SessionContext | None = None,
        photo: bytes | None = None,
        now: datetime | None = None,
    ) -> MarkResult:
        """Identify the sample embedding and apply ``action`` to that identity's day.

        Raises DimensionMismatch when the sample has the wrong length.
        """
        found = self._identify_face(sample)
        identity = self._active_identity(found.identity_id) if found else None
        if found is None or identity is None:
            return MarkResult(MarkOutcome.NO_MATCH, MESSAGES[MarkOutcome.NO_MATCH])

        capture = PhotoCapture(photo=photo, name=identity.name) if photo else None
        return self._apply(
            identity,
            method=BiometricMethod.FACE,
            confidence=found.confidence,
            distance=found.distance,
            action=action,
            context=context,
            photo=capture,
            now=now,
        )

    def mark_with_fingerprint(
        self,
        assertion: FingerprintAssertion,
        *,
        action: SessionAction = SessionAction.AUTO,
        expected_challenge: Optional[str] = None,
        context: SessionContext | None = None,
        now: datetime | None = None,
    ) -> MarkResult:
        if not is_valid_credential_id(assertion.credential_id):
            raise ValidationError("Invalid credential ID format")

        credential = self._identities.get_credential(assertion.credential_id)
        if credential is None:
            return MarkResult(MarkOutcome.NO_MATCH, _UNKNOWN_CREDENTIAL_MESSAGE)

        if not verify_assertion(assertion, credential.public_key, expected_challenge):
            return MarkResult(MarkOutcome.VERIFICATION_FAILED, MESSAGES[MarkOutcome.VERIFICATION_FAILED])

        counter = sign_count(assertion.authenticator_data)
        if counter is None:
            logger.warning(
                "Unreadable sign counter (credential %s)", hash_credential_id(assertion.credential_id)[:12]
            )
            return MarkResult(MarkOutcome.VERIFICATION_FAILED, MESSAGES[MarkOutcome.VERIFICATION_FAILED])

        identity = self._active_identity(credential.identity_id)
        if identity is None:
            return MarkResult(MarkOutcome.NO_MATCH, _UNKNOWN_CREDENTIAL_MESSAGE)

        if not self._identities.advance_counter(assertion.credential_id, counter):
            logger.warning(
                "Replay detected for %s (credential %s, counter=%d, stored=%d)",
                identity.identity_id,
                hash_credential_id(assertion.credential_id)[:12],
                counter,
                credential.counter,
            )
            return MarkResult(
                MarkOutcome.REPLAY_DETECTED,
                MESSAGES[MarkOutcome.REPLAY_DETECTED],
                identity=identity,
            )

        return self._apply(
            identity,
            method=BiometricMethod.FINGERPRINT,
            confidence=None,
            distance=None,
            action=action,
            context=context,
            photo=None,
            now=now,
        )

    def _apply(
        self,
        identity: Identity,
        *,
        method: BiometricMethod,
        confidence: Optional[float],
        distance: Optional[float],
        action: SessionAction,
        context: SessionContext | None,
        photo: PhotoCapture | None,
        now: datetime | None,
    ) -> MarkResult:
        try:
            transition = self._resolver.resolve(
                identity.identity_id,
                method=method,
                confidence=confidence,
                action=action,
                now=now,
                context=context,
                photo=photo,
            )
        except SessionRejected as e:
            logger.info("Attendance %s rejected for %s: %s", action.value, identity.identity_id, e.outcome.value)
            return MarkResult(
                e.outcome,
                str(e),
                identity=identity,
                entry=self._resolver.current_entry(identity.identity_id, now=now),
                confidence=confidence,
                distance=distance,
            )

        outcome = MarkOutcome.LOGGED_IN if transition.kind is TransitionKind.LOGIN else MarkOutcome.LOGGED_OUT
        return MarkResult(
            outcome,
            MESSAGES[outcome],
            identity=identity,
            entry=transition.entry,
            confidence=transition.confidence,
            distance=distance,
        )

    def login_status(self, identity_id: str, *, now: datetime | None = None) -> LoginStatus:
        identity = self._active_identity(identity_id)
        if identity is None:
            raise NotFound(f"Identity {identity_id} not found")
        entry = self._resolver.current_entry(identity_id, now=now)
        return LoginStatus(identity=identity, state=session_state(entry), entry=entry)

    def status_by_face(self, sample: Sequence[float], *, now: datetime | None = None) -> Optional[LoginStatus]:
        """Today's session state of whoever the sample matches, or None."""
        found = self._identify_face(sample)
        if found is None or self._active_identity(found.identity_id) is None:
            return None
        return self.login_status(found.identity_id, now=now)

    def absentees(self, day: date | None = None, *, now: datetime | None = None) -> AbsenceReport:
        """Active identities with no entry on ``day`` (default: yesterday)."""
        day = day or (self._now(now).date() - timedelta(days=1))
        active = self._identities.list_active()
        absent_ids = self._ledger.list_absentees(day, active)
        absent = sorted(
            (i for i in active if i.identity_id in absent_ids),
            key=lambda i: (i.group_name, i.name, i.identity_id),
        )
        logger.info("Found %d absentees for %s", len(absent), day.isoformat())
        return AbsenceReport(
            day=day,
            notices=absence_notices(
                absent,
                day,
                organization=self._organization,
                default_country_code=self._country_code,
            ),
        )

    def history(
        self,
        identity_id: str,
        *,
        start_date: date | None = None,
        end_date: date | None = None,
        limit: int = DEFAULT_HISTORY_LIMIT,
    ) -> Sequence[AttendanceEntry]:
        if start_date and end_date and start_date > end_date:
            raise ValidationError("Start date must be on or before end date")
        if self._identities.get_by_id(identity_id) is None:
            raise NotFound(f"Identity {identity_id} not found")
        return self._ledger.list_for_identity(
            identity_id, start_date=start_date, end_date=end_date, limit=limit
        )

    def daily_stats(
        self,
        day: date | None = None,
        *,
        now: datetime | None = None,
        trend_days: int = DEFAULT_TREND_DAYS,
    ) -> DailyStats:
        day = day or self._now(now).date()
        active = self._identities.list_active()
        eligible_ids = {i.identity_id for i in eligible_on(active, day)}

        by_method: Dict[str, int] = {m.value: 0 for m in BiometricMethod}
        present = 0
        for entry in self._ledger.list_for_day(day):
            if entry.identity_id in eligible_ids:
                present += 1
                by_method[entry.method.value] += 1

        trend = []
        for offset in range(trend_days - 1, -1, -1):
            d = day - timedelta(days=offset)
            ids = {i.identity_id for i in eligible_on(active, d)}
            trend.append(DayCount(day=d, present=len(self._ledger.list_present_identity_ids(d) & ids)))

        return DailyStats(
            day=day,
            total_active=len(eligible_ids),
            present=present,
            by_method=by_method,
            trend=trend,
        )

    def status_by_fingerprint(
        self,
        assertion: FingerprintAssertion,
        *,
        expected_challenge: Optional[str] = None,
        now: datetime | None = None,
    ) -> Optional[LoginStatus]:
        """Today's session state of the credential's owner, or None when unknown or unverified.

        Read-only: the sign counter is not advanced, so the same scan can still be used to mark.
        """
        if not is_valid_credential_id(assertion.credential_id):
            raise ValidationError("Invalid credential ID format")
        credential = self._identities.get_credential(assertion.credential_id)
        if credential is None:
            return None
        if not verify_assertion(assertion, credential.public_key, expected_challenge):
            logger.warning(
                "Status check with unverified assertion (credential %s)",
                hash_credential_id(assertion.credential_id)[:12],
            )
            return None
        if self._active_identity(credential.identity_id) is None:
            return None
        return self.login_status(credential.identity_id, now=now)

    def calendar(
        self,
        identity_id: str,
        *,
        start_date: date | None = None,
        end_date: date | None = None,
        now: datetime | None = None,
    ) -> List[CalendarDay]:
        """One day per date in range; defaults to enrollment day through today."""
        identity = self._identities.get_by_id(identity_id)
        if identity is None:
            raise NotFound(f"Identity {identity_id} not found")
        start = start_date or identity.enrolled_at.date()
        end = end_date or self._now(now).date()
        if start > end:
            raise ValidationError("Start date must be on or before end date")
        if (end - start).days >= MAX_CALENDAR_DAYS:
            raise ValidationError(f"Date range cannot exceed {MAX_CALENDAR_DAYS} days")

        by_day = {
            e.work_date: e
            for e in self._ledger.list_for_identity(identity_id, start_date=start, end_date=end)
        }
        return [
            CalendarDay(day=d, entry=by_day.get(d))
            for d in (start + timedelta(days=n) for n in range((end - start).days + 1))
        ]

    def identity_stats(self, identity_id: str, *, now: datetime | None = None) -> IdentityStats:
        identity = self._identities.get_by_id(identity_id)
        if identity is None:
            raise NotFound(f"Identity {identity_id} not found")
        today = self._now(now).date()
        enrolled = identity.enrolled_at.date()
        entries = self._ledger.list_for_identity(identity_id, start_date=enrolled, end_date=today)
        return IdentityStats(
            total_days=max(0, (today - enrolled).days + 1),
            present_days=sum(1 for e in entries if e.status is AttendanceStatus.PRESENT),
        )
