from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

from .attendance.locks import KeyedLocks
from .attendance.mysql_attendance_repository import MySQLAttendanceLedger
from .attendance.repository import AttendanceLedger
from .attendance.service import AttendanceService
from .attendance.session import SessionResolver, Transition
from .common.datetime_utils import resolve_timezone
from .core.constants import (
    DEFAULT_COUNTRY_CODE,
    DEFAULT_EMBEDDING_DIMENSION,
    DEFAULT_IDENTITY_ID_PREFIX,
    DEFAULT_MATCH_THRESHOLD,
    DEFAULT_MIN_FACE_SIZE,
)
from .database.connection import DBConfig, DatabaseConnection
from .identities.mysql_identity_repository import MySQLIdentityRepository
from .identities.repository import IdentityRepository
from .identities.service import EnrollmentService
from .notifications.dispatcher import EventDispatcher, IdentityEnrolled, log_event
from .storage.photo_store import LocalPhotoStore, PhotoStore


@dataclass(frozen=True)
class Container:
    conn: Optional[DatabaseConnection]

    identities_repo: IdentityRepository
    ledger: AttendanceLedger
    dispatcher: EventDispatcher

    enrollment_service: EnrollmentService
    attendance_service: AttendanceService

    # FaceEmbeddingExtractor when FACE_IMAGE_EXTRACTION is on
    face_extractor: Optional[Any] = None


def build_services(
    identities_repo: IdentityRepository,
    ledger: AttendanceLedger,
    *,
    settings: Any = None,
    conn: Optional[DatabaseConnection] = None,
    photos: Optional[PhotoStore] = None,
    face_extractor: Optional[Any] = None,
) -> Container:
    """Wire services over the given repositories (MySQL in the app, fakes in tests)."""
    tz = resolve_timezone(getattr(settings, "TIMEZONE", ""))
    dimension = int(getattr(settings, "EMBEDDING_DIMENSION", DEFAULT_EMBEDDING_DIMENSION))

    dispatcher = EventDispatcher()
    dispatcher.subscribe(Transition, log_event)
    dispatcher.subscribe(IdentityEnrolled, log_event)

    resolver = SessionResolver(ledger, locks=KeyedLocks(), dispatcher=dispatcher, photos=photos, tz=tz)
    attendance_service = AttendanceService(
        identities_repo,
        ledger,
        resolver,
        threshold=float(getattr(settings, "MATCH_THRESHOLD", DEFAULT_MATCH_THRESHOLD)),
        dimension=dimension,
        tz=tz,
        organization_name=str(getattr(settings, "ORGANIZATION_NAME", "")),
        country_code=str(getattr(settings, "DEFAULT_COUNTRY_CODE", DEFAULT_COUNTRY_CODE)),
    )
    enrollment_service = EnrollmentService(
        identities_repo,
        dispatcher=dispatcher,
        dimension=dimension,
        id_prefix=str(getattr(settings, "IDENTITY_ID_PREFIX", DEFAULT_IDENTITY_ID_PREFIX)),
        tz=tz,
    )

    return Container(
        conn=conn,
        identities_repo=identities_repo,
        ledger=ledger,
        dispatcher=dispatcher,
        enrollment_service=enrollment_service,
        attendance_service=attendance_service,
        face_extractor=face_extractor,
    )


def build_container(settings: Any) -> Container:
    conn = DatabaseConnection.get_instance(DBConfig.from_dict(settings.DB_CONFIG))

    photos = None
    if getattr(settings, "PHOTO_DIR", ""):
        photos = LocalPhotoStore(settings.PHOTO_DIR, base_url=getattr(settings, "PHOTO_BASE_URL", "") or None)

    face_extractor = None
    if getattr(settings, "FACE_IMAGE_EXTRACTION", False):
        # Optional "vision" extra; only imported when enabled.
        from .biometrics.extractor import FaceEmbeddingExtractor

        face_extractor = FaceEmbeddingExtractor(
            min_face_size=int(getattr(settings, "MIN_FACE_SIZE", DEFAULT_MIN_FACE_SIZE))
        )

    return build_services(
        MySQLIdentityRepository(conn),
        MySQLAttendanceLedger(conn),
        settings=settings,
        conn=conn,
        photos=photos,
        face_extractor=face_extractor,
    )
