from __future__ import annotations

from enum import Enum


class BiometricMethod(str, Enum):
    """Biometric class that produced an attendance entry."""

    FACE = "face"
    FINGERPRINT = "fingerprint"


class AttendanceStatus(str, Enum):
    """Trạng thái chấm công lưu trong CSDL."""

    PRESENT = "present"
    ABSENT = "absent"


class SessionAction(str, Enum):
    """Caller intent for a biometric mark."""

    AUTO = "auto"
    LOGIN = "login"
    LOGOUT = "logout"


class SessionState(str, Enum):
    NO_ENTRY = "no_entry"
    LOGGED_IN = "logged_in"
    LOGGED_OUT = "logged_out"


class TransitionKind(str, Enum):
    LOGIN = "login"
    LOGOUT = "logout"


class MarkOutcome(str, Enum):
    """Every result a biometric mark can end with."""

    LOGGED_IN = "logged_in"
    LOGGED_OUT = "logged_out"
    NO_MATCH = "no_match"
    VERIFICATION_FAILED = "verification_failed"
    REPLAY_DETECTED = "replay_detected"
    ALREADY_LOGGED_IN = "already_logged_in"
    ALREADY_COMPLETED = "already_completed"
    MUST_LOGIN_FIRST = "must_login_first"
