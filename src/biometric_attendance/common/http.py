"""JSON helpers shared by the Flask controllers."""
from __future__ import annotations

import logging
from datetime import date
from functools import wraps
from typing import Any, Dict, Optional

from flask import jsonify, request

from ..attendance.model import AttendanceEntry, duration
from ..core.enums import MarkOutcome, SessionAction
from ..core.exceptions import DomainError, NotFound, ValidationError
from ..identities.model import Identity
from .datetime_utils import format_duration, parse_iso_date

logger = logging.getLogger(__name__)

OUTCOME_STATUS: Dict[MarkOutcome, int] = {
    MarkOutcome.LOGGED_IN: 200,
    MarkOutcome.LOGGED_OUT: 200,
    MarkOutcome.NO_MATCH: 404,
    MarkOutcome.VERIFICATION_FAILED: 401,
    MarkOutcome.REPLAY_DETECTED: 401,
    MarkOutcome.ALREADY_LOGGED_IN: 400,
    MarkOutcome.ALREADY_COMPLETED: 400,
    MarkOutcome.MUST_LOGIN_FIRST: 400,
}


def fail(message: str, status: int):
    return jsonify({"success": False, "message": message}), status


def json_endpoint(view):
    """Turn domain errors into JSON error responses; log anything else as a 500."""

    @wraps(view)
    def wrapper(*args, **kwargs):
        try:
            return view(*args, **kwargs)
        except NotFound as e:
            return fail(str(e), 404)
        except DomainError as e:
            return fail(str(e), 400)
        except Exception:
            logger.exception("Unhandled error in %s", request.path)
            return fail("Internal server error", 500)

    return wrapper


def json_body() -> Dict[str, Any]:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def parse_action(value: Optional[str]) -> SessionAction:
    try:
        return SessionAction(str(value or SessionAction.AUTO.value).lower())
    except ValueError:
        raise ValidationError("Action must be one of: auto, login, logout") from None


def parse_embedding(value: Any) -> list[float]:
    if not isinstance(value, list) or not all(
        isinstance(v, (int, float)) and not isinstance(v, bool) for v in value
    ):
        raise ValidationError("Face embedding must be a list of numbers")
    return [float(v) for v in value]


def query_date(name: str) -> Optional[date]:
    raw = request.args.get(name)
    if not raw:
        return None
    try:
        return parse_iso_date(raw)
    except ValueError:
        raise ValidationError(f"{name} must be a date in YYYY-MM-DD format") from None


def query_int(name: str, default: int) -> int:
    raw = request.args.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValidationError(f"{name} must be an integer") from None


def client_ip() -> Optional[str]:
    forwarded = request.headers.get("X-Forwarded-For", "")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.remote_addr


def identity_to_dict(identity: Identity) -> Dict[str, Any]:
    return {
        "identity_id": identity.identity_id,
        "name": identity.name,
        "email": identity.email,
        "phone": identity.phone,
        "group": identity.group_name,
        "is_active": identity.is_active,
        "enrolled_at": identity.enrolled_at.isoformat(),
    }


def entry_to_dict(entry: AttendanceEntry) -> Dict[str, Any]:
    d = duration(entry)
    return {
        "entry_id": entry.entry_id,
        "identity_id": entry.identity_id,
        "date": entry.work_date.isoformat(),
        "time_in": entry.time_in.isoformat(),
        "time_out": entry.time_out.isoformat() if entry.time_out else None,
        "duration": format_duration(d) if d is not None else None,
        "method": entry.method.value,
        "confidence": entry.confidence,
        "status": entry.status.value,
        "location": entry.location,
        "notes": entry.notes,
        "login_photo_url": entry.login_photo_url,
        "logout_photo_url": entry.logout_photo_url,
    }
