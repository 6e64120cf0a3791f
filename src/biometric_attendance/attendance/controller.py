from __future__ import annotations

from typing import Any, Dict, Optional, Tuple

from flask import Flask, jsonify, request, session

from ..biometrics.assertion import FingerprintAssertion, generate_challenge
from ..common.http import (
    OUTCOME_STATUS,
    client_ip,
    entry_to_dict,
    fail,
    identity_to_dict,
    json_body,
    json_endpoint,
    parse_action,
    parse_embedding,
    query_date,
    query_int,
)
from ..core.constants import DEFAULT_HISTORY_LIMIT, DEFAULT_LOCATION
from ..core.exceptions import ValidationError
from ..container import Container
from ..storage.photo_store import decode_image_payload
from .service import LoginStatus, MarkResult
from .session import SessionContext

_CHALLENGE_KEY = "fingerprint_challenge"


def _result_response(result: MarkResult):
    body: Dict[str, Any] = {
        "success": result.success,
        "outcome": result.outcome.value,
        "message": result.message,
    }
    if result.identity:
        body["identity"] = identity_to_dict(result.identity)
    if result.entry:
        body["attendance"] = entry_to_dict(result.entry)
    if result.confidence is not None:
        body["confidence"] = round(result.confidence, 4)
    if result.duration:
        body["duration"] = result.duration
    return jsonify(body), OUTCOME_STATUS[result.outcome]


def _status_dict(status: LoginStatus) -> Dict[str, Any]:
    return {
        "identity": identity_to_dict(status.identity),
        "state": status.state.value,
        "can_login": status.can_login,
        "can_logout": status.can_logout,
        "attendance": entry_to_dict(status.entry) if status.entry else None,
    }


def _context(data: Dict[str, Any]) -> SessionContext:
    return SessionContext(
        location=str(data.get("location") or DEFAULT_LOCATION),
        notes=data.get("notes"),
        user_agent=request.headers.get("User-Agent"),
        ip_address=client_ip(),
    )


def _fingerprint_assertion(data: Dict[str, Any]) -> FingerprintAssertion:
    assertion = FingerprintAssertion.from_dict(data)
    if not all((assertion.credential_id, assertion.authenticator_data, assertion.client_data_json, assertion.signature)):
        raise ValidationError("Incomplete fingerprint data")
    return assertion


def register(app: Flask, container: Container) -> None:
    def face_sample(data: Dict[str, Any]) -> Tuple[list, Optional[bytes]]:
        """Embedding from the request, plus the raw image when one was sent."""
        if data.get("embedding") is not None:
            photo = decode_image_payload(data["photo"]) if data.get("photo") else None
            return parse_embedding(data["embedding"]), photo

        if data.get("image"):
            if container.face_extractor is None:
                raise ValidationError("Image upload is disabled; send a face embedding")
            image = decode_image_payload(data["image"])
            return container.face_extractor.extract(image), image

        raise ValidationError("Face embedding or image is required")

    @app.route("/api/attendance/face", methods=["POST"], endpoint="attendance_face")
    @json_endpoint
    def attendance_face():
        data = json_body()
        sample, photo = face_sample(data)
        result = container.attendance_service.mark_with_face(
            sample,
            action=parse_action(data.get("action")),
            context=_context(data),
            photo=photo,
        )
        return _result_response(result)

    @app.route("/api/attendance/face/status", methods=["POST"], endpoint="attendance_face_status")
    @json_endpoint
    def attendance_face_status():
        sample, _ = face_sample(json_body())
        status = container.attendance_service.status_by_face(sample)
        if status is None:
            return fail("Face not recognized", 404)
        return jsonify({"success": True, **_status_dict(status)}), 200

    @app.route("/api/attendance/fingerprint/challenge", methods=["GET"], endpoint="fingerprint_challenge")
    @json_endpoint
    def fingerprint_challenge():
        challenge = generate_challenge()
        session[_CHALLENGE_KEY] = challenge
        return jsonify({"success": True, "challenge": challenge}), 200

    @app.route("/api/attendance/fingerprint", methods=["POST"], endpoint="attendance_fingerprint")
    @json_endpoint
    def attendance_fingerprint():
        data = json_body()
        assertion = _fingerprint_assertion(data)

        # Challenges are single-use.
        expected_challenge = session.pop(_CHALLENGE_KEY, None)
        result = container.attendance_service.mark_with_fingerprint(
            assertion,
            action=parse_action(data.get("action")),
            expected_challenge=expected_challenge,
            context=_context(data),
        )
        return _result_response(result)

    @app.route("/api/attendance/fingerprint/status", methods=["POST"], endpoint="attendance_fingerprint_status")
    @json_endpoint
    def attendance_fingerprint_status():
        assertion = _fingerprint_assertion(json_body())
        status = container.attendance_service.status_by_fingerprint(
            assertion, expected_challenge=session.get(_CHALLENGE_KEY)
        )
        if status is None:
            return fail("Fingerprint not recognized", 404)
        return jsonify({"success": True, **_status_dict(status)}), 200

    @app.route("/api/attendance/status/<identity_id>", methods=["GET"], endpoint="attendance_status")
    @json_endpoint
    def attendance_status(identity_id: str):
        status = container.attendance_service.login_status(identity_id)
        return jsonify({"success": True, **_status_dict(status)}), 200

    @app.route("/api/attendance/absentees", methods=["GET"], endpoint="attendance_absentees")
    @json_endpoint
    def attendance_absentees():
        report = container.attendance_service.absentees(query_date("date"))
        return jsonify(
            {
                "success": True,
                "date": report.day.isoformat(),
                "count": report.count,
                "absentees": [
                    {
                        "identity_id": n.identity_id,
                        "name": n.name,
                        "email": n.email,
                        "phone": n.phone,
                        "group": n.group_name,
                        "whatsapp_link": n.link,
                    }
                    for n in report.notices
                ],
            }
        ), 200

    @app.route("/api/attendance/stats", methods=["GET"], endpoint="attendance_stats")
    @json_endpoint
    def attendance_stats():
        stats = container.attendance_service.daily_stats(query_date("date"))
        return jsonify(
            {
                "success": True,
                "date": stats.day.isoformat(),
                "total_active": stats.total_active,
                "present": stats.present,
                "absent": stats.absent,
                "attendance_rate": stats.attendance_rate,
                "by_method": stats.by_method,
                "trend": [{"date": t.day.isoformat(), "present": t.present} for t in stats.trend],
            }
        ), 200

    @app.route("/api/identities/<identity_id>/history", methods=["GET"], endpoint="attendance_history")
    @json_endpoint
    def attendance_history(identity_id: str):
        entries = container.attendance_service.history(
            identity_id,
            start_date=query_date("start"),
            end_date=query_date("end"),
            limit=query_int("limit", DEFAULT_HISTORY_LIMIT),
        )
        return jsonify(
            {
                "success": True,
                "count": len(entries),
                "attendance": [entry_to_dict(e) for e in entries],
            }
        ), 200

    @app.route("/api/identities/<identity_id>/calendar", methods=["GET"], endpoint="attendance_calendar")
    @json_endpoint
    def attendance_calendar(identity_id: str):
        days = container.attendance_service.calendar(
            identity_id, start_date=query_date("start"), end_date=query_date("end")
        )
        return jsonify(
            {
                "success": True,
                "calendar": [
                    {"date": d.day.isoformat(), "status": d.status, "attendance": entry_to_dict(d.entry)}
                    if d.entry
                    else {"date": d.day.isoformat(), "status": d.status}
                    for d in days
                ],
            }
        ), 200

    @app.route("/api/identities/<identity_id>/stats", methods=["GET"], endpoint="attendance_identity_stats")
    @json_endpoint
    def attendance_identity_stats(identity_id: str):
        stats = container.attendance_service.identity_stats(identity_id)
        return jsonify(
            {
                "success": True,
                "total_days": stats.total_days,
                "present_days": stats.present_days,
                "absent_days": stats.absent_days,
                "percentage": stats.percentage,
            }
        ), 200
