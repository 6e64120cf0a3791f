from __future__ import annotations

from typing import Any, Dict, Optional

from flask import Flask, jsonify, request

from ..common.http import identity_to_dict, json_body, json_endpoint, parse_embedding, query_int
from ..container import Container
from ..core.constants import DEFAULT_PAGE_SIZE
from ..core.enums import BiometricMethod
from ..core.exceptions import ValidationError
from ..storage.photo_store import decode_image_payload
from .repository import IdentityFilter
from .service import CredentialRegistration, EnrollmentRequest, IdentityUpdate

_STATUS_FILTERS = {"all": None, "active": True, "inactive": False}


def _credential(data: Dict[str, Any]) -> Optional[CredentialRegistration]:
    if not data.get("credentialId"):
        return None
    try:
        counter = int(data.get("counter") or 0)
    except (TypeError, ValueError):
        raise ValidationError("counter must be an integer") from None
    return CredentialRegistration(
        credential_id=str(data["credentialId"]),
        public_key=str(data.get("publicKey") or ""),
        counter=counter,
    )


def _text(data: Dict[str, Any], key: str) -> Optional[str]:
    value = data.get(key)
    return str(value) if value else None


def _filters() -> IdentityFilter:
    status = (request.args.get("status") or "all").lower()
    if status not in _STATUS_FILTERS:
        raise ValidationError("status must be one of: all, active, inactive")
    method = request.args.get("method") or None
    if method:
        try:
            method = BiometricMethod(method.lower())
        except ValueError:
            raise ValidationError("method must be one of: face, fingerprint") from None
    return IdentityFilter(
        search=(request.args.get("search") or "").strip() or None,
        group_name=request.args.get("group") or None,
        is_active=_STATUS_FILTERS[status],
        method=method,
    )


def register(app: Flask, container: Container) -> None:
    def embedding_from(data: Dict[str, Any]) -> Optional[list]:
        if data.get("embedding") is not None:
            return parse_embedding(data["embedding"])
        if data.get("image"):
            if container.face_extractor is None:
                raise ValidationError("Image upload is disabled; send a face embedding")
            return container.face_extractor.extract(decode_image_payload(data["image"]))
        return None

    @app.route("/api/identities", methods=["POST"], endpoint="identities_enroll")
    @json_endpoint
    def identities_enroll():
        data = json_body()
        profile = container.enrollment_service.enroll(
            EnrollmentRequest(
                name=str(data.get("name") or ""),
                email=str(data.get("email") or ""),
                phone=str(data.get("phone") or ""),
                group_name=str(data.get("group") or ""),
                embedding=embedding_from(data),
                credential=_credential(data.get("fingerprint") or {}),
            )
        )
        return jsonify(
            {
                "success": True,
                "message": "Enrollment successful",
                "identity": identity_to_dict(profile.identity),
                "face_enrolled": profile.face is not None,
                "fingerprint_enrolled": profile.credential is not None,
            }
        ), 201

    @app.route("/api/identities", methods=["GET"], endpoint="identities_list")
    @json_endpoint
    def identities_list():
        result = container.enrollment_service.list_identities(
            _filters(),
            page=query_int("page", 1),
            limit=query_int("limit", DEFAULT_PAGE_SIZE),
        )
        return jsonify(
            {
                "success": True,
                "identities": [identity_to_dict(i) for i in result.items],
                "pagination": {
                    "total": result.total,
                    "page": result.page,
                    "limit": result.limit,
                    "total_pages": result.total_pages,
                },
            }
        ), 200

    @app.route("/api/identities/<identity_id>", methods=["GET"], endpoint="identities_get")
    @json_endpoint
    def identities_get(identity_id: str):
        profile = container.enrollment_service.get_profile(identity_id)
        stats = container.attendance_service.identity_stats(identity_id)
        return jsonify(
            {
                "success": True,
                "identity": {**identity_to_dict(profile.identity), "methods": list(profile.methods)},
                "stats": {
                    "total_days": stats.total_days,
                    "present_days": stats.present_days,
                    "absent_days": stats.absent_days,
                    "percentage": stats.percentage,
                },
            }
        ), 200

    @app.route("/api/identities/<identity_id>", methods=["PUT"], endpoint="identities_update")
    @json_endpoint
    def identities_update(identity_id: str):
        data = json_body()
        identity = container.enrollment_service.update_identity(
            identity_id,
            IdentityUpdate(
                name=_text(data, "name"),
                email=_text(data, "email"),
                phone=_text(data, "phone"),
                group_name=_text(data, "group"),
            ),
        )
        return jsonify(
            {"success": True, "message": "Identity updated successfully", "identity": identity_to_dict(identity)}
        ), 200

    @app.route("/api/identities/<identity_id>/face", methods=["PUT"], endpoint="identities_face")
    @json_endpoint
    def identities_face(identity_id: str):
        embedding = embedding_from(json_body())
        if embedding is None:
            raise ValidationError("Face embedding or image is required")
        container.enrollment_service.update_face(identity_id, embedding)
        return jsonify({"success": True, "message": "Face template updated successfully"}), 200

    @app.route("/api/identities/<identity_id>/fingerprint", methods=["POST"], endpoint="identities_fingerprint")
    @json_endpoint
    def identities_fingerprint(identity_id: str):
        credential = _credential(json_body())
        if credential is None:
            raise ValidationError("Fingerprint credential is required")
        container.enrollment_service.register_fingerprint(identity_id, credential)
        return jsonify({"success": True, "message": "Fingerprint registered successfully"}), 201

    @app.route("/api/identities/<identity_id>/deactivate", methods=["POST"], endpoint="identities_deactivate")
    @json_endpoint
    def identities_deactivate(identity_id: str):
        container.enrollment_service.deactivate(identity_id)
        return jsonify({"success": True, "message": "Identity deactivated"}), 200

    @app.route("/api/identities/<identity_id>/activate", methods=["POST"], endpoint="identities_activate")
    @json_endpoint
    def identities_activate(identity_id: str):
        container.enrollment_service.activate(identity_id)
        return jsonify({"success": True, "message": "Identity activated"}), 200
