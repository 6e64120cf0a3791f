from __future__ import annotations

from datetime import datetime

import pytest

from biometric_attendance.core.enums import BiometricMethod
from biometric_attendance.core.exceptions import DimensionMismatch, NotFound, ValidationError
from biometric_attendance.identities.id_generator import validate_identity_id
from biometric_attendance.identities.repository import IdentityFilter
from biometric_attendance.identities.service import (
    CredentialRegistration,
    EnrollmentRequest,
    EnrollmentService,
    IdentityUpdate,
)
from biometric_attendance.notifications.dispatcher import EventDispatcher, IdentityEnrolled


def _request(**overrides) -> EnrollmentRequest:
    data = dict(
        name="Asha Rao",
        email="Asha.Rao@Example.com",
        phone="9876500001",
        group_name="MCA",
        embedding=[0.01] * 128,
        credential=None,
    )
    data.update(overrides)
    return EnrollmentRequest(**data)


@pytest.fixture
def dispatcher():
    return EventDispatcher()


@pytest.fixture
def service(identities, dispatcher):
    return EnrollmentService(identities, dispatcher=dispatcher)


def test_enroll_with_face(service, identities, fixed_now):
    profile = service.enroll(_request(), now=fixed_now)

    assert validate_identity_id(profile.identity.identity_id)
    assert profile.identity.identity_id.startswith("MCA-MCA-")
    assert profile.identity.email == "asha.rao@example.com"
    assert profile.identity.enrolled_at == fixed_now
    assert identities.faces[profile.identity.identity_id].embedding == tuple([0.01] * 128)
    assert profile.credential is None


def test_enroll_with_both_biometrics(service, identities, authenticator, fixed_now):
    profile = service.enroll(
        _request(credential=CredentialRegistration(authenticator.credential_id, authenticator.public_key)),
        now=fixed_now,
    )
    assert profile.face is not None
    assert identities.get_credential(authenticator.credential_id).identity_id == profile.identity.identity_id


def test_enroll_requires_a_biometric(service, fixed_now):
    with pytest.raises(ValidationError, match="At least one biometric"):
        service.enroll(_request(embedding=None), now=fixed_now)


def test_enroll_rejects_wrong_embedding_dimension(service, identities, fixed_now):
    with pytest.raises(DimensionMismatch):
        service.enroll(_request(embedding=[0.1] * 127), now=fixed_now)
    assert identities.identities == {}


def test_enroll_rejects_duplicate_email_or_phone(service, fixed_now):
    service.enroll(_request(), now=fixed_now)
    with pytest.raises(ValidationError, match="already exists"):
        service.enroll(_request(phone="9000000000"), now=fixed_now)
    with pytest.raises(ValidationError, match="already exists"):
        service.enroll(_request(email="other@example.com"), now=fixed_now)


@pytest.mark.parametrize(
    "field, value",
    [("name", " "), ("name", "A"), ("email", "not-an-email"), ("phone", "abc"), ("group_name", "")],
)
def test_enroll_validates_fields(service, field, value, fixed_now):
    with pytest.raises(ValidationError):
        service.enroll(_request(**{field: value}), now=fixed_now)


def test_enroll_rejects_short_credential_id(service, authenticator, fixed_now):
    with pytest.raises(ValidationError, match="credential ID"):
        service.enroll(
            _request(embedding=None, credential=CredentialRegistration("c2hvcnQ=", authenticator.public_key)),
            now=fixed_now,
        )


def test_enroll_publishes_event(service, dispatcher, fixed_now):
    seen = []
    dispatcher.subscribe(IdentityEnrolled, seen.append)

    profile = service.enroll(_request(), now=fixed_now)

    assert [e.identity_id for e in seen] == [profile.identity.identity_id]


def test_register_fingerprint_later(service, identities, authenticator, fixed_now):
    profile = service.enroll(_request(), now=fixed_now)
    service.register_fingerprint(
        profile.identity.identity_id,
        CredentialRegistration(authenticator.credential_id, authenticator.public_key, counter=3),
    )
    assert identities.get_credential(authenticator.credential_id).counter == 3

    with pytest.raises(NotFound):
        service.register_fingerprint(
            "MCA-MCA-NOPE0000", CredentialRegistration(authenticator.credential_id, authenticator.public_key)
        )


def test_deactivate_keeps_identity(service, identities, fixed_now):
    profile = service.enroll(_request(), now=fixed_now)
    service.deactivate(profile.identity.identity_id)

    assert identities.get_by_id(profile.identity.identity_id).is_active is False
    assert identities.list_face_templates() == []
    with pytest.raises(NotFound):
        service.deactivate("MCA-MCA-NOPE0000")


def test_enrollment_time_uses_configured_timezone(identities):
    from datetime import timezone

    from biometric_attendance.common.datetime_utils import resolve_timezone

    svc = EnrollmentService(identities, tz=resolve_timezone("Asia/Kolkata"))
    profile = svc.enroll(_request(), now=datetime(2026, 3, 1, 20, 0, tzinfo=timezone.utc))
    assert profile.identity.enrolled_at == datetime(2026, 3, 2, 1, 30)


def test_duplicate_credential_leaves_no_partial_identity(service, identities, authenticator, fixed_now):
    credential = CredentialRegistration(authenticator.credential_id, authenticator.public_key)
    asha = service.enroll(_request(credential=credential), now=fixed_now)

    with pytest.raises(ValidationError, match="credential already registered"):
        service.enroll(
            _request(name="Ravi Kumar", email="ravi@example.com", phone="9876500002", credential=credential),
            now=fixed_now,
        )

    assert list(identities.identities) == [asha.identity.identity_id]
    assert list(identities.faces) == [asha.identity.identity_id]


def test_credential_of_inactive_identity_still_blocks_enrollment(service, identities, authenticator, fixed_now):
    credential = CredentialRegistration(authenticator.credential_id, authenticator.public_key)
    asha = service.enroll(_request(credential=credential), now=fixed_now)
    service.deactivate(asha.identity.identity_id)

    with pytest.raises(ValidationError, match="already registered"):
        service.enroll(
            _request(name="Ravi Kumar", email="ravi@example.com", phone="9876500002", credential=credential),
            now=fixed_now,
        )
    assert list(identities.identities) == [asha.identity.identity_id]


def _enroll_three(service):
    service.enroll(_request(), now=datetime(2026, 1, 5, 9, 0))
    service.enroll(
        _request(name="Ravi Kumar", email="ravi@example.com", phone="9876500002", group_name="MBA"),
        now=datetime(2026, 1, 6, 9, 0),
    )
    service.enroll(
        _request(name="Meena Iyer", email="meena@example.com", phone="9876500003", embedding=[0.02] * 128),
        now=datetime(2026, 1, 7, 9, 0),
    )


def test_list_identities_newest_first_with_pagination(service):
    _enroll_three(service)

    first = service.list_identities(page=1, limit=2)
    second = service.list_identities(page=2, limit=2)

    assert [i.name for i in first.items] == ["Meena Iyer", "Ravi Kumar"]
    assert [i.name for i in second.items] == ["Asha Rao"]
    assert first.total == 3
    assert first.total_pages == 2


def test_list_identities_filters(service, authenticator):
    _enroll_three(service)
    meena = service.list_identities(IdentityFilter(search="MEENA")).items[0]
    service.register_fingerprint(
        meena.identity_id, CredentialRegistration(authenticator.credential_id, authenticator.public_key)
    )
    ravi = service.list_identities(IdentityFilter(group_name="MBA")).items[0]
    service.deactivate(ravi.identity_id)

    assert [i.name for i in service.list_identities(IdentityFilter(is_active=False)).items] == ["Ravi Kumar"]
    assert [i.name for i in service.list_identities(IdentityFilter(is_active=True)).items] == [
        "Meena Iyer",
        "Asha Rao",
    ]
    fingerprint_only = service.list_identities(IdentityFilter(method=BiometricMethod.FINGERPRINT))
    assert [i.name for i in fingerprint_only.items] == ["Meena Iyer"]
    assert service.list_identities(IdentityFilter(search="nobody")).total == 0


@pytest.mark.parametrize("page, limit", [(0, 20), (1, 0), (1, 101)])
def test_list_identities_rejects_bad_paging(service, page, limit):
    with pytest.raises(ValidationError):
        service.list_identities(page=page, limit=limit)


def test_get_profile_reports_templates(service, authenticator, fixed_now):
    profile = service.enroll(_request(), now=fixed_now)
    assert service.get_profile(profile.identity.identity_id).methods == ("face",)

    service.register_fingerprint(
        profile.identity.identity_id, CredentialRegistration(authenticator.credential_id, authenticator.public_key)
    )
    assert service.get_profile(profile.identity.identity_id).methods == ("face", "fingerprint")

    with pytest.raises(NotFound):
        service.get_profile("MCA-MCA-NOPE0000")


def test_update_identity_changes_only_given_fields(service, identities, fixed_now):
    identity_id = service.enroll(_request(), now=fixed_now).identity.identity_id

    updated = service.update_identity(identity_id, IdentityUpdate(name="Asha R", email="ASHA@new.com"))

    assert updated.name == "Asha R"
    assert updated.email == "asha@new.com"
    assert updated.phone == "9876500001"
    assert identities.get_by_id(identity_id) == updated


def test_update_identity_requires_a_field(service, fixed_now):
    identity_id = service.enroll(_request(), now=fixed_now).identity.identity_id
    with pytest.raises(ValidationError, match="At least one field"):
        service.update_identity(identity_id, IdentityUpdate())


def test_update_identity_keeps_email_and_phone_unique(service, fixed_now):
    asha = service.enroll(_request(), now=fixed_now).identity
    ravi = service.enroll(
        _request(name="Ravi Kumar", email="ravi@example.com", phone="9876500002"), now=fixed_now
    ).identity

    with pytest.raises(ValidationError, match="Email already in use"):
        service.update_identity(ravi.identity_id, IdentityUpdate(email=asha.email))
    with pytest.raises(ValidationError, match="Phone number already in use"):
        service.update_identity(ravi.identity_id, IdentityUpdate(phone=asha.phone))

    # Re-sending one's own values is not a conflict.
    assert service.update_identity(asha.identity_id, IdentityUpdate(email=asha.email)).email == asha.email


def test_update_identity_unknown(service):
    with pytest.raises(NotFound):
        service.update_identity("MCA-MCA-NOPE0000", IdentityUpdate(name="Somebody"))


def test_update_face_replaces_template(service, identities, fixed_now):
    identity_id = service.enroll(_request(), now=fixed_now).identity.identity_id

    service.update_face(identity_id, [0.5] * 128)

    assert identities.faces[identity_id].embedding == tuple([0.5] * 128)
    with pytest.raises(DimensionMismatch):
        service.update_face(identity_id, [0.5] * 64)
    with pytest.raises(NotFound):
        service.update_face("MCA-MCA-NOPE0000", [0.5] * 128)


def test_update_face_adds_template_to_fingerprint_only_identity(service, authenticator, fixed_now):
    profile = service.enroll(
        _request(embedding=None, credential=CredentialRegistration(authenticator.credential_id, authenticator.public_key)),
        now=fixed_now,
    )
    service.update_face(profile.identity.identity_id, [0.5] * 128)
    assert service.get_profile(profile.identity.identity_id).methods == ("face", "fingerprint")


def test_activate_restores_matching(service, identities, fixed_now):
    identity_id = service.enroll(_request(), now=fixed_now).identity.identity_id
    service.deactivate(identity_id)
    service.activate(identity_id)

    assert identities.get_by_id(identity_id).is_active is True
    assert [t.identity_id for t in identities.list_face_templates()] == [identity_id]
    with pytest.raises(NotFound):
        service.activate("MCA-MCA-NOPE0000")
