from __future__ import annotations

import base64
import hashlib
import json
import os
import threading
from dataclasses import replace
from datetime import date, datetime
from typing import Optional

import pytest
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec

from biometric_attendance.attendance.model import AttendanceEntry, NewAttendanceEntry
from biometric_attendance.attendance.repository import AttendanceLedger
from biometric_attendance.biometrics.assertion import FingerprintAssertion
from biometric_attendance.core.enums import BiometricMethod
from biometric_attendance.core.exceptions import DuplicateEntry, EntryNotOpen, ValidationError
from biometric_attendance.identities.model import BiometricProfile, CredentialTemplate, FaceTemplate, Identity
from biometric_attendance.identities.repository import IdentityFilter, IdentityRepository


class InMemoryIdentities(IdentityRepository):
    def __init__(self):
        self._lock = threading.Lock()
        self.identities: dict[str, Identity] = {}
        self.faces: dict[str, FaceTemplate] = {}
        self.credentials: dict[str, CredentialTemplate] = {}

    def add(self, identity: Identity, *, embedding=None, credential: Optional[CredentialTemplate] = None) -> Identity:
        self.identities[identity.identity_id] = identity
        if embedding is not None:
            self.faces[identity.identity_id] = FaceTemplate(identity.identity_id, tuple(float(v) for v in embedding))
        if credential is not None:
            self.credentials[credential.credential_id] = credential
        return identity

    def get_by_id(self, identity_id: str) -> Optional[Identity]:
        return self.identities.get(identity_id)

    def find_by_email_or_phone(self, *, email=None, phone=None) -> Optional[Identity]:
        for i in self.identities.values():
            if (email and i.email == email.lower()) or (phone and i.phone == phone):
                return i
        return None

    def create_profile(self, identity: Identity, face=None, credential=None) -> None:
        with self._lock:
            if identity.identity_id in self.identities or any(
                i.email == identity.email for i in self.identities.values()
            ):
                raise ValidationError("Identity, email or fingerprint credential already registered")
            if credential is not None and credential.credential_id in self.credentials:
                raise ValidationError("Identity, email or fingerprint credential already registered")
            self.identities[identity.identity_id] = identity
            if face is not None:
                self.faces[identity.identity_id] = face
            if credential is not None:
                self.credentials[credential.credential_id] = credential

    def update_identity(self, identity: Identity) -> bool:
        if identity.identity_id not in self.identities:
            return False
        self.identities[identity.identity_id] = identity
        return True

    def set_active(self, identity_id: str, *, is_active: bool) -> bool:
        identity = self.identities.get(identity_id)
        if identity is None:
            return False
        self.identities[identity_id] = replace(identity, is_active=is_active)
        return True

    def list_active(self):
        return sorted((i for i in self.identities.values() if i.is_active), key=lambda i: i.identity_id)

    def _methods(self, identity_id: str) -> set:
        found = {BiometricMethod.FACE} if identity_id in self.faces else set()
        if any(c.identity_id == identity_id for c in self.credentials.values()):
            found.add(BiometricMethod.FINGERPRINT)
        return found

    def list_identities(self, filters: IdentityFilter, *, limit: int, offset: int = 0):
        search = (filters.search or "").lower()
        items = [
            i
            for i in self.identities.values()
            if (not search or any(search in v.lower() for v in (i.name, i.identity_id, i.email)))
            and (not filters.group_name or i.group_name == filters.group_name)
            and (filters.is_active is None or i.is_active == filters.is_active)
            and (filters.method is None or filters.method in self._methods(i.identity_id))
        ]
        items.sort(key=lambda i: i.identity_id)
        items.sort(key=lambda i: i.enrolled_at, reverse=True)
        return items[offset : offset + limit], len(items)

    def get_profile(self, identity_id: str) -> Optional[BiometricProfile]:
        identity = self.identities.get(identity_id)
        if identity is None:
            return None
        credential = next((c for c in self.credentials.values() if c.identity_id == identity_id), None)
        return BiometricProfile(identity=identity, face=self.faces.get(identity_id), credential=credential)

    def save_face_template(self, template: FaceTemplate) -> None:
        self.faces[template.identity_id] = template

    def list_face_templates(self):
        return [t for k, t in sorted(self.faces.items()) if self.identities[k].is_active]

    def save_credential(self, template: CredentialTemplate) -> None:
        if template.credential_id in self.credentials:
            raise ValidationError("Fingerprint credential already registered")
        self.credentials[template.credential_id] = template

    def get_credential(self, credential_id: str) -> Optional[CredentialTemplate]:
        c = self.credentials.get(credential_id)
        if c is None or not self.identities[c.identity_id].is_active:
            return None
        return c

    def advance_counter(self, credential_id: str, new_counter: int) -> bool:
        with self._lock:
            c = self.credentials.get(credential_id)
            if c is None or new_counter <= c.counter:
                return False
            self.credentials[credential_id] = replace(c, counter=new_counter)
            return True


class InMemoryLedger(AttendanceLedger):
    """Thread-safe ledger honouring the (identity, day) uniqueness contract."""

    def __init__(self):
        self._lock = threading.Lock()
        self._next_id = 1
        self.entries: dict[tuple[str, date], AttendanceEntry] = {}

    def get_today_entry(self, identity_id: str, day: date) -> Optional[AttendanceEntry]:
        return self.entries.get((identity_id, day))

    def create_entry(self, entry: NewAttendanceEntry) -> int:
        with self._lock:
            key = (entry.identity_id, entry.work_date)
            if key in self.entries:
                raise DuplicateEntry(f"Entry already exists for {key}")
            entry_id = self._next_id
            self._next_id += 1
            self.entries[key] = entry.with_id(entry_id)
            return entry_id

    def close_entry(self, entry_id: int, time_out: datetime, photo_url: Optional[str] = None) -> None:
        with self._lock:
            for key, e in self.entries.items():
                if e.entry_id == entry_id and e.time_out is None:
                    self.entries[key] = replace(
                        e, time_out=time_out, logout_photo_url=photo_url or e.logout_photo_url
                    )
                    return
            raise EntryNotOpen(f"Entry {entry_id} is missing or already closed")

    def list_present_identity_ids(self, day: date):
        return {i for (i, d) in self.entries if d == day}

    def list_for_day(self, day: date):
        return sorted((e for (_, d), e in self.entries.items() if d == day), key=lambda e: e.time_in, reverse=True)

    def list_for_identity(self, identity_id: str, *, start_date=None, end_date=None, limit=None):
        items = [
            e
            for (i, d), e in self.entries.items()
            if i == identity_id and (start_date is None or d >= start_date) and (end_date is None or d <= end_date)
        ]
        items.sort(key=lambda e: (e.work_date, e.time_in), reverse=True)
        return items[:limit] if limit is not None else items


class FakeAuthenticator:
    """Platform authenticator with a real P-256 key that signs WebAuthn-style assertions."""

    def __init__(self, credential_id: Optional[str] = None):
        self._key = ec.generate_private_key(ec.SECP256R1())
        self.credential_id = credential_id or base64.b64encode(os.urandom(32)).decode("ascii")
        der = self._key.public_key().public_bytes(
            serialization.Encoding.DER, serialization.PublicFormat.SubjectPublicKeyInfo
        )
        self.public_key = base64.b64encode(der).decode("ascii")

    def assertion(
        self,
        *,
        counter: int,
        challenge: str = "test-challenge",
        type_: str = "webauthn.get",
    ) -> FingerprintAssertion:
        auth_data = hashlib.sha256(b"localhost").digest() + b"\x05" + counter.to_bytes(4, "big")
        client_data = json.dumps({"type": type_, "challenge": challenge, "origin": "http://localhost"}).encode()
        signature = self._key.sign(auth_data + hashlib.sha256(client_data).digest(), ec.ECDSA(hashes.SHA256()))
        return FingerprintAssertion(
            credential_id=self.credential_id,
            authenticator_data=base64.b64encode(auth_data).decode("ascii"),
            client_data_json=base64.b64encode(client_data).decode("ascii"),
            signature=base64.b64encode(signature).decode("ascii"),
        )


def make_identity(identity_id: str, *, enrolled_at: datetime = datetime(2026, 1, 5, 8, 0), **kw) -> Identity:
    return Identity(
        identity_id=identity_id,
        name=kw.get("name", f"Person {identity_id}"),
        email=kw.get("email", f"{identity_id.lower()}@example.com"),
        phone=kw.get("phone", "9876543210"),
        group_name=kw.get("group_name", "MCA"),
        enrolled_at=enrolled_at,
        is_active=kw.get("is_active", True),
    )


def unit_vector(index: int, scale: float = 1.0, dimension: int = 128) -> list[float]:
    v = [0.0] * dimension
    v[index] = scale
    return v


@pytest.fixture
def fixed_now() -> datetime:
    return datetime(2026, 3, 2, 9, 0, 0)


@pytest.fixture
def identities() -> InMemoryIdentities:
    return InMemoryIdentities()


@pytest.fixture
def ledger() -> InMemoryLedger:
    return InMemoryLedger()


@pytest.fixture
def authenticator() -> FakeAuthenticator:
    return FakeAuthenticator()


@pytest.fixture
def new_identity():
    return make_identity


@pytest.fixture
def vector():
    return unit_vector


@pytest.fixture
def authenticator_factory():
    return FakeAuthenticator
