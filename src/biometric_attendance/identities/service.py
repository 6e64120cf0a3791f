from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import datetime, tzinfo
from typing import Optional, Sequence

from ..biometrics.assertion import hash_credential_id, is_valid_credential_id
from ..biometrics.matcher import as_vector
from ..common.datetime_utils import now_local, to_canonical
from ..common.validators import require_email, require_length_between, require_non_empty, require_phone
from ..core.constants import (
    DEFAULT_EMBEDDING_DIMENSION,
    DEFAULT_IDENTITY_ID_PREFIX,
    DEFAULT_PAGE_SIZE,
    MAX_PAGE_SIZE,
)
from ..core.exceptions import NotFound, ValidationError
from ..notifications.dispatcher import EventDispatcher, IdentityEnrolled
from .id_generator import generate_identity_id
from .model import BiometricProfile, CredentialTemplate, FaceTemplate, Identity
from .repository import IdentityFilter, IdentityRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CredentialRegistration:
    credential_id: str
    public_key: str
    counter: int = 0


@dataclass(frozen=True)
class EnrollmentRequest:
    name: str
    email: str
    phone: str
    group_name: str
    embedding: Optional[Sequence[float]] = None
    credential: Optional[CredentialRegistration] = None


@dataclass(frozen=True)
class IdentityUpdate:
    """Fields left as None keep their stored value."""

    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    group_name: Optional[str] = None

    def is_empty(self) -> bool:
        return not (self.name or self.email or self.phone or self.group_name)


@dataclass(frozen=True)
class IdentityPage:
    items: Sequence[Identity]
    total: int
    page: int
    limit: int

    @property
    def total_pages(self) -> int:
        return -(-self.total // self.limit) if self.limit else 0


class EnrollmentService:
    """Use case: enroll identities, maintain their records and biometric templates."""

    def __init__(
        self,
        identities: IdentityRepository,
        *,
        dispatcher: EventDispatcher | None = None,
        dimension: int = DEFAULT_EMBEDDING_DIMENSION,
        id_prefix: str = DEFAULT_IDENTITY_ID_PREFIX,
        tz: tzinfo | None = None,
    ):
        self._identities = identities
        self._dispatcher = dispatcher
        self._dimension = int(dimension)
        self._id_prefix = id_prefix
        self._tz = tz

    def _validate_credential(self, credential: CredentialRegistration) -> None:
        if not is_valid_credential_id(credential.credential_id):
            raise ValidationError("Invalid credential ID format")
        require_non_empty(credential.public_key, "Public key")
        if credential.counter < 0:
            raise ValidationError("Sign counter must not be negative")

    def _embedding(self, values: Sequence[float]) -> tuple:
        return tuple(float(v) for v in as_vector(values, dimension=self._dimension))

    def _require(self, identity_id: str) -> Identity:
        identity = self._identities.get_by_id(identity_id)
        if identity is None:
            raise NotFound(f"Identity {identity_id} not found")
        return identity

    def enroll(self, req: EnrollmentRequest, *, now: datetime | None = None) -> BiometricProfile:
        name = require_length_between(require_non_empty(req.name, "Name"), "Name", 2, 100)
        email = require_email(req.email)
        phone = require_phone(req.phone)
        group_name = require_non_empty(req.group_name, "Group")

        if req.embedding is None and req.credential is None:
            raise ValidationError("At least one biometric (face or fingerprint) is required")

        embedding = self._embedding(req.embedding) if req.embedding is not None else None
        if req.credential is not None:
            self._validate_credential(req.credential)
            if self._identities.get_credential(req.credential.credential_id) is not None:
                raise ValidationError("Fingerprint credential already registered")

        if self._identities.find_by_email_or_phone(email=email, phone=phone):
            raise ValidationError("An identity with this email or phone number already exists")

        enrolled_at = to_canonical(now, self._tz) if now else now_local(self._tz)
        identity = Identity(
            identity_id=generate_identity_id(group_name, prefix=self._id_prefix),
            name=name,
            email=email,
            phone=phone,
            group_name=group_name,
            enrolled_at=enrolled_at,
        )
        face = None
        if embedding is not None:
            face = FaceTemplate(identity_id=identity.identity_id, embedding=embedding)
        credential = None
        if req.credential is not None:
            credential = CredentialTemplate(
                identity_id=identity.identity_id,
                credential_id=req.credential.credential_id,
                public_key=req.credential.public_key,
                counter=req.credential.counter,
            )
        self._identities.create_profile(identity, face, credential)

        logger.info(
            "Enrolled %s (face=%s, fingerprint=%s)",
            identity.identity_id,
            face is not None,
            credential is not None,
        )
        if self._dispatcher:
            self._dispatcher.publish(
                IdentityEnrolled(
                    identity_id=identity.identity_id,
                    name=identity.name,
                    email=identity.email,
                    group_name=identity.group_name,
                    enrolled_at=identity.enrolled_at,
                )
            )
        return BiometricProfile(identity=identity, face=face, credential=credential)

    def list_identities(
        self,
        filters: IdentityFilter | None = None,
        *,
        page: int = 1,
        limit: int = DEFAULT_PAGE_SIZE,
    ) -> IdentityPage:
        if page < 1:
            raise ValidationError("page must be 1 or greater")
        if not 1 <= limit <= MAX_PAGE_SIZE:
            raise ValidationError(f"limit must be between 1 and {MAX_PAGE_SIZE}")
        items, total = self._identities.list_identities(
            filters or IdentityFilter(), limit=limit, offset=(page - 1) * limit
        )
        return IdentityPage(items=items, total=total, page=page, limit=limit)

    def get_profile(self, identity_id: str) -> BiometricProfile:
        profile = self._identities.get_profile(identity_id)
        if profile is None:
            raise NotFound(f"Identity {identity_id} not found")
        return profile

    def update_identity(self, identity_id: str, update: IdentityUpdate) -> Identity:
        if update.is_empty():
            raise ValidationError("At least one field must be provided for update")
        identity = self._require(identity_id)

        changes = {}
        if update.name:
            changes["name"] = require_length_between(update.name.strip(), "Name", 2, 100)
        if update.group_name:
            changes["group_name"] = require_non_empty(update.group_name, "Group")
        if update.email:
            email = require_email(update.email)
            if email != identity.email:
                other = self._identities.find_by_email_or_phone(email=email)
                if other is not None and other.identity_id != identity_id:
                    raise ValidationError("Email already in use by another identity")
            changes["email"] = email
        if update.phone:
            phone = require_phone(update.phone)
            if phone != identity.phone:
                other = self._identities.find_by_email_or_phone(phone=phone)
                if other is not None and other.identity_id != identity_id:
                    raise ValidationError("Phone number already in use by another identity")
            changes["phone"] = phone

        updated = replace(identity, **changes)
        if not self._identities.update_identity(updated):
            raise NotFound(f"Identity {identity_id} not found")
        logger.info("Updated %s (%s)", identity_id, ", ".join(sorted(changes)))
        return updated

    def update_face(self, identity_id: str, embedding: Sequence[float]) -> FaceTemplate:
        """Replace (or add) the identity's face template."""
        self._require(identity_id)
        template = FaceTemplate(identity_id=identity_id, embedding=self._embedding(embedding))
        self._identities.save_face_template(template)
        logger.info("Face template re-enrolled for %s", identity_id)
        return template

    def register_fingerprint(self, identity_id: str, credential: CredentialRegistration) -> CredentialTemplate:
        identity = self._identities.get_by_id(identity_id)
        if identity is None or not identity.is_active:
            raise NotFound(f"Identity {identity_id} not found")
        self._validate_credential(credential)

        template = CredentialTemplate(
            identity_id=identity_id,
            credential_id=credential.credential_id,
            public_key=credential.public_key,
            counter=credential.counter,
        )
        self._identities.save_credential(template)
        logger.info(
            "Fingerprint registered for %s (credential %s)",
            identity_id,
            hash_credential_id(credential.credential_id)[:12],
        )
        return template

    def deactivate(self, identity_id: str) -> None:
        """Exclude from matching and absentee lists; history is kept."""
        if not self._identities.set_active(identity_id, is_active=False):
            raise NotFound(f"Identity {identity_id} not found")
        logger.info("Deactivated %s", identity_id)

    def activate(self, identity_id: str) -> None:
        if not self._identities.set_active(identity_id, is_active=True):
            raise NotFound(f"Identity {identity_id} not found")
        logger.info("Activated %s", identity_id)
